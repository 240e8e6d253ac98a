"""
Error Types

Every failure that can cross the task facade is one of the classes below.
Each carries an ErrorKind so a JobResult can report the failure without
holding on to the exception object.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure categories reported in a JobResult"""
    PACKAGING = "packaging"
    SANDBOX = "sandbox"
    DISPATCH = "dispatch"
    DESERIALIZATION = "deserialization"
    CANCELLED = "cancelled"
    CONFIG = "config"
    BUILD = "build"


class GfaasError(Exception):
    """Base exception for all gfaas errors."""
    kind: ErrorKind = ErrorKind.DISPATCH


class PackagingError(GfaasError):
    """Raised when a module cannot be read or a bundle cannot be finalized."""
    kind = ErrorKind.PACKAGING


class SandboxError(GfaasError):
    """
    Raised when a local sandbox step fails.

    Args:
        step: Name of the failing step (deploy, start, run, ...)
        message: Description of the failure
    """
    kind = ErrorKind.SANDBOX

    def __init__(self, step: str, message: str):
        super().__init__(f"{step}: {message}")
        self.step = step
        self.message = message


class DispatchError(GfaasError):
    """
    Raised when a remote marketplace job fails.

    Args:
        message: Description of the failure
        cause: The underlying exception (connectivity, negotiation, provider)
    """
    kind = ErrorKind.DISPATCH

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.cause = cause


class DeserializationError(GfaasError):
    """Raised when a payload cannot be decoded into the declared type."""
    kind = ErrorKind.DESERIALIZATION


class CancelledError(GfaasError):
    """Raised when a job was interrupted or its timeout expired."""
    kind = ErrorKind.CANCELLED


class ConfigError(GfaasError):
    """Raised for invalid or missing configuration."""
    kind = ErrorKind.CONFIG


class BuildError(GfaasError):
    """
    Raised when the native build pipeline fails.

    Args:
        message: Description of the failure
        output: Captured diagnostic output of the failing command
    """
    kind = ErrorKind.BUILD

    def __init__(self, message: str, output: str = ""):
        super().__init__(message)
        self.output = output
