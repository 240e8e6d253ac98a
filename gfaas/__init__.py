"""
gfaas - functions as a service on sandboxed Wasm modules

Routines compiled to wasm32-wasi are packaged into deployment bundles and run
either in a local WASI sandbox or on remote marketplace providers, depending
on the process run mode.
"""

__version__ = "0.1.0"

from .cancellation import CancellationToken
from .concurrency import ConcurrencyController
from .config import ResourceConstraints, RunConfig, RunMode, get_run_config, set_run_config
from .errors import (
    BuildError,
    CancelledError,
    ConfigError,
    DeserializationError,
    DispatchError,
    ErrorKind,
    GfaasError,
    PackagingError,
    SandboxError,
)
from .job import JobRequest, JobResult
from .task import RemoteTask, remote_fn

__all__ = [
    "CancellationToken",
    "ConcurrencyController",
    "ResourceConstraints",
    "RunConfig",
    "RunMode",
    "get_run_config",
    "set_run_config",
    "BuildError",
    "CancelledError",
    "ConfigError",
    "DeserializationError",
    "DispatchError",
    "ErrorKind",
    "GfaasError",
    "PackagingError",
    "SandboxError",
    "JobRequest",
    "JobResult",
    "RemoteTask",
    "remote_fn",
]
