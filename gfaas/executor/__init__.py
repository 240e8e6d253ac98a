"""
Executor Module

Backends running deployment bundles behind one asynchronous contract:
- LocalSandboxExecutor: WASI sandbox on this machine, for testing
- RemoteMarketplaceExecutor: priced task on remote marketplace providers
"""

from .base import Executor
from .factory import ExecutorFactory

__all__ = ["Executor", "ExecutorFactory"]
