"""
Executor factory

Selects the backend for a run mode. The choice is made once when a task first
needs an executor and never changes for the lifetime of that executor.
"""

from typing import Any

from ..config import RunConfig, RunMode
from ..errors import ConfigError
from .base import Executor


class ExecutorFactory:
    """Factory creating executor backends"""

    @staticmethod
    def create(config: RunConfig, **kwargs: Any) -> Executor:
        """Create the executor for config.mode

        Args:
            config: Run configuration
            **kwargs: Backend-specific arguments (runtime for local, client_factory for remote)

        Returns:
            Executor: LocalSandboxExecutor or RemoteMarketplaceExecutor

        Raises:
            ConfigError: Unsupported run mode
        """
        if config.mode == RunMode.LOCAL:
            from .local import LocalSandboxExecutor
            return LocalSandboxExecutor(config, **kwargs)
        elif config.mode == RunMode.REMOTE:
            from .remote import RemoteMarketplaceExecutor
            return RemoteMarketplaceExecutor(config, **kwargs)
        else:
            raise ConfigError(f"Unsupported run mode: {config.mode}")
