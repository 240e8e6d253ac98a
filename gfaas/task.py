"""
Task facade

Caller-facing entry point for one sandboxed routine. Arguments are encoded,
the module's bundle is run by the executor chosen for the process run mode,
and the output is decoded into the declared return type.

Every call starts an independent job; nothing is deduplicated or retried.
"""

import functools
import logging
import typing
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from . import codec
from .bundle import DeploymentBundle, build_bundle
from .cancellation import CancellationToken
from .config import RunConfig, RunMode, get_run_config
from .errors import GfaasError
from .executor import Executor, ExecutorFactory
from .job import JobRequest, JobResult

logger = logging.getLogger(__name__)

WASM_SUFFIX = ".wasm"


class RemoteTask:
    """
    A sandboxed routine callable from async code.

    Args:
        module: Path to the compiled module, or a bare name resolved as
            <config.module_dir>/<name>.wasm
        return_type: Declared type of the routine's result
        config: Run configuration, defaults to the process-wide one
        executor: Backend to use instead of the one selected for config.mode
        token: Interrupt signal shared by every call of this task
        **overrides: RunConfig fields replacing the resolved values (mode, budget, data_dir, ...)
    """

    def __init__(
        self,
        module: Union[str, Path],
        return_type: Any = bytes,
        config: Optional[RunConfig] = None,
        executor: Optional[Executor] = None,
        token: Optional[CancellationToken] = None,
        **overrides: Any,
    ):
        self.module = module
        self.return_type = return_type
        self.token = token
        self._config = config
        self._overrides = {k: v for k, v in overrides.items() if v is not None}
        self._executor = executor
        self._bundle: Optional[DeploymentBundle] = None

    @property
    def config(self) -> RunConfig:
        """Configuration, resolved on first use"""
        if self._config is None:
            config = get_run_config()
            if self._overrides:
                overrides = dict(self._overrides)
                if isinstance(overrides.get("mode"), str):
                    overrides["mode"] = RunMode.parse(overrides["mode"])
                for key in ("data_dir", "module_dir"):
                    if key in overrides:
                        overrides[key] = Path(overrides[key])
                config = replace(config, **overrides)
            self._config = config
        return self._config

    @property
    def executor(self) -> Executor:
        """Backend, selected once from config.mode"""
        if self._executor is None:
            self._executor = ExecutorFactory.create(self.config)
            logger.debug(f"Task {self.name} runs in {self.config.mode.value} mode")
        return self._executor

    @property
    def name(self) -> str:
        return Path(self.module).name.split(".")[0]

    @property
    def module_path(self) -> Path:
        path = Path(self.module)
        if path.suffix == WASM_SUFFIX or path.parent != Path("."):
            return path
        return self.config.module_dir / f"{path.name}{WASM_SUFFIX}"

    def bundle(self) -> DeploymentBundle:
        """Build the deployment bundle once and reuse it for every call"""
        if self._bundle is None:
            self._bundle = build_bundle(self.module_path)
        return self._bundle

    async def invoke(self, *args: Any) -> JobResult:
        """
        Run the routine once.

        Args:
            *args: Ordered arguments, each bytes, str or JSON-serializable

        Returns:
            JobResult whose output is the decoded value, or the failure

        Raises:
            TypeError: If an argument cannot be serialized
        """
        payloads = codec.encode_inputs(args)
        try:
            bundle = self.bundle()
        except GfaasError as e:
            logger.error(f"Failed to package {self.module_path}: {e}")
            return JobResult.failure(e)

        request = JobRequest.create(bundle, payloads)
        result = await self.executor.execute(request, self.token)
        return result.map(lambda output: codec.decode(output, self.return_type))

    async def __call__(self, *args: Any) -> Any:
        """Run the routine and return its decoded result, raising on failure"""
        result = await self.invoke(*args)
        return result.unwrap()

    def __repr__(self) -> str:
        return f"RemoteTask({self.name!r}, return_type={self.return_type!r})"


def remote_fn(
    fn: Optional[Callable] = None,
    *,
    module: Optional[Union[str, Path]] = None,
    return_type: Any = None,
    **overrides: Any,
):
    """
    Turn a function declaration into a RemoteTask.

    The function body is what the generated entry point runs inside the
    sandbox; on the caller's side the name becomes an async callable. The
    return type comes from the annotation unless given explicitly.

    Usage::

        @remote_fn(budget=100)
        def partial_sum(values: List[int]) -> int:
            ...

        total = await partial_sum([1, 2, 3])
    """
    def decorate(func: Callable) -> RemoteTask:
        declared = return_type
        if declared is None:
            declared = _declared_return_type(func)
        task = RemoteTask(module or func.__name__, return_type=declared, **overrides)
        functools.update_wrapper(task, func)
        return task

    if fn is not None:
        return decorate(fn)
    return decorate


def _declared_return_type(func: Callable) -> Any:
    try:
        hints: Dict[str, Any] = typing.get_type_hints(func)
    except (NameError, TypeError):
        hints = {}
    return hints.get("return", bytes)
