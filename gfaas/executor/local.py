"""
Local Sandbox Executor

Runs a deployment bundle on this machine for testing. The whole job
(workspace, deploy, start, run, read back) is blocking and runs on the
loop's thread pool so it never stalls other scheduled jobs.
"""

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..cancellation import CancellationToken, race
from ..config import RunConfig, RunMode
from ..errors import SandboxError
from ..job import JobRequest
from .base import Executor, job_workspace
from .runtime import WORKDIR_PATH, WasiRuntime

logger = logging.getLogger(__name__)

PACKAGE_FILE = "package.zip"


@contextmanager
def _step(name: str) -> Iterator[None]:
    """Tag any failure inside the block with the step name"""
    try:
        yield
    except SandboxError:
        raise
    except Exception as e:
        raise SandboxError(name, str(e)) from e


class LocalSandboxExecutor(Executor):
    """
    Local sandbox backend.

    Args:
        config: Run configuration; timeout_seconds bounds each job
        runtime: WASI runtime, created with the configured timeout if omitted
    """

    mode = RunMode.LOCAL

    def __init__(self, config: RunConfig, runtime: Optional[WasiRuntime] = None):
        super().__init__(config)
        self.runtime = runtime or WasiRuntime(timeout=config.timeout_seconds)

    async def _run(self, request: JobRequest, token: Optional[CancellationToken]) -> bytes:
        loop = asyncio.get_running_loop()
        job = loop.run_in_executor(None, self.run_blocking, request)
        return await race(job, token, self.config.timeout_seconds)

    def run_blocking(self, request: JobRequest) -> bytes:
        """
        Execute a job synchronously.

        Returns:
            Contents of the output file

        Raises:
            SandboxError: Tagged with the failing step
        """
        with job_workspace("local") as workspace:
            with _step("deploy"):
                package_path = request.bundle.write(workspace / PACKAGE_FILE)

            with _step("deploy"):
                self.runtime.deploy(workspace, package_path)

            with _step("start"):
                deployment = self.runtime.start(workspace)

            with _step("deploy"):
                volume = deployment.find_volume(WORKDIR_PATH)
                volume_dir = volume.host_path(workspace)

            with _step("write-input"):
                for name, payload in request.inputs:
                    (volume_dir / name).write_bytes(payload)

            args = [f"{WORKDIR_PATH}/{name}" for name, _ in request.inputs]
            args.append(f"{WORKDIR_PATH}/{request.output_name}")
            logger.debug(f"Invoking {request.entry_point} with {args}")

            with _step("run"):
                self.runtime.run(workspace, request.entry_point, args)

            with _step("read-output"):
                return self._read_output(volume_dir / request.output_name)

    @staticmethod
    def _read_output(path: Path) -> bytes:
        if not path.is_file():
            raise SandboxError("read-output", f"Module did not produce {path.name}")
        return path.read_bytes()
