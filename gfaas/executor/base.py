"""
Base Executor Interface

Abstract base class for the local sandbox and remote marketplace backends.
Both present the same contract: a JobRequest goes in, exactly one JobResult
comes out.
"""

import logging
import shutil
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from ..cancellation import CancellationToken
from ..config import RunConfig, RunMode
from ..errors import GfaasError, SandboxError
from ..job import JobRequest, JobResult
from ..telemetry import create_span, increment_counter, record_error, record_job

logger = logging.getLogger(__name__)


class Executor(ABC):
    """
    Abstract base class for executor backends.

    Subclasses implement _run(), which returns the raw output bytes or raises
    a GfaasError. execute() turns that into a JobResult and records telemetry.
    """

    mode: RunMode

    def __init__(self, config: RunConfig):
        self.config = config

    async def execute(self, request: JobRequest, token: Optional[CancellationToken] = None) -> JobResult:
        """
        Run a job and report its outcome.

        Args:
            request: The job to run
            token: Interrupt signal racing the job

        Returns:
            JobResult holding the raw output bytes or the failure
        """
        attributes = {"mode": self.mode.value, "entry_point": request.entry_point}
        increment_counter("gfaas.jobs.submitted", 1, {"mode": self.mode.value})
        start_time = time.time()

        with create_span(f"gfaas.job.{self.mode.value}", attributes) as span:
            logger.info(f"Starting {self.mode.value} job for {request.entry_point} with {len(request.inputs)} input(s)")
            try:
                output = await self._run(request, token)
                result = JobResult.success(output)
            except GfaasError as e:
                record_error(span, e)
                logger.error(f"{self.mode.value.capitalize()} job for {request.entry_point} failed: {e}")
                result = JobResult.failure(e)

        elapsed = time.time() - start_time
        record_job(self.mode.value, result, elapsed)
        if result.ok:
            logger.info(f"Completed {self.mode.value} job for {request.entry_point} in {elapsed:.2f}s")
        return result

    @abstractmethod
    async def _run(self, request: JobRequest, token: Optional[CancellationToken]) -> bytes:
        """
        Execute the job.

        Returns:
            Raw bytes of the output file

        Raises:
            GfaasError: Any failure, tagged with the failing step
        """
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


@contextmanager
def job_workspace(prefix: str) -> Iterator[Path]:
    """
    Ephemeral per-job workspace, removed on every exit path.

    Raises:
        SandboxError: If the directory cannot be created
    """
    try:
        path = Path(tempfile.mkdtemp(prefix=f"gfaas_{prefix}_"))
    except OSError as e:
        raise SandboxError("workspace", f"Failed to create workspace: {e}")

    logger.debug(f"Created workspace {path}")
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to cleanup workspace {path}: {e}")
