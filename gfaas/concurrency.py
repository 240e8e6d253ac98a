"""
Concurrency Controller

Runs many jobs with a bound on how many are in flight and aggregates their
outputs in submission order. After the first failure no new job is started;
jobs already running are allowed to finish before the failure is raised.
"""

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, TypeVar

from .errors import GfaasError
from .job import JobResult

logger = logging.getLogger(__name__)

T = TypeVar("T")
JobFactory = Callable[[], Awaitable[JobResult]]


class _Aggregation:
    """Results shared by concurrently running jobs; mutate only under lock"""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.outputs: Dict[int, Any] = {}
        self.failure: Optional[Exception] = None
        self.failed_index: Optional[int] = None


class ConcurrencyController:
    """
    Bounded job runner.

    Args:
        max_in_flight: Maximum number of jobs running at the same time
    """

    def __init__(self, max_in_flight: int):
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")
        self.max_in_flight = max_in_flight

    async def run(self, jobs: Iterable[JobFactory]) -> List[Any]:
        """
        Run jobs and collect their outputs.

        Args:
            jobs: Zero-argument callables, each starting one job and returning its JobResult

        Returns:
            Job outputs in submission order

        Raises:
            Exception: The first failure (a GfaasError or whatever a job raised),
                once every started job has finished
        """
        state = _Aggregation()
        semaphore = asyncio.Semaphore(self.max_in_flight)
        running: List[asyncio.Task] = []
        submitted = 0

        try:
            for index, factory in enumerate(jobs):
                await semaphore.acquire()
                if state.failure is not None:
                    semaphore.release()
                    logger.info(f"Not starting job {index} after failure of job {state.failed_index}")
                    break
                running.append(asyncio.ensure_future(self._run_one(index, factory, semaphore, state)))
                submitted += 1

            outcomes = await asyncio.gather(*running, return_exceptions=True)
        except asyncio.CancelledError:
            for task in running:
                task.cancel()
            raise

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        if state.failure is not None:
            raise state.failure

        logger.debug(f"Aggregated {submitted} job result(s)")
        return [state.outputs[index] for index in sorted(state.outputs)]

    async def _run_one(self, index: int, factory: JobFactory, semaphore: asyncio.Semaphore,
                       state: _Aggregation) -> None:
        # Record a failure before releasing the slot
        try:
            try:
                result = await factory()
            except GfaasError as e:
                result = JobResult.failure(e)
            except Exception as e:
                await self._record_failure(state, index, e)
                return

            if result.ok:
                async with state.lock:
                    state.outputs[index] = result.output
            else:
                await self._record_failure(state, index, result.error or GfaasError(result.message))
        finally:
            semaphore.release()

    async def _record_failure(self, state: _Aggregation, index: int, error: Exception) -> None:
        async with state.lock:
            if state.failure is None:
                state.failure = error
                state.failed_index = index
                logger.error(f"Job {index} failed, stopping submission: {error}")

    async def map(self, task: Callable[..., Awaitable[JobResult]], arguments: Iterable[Sequence[Any]]) -> List[Any]:
        """
        Invoke a task once per argument tuple.

        Args:
            task: Object with an async invoke(*args) -> JobResult, e.g. RemoteTask
            arguments: One tuple of positional arguments per job
        """
        invoke = getattr(task, "invoke", task)
        return await self.run(functools.partial(invoke, *args) for args in arguments)

    async def fold(self, task, arguments: Iterable[Sequence[Any]], initial: T, reducer: Callable[[T, Any], T]) -> T:
        """Invoke a task per argument tuple and reduce the outputs in submission order"""
        outputs = await self.map(task, arguments)
        return functools.reduce(reducer, outputs, initial)
