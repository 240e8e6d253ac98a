"""
Cancellation

An interrupt cancels the caller's wait on a job. The job itself is abandoned,
not terminated: whatever runs on the other side keeps running.
"""

import asyncio
import logging
import signal
from typing import Awaitable, Iterable, Optional, TypeVar

from .errors import CancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """One-shot interrupt signal shared by any number of jobs"""

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "interrupted") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()
            logger.info(f"Cancellation requested: {reason}")

    async def wait(self) -> None:
        await self._event.wait()

    @classmethod
    def from_signals(cls, signals: Iterable[int] = (signal.SIGINT,)) -> "CancellationToken":
        """
        Create a token that fires on the given process signals.

        Must be called from within a running event loop.
        """
        token = cls()
        loop = asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, token.cancel, f"received {signal.Signals(sig).name}")
            except (NotImplementedError, RuntimeError) as e:
                logger.warning(f"Cannot install handler for signal {sig}: {e}")
        return token


def _consume_result(task: "asyncio.Future") -> None:
    # Abandoned jobs may still fail later; retrieve the outcome so it is not reported as unhandled
    if not task.cancelled():
        exc = task.exception()
        if exc is not None:
            logger.debug(f"Abandoned job finished with error: {exc}")


async def race(
    job: Awaitable[T],
    token: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
) -> T:
    """
    Wait for a job, an interrupt or a timeout, whichever comes first.

    Args:
        job: Awaitable producing the job outcome
        token: Interrupt signal; None means the job can only time out
        timeout: Maximum wait in seconds; None waits forever

    Returns:
        The job's result if it finished first

    Raises:
        CancelledError: If the interrupt fired or the timeout expired first
    """
    job_task = asyncio.ensure_future(job)

    if token is not None and token.cancelled:
        job_task.cancel()
        raise CancelledError(f"Job cancelled before start: {token.reason}")

    waiters = {job_task}
    interrupt_task = None
    if token is not None:
        interrupt_task = asyncio.ensure_future(token.wait())
        waiters.add(interrupt_task)

    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        job_task.cancel()
        raise
    finally:
        if interrupt_task is not None and not interrupt_task.done():
            interrupt_task.cancel()

    if interrupt_task is not None and interrupt_task in done:
        _abandon(job_task)
        raise CancelledError(f"Job cancelled: {token.reason}")

    if job_task in done:
        return job_task.result()

    _abandon(job_task)
    raise CancelledError(f"Job timed out after {timeout} seconds")


def _abandon(task: "asyncio.Future") -> None:
    if not task.done():
        task.cancel()
    task.add_done_callback(_consume_result)
