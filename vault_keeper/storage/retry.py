"""
Retry executor — re-runs database operations on connection exceptions.

The first attempt runs immediately. Failures that are not SQLSTATE class 08
(unique or foreign-key violations, missing rows, programming errors) are
raised unchanged. Connection exceptions are retried up to
``policy.attempts`` more times with linear backoff: the first sleep lasts
``delay`` milliseconds and every following sleep grows by ``increment``.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from .errors import is_connection_exception

logger = logging.getLogger("keeper.storage")

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Linear backoff policy, expressed in milliseconds."""

    attempts: int = Field(default=3, ge=0)
    delay: int = Field(default=5, ge=0)
    increment: int = Field(default=3, ge=0)

    model_config = {"frozen": True}

    def delays(self):
        """Yield each sleep, in seconds, before the successive retries."""
        delay = self.delay
        for _ in range(self.attempts):
            yield delay / 1000
            delay += self.increment


async def retry(
    policy: RetryPolicy,
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)`` honouring ``policy``.

    Sleeps are plain ``asyncio.sleep`` calls, so cancelling the surrounding
    task (client disconnect, caller deadline) interrupts them. When that
    happens the last observed connection error is raised in place of the
    cancellation.

    Raises:
        Exception: the first non-transient error, or the last transient
            error once the policy is exhausted.
    """
    try:
        return await fn(*args, **kwargs)
    except Exception as err:
        if not is_connection_exception(err):
            raise
        last_error = err

    for attempt, pause in enumerate(policy.delays(), start=1):
        logger.warning(
            "Connection exception, retry %d/%d in %.3fs: %s",
            attempt, policy.attempts, pause, last_error,
        )
        try:
            await asyncio.sleep(pause)
        except asyncio.CancelledError:
            logger.info("Retry cancelled after %d attempt(s)", attempt)
            raise last_error
        try:
            return await fn(*args, **kwargs)
        except Exception as err:
            if not is_connection_exception(err):
                raise
            last_error = err

    raise last_error
