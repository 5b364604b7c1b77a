import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollStatus(str, Enum):
    PENDING = "pending"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class PollResult(Generic[T]):
    status: PollStatus
    value: Optional[T] = None
    reason: Optional[str] = None
    attempts: int = 0

    @classmethod
    def pending(cls, value: Optional[T] = None) -> "PollResult[T]":
        return cls(PollStatus.PENDING, value=value)

    @classmethod
    def ready(cls, value: T) -> "PollResult[T]":
        return cls(PollStatus.READY, value=value)

    @classmethod
    def failed(cls, reason: str, value: Optional[T] = None) -> "PollResult[T]":
        return cls(PollStatus.FAILED, value=value, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.status != PollStatus.PENDING


@dataclass(frozen=True)
class PollPolicy:
    interval_seconds: float = 2.0
    max_attempts: int = 10


class PollCancelled(Exception):
    pass


async def poll_until_terminal(
    check: Callable[[], Awaitable[PollResult[T]]],
    policy: PollPolicy,
    is_cancelled: Optional[Callable[[], Awaitable[bool]]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> PollResult[T]:
    """
    Call `check` until it reports a terminal result or the attempt budget is spent.

    The check is called at most `policy.max_attempts` times with
    `policy.interval_seconds` between calls. A job that never leaves the
    pending state yields a TIMED_OUT result carrying the last observed value.
    `is_cancelled` is consulted before each call; when it returns True the
    poll stops with PollCancelled.
    """
    last: PollResult[T] = PollResult.pending()
    for attempt in range(1, policy.max_attempts + 1):
        if is_cancelled is not None and await is_cancelled():
            raise PollCancelled(f"Polling cancelled before attempt {attempt}")

        last = await check()
        last.attempts = attempt
        if last.is_terminal:
            logger.debug(f"Poll finished with {last.status.value} after {attempt} attempt(s)")
            return last

        logger.debug(f"Still pending after attempt {attempt}/{policy.max_attempts}")
        if attempt < policy.max_attempts:
            await sleep(policy.interval_seconds)

    return PollResult(
        PollStatus.TIMED_OUT,
        value=last.value,
        reason=f"Still pending after {policy.max_attempts} attempts",
        attempts=policy.max_attempts,
    )
