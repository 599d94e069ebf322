"""Poll-with-timeout helper shared by every verification wait.

Start, stop and restart verification all reduce to "check something every
``interval`` seconds until it holds, the deadline passes, or a newer
operation cancels the wait". The clock and sleep functions are injectable
so tests can drive the loop without real delays.
"""

import asyncio
import inspect
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

Predicate = Callable[[], Union[Any, Awaitable[Any]]]


class PollOutcome(str, Enum):
    """How a poll loop ended."""

    SATISFIED = "satisfied"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


@dataclass
class PollResult:
    """Result of a poll loop."""

    outcome: PollOutcome
    attempts: int
    elapsed: float
    value: Any = None

    @property
    def satisfied(self) -> bool:
        return self.outcome == PollOutcome.SATISFIED

    @property
    def timed_out(self) -> bool:
        return self.outcome == PollOutcome.TIMED_OUT

    @property
    def cancelled(self) -> bool:
        return self.outcome == PollOutcome.CANCELLED


class Poller:
    """Runs bounded, cancellable poll loops.

    Example:
        >>> poller = Poller()
        >>> result = await poller.until(lambda: port_open(), timeout=10, interval=0.5)
        >>> if result.timed_out:
        ...     raise VerificationTimeout("start", 10)
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """Initialize poller.

        Args:
            clock: Monotonic clock returning seconds (defaults to time.monotonic)
            sleep: Coroutine function used between attempts (defaults to asyncio.sleep)
        """
        self.clock = clock or time.monotonic
        self.sleep = sleep or asyncio.sleep

    async def until(
        self,
        predicate: Predicate,
        timeout: float,
        interval: float,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """Call ``predicate`` until it returns a truthy value.

        The predicate is always evaluated at least once, even with a zero
        timeout. Cancellation is checked before every attempt.

        Args:
            predicate: Sync or async callable; a truthy return ends the loop
            timeout: Deadline in seconds measured from the first attempt
            interval: Delay between attempts in seconds
            cancel_event: When set, the loop ends with CANCELLED

        Returns:
            PollResult describing how the loop ended
        """
        started = self.clock()
        attempts = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                return PollResult(PollOutcome.CANCELLED, attempts, self.clock() - started)

            attempts += 1
            value = predicate()
            if inspect.isawaitable(value):
                value = await value

            elapsed = self.clock() - started
            if value:
                return PollResult(PollOutcome.SATISFIED, attempts, elapsed, value)

            if elapsed >= timeout:
                return PollResult(PollOutcome.TIMED_OUT, attempts, elapsed, value)

            await self.sleep(max(0.0, min(interval, timeout - elapsed)))
