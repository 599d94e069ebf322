"""
Pytest configuration and fixtures for shared module tests.
"""

import asyncio
from typing import List

import pytest

from shared.polling import Poller


class ManualClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock starting at t=0."""
    return ManualClock()


@pytest.fixture
def poller(clock: ManualClock) -> Poller:
    """Create a poller driven by the manual clock."""
    return Poller(clock=clock, sleep=clock.sleep)
