"""Admission control against the broadcast server's source limit."""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from shared.errors import CapacityExceeded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of an admission check."""

    allowed: bool
    limit: int
    active: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.active)


class CapacityGate:
    """
    Decides whether one more worker may start.

    The limit is read from a provider on every check so it tracks the
    server's current configuration. An unknown limit (None or <= 0) denies
    admission: without a readable limit the gate fails closed.
    """

    def __init__(self, limit_provider: Callable[[], Optional[int]]):
        """
        Initialize gate.

        Args:
            limit_provider: Returns the server's source limit, or None if unknown
        """
        self._limit_provider = limit_provider

    def current_limit(self) -> int:
        """Source limit, with unknown folded to 0."""
        limit = self._limit_provider()
        if limit is None or limit <= 0:
            return 0
        return int(limit)

    def can_admit(self, active: int) -> AdmissionDecision:
        """
        Check whether a new worker fits.

        Args:
            active: Workers currently starting or running

        Returns:
            AdmissionDecision
        """
        limit = self.current_limit()
        allowed = limit > 0 and active < limit
        if not allowed:
            logger.info(f"Admission denied: active={active}, limit={limit}")
        return AdmissionDecision(allowed=allowed, limit=limit, active=active)

    def require_admission(self, active: int) -> AdmissionDecision:
        """
        Like can_admit, but raise when denied.

        Raises:
            CapacityExceeded: If the worker does not fit
        """
        decision = self.can_admit(active)
        if not decision.allowed:
            raise CapacityExceeded(limit=decision.limit, active=decision.active)
        return decision
