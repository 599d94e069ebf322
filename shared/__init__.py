"""
Shared building blocks for the LAN streaming control plane.

Error taxonomy, the poll-with-timeout helper used by every verification
wait, and the OS-command adapter used for process/port/service inspection.
"""

__version__ = "1.0.0"

from shared.errors import ControlPlaneError
from shared.os_adapter import OSCommandAdapter, ProcessEntry, ServiceStatus, get_os_adapter
from shared.polling import PollOutcome, Poller, PollResult

__all__ = [
    "ControlPlaneError",
    "OSCommandAdapter",
    "ProcessEntry",
    "ServiceStatus",
    "get_os_adapter",
    "PollOutcome",
    "Poller",
    "PollResult",
]
