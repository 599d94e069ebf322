"""Stream record model and id generation."""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from stream_manager.config import AudioFormat

ID_BASE_LENGTH = 20


class StreamStatus(str, Enum):
    """Lifecycle states of a stream."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


ACTIVE_STATUSES = (StreamStatus.STARTING, StreamStatus.RUNNING)


def generate_stream_id(name: str, now: Optional[datetime] = None) -> str:
    """
    Derive a stream id (and mountpoint name) from a display name.

    The name is lowercased, stripped of anything but letters, digits and
    spaces, spaces become underscores, and the result is truncated before a
    millisecond timestamp is appended.

    Args:
        name: Display name
        now: Creation time (defaults to now)

    Returns:
        Stream id such as ``main_hall_1718000000000``
    """
    now = now or datetime.now()
    base = re.sub(r"[^a-z0-9\s]", "", name.lower()).strip()
    base = re.sub(r"\s+", "_", base)[:ID_BASE_LENGTH].strip("_") or "stream"
    return f"{base}_{int(now.timestamp() * 1000)}"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


@dataclass
class StreamRecord:
    """One capture-device-to-mountpoint binding.

    ``pid`` and ``started_at`` are runtime fields: they are reported by the
    API but never written to the registry file.
    """

    id: str
    name: str
    device_id: str
    bitrate: int
    status: StreamStatus = StreamStatus.STOPPED
    audio_format: AudioFormat = AudioFormat.MP3
    created_at: datetime = field(default_factory=datetime.now)
    stopped_at: Optional[datetime] = None
    last_error: Optional[Dict[str, Any]] = None
    pid: Optional[int] = None
    started_at: Optional[datetime] = None

    @property
    def mountpoint(self) -> str:
        return f"/{self.id}"

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def uptime_seconds(self) -> float:
        if self.status != StreamStatus.RUNNING or self.started_at is None:
            return 0.0
        return (datetime.now() - self.started_at).total_seconds()

    def to_persisted(self) -> Dict[str, Any]:
        """Registry representation (no runtime fields)."""
        return {
            "id": self.id,
            "name": self.name,
            "deviceId": self.device_id,
            "bitrate": self.bitrate,
            "status": self.status.value,
            "format": self.audio_format.value,
            "createdAt": self.created_at.isoformat(),
            "stoppedAt": self.stopped_at.isoformat() if self.stopped_at else None,
            "lastError": self.last_error,
        }

    def to_dict(self) -> Dict[str, Any]:
        """API representation, including runtime fields."""
        data = self.to_persisted()
        data.update(
            {
                "pid": self.pid,
                "startedAt": self.started_at.isoformat() if self.started_at else None,
                "uptimeSeconds": round(self.uptime_seconds(), 1),
                "mountpoint": self.mountpoint,
            }
        )
        return data

    @classmethod
    def from_persisted(cls, data: Dict[str, Any]) -> "StreamRecord":
        """
        Build a record from its registry representation.

        Accepts the older layout where bitrate lived under ``config`` and
        status was not stored.

        Raises:
            KeyError: If ``id`` is missing
            ValueError: If status or format is not recognised
        """
        config = data.get("config") or {}
        bitrate = data.get("bitrate", config.get("bitrate", 192))
        if isinstance(bitrate, str):
            bitrate = int(bitrate.rstrip("k"))

        return cls(
            id=data["id"],
            name=data.get("name") or data["id"],
            device_id=data.get("deviceId") or "",
            bitrate=int(bitrate),
            status=StreamStatus(data.get("status", StreamStatus.STOPPED.value)),
            audio_format=AudioFormat(data.get("format", AudioFormat.MP3.value)),
            created_at=_parse_time(data.get("createdAt")) or datetime.now(),
            stopped_at=_parse_time(data.get("stoppedAt")),
            last_error=data.get("lastError"),
        )
