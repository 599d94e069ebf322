"""
Persistent stream registry.

A small JSON file holding the desired configuration and last known status
of every stream, in display order. Every mutation rewrites the file
atomically (temp file in the same directory, fsync, os.replace) under a
single writer lock, so a crash mid-write leaves either the old or the new
registry on disk, never a torn one.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from shared.errors import DuplicateStreamId, StreamNotFound
from stream_manager.models import StreamRecord

logger = logging.getLogger(__name__)

REGISTRY_VERSION = 1


class StreamRegistry:
    """
    Ordered, durable collection of StreamRecords keyed by id.

    The registry owns the record objects it returns; callers mutate them and
    call save() to persist.
    """

    def __init__(self, path: Union[str, Path]):
        """
        Initialize registry and load it from disk.

        Args:
            path: Registry file path (created on first save)
        """
        self.path = Path(path)
        self._records: Dict[str, StreamRecord] = {}
        self._lock = threading.Lock()
        self.load()

    def load(self) -> List[StreamRecord]:
        """
        (Re)load the registry from disk.

        A missing file yields an empty registry. Unreadable entries are
        skipped with a warning so one bad record cannot hide the rest.

        Returns:
            Loaded records in display order

        Raises:
            ValueError: If the file exists but is not valid JSON
        """
        with self._lock:
            self._records = {}
            if not self.path.exists():
                logger.info(f"No stream registry at {self.path}, starting empty")
                return []

            try:
                raw = json.loads(self.path.read_text(encoding="utf-8"))
            except json.JSONDecodeError as e:
                raise ValueError(f"Stream registry {self.path} is corrupt: {e}") from e

            for entry in self._iter_entries(raw):
                try:
                    record = StreamRecord.from_persisted(entry)
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Skipping unreadable registry entry {entry!r}: {e}")
                    continue
                self._records[record.id] = record

            logger.info(f"Loaded {len(self._records)} streams from {self.path}")
            return list(self._records.values())

    @staticmethod
    def _iter_entries(raw) -> Iterable[dict]:
        if isinstance(raw, dict) and "streams" in raw:
            return raw["streams"]
        if isinstance(raw, dict):
            # Legacy layout: {stream_id: record}
            return [dict(value, id=value.get("id", key)) for key, value in raw.items()]
        if isinstance(raw, list):
            return raw
        raise ValueError(f"Unexpected registry layout: {type(raw).__name__}")

    def save(self) -> None:
        """Persist the current records atomically."""
        with self._lock:
            self._write()

    def _write(self) -> None:
        payload = {
            "version": REGISTRY_VERSION,
            "streams": [record.to_persisted() for record in self._records.values()],
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

        logger.debug(f"Saved {len(self._records)} streams to {self.path}")

    def records(self) -> List[StreamRecord]:
        """All records in display order."""
        with self._lock:
            return list(self._records.values())

    def ids(self) -> List[str]:
        with self._lock:
            return list(self._records)

    def get(self, stream_id: str) -> Optional[StreamRecord]:
        with self._lock:
            return self._records.get(stream_id)

    def require(self, stream_id: str) -> StreamRecord:
        """
        Get a record or raise.

        Raises:
            StreamNotFound: If no record has this id
        """
        record = self.get(stream_id)
        if record is None:
            raise StreamNotFound(stream_id)
        return record

    def __contains__(self, stream_id: str) -> bool:
        with self._lock:
            return stream_id in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def add(self, record: StreamRecord) -> None:
        """
        Append a new record and persist.

        Raises:
            DuplicateStreamId: If the id is already registered
        """
        with self._lock:
            if record.id in self._records:
                raise DuplicateStreamId(
                    f"Stream id already exists: {record.id}", {"streamId": record.id}
                )
            self._records[record.id] = record
            self._write()

    def replace(self, old_id: str, record: StreamRecord) -> None:
        """
        Swap a record for another (possibly with a new id), keeping its position.

        Raises:
            StreamNotFound: If old_id is unknown
            DuplicateStreamId: If the new id belongs to a different record
        """
        with self._lock:
            if old_id not in self._records:
                raise StreamNotFound(old_id)
            if record.id != old_id and record.id in self._records:
                raise DuplicateStreamId(
                    f"Stream id already exists: {record.id}", {"streamId": record.id}
                )
            self._records = {
                (record.id if key == old_id else key): (record if key == old_id else value)
                for key, value in self._records.items()
            }
            self._write()

    def remove(self, stream_id: str) -> bool:
        """
        Delete a record and persist.

        Returns:
            True if a record was removed
        """
        with self._lock:
            if self._records.pop(stream_id, None) is None:
                return False
            self._write()
            return True

    def reorder(self, stream_ids: List[str]) -> List[str]:
        """
        Change display order.

        Known ids move to the front in the given order; unknown ids are
        ignored; records not mentioned keep their relative order after them.

        Returns:
            The resulting id order
        """
        with self._lock:
            ordered: Dict[str, StreamRecord] = {}
            for stream_id in stream_ids:
                if stream_id in self._records and stream_id not in ordered:
                    ordered[stream_id] = self._records[stream_id]
            for stream_id, record in self._records.items():
                if stream_id not in ordered:
                    ordered[stream_id] = record
            self._records = ordered
            self._write()
            return list(self._records)
