"""
Stream orchestrator.

Owns the set of ffmpeg workers (one per stream). Desired state lives in the
StreamRegistry; admission goes through the CapacityGate; the broadcast
server controller is consulted (read-only) for installation, liveness and
the source endpoint; failures are classified by the DiagnosticsEngine.

Concurrency model:
- every mutating operation on a stream id holds that id's asyncio.Lock and
  marks the id in-flight, so reconciliation leaves it alone;
- admission (name/device checks, server readiness, capacity, persisting as
  ``starting``) runs under one admission lock so concurrent starts cannot
  overshoot the source limit;
- a start's verification wait registers a cancel event; stop/restart/delete
  on the same id set it first, so the newer operation wins.
"""

import asyncio
import dataclasses
import logging
import os
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, Any, Callable, Dict, List, Optional

from shared.errors import (
    ControlPlaneError,
    DeviceConflict,
    DuplicateStreamId,
    InstallationNotFound,
    InvalidStreamConfig,
    InvalidStreamState,
    OperationSuperseded,
    ProcessCrashed,
    ProcessSpawnFailure,
    ServerUnavailable,
    VerificationTimeout,
)
from shared.os_adapter import OSCommandAdapter, get_os_adapter
from shared.polling import Poller
from stream_manager.capacity import CapacityGate
from stream_manager.command_builder import WorkerCommandBuilder, mask_command
from stream_manager.config import (
    ALLOWED_BITRATES,
    FORMAT_FALLBACK_ORDER,
    MAX_NAME_LENGTH,
    AudioFormat,
    StreamManagerSettings,
)
from stream_manager.diagnostics import (
    DiagnosisCategory,
    DiagnosisResult,
    DiagnosticsEngine,
    format_message,
)
from stream_manager.models import StreamRecord, StreamStatus, generate_stream_id
from stream_manager.registry import StreamRegistry

logger = logging.getLogger(__name__)

# Exits in these categories mean "this encoder/container is unavailable", so the
# next format in the fallback chain is worth a try
FALLBACK_CATEGORIES = (DiagnosisCategory.CODEC, DiagnosisCategory.FORMAT)


@dataclass
class WorkerHandle:
    """A live worker: either spawned by us or adopted from a previous run."""

    stream_id: str
    pid: int
    process: Optional[subprocess.Popen] = None
    log_path: Optional[Path] = None
    log_file: Optional[IO[bytes]] = None
    log_offset: int = 0
    started_at: Optional[datetime] = None

    @property
    def adopted(self) -> bool:
        return self.process is None

    @property
    def exit_code(self) -> Optional[int]:
        return self.process.returncode if self.process is not None else None

    def close(self) -> None:
        if self.log_file is not None and not self.log_file.closed:
            self.log_file.close()


class StreamOrchestrator:
    """
    Starts, stops, restarts and supervises audio workers.

    All public operations take and return plain data (dicts, ids); OS
    handles never leave this class. Crashed workers are marked ``error``
    with a diagnosis and are never restarted automatically.
    """

    def __init__(
        self,
        controller,
        registry: Optional[StreamRegistry] = None,
        config: Optional[StreamManagerSettings] = None,
        diagnostics: Optional[DiagnosticsEngine] = None,
        capacity: Optional[CapacityGate] = None,
        command_builder: Optional[WorkerCommandBuilder] = None,
        os_adapter: Optional[OSCommandAdapter] = None,
        poller: Optional[Poller] = None,
        process_factory: Optional[Callable[..., subprocess.Popen]] = None,
        metrics=None,
    ):
        """
        Initialize orchestrator.

        Args:
            controller: BroadcastServerController (read-only use)
            registry: Stream registry (created from config if not provided)
            config: Stream manager configuration (creates default if not provided)
            diagnostics: Diagnostics engine
            capacity: Capacity gate (defaults to the controller's source limit)
            command_builder: Worker command builder
            os_adapter: OS adapter used to find orphaned workers
            poller: Poller for verification waits
            process_factory: Popen-compatible callable used to spawn workers
            metrics: Optional MetricsExporter
        """
        if config is None:
            from stream_manager.config import get_settings

            config = get_settings()

        self.config = config
        self.controller = controller
        self.registry = registry or StreamRegistry(config.registry_path)
        self.diagnostics = diagnostics or DiagnosticsEngine()
        self.capacity = capacity or CapacityGate(lambda: controller.source_limit)
        self.command_builder = command_builder or WorkerCommandBuilder(config)
        self.os_adapter = os_adapter or get_os_adapter()
        self.poller = poller or Poller()
        self.metrics = metrics
        self._process_factory = process_factory or subprocess.Popen

        self._workers: Dict[str, WorkerHandle] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._in_flight = set()
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._admission_lock = asyncio.Lock()

        logger.info(f"Stream orchestrator initialized with {len(self.registry)} streams")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_for(self, stream_id: str) -> asyncio.Lock:
        return self._locks.setdefault(stream_id, asyncio.Lock())

    def _supersede(self, stream_id: str) -> None:
        event = self._cancel_events.get(stream_id)
        if event is not None and not event.is_set():
            logger.info(f"Superseding in-progress start of {stream_id}")
            event.set()

    def _active_count(self, exclude_id: Optional[str] = None) -> int:
        return sum(
            1 for r in self.registry.records() if r.is_active and r.id != exclude_id
        )

    def _validate(self, name: Any, device_id: Any, bitrate: Any):
        if not isinstance(name, str) or not name.strip():
            raise InvalidStreamConfig("Stream name is required", {"field": "name"})
        name = name.strip()
        if len(name) > MAX_NAME_LENGTH:
            raise InvalidStreamConfig(
                f"Stream name must be at most {MAX_NAME_LENGTH} characters",
                {"field": "name"},
            )
        if not isinstance(device_id, str) or not device_id.strip():
            raise InvalidStreamConfig("Device id is required", {"field": "deviceId"})
        try:
            bitrate = int(bitrate)
        except (TypeError, ValueError):
            raise InvalidStreamConfig(
                f"Bitrate must be one of {list(ALLOWED_BITRATES)}", {"field": "bitrate"}
            )
        if bitrate not in ALLOWED_BITRATES:
            raise InvalidStreamConfig(
                f"Bitrate must be one of {list(ALLOWED_BITRATES)}", {"field": "bitrate"}
            )
        return name, device_id.strip(), bitrate

    def _check_name_unique(self, name: str, exclude_id: Optional[str] = None) -> None:
        for record in self.registry.records():
            if record.id != exclude_id and record.name.lower() == name.lower():
                raise DuplicateStreamId(
                    f"A stream named '{record.name}' already exists",
                    {"streamId": record.id, "name": record.name},
                )

    def _check_device_free(self, device_id: str, exclude_id: Optional[str] = None) -> None:
        for record in self.registry.records():
            if record.id != exclude_id and record.is_active and record.device_id == device_id:
                raise DeviceConflict(
                    f"Device is already used by stream '{record.name}'",
                    {"deviceId": device_id, "streamId": record.id},
                )

    async def _ensure_server_ready(self):
        state = await self.controller.get_status()
        if not state.installed:
            raise InstallationNotFound()
        if not state.running:
            raise ServerUnavailable(
                "Icecast server is not running", {"status": state.state.value}
            )
        return self.controller.get_source_endpoint()

    def _diagnosis_context(self, record: StreamRecord, port: Optional[int] = None) -> Dict:
        return {
            "icecastPort": port or self.controller.state.port,
            "deviceId": record.device_id,
            "streamId": record.id,
        }

    def _is_alive(self, handle: WorkerHandle) -> bool:
        if handle.process is not None:
            return handle.process.poll() is None
        return self.os_adapter.process_exists(handle.pid)

    def _log_path(self, stream_id: str) -> Path:
        return Path(self.config.log_dir) / f"{stream_id}.log"

    def _read_stderr_tail(self, handle: WorkerHandle) -> str:
        if handle.log_path is None:
            return ""
        if handle.log_file is not None and not handle.log_file.closed:
            handle.log_file.flush()
        limit = self.config.stderr_tail_chars
        try:
            with open(handle.log_path, "rb") as f:
                size = f.seek(0, os.SEEK_END)
                # UTF-8 is at most 4 bytes per character
                f.seek(max(handle.log_offset, size - limit * 4))
                data = f.read()
        except OSError as e:
            logger.warning(f"Cannot read worker log {handle.log_path}: {e}")
            return ""
        return data.decode("utf-8", errors="replace")[-limit:]

    def _mark_error(self, record: StreamRecord, diagnosis: DiagnosisResult) -> None:
        record.status = StreamStatus.ERROR
        record.pid = None
        record.started_at = None
        record.last_error = dict(
            diagnosis.to_dict(),
            message=diagnosis.summary(),
            occurredAt=datetime.now().isoformat(),
        )
        self.registry.save()
        logger.error(f"Stream {record.id} failed:\n{format_message(diagnosis)}")

    def _mark_stopped(self, record: StreamRecord) -> None:
        record.status = StreamStatus.STOPPED
        record.pid = None
        record.started_at = None
        record.stopped_at = datetime.now()
        self.registry.save()

    def _find_orphan(self, record: StreamRecord) -> Optional[WorkerHandle]:
        """Find a live worker for ``record`` started by a previous control-plane run."""
        binary = os.path.basename(self.config.ffmpeg_binary)
        for proc in self.os_adapter.list_processes_by_name(binary):
            for arg in proc.cmdline:
                if arg.startswith("icecast://") and arg.endswith(record.mountpoint):
                    started = datetime.fromtimestamp(proc.create_time) if proc.create_time else None
                    return WorkerHandle(stream_id=record.id, pid=proc.pid, started_at=started)
        return None

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    def _spawn(self, record: StreamRecord, endpoint, audio_format: AudioFormat) -> WorkerHandle:
        cmd = self.command_builder.build_command(
            stream_id=record.id,
            device_id=record.device_id,
            bitrate=record.bitrate,
            host=endpoint.host,
            port=endpoint.port,
            source_password=endpoint.password,
            audio_format=audio_format,
            source_user=endpoint.user,
        )

        log_path = self._log_path(record.id)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(log_path, "ab")
        log_file.write(
            f"--- {datetime.now().isoformat()} starting {audio_format.value} worker\n".encode()
        )
        log_file.flush()
        offset = log_file.tell()

        logger.info(f"Starting worker for {record.id}: {mask_command(cmd)}")
        try:
            process = self._process_factory(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=log_file,
            )
        except OSError:
            log_file.close()
            raise

        return WorkerHandle(
            stream_id=record.id,
            pid=process.pid,
            process=process,
            log_path=log_path,
            log_file=log_file,
            log_offset=offset,
            started_at=datetime.now(),
        )

    async def _terminate(self, handle: WorkerHandle) -> None:
        """
        Stop a worker: terminate, wait, then kill.

        A worker that is already gone counts as stopped.

        Raises:
            VerificationTimeout: If the worker survives a kill
        """
        try:
            if not self._is_alive(handle):
                logger.debug(f"Worker {handle.pid} already exited")
                return

            if handle.process is not None:
                handle.process.terminate()
            else:
                self.os_adapter.kill_process(handle.pid)

            result = await self.poller.until(
                lambda: not self._is_alive(handle),
                timeout=self.config.stop_timeout,
                interval=self.config.start_poll_interval,
            )
            if result.satisfied:
                return

            logger.warning(f"Worker {handle.pid} did not terminate gracefully, force killing")
            if handle.process is not None:
                handle.process.kill()
            else:
                self.os_adapter.kill_process(handle.pid, force=True)

            result = await self.poller.until(
                lambda: not self._is_alive(handle),
                timeout=self.config.kill_timeout,
                interval=self.config.start_poll_interval,
            )
            if not result.satisfied:
                raise VerificationTimeout(
                    "stream stop", self.config.stop_timeout + self.config.kill_timeout
                )
        finally:
            handle.close()

    async def _launch(self, record: StreamRecord, endpoint) -> StreamRecord:
        """
        Spawn and verify a worker for a record already persisted as ``starting``.

        The caller holds the record's lock.
        """
        context = self._diagnosis_context(record, endpoint.port)
        started = self.poller.clock()
        start_index = FORMAT_FALLBACK_ORDER.index(record.audio_format)
        formats = FORMAT_FALLBACK_ORDER[start_index:]

        for index, audio_format in enumerate(formats):
            try:
                handle = self._spawn(record, endpoint, audio_format)
            except OSError as e:
                diagnosis = self.diagnostics.diagnose(None, str(e), context)
                self._mark_error(record, diagnosis)
                self._record_start(False, started)
                raise ProcessSpawnFailure(
                    f"Failed to start worker for {record.id}: {e}", diagnosis.to_dict()
                ) from e

            record.pid = handle.pid
            cancel = asyncio.Event()
            self._cancel_events[record.id] = cancel
            try:
                result = await self.poller.until(
                    lambda: not self._is_alive(handle),
                    timeout=self.config.start_grace_period,
                    interval=self.config.start_poll_interval,
                    cancel_event=cancel,
                )
            finally:
                if self._cancel_events.get(record.id) is cancel:
                    del self._cancel_events[record.id]

            if result.cancelled:
                await self._terminate(handle)
                self._mark_stopped(record)
                raise OperationSuperseded(
                    f"Start of {record.id} was superseded by a newer operation",
                    {"streamId": record.id},
                )

            if result.timed_out:
                # Still alive after the grace period
                self._workers[record.id] = handle
                record.status = StreamStatus.RUNNING
                record.audio_format = audio_format
                record.started_at = handle.started_at
                record.last_error = None
                self.registry.save()
                self._record_start(True, started)
                logger.info(f"Stream {record.id} running (PID: {handle.pid})")
                return record

            exit_code = handle.exit_code
            stderr = self._read_stderr_tail(handle)
            handle.close()
            diagnosis = self.diagnostics.diagnose(exit_code, stderr, context)

            if diagnosis.category in FALLBACK_CATEGORIES and index + 1 < len(formats):
                logger.warning(
                    f"{audio_format.value} worker for {record.id} failed "
                    f"({diagnosis.category.value}), trying {formats[index + 1].value}"
                )
                continue

            self._mark_error(record, diagnosis)
            self._record_start(False, started)
            raise ProcessCrashed(
                f"Worker for {record.id} exited during startup: {diagnosis.title}",
                exit_code=diagnosis.exit_code,
                stderr=stderr,
                diagnosis=diagnosis.to_dict(),
            )

    def _record_start(self, success: bool, started: float) -> None:
        if self.metrics is not None:
            self.metrics.record_stream_start(success, self.poller.clock() - started)

    async def _stop_locked(self, record: StreamRecord) -> StreamRecord:
        handle = self._workers.pop(record.id, None)
        if handle is None and record.is_active:
            handle = self._find_orphan(record)

        if handle is None:
            if record.status != StreamStatus.STOPPED:
                self._mark_stopped(record)
            return record

        record.status = StreamStatus.STOPPING
        logger.info(f"Stopping stream {record.id} (PID: {handle.pid})")
        try:
            await self._terminate(handle)
        except VerificationTimeout as e:
            self._workers[record.id] = handle
            record.status = StreamStatus.ERROR
            record.last_error = {
                "category": "process_crash",
                "severity": "critical",
                "title": "Worker Did Not Stop",
                "message": e.message,
                "occurredAt": datetime.now().isoformat(),
            }
            self.registry.save()
            raise

        self._mark_stopped(record)
        logger.info(f"Stream {record.id} stopped")
        return record

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start_stream(self, name: str, device_id: str, bitrate: int = 192) -> Dict[str, Any]:
        """
        Create and start a new stream.

        Args:
            name: Display name (unique, case-insensitive)
            device_id: Capture device
            bitrate: Output bitrate in kbps

        Returns:
            The stream as a dictionary, status ``running``

        Raises:
            InvalidStreamConfig: Bad input
            DuplicateStreamId: Name or id already used
            DeviceConflict: Device already feeding an active stream
            InstallationNotFound: Icecast not installed
            ServerUnavailable: Icecast not running
            CapacityExceeded: Source limit reached (or unknown)
            ProcessSpawnFailure: Worker could not be spawned (record left in error)
            ProcessCrashed: Worker exited during startup (record left in error)
            OperationSuperseded: A stop/delete arrived during verification
        """
        name, device_id, bitrate = self._validate(name, device_id, bitrate)

        async with self._admission_lock:
            self._check_name_unique(name)
            stream_id = generate_stream_id(name)
            if stream_id in self.registry:
                raise DuplicateStreamId(
                    f"Stream id already exists: {stream_id}", {"streamId": stream_id}
                )
            self._check_device_free(device_id)
            endpoint = await self._ensure_server_ready()
            self.capacity.require_admission(self._active_count())

            record = StreamRecord(
                id=stream_id,
                name=name,
                device_id=device_id,
                bitrate=bitrate,
                status=StreamStatus.STARTING,
                audio_format=self.config.audio_format,
            )
            lock = self._lock_for(stream_id)
            await lock.acquire()
            try:
                self.registry.add(record)
            except ControlPlaneError:
                lock.release()
                raise

        self._in_flight.add(stream_id)
        try:
            record = await self._launch(record, endpoint)
        finally:
            self._in_flight.discard(stream_id)
            lock.release()

        return record.to_dict()

    async def stop_stream(self, stream_id: str) -> Dict[str, Any]:
        """
        Stop a stream. Idempotent; a worker that already exited counts as stopped.

        Raises:
            StreamNotFound: Unknown id
            VerificationTimeout: Worker survived a kill
        """
        self.registry.require(stream_id)
        self._supersede(stream_id)

        async with self._lock_for(stream_id):
            record = self.registry.require(stream_id)
            self._in_flight.add(stream_id)
            try:
                record = await self._stop_locked(record)
            finally:
                self._in_flight.discard(stream_id)

        return record.to_dict()

    async def restart_stream(self, stream_id: str) -> Dict[str, Any]:
        """
        Stop (if needed) then start with the persisted configuration.

        On a stopped stream this is the same as starting it. The id is kept.

        Raises:
            StreamNotFound, DeviceConflict, InstallationNotFound,
            ServerUnavailable, CapacityExceeded, ProcessSpawnFailure,
            ProcessCrashed, OperationSuperseded, VerificationTimeout
        """
        self.registry.require(stream_id)
        self._supersede(stream_id)

        async with self._lock_for(stream_id):
            record = self.registry.require(stream_id)
            self._in_flight.add(stream_id)
            try:
                # A stopped or failed record without a worker keeps its status
                # until admission passes
                if record.id in self._workers or record.is_active:
                    await self._stop_locked(record)

                async with self._admission_lock:
                    self._check_device_free(record.device_id, exclude_id=stream_id)
                    endpoint = await self._ensure_server_ready()
                    self.capacity.require_admission(self._active_count(exclude_id=stream_id))
                    record.status = StreamStatus.STARTING
                    self.registry.save()

                record = await self._launch(record, endpoint)
            finally:
                self._in_flight.discard(stream_id)

        return record.to_dict()

    async def update_stream(
        self,
        stream_id: str,
        name: Optional[str] = None,
        device_id: Optional[str] = None,
        bitrate: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Edit a stopped or failed stream.

        A name change regenerates the id (and therefore the mountpoint);
        the result carries ``previousId`` so callers can follow it. Worker
        logs under the old id are left where they are.

        Raises:
            StreamNotFound: Unknown id
            InvalidStreamState: Stream is starting, running or stopping
            InvalidStreamConfig: Bad input
            DuplicateStreamId: New name already used
        """
        async with self._lock_for(stream_id):
            record = self.registry.require(stream_id)
            if record.status not in (StreamStatus.STOPPED, StreamStatus.ERROR) or (
                stream_id in self._workers
            ):
                raise InvalidStreamState(
                    f"Stream must be stopped before it can be edited (status: {record.status.value})",
                    {"streamId": stream_id, "status": record.status.value},
                )

            new_name, new_device, new_bitrate = self._validate(
                record.name if name is None else name,
                record.device_id if device_id is None else device_id,
                record.bitrate if bitrate is None else bitrate,
            )

            async with self._admission_lock:
                new_id = stream_id
                if new_name != record.name:
                    self._check_name_unique(new_name, exclude_id=stream_id)
                    new_id = generate_stream_id(new_name)

                updated = dataclasses.replace(
                    record,
                    id=new_id,
                    name=new_name,
                    device_id=new_device,
                    bitrate=new_bitrate,
                )
                self.registry.replace(stream_id, updated)

            if new_id != stream_id:
                self._locks.pop(stream_id, None)

        if new_id != stream_id:
            logger.info(f"Stream {stream_id} renamed to {new_id}")
        else:
            logger.info(f"Stream {stream_id} updated")

        return dict(updated.to_dict(), previousId=stream_id)

    async def delete_stream(self, stream_id: str) -> Dict[str, Any]:
        """
        Stop (if running) and permanently remove a stream.

        Raises:
            StreamNotFound: Unknown id
            VerificationTimeout: Worker survived a kill (record kept)
        """
        self.registry.require(stream_id)
        self._supersede(stream_id)

        async with self._lock_for(stream_id):
            record = self.registry.require(stream_id)
            self._in_flight.add(stream_id)
            try:
                await self._stop_locked(record)
                self.registry.remove(stream_id)
            finally:
                self._in_flight.discard(stream_id)
            self._locks.pop(stream_id, None)

        logger.info(f"Stream {stream_id} deleted")
        return {"message": "Stream deleted successfully", "streamId": stream_id}

    async def _stop_one(self, record: StreamRecord) -> Dict[str, Any]:
        result = {"id": record.id, "name": record.name, "success": True, "skipped": False, "error": None}
        if not record.is_active and record.id not in self._workers:
            result["skipped"] = True
            return result
        try:
            await self.stop_stream(record.id)
        except ControlPlaneError as e:
            result.update(success=False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected error stopping {record.id}: {e}", exc_info=True)
            result.update(success=False, error=str(e))
        return result

    async def stop_all_streams(self) -> Dict[str, Any]:
        """
        Stop every active stream; stopped and failed streams are skipped.

        Each stream's outcome is independent.

        Returns:
            Dictionary with counts and per-stream results
        """
        results = await asyncio.gather(*(self._stop_one(r) for r in self.registry.records()))

        stopped = sum(1 for r in results if r["success"] and not r["skipped"])
        skipped = sum(1 for r in results if r["skipped"])
        failed = sum(1 for r in results if not r["success"])

        return {
            "success": failed == 0,
            "message": f"Stopped {stopped} streams" + (f", {failed} failed" if failed else ""),
            "stopped": stopped,
            "skipped": skipped,
            "failed": failed,
            "results": list(results),
        }

    async def start_all_stopped_streams(self) -> Dict[str, Any]:
        """
        Start every stopped or failed stream with its persisted configuration.

        Streams are started one at a time so capacity counts stay exact;
        each outcome is independent.

        Returns:
            Dictionary with counts and per-stream results
        """
        candidates = [
            r for r in self.registry.records()
            if r.status in (StreamStatus.STOPPED, StreamStatus.ERROR)
        ]
        if not candidates:
            return {
                "success": True,
                "message": "No stopped streams to start",
                "started": 0,
                "failed": 0,
                "results": [],
            }

        results = []
        for record in candidates:
            entry = {"id": record.id, "name": record.name, "success": True, "error": None}
            try:
                await self.restart_stream(record.id)
            except ControlPlaneError as e:
                entry.update(success=False, error=e.message)
            except Exception as e:
                logger.error(f"Unexpected error starting {record.id}: {e}", exc_info=True)
                entry.update(success=False, error=str(e))
            results.append(entry)

        started = sum(1 for r in results if r["success"])
        failed = len(results) - started
        return {
            "success": failed == 0,
            "message": f"Started {started} of {len(results)} streams",
            "started": started,
            "failed": failed,
            "results": results,
        }

    def get_stream(self, stream_id: str) -> Dict[str, Any]:
        """
        Raises:
            StreamNotFound: Unknown id
        """
        return self.registry.require(stream_id).to_dict()

    def get_stats(self) -> Dict[str, Any]:
        """
        Full registry plus summary counts.

        Returns:
            Dictionary with total, running, errors and streams
        """
        records = self.registry.records()
        return {
            "total": len(records),
            "running": sum(1 for r in records if r.status == StreamStatus.RUNNING),
            "errors": sum(1 for r in records if r.status == StreamStatus.ERROR),
            "streams": [r.to_dict() for r in records],
        }

    def reorder_streams(self, stream_ids: List[str]) -> Dict[str, Any]:
        """
        Persist display order.

        Raises:
            InvalidStreamConfig: If stream_ids is not a list of strings
        """
        if not isinstance(stream_ids, list) or not all(isinstance(s, str) for s in stream_ids):
            raise InvalidStreamConfig("streamIds must be an array of stream ids")
        order = self.registry.reorder(stream_ids)
        return {"message": "Stream order updated", "streamIds": order}

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def reconcile(self) -> List[Dict[str, Any]]:
        """
        Compare recorded status with live workers and correct divergence.

        Ids with an operation in progress are skipped. A running stream
        whose worker exited is marked ``error`` with a diagnosis; a running
        stream with no known worker is adopted if a matching ffmpeg process
        exists, otherwise marked ``error``. Nothing is restarted.

        Returns:
            List of changes ({id, change, status})
        """
        changes = []
        for record in self.registry.records():
            lock = self._locks.get(record.id)
            if record.id in self._in_flight or (lock is not None and lock.locked()):
                continue

            if record.status == StreamStatus.STOPPING and record.id not in self._workers:
                self._mark_stopped(record)
                changes.append({"id": record.id, "change": "stopped", "status": record.status.value})
                continue

            if not record.is_active:
                continue

            handle = self._workers.get(record.id)
            if handle is None:
                handle = self._find_orphan(record)
                if handle is not None:
                    self._workers[record.id] = handle
                    record.pid = handle.pid
                    record.started_at = handle.started_at
                    if record.status != StreamStatus.RUNNING:
                        record.status = StreamStatus.RUNNING
                        self.registry.save()
                    logger.info(f"Adopted running worker for {record.id} (PID: {handle.pid})")
                    changes.append({"id": record.id, "change": "adopted", "status": record.status.value})
                else:
                    diagnosis = self.diagnostics.diagnose_missing_process(
                        self._diagnosis_context(record)
                    )
                    self._mark_error(record, diagnosis)
                    self._record_crash(diagnosis)
                    changes.append({"id": record.id, "change": "lost", "status": record.status.value})
                continue

            if self._is_alive(handle):
                record.pid = handle.pid
                continue

            self._workers.pop(record.id, None)
            stderr = self._read_stderr_tail(handle)
            handle.close()
            diagnosis = self.diagnostics.diagnose(
                handle.exit_code, stderr, self._diagnosis_context(record)
            )
            self._mark_error(record, diagnosis)
            self._record_crash(diagnosis)
            changes.append({"id": record.id, "change": "crashed", "status": record.status.value})

        return changes

    def _record_crash(self, diagnosis: DiagnosisResult) -> None:
        if self.metrics is not None:
            self.metrics.record_stream_crash(diagnosis.category.value)

    async def shutdown(self) -> None:
        """Stop workers spawned by this instance (if configured) and release handles."""
        for stream_id in list(self._cancel_events):
            self._supersede(stream_id)

        if not self.config.stop_streams_on_shutdown:
            for handle in self._workers.values():
                handle.close()
            logger.info("Leaving workers running for adoption on next start")
            return

        for stream_id in list(self._workers):
            try:
                await self.stop_stream(stream_id)
            except ControlPlaneError as e:
                logger.error(f"Failed to stop {stream_id} during shutdown: {e.message}")

        logger.info("Stream orchestrator shut down")
