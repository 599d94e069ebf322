"""
Pytest configuration and fixtures for stream manager tests.

Workers are fake processes and the broadcast server is a fake controller,
so no ffmpeg or Icecast is needed and no wall-clock time passes.
"""

import asyncio
import itertools
import tempfile
from pathlib import Path
from typing import Dict, Generator, List, Optional, Sequence
from unittest.mock import AsyncMock

import pytest

from icecast_manager.controller import BroadcastServerState, ServerState, SourceEndpoint
from shared.os_adapter import OSCommandAdapter, ProcessEntry, ServiceStatus
from shared.polling import Poller
from stream_manager.config import StreamManagerSettings
from stream_manager.orchestrator import StreamOrchestrator
from stream_manager.registry import StreamRegistry

_pids = itertools.count(4000)


class ManualClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FakeProcess:
    """Popen stand-in whose lifetime is scripted in poll() calls."""

    def __init__(
        self,
        exit_after: Optional[int] = None,
        exit_code: int = 1,
        stderr_text: str = "",
        survive_terminate: bool = False,
        survive_kill: bool = False,
    ):
        self.pid = next(_pids)
        self.returncode: Optional[int] = None
        self.exit_after = exit_after
        self.exit_code = exit_code
        self.stderr_text = stderr_text
        self.survive_terminate = survive_terminate
        self.survive_kill = survive_kill
        self.terminate_calls = 0
        self.kill_calls = 0

    def poll(self) -> Optional[int]:
        if self.returncode is None and self.exit_after is not None:
            if self.exit_after <= 0:
                self.returncode = self.exit_code
            else:
                self.exit_after -= 1
        return self.returncode

    def crash(self, exit_code: int = 1) -> None:
        self.returncode = exit_code

    def terminate(self) -> None:
        self.terminate_calls += 1
        if not self.survive_terminate and self.returncode is None:
            self.returncode = -15

    def kill(self) -> None:
        self.kill_calls += 1
        if not self.survive_kill and self.returncode is None:
            self.returncode = -9


class FakeProcessFactory:
    """Popen-compatible factory handing out scripted FakeProcesses."""

    def __init__(self):
        self.scripts: List[Dict] = []
        self.commands: List[List[str]] = []
        self.processes: List[FakeProcess] = []

    def queue(self, **script) -> None:
        """Script the next spawned process (FakeProcess kwargs, or raise_error)."""
        self.scripts.append(script)

    def __call__(self, cmd, stdin=None, stdout=None, stderr=None):
        self.commands.append(list(cmd))
        script = self.scripts.pop(0) if self.scripts else {}
        error = script.pop("raise_error", None)
        if error is not None:
            raise error
        process = FakeProcess(**script)
        if process.stderr_text and stderr is not None:
            stderr.write(process.stderr_text.encode())
            stderr.flush()
        self.processes.append(process)
        return process

    @property
    def last(self) -> FakeProcess:
        return self.processes[-1]


class FakeOSAdapter(OSCommandAdapter):
    """In-memory process table."""

    def __init__(self):
        self.processes: List[ProcessEntry] = []
        self.killed: List[int] = []

    def add_process(self, name: str, cmdline: Sequence[str], create_time: float = 1000.0) -> ProcessEntry:
        entry = ProcessEntry(pid=next(_pids), name=name, cmdline=list(cmdline), create_time=create_time)
        self.processes.append(entry)
        return entry

    def list_processes_by_name(self, name: str) -> List[ProcessEntry]:
        return [p for p in self.processes if p.name == name]

    def is_port_open(self, host: str, port: int, timeout: float = 1.0) -> bool:
        return True

    def query_service_status(self, service_name: str) -> ServiceStatus:
        return ServiceStatus.UNKNOWN

    def kill_process(self, pid: int, force: bool = False) -> bool:
        self.killed.append(pid)
        self.processes = [p for p in self.processes if p.pid != pid]
        return True

    def process_exists(self, pid: int) -> bool:
        return any(p.pid == pid for p in self.processes)

    def launch_process(self, args, cwd=None) -> int:
        raise OSError("launch not supported in tests")


class FakeController:
    """Read-only view of a broadcast server with a settable state."""

    def __init__(self, state: BroadcastServerState):
        self._state = state
        self.get_status = AsyncMock(side_effect=lambda: self._state)

    @property
    def state(self) -> BroadcastServerState:
        return self._state

    @property
    def source_limit(self) -> Optional[int]:
        return self._state.source_limit if self._state.installed else None

    def get_source_endpoint(self) -> SourceEndpoint:
        return SourceEndpoint(host="127.0.0.1", port=self._state.port, password="s3cret")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def stream_config(temp_dir: Path) -> StreamManagerSettings:
    """Create a test configuration."""
    return StreamManagerSettings(
        ffmpeg_binary="ffmpeg",
        registry_path=str(temp_dir / "streams.json"),
        log_dir=str(temp_dir / "logs"),
        input_format="pulse",
        start_grace_period=2.0,
        start_poll_interval=0.25,
        stop_timeout=5.0,
        kill_timeout=2.0,
    )


@pytest.fixture
def registry(stream_config: StreamManagerSettings) -> StreamRegistry:
    """Create an empty registry in the temp directory."""
    return StreamRegistry(stream_config.registry_path)


@pytest.fixture
def server_state() -> BroadcastServerState:
    """A running Icecast with room for two sources."""
    return BroadcastServerState(
        state=ServerState.RUNNING,
        installed=True,
        running=True,
        process_found=True,
        port_open=True,
        port=8000,
        host="127.0.0.1",
        source_limit=2,
    )


@pytest.fixture
def controller(server_state: BroadcastServerState) -> FakeController:
    """Create a fake broadcast server controller."""
    return FakeController(server_state)


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def poller(clock: ManualClock) -> Poller:
    """Create a poller driven by the manual clock."""
    return Poller(clock=clock, sleep=clock.sleep)


@pytest.fixture
def process_factory() -> FakeProcessFactory:
    """Create a fake Popen factory."""
    return FakeProcessFactory()


@pytest.fixture
def os_adapter() -> FakeOSAdapter:
    """Create a fake OS adapter."""
    return FakeOSAdapter()


@pytest.fixture
def orchestrator(
    controller, registry, stream_config, os_adapter, poller, process_factory
) -> StreamOrchestrator:
    """Create an orchestrator wired to fakes."""
    return StreamOrchestrator(
        controller,
        registry=registry,
        config=stream_config,
        os_adapter=os_adapter,
        poller=poller,
        process_factory=process_factory,
    )
