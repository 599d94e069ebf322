"""
Pytest configuration and fixtures for Icecast manager tests.

The Icecast installation is a directory tree under a temp dir and the OS is
an in-memory fake, so no Icecast binary is needed.
"""

import asyncio
import itertools
import tempfile
from pathlib import Path
from typing import Generator, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from icecast_manager.admin_probe import AdminStats, MountInfo
from icecast_manager.config import IcecastSettings
from icecast_manager.controller import BroadcastServerController
from shared.os_adapter import OSCommandAdapter, ProcessEntry, ServiceStatus
from shared.polling import Poller

_pids = itertools.count(7000)


def render_icecast_xml(
    hostname: Optional[str] = "192.168.1.10",
    port: Optional[str] = "8100",
    bind_address: Optional[str] = None,
    sources: Optional[str] = "3",
    source_password: Optional[str] = "s0urce-pw",
    relay_password: Optional[str] = None,
    admin_user: Optional[str] = "operator",
    admin_password: Optional[str] = "adm1n-pw",
    logdir: Optional[str] = "logs",
    webroot: Optional[str] = "web",
    adminroot: Optional[str] = "admin",
) -> str:
    """Render an icecast.xml; a None value omits the element."""

    def element(tag, value):
        return f"<{tag}>{value}</{tag}>" if value is not None else ""

    return (
        "<icecast>"
        f"{element('hostname', hostname)}"
        f"<limits>{element('clients', '100')}{element('sources', sources)}</limits>"
        "<authentication>"
        f"{element('source-password', source_password)}"
        f"{element('relay-password', relay_password)}"
        f"{element('admin-user', admin_user)}"
        f"{element('admin-password', admin_password)}"
        "</authentication>"
        f"<listen-socket>{element('port', port)}{element('bind-address', bind_address)}</listen-socket>"
        "<paths>"
        f"{element('logdir', logdir)}{element('webroot', webroot)}{element('adminroot', adminroot)}"
        "</paths>"
        "</icecast>"
    )


class FakeIcecastOS(OSCommandAdapter):
    """In-memory process table and port state for one Icecast server."""

    def __init__(self):
        self.processes: List[ProcessEntry] = []
        self.port_open = False
        self.launched: List[Tuple[List[str], Optional[str]]] = []
        self.killed: List[Tuple[int, bool]] = []
        self.launch_error: Optional[OSError] = None
        self.binds_port = True
        self.ignore_terminate = False
        self.unkillable = False
        self.service_status = ServiceStatus.UNKNOWN

    def start_server(self) -> ProcessEntry:
        """Simulate an Icecast process that is up and listening."""
        entry = ProcessEntry(pid=next(_pids), name="icecast", cmdline=["icecast"], create_time=1000.0)
        self.processes.append(entry)
        self.port_open = self.binds_port
        return entry

    def list_processes_by_name(self, name: str) -> List[ProcessEntry]:
        return [p for p in self.processes if p.name == name]

    def is_port_open(self, host: str, port: int, timeout: float = 1.0) -> bool:
        return self.port_open

    def query_service_status(self, service_name: str) -> ServiceStatus:
        return self.service_status

    def kill_process(self, pid: int, force: bool = False) -> bool:
        self.killed.append((pid, force))
        if self.unkillable or (self.ignore_terminate and not force):
            return True
        self.processes = [p for p in self.processes if p.pid != pid]
        if not self.processes:
            self.port_open = False
        return True

    def process_exists(self, pid: int) -> bool:
        return any(p.pid == pid for p in self.processes)

    def launch_process(self, args, cwd=None) -> int:
        self.launched.append((list(args), cwd))
        if self.launch_error is not None:
            raise self.launch_error
        return self.start_server().pid


class ManualClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def no_system_icecast(monkeypatch):
    """Keep a real Icecast on the test machine out of detection."""
    monkeypatch.setattr("icecast_manager.config.POSIX_CANDIDATE_PATHS", [])
    monkeypatch.setattr("icecast_manager.config.WINDOWS_CANDIDATE_PATHS", [])
    monkeypatch.setattr("icecast_manager.controller.POSIX_SYSTEM_CONFIG_PATHS", [])


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def icecast_xml():
    """Factory rendering icecast.xml text."""
    return render_icecast_xml


@pytest.fixture
def install_root(temp_dir: Path) -> Path:
    """A complete Icecast installation: binary, config, logs, web roots."""
    root = temp_dir / "icecast"
    (root / "bin").mkdir(parents=True)
    (root / "bin" / "icecast").write_text("#!/bin/sh\n")
    for name in ("logs", "web", "admin"):
        (root / name).mkdir()
    (root / "logs" / "access.log").write_text("")
    (root / "logs" / "error.log").write_text("")
    (root / "icecast.xml").write_text(render_icecast_xml())
    return root


@pytest.fixture
def settings(install_root: Path) -> IcecastSettings:
    """Create test settings pointing at the temp installation."""
    return IcecastSettings(
        _env_file=None,
        install_path=str(install_root),
        start_timeout=10.0,
        stop_timeout=10.0,
        kill_timeout=3.0,
        restart_timeout=20.0,
        poll_interval=0.5,
    )


@pytest.fixture
def fake_os() -> FakeIcecastOS:
    """Create a fake OS with no Icecast running."""
    return FakeIcecastOS()


@pytest.fixture
def admin_probe():
    """Admin probe returning fixed statistics."""
    probe = AsyncMock()
    probe.fetch_stats.return_value = AdminStats(
        version="Icecast 2.4.4", sources=1, listeners=3, clients=4
    )
    probe.fetch_mountpoints.return_value = [
        MountInfo(mount="/lobby_1", listeners=2, connected_seconds=30, content_type="audio/mpeg")
    ]
    return probe


@pytest.fixture
def clock() -> ManualClock:
    """Create a manual clock."""
    return ManualClock()


@pytest.fixture
def controller(settings, fake_os, admin_probe, clock) -> BroadcastServerController:
    """Create a controller wired to fakes."""
    return BroadcastServerController(
        settings=settings,
        os_adapter=fake_os,
        admin_probe=admin_probe,
        poller=Poller(clock=clock, sleep=clock.sleep),
        platform="linux",
    )
