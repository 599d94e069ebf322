"""OS-command adapter.

The orchestration code never shells out or touches psutil directly; it
depends on the narrow OSCommandAdapter interface below. A platform-specific
implementation is chosen once at startup by get_os_adapter(), and tests
substitute a fake.
"""

import logging
import os
import socket
import subprocess
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)


class ServiceStatus(str, Enum):
    """Status reported by the OS service manager."""

    RUNNING = "running"
    STOPPED = "stopped"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


@dataclass
class ProcessEntry:
    """One row of a process listing."""

    pid: int
    name: str
    cmdline: List[str] = field(default_factory=list)
    create_time: Optional[float] = None


class OSCommandAdapter(ABC):
    """Process, port and service inspection used by the controllers."""

    @abstractmethod
    def list_processes_by_name(self, name: str) -> List[ProcessEntry]:
        """Return processes whose executable name matches ``name``.

        Matching ignores case and a trailing ``.exe``.
        """

    @abstractmethod
    def is_port_open(self, host: str, port: int, timeout: float = 1.0) -> bool:
        """Return True if a TCP connection to host:port succeeds."""

    @abstractmethod
    def query_service_status(self, service_name: str) -> ServiceStatus:
        """Ask the OS service manager about ``service_name``."""

    @abstractmethod
    def kill_process(self, pid: int, force: bool = False) -> bool:
        """Send a termination request to ``pid``.

        Returns:
            True if the signal was delivered or the process is already gone,
            False if the OS refused (e.g. access denied)
        """

    @abstractmethod
    def process_exists(self, pid: int) -> bool:
        """Return True if ``pid`` refers to a live, non-zombie process."""

    @abstractmethod
    def launch_process(self, args: Sequence[str], cwd: Optional[str] = None) -> int:
        """Start a detached process and return its pid.

        Raises:
            OSError: If the executable cannot be started
        """


def _normalize_name(name: str) -> str:
    name = os.path.basename(name).lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


class PsutilOSAdapter(OSCommandAdapter):
    """psutil/socket implementation shared by all platforms.

    Processes started through launch_process stay children of this process
    until they exit, so their Popen handles are kept and polled; an exited
    child is reaped before any listing or liveness check looks at it.
    """

    def __init__(self):
        self._children: Dict[int, subprocess.Popen] = {}

    def _reap_children(self) -> None:
        for pid, child in list(self._children.items()):
            if child.poll() is not None:
                logger.debug(f"Reaped child {pid} (exit code {child.returncode})")
                del self._children[pid]

    def list_processes_by_name(self, name: str) -> List[ProcessEntry]:
        self._reap_children()
        wanted = _normalize_name(name)
        matches = []

        for proc in psutil.process_iter(["pid", "name", "cmdline", "create_time", "status"]):
            info = proc.info
            if info.get("status") == psutil.STATUS_ZOMBIE:
                continue
            proc_name = info.get("name") or ""
            cmdline = info.get("cmdline") or []

            candidates = [proc_name]
            if cmdline:
                candidates.append(cmdline[0])

            if any(_normalize_name(c) == wanted for c in candidates if c):
                matches.append(
                    ProcessEntry(
                        pid=info["pid"],
                        name=proc_name,
                        cmdline=list(cmdline),
                        create_time=info.get("create_time"),
                    )
                )

        return matches

    def is_port_open(self, host: str, port: int, timeout: float = 1.0) -> bool:
        try:
            with socket.create_connection((host, port), timeout=timeout):
                return True
        except OSError:
            return False

    def query_service_status(self, service_name: str) -> ServiceStatus:
        return ServiceStatus.UNKNOWN

    def kill_process(self, pid: int, force: bool = False) -> bool:
        try:
            proc = psutil.Process(pid)
            if force:
                logger.warning(f"Force killing process {pid}")
                proc.kill()
            else:
                logger.debug(f"Terminating process {pid}")
                proc.terminate()
            return True
        except psutil.NoSuchProcess:
            logger.debug(f"Process {pid} already gone")
            return True
        except psutil.AccessDenied:
            logger.error(f"Access denied while signalling process {pid}")
            return False

    def process_exists(self, pid: int) -> bool:
        self._reap_children()
        try:
            proc = psutil.Process(pid)
            return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def launch_process(self, args: Sequence[str], cwd: Optional[str] = None) -> int:
        logger.info(f"Launching: {' '.join(args)}")
        process = subprocess.Popen(
            list(args),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            **self._detach_kwargs(),
        )
        self._children[process.pid] = process
        return process.pid

    def _detach_kwargs(self) -> dict:
        return {"start_new_session": True}


class PosixOSAdapter(PsutilOSAdapter):
    """Linux/macOS adapter; services are queried through systemd."""

    def query_service_status(self, service_name: str) -> ServiceStatus:
        try:
            result = subprocess.run(
                ["systemctl", "is-active", service_name],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"systemctl unavailable: {e}")
            return ServiceStatus.UNKNOWN

        state = result.stdout.strip()
        if state == "active":
            return ServiceStatus.RUNNING
        if state in ("inactive", "failed", "deactivating"):
            return ServiceStatus.STOPPED
        if "could not be found" in result.stderr or state == "unknown":
            return ServiceStatus.NOT_FOUND
        return ServiceStatus.UNKNOWN


class WindowsOSAdapter(PsutilOSAdapter):
    """Windows adapter; services are queried through the SCM via psutil."""

    def query_service_status(self, service_name: str) -> ServiceStatus:
        try:
            service = psutil.win_service_get(service_name)
            status = service.status()
        except psutil.NoSuchProcess:
            return ServiceStatus.NOT_FOUND
        except (AttributeError, OSError) as e:
            logger.debug(f"Service query failed for {service_name}: {e}")
            return ServiceStatus.UNKNOWN

        if status == "running":
            return ServiceStatus.RUNNING
        if status in ("stopped", "stop_pending", "paused"):
            return ServiceStatus.STOPPED
        return ServiceStatus.UNKNOWN

    def _detach_kwargs(self) -> dict:
        flags = getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0)
        flags |= getattr(subprocess, "DETACHED_PROCESS", 0)
        return {"creationflags": flags}


def get_os_adapter(platform: Optional[str] = None) -> OSCommandAdapter:
    """
    Select the adapter for the running platform.

    Args:
        platform: Override for sys.platform (used by tests)

    Returns:
        OSCommandAdapter: Platform-specific implementation
    """
    platform = platform or sys.platform
    if platform.startswith("win"):
        return WindowsOSAdapter()
    return PosixOSAdapter()
