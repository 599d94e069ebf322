"""
Icecast broadcast server controller.

Detects the installation, starts/stops/restarts the server binary, and
merges OS evidence (process list, port probe, admin HTTP probe) into a
single BroadcastServerState. Only this controller issues lifecycle commands
against the server; everything else reads its state.
"""

import asyncio
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from icecast_manager.admin_probe import AdminProbe
from icecast_manager.config import POSIX_SYSTEM_CONFIG_PATHS, IcecastSettings
from icecast_manager.config_parser import (
    ConfigValidation,
    IcecastServerConfig,
    find_security_issues,
    parse_icecast_config,
    validate_config,
)
from shared.errors import (
    ConfigInvalid,
    InstallationNotFound,
    PortConflict,
    ProcessSpawnFailure,
    VerificationTimeout,
)
from shared.os_adapter import OSCommandAdapter, ProcessEntry, ServiceStatus, get_os_adapter
from shared.polling import Poller

logger = logging.getLogger(__name__)


class ServerState(str, Enum):
    """Broadcast server lifecycle states."""

    NOT_INSTALLED = "not_installed"
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class HealthLevel(str, Enum):
    """Overall server health."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class InstallationInfo:
    """Result of searching for an Icecast installation."""

    installed: bool
    path: Optional[str] = None
    executable_path: Optional[str] = None
    config_path: Optional[str] = None
    checks: Dict[str, bool] = field(default_factory=dict)
    searched: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installed": self.installed,
            "installationPath": self.path,
            "executablePath": self.executable_path,
            "configPath": self.config_path,
            "files": dict(self.checks),
            "searchedPaths": list(self.searched),
        }


@dataclass
class SourceEndpoint:
    """Where workers push their audio."""

    host: str
    port: int
    password: str
    user: str = "source"


@dataclass
class BroadcastServerState:
    """Snapshot of everything known about the broadcast server."""

    state: ServerState = ServerState.NOT_INSTALLED
    installed: bool = False
    installation_path: Optional[str] = None
    files: Dict[str, bool] = field(default_factory=dict)
    running: bool = False
    process_found: bool = False
    port_open: bool = False
    port_conflict: bool = False
    pid: Optional[int] = None
    port: int = 8000
    host: str = "localhost"
    source_limit: Optional[int] = None
    config_path: Optional[str] = None
    config_valid: bool = False
    security_findings: List[Dict[str, str]] = field(default_factory=list)
    health: HealthLevel = HealthLevel.CRITICAL
    uptime_seconds: Optional[float] = None
    version: Optional[str] = None
    sources: Optional[int] = None
    listeners: Optional[int] = None
    admin_reachable: bool = False
    last_error: Optional[str] = None
    checked_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.state.value,
            "installed": self.installed,
            "installationPath": self.installation_path,
            "files": dict(self.files),
            "running": self.running,
            "processFound": self.process_found,
            "portOpen": self.port_open,
            "portConflict": self.port_conflict,
            "pid": self.pid,
            "port": self.port,
            "host": self.host,
            "sourceLimit": self.source_limit,
            "configPath": self.config_path,
            "configValid": self.config_valid,
            "securityFindings": list(self.security_findings),
            "health": self.health.value,
            "uptime": self.uptime_seconds,
            "version": self.version,
            "sources": self.sources,
            "listeners": self.listeners,
            "adminReachable": self.admin_reachable,
            "lastError": self.last_error,
            "checkedAt": self.checked_at.isoformat() if self.checked_at else None,
        }


class BroadcastServerController:
    """
    Supervises the Icecast server process.

    Lifecycle commands are serialized by a lock and always verified: a start
    only succeeds once process and port agree; a stop only succeeds once no
    server process remains.
    """

    def __init__(
        self,
        settings: Optional[IcecastSettings] = None,
        os_adapter: Optional[OSCommandAdapter] = None,
        admin_probe: Optional[AdminProbe] = None,
        poller: Optional[Poller] = None,
        platform: Optional[str] = None,
    ):
        """
        Initialize controller.

        Args:
            settings: Icecast configuration (creates default if not provided)
            os_adapter: OS-command adapter (platform default if not provided)
            admin_probe: Admin HTTP probe (creates default if not provided)
            poller: Poller used for verification waits
            platform: Override for sys.platform
        """
        if settings is None:
            from icecast_manager.config import get_settings

            settings = get_settings()

        self.settings = settings
        self.platform = platform or sys.platform
        self.os_adapter = os_adapter or get_os_adapter(self.platform)
        self.admin_probe = admin_probe or AdminProbe(timeout=settings.admin_timeout)
        self.poller = poller or Poller()

        self._lock = asyncio.Lock()
        self._operation: Optional[ServerState] = None
        self._expect_running = False
        self._server_config: Optional[IcecastServerConfig] = None
        self._state = BroadcastServerState(port=settings.default_port)

        logger.info("Broadcast server controller initialized")

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------

    @property
    def _is_windows(self) -> bool:
        return self.platform.startswith("win")

    def _executable_filename(self) -> str:
        name = self.settings.executable_name
        if self._is_windows and not name.lower().endswith(".exe"):
            name += ".exe"
        return name

    def _find_config(self, root: Path) -> Optional[Path]:
        if self.settings.config_path:
            candidates = [Path(self.settings.config_path)]
        else:
            candidates = [root / "icecast.xml", root / "etc" / "icecast.xml"]
            if not self._is_windows:
                candidates += [Path(p) for p in POSIX_SYSTEM_CONFIG_PATHS]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None

    def _inspect_root(self, root: Path) -> InstallationInfo:
        # The binary lives in bin/; a file of the same name at the root is not an install
        executable = root / "bin" / self._executable_filename()
        config = self._find_config(root)

        log_dir = root / "logs"
        if config is not None:
            try:
                parsed = parse_icecast_config(config)
                resolved = parsed.resolve(parsed.log_dir)
                if resolved is not None:
                    log_dir = resolved
            except ConfigInvalid:
                pass

        checks = {
            "executable": executable.is_file(),
            "launcher": any(
                (root / name).is_file() for name in ("icecast.bat", "icecast.sh")
            ),
            "config": config is not None,
            "logDir": log_dir.is_dir(),
            "accessLog": (log_dir / "access.log").is_file(),
            "errorLog": (log_dir / "error.log").is_file(),
        }

        return InstallationInfo(
            installed=checks["executable"],
            path=str(root),
            executable_path=str(executable) if checks["executable"] else None,
            config_path=str(config) if config else None,
            checks=checks,
        )

    def detect_installation(self) -> InstallationInfo:
        """
        Search the candidate locations for an Icecast installation.

        Never raises on partial matches: the returned checks record which
        files were found. When nothing qualifies, the best partial match is
        reported with installed=False.

        Returns:
            InstallationInfo
        """
        searched = self.settings.candidate_paths(self.platform)
        best: Optional[InstallationInfo] = None

        for root in searched:
            info = self._inspect_root(Path(root))
            if info.installed:
                info.searched = list(searched)
                return info
            if best is None or sum(info.checks.values()) > sum(best.checks.values()):
                best = info

        if best is None or not any(best.checks.values()):
            best = InstallationInfo(installed=False)
        best.installed = False
        best.searched = list(searched)
        if not best.checks.get("config"):
            best.path = None
        return best

    def _load_server_config(self, config_path: Optional[str]) -> Optional[IcecastServerConfig]:
        if config_path is None:
            self._server_config = None
            return None
        try:
            self._server_config = parse_icecast_config(config_path)
        except ConfigInvalid as e:
            logger.warning(f"Cannot read Icecast config: {e.errors}")
            self._server_config = None
        return self._server_config

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def source_limit(self) -> Optional[int]:
        """Configured source limit, or None if unknown."""
        if not self._state.installed:
            return None
        return self._state.source_limit

    def snapshot(self) -> Dict[str, Any]:
        """Last known state without touching the OS."""
        return self._state.to_dict()

    @property
    def state(self) -> BroadcastServerState:
        return self._state

    def _list_processes(self) -> List[ProcessEntry]:
        return self.os_adapter.list_processes_by_name(self.settings.executable_name)

    async def get_status(self) -> BroadcastServerState:
        """
        Refresh and return the server state.

        ``running`` requires both a server process and an open port, so an
        unrelated process holding the port never counts as the server.

        Returns:
            BroadcastServerState
        """
        install = self.detect_installation()
        cfg = self._load_server_config(install.config_path)
        validation = validate_config(install.config_path) if install.config_path else None

        port = cfg.port if cfg and cfg.port else self.settings.default_port
        probe_host = cfg.local_host() if cfg else "127.0.0.1"

        processes = self._list_processes()
        port_open = self.os_adapter.is_port_open(probe_host, port)
        process_found = bool(processes)
        running = process_found and port_open

        stats = None
        if running and cfg and cfg.admin_password:
            stats = await self.admin_probe.fetch_stats(
                probe_host, port, cfg.admin_user or "admin", cfg.admin_password
            )

        uptime = None
        if processes and processes[0].create_time:
            uptime = max(0.0, time.time() - processes[0].create_time)

        previous = self._state
        if self._operation is not None:
            state = self._operation
        elif running:
            state = ServerState.RUNNING
        elif previous.state == ServerState.ERROR and not process_found:
            state = ServerState.ERROR
        elif install.installed:
            state = ServerState.STOPPED
        else:
            state = ServerState.NOT_INSTALLED

        new_state = BroadcastServerState(
            state=state,
            installed=install.installed,
            installation_path=install.path,
            files=dict(install.checks),
            running=running,
            process_found=process_found,
            port_open=port_open,
            port_conflict=port_open and not process_found,
            pid=processes[0].pid if processes else None,
            port=port,
            host=(cfg.hostname if cfg and cfg.hostname else probe_host),
            source_limit=cfg.source_limit if cfg else None,
            config_path=install.config_path,
            config_valid=bool(validation and validation.valid),
            security_findings=[f.to_dict() for f in find_security_issues(cfg)] if cfg else [],
            uptime_seconds=uptime,
            version=stats.version if stats else None,
            sources=stats.sources if stats else None,
            listeners=stats.listeners if stats else None,
            admin_reachable=stats is not None,
            last_error=previous.last_error if state == ServerState.ERROR else None,
            checked_at=datetime.now(),
        )
        new_state.health = self._compute_health(new_state, validation)
        self._state = new_state
        return new_state

    def _compute_health(
        self, state: BroadcastServerState, validation: Optional[ConfigValidation]
    ) -> HealthLevel:
        if not state.installed:
            return HealthLevel.CRITICAL

        expected = self._expect_running or state.process_found
        if expected and not state.running:
            return HealthLevel.CRITICAL
        if state.state == ServerState.ERROR:
            return HealthLevel.CRITICAL

        if state.running and not state.admin_reachable:
            return HealthLevel.DEGRADED

        if validation is None or not validation.valid or validation.warnings:
            return HealthLevel.WARNING
        if not state.running:
            return HealthLevel.WARNING

        return HealthLevel.HEALTHY

    async def get_health_status(self) -> Dict[str, Any]:
        """
        Combine process, port, admin probe and config checks into one verdict.

        Returns:
            Dictionary with health, per-check results, issues and recommendations
        """
        state = await self.get_status()
        validation = (
            validate_config(state.config_path)
            if state.config_path
            else ConfigValidation(False, ["No icecast.xml found"], [], None)
        )
        service = self.os_adapter.query_service_status(self.settings.service_name)

        issues: List[str] = []
        recommendations: List[str] = []

        if not state.installed:
            issues.append("Icecast installation not found")
            recommendations.append("Install Icecast or set ICECAST_INSTALL_PATH")
        if state.port_conflict:
            issues.append(f"Port {state.port} is held by a process that is not Icecast")
            recommendations.append(f"Free port {state.port} or change the Icecast port")
        elif state.process_found and not state.port_open:
            issues.append(f"Icecast process found but port {state.port} is not accepting connections")
            recommendations.append("Check the Icecast error log and restart the server")
        elif self._expect_running and not state.process_found:
            issues.append("Icecast process is not running")
            recommendations.append("Start Icecast from the dashboard")
        if state.running and not state.admin_reachable:
            issues.append("Admin endpoint is not responding")
            recommendations.append("Check <admin-user>/<admin-password> in icecast.xml")
        issues.extend(validation.errors)
        issues.extend(validation.warnings)
        recommendations.extend(f["recommendation"] for f in state.security_findings)

        return {
            "health": state.health.value,
            "status": state.state.value,
            "checks": {
                "installation": {"ok": state.installed, "path": state.installation_path},
                "process": {
                    "ok": state.process_found,
                    "pid": state.pid,
                    "service": service.value,
                },
                "network": {"ok": state.port_open, "port": state.port},
                "admin": {"ok": state.admin_reachable},
                "configuration": {
                    "ok": validation.valid,
                    "errors": validation.errors,
                    "warnings": validation.warnings,
                },
            },
            "issues": issues,
            "recommendations": recommendations,
            "timestamp": datetime.now().isoformat(),
        }

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def validate_configuration(self) -> ConfigValidation:
        """
        Validate icecast.xml.

        Returns:
            ConfigValidation with blocking errors separate from warnings
        """
        install = self.detect_installation()
        if install.config_path is None:
            return ConfigValidation(False, ["No icecast.xml found"], [], None)
        validation = validate_config(install.config_path)
        self._state.config_valid = validation.valid
        return validation

    def check_security_vulnerabilities(self) -> List[Dict[str, str]]:
        """
        Audit icecast.xml for weak defaults.

        Works regardless of whether the server is installed or running, as
        long as a config file can be found.

        Returns:
            List of findings (severity, issue, recommendation)
        """
        install = self.detect_installation()
        cfg = self._load_server_config(install.config_path)
        if cfg is None:
            logger.info("No readable icecast.xml; skipping security check")
            return []
        findings = [finding.to_dict() for finding in find_security_issues(cfg)]
        self._state.security_findings = findings
        return findings

    def get_source_endpoint(self) -> SourceEndpoint:
        """
        Target workers push audio to.

        Raises:
            ConfigInvalid: If icecast.xml is unreadable or has no source password
        """
        cfg = self._server_config
        if cfg is None:
            cfg = self._load_server_config(self.detect_installation().config_path)
        if cfg is None:
            raise ConfigInvalid(["Cannot read icecast.xml to find the source endpoint"])
        if not cfg.source_password:
            raise ConfigInvalid(["<source-password> is not configured"])
        return SourceEndpoint(
            host=cfg.local_host(),
            port=cfg.port or self.settings.default_port,
            password=cfg.source_password,
        )

    async def get_mountpoints(self) -> List[Dict[str, Any]]:
        """
        Active mountpoints as reported by the admin interface.

        Returns:
            List of mountpoint dictionaries (empty if the server is down)
        """
        state = await self.get_status()
        cfg = self._server_config
        if not state.running or cfg is None or not cfg.admin_password:
            return []
        mounts = await self.admin_probe.fetch_mountpoints(
            cfg.local_host(), state.port, cfg.admin_user or "admin", cfg.admin_password
        )
        return [mount.to_dict() for mount in mounts or []]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _is_running(self) -> bool:
        return (await self.get_status()).running

    def _server_gone(self) -> bool:
        return not self._list_processes()

    def _fail(self, message: str) -> None:
        self._state.state = ServerState.ERROR
        self._state.last_error = message
        logger.error(message)

    async def start(self) -> BroadcastServerState:
        """
        Start Icecast and wait until it is verified running.

        Returns:
            BroadcastServerState after verification

        Raises:
            InstallationNotFound: If no installation is found
            ConfigInvalid: If icecast.xml has blocking errors
            PortConflict: If another process holds the port
            ProcessSpawnFailure: If the binary cannot be launched
            VerificationTimeout: If the server never comes up
        """
        async with self._lock:
            return await self._start(self.settings.start_timeout)

    async def _start(self, timeout: float) -> BroadcastServerState:
        install = self.detect_installation()
        if not install.installed:
            raise InstallationNotFound(searched=install.searched)

        status = await self.get_status()
        if status.running:
            logger.info("Icecast already running")
            self._expect_running = True
            return status

        validation = validate_config(install.config_path)
        validation.raise_for_status()
        for warning in validation.warnings:
            logger.warning(f"Icecast config warning: {warning}")

        if status.port_conflict:
            raise PortConflict(status.port)

        args = [install.executable_path, "-c", install.config_path]
        logger.info(f"Starting Icecast: {' '.join(args)}")

        self._operation = ServerState.STARTING
        try:
            try:
                pid = self.os_adapter.launch_process(args, cwd=install.path)
            except OSError as e:
                self._operation = None
                self._fail(f"Failed to launch Icecast: {e}")
                raise ProcessSpawnFailure(f"Failed to launch Icecast: {e}") from e

            logger.info(f"Icecast launched (PID: {pid}), verifying")
            result = await self.poller.until(
                self._is_running, timeout=timeout, interval=self.settings.poll_interval
            )
        finally:
            self._operation = None

        if not result.satisfied:
            self._fail(f"Icecast did not come up within {timeout:g}s")
            raise VerificationTimeout("icecast start", timeout)

        self._expect_running = True
        status = await self.get_status()
        logger.info(f"Icecast running on port {status.port} (PID: {status.pid})")
        return status

    async def stop(self) -> BroadcastServerState:
        """
        Stop Icecast and wait until no server process remains.

        Idempotent: stopping a stopped server succeeds.

        Returns:
            BroadcastServerState after verification

        Raises:
            VerificationTimeout: If the process survives a force kill
        """
        async with self._lock:
            return await self._stop()

    async def _stop(self) -> BroadcastServerState:
        self._expect_running = False
        processes = self._list_processes()
        if not processes:
            logger.info("Icecast not running, nothing to stop")
            self._state.state = ServerState.STOPPED
            return await self.get_status()

        timeout = self.settings.stop_timeout
        self._operation = ServerState.STOPPING
        try:
            for proc in processes:
                logger.info(f"Stopping Icecast (PID: {proc.pid})")
                self.os_adapter.kill_process(proc.pid)

            result = await self.poller.until(
                self._server_gone, timeout=timeout, interval=self.settings.poll_interval
            )

            if not result.satisfied:
                logger.warning("Icecast did not exit gracefully, force killing")
                for proc in self._list_processes():
                    self.os_adapter.kill_process(proc.pid, force=True)
                result = await self.poller.until(
                    self._server_gone,
                    timeout=self.settings.kill_timeout,
                    interval=self.settings.poll_interval,
                )
        finally:
            self._operation = None

        if not result.satisfied:
            total = timeout + self.settings.kill_timeout
            self._fail(f"Icecast still running {total:g}s after stop")
            raise VerificationTimeout("icecast stop", total)

        self._state.state = ServerState.STOPPED
        logger.info("Icecast stopped")
        return await self.get_status()

    async def restart(self) -> BroadcastServerState:
        """
        Stop then start, under one lock, with the longer restart window.

        Raises:
            Same as stop() and start()
        """
        async with self._lock:
            logger.info("Restarting Icecast")
            await self._stop()
            return await self._start(self.settings.restart_timeout)
