"""
icecast.xml parsing, validation and security audit.

The control plane reads and validates the server's own configuration file
but never generates it.
"""

import logging
import os
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shared.errors import ConfigInvalid, ConfigWarning

logger = logging.getLogger(__name__)

DEFAULT_PASSWORDS = {"hackme", "changeme", "password", "admin", ""}
LOOPBACK_ADDRESSES = {"127.0.0.1", "localhost", "::1"}
WILDCARD_ADDRESSES = {"0.0.0.0", "::"}


@dataclass
class IcecastServerConfig:
    """Values the control plane needs from icecast.xml."""

    path: Path
    hostname: Optional[str] = None
    port: Optional[int] = None
    bind_address: Optional[str] = None
    source_limit: Optional[int] = None
    client_limit: Optional[int] = None
    source_password: Optional[str] = None
    relay_password: Optional[str] = None
    admin_user: Optional[str] = None
    admin_password: Optional[str] = None
    log_dir: Optional[str] = None
    web_root: Optional[str] = None
    admin_root: Optional[str] = None
    value_errors: List[str] = field(default_factory=list)

    def resolve(self, value: Optional[str]) -> Optional[Path]:
        """Resolve a path from the file relative to the file's directory."""
        if not value:
            return None
        candidate = Path(value)
        if not candidate.is_absolute():
            candidate = self.path.parent / candidate
        return candidate

    def local_host(self) -> str:
        """Address a local client should use to reach the server."""
        if self.bind_address and self.bind_address not in WILDCARD_ADDRESSES:
            return self.bind_address
        return "127.0.0.1"


def _text(root: ET.Element, path: str) -> Optional[str]:
    node = root.find(path)
    if node is None or node.text is None:
        return None
    value = node.text.strip()
    return value or None


def _int(root: ET.Element, path: str, errors: List[str]) -> Optional[int]:
    value = _text(root, path)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        errors.append(f"<{path}> is not a number: {value!r}")
        return None


def parse_icecast_config(path: Union[str, Path]) -> IcecastServerConfig:
    """
    Parse icecast.xml.

    Args:
        path: Path of the configuration file

    Returns:
        IcecastServerConfig; malformed values are collected in value_errors

    Raises:
        ConfigInvalid: If the file is missing, unreadable or not valid XML
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigInvalid([f"Configuration file not found: {path}"])

    try:
        root = ET.parse(str(path)).getroot()
    except ET.ParseError as e:
        raise ConfigInvalid([f"XML syntax error in {path}: {e}"]) from e
    except OSError as e:
        raise ConfigInvalid([f"Cannot read {path}: {e}"]) from e

    errors: List[str] = []
    if root.tag != "icecast":
        errors.append(f"Root element is <{root.tag}>, expected <icecast>")

    # The first listen-socket is the one sources and listeners use
    port = None
    bind_address = None
    socket = root.find("listen-socket")
    if socket is not None:
        port = _int(socket, "port", errors)
        bind_address = _text(socket, "bind-address")

    return IcecastServerConfig(
        path=path,
        hostname=_text(root, "hostname"),
        port=port,
        bind_address=bind_address,
        source_limit=_int(root, "limits/sources", errors),
        client_limit=_int(root, "limits/clients", errors),
        source_password=_text(root, "authentication/source-password"),
        relay_password=_text(root, "authentication/relay-password"),
        admin_user=_text(root, "authentication/admin-user"),
        admin_password=_text(root, "authentication/admin-password"),
        log_dir=_text(root, "paths/logdir"),
        web_root=_text(root, "paths/webroot"),
        admin_root=_text(root, "paths/adminroot"),
        value_errors=errors,
    )


@dataclass
class ConfigValidation:
    """Result of validating icecast.xml."""

    valid: bool
    errors: List[str]
    warnings: List[str]
    config_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "configPath": self.config_path,
        }

    def raise_for_status(self, strict: bool = False) -> None:
        """
        Raise on blocking errors, and on warnings when strict.

        Raises:
            ConfigInvalid: If errors are present
            ConfigWarning: If strict and warnings are present
        """
        if self.errors:
            raise ConfigInvalid(self.errors)
        if strict and self.warnings:
            raise ConfigWarning(self.warnings)


def validate_config(path: Union[str, Path, None]) -> ConfigValidation:
    """
    Validate icecast.xml.

    Errors block a server start: unreadable file, missing required values,
    an out-of-range port, or a log directory that is missing or not
    writable. Warnings are surfaced but do not block, e.g. a loopback bind
    address that keeps LAN clients out.

    Args:
        path: Path of icecast.xml (None when no file was found)

    Returns:
        ConfigValidation
    """
    if path is None:
        return ConfigValidation(False, ["No icecast.xml found"], [], None)

    try:
        cfg = parse_icecast_config(path)
    except ConfigInvalid as e:
        return ConfigValidation(False, e.errors, [], str(path))

    errors = list(cfg.value_errors)
    warnings: List[str] = []

    for label, value in (
        ("hostname", cfg.hostname),
        ("listen-socket/port", cfg.port),
        ("authentication/source-password", cfg.source_password),
        ("authentication/admin-password", cfg.admin_password),
    ):
        if value is None:
            errors.append(f"Missing required setting <{label}>")

    if cfg.port is not None and not 1 <= cfg.port <= 65535:
        errors.append(f"Port out of range: {cfg.port}")

    log_dir = cfg.resolve(cfg.log_dir)
    if log_dir is None:
        warnings.append("No <paths><logdir> configured")
    elif not log_dir.is_dir():
        errors.append(f"Log directory does not exist: {log_dir}")
    elif not os.access(log_dir, os.W_OK):
        errors.append(f"Log directory is not writable: {log_dir}")

    for label, value in (("webroot", cfg.web_root), ("adminroot", cfg.admin_root)):
        resolved = cfg.resolve(value)
        if resolved is None:
            warnings.append(f"No <paths><{label}> configured")
        elif not resolved.is_dir():
            warnings.append(f"{label} directory does not exist: {resolved}")
        elif not os.access(resolved, os.R_OK):
            warnings.append(f"{label} directory is not readable: {resolved}")

    if cfg.bind_address in LOOPBACK_ADDRESSES:
        warnings.append(
            f"bind-address {cfg.bind_address} only accepts local connections; "
            "LAN listeners will not be able to connect"
        )

    if cfg.hostname in LOOPBACK_ADDRESSES:
        warnings.append(
            "hostname is localhost; stream URLs advertised by Icecast will not work on the LAN"
        )

    if cfg.source_limit is None:
        warnings.append("No <limits><sources> configured; source limit is unknown")

    return ConfigValidation(not errors, errors, warnings, str(cfg.path))


@dataclass
class SecurityFinding:
    """One weakness in the server configuration."""

    severity: str  # high, medium, low
    issue: str
    recommendation: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "severity": self.severity,
            "issue": self.issue,
            "recommendation": self.recommendation,
        }


def find_security_issues(cfg: IcecastServerConfig) -> List[SecurityFinding]:
    """
    Audit a parsed configuration for weak defaults.

    Args:
        cfg: Parsed configuration

    Returns:
        List of findings, most severe first
    """
    findings: List[SecurityFinding] = []

    if cfg.admin_password is not None and cfg.admin_password.lower() in DEFAULT_PASSWORDS:
        findings.append(
            SecurityFinding(
                "high",
                "Admin password is a well-known default",
                "Set a unique <admin-password> in icecast.xml",
            )
        )
        if (cfg.admin_user or "admin") == "admin":
            findings.append(
                SecurityFinding(
                    "high",
                    "Default admin credentials (admin / default password) are unchanged",
                    "Change <admin-user> and <admin-password>",
                )
            )

    if cfg.source_password is not None and cfg.source_password.lower() in DEFAULT_PASSWORDS:
        findings.append(
            SecurityFinding(
                "high",
                "Source password is a well-known default",
                "Set a unique <source-password>; anyone on the network can otherwise publish streams",
            )
        )

    if cfg.relay_password is not None and cfg.relay_password.lower() in DEFAULT_PASSWORDS:
        findings.append(
            SecurityFinding(
                "medium",
                "Relay password is a well-known default",
                "Set a unique <relay-password> or remove relay support",
            )
        )

    if cfg.bind_address is None or cfg.bind_address in WILDCARD_ADDRESSES:
        findings.append(
            SecurityFinding(
                "low",
                "Server listens on all network interfaces",
                "Bind to the LAN interface address if the host is also on untrusted networks",
            )
        )

    order = {"high": 0, "medium": 1, "low": 2}
    return sorted(findings, key=lambda finding: order.get(finding.severity, 3))
