"""Icecast controller configuration."""

import sys
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

WINDOWS_CANDIDATE_PATHS = [
    r"C:\Program Files (x86)\Icecast",
    r"C:\Program Files\Icecast",
    r"C:\Icecast",
]

POSIX_CANDIDATE_PATHS = [
    "/usr/local",
    "/usr",
    "/opt/icecast",
]

POSIX_SYSTEM_CONFIG_PATHS = [
    "/etc/icecast2/icecast.xml",
    "/etc/icecast.xml",
    "/usr/local/etc/icecast.xml",
]


class IcecastSettings(BaseSettings):
    """Icecast controller configuration from environment variables."""

    # Installation
    install_path: Optional[str] = Field(
        default=None,
        description="Icecast installation root; searched before the platform defaults",
    )

    config_path: Optional[str] = Field(
        default=None,
        description="Explicit path to icecast.xml",
    )

    executable_name: str = Field(
        default="icecast",
        description="Executable name used for binary lookup and process listing",
    )

    service_name: str = Field(
        default="icecast2",
        description="OS service name, if Icecast is installed as a service",
    )

    default_port: int = Field(
        default=8000,
        description="Port assumed when icecast.xml cannot be read",
        ge=1,
        le=65535,
    )

    # Admin probe
    admin_timeout: float = Field(
        default=3.0,
        description="Timeout for admin endpoint requests (seconds)",
        gt=0.0,
        le=30.0,
    )

    # Verification windows
    start_timeout: float = Field(
        default=10.0,
        description="Seconds allowed for Icecast to bind its port after start",
        ge=1.0,
        le=120.0,
    )

    stop_timeout: float = Field(
        default=10.0,
        description="Seconds allowed for Icecast to exit after a termination request",
        ge=1.0,
        le=120.0,
    )

    kill_timeout: float = Field(
        default=3.0,
        description="Seconds allowed for Icecast to exit after a force kill",
        ge=0.5,
        le=60.0,
    )

    restart_timeout: float = Field(
        default=20.0,
        description="Seconds allowed for the start half of a restart",
        ge=1.0,
        le=300.0,
    )

    poll_interval: float = Field(
        default=0.5,
        description="Poll interval during verification (seconds)",
        gt=0.0,
        le=5.0,
    )

    model_config = ConfigDict(
        env_prefix="ICECAST_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def candidate_paths(self, platform: Optional[str] = None) -> List[str]:
        """Installation roots to search, in order."""
        platform = platform or sys.platform
        defaults = WINDOWS_CANDIDATE_PATHS if platform.startswith("win") else POSIX_CANDIDATE_PATHS
        paths = [self.install_path] if self.install_path else []
        return paths + [p for p in defaults if p not in paths]


def get_settings() -> IcecastSettings:
    """
    Get Icecast configuration from environment variables.

    Returns:
        IcecastSettings: Configuration instance
    """
    return IcecastSettings()
