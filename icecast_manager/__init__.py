"""
Icecast Broadcast Server Manager

Detects, starts, stops and health-checks the local Icecast server, and
validates and audits its icecast.xml.

Version: 1.0.0
"""

__version__ = "1.0.0"

from icecast_manager.admin_probe import AdminProbe
from icecast_manager.config import IcecastSettings
from icecast_manager.config_parser import ConfigValidation, validate_config
from icecast_manager.controller import (
    BroadcastServerController,
    BroadcastServerState,
    HealthLevel,
    ServerState,
)

__all__ = [
    "AdminProbe",
    "IcecastSettings",
    "ConfigValidation",
    "validate_config",
    "BroadcastServerController",
    "BroadcastServerState",
    "HealthLevel",
    "ServerState",
]
