"""Pytest configuration and fixtures for control API tests.

The app is built with an injected service container whose controller and
orchestrator are mocks, so the lifespan never touches the OS.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from prometheus_client import CollectorRegistry

from control_api.config import ApiSettings
from control_api.main import create_app
from control_api.services import ServiceContainer
from icecast_manager.config_parser import ConfigValidation
from icecast_manager.controller import (
    BroadcastServerState,
    HealthLevel,
    InstallationInfo,
    ServerState,
)
from monitoring.metrics import MetricsExporter
from stream_manager.capacity import CapacityGate


def make_stream(stream_id="lobby_1", status="running", **overrides):
    stream = {
        "id": stream_id,
        "name": "Lobby",
        "deviceId": "mic1",
        "bitrate": 192,
        "status": status,
        "format": "mp3",
        "pid": 4321 if status == "running" else None,
        "mountpoint": f"/{stream_id}",
        "lastError": None,
    }
    stream.update(overrides)
    return stream


@pytest.fixture
def stream_factory():
    """Factory for stream dictionaries as the orchestrator returns them."""
    return make_stream


@pytest.fixture
def settings():
    """API settings isolated from the environment."""
    return ApiSettings(_env_file=None)


@pytest.fixture
def server_state():
    """A running Icecast with two source slots."""
    return BroadcastServerState(
        state=ServerState.RUNNING,
        installed=True,
        running=True,
        process_found=True,
        port_open=True,
        port=8000,
        host="192.168.1.10",
        source_limit=2,
        config_path="/etc/icecast2/icecast.xml",
        health=HealthLevel.HEALTHY,
    )


@pytest.fixture
def controller(server_state):
    """Mock broadcast server controller."""
    controller = MagicMock()
    controller.get_status = AsyncMock(return_value=server_state)
    controller.get_health_status = AsyncMock(return_value={"health": "healthy", "issues": []})
    controller.start = AsyncMock(return_value=server_state)
    controller.stop = AsyncMock(return_value=BroadcastServerState(state=ServerState.STOPPED))
    controller.restart = AsyncMock(return_value=server_state)
    controller.get_mountpoints = AsyncMock(return_value=[])
    controller.snapshot.return_value = server_state.to_dict()
    controller.validate_configuration.return_value = ConfigValidation(
        True, [], [], "/etc/icecast2/icecast.xml"
    )
    controller.check_security_vulnerabilities.return_value = []
    controller.detect_installation.return_value = InstallationInfo(
        installed=True, path="/usr", executable_path="/usr/bin/icecast"
    )
    return controller


@pytest.fixture
def orchestrator():
    """Mock stream orchestrator."""
    orchestrator = MagicMock()
    for name in (
        "start_stream",
        "stop_stream",
        "restart_stream",
        "update_stream",
        "delete_stream",
        "stop_all_streams",
        "start_all_stopped_streams",
        "reconcile",
        "shutdown",
    ):
        setattr(orchestrator, name, AsyncMock())
    orchestrator.registry.records.return_value = []
    orchestrator.registry.__len__.return_value = 2
    orchestrator.capacity = CapacityGate(lambda: 2)
    return orchestrator


@pytest.fixture
def metrics():
    """Metrics exporter on a private registry."""
    return MetricsExporter(registry=CollectorRegistry())


@pytest.fixture
def services(settings, controller, orchestrator, metrics):
    """Service container wired to mocks."""
    return ServiceContainer(
        settings=settings, controller=controller, orchestrator=orchestrator, metrics=metrics
    )


@pytest.fixture
def app(services):
    """Create the FastAPI app with injected services."""
    return create_app(services=services)


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app, raise_server_exceptions=False)
