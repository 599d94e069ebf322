"""System and Icecast server routes."""

import logging
import socket

import psutil
from fastapi import APIRouter, Depends

from control_api.dependencies import get_controller, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_lan_ip() -> str:
    """First non-loopback IPv4 address of this machine.

    Returns:
        Address string, or "localhost" if the host has no LAN interface
    """
    for addresses in psutil.net_if_addrs().values():
        for address in addresses:
            if address.family == socket.AF_INET and not address.address.startswith("127."):
                return address.address
    return "localhost"


@router.get("/config")
async def get_system_config(
    controller=Depends(get_controller), orchestrator=Depends(get_orchestrator)
):
    """Get LAN address and Icecast capacity.

    ``remaining`` is never negative; an unknown source limit reports 0.
    """
    state = await controller.get_status()
    active = sum(1 for record in orchestrator.registry.records() if record.is_active)
    decision = orchestrator.capacity.can_admit(active)
    return {
        "host": get_lan_ip(),
        "icecast": {
            "port": state.port,
            "host": state.host,
            "sourceLimit": state.source_limit,
            "activeStreams": active,
            "remaining": decision.remaining,
            "configPath": state.config_path,
        },
    }


@router.get("/icecast-status")
async def get_icecast_status(controller=Depends(get_controller)):
    """Get the full Icecast server state."""
    state = await controller.get_status()
    return state.to_dict()


@router.get("/icecast/health")
async def get_icecast_health(controller=Depends(get_controller)):
    """Get the combined Icecast health verdict."""
    return await controller.get_health_status()


@router.post("/icecast/start")
async def start_icecast(controller=Depends(get_controller)):
    """Start Icecast and wait until it is verified running."""
    state = await controller.start()
    return {"message": "Icecast server started", "status": state.to_dict()}


@router.post("/icecast/stop")
async def stop_icecast(controller=Depends(get_controller)):
    """Stop Icecast and wait until no server process remains."""
    state = await controller.stop()
    return {"message": "Icecast server stopped", "status": state.to_dict()}


@router.post("/icecast/restart")
async def restart_icecast(controller=Depends(get_controller)):
    """Restart Icecast."""
    state = await controller.restart()
    return {"message": "Icecast server restarted", "status": state.to_dict()}


@router.get("/icecast/validate-config")
async def validate_icecast_config(controller=Depends(get_controller)):
    """Validate icecast.xml, separating blocking errors from warnings."""
    return controller.validate_configuration().to_dict()


@router.get("/icecast/security-check")
async def check_icecast_security(controller=Depends(get_controller)):
    """Audit icecast.xml for weak defaults."""
    findings = controller.check_security_vulnerabilities()
    return {
        "secure": not any(f["severity"] == "high" for f in findings),
        "count": len(findings),
        "findings": findings,
    }


@router.get("/icecast/mountpoints")
async def get_icecast_mountpoints(controller=Depends(get_controller)):
    """List active mountpoints reported by Icecast."""
    mountpoints = await controller.get_mountpoints()
    return {"count": len(mountpoints), "mountpoints": mountpoints}


@router.post("/icecast/check-installation")
async def check_icecast_installation(controller=Depends(get_controller)):
    """Search for an Icecast installation and report what was found."""
    info = controller.detect_installation()
    logger.info(f"Installation check: installed={info.installed} path={info.path}")
    return info.to_dict()
