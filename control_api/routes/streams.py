"""Stream control routes."""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from control_api.dependencies import get_orchestrator

router = APIRouter()


class StartStreamRequest(BaseModel):
    """Create-and-start request. Values are validated by the orchestrator."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = Field(None, description="Display name (1-50 characters)")
    device_id: Optional[str] = Field(None, alias="deviceId", description="Capture device id")
    bitrate: Optional[int] = Field(192, description="Bitrate in kbps (128, 192, 256, 320)")


class StreamIdRequest(BaseModel):
    """Request addressing one stream by ``id`` (``streamId`` is also accepted)."""

    stream_id: str = Field(
        ...,
        validation_alias=AliasChoices("id", "streamId", "stream_id"),
        description="Stream id",
    )


class UpdateStreamRequest(BaseModel):
    """Edit request; omitted fields keep their current value."""

    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(..., alias="streamId", description="Stream id")
    name: Optional[str] = Field(None, description="New display name")
    device_id: Optional[str] = Field(None, alias="deviceId", description="New capture device id")
    bitrate: Optional[int] = Field(None, description="New bitrate in kbps")


@router.post("/start")
async def start_stream(payload: StartStreamRequest, orchestrator=Depends(get_orchestrator)):
    """Create a stream and start its worker.

    Returns:
        dict: Message, new stream id and the stream.
    """
    stream = await orchestrator.start_stream(
        payload.name,
        payload.device_id,
        payload.bitrate if payload.bitrate is not None else 192,
    )
    return {"message": "Stream started successfully", "streamId": stream["id"], "stream": stream}


@router.post("/stop")
async def stop_stream(payload: StreamIdRequest, orchestrator=Depends(get_orchestrator)):
    """Stop a stream's worker."""
    stream = await orchestrator.stop_stream(payload.stream_id)
    return {"message": "Stream stopped successfully", "streamId": stream["id"], "stream": stream}


@router.post("/restart")
async def restart_stream(payload: StreamIdRequest, orchestrator=Depends(get_orchestrator)):
    """Restart a stream with its persisted configuration."""
    stream = await orchestrator.restart_stream(payload.stream_id)
    return {"message": "Stream restarted successfully", "streamId": stream["id"], "stream": stream}


@router.post("/update")
async def update_stream(payload: UpdateStreamRequest, orchestrator=Depends(get_orchestrator)):
    """Edit a stopped stream.

    A name change gives the stream a new id; ``previousId`` carries the old one.
    """
    stream = await orchestrator.update_stream(
        payload.stream_id,
        name=payload.name,
        device_id=payload.device_id,
        bitrate=payload.bitrate,
    )
    return {
        "message": "Stream updated successfully",
        "streamId": stream["id"],
        "previousId": stream["previousId"],
        "stream": stream,
    }


@router.post("/delete")
async def delete_stream(payload: StreamIdRequest, orchestrator=Depends(get_orchestrator)):
    """Stop (if running) and permanently remove a stream."""
    return await orchestrator.delete_stream(payload.stream_id)


@router.post("/stop-all")
async def stop_all_streams(orchestrator=Depends(get_orchestrator)):
    """Stop every active stream."""
    return await orchestrator.stop_all_streams()


@router.post("/start-all")
async def start_all_streams(orchestrator=Depends(get_orchestrator)):
    """Start every stopped or failed stream."""
    return await orchestrator.start_all_stopped_streams()


@router.post("/reorder")
async def reorder_streams(
    payload: Dict[str, Any] = Body(...), orchestrator=Depends(get_orchestrator)
):
    """Persist the display order.

    Body: ``{"streamIds": [...]}``. Anything other than a list of ids is a 400.
    """
    return orchestrator.reorder_streams(payload.get("streamIds"))


@router.get("/status")
async def get_streams_status(orchestrator=Depends(get_orchestrator)):
    """Get every stream with summary counts."""
    return orchestrator.get_stats()


@router.get("/{stream_id}")
async def get_stream(stream_id: str, orchestrator=Depends(get_orchestrator)):
    """Get one stream."""
    return orchestrator.get_stream(stream_id)
