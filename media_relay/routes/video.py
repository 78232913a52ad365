"""
MJPEG relay.

  POST /video-stream
    The device posts one complete JPEG frame per request.  Once the body has
    been read the buffer is broadcast unmodified to every video viewer (and,
    as a raw binary message, to websocket viewers).

  GET /video-stream
    Infinite ``multipart/x-mixed-replace`` stream, one part per frame.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse
from starlette.requests import ClientDisconnect

from media_relay.context import RelayContext, get_relay
from media_relay.services.broadcast import Viewer, ViewerKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["video"])

BOUNDARY = "frame"


def multipart_part(frame: bytes) -> bytes:
    header = (
        f"--{BOUNDARY}\r\n"
        f"Content-Type: image/jpeg\r\n"
        f"Content-Length: {len(frame)}\r\n\r\n"
    ).encode("ascii")
    return header + frame + b"\r\n"


async def mjpeg_parts(relay: RelayContext, label: str = ""):
    """Register a video viewer and yield one multipart part per frame."""
    viewer: Viewer = relay.create_viewer(ViewerKind.VIDEO, label=label)
    try:
        async for frame in viewer:
            yield multipart_part(frame)
    finally:
        viewer.close()
        relay.registry.unregister(viewer)


@router.post("/video-stream")
async def ingest_video(request: Request, relay: RelayContext = Depends(get_relay)) -> Response:
    """Read one frame from the device and fan it out."""
    limit = relay.settings.max_frame_bytes
    frame = bytearray()
    try:
        async for chunk in request.stream():
            frame.extend(chunk)
            if len(frame) > limit:
                raise HTTPException(
                    status_code=413,
                    detail=f"Frame exceeds the {limit} byte limit.",
                )
    except ClientDisconnect:
        logger.info("Video producer disconnected after %d bytes", len(frame))
        return Response(status_code=204)

    if frame:
        payload = bytes(frame)
        viewers = relay.registry.broadcast_to(ViewerKind.VIDEO, payload)
        if relay.settings.forward_video_to_websockets:
            viewers += relay.registry.broadcast_to(ViewerKind.WEBSOCKET, payload)
        relay.stats.frames_relayed += 1
        logger.debug("Relayed %d-byte frame to %d viewer(s)", len(payload), viewers)

    return PlainTextResponse("Stream ended")


@router.get("/video-stream")
async def watch_video(request: Request, relay: RelayContext = Depends(get_relay)) -> StreamingResponse:
    """Stream relayed frames to a browser."""
    label = request.client.host if request.client else ""
    logger.info("Received video stream GET request from %s", label or "unknown")
    return StreamingResponse(
        mjpeg_parts(relay, label),
        media_type=f"multipart/x-mixed-replace; boundary={BOUNDARY}",
        headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
    )
