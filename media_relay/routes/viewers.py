"""
Viewer websocket.

  WS /
    Sends ``{"type": "connection", "status": "connected"}`` on connect, then
    transcript and error messages as JSON text and relayed video frames as
    binary messages.  Anything the viewer sends is only logged.
"""
import asyncio
import logging
from contextlib import suppress

from fastapi import APIRouter, Depends, WebSocket

from media_relay.context import RelayContext, get_relay
from media_relay.schemas.messages import ConnectionMessage
from media_relay.services.broadcast import BroadcastRegistry, Viewer, ViewerKind

logger = logging.getLogger(__name__)

router = APIRouter(tags=["viewers"])


async def _pump(websocket: WebSocket, viewer: Viewer, registry: BroadcastRegistry) -> None:
    try:
        async for payload in viewer:
            if isinstance(payload, bytes):
                await websocket.send_bytes(payload)
            else:
                await websocket.send_text(payload)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Delivery to %r failed: %s", viewer, exc)
        viewer.close()
        registry.unregister(viewer)


@router.websocket("/")
async def viewer_socket(websocket: WebSocket, relay: RelayContext = Depends(get_relay)) -> None:
    await websocket.accept()
    host = websocket.client.host if websocket.client else ""
    logger.info("New WebSocket connection from: %s", host or "unknown")

    viewer = relay.create_viewer(ViewerKind.WEBSOCKET, label=host)
    viewer.offer(ConnectionMessage().model_dump_json())
    pump = asyncio.create_task(_pump(websocket, viewer, relay.registry))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("text") is not None:
                logger.info("Received WebSocket message: %s", message["text"])
            elif message.get("bytes") is not None:
                logger.info("Received WebSocket message: <%d bytes>", len(message["bytes"]))
    finally:
        viewer.close()
        relay.registry.unregister(viewer)
        pump.cancel()
        with suppress(asyncio.CancelledError):
            await pump
        logger.info("Client disconnected: %s", host or "unknown")
