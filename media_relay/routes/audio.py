"""
Audio ingest from the producer device.

  POST /stream-audio
    Streamed body of raw 16-bit PCM, 16 kHz, mono.  The response is a chunked
    stream of NDJSON lines ``{"transcript": "..."}``, one per final result,
    written while the body is still arriving.

  WS /stream-audio/ws
    Persistent producer connection.  Binary frames are audio chunks; the
    session starts on the first one.  The producer gets the same objects as
    the HTTP response, one per text message, ``{"error": "..."}`` included.

Both paths pass admission first and answer "too many requests" when the rate
limit or the session cap is hit: a 429 over HTTP, and over the websocket an
``{"error": "Too many requests (...)"}`` message followed by close code 1013.
"""
import asyncio
import logging
from contextlib import suppress

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from media_relay.context import RelayContext, get_relay
from media_relay.errors import AdmissionRejected
from media_relay.schemas.messages import TranscriptFailure
from media_relay.services.transcription_session import ResponseStream, TranscriptionSession

logger = logging.getLogger(__name__)

router = APIRouter(tags=["audio"])

# RFC 6455 "try again later"
WS_TRY_AGAIN_LATER = 1013


class DuplexStreamingResponse(StreamingResponse):
    """StreamingResponse that leaves ``receive`` to the request body reader.

    The stock response listens for ``http.disconnect`` on the same channel
    the request body arrives on, which would swallow audio chunks.  Client
    disconnects surface as ``ClientDisconnect`` in the body reader instead.
    """

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.stream_response(send)
        if self.background is not None:
            await self.background()


async def _feed_session(request: Request, session: TranscriptionSession) -> None:
    try:
        async for chunk in request.stream():
            if chunk:
                session.feed(chunk)
    except ClientDisconnect:
        logger.info("[%s] Producer disconnected", session.id)
    finally:
        session.close()


async def _ndjson_lines(request: Request, session: TranscriptionSession, response: ResponseStream):
    feeder = asyncio.create_task(_feed_session(request, session))
    try:
        async for message in response:
            yield message.model_dump_json() + "\n"
    finally:
        feeder.cancel()
        response.detach()
        session.close()


# ─────────────────────────────────────────────────────────────────────────────
#  POST /stream-audio
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/stream-audio")
async def stream_audio(request: Request, relay: RelayContext = Depends(get_relay)):
    """Relay a streamed PCM body to the transcription service."""
    logger.info("Received audio stream request")

    response = ResponseStream()
    try:
        relay.admission.admit()
        session = relay.create_session(response=response)
        session.start()
    except AdmissionRejected as exc:
        raise HTTPException(status_code=429, detail=str(exc))

    return DuplexStreamingResponse(
        _ndjson_lines(request, session, response),
        media_type="application/json",
    )


# ─────────────────────────────────────────────────────────────────────────────
#  WS /stream-audio/ws
# ─────────────────────────────────────────────────────────────────────────────
async def _send_responses(websocket: WebSocket, response: ResponseStream) -> None:
    try:
        async for message in response:
            await websocket.send_text(message.model_dump_json())
        if response.failed:
            await websocket.close(code=1011)
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("Could not send to audio producer: %s", exc)
        response.detach()


async def _reject(websocket: WebSocket, exc: AdmissionRejected) -> None:
    await websocket.send_text(TranscriptFailure(error=str(exc)).model_dump_json())
    await websocket.close(code=WS_TRY_AGAIN_LATER)


@router.websocket("/stream-audio/ws")
async def stream_audio_ws(websocket: WebSocket, relay: RelayContext = Depends(get_relay)) -> None:
    await websocket.accept()
    try:
        relay.admission.admit()
    except AdmissionRejected as exc:
        logger.warning("Audio producer rejected: %s", exc)
        await _reject(websocket, exc)
        return

    response = ResponseStream()
    session = relay.create_session(response=response)
    sender = asyncio.create_task(_send_responses(websocket, response))
    logger.info("[%s] Audio producer connected", session.id)

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            chunk = message.get("bytes")
            if not chunk:
                if message.get("text"):
                    logger.info("[%s] Producer message: %s", session.id, message["text"])
                continue
            try:
                session.feed(chunk)
            except AdmissionRejected as exc:
                await _reject(websocket, exc)
                break
    except WebSocketDisconnect:
        pass
    finally:
        response.detach()
        session.close()
        sender.cancel()
        with suppress(asyncio.CancelledError):
            await sender
        logger.info("[%s] Audio producer closed", session.id)
