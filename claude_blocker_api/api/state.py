"""Live state, history and push endpoints."""

import asyncio
import json
import logging
from collections.abc import Callable

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import StreamingResponse

from ..core import SessionStore, get_session_store
from ..models import HistoryResponse, StateMessage, StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["state"])

# Seconds between SSE keepalive comments
KEEPALIVE_INTERVAL = 15.0
SUBSCRIBER_QUEUE_SIZE = 100


def _state_queue(store: SessionStore) -> tuple[asyncio.Queue, Callable[[], None]]:
    """Subscribe a bounded queue to state broadcasts.

    Only the newest states matter, so a full queue drops its oldest entry.
    """
    queue: asyncio.Queue[StateMessage] = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)

    def on_state(state: StateMessage) -> None:
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(state)

    unsubscribe = store.subscribe(on_state)
    return queue, unsubscribe


def _state_json(state: StateMessage) -> str:
    return json.dumps(state.model_dump(mode="json", by_alias=True))


@router.get("/status", response_model=StatusResponse)
async def get_status(store: SessionStore = Depends(get_session_store)) -> StatusResponse:
    """Whether work is blocked, and the live sessions."""
    blocked, sessions = store.get_status()
    return StatusResponse(blocked=blocked, sessions=sessions)


@router.get("/state", response_model=StateMessage)
async def get_state(store: SessionStore = Depends(get_session_store)) -> StateMessage:
    """The full derived state, as broadcast to subscribers."""
    return store.get_state()


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    limit: int | None = Query(default=None, ge=1, le=1000),
    store: SessionStore = Depends(get_session_store),
) -> HistoryResponse:
    """Ended sessions, newest first."""
    return HistoryResponse(history=store.get_history(limit))


@router.get("/events")
async def stream_events(
    request: Request,
    store: SessionStore = Depends(get_session_store),
) -> StreamingResponse:
    """Stream state changes using Server-Sent Events (SSE)."""

    async def event_generator():
        """Yield the current state, then every broadcast."""
        queue, unsubscribe = _state_queue(store)
        try:
            while True:
                if await request.is_disconnected():
                    break
                try:
                    state = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_INTERVAL)
                except TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield f"data: {_state_json(state)}\n\n"
        finally:
            unsubscribe()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


@router.websocket("/ws")
async def state_websocket(
    websocket: WebSocket,
    store: SessionStore = Depends(get_session_store),
) -> None:
    """Push state changes over a WebSocket; answers {"type": "ping"} with a pong."""
    await websocket.accept()
    queue, unsubscribe = _state_queue(store)

    async def push_states() -> None:
        while True:
            state = await queue.get()
            await websocket.send_text(_state_json(state))

    pusher = asyncio.create_task(push_states())
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        logger.debug("WebSocket client disconnected")
    finally:
        unsubscribe()
        pusher.cancel()
        try:
            await pusher
        except (asyncio.CancelledError, WebSocketDisconnect, RuntimeError):
            pass
