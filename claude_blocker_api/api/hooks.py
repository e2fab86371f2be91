"""Inbound hook and statusline endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..core import SessionStore, get_session_store
from ..models import HookPayload, HookResponse, StatuslinePayload
from ..telemetry import get_request_context

logger = logging.getLogger(__name__)

router = APIRouter(tags=["hooks"])


@router.post(
    "/hook",
    response_model=HookResponse,
    summary="Receive a hook event from the coding assistant",
    description="""
Apply one lifecycle event to the live session state.

Events for a session id that has not been seen yet create the session.
Event kinds the tracker does not consume are accepted and ignored.
""",
)
async def receive_hook(
    payload: HookPayload,
    store: SessionStore = Depends(get_session_store),
) -> HookResponse:
    """Receive a hook event."""
    try:
        await store.handle_hook(payload)
    except Exception as e:
        request_id = get_request_context().get("request_id", "-")
        logger.error(
            f"Error handling {payload.hook_event_name} for session {payload.session_id} "
            f"[{request_id}]: {e}",
            exc_info=True,
        )
        raise HTTPException(status_code=500, detail=f"Failed to handle hook event: {str(e)}")

    return HookResponse()


@router.post(
    "/statusline",
    response_model=HookResponse,
    summary="Receive usage totals from the status line script",
)
async def receive_statusline(
    payload: StatuslinePayload,
    store: SessionStore = Depends(get_session_store),
) -> HookResponse:
    """Set a live session's token and cost totals.

    The status line reports absolute totals, so they replace the current
    values. Unknown sessions are ignored.
    """
    cost_usd = payload.cost.total_cost_usd if payload.cost else 0.0
    input_tokens = payload.context_window.total_input_tokens if payload.context_window else 0
    output_tokens = payload.context_window.total_output_tokens if payload.context_window else 0

    updated = await store.update_session_metrics(
        payload.session_id, cost_usd, input_tokens, output_tokens
    )
    if not updated:
        logger.debug(f"Statusline for unknown session {payload.session_id}")

    return HookResponse()
