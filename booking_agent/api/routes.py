"""FastAPI route definitions for the booking agent API."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, HTTPException, Request

from booking_agent.api.schemas import HealthResponse, MessageRequest, MessageResponse
from booking_agent.session import ConversationSessionManager

logger = logging.getLogger(__name__)

router = APIRouter()


def _get_sessions(request: Request) -> ConversationSessionManager:
    """Session manager built by the lifespan hook (see ``server.py``)."""
    sessions = getattr(request.app.state, "sessions", None)
    if sessions is None:
        raise HTTPException(
            status_code=503,
            detail="The agent is still starting up. Please try again in a moment.",
        )
    return sessions


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse()


@router.post("/messages", response_model=MessageResponse)
async def post_message(body: MessageRequest, http_request: Request):
    """Hand one client message to the agent and return its reply.

    ``handle_message`` blocks on the model and the database, so it runs in
    a worker thread to keep the event loop free.  A null ``reply`` means
    the tenant's agent is disabled and nothing should be sent.
    """
    sessions = _get_sessions(http_request)
    request_id = getattr(http_request.state, "request_id", "?")

    try:
        reply = await asyncio.to_thread(
            sessions.handle_message, body.tenant_id, body.client_id, body.message,
        )
    except Exception as e:
        logger.exception("[%s] Error processing message", request_id)
        raise HTTPException(
            status_code=500,
            detail="An internal error occurred. Please try again.",
        ) from e

    return MessageResponse(reply=reply, tenant_id=body.tenant_id, client_id=body.client_id)
