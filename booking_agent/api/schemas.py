"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MessageRequest(BaseModel):
    """One inbound client message, as delivered by the chat transport."""

    tenant_id: str = Field(..., min_length=1, max_length=64, description="Business the client is writing to")
    client_id: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Client identifier on the transport (e.g. phone number)",
    )
    message: str = Field(..., min_length=1, max_length=4000, description="The client's message")


class MessageResponse(BaseModel):
    """The agent's answer; ``reply`` is null when the agent stays silent."""

    reply: str | None = Field(None, description="Text to send back, or null for no reply")
    tenant_id: str
    client_id: str


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "booking-agent"
