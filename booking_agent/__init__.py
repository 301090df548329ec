"""Booking Agent — a conversational assistant that books appointments.

Architecture Overview
=====================

Each inbound message is one **turn** handled by the session manager:

1. The bounded transcript of the (tenant, client) conversation is loaded
   and sanitized (first turn is the user's, no unanswered tool call).
2. A **LangGraph** loop alternates between the model (Claude via
   ``langchain-anthropic``) and the tool dispatcher until the model
   answers in plain text or the iteration budget is spent.
3. The updated transcript is upserted and the reply returned.

Tools work through three domain services:

- **Entity resolver** — free text ("haircut and beard", "Joao") to a
  service or professional: exact match first, then term scoring that
  prefers bundle-looking catalog entries.
- **Availability engine** — open start times from business hours, the
  tenant-local clock and the professional's existing appointments.
- **Booking coordinator** — reserves through one conditional
  ``INSERT ... WHERE NOT EXISTS(overlap)`` so concurrent conversations
  can never double-book; cancels through a gated status update.

Key Design Decisions
--------------------
- **Storage**: SQLAlchemy; atomicity lives in the database (advisory lock
  on PostgreSQL, ``BEGIN IMMEDIATE`` on SQLite, partial unique index as a
  backstop), never in an in-process lock.
- **Resilience**: rate-limited model calls are retried with exponential
  backoff; tool calls run under a timeout and fail into structured
  results the model can talk about.
- **Tenancy**: every query is tenant-scoped; touching another tenant's
  record aborts the turn.
- **Dual Interface**: FastAPI server + CLI chat loop.

Package Structure
-----------------
- ``booking_agent/agent.py`` — LangGraph turn loop
- ``booking_agent/session.py`` — session manager and process wiring
- ``booking_agent/conversation.py`` — typed transcript turns
- ``booking_agent/prompts.py`` — per-tenant system prompt
- ``booking_agent/services/`` — stores, resolver, availability, booking, model
- ``booking_agent/tools/`` — tool registry and dispatcher
- ``booking_agent/api/`` — FastAPI routes and schemas
"""
