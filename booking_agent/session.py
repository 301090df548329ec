"""Conversation session manager: one inbound message → one reply.

For each message the manager

1. short-circuits with ``None`` (silence) when the tenant is unknown or
   its agent is switched off, before any model call;
2. loads the bounded transcript and sanitizes it;
3. runs the LangGraph turn loop with the new user turn appended;
4. persists the sanitized, truncated transcript (idempotent upsert);
5. returns the last model text, or a fixed apology.

Turns of the same (tenant, client) are serialized by a lock so the
transcript stays in arrival order; different conversations run in
parallel; a conversation's lock is dropped once no turn holds or awaits
it.  Any failure inside a turn (model, store, tenant boundary) is logged
and answered with ``FALLBACK_REPLY``.  Nothing is persisted then, unless
tool calls already ran: those turns are kept (see ``_keep_tool_effects``)
so a booking made before the failure is not forgotten.  A tenant-boundary
failure never persists anything.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.engine import Engine

from booking_agent.agent import create_booking_agent, recursion_limit_for
from booking_agent.config import MAX_TOOL_ITERATIONS
from booking_agent.conversation import ModelTurn, ToolResultTurn, UserTurn, from_messages, sanitize, to_messages
from booking_agent.errors import TenantMismatchError
from booking_agent.prompts import get_system_prompt
from booking_agent.services.availability import AvailabilityEngine
from booking_agent.services.booking import BookingCoordinator
from booking_agent.services.booking_store import BookingStore
from booking_agent.services.database import create_session_factory
from booking_agent.services.model_provider import ModelProvider
from booking_agent.services.notifier import WebhookNotifier
from booking_agent.services.resolver import EntityResolver
from booking_agent.services.transcript_store import TranscriptStore
from booking_agent.tools.dispatcher import ToolDispatcher
from booking_agent.tools.schemas import anthropic_tools

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I had trouble processing your message. Please try again in a moment."
NO_TEXT_REPLY = "Sorry, I couldn't finish that request. Could you say it again in other words?"


@dataclass
class _ConversationLock:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class ConversationSessionManager:
    def __init__(
        self,
        store: BookingStore,
        transcripts: TranscriptStore,
        availability: AvailabilityEngine,
        graph,
        *,
        max_iterations: int = MAX_TOOL_ITERATIONS,
    ):
        self._store = store
        self._transcripts = transcripts
        self._availability = availability
        self._graph = graph
        self._recursion_limit = recursion_limit_for(max_iterations)
        self._locks: dict[tuple[str, str], _ConversationLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def _conversation_lock(self, tenant_id: str, client_id: str):
        # Entries live only while some turn of the conversation holds or awaits them
        key = (tenant_id, client_id)
        with self._locks_guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = self._locks[key] = _ConversationLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[key]

    def handle_message(self, tenant_id: str, client_id: str, text: str) -> str | None:
        """Process one inbound message; ``None`` means stay silent."""
        tenant = self._store.get_tenant(tenant_id)
        if tenant is None:
            logger.warning("Message for unknown tenant %s ignored", tenant_id)
            return None
        if not tenant.agent_enabled:
            logger.info("Agent disabled for tenant %s; not replying to %s", tenant_id, client_id)
            return None

        with self._conversation_lock(tenant_id, client_id):
            try:
                return self._run_turn(tenant, client_id, text)
            except TenantMismatchError:
                logger.exception("Turn for %s/%s aborted at the tenant boundary", tenant_id, client_id)
                return FALLBACK_REPLY
            except Exception:
                logger.exception("Turn for %s/%s failed", tenant_id, client_id)
                return FALLBACK_REPLY

    def _run_turn(self, tenant, client_id: str, text: str) -> str:
        history = sanitize(self._transcripts.load(tenant.id, client_id))
        turns = [*history, UserTurn(text=text)]
        messages = to_messages(turns)

        now = self._availability.local_now(tenant.id)
        client = self._store.get_client(tenant.id, client_id)
        state = {
            "messages": messages,
            "system_prompt": get_system_prompt(tenant, now, client.name if client else None),
            "tenant_id": tenant.id,
            "client_id": client_id,
            "iterations": 0,
        }
        # Keep the last full state so a failing step does not lose finished tool calls
        try:
            for state in self._graph.stream(
                state,
                config={"recursion_limit": self._recursion_limit},
                stream_mode="values",
            ):
                pass
        except TenantMismatchError:
            raise
        except Exception:
            self._keep_tool_effects(tenant.id, client_id, turns, state["messages"][len(messages):])
            raise

        new_turns = from_messages(state["messages"][len(messages):])
        reply = next(
            (t.text for t in reversed(new_turns) if isinstance(t, ModelTurn) and t.text.strip()),
            None,
        )
        transcript = sanitize([*turns, *new_turns][-self._transcripts.window:])
        self._transcripts.save(tenant.id, client_id, transcript)

        logger.info(
            "Turn done for %s/%s: %d new turns, %d stored",
            tenant.id, client_id, len(new_turns), len(transcript),
        )
        return reply or NO_TEXT_REPLY

    def _keep_tool_effects(self, tenant_id: str, client_id: str, turns: list, partial: list) -> None:
        """Persist a failed turn if any of its tool calls already ran.

        A booking made before the failure must stay visible to the model
        on the next turn.  Turns that failed before any tool ran leave
        the stored transcript untouched.
        """
        new_turns = from_messages(partial)
        if not any(isinstance(t, ToolResultTurn) for t in new_turns):
            return
        transcript = sanitize([*turns, *new_turns][-self._transcripts.window:])
        self._transcripts.save(tenant_id, client_id, transcript)
        logger.warning(
            "Turn for %s/%s failed after %d tool results; kept %d turns",
            tenant_id, client_id,
            sum(isinstance(t, ToolResultTurn) for t in new_turns), len(transcript),
        )


# ── Bootstrap ────────────────────────────────────────────────────────


@dataclass
class Runtime:
    """Everything a process needs to serve messages, plus its teardown."""

    sessions: ConversationSessionManager
    dispatcher: ToolDispatcher
    notifier: WebhookNotifier

    def close(self) -> None:
        self.dispatcher.close()
        self.notifier.close()


def build_runtime(
    engine: Engine,
    *,
    provider: ModelProvider | None = None,
    notifier: WebhookNotifier | None = None,
    clock: Callable[[], datetime] | None = None,
    max_iterations: int = MAX_TOOL_ITERATIONS,
) -> Runtime:
    """Wire stores, engine, dispatcher and model into a session manager."""
    session_factory = create_session_factory(engine)
    store = BookingStore(engine, session_factory)
    transcripts = TranscriptStore(engine, session_factory)
    availability = AvailabilityEngine(store, clock=clock)
    notifier = notifier or WebhookNotifier()
    dispatcher = ToolDispatcher(
        store,
        EntityResolver(store),
        availability,
        BookingCoordinator(store, notifier),
    )
    graph = create_booking_agent(
        provider or ModelProvider(anthropic_tools()),
        dispatcher,
        max_iterations=max_iterations,
    )
    sessions = ConversationSessionManager(
        store, transcripts, availability, graph, max_iterations=max_iterations,
    )
    return Runtime(sessions=sessions, dispatcher=dispatcher, notifier=notifier)
