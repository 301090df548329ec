"""Transcript store: one row per (tenant, client) holding the bounded
window of turns.

``save`` replaces the whole window, so writing the same transcript twice
leaves exactly one identical row.
"""

from __future__ import annotations

import logging

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from booking_agent.config import TRANSCRIPT_WINDOW
from booking_agent.conversation import ModelTurn, ToolResultTurn, UserTurn, dump_turns, parse_turns
from booking_agent.services.database import Conversation, create_session_factory

logger = logging.getLogger(__name__)


class TranscriptStore:
    def __init__(
        self,
        engine: Engine,
        session_factory: sessionmaker | None = None,
        *,
        window: int = TRANSCRIPT_WINDOW,
    ):
        self._sessions = session_factory or create_session_factory(engine)
        self._window = window

    @property
    def window(self) -> int:
        return self._window

    def load(self, tenant_id: str, client_id: str) -> list[UserTurn | ModelTurn | ToolResultTurn]:
        """Return the most recent ``window`` turns, parsed into typed variants."""
        with self._sessions() as db:
            row = db.get(Conversation, (tenant_id, client_id))
            raw = list(row.turns or []) if row is not None else []
        return parse_turns(raw[-self._window:])

    def save(
        self,
        tenant_id: str,
        client_id: str,
        turns: list[UserTurn | ModelTurn | ToolResultTurn],
    ) -> None:
        """Upsert the transcript, truncated to the window."""
        payload = dump_turns(turns[-self._window:])
        for attempt in (1, 2):
            with self._sessions() as db:
                row = db.get(Conversation, (tenant_id, client_id))
                if row is None:
                    db.add(Conversation(tenant_id=tenant_id, client_id=client_id, turns=payload))
                else:
                    row.turns = payload
                try:
                    db.commit()
                    break
                except IntegrityError:
                    # Another replica created the row first; retry as an update
                    db.rollback()
                    if attempt == 2:
                        raise
                    logger.debug("Transcript row for %s/%s appeared concurrently", tenant_id, client_id)
        logger.debug("Saved %d turns for %s/%s", len(payload), tenant_id, client_id)
