from __future__ import annotations

from collections.abc import Iterable

import structlog

from parley.config import settings
from parley.exceptions import STORE_ERRORS
from parley.models.base import Role
from parley.schemas.conversation import ConversationSummary, TurnRead
from parley.store import MessageStore

logger = structlog.get_logger()


def summarize(conversation_id: str, turns: Iterable[TurnRead], preview_chars: int | None = None) -> ConversationSummary:
    """Build the summary of one conversation from its turns.

    Args:
        conversation_id: Id the turns belong to.
        turns: The conversation's turns in any order.
        preview_chars: Preview truncation length; defaults to ``settings.PREVIEW_CHARS``.

    Returns:
        The summary. ``last_activity`` is ``0`` and the preview ``None`` for an
        empty conversation.
    """
    limit = settings.PREVIEW_CHARS if preview_chars is None else preview_chars
    ordered = sorted(turns, key=lambda t: (t.timestamp, t.id))
    first_user = next((t for t in ordered if t.role is Role.USER), None)
    return ConversationSummary(
        conversation_id=conversation_id,
        message_count=len(ordered),
        last_activity=max((t.timestamp for t in ordered), default=0),
        first_message_preview=first_user.content[:limit] if first_user else None,
    )


class ConversationDirectory:
    """Derives sidebar metadata for every known conversation.

    Nothing is cached: each call rescans the store, so summaries can never
    drift from the turns they describe.
    """

    def __init__(self, store: MessageStore, preview_chars: int | None = None) -> None:
        self.store = store
        self.preview_chars = preview_chars

    async def list_with_metadata(self) -> list[ConversationSummary]:
        """Summaries of all conversations, most recently active first.

        Returns an empty list when the store is unavailable.
        """
        try:
            turns = await self.store.all_turns()
        except STORE_ERRORS as exc:
            logger.warning("directory_store_unavailable", error=str(exc))
            return []

        grouped: dict[str, list[TurnRead]] = {}
        for turn in turns:
            grouped.setdefault(turn.conversation_id, []).append(turn)

        summaries = [summarize(cid, items, self.preview_chars) for cid, items in grouped.items()]
        summaries.sort(key=lambda s: s.last_activity, reverse=True)
        return summaries

    async def summary(self, conversation_id: str) -> ConversationSummary:
        """Summary of a single conversation; empty when unknown or unavailable."""
        try:
            turns = await self.store.by_conversation(conversation_id)
        except STORE_ERRORS as exc:
            logger.warning("directory_store_unavailable", conversation_id=conversation_id, error=str(exc))
            turns = []
        return summarize(conversation_id, turns, self.preview_chars)
