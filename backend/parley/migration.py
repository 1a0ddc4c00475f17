from __future__ import annotations

from typing import Any

import structlog
from pydantic import ValidationError

from parley.legacy import LegacyHistory
from parley.schemas.conversation import TurnCreate
from parley.store import MessageStore

logger = structlog.get_logger()

MIGRATED_CONVERSATION_ID = "conversation-migrated"


class LegacyMigrator:
    """Copies the flat legacy history into the store, at most once.

    There is no "migrated" flag: the sentinel conversation already having
    turns is the proof that a previous run happened. Running on every start
    is therefore safe.
    """

    def __init__(self, store: MessageStore, legacy: LegacyHistory | None = None) -> None:
        self.store = store
        self.legacy = legacy or LegacyHistory()

    async def migrate(self) -> int:
        """Run the migration.

        Returns:
            Number of turns appended to the sentinel conversation (``0`` when
            there was nothing to do).

        Raises:
            StoreUnavailableError: If the store is not open and there is a
                legacy blob to migrate.
        """
        entries = self.legacy.load()
        if not entries:
            return 0

        existing = await self.store.by_conversation(MIGRATED_CONVERSATION_ID)
        if existing:
            logger.info("legacy_migration_already_done", turns=len(existing))
            return 0

        migrated = 0
        for entry in entries:
            turn = _to_turn(entry)
            if turn is None:
                continue
            await self.store.append(turn)
            migrated += 1

        logger.info("legacy_migration_complete", entries=len(entries), migrated=migrated)
        return migrated


def _to_turn(entry: Any) -> TurnCreate | None:
    if not isinstance(entry, dict) or not entry.get("role") or not entry.get("content"):
        return None
    try:
        return TurnCreate(
            conversation_id=MIGRATED_CONVERSATION_ID,
            role=entry["role"],
            content=entry["content"],
            timestamp=entry.get("ts"),
        )
    except ValidationError as exc:
        logger.warning("legacy_entry_skipped", role=str(entry.get("role")), error=str(exc))
        return None
