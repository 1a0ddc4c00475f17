from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import structlog

from parley.config import settings

logger = structlog.get_logger()


class LegacyHistory:
    """The deprecated flat history: one JSON array of ``{role, content, ts?}``.

    It lives in a single file at a well-known path and only ever holds the
    most recent entries. New code writes to :class:`parley.store.MessageStore`;
    this class exists so old blobs can be read (and migrated) and so tools
    can still produce or clear one.
    """

    def __init__(self, path: str | Path | None = None, limit: int | None = None) -> None:
        self.path = Path(path or settings.LEGACY_HISTORY_PATH)
        self.limit = settings.LEGACY_HISTORY_LIMIT if limit is None else limit

    def read_raw(self) -> str | None:
        """Return the raw blob, or ``None`` when there is nothing stored."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("legacy_history_unreadable", path=str(self.path), error=str(exc))
            return None

    def load(self) -> list[dict[str, Any]]:
        """Parsed entries; corrupt or non-array blobs read as empty."""
        raw = self.read_raw()
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("legacy_history_corrupt", path=str(self.path), error=str(exc))
            return []
        if not isinstance(data, list):
            logger.warning("legacy_history_not_a_list", path=str(self.path), kind=type(data).__name__)
            return []
        return data

    def save(self, entries: list[dict[str, Any]]) -> None:
        """Overwrite the blob, keeping only the last ``limit`` entries."""
        kept = entries[-self.limit :] if self.limit > 0 else []
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(kept), encoding="utf-8")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
