from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from parley.config import settings
from parley.models.base import now_ms

logger = structlog.get_logger()

PROJECT_ID_PREFIX = "project-"
CONVERSATION_ID_PREFIX = "conversation-"


class ProjectRecord(BaseModel):
    """A portfolio project the assistant can discuss in a dedicated conversation.

    ``conversation_id`` is the record's stable binding to a conversation; when
    absent the binding is derived from ``project_id``.
    """

    model_config = ConfigDict(extra="ignore")

    project_id: str
    name: str
    slug: str = ""
    category: str = ""
    client_name: str = ""
    status: str = ""
    start_date: str = ""
    budget: str = ""
    team_members: list[str] = Field(default_factory=list)
    frontend_stack: list[str] = Field(default_factory=list)
    backend_stack: list[str] = Field(default_factory=list)
    integrations: list[str] = Field(default_factory=list)
    deployment: str = ""
    goal_summary: str = ""
    core_features: list[str] = Field(default_factory=list)
    target_users: str = ""
    unique_value: str = ""
    challenges: list[str] = Field(default_factory=list)
    solutions: list[str] = Field(default_factory=list)
    experience: str | None = None
    lessons_learned: str = ""
    communication_tools: list[str] = Field(default_factory=list)
    update_frequency: str = ""
    conversation_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    ai_context_note: str = ""

    @property
    def derived_conversation_id(self) -> str:
        return f"{PROJECT_ID_PREFIX}{self.project_id}"

    @property
    def bound_conversation_id(self) -> str:
        """The conversation this record opens: explicit binding first, then derived."""
        return self.conversation_id or self.derived_conversation_id

    def to_context(self) -> str:
        """Render the record as labelled text for the outbound context block."""

        def joined(values: list[str]) -> str:
            return ", ".join(values) if values else "N/A"

        def bullets(values: list[str]) -> str:
            return "\n".join(f"- {v}" for v in values) if values else "N/A"

        return "\n".join(
            [
                f"Project Name: {self.name}",
                f"Category: {self.category}",
                f"Client: {self.client_name}",
                f"Status: {self.status}",
                f"Start Date: {self.start_date}",
                f"Budget: {self.budget}",
                "",
                f"Goal: {self.goal_summary}",
                "",
                f"Experience: {self.experience or 'N/A'}",
                "",
                f"Team Members: {joined(self.team_members)}",
                f"Frontend Stack: {joined(self.frontend_stack)}",
                f"Backend Stack: {joined(self.backend_stack)}",
                f"Integrations: {joined(self.integrations)}",
                f"Deployment: {self.deployment or 'N/A'}",
                "",
                "Core Features:",
                bullets(self.core_features),
                "",
                f"Target Users: {self.target_users or 'N/A'}",
                f"Unique Value: {self.unique_value or 'N/A'}",
                "",
                "Challenges:",
                bullets(self.challenges),
                "",
                "Solutions:",
                bullets(self.solutions),
                "",
                f"Lessons Learned: {self.lessons_learned or 'N/A'}",
                "",
                f"Communication: {joined(self.communication_tools)}",
                f"Update Frequency: {self.update_frequency or 'N/A'}",
                f"Tags: {joined(self.tags)}",
                "",
                f"AI Context Note: {self.ai_context_note or 'N/A'}",
            ]
        )


class ProjectCatalog:
    """The known project records plus the table binding conversation ids to them.

    Both the explicit ``conversation_id`` of a record and its derived
    ``project-<project_id>`` id are registered, so a conversation can be
    traced back to its record without parsing the id. Explicit bindings win
    when two records claim the same id.
    """

    def __init__(self, records: Iterable[ProjectRecord] = ()) -> None:
        self.records: list[ProjectRecord] = list(records)
        self.bindings: dict[str, ProjectRecord] = {}
        for record in self.records:
            self.bindings.setdefault(record.derived_conversation_id, record)
        for record in self.records:
            if record.conversation_id:
                self.bindings[record.conversation_id] = record

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)

    def record_for(self, conversation_id: str) -> ProjectRecord | None:
        return self.bindings.get(conversation_id)


def resolve_conversation_id(
    record: ProjectRecord | None,
    current_id: str | None = None,
    clock: Callable[[], int] = now_ms,
) -> str:
    """Pick the conversation id for the next message.

    Precedence: the record's explicit binding, then the id derived from the
    record, then the currently active id, then a fresh time-derived id.
    """
    if record is not None:
        return record.bound_conversation_id
    if current_id:
        return current_id
    return new_conversation_id(clock)


def new_conversation_id(clock: Callable[[], int] = now_ms) -> str:
    return f"{CONVERSATION_ID_PREFIX}{clock()}"


def _read_json(path: Path) -> Any:
    return json.loads(path.read_text(encoding="utf-8"))


def _parse_records(items: Any) -> list[ProjectRecord]:
    if not isinstance(items, list):
        return []
    records: list[ProjectRecord] = []
    for item in items:
        try:
            records.append(ProjectRecord.model_validate(item))
        except ValidationError as exc:
            logger.warning("project_record_skipped", error=str(exc))
    return records


def load_project_catalog(
    path: str | Path | None = None,
    fallback_path: str | Path | None = None,
) -> ProjectCatalog:
    """Load project records, degrading to an empty catalog.

    The primary file is a JSON array of records. When it cannot be read the
    fallback file, an object with a ``projects`` array, is tried instead.
    """
    primary = Path(path or settings.PROJECTS_PATH)
    try:
        return ProjectCatalog(_parse_records(_read_json(primary)))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("project_catalog_load_failed", path=str(primary), error=str(exc))

    fallback = Path(fallback_path or settings.PROJECTS_FALLBACK_PATH)
    try:
        data = _read_json(fallback)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("project_catalog_fallback_failed", path=str(fallback), error=str(exc))
        return ProjectCatalog()
    items = data.get("projects", []) if isinstance(data, dict) else []
    return ProjectCatalog(_parse_records(items))
