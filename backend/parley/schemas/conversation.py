from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from parley.models.base import Role, now_ms


class TurnCreate(BaseModel):
    """A turn about to be appended to the store (no surrogate key yet)."""

    conversation_id: str = Field(min_length=1)
    role: Role
    content: str = Field(min_length=1)
    timestamp: int = Field(default_factory=now_ms)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: object) -> object:
        # Legacy entries carry ``ts: 0`` or ``null`` when the time is unknown.
        if value is None or value == 0:
            return now_ms()
        return value


class TurnRead(BaseModel):
    """A committed turn. Frozen: committed turns are never edited."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    conversation_id: str
    role: Role
    content: str
    timestamp: int


class ConversationSummary(BaseModel):
    """Sidebar metadata derived from a conversation's turns."""

    conversation_id: str
    message_count: int
    last_activity: int
    first_message_preview: str | None = None
