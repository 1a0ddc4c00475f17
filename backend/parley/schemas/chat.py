from __future__ import annotations

import json

from pydantic import AliasChoices, BaseModel, Field

from parley.models.base import Role

# Separates streamed reply text from a trailing error object. Never part of
# provider text.
STREAM_ERROR_MARKER = b"\x00"


def encode_stream_error(message: str, status_code: int | None = None) -> bytes:
    """Error trailer closing a streamed reply that failed after its first byte."""
    return STREAM_ERROR_MARKER + json.dumps({"error": message, "status": status_code}).encode("utf-8")


class ChatMessage(BaseModel):
    """A role-tagged message as exchanged with the relay and the provider."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    """Request body for the relay chat endpoints.

    ``kbContext`` is accepted as an alias of ``context`` for older clients.
    """

    messages: list[ChatMessage] = Field(default_factory=list)
    context: str = Field(default="", validation_alias=AliasChoices("context", "kbContext"))


class ChatCompletionResponse(BaseModel):
    """Non-streaming relay reply."""

    response: str


class ErrorResponse(BaseModel):
    error: str
