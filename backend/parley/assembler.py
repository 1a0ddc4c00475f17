from __future__ import annotations

import codecs
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Protocol

import httpx
import structlog

from parley.exceptions import RelayError
from parley.models.base import Role, now_ms
from parley.relay_client import RelayClient
from parley.schemas.chat import ChatMessage
from parley.schemas.conversation import TurnCreate, TurnRead
from parley.store import MessageStore

logger = structlog.get_logger()

GENERIC_ERROR_MESSAGE = "Something went wrong. Please try again."
QUOTA_HINT = "If this is a quota or billing issue, please check your OpenAI account settings."


@dataclass
class DraftTurn:
    """An assistant reply under construction. Never persisted as such."""

    conversation_id: str
    content: str = ""
    timestamp: int = field(default_factory=now_ms)
    role: Role = Role.ASSISTANT


class AssemblyListener(Protocol):
    def on_draft(self, draft: DraftTurn) -> None: ...

    def on_commit(self, turn: TurnRead) -> None: ...


def format_error_content(message: str, status_code: int | None = None) -> str:
    """User-facing text of an error turn.

    The quota hint is added for 429 answers and for messages that mention
    quota or billing.
    """
    message = message.strip() or GENERIC_ERROR_MESSAGE
    content = f"**Error:** {message}"
    lowered = message.lower()
    if status_code == 429 or "quota" in lowered or "billing" in lowered:
        content += f"\n\n{QUOTA_HINT}"
    return content


class StreamingAssembler:
    """Turns a relay reply stream into one committed assistant turn.

    While the reply streams, a single :class:`DraftTurn` is mutated and handed
    to the listener after every chunk. The store only sees the finished
    reply, or a single error turn when anything fails, so the conversation
    log stays append-only and never contains an empty turn. An abandoned
    stream commits nothing.

    Args:
        store: Store receiving the committed turn.
        relay: Relay client producing the reply bytes.
        listener: Optional display hook for drafts and commits.
        clock: Millisecond clock, injectable for tests.
    """

    def __init__(
        self,
        store: MessageStore,
        relay: RelayClient,
        listener: AssemblyListener | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.store = store
        self.relay = relay
        self.listener = listener
        self.clock = clock

    async def respond(
        self,
        conversation_id: str,
        messages: Sequence[ChatMessage],
        context: str = "",
    ) -> TurnRead:
        """Request a reply for ``conversation_id`` and commit it.

        Args:
            conversation_id: Conversation captured when the request was made;
                the commit always goes there, whatever is displayed meanwhile.
            messages: Replay window, oldest first.
            context: Context block forwarded to the relay.

        Returns:
            The committed assistant turn (a reply or an error turn).
        """
        draft = DraftTurn(conversation_id=conversation_id, timestamp=self.clock())
        self._emit_draft(draft)

        try:
            content = await self._collect(draft, messages, context)
        except RelayError as exc:
            logger.warning(
                "assembly_relay_error",
                conversation_id=conversation_id,
                status=exc.status_code,
                error=exc.message,
            )
            content = format_error_content(exc.message, exc.status_code)
        except (httpx.HTTPError, httpx.InvalidURL, httpx.StreamError) as exc:
            logger.warning("assembly_transport_error", conversation_id=conversation_id, error=str(exc))
            content = format_error_content(str(exc) or type(exc).__name__)
        except UnicodeDecodeError as exc:
            logger.warning("assembly_decode_error", conversation_id=conversation_id, error=str(exc))
            content = format_error_content(f"Could not decode response: {exc.reason}")

        turn = await self._commit(conversation_id, content)
        logger.info(
            "assembly_committed",
            conversation_id=conversation_id,
            turn_id=turn.id,
            content_length=len(turn.content),
        )
        return turn

    async def _collect(self, draft: DraftTurn, messages: Sequence[ChatMessage], context: str) -> str:
        decoder = codecs.getincrementaldecoder("utf-8")()
        acc = ""
        async for chunk in self.relay.stream_reply(messages, context):
            acc += decoder.decode(chunk)
            draft.content = acc
            self._emit_draft(draft)
        acc += decoder.decode(b"", final=True)
        if not acc:
            raise RelayError("No response body")
        draft.content = acc
        return acc

    async def _commit(self, conversation_id: str, content: str) -> TurnRead:
        turn = TurnCreate(
            conversation_id=conversation_id,
            role=Role.ASSISTANT,
            content=content,
            timestamp=self.clock(),
        )
        turn_id = await self.store.append(turn)
        committed = TurnRead(id=turn_id, **turn.model_dump())
        if self.listener is not None:
            self.listener.on_commit(committed)
        return committed

    def _emit_draft(self, draft: DraftTurn) -> None:
        if self.listener is not None:
            self.listener.on_draft(draft)
