from __future__ import annotations

import asyncio
import enum
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

import structlog

from parley.assembler import DraftTurn, StreamingAssembler
from parley.config import settings
from parley.directory import ConversationDirectory
from parley.exceptions import STORE_ERRORS
from parley.knowledge import load_faq_questions, load_knowledge_context
from parley.legacy import LegacyHistory
from parley.migration import LegacyMigrator
from parley.models.base import Role, now_ms
from parley.projects import (
    ProjectCatalog,
    ProjectRecord,
    load_project_catalog,
    new_conversation_id,
    resolve_conversation_id,
)
from parley.relay_client import RelayClient
from parley.schemas.chat import ChatMessage
from parley.schemas.conversation import ConversationSummary, TurnCreate, TurnRead
from parley.store import MessageStore

logger = structlog.get_logger()

BOOTSTRAP_QUESTION = (
    "Could you explain about this project in more detail, As I am a new client, "
    "I want to know about this project."
)


class SessionState(str, enum.Enum):
    NO_ACTIVE_CONVERSATION = "no_active_conversation"
    CONVERSATION_LOADED = "conversation_loaded"
    AWAITING_RESPONSE = "awaiting_response"


class SessionController:
    """Tracks the active conversation and drives sends through the assembler.

    One request may be outstanding per conversation; a second ``send`` on a
    conversation that is awaiting its reply is rejected, not queued. The user
    may switch to another conversation while a reply streams: the reply is
    committed to the conversation it was requested for and only shows up in
    :attr:`messages` when that conversation is active.

    Args:
        store: Open message store.
        relay: Relay client used by the assembler.
        migrator: Legacy migrator run by :meth:`hydrate`.
        knowledge_loader: Returns the rendered knowledge text ("" on failure).
        catalog_loader: Returns the project catalog (empty on failure).
        faq_loader: Returns the quick questions offered by :meth:`ask_faq`.
        window: Number of recent turns replayed to the relay.
        clock: Millisecond clock, injectable for tests.
        on_change: Called after every change of displayed state.
    """

    def __init__(
        self,
        store: MessageStore,
        relay: RelayClient,
        migrator: LegacyMigrator | None = None,
        knowledge_loader: Callable[[], str] = load_knowledge_context,
        catalog_loader: Callable[[], ProjectCatalog] = load_project_catalog,
        faq_loader: Callable[[], list[str]] = load_faq_questions,
        window: int | None = None,
        clock: Callable[[], int] = now_ms,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.store = store
        self.directory = ConversationDirectory(store)
        self.migrator = migrator or LegacyMigrator(store, LegacyHistory())
        self.assembler = StreamingAssembler(store, relay, listener=self, clock=clock)
        self.window = settings.CONTEXT_WINDOW_MESSAGES if window is None else window
        self.clock = clock
        self.on_change = on_change
        self._knowledge_loader = knowledge_loader
        self._catalog_loader = catalog_loader
        self._faq_loader = faq_loader

        self.knowledge_context = ""
        self.catalog = ProjectCatalog()
        self.faq_questions: list[str] = []
        self.conversations: list[ConversationSummary] = []

        self.active_conversation_id: str | None = None
        self.active_record: ProjectRecord | None = None
        self._turns: list[TurnRead] = []
        self._drafts: dict[str, DraftTurn] = {}
        self._in_flight: set[str] = set()
        self._deleted_in_flight: set[str] = set()

    # -- state ---------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self.active_conversation_id is None:
            return SessionState.NO_ACTIVE_CONVERSATION
        if self.active_conversation_id in self._in_flight:
            return SessionState.AWAITING_RESPONSE
        return SessionState.CONVERSATION_LOADED

    @property
    def in_flight(self) -> bool:
        return self.state is SessionState.AWAITING_RESPONSE

    @property
    def messages(self) -> list[TurnRead | DraftTurn]:
        """Turns of the active conversation, plus its live draft while one streams."""
        shown: list[TurnRead | DraftTurn] = list(self._turns)
        draft = self._drafts.get(self.active_conversation_id or "")
        if draft is not None:
            shown.append(draft)
        return shown

    # -- assembly listener -----------------------------------------------------

    def on_draft(self, draft: DraftTurn) -> None:
        self._drafts[draft.conversation_id] = draft
        if draft.conversation_id == self.active_conversation_id:
            self._notify()

    def on_commit(self, turn: TurnRead) -> None:
        self._drafts.pop(turn.conversation_id, None)
        if turn.conversation_id == self.active_conversation_id:
            self._turns.append(turn)
            self._notify()

    # -- lifecycle -------------------------------------------------------------

    async def hydrate(self) -> None:
        """Start-up: migrate legacy history, load context collaborators, list conversations.

        Every step degrades to an empty result; none of them blocks chatting.
        """
        try:
            await self.migrator.migrate()
        except STORE_ERRORS as exc:
            logger.warning("legacy_migration_skipped", error=str(exc))

        self.knowledge_context = await asyncio.to_thread(self._knowledge_loader)
        self.catalog = await asyncio.to_thread(self._catalog_loader)
        self.faq_questions = await asyncio.to_thread(self._faq_loader)
        await self.refresh_conversations()
        logger.info(
            "session_hydrated",
            knowledge_chars=len(self.knowledge_context),
            projects=len(self.catalog),
            conversations=len(self.conversations),
        )

    async def refresh_conversations(self) -> list[ConversationSummary]:
        self.conversations = await self.directory.list_with_metadata()
        self._notify()
        return self.conversations

    async def start_new_chat(self) -> str:
        """Open a fresh, empty ad hoc conversation and return its id."""
        self.active_record = None
        self.active_conversation_id = new_conversation_id(self.clock)
        self._turns = []
        await self.refresh_conversations()
        logger.info("conversation_started", conversation_id=self.active_conversation_id)
        return self.active_conversation_id

    async def select_conversation(self, conversation_id: str) -> list[TurnRead]:
        """Make ``conversation_id`` active and load its turns.

        The project record bound to the id, if any, becomes the active context.
        """
        self.active_conversation_id = conversation_id
        self.active_record = self.catalog.record_for(conversation_id)
        self._turns = await self._load(conversation_id)
        self._notify()
        return self._turns

    async def select_context_record(self, record: ProjectRecord) -> TurnRead | None:
        """Open the conversation bound to ``record``.

        A conversation with no turns yet gets the bootstrap question sent on
        the user's behalf; later selections of the same conversation do not.

        Returns:
            The assistant reply to the bootstrap question, or ``None`` when no
            bootstrap was sent.
        """
        conversation_id = resolve_conversation_id(record)
        self.active_record = record
        self.active_conversation_id = conversation_id
        self._turns = await self._load(conversation_id)
        await self.refresh_conversations()

        if self._turns or conversation_id in self._in_flight:
            return None
        logger.info("conversation_bootstrap", conversation_id=conversation_id, project_id=record.project_id)
        return await self._submit(conversation_id, BOOTSTRAP_QUESTION, record)

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete every turn of a conversation. Confirmation is the caller's job.

        Returns:
            ``False`` when the store is unavailable, ``True`` otherwise.
        """
        try:
            await self.store.delete_conversation(conversation_id)
        except STORE_ERRORS as exc:
            logger.error("conversation_delete_failed", conversation_id=conversation_id, error=str(exc))
            return False

        if conversation_id in self._in_flight:
            self._deleted_in_flight.add(conversation_id)
        if conversation_id == self.active_conversation_id:
            self.active_conversation_id = None
            self.active_record = None
            self._turns = []
        await self.refresh_conversations()
        return True

    # -- sending ---------------------------------------------------------------

    async def send(self, text: str) -> TurnRead | None:
        """Send a user message in the active conversation.

        Blank text and a send while the conversation awaits its reply are
        rejected without any I/O.

        Returns:
            The committed assistant turn (reply or error turn), or ``None`` when
            the send was rejected.
        """
        text = text.strip()
        if not text:
            return None

        # The loaded conversation wins; a record only names one when none is loaded.
        conversation_id = self.active_conversation_id or resolve_conversation_id(self.active_record, None, self.clock)
        if conversation_id in self._in_flight:
            logger.debug("send_rejected_in_flight", conversation_id=conversation_id)
            return None

        self.active_conversation_id = conversation_id
        return await self._submit(conversation_id, text, self.active_record)

    async def ask_faq(self, question: str) -> TurnRead | None:
        """Send one of :attr:`faq_questions` as if the user had typed it.

        Starts an ad hoc conversation when none is loaded; otherwise follows
        the same rejection rules as :meth:`send`.
        """
        logger.info("faq_asked", question=question)
        return await self.send(question)

    def build_context(self, record: ProjectRecord | None) -> str:
        """Knowledge text followed by the record's rendered text, when there is one."""
        if record is None:
            return self.knowledge_context
        return f"{self.knowledge_context}\n\n{record.to_context()}"

    async def _submit(self, conversation_id: str, text: str, record: ProjectRecord | None) -> TurnRead | None:
        user_turn = TurnCreate(
            conversation_id=conversation_id,
            role=Role.USER,
            content=text,
            timestamp=self.clock(),
        )
        try:
            turn_id = await self.store.append(user_turn)
        except STORE_ERRORS as exc:
            logger.error("send_failed", conversation_id=conversation_id, error=str(exc))
            return None

        if conversation_id == self.active_conversation_id:
            self._turns.append(TurnRead(id=turn_id, **user_turn.model_dump()))
        self._in_flight.add(conversation_id)
        self._notify()

        reply: TurnRead | None = None
        try:
            window = await self.store.recent(conversation_id, self.window)
            messages = [ChatMessage(role=t.role, content=t.content) for t in window]
            reply = await self.assembler.respond(conversation_id, messages, self.build_context(record))
        except STORE_ERRORS as exc:
            logger.error("send_failed", conversation_id=conversation_id, error=str(exc))
        finally:
            self._in_flight.discard(conversation_id)
            self._drafts.pop(conversation_id, None)
            if conversation_id in self._deleted_in_flight:
                self._deleted_in_flight.discard(conversation_id)
                await self._purge(conversation_id)
                reply = None
            await self.refresh_conversations()
        return reply

    async def _purge(self, conversation_id: str) -> None:
        try:
            await self.store.delete_conversation(conversation_id)
        except STORE_ERRORS as exc:
            logger.error("conversation_delete_failed", conversation_id=conversation_id, error=str(exc))

    async def _load(self, conversation_id: str) -> list[TurnRead]:
        try:
            return await self.store.by_conversation(conversation_id)
        except STORE_ERRORS as exc:
            logger.warning("conversation_load_skipped", conversation_id=conversation_id, error=str(exc))
            return []

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change()


@asynccontextmanager
async def open_session(
    database_url: str | None = None,
    relay_url: str | None = None,
) -> AsyncIterator[SessionController]:
    """Open the store and relay client, hydrate a controller, and close both on exit."""
    async with MessageStore(database_url) as store, RelayClient(relay_url) as relay:
        controller = SessionController(store, relay)
        await controller.hydrate()
        yield controller
