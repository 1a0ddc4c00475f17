from __future__ import annotations

from types import TracebackType

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from parley.config import settings
from parley.exceptions import StoreUnavailableError
from parley.models import Base, Turn
from parley.schemas.conversation import TurnCreate, TurnRead

logger = structlog.get_logger()


class MessageStore:
    """Append-only, per-conversation log of chat turns.

    The store is an explicit handle: nothing touches the database until
    :meth:`open` has run, and every operation on a store that is not open
    raises :class:`StoreUnavailableError` instead of silently doing nothing.
    Each write runs in its own transaction, so a reader never observes a
    half-written turn or a partially deleted conversation.

    Usage::

        async with MessageStore("sqlite+aiosqlite:///./parley.db") as store:
            turn_id = await store.append(TurnCreate(conversation_id="c1", role="user", content="hi"))
            turns = await store.by_conversation("c1")
    """

    def __init__(self, database_url: str | None = None) -> None:
        self.database_url = database_url or settings.DATABASE_URL
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._session_factory is not None

    async def open(self) -> None:
        """Create the engine and the ``turns`` schema when missing. Idempotent."""
        if self._engine is not None:
            return
        engine = create_async_engine(self.database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self._engine = engine
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)
        logger.info("message_store_opened", url=self.database_url)

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("message_store_closed", url=self.database_url)

    async def __aenter__(self) -> MessageStore:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise StoreUnavailableError()
        return self._session_factory

    async def append(self, turn: TurnCreate) -> int:
        """Persist ``turn`` and return its store-assigned key.

        Args:
            turn: A validated turn without a surrogate key.

        Returns:
            The monotonically increasing integer key of the new row.

        Raises:
            StoreUnavailableError: If the store is not open.
        """
        factory = self._sessions()
        async with factory() as session, session.begin():
            row = Turn(
                conversation_id=turn.conversation_id,
                role=turn.role,
                content=turn.content,
                timestamp=turn.timestamp,
            )
            session.add(row)
            await session.flush()
            turn_id = row.id

        logger.debug(
            "turn_appended",
            turn_id=turn_id,
            conversation_id=turn.conversation_id,
            role=turn.role.value,
            content_length=len(turn.content),
        )
        return turn_id

    async def by_conversation(self, conversation_id: str) -> list[TurnRead]:
        """Return every turn of a conversation, oldest first.

        Ties on ``timestamp`` are broken by insertion order. An unknown id
        yields an empty list.
        """
        factory = self._sessions()
        stmt = (
            select(Turn)
            .where(Turn.conversation_id == conversation_id)
            .order_by(Turn.timestamp.asc(), Turn.id.asc())
        )
        async with factory() as session:
            result = await session.execute(stmt)
            return [TurnRead.model_validate(row) for row in result.scalars().all()]

    async def recent(self, conversation_id: str, limit: int | None = None) -> list[TurnRead]:
        """Return the last ``limit`` turns of a conversation in chronological order.

        Args:
            conversation_id: Conversation to read.
            limit: Window size; defaults to ``settings.CONTEXT_WINDOW_MESSAGES``.

        Returns:
            At most ``limit`` turns, oldest first.
        """
        window = settings.CONTEXT_WINDOW_MESSAGES if limit is None else limit
        if window <= 0:
            return []
        factory = self._sessions()
        stmt = (
            select(Turn)
            .where(Turn.conversation_id == conversation_id)
            .order_by(Turn.timestamp.desc(), Turn.id.desc())
            .limit(window)
        )
        async with factory() as session:
            result = await session.execute(stmt)
            rows = list(reversed(result.scalars().all()))
        return [TurnRead.model_validate(row) for row in rows]

    async def delete_conversation(self, conversation_id: str) -> None:
        """Remove every turn of a conversation. Deleting an unknown id is a no-op."""
        factory = self._sessions()
        async with factory() as session, session.begin():
            result = await session.execute(delete(Turn).where(Turn.conversation_id == conversation_id))
        logger.info("conversation_deleted", conversation_id=conversation_id, turns_deleted=result.rowcount)

    async def all_conversation_ids(self) -> set[str]:
        factory = self._sessions()
        async with factory() as session:
            result = await session.execute(select(Turn.conversation_id).distinct())
            return set(result.scalars().all())

    async def all_turns(self) -> list[TurnRead]:
        """Full scan ordered by conversation, then timestamp, then key."""
        factory = self._sessions()
        stmt = select(Turn).order_by(Turn.conversation_id.asc(), Turn.timestamp.asc(), Turn.id.asc())
        async with factory() as session:
            result = await session.execute(stmt)
            return [TurnRead.model_validate(row) for row in result.scalars().all()]
