from __future__ import annotations

from sqlalchemy import BigInteger, Enum, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from parley.models.base import Base, Role


class Turn(Base):
    """One persisted message in a conversation.

    Rows are append-only: a turn is inserted once, never updated, and only
    removed together with every other turn sharing its ``conversation_id``.
    Ordering within a conversation is ``timestamp`` then ``id``.
    """

    __tablename__ = "turns"
    __table_args__ = {"sqlite_autoincrement": True}

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    conversation_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role, native_enum=False, length=16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    timestamp: Mapped[int] = mapped_column(BigInteger, nullable=False)
