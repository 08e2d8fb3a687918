# vethub/models/chat.py
from __future__ import annotations
import enum
import uuid
from datetime import datetime
from typing import TYPE_CHECKING
from sqlalchemy import String, Enum, ForeignKey, DateTime, Boolean, Text, Table, Column, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from vethub.core.db import Base, utcnow

if TYPE_CHECKING:
    from vethub.models.user import User  # sólo para hints


chat_participants = Table(
    "chat_participants",
    Base.metadata,
    Column("chat_id", String(36), ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
)

message_reads = Table(
    "message_reads",
    Base.metadata,
    Column("message_id", String(36), ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True, index=True),
)


class MessageType(str, enum.Enum):
    text = "text"
    image = "image"
    video = "video"
    audio = "audio"
    file = "file"


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    # sha256 de los ids ordenados: un único chat por set de participantes
    participants_key: Mapped[str] = mapped_column(String(64), unique=True)
    veterinarian_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    is_group: Mapped[bool] = mapped_column(Boolean, default=True)
    name: Mapped[str] = mapped_column(String(255), default="")
    # sin FK para no armar un ciclo chats <-> messages
    last_message_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, index=True)

    participants: Mapped[list["User"]] = relationship("User", secondary=chat_participants, lazy="raise")


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id: Mapped[str] = mapped_column(String(36), ForeignKey("chats.id", ondelete="CASCADE"))
    sender_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    type: Mapped[MessageType] = mapped_column(Enum(MessageType), default=MessageType.text)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)

    sender: Mapped["User"] = relationship("User", lazy="raise")
    readers: Mapped[list["User"]] = relationship("User", secondary=message_reads, lazy="raise")

    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )
