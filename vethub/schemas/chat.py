from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

from vethub.core.timeutils import as_utc
from vethub.models.chat import MessageType
from vethub.schemas.auth import UserBrief

class MessageOut(BaseModel):
    id: str
    chat_id: str
    sender_id: str
    type: MessageType
    content: str
    read_by: list[str] = []
    created_at: datetime
    sender: Optional[UserBrief] = None

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @staticmethod
    def from_model(m, read_by: list[str] | None = None, sender=None) -> "MessageOut":
        return MessageOut(
            id=m.id,
            chat_id=m.chat_id,
            sender_id=m.sender_id,
            type=m.type,
            content=m.content,
            read_by=read_by if read_by is not None else [],
            created_at=m.created_at,
            sender=UserBrief.model_validate(sender) if sender is not None else None,
        )

class ChatOut(BaseModel):
    id: str
    participants: list[UserBrief]
    veterinarian_id: Optional[str] = None
    is_group: bool
    name: str
    last_message: Optional[MessageOut] = None
    unread_count: int = 0
    created_at: datetime
    updated_at: datetime

    @field_validator("created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @staticmethod
    def from_model(c, last_message: MessageOut | None = None, unread_count: int = 0) -> "ChatOut":
        """Arma la salida sin tocar relaciones lazy (participants tiene que venir cargado)."""
        return ChatOut(
            id=c.id,
            participants=[UserBrief.model_validate(u) for u in c.participants],
            veterinarian_id=c.veterinarian_id,
            is_group=c.is_group,
            name=c.name,
            last_message=last_message,
            unread_count=unread_count,
            created_at=c.created_at,
            updated_at=c.updated_at,
        )

class SendMessageOut(BaseModel):
    message: MessageOut
    chat: ChatOut
    chat_created: bool = False

class MarkReadIn(BaseModel):
    chat_id: str
    message_ids: Optional[list[str]] = None   # None = todos los no leídos

class MarkReadOut(BaseModel):
    success: bool = True
    modified_count: int

class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int

class ConversationsPage(BaseModel):
    conversations: list[ChatOut]
    pagination: Pagination

class MessagesPage(BaseModel):
    messages: list[MessageOut]
    pagination: Pagination
