# vethub/services/conversations.py
"""
Chat cliente <-> veterinario (+ secretarías del veterinario).

Los participantes de un chat salen siempre de la misma regla:
{cliente, veterinario} ∪ secretarias del veterinario, sin repetidos y
ordenados por id. Ese set ordenado identifica al chat: se guarda su sha256
en ``chats.participants_key`` (UNIQUE), así que nunca hay dos chats con los
mismos participantes. REST y WebSocket usan estas mismas funciones.
"""
import hashlib
import logging
import math
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import select, insert, exists, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from vethub.core.config import settings
from vethub.core.db import utcnow
from vethub.core.errors import InvalidInput, NotFound, Forbidden
from vethub.core.locks import KeyedLock
from vethub.models.user import User, RoleEnum
from vethub.models.chat import Chat, Message, MessageType, chat_participants, message_reads
from vethub.schemas.chat import (
    MessageOut, ChatOut, SendMessageOut, ConversationsPage, MessagesPage, Pagination,
)
from vethub.services import directory
from vethub.services.realtime import Notifier

log = logging.getLogger(__name__)

_chat_locks = KeyedLock()
_read_locks = KeyedLock()


@dataclass
class Resolution:
    client_id: str
    veterinarian_id: str
    participants: list[str]
    initiated_by_client: bool


def canonical_participants(client_id: str, vet_id: str, secretary_ids: Iterable[str]) -> list[str]:
    return sorted({client_id, vet_id, *secretary_ids})


def participants_key(participant_ids: Iterable[str]) -> str:
    joined = "|".join(sorted(set(participant_ids)))
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


def message_type_for(content_type: str | None) -> MessageType:
    ct = (content_type or "").lower()
    if ct.startswith("image/"):
        return MessageType.image
    if ct.startswith("video/"):
        return MessageType.video
    if ct.startswith("audio/"):
        return MessageType.audio
    return MessageType.file


# ---------- participantes ----------
async def resolve_participants(
    db: AsyncSession,
    sender: User,
    recipient_id: str | None = None,
    veterinarian_id: str | None = None,
) -> Resolution:
    if sender.role == RoleEnum.client:
        if not veterinarian_id:
            raise InvalidInput("veterinarian_id es obligatorio")
        directory.ensure_valid_id(veterinarian_id, "veterinarian_id")
        if not await directory.exists_with_role(db, veterinarian_id, RoleEnum.veterinarian):
            raise NotFound("Veterinario no encontrado")
        client_id, vet_id = sender.id, veterinarian_id

    elif sender.role == RoleEnum.veterinarian:
        client_id = await _require_client(db, recipient_id)
        vet_id = sender.id

    elif sender.role == RoleEnum.secretary:
        if not sender.veterinarian_id:
            raise Forbidden("La secretaria no tiene veterinario asignado")
        if veterinarian_id and veterinarian_id != sender.veterinarian_id:
            raise Forbidden("No estás asignada a ese veterinario")
        client_id = await _require_client(db, recipient_id)
        vet_id = sender.veterinarian_id

    else:
        raise Forbidden("Rol sin acceso al chat")

    secretaries = await directory.find_secretaries_of(db, vet_id)
    return Resolution(
        client_id=client_id,
        veterinarian_id=vet_id,
        participants=canonical_participants(client_id, vet_id, secretaries),
        initiated_by_client=sender.role == RoleEnum.client,
    )


async def _require_client(db: AsyncSession, recipient_id: str | None) -> str:
    if not recipient_id:
        raise InvalidInput("recipient_id es obligatorio")
    directory.ensure_valid_id(recipient_id, "recipient_id")
    if not await directory.exists_with_role(db, recipient_id, RoleEnum.client):
        raise NotFound("Cliente no encontrado")
    return recipient_id


# ---------- chats ----------
async def _find_chat_by_key(db: AsyncSession, key: str) -> Chat | None:
    res = await db.execute(
        select(Chat).options(selectinload(Chat.participants)).where(Chat.participants_key == key)
    )
    return res.scalar_one_or_none()


async def _get_chat_or_404(db: AsyncSession, chat_id: str) -> Chat:
    directory.ensure_valid_id(chat_id, "chat_id")
    res = await db.execute(
        select(Chat).options(selectinload(Chat.participants)).where(Chat.id == chat_id)
    )
    chat = res.scalar_one_or_none()
    if not chat:
        raise NotFound("Chat no encontrado")
    return chat


def _participant_ids(chat: Chat) -> list[str]:
    return [u.id for u in chat.participants]


async def find_or_create_chat(db: AsyncSession, resolution: Resolution) -> tuple[Chat, bool]:
    """Devuelve (chat, creado)."""
    key = participants_key(resolution.participants)
    async with _chat_locks.hold(key):
        chat = await _find_chat_by_key(db, key)
        if chat:
            return chat, False

        res = await db.execute(select(User).where(User.id.in_(resolution.participants)))
        name = (
            "Discusión cliente → veterinario"
            if resolution.initiated_by_client
            else "Discusión veterinario → cliente"
        )
        chat = Chat(
            participants_key=key,
            veterinarian_id=resolution.veterinarian_id,
            is_group=True,
            name=name,
            participants=list(res.scalars().all()),
        )
        db.add(chat)
        try:
            await db.commit()
        except IntegrityError:
            # otro worker lo creó primero
            await db.rollback()
            chat = await _find_chat_by_key(db, key)
            if chat is None:
                raise
            return chat, False

    log.info("chat %s creado (%d participantes)", chat.id, len(resolution.participants))
    return chat, True


# ---------- lecturas ----------
def _unread_by(user_id: str):
    return and_(
        Message.sender_id != user_id,
        ~exists().where(message_reads.c.message_id == Message.id, message_reads.c.user_id == user_id),
    )


async def _read_by_map(db: AsyncSession, message_ids: list[str]) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {mid: [] for mid in message_ids}
    if not message_ids:
        return out
    res = await db.execute(
        select(message_reads.c.message_id, message_reads.c.user_id)
        .where(message_reads.c.message_id.in_(message_ids))
    )
    for mid, uid in res.all():
        out[mid].append(uid)
    for readers in out.values():
        readers.sort()
    return out


# ---------- envío ----------
async def _fan_out(notifier: Notifier, recipients: Iterable[str], event: str, payload) -> None:
    for pid in recipients:
        try:
            await notifier.emit(pid, event, payload)
        except Exception:
            log.exception("falló el envío realtime de %s a %s", event, pid)


async def send_message(
    db: AsyncSession,
    notifier: Notifier,
    sender: User,
    *,
    content: str | None = None,
    media_url: str | None = None,
    media_content_type: str | None = None,
    recipient_id: str | None = None,
    veterinarian_id: str | None = None,
) -> SendMessageOut:
    if media_url:
        msg_type = message_type_for(media_content_type)
        body = media_url.strip()
    else:
        msg_type = MessageType.text
        body = (content or "").strip()
        if len(body) > settings.TEXT_MESSAGE_MAX_LENGTH:
            raise InvalidInput(
                f"El mensaje supera los {settings.TEXT_MESSAGE_MAX_LENGTH} caracteres"
            )
    if not body:
        raise InvalidInput("El mensaje está vacío")

    resolution = await resolve_participants(db, sender, recipient_id, veterinarian_id)
    chat, created = await find_or_create_chat(db, resolution)

    msg = Message(chat_id=chat.id, sender_id=sender.id, type=msg_type, content=body)
    db.add(msg)
    await db.flush()
    # quien manda ya lo leyó
    await db.execute(insert(message_reads).values(message_id=msg.id, user_id=sender.id))
    chat.last_message_id = msg.id
    chat.updated_at = utcnow()
    await db.commit()

    message_out = MessageOut.from_model(msg, read_by=[sender.id], sender=sender)
    chat_out = ChatOut.from_model(chat, last_message=message_out, unread_count=0)

    participant_ids = _participant_ids(chat)
    others = [pid for pid in participant_ids if pid != sender.id]
    await _fan_out(
        notifier, others, "newMessage",
        {"chat_id": chat.id, "message": message_out.model_dump(mode="json")},
    )
    if created:
        for pid in participant_ids:
            per_user = chat_out.model_copy(update={"unread_count": 0 if pid == sender.id else 1})
            await _fan_out(notifier, [pid], "newChat", per_user.model_dump(mode="json"))

    return SendMessageOut(message=message_out, chat=chat_out, chat_created=created)


# ---------- leídos ----------
async def _insert_reads(db: AsyncSession, q, user_id: str) -> list[str]:
    res = await db.execute(q)
    newly_read = sorted(res.scalars().all())
    if newly_read:
        await db.execute(
            insert(message_reads),
            [{"message_id": mid, "user_id": user_id} for mid in newly_read],
        )
        await db.commit()
    return newly_read


async def mark_as_read(
    db: AsyncSession,
    notifier: Notifier,
    user: User,
    chat_id: str,
    message_ids: list[str] | None = None,
) -> int:
    """Marca como leídos los mensajes (todos los pendientes si message_ids es None). Devuelve cuántos cambió."""
    chat = await _get_chat_or_404(db, chat_id)
    chat_id, user_id = chat.id, user.id
    participant_ids = _participant_ids(chat)
    if user_id not in participant_ids:
        raise Forbidden("No participás de este chat")

    q = select(Message.id).where(Message.chat_id == chat_id, _unread_by(user_id))
    if message_ids is not None:
        for mid in message_ids:
            directory.ensure_valid_id(mid, "message_id")
        q = q.where(Message.id.in_(message_ids))

    # dos pestañas (o REST + socket) marcando lo mismo: la segunda ve 0 pendientes
    async with _read_locks.hold(f"{chat_id}:{user_id}"):
        try:
            newly_read = await _insert_reads(db, q, user_id)
        except IntegrityError:
            # otro worker ya los marcó; se recalcula sobre lo guardado
            await db.rollback()
            newly_read = await _insert_reads(db, q, user_id)

    others = [pid for pid in participant_ids if pid != user_id]
    await _fan_out(
        notifier, others, "messagesRead",
        {"chat_id": chat_id, "user_id": user_id, "message_ids": newly_read},
    )
    return len(newly_read)


# ---------- listados ----------
async def get_conversations(
    db: AsyncSession, user: User, search: str | None = None, page: int = 1
) -> ConversationsPage:
    if page < 1:
        raise InvalidInput("page debe ser >= 1")
    size = settings.CONVERSATIONS_PAGE_SIZE

    q = (
        select(Chat)
        .join(chat_participants, chat_participants.c.chat_id == Chat.id)
        .where(chat_participants.c.user_id == user.id)
    )
    if search and search.strip():
        # el cliente busca veterinarios; el staff busca clientes
        counterpart = RoleEnum.veterinarian if user.role == RoleEnum.client else RoleEnum.client
        pattern = f"%{search.strip()}%"
        cp = chat_participants.alias("cp")
        matching = (
            select(cp.c.chat_id)
            .join(User, User.id == cp.c.user_id)
            .where(
                User.role == counterpart,
                or_(User.first_name.ilike(pattern), User.last_name.ilike(pattern)),
            )
        )
        q = q.where(Chat.id.in_(matching))

    total = (await db.execute(select(func.count()).select_from(q.subquery()))).scalar_one()

    res = await db.execute(
        q.options(selectinload(Chat.participants))
        .order_by(Chat.updated_at.desc(), Chat.id)
        .offset((page - 1) * size)
        .limit(size)
    )
    chats = list(res.scalars().all())
    chat_ids = [c.id for c in chats]

    last_ids = [c.last_message_id for c in chats if c.last_message_id]
    last_messages: dict[str, Message] = {}
    if last_ids:
        res = await db.execute(
            select(Message).options(selectinload(Message.sender)).where(Message.id.in_(last_ids))
        )
        last_messages = {m.id: m for m in res.scalars().all()}
    read_by = await _read_by_map(db, list(last_messages))

    unread: dict[str, int] = {}
    if chat_ids:
        res = await db.execute(
            select(Message.chat_id, func.count(Message.id))
            .where(Message.chat_id.in_(chat_ids), _unread_by(user.id))
            .group_by(Message.chat_id)
        )
        unread = {cid: n for cid, n in res.all()}

    conversations = []
    for c in chats:
        m = last_messages.get(c.last_message_id) if c.last_message_id else None
        last = MessageOut.from_model(m, read_by=read_by[m.id], sender=m.sender) if m else None
        conversations.append(ChatOut.from_model(c, last_message=last, unread_count=unread.get(c.id, 0)))

    return ConversationsPage(
        conversations=conversations,
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / size),
            total_items=total,
        ),
    )


async def get_messages(db: AsyncSession, user: User, chat_id: str, page: int = 1) -> MessagesPage:
    if page < 1:
        raise InvalidInput("page debe ser >= 1")
    chat = await _get_chat_or_404(db, chat_id)
    if user.id not in _participant_ids(chat):
        raise Forbidden("No participás de este chat")
    size = settings.MESSAGES_PAGE_SIZE

    total = (await db.execute(
        select(func.count(Message.id)).where(Message.chat_id == chat.id)
    )).scalar_one()

    # se piden los más nuevos primero y se devuelven en orden cronológico
    res = await db.execute(
        select(Message)
        .options(selectinload(Message.sender))
        .where(Message.chat_id == chat.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset((page - 1) * size)
        .limit(size)
    )
    messages = list(reversed(res.scalars().all()))
    read_by = await _read_by_map(db, [m.id for m in messages])

    return MessagesPage(
        messages=[MessageOut.from_model(m, read_by=read_by[m.id], sender=m.sender) for m in messages],
        pagination=Pagination(
            current_page=page,
            total_pages=math.ceil(total / size),
            total_items=total,
        ),
    )
