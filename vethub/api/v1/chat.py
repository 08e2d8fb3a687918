import logging
import re
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.core.config import settings
from vethub.core.cdn import upload_chat_media, destroy
from vethub.api.deps import get_current_user
from vethub.models.user import User
from vethub.schemas.chat import (
    SendMessageOut, MarkReadIn, MarkReadOut, ConversationsPage, MessagesPage,
)
from vethub.services import conversations
from vethub.services.realtime import Notifier, get_notifier

log = logging.getLogger(__name__)

MAX_BYTES = settings.CHAT_MAX_UPLOAD_MB * 1024 * 1024

# imágenes, mp4/webm, mp3/wav/ogg, pdf, txt, doc, docx
_ALLOWED_TYPES = (
    re.compile(r"^image/"),
    re.compile(r"^video/(mp4|webm)$"),
    re.compile(r"^audio/(mpeg|wav|ogg)$"),
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

router = APIRouter(prefix="/chat", tags=["chat"])

def _is_allowed(content_type: str) -> bool:
    return any(
        t.match(content_type) if isinstance(t, re.Pattern) else t == content_type
        for t in _ALLOWED_TYPES
    )

async def _read_and_validate_media(file: UploadFile) -> bytes:
    ct = (file.content_type or "").lower()
    if not _is_allowed(ct):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Tipo de archivo no soportado: {ct or 'desconocido'}",
        )
    b = await file.read()
    if len(b) > MAX_BYTES:
        raise HTTPException(status_code=413, detail=f"Máximo {settings.CHAT_MAX_UPLOAD_MB} MB")
    return b

# ---------- enviar ----------
@router.post("/messages", response_model=SendMessageOut, status_code=201)
async def send_message(
    content: Optional[str] = Form(None),
    recipient_id: Optional[str] = Form(None),
    veterinarian_id: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    if file is None:
        return await conversations.send_message(
            db, notifier, current,
            content=content, recipient_id=recipient_id, veterinarian_id=veterinarian_id,
        )

    data = await _read_and_validate_media(file)
    url, public_id, resource_type = upload_chat_media(data, file.content_type, settings.MEDIA_FOLDER_CHATS)
    try:
        return await conversations.send_message(
            db, notifier, current,
            media_url=url, media_content_type=file.content_type,
            recipient_id=recipient_id, veterinarian_id=veterinarian_id,
        )
    except Exception:
        # el mensaje no se guardó: no dejamos el archivo huérfano en Cloudinary
        log.info("envío fallido, se borra el adjunto %s", public_id)
        destroy(public_id, resource_type=resource_type)
        raise

# ---------- leídos ----------
@router.post("/messages/read", response_model=MarkReadOut)
async def mark_as_read(
    body: MarkReadIn,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
):
    n = await conversations.mark_as_read(db, notifier, current, body.chat_id, body.message_ids)
    return MarkReadOut(modified_count=n)

# ---------- listados ----------
@router.get("/conversations", response_model=ConversationsPage)
async def get_conversations(
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await conversations.get_conversations(db, current, search, page)

@router.get("/conversations/{chat_id}/messages", response_model=MessagesPage)
async def get_messages(
    chat_id: str,
    page: int = Query(1, ge=1),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await conversations.get_messages(db, current, chat_id, page)
