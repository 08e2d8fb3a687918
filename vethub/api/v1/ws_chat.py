import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from fastapi.exceptions import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vethub.api.deps import token_from_ws, get_current_user_from_token
from vethub.core.db import get_session_factory
from vethub.core.errors import AppError, InvalidInput, Internal
from vethub.models.user import User
from vethub.services import conversations
from vethub.services.realtime import Notifier, manager

log = logging.getLogger(__name__)

router = APIRouter()


def _page(data: dict) -> int:
    try:
        page = int(data.get("page", 1))
    except (TypeError, ValueError):
        raise InvalidInput("page inválida")
    return page


async def handle_event(db: AsyncSession, notifier: Notifier, user: User, data: Any) -> tuple[str, Any]:
    """
    Ejecuta un comando recibido por el socket y devuelve (evento, payload)
    para responderle a quien lo mandó. Ejemplo de payload esperado:
    { "type": "send_message", "content": "...", "recipient_id": "..." }
    """
    if not isinstance(data, dict):
        raise InvalidInput("Se esperaba un objeto JSON")
    kind = data.get("type")

    if kind == "send_message":
        out = await conversations.send_message(
            db, notifier, user,
            content=data.get("content"),
            recipient_id=data.get("recipient_id"),
            veterinarian_id=data.get("veterinarian_id"),
        )
        return "messageSent", out.model_dump(mode="json")

    if kind == "mark_as_read":
        message_ids = data.get("message_ids")
        if message_ids is not None and not isinstance(message_ids, list):
            raise InvalidInput("message_ids debe ser una lista")
        n = await conversations.mark_as_read(db, notifier, user, data.get("chat_id"), message_ids)
        return "markedAsRead", {"chat_id": data.get("chat_id"), "modified_count": n}

    if kind == "get_conversations":
        out = await conversations.get_conversations(db, user, data.get("search"), _page(data))
        return "conversations", out.model_dump(mode="json")

    if kind == "get_messages":
        out = await conversations.get_messages(db, user, data.get("chat_id"), _page(data))
        return "messages", out.model_dump(mode="json")

    raise InvalidInput(f"Comando desconocido: {kind}")


@router.websocket("/ws/chat")
async def ws_chat(
    ws: WebSocket,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    token = token_from_ws(ws)
    if not token:
        # no se puede levantar HTTPException en un WebSocket: policy violation
        await ws.close(code=1008)
        return
    async with session_factory() as db:
        try:
            user = await get_current_user_from_token(token, db)
        except HTTPException:
            await ws.close(code=1008)
            return
    user_id = user.id

    await ws.accept()
    await manager.connect(user_id, ws)
    try:
        await ws.send_json({"event": "connected", "data": {"user_id": user_id, "role": user.role.value}})
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await ws.send_json({"event": "error", "data": InvalidInput("JSON inválido").to_dict()})
                continue
            # una sesión por evento; el usuario se relee por si cambió (p.ej. desactivado)
            async with session_factory() as db:
                try:
                    current = await get_current_user_from_token(token, db)
                    event, payload = await handle_event(db, manager, current, data)
                except AppError as e:
                    await ws.send_json({"event": "error", "data": e.to_dict()})
                    continue
                except HTTPException as e:
                    await ws.send_json({"event": "error", "data": {"code": "unauthorized", "detail": e.detail}})
                    continue
                except SQLAlchemyError:
                    log.exception("error de base en evento ws de %s", user_id)
                    await ws.send_json({"event": "error", "data": Internal().to_dict()})
                    continue
            await ws.send_json({"event": event, "data": payload})
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(user_id, ws)
