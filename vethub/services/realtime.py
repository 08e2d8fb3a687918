# vethub/services/realtime.py
"""
Registro de conexiones WebSocket por usuario y envío de eventos.

Un usuario puede tener varias pestañas abiertas: se guarda un set de sockets
por id. Las altas/bajas pasan por un lock; ``emit`` trabaja sobre una copia
del set, así que un envío lento no bloquea conexiones nuevas.
"""
import asyncio
import logging
from typing import Any, Protocol

from fastapi import WebSocket

log = logging.getLogger(__name__)


class Notifier(Protocol):
    async def emit(self, participant_id: str, event: str, payload: Any) -> None: ...


class ConnectionManager:
    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, user_id: str, ws: WebSocket) -> None:
        async with self._lock:
            self._connections.setdefault(user_id, set()).add(ws)
        log.info("ws conectado user=%s (%d sockets)", user_id, len(self._connections[user_id]))

    async def disconnect(self, user_id: str, ws: WebSocket) -> None:
        async with self._lock:
            sockets = self._connections.get(user_id)
            if sockets is None:
                return
            sockets.discard(ws)
            if not sockets:
                del self._connections[user_id]
        log.info("ws desconectado user=%s", user_id)

    def is_connected(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    async def emit(self, participant_id: str, event: str, payload: Any) -> None:
        sockets = list(self._connections.get(participant_id, ()))
        if not sockets:
            log.debug("evento %s descartado: %s sin conexión", event, participant_id)
            return
        frame = {"event": event, "data": payload}
        for ws in sockets:
            try:
                await ws.send_json(frame)
            except Exception:
                # socket muerto: se saca del registro, el mensaje ya está persistido
                log.warning("no se pudo enviar %s a %s; se descarta el socket", event, participant_id, exc_info=True)
                await self.disconnect(participant_id, ws)


manager = ConnectionManager()


def get_notifier() -> Notifier:
    return manager
