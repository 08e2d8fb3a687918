from fastapi import Depends, HTTPException, status, WebSocket
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.core.security import decode_subject
from vethub.models.user import User, RoleEnum


bearer = HTTPBearer(auto_error=True)

async def get_current_user_from_token(token: str, db: AsyncSession) -> User:
    sub = decode_subject(token)
    if not sub:
        raise HTTPException(status_code=401, detail="Token inválido")

    res = await db.execute(select(User).where(User.id == sub))
    user = res.scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="Usuario no encontrado")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Usuario inactivo")
    return user

async def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await get_current_user_from_token(creds.credentials, db)

# --- Role-based dependency ---
def require_roles(*roles: RoleEnum):
    async def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permiso denegado")
        return user
    return _guard

# --- WebSocket ---
def token_from_ws(ws: WebSocket) -> str | None:
    """
    Lee ?token=... del query string (o header Authorization: Bearer xxx).
    """
    token = ws.query_params.get("token")
    if not token:
        auth = ws.headers.get("authorization")
        if auth and auth.lower().startswith("bearer "):
            token = auth.split(" ", 1)[1]
    return token or None
