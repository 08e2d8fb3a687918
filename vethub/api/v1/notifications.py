from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.api.deps import get_current_user
from vethub.models.user import User
from vethub.models.notification import Notification
from vethub.schemas.notification import NotificationOut, NotificationsOut

router = APIRouter(prefix="/notifications", tags=["notifications"])

@router.get("/me", response_model=NotificationsOut)
async def my_notifications(
    limit: int = Query(50, ge=1, le=200),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    res = await db.execute(
        select(Notification)
        .where(Notification.user_id == current.id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    items = res.scalars().all()
    unread = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == current.id, Notification.read.is_(False)
        )
    )
    return NotificationsOut(
        notifications=[NotificationOut.model_validate(n) for n in items],
        count=len(items),
        unread_count=unread.scalar_one(),
    )

@router.patch("/{id}/read", response_model=NotificationOut)
async def mark_notification_read(
    id: str,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    res = await db.execute(select(Notification).where(Notification.id == id))
    n = res.scalar_one_or_none()
    # ajena o inexistente: 404 igual
    if not n or n.user_id != current.id:
        raise HTTPException(status_code=404, detail="Notificación no encontrada")
    if not n.read:
        n.read = True
        await db.commit()
    return n
