from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.api.deps import get_current_user
from vethub.models.user import User, RoleEnum
from vethub.schemas.auth import UserBrief

router = APIRouter(prefix="/users", tags=["users"], dependencies=[Depends(get_current_user)])

@router.get("/veterinarians", response_model=list[UserBrief])
async def list_veterinarians(
    q: str | None = Query(None, description="Filtra por nombre o apellido"),
    db: AsyncSession = Depends(get_db),
):
    stmt = select(User).where(User.role == RoleEnum.veterinarian, User.is_active.is_(True))
    if q:
        like = f"%{q.strip()}%"
        stmt = stmt.where(or_(User.first_name.ilike(like), User.last_name.ilike(like)))
    res = await db.execute(stmt.order_by(User.last_name, User.first_name))
    return res.scalars().all()

@router.get("/veterinarians/{vet_id}/secretaries", response_model=list[UserBrief])
async def list_secretaries(vet_id: str, db: AsyncSession = Depends(get_db)):
    res = await db.execute(select(User).where(User.id == vet_id, User.role == RoleEnum.veterinarian))
    if not res.scalar_one_or_none():
        raise HTTPException(status_code=404, detail="Veterinario no encontrado")
    res = await db.execute(
        select(User)
        .where(User.role == RoleEnum.secretary, User.veterinarian_id == vet_id, User.is_active.is_(True))
        .order_by(User.last_name, User.first_name)
    )
    return res.scalars().all()
