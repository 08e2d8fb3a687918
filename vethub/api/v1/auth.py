from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.core.security import hash_password, verify_password, create_access_token
from vethub.models.user import User, RoleEnum
from vethub.schemas.auth import RegisterIn, LoginIn, TokenOut, UserOut
from vethub.api.deps import get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])

@router.post("/register", response_model=UserOut, status_code=201)
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)):
    exists = await db.execute(select(User).where(User.email == payload.email.lower()))
    if exists.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="El email ya está registrado.")

    role = RoleEnum(payload.role.value)
    vet_id = None
    if role == RoleEnum.secretary:
        # la secretaria trabaja para un veterinario existente
        if not payload.veterinarian_id:
            raise HTTPException(status_code=400, detail="Falta veterinarian_id para la secretaria")
        res = await db.execute(
            select(User).where(User.id == payload.veterinarian_id, User.role == RoleEnum.veterinarian)
        )
        if not res.scalar_one_or_none():
            raise HTTPException(status_code=404, detail="Veterinario no encontrado")
        vet_id = payload.veterinarian_id

    user = User(
        email=payload.email.lower(),
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        role=role,
        veterinarian_id=vet_id,
        hashed_password=hash_password(payload.password),
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user

@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == payload.email.lower()))
    user = result.scalar_one_or_none()
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Credenciales inválidas")

    if not user.is_active:
        raise HTTPException(status_code=403, detail="Usuario inactivo")

    token = create_access_token(subject=user.id, extra={"role": user.role.value})
    return TokenOut(access_token=token)

@router.get("/me", response_model=UserOut)
async def me(current_user: User = Depends(get_current_user)):
    return current_user
