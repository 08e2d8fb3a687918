# vethub/services/directory.py
"""
Lecturas de usuarios y mascotas que usan el scheduler y el chat.
Sólo consultas: acá no se escribe nada.
"""
import uuid
from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.errors import InvalidInput
from vethub.models.user import User, RoleEnum
from vethub.models.animal import Animal


def is_valid_id(value) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def ensure_valid_id(value, field: str) -> str:
    if not is_valid_id(value):
        raise InvalidInput(f"{field} inválido")
    return value


async def find_by_id(db: AsyncSession, user_id: str) -> User | None:
    if not is_valid_id(user_id):
        return None
    res = await db.execute(select(User).where(User.id == user_id))
    return res.scalar_one_or_none()


async def exists_with_role(db: AsyncSession, user_id: str, role: RoleEnum) -> bool:
    if not is_valid_id(user_id):
        return False
    res = await db.execute(
        select(exists().where(User.id == user_id, User.role == role, User.is_active.is_(True)))
    )
    return bool(res.scalar())


async def find_secretaries_of(db: AsyncSession, vet_id: str) -> list[str]:
    res = await db.execute(
        select(User.id).where(
            User.role == RoleEnum.secretary,
            User.veterinarian_id == vet_id,
            User.is_active.is_(True),
        )
    )
    return list(res.scalars().all())


async def find_any_veterinarian(db: AsyncSession) -> User | None:
    res = await db.execute(
        select(User)
        .where(User.role == RoleEnum.veterinarian, User.is_active.is_(True))
        .order_by(User.created_at)
        .limit(1)
    )
    return res.scalar_one_or_none()


async def find_owned_animal(db: AsyncSession, animal_id: str, owner_id: str) -> Animal | None:
    if not is_valid_id(animal_id):
        return None
    res = await db.execute(
        select(Animal).where(Animal.id == animal_id, Animal.owner_id == owner_id)
    )
    return res.scalar_one_or_none()


def works_for(user: User, vet_id: str) -> bool:
    """True si el usuario es el veterinario o una de sus secretarias."""
    if user.role == RoleEnum.veterinarian:
        return user.id == vet_id
    if user.role == RoleEnum.secretary:
        return user.veterinarian_id == vet_id
    return False
