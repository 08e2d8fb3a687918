from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select, delete, exists
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.api.deps import get_current_user, require_roles
from vethub.models.user import User, RoleEnum
from vethub.models.animal import Animal
from vethub.models.appointment import Appointment
from vethub.schemas.animal import AnimalCreate, AnimalOut
from vethub.services import directory

router = APIRouter(prefix="/animals", tags=["animals"])

async def _get_animal_or_404(id: str, db: AsyncSession) -> Animal:
    if not directory.is_valid_id(id):
        raise HTTPException(status_code=400, detail="animal_id inválido")
    res = await db.execute(select(Animal).where(Animal.id == id))
    animal = res.scalar_one_or_none()
    if not animal:
        raise HTTPException(status_code=404, detail="Mascota no encontrada")
    return animal

def _can_view(user: User, animal: Animal) -> bool:
    # dueño, staff o admin
    return user.id == animal.owner_id or user.role != RoleEnum.client

@router.post("/", response_model=AnimalOut, status_code=201)
async def create_animal(
    payload: AnimalCreate,
    current: User = Depends(require_roles(RoleEnum.client)),
    db: AsyncSession = Depends(get_db),
):
    animal = Animal(owner_id=current.id, **payload.model_dump())
    db.add(animal)
    await db.commit()
    await db.refresh(animal)
    return animal

@router.get("/me", response_model=list[AnimalOut])
async def my_animals(current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    res = await db.execute(select(Animal).where(Animal.owner_id == current.id).order_by(Animal.name))
    return res.scalars().all()

@router.get("/{id}", response_model=AnimalOut)
async def get_animal(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    animal = await _get_animal_or_404(id, db)
    if not _can_view(current, animal):
        raise HTTPException(status_code=403, detail="Permiso denegado")
    return animal

@router.delete("/{id}", status_code=204)
async def delete_animal(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    animal = await _get_animal_or_404(id, db)
    if current.role != RoleEnum.admin and current.id != animal.owner_id:
        raise HTTPException(status_code=403, detail="Permiso denegado")
    used = await db.execute(select(exists().where(Appointment.animal_id == animal.id)))
    if used.scalar():
        raise HTTPException(status_code=409, detail="La mascota tiene turnos; borralos primero")
    await db.execute(delete(Animal).where(Animal.id == animal.id))
    await db.commit()
    return
