from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.db import get_db
from vethub.api.deps import get_current_user, require_roles
from vethub.models.user import User, RoleEnum
from vethub.schemas.appointment import (
    AppointmentCreate, AppointmentUpdate, AppointmentOut, AppointmentPage,
    ClientBrief, ClientsWithAcceptedOut,
)
from vethub.schemas.animal import AnimalOut, AnimalsWithAcceptedOut
from vethub.services import scheduler


router = APIRouter(prefix="/appointments", tags=["appointments"])

# ---------- create ----------
@router.post("/", response_model=AppointmentOut, status_code=201)
async def create_appointment(
    payload: AppointmentCreate,
    current: User = Depends(require_roles(RoleEnum.client)),
    db: AsyncSession = Depends(get_db),
):
    return await scheduler.create(db, current, payload)

# ---------- listas ----------
@router.get("/client/{client_id}", response_model=AppointmentPage)
async def list_client_appointments(
    client_id: str,
    page: int = Query(1, ge=1),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await scheduler.list_for_client(db, current, client_id, page)

@router.get("/veterinarian/{vet_id}", response_model=AppointmentPage)
async def list_veterinarian_appointments(
    vet_id: str,
    page: int = Query(1, ge=1),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await scheduler.list_for_veterinarian(db, current, vet_id, page)

@router.get("/veterinarian/{vet_id}/clients", response_model=ClientsWithAcceptedOut)
async def clients_with_accepted(
    vet_id: str,
    first_name: str | None = Query(None),
    last_name: str | None = Query(None),
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    clients = await scheduler.clients_with_accepted(db, current, vet_id, first_name, last_name)
    return ClientsWithAcceptedOut(
        count=len(clients),
        clients=[ClientBrief.model_validate(c) for c in clients],
    )

@router.get("/veterinarian/{vet_id}/clients/{client_id}/animals", response_model=AnimalsWithAcceptedOut)
async def client_animals_with_accepted(
    vet_id: str,
    client_id: str,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    animals = await scheduler.client_animals_with_accepted(db, current, vet_id, client_id)
    return AnimalsWithAcceptedOut(
        count=len(animals),
        animals=[AnimalOut.model_validate(a) for a in animals],
    )

# ---------- get ----------
@router.get("/{id}", response_model=AppointmentOut)
async def get_appointment(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await scheduler.get(db, current, id)

# ---------- update ----------
@router.patch("/{id}", response_model=AppointmentOut)
async def update_appointment(
    id: str,
    patch: AppointmentUpdate,
    current: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await scheduler.update(db, current, id, patch.model_dump(exclude_unset=True))

# ---------- accept / reject ----------
@router.put("/{id}/accept", response_model=AppointmentOut)
async def accept_appointment(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await scheduler.accept(db, current, id)

@router.put("/{id}/reject", response_model=AppointmentOut)
async def reject_appointment(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await scheduler.reject(db, current, id)

# ---------- delete ----------
@router.delete("/{id}", status_code=204)
async def delete_appointment(id: str, current: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    await scheduler.remove(db, current, id)
    return
