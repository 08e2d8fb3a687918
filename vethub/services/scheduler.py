# vethub/services/scheduler.py
"""
Ciclo de vida de los turnos (appointments) entre cliente y veterinario.

Regla central: dos turnos *aceptados* del mismo veterinario no pueden caer
dentro de la ventana protegida. Hay dos políticas de ventana:

- al crear: ± APPOINTMENT_CREATE_WINDOW_MINUTES (inclusive), sólo contra
  turnos aceptados;
- al cambiar la fecha: [t - APPOINTMENT_UPDATE_WINDOW_MINUTES, t + ...),
  contra cualquier turno del mismo veterinario sin importar su estado.

El chequeo y la escritura corren con el veterinario "tomado": lock en proceso
por veterinario más ``SELECT ... FOR UPDATE`` sobre su fila de users (en MySQL
eso serializa también entre workers). El lock de fila se libera con el commit
o al cerrar la sesión.
"""
import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator

from sqlalchemy import select, delete, func
from sqlalchemy import update as sql_update
from sqlalchemy.ext.asyncio import AsyncSession

from vethub.core.config import settings
from vethub.core.errors import InvalidInput, NotFound, Forbidden, Conflict
from vethub.core.locks import KeyedLock
from vethub.core.timeutils import parse_local_datetime
from vethub.models.user import User, RoleEnum
from vethub.models.animal import Animal
from vethub.models.appointment import Appointment, ApptStatus, ApptType
from vethub.schemas.appointment import AppointmentCreate
from vethub.services import directory

log = logging.getLogger(__name__)

_vet_locks = KeyedLock()

# lo único que el cliente puede tocar en un PATCH
_EDITABLE = {"date", "animal_id", "type", "services", "case_description"}


# ---------- helpers ----------
@asynccontextmanager
async def _vet_slot(db: AsyncSession, vet_id: str) -> AsyncIterator[None]:
    async with _vet_locks.hold(vet_id):
        await db.execute(select(User.id).where(User.id == vet_id).with_for_update())
        yield


async def _get_appt_or_404(db: AsyncSession, appt_id: str) -> Appointment:
    directory.ensure_valid_id(appt_id, "appointment_id")
    res = await db.execute(select(Appointment).where(Appointment.id == appt_id))
    ap = res.scalar_one_or_none()
    if not ap:
        raise NotFound("Turno no encontrado")
    return ap


def _parse_type(value) -> ApptType:
    try:
        return ApptType(value)
    except ValueError:
        raise InvalidInput("type debe ser 'household' o 'clinic'")


async def find_create_conflict(
    db: AsyncSession, vet_id: str, when: datetime, exclude_id: str | None = None
) -> Appointment | None:
    window = timedelta(minutes=settings.APPOINTMENT_CREATE_WINDOW_MINUTES)
    q = select(Appointment).where(
        Appointment.veterinarian_id == vet_id,
        Appointment.status == ApptStatus.accepted,
        Appointment.date >= when - window,
        Appointment.date <= when + window,
    )
    if exclude_id:
        q = q.where(Appointment.id != exclude_id)
    res = await db.execute(q.limit(1))
    return res.scalar_one_or_none()


async def find_update_conflict(
    db: AsyncSession, vet_id: str, when: datetime, exclude_id: str
) -> Appointment | None:
    window = timedelta(minutes=settings.APPOINTMENT_UPDATE_WINDOW_MINUTES)
    res = await db.execute(
        select(Appointment).where(
            Appointment.veterinarian_id == vet_id,
            Appointment.id != exclude_id,
            Appointment.date >= when - window,
            Appointment.date < when + window,
        ).limit(1)
    )
    return res.scalar_one_or_none()


def _can_manage(actor: User, ap: Appointment) -> bool:
    # aceptar/rechazar: el veterinario, sus secretarias o admin
    return actor.role == RoleEnum.admin or directory.works_for(actor, ap.veterinarian_id)


def _can_view(actor: User, ap: Appointment) -> bool:
    return actor.id == ap.client_id or _can_manage(actor, ap)


# ---------- create ----------
async def create(db: AsyncSession, requester: User, payload: AppointmentCreate) -> Appointment:
    if requester.role != RoleEnum.client:
        raise Forbidden("Sólo un cliente puede pedir un turno")
    if not payload.date or not payload.animal_id or not payload.type:
        raise InvalidInput("date, animal_id y type son obligatorios")
    appt_type = _parse_type(payload.type)
    directory.ensure_valid_id(payload.animal_id, "animal_id")

    animal = await directory.find_owned_animal(db, payload.animal_id, requester.id)
    if not animal:
        raise NotFound("Mascota no encontrada o no pertenece al cliente")

    if payload.veterinarian_id:
        directory.ensure_valid_id(payload.veterinarian_id, "veterinarian_id")
        if not await directory.exists_with_role(db, payload.veterinarian_id, RoleEnum.veterinarian):
            raise NotFound("Veterinario no encontrado")
        vet_id = payload.veterinarian_id
    elif settings.ALLOW_ANY_VETERINARIAN_FALLBACK:
        vet = await directory.find_any_veterinarian(db)
        if not vet:
            raise NotFound("No hay veterinarios disponibles")
        vet_id = vet.id
    else:
        raise InvalidInput("veterinarian_id es obligatorio")

    when = parse_local_datetime(payload.date)
    if when is None:
        raise InvalidInput("Fecha inválida")

    async with _vet_slot(db, vet_id):
        if await find_create_conflict(db, vet_id, when):
            raise Conflict(
                "Horario no disponible: el veterinario ya tiene un turno aceptado "
                f"dentro de ±{settings.APPOINTMENT_CREATE_WINDOW_MINUTES} minutos"
            )
        ap = Appointment(
            client_id=requester.id,
            veterinarian_id=vet_id,
            animal_id=animal.id,
            date=when,
            type=appt_type,
            status=ApptStatus.pending,
            services=list(payload.services or []),
            case_description=payload.case_description or "",
        )
        db.add(ap)
        await db.commit()
    await db.refresh(ap)
    log.info("turno %s creado (vet=%s, %s)", ap.id, vet_id, when.isoformat())
    return ap


# ---------- update ----------
async def _write_if_pending(db: AsyncSession, ap: Appointment, data: dict) -> None:
    # el estado se vuelve a mirar en el mismo UPDATE: un accept pudo entrar en el medio
    res = await db.execute(
        sql_update(Appointment)
        .where(Appointment.id == ap.id, Appointment.status == ApptStatus.pending)
        .values(**data)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise Forbidden("Sólo el cliente puede modificar un turno pendiente")
    await db.commit()


async def update(db: AsyncSession, requester: User, appt_id: str, patch: dict) -> Appointment:
    ap = await _get_appt_or_404(db, appt_id)
    if requester.id != ap.client_id or ap.status != ApptStatus.pending:
        raise Forbidden("Sólo el cliente puede modificar un turno pendiente")

    # ids, estado y timestamps se ignoran en silencio
    data = {k: v for k, v in patch.items() if k in _EDITABLE}

    if data.get("animal_id") is not None:
        directory.ensure_valid_id(data["animal_id"], "animal_id")
        if not await directory.find_owned_animal(db, data["animal_id"], ap.client_id):
            raise Forbidden("La mascota no pertenece al cliente")
    else:
        data.pop("animal_id", None)

    if data.get("type") is not None:
        data["type"] = _parse_type(data["type"])
    else:
        data.pop("type", None)

    if "services" in data:
        data["services"] = list(data["services"] or [])
    if "case_description" in data:
        data["case_description"] = data["case_description"] or ""

    if data.get("date") is None:
        data.pop("date", None)
        if data:
            await _write_if_pending(db, ap, data)
        await db.refresh(ap)
        return ap

    when = parse_local_datetime(data["date"])
    if when is None:
        raise InvalidInput("Fecha inválida")
    data["date"] = when

    async with _vet_slot(db, ap.veterinarian_id):
        if await find_update_conflict(db, ap.veterinarian_id, when, exclude_id=ap.id):
            raise Conflict(
                "Horario no disponible: hay otro turno del veterinario "
                f"a menos de {settings.APPOINTMENT_UPDATE_WINDOW_MINUTES} minutos"
            )
        await _write_if_pending(db, ap, data)
    await db.refresh(ap)
    return ap


# ---------- accept / reject ----------
async def _transition(db: AsyncSession, actor: User, appt_id: str, target: ApptStatus) -> Appointment:
    ap = await _get_appt_or_404(db, appt_id)
    if not _can_manage(actor, ap):
        raise Forbidden("Sólo el veterinario, su secretaría o un admin pueden responder el turno")
    if ap.status == target:
        return ap
    if ap.status != ApptStatus.pending:
        raise Forbidden(f"El turno ya está {ap.status.value}")

    if target == ApptStatus.accepted and settings.CHECK_CONFLICTS_ON_ACCEPT:
        async with _vet_slot(db, ap.veterinarian_id):
            if await find_create_conflict(db, ap.veterinarian_id, ap.date, exclude_id=ap.id):
                raise Conflict("Ya hay un turno aceptado en ese horario")
            ap.status = target
            await db.commit()
    else:
        ap.status = target
        await db.commit()
    await db.refresh(ap)
    log.info("turno %s -> %s por %s", ap.id, target.value, actor.id)
    return ap


async def accept(db: AsyncSession, actor: User, appt_id: str) -> Appointment:
    return await _transition(db, actor, appt_id, ApptStatus.accepted)


async def reject(db: AsyncSession, actor: User, appt_id: str) -> Appointment:
    return await _transition(db, actor, appt_id, ApptStatus.rejected)


# ---------- delete ----------
async def remove(db: AsyncSession, actor: User, appt_id: str) -> None:
    ap = await _get_appt_or_404(db, appt_id)
    if not _can_view(actor, ap):
        raise Forbidden()
    await db.execute(delete(Appointment).where(Appointment.id == ap.id))
    await db.commit()


# ---------- get ----------
async def get(db: AsyncSession, actor: User, appt_id: str) -> Appointment:
    ap = await _get_appt_or_404(db, appt_id)
    if not _can_view(actor, ap):
        raise Forbidden()
    return ap


# ---------- listas paginadas ----------
async def _paginate_pending_then_accepted(db: AsyncSession, owner_col, owner_id: str, page: int):
    if page < 1:
        raise InvalidInput("page debe ser >= 1")
    pending = await db.execute(
        select(Appointment)
        .where(owner_col == owner_id, Appointment.status == ApptStatus.pending)
        .order_by(Appointment.created_at, Appointment.id)
    )
    accepted = await db.execute(
        select(Appointment)
        .where(owner_col == owner_id, Appointment.status == ApptStatus.accepted)
        .order_by(Appointment.date, Appointment.id)
    )
    merged = list(pending.scalars().all()) + list(accepted.scalars().all())
    if not merged:
        raise NotFound("No hay turnos pendientes ni aceptados")

    size = settings.APPOINTMENTS_PAGE_SIZE
    total = len(merged)
    start = (page - 1) * size
    return {
        "appointments": merged[start:start + size],
        "current_page": page,
        "total_pages": math.ceil(total / size),
        "total": total,
    }


async def list_for_client(db: AsyncSession, actor: User, client_id: str, page: int = 1) -> dict:
    directory.ensure_valid_id(client_id, "client_id")
    if not (actor.id == client_id or actor.role != RoleEnum.client):
        raise Forbidden()
    if not await directory.exists_with_role(db, client_id, RoleEnum.client):
        raise NotFound("Cliente no encontrado")
    return await _paginate_pending_then_accepted(db, Appointment.client_id, client_id, page)


async def list_for_veterinarian(db: AsyncSession, actor: User, vet_id: str, page: int = 1) -> dict:
    directory.ensure_valid_id(vet_id, "veterinarian_id")
    if not (actor.role == RoleEnum.admin or directory.works_for(actor, vet_id)):
        raise Forbidden()
    if not await directory.exists_with_role(db, vet_id, RoleEnum.veterinarian):
        raise NotFound("Veterinario no encontrado")
    return await _paginate_pending_then_accepted(db, Appointment.veterinarian_id, vet_id, page)


async def clients_with_accepted(
    db: AsyncSession,
    actor: User,
    vet_id: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> list[User]:
    directory.ensure_valid_id(vet_id, "veterinarian_id")
    if not (actor.role == RoleEnum.admin or directory.works_for(actor, vet_id)):
        raise Forbidden()
    if not await directory.exists_with_role(db, vet_id, RoleEnum.veterinarian):
        raise NotFound("Veterinario no encontrado")

    q = (
        select(User)
        .join(Appointment, Appointment.client_id == User.id)
        .where(Appointment.veterinarian_id == vet_id, Appointment.status == ApptStatus.accepted)
        .distinct()
        .order_by(User.last_name, User.first_name)
    )
    if first_name:
        q = q.where(func.lower(User.first_name).like(f"%{first_name.lower()}%"))
    if last_name:
        q = q.where(func.lower(User.last_name).like(f"%{last_name.lower()}%"))
    res = await db.execute(q)
    clients = list(res.scalars().all())
    if not clients:
        raise NotFound("Ningún cliente con turno aceptado")
    return clients


async def client_animals_with_accepted(
    db: AsyncSession, actor: User, vet_id: str, client_id: str
) -> list[Animal]:
    directory.ensure_valid_id(vet_id, "veterinarian_id")
    directory.ensure_valid_id(client_id, "client_id")
    if not (actor.role == RoleEnum.admin or directory.works_for(actor, vet_id)):
        raise Forbidden()

    res = await db.execute(
        select(Animal)
        .join(Appointment, Appointment.animal_id == Animal.id)
        .where(
            Appointment.veterinarian_id == vet_id,
            Appointment.client_id == client_id,
            Appointment.status == ApptStatus.accepted,
        )
        .distinct()
        .order_by(Animal.name)
    )
    animals = list(res.scalars().all())
    if not animals:
        raise NotFound("El cliente no tiene mascotas con turnos aceptados con este veterinario")
    return animals
