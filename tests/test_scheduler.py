"""
Tests del scheduler de turnos: creación, ventanas de solapamiento,
transiciones de estado, permisos y listados paginados.
"""
import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select, func

from vethub.core.config import settings
from vethub.core.errors import InvalidInput, NotFound, Forbidden, Conflict
from vethub.models import Appointment, Notification
from vethub.models.appointment import ApptStatus
from vethub.schemas.appointment import AppointmentCreate
from vethub.services import scheduler


def _req(animal, vet, date="2025-03-01T10:00", **kw) -> AppointmentCreate:
    return AppointmentCreate(
        date=date,
        animal_id=animal.id,
        type=kw.pop("type", "clinic"),
        veterinarian_id=vet.id if vet else None,
        **kw,
    )


@pytest.fixture
async def party(make_user, make_animal):
    vet = await make_user("veterinarian", "Vera", "Vet")
    client = await make_user("client", "Carla", "Cliente")
    animal = await make_animal(client, "Luna")
    return vet, client, animal


# ---------- create ----------
async def test_create_returns_pending_in_utc(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet, services=["vacuna"], case_description="control"))

    assert ap.status == ApptStatus.pending
    assert ap.client_id == client.id
    assert ap.veterinarian_id == vet.id
    assert ap.services == ["vacuna"]
    assert ap.reminder_sent is False
    # Africa/Tunis es UTC+1
    assert ap.date == datetime(2025, 3, 1, 9, 0)


async def test_create_respects_explicit_offset(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00:00Z"))
    assert ap.date == datetime(2025, 3, 1, 10, 0)


async def test_create_requires_client_role(db, party):
    vet, _, animal = party
    with pytest.raises(Forbidden):
        await scheduler.create(db, vet, _req(animal, vet))


async def test_create_animal_must_belong_to_client(db, party, make_user, make_animal):
    vet, client, _ = party
    other = await make_user("client", "Otro", "Cliente")
    foreign = await make_animal(other, "Toby")
    with pytest.raises(NotFound):
        await scheduler.create(db, client, _req(foreign, vet))


async def test_create_rejects_malformed_animal_id(db, party):
    vet, client, _ = party
    payload = AppointmentCreate(date="2025-03-01T10:00", animal_id="not-an-id", type="clinic", veterinarian_id=vet.id)
    with pytest.raises(InvalidInput):
        await scheduler.create(db, client, payload)


async def test_create_rejects_unparseable_date(db, party):
    vet, client, animal = party
    with pytest.raises(InvalidInput):
        await scheduler.create(db, client, _req(animal, vet, date="mañana a las diez"))


async def test_create_unknown_veterinarian(db, party):
    _, client, animal = party
    payload = AppointmentCreate(
        date="2025-03-01T10:00", animal_id=animal.id, type="clinic",
        veterinarian_id="6f1c1a52-9a0e-4d5b-8f0e-1f6f1b7c2d3e",
    )
    with pytest.raises(NotFound):
        await scheduler.create(db, client, payload)


async def test_create_veterinarian_id_must_be_a_veterinarian(db, party, make_user):
    _, client, animal = party
    secretary = await make_user("secretary", "Sol", "Secre")
    with pytest.raises(NotFound):
        await scheduler.create(db, client, _req(animal, secretary))


async def test_create_without_veterinarian_is_invalid(db, party):
    _, client, animal = party
    with pytest.raises(InvalidInput):
        await scheduler.create(db, client, _req(animal, None))


async def test_create_without_veterinarian_uses_fallback_when_enabled(db, party, monkeypatch):
    vet, client, animal = party
    monkeypatch.setattr(settings, "ALLOW_ANY_VETERINARIAN_FALLBACK", True)
    ap = await scheduler.create(db, client, _req(animal, None))
    assert ap.veterinarian_id == vet.id


# ---------- ventana de creación ----------
async def test_booking_scenario_conflicts_within_window(db, party):
    vet, client, animal = party
    first = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    assert first.status == ApptStatus.pending

    accepted = await scheduler.accept(db, vet, first.id)
    assert accepted.status == ApptStatus.accepted

    with pytest.raises(Conflict):
        await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:15"))


@pytest.mark.parametrize("date,conflicts", [
    ("2025-03-01T09:31", True),
    ("2025-03-01T10:29", True),    # borde inclusivo
    ("2025-03-01T10:30", False),
    ("2025-03-01T09:30", False),
])
async def test_create_window_edges(db, party, date, conflicts):
    vet, client, animal = party
    first = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    await scheduler.accept(db, vet, first.id)

    if conflicts:
        with pytest.raises(Conflict):
            await scheduler.create(db, client, _req(animal, vet, date=date))
    else:
        ap = await scheduler.create(db, client, _req(animal, vet, date=date))
        assert ap.status == ApptStatus.pending


async def test_pending_appointments_do_not_block_creation(db, party):
    vet, client, animal = party
    await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    second = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:05"))
    assert second.status == ApptStatus.pending


async def test_other_veterinarian_is_not_blocked(db, party, make_user):
    vet, client, animal = party
    other_vet = await make_user("veterinarian", "Otro", "Vet")
    first = await scheduler.create(db, client, _req(animal, vet))
    await scheduler.accept(db, vet, first.id)

    ap = await scheduler.create(db, client, _req(animal, other_vet))
    assert ap.veterinarian_id == other_vet.id


# ---------- update ----------
async def test_update_accepted_is_forbidden(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet))
    await scheduler.accept(db, vet, ap.id)
    with pytest.raises(Forbidden):
        await scheduler.update(db, client, ap.id, {"case_description": "cambio"})


async def test_update_only_by_owner(db, party, make_user):
    vet, client, animal = party
    stranger = await make_user("client", "Ext", "Raño")
    ap = await scheduler.create(db, client, _req(animal, vet))
    with pytest.raises(Forbidden):
        await scheduler.update(db, stranger, ap.id, {"case_description": "x"})


async def test_update_missing_is_not_found(db, party):
    _, client, _ = party
    with pytest.raises(NotFound):
        await scheduler.update(db, client, "6f1c1a52-9a0e-4d5b-8f0e-1f6f1b7c2d3e", {})


async def test_update_ignores_protected_fields(db, party, make_user):
    vet, client, animal = party
    other_vet = await make_user("veterinarian", "Otro", "Vet")
    ap = await scheduler.create(db, client, _req(animal, vet))

    updated = await scheduler.update(db, client, ap.id, {
        "status": "accepted",
        "veterinarian_id": other_vet.id,
        "reminder_sent": True,
        "id": "hack",
        "case_description": "tose de noche",
        "services": ["consulta", "rayos"],
    })
    assert updated.id == ap.id
    assert updated.status == ApptStatus.pending
    assert updated.veterinarian_id == vet.id
    assert updated.reminder_sent is False
    assert updated.case_description == "tose de noche"
    assert updated.services == ["consulta", "rayos"]


async def test_update_animal_must_be_owned(db, party, make_user, make_animal):
    vet, client, animal = party
    other = await make_user("client", "Otro", "Cliente")
    foreign = await make_animal(other, "Toby")
    ap = await scheduler.create(db, client, _req(animal, vet))
    with pytest.raises(Forbidden):
        await scheduler.update(db, client, ap.id, {"animal_id": foreign.id})

    mine = await scheduler.update(db, client, ap.id, {"animal_id": animal.id})
    assert mine.animal_id == animal.id


async def test_update_date_window_ignores_status(db, party):
    vet, client, animal = party
    # un turno pendiente ya bloquea al mover la fecha
    await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    mine = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T12:00"))

    with pytest.raises(Conflict):
        await scheduler.update(db, client, mine.id, {"date": "2025-03-01T10:10"})
    # [t-20, t+20): 10:20 todavía choca, 09:40 no
    with pytest.raises(Conflict):
        await scheduler.update(db, client, mine.id, {"date": "2025-03-01T10:20"})

    moved = await scheduler.update(db, client, mine.id, {"date": "2025-03-01T09:40"})
    assert moved.date == datetime(2025, 3, 1, 8, 40)


async def test_update_date_does_not_conflict_with_itself(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    moved = await scheduler.update(db, client, ap.id, {"date": "2025-03-01T10:05"})
    assert moved.date == datetime(2025, 3, 1, 9, 5)


async def test_update_window_only_looks_at_same_veterinarian(db, party, make_user):
    vet, client, animal = party
    other_vet = await make_user("veterinarian", "Otro", "Vet")
    await scheduler.create(db, client, _req(animal, other_vet, date="2025-03-01T10:00"))
    mine = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T12:00"))

    moved = await scheduler.update(db, client, mine.id, {"date": "2025-03-01T10:00"})
    assert moved.date == datetime(2025, 3, 1, 9, 0)


async def test_update_rejects_bad_date(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet))
    with pytest.raises(InvalidInput):
        await scheduler.update(db, client, ap.id, {"date": "31/02/2025"})


async def test_concurrent_reschedules_to_same_slot_conflict_once(db, session_factory, party):
    vet, client, animal = party
    a = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T09:00"))
    b = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T12:00"))

    async def _move(ap_id):
        async with session_factory() as session:
            return await scheduler.update(session, client, ap_id, {"date": "2030-03-01T10:00"})

    results = await asyncio.gather(_move(a.id), _move(b.id), return_exceptions=True)

    assert sum(isinstance(r, Conflict) for r in results) == 1
    moved = [r for r in results if not isinstance(r, Exception)]
    assert len(moved) == 1
    assert moved[0].date == datetime(2030, 3, 1, 9, 0)


async def test_reschedule_after_concurrent_accept_is_forbidden(db, session_factory, party, monkeypatch):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T10:00"))
    check = scheduler.find_update_conflict

    async def accept_in_between(*args, **kwargs):
        # el veterinario acepta después de que el cliente leyó el turno como pendiente
        async with session_factory() as other:
            await scheduler.accept(other, vet, ap.id)
        return await check(*args, **kwargs)

    monkeypatch.setattr(scheduler, "find_update_conflict", accept_in_between)
    with pytest.raises(Forbidden):
        await scheduler.update(db, client, ap.id, {"date": "2030-03-02T10:00"})
    await db.rollback()

    res = await db.execute(select(Appointment.status, Appointment.date).where(Appointment.id == ap.id))
    status, date = res.one()
    assert status == ApptStatus.accepted
    assert date == datetime(2030, 3, 1, 9, 0)


# ---------- accept / reject ----------
async def test_secretary_of_vet_can_accept(db, party, make_user):
    vet, client, animal = party
    secretary = await make_user("secretary", "Sol", "Secre", vet=vet)
    ap = await scheduler.create(db, client, _req(animal, vet))
    assert (await scheduler.accept(db, secretary, ap.id)).status == ApptStatus.accepted


async def test_other_staff_cannot_answer(db, party, make_user):
    vet, client, animal = party
    other_vet = await make_user("veterinarian", "Otro", "Vet")
    other_secretary = await make_user("secretary", "Sol", "Secre", vet=other_vet)
    ap = await scheduler.create(db, client, _req(animal, vet))
    for actor in (other_vet, other_secretary, client):
        with pytest.raises(Forbidden):
            await scheduler.reject(db, actor, ap.id)


async def test_admin_can_reject(db, party, make_user):
    vet, client, animal = party
    admin = await make_user("admin", "Ad", "Min")
    ap = await scheduler.create(db, client, _req(animal, vet))
    assert (await scheduler.reject(db, admin, ap.id)).status == ApptStatus.rejected


async def test_terminal_status_cannot_change(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet))
    await scheduler.accept(db, vet, ap.id)

    # repetir la misma transición no hace nada
    again = await scheduler.accept(db, vet, ap.id)
    assert again.status == ApptStatus.accepted
    with pytest.raises(Forbidden):
        await scheduler.reject(db, vet, ap.id)


async def test_accept_missing_is_not_found(db, party):
    vet, _, _ = party
    with pytest.raises(NotFound):
        await scheduler.accept(db, vet, "6f1c1a52-9a0e-4d5b-8f0e-1f6f1b7c2d3e")
    with pytest.raises(InvalidInput):
        await scheduler.accept(db, vet, "123")


async def test_accepting_overlapping_pending_is_allowed_by_default(db, party):
    vet, client, animal = party
    a = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    b = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:10"))

    await scheduler.accept(db, vet, a.id)
    second = await scheduler.accept(db, vet, b.id)
    # hueco conocido: aceptar no vuelve a chequear la ventana
    assert second.status == ApptStatus.accepted


async def test_accept_checks_window_when_enabled(db, party, monkeypatch):
    vet, client, animal = party
    monkeypatch.setattr(settings, "CHECK_CONFLICTS_ON_ACCEPT", True)
    a = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:00"))
    b = await scheduler.create(db, client, _req(animal, vet, date="2025-03-01T10:10"))

    await scheduler.accept(db, vet, a.id)
    with pytest.raises(Conflict):
        await scheduler.accept(db, vet, b.id)
    assert (await scheduler.get(db, vet, b.id)).status == ApptStatus.pending


async def test_concurrent_accepts_keep_window_when_enabled(db, session_factory, party, monkeypatch):
    vet, client, animal = party
    monkeypatch.setattr(settings, "CHECK_CONFLICTS_ON_ACCEPT", True)
    a = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T10:00"))
    b = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T10:10"))

    async def _accept(ap_id):
        async with session_factory() as session:
            return await scheduler.accept(session, vet, ap_id)

    results = await asyncio.gather(_accept(a.id), _accept(b.id), return_exceptions=True)

    assert sum(isinstance(r, Conflict) for r in results) == 1
    res = await db.execute(select(func.count(Appointment.id)).where(Appointment.status == ApptStatus.accepted))
    assert res.scalar_one() == 1


async def test_concurrent_create_and_accept_keep_window_when_enabled(db, session_factory, party, monkeypatch):
    vet, client, animal = party
    monkeypatch.setattr(settings, "CHECK_CONFLICTS_ON_ACCEPT", True)
    pending = await scheduler.create(db, client, _req(animal, vet, date="2030-03-01T10:00"))

    async def _accept():
        async with session_factory() as session:
            return await scheduler.accept(session, vet, pending.id)

    async def _create():
        async with session_factory() as session:
            return await scheduler.create(session, client, _req(animal, vet, date="2030-03-01T10:15"))

    results = await asyncio.gather(_accept(), _create(), return_exceptions=True)
    accepted, created = results

    assert accepted.status == ApptStatus.accepted
    # si el create quedó después del accept choca; si quedó antes nace pendiente
    assert isinstance(created, Conflict) or created.status == ApptStatus.pending
    res = await db.execute(select(func.count(Appointment.id)).where(Appointment.status == ApptStatus.accepted))
    assert res.scalar_one() == 1


# ---------- delete / get ----------
async def test_delete_keeps_notifications(db, party):
    vet, client, animal = party
    ap = await scheduler.create(db, client, _req(animal, vet))
    n = Notification(user_id=client.id, appointment_id=ap.id, message="recordatorio")
    db.add(n)
    await db.commit()

    await scheduler.remove(db, client, ap.id)

    res = await db.execute(select(Appointment).where(Appointment.id == ap.id))
    assert res.scalar_one_or_none() is None
    await db.refresh(n)
    assert n.appointment_id is None


async def test_delete_permissions(db, party, make_user):
    vet, client, animal = party
    stranger = await make_user("client", "Ext", "Raño")
    ap = await scheduler.create(db, client, _req(animal, vet))
    with pytest.raises(Forbidden):
        await scheduler.remove(db, stranger, ap.id)
    await scheduler.remove(db, vet, ap.id)
    with pytest.raises(NotFound):
        await scheduler.get(db, vet, ap.id)


async def test_get_visible_to_parties_only(db, party, make_user):
    vet, client, animal = party
    stranger = await make_user("client", "Ext", "Raño")
    ap = await scheduler.create(db, client, _req(animal, vet))
    assert (await scheduler.get(db, client, ap.id)).id == ap.id
    assert (await scheduler.get(db, vet, ap.id)).id == ap.id
    with pytest.raises(Forbidden):
        await scheduler.get(db, stranger, ap.id)


# ---------- listados ----------
async def test_list_pending_first_then_accepted_by_date(db, party, make_appointment):
    vet, client, animal = party
    p1 = await make_appointment(client, vet, animal, datetime(2025, 3, 5, 9), "pending")
    a_late = await make_appointment(client, vet, animal, datetime(2025, 3, 4, 9), "accepted")
    p2 = await make_appointment(client, vet, animal, datetime(2025, 3, 1, 9), "pending")
    a_early = await make_appointment(client, vet, animal, datetime(2025, 3, 2, 9), "accepted")
    await make_appointment(client, vet, animal, datetime(2025, 3, 3, 9), "rejected")

    page = await scheduler.list_for_client(db, client, client.id, 1)
    assert [a.id for a in page["appointments"]] == [p1.id, p2.id, a_early.id, a_late.id]
    assert page["total"] == 4
    assert page["total_pages"] == 1

    vet_page = await scheduler.list_for_veterinarian(db, vet, vet.id, 1)
    assert [a.id for a in vet_page["appointments"]] == [p1.id, p2.id, a_early.id, a_late.id]


async def test_list_paginates_by_ten(db, party, make_appointment):
    vet, client, animal = party
    for day in range(1, 13):
        await make_appointment(client, vet, animal, datetime(2025, 3, day, 9), "accepted")

    first = await scheduler.list_for_client(db, client, client.id, 1)
    second = await scheduler.list_for_client(db, client, client.id, 2)
    assert len(first["appointments"]) == 10
    assert len(second["appointments"]) == 2
    assert first["total_pages"] == second["total_pages"] == 2
    assert second["current_page"] == 2


async def test_list_empty_is_not_found(db, party, make_appointment):
    vet, client, animal = party
    await make_appointment(client, vet, animal, datetime(2025, 3, 1, 9), "rejected")
    with pytest.raises(NotFound):
        await scheduler.list_for_client(db, client, client.id, 1)


async def test_list_owner_must_exist_with_role(db, party, make_user):
    vet, client, _ = party
    admin = await make_user("admin", "Ad", "Min")
    with pytest.raises(NotFound):
        await scheduler.list_for_client(db, admin, vet.id, 1)
    with pytest.raises(NotFound):
        await scheduler.list_for_veterinarian(db, admin, "6f1c1a52-9a0e-4d5b-8f0e-1f6f1b7c2d3e", 1)


async def test_list_authorization(db, party, make_user):
    vet, client, _ = party
    stranger = await make_user("client", "Ext", "Raño")
    with pytest.raises(Forbidden):
        await scheduler.list_for_client(db, stranger, client.id, 1)
    with pytest.raises(Forbidden):
        await scheduler.list_for_veterinarian(db, client, vet.id, 1)


async def test_clients_and_animals_with_accepted(db, party, make_user, make_animal, make_appointment):
    vet, client, animal = party
    other = await make_user("client", "Bruno", "Díaz")
    other_pet = await make_animal(other, "Rocco")
    second_pet = await make_animal(client, "Michi")
    await make_appointment(client, vet, animal, datetime(2025, 3, 1, 9), "accepted")
    await make_appointment(client, vet, animal, datetime(2025, 3, 2, 9), "accepted")
    await make_appointment(client, vet, second_pet, datetime(2025, 3, 3, 9), "pending")
    await make_appointment(other, vet, other_pet, datetime(2025, 3, 4, 9), "accepted")

    clients = await scheduler.clients_with_accepted(db, vet, vet.id)
    assert {c.id for c in clients} == {client.id, other.id}

    filtered = await scheduler.clients_with_accepted(db, vet, vet.id, first_name="bru")
    assert [c.id for c in filtered] == [other.id]

    animals = await scheduler.client_animals_with_accepted(db, vet, vet.id, client.id)
    assert [a.id for a in animals] == [animal.id]

    with pytest.raises(NotFound):
        await scheduler.clients_with_accepted(db, vet, vet.id, last_name="zzz")
