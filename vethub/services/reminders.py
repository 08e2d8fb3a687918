# vethub/services/reminders.py
"""
Recordatorios de turnos aceptados que empiezan dentro de 24-25 horas.

Cada turno se "reclama" con un UPDATE condicional sobre reminder_sent; sólo
quien lo reclamó crea la notificación, así dos corridas simultáneas (o dos
workers) nunca avisan dos veces.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from vethub.core.config import settings
from vethub.core.db import utcnow
from vethub.models.user import User
from vethub.models.animal import Animal
from vethub.models.appointment import Appointment, ApptStatus
from vethub.models.notification import Notification
from vethub.schemas.notification import NotificationOut
from vethub.services.realtime import Notifier

log = logging.getLogger(__name__)


def _reminder_text(client: User, animal: Animal, when: datetime) -> str:
    local = when.replace(tzinfo=ZoneInfo("UTC")).astimezone(ZoneInfo(settings.LOCAL_TIMEZONE))
    return (
        f"Hola {client.full_name}, el turno de {animal.name} "
        f"es el {local.strftime('%d/%m/%Y %H:%M')}."
    )


async def _claim(db: AsyncSession, appt_id: str) -> bool:
    res = await db.execute(
        update(Appointment)
        .where(Appointment.id == appt_id, Appointment.reminder_sent.is_(False))
        .values(reminder_sent=True)
    )
    return res.rowcount == 1


async def check_and_send_reminders(
    db: AsyncSession, notifier: Notifier, now: datetime | None = None
) -> int:
    """Una pasada del poller. Devuelve cuántos recordatorios se mandaron."""
    now = now or utcnow()
    start = now + timedelta(hours=settings.REMINDER_LEAD_HOURS)
    end = start + timedelta(hours=settings.REMINDER_WINDOW_HOURS)

    client = aliased(User)
    res = await db.execute(
        select(Appointment, client, Animal)
        .join(client, client.id == Appointment.client_id)
        .join(Animal, Animal.id == Appointment.animal_id)
        .where(
            Appointment.status == ApptStatus.accepted,
            Appointment.reminder_sent.is_(False),
            Appointment.date >= start,
            Appointment.date <= end,
        )
        .order_by(Appointment.date)
    )
    rows = res.all()
    log.info("%d turnos aceptados para recordar", len(rows))

    sent = 0
    for ap, cl, animal in rows:
        if not await _claim(db, ap.id):
            await db.commit()
            continue
        n = Notification(user_id=cl.id, appointment_id=ap.id, message=_reminder_text(cl, animal, ap.date))
        db.add(n)
        await db.commit()
        sent += 1
        payload = NotificationOut.model_validate(n).model_dump(mode="json")
        try:
            await notifier.emit(cl.id, "newNotification", payload)
        except Exception:
            log.exception("no se pudo avisar en vivo el recordatorio %s", n.id)
    return sent


async def run_reminder_loop(
    session_factory: async_sessionmaker[AsyncSession],
    notifier: Notifier,
    interval: float | None = None,
) -> None:
    interval = interval or settings.REMINDER_INTERVAL_SECONDS
    log.info("poller de recordatorios cada %ss", interval)
    while True:
        try:
            async with session_factory() as db:
                await check_and_send_reminders(db, notifier)
        except Exception:
            # una corrida fallida no frena las siguientes
            log.exception("falló la corrida de recordatorios")
        await asyncio.sleep(interval)
