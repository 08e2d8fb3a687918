# vethub/core/timeutils.py
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from vethub.core.config import settings


def parse_local_datetime(value: str, tz_name: str | None = None) -> datetime | None:
    """
    Interpreta un string ISO-8601 en la zona horaria civil del consultorio
    y devuelve el instante en UTC naive (como se guarda en la base).
    Si el string trae offset explícito, se respeta. None si no se puede parsear.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if dt.tzinfo is None:
        try:
            dt = dt.replace(tzinfo=ZoneInfo(tz_name or settings.LOCAL_TIMEZONE))
        except ZoneInfoNotFoundError:
            return None
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def as_utc(dt: datetime | None) -> datetime | None:
    """Marca como UTC un datetime naive leído de la base."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)
