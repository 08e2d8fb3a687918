"""
Fixtures comunes: base SQLite temporal por test, fábricas de usuarios y
mascotas, un notifier que graba eventos y un cliente HTTP sobre la app.

Las variables de entorno se setean antes de importar vethub: Settings se
instancia al importar vethub.core.config.
"""
import os
import tempfile
import uuid
from datetime import datetime
from typing import Any, AsyncGenerator

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DB_HOST", "localhost")
os.environ.setdefault("DB_PORT", "3306")
os.environ.setdefault("DB_USER", "test")
os.environ.setdefault("DB_PASSWORD", "test")
os.environ.setdefault("DB_NAME", "vethub_test")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(tempfile.gettempdir(), 'vethub_unused.db')}")
os.environ.setdefault("CLOUDINARY_CLOUD_NAME", "test")
os.environ.setdefault("CLOUDINARY_API_KEY", "test")
os.environ.setdefault("CLOUDINARY_API_SECRET", "test")
os.environ.setdefault("REMINDERS_ENABLED", "false")
os.environ.setdefault("LOCAL_TIMEZONE", "Africa/Tunis")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from vethub.core.db import Base, get_db, get_session_factory
from vethub.core.security import create_access_token
from vethub.models import User, Animal, Appointment
from vethub.models.user import RoleEnum
from vethub.models.appointment import ApptStatus, ApptType
from vethub.services.realtime import get_notifier


class RecordingNotifier:
    """Notifier de prueba: guarda (participante, evento, payload)."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, Any]] = []

    async def emit(self, participant_id: str, event: str, payload: Any) -> None:
        self.events.append((participant_id, event, payload))

    def of(self, event: str) -> list[tuple[str, str, Any]]:
        return [e for e in self.events if e[1] == event]

    def recipients(self, event: str) -> set[str]:
        return {pid for pid, ev, _ in self.events if ev == event}


def sqlite_engine(path: str) -> AsyncEngine:
    engine = create_async_engine(f"sqlite+aiosqlite:///{path}", poolclass=NullPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fks(dbapi_conn, _record):
        cur = dbapi_conn.cursor()
        cur.execute("PRAGMA foreign_keys=ON")
        cur.close()

    return engine


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = sqlite_engine(str(tmp_path / "test.db"))
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_user(db):
    async def _make(
        role: str = "client",
        first_name: str = "Ana",
        last_name: str = "Pérez",
        vet: User | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            email=f"{uuid.uuid4().hex[:12]}@example.com",
            first_name=first_name,
            last_name=last_name,
            role=RoleEnum(role),
            hashed_password="not-a-real-hash",
            is_active=is_active,
            veterinarian_id=vet.id if vet else None,
        )
        db.add(user)
        await db.commit()
        return user
    return _make


@pytest.fixture
def make_animal(db):
    async def _make(owner: User, name: str = "Luna", species: str = "perro") -> Animal:
        animal = Animal(owner_id=owner.id, name=name, species=species)
        db.add(animal)
        await db.commit()
        return animal
    return _make


@pytest.fixture
def make_appointment(db):
    """Inserta un turno directo en la base (sin pasar por las reglas del scheduler)."""
    async def _make(
        client: User,
        vet: User,
        animal: Animal,
        date: datetime,
        status: str = "pending",
        reminder_sent: bool = False,
    ) -> Appointment:
        ap = Appointment(
            client_id=client.id,
            veterinarian_id=vet.id,
            animal_id=animal.id,
            date=date,
            type=ApptType.clinic,
            status=ApptStatus(status),
            services=[],
            case_description="",
            reminder_sent=reminder_sent,
        )
        db.add(ap)
        await db.commit()
        return ap
    return _make


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=user.id)}"}


@pytest_asyncio.fixture
async def client(session_factory, notifier) -> AsyncGenerator[AsyncClient, None]:
    from vethub.main import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_notifier] = lambda: notifier
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
