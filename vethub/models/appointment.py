import uuid
import enum
from datetime import datetime
from sqlalchemy import String, Enum, ForeignKey, DateTime, Boolean, Text, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from vethub.core.db import Base, utcnow

class ApptType(str, enum.Enum):
    household = "household"
    clinic = "clinic"

class ApptStatus(str, enum.Enum):
    pending = "pending"
    accepted = "accepted"
    rejected = "rejected"

class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    client_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    veterinarian_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), index=True)
    animal_id: Mapped[str] = mapped_column(String(36), ForeignKey("animals.id"), index=True)

    # instante en UTC (naive)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=False), index=True)

    type: Mapped[ApptType] = mapped_column(Enum(ApptType))
    status: Mapped[ApptStatus] = mapped_column(Enum(ApptStatus), default=ApptStatus.pending)
    services: Mapped[list[str]] = mapped_column(JSON, default=list)
    case_description: Mapped[str] = mapped_column(Text, default="")
    reminder_sent: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        # chequeo de solapamiento: veterinario + rango de fechas
        Index("ix_appt_vet_date", "veterinarian_id", "date"),
        # poller de recordatorios
        Index("ix_appt_status_reminder_date", "status", "reminder_sent", "date"),
    )
