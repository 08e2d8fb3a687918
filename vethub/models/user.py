import enum
import uuid
from datetime import datetime
from sqlalchemy import String, Enum, Boolean, ForeignKey, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column
from vethub.core.db import Base, utcnow

class RoleEnum(str, enum.Enum):
    client = "client"
    veterinarian = "veterinarian"
    secretary = "secretary"
    admin = "admin"

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    first_name: Mapped[str] = mapped_column(String(100))
    last_name: Mapped[str] = mapped_column(String(100))
    role: Mapped[RoleEnum] = mapped_column(Enum(RoleEnum), default=RoleEnum.client)
    hashed_password: Mapped[str] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # sólo secretarias: el veterinario para el que trabajan
    veterinarian_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    profile_picture: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=utcnow)

    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
