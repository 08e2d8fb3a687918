from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

from vethub.core.timeutils import as_utc

class NotificationOut(BaseModel):
    id: str
    appointment_id: Optional[str] = None
    message: str
    read: bool
    created_at: datetime

    class Config:
        from_attributes = True

    @field_validator("created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

class NotificationsOut(BaseModel):
    notifications: list[NotificationOut]
    count: int
    unread_count: int
