from pydantic import BaseModel, Field, field_validator
from typing import Optional, Literal
from datetime import datetime

from vethub.core.timeutils import as_utc
from vethub.models.appointment import ApptType as ApptTypeEnum, ApptStatus as ApptStatusEnum

ApptType = Literal["household", "clinic"]

class AppointmentCreate(BaseModel):
    date: str = Field(..., description="ISO datetime; sin offset se toma la hora local del consultorio")
    animal_id: str
    type: ApptType
    veterinarian_id: Optional[str] = None
    services: list[str] = []
    case_description: str = ""

class AppointmentUpdate(BaseModel):
    # campos protegidos (ids, status, timestamps) se ignoran en silencio
    date: Optional[str] = None
    animal_id: Optional[str] = None
    type: Optional[ApptType] = None
    services: Optional[list[str]] = None
    case_description: Optional[str] = None

class AppointmentOut(BaseModel):
    id: str
    client_id: str
    veterinarian_id: str
    animal_id: str
    date: datetime
    type: ApptTypeEnum
    status: ApptStatusEnum
    services: list[str] = []
    case_description: str = ""
    reminder_sent: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @field_validator("date", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return as_utc(v)

class AppointmentPage(BaseModel):
    appointments: list[AppointmentOut]
    current_page: int
    total_pages: int
    total: int

class ClientBrief(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str

    class Config:
        from_attributes = True

class ClientsWithAcceptedOut(BaseModel):
    count: int
    clients: list[ClientBrief]
