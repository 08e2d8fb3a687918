from pydantic import BaseModel, EmailStr, Field
from enum import Enum

class Role(str, Enum):
    client = "client"
    veterinarian = "veterinarian"
    secretary = "secretary"
    admin = "admin"

class RegisterIn(BaseModel):
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role = Role.client
    veterinarian_id: str | None = None   # <-- obligatorio si role == secretary

class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)

class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserOut(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: EmailStr
    role: Role
    veterinarian_id: str | None = None
    is_active: bool

    class Config:
        from_attributes = True

class UserBrief(BaseModel):
    id: str
    first_name: str
    last_name: str
    role: Role
    veterinarian_id: str | None = None
    profile_picture: str | None = None

    class Config:
        from_attributes = True
