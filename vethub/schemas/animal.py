from pydantic import BaseModel
from typing import Optional
from datetime import date
from vethub.models.animal import GenderEnum

class AnimalCreate(BaseModel):
    name: str
    species: Optional[str] = None
    breed: Optional[str] = None
    gender: Optional[GenderEnum] = None
    birth_date: Optional[date] = None

class AnimalOut(BaseModel):
    id: str
    owner_id: str
    name: str
    species: Optional[str] = None
    breed: Optional[str] = None
    gender: Optional[GenderEnum] = None
    birth_date: Optional[date] = None

    class Config:
        from_attributes = True

class AnimalsWithAcceptedOut(BaseModel):
    count: int
    animals: list[AnimalOut]
