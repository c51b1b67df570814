from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class CompanyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    sector: Optional[str] = Field(None, max_length=100)
    stage: Optional[str] = Field(None, max_length=50)
    website: Optional[str] = Field(None, max_length=500)


class CompanyOut(BaseModel):
    id: UUID
    name: str
    sector: Optional[str] = None
    stage: Optional[str] = None
    website: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
