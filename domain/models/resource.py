"""Resource model - the lockable space a credential grants access to."""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime
from sqlmodel import SQLModel, Field, Column

from domain.clock import utcnow

from .schedule import WeeklySchedule


class ResourceBase(SQLModel):
    name: str = Field(index=True)
    address: Optional[str] = None

    lock_id: str  # actuator target, also shown to operators as a label
    is_active: bool = Field(default=True)

    # {"mon": {"start": "08:00", "end": "18:00"}, ...}; missing day = open 24h
    operating_hours: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    max_duration_minutes: int = Field(default=1440, ge=1, le=1440)
    timezone: Optional[str] = None


class Resource(ResourceBase, table=True):
    __tablename__ = "resources"

    id: UUID = Field(default_factory=uuid4, primary_key=True)

    # base32 TOTP secret, never derived from lock_id
    otp_secret: str

    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())

    @property
    def schedule(self) -> WeeklySchedule:
        return WeeklySchedule.from_column(self.operating_hours)

    def summary(self) -> Dict[str, Any]:
        return {"id": str(self.id), "name": self.name, "address": self.address}

