"""AuditEvent model - append-only trail of every credential state transition."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any
from uuid import UUID, uuid4

from pydantic import BaseModel, Field as PydanticField
from sqlalchemy import JSON, DateTime
from sqlmodel import SQLModel, Field, Column

from domain.clock import utcnow


class AuditKind(str, Enum):
    REQUESTED = "requested"
    GRANTED = "granted"
    DENIED = "denied"
    UNLOCKED = "unlocked"
    EXPIRED = "expired"


class AuditDetails(BaseModel):
    reason: Optional[str] = None
    credential_kind: Optional[str] = None
    duration_minutes: Optional[int] = None
    lock_id: Optional[str] = None
    error: Optional[str] = None
    extra: Dict[str, Any] = PydanticField(default_factory=dict)

    def to_column(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_none=True)
        if not data.get("extra"):
            data.pop("extra", None)
        return data


class AuditEventBase(SQLModel):
    credential_id: Optional[UUID] = Field(default=None, index=True)
    subject_id: Optional[str] = Field(default=None, index=True)
    resource_id: Optional[UUID] = Field(default=None, index=True)

    kind: str = Field(index=True)  # requested | granted | denied | unlocked | expired
    timestamp: datetime = Field(default_factory=utcnow, index=True, sa_type=DateTime())

    details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column("metadata", JSON))


class AuditEvent(AuditEventBase, table=True):
    __tablename__ = "audit_events"

    # Insertion order; breaks ties between events sharing a timestamp
    seq: Optional[int] = Field(default=None, primary_key=True)
    id: UUID = Field(default_factory=uuid4, unique=True, index=True)

    @classmethod
    def build(
        cls,
        kind: AuditKind,
        *,
        resource_id: Optional[UUID],
        timestamp: datetime,
        credential_id: Optional[UUID] = None,
        subject_id: Optional[str] = None,
        details: Optional[AuditDetails] = None,
    ) -> "AuditEvent":
        return cls(
            credential_id=credential_id,
            subject_id=subject_id,
            resource_id=resource_id,
            kind=kind.value,
            timestamp=timestamp,
            details=(details or AuditDetails()).to_column(),
        )

    @property
    def reason(self) -> Optional[str]:
        return (self.details or {}).get("reason")


class AuditEventRead(AuditEventBase):
    id: UUID
