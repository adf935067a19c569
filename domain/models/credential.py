"""Credential model - single-use, time-bounded access grant (token or OTP)."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index
from sqlmodel import SQLModel, Field

from domain.clock import utcnow


class CredentialKind(str, Enum):
    TOKEN = "token"
    OTP = "otp"


class CredentialStatus(str, Enum):
    ISSUED = "issued"
    REDEEMED = "redeemed"
    EXPIRED = "expired"
    REVOKED = "revoked"


class CredentialBase(SQLModel):
    subject_id: str
    resource_id: UUID = Field(foreign_key="resources.id")

    kind: str  # token | otp

    # Opaque token for kind=token; OTP codes are computed from the resource secret
    code: Optional[str] = None

    # Naive UTC; plain DateTime columns (TIMESTAMP WITHOUT TIME ZONE)
    issued_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())
    expires_at: datetime = Field(sa_type=DateTime())
    duration_minutes: int

    status: str = Field(default=CredentialStatus.ISSUED.value)  # issued | redeemed | expired | revoked
    redeemed_at: Optional[datetime] = Field(default=None, sa_type=DateTime())
    expired_at: Optional[datetime] = Field(default=None, sa_type=DateTime())


class Credential(CredentialBase, table=True):
    __tablename__ = "credentials"
    __table_args__ = (
        Index("ix_credentials_code_resource", "code", "resource_id"),
        Index("ix_credentials_subject_status", "subject_id", "status"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime())


class CredentialRead(CredentialBase):
    id: UUID
    created_at: datetime
