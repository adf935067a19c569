"""Credential store - durable storage for resources, credentials and audit events.

The only mutation a credential ever receives after creation goes through
``transition()``: a single ``UPDATE ... WHERE id = :id AND status = 'issued'``.
The database serializes concurrent updates on the row, so at most one caller
observes ``True`` for a given credential.
"""

from __future__ import annotations

import functools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlmodel import select

from domain.errors import StoreUnavailable
from domain.models import AuditEvent, Credential, Resource
from domain.models.credential import CredentialKind, CredentialStatus

logger = structlog.get_logger()


@dataclass
class AuditFilter:
    credential_id: Optional[UUID] = None
    subject_id: Optional[str] = None
    resource_id: Optional[UUID] = None
    kind: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: int = 100


class CredentialStore(ABC):
    """Storage contract used by the issuer, the redemption engine and the audit logger."""

    @abstractmethod
    async def get_resource(self, resource_id: UUID) -> Optional[Resource]: ...

    @abstractmethod
    async def add_resource(self, resource: Resource) -> Resource: ...

    @abstractmethod
    async def create_credential(self, credential: Credential) -> Credential: ...

    @abstractmethod
    async def get_credential(self, credential_id: UUID) -> Optional[Credential]: ...

    @abstractmethod
    async def find_token_credential(self, code: str, resource_id: UUID) -> Optional[Credential]: ...

    @abstractmethod
    async def find_otp_credential(self, resource_id: UUID, now: datetime) -> Optional[Credential]: ...

    @abstractmethod
    async def count_active_credentials(self, subject_id: str, now: datetime) -> int: ...

    @abstractmethod
    async def list_credentials(
        self,
        subject_id: str,
        status: Optional[str] = None,
        resource_id: Optional[UUID] = None,
    ) -> List[Credential]: ...

    @abstractmethod
    async def list_overdue_credentials(self, now: datetime, limit: int = 500) -> List[Credential]: ...

    @abstractmethod
    async def transition(self, credential_id: UUID, to_status: CredentialStatus, at: datetime) -> bool:
        """Move an ``issued`` credential to a terminal status; False if it was not ``issued``."""

    @abstractmethod
    async def append_audit(self, event: AuditEvent) -> None: ...

    @abstractmethod
    async def query_audit(self, audit_filter: AuditFilter) -> List[AuditEvent]: ...


def _guarded(fn):
    """Surface driver/connection failures as StoreUnavailable."""

    @functools.wraps(fn)
    async def wrapper(self, *args, **kwargs):
        try:
            return await fn(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error("store_operation_failed", operation=fn.__name__, error=str(e))
            raise StoreUnavailable() from e

    return wrapper


class SqlCredentialStore(CredentialStore):
    """SQLModel implementation; every call runs in its own short session."""

    def __init__(self, session_maker: sessionmaker):
        self._session_maker = session_maker

    @_guarded
    async def get_resource(self, resource_id: UUID) -> Optional[Resource]:
        async with self._session_maker() as session:
            res = await session.execute(select(Resource).where(Resource.id == resource_id))
            return res.scalar_one_or_none()

    @_guarded
    async def add_resource(self, resource: Resource) -> Resource:
        async with self._session_maker() as session:
            session.add(resource)
            await session.commit()
            await session.refresh(resource)
            return resource

    @_guarded
    async def create_credential(self, credential: Credential) -> Credential:
        async with self._session_maker() as session:
            session.add(credential)
            await session.commit()
            await session.refresh(credential)
            return credential

    @_guarded
    async def get_credential(self, credential_id: UUID) -> Optional[Credential]:
        async with self._session_maker() as session:
            res = await session.execute(select(Credential).where(Credential.id == credential_id))
            return res.scalar_one_or_none()

    @_guarded
    async def find_token_credential(self, code: str, resource_id: UUID) -> Optional[Credential]:
        async with self._session_maker() as session:
            res = await session.execute(
                select(Credential).where(
                    Credential.code == code,
                    Credential.resource_id == resource_id,
                    Credential.kind == CredentialKind.TOKEN.value,
                )
            )
            return res.scalars().first()

    @_guarded
    async def find_otp_credential(self, resource_id: UUID, now: datetime) -> Optional[Credential]:
        """Oldest live OTP credential on the resource, else the most recent one of any status.

        The TOTP secret belongs to the resource, so a code carries no holder:
        whoever presents it consumes the oldest live credential, and the
        result and audit trail name that credential's subject.
        """
        async with self._session_maker() as session:
            res = await session.execute(
                select(Credential)
                .where(
                    Credential.resource_id == resource_id,
                    Credential.kind == CredentialKind.OTP.value,
                    Credential.status == CredentialStatus.ISSUED.value,
                    Credential.expires_at >= now,
                )
                .order_by(Credential.issued_at.asc())
                .limit(1)
            )
            live = res.scalars().first()
            if live is not None:
                return live

            res = await session.execute(
                select(Credential)
                .where(
                    Credential.resource_id == resource_id,
                    Credential.kind == CredentialKind.OTP.value,
                )
                .order_by(Credential.issued_at.desc())
                .limit(1)
            )
            return res.scalars().first()

    @_guarded
    async def count_active_credentials(self, subject_id: str, now: datetime) -> int:
        async with self._session_maker() as session:
            res = await session.execute(
                select(func.count())
                .select_from(Credential)
                .where(
                    Credential.subject_id == subject_id,
                    Credential.status == CredentialStatus.ISSUED.value,
                    Credential.expires_at >= now,
                )
            )
            return int(res.scalar_one())

    @_guarded
    async def list_credentials(
        self,
        subject_id: str,
        status: Optional[str] = None,
        resource_id: Optional[UUID] = None,
    ) -> List[Credential]:
        query = select(Credential).where(Credential.subject_id == subject_id)

        if status:
            query = query.where(Credential.status == status)

        if resource_id:
            query = query.where(Credential.resource_id == resource_id)

        query = query.order_by(Credential.issued_at.desc())
        async with self._session_maker() as session:
            res = await session.execute(query)
            return list(res.scalars().all())

    @_guarded
    async def list_overdue_credentials(self, now: datetime, limit: int = 500) -> List[Credential]:
        async with self._session_maker() as session:
            res = await session.execute(
                select(Credential)
                .where(
                    Credential.status == CredentialStatus.ISSUED.value,
                    Credential.expires_at < now,
                )
                .order_by(Credential.expires_at.asc())
                .limit(limit)
            )
            return list(res.scalars().all())

    @_guarded
    async def transition(self, credential_id: UUID, to_status: CredentialStatus, at: datetime) -> bool:
        values = {"status": to_status.value}
        if to_status == CredentialStatus.REDEEMED:
            values["redeemed_at"] = at
        elif to_status == CredentialStatus.EXPIRED:
            values["expired_at"] = at

        stmt = (
            update(Credential)
            .where(
                Credential.id == credential_id,
                Credential.status == CredentialStatus.ISSUED.value,
            )
            .values(**values)
        )
        async with self._session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    @_guarded
    async def append_audit(self, event: AuditEvent) -> None:
        # Fresh row per attempt: a retried event carries nothing from a failed session
        row = AuditEvent(**event.model_dump(exclude={"seq"}))
        async with self._session_maker() as session:
            session.add(row)
            await session.commit()

    @_guarded
    async def query_audit(self, audit_filter: AuditFilter) -> List[AuditEvent]:
        query = select(AuditEvent)

        if audit_filter.credential_id:
            query = query.where(AuditEvent.credential_id == audit_filter.credential_id)
        if audit_filter.subject_id:
            query = query.where(AuditEvent.subject_id == audit_filter.subject_id)
        if audit_filter.resource_id:
            query = query.where(AuditEvent.resource_id == audit_filter.resource_id)
        if audit_filter.kind:
            query = query.where(AuditEvent.kind == audit_filter.kind)
        if audit_filter.since:
            query = query.where(AuditEvent.timestamp >= audit_filter.since)
        if audit_filter.until:
            query = query.where(AuditEvent.timestamp <= audit_filter.until)

        query = query.order_by(AuditEvent.timestamp.desc(), AuditEvent.seq.desc()).limit(audit_filter.limit)
        async with self._session_maker() as session:
            res = await session.execute(query)
            return list(res.scalars().all())
