"""Passive expiry sweep: move overdue ``issued`` credentials to ``expired``."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog

from domain.clock import utcnow
from domain.models import AuditEvent
from domain.models.audit_event import AuditDetails, AuditKind
from domain.models.credential import CredentialStatus
from infrastructure.audit import AuditLogger
from infrastructure.database.store import CredentialStore

logger = structlog.get_logger()


async def sweep_expired(
    store: CredentialStore,
    audit: AuditLogger,
    now: Optional[datetime] = None,
    batch_size: int = 500,
) -> int:
    """Expire every overdue credential once. Returns how many this call transitioned."""
    now = now or utcnow()
    expired = 0

    for credential in await store.list_overdue_credentials(now, limit=batch_size):
        # Conditional update: a concurrent redemption may have won already
        if not await store.transition(credential.id, CredentialStatus.EXPIRED, now):
            continue
        expired += 1
        await audit.append(
            AuditEvent.build(
                AuditKind.EXPIRED,
                credential_id=credential.id,
                subject_id=credential.subject_id,
                resource_id=credential.resource_id,
                timestamp=now,
                details=AuditDetails(reason="expired", credential_kind=credential.kind),
            )
        )

    if expired:
        logger.info("credentials_expired", count=expired)
    return expired

