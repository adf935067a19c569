"""Credential issuance.

Issuance is gated by the same time-window policy as redemption: a space that
is closed right now cannot be booked for right now.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

import structlog

from domain import errors
from domain.clock import Clock, utcnow
from domain.access.otp import TotpGenerator
from domain.access.policy import RESOURCE_INACTIVE, TimeWindowPolicy
from domain.models import AuditEvent, Credential, Resource
from domain.models.audit_event import AuditDetails, AuditKind
from domain.models.credential import CredentialKind, CredentialStatus
from infrastructure.audit import AuditLogger
from infrastructure.database.store import CredentialStore

logger = structlog.get_logger()

MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 1440

TOKEN_BYTES = 24


class CredentialIssuer:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLogger,
        policy: TimeWindowPolicy,
        *,
        totp: Optional[TotpGenerator] = None,
        clock: Clock = utcnow,
        max_active_per_subject: int = 0,
    ):
        self.store = store
        self.audit = audit
        self.policy = policy
        self.clock = clock
        self.max_active_per_subject = max_active_per_subject
        self.totp = totp or TotpGenerator()

    async def issue(
        self,
        subject_id: str,
        resource_id: UUID,
        kind: CredentialKind,
        requested_duration: int,
    ) -> Credential:
        if not isinstance(requested_duration, int) or isinstance(requested_duration, bool):
            raise errors.InvalidInput("duration_minutes must be an integer")
        if not MIN_DURATION_MINUTES <= requested_duration <= MAX_DURATION_MINUTES:
            raise errors.InvalidInput(
                f"duration_minutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}"
            )
        if not subject_id:
            raise errors.InvalidInput("subject is required")
        try:
            kind = CredentialKind(kind)
        except ValueError:
            raise errors.InvalidInput(f"Unsupported credential kind: {kind}")

        now = self.clock()
        resource = await self.store.get_resource(resource_id)

        if resource is None:
            await self._deny(subject_id, resource_id, kind, errors.NotFound("Space not found or inactive"))

        reason = self.policy.evaluate(resource, now)
        if reason == RESOURCE_INACTIVE:
            await self._deny(subject_id, resource_id, kind, errors.ResourceInactive("Space not found or inactive"))
        elif reason is not None:
            await self._deny(
                subject_id,
                resource_id,
                kind,
                errors.OutsideOperatingHours(details=_hours_label(self.policy, resource, now)),
            )

        if self.max_active_per_subject > 0:
            active = await self.store.count_active_credentials(subject_id, now)
            if active >= self.max_active_per_subject:
                await self._deny(
                    subject_id,
                    resource_id,
                    kind,
                    errors.LimitExceeded(details=f"At most {self.max_active_per_subject} active access codes"),
                )

        duration = min(requested_duration, resource.max_duration_minutes)

        credential = Credential(
            subject_id=subject_id,
            resource_id=resource.id,
            kind=kind.value,
            code=secrets.token_urlsafe(TOKEN_BYTES) if kind == CredentialKind.TOKEN else None,
            issued_at=now,
            expires_at=now + timedelta(minutes=duration),
            duration_minutes=duration,
            status=CredentialStatus.ISSUED.value,
        )
        credential = await self.store.create_credential(credential)

        await self.audit.append(
            AuditEvent.build(
                AuditKind.REQUESTED,
                credential_id=credential.id,
                subject_id=subject_id,
                resource_id=resource.id,
                timestamp=now,
                details=AuditDetails(credential_kind=kind.value, duration_minutes=duration),
            )
        )

        logger.info(
            "credential_issued",
            credential_id=str(credential.id),
            resource_id=str(resource.id),
            kind=kind.value,
            duration_minutes=duration,
        )
        return credential

    async def current_code(self, subject_id: str, credential_id: UUID) -> Tuple[str, int]:
        """Code to display for an OTP credential right now, plus seconds until it rolls over."""
        credential = await self.store.get_credential(credential_id)
        if credential is None or credential.subject_id != subject_id or credential.kind != CredentialKind.OTP.value:
            raise errors.NotFound("Access code not found")

        now = self.clock()
        if now > credential.expires_at:
            raise errors.Expired()
        if credential.status != CredentialStatus.ISSUED.value:
            raise errors.AlreadyUsed()

        resource = await self.store.get_resource(credential.resource_id)
        if resource is None:
            raise errors.NotFound("Space not found or inactive")

        return self.totp.code_at(resource.otp_secret, now), self.totp.seconds_remaining(now)

    async def _deny(
        self,
        subject_id: str,
        resource_id: UUID,
        kind: CredentialKind,
        error: errors.AccessError,
    ) -> None:
        await self.audit.append(
            AuditEvent.build(
                AuditKind.DENIED,
                subject_id=subject_id,
                resource_id=resource_id,
                timestamp=self.clock(),
                details=AuditDetails(reason=error.reason, credential_kind=kind.value),
            )
        )
        logger.info("issuance_denied", resource_id=str(resource_id), reason=error.reason)
        raise error


def _hours_label(policy: TimeWindowPolicy, resource: Resource, now: datetime) -> Optional[str]:
    window = policy.window_at(resource, now)
    if window is None:
        return None
    return f"Operating hours: {window.start} - {window.end}"

