"""Redemption engine - validates a presented code and consumes it exactly once.

Checks run in a fixed order and every failure is written as a ``denied``
audit event before it reaches the caller:

    lookup -> resource active -> expiry -> status -> operating hours
           -> OTP -> atomic consume -> actuator

The credential is consumed *before* the actuator is called. A failed or
timed-out unlock therefore burns the single use; there is no refund.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
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
from infrastructure.locks import LockActuator, UnlockResult

logger = structlog.get_logger()


@dataclass
class RedemptionResult:
    success: bool
    credential_id: UUID
    resource: Dict[str, Any]
    subject: Dict[str, Any]
    timestamp: datetime
    method: Optional[str] = None


class RedemptionEngine:
    def __init__(
        self,
        store: CredentialStore,
        audit: AuditLogger,
        policy: TimeWindowPolicy,
        actuator: LockActuator,
        *,
        totp: Optional[TotpGenerator] = None,
        clock: Clock = utcnow,
        actuator_timeout: float = 1.0,
    ):
        self.store = store
        self.audit = audit
        self.policy = policy
        self.actuator = actuator
        self.totp = totp or TotpGenerator()
        self.clock = clock
        self.actuator_timeout = actuator_timeout

    async def _lookup(self, presented_code: str, resource_id: UUID, now: datetime) -> Optional[Credential]:
        credential = await self.store.find_token_credential(presented_code, resource_id)
        if credential is None and self.totp.looks_like_code(presented_code):
            credential = await self.store.find_otp_credential(resource_id, now)
        return credential

    async def redeem(self, presented_code: str, resource_id: UUID) -> RedemptionResult:
        presented_code = (presented_code or "").strip()
        if not presented_code:
            raise errors.InvalidInput("Access code is required")

        now = self.clock()

        credential = await self._lookup(presented_code, resource_id, now)
        if credential is None:
            await self._deny(None, resource_id, now, errors.NotFound("Invalid access code"))

        resource = await self.store.get_resource(credential.resource_id)
        if resource is None:
            await self._deny(credential, resource_id, now, errors.NotFound("Invalid access code"))
        if not resource.is_active:
            await self._deny(credential, resource.id, now, errors.ResourceInactive())

        if now > credential.expires_at:
            # Burns the credential even on a first attempt; no-op if already terminal
            await self.store.transition(credential.id, CredentialStatus.EXPIRED, now)
            await self._deny(credential, resource.id, now, errors.Expired())

        if credential.status != CredentialStatus.ISSUED.value:
            await self._deny(credential, resource.id, now, errors.AlreadyUsed())

        reason = self.policy.evaluate(resource, now)
        if reason == RESOURCE_INACTIVE:
            await self._deny(credential, resource.id, now, errors.ResourceInactive())
        elif reason is not None:
            window = self.policy.window_at(resource, now)
            details = f"Operating hours: {window.start} - {window.end}" if window else None
            await self._deny(credential, resource.id, now, errors.OutsideOperatingHours(details=details))

        if credential.kind == CredentialKind.OTP.value:
            if not self.totp.verify(resource.otp_secret, presented_code, now):
                await self._deny(credential, resource.id, now, errors.InvalidOTP())

        consumed = await self.store.transition(credential.id, CredentialStatus.REDEEMED, now)
        if not consumed:
            # Lost the race: another request consumed (or expired) it first
            await self._deny(credential, resource.id, now, errors.AlreadyUsed())

        # Past this point the use is spent; finish even if the caller goes away
        actuation = asyncio.ensure_future(self._actuate(credential, resource, now))
        actuation.add_done_callback(_collect_detached)
        return await asyncio.shield(actuation)

    async def _actuate(self, credential: Credential, resource: Resource, now: datetime) -> RedemptionResult:
        outcome = await self._call_actuator(resource.lock_id)

        if not outcome.success:
            await self.audit.append(
                AuditEvent.build(
                    AuditKind.DENIED,
                    credential_id=credential.id,
                    subject_id=credential.subject_id,
                    resource_id=resource.id,
                    timestamp=self.clock(),
                    details=AuditDetails(
                        reason=errors.ActuationFailure.reason,
                        credential_kind=credential.kind,
                        lock_id=resource.lock_id,
                        error=outcome.error,
                    ),
                )
            )
            logger.warning(
                "unlock_failed",
                credential_id=str(credential.id),
                lock_id=resource.lock_id,
                error=outcome.error,
            )
            raise errors.ActuationFailure(details=outcome.error)

        await self.audit.append(
            AuditEvent.build(
                AuditKind.UNLOCKED,
                credential_id=credential.id,
                subject_id=credential.subject_id,
                resource_id=resource.id,
                timestamp=self.clock(),
                details=AuditDetails(
                    credential_kind=credential.kind,
                    lock_id=resource.lock_id,
                    extra={"unlock_time": now.isoformat()},
                ),
            )
        )
        logger.info("unlocked", credential_id=str(credential.id), lock_id=resource.lock_id, method=outcome.method)

        return RedemptionResult(
            success=True,
            credential_id=credential.id,
            resource=resource.summary(),
            subject={"id": credential.subject_id},
            timestamp=now,
            method=outcome.method,
        )

    async def _call_actuator(self, lock_id: str) -> UnlockResult:
        """Bounded unlock call; a timeout or crash counts as failure, never success."""
        try:
            return await asyncio.wait_for(self.actuator.unlock(lock_id), timeout=self.actuator_timeout)
        except asyncio.TimeoutError:
            return UnlockResult(success=False, error="Smart lock communication timeout")
        except Exception as e:
            logger.error("actuator_error", lock_id=lock_id, error=str(e))
            return UnlockResult(success=False, error=str(e) or e.__class__.__name__)

    async def _deny(
        self,
        credential: Optional[Credential],
        resource_id: UUID,
        now: datetime,
        error: errors.AccessError,
    ) -> None:
        await self.audit.append(
            AuditEvent.build(
                AuditKind.DENIED,
                credential_id=credential.id if credential else None,
                subject_id=credential.subject_id if credential else None,
                resource_id=resource_id,
                timestamp=now,
                details=AuditDetails(
                    reason=error.reason,
                    credential_kind=credential.kind if credential else None,
                ),
            )
        )
        logger.info(
            "redemption_denied",
            resource_id=str(resource_id),
            credential_id=str(credential.id) if credential else None,
            reason=error.reason,
        )
        raise error


def _collect_detached(task: "asyncio.Future[RedemptionResult]") -> None:
    """Retrieve the outcome of an actuation whose caller may have been cancelled."""
    if task.cancelled():
        return
    error = task.exception()
    if error is None or isinstance(error, errors.AccessError):
        # Already audited and logged by _actuate
        return
    logger.error("actuation_task_failed", error=str(error), error_type=error.__class__.__name__)
