"""Audit endpoints - read side of the access trail for reporting views."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.deps import AccessServices, get_services, get_subject_id
from domain.errors import AccessError
from domain.models.audit_event import AuditEventRead
from infrastructure.database import AuditFilter

router = APIRouter()

AuditKindParam = Literal["requested", "granted", "denied", "unlocked", "expired"]


def _to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetime for columns stored as naive UTC."""
    if dt is not None and dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


@router.get("", response_model=List[AuditEventRead])
async def list_audit_events(
    credential_id: Optional[UUID] = Query(None),
    resource_id: Optional[UUID] = Query(None),
    kind: Optional[AuditKindParam] = Query(None),
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    limit: int = Query(100, ge=1, le=1000),
    subject_id: str = Depends(get_subject_id),
    services: AccessServices = Depends(get_services),
):
    """Caller's audit events, newest first"""
    audit_filter = AuditFilter(
        credential_id=credential_id,
        subject_id=subject_id,
        resource_id=resource_id,
        kind=kind,
        since=_to_naive_utc(since),
        until=_to_naive_utc(until),
        limit=limit,
    )
    try:
        events = await services.audit.query(audit_filter)
    except AccessError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_payload())

    return [AuditEventRead.model_validate(e, from_attributes=True) for e in events]
