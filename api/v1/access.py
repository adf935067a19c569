"""Access API - request and list access credentials.

Requires a bearer token; the subject is the token's ``sub`` claim.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from api.deps import AccessServices, get_services, get_subject_id
from domain.errors import AccessError
from domain.models.credential import CredentialKind, CredentialRead, CredentialStatus
from infrastructure.rendering import qr_data_url

router = APIRouter()

KIND_BY_REQUEST = {"qr": CredentialKind.TOKEN, "otp": CredentialKind.OTP}

# Older clients filter on "pending"/"active"; both mean issued
STATUS_ALIASES = {"pending": CredentialStatus.ISSUED.value, "active": CredentialStatus.ISSUED.value}


class RequestAccessRequest(BaseModel):
    resource_id: UUID
    kind: Literal["qr", "otp"] = "qr"
    duration_minutes: int = 60


class CredentialOut(CredentialRead):
    qr_code_url: Optional[str] = None


class ResourceSummary(BaseModel):
    id: UUID
    name: str
    address: Optional[str] = None


class RequestAccessResponse(BaseModel):
    credential: CredentialOut
    resource: ResourceSummary
    expires_at: datetime
    otp_code: Optional[str] = None
    otp_valid_for_seconds: Optional[int] = None


class ListAccessResponse(BaseModel):
    credentials: List[CredentialRead]


class OtpCodeResponse(BaseModel):
    credential_id: UUID
    code: str
    valid_for_seconds: int


def _raise_http(e: AccessError, status_code: Optional[int] = None) -> None:
    raise HTTPException(status_code=status_code or e.status_code, detail=e.to_payload())


@router.post("", response_model=RequestAccessResponse, status_code=201)
async def request_access(
    req: RequestAccessRequest,
    subject_id: str = Depends(get_subject_id),
    services: AccessServices = Depends(get_services),
):
    """Issue a credential for a space.

    qr: returns a PNG data URL encoding the opaque token.
    otp: returns the code valid right now; refresh it via /{id}/otp.
    """
    kind = KIND_BY_REQUEST[req.kind]

    try:
        credential = await services.issuer.issue(subject_id, req.resource_id, kind, req.duration_minutes)
        resource = await services.store.get_resource(credential.resource_id)

        otp_code = None
        otp_valid_for = None
        if kind == CredentialKind.OTP:
            otp_code, otp_valid_for = await services.issuer.current_code(subject_id, credential.id)
    except AccessError as e:
        # Inactive spaces are indistinguishable from missing ones at issuance
        _raise_http(e, status_code=404 if e.reason == "resource_inactive" else None)

    out = CredentialOut.model_validate(credential, from_attributes=True)
    if kind == CredentialKind.TOKEN:
        out.qr_code_url = qr_data_url(credential.code)

    return RequestAccessResponse(
        credential=out,
        resource=ResourceSummary(**resource.summary()),
        expires_at=credential.expires_at,
        otp_code=otp_code,
        otp_valid_for_seconds=otp_valid_for,
    )


@router.get("", response_model=ListAccessResponse)
async def list_access(
    status: Optional[str] = Query(None, description="issued | redeemed | expired | revoked"),
    resource_id: Optional[UUID] = Query(None),
    subject_id: str = Depends(get_subject_id),
    services: AccessServices = Depends(get_services),
):
    """List the caller's credentials, newest first"""
    if status:
        status = STATUS_ALIASES.get(status.lower(), status.lower())
        if status not in {s.value for s in CredentialStatus}:
            raise HTTPException(status_code=400, detail={"error": f"Invalid status: {status}", "reason": "invalid_input"})

    try:
        credentials = await services.store.list_credentials(subject_id, status=status, resource_id=resource_id)
    except AccessError as e:
        _raise_http(e)

    return ListAccessResponse(
        credentials=[CredentialRead.model_validate(c, from_attributes=True) for c in credentials]
    )


@router.get("/{credential_id}/otp", response_model=OtpCodeResponse)
async def current_otp(
    credential_id: UUID,
    subject_id: str = Depends(get_subject_id),
    services: AccessServices = Depends(get_services),
):
    """Current code for one of the caller's OTP credentials"""
    try:
        code, valid_for = await services.issuer.current_code(subject_id, credential_id)
    except AccessError as e:
        _raise_http(e)

    return OtpCodeResponse(credential_id=credential_id, code=code, valid_for_seconds=valid_for)
