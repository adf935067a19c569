"""Unlock API - redeem a presented code.

No session required: the code itself is the authorization.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.deps import AccessServices, get_services
from domain.errors import AccessError

router = APIRouter()


class UnlockRequest(BaseModel):
    code: str = Field(min_length=1)
    resource_id: UUID


class UnlockResponse(BaseModel):
    success: bool
    message: str = "Space unlocked successfully"
    resource: Dict[str, Any]
    subject: Dict[str, Any]
    timestamp: datetime


@router.post("", response_model=UnlockResponse)
async def unlock(
    req: UnlockRequest,
    services: AccessServices = Depends(get_services),
):
    try:
        result = await services.engine.redeem(req.code, req.resource_id)
    except AccessError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_payload())

    return UnlockResponse(
        success=result.success,
        resource=result.resource,
        subject=result.subject,
        timestamp=result.timestamp,
    )
