"""Shared FastAPI dependencies: authenticated subject and the access services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from config import settings
from domain.errors import Unauthorized
from domain.access import CredentialIssuer, RedemptionEngine
from infrastructure.audit import AuditLogger
from infrastructure.database import CredentialStore

logger = structlog.get_logger()

bearer = HTTPBearer(auto_error=False)


@dataclass
class AccessServices:
    store: CredentialStore
    audit: AuditLogger
    issuer: CredentialIssuer
    engine: RedemptionEngine


def get_services(request: Request) -> AccessServices:
    services: Optional[AccessServices] = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=500, detail={"error": "Service not initialized", "reason": "internal_error"})
    return services


def _unauthorized(message: Optional[str] = None) -> HTTPException:
    error = Unauthorized(message)
    return HTTPException(status_code=error.status_code, detail=error.to_payload())


def get_subject_id(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> str:
    """Subject id from the ``sub`` claim of an HS256 bearer token."""
    if credentials is None:
        raise _unauthorized()

    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token expired")
    except jwt.InvalidTokenError as e:
        logger.info("invalid_bearer_token", error=str(e))
        raise _unauthorized()

    subject = payload.get("sub")
    if not subject:
        raise _unauthorized()
    return str(subject)
