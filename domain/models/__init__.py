"""Domain models for the space access service"""
from .resource import Resource
from .credential import Credential
from .audit_event import AuditEvent

__all__ = [
    "Resource",
    "Credential",
    "AuditEvent",
]
