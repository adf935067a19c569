"""API v1 routers"""
from . import (
    access,
    audit,
    unlock,
)

__all__ = [
    "access",
    "audit",
    "unlock",
]
