"""Database infrastructure"""
from .connection import (
    create_engine_for,
    create_session_maker,
    dispose_engine,
    get_engine,
    get_session_maker,
    init_db,
)
from .store import AuditFilter, CredentialStore, SqlCredentialStore

__all__ = [
    "create_engine_for",
    "create_session_maker",
    "dispose_engine",
    "get_engine",
    "get_session_maker",
    "init_db",
    "AuditFilter",
    "CredentialStore",
    "SqlCredentialStore",
]
