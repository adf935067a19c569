"""Audit logger - append-only trail, best-effort from the caller's point of view.

A failed write never fails the issuance/redemption that produced it: the
event is logged locally and queued, and the queue is drained on the next
append or by the periodic retry task started in ``main.py``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Deque, List

import structlog

from domain.errors import StoreUnavailable
from domain.models import AuditEvent
from infrastructure.database.store import AuditFilter, CredentialStore

logger = structlog.get_logger()


class AuditLogger:
    def __init__(self, store: CredentialStore, max_pending: int = 10_000):
        self.store = store
        self._pending: Deque[AuditEvent] = deque(maxlen=max_pending)
        self._lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def append(self, event: AuditEvent) -> None:
        if self._pending:
            await self.flush_pending()
        if self._pending:
            # Keep append order: nothing jumps ahead of an unflushed event
            self._pending.append(event)
            return

        try:
            await self.store.append_audit(event)
        except Exception as e:
            self._queue(event, e)

    def _queue(self, event: AuditEvent, error: Exception) -> None:
        if len(self._pending) == self._pending.maxlen:
            logger.error("audit_queue_full_dropping_oldest", dropped_id=str(self._pending[0].id))
        self._pending.append(event)
        logger.warning(
            "audit_write_failed",
            event_id=str(event.id),
            kind=event.kind,
            credential_id=str(event.credential_id) if event.credential_id else None,
            error=str(error),
            pending=len(self._pending),
        )

    async def flush_pending(self) -> int:
        """Retry queued events in order; stop at the first failure. Returns events written."""
        written = 0
        async with self._lock:
            while self._pending:
                event = self._pending[0]
                try:
                    await self.store.append_audit(event)
                except StoreUnavailable:
                    break
                except Exception as e:
                    logger.error("audit_retry_failed", event_id=str(event.id), error=str(e))
                    break
                self._pending.popleft()
                written += 1

        if written:
            logger.info("audit_queue_flushed", written=written, pending=len(self._pending))
        return written

    async def query(self, audit_filter: AuditFilter) -> List[AuditEvent]:
        return await self.store.query_audit(audit_filter)
