"""
Lock actuator clients
Trigger the physical unlock for a resource's lock_id
"""
import asyncio
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class UnlockResult:
    success: bool
    error: Optional[str] = None
    method: Optional[str] = None


class LockActuator(ABC):
    """Unlock contract: no ordering or retry guarantee, callers bound the wait."""

    @abstractmethod
    async def unlock(self, lock_id: str) -> UnlockResult: ...


class HttpLockActuator(LockActuator):
    """Client for ISAPI-style door controllers (RemoteControlDoor over digest auth).

    ``lock_id`` is the door number on the controller at ``base_url``.
    """

    def __init__(
        self,
        base_url: str,
        username: str = "admin",
        password: str = "",
        timeout: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = httpx.DigestAuth(username, password)
        self.timeout = timeout
        self._transport = transport

    async def _put(self, endpoint: str, body: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            return await client.put(
                f"{self.base_url}{endpoint}",
                auth=self.auth,
                content=body,
                headers={"Content-Type": "application/xml"},
            )

    async def unlock(self, lock_id: str) -> UnlockResult:
        # Minimal payload (avoid XML declaration/whitespace issues)
        xml_body = "<RemoteControlDoor><cmd>open</cmd></RemoteControlDoor>"
        endpoint = f"/ISAPI/AccessControl/RemoteControl/door/{lock_id}"

        try:
            response = await self._put(endpoint, xml_body)
            if response.status_code in (200, 204):
                return UnlockResult(success=True, method="remote_control")

            # Fallback: ISAPI v2 namespace
            xml_body_v2 = (
                "<RemoteControlDoor version='2.0' xmlns='http://www.isapi.org/ver20/XMLSchema'>"
                "<cmd>open</cmd>"
                "</RemoteControlDoor>"
            )
            response = await self._put(endpoint, xml_body_v2)
            if response.status_code in (200, 204):
                return UnlockResult(success=True, method="remote_control_v2")

            return UnlockResult(success=False, error=f"http_status={response.status_code}")
        except httpx.HTTPError as e:
            logger.error("lock_request_failed", lock_id=lock_id, error=str(e))
            return UnlockResult(success=False, error=str(e) or e.__class__.__name__)


class SimulatedLockActuator(LockActuator):
    """Stand-in used until a controller is wired: fixed latency, random failures."""

    def __init__(self, latency_seconds: float = 1.0, success_rate: float = 0.95, rng: Optional[random.Random] = None):
        self.latency_seconds = latency_seconds
        self.success_rate = success_rate
        self._rng = rng or random.Random()

    async def unlock(self, lock_id: str) -> UnlockResult:
        await asyncio.sleep(self.latency_seconds)

        if self._rng.random() >= self.success_rate:
            return UnlockResult(success=False, error="Smart lock communication timeout")

        return UnlockResult(success=True, method="simulated")
