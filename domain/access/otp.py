"""Per-resource TOTP codes (RFC 4226 / RFC 6238, HMAC-SHA1)."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone


def generate_secret(length: int = 20) -> str:
    """Random base32 secret; 20 bytes = 160 bits."""
    return base64.b32encode(secrets.token_bytes(max(length, 16))).decode("ascii").strip("=")


def _b32_decode(secret: str) -> bytes:
    pad = "=" * ((8 - len(secret) % 8) % 8)
    return base64.b32decode((secret + pad).encode("ascii"), casefold=True)


def _timestamp(now: datetime) -> float:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.timestamp()


def hotp(secret: str, counter: int, digits: int = 6) -> str:
    digest = hmac.new(_b32_decode(secret), counter.to_bytes(8, "big"), hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = (
        ((digest[offset] & 0x7F) << 24)
        | ((digest[offset + 1] & 0xFF) << 16)
        | ((digest[offset + 2] & 0xFF) << 8)
        | (digest[offset + 3] & 0xFF)
    )
    return str(code % (10 ** digits)).zfill(digits)


@dataclass(frozen=True)
class TotpGenerator:
    digits: int = 6
    step_seconds: int = 30
    window: int = 1

    def counter(self, now: datetime) -> int:
        return int(_timestamp(now) // self.step_seconds)

    def code_at(self, secret: str, now: datetime) -> str:
        return hotp(secret, self.counter(now), self.digits)

    def seconds_remaining(self, now: datetime) -> int:
        return self.step_seconds - int(_timestamp(now)) % self.step_seconds

    def looks_like_code(self, presented: str) -> bool:
        return len(presented) == self.digits and presented.isdigit()

    def verify(self, secret: str, presented: str, now: datetime) -> bool:
        """Accept the code for the current step or up to ``window`` steps either side."""
        if not self.looks_like_code(presented):
            return False
        current = self.counter(now)
        for offset in range(-self.window, self.window + 1):
            counter = current + offset
            if counter < 0:
                continue
            if hmac.compare_digest(hotp(secret, counter, self.digits), presented):
                return True
        return False
