from datetime import datetime, timezone
from typing import Callable

# Returns naive UTC, matching the TIMESTAMP WITHOUT TIME ZONE columns
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
