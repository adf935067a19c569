"""Time-window policy shared by issuance and redemption."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from domain.models.resource import Resource
from domain.models.schedule import WEEKDAYS, OperatingWindow

RESOURCE_INACTIVE = "resource_inactive"
OUTSIDE_OPERATING_HOURS = "outside_operating_hours"


def _local(now: datetime, tz_name: str) -> datetime:
    """Convert a naive-UTC (or aware) instant to the resource's wall clock."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = ZoneInfo("UTC")
    return now.astimezone(zone)


class TimeWindowPolicy:
    def __init__(self, default_timezone: str = "UTC"):
        self.default_timezone = default_timezone

    def window_at(self, resource: Resource, now: datetime) -> Optional[OperatingWindow]:
        local = _local(now, resource.timezone or self.default_timezone)
        return resource.schedule.window_for(WEEKDAYS[local.weekday()])

    def evaluate(self, resource: Resource, now: datetime) -> Optional[str]:
        """Return the denial reason, or None when the resource is open at ``now``."""
        if not resource.is_active:
            return RESOURCE_INACTIVE

        window = self.window_at(resource, now)
        if window is None:
            return None

        local = _local(now, resource.timezone or self.default_timezone)
        if not window.contains(local.strftime("%H:%M")):
            return OUTSIDE_OPERATING_HOURS
        return None

    def is_accessible(self, resource: Resource, now: datetime) -> bool:
        return self.evaluate(resource, now) is None
