"""Weekly operating-hours schedule attached to a resource."""

from __future__ import annotations

from typing import Any, Dict, Literal, Optional

import structlog
from pydantic import BaseModel, ValidationError, field_validator

logger = structlog.get_logger()

Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]

WEEKDAYS: tuple[Weekday, ...] = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

END_OF_DAY = 24 * 60


def to_minutes(value: Any) -> int:
    """Minutes since midnight for "H:MM" / "HH:MM"; "24:00" is end of day."""
    hours, minutes = (int(part) for part in str(value).strip().split(":"))
    total = hours * 60 + minutes
    if not 0 <= minutes < 60 or not 0 <= total <= END_OF_DAY:
        raise ValueError(f"not a wall-clock time: {value!r}")
    return total


class OperatingWindow(BaseModel):
    """Inclusive wall-clock window, minute precision."""

    start: str
    end: str

    @field_validator("start", "end", mode="before")
    @classmethod
    def _normalize(cls, value):
        total = to_minutes(value)
        return f"{total // 60:02d}:{total % 60:02d}"

    def contains(self, hhmm: str) -> bool:
        return to_minutes(self.start) <= to_minutes(hhmm) <= to_minutes(self.end)


class WeeklySchedule(BaseModel):
    """A missing day means the resource is open all day."""

    mon: Optional[OperatingWindow] = None
    tue: Optional[OperatingWindow] = None
    wed: Optional[OperatingWindow] = None
    thu: Optional[OperatingWindow] = None
    fri: Optional[OperatingWindow] = None
    sat: Optional[OperatingWindow] = None
    sun: Optional[OperatingWindow] = None

    @classmethod
    def from_column(cls, data: Any) -> "WeeklySchedule":
        """Lenient parse of stored hours: a day that does not parse is left unrestricted."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            logger.warning("operating_hours_ignored", error="not a mapping")
            return cls()

        days: Dict[str, OperatingWindow] = {}
        for key, value in data.items():
            day = str(key).strip().lower()[:3]
            if day not in WEEKDAYS:
                logger.warning("operating_hours_ignored", day=str(key), error="unknown weekday")
                continue
            if value is None:
                continue
            try:
                days[day] = OperatingWindow.model_validate(value)
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning("operating_hours_ignored", day=day, error=str(e))
        return cls(**days)

    def window_for(self, day: Weekday) -> Optional[OperatingWindow]:
        return getattr(self, day)
