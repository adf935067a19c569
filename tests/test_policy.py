from datetime import datetime

import pytest

from domain.access import TimeWindowPolicy
from domain.access.policy import OUTSIDE_OPERATING_HOURS, RESOURCE_INACTIVE
from domain.models import Resource

WEDNESDAY = datetime(2024, 5, 15)


def resource(**kwargs) -> Resource:
    data = {"name": "Trailer 7", "lock_id": "7", "otp_secret": "JBSWY3DPEHPK3PXP"}
    data.update(kwargs)
    return Resource(**data)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return WEDNESDAY.replace(hour=hour, minute=minute, second=second)


def test_no_window_for_weekday_is_open_all_day():
    policy = TimeWindowPolicy()
    r = resource(operating_hours={"mon": {"start": "08:00", "end": "09:00"}})

    assert policy.is_accessible(r, at(0, 0))
    assert policy.is_accessible(r, at(23, 59))


def test_empty_schedule_is_open():
    assert TimeWindowPolicy().evaluate(resource(), at(3, 15)) is None


def test_window_bounds_are_inclusive():
    policy = TimeWindowPolicy()
    r = resource(operating_hours={"wed": {"start": "08:00", "end": "18:00"}})

    assert policy.is_accessible(r, at(8, 0))
    assert policy.is_accessible(r, at(18, 0))
    assert policy.is_accessible(r, at(18, 0, 59))
    assert policy.evaluate(r, at(7, 59)) == OUTSIDE_OPERATING_HOURS
    assert policy.evaluate(r, at(18, 1)) == OUTSIDE_OPERATING_HOURS


def test_inactive_resource_is_never_accessible():
    r = resource(is_active=False)
    assert TimeWindowPolicy().evaluate(r, at(12)) == RESOURCE_INACTIVE


def test_day_keys_are_case_insensitive():
    r = resource(operating_hours={"Wednesday": {"start": "09:00", "end": "10:00"}})
    assert TimeWindowPolicy().evaluate(r, at(12)) == OUTSIDE_OPERATING_HOURS


def test_hours_evaluated_in_resource_timezone():
    policy = TimeWindowPolicy()
    r = resource(
        operating_hours={"wed": {"start": "08:00", "end": "09:00"}},
        timezone="America/New_York",
    )

    # 12:30 UTC is 08:30 EDT
    assert policy.is_accessible(r, at(12, 30))
    assert not policy.is_accessible(r, at(8, 30))


def test_default_timezone_applies_when_resource_has_none():
    policy = TimeWindowPolicy(default_timezone="Asia/Tokyo")
    r = resource(operating_hours={"wed": {"start": "20:00", "end": "22:00"}})

    # 12:00 UTC is 21:00 JST
    assert policy.is_accessible(r, at(12))


def test_unknown_timezone_falls_back_to_utc():
    r = resource(
        operating_hours={"wed": {"start": "11:00", "end": "13:00"}},
        timezone="Mars/Olympus_Mons",
    )
    assert TimeWindowPolicy().is_accessible(r, at(12))


def test_window_at_returns_the_days_window():
    r = resource(operating_hours={"wed": {"start": "06:00", "end": "22:00"}})
    window = TimeWindowPolicy().window_at(r, at(12))

    assert (window.start, window.end) == ("06:00", "22:00")


def test_end_of_day_window_covers_the_last_minute():
    policy = TimeWindowPolicy()
    r = resource(operating_hours={"wed": {"start": "00:00", "end": "24:00"}})

    assert policy.is_accessible(r, at(0, 0))
    assert policy.is_accessible(r, at(12))
    assert policy.is_accessible(r, at(23, 59, 59))


def test_unpadded_hours_are_normalized():
    r = resource(operating_hours={"wed": {"start": "8:00", "end": "9:00"}})
    policy = TimeWindowPolicy()

    assert policy.evaluate(r, at(12)) == OUTSIDE_OPERATING_HOURS
    assert policy.is_accessible(r, at(8, 30))
    window = policy.window_at(r, at(12))
    assert (window.start, window.end) == ("08:00", "09:00")


@pytest.mark.parametrize(
    "hours",
    [
        {"wed": {"start": "08:00"}},
        {"wed": "closed"},
        {"wed": {"start": "25:00", "end": "26:00"}},
        {"wed": {"start": "08:75", "end": "09:00"}},
        {"wed": {"start": "noon", "end": "13:00"}},
        ["08:00", "18:00"],
        "mon-fri 8-18",
    ],
)
def test_malformed_hours_leave_the_day_unrestricted(hours):
    policy = TimeWindowPolicy()
    r = resource(operating_hours=hours)

    assert policy.evaluate(r, at(12)) is None
    assert policy.window_at(r, at(12)) is None


def test_malformed_day_does_not_affect_other_days():
    r = resource(
        operating_hours={
            "tue": {"start": "nope", "end": "09:00"},
            "wed": {"start": "08:00", "end": "09:00"},
            "someday": {"start": "08:00", "end": "09:00"},
        }
    )
    assert TimeWindowPolicy().evaluate(r, at(12)) == OUTSIDE_OPERATING_HOURS
