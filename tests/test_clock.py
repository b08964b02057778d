from datetime import date, datetime, timezone

import pytest

from utils.clock import (local_today, local_weekday, local_hhmm, slot_datetime_utc, sunday_weekday,
                         to_naive_utc, get_zone)
from utils.errors import ValidationError


def test_sunday_is_zero():
    assert sunday_weekday(date(2025, 6, 1)) == 0  # Sunday
    assert sunday_weekday(date(2025, 6, 3)) == 2  # Tuesday
    assert sunday_weekday(date(2025, 6, 7)) == 6  # Saturday


def test_today_uses_org_timezone_not_utc():
    # 02:30 UTC on Wednesday is still Tuesday evening in New York
    now = datetime(2025, 6, 4, 2, 30, tzinfo=timezone.utc)
    assert local_today('America/New_York', now) == date(2025, 6, 3)
    assert local_weekday('America/New_York', now) == 2
    assert local_hhmm('America/New_York', now) == '22:30'
    assert local_today('Europe/London', now) == date(2025, 6, 4)


def test_naive_now_is_treated_as_utc():
    assert local_hhmm('America/New_York', datetime(2025, 6, 3, 13, 0)) == '09:00'


def test_slot_instant_follows_daylight_saving():
    summer = slot_datetime_utc(date(2025, 6, 3), '09:00', 'America/New_York')
    winter = slot_datetime_utc(date(2025, 1, 7), '09:00', 'America/New_York')
    assert to_naive_utc(summer) == datetime(2025, 6, 3, 13, 0)
    assert to_naive_utc(winter) == datetime(2025, 1, 7, 14, 0)


def test_unknown_timezone_is_a_validation_error():
    with pytest.raises(ValidationError):
        get_zone('Mars/Olympus_Mons')
