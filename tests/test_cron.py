from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from horizon import cron
from horizon.errors import InvalidCronExpression, UnsupportedCronExpression

UTC = timezone.utc


def _at(year: int, month: int, day: int, hour: int, minute: int, second: int = 0) -> datetime:
    return datetime(year, month, day, hour, minute, second, tzinfo=UTC)


@pytest.mark.parametrize(
    "minute,expected",
    [(0, True), (15, True), (30, True), (45, True), (1, False), (14, False), (44, False), (59, False)],
)
def test_every_fifteen_minutes_truth_table(minute: int, expected: bool) -> None:
    assert cron.is_due("*/15 * * * *", "UTC", _at(2024, 1, 1, 10, minute)) is expected


@pytest.mark.parametrize(
    "expression,instant,expected",
    [
        ("* * * * *", _at(2024, 3, 5, 7, 42), True),
        ("30 14 * * *", _at(2024, 3, 5, 14, 30), True),
        ("30 14 * * *", _at(2024, 3, 5, 14, 31), False),
        # 2024-01-01 is a Monday, 2024-01-06 a Saturday.
        ("0 9-17 * * 1-5", _at(2024, 1, 1, 9, 0), True),
        ("0 9-17 * * 1-5", _at(2024, 1, 1, 17, 0), True),
        ("0 9-17 * * 1-5", _at(2024, 1, 1, 18, 0), False),
        ("0 9-17 * * 1-5", _at(2024, 1, 6, 10, 0), False),
        ("5,10,20-25 * * * *", _at(2024, 1, 1, 0, 10), True),
        ("5,10,20-25 * * * *", _at(2024, 1, 1, 0, 22), True),
        ("5,10,20-25 * * * *", _at(2024, 1, 1, 0, 11), False),
        ("10-20/5 * * * *", _at(2024, 1, 1, 0, 15), True),
        ("10-20/5 * * * *", _at(2024, 1, 1, 0, 20), True),
        ("10-20/5 * * * *", _at(2024, 1, 1, 0, 12), False),
        ("10-20/5 * * * *", _at(2024, 1, 1, 0, 25), False),
        ("0 0 1 */3 *", _at(2024, 4, 1, 0, 0), True),
        ("0 0 1 */3 *", _at(2024, 2, 1, 0, 0), False),
        ("0 0 15 6 *", _at(2024, 6, 15, 0, 0), True),
        ("0 0 15 6 *", _at(2024, 7, 15, 0, 0), False),
        ("0,30 */2 * * *", _at(2024, 1, 1, 4, 30), True),
        ("0,30 */2 * * *", _at(2024, 1, 1, 5, 30), False),
    ],
)
def test_fast_path_truth_table(expression: str, instant: datetime, expected: bool) -> None:
    assert cron.match_expression(expression, "UTC", instant) is expected
    assert cron.is_due(expression, "UTC", instant) is expected


def test_sunday_is_both_zero_and_seven() -> None:
    sunday_midnight = _at(2024, 1, 7, 0, 0)
    assert cron.is_due("0 0 * * 7", "UTC", sunday_midnight) is True
    assert cron.is_due("0 0 * * 0", "UTC", sunday_midnight) is True
    assert cron.is_due("0 0 * * 5-7", "UTC", sunday_midnight) is True
    assert cron.is_due("0 0 * * 7", "UTC", _at(2024, 1, 8, 0, 0)) is False


def test_due_check_uses_target_timezone_wall_clock() -> None:
    # 01:00 UTC is 09:00 in Taipei.
    assert cron.is_due("0 9 * * *", "Asia/Taipei", _at(2024, 1, 1, 1, 0)) is True
    assert cron.is_due("0 9 * * *", "Asia/Taipei", _at(2024, 1, 1, 9, 0)) is False


def test_due_check_ignores_seconds_and_accepts_naive_utc() -> None:
    assert cron.is_due("*/15 * * * *", "UTC", _at(2024, 1, 1, 10, 15, 42)) is True
    assert cron.is_due("15 10 * * *", "UTC", datetime(2024, 1, 1, 10, 15)) is True


def test_malformed_expression_is_never_due() -> None:
    assert cron.is_due("* * *", "UTC", _at(2024, 1, 1, 0, 0)) is False
    assert cron.is_due("bad expression", "UTC", _at(2024, 1, 1, 0, 0)) is False
    assert cron.is_due("75 * * * *", "UTC", _at(2024, 1, 1, 0, 15)) is False


def test_unknown_timezone_is_never_due() -> None:
    assert cron.is_due("* * * * *", "Mars/Olympus_Mons", _at(2024, 1, 1, 0, 0)) is False


def test_fast_path_declines_what_it_cannot_express() -> None:
    with pytest.raises(UnsupportedCronExpression):
        cron.match_expression("* * *", "UTC", _at(2024, 1, 1, 0, 0))
    with pytest.raises(UnsupportedCronExpression):
        cron.match_expression("0 9 * * MON", "UTC", _at(2024, 1, 1, 9, 0))
    with pytest.raises(UnsupportedCronExpression):
        cron.match_expression("5/15 * * * *", "UTC", _at(2024, 1, 1, 0, 5))
    with pytest.raises(UnsupportedCronExpression):
        cron.match_expression("*/0 * * * *", "UTC", _at(2024, 1, 1, 0, 0))


def test_fallback_handles_names_and_macros() -> None:
    assert cron.is_due("0 9 * * MON", "UTC", _at(2024, 1, 1, 9, 0)) is True
    assert cron.is_due("0 9 * * MON", "UTC", _at(2024, 1, 2, 9, 0)) is False
    assert cron.is_due("@hourly", "UTC", _at(2024, 1, 1, 10, 0)) is True
    assert cron.is_due("@hourly", "UTC", _at(2024, 1, 1, 10, 1)) is False
    assert cron.is_due("5/15 * * * *", "UTC", _at(2024, 1, 1, 0, 20)) is True


def test_fallback_uses_target_timezone_wall_clock() -> None:
    # 01:00 UTC on Monday 2024-01-01 is 09:00 Monday in Taipei.
    assert cron.is_due("0 9 * * MON", "Asia/Taipei", _at(2024, 1, 1, 1, 0)) is True
    assert cron.is_due("0 9 * * MON", "Asia/Taipei", _at(2024, 1, 1, 9, 0)) is False
    # Sunday 17:00 UTC is already Monday 01:00 in Taipei.
    assert cron.is_due("0 1 * * MON", "Asia/Taipei", _at(2024, 1, 7, 17, 0)) is True
    assert cron.is_due("0 1 * * MON", "UTC", _at(2024, 1, 7, 17, 0)) is False


@pytest.mark.parametrize(
    "instant,fast,fallback",
    [
        # Monday the 1st: both day fields match.
        (_at(2024, 1, 1, 0, 0), True, True),
        # Monday the 8th: only day-of-week matches.
        (_at(2024, 1, 8, 0, 0), False, True),
        # Thursday the 1st: only day-of-month matches.
        (_at(2024, 2, 1, 0, 0), False, True),
        # Tuesday the 2nd: neither matches.
        (_at(2024, 1, 2, 0, 0), False, False),
    ],
)
def test_day_fields_and_on_fast_path_or_on_fallback(
    instant: datetime, fast: bool, fallback: bool
) -> None:
    assert cron.is_due("0 0 1 * 1", "UTC", instant) is fast
    assert cron.is_due("0 0 1 * MON", "UTC", instant) is fallback


def test_next_date_returns_following_minute() -> None:
    current = _at(2024, 1, 1, 0, 0)
    assert cron.next_date("* * * * *", "UTC", current) == current + timedelta(minutes=1)


def test_next_date_is_aware_in_target_zone() -> None:
    nxt = cron.next_date("0 9 * * *", "Asia/Taipei", _at(2024, 1, 1, 2, 0))
    assert nxt.utcoffset() == timedelta(hours=8)
    assert (nxt.day, nxt.hour, nxt.minute) == (2, 9, 0)


def test_next_date_raises_for_malformed_expression() -> None:
    with pytest.raises(InvalidCronExpression):
        cron.next_date("* * *", "UTC", _at(2024, 1, 1, 0, 0))
    with pytest.raises(InvalidCronExpression):
        cron.next_date("* * * * *", "Mars/Olympus_Mons", _at(2024, 1, 1, 0, 0))


def test_next_dates_preview() -> None:
    runs = cron.next_dates("0 * * * *", "UTC", 3, after=_at(2024, 1, 1, 10, 30))
    assert [run.strftime("%H:%M") for run in runs] == ["11:00", "12:00", "13:00"]
