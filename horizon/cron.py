"""
Cron due-checks and next-occurrence lookups.

The due-check has two paths. The fast path matches the five standard fields
directly against the wall-clock minute in the target timezone. Anything the
fast grammar cannot express falls back to croniter, and anything croniter
cannot parse is treated as never due.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import List, Optional, Set, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from horizon.errors import InvalidCronExpression, UnsupportedCronExpression
from horizon.utils import UTC, ensure_aware_utc

logger = logging.getLogger(__name__)

CRON_FIELD_RE = re.compile(r"^[0-9*,/\-]+$")
FIELD_BOUNDS: Tuple[Tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
)


def is_due(expression: str, timezone_name: str, instant: datetime) -> bool:
    """Return True when ``expression`` fires at ``instant``'s minute in ``timezone_name``.

    Never raises. Expressions that neither path can evaluate are never due.
    """
    try:
        return match_expression(expression, timezone_name, instant)
    except UnsupportedCronExpression as exc:
        logger.debug("Fast path declined %r: %s", expression, exc)

    try:
        return _fallback_is_due(expression, timezone_name, instant)
    except Exception as exc:
        logger.warning(
            'Cron expression "%s" (%s) cannot be evaluated; it will never fire: %s',
            expression,
            timezone_name,
            str(exc),
        )
        return False


def match_expression(expression: str, timezone_name: str, instant: datetime) -> bool:
    fields = expression.strip().split()
    if len(fields) != 5:
        raise UnsupportedCronExpression(
            f'Expected 5 fields, got {len(fields)} in "{expression}".'
        )
    try:
        tz = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise UnsupportedCronExpression(f'Unknown timezone "{timezone_name}".') from exc

    for token, (field_name, min_value, max_value) in zip(fields, FIELD_BOUNDS):
        _validate_token(token, field_name, min_value, max_value)

    local = ensure_aware_utc(instant).astimezone(tz)
    values = (
        local.minute,
        local.hour,
        local.day,
        local.month,
        local.isoweekday() % 7,
    )
    for token, value, (field_name, min_value, _) in zip(fields, values, FIELD_BOUNDS):
        if not _match_field(token, value, min_value, day_of_week=field_name == "day_of_week"):
            return False
    return True


def next_date(expression: str, timezone_name: str, instant: datetime) -> datetime:
    """Next occurrence strictly after ``instant``, aware in the target zone."""
    try:
        tz = ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidCronExpression(f'Invalid timezone "{timezone_name}".') from exc

    local_after = ensure_aware_utc(instant).astimezone(tz)
    try:
        nxt = croniter(expression, local_after).get_next(datetime)
    except (ValueError, KeyError, TypeError) as exc:
        raise InvalidCronExpression(f'Invalid cron expression "{expression}": {exc}') from exc
    if nxt.tzinfo is None:
        return nxt.replace(tzinfo=tz)
    return nxt.astimezone(tz)


def next_dates(
    expression: str,
    timezone_name: str,
    count: int,
    after: Optional[datetime] = None,
) -> List[datetime]:
    cursor = ensure_aware_utc(after or datetime.now(tz=UTC))
    runs: List[datetime] = []
    seen_local_slots: Set[str] = set()
    while len(runs) < count:
        nxt = next_date(expression, timezone_name, cursor)
        slot_key = nxt.strftime("%Y-%m-%d %H:%M")
        if slot_key not in seen_local_slots:
            runs.append(nxt)
            seen_local_slots.add(slot_key)
        cursor = nxt
    return runs


def _fallback_is_due(expression: str, timezone_name: str, instant: datetime) -> bool:
    local = ensure_aware_utc(instant).astimezone(ZoneInfo(timezone_name))
    nxt = next_date(expression, timezone_name, instant - timedelta(minutes=1))
    return (nxt.year, nxt.month, nxt.day, nxt.hour, nxt.minute) == (
        local.year,
        local.month,
        local.day,
        local.hour,
        local.minute,
    )


def _validate_token(token: str, field_name: str, min_value: int, max_value: int) -> None:
    if not CRON_FIELD_RE.match(token):
        raise UnsupportedCronExpression(f'Unsupported token "{token}" in {field_name}.')

    for part in token.split(","):
        if not part:
            raise UnsupportedCronExpression(f'Empty list item in "{token}" ({field_name}).')
        if "/" in part:
            base, step_str = part.split("/", 1)
            if not step_str.isdigit() or int(step_str) <= 0:
                raise UnsupportedCronExpression(f'Invalid step "{part}" in {field_name}.')
            if base == "*":
                continue
            # N/K means "from N to max"; croniter handles it.
            if "-" not in base:
                raise UnsupportedCronExpression(f'Open-ended step "{part}" in {field_name}.')
            _validate_range_or_single(base, field_name, min_value, max_value)
            continue
        _validate_range_or_single(part, field_name, min_value, max_value)


def _validate_range_or_single(token: str, field_name: str, min_value: int, max_value: int) -> None:
    if token == "*":
        return
    if "-" in token:
        left, right = token.split("-", 1)
        if not left.isdigit() or not right.isdigit():
            raise UnsupportedCronExpression(f'Invalid range "{token}" in {field_name}.')
        start = int(left)
        end = int(right)
        if start > end or start < min_value or end > max_value:
            raise UnsupportedCronExpression(
                f'Range "{token}" out of bounds {min_value}-{max_value} in {field_name}.'
            )
        return
    if not token.isdigit():
        raise UnsupportedCronExpression(f'Invalid token "{token}" in {field_name}.')
    value = int(token)
    if value < min_value or value > max_value:
        raise UnsupportedCronExpression(
            f'Value "{value}" out of bounds {min_value}-{max_value} in {field_name}.'
        )


def _match_field(token: str, value: int, min_value: int, day_of_week: bool = False) -> bool:
    # Sunday is both 0 and 7.
    candidates = (value, 7) if day_of_week and value == 0 else (value,)
    return any(
        _match_part(part, candidate, min_value)
        for part in token.split(",")
        for candidate in candidates
    )


def _match_part(part: str, value: int, min_value: int) -> bool:
    if part == "*":
        return True
    if "/" in part:
        base, step_str = part.split("/", 1)
        step = int(step_str)
        if base == "*":
            return (value - min_value) % step == 0
        start, end = _split_range(base)
        return start <= value <= end and (value - start) % step == 0
    if "-" in part:
        start, end = _split_range(part)
        return start <= value <= end
    return value == int(part)


def _split_range(token: str) -> Tuple[int, int]:
    left, right = token.split("-", 1)
    return int(left), int(right)
