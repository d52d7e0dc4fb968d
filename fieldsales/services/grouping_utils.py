from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable
from zoneinfo import ZoneInfo

MONTH_ABBR = ('Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun', 'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec')
WEEKDAY_ABBR = ('Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun')
FRACTION_RE = re.compile(r'(\d{2}:\d{2}:\d{2})\.(\d+)')


@dataclass
class DateGroup:
    label: str
    local_date: date
    rows: list[dict] = field(default_factory=list)
    total_qty: int = 0


def get_zone(tz_name: str | None) -> ZoneInfo:
    return ZoneInfo(tz_name or 'UTC')


def _six_digit_fraction(match: re.Match) -> str:
    # fromisoformat on 3.10 only accepts three or six fraction digits.
    return f'{match.group(1)}.{match.group(2)[:6].ljust(6, "0")}'


def parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        text = FRACTION_RE.sub(_six_digit_fraction, text, count=1)
        parsed = datetime.fromisoformat(text)
    # Backend timestamps without an offset are UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_local_date(value: Any, tz_name: str | None) -> date | None:
    parsed = parse_timestamp(value)
    if parsed is None:
        return None
    return parsed.astimezone(get_zone(tz_name)).date()


def format_date_label(day: date) -> str:
    return f'{MONTH_ABBR[day.month - 1]} {day.day}, {day.year}'


def local_date_label(value: Any, tz_name: str | None) -> str | None:
    day = to_local_date(value, tz_name)
    return format_date_label(day) if day else None


def weekday_label(day: date) -> str:
    return WEEKDAY_ABBR[day.weekday()]


def to_number(value: Any) -> Decimal:
    if value is None or value == '':
        return Decimal('0')
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return Decimal('0')
    return number if number.is_finite() else Decimal('0')


def parse_amount(value: Any, error_message: str) -> Decimal:
    """Strict counterpart of ``to_number`` for user input: blanks are zero, anything else must be a finite number."""
    if value is None or str(value).strip() == '':
        return Decimal('0')
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise ValueError(error_message) from exc
    if not number.is_finite():
        raise ValueError(error_message)
    return number


def group_rows(rows: Iterable[dict], key: Callable[[dict], Any]) -> dict[Any, list[dict]]:
    grouped: dict[Any, list[dict]] = {}
    for row in rows:
        grouped.setdefault(key(row), []).append(row)
    return grouped


def sum_by(rows: Iterable[dict], key: Callable[[dict], Any], value: Callable[[dict], Any]) -> dict[Any, Decimal]:
    totals: dict[Any, Decimal] = {}
    for row in rows:
        group_key = key(row)
        totals[group_key] = totals.get(group_key, Decimal('0')) + to_number(value(row))
    return totals


def group_by_local_date(
    rows: Iterable[dict],
    *,
    timestamp_field: str,
    tz_name: str | None,
    qty_field: str = 'qty',
) -> list[DateGroup]:
    groups: dict[str, DateGroup] = {}
    for row in rows:
        day = to_local_date(row.get(timestamp_field), tz_name)
        if day is None:
            continue
        label = format_date_label(day)
        group = groups.get(label)
        if group is None:
            group = groups[label] = DateGroup(label=label, local_date=day)
        group.rows.append(row)
        group.total_qty += int(row.get(qty_field) or 0)
    return list(groups.values())


def relative_day_label(value: Any, *, now: datetime, tz_name: str | None) -> str:
    day = to_local_date(value, tz_name)
    if day is None:
        return 'Unknown date'
    today = now.astimezone(get_zone(tz_name)).date()
    diff_days = (today - day).days
    if diff_days == 0:
        return 'Today'
    if diff_days == 1:
        return 'Yesterday'
    if 1 < diff_days < 7:
        return f'{diff_days} days ago'
    return format_date_label(day)


def daily_series(
    rows: Iterable[dict],
    *,
    days: int,
    now: datetime,
    tz_name: str | None,
    timestamp_field: str,
    value_field: str,
) -> list[tuple[date, Decimal]]:
    today = now.astimezone(get_zone(tz_name)).date()
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    totals: dict[date, Decimal] = {day: Decimal('0') for day in window}
    for row in rows:
        day = to_local_date(row.get(timestamp_field), tz_name)
        if day in totals:
            totals[day] += to_number(row.get(value_field))
    return [(day, totals[day]) for day in window]


def start_of_local_day(now: datetime, tz_name: str | None) -> datetime:
    local = now.astimezone(get_zone(tz_name))
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.astimezone(timezone.utc)
