from __future__ import annotations

import calendar
from datetime import date, datetime


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def clamp_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def month_key(value: date) -> str:
    return value.strftime("%Y-%m")


def parse_month_value(value: str | date) -> date:
    if isinstance(value, date):
        return month_start(value)
    try:
        return datetime.strptime(value.strip(), "%Y-%m").date()
    except ValueError:
        try:
            return month_start(datetime.strptime(value.strip(), "%Y-%m-%d").date())
        except ValueError as exc:
            raise ValueError("Invalid month format. Use YYYY-MM.") from exc


def normalize_month_key(value: str | date) -> str:
    return month_key(parse_month_value(value))


def shift_month_key(value: str | date, months: int) -> str:
    return month_key(shift_month(parse_month_value(value), months))


def trailing_month_keys(end_value: str | date, months: int) -> list[str]:
    """Consecutive month keys ending at ``end_value`` inclusive, oldest first."""
    if months < 1:
        raise ValueError("months must be at least 1.")
    end_month = parse_month_value(end_value)
    return [month_key(shift_month(end_month, -offset)) for offset in range(months - 1, -1, -1)]
