from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def minute_of_day(dt: datetime) -> int:
    utc = as_utc(dt)
    return utc.hour * 60 + utc.minute


def parse_hhmm(value: str) -> int:
    hh, mm = value.strip().split(":")
    return int(hh) * 60 + int(mm)


def is_even_second(dt: datetime) -> bool:
    return as_utc(dt).second % 2 == 0
