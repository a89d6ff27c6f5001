from __future__ import annotations

from datetime import datetime

from regime_bot.clock import minute_of_day, parse_hhmm


def active_news_event(
    now: datetime,
    schedule_utc: list[str],
    minutes_before: int,
    minutes_after: int = 15,
) -> str | None:
    """Return the scheduled ``HH:MM`` whose window contains ``now``.

    Only hour and minute are compared: there is no date awareness and a
    window does not wrap around midnight.
    """
    current = minute_of_day(now)
    for item in schedule_utc:
        event_minute = parse_hhmm(item)
        if event_minute - minutes_before <= current <= event_minute + minutes_after:
            return item
    return None


def is_near_news_event(
    now: datetime,
    schedule_utc: list[str],
    minutes_before: int,
    minutes_after: int = 15,
) -> bool:
    return active_news_event(now, schedule_utc, minutes_before, minutes_after) is not None
