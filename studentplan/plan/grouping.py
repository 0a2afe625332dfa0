from datetime import datetime
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from studentplan.plan.models import DayBucket, RawScheduleEvent


def parse_iso_datetime(text: str, tz: ZoneInfo) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into `tz`.

    Offset-aware values are converted; naive local values are taken as `tz`.
    """
    raw = (text or "").strip()
    if not raw:
        return None
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def day_key(value: datetime, tz: ZoneInfo) -> str:
    return value.astimezone(tz).strftime("%Y-%m-%d")


def group_by_day(events: Iterable[RawScheduleEvent], tz: ZoneInfo) -> DayBucket:
    by_day: DayBucket = {}
    for event in events:
        by_day.setdefault(day_key(event.start, tz), []).append(event)
    for items in by_day.values():
        items.sort(key=lambda item: item.start)
    return by_day
