from datetime import datetime, date, timedelta
from typing import Iterator
import zoneinfo

def get_local_now(tz: str) -> datetime:
    return datetime.now(zoneinfo.ZoneInfo(tz))

def get_today(tz: str) -> date:
    return get_local_now(tz).date()

def ymd(day: date) -> str:
    return day.strftime("%Y-%m-%d")

def parse_ymd(value: str) -> date:
    return datetime.strptime(value, "%Y-%m-%d").date()

def enumerate_days(start: date, end: date) -> Iterator[date]:
    """Inclusive day-by-day walk from `start` to `end`; empty when end < start."""
    cursor = start
    while cursor <= end:
        yield cursor
        cursor += timedelta(days=1)
