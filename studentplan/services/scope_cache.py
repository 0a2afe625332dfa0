"""
Two-level (memory + key-value store) cache of one album's known schedule.

The snapshot holds every fetched day and a freshness timestamp per scope
(view name + range start), so each view ages independently. All reads and
writes of the snapshot happen under one asyncio lock; the network fetch
itself runs outside it, in a worker thread.
"""
import asyncio
import json
import logging
import time
from dataclasses import asdict
from datetime import date
from typing import Callable, Iterable, List, Optional
from zoneinfo import ZoneInfo

from studentplan.config import settings as env_settings
from studentplan.db.connection import async_session_maker
from studentplan.db.repos.kv_repo import KeyValueRepo
from studentplan.plan.fetcher import PlanFetchError, PlanFetcher
from studentplan.plan.grouping import group_by_day, parse_iso_datetime
from studentplan.plan.models import DayBucket, RawScheduleEvent, RequestDiagnostics, ScheduleSnapshot
from studentplan.services.date_service import enumerate_days, ymd

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "plan_cache_v1_data"


def scope_key(scope_name: str, range_start: date) -> str:
    return f"{scope_name}:{ymd(range_start)}"


def _event_to_dict(event: RawScheduleEvent) -> dict:
    data = asdict(event)
    data["start"] = event.start.isoformat()
    data["end"] = event.end.isoformat()
    return data


def _event_from_dict(data: dict, tz: ZoneInfo) -> Optional[RawScheduleEvent]:
    start = parse_iso_datetime(data.get("start", ""), tz)
    end = parse_iso_datetime(data.get("end", ""), tz)
    if start is None or end is None:
        return None
    fields = {key: str(value) for key, value in data.items() if key not in ("start", "end")}
    return RawScheduleEvent(start=start, end=end, **fields)


def snapshot_to_bytes(snapshot: ScheduleSnapshot) -> bytes:
    payload = {
        "album": snapshot.album_id,
        "timestamp": snapshot.captured_at,
        "byDate": {day: [_event_to_dict(event) for event in events] for day, events in snapshot.by_day.items()},
        "scopeTimestamps": snapshot.scope_freshness,
    }
    return json.dumps(payload, ensure_ascii=False).encode("utf-8")


def snapshot_from_bytes(raw: bytes, tz: ZoneInfo) -> Optional[ScheduleSnapshot]:
    """Decode a stored snapshot; anything unreadable is treated as absent."""
    try:
        payload = json.loads(raw)
        by_day: DayBucket = {}
        for day, rows in payload["byDate"].items():
            events = [event for event in (_event_from_dict(row, tz) for row in rows) if event is not None]
            if events:
                by_day[day] = sorted(events, key=lambda event: event.start)
        return ScheduleSnapshot(
            album_id=str(payload["album"]),
            captured_at=float(payload.get("timestamp", 0)),
            by_day=by_day,
            scope_freshness={str(key): float(value) for key, value in payload.get("scopeTimestamps", {}).items()},
        )
    except (ValueError, KeyError, TypeError, AttributeError, UnicodeDecodeError):
        logger.warning("Stored plan snapshot is unreadable; starting empty.")
        return None


def _copy_bucket(by_day: DayBucket) -> DayBucket:
    return {day: list(events) for day, events in by_day.items()}


class ScopeCache:
    def __init__(
        self,
        fetcher: PlanFetcher,
        session_maker=None,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ):
        self._fetcher = fetcher
        self._session_maker = session_maker or async_session_maker
        if ttl_seconds is None:
            ttl_seconds = env_settings.PLAN_SCOPE_TTL_MINUTES * 60
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._snapshot: Optional[ScheduleSnapshot] = None

    @property
    def tz(self) -> ZoneInfo:
        return self._fetcher.tz

    @property
    def snapshot(self) -> Optional[ScheduleSnapshot]:
        return self._snapshot

    async def _read_persisted(self) -> Optional[ScheduleSnapshot]:
        async with self._session_maker() as session:
            raw = await KeyValueRepo(session).get(SNAPSHOT_KEY)
        if raw is None:
            return None
        return snapshot_from_bytes(raw, self.tz)

    async def _persist(self, snapshot: ScheduleSnapshot) -> None:
        try:
            async with self._session_maker() as session:
                await KeyValueRepo(session).set(SNAPSHOT_KEY, snapshot_to_bytes(snapshot))
                await session.commit()
        except Exception:
            logger.exception("Failed to persist plan snapshot for album=%s", snapshot.album_id)

    async def _load_for_album(self, album_id: str) -> ScheduleSnapshot:
        # Caller holds self._lock.
        if self._snapshot is not None and self._snapshot.album_id == album_id:
            return self._snapshot

        stored = await self._read_persisted()
        if stored is not None and stored.album_id == album_id:
            logger.info("Plan snapshot warm-started from storage for album=%s (days=%s)", album_id, len(stored.by_day))
            self._snapshot = stored
        else:
            self._snapshot = ScheduleSnapshot(album_id=album_id, captured_at=self._clock())
        return self._snapshot

    def needs_refresh(self, snapshot: ScheduleSnapshot, key: str, now: float, force: bool = False) -> bool:
        if force or not snapshot.by_day:
            return True
        last_fetch = snapshot.scope_freshness.get(key, 0.0)
        return now - last_fetch > self._ttl_seconds

    async def ensure_scope_data(
        self,
        album_id: str,
        range_start: date,
        range_end: date,
        scope_name: str,
        force_refresh: bool = False,
        diagnostics: Optional[List[RequestDiagnostics]] = None,
    ) -> DayBucket:
        """
        Return the album's day buckets, refreshing `range_start..range_end` first
        when the scope is stale. A failed refresh returns the last known data.
        """
        if not album_id:
            return {}

        key = scope_key(scope_name, range_start)
        async with self._lock:
            snapshot = await self._load_for_album(album_id)
            now = self._clock()
            if not self.needs_refresh(snapshot, key, now, force_refresh):
                return _copy_bucket(snapshot.by_day)
            stale = _copy_bucket(snapshot.by_day)

        logger.info("Refreshing plan scope=%s album=%s (%s..%s)", key, album_id, range_start, range_end)
        try:
            fresh = await asyncio.to_thread(
                self._fetcher.fetch_range, album_id, range_start, range_end, diagnostics
            )
        except PlanFetchError as exc:
            logger.warning("Plan refresh failed for scope=%s, serving cached data: %s", key, exc)
            return stale
        except Exception:
            logger.exception("Unexpected plan refresh error for scope=%s, serving cached data", key)
            return stale

        async with self._lock:
            snapshot = await self._load_for_album(album_id)
            self._replace_days(snapshot, fresh, range_start, range_end)
            snapshot.scope_freshness[key] = now
            snapshot.captured_at = now
            await self._persist(snapshot)
            logger.info("Plan scope=%s refreshed (events=%s, days cached=%s)", key, len(fresh), len(snapshot.by_day))
            return _copy_bucket(snapshot.by_day)

    def _replace_days(
        self,
        snapshot: ScheduleSnapshot,
        events: Iterable[RawScheduleEvent],
        range_start: date,
        range_end: date,
    ) -> None:
        grouped = group_by_day(events, self.tz)
        for day in enumerate_days(range_start, range_end):
            day_key = ymd(day)
            if grouped.get(day_key):
                snapshot.by_day[day_key] = grouped[day_key]
            else:
                snapshot.by_day.pop(day_key, None)

    async def replace_all(self, album_id: str, events: Iterable[RawScheduleEvent]) -> DayBucket:
        """Swap in a complete schedule; all scope freshness is reset."""
        now = self._clock()
        snapshot = ScheduleSnapshot(
            album_id=album_id,
            captured_at=now,
            by_day=group_by_day(events, self.tz),
        )
        async with self._lock:
            self._snapshot = snapshot
            await self._persist(snapshot)
            return _copy_bucket(snapshot.by_day)

    async def clear(self) -> None:
        async with self._lock:
            self._snapshot = None
            async with self._session_maker() as session:
                await KeyValueRepo(session).remove(SNAPSHOT_KEY)
                await session.commit()
