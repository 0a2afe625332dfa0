import asyncio
import logging
from datetime import date
from typing import Dict, List, Optional

from studentplan.config import settings as env_settings
from studentplan.db.connection import async_session_maker
from studentplan.db.repos.custom_events_repo import CustomEventRepo
from studentplan.plan.custom_merge import merge_custom_events
from studentplan.plan.fetcher import PlanFetchError, PlanFetcher
from studentplan.plan.filters import extract_filters
from studentplan.plan.grouping import group_by_day
from studentplan.plan.layout import LayoutConfig, layout_day
from studentplan.plan.models import (
    CustomEvent,
    DayBucket,
    DayColumn,
    PlanDebug,
    PlanResult,
    Semester,
    SubjectFilterItem,
    ViewMode,
)
from studentplan.plan.range_resolver import (
    academic_range_for_semester,
    build_month_grid,
    current_academic_term_range,
    header_label,
    next_anchor,
    previous_anchor,
    resolve_range,
)
from studentplan.services.date_service import enumerate_days, get_today, ymd
from studentplan.services.scope_cache import ScopeCache
from studentplan.services.session_provider import SessionProvider

logger = logging.getLogger(__name__)

FILTER_CURRENT_SCOPE = "filter_current"
FILTER_SEMESTER_SCOPE = "filter_semester"


class PlanService:
    """Assembles plan view models: range -> cached days -> layout -> custom overlay."""

    def __init__(
        self,
        session_provider: SessionProvider,
        cache: ScopeCache,
        fetcher: PlanFetcher,
        session_maker=None,
        layout_config: Optional[LayoutConfig] = None,
        tz: Optional[str] = None,
    ):
        self.session_provider = session_provider
        self.cache = cache
        self.fetcher = fetcher
        self._session_maker = session_maker or async_session_maker
        self.tz = tz or env_settings.TZ
        self.layout_config = layout_config or LayoutConfig(timezone=self.tz)

    def today(self) -> date:
        return get_today(self.tz)

    def _base_result(self, view_mode: ViewMode, anchor: date) -> tuple[PlanResult, date, date]:
        range_start, range_end = resolve_range(view_mode, anchor)
        result = PlanResult(
            view_mode=view_mode,
            current_date=ymd(anchor),
            range_start=ymd(range_start),
            range_end=ymd(range_end),
            prev_date=ymd(previous_anchor(view_mode, anchor)),
            next_date=ymd(next_anchor(view_mode, anchor)),
            today_date=ymd(self.today()),
            header_label=header_label(view_mode, anchor, range_start, range_end),
        )
        result.debug = PlanDebug(view=view_mode.value, range_start=result.range_start, range_end=result.range_end)
        return result, range_start, range_end

    async def _custom_events_by_date(self, range_start: date, range_end: date) -> Dict[str, List[CustomEvent]]:
        async with self._session_maker() as session:
            events = await CustomEventRepo(session).list_for_range(ymd(range_start), ymd(range_end))
        by_date: Dict[str, List[CustomEvent]] = {}
        for event in events:
            by_date.setdefault(event.date, []).append(event)
        return by_date

    def _fill_columns(
        self,
        result: PlanResult,
        by_day: DayBucket,
        range_start: date,
        range_end: date,
        custom_by_date: Optional[Dict[str, List[CustomEvent]]] = None,
    ) -> None:
        columns = []
        for day in enumerate_days(range_start, range_end):
            key = ymd(day)
            events = layout_day(by_day.get(key, []), self.layout_config)
            if custom_by_date:
                events = merge_custom_events(events, key, custom_by_date.get(key, []), self.layout_config)
            columns.append(DayColumn(date=key, events=events))
        result.day_columns = columns
        result.has_any_events_in_range = any(column.events for column in columns)

    async def load_plan(
        self,
        view_mode: ViewMode,
        current_date: Optional[date] = None,
        force_full_refresh: bool = False,
        force_scope_refresh: bool = False,
    ) -> PlanResult:
        anchor = current_date or self.today()
        result, range_start, range_end = self._base_result(view_mode, anchor)
        debug = result.debug

        album_id = self.session_provider.album_id
        if not album_id:
            logger.info("No album number in session; returning empty plan.")
            return result
        debug.album = album_id

        if force_full_refresh:
            try:
                events = await asyncio.to_thread(self.fetcher.fetch_full, album_id, debug.requests)
                await self.cache.replace_all(album_id, events)
            except PlanFetchError as exc:
                logger.warning("Full plan refresh failed, continuing with scoped refresh: %s", exc)
            except Exception:
                logger.exception("Unexpected full plan refresh error, continuing with scoped refresh")

        by_day = await self.cache.ensure_scope_data(
            album_id,
            range_start,
            range_end,
            view_mode.value,
            force_refresh=force_scope_refresh,
            diagnostics=debug.requests,
        )

        in_range = {
            ymd(day): by_day[ymd(day)]
            for day in enumerate_days(range_start, range_end)
            if by_day.get(ymd(day))
        }
        debug.entries_total = sum(len(events) for events in in_range.values())
        debug.days_with_data = sorted(in_range)

        if view_mode == ViewMode.MONTH:
            result.month_grid = build_month_grid(anchor, set(in_range))
        else:
            custom_by_date = await self._custom_events_by_date(range_start, range_end)
            self._fill_columns(result, in_range, range_start, range_end, custom_by_date)
        return result

    async def search_plan(
        self,
        view_mode: ViewMode,
        current_date: Optional[date],
        category: str,
        query: str,
    ) -> PlanResult:
        """Ad-hoc lookup by teacher/room/group/subject/album; never touches the cache."""
        anchor = current_date or self.today()
        result, range_start, range_end = self._base_result(view_mode, anchor)
        result.debug.view = f"{view_mode.value} (SEARCH)"
        if not (query or "").strip():
            return result

        try:
            events = await asyncio.to_thread(
                self.fetcher.fetch_search, category, query, range_start, range_end, result.debug.requests
            )
        except PlanFetchError as exc:
            logger.warning("Plan search failed for category=%s: %s", category, exc)
            events = []
        except Exception:
            logger.exception("Unexpected plan search error for category=%s", category)
            events = []

        by_day = group_by_day(events, self.fetcher.tz)
        if view_mode == ViewMode.MONTH:
            result.month_grid = build_month_grid(anchor, set(by_day))
        else:
            self._fill_columns(result, by_day, range_start, range_end)

        result.debug.entries_total = len(events)
        result.debug.days_with_data = sorted(by_day)
        return result

    async def load_subjects_for_filter(self, force_refresh: bool = False) -> List[SubjectFilterItem]:
        album_id = self.session_provider.album_id
        if not album_id:
            return []
        term = current_academic_term_range(self.today())
        by_day = await self.cache.ensure_scope_data(
            album_id, term.start, term.end, FILTER_CURRENT_SCOPE, force_refresh=force_refresh
        )
        return extract_filters(by_day, term.start, term.end)

    async def load_subjects_for_semester(self, semester: Semester, force_refresh: bool = False) -> List[SubjectFilterItem]:
        album_id = self.session_provider.album_id
        if not album_id:
            return []
        term = academic_range_for_semester(semester, self.today())
        by_day = await self.cache.ensure_scope_data(
            album_id, term.start, term.end, FILTER_SEMESTER_SCOPE, force_refresh=force_refresh
        )
        return extract_filters(by_day, term.start, term.end)

    async def fetch_search_suggestions(self, kind: str, query: str) -> List[str]:
        return await asyncio.to_thread(self.fetcher.fetch_suggestions, kind, query)

    async def list_custom_events(self, date_key: Optional[str] = None) -> List[CustomEvent]:
        async with self._session_maker() as session:
            repo = CustomEventRepo(session)
            if date_key:
                return await repo.list_for_date(date_key)
            return await repo.load_all()

    async def saved_custom_subjects(self) -> List[str]:
        """Distinct subject names of saved custom events, for the subject picker."""
        async with self._session_maker() as session:
            return await CustomEventRepo(session).saved_subject_names()

    async def save_custom_event(self, event: CustomEvent) -> CustomEvent:
        """Update by id when the event exists, otherwise add it."""
        async with self._session_maker() as session:
            repo = CustomEventRepo(session)
            if not await repo.update(event):
                await repo.add(event)
            await session.commit()
        logger.info("Saved custom event id=%s date=%s", event.id, event.date)
        return event

    async def delete_custom_event(self, event_id: int) -> bool:
        async with self._session_maker() as session:
            repo = CustomEventRepo(session)
            if await repo.get_by_id(event_id) is None:
                return False
            await repo.delete(event_id)
            await session.commit()
        logger.info("Deleted custom event id=%s", event_id)
        return True

    async def clear_custom_events(self) -> int:
        async with self._session_maker() as session:
            repo = CustomEventRepo(session)
            removed = await repo.count()
            await repo.clear_all()
            await session.commit()
        logger.info("Cleared %s custom events", removed)
        return removed

    async def clear_cache(self) -> None:
        """Forget the cached schedule (memory and disk); the next view refetches."""
        await self.cache.clear()
        logger.info("Plan cache cleared")

    async def warm_up(self, view_mode: ViewMode = ViewMode.WEEK, current_date: Optional[date] = None) -> int:
        """Force-refresh the scope for `view_mode` around today; returns days cached."""
        album_id = self.session_provider.album_id
        if not album_id:
            return 0
        range_start, range_end = resolve_range(view_mode, current_date or self.today())
        by_day = await self.cache.ensure_scope_data(
            album_id, range_start, range_end, view_mode.value, force_refresh=True
        )
        return len(by_day)
