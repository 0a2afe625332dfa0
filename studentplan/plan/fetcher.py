import http.client
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from datetime import date, datetime, time, timedelta
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from studentplan.config import settings as env_settings
from studentplan.plan.grouping import day_key, parse_iso_datetime
from studentplan.plan.models import RawScheduleEvent, RequestDiagnostics

logger = logging.getLogger(__name__)


class PlanFetchError(RuntimeError):
    pass


class InvalidRequest(PlanFetchError):
    pass


class TransportFailure(PlanFetchError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MalformedResponse(PlanFetchError):
    pass


_ROW_FIELDS = {
    "title": "title",
    "description": "description",
    "worker_title": "worker_title",
    "worker": "worker",
    "lesson_form": "lesson_form",
    "lesson_form_short": "lesson_form_short",
    "group_name": "group_name",
    "tok_name": "tok_name",
    "room": "room",
    "lesson_status": "lesson_status",
    "lesson_status_short": "lesson_status_short",
    "subject": "subject",
    "hours": "hours",
    "color": "color",
    "borderColor": "border_color",
}


def _as_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def parse_event_row(row: dict, tz: ZoneInfo) -> Optional[RawScheduleEvent]:
    """Rows without a usable start/end are dropped (None), never an error."""
    start = parse_iso_datetime(_as_text(row.get("start")), tz)
    end = parse_iso_datetime(_as_text(row.get("end")), tz)
    if start is None or end is None:
        return None
    fields = {attr: _as_text(row.get(key)) for key, attr in _ROW_FIELDS.items()}
    return RawScheduleEvent(start=start, end=end, **fields)


def search_query_key(category: str) -> str:
    category = (category or "").lower()
    if "teacher" in category or "wyk" in category:
        return "teacher"
    if "room" in category or "sal" in category:
        return "room"
    if "group" in category or "grup" in category:
        return "group"
    if "subject" in category or "przedm" in category:
        return "subject"
    return "number"


class PlanFetcher:
    def __init__(
        self,
        base_url: str,
        tz: str,
        suggest_url: Optional[str] = None,
        user_agent: str = "mZUT-Plan/1.0",
        timeout: float = 15.0,
    ):
        self.base_url = base_url
        self.suggest_url = suggest_url
        self.tz_name = tz
        self.tz = ZoneInfo(tz)
        self.user_agent = user_agent
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "PlanFetcher":
        return cls(
            base_url=env_settings.PLAN_BASE_URL,
            tz=env_settings.TZ,
            suggest_url=env_settings.PLAN_SUGGEST_URL,
            user_agent=env_settings.PLAN_USER_AGENT,
            timeout=env_settings.PLAN_HTTP_TIMEOUT_SECONDS,
        )

    def build_url(self, params: dict, base_url: Optional[str] = None) -> str:
        base = base_url or self.base_url
        parts = urllib.parse.urlsplit(base or "")
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise InvalidRequest(f"Invalid schedule endpoint: {base!r}")
        if not params:
            return base
        return f"{base}?{urllib.parse.urlencode(params)}"

    def _midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    def build_range_urls(self, album_id: str, start: date, end: date) -> tuple[str, str]:
        """Primary (offset timestamps) and fallback (plain dates) URLs, padded by a day."""
        album_id = (album_id or "").strip()
        if not album_id:
            raise InvalidRequest("Album number is required.")
        if end < start:
            raise InvalidRequest(f"Invalid range {start}..{end}")
        api_start = start - timedelta(days=1)
        api_end = end + timedelta(days=1)
        primary = self.build_url(
            {
                "number": album_id,
                "start": self._midnight(api_start).isoformat(timespec="seconds"),
                "end": self._midnight(api_end).isoformat(timespec="seconds"),
            }
        )
        fallback = self.build_url(
            {
                "number": album_id,
                "start": api_start.strftime("%Y-%m-%d"),
                "end": api_end.strftime("%Y-%m-%d"),
            }
        )
        return primary, fallback

    def fetch_json_array(self, url: str, diagnostics: Optional[List[RequestDiagnostics]] = None) -> list[dict]:
        record = RequestDiagnostics(url=url)
        if diagnostics is not None:
            diagnostics.append(record)

        request = urllib.request.Request(
            url,
            headers={
                "User-Agent": self.user_agent,
                "Accept": "application/json, text/plain, */*",
            },
            method="GET",
        )

        logger.info("Plan request url=%s", url)
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                status = getattr(response, "status", None) or 200
                record.http_code = status
                if not 200 <= status < 300:
                    logger.error("Plan request failed with status=%s for url=%s", status, url)
                    raise TransportFailure(f"Unexpected HTTP status: {status}", status=status)
                body = response.read()
        except urllib.error.HTTPError as exc:
            record.http_code = exc.code
            logger.error("Plan HTTP error for url=%s status=%s reason=%s", url, exc.code, exc.reason)
            raise TransportFailure(f"HTTP error: {exc.code}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            record.http_code = -1
            logger.error("Plan URL error for url=%s reason=%s", url, exc.reason)
            raise TransportFailure("Network error while fetching plan.") from exc
        except (TimeoutError, OSError) as exc:
            record.http_code = -1
            logger.error("Plan transport error for url=%s: %s", url, exc)
            raise TransportFailure("Transport error while fetching plan.") from exc
        except ValueError as exc:
            raise InvalidRequest(f"Invalid URL: {url}") from exc
        except http.client.HTTPException as exc:
            logger.error("Plan HTTP protocol error for url=%s: %r", url, exc)
            raise TransportFailure("Broken HTTP response while fetching plan.") from exc
        except PlanFetchError:
            raise
        except Exception as exc:
            logger.exception("Unexpected plan fetch error for url=%s", url)
            raise TransportFailure("Unexpected error while fetching plan.") from exc

        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            logger.error("Plan response is not JSON for url=%s", url)
            raise MalformedResponse("Response body is not valid JSON.") from exc

        if not isinstance(payload, list) or not all(isinstance(row, dict) for row in payload):
            logger.error("Plan response is not a JSON array of objects for url=%s", url)
            raise MalformedResponse("Expected a JSON array of objects.")

        record.json_ok = True
        record.json_count = len(payload)
        return payload

    def _parse_rows(self, rows: list[dict]) -> list[RawScheduleEvent]:
        events = []
        for row in rows:
            event = parse_event_row(row, self.tz)
            if event is None:
                logger.debug("Dropping plan row without start/end: %r", row.get("title"))
                continue
            events.append(event)
        return events

    def fetch_range(
        self,
        album_id: str,
        start: date,
        end: date,
        diagnostics: Optional[List[RequestDiagnostics]] = None,
    ) -> list[RawScheduleEvent]:
        primary, fallback = self.build_range_urls(album_id, start, end)
        try:
            rows = self.fetch_json_array(primary, diagnostics)
        except PlanFetchError as exc:
            logger.warning("Primary plan query failed (%s); retrying with plain dates.", exc)
            rows = self.fetch_json_array(fallback, diagnostics)

        from_key = start.strftime("%Y-%m-%d")
        to_key = end.strftime("%Y-%m-%d")
        return [
            event
            for event in self._parse_rows(rows)
            if from_key <= day_key(event.start, self.tz) <= to_key
        ]

    def fetch_full(
        self,
        album_id: str,
        diagnostics: Optional[List[RequestDiagnostics]] = None,
    ) -> list[RawScheduleEvent]:
        album_id = (album_id or "").strip()
        if not album_id:
            raise InvalidRequest("Album number is required.")
        rows = self.fetch_json_array(self.build_url({"number": album_id}), diagnostics)
        return self._parse_rows(rows)

    def fetch_search(
        self,
        category: str,
        query: str,
        start: date,
        end: date,
        diagnostics: Optional[List[RequestDiagnostics]] = None,
    ) -> list[RawScheduleEvent]:
        query = (query or "").strip()
        if not query:
            raise InvalidRequest("Search query is required.")
        end_of_day = self._midnight(end + timedelta(days=1)) - timedelta(seconds=1)
        url = self.build_url(
            {
                search_query_key(category): query,
                "start": self._midnight(start).isoformat(timespec="seconds"),
                "end": end_of_day.isoformat(timespec="seconds"),
            }
        )
        rows = self.fetch_json_array(url, diagnostics)
        return self._parse_rows(rows)

    def fetch_suggestions(self, kind: str, query: str) -> list[str]:
        kind = (kind or "").strip()
        query = (query or "").strip()
        if not kind or not query or not self.suggest_url:
            return []
        try:
            url = self.build_url({"kind": kind, "query": query}, base_url=self.suggest_url)
            rows = self.fetch_json_array(url)
        except PlanFetchError as exc:
            logger.warning("Search suggestions failed: %s", exc)
            return []
        suggestions = []
        for row in rows:
            item = _as_text(row.get("item")).strip()
            if item:
                suggestions.append(item)
        return suggestions
