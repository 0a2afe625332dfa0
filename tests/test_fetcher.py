import http.client
import json
import urllib.error
import urllib.parse
from datetime import date
from zoneinfo import ZoneInfo

import pytest

from studentplan.plan.fetcher import (
    InvalidRequest,
    MalformedResponse,
    PlanFetcher,
    TransportFailure,
    parse_event_row,
    search_query_key,
)
from studentplan.plan.models import RequestDiagnostics

BASE_URL = "https://plan.example.edu/schedule_student.php"
SUGGEST_URL = "https://plan.example.edu/schedule.php"


class DummyResponse:
    def __init__(self, payload, status=200):
        self._payload = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self):
        return self._payload

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class TruncatedResponse(DummyResponse):
    def read(self):
        raise http.client.IncompleteRead(b"[{\"start\"", 100)


def _fetcher(**kwargs):
    return PlanFetcher(base_url=BASE_URL, tz="Europe/Warsaw", suggest_url=SUGGEST_URL, **kwargs)


def _query(url):
    return {key: values[0] for key, values in urllib.parse.parse_qs(urllib.parse.urlsplit(url).query).items()}


def _row(start, end, **fields):
    row = {"start": start, "end": end, "title": "Bazy danych", "subject": "Bazy danych"}
    row.update(fields)
    return row


def _install(monkeypatch, *responses):
    """Queue urlopen outcomes: DummyResponse objects or exceptions to raise."""
    queue = list(responses)
    requests = []

    def fake_urlopen(request, timeout=None):
        requests.append(request)
        outcome = queue.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    return requests


def _http_error(code):
    return urllib.error.HTTPError(BASE_URL, code, "error", hdrs=None, fp=None)


def test_range_urls_are_padded_by_one_day():
    primary, fallback = _fetcher().build_range_urls("123456", date(2025, 1, 6), date(2025, 1, 12))

    assert _query(primary) == {
        "number": "123456",
        "start": "2025-01-05T00:00:00+01:00",
        "end": "2025-01-13T00:00:00+01:00",
    }
    assert _query(fallback) == {"number": "123456", "start": "2025-01-05", "end": "2025-01-13"}
    assert "%2B01%3A00" in primary


def test_range_urls_require_album_and_valid_endpoint():
    with pytest.raises(InvalidRequest):
        _fetcher().build_range_urls("  ", date(2025, 1, 6), date(2025, 1, 12))
    with pytest.raises(InvalidRequest):
        PlanFetcher(base_url="not a url", tz="UTC").build_range_urls("1", date(2025, 1, 6), date(2025, 1, 6))
    with pytest.raises(InvalidRequest):
        _fetcher().build_range_urls("1", date(2025, 1, 6), date(2025, 1, 5))


def test_fetch_range_parses_and_filters_to_requested_days(monkeypatch):
    rows = [
        _row("2025-01-05T10:00:00+01:00", "2025-01-05T11:30:00+01:00"),
        _row("2025-01-06T08:15:00+01:00", "2025-01-06T10:00:00+01:00", room=215, lesson_form_short="W"),
        _row("2025-01-12T23:30:00+01:00", "2025-01-12T23:59:00+01:00"),
        _row("2025-01-13T08:00:00+01:00", "2025-01-13T09:00:00+01:00"),
        {"title": "no dates"},
    ]
    requests = _install(monkeypatch, DummyResponse(rows))
    diagnostics = []

    events = _fetcher().fetch_range("123456", date(2025, 1, 6), date(2025, 1, 12), diagnostics)

    assert [event.start.strftime("%Y-%m-%d %H:%M") for event in events] == [
        "2025-01-06 08:15",
        "2025-01-12 23:30",
    ]
    assert events[0].room == "215"
    assert events[0].lesson_form_short == "W"
    assert requests[0].get_header("User-agent") == "mZUT-Plan/1.0"
    assert diagnostics == [
        RequestDiagnostics(url=requests[0].full_url, http_code=200, json_ok=True, json_count=5)
    ]


def test_fetch_range_falls_back_to_plain_dates(monkeypatch):
    rows = [_row("2025-01-07T08:00:00", "2025-01-07T09:00:00")]
    requests = _install(monkeypatch, _http_error(500), DummyResponse(rows))
    diagnostics = []

    events = _fetcher().fetch_range("123456", date(2025, 1, 6), date(2025, 1, 12), diagnostics)

    assert len(events) == 1
    assert _query(requests[1].full_url)["start"] == "2025-01-05"
    assert [(item.http_code, item.json_ok) for item in diagnostics] == [(500, False), (200, True)]


def test_fetch_range_raises_when_both_attempts_fail(monkeypatch):
    _install(monkeypatch, _http_error(503), _http_error(502))

    with pytest.raises(TransportFailure) as excinfo:
        _fetcher().fetch_range("123456", date(2025, 1, 6), date(2025, 1, 12))

    assert excinfo.value.status == 502


def test_network_error_is_transport_failure(monkeypatch):
    _install(monkeypatch, urllib.error.URLError("unreachable"))
    diagnostics = []

    with pytest.raises(TransportFailure):
        _fetcher().fetch_json_array(BASE_URL, diagnostics)

    assert diagnostics[0].http_code == -1


def test_non_json_body_is_malformed(monkeypatch):
    _install(monkeypatch, DummyResponse(b"<html>maintenance</html>"))

    with pytest.raises(MalformedResponse):
        _fetcher().fetch_json_array(BASE_URL)


def test_json_object_body_is_malformed(monkeypatch):
    _install(monkeypatch, DummyResponse({"error": "nope"}))

    with pytest.raises(MalformedResponse):
        _fetcher().fetch_json_array(BASE_URL)


def test_non_2xx_status_is_transport_failure(monkeypatch):
    _install(monkeypatch, DummyResponse([], status=204), DummyResponse([], status=302))

    assert _fetcher().fetch_json_array(BASE_URL) == []
    with pytest.raises(TransportFailure):
        _fetcher().fetch_json_array(BASE_URL)


def test_fetch_full_uses_album_only(monkeypatch):
    requests = _install(monkeypatch, DummyResponse([_row("2025-03-03T08:00:00Z", "2025-03-03T09:30:00Z")]))

    events = _fetcher().fetch_full("123456")

    assert _query(requests[0].full_url) == {"number": "123456"}
    assert events[0].start.hour == 9


def test_fetch_search_uses_category_key(monkeypatch):
    requests = _install(monkeypatch, DummyResponse([]))

    _fetcher().fetch_search("Wykładowca", "Kowalski", date(2025, 1, 6), date(2025, 1, 12))

    assert _query(requests[0].full_url) == {
        "teacher": "Kowalski",
        "start": "2025-01-06T00:00:00+01:00",
        "end": "2025-01-12T23:59:59+01:00",
    }


def test_fetch_search_requires_query():
    with pytest.raises(InvalidRequest):
        _fetcher().fetch_search("room", "   ", date(2025, 1, 6), date(2025, 1, 12))


def test_search_query_key_mapping():
    assert search_query_key("teacher") == "teacher"
    assert search_query_key("sala") == "room"
    assert search_query_key("Grupa") == "group"
    assert search_query_key("przedmiot") == "subject"
    assert search_query_key("album") == "number"


def test_suggestions(monkeypatch):
    requests = _install(monkeypatch, DummyResponse([{"item": "WI1-215"}, {"item": " "}, {"other": 1}]))

    assert _fetcher().fetch_suggestions("room", "WI1") == ["WI1-215"]
    assert _query(requests[0].full_url) == {"kind": "room", "query": "WI1"}


def test_suggestions_swallow_errors(monkeypatch):
    _install(monkeypatch, _http_error(500))

    assert _fetcher().fetch_suggestions("room", "WI1") == []
    assert _fetcher().fetch_suggestions("room", "") == []


def test_parse_event_row_converts_values():
    event = parse_event_row(
        _row("2025-01-06T08:15:00Z", "2025-01-06T10:00:00Z", hours=2, borderColor="#000", color=None),
        ZoneInfo("Europe/Warsaw"),
    )

    assert event.start.hour == 9
    assert event.hours == "2"
    assert event.border_color == "#000"
    assert event.color == ""
    assert parse_event_row({"start": "garbage", "end": "2025-01-06T10:00:00Z"}, ZoneInfo("UTC")) is None


def test_broken_http_responses_are_transport_failures(monkeypatch):
    _install(monkeypatch, TruncatedResponse([]), http.client.BadStatusLine("garbage"))
    diagnostics = []

    with pytest.raises(TransportFailure):
        _fetcher().fetch_json_array(BASE_URL, diagnostics)
    with pytest.raises(TransportFailure):
        _fetcher().fetch_json_array(BASE_URL, diagnostics)

    assert [(item.http_code, item.json_ok) for item in diagnostics] == [(200, False), (0, False)]


def test_truncated_primary_body_falls_back_to_plain_dates(monkeypatch):
    rows = [_row("2025-01-07T08:00:00", "2025-01-07T09:00:00")]
    _install(monkeypatch, TruncatedResponse([]), DummyResponse(rows))

    events = _fetcher().fetch_range("123456", date(2025, 1, 6), date(2025, 1, 12))

    assert len(events) == 1


def test_unexpected_error_is_wrapped(monkeypatch):
    _install(monkeypatch, http.client.BadStatusLine("garbage"), LookupError("boom"))

    with pytest.raises(TransportFailure) as excinfo:
        _fetcher().fetch_range("123456", date(2025, 1, 6), date(2025, 1, 12))

    assert isinstance(excinfo.value.__cause__, LookupError)
