from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class RawScheduleEvent:
    start: datetime  # tz-aware
    end: datetime    # tz-aware
    title: str = ""
    description: str = ""
    worker_title: str = ""
    worker: str = ""
    lesson_form: str = ""
    lesson_form_short: str = ""
    group_name: str = ""
    tok_name: str = ""
    room: str = ""
    lesson_status: str = ""
    lesson_status_short: str = ""
    subject: str = ""
    hours: str = ""
    color: str = ""
    border_color: str = ""

    @property
    def display_subject(self) -> str:
        return self.subject if self.subject else self.title


# ymd -> events sorted by start
DayBucket = Dict[str, List[RawScheduleEvent]]


@dataclass
class ScheduleSnapshot:
    album_id: str
    captured_at: float
    by_day: DayBucket = field(default_factory=dict)
    scope_freshness: Dict[str, float] = field(default_factory=dict)


@dataclass
class LaidOutEvent:
    start_min: int = 0
    end_min: int = 0
    top_px: float = 0.0
    height_px: float = 0.0
    left_pct: float = 0.0
    width_pct: float = 100.0

    title: str = ""
    room: str = ""
    group: str = ""
    start_str: str = ""
    end_str: str = ""
    tooltip: str = ""
    type_class: str = ""
    type_label: str = ""
    subject_key: str = ""
    teacher: str = ""

    is_custom_event: bool = False
    custom_event_type: Optional[str] = None
    has_custom_overlay: bool = False
    custom_overlay_label: Optional[str] = None
    custom_event_id: Optional[str] = None

    @property
    def key(self) -> str:
        base = f"{self.start_min}-{self.end_min}-{self.title}-{self.subject_key}-{self.type_class}"
        if self.custom_event_id is not None:
            return f"{base}-{self.custom_event_id}"
        return base


class CustomEventType(str, Enum):
    EXAM = "exam"
    PASS = "pass"
    TEST = "test"

    @property
    def label(self) -> str:
        return _CUSTOM_EVENT_LABELS[self][0]

    @property
    def short_label(self) -> str:
        return _CUSTOM_EVENT_LABELS[self][1]


_CUSTOM_EVENT_LABELS = {
    CustomEventType.EXAM: ("Egzamin", "EGZ"),
    CustomEventType.PASS: ("Zaliczenie", "ZAL"),
    CustomEventType.TEST: ("Kolokwium", "KOL"),
}


@dataclass
class CustomEvent:
    id: int
    subject_name: str = ""
    event_type: CustomEventType = CustomEventType.TEST
    date: str = ""        # YYYY-MM-DD
    start_time: str = ""  # HH:MM, may be empty
    end_time: str = ""    # HH:MM, may be empty
    notes: str = ""
    is_auto_time: bool = False


@dataclass(frozen=True)
class SubjectFilterItem:
    label: str
    type_key: str
    type_label: str
    filter_key: str


@dataclass
class Semester:
    number: Optional[str] = None
    season: Optional[str] = None
    academic_year: Optional[str] = None


@dataclass
class DayColumn:
    date: str
    events: List[LaidOutEvent] = field(default_factory=list)


@dataclass
class MonthCell:
    date: str
    has_plan: bool = False


@dataclass
class RequestDiagnostics:
    url: str = ""
    http_code: int = 0
    json_ok: bool = False
    json_count: Optional[int] = None


@dataclass
class PlanDebug:
    album: str = ""
    view: str = ""
    range_start: str = ""
    range_end: str = ""
    entries_total: int = 0
    days_with_data: List[str] = field(default_factory=list)
    requests: List[RequestDiagnostics] = field(default_factory=list)


@dataclass
class PlanResult:
    view_mode: ViewMode = ViewMode.WEEK
    current_date: str = ""
    range_start: str = ""
    range_end: str = ""
    day_columns: List[DayColumn] = field(default_factory=list)
    has_any_events_in_range: bool = False
    month_grid: List[List[Optional[MonthCell]]] = field(default_factory=list)
    prev_date: str = ""
    next_date: str = ""
    today_date: str = ""
    header_label: str = ""
    debug: PlanDebug = field(default_factory=PlanDebug)
