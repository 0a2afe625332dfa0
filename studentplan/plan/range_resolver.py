"""
Calendar windows for the plan views.

Weeks always start on Monday, independent of locale. Header labels follow
the Polish formatting used across the portal.
"""
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional

from dateutil.relativedelta import relativedelta

from studentplan.plan.classify import normalize_text
from studentplan.plan.models import MonthCell, Semester, ViewMode
from studentplan.services.date_service import enumerate_days, ymd

_WEEKDAYS_SHORT = ("pon.", "wt.", "śr.", "czw.", "pt.", "sob.", "niedz.")
_MONTHS = (
    "styczeń", "luty", "marzec", "kwiecień", "maj", "czerwiec",
    "lipiec", "sierpień", "wrzesień", "październik", "listopad", "grudzień",
)


@dataclass(frozen=True)
class AcademicRange:
    start: date
    end: date


def start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())


def start_of_month(day: date) -> date:
    return day.replace(day=1)


def end_of_month(day: date) -> date:
    return start_of_month(day) + relativedelta(months=1, days=-1)


def resolve_range(view_mode: ViewMode, anchor: date) -> tuple[date, date]:
    if view_mode == ViewMode.DAY:
        return anchor, anchor
    if view_mode == ViewMode.WEEK:
        monday = start_of_week(anchor)
        return monday, monday + timedelta(days=6)
    return start_of_month(anchor), end_of_month(anchor)


def previous_anchor(view_mode: ViewMode, anchor: date) -> date:
    if view_mode == ViewMode.DAY:
        return anchor - timedelta(days=1)
    if view_mode == ViewMode.WEEK:
        return anchor - timedelta(days=7)
    return anchor - relativedelta(months=1)


def next_anchor(view_mode: ViewMode, anchor: date) -> date:
    if view_mode == ViewMode.DAY:
        return anchor + timedelta(days=1)
    if view_mode == ViewMode.WEEK:
        return anchor + timedelta(days=7)
    return anchor + relativedelta(months=1)


def header_label(view_mode: ViewMode, anchor: date, range_start: date, range_end: date) -> str:
    if view_mode == ViewMode.DAY:
        return f"{anchor:%d.%m.%Y} ({_WEEKDAYS_SHORT[anchor.weekday()]})"
    if view_mode == ViewMode.WEEK:
        return f"{range_start:%d.%m} - {range_end:%d.%m.%Y}"
    return f"{_MONTHS[anchor.month - 1]} {anchor.year}".capitalize()


def build_month_grid(anchor: date, days_with_plan: set[str]) -> List[List[Optional[MonthCell]]]:
    """Monday-first rows of 7 cells; days outside the month are None."""
    grid: List[List[Optional[MonthCell]]] = []
    week: List[Optional[MonthCell]] = [None] * 7

    for day in enumerate_days(start_of_month(anchor), end_of_month(anchor)):
        key = ymd(day)
        week[day.weekday()] = MonthCell(date=key, has_plan=key in days_with_plan)
        if day.weekday() == 6:
            grid.append(week)
            week = [None] * 7

    if any(cell is not None for cell in week):
        grid.append(week)
    return grid


def current_academic_term_range(today: date) -> AcademicRange:
    """Winter term: 1 Oct - end of Feb. Summer term: 1 Mar - 30 Sep."""
    if today.month >= 10:
        return AcademicRange(date(today.year, 10, 1), end_of_month(date(today.year + 1, 2, 1)))
    if today.month <= 2:
        return AcademicRange(date(today.year - 1, 10, 1), end_of_month(date(today.year, 2, 1)))
    return AcademicRange(date(today.year, 3, 1), date(today.year, 9, 30))


def _parse_academic_year_value(raw: str) -> Optional[int]:
    digits = re.sub(r"[^0-9]", "", raw)
    if len(digits) < 4:
        return None
    year = int(digits[:4])
    if not 2000 <= year <= 2100:
        return None
    return year


def academic_range_for_semester(semester: Semester, today: date) -> AcademicRange:
    year_raw = (semester.academic_year or "").replace(" ", "")
    year_start: Optional[int] = None
    year_end: Optional[int] = None

    if year_raw:
        if "/" in year_raw:
            left, right = year_raw.split("/", 1)
            year_start = _parse_academic_year_value(left)
            year_end = _parse_academic_year_value(right)
        else:
            single = _parse_academic_year_value(year_raw)
            if single is not None:
                year_start = single
                year_end = single + 1

    term = normalize_text(semester.season or "")
    is_winter = "zim" in term or "winter" in term
    is_summer = "let" in term or "sum" in term

    if not is_winter and not is_summer:
        digits = re.sub(r"[^0-9]", "", semester.number or "")
        if digits and int(digits) > 0:
            is_winter = int(digits) % 2 == 1
            is_summer = not is_winter

    if is_winter:
        start_year = year_start if year_start is not None else (year_end or today.year) - 1
        end_year = year_end if year_end is not None else start_year + 1
        return AcademicRange(date(start_year, 10, 1), end_of_month(date(end_year, 2, 1)))

    if is_summer:
        year = year_end or year_start or today.year
        return AcademicRange(date(year, 3, 1), date(year, 9, 30))

    return current_academic_term_range(today)
