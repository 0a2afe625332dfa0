from datetime import date
from typing import Dict, List, Set

from studentplan.plan.classify import (
    FILTER_AUDITORY,
    FILTER_LAB,
    FILTER_LECTURE,
    FILTER_TYPE_LABELS,
    filter_key,
    normalize_text,
    resolve_filter_type_key,
)
from studentplan.plan.models import DayBucket, SubjectFilterItem
from studentplan.services.date_service import enumerate_days, ymd

_EMISSION_ORDER = (FILTER_LECTURE, FILTER_AUDITORY, FILTER_LAB)


def _label_sort_key(label: str) -> tuple[str, str]:
    return normalize_text(label), label.casefold()


def extract_filters(by_day: DayBucket, range_start: date, range_end: date) -> List[SubjectFilterItem]:
    """Distinct (subject, lesson type) pairs seen in the range, sorted by subject."""
    labels: Dict[str, str] = {}
    types: Dict[str, Set[str]] = {}

    for day in enumerate_days(range_start, range_end):
        for event in by_day.get(ymd(day), []):
            subject = event.display_subject.strip()
            if not subject:
                continue
            type_key = resolve_filter_type_key(event)
            if type_key is None:
                continue
            normalized = normalize_text(subject)
            if not normalized:
                continue
            labels.setdefault(normalized, subject)
            types.setdefault(normalized, set()).add(type_key)

    items: List[SubjectFilterItem] = []
    for normalized in sorted(labels, key=lambda key: _label_sort_key(labels[key])):
        subject = labels[normalized]
        for type_key in _EMISSION_ORDER:
            if type_key in types[normalized]:
                items.append(
                    SubjectFilterItem(
                        label=subject,
                        type_key=type_key,
                        type_label=FILTER_TYPE_LABELS[type_key],
                        filter_key=filter_key(subject, type_key),
                    )
                )
    return items
