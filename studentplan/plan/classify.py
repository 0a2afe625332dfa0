"""
Lesson-type classification.

Short status codes from the schedule service always win; only when no code
matches is the lesson form / subject text searched for keywords.
"""
import unicodedata
from typing import Optional

from studentplan.plan.models import RawScheduleEvent

LECTURE = "lecture"
LAB = "lab"
AUDITORY = "auditory"
EXAM = "exam"
EXAM_REMOTE = "exam-remote"
PASS = "pass"
CANCELLED = "cancelled"
REMOTE = "remote"
RECTOR = "rector"
DEAN = "dean"

_STATUS_CODES = {
    "e": EXAM,
    "ez": EXAM_REMOTE,
    "o": CANCELLED,
    "r": RECTOR,
    "dz": DEAN,
    "zz": REMOTE,
}

_TYPE_LABELS = {
    LECTURE: "Wykład",
    LAB: "Laboratorium",
    AUDITORY: "Audytoryjne",
    EXAM: "Egzamin",
    PASS: "Zaliczenie",
    CANCELLED: "Odwołane",
    REMOTE: "Zdalne",
}

FILTER_LECTURE = "lec"
FILTER_AUDITORY = "aud"
FILTER_LAB = "lab"

FILTER_TYPE_LABELS = {
    FILTER_LECTURE: "Wykład",
    FILTER_AUDITORY: "Audytoryjne",
    FILTER_LAB: "Laboratorium",
}

# NFKD leaves these as standalone letters
_EXTRA_FOLDS = str.maketrans({"ł": "l", "Ł": "l", "đ": "d", "ø": "o"})


def normalize_text(value: str) -> str:
    """Trim, case-fold and strip diacritics."""
    folded = (value or "").strip().translate(_EXTRA_FOLDS)
    decomposed = unicodedata.normalize("NFKD", folded)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def event_type_class(event: RawScheduleEvent) -> str:
    status_short = event.lesson_status_short.strip().lower()
    if status_short in _STATUS_CODES:
        return _STATUS_CODES[status_short]

    form_full = normalize_text(event.lesson_form)
    form_short = normalize_text(event.lesson_form_short)
    hay = f"{form_full} {normalize_text(event.display_subject)}"

    if "egzamin" in hay or "exam" in form_full:
        return EXAM
    if "odwolane" in hay or "cancelled" in form_full:
        return CANCELLED
    if "zdalne" in hay or "remote" in form_full or "online" in form_full:
        return REMOTE
    if "zaliczenie" in hay or form_short in ("zal", "zalp"):
        return PASS
    if "laboratorium" in hay or form_short == "l" or "laboratory" in form_full:
        return LAB
    if "audytoryjne" in hay or form_short == "a" or "auditory" in form_full:
        return AUDITORY
    if "wyklad" in hay or form_short == "w" or "lecture" in form_full:
        return LECTURE
    return ""


def event_type_label(event: RawScheduleEvent, type_class: Optional[str] = None) -> str:
    if type_class is None:
        type_class = event_type_class(event)
    return _TYPE_LABELS.get(type_class, event.lesson_form)


def resolve_filter_type_key(event: RawScheduleEvent) -> Optional[str]:
    """Map an event to one of the filterable types (lec/aud/lab) or None."""
    form_short = normalize_text(event.lesson_form_short)
    if form_short == "l" or "lab" in form_short:
        return FILTER_LAB
    if form_short == "a" or "aud" in form_short:
        return FILTER_AUDITORY
    if form_short == "w" or "wyk" in form_short or "lec" in form_short:
        return FILTER_LECTURE

    type_class = event_type_class(event)
    if type_class == LAB:
        return FILTER_LAB
    if type_class == AUDITORY:
        return FILTER_AUDITORY
    if type_class == LECTURE:
        return FILTER_LECTURE

    form = normalize_text(event.lesson_form)
    if "laboratorium" in form or "laboratory" in form:
        return FILTER_LAB
    if "audytoryjne" in form or "auditory" in form or "auditorium" in form:
        return FILTER_AUDITORY
    if "wyklad" in form or "lecture" in form:
        return FILTER_LECTURE
    return None


def filter_key(subject: str, type_key: str) -> str:
    return f"{subject}||{type_key}"
