from dataclasses import replace
from typing import Iterable, List, Optional

from studentplan.plan.layout import LayoutConfig, sort_key
from studentplan.plan.models import CustomEvent, CustomEventType, LaidOutEvent

DEFAULT_CUSTOM_DURATION_MIN = 90


def parse_time_minutes(text: str) -> Optional[int]:
    """'HH:MM' (or 'HH:MM:SS') -> minutes from midnight; None when unparsable."""
    parts = (text or "").strip().split(":")
    if len(parts) < 2:
        return None
    try:
        hour = int(parts[0])
        minute = int(parts[1])
    except ValueError:
        return None
    return hour * 60 + minute


def format_minutes(value: int) -> str:
    return f"{value // 60:02d}:{value % 60:02d}"


def _is_lecture_like(event: LaidOutEvent) -> bool:
    return "lec" in event.type_class.lower() or event.title.endswith("(W)")


def _matches(event: LaidOutEvent, custom: CustomEvent, custom_start: Optional[int]) -> bool:
    subject = custom.subject_name.lower()
    if not subject or subject not in event.title.lower():
        return False
    is_lecture = _is_lecture_like(event)
    type_matches = is_lecture if custom.event_type == CustomEventType.EXAM else not is_lecture
    if not type_matches:
        return False
    return custom_start is None or custom_start == event.start_min


def _standalone(custom: CustomEvent, start_min: int, config: LayoutConfig) -> Optional[LaidOutEvent]:
    """Full-width block for an unmatched custom event, clipped like a class block."""
    end_min = parse_time_minutes(custom.end_time)
    if end_min is None or end_min <= start_min:
        end_min = start_min + DEFAULT_CUSTOM_DURATION_MIN
        end_str = format_minutes(end_min)
    else:
        end_str = custom.end_time

    if end_min <= config.window_start_min or start_min >= config.window_end_min:
        return None

    clipped_start = max(start_min, config.window_start_min)
    clipped_end = min(end_min, config.window_end_min)
    duration = max(clipped_end - clipped_start, config.min_duration_min)

    return LaidOutEvent(
        start_min=start_min,
        end_min=end_min,
        top_px=config.top_px(clipped_start),
        height_px=max(duration / 60.0 * config.hour_height_px, config.min_height_px),
        left_pct=0.0,
        width_pct=100.0,
        title=custom.subject_name,
        start_str=custom.start_time,
        end_str=end_str,
        tooltip=custom.notes,
        type_class=f"custom-{custom.event_type.value}",
        type_label=custom.event_type.label,
        subject_key=f"custom-{custom.id}",
        is_custom_event=True,
        custom_event_type=custom.event_type.value,
        custom_event_id=str(custom.id),
    )


def merge_custom_events(
    day_layout: List[LaidOutEvent],
    date_key: str,
    custom_events: Iterable[CustomEvent],
    config: Optional[LayoutConfig] = None,
) -> List[LaidOutEvent]:
    """
    Overlay user events onto a laid-out day.

    A custom event attaches to the first block whose title contains its
    subject, whose lecture-ness fits its kind and, when it has a start time,
    which starts at that minute. Otherwise, if it has a start time, it is
    added as a full-width block of its own (outside the lane pass), clipped
    to the visible window; a block wholly outside the window is dropped.
    """
    todays = [event for event in custom_events if event.date == date_key]
    if not todays:
        return day_layout

    config = config or LayoutConfig()
    merged = list(day_layout)

    for custom in todays:
        custom_start = parse_time_minutes(custom.start_time)
        for index, event in enumerate(merged):
            if event.is_custom_event or not _matches(event, custom, custom_start):
                continue
            merged[index] = replace(
                event,
                has_custom_overlay=True,
                custom_overlay_label=custom.event_type.short_label,
                custom_event_id=str(custom.id),
                custom_event_type=custom.event_type.value,
                tooltip=custom.notes if custom.notes else event.tooltip,
            )
            break
        else:
            block = _standalone(custom, custom_start, config) if custom_start is not None else None
            if block is not None:
                merged.append(block)

    merged.sort(key=sort_key)
    return merged
