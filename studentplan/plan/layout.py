"""
Day layout: turns one day's raw events into positioned blocks.

Vertical geometry comes from a fixed pixel-per-hour scale over the visible
window. Horizontally, temporally overlapping events form a cluster and are
spread over the minimum number of lanes that keeps them apart (greedy
interval colouring on events sorted by start).
"""
import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from studentplan.config import settings as env_settings
from studentplan.plan.classify import (
    event_type_class,
    event_type_label,
    filter_key,
    resolve_filter_type_key,
)
from studentplan.plan.models import LaidOutEvent, RawScheduleEvent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LayoutConfig:
    start_hour: int = 6
    end_hour: int = 22
    hour_height_px: float = 48.0
    min_duration_min: int = 15
    min_height_px: float = 22.0
    timezone: str = "Europe/Warsaw"

    @classmethod
    def from_settings(cls) -> "LayoutConfig":
        return cls(
            start_hour=env_settings.PLAN_START_HOUR,
            end_hour=env_settings.PLAN_END_HOUR,
            hour_height_px=env_settings.PLAN_HOUR_HEIGHT_PX,
            timezone=env_settings.TZ,
        )

    @property
    def window_start_min(self) -> int:
        return self.start_hour * 60

    @property
    def window_end_min(self) -> int:
        return self.end_hour * 60

    def top_px(self, start_min: int) -> float:
        return (start_min - self.window_start_min) / 60.0 * self.hour_height_px


def minutes_from_midnight(hour: int, minute: int) -> int:
    return hour * 60 + minute


def sort_key(event: LaidOutEvent) -> tuple[int, int]:
    return event.start_min, event.end_min


def _build_tooltip(title: str, start_str: str, end_str: str, room: str, group: str, teacher: str) -> str:
    parts = [title, f"{start_str} - {end_str}"]
    if room:
        parts.append(f"sala: {room}")
    if group:
        parts.append(f"grupa: {group}")
    if teacher:
        parts.append(teacher)
    return " | ".join(parts)


def _to_block(event: RawScheduleEvent, config: LayoutConfig, tz: ZoneInfo) -> Optional[LaidOutEvent]:
    start = event.start.astimezone(tz)
    end = event.end.astimezone(tz)
    start_min = minutes_from_midnight(start.hour, start.minute)
    end_min = minutes_from_midnight(end.hour, end.minute)
    if end.date() > start.date():
        end_min = 24 * 60

    if end_min <= start_min:
        return None
    if end_min <= config.window_start_min or start_min >= config.window_end_min:
        return None

    clipped_start = max(start_min, config.window_start_min)
    clipped_end = min(end_min, config.window_end_min)
    duration = max(clipped_end - clipped_start, config.min_duration_min)
    height_px = max(duration / 60.0 * config.hour_height_px, config.min_height_px)

    subject = event.display_subject
    short_form = event.lesson_form_short.strip()
    title = f"{subject} ({short_form})" if short_form else subject
    teacher = event.worker_title or event.worker
    start_str = start.strftime("%H:%M")
    end_str = end.strftime("%H:%M")

    type_class = event_type_class(event)
    type_key = resolve_filter_type_key(event)

    return LaidOutEvent(
        start_min=start_min,
        end_min=end_min,
        top_px=config.top_px(clipped_start),
        height_px=height_px,
        title=title,
        room=event.room,
        group=event.group_name,
        start_str=start_str,
        end_str=end_str,
        tooltip=_build_tooltip(title, start_str, end_str, event.room, event.group_name, teacher),
        type_class=type_class,
        type_label=event_type_label(event, type_class),
        subject_key=filter_key(subject, type_key) if subject and type_key else "",
        teacher=teacher,
    )


def cluster_events(events: List[LaidOutEvent]) -> List[List[LaidOutEvent]]:
    """Split events (sorted by start, end) into maximal runs of overlapping ones."""
    clusters: List[List[LaidOutEvent]] = []
    current: List[LaidOutEvent] = []
    cluster_end = 0

    for event in events:
        if current and event.start_min < cluster_end:
            current.append(event)
            cluster_end = max(cluster_end, event.end_min)
        else:
            if current:
                clusters.append(current)
            current = [event]
            cluster_end = event.end_min

    if current:
        clusters.append(current)
    return clusters


def assign_lanes(cluster: List[LaidOutEvent]) -> int:
    """Place each event in the first free lane; returns the lane count."""
    lane_ends: List[int] = []
    lanes: List[int] = []

    for event in cluster:
        for index, lane_end in enumerate(lane_ends):
            if event.start_min >= lane_end:
                lane_ends[index] = event.end_min
                lanes.append(index)
                break
        else:
            lanes.append(len(lane_ends))
            lane_ends.append(event.end_min)

    lane_count = max(1, len(lane_ends))
    width = 100.0 / lane_count
    for event, lane in zip(cluster, lanes):
        event.left_pct = lane * width
        event.width_pct = width
    return lane_count


def layout_day(events: Iterable[RawScheduleEvent], config: Optional[LayoutConfig] = None) -> List[LaidOutEvent]:
    config = config or LayoutConfig()
    tz = ZoneInfo(config.timezone)

    blocks: List[LaidOutEvent] = []
    for event in events:
        try:
            block = _to_block(event, config, tz)
        except (AttributeError, TypeError, ValueError):
            logger.debug("Skipping unparsable plan event: %r", event, exc_info=True)
            continue
        if block is not None:
            blocks.append(block)

    blocks.sort(key=sort_key)

    laid_out: List[LaidOutEvent] = []
    for cluster in cluster_events(blocks):
        assign_lanes(cluster)
        laid_out.extend(cluster)
    return laid_out
