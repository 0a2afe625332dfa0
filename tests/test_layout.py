import itertools
import random

import pytest

from conftest import make_event
from studentplan.plan.layout import LayoutConfig, layout_day

UTC_CONFIG = LayoutConfig(timezone="UTC")


def _by_title(blocks):
    return {block.title: block for block in blocks}


def _max_overlap(blocks):
    points = sorted(
        [(block.start_min, 1) for block in blocks] + [(block.end_min, -1) for block in blocks],
        key=lambda item: (item[0], item[1]),
    )
    current = best = 0
    for _, delta in points:
        current += delta
        best = max(best, current)
    return best


def test_three_mutually_overlapping_events_get_three_lanes():
    events = [
        make_event("2025-01-06", "08:00", "10:00", subject="A"),
        make_event("2025-01-06", "09:00", "11:00", subject="B"),
        make_event("2025-01-06", "09:30", "10:30", subject="C"),
    ]

    blocks = _by_title(layout_day(events, UTC_CONFIG))

    assert [blocks[name].left_pct for name in "ABC"] == pytest.approx([0.0, 100 / 3, 200 / 3])
    assert all(blocks[name].width_pct == pytest.approx(100 / 3) for name in "ABC")


def test_lane_is_reused_once_it_frees_up():
    events = [
        make_event("2025-01-06", "08:00", "09:00", subject="A"),
        make_event("2025-01-06", "08:30", "10:00", subject="B"),
        make_event("2025-01-06", "09:00", "10:00", subject="C"),
    ]

    blocks = _by_title(layout_day(events, UTC_CONFIG))

    assert blocks["A"].left_pct == 0.0
    assert blocks["B"].left_pct == 50.0
    assert blocks["C"].left_pct == 0.0
    assert {block.width_pct for block in blocks.values()} == {50.0}


def test_disjoint_events_take_full_width():
    events = [
        make_event("2025-01-06", "08:00", "09:30", subject="A"),
        make_event("2025-01-06", "09:30", "11:00", subject="B"),
    ]

    blocks = layout_day(events, UTC_CONFIG)

    assert [(block.left_pct, block.width_pct) for block in blocks] == [(0.0, 100.0), (0.0, 100.0)]


def test_geometry_from_hour_scale():
    block = layout_day([make_event("2025-01-06", "08:15", "09:45", subject="A")], UTC_CONFIG)[0]

    assert block.start_min == 495
    assert block.end_min == 585
    assert block.top_px == pytest.approx(108.0)
    assert block.height_px == pytest.approx(72.0)
    assert (block.start_str, block.end_str) == ("08:15", "09:45")


def test_events_are_clipped_to_visible_window():
    events = [
        make_event("2025-01-06", "05:00", "07:00", subject="early"),
        make_event("2025-01-06", "21:30", "23:00", subject="late"),
        make_event("2025-01-06", "03:00", "05:30", subject="hidden"),
    ]

    blocks = _by_title(layout_day(events, UTC_CONFIG))

    assert "hidden" not in blocks
    assert blocks["early"].top_px == 0.0
    assert blocks["early"].height_px == pytest.approx(48.0)
    assert blocks["early"].start_min == 300
    assert blocks["late"].top_px == pytest.approx(744.0)
    assert blocks["late"].height_px == pytest.approx(24.0)


def test_clipping_is_idempotent():
    once = layout_day([make_event("2025-01-06", "05:00", "07:00", subject="A")], UTC_CONFIG)[0]
    again = layout_day([make_event("2025-01-06", "06:00", "07:00", subject="A")], UTC_CONFIG)[0]

    assert (once.top_px, once.height_px) == (again.top_px, again.height_px)


def test_short_events_get_minimum_height():
    block = layout_day([make_event("2025-01-06", "10:00", "10:05", subject="A")], UTC_CONFIG)[0]
    assert block.height_px == pytest.approx(22.0)


def test_zero_or_negative_duration_is_dropped():
    events = [
        make_event("2025-01-06", "10:00", "10:00", subject="zero"),
        make_event("2025-01-06", "11:00", "10:00", subject="negative"),
        make_event("2025-01-06", "12:00", "13:00", subject="ok"),
    ]

    assert [block.title for block in layout_day(events, UTC_CONFIG)] == ["ok"]


def test_empty_day_yields_no_blocks():
    assert layout_day([], UTC_CONFIG) == []


def test_text_fields():
    event = make_event(
        "2025-01-06",
        "10:15",
        "12:00",
        title="Bazy danych - wykład",
        subject="Bazy danych",
        lesson_form="wykład",
        lesson_form_short="W",
        room="WI1-215",
        group_name="S1_I_21",
        worker_title="dr inż. Jan Kowalski",
        worker="Kowalski Jan",
    )

    block = layout_day([event], UTC_CONFIG)[0]

    assert block.title == "Bazy danych (W)"
    assert block.teacher == "dr inż. Jan Kowalski"
    assert block.type_class == "lecture"
    assert block.type_label == "Wykład"
    assert block.subject_key == "Bazy danych||lec"
    assert block.tooltip == (
        "Bazy danych (W) | 10:15 - 12:00 | sala: WI1-215 | grupa: S1_I_21 | dr inż. Jan Kowalski"
    )


def test_teacher_falls_back_and_subject_key_needs_type():
    event = make_event("2025-01-06", "10:00", "11:00", title="Seminarium", worker="Nowak Anna")

    block = layout_day([event], UTC_CONFIG)[0]

    assert block.title == "Seminarium"
    assert block.teacher == "Nowak Anna"
    assert block.subject_key == ""
    assert block.tooltip == "Seminarium | 10:00 - 11:00 | Nowak Anna"


def test_times_are_rendered_in_layout_timezone():
    event = make_event("2025-01-06", "07:00", "08:30", subject="A")

    block = layout_day([event], LayoutConfig(timezone="Europe/Warsaw"))[0]

    assert block.start_min == 8 * 60
    assert block.start_str == "08:00"
    assert block.end_str == "09:30"


def test_output_sorted_by_start_then_end():
    events = [
        make_event("2025-01-06", "12:00", "13:00", subject="C"),
        make_event("2025-01-06", "08:00", "10:00", subject="B"),
        make_event("2025-01-06", "08:00", "09:00", subject="A"),
    ]

    assert [block.title for block in layout_day(events, UTC_CONFIG)] == ["A", "B", "C"]


def test_lane_count_matches_max_overlap_on_random_days():
    rng = random.Random(20250106)
    for _ in range(50):
        events = []
        for index in range(rng.randint(1, 9)):
            start = rng.randrange(6 * 60, 20 * 60, 15)
            length = rng.choice([45, 90, 105, 120, 180])
            end = start + length
            events.append(
                make_event(
                    "2025-01-06",
                    f"{start // 60:02d}:{start % 60:02d}",
                    f"{end // 60:02d}:{end % 60:02d}",
                    subject=f"S{index}",
                )
            )

        blocks = layout_day(events, UTC_CONFIG)

        widest = max(round(100.0 / block.width_pct) for block in blocks)
        assert widest == _max_overlap(blocks)

        for first, second in itertools.combinations(blocks, 2):
            overlaps = first.start_min < second.end_min and second.start_min < first.end_min
            if overlaps:
                assert first.left_pct != pytest.approx(second.left_pct)
            assert 0.0 <= first.left_pct < 100.0
