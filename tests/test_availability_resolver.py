from __future__ import annotations

from datetime import date, time
from types import SimpleNamespace

from tutormarket.core.enums import AvailabilityExceptionTypeEnum
from tutormarket.modules.scheduling.resolver import (
    Interval,
    Slot,
    day_of_week,
    effective_windows,
    occurrence_dates,
    resolve_slots,
    window_ticks,
)


def _window(start: time, end: time) -> SimpleNamespace:
    return SimpleNamespace(start_time=start, end_time=end)


def _starts(slots: list[Slot]) -> list[time]:
    return [slot.start_time for slot in slots]


def test_full_window_yields_hourly_ticks() -> None:
    slots = resolve_slots(
        [_window(time(9), time(12))],
        None,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert slots == [
        Slot(time(9), time(10)),
        Slot(time(10), time(11)),
        Slot(time(11), time(12)),
    ]


def test_busy_interval_removes_overlapping_ticks() -> None:
    slots = resolve_slots(
        [_window(time(9), time(12))],
        None,
        [Interval(10 * 60, 11 * 60)],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(9), time(11)]


def test_busy_interval_touching_tick_edge_does_not_block_it() -> None:
    slots = resolve_slots(
        [_window(time(9), time(11))],
        None,
        [Interval(8 * 60, 9 * 60)],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(9), time(10)]


def test_ticks_align_to_the_next_boundary_after_window_start() -> None:
    slots = resolve_slots(
        [_window(time(9, 30), time(12))],
        None,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(10), time(11)]


def test_long_session_must_fit_inside_window() -> None:
    slots = resolve_slots(
        [_window(time(9), time(12))],
        None,
        [],
        duration_minutes=90,
        tick_minutes=60,
    )

    assert slots == [Slot(time(9), time(10, 30)), Slot(time(10), time(11, 30))]


def test_long_session_is_blocked_by_busy_interval_inside_its_span() -> None:
    slots = resolve_slots(
        [_window(time(9), time(13))],
        None,
        [Interval(11 * 60, 12 * 60)],
        duration_minutes=120,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(9)]


def test_overlapping_windows_do_not_duplicate_ticks() -> None:
    slots = resolve_slots(
        [_window(time(9), time(11)), _window(time(10), time(12))],
        None,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(9), time(10), time(11)]


def test_unavailable_exception_blocks_the_whole_day() -> None:
    exception = SimpleNamespace(
        exception_type=AvailabilityExceptionTypeEnum.UNAVAILABLE,
        start_time=None,
        end_time=None,
    )

    slots = resolve_slots(
        [_window(time(9), time(17))],
        exception,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert slots == []


def test_custom_hours_replace_weekly_windows() -> None:
    exception = SimpleNamespace(
        exception_type=AvailabilityExceptionTypeEnum.CUSTOM_HOURS,
        start_time=time(14),
        end_time=time(16),
    )

    assert effective_windows([_window(time(9), time(12))], exception) == [Interval(14 * 60, 16 * 60)]
    slots = resolve_slots(
        [_window(time(9), time(12))],
        exception,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )
    assert _starts(slots) == [time(14), time(15)]


def test_half_hour_ticks() -> None:
    ticks = window_ticks(Interval(9 * 60, 10 * 60 + 30), 60, 30)

    assert ticks == [Interval(540, 600), Interval(570, 630)]


def test_tick_running_to_midnight_is_dropped() -> None:
    slots = resolve_slots(
        [_window(time(22), time(23, 59))],
        None,
        [],
        duration_minutes=60,
        tick_minutes=60,
    )

    assert _starts(slots) == [time(22)]


def test_day_of_week_starts_on_sunday() -> None:
    assert day_of_week(date(2026, 10, 18)) == 0
    assert day_of_week(date(2026, 10, 21)) == 3
    assert day_of_week(date(2026, 10, 24)) == 6


def test_occurrence_dates_are_weekly() -> None:
    assert occurrence_dates(date(2026, 10, 21), 3) == [
        date(2026, 10, 21),
        date(2026, 10, 28),
        date(2026, 11, 4),
    ]
    assert occurrence_dates(date(2026, 10, 21), 0) == [date(2026, 10, 21)]
