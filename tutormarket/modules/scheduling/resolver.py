"""Pure availability arithmetic: windows, exceptions and busy intervals to free slots."""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, time, timedelta
from typing import Protocol

from tutormarket.core.enums import AvailabilityExceptionTypeEnum

MINUTES_PER_DAY = 24 * 60


class WindowLike(Protocol):
    start_time: time
    end_time: time


class ExceptionLike(Protocol):
    exception_type: AvailabilityExceptionTypeEnum
    start_time: time | None
    end_time: time | None


@dataclass(frozen=True, slots=True, order=True)
class Interval:
    """Half-open [start, end) range in minutes since local midnight."""

    start: int
    end: int

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True, slots=True, order=True)
class Slot:
    start_time: time
    end_time: time


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(value: int) -> time:
    hours, minutes = divmod(value, 60)
    return time(hour=hours, minute=minutes)


def interval_of(start: time, end: time) -> Interval:
    return Interval(to_minutes(start), to_minutes(end))


def interval_for_duration(start: time, duration_minutes: int) -> Interval:
    begin = to_minutes(start)
    return Interval(begin, begin + duration_minutes)


def day_of_week(value: date) -> int:
    """Weekday index with 0 = Sunday."""
    return (value.weekday() + 1) % 7


def occurrence_dates(first_date: date, weeks: int) -> list[date]:
    """Dates of a weekly series starting at first_date."""
    return [first_date + timedelta(weeks=week) for week in range(max(1, weeks))]


def effective_windows(
    weekly_windows: Iterable[WindowLike],
    exception: ExceptionLike | None,
) -> list[Interval]:
    """Windows in force for a date; an exception replaces the weekly windows."""
    if exception is not None:
        if exception.exception_type == AvailabilityExceptionTypeEnum.UNAVAILABLE:
            return []
        if exception.start_time is None or exception.end_time is None:
            return []
        return [interval_of(exception.start_time, exception.end_time)]
    return [interval_of(window.start_time, window.end_time) for window in weekly_windows]


def window_ticks(window: Interval, duration_minutes: int, tick_minutes: int) -> list[Interval]:
    """Tick-aligned candidates inside a window.

    Ticks sit on multiples of tick_minutes from midnight, starting at the first
    boundary at or after the window start. A tick whose duration would run past
    the window end is dropped.
    """
    first = math.ceil(window.start / tick_minutes) * tick_minutes
    ticks = []
    for start in range(first, window.end, tick_minutes):
        end = start + duration_minutes
        if end > window.end or end >= MINUTES_PER_DAY:
            break
        ticks.append(Interval(start, end))
    return ticks


def free_slots(
    windows: Iterable[Interval],
    busy: Iterable[Interval],
    *,
    duration_minutes: int,
    tick_minutes: int,
) -> list[Slot]:
    """Sorted, de-duplicated ticks that do not intersect any busy interval."""
    busy_intervals = list(busy)
    candidates: set[Interval] = set()
    for window in windows:
        for tick in window_ticks(window, duration_minutes, tick_minutes):
            if any(tick.overlaps(other) for other in busy_intervals):
                continue
            candidates.add(tick)
    return [Slot(from_minutes(tick.start), from_minutes(tick.end)) for tick in sorted(candidates)]


def resolve_slots(
    weekly_windows: Iterable[WindowLike],
    exception: ExceptionLike | None,
    busy: Iterable[Interval],
    *,
    duration_minutes: int,
    tick_minutes: int,
) -> list[Slot]:
    """Free slots for one date."""
    return free_slots(
        effective_windows(weekly_windows, exception),
        busy,
        duration_minutes=duration_minutes,
        tick_minutes=tick_minutes,
    )
