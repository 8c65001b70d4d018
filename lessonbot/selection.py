from __future__ import annotations

import calendar
import datetime as dt
from typing import AbstractSet, Sequence

from lessonbot.constraints import is_priority_day
from lessonbot.domain import Candidate, TimeSlot
from lessonbot.holidays import JP_HOLIDAYS


def month_length(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def ideal_second_date(first_booked_date: dt.date, days_in_month: int) -> dt.datetime:
    """Roughly half a month after the first booking.

    Kept as a datetime so odd month lengths land on noon instead of being rounded.
    """
    start = dt.datetime.combine(first_booked_date, dt.time())
    return start + dt.timedelta(days=days_in_month / 2)


def _slot_start(slot: TimeSlot) -> dt.datetime:
    return dt.datetime.combine(slot.date, dt.time())


def select_first(
    candidates: Sequence[Candidate],
    *,
    holidays: AbstractSet[str] = JP_HOLIDAYS,
) -> Candidate | None:
    """Pick the slot for the first booking of the month.

    Weekend/holiday slots win outright; otherwise the earliest slot is taken so
    the lesson is not delayed needlessly.
    """
    if not candidates:
        return None

    def _key(c: Candidate) -> tuple[bool, TimeSlot]:
        return (not is_priority_day(c.slot.date, holidays), c.slot)

    return sorted(candidates, key=_key)[0]


def select_second(
    candidates: Sequence[Candidate],
    first_booked_date: dt.date,
    days_in_month: int,
    *,
    holidays: AbstractSet[str] = JP_HOLIDAYS,
) -> Candidate | None:
    """Pick the slot for the second booking of the month.

    Callers must already have dropped candidates closer to `first_booked_date`
    than the configured spacing. Weekend/holiday slots still win; within a
    group the slot nearest to the month's midpoint anchor is taken, and equal
    distances fall back to the earliest slot.
    """
    if not candidates:
        return None

    ideal = ideal_second_date(first_booked_date, days_in_month)

    def _key(c: Candidate) -> tuple[bool, float, TimeSlot]:
        distance = abs((_slot_start(c.slot) - ideal).total_seconds())
        return (not is_priority_day(c.slot.date, holidays), distance, c.slot)

    return sorted(candidates, key=_key)[0]
