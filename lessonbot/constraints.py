from __future__ import annotations

import datetime as dt
from typing import AbstractSet

from lessonbot.domain import BookingConstraints, TimeSlot
from lessonbot.holidays import JP_HOLIDAYS


def is_priority_day(date: dt.date, holidays: AbstractSet[str] = JP_HOLIDAYS) -> bool:
    """Weekends and public holidays are scarce, so they are booked first."""
    return date.weekday() >= 5 or date.isoformat() in holidays


def is_eligible_for_primary(slot: TimeSlot, constraints: BookingConstraints) -> bool:
    day_ok = not constraints.allowed_days or slot.day in constraints.allowed_days
    hour_ok = constraints.time_start <= slot.hour < constraints.time_end
    return day_ok and hour_ok


def is_spaced_from(slot: TimeSlot, anchor_date: dt.date, min_days: int) -> bool:
    return abs((slot.date - anchor_date).days) >= min_days
