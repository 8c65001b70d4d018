from __future__ import annotations

import datetime as dt
import enum
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A single lesson slot as shown on the reservation site's detail page."""

    year: int
    month: int
    day: int
    hour: int
    minute: int = 0

    @property
    def date(self) -> dt.date:
        return dt.date(self.year, self.month, self.day)

    @property
    def day_of_week(self) -> int:
        # Monday=0 ... Sunday=6
        return self.date.weekday()

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}T{self.hour:02d}:{self.minute:02d}"

    def label(self) -> str:
        return f"{self.month}月{self.day}日 {self.hour}時台"


@dataclass(frozen=True)
class BookingConstraints:
    target_year: int
    target_month: int

    # Empty set means every day of the month is allowed.
    allowed_days: frozenset[int] = frozenset()

    # Half-open hour window [time_start, time_end).
    time_start: int = 17
    time_end: int = 18

    max_slots: int = 2
    min_days_between_slots: int = 7
    max_waitlist_entries: int = 10

    @property
    def target_month_label(self) -> str:
        return f"{self.target_year:04d}-{self.target_month:02d}"

    def in_target_month(self, slot: TimeSlot) -> bool:
        return slot.year == self.target_year and slot.month == self.target_month


@dataclass(frozen=True)
class Candidate:
    slot: TimeSlot
    # Opaque handle back to the session; only valid while the same week is rendered.
    ref: Any = field(default=None, compare=False)


class BookingAttemptResult(enum.Enum):
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    INDETERMINATE = "indeterminate"

    @property
    def is_booked(self) -> bool:
        # Anything but an explicit success marker counts as not booked.
        return self is BookingAttemptResult.CONFIRMED


class StepOutcome(enum.Enum):
    SUCCESS = "success"
    SKIP = "skip"
    ABORT = "abort"


@dataclass(frozen=True)
class StepResult:
    outcome: StepOutcome
    slot: TimeSlot | None = None
    reason: str = ""

    @classmethod
    def success(cls, slot: TimeSlot) -> StepResult:
        return cls(StepOutcome.SUCCESS, slot)

    @classmethod
    def skip(cls, reason: str, slot: TimeSlot | None = None) -> StepResult:
        return cls(StepOutcome.SKIP, slot, reason)

    @classmethod
    def abort(cls, reason: str, slot: TimeSlot | None = None) -> StepResult:
        return cls(StepOutcome.ABORT, slot, reason)


@dataclass(frozen=True)
class WaitlistStore:
    target_month: str | None
    slots: tuple[str, ...] = ()


@dataclass(frozen=True)
class BookingReport:
    booked: tuple[TimeSlot, ...] = ()
    # Set only when the run stopped in inspection mode right before submitting.
    inspected: TimeSlot | None = None


class LessonBotError(RuntimeError):
    """Base class for errors raised by the booking flows."""


class ConfigError(LessonBotError):
    """Required configuration or credentials are missing or invalid."""


class ElementNotFoundError(LessonBotError):
    """A required page element could not be located by any strategy.

    Structural: the whole run is aborted.
    """


class SlotUnavailableError(LessonBotError):
    """The detail view of a single slot could not be opened.

    Local: the slot is skipped and scanning continues.
    """


class CalendarAccessError(LessonBotError):
    """Google Calendar rejected the credentials or the free/busy query."""
