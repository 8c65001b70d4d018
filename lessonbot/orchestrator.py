from __future__ import annotations

import datetime as dt
import logging
from typing import AbstractSet

from lessonbot.calendar_scan import iter_weeks, open_target_month
from lessonbot.constraints import is_eligible_for_primary, is_spaced_from
from lessonbot.domain import (
    BookingConstraints,
    BookingReport,
    Candidate,
    SlotUnavailableError,
    StepOutcome,
    StepResult,
    TimeSlot,
)
from lessonbot.holidays import JP_HOLIDAYS
from lessonbot.page_text import classify_booking_result, parse_detail_datetime
from lessonbot.selection import month_length, select_first, select_second
from lessonbot.session import Session, SlotRef

logger = logging.getLogger(__name__)


class BookingOrchestrator:
    """Books up to `max_slots` lessons in the target month.

    Each round is two passes over the calendar. The collection pass opens every
    open slot, filters it for its role (first booking or spaced second booking)
    and only records it. After the pass the best candidate is selected and a
    commit pass re-locates exactly that slot and books it. A rejected booking
    drops the candidate and the next best one is tried.

    With `inspection=True` the day/time filters are bypassed and the run stops
    right before the booking is submitted.
    """

    def __init__(
        self,
        session: Session,
        constraints: BookingConstraints,
        *,
        inspection: bool = False,
        holidays: AbstractSet[str] = JP_HOLIDAYS,
    ) -> None:
        self.session = session
        self.constraints = constraints
        self.inspection = inspection
        self.holidays = holidays

    def run(self) -> BookingReport:
        booked: list[TimeSlot] = []

        while len(booked) < self.constraints.max_slots:
            anchor = booked[0].date if booked else None
            pool = self._collect(anchor, {s.key for s in booked})
            role = "first" if anchor is None else "second"
            logger.info("Collected %d %s-slot candidates", len(pool), role)

            if not pool:
                logger.info("No eligible slot left for the %s booking", role)
                break

            result = self._book_best(pool, anchor)
            if result.outcome is StepOutcome.ABORT:
                return BookingReport(booked=tuple(booked), inspected=result.slot)
            if result.outcome is StepOutcome.SKIP or result.slot is None:
                logger.info("Every %s-slot candidate was rejected", role)
                break

            booked.append(result.slot)
            logger.info("Booked %d/%d: %s", len(booked), self.constraints.max_slots, result.slot.key)

        return BookingReport(booked=tuple(booked))

    def _select(self, pool: list[Candidate], anchor: dt.date | None) -> Candidate | None:
        if anchor is None:
            return select_first(pool, holidays=self.holidays)
        days = month_length(self.constraints.target_year, self.constraints.target_month)
        return select_second(pool, anchor, days, holidays=self.holidays)

    def _book_best(self, pool: list[Candidate], anchor: dt.date | None) -> StepResult:
        remaining = list(pool)
        while remaining:
            chosen = self._select(remaining, anchor)
            if chosen is None:
                break
            logger.info("Selected %s out of %d candidates", chosen.slot.key, len(remaining))

            result = self._commit(chosen.slot)
            if result.outcome is not StepOutcome.SKIP:
                return result

            logger.info("Skipping %s (%s)", chosen.slot.key, result.reason)
            remaining = [c for c in remaining if c.slot != chosen.slot]

        return StepResult.skip("no candidate could be booked")

    # --- collection pass ---

    def _collect(self, anchor: dt.date | None, booked_keys: set[str]) -> list[Candidate]:
        c = self.constraints
        open_target_month(self.session, c.target_year, c.target_month)

        pool: dict[str, Candidate] = {}
        for week in iter_weeks(self.session, c.target_year, c.target_month):
            refs = self.session.open_slots()
            if refs:
                logger.info("Week %d: %d open slots", week, len(refs))
            for ref in refs:
                result = self._evaluate(ref, anchor, booked_keys)
                if result.outcome is StepOutcome.SUCCESS and result.slot is not None:
                    pool.setdefault(result.slot.key, Candidate(slot=result.slot, ref=ref))
                elif result.reason:
                    logger.debug("Not a candidate: %s", result.reason)

        return list(pool.values())

    def _evaluate(self, ref: SlotRef, anchor: dt.date | None, booked_keys: set[str]) -> StepResult:
        try:
            text = self.session.open_detail(ref)
        except SlotUnavailableError as e:
            return StepResult.skip(str(e))

        try:
            return self._check(parse_detail_datetime(text), anchor, booked_keys)
        finally:
            self.session.go_back()

    def _check(self, slot: TimeSlot | None, anchor: dt.date | None, booked_keys: set[str]) -> StepResult:
        c = self.constraints
        if slot is None:
            return StepResult.skip("detail text has no date/time")
        if not c.in_target_month(slot):
            return StepResult.skip(f"{slot.key} is outside {c.target_month_label}", slot)
        if not self.inspection and not is_eligible_for_primary(slot, c):
            return StepResult.skip(f"{slot.key} is outside allowed days/time window", slot)
        if anchor is not None:
            if slot.key in booked_keys:
                return StepResult.skip(f"{slot.key} is already booked", slot)
            if not is_spaced_from(slot, anchor, c.min_days_between_slots):
                return StepResult.skip(
                    f"{slot.key} is less than {c.min_days_between_slots} days from {anchor.isoformat()}", slot
                )
        return StepResult.success(slot)

    # --- commit pass ---

    def _commit(self, target: TimeSlot) -> StepResult:
        c = self.constraints
        open_target_month(self.session, c.target_year, c.target_month)

        for _week in iter_weeks(self.session, c.target_year, c.target_month):
            for ref in self.session.open_slots():
                try:
                    text = self.session.open_detail(ref)
                except SlotUnavailableError:
                    continue
                if parse_detail_datetime(text) != target:
                    self.session.go_back()
                    continue
                return self._attempt(target)

        return StepResult.skip("slot is no longer open", target)

    def _attempt(self, slot: TimeSlot) -> StepResult:
        self.session.select_pairing()

        if self.inspection:
            logger.info("Inspection mode: stopping right before booking %s", slot.key)
            return StepResult.abort("inspection mode", slot)

        self.session.submit_booking()
        if not self.session.await_confirm_prompt():
            self.session.go_back()
            return StepResult.skip("confirmation prompt did not appear", slot)

        if not self.session.confirm_booking():
            self.session.capture("confirm_failed")
            self.session.go_back()
            return StepResult.skip("confirm button could not be clicked", slot)

        outcome = classify_booking_result(self.session.current_text())
        if not outcome.is_booked:
            self.session.capture(f"booking_{outcome.value}")
            self.session.go_back()
            return StepResult.skip(f"booking {outcome.value}", slot)

        return StepResult.success(slot)
