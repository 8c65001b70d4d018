from __future__ import annotations

import logging

from lessonbot.calendar_scan import iter_weeks, open_target_month
from lessonbot.domain import (
    BookingConstraints,
    ElementNotFoundError,
    SlotUnavailableError,
    StepOutcome,
    StepResult,
)
from lessonbot.page_text import parse_detail_datetime
from lessonbot.session import Session, SlotRef
from lessonbot.state_file import WaitlistFile

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 25


class WaitlistRegistrar:
    """Registers open slots of the target month as cancellation-waitlist entries.

    Any open slot qualifies, regardless of day or time preferences. The
    calendar is re-entered from the root after every registration since the
    waitlist action navigates away from the week view.
    """

    def __init__(
        self,
        session: Session,
        constraints: BookingConstraints,
        waitlist_file: WaitlistFile,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.session = session
        self.constraints = constraints
        self.waitlist_file = waitlist_file
        self.max_attempts = max_attempts
        self._attempts = 0

    def should_run(self, booked_count: int, *, inspection: bool) -> bool:
        return (
            not inspection
            and booked_count < self.constraints.max_slots
            and self.constraints.max_waitlist_entries > 0
        )

    def run(self) -> list[str]:
        cap = self.constraints.max_waitlist_entries
        registered: list[str] = []
        tried: set[str] = set()
        self._attempts = 0

        logger.info("Registering up to %d waitlist entries", cap)
        while len(registered) < cap and self._attempts < self.max_attempts:
            key = self._register_next(tried)
            if key is None:
                break
            registered.append(key)
            logger.info("Waitlist entry %d/%d registered: %s", len(registered), cap, key)

        if not registered:
            logger.info("No waitlist entry registered, %s left untouched", self.waitlist_file.path)
            return registered

        self.waitlist_file.replace(self.constraints.target_month_label, registered)
        logger.info("Saved %d waitlist entries to %s", len(registered), self.waitlist_file.path)
        return registered

    def _register_next(self, tried: set[str]) -> str | None:
        c = self.constraints
        open_target_month(self.session, c.target_year, c.target_month)

        for _week in iter_weeks(self.session, c.target_year, c.target_month):
            for ref in self.session.open_slots():
                if self._attempts >= self.max_attempts:
                    logger.info("Waitlist attempt limit (%d) reached", self.max_attempts)
                    return None
                result = self._try_slot(ref, tried)
                if result.outcome is StepOutcome.SUCCESS and result.slot is not None:
                    return result.slot.key
        return None

    def _try_slot(self, ref: SlotRef, tried: set[str]) -> StepResult:
        try:
            text = self.session.open_detail(ref)
        except SlotUnavailableError as e:
            self._attempts += 1
            return StepResult.skip(str(e))

        slot = parse_detail_datetime(text)
        if slot is None:
            self._attempts += 1
            self.session.go_back()
            return StepResult.skip("detail text has no date/time")
        if slot.key in tried:
            self.session.go_back()
            return StepResult.skip("already tried", slot)
        tried.add(slot.key)

        if not self.constraints.in_target_month(slot):
            self.session.go_back()
            return StepResult.skip("outside target month", slot)

        self._attempts += 1
        try:
            self.session.select_pairing()
        except ElementNotFoundError:
            self.session.go_back()
            return StepResult.skip("no pairing option", slot)

        if not self.session.join_waitlist():
            self.session.go_back()
            return StepResult.skip("no waitlist action offered", slot)

        # The confirmation page repeats the date; prefer it when present.
        return StepResult.success(parse_detail_datetime(self.session.current_text()) or slot)
