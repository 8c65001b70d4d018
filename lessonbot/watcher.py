from __future__ import annotations

import logging
from typing import AbstractSet, Protocol

from lessonbot.calendar_scan import iter_weeks, open_target_month
from lessonbot.constraints import is_eligible_for_primary
from lessonbot.domain import (
    BookingConstraints,
    ElementNotFoundError,
    SlotUnavailableError,
    StepOutcome,
    StepResult,
    TimeSlot,
)
from lessonbot.page_text import parse_detail_datetime
from lessonbot.session import Session, SlotRef
from lessonbot.state_file import WaitlistFile

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def send(self, text: str) -> None: ...


class CancellationWatcher:
    """Claims the first freed slot that matches the preferences.

    Slots already on the waitlist are left alone. Finding nothing is a normal
    outcome, so the watcher can run on a short schedule.
    """

    def __init__(
        self,
        session: Session,
        constraints: BookingConstraints,
        waitlist_file: WaitlistFile,
        notifier: Notifier,
    ) -> None:
        self.session = session
        self.constraints = constraints
        self.waitlist_file = waitlist_file
        self.notifier = notifier

    def run(self) -> TimeSlot | None:
        c = self.constraints
        store = self.waitlist_file.load()
        if store.target_month and store.target_month != c.target_month_label:
            logger.warning("Waitlist is for %s, watching %s", store.target_month, c.target_month_label)
        excluded = frozenset(store.slots)
        logger.info("Watching %s, %d waitlisted slots excluded", c.target_month_label, len(excluded))

        open_target_month(self.session, c.target_year, c.target_month)
        for _week in iter_weeks(self.session, c.target_year, c.target_month):
            for ref in self.session.open_slots():
                result = self._try_claim(ref, excluded)
                if result.outcome is StepOutcome.SUCCESS and result.slot is not None:
                    logger.info("Booked cancelled slot %s", result.slot.key)
                    self.notifier.send(
                        f"【ゴルフレッスン予約】キャンセル枠を予約しました。{result.slot.key}（対象月: {c.target_month_label}）"
                    )
                    return result.slot
                if result.reason:
                    logger.debug("Skipped: %s", result.reason)

        logger.info("No eligible cancelled slot found")
        return None

    def _try_claim(self, ref: SlotRef, excluded: AbstractSet[str]) -> StepResult:
        try:
            text = self.session.open_detail(ref)
        except SlotUnavailableError as e:
            return StepResult.skip(str(e))

        slot = parse_detail_datetime(text)
        if slot is None:
            self.session.go_back()
            return StepResult.skip("detail text has no date/time")
        if slot.key in excluded:
            self.session.go_back()
            return StepResult.skip(f"{slot.key} is waitlisted", slot)
        if not self.constraints.in_target_month(slot) or not is_eligible_for_primary(slot, self.constraints):
            self.session.go_back()
            return StepResult.skip(f"{slot.key} does not match preferences", slot)

        try:
            self.session.select_pairing()
        except ElementNotFoundError:
            self.session.go_back()
            return StepResult.skip("no pairing option", slot)

        self.session.submit_booking()
        if not self.session.await_confirm_prompt():
            self.session.go_back()
            return StepResult.skip("confirmation prompt did not appear", slot)
        if not self.session.confirm_booking():
            self.session.capture("confirm_failed")
            self.session.go_back()
            return StepResult.skip("confirm button could not be clicked", slot)
        return StepResult.success(slot)
