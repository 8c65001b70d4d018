from __future__ import annotations

from dataclasses import dataclass, field

from lessonbot.domain import ElementNotFoundError, SlotUnavailableError, TimeSlot

CONFIRMED = "confirmed"
REJECTED = "rejected"
INDETERMINATE = "indeterminate"
NO_PROMPT = "no_prompt"
# The prompt shows up but its OK button never becomes clickable.
CONFIRM_STUCK = "confirm_stuck"


@dataclass
class FakeSlot:
    slot: TimeSlot | None
    booking: str = CONFIRMED
    waitlist: bool = True
    pairing: bool = True
    # Overrides the generated detail text, e.g. to simulate an unparsable page.
    detail_text: str | None = None

    def detail(self) -> str:
        if self.detail_text is not None:
            return self.detail_text
        s = self.slot
        assert s is not None
        return f"ご予約内容 {s.year}年{s.month}月{s.day}日 {s.hour}:{s.minute:02d} ペアレッスン 予約する 前のページに戻る"


@dataclass
class FakeWeek:
    text: str
    slots: list[FakeSlot] = field(default_factory=list)


def slot(y: int, m: int, d: int, h: int = 17, mi: int = 0, **kwargs) -> FakeSlot:
    return FakeSlot(TimeSlot(y, m, d, h, mi), **kwargs)


class FakeSession:
    """Scripted in-memory calendar implementing the Session protocol."""

    def __init__(self, weeks: list[FakeWeek]) -> None:
        self.weeks = weeks
        self.week = 0
        self.view = "calendar"
        self.current: FakeSlot | None = None
        self.result_text = ""

        self.opened: list[TimeSlot | None] = []
        self.pairings: list[TimeSlot | None] = []
        self.submitted: list[TimeSlot | None] = []
        self.booked: list[TimeSlot] = []
        self.waitlisted: list[TimeSlot] = []
        self.captures: list[str] = []
        self.calendar_opens = 0

    # --- Session protocol ---

    def current_text(self) -> str:
        if self.view == "calendar":
            return self.weeks[self.week].text
        if self.view == "detail":
            assert self.current is not None
            return self.current.detail()
        return self.result_text

    def open_calendar(self) -> None:
        self.calendar_opens += 1
        self.week = 0
        self.view = "calendar"

    def _open_cells(self) -> list[FakeSlot]:
        return [s for s in self.weeks[self.week].slots if s.slot not in self.booked]

    def open_slots(self) -> list[int]:
        assert self.view == "calendar", f"open_slots called on {self.view} view"
        return list(range(len(self._open_cells())))

    def open_detail(self, ref: int) -> str:
        assert self.view == "calendar", f"open_detail called on {self.view} view"
        cells = self._open_cells()
        if ref >= len(cells):
            raise SlotUnavailableError(f"slot #{ref} gone")
        self.current = cells[ref]
        self.view = "detail"
        self.opened.append(self.current.slot)
        return self.current.detail()

    def select_pairing(self) -> None:
        assert self.view == "detail" and self.current is not None
        if not self.current.pairing:
            raise ElementNotFoundError("Element not found: pair lesson option")
        self.pairings.append(self.current.slot)

    def submit_booking(self) -> None:
        assert self.view == "detail" and self.current is not None
        self.submitted.append(self.current.slot)

    def await_confirm_prompt(self) -> bool:
        assert self.current is not None
        return self.current.booking != NO_PROMPT

    def confirm_booking(self) -> bool:
        assert self.current is not None
        if self.current.booking == CONFIRM_STUCK:
            return False
        self.view = "result"
        kind = self.current.booking
        if kind == CONFIRMED:
            assert self.current.slot is not None
            self.booked.append(self.current.slot)
            self.result_text = "ご予約が完了しました。"
        elif kind == REJECTED:
            self.result_text = "申し訳ありません。この枠は既に予約されています。"
        else:
            self.result_text = "しばらくお待ちください"
        return True

    def join_waitlist(self) -> bool:
        assert self.view == "detail" and self.current is not None
        if not self.current.waitlist:
            return False
        assert self.current.slot is not None
        self.waitlisted.append(self.current.slot)
        self.view = "result"
        s = self.current.slot
        self.result_text = f"キャンセル待ちを受け付けました。{s.year}年{s.month}月{s.day}日 {s.hour}:{s.minute:02d}"
        return True

    def go_back(self) -> None:
        self.view = "calendar"

    def advance_week(self) -> bool:
        if self.view != "calendar" or self.week + 1 >= len(self.weeks):
            return False
        self.week += 1
        return True

    def capture(self, label: str) -> None:
        self.captures.append(label)


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[str] = []

    def send(self, text: str) -> None:
        self.messages.append(text)
