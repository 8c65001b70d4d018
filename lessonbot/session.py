from __future__ import annotations

import logging
from typing import Callable, Protocol, Sequence, TypeVar

from lessonbot.domain import ElementNotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Index of an open cell within the currently rendered week.
SlotRef = int


class Session(Protocol):
    """Everything the booking flows need from the browser.

    All calls block until the page settled or their own wait bound expired.
    """

    def current_text(self) -> str: ...

    def open_calendar(self) -> None: ...

    def open_slots(self) -> list[SlotRef]: ...

    def open_detail(self, ref: SlotRef) -> str: ...

    def select_pairing(self) -> None: ...

    def submit_booking(self) -> None: ...

    def await_confirm_prompt(self) -> bool: ...

    def confirm_booking(self) -> bool: ...

    def join_waitlist(self) -> bool: ...

    def go_back(self) -> None: ...

    def advance_week(self) -> bool: ...

    def capture(self, label: str) -> None: ...


def first_match(
    strategies: Sequence[Callable[[], T]],
    *,
    what: str,
    on_exhausted: Callable[[str], None] | None = None,
) -> T:
    """Return the result of the first strategy that does not raise.

    Strategies are tried left to right. When all of them fail, `on_exhausted`
    gets a chance to capture diagnostics before ElementNotFoundError is raised.
    """
    last_error: Exception | None = None
    for i, strategy in enumerate(strategies, start=1):
        try:
            return strategy()
        except Exception as e:
            logger.debug("Strategy %d/%d for %s failed (%s)", i, len(strategies), what, type(e).__name__)
            last_error = e

    if on_exhausted is not None:
        try:
            on_exhausted(what)
        except Exception:
            logger.warning("Failed to capture diagnostics for %s", what, exc_info=True)

    raise ElementNotFoundError(f"Element not found: {what} ({len(strategies)} strategies tried)") from last_error
