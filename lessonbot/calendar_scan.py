from __future__ import annotations

import logging
from typing import Iterator

from lessonbot.page_text import month_marker, next_month
from lessonbot.session import Session

logger = logging.getLogger(__name__)

# The site renders one week per page.
MAX_WEEKS_PER_PASS = 6


def advance_to_month(session: Session, year: int, month: int, max_weeks: int = MAX_WEEKS_PER_PASS) -> bool:
    """Click "next week" until the target month is rendered.

    Returns False when the month never showed up within `max_weeks`.
    """
    marker = month_marker(year, month)
    for _ in range(max_weeks):
        if marker in session.current_text():
            return True
        if not session.advance_week():
            break
    return marker in session.current_text()


def iter_weeks(session: Session, year: int, month: int, max_weeks: int = MAX_WEEKS_PER_PASS) -> Iterator[int]:
    """Yield once per rendered week of the target month, advancing in between.

    The pass ends once the page no longer shows the target month. A week that
    already shows the next month is still yielded, since it holds the last
    days of the target month, but the pass stops right after it.
    """
    target = month_marker(year, month)
    following = month_marker(*next_month(year, month))

    for week in range(max_weeks):
        text = session.current_text()
        if target not in text:
            logger.debug("Week %d no longer shows %s, ending pass", week, target)
            return

        yield week

        if following in session.current_text():
            return
        if not session.advance_week():
            return


def open_target_month(session: Session, year: int, month: int) -> bool:
    """Navigate from the booking root to the first rendered week of the target month."""
    session.open_calendar()
    found = advance_to_month(session, year, month)
    if not found:
        logger.warning("Calendar never showed %s", month_marker(year, month))
    return found
