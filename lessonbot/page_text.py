from __future__ import annotations

import datetime as dt
import re

from lessonbot.domain import BookingAttemptResult, TimeSlot

# e.g. "2024年6月14日 18:00" on the slot detail page
_DETAIL_DATETIME_RE = re.compile(r"(\d{4})年(\d{1,2})月(\d{1,2})日\s*(\d{1,2}):(\d{2})")

_SUCCESS_RE = re.compile(r"予約が完了|予約完了|登録しました|受け付けました|予約を完了|いただきました")
_ERROR_RE = re.compile(r"申し訳ありません|エラー|既に予約|上限に達しています|できません")

PAIR_LESSON_LABEL = "ペアレッスン"
RESERVE_LABEL = "予約する"
OPEN_MARKER = "○"


def parse_detail_datetime(text: str | None) -> TimeSlot | None:
    if not text:
        return None
    m = _DETAIL_DATETIME_RE.search(text)
    if not m:
        return None
    year, month, day, hour, minute = (int(g) for g in m.groups())
    try:
        # Rejects impossible dates such as 2月30日.
        dt.date(year, month, day)
    except ValueError:
        return None
    return TimeSlot(year=year, month=month, day=day, hour=hour, minute=minute)


def month_marker(year: int, month: int) -> str:
    return f"{year}年{month}月"


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def classify_booking_result(text: str | None) -> BookingAttemptResult:
    """Classify the page shown after confirming a booking.

    A success marker always wins. Error markers, or the detail form still being
    shown, mean the booking was refused. Anything else is indeterminate.
    """
    if not text:
        return BookingAttemptResult.INDETERMINATE
    if _SUCCESS_RE.search(text):
        return BookingAttemptResult.CONFIRMED
    if _ERROR_RE.search(text):
        return BookingAttemptResult.REJECTED
    # Known fragility: a slow success page can still show the form here.
    if PAIR_LESSON_LABEL in text and RESERVE_LABEL in text:
        return BookingAttemptResult.REJECTED
    return BookingAttemptResult.INDETERMINATE
