"""Free-day report for the target month, read from a Google Calendar.

Shared ahead of the booking run so that candidate days are known in advance.
Nothing here books anything.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import AbstractSet, Any, Sequence
from zoneinfo import ZoneInfo

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from lessonbot.constraints import is_priority_day
from lessonbot.domain import CalendarAccessError, ConfigError
from lessonbot.holidays import JP_HOLIDAYS
from lessonbot.selection import month_length

FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]
TZ = ZoneInfo("Asia/Tokyo")

_DOW_JA = ["月", "火", "水", "木", "金", "土", "日"]


@dataclass(frozen=True)
class DayWindow:
    """Lessons run in `label`; the calendar must be free for `start`-`end` (travel included)."""

    label: str
    start: dt.time
    end: dt.time


WEEKEND_WINDOW = DayWindow("9:00-20:00", dt.time(8, 30), dt.time(20, 30))
WEEKDAY_WINDOW = DayWindow("18:00-20:00", dt.time(17, 30), dt.time(20, 30))

BusyInterval = tuple[dt.datetime, dt.datetime]


def _parse_rfc3339(raw: str) -> dt.datetime:
    value = dt.datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=TZ)
    return value


def service_account_token(
    *,
    credentials_file: str | None = None,
    service_account_info: dict[str, Any] | None = None,
) -> str:
    """Mint a read-only Calendar access token from a service account key."""
    try:
        if credentials_file:
            creds = service_account.Credentials.from_service_account_file(credentials_file, scopes=CALENDAR_SCOPES)
        elif service_account_info:
            creds = service_account.Credentials.from_service_account_info(service_account_info, scopes=CALENDAR_SCOPES)
        else:
            raise ConfigError("No service account key configured")
        creds.refresh(Request())
    except (GoogleAuthError, ValueError) as e:
        raise CalendarAccessError(f"Google service account login failed: {e}") from e
    return creds.token


def fetch_busy_intervals(
    *,
    calendar_id: str,
    access_token: str,
    year: int,
    month: int,
    timeout_seconds: float = 20.0,
) -> list[BusyInterval]:
    time_min = dt.datetime(year, month, 1, tzinfo=TZ)
    time_max = dt.datetime(year, month, month_length(year, month), 23, 59, 59, tzinfo=TZ)
    payload = {
        "timeMin": time_min.isoformat(),
        "timeMax": time_max.isoformat(),
        "timeZone": "Asia/Tokyo",
        "items": [{"id": calendar_id}],
    }

    with httpx.Client(timeout=timeout_seconds) as client:
        r = client.post(FREEBUSY_URL, json=payload, headers={"Authorization": f"Bearer {access_token}"})
        try:
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CalendarAccessError(f"Google Calendar freeBusy failed with HTTP {r.status_code}") from e
        data = r.json()

    calendar = (data.get("calendars") or {}).get(calendar_id) or {}
    if calendar.get("errors"):
        # e.g. notFound when the calendar is not shared with the service account
        raise CalendarAccessError(f"Google Calendar freeBusy error: {calendar['errors']}")

    return [(_parse_rfc3339(b["start"]), _parse_rfc3339(b["end"])) for b in calendar.get("busy", [])]


def _is_window_free(day: dt.date, window: DayWindow, busy: Sequence[BusyInterval]) -> bool:
    start = dt.datetime.combine(day, window.start, tzinfo=TZ)
    end = dt.datetime.combine(day, window.end, tzinfo=TZ)
    return not any(b_start < end and b_end > start for b_start, b_end in busy)


def free_days(
    year: int,
    month: int,
    busy: Sequence[BusyInterval],
    *,
    holidays: AbstractSet[str] = JP_HOLIDAYS,
) -> dict[int, str]:
    """Map day of month to the lesson window label for every free day."""
    result: dict[int, str] = {}
    for d in range(1, month_length(year, month) + 1):
        day = dt.date(year, month, d)
        window = WEEKEND_WINDOW if is_priority_day(day, holidays) else WEEKDAY_WINDOW
        if _is_window_free(day, window, busy):
            result[d] = window.label
    return result


def format_candidates_message(year: int, month: int, days: dict[int, str]) -> str:
    lines = [f"{month}/{d}（{_DOW_JA[dt.date(year, month, d).weekday()]}） {days[d]}" for d in sorted(days)]
    body = "\n".join(lines) if lines else "（該当なし）"
    return (
        f"【ゴルフレッスン】{year}年{month}月の予約候補日"
        f"（土日祝 {WEEKEND_WINDOW.label} / 平日 {WEEKDAY_WINDOW.label}、1コマ1h・移動前後30分）:\n{body}"
    )
