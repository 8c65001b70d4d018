from __future__ import annotations

import base64
import datetime as dt
import json
import os
import re
from dataclasses import dataclass
from typing import Any

import yaml
from dotenv import load_dotenv

from lessonbot.domain import BookingConstraints, ConfigError
from lessonbot.holidays import JP_HOLIDAYS

DEFAULT_BASE_URL = "https://appy-epark.com"
DEFAULT_LOGIN_PATH = "/users/login/login.php"
DEFAULT_OPENS_AT = "23日22:00"

_TARGET_MONTH_RE = re.compile(r"^(\d{4})-(\d{1,2})$")
_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class Settings:
    email: str
    password: str
    target_month: str  # YYYY-MM

    allowed_days: frozenset[int] = frozenset()
    time_start: int = 17
    time_end: int = 18
    max_slots: int = 2
    min_days_between_slots: int = 7
    max_waitlist_entries: int = 10

    base_url: str = DEFAULT_BASE_URL
    login_path: str = DEFAULT_LOGIN_PATH
    lesson_name: str = "各種50分枠レッスン"
    # Only used in the start notification.
    reservation_opens_at: str = DEFAULT_OPENS_AT
    holidays: frozenset[str] = JP_HOLIDAYS

    # Stop right before submitting; filters are bypassed and one slot at most.
    inspection: bool = False
    headed: bool = False

    slack_webhook_url: str | None = None
    waitlist_file: str = "waitlist.json"

    # Retry tuning
    # Only login is retried; booking actions never are.
    login_retry_attempts: int = 2
    max_waitlist_attempts: int = 25

    @property
    def target_year_month(self) -> tuple[int, int]:
        return parse_target_month(self.target_month)

    @property
    def login_url(self) -> str:
        return self.base_url.rstrip("/") + self.login_path

    def constraints(self) -> BookingConstraints:
        year, month = self.target_year_month
        return BookingConstraints(
            target_year=year,
            target_month=month,
            allowed_days=self.allowed_days,
            time_start=self.time_start,
            time_end=self.time_end,
            max_slots=self.max_slots,
            min_days_between_slots=self.min_days_between_slots,
            max_waitlist_entries=self.max_waitlist_entries,
        )


@dataclass(frozen=True)
class CalendarSettings:
    calendar_id: str
    slack_webhook_url: str
    target_month: str

    # Service account key: a file path, or the parsed key itself.
    credentials_file: str | None = None
    service_account_info: dict[str, Any] | None = None


def parse_target_month(raw: str) -> tuple[int, int]:
    m = _TARGET_MONTH_RE.match(raw.strip())
    if not m:
        raise ConfigError(f"Invalid targetMonth: {raw!r}. Expected YYYY-MM.")
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ConfigError(f"Invalid targetMonth: {raw!r}. Month must be 1..12.")
    return year, month


def _parse_allowed_days(raw: Any, source: str) -> frozenset[int]:
    # ALLOWED_DAYS supports a comma-separated list, e.g. ALLOWED_DAYS=2,5,9
    if raw is None:
        return frozenset()
    if isinstance(raw, str):
        parts: list[Any] = [p.strip() for p in raw.split(",")]
        parts = [p for p in parts if p]
    elif isinstance(raw, (list, tuple, set)):
        parts = list(raw)
    else:
        raise ConfigError(f"Invalid {source}: expected a list of day numbers")

    days: set[int] = set()
    for p in parts:
        try:
            day = int(p)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid {source} value: {p!r}. Expected day of month.") from e
        if not 1 <= day <= 31:
            raise ConfigError(f"Invalid {source} value: {day}. Expected 1..31.")
        days.add(day)
    return frozenset(days)


def _int(raw: Any, name: str, *, minimum: int = 0) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid {name}: {raw!r}. Expected integer.") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}")
    return value


def _flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in {"1", "true", "yes"}


def _require(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise ConfigError(f"Missing required environment variable: {name}")
    return value


def _format_opens_at(raw: Any) -> str:
    if not isinstance(raw, dict):
        return DEFAULT_OPENS_AT
    day = _int(raw.get("day", 23), "reservationOpensAt.day", minimum=1)
    hour = _int(raw.get("hour", 22), "reservationOpensAt.hour")
    minute = _int(raw.get("minute", 0) or 0, "reservationOpensAt.minute")
    return f"{day}日{hour:02d}:{minute:02d}"


def _parse_holidays(raw: Any) -> frozenset[str]:
    extra: set[str] = set()
    for item in raw or []:
        value = item.isoformat() if isinstance(item, dt.date) else str(item)
        if not _ISO_DATE_RE.match(value):
            raise ConfigError(f"Invalid holiday date: {item!r}. Expected YYYY-MM-DD.")
        extra.add(value)
    return JP_HOLIDAYS | extra


def read_config_file(path: str) -> dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise ConfigError(
            f"{path} not found. Copy config.example.yaml to {path} and edit it."
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}") from e

    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")
    return raw


def load_settings(
    config_path: str | None = None,
    dotenv_path: str | None = None,
    *,
    today: dt.date | None = None,
) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    config_path = config_path or os.getenv("LESSONBOT_CONFIG", "config.yaml")
    cfg = read_config_file(config_path)

    inspection = _flag("STOP_BEFORE_RESERVE")

    target_month = os.getenv("TARGET_MONTH") or cfg.get("targetMonth")
    if inspection or _flag("USE_CURRENT_MONTH"):
        # The current month is the only one guaranteed to have open slots to inspect.
        now = today or dt.date.today()
        target_month = f"{now.year:04d}-{now.month:02d}"
    if not target_month:
        raise ConfigError("targetMonth is not set in config.yaml (or TARGET_MONTH)")
    target_month = str(target_month)
    year, month = parse_target_month(target_month)

    if os.getenv("ALLOWED_DAYS"):
        allowed_days = _parse_allowed_days(os.environ["ALLOWED_DAYS"], "ALLOWED_DAYS")
    else:
        allowed_days = _parse_allowed_days(cfg.get("preferredDays", cfg.get("allowedDays")), "preferredDays")

    time_range = cfg.get("timeRange") or {}
    if not isinstance(time_range, dict):
        raise ConfigError("timeRange must be a mapping with start/end")
    time_start = _int(time_range.get("start", 17), "timeRange.start")
    time_end = _int(time_range.get("end", 18), "timeRange.end")
    if not 0 <= time_start < time_end <= 24:
        raise ConfigError(f"Invalid timeRange: start={time_start} end={time_end}")

    max_slots = _int(cfg.get("maxSlots", 2), "maxSlots")
    if inspection:
        max_slots = 1

    login_retry_attempts = _int(os.getenv("LOGIN_RETRY_ATTEMPTS", "2"), "LOGIN_RETRY_ATTEMPTS", minimum=1)

    return Settings(
        email=_require("GOLF_RESERVATION_EMAIL"),
        password=_require("GOLF_RESERVATION_PASSWORD"),
        target_month=f"{year:04d}-{month:02d}",
        allowed_days=allowed_days,
        time_start=time_start,
        time_end=time_end,
        max_slots=max_slots,
        min_days_between_slots=_int(cfg.get("minDaysBetweenSlots", 7), "minDaysBetweenSlots"),
        max_waitlist_entries=_int(cfg.get("maxWaitlist", cfg.get("maxWaitlistEntries", 10)), "maxWaitlist"),
        base_url=str(cfg.get("baseUrl") or DEFAULT_BASE_URL),
        login_path=str(cfg.get("loginPath") or DEFAULT_LOGIN_PATH),
        lesson_name=str(cfg.get("lessonName") or "各種50分枠レッスン"),
        reservation_opens_at=os.getenv("RESERVATION_OPENS_AT") or _format_opens_at(cfg.get("reservationOpensAt")),
        holidays=_parse_holidays(cfg.get("holidays")),
        inspection=inspection,
        headed=_flag("HEADED"),
        slack_webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
        waitlist_file=os.getenv("WAITLIST_FILE", "waitlist.json"),
        login_retry_attempts=login_retry_attempts,
        max_waitlist_attempts=_int(cfg.get("maxWaitlistAttempts", 25), "maxWaitlistAttempts", minimum=1),
    )


def _parse_service_account_json(raw: str) -> dict[str, Any]:
    # Inline JSON, or the same JSON base64-encoded (handy for CI secrets).
    raw = raw.strip()
    try:
        text = raw if raw.startswith("{") else base64.b64decode(raw, validate=True).decode("utf-8")
        info = json.loads(text)
    except ValueError as e:
        raise ConfigError("Failed to parse GOOGLE_SERVICE_ACCOUNT_JSON (expected JSON or base64 JSON)") from e
    if not isinstance(info, dict):
        raise ConfigError("GOOGLE_SERVICE_ACCOUNT_JSON must be a JSON object")
    return info


def _service_account_source() -> tuple[str | None, dict[str, Any] | None]:
    key_path = os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    if key_path:
        path = os.path.abspath(key_path)
        if os.path.isfile(path):
            return path, None

    raw = os.getenv("GOOGLE_SERVICE_ACCOUNT_JSON")
    if raw:
        return None, _parse_service_account_json(raw)

    raise ConfigError("Set GOOGLE_APPLICATION_CREDENTIALS (key file) or GOOGLE_SERVICE_ACCOUNT_JSON")


def load_calendar_settings(dotenv_path: str | None = None, *, today: dt.date | None = None) -> CalendarSettings:
    load_dotenv(dotenv_path=dotenv_path, override=False)

    target_month = os.getenv("TARGET_MONTH")
    if not target_month:
        now = today or dt.date.today()
        year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
        target_month = f"{year:04d}-{month:02d}"
    year, month = parse_target_month(target_month)
    credentials_file, service_account_info = _service_account_source()

    return CalendarSettings(
        calendar_id=_require("CALENDAR_ID"),
        slack_webhook_url=_require("SLACK_WEBHOOK_URL"),
        target_month=f"{year:04d}-{month:02d}",
        credentials_file=credentials_file,
        service_account_info=service_account_info,
    )
