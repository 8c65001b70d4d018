from __future__ import annotations

import base64
import datetime as dt
import json
from pathlib import Path

import pytest

from lessonbot.config import load_calendar_settings, load_settings
from lessonbot.domain import ConfigError
from lessonbot.holidays import JP_HOLIDAYS

_OVERRIDES = (
    "TARGET_MONTH",
    "ALLOWED_DAYS",
    "STOP_BEFORE_RESERVE",
    "USE_CURRENT_MONTH",
    "RESERVATION_OPENS_AT",
    "HEADED",
    "WAITLIST_FILE",
    "LOGIN_RETRY_ATTEMPTS",
    "SLACK_WEBHOOK_URL",
    "LESSONBOT_CONFIG",
    "GOOGLE_APPLICATION_CREDENTIALS",
    "GOOGLE_SERVICE_ACCOUNT_JSON",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GOLF_RESERVATION_EMAIL", "u@example.com")
    monkeypatch.setenv("GOLF_RESERVATION_PASSWORD", "p")


def _write_config(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return str(path)


_FULL = """
targetMonth: "2024-06"
preferredDays: [2, 5, 9]
timeRange:
  start: 18
  end: 20
maxSlots: 3
minDaysBetweenSlots: 10
maxWaitlist: 4
baseUrl: "https://example.test/"
loginPath: "/login.php"
reservationOpensAt:
  day: 25
  hour: 9
  minute: 5
holidays: ["2024-06-19"]
"""


def test_load_settings_reads_yaml(tmp_path: Path) -> None:
    settings = load_settings(_write_config(tmp_path, _FULL), dotenv_path=None)

    assert settings.target_month == "2024-06"
    assert settings.allowed_days == frozenset({2, 5, 9})
    assert (settings.time_start, settings.time_end) == (18, 20)
    assert settings.max_slots == 3
    assert settings.min_days_between_slots == 10
    assert settings.max_waitlist_entries == 4
    assert settings.login_url == "https://example.test/login.php"
    assert settings.reservation_opens_at == "25日09:05"
    assert "2024-06-19" in settings.holidays
    assert JP_HOLIDAYS <= settings.holidays
    assert settings.inspection is False

    c = settings.constraints()
    assert (c.target_year, c.target_month) == (2024, 6)
    assert c.max_waitlist_entries == 4


def test_load_settings_defaults(tmp_path: Path) -> None:
    settings = load_settings(_write_config(tmp_path, 'targetMonth: "2024-7"\n'), dotenv_path=None)

    assert settings.target_month == "2024-07"
    assert settings.allowed_days == frozenset()
    assert (settings.time_start, settings.time_end) == (17, 18)
    assert settings.max_slots == 2
    assert settings.min_days_between_slots == 7
    assert settings.max_waitlist_entries == 10
    assert settings.base_url == "https://appy-epark.com"
    assert settings.reservation_opens_at == "23日22:00"
    assert settings.slack_webhook_url is None
    assert settings.waitlist_file == "waitlist.json"


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TARGET_MONTH", "2024-09")
    monkeypatch.setenv("ALLOWED_DAYS", " 3, 4,,4 ")
    monkeypatch.setenv("RESERVATION_OPENS_AT", "毎月20日")

    settings = load_settings(_write_config(tmp_path, _FULL), dotenv_path=None)

    assert settings.target_month == "2024-09"
    assert settings.allowed_days == frozenset({3, 4})
    assert settings.reservation_opens_at == "毎月20日"


def test_inspection_mode_uses_current_month_and_single_slot(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("STOP_BEFORE_RESERVE", "1")

    settings = load_settings(_write_config(tmp_path, _FULL), dotenv_path=None, today=dt.date(2024, 11, 20))

    assert settings.inspection is True
    assert settings.target_month == "2024-11"
    assert settings.max_slots == 1


def test_missing_config_file(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match=r"not found"):
        load_settings(str(tmp_path / "absent.yaml"), dotenv_path=None)


def test_missing_target_month(tmp_path: Path) -> None:
    with pytest.raises(RuntimeError, match=r"targetMonth is not set"):
        load_settings(_write_config(tmp_path, "maxSlots: 1\n"), dotenv_path=None)


@pytest.mark.parametrize("raw", ["2024/06", "2024-13", "June"])
def test_invalid_target_month(tmp_path: Path, raw: str) -> None:
    with pytest.raises(RuntimeError, match=r"Invalid targetMonth"):
        load_settings(_write_config(tmp_path, f'targetMonth: "{raw}"\n'), dotenv_path=None)


def test_invalid_allowed_days(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ALLOWED_DAYS", "2,abc")
    with pytest.raises(RuntimeError, match=r"Invalid ALLOWED_DAYS"):
        load_settings(_write_config(tmp_path, _FULL), dotenv_path=None)


def test_invalid_time_range(tmp_path: Path) -> None:
    text = 'targetMonth: "2024-06"\ntimeRange:\n  start: 20\n  end: 18\n'
    with pytest.raises(RuntimeError, match=r"Invalid timeRange"):
        load_settings(_write_config(tmp_path, text), dotenv_path=None)


def test_missing_credentials(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GOLF_RESERVATION_PASSWORD")
    with pytest.raises(RuntimeError, match=r"GOLF_RESERVATION_PASSWORD"):
        load_settings(_write_config(tmp_path, _FULL), dotenv_path=None)


def test_dotenv_does_not_override_existing_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TARGET_MONTH", "2024-08")
    dotenv = tmp_path / ".env"
    dotenv.write_text("TARGET_MONTH=2030-01\n")

    settings = load_settings(_write_config(tmp_path, _FULL), dotenv_path=str(dotenv))
    assert settings.target_month == "2024-08"


_KEY = {"type": "service_account", "client_email": "bot@example.iam.gserviceaccount.com"}


@pytest.fixture
def _calendar_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CALENDAR_ID", "primary")
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.example.test/x")


@pytest.mark.usefixtures("_calendar_env")
def test_calendar_settings_default_to_next_month(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", json.dumps(_KEY))

    settings = load_calendar_settings(dotenv_path=None, today=dt.date(2024, 12, 5))
    assert settings.target_month == "2025-01"


@pytest.mark.usefixtures("_calendar_env")
def test_calendar_settings_prefer_key_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    key_file = tmp_path / "key.json"
    key_file.write_text(json.dumps(_KEY))
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", str(key_file))
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", "{}")

    settings = load_calendar_settings(dotenv_path=None)

    assert settings.credentials_file == str(key_file)
    assert settings.service_account_info is None


@pytest.mark.usefixtures("_calendar_env")
def test_calendar_settings_fall_back_to_inline_key_when_file_is_missing(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("GOOGLE_APPLICATION_CREDENTIALS", str(tmp_path / "absent.json"))
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", json.dumps(_KEY))

    settings = load_calendar_settings(dotenv_path=None)

    assert settings.credentials_file is None
    assert settings.service_account_info == _KEY


@pytest.mark.usefixtures("_calendar_env")
def test_calendar_settings_accept_base64_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", base64.b64encode(json.dumps(_KEY).encode()).decode())

    settings = load_calendar_settings(dotenv_path=None)
    assert settings.service_account_info == _KEY


@pytest.mark.usefixtures("_calendar_env")
@pytest.mark.parametrize("raw", ["not json at all", "{broken", "WzEsIDJd"])
def test_calendar_settings_reject_bad_inline_key(monkeypatch: pytest.MonkeyPatch, raw: str) -> None:
    # "WzEsIDJd" is base64 for a JSON list, not an object.
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", raw)

    with pytest.raises(ConfigError, match=r"GOOGLE_SERVICE_ACCOUNT_JSON"):
        load_calendar_settings(dotenv_path=None)


@pytest.mark.usefixtures("_calendar_env")
def test_calendar_settings_require_a_service_account() -> None:
    with pytest.raises(ConfigError, match=r"GOOGLE_APPLICATION_CREDENTIALS"):
        load_calendar_settings(dotenv_path=None)


def test_bad_reservation_opens_at_is_a_config_error(tmp_path: Path) -> None:
    text = 'targetMonth: "2024-06"\nreservationOpensAt:\n  day: 23\n  hour: "ten"\n'
    with pytest.raises(ConfigError, match=r"reservationOpensAt.hour"):
        load_settings(_write_config(tmp_path, text), dotenv_path=None)
