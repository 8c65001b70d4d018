from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from tenacity import RetryCallState, retry, stop_after_attempt, wait_exponential

from lessonbot.availability import (
    fetch_busy_intervals,
    format_candidates_message,
    free_days,
    service_account_token,
)
from lessonbot.config import CalendarSettings, Settings, parse_target_month
from lessonbot.domain import BookingReport, TimeSlot
from lessonbot.orchestrator import BookingOrchestrator
from lessonbot.selenium_provider import SeleniumSession, start_driver
from lessonbot.slack_notifier import SlackNotifier, send_slack_message
from lessonbot.state_file import WaitlistFile
from lessonbot.waitlist import WaitlistRegistrar
from lessonbot.watcher import CancellationWatcher

logger = logging.getLogger(__name__)

_PREFIX = "【ゴルフレッスン予約】"


def _short_exc(retry_state: RetryCallState) -> str | None:
    if retry_state.outcome is None or not retry_state.outcome.failed:
        return None
    exc = retry_state.outcome.exception()
    if exc is None:
        return None
    msg = str(exc).strip()
    return f"{type(exc).__name__}: {msg}" if msg else type(exc).__name__


def _log_before_attempt(retry_state: RetryCallState) -> None:
    logger.info("Login attempt %s: start", retry_state.attempt_number)


def _log_after_attempt(retry_state: RetryCallState) -> None:
    if retry_state.outcome is not None and retry_state.outcome.failed:
        logger.warning("Login attempt %s failed (%s)", retry_state.attempt_number, _short_exc(retry_state))


def _log_before_sleep(retry_state: RetryCallState) -> None:
    sleep_seconds = getattr(retry_state.next_action, "sleep", None)
    if sleep_seconds is None:
        logger.info("Waiting before next login attempt...")
        return
    logger.info("Login attempt %s in %.0f s", retry_state.attempt_number + 1, sleep_seconds)


def _start_session(settings: Settings) -> SeleniumSession:
    logger.info("Starting browser (headless=%s)", not settings.headed)
    driver = start_driver(headless=not settings.headed)
    session = SeleniumSession(driver, base_url=settings.base_url, lesson_name=settings.lesson_name)
    try:
        logger.info("Logging in: %s", settings.login_url)
        session.log_in(login_url=settings.login_url, email=settings.email, password=settings.password)
    except Exception:
        session.capture("login")
        _quit(session)
        raise
    return session


def _start_session_with_retry(settings: Settings) -> SeleniumSession:
    decorated = retry(
        stop=stop_after_attempt(settings.login_retry_attempts),
        wait=wait_exponential(multiplier=2, min=2, max=8),
        before=_log_before_attempt,
        after=_log_after_attempt,
        before_sleep=_log_before_sleep,
        reraise=True,
    )(_start_session)

    return decorated(settings)


def _quit(session: SeleniumSession) -> None:
    try:
        session.driver.quit()
    except Exception:
        logger.warning("Failed to quit driver cleanly", exc_info=True)


@contextmanager
def browser_session(settings: Settings) -> Iterator[SeleniumSession]:
    """Logged-in session that is always released, with a capture taken on errors."""
    session = _start_session_with_retry(settings)
    try:
        yield session
    except Exception:
        session.capture("error")
        raise
    finally:
        _quit(session)


def _format_report(report: BookingReport, waitlisted: list[str]) -> str:
    booked = "、".join(s.key for s in report.booked) or "なし"
    return f"予約 {len(report.booked)} 件（{booked}）、キャンセル待ち {len(waitlisted)} 件"


def run_reserve(settings: Settings, notifier: SlackNotifier | None = None) -> BookingReport:
    notifier = notifier or SlackNotifier(settings.slack_webhook_url)
    notifier.send(
        f"{_PREFIX}スクリプトを実行しました。対象月: {settings.target_month}（予約可能: {settings.reservation_opens_at}）"
    )

    constraints = settings.constraints()
    waitlisted: list[str] = []
    try:
        with browser_session(settings) as session:
            report = BookingOrchestrator(
                session,
                constraints,
                inspection=settings.inspection,
                holidays=settings.holidays,
            ).run()

            if report.inspected is not None:
                logger.info("Inspection mode: would book %s (%s)", report.inspected.key, report.inspected.label())
                return report

            registrar = WaitlistRegistrar(
                session,
                constraints,
                WaitlistFile(settings.waitlist_file),
                max_attempts=settings.max_waitlist_attempts,
            )
            if registrar.should_run(len(report.booked), inspection=settings.inspection):
                waitlisted = registrar.run()

    except Exception as e:
        logger.error("Reservation run failed (%s: %s)", type(e).__name__, e)
        notifier.send(f"{_PREFIX}エラーで終了しました。{type(e).__name__}: {e}")
        raise

    if not report.booked:
        logger.info("No eligible slot was booked for %s", settings.target_month)
    summary = _format_report(report, waitlisted)
    logger.info("Done: %s", summary)
    notifier.send(f"{_PREFIX}{settings.target_month} の処理が完了しました。{summary}")
    return report


def run_watch(settings: Settings, notifier: SlackNotifier | None = None) -> TimeSlot | None:
    notifier = notifier or SlackNotifier(settings.slack_webhook_url)
    with browser_session(settings) as session:
        return CancellationWatcher(
            session,
            settings.constraints(),
            WaitlistFile(settings.waitlist_file),
            notifier,
        ).run()


def run_candidates(settings: CalendarSettings) -> str:
    year, month = parse_target_month(settings.target_month)
    token = service_account_token(
        credentials_file=settings.credentials_file,
        service_account_info=settings.service_account_info,
    )
    busy = fetch_busy_intervals(
        calendar_id=settings.calendar_id,
        access_token=token,
        year=year,
        month=month,
    )
    text = format_candidates_message(year, month, free_days(year, month, busy))
    send_slack_message(webhook_url=settings.slack_webhook_url, text=text)
    logger.info("Posted %s candidate days to Slack", settings.target_month)
    return text
