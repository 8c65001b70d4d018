from __future__ import annotations

import logging
import os
import re
import time
from typing import Callable

from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.common.by import By
from selenium.webdriver.remote.webelement import WebElement
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait
from webdriver_manager.chrome import ChromeDriverManager

from lessonbot.domain import SlotUnavailableError
from lessonbot.page_text import OPEN_MARKER, PAIR_LESSON_LABEL, RESERVE_LABEL
from lessonbot.session import SlotRef, first_match

logger = logging.getLogger(__name__)

CALENDAR_PATH = "/users/mypage/reservation/calendar.php"
MYPAGE_PATH = "/users/mypage/"

Locator = tuple[str, str]

_OPEN_CELLS = (By.XPATH, f"//td[contains(normalize-space(.), '{OPEN_MARKER}')]")
_NEXT_WEEK = (By.XPATH, "//button[contains(., '次の一週間')] | //*[contains(text(), '次の一週間')]")
_BACK_LINK = (By.XPATH, "//*[contains(text(), '前のページに戻る') or normalize-space(text())='戻る']")
_EMPTY_SLOT_LINK = (By.XPATH, "//a[contains(., '空枠確認・予約する')]")
_CONFIRM_PROMPT_OK = (By.ID, "modal-content_ok")
_WAITLIST_ACTION = (By.XPATH, "//button[contains(., 'キャンセル待ち')] | //*[contains(text(), 'キャンセル待ち')]")

_EMAIL_FIELDS: list[Locator] = [
    (By.XPATH, "//label[contains(., 'メール') or contains(., 'ログイン') or contains(., 'ID')]/following::input[1]"),
    (By.CSS_SELECTOR, "input[placeholder*='メール'], input[placeholder*='mail']"),
    (By.CSS_SELECTOR, "input[type='email']"),
    (By.CSS_SELECTOR, "input[name*='mail'], input[name*='login'], input[name*='user']"),
    (By.CSS_SELECTOR, "form input[type='text']"),
    (By.CSS_SELECTOR, "input:not([type='password']):not([type='hidden'])"),
]
_PASSWORD_FIELD = (By.CSS_SELECTOR, "input[type='password']")
_SUBMIT_BUTTON = (By.CSS_SELECTOR, "button[type='submit'], input[type='submit'], [type='submit']")

_RESERVE_BUTTONS: list[Locator] = [
    (By.CSS_SELECTOR, f"input[value='{RESERVE_LABEL}'], input.reserve_btn, #modal-open"),
    (By.XPATH, f"//button[contains(., '{RESERVE_LABEL}')]"),
]


def start_driver(*, headless: bool) -> webdriver.Chrome:
    options = Options()
    if headless:
        options.add_argument("--headless=new")
    options.add_argument("--disable-gpu")
    options.add_argument("--no-sandbox")
    options.add_argument("--window-size=1280,720")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--lang=ja-JP")

    service = Service(ChromeDriverManager().install())
    return webdriver.Chrome(service=service, options=options)


class SeleniumSession:
    """Drives the reservation site's week calendar with Selenium."""

    def __init__(
        self,
        driver: webdriver.Chrome,
        *,
        base_url: str,
        lesson_name: str,
        wait_seconds: int = 15,
        capture_dir: str = "test-results",
    ) -> None:
        self.driver = driver
        self.base_url = base_url.rstrip("/")
        self.lesson_name = lesson_name
        self.wait_seconds = wait_seconds
        self.capture_dir = capture_dir

    # --- helpers ---

    def _wait(self, seconds: float | None = None) -> WebDriverWait:
        return WebDriverWait(self.driver, seconds if seconds is not None else self.wait_seconds)

    def _clickable(self, locator: Locator, seconds: float = 5) -> WebElement:
        return self._wait(seconds).until(EC.element_to_be_clickable(locator))

    def _visible(self, locator: Locator, seconds: float) -> WebElement | None:
        try:
            return self._wait(seconds).until(EC.visibility_of_element_located(locator))
        except TimeoutException:
            return None

    def _click(self, el: WebElement) -> None:
        try:
            el.click()
        except WebDriverException:
            # Overlays sometimes swallow native clicks.
            self.driver.execute_script("arguments[0].click();", el)

    def _wait_loaded(self) -> None:
        try:
            self._wait().until(lambda d: d.execute_script("return document.readyState") == "complete")
        except TimeoutException:
            logger.debug("Page did not reach readyState=complete in %ss", self.wait_seconds)

    def _click_strategy(self, locator: Locator, seconds: float = 5) -> Callable[[], None]:
        def _do() -> None:
            self._click(self._clickable(locator, seconds))
            self._wait_loaded()

        return _do

    # --- login ---

    def log_in(self, *, login_url: str, email: str, password: str) -> None:
        self.driver.get(login_url)
        self._wait_loaded()

        def _fill(locator: Locator) -> Callable[[], None]:
            def _do() -> None:
                el = self._wait(3).until(EC.visibility_of_element_located(locator))
                el.clear()
                el.send_keys(email)

            return _do

        first_match([_fill(loc) for loc in _EMAIL_FIELDS], what="login email field", on_exhausted=self.capture)

        password_box = self._wait(5).until(EC.visibility_of_element_located(_PASSWORD_FIELD))
        password_box.clear()
        password_box.send_keys(password)

        self._click(self._clickable(_SUBMIT_BUTTON))
        try:
            self._wait(15).until(lambda d: re.search(r"mypage|index\.php", d.current_url) is not None)
        except TimeoutException:
            logger.warning("No redirect after login (url=%s)", self.driver.current_url)

    # --- Session protocol ---

    def current_text(self) -> str:
        try:
            return self.driver.find_element(By.TAG_NAME, "body").get_attribute("textContent") or ""
        except WebDriverException:
            return ""

    def open_calendar(self) -> None:
        lesson = (By.XPATH, f"//a[contains(., '{self.lesson_name}')] | //*[contains(text(), '{self.lesson_name}')]")

        def _via_calendar_page() -> None:
            self.driver.get(self.base_url + CALENDAR_PATH)
            self._wait_loaded()
            if self._visible(_NEXT_WEEK, 2) is None:
                self._click_strategy(lesson, 10)()

        def _via_mypage() -> None:
            self.driver.get(self.base_url + MYPAGE_PATH)
            self._wait_loaded()
            self._click_strategy(_EMPTY_SLOT_LINK, 10)()
            self._click_strategy(lesson, 10)()

        first_match([_via_calendar_page, _via_mypage], what=f"lesson calendar '{self.lesson_name}'", on_exhausted=self.capture)

    def open_slots(self) -> list[SlotRef]:
        return list(range(len(self.driver.find_elements(*_OPEN_CELLS))))

    def open_detail(self, ref: SlotRef) -> str:
        try:
            cells = self.driver.find_elements(*_OPEN_CELLS)
            if ref >= len(cells):
                raise SlotUnavailableError(f"Open slot #{ref} is no longer rendered")
            cell = cells[ref]
            links = cell.find_elements(By.TAG_NAME, "a")
            self._click(links[0] if links else cell)
            self._wait_loaded()
        except WebDriverException as e:
            raise SlotUnavailableError(f"Failed to open slot #{ref} ({type(e).__name__})") from e
        return self.current_text()

    def select_pairing(self) -> None:
        checkbox = (By.XPATH, f"//label[contains(., '{PAIR_LESSON_LABEL}')]//input[@type='checkbox']"
                              f" | //input[@type='checkbox'][@id=//label[contains(., '{PAIR_LESSON_LABEL}')]/@for]")
        label = (By.XPATH, f"//label[contains(., '{PAIR_LESSON_LABEL}')] | //*[contains(text(), '{PAIR_LESSON_LABEL}')]")

        def _check_box() -> None:
            el = self.driver.find_element(*checkbox)
            if not el.is_displayed():
                raise WebDriverException("pair lesson checkbox is hidden")
            if not el.is_selected():
                self._click(el)

        def _click_label() -> None:
            self._click(self._clickable(label, 3))

        first_match([_check_box, _click_label], what="pair lesson option", on_exhausted=self.capture)
        time.sleep(0.3)

    def submit_booking(self) -> None:
        first_match(
            [self._click_strategy(loc) for loc in _RESERVE_BUTTONS],
            what="reserve button",
            on_exhausted=self.capture,
        )

    def await_confirm_prompt(self) -> bool:
        el = self._visible(_CONFIRM_PROMPT_OK, 5)
        if el is None:
            logger.info("Confirmation prompt did not appear")
            return False
        time.sleep(0.6)
        return True

    def confirm_booking(self) -> bool:
        try:
            el = self._clickable(_CONFIRM_PROMPT_OK, 3)
            self.driver.execute_script("arguments[0].scrollIntoView({block: 'center'});", el)
            self._click(el)
        except WebDriverException as e:
            logger.info("Confirm button could not be clicked (%s)", type(e).__name__)
            return False
        self._wait_loaded()
        time.sleep(1.5)
        return True

    def join_waitlist(self) -> bool:
        el = self._visible(_WAITLIST_ACTION, 3)
        if el is None:
            return False
        try:
            self._click(el)
        except WebDriverException as e:
            logger.info("Waitlist action could not be clicked (%s)", type(e).__name__)
            return False
        self._wait_loaded()
        return True

    def go_back(self) -> None:
        el = self._visible(_BACK_LINK, 2)
        try:
            if el is not None:
                self._click(el)
            else:
                self.driver.back()
        except WebDriverException:
            self.driver.back()
        self._wait_loaded()

    def advance_week(self) -> bool:
        el = self._visible(_NEXT_WEEK, 3)
        if el is None:
            return False
        self._click(el)
        time.sleep(0.8)
        return True

    def capture(self, label: str) -> None:
        os.makedirs(self.capture_dir, exist_ok=True)
        name = re.sub(r"[^A-Za-z0-9_-]+", "_", label).strip("_") or "capture"
        base = os.path.join(self.capture_dir, f"{name}_{int(time.time())}")
        try:
            self.driver.save_screenshot(base + ".png")
            with open(base + ".html", "w", encoding="utf-8") as f:
                f.write(self.driver.page_source)
            logger.info("Saved diagnostics to %s.png/html", base)
        except Exception:
            logger.warning("Failed to save diagnostics for %s", label, exc_info=True)
