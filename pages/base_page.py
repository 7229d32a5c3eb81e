# Shared page-object helpers for navigation, element readiness and common interactions.
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from playwright.sync_api import (
    ElementHandle,
    Locator,
    Page,
)
from playwright.sync_api import (
    TimeoutError as PlaywrightTimeoutError,
)
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from metrics import ReadinessStats
from pages.errors import ElementNotFoundError, StaleElementError, driver_errors, is_stale_error
from pages.waits import INVISIBILITY_POLICY, VISIBILITY_POLICY, WaitPolicy

LOGGER = logging.getLogger("qa.pages")

CLICK_ATTEMPTS = 3
HINT_TEXT_MISMATCH = "Hint Text isn't expected"


class Presence(enum.Enum):
    PRESENT = "present"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class PresenceResult:
    """Outcome of a presence probe; truthy only when the element is displayed."""

    presence: Presence
    error: BaseException | None = None

    def __bool__(self) -> bool:
        return self.presence is Presence.PRESENT


class BasePage:
    """Base class for page objects that tolerates slow or re-rendered elements.

    Waits poll under a `WaitPolicy` and degrade to a logged soft failure on
    timeout; only genuine assertion mismatches and unclassified driver errors
    reach the test.
    """

    def __init__(
        self,
        page: Page,
        base_url: str,
        timeout_ms: int = 10_000,
        visibility_policy: WaitPolicy = VISIBILITY_POLICY,
        invisibility_policy: WaitPolicy = INVISIBILITY_POLICY,
        stats: ReadinessStats | None = None,
    ) -> None:
        self.page = page
        self.base_url = base_url
        self.timeout_ms = timeout_ms
        self.visibility_policy = visibility_policy
        self.invisibility_policy = invisibility_policy
        self.stats = stats if stats is not None else ReadinessStats()

    # Navigation

    def load(self) -> None:
        """Navigate to base_url, retrying once for transient environment slowness."""
        url = self.get_page_url()
        LOGGER.info("page_load", extra={"event": "page_load", "url": url})
        try:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)
        except PlaywrightTimeoutError:
            self.page.goto(url, wait_until="domcontentloaded", timeout=self.timeout_ms)

    def get_page_url(self) -> str:
        return self.base_url

    def refresh_page(self) -> None:
        self.page.reload(wait_until="domcontentloaded", timeout=self.timeout_ms)

    # Resolution

    def find(self, selector: str) -> ElementHandle | None:
        return self.page.query_selector(selector)

    def find_all(self, selector: str) -> list[ElementHandle]:
        return self.page.query_selector_all(selector)

    # Waits

    def wait_for_visibility(self, element: ElementHandle) -> ElementHandle | None:
        """Wait until the element is displayed; return None when it never shows up."""
        try:
            self.visibility_policy.until(
                lambda: self._is_visible(element), description="element visibility"
            )
        except ElementNotFoundError:
            self.stats.record("visibility_timeouts")
            LOGGER.warning(
                "wait_for_visibility_timeout",
                extra={"event": "wait_timeout", "timeout_s": self.visibility_policy.timeout_s},
                exc_info=True,
            )
            return None
        return element

    def wait_for_invisibility(self, locator: Locator) -> None:
        """Wait until nothing matching the locator is visible; never fails."""
        try:
            self.invisibility_policy.until(
                lambda: self._nothing_visible(locator), description="element invisibility"
            )
        except ElementNotFoundError:
            self.stats.record("invisibility_timeouts")
            LOGGER.warning(
                "wait_for_invisibility_timeout",
                extra={"event": "wait_timeout", "timeout_s": self.invisibility_policy.timeout_s},
                exc_info=True,
            )

    def wait_for_clickable(self, element: ElementHandle) -> ElementHandle:
        """Best effort: the element is returned even if it never became clickable."""
        self.wait_for_visibility(element)
        try:
            self.visibility_policy.until(
                lambda: self._is_clickable(element), description="element clickability"
            )
        except ElementNotFoundError:
            self.stats.record("clickable_timeouts")
            LOGGER.warning(
                "wait_for_clickable_timeout",
                extra={"event": "wait_timeout", "timeout_s": self.visibility_policy.timeout_s},
                exc_info=True,
            )
        return element

    # Interactions

    def click(self, element: ElementHandle) -> bool:
        """Click once the element is ready, re-trying when the node goes stale mid-click.

        Returns False if every attempt hit a stale reference.
        """
        retrying = Retrying(
            stop=stop_after_attempt(CLICK_ATTEMPTS),
            retry=retry_if_exception_type(StaleElementError),
            before_sleep=self._on_stale_click,
            retry_error_callback=self._on_click_exhausted,
        )
        return retrying(self._click_once, element)

    def send_keys(self, element: ElementHandle, text: str) -> None:
        self.wait_for_clickable(element)
        with driver_errors():
            element.fill("")
            element.type(text)

    def is_element_present(self, element: ElementHandle) -> bool:
        return bool(self.element_presence(element))

    def element_presence(self, element: ElementHandle) -> PresenceResult:
        """Probe visibility without raising, keeping the reason for an absence."""
        try:
            displayed = element.is_visible()
        except Exception as exc:
            if is_stale_error(exc):
                return PresenceResult(Presence.NOT_FOUND, exc)
            return PresenceResult(Presence.ERROR, exc)
        return PresenceResult(Presence.PRESENT if displayed else Presence.NOT_FOUND)

    def select_custom_dropdown(
        self,
        trigger: ElementHandle,
        options: Iterable[ElementHandle],
        text_to_select: str,
    ) -> bool:
        """Open a non-native dropdown and click the first option whose text matches.

        Matching is exact but case-insensitive. Returns False when no option
        matched; nothing else is clicked in that case.
        """
        with driver_errors():
            self.wait_for_clickable(trigger).click()
        wanted = text_to_select.lower()
        for option in options:
            with driver_errors():
                label = self.wait_for_clickable(option).inner_text().strip()
                if label.lower() == wanted:
                    option.click()
                    return True
        LOGGER.info(
            "dropdown_option_not_found",
            extra={"event": "dropdown_option_not_found", "text": text_to_select},
        )
        return False

    def move_mouse_cursor_to_element(self, element: ElementHandle) -> None:
        self.wait_for_clickable(element)
        with driver_errors():
            element.hover()

    def scroll_to_element(self, element: ElementHandle) -> ElementHandle:
        # Keeps targets clear of the fixed header and the transient error banner.
        self.execute_js("el => el.scrollIntoView(true)", element)
        return element

    def execute_js(self, script: str, *params: Any) -> Any:
        """Evaluate a Playwright expression on the current page.

        A single param is passed as the expression argument; several are
        passed together as one list.
        """
        if not params:
            return self.page.evaluate(script)
        if len(params) == 1:
            return self.page.evaluate(script, params[0])
        return self.page.evaluate(script, list(params))

    def get_value_from_element(self, element: ElementHandle) -> str:
        value = self.execute_js("el => el.value", element)
        return "" if value is None else str(value)

    def switch_to_newly_opened_tab(self, known_pages: Sequence[Page] | None = None) -> Page:
        """Make the most recently opened tab current and return it.

        Relies on `BrowserContext.pages` listing tabs in the order they were
        opened. Pass the pages seen before the tab was opened to select by
        difference instead.
        """
        pages = list(self.page.context.pages)
        if known_pages is not None:
            pages = [candidate for candidate in pages if candidate not in known_pages]
        if not pages:
            raise ElementNotFoundError("No newly opened tab found")
        new_page = pages[-1]
        new_page.bring_to_front()
        # Popups may still be navigating; evaluating too early loses the execution context.
        new_page.wait_for_load_state("domcontentloaded")
        screen = new_page.evaluate(
            "() => ({width: window.screen.availWidth, height: window.screen.availHeight})"
        )
        new_page.set_viewport_size({"width": screen["width"], "height": screen["height"]})
        self.page = new_page
        LOGGER.info("switched_tab", extra={"event": "switched_tab", "url": new_page.url})
        return new_page

    def verify_field_error_notifier(
        self,
        container: ElementHandle,
        flyout: ElementHandle,
        reason: str,
    ) -> None:
        """Hover the field error marker and assert the fly-out shows `reason`."""
        self.scroll_to_element(container)
        self.wait_for_clickable(container)
        self.move_mouse_cursor_to_element(container)
        self.wait_for_visibility(flyout)
        with driver_errors():
            actual = flyout.inner_text()
        if actual != reason:
            raise AssertionError(HINT_TEXT_MISMATCH)

    # Internals

    def _click_once(self, element: ElementHandle) -> bool:
        ready = self.wait_for_clickable(element)
        with driver_errors():
            ready.click()
        return True

    def _on_stale_click(self, retry_state: RetryCallState) -> None:
        self.stats.record("stale_click_retries")
        LOGGER.info(
            "stale_click_retry",
            extra={"event": "stale_click_retry", "attempt": retry_state.attempt_number},
        )

    def _on_click_exhausted(self, retry_state: RetryCallState) -> bool:
        self.stats.record("failed_clicks")
        LOGGER.warning(
            "click_failed_stale",
            extra={"event": "click_failed_stale", "attempts": retry_state.attempt_number},
        )
        return False

    @staticmethod
    def _is_visible(element: ElementHandle) -> bool:
        with driver_errors():
            return element.is_visible()

    @staticmethod
    def _is_clickable(element: ElementHandle) -> bool:
        with driver_errors():
            return element.is_visible() and element.is_enabled()

    @staticmethod
    def _nothing_visible(locator: Locator) -> bool:
        with driver_errors():
            count = locator.count()
            return not any(locator.nth(index).is_visible() for index in range(count))
