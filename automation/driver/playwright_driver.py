"""Playwright implementation of :class:`PageAutomationDriver`.

One instance owns one Chromium browser, context and page. The state machine
creates a driver per run and always calls :meth:`disconnect` when it ends.
"""

from __future__ import annotations
from tracking import t

import logging
from pathlib import Path
from typing import Iterable, Optional

from playwright.async_api import Browser, BrowserContext, Locator, Page, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from automation.driver.human_behaviors import HumanLikeActions
from automation.driver.protocol import DriverResult
from infrastructure.constants import (
    BROWSER_LAUNCH_ARGS,
    BROWSER_LOCALE,
    BROWSER_USER_AGENT,
    BROWSER_VIEWPORT,
    CONFIRMATION_MARKERS,
    DEFAULT_TIMEZONE,
    PageTimeouts,
    RETRY_PAGE_MARKERS,
    Selectors,
    VERIFICATION_ERROR_MARKERS,
    VERIFICATION_PAGE_MARKERS,
)

STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-CA', 'en'] });
    window.chrome = { runtime: {} };
"""

# Mirrors the confirmation page markers: dedicated class, <h1>Confirmation</h1>
# or a paragraph stating the booking is now confirmed.
CONFIRMATION_PROBE = """
() => {
    if (document.querySelector('%s')) {
        return 'confirmed_reservation_class';
    }
    const h1s = Array.from(document.querySelectorAll('h1'));
    if (h1s.some(h => h.textContent.trim().toLowerCase() === 'confirmation')) {
        return 'h1_confirmation';
    }
    const ps = Array.from(document.querySelectorAll('p'));
    if (ps.some(p => p.textContent.toLowerCase().includes('%s'))) {
        return 'p_is_now_confirmed';
    }
    return '';
}
""" % (Selectors.CONFIRMED_RESERVATION, CONFIRMATION_MARKERS[0])


def _ms(seconds: float) -> float:
    return max(0.0, seconds) * 1000


class PlaywrightPageDriver:
    """Chromium session driving the facility reservation pages."""

    def __init__(
        self,
        *,
        headless: bool = True,
        timezone_id: str = DEFAULT_TIMEZONE,
        human_speed: float = 1.0,
        logger: Optional[logging.Logger] = None,
        session_label: str = "",
    ) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.__init__')
        self.headless = headless
        self.timezone_id = timezone_id
        self.human_speed = human_speed
        self.logger = logger or logging.getLogger('PlaywrightPageDriver')
        self.session_label = session_label
        self.playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None
        self.page: Optional[Page] = None
        self.human: Optional[HumanLikeActions] = None

    @property
    def is_connected(self) -> bool:
        return self.page is not None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------
    async def connect(self) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.connect')
        if self.page is not None:
            return DriverResult.ok("already connected")
        try:
            self.playwright = await async_playwright().start()
            self.browser = await self.playwright.chromium.launch(
                headless=self.headless,
                args=list(BROWSER_LAUNCH_ARGS),
            )
            self.context = await self.browser.new_context(
                viewport=dict(BROWSER_VIEWPORT),
                user_agent=BROWSER_USER_AGENT,
                locale=BROWSER_LOCALE,
                timezone_id=self.timezone_id,
            )
            self.page = await self.context.new_page()
            await self.page.add_init_script(STEALTH_INIT_SCRIPT)
            self.human = HumanLikeActions(self.page, speed_multiplier=self.human_speed)
        except PlaywrightError as exc:
            self.logger.error("❌ %s browser launch failed: %s", self.session_label, exc)
            await self.disconnect()
            return DriverResult.fail(str(exc))
        self.logger.info("✅ %s browser session ready (headless=%s)", self.session_label, self.headless)
        return DriverResult.ok()

    async def disconnect(self, close_window: bool = True) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.disconnect')
        # A visible window may be left open for inspection; the Playwright
        # connection is always released.
        closers = []
        if close_window or self.headless:
            closers.extend([self.context, self.browser])
        for resource in closers:
            if resource is None:
                continue
            try:
                await resource.close()
            except PlaywrightError as exc:
                self.logger.debug("%s close failed: %s", self.session_label, exc)
        if self.playwright is not None and (close_window or self.headless):
            try:
                await self.playwright.stop()
            except PlaywrightError as exc:
                self.logger.debug("%s playwright stop failed: %s", self.session_label, exc)
        self.page = None
        self.context = None
        self.browser = None
        self.playwright = None
        self.human = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _require_page(self) -> Page:
        t('automation.driver.playwright_driver.PlaywrightPageDriver._require_page')
        if self.page is None:
            raise PlaywrightError("Browser session is not connected")
        return self.page

    async def _body_text(self) -> str:
        t('automation.driver.playwright_driver.PlaywrightPageDriver._body_text')
        try:
            return await self._require_page().inner_text("body", timeout=_ms(5))
        except PlaywrightError:
            return ""

    async def _first_visible(self, selectors: Iterable[str]) -> Optional[Locator]:
        t('automation.driver.playwright_driver.PlaywrightPageDriver._first_visible')
        page = self._require_page()
        for selector in selectors:
            locator = page.locator(selector).first
            try:
                if await locator.count() and await locator.is_visible():
                    return locator
            except PlaywrightError:
                continue
        return None

    async def _wait_for_any(self, selectors: Iterable[str], timeout: float) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver._wait_for_any')
        combined = ", ".join(selectors)
        try:
            await self._require_page().wait_for_selector(combined, state="visible", timeout=_ms(timeout))
        except PlaywrightTimeoutError:
            return DriverResult.fail(f"timed out waiting for {combined}", await self._body_text())
        return DriverResult.ok()

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------
    async def navigate_to_url(self, url: str) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.navigate_to_url')
        try:
            response = await self._require_page().goto(
                url, wait_until="domcontentloaded", timeout=_ms(PageTimeouts.PAGE_LOAD)
            )
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        if response is not None and response.status >= 400:
            return DriverResult.fail(f"HTTP {response.status}", await self._body_text())
        return DriverResult.ok(url)

    async def wait_for_dom_ready(self, timeout: float) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.wait_for_dom_ready')
        try:
            await self._require_page().wait_for_function(
                "document.readyState === 'complete' || document.readyState === 'interactive'",
                timeout=_ms(timeout),
            )
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return DriverResult.ok()

    # ------------------------------------------------------------------
    # Generic element actions
    # ------------------------------------------------------------------
    async def find_and_click_element(
        self, *, selector: Optional[str] = None, text: Optional[str] = None
    ) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.find_and_click_element')
        page = self._require_page()
        if selector:
            candidates = [page.locator(selector).first]
        elif text:
            candidates = [
                page.get_by_text(text, exact=True).first,
                page.get_by_text(text).first,
            ]
        else:
            return DriverResult.fail("selector or text required")

        for locator in candidates:
            try:
                await locator.wait_for(state="visible", timeout=_ms(PageTimeouts.PAGE_LOAD / 3))
                await self.human.click_like_a_person(locator)
                return DriverResult.ok(selector or text or "")
            except PlaywrightError:
                continue
        return DriverResult.fail(f"element not found: {selector or text}", await self._body_text())

    async def type_text(self, text: str, selector: str) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.type_text')
        locator = await self._first_visible([selector])
        if locator is None:
            return DriverResult.fail(f"field not found: {selector}")
        try:
            await self.human.type_text(locator, text)
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return DriverResult.ok(selector)

    # ------------------------------------------------------------------
    # Reservation form steps
    # ------------------------------------------------------------------
    async def wait_for_group_size_page(self, timeout: float) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.wait_for_group_size_page')
        return await self._wait_for_any(Selectors.NUMBER_OF_PEOPLE, timeout)

    async def fill_number_of_people(self, count: int) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.fill_number_of_people')
        locator = await self._first_visible(Selectors.NUMBER_OF_PEOPLE)
        if locator is None:
            return DriverResult.fail("number of people field not found", await self._body_text())
        try:
            await self.human.type_text(locator, str(count))
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return DriverResult.ok(str(count))

    async def click_confirm_button(self) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.click_confirm_button')
        locator = await self._first_visible(Selectors.CONFIRM_BUTTON)
        if locator is None:
            return DriverResult.fail("confirm button not found", await self._body_text())
        try:
            await self.human.click_like_a_person(locator)
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return DriverResult.ok()

    async def select_time_slot(self, day: str, time: str) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.select_time_slot')
        page = self._require_page()
        header = page.locator(Selectors.DAY_HEADER, has_text=day).first
        try:
            if await header.count():
                await header.scroll_into_view_if_needed()
                await self.human.click_like_a_person(header)
                await self.human.quick_pause()
        except PlaywrightError as exc:
            self.logger.debug("%s day header %s not clickable: %s", self.session_label, day, exc)

        slot = page.locator(f"[aria-label*='{time} {day}']").first
        try:
            await slot.wait_for(state="visible", timeout=_ms(PageTimeouts.CONTACT_INFO_PAGE))
            await slot.scroll_into_view_if_needed()
            await self.human.click_like_a_person(slot)
        except PlaywrightError:
            return DriverResult.fail(f"slot {day} {time} not found", await self._body_text())
        return DriverResult.ok(f"{day} {time}")

    async def wait_for_contact_info_page(self, timeout: float) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.wait_for_contact_info_page')
        return await self._wait_for_any([*Selectors.PHONE, *Selectors.EMAIL], timeout)

    async def fill_contact_info(self, phone: str, email: str, name: str) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.fill_contact_info')
        for label, selectors, value in (
            ("phone", Selectors.PHONE, phone),
            ("email", Selectors.EMAIL, email),
            ("name", Selectors.NAME, name),
        ):
            locator = await self._first_visible(selectors)
            if locator is None:
                return DriverResult.fail(f"{label} field not found", await self._body_text())
            try:
                await self.human.type_text(locator, value)
            except PlaywrightError as exc:
                return DriverResult.fail(f"{label}: {exc}")
        return DriverResult.ok()

    # ------------------------------------------------------------------
    # Page state checks
    # ------------------------------------------------------------------
    async def detect_retry_text(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.detect_retry_text')
        text = (await self._body_text()).lower()
        return any(marker in text for marker in RETRY_PAGE_MARKERS)

    async def simulate_human_activity(self) -> None:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.simulate_human_activity')
        if self.human is not None:
            await self.human.retry_page_interaction()

    async def is_email_verification_required(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_email_verification_required')
        text = (await self._body_text()).lower()
        if not any(marker in text for marker in VERIFICATION_PAGE_MARKERS):
            return False
        return await self._first_visible(Selectors.VERIFICATION_CODE) is not None

    async def fill_verification_code(self, code: str) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.fill_verification_code')
        locator = await self._first_visible(Selectors.VERIFICATION_CODE)
        if locator is None:
            return DriverResult.fail("verification code field not found", await self._body_text())
        try:
            await self.human.type_text(locator, code)
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return await self.click_confirm_button()

    async def clear_verification_code(self) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.clear_verification_code')
        locator = await self._first_visible(Selectors.VERIFICATION_CODE)
        if locator is None:
            return DriverResult.fail("verification code field not found")
        try:
            await locator.fill("")
        except PlaywrightError as exc:
            return DriverResult.fail(str(exc))
        return DriverResult.ok()

    async def _confirmation_reason(self) -> str:
        t('automation.driver.playwright_driver.PlaywrightPageDriver._confirmation_reason')
        try:
            return await self._require_page().evaluate(CONFIRMATION_PROBE) or ""
        except PlaywrightError:
            return ""

    async def is_still_on_verification_page(self) -> bool:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.is_still_on_verification_page')
        if await self._confirmation_reason():
            return False
        text = (await self._body_text()).lower()
        if any(marker in text for marker in VERIFICATION_ERROR_MARKERS):
            return True
        if await self._first_visible(Selectors.VERIFICATION_CODE) is not None:
            return True
        return any(marker in text for marker in VERIFICATION_PAGE_MARKERS)

    async def check_reservation_complete(self) -> DriverResult:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.check_reservation_complete')
        reason = await self._confirmation_reason()
        text = await self._body_text()
        if reason:
            return DriverResult.ok(reason, text[:1000])
        return DriverResult.fail("no confirmation marker", text[:1000])

    async def capture_screenshot(self, path: str) -> Optional[str]:
        t('automation.driver.playwright_driver.PlaywrightPageDriver.capture_screenshot')
        if self.page is None:
            return None
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            await self.page.screenshot(path=str(target), full_page=True)
        except PlaywrightError as exc:
            self.logger.warning("⚠️ %s screenshot failed: %s", self.session_label, exc)
            return None
        return str(target)


__all__ = ["PlaywrightPageDriver", "STEALTH_INIT_SCRIPT"]
