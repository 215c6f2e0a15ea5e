"""Shared fakes and utilities for unit tests."""

from __future__ import annotations
from tracking import t

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from automation.driver.protocol import DriverResult
from automation.shared.errors import MailConnectionError
from automation.shared.reservation_contracts import (
    ReservationConfig,
    UserProfile,
    VerificationEmail,
    Weekday,
)
from infrastructure.constants import MailConstants
from reservations.state_machine import RunTimings

FACILITY_URL = "https://reservation.frontdesksuite.ca/rcfs/richcraftkanata"


class DummyLogger:
    """Lightweight stand-in for ``logging.Logger`` that records calls."""

    def __init__(self) -> None:
        t('tests.helpers.DummyLogger.__init__')
        self.records: List[Tuple[str, Tuple[Any, ...], Dict[str, Any]]] = []

    def _record(self, level: str, *args: Any, **kwargs: Any) -> None:
        self.records.append((level, args, kwargs))

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self._record("debug", *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self._record("info", *args, **kwargs)

    def warning(self, *args: Any, **kwargs: Any) -> None:
        self._record("warning", *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self._record("error", *args, **kwargs)

    @property
    def messages(self) -> List[Tuple[str, str]]:
        """Formatted ``(level, message)`` pairs for quick assertions."""
        formatted: List[Tuple[str, str]] = []
        for level, args, _ in self.records:
            template = args[0] if args else ""
            try:
                message = template % args[1:] if len(args) > 1 else str(template)
            except (TypeError, ValueError):
                message = str(template)
            formatted.append((level, message))
        return formatted


def make_config(
    name: str = "Kanata Volleyball",
    *,
    config_id: Optional[str] = None,
    facility_url: str = FACILITY_URL,
    sport: str = "Volleyball - adult",
    slots: Optional[Dict[Any, Iterable[Any]]] = None,
    people: int = 1,
    enabled: bool = True,
) -> ReservationConfig:
    return ReservationConfig.create(
        name,
        facility_url,
        sport,
        slots if slots is not None else {Weekday.SATURDAY: ["18:00"]},
        number_of_people=people,
        is_enabled=enabled,
        config_id=config_id or name.lower().replace(" ", "-"),
    )


def make_profile(**overrides: Any) -> UserProfile:
    values = dict(
        name="Sam Player",
        phone_number="613-555-0123",
        email="sam@example.org",
        imap_password="secret",
        imap_server="imap.example.org",
    )
    values.update(overrides)
    return UserProfile(**values)


def fast_timings(**overrides: Any) -> RunTimings:
    """Timings small enough for unit tests."""
    timings = RunTimings(
        page_load_timeout=0.1,
        group_size_timeout=0.1,
        contact_info_timeout=0.1,
        after_confirm_click=0,
        verification_settle=0,
        code_submit_settle=0,
        verification_initial_wait=0,
        verification_timeout=0.3,
        verification_poll_interval=0.01,
        completion_timeout=0.05,
        completion_poll_interval=0.01,
        captcha_max_attempts=3,
        captcha_retry_pause=(0, 0),
        captcha_click_pause=(0, 0),
        run_timeout=5.0,
    )
    return replace(timings, **overrides)


class FakeDriver:
    """Scripted :class:`PageAutomationDriver` that records every call.

    ``failures`` maps a method name to the detail of a failing result,
    ``errors`` maps a method name to an exception to raise.
    ``fill_failures`` makes the first fills of the code field fail.
    """

    def __init__(
        self,
        *,
        failures: Optional[Dict[str, str]] = None,
        errors: Optional[Dict[str, BaseException]] = None,
        retry_pages: int = 0,
        verification_required: bool = False,
        accepted_codes: Iterable[str] = (),
        fill_failures: int = 0,
        complete: bool = True,
        step_delay: float = 0.0,
        hang_on: Optional[str] = None,
    ) -> None:
        t('tests.helpers.FakeDriver.__init__')
        self.failures = failures or {}
        self.errors = errors or {}
        self.retry_pages = retry_pages
        self.verification_required = verification_required
        self.accepted_codes: Set[str] = set(accepted_codes)
        self.fill_failures = fill_failures
        self.complete = complete
        self.step_delay = step_delay
        self.hang_on = hang_on

        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.submitted_codes: List[str] = []
        self.connected = False
        self.disconnected = False
        self.on_verification_page = False

    async def _call(self, name: str, *args: Any) -> DriverResult:
        self.calls.append((name, args))
        if self.step_delay:
            await asyncio.sleep(self.step_delay)
        if name == self.hang_on:
            await asyncio.sleep(3600)
        if name in self.errors:
            raise self.errors[name]
        if name in self.failures:
            return DriverResult.fail(self.failures[name], page_text=f"{name} page")
        return DriverResult.ok(name)

    def called(self, name: str) -> int:
        return sum(1 for call, _ in self.calls if call == name)

    async def connect(self) -> DriverResult:
        result = await self._call("connect")
        self.connected = bool(result)
        return result

    async def navigate_to_url(self, url: str) -> DriverResult:
        return await self._call("navigate_to_url", url)

    async def wait_for_dom_ready(self, timeout: float) -> DriverResult:
        return await self._call("wait_for_dom_ready", timeout)

    async def find_and_click_element(self, *, selector: Optional[str] = None, text: Optional[str] = None) -> DriverResult:
        return await self._call("find_and_click_element", selector, text)

    async def type_text(self, text: str, selector: str) -> DriverResult:
        return await self._call("type_text", text, selector)

    async def wait_for_group_size_page(self, timeout: float) -> DriverResult:
        return await self._call("wait_for_group_size_page", timeout)

    async def fill_number_of_people(self, count: int) -> DriverResult:
        return await self._call("fill_number_of_people", count)

    async def click_confirm_button(self) -> DriverResult:
        return await self._call("click_confirm_button")

    async def select_time_slot(self, day: str, time: str) -> DriverResult:
        return await self._call("select_time_slot", day, time)

    async def wait_for_contact_info_page(self, timeout: float) -> DriverResult:
        return await self._call("wait_for_contact_info_page", timeout)

    async def fill_contact_info(self, phone: str, email: str, name: str) -> DriverResult:
        return await self._call("fill_contact_info", phone, email, name)

    async def detect_retry_text(self) -> bool:
        await self._call("detect_retry_text")
        if self.retry_pages > 0:
            self.retry_pages -= 1
            return True
        return False

    async def simulate_human_activity(self) -> None:
        await self._call("simulate_human_activity")

    async def is_email_verification_required(self) -> bool:
        await self._call("is_email_verification_required")
        self.on_verification_page = self.verification_required
        return self.verification_required

    async def fill_verification_code(self, code: str) -> DriverResult:
        result = await self._call("fill_verification_code", code)
        if result and self.fill_failures > 0:
            self.fill_failures -= 1
            return DriverResult.fail("verification field not found", page_text="Check your email")
        if result:
            self.submitted_codes.append(code)
            if code in self.accepted_codes:
                self.on_verification_page = False
        return result

    async def clear_verification_code(self) -> DriverResult:
        return await self._call("clear_verification_code")

    async def is_still_on_verification_page(self) -> bool:
        await self._call("is_still_on_verification_page")
        return self.on_verification_page

    async def check_reservation_complete(self) -> DriverResult:
        await self._call("check_reservation_complete")
        if self.complete and not self.on_verification_page:
            return DriverResult.ok("is now confirmed", page_text="Your reservation is now confirmed")
        return DriverResult.fail("no confirmation marker", page_text="Please wait")

    async def capture_screenshot(self, path: str) -> Optional[str]:
        self.calls.append(("capture_screenshot", (path,)))
        return path

    async def disconnect(self, close_window: bool = True) -> None:
        self.calls.append(("disconnect", (close_window,)))
        self.disconnected = True


class FakeMailbox:
    """In-memory mailbox; every queued code is reported as just received."""

    def __init__(self, codes: Iterable[str] = (), *, failures: int = 0, authentication_failure: bool = False) -> None:
        t('tests.helpers.FakeMailbox.__init__')
        self.codes: List[str] = list(codes)
        self.messages: List[VerificationEmail] = []
        self.failures = failures
        self.authentication_failure = authentication_failure
        self.searches = 0
        self.closed = False

    def deliver(self, code: str) -> None:
        self.codes.append(code)

    def add_message(self, body: str, received_at: datetime, *, sender: str = MailConstants.SENDER,
                    subject: str = MailConstants.SUBJECT) -> None:
        self.messages.append(VerificationEmail(sender, subject, body, received_at))

    async def search(self, sender: str, subject: str, since: datetime) -> List[VerificationEmail]:
        self.searches += 1
        if self.authentication_failure:
            raise MailConnectionError("LOGIN failed", authentication=True)
        if self.failures > 0:
            self.failures -= 1
            raise MailConnectionError("connection reset")
        now = datetime.now(timezone.utc)
        fresh = [
            VerificationEmail(sender, subject, f"Your verification code is: {code}.", now)
            for code in self.codes
        ]
        return fresh + list(self.messages)

    async def close(self) -> None:
        self.closed = True
