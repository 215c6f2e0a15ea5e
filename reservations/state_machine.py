"""Per-run reservation state machine.

A run walks the facility form one driver call at a time:

    connecting -> navigating -> DOM ready -> sport -> group size page ->
    group size -> confirm -> time slot -> contact page -> contact info ->
    contact confirm -> [retry page loop] -> [email verification loop] ->
    completion check -> success

Any step may end the run as failed; a cancellation token ends it as stopped.
The browser session is released when the run ends, whatever the outcome.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Protocol, Tuple

from automation.driver.protocol import DriverResult, PageAutomationDriver
from automation.shared.errors import (
    CaptchaRetryExhaustedError,
    EmailVerificationFailedError,
    ReservationError,
    ReservationErrorKind,
    RunCancelledError,
)
from automation.shared.reservation_contracts import (
    ReservationConfig,
    RunState,
    RunStatus,
    RunType,
    TimeSlot,
    UserProfile,
    Weekday,
)
from infrastructure.constants import MailConstants, PageTimeouts, RunLimits, mask_code
from infrastructure.settings import AppSettings


class RunStep(Enum):
    CONNECTING = "connecting"
    NAVIGATING_TO_FACILITY = "navigating_to_facility"
    WAITING_DOM_READY = "waiting_dom_ready"
    SELECTING_SPORT = "selecting_sport"
    WAITING_GROUP_SIZE_PAGE = "waiting_group_size_page"
    FILLING_GROUP_SIZE = "filling_group_size"
    CLICKING_CONFIRM = "clicking_confirm"
    SELECTING_TIME_SLOT = "selecting_time_slot"
    WAITING_CONTACT_INFO_PAGE = "waiting_contact_info_page"
    FILLING_CONTACT_INFO = "filling_contact_info"
    CLICKING_CONTACT_CONFIRM = "clicking_contact_confirm"
    CAPTCHA_RETRY_LOOP = "captcha_retry_loop"
    EMAIL_VERIFICATION_LOOP = "email_verification_loop"
    WAITING_COMPLETION = "waiting_completion"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"


class CodeSource(Protocol):
    """Supplies verification codes for a run, e.g. :class:`mail.code_pool.VerificationCodePool`."""

    def fetch_codes(self, instance_id: str, since: datetime) -> Awaitable[List[str]]: ...

    def mark_consumed(self, instance_id: str, code: str) -> None: ...

    def release(self, instance_id: str) -> None: ...


class CancellationToken:
    """Cooperative stop signal checked before every driver call and inside every wait."""

    def __init__(self) -> None:
        t('reservations.state_machine.CancellationToken.__init__')
        self._event = asyncio.Event()

    def cancel(self) -> None:
        t('reservations.state_machine.CancellationToken.cancel')
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        t('reservations.state_machine.CancellationToken.raise_if_cancelled')
        if self._event.is_set():
            raise RunCancelledError("Run stopped")

    async def sleep(self, seconds: float) -> None:
        """Sleep up to ``seconds``; raise :class:`RunCancelledError` as soon as cancelled."""
        t('reservations.state_machine.CancellationToken.sleep')
        self.raise_if_cancelled()
        if seconds <= 0:
            await asyncio.sleep(0)
        else:
            try:
                await asyncio.wait_for(self._event.wait(), timeout=seconds)
            except asyncio.TimeoutError:
                pass
        self.raise_if_cancelled()


@dataclass(frozen=True)
class RunTimings:
    """Waits and bounds applied inside one run (seconds unless noted)."""

    page_load_timeout: float = PageTimeouts.PAGE_LOAD
    group_size_timeout: float = PageTimeouts.GROUP_SIZE_PAGE
    contact_info_timeout: float = PageTimeouts.CONTACT_INFO_PAGE
    after_confirm_click: float = PageTimeouts.AFTER_CONFIRM_CLICK
    verification_settle: float = PageTimeouts.VERIFICATION_SETTLE
    code_submit_settle: float = PageTimeouts.CODE_SUBMIT_SETTLE
    verification_initial_wait: float = MailConstants.INITIAL_WAIT_SECONDS
    verification_timeout: float = RunLimits.VERIFICATION_TIMEOUT
    verification_poll_interval: float = RunLimits.VERIFICATION_POLL_INTERVAL
    completion_timeout: float = PageTimeouts.PAGE_LOAD
    completion_poll_interval: float = PageTimeouts.ELEMENT_POLL_INTERVAL
    captcha_max_attempts: int = RunLimits.CAPTCHA_MAX_ATTEMPTS
    captcha_retry_pause: Tuple[float, float] = RunLimits.CAPTCHA_RETRY_PAUSE
    captcha_click_pause: Tuple[float, float] = RunLimits.CAPTCHA_CLICK_PAUSE
    run_timeout: float = RunLimits.RUN_TIMEOUT

    @classmethod
    def from_settings(cls, settings: AppSettings) -> "RunTimings":
        return cls(
            page_load_timeout=settings.page_load_timeout,
            completion_timeout=settings.page_load_timeout,
            verification_timeout=settings.verification_timeout,
            verification_poll_interval=settings.verification_poll_interval,
            captcha_max_attempts=settings.captcha_max_attempts,
            run_timeout=settings.run_timeout,
        )


@dataclass
class RunOutcome:
    """What happened to one run."""

    config_id: str
    config_name: str
    instance_id: str
    status: RunStatus
    final_step: RunStep
    steps: List[RunStep] = field(default_factory=list)
    elapsed: float = 0.0
    captcha_retries: int = 0
    codes_tried: int = 0
    screenshot: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status.state is RunState.SUCCESS


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStateMachine:
    """Sequences driver calls for one config into a complete booking."""

    def __init__(
        self,
        config: ReservationConfig,
        profile: UserProfile,
        driver: PageAutomationDriver,
        code_source: CodeSource,
        *,
        token: Optional[CancellationToken] = None,
        run_type: RunType = RunType.MANUAL,
        target_day: Optional[Weekday] = None,
        timings: Optional[RunTimings] = None,
        instance_id: Optional[str] = None,
        screenshot_dir: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('reservations.state_machine.RunStateMachine.__init__')
        self.config = config
        self.profile = profile
        self.driver = driver
        self.code_source = code_source
        self.token = token or CancellationToken()
        self.run_type = run_type
        self.target_day = target_day
        self.timings = timings or RunTimings()
        self.instance_id = instance_id or f"{config.config_id[:8]}-{uuid.uuid4().hex[:8]}"
        self.screenshot_dir = screenshot_dir
        self.clock = clock
        self.logger = logger or logging.getLogger('RunStateMachine')

        self.step: Optional[RunStep] = None
        self.steps: List[RunStep] = []
        self.captcha_retries = 0
        self.codes_tried = 0
        self.session_released = False
        self._started_at = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def run(self) -> RunOutcome:
        """Execute the booking flow and return its outcome; never raises for run failures."""
        t('reservations.state_machine.RunStateMachine.run')
        loop = asyncio.get_running_loop()
        self._started_at = loop.time()
        status = RunStatus.failed(ReservationErrorKind.UNKNOWN.message, ReservationErrorKind.UNKNOWN)
        screenshot: Optional[str] = None

        self.logger.info(
            "🚀 [%s] %s run started (%s, %s)",
            self.config.name,
            self.run_type.value,
            self.config.facility_name,
            self.config.sport_name,
        )
        try:
            try:
                await self._execute_within_run_timeout()
                self._transition(RunStep.SUCCESS)
                status = RunStatus.success()
            except RunCancelledError:
                self._transition(RunStep.STOPPED)
                status = RunStatus.stopped()
            except ReservationError as exc:
                status = self._fail(exc)
            except asyncio.CancelledError:
                self._transition(RunStep.STOPPED)
                status = RunStatus.stopped()
                raise
            except Exception as exc:
                status = self._fail(ReservationError.from_exception(exc))
            if status.state is RunState.FAILED:
                screenshot = await self._capture_failure_screenshot()
        finally:
            await self._teardown()

        elapsed = self._elapsed()
        self.logger.info("🏁 [%s] run finished: %s (%.1fs)", self.config.name, status.description, elapsed)
        return RunOutcome(
            config_id=self.config.config_id,
            config_name=self.config.name,
            instance_id=self.instance_id,
            status=status,
            final_step=self.step or RunStep.FAILED,
            steps=list(self.steps),
            elapsed=elapsed,
            captcha_retries=self.captcha_retries,
            codes_tried=self.codes_tried,
            screenshot=screenshot,
        )

    def stop(self) -> None:
        t('reservations.state_machine.RunStateMachine.stop')
        self.token.cancel()

    # ------------------------------------------------------------------
    # Flow
    # ------------------------------------------------------------------
    async def _execute_within_run_timeout(self) -> None:
        t('reservations.state_machine.RunStateMachine._execute_within_run_timeout')
        execution = asyncio.create_task(self._execute(), name=f"run-{self.instance_id}")
        try:
            done, _ = await asyncio.wait({execution}, timeout=self.timings.run_timeout)
        except asyncio.CancelledError:
            execution.cancel()
            await asyncio.gather(execution, return_exceptions=True)
            raise
        if not done:
            execution.cancel()
            await asyncio.gather(execution, return_exceptions=True)
            raise ReservationError(
                ReservationErrorKind.RUN_TIMEOUT, f"exceeded {self.timings.run_timeout:.0f}s"
            )
        execution.result()

    async def _execute(self) -> None:
        t('reservations.state_machine.RunStateMachine._execute')
        day, slot = self._resolve_target()
        driver = self.driver
        timings = self.timings
        kinds = ReservationErrorKind

        await self._step(RunStep.CONNECTING, driver.connect, kinds.BROWSER_CONNECTION_FAILED)
        await self._step(
            RunStep.NAVIGATING_TO_FACILITY,
            lambda: driver.navigate_to_url(self.config.facility_url),
            kinds.NETWORK,
        )
        await self._step(
            RunStep.WAITING_DOM_READY,
            lambda: driver.wait_for_dom_ready(timings.page_load_timeout),
            kinds.PAGE_LOAD_TIMEOUT,
        )
        await self._step(
            RunStep.SELECTING_SPORT,
            lambda: driver.find_and_click_element(text=self.config.sport_name),
            kinds.SPORT_BUTTON_NOT_FOUND,
        )
        await self._step(
            RunStep.WAITING_GROUP_SIZE_PAGE,
            lambda: driver.wait_for_group_size_page(timings.group_size_timeout),
            kinds.GROUP_SIZE_PAGE_TIMEOUT,
        )
        await self._step(
            RunStep.FILLING_GROUP_SIZE,
            lambda: driver.fill_number_of_people(self.config.number_of_people),
            kinds.NUMBER_OF_PEOPLE_FIELD_NOT_FOUND,
        )
        await self._step(RunStep.CLICKING_CONFIRM, driver.click_confirm_button, kinds.CONFIRM_BUTTON_NOT_FOUND)
        await self._step(
            RunStep.SELECTING_TIME_SLOT,
            lambda: driver.select_time_slot(day.short_name, slot.label),
            kinds.TIME_SLOT_SELECTION_FAILED,
        )
        await self._step(
            RunStep.WAITING_CONTACT_INFO_PAGE,
            lambda: driver.wait_for_contact_info_page(timings.contact_info_timeout),
            kinds.CONTACT_INFO_PAGE_TIMEOUT,
        )
        await self._step(
            RunStep.FILLING_CONTACT_INFO,
            lambda: driver.fill_contact_info(
                self.profile.contact_phone, self.profile.email, self.profile.name
            ),
            kinds.CONTACT_INFO_FIELD_NOT_FOUND,
        )

        verification_started = self.clock()
        await self._step(
            RunStep.CLICKING_CONTACT_CONFIRM,
            driver.click_confirm_button,
            kinds.CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND,
        )
        await self._captcha_retry_loop()
        await self._email_verification_loop(verification_started)
        await self._await_completion()

    def _resolve_target(self) -> Tuple[Weekday, TimeSlot]:
        t('reservations.state_machine.RunStateMachine._resolve_target')
        days = [self.target_day] if self.target_day else self.config.active_days()
        for day in days:
            slot = self.config.slot_for(day)
            if slot is not None:
                return day, slot
        raise ReservationError(
            ReservationErrorKind.TIME_SLOT_SELECTION_FAILED,
            f"no time slot configured for {self.target_day.value if self.target_day else 'any day'}",
        )

    async def _captcha_retry_loop(self) -> None:
        """Re-submit the contact form while the site shows its retry page."""
        t('reservations.state_machine.RunStateMachine._captcha_retry_loop')
        await self.token.sleep(self.timings.after_confirm_click)
        limit = self.timings.captcha_max_attempts

        while True:
            self.token.raise_if_cancelled()
            if not await self.driver.detect_retry_text():
                if self.captcha_retries:
                    self.logger.info(
                        "✅ [%s] retry page cleared after %s attempt(s)", self.config.name, self.captcha_retries
                    )
                return
            if self.captcha_retries >= limit:
                raise CaptchaRetryExhaustedError(self.captcha_retries)

            self.captcha_retries += 1
            self._transition(RunStep.CAPTCHA_RETRY_LOOP, f"attempt {self.captcha_retries}/{limit}")
            await self.driver.simulate_human_activity()
            await self.token.sleep(random.uniform(*self.timings.captcha_retry_pause))
            await self.token.sleep(random.uniform(*self.timings.captcha_click_pause))
            self.token.raise_if_cancelled()
            result = await self.driver.click_confirm_button()
            if not result:
                raise ReservationError(ReservationErrorKind.CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND, result.detail)
            await self.token.sleep(self.timings.after_confirm_click)

    async def _email_verification_loop(self, since: datetime) -> None:
        """Submit emailed codes until the page leaves the verification screen."""
        t('reservations.state_machine.RunStateMachine._email_verification_loop')
        await self.token.sleep(self.timings.verification_settle)
        self.token.raise_if_cancelled()
        if not await self.driver.is_email_verification_required():
            self.logger.info("ℹ️ [%s] no email verification requested", self.config.name)
            return

        self._transition(RunStep.EMAIL_VERIFICATION_LOOP)
        loop = asyncio.get_running_loop()
        timeout = self.timings.verification_timeout
        deadline = loop.time() + timeout
        tried: List[str] = []

        await self.token.sleep(min(self.timings.verification_initial_wait, timeout))
        while loop.time() < deadline:
            self.token.raise_if_cancelled()
            codes = await self.code_source.fetch_codes(self.instance_id, since)
            for code in codes:
                if code in tried:
                    continue
                if loop.time() >= deadline:
                    break
                self.token.raise_if_cancelled()
                self.logger.info(
                    "📧 [%s] submitting code %s (#%s)", self.config.name, mask_code(code), len(tried) + 1
                )
                filled = await self.driver.fill_verification_code(code)
                if not filled:
                    # Field not ready; the code stays unused for the next poll
                    self.logger.warning("⚠️ [%s] could not submit code: %s", self.config.name, filled.detail)
                    break
                tried.append(code)
                self.codes_tried = len(tried)
                self.code_source.mark_consumed(self.instance_id, code)
                if await self._code_accepted(code):
                    return

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await self.token.sleep(min(self.timings.verification_poll_interval, remaining))

        raise EmailVerificationFailedError(
            f"no accepted code within {timeout:.0f}s", codes_tried=len(tried)
        )

    async def _code_accepted(self, code: str) -> bool:
        """True when the page moved past the verification screen after ``code`` went in."""
        t('reservations.state_machine.RunStateMachine._code_accepted')
        await self.token.sleep(self.timings.code_submit_settle)
        if not await self.driver.is_still_on_verification_page():
            self.logger.info("✅ [%s] verification code accepted", self.config.name)
            return True
        self.logger.warning("⚠️ [%s] code %s rejected, trying next", self.config.name, mask_code(code))
        await self.driver.clear_verification_code()
        return False

    async def _await_completion(self) -> None:
        """Declare success only once the page shows an explicit confirmation."""
        t('reservations.state_machine.RunStateMachine._await_completion')
        self._transition(RunStep.WAITING_COMPLETION)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timings.completion_timeout
        await self.driver.wait_for_dom_ready(self.timings.page_load_timeout)

        while True:
            self.token.raise_if_cancelled()
            result = await self.driver.check_reservation_complete()
            if result:
                self.logger.info("✅ [%s] reservation confirmed (%s)", self.config.name, result.detail)
                return
            remaining = deadline - loop.time()
            if remaining <= 0:
                self.logger.debug("[%s] final page text: %s", self.config.name, result.page_text[:300])
                raise ReservationError(ReservationErrorKind.CONFIRMATION_NOT_FOUND, result.detail)
            await self.token.sleep(min(self.timings.completion_poll_interval, remaining))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _step(
        self,
        step: RunStep,
        action: Callable[[], Awaitable[DriverResult]],
        failure_kind: ReservationErrorKind,
    ) -> DriverResult:
        t('reservations.state_machine.RunStateMachine._step')
        self.token.raise_if_cancelled()
        self._transition(step)
        result = await action()
        if not result:
            if result.page_text:
                self.logger.debug("[%s] page text at %s: %s", self.config.name, step.value, result.page_text[:300])
            raise ReservationError(failure_kind, result.detail or None)
        return result

    def _elapsed(self) -> float:
        return asyncio.get_running_loop().time() - self._started_at

    def _transition(self, step: RunStep, detail: str = "") -> None:
        t('reservations.state_machine.RunStateMachine._transition')
        self.step = step
        self.steps.append(step)
        self.logger.info(
            "🔄 [%s] %s%s (+%.1fs)",
            self.config.name,
            step.value,
            f" {detail}" if detail else "",
            self._elapsed(),
        )

    def _fail(self, error: ReservationError) -> RunStatus:
        t('reservations.state_machine.RunStateMachine._fail')
        failed_at = self.step.value if self.step else "start"
        self._transition(RunStep.FAILED)
        self.logger.error(
            "❌ [%s] failed at %s: %s (%s)", self.config.name, failed_at, error.user_message, error.code
        )
        return RunStatus.failed(error.user_message, error.kind)

    async def _capture_failure_screenshot(self) -> Optional[str]:
        t('reservations.state_machine.RunStateMachine._capture_failure_screenshot')
        if not self.screenshot_dir:
            return None
        stamp = self.clock().strftime("%Y%m%d_%H%M%S")
        path = Path(self.screenshot_dir) / f"{self.config.config_id[:8]}_{stamp}.png"
        try:
            return await self.driver.capture_screenshot(str(path))
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.warning("⚠️ [%s] screenshot failed: %s", self.config.name, exc)
            return None

    async def _teardown(self) -> None:
        t('reservations.state_machine.RunStateMachine._teardown')
        try:
            await self.driver.disconnect(close_window=True)
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.warning("⚠️ [%s] browser cleanup failed: %s", self.config.name, exc)
        finally:
            self.session_released = True
            self.code_source.release(self.instance_id)
            self.logger.debug("[%s] session released", self.config.name)


__all__ = [
    "RunStep",
    "CodeSource",
    "CancellationToken",
    "RunTimings",
    "RunOutcome",
    "RunStateMachine",
]
