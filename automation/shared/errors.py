"""Error taxonomy shared by the driver, mail poller, state machine and CLI."""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class ErrorCategory(Enum):
    """Broad grouping used for logging and user messaging."""

    NETWORK = "network"
    VALIDATION = "validation"
    AUTOMATION = "automation"
    SYSTEM = "system"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class ReservationErrorKind(Enum):
    """Every failure a reservation run can end with.

    Each member carries a short machine code, a category and the message shown
    to end users.
    """

    NETWORK = ("RESERVATION_NETWORK_001", ErrorCategory.NETWORK, "Network error")
    BROWSER_CONNECTION_FAILED = (
        "RESERVATION_NETWORK_002", ErrorCategory.NETWORK, "Could not start the browser session."
    )
    MAIL_CONNECTION_FAILED = (
        "RESERVATION_EMAIL_002", ErrorCategory.NETWORK, "Could not connect to the verification mailbox."
    )
    MAIL_AUTHENTICATION_FAILED = (
        "RESERVATION_EMAIL_003", ErrorCategory.AUTHENTICATION, "Mailbox login failed. Check the email credentials."
    )
    FACILITY_NOT_FOUND = ("RESERVATION_FACILITY_001", ErrorCategory.VALIDATION, "Facility not found.")
    SLOT_UNAVAILABLE = ("RESERVATION_SLOT_001", ErrorCategory.AUTOMATION, "The requested time slot is not available.")
    AUTOMATION_FAILED = ("RESERVATION_AUTOMATION_001", ErrorCategory.AUTOMATION, "Automation failed.")
    UNKNOWN = ("RESERVATION_UNKNOWN_001", ErrorCategory.UNKNOWN, "An unknown error occurred.")
    PAGE_LOAD_TIMEOUT = ("RESERVATION_TIMEOUT_001", ErrorCategory.NETWORK, "Page failed to load in time.")
    GROUP_SIZE_PAGE_TIMEOUT = (
        "RESERVATION_TIMEOUT_002", ErrorCategory.NETWORK, "Group size page failed to load in time."
    )
    CONTACT_INFO_PAGE_TIMEOUT = (
        "RESERVATION_TIMEOUT_003", ErrorCategory.NETWORK, "Contact information page failed to load in time."
    )
    BROWSER_TIMEOUT = ("RESERVATION_TIMEOUT_004", ErrorCategory.SYSTEM, "The browser stopped responding.")
    RUN_TIMEOUT = ("RESERVATION_TIMEOUT_005", ErrorCategory.SYSTEM, "Reservation timed out.")
    NUMBER_OF_PEOPLE_FIELD_NOT_FOUND = (
        "RESERVATION_ELEMENT_001", ErrorCategory.AUTOMATION, "Could not find the number of people field."
    )
    CONFIRM_BUTTON_NOT_FOUND = (
        "RESERVATION_ELEMENT_002", ErrorCategory.AUTOMATION, "Could not find the confirm button."
    )
    CONTACT_INFO_FIELD_NOT_FOUND = (
        "RESERVATION_ELEMENT_003", ErrorCategory.AUTOMATION, "Could not fill the contact information fields."
    )
    CONTACT_INFO_CONFIRM_BUTTON_NOT_FOUND = (
        "RESERVATION_ELEMENT_004", ErrorCategory.AUTOMATION, "Could not find the contact information confirm button."
    )
    SPORT_BUTTON_NOT_FOUND = (
        "RESERVATION_ELEMENT_005", ErrorCategory.AUTOMATION, "Could not find the sport button."
    )
    CLICK_FAILED = ("RESERVATION_ELEMENT_006", ErrorCategory.AUTOMATION, "Could not click the page element.")
    TYPE_FAILED = ("RESERVATION_ELEMENT_007", ErrorCategory.AUTOMATION, "Could not type into the page field.")
    TIME_SLOT_SELECTION_FAILED = (
        "RESERVATION_SELECTION_001", ErrorCategory.AUTOMATION, "Failed to select the time slot."
    )
    CAPTCHA_RETRY_EXHAUSTED = (
        "RESERVATION_CAPTCHA_001", ErrorCategory.AUTOMATION, "The site kept asking to retry. Gave up after the allowed attempts."
    )
    EMAIL_VERIFICATION_FAILED = ("RESERVATION_EMAIL_001", ErrorCategory.AUTHENTICATION, "Email verification failed.")
    CONFIRMATION_NOT_FOUND = (
        "RESERVATION_CONFIRMATION_001", ErrorCategory.AUTOMATION, "The reservation could not be confirmed."
    )

    def __init__(self, code: str, category: ErrorCategory, message: str) -> None:
        self.code = code
        self.category = category
        self.message = message

    @classmethod
    def from_code(cls, code: str) -> "ReservationErrorKind":
        for kind in cls:
            if kind.code == code:
                return kind
        raise ValueError(f"Unknown reservation error code: {code}")


# Kinds whose user message is extended with the underlying detail
_DETAILED_KINDS = {ReservationErrorKind.NETWORK}


class ReservationError(RuntimeError):
    """Failure of a reservation run, tagged with a :class:`ReservationErrorKind`."""

    def __init__(self, kind: ReservationErrorKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"[{kind.code}] {self.user_message}")

    @property
    def code(self) -> str:
        return self.kind.code

    @property
    def category(self) -> ErrorCategory:
        return self.kind.category

    @property
    def user_message(self) -> str:
        if self.detail and self.kind in _DETAILED_KINDS:
            return f"{self.kind.message}: {self.detail}"
        return self.kind.message

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ReservationError":
        """Map any exception onto the taxonomy so raw text never reaches users."""
        if isinstance(exc, ReservationError):
            return exc
        if isinstance(exc, PlaywrightTimeoutError):
            return cls(ReservationErrorKind.PAGE_LOAD_TIMEOUT, str(exc))
        if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
            return cls(ReservationErrorKind.BROWSER_TIMEOUT, str(exc))
        if isinstance(exc, PlaywrightError):
            return cls(ReservationErrorKind.AUTOMATION_FAILED, str(exc))
        if isinstance(exc, (ConnectionError, OSError)):
            return cls(ReservationErrorKind.NETWORK, exc.__class__.__name__)
        return cls(ReservationErrorKind.UNKNOWN, f"{exc.__class__.__name__}: {exc}")


class CaptchaRetryExhaustedError(ReservationError):
    """The retry page was still shown after the allowed number of re-submissions."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(ReservationErrorKind.CAPTCHA_RETRY_EXHAUSTED, f"{attempts} attempts")


class EmailVerificationFailedError(ReservationError):
    """No submitted code moved the page past the verification screen in time."""

    def __init__(self, detail: Optional[str] = None, *, codes_tried: int = 0) -> None:
        self.codes_tried = codes_tried
        super().__init__(ReservationErrorKind.EMAIL_VERIFICATION_FAILED, detail)


class MailConnectionError(ReservationError):
    """The mailbox could not be reached after repeated attempts."""

    def __init__(self, detail: Optional[str] = None, *, authentication: bool = False) -> None:
        kind = (
            ReservationErrorKind.MAIL_AUTHENTICATION_FAILED
            if authentication
            else ReservationErrorKind.MAIL_CONNECTION_FAILED
        )
        super().__init__(kind, detail)


class RunCancelledError(RuntimeError):
    """Raised inside a run when its cancellation token fires."""


class SchedulerInputError(ValueError):
    """Invalid scheduling input, rejected before any run starts."""


class ExportTokenError(ValueError):
    """The CLI export token is missing or malformed."""


__all__ = [
    "ErrorCategory",
    "ReservationErrorKind",
    "ReservationError",
    "CaptchaRetryExhaustedError",
    "EmailVerificationFailedError",
    "MailConnectionError",
    "RunCancelledError",
    "SchedulerInputError",
    "ExportTokenError",
]
