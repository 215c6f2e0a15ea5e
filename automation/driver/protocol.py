"""Page automation driver contract consumed by the reservation state machine.

The state machine only sequences these calls; everything that knows about the
facility site's markup lives behind this interface so the DOM probing can
change without touching the run logic.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class DriverResult:
    """Outcome of one driver call plus page text for diagnostics."""

    success: bool
    detail: str = ""
    page_text: str = ""

    @classmethod
    def ok(cls, detail: str = "", page_text: str = "") -> "DriverResult":
        return cls(True, detail, page_text)

    @classmethod
    def fail(cls, detail: str = "", page_text: str = "") -> "DriverResult":
        return cls(False, detail, page_text)

    def __bool__(self) -> bool:
        return self.success


@runtime_checkable
class PageAutomationDriver(Protocol):
    """Async page operations for one exclusive browser session."""

    async def connect(self) -> DriverResult: ...

    async def navigate_to_url(self, url: str) -> DriverResult: ...

    async def wait_for_dom_ready(self, timeout: float) -> DriverResult: ...

    async def find_and_click_element(
        self, *, selector: Optional[str] = None, text: Optional[str] = None
    ) -> DriverResult: ...

    async def type_text(self, text: str, selector: str) -> DriverResult: ...

    async def wait_for_group_size_page(self, timeout: float) -> DriverResult: ...

    async def fill_number_of_people(self, count: int) -> DriverResult: ...

    async def click_confirm_button(self) -> DriverResult: ...

    async def select_time_slot(self, day: str, time: str) -> DriverResult: ...

    async def wait_for_contact_info_page(self, timeout: float) -> DriverResult: ...

    async def fill_contact_info(self, phone: str, email: str, name: str) -> DriverResult: ...

    async def detect_retry_text(self) -> bool: ...

    async def simulate_human_activity(self) -> None: ...

    async def is_email_verification_required(self) -> bool: ...

    async def fill_verification_code(self, code: str) -> DriverResult: ...

    async def clear_verification_code(self) -> DriverResult: ...

    async def is_still_on_verification_page(self) -> bool: ...

    async def check_reservation_complete(self) -> DriverResult: ...

    async def capture_screenshot(self, path: str) -> Optional[str]: ...

    async def disconnect(self, close_window: bool = True) -> None: ...


__all__ = ["DriverResult", "PageAutomationDriver"]
