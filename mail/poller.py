"""Verification email polling and code extraction."""

from __future__ import annotations
from tracking import t

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from automation.shared.errors import ErrorCategory, MailConnectionError
from automation.shared.reservation_contracts import VerificationEmail
from infrastructure.constants import (
    INVALID_VERIFICATION_CODES,
    MailConstants,
    VERIFICATION_CODE_PATTERNS,
)

_COMPILED_PATTERNS = [re.compile(pattern, re.IGNORECASE) for pattern in VERIFICATION_CODE_PATTERNS]


class Mailbox(Protocol):
    """Anything that can search the inbox, e.g. :class:`mail.imap_mailbox.ImapMailbox`."""

    def search(self, sender: str, subject: str, since: datetime) -> Awaitable[List[VerificationEmail]]: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def extract_code(body: str) -> Optional[str]:
    """Return the 4-digit code in ``body`` using the most specific pattern that matches."""
    t('mail.poller.extract_code')
    for pattern in _COMPILED_PATTERNS:
        for match in pattern.finditer(body or ""):
            code = match.group(1)
            if len(code) == 4 and code.isdigit() and code not in INVALID_VERIFICATION_CODES:
                return code
    return None


class VerificationMailPoller:
    """Searches the mailbox for the site's verification emails.

    Mailbox failures are counted per run: below ``failure_limit`` consecutive
    failures a search simply yields nothing (the caller keeps polling), at the
    limit a :class:`MailConnectionError` is raised. Any successful search resets
    that run's count.

    ``Date`` headers only carry whole seconds and come from the mail server's
    clock, so the lower bound is floored to the second and moved back by
    ``clock_skew_seconds``.
    """

    def __init__(
        self,
        mailbox: Mailbox,
        *,
        sender: str = MailConstants.SENDER,
        subject: str = MailConstants.SUBJECT,
        window_minutes: int = MailConstants.SEARCH_WINDOW_MINUTES,
        failure_limit: int = MailConstants.CONSECUTIVE_FAILURE_LIMIT,
        clock_skew_seconds: float = MailConstants.CLOCK_SKEW_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.poller.VerificationMailPoller.__init__')
        self.mailbox = mailbox
        self.sender = sender
        self.subject = subject
        self.window = timedelta(minutes=window_minutes)
        self.failure_limit = max(1, failure_limit)
        self.clock_skew = timedelta(seconds=max(0.0, clock_skew_seconds))
        self.clock = clock
        self.logger = logger or logging.getLogger('VerificationMailPoller')
        self._failures: Dict[Optional[str], int] = {}

    def consecutive_failures(self, instance_id: Optional[str] = None) -> int:
        t('mail.poller.VerificationMailPoller.consecutive_failures')
        return self._failures.get(instance_id, 0)

    def reset_failures(self, instance_id: Optional[str] = None) -> None:
        t('mail.poller.VerificationMailPoller.reset_failures')
        self._failures.pop(instance_id, None)

    def window_start(self, since: Optional[datetime] = None) -> datetime:
        """Later of ``since`` (less the skew allowance) and the start of the recent window."""
        t('mail.poller.VerificationMailPoller.window_start')
        floor = self.clock() - self.window
        if since is None:
            return floor
        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return max(since.replace(microsecond=0) - self.clock_skew, floor)

    def _matches(self, message: VerificationEmail, start: datetime) -> bool:
        t('mail.poller.VerificationMailPoller._matches')
        return (
            self.sender.lower() in message.sender.lower()
            and self.subject.lower() in message.subject.lower()
            and message.received_at >= start
        )

    async def search_for_verification_emails(
        self, since: Optional[datetime] = None, *, instance_id: Optional[str] = None
    ) -> List[VerificationEmail]:
        """Matching messages inside the window, newest first.

        Failures count against ``instance_id`` only, so concurrent runs keep
        separate retry budgets.
        """
        t('mail.poller.VerificationMailPoller.search_for_verification_emails')
        start = self.window_start(since)
        try:
            messages = await self.mailbox.search(self.sender, self.subject, start)
        except MailConnectionError as exc:
            failures = self._failures.get(instance_id, 0) + 1
            self._failures[instance_id] = failures
            if exc.category is ErrorCategory.AUTHENTICATION or failures >= self.failure_limit:
                self.logger.error(
                    "❌ Mailbox unavailable after %s consecutive failures: %s",
                    failures,
                    exc.detail,
                )
                raise
            self.logger.warning(
                "⚠️ Mailbox search failed (%s/%s): %s",
                failures,
                self.failure_limit,
                exc.detail,
            )
            return []

        self._failures.pop(instance_id, None)
        matching = [message for message in messages if self._matches(message, start)]
        matching.sort(key=lambda message: message.received_at, reverse=True)
        self.logger.debug("📧 %s verification emails since %s", len(matching), start.isoformat())
        return matching

    @staticmethod
    def extract_codes(messages: Sequence[VerificationEmail]) -> List[str]:
        """Codes from ``messages`` in the given order, without duplicates."""
        t('mail.poller.VerificationMailPoller.extract_codes')
        codes: List[str] = []
        for message in messages:
            code = extract_code(message.body)
            if code and code not in codes:
                codes.append(code)
        return codes

    async def latest_code(self, since: Optional[datetime] = None) -> Optional[str]:
        """Code from the most recently received matching message."""
        t('mail.poller.VerificationMailPoller.latest_code')
        codes = self.extract_codes(await self.search_for_verification_emails(since))
        return codes[0] if codes else None


__all__ = ["Mailbox", "VerificationMailPoller", "extract_code"]
