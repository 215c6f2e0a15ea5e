"""Per-run pool of verification codes read from the shared mailbox."""

from __future__ import annotations
from tracking import t

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from infrastructure.constants import MailConstants, mask_code
from mail.poller import VerificationMailPoller, extract_code


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VerificationCodePool:
    """Hands each run the codes it has not submitted yet.

    Several runs may wait for codes at the same time and every one of them
    sees every fresh code. A code is withheld only from a run that reported it
    through :meth:`mark_consumed`, so a code whose submission never reached the
    page comes back on the next fetch. Codes from messages older than
    ``max_age`` are ignored.
    """

    def __init__(
        self,
        poller: VerificationMailPoller,
        *,
        max_age_seconds: float = MailConstants.CODE_MAX_AGE_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.code_pool.VerificationCodePool.__init__')
        self.poller = poller
        self.max_age = timedelta(seconds=max_age_seconds)
        self.clock = clock
        self.logger = logger or logging.getLogger('VerificationMailPoller')
        self._consumed: Dict[str, Set[str]] = {}

    async def fetch_codes(self, instance_id: str, since: datetime) -> List[str]:
        """Codes ``instance_id`` has not consumed, received after ``since``, newest first."""
        t('mail.code_pool.VerificationCodePool.fetch_codes')
        messages = await self.poller.search_for_verification_emails(since, instance_id=instance_id)
        oldest_allowed = self.clock() - self.max_age
        consumed = self._consumed.get(instance_id, set())

        fresh: List[str] = []
        for message in messages:
            if message.received_at < oldest_allowed:
                continue
            code = extract_code(message.body)
            if not code or code in consumed or code in fresh:
                continue
            fresh.append(code)

        if fresh:
            self.logger.info(
                "📧 %s: %s unused verification code(s) %s",
                instance_id[:8],
                len(fresh),
                ", ".join(mask_code(code) for code in fresh),
            )
        return fresh

    def mark_consumed(self, instance_id: str, code: str) -> None:
        """Record that ``code`` was submitted by ``instance_id``."""
        t('mail.code_pool.VerificationCodePool.mark_consumed')
        self._consumed.setdefault(instance_id, set()).add(code)

    def consumed_count(self, instance_id: str) -> int:
        t('mail.code_pool.VerificationCodePool.consumed_count')
        return len(self._consumed.get(instance_id, ()))

    def release(self, instance_id: str) -> None:
        """Forget a finished run's consumed codes and mailbox failures."""
        t('mail.code_pool.VerificationCodePool.release')
        self._consumed.pop(instance_id, None)
        self.poller.reset_failures(instance_id)


__all__ = ["VerificationCodePool"]
