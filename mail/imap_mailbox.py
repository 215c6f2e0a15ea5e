"""IMAP mailbox access for verification emails.

``imaplib`` is blocking, so every round trip runs in a worker thread through
``asyncio.to_thread``. One connection is shared by all concurrent runs and is
serialized with an ``asyncio.Lock``; a broken connection is dropped and
re-opened on the next search.
"""

from __future__ import annotations
from tracking import t

import asyncio
import email
import imaplib
import logging
import re
from datetime import datetime, timedelta, timezone
from email.header import decode_header
from email.message import Message
from email.utils import parsedate_to_datetime
from typing import List, Optional

from automation.shared.errors import MailConnectionError
from automation.shared.reservation_contracts import VerificationEmail
from infrastructure.constants import MailConstants

_TAG_PATTERN = re.compile(r"<[^>]+>")


def _decode_header(value: Optional[str]) -> str:
    t('mail.imap_mailbox._decode_header')
    if not value:
        return ""
    parts = []
    for chunk, charset in decode_header(value):
        if isinstance(chunk, bytes):
            parts.append(chunk.decode(charset or "utf-8", errors="replace"))
        else:
            parts.append(chunk)
    return "".join(parts)


def message_body(message: Message) -> str:
    """Plain-text body, falling back to tag-stripped HTML."""
    t('mail.imap_mailbox.message_body')
    plain: List[str] = []
    html: List[str] = []
    parts = message.walk() if message.is_multipart() else [message]
    for part in parts:
        if part.get_content_maintype() == "multipart":
            continue
        payload = part.get_payload(decode=True)
        if payload is None:
            continue
        text = payload.decode(part.get_content_charset() or "utf-8", errors="replace")
        if part.get_content_type() == "text/html":
            html.append(_TAG_PATTERN.sub(" ", text))
        else:
            plain.append(text)
    return "\n".join(plain or html)


def parse_message(raw: bytes) -> VerificationEmail:
    t('mail.imap_mailbox.parse_message')
    message = email.message_from_bytes(raw)
    try:
        received_at = parsedate_to_datetime(message.get("Date"))
    except (TypeError, ValueError):
        received_at = datetime.now(timezone.utc)
    if received_at.tzinfo is None:
        received_at = received_at.replace(tzinfo=timezone.utc)
    return VerificationEmail(
        sender=_decode_header(message.get("From")),
        subject=_decode_header(message.get("Subject")),
        body=message_body(message),
        received_at=received_at,
    )


class ImapMailbox:
    """Shared, lazily-connected IMAP4-over-SSL mailbox."""

    def __init__(
        self,
        server: str,
        username: str,
        password: str,
        *,
        port: int = MailConstants.IMAP_PORT,
        mailbox: str = MailConstants.MAILBOX,
        fetch_limit: int = MailConstants.FETCH_LIMIT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('mail.imap_mailbox.ImapMailbox.__init__')
        self.server = server
        self.username = username
        self.password = password
        self.port = port
        self.mailbox = mailbox
        self.fetch_limit = fetch_limit
        self.logger = logger or logging.getLogger('VerificationMailPoller')
        self._connection: Optional[imaplib.IMAP4_SSL] = None
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------
    def _open(self) -> imaplib.IMAP4_SSL:
        t('mail.imap_mailbox.ImapMailbox._open')
        connection = imaplib.IMAP4_SSL(self.server, self.port)
        try:
            connection.login(self.username, self.password)
        except imaplib.IMAP4.error as exc:
            try:
                connection.logout()
            except (imaplib.IMAP4.error, OSError):
                pass
            raise MailConnectionError(str(exc), authentication=True) from exc
        connection.select(self.mailbox, readonly=True)
        return connection

    def _search_blocking(self, sender: str, subject: str, since: datetime) -> List[VerificationEmail]:
        t('mail.imap_mailbox.ImapMailbox._search_blocking')
        if self._connection is None:
            self._connection = self._open()
        connection = self._connection
        # IMAP SINCE is day-granular and servers file by their local date;
        # starting a day early is safe because the exact window is applied afterwards.
        since_day = (since.astimezone(timezone.utc) - timedelta(days=1)).strftime("%d-%b-%Y")
        status, data = connection.search(
            None, "FROM", f'"{sender}"', "SUBJECT", f'"{subject}"', "SINCE", since_day
        )
        if status != "OK":
            raise imaplib.IMAP4.error(f"SEARCH returned {status}")
        message_ids = (data[0] or b"").split()[-self.fetch_limit:]

        emails: List[VerificationEmail] = []
        for message_id in reversed(message_ids):
            status, parts = connection.fetch(message_id, "(RFC822)")
            if status != "OK":
                continue
            for part in parts:
                if isinstance(part, tuple) and len(part) > 1:
                    emails.append(parse_message(part[1]))
        return emails

    def _close_blocking(self) -> None:
        t('mail.imap_mailbox.ImapMailbox._close_blocking')
        connection, self._connection = self._connection, None
        if connection is None:
            return
        try:
            connection.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    # ------------------------------------------------------------------
    # Async API
    # ------------------------------------------------------------------
    async def search(self, sender: str, subject: str, since: datetime) -> List[VerificationEmail]:
        """Return messages from ``sender`` with ``subject`` received since ``since``."""
        t('mail.imap_mailbox.ImapMailbox.search')
        async with self._lock:
            try:
                return await asyncio.to_thread(self._search_blocking, sender, subject, since)
            except MailConnectionError:
                await asyncio.to_thread(self._close_blocking)
                raise
            except (imaplib.IMAP4.error, OSError) as exc:
                await asyncio.to_thread(self._close_blocking)
                raise MailConnectionError(f"{exc.__class__.__name__}: {exc}") from exc

    async def close(self) -> None:
        t('mail.imap_mailbox.ImapMailbox.close')
        async with self._lock:
            await asyncio.to_thread(self._close_blocking)


__all__ = ["ImapMailbox", "parse_message", "message_body"]
