"""Telegram message sent when a reservation goes through."""

from __future__ import annotations
from tracking import t

import logging
from typing import List, Optional

from telegram import Bot
from telegram.constants import ParseMode
from telegram.error import TelegramError
from telegram.helpers import escape_markdown

from automation.shared.reservation_contracts import ReservationConfig
from infrastructure.settings import AppSettings

SUCCESS_HEADER = "✅ *Reservation Confirmed!*"


def _escape(text: object) -> str:
    return escape_markdown(str(text), version=1)


def success_message(config: ReservationConfig, slot_text: str = "") -> str:
    """Markdown body announcing a confirmed booking."""
    t('notifications.telegram_notifier.success_message')
    lines: List[str] = [SUCCESS_HEADER, ""]
    lines.append(f"• Config: {_escape(config.name)}")
    lines.append(f"• Facility: {_escape(config.facility_name)}")
    lines.append(f"• Sport: {_escape(config.sport_name)}")
    lines.append(f"• People: {config.number_of_people}")
    if slot_text:
        lines.append(f"• Slot: {_escape(slot_text)}")
    return "\n".join(lines)


class TelegramNotifier:
    """Sends success messages to one chat; failures are logged, never raised."""

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        bot: Optional[Bot] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('notifications.telegram_notifier.TelegramNotifier.__init__')
        self.chat_id = chat_id
        self.bot = bot or Bot(token=bot_token)
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: AppSettings) -> Optional["TelegramNotifier"]:
        """Notifier for the configured chat, or None when Telegram is off."""
        t('notifications.telegram_notifier.TelegramNotifier.from_settings')
        if not settings.telegram_configured:
            return None
        return cls(settings.telegram_bot_token, settings.telegram_chat_id)

    async def send(self, text: str) -> bool:
        t('notifications.telegram_notifier.TelegramNotifier.send')
        try:
            async with self.bot:
                await self.bot.send_message(chat_id=self.chat_id, text=text, parse_mode=ParseMode.MARKDOWN)
        except TelegramError as exc:
            self.logger.warning("⚠️ Telegram notification failed: %s", exc)
            return False
        self.logger.info("📨 Telegram notification sent to %s", self.chat_id)
        return True

    async def notify_success(self, config: ReservationConfig, slot_text: str = "") -> bool:
        t('notifications.telegram_notifier.TelegramNotifier.notify_success')
        return await self.send(success_message(config, slot_text))


__all__ = ["TelegramNotifier", "success_message", "SUCCESS_HEADER"]
