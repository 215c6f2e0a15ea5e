"""Optional outbound notifications about finished reservations."""

from notifications.telegram_notifier import TelegramNotifier, success_message

__all__ = ["TelegramNotifier", "success_message"]
