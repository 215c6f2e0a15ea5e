"""Centralized application settings.

Runtime configuration is read from the environment (optionally seeded from a
``.env`` file) into an immutable :class:`AppSettings` snapshot. Modules take
the values they need through :func:`get_settings` or receive them explicitly.
"""

from __future__ import annotations
from tracking import t

import os
from dataclasses import dataclass
from datetime import time
from functools import lru_cache
from typing import Mapping, Optional

import pytz
from dotenv import load_dotenv

from . import constants as app_constants


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    """Normalize environment strings such as "true"/"1" into booleans."""
    t('infrastructure.settings._to_bool')

    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_float(value: Optional[str], default: float) -> float:
    t('infrastructure.settings._to_float')

    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _to_int(value: Optional[str], default: int) -> int:
    t('infrastructure.settings._to_int')

    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def parse_time_of_day(value: str) -> time:
    """Parse ``HH:MM`` or ``HH:MM:SS`` into a :class:`datetime.time`."""
    t('infrastructure.settings.parse_time_of_day')

    parts = [int(part) for part in value.strip().split(":")]
    if len(parts) == 2:
        parts.append(0)
    if len(parts) != 3:
        raise ValueError(f"Invalid time of day: {value!r}")
    return time(parts[0], parts[1], parts[2])


@dataclass(frozen=True)
class AppSettings:
    """Immutable snapshot of high-level configuration values."""

    production_mode: bool
    timezone: str
    autorun_time: time
    prior_days: int
    headless: bool
    screenshot_directory: str
    run_records_path: str
    page_load_timeout: float
    verification_timeout: float
    verification_poll_interval: float
    captcha_max_attempts: int
    run_timeout: float
    watch_timeout: float
    mail_window_minutes: int
    mail_failure_limit: int
    telegram_enabled: bool
    telegram_bot_token: str
    telegram_chat_id: str

    @property
    def tz(self) -> pytz.BaseTzInfo:
        """Facility timezone as a pytz object."""
        return pytz.timezone(self.timezone)

    @property
    def telegram_configured(self) -> bool:
        return self.telegram_enabled and bool(self.telegram_bot_token) and bool(self.telegram_chat_id)


def load_settings(env: Optional[Mapping[str, str]] = None) -> AppSettings:
    """Load configuration from the environment and fall back to defaults."""
    t('infrastructure.settings.load_settings')

    if env is None:
        load_dotenv(override=False)
        env = os.environ

    production_mode = _to_bool(env.get("PRODUCTION_MODE", "true"), default=True)

    timezone = env.get("ODYSSEY_TIMEZONE", app_constants.DEFAULT_TIMEZONE)
    try:
        pytz.timezone(timezone)
    except pytz.UnknownTimeZoneError:
        timezone = app_constants.DEFAULT_TIMEZONE

    try:
        autorun_time = parse_time_of_day(
            env.get("ODYSSEY_AUTORUN_TIME", app_constants.DEFAULT_AUTORUN_TIME)
        )
    except ValueError:
        autorun_time = parse_time_of_day(app_constants.DEFAULT_AUTORUN_TIME)

    prior_days = _to_int(env.get("ODYSSEY_PRIOR_DAYS"), app_constants.DEFAULT_PRIOR_DAYS)
    if prior_days <= 0:
        prior_days = app_constants.DEFAULT_PRIOR_DAYS

    limits = app_constants.RunLimits
    mail = app_constants.MailConstants

    return AppSettings(
        production_mode=production_mode,
        timezone=timezone,
        autorun_time=autorun_time,
        prior_days=prior_days,
        headless=_to_bool(env.get("ODYSSEY_HEADLESS", "true"), default=True),
        screenshot_directory=env.get("ODYSSEY_SCREENSHOT_DIR", "logs/screenshots"),
        run_records_path=env.get("ODYSSEY_RUN_RECORDS", "logs/run_records.json"),
        page_load_timeout=_to_float(
            env.get("ODYSSEY_PAGE_LOAD_TIMEOUT"), app_constants.PageTimeouts.PAGE_LOAD
        ),
        verification_timeout=_to_float(
            env.get("ODYSSEY_VERIFICATION_TIMEOUT"), limits.VERIFICATION_TIMEOUT
        ),
        verification_poll_interval=_to_float(
            env.get("ODYSSEY_VERIFICATION_POLL_INTERVAL"), limits.VERIFICATION_POLL_INTERVAL
        ),
        captcha_max_attempts=_to_int(
            env.get("ODYSSEY_CAPTCHA_MAX_ATTEMPTS"), limits.CAPTCHA_MAX_ATTEMPTS
        ),
        run_timeout=_to_float(env.get("ODYSSEY_RUN_TIMEOUT"), limits.RUN_TIMEOUT),
        watch_timeout=_to_float(env.get("ODYSSEY_WATCH_TIMEOUT"), limits.WATCH_TIMEOUT),
        mail_window_minutes=_to_int(
            env.get("ODYSSEY_MAIL_WINDOW_MINUTES"), mail.SEARCH_WINDOW_MINUTES
        ),
        mail_failure_limit=_to_int(
            env.get("ODYSSEY_MAIL_FAILURE_LIMIT"), mail.CONSECUTIVE_FAILURE_LIMIT
        ),
        telegram_enabled=_to_bool(env.get("TELEGRAM_ENABLED", "false")),
        telegram_bot_token=env.get("TELEGRAM_BOT_TOKEN", ""),
        telegram_chat_id=env.get("TELEGRAM_CHAT_ID", ""),
    )


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """Return a cached :class:`AppSettings` instance."""
    t('infrastructure.settings.get_settings')

    return load_settings()
