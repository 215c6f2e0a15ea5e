"""Autorun scheduling: which configs fire today and when the next run is.

Bookings open a fixed number of days ("prior days") before the reserved
weekday, at a fixed time on the facility clock. All "today" and cut-off
computations use the facility timezone, never the host's local zone.
"""

from __future__ import annotations
from tracking import t

import asyncio
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Callable, List, Optional, Tuple

import pytz

from automation.shared.errors import SchedulerInputError
from automation.shared.reservation_contracts import ReservationConfig, Weekday
from infrastructure.constants import (
    DEFAULT_AUTORUN_TIME,
    DEFAULT_PRIOR_DAYS,
    DEFAULT_TIMEZONE,
    SCHEDULE_LOOKAHEAD_DAYS,
    WAIT_PROGRESS_INTERVAL,
)
from infrastructure.settings import parse_time_of_day

logger = logging.getLogger('ReservationScheduler')


def validate_prior_days(prior_days: object) -> int:
    """Return ``prior_days`` as a positive int or raise :class:`SchedulerInputError`."""
    t('reservations.scheduler.validate_prior_days')
    if isinstance(prior_days, bool):
        raise SchedulerInputError(f"Invalid prior days: {prior_days!r}")
    try:
        value = int(str(prior_days).strip())
    except (TypeError, ValueError) as exc:
        raise SchedulerInputError(f"Invalid prior days: {prior_days!r}. Must be a positive number.") from exc
    if value <= 0:
        raise SchedulerInputError(f"Invalid prior days: {prior_days!r}. Must be a positive number.")
    return value


def upcoming_reservations(
    config: ReservationConfig, today: date, prior_days: int
) -> List[Tuple[date, date, Weekday]]:
    """Every ``(autorun_date, reservation_date, weekday)`` in the lookahead window.

    Reservation dates are occurrences of the config's weekdays on or after
    ``today`` within five weeks; autorun dates are ``prior_days`` earlier.
    """
    t('reservations.scheduler.upcoming_reservations')
    days = set(config.active_days())
    results: List[Tuple[date, date, Weekday]] = []
    for offset in range(SCHEDULE_LOOKAHEAD_DAYS + 1):
        reservation_date = today + timedelta(days=offset)
        weekday = Weekday.from_date(reservation_date)
        if weekday in days:
            results.append((reservation_date - timedelta(days=prior_days), reservation_date, weekday))
    return results


def should_run(config: ReservationConfig, today: date, prior_days: int = DEFAULT_PRIOR_DAYS) -> bool:
    """True when ``today`` is exactly ``prior_days`` before a booked weekday."""
    t('reservations.scheduler.should_run')
    prior_days = validate_prior_days(prior_days)
    return any(
        autorun_date == today
        for autorun_date, _, _ in upcoming_reservations(config, today, prior_days)
    )


def reservation_day_for(
    config: ReservationConfig, today: date, prior_days: int = DEFAULT_PRIOR_DAYS
) -> Optional[Weekday]:
    """Weekday whose booking window opens ``today``, if any."""
    t('reservations.scheduler.reservation_day_for')
    prior_days = validate_prior_days(prior_days)
    for autorun_date, _, weekday in upcoming_reservations(config, today, prior_days):
        if autorun_date == today:
            return weekday
    return None


def next_run_date(
    config: ReservationConfig,
    prior_days: int = DEFAULT_PRIOR_DAYS,
    *,
    today: Optional[date] = None,
    timezone_name: str = DEFAULT_TIMEZONE,
) -> date:
    """Earliest autorun date on or after today; ``today`` when nothing is scheduled."""
    t('reservations.scheduler.next_run_date')
    prior_days = validate_prior_days(prior_days)
    today = today or facility_today(timezone_name)
    candidates = [
        autorun_date
        for autorun_date, _, _ in upcoming_reservations(config, today, prior_days)
        if autorun_date >= today
    ]
    return min(candidates) if candidates else today


# ----------------------------------------------------------------------
# Facility clock
# ----------------------------------------------------------------------
def facility_now(timezone_name: str = DEFAULT_TIMEZONE) -> datetime:
    t('reservations.scheduler.facility_now')
    return datetime.now(pytz.timezone(timezone_name))


def facility_today(timezone_name: str = DEFAULT_TIMEZONE, now: Optional[datetime] = None) -> date:
    """Calendar date on the facility clock."""
    t('reservations.scheduler.facility_today')
    tz = pytz.timezone(timezone_name)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return current.date()


def default_target_time(
    now: Optional[datetime] = None,
    *,
    timezone_name: str = DEFAULT_TIMEZONE,
    autorun_time: Optional[time] = None,
) -> datetime:
    """Today's autorun cut-off (18:00:01 by default) on the facility clock."""
    t('reservations.scheduler.default_target_time')
    tz = pytz.timezone(timezone_name)
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    cutoff = autorun_time or parse_time_of_day(DEFAULT_AUTORUN_TIME)
    return tz.localize(datetime.combine(current.date(), cutoff))


async def wait_until(
    target: datetime,
    *,
    clock: Optional[Callable[[], datetime]] = None,
    interval: float = WAIT_PROGRESS_INTERVAL,
    cancel_event: Optional[asyncio.Event] = None,
    on_progress: Optional[Callable[[float], None]] = None,
) -> bool:
    """Sleep until ``target`` in steps of at most ``interval`` seconds.

    Returns immediately when ``target`` has passed. ``on_progress`` receives
    the remaining seconds after each step. Returns False if ``cancel_event``
    fired before the target was reached.
    """
    t('reservations.scheduler.wait_until')
    clock = clock or (lambda: datetime.now(target.tzinfo or pytz.utc))

    while True:
        remaining = (target - clock()).total_seconds()
        if remaining <= 0:
            return True
        if cancel_event is not None and cancel_event.is_set():
            logger.info("⏹️ Wait for %s cancelled", target.isoformat())
            return False

        step = min(interval, remaining)
        if cancel_event is not None:
            try:
                await asyncio.wait_for(cancel_event.wait(), timeout=step)
            except asyncio.TimeoutError:
                pass
        else:
            await asyncio.sleep(step)

        remaining = (target - clock()).total_seconds()
        if remaining > 0 and on_progress is not None:
            on_progress(math.ceil(remaining))


__all__ = [
    "validate_prior_days",
    "upcoming_reservations",
    "should_run",
    "reservation_day_for",
    "next_run_date",
    "facility_now",
    "facility_today",
    "default_target_time",
    "wait_until",
]
