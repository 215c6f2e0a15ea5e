"""odyssey-cli: run, list and inspect reservation configs from an export token."""

from __future__ import annotations
from tracking import t

import argparse
import asyncio
import logging
import os
import sys
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence

from automation.driver.playwright_driver import PlaywrightPageDriver
from automation.shared.errors import ExportTokenError, SchedulerInputError
from automation.shared.reservation_contracts import (
    ReservationConfig,
    RunType,
    Weekday,
    runnable_configs,
)
from cli.export_token import ExportBundle, decode_export_token
from cli.watcher import print_report, watch_until_complete
from infrastructure.constants import APP_VERSION, EXPORT_TOKEN_ENV
from infrastructure.settings import AppSettings, get_settings, load_settings
from logging_config import setup_logging
from mail.code_pool import VerificationCodePool
from mail.imap_mailbox import ImapMailbox
from mail.poller import Mailbox, VerificationMailPoller
from notifications.telegram_notifier import TelegramNotifier
from reservations.orchestrator import DriverFactory, ReservationOrchestrator
from reservations.scheduler import (
    default_target_time,
    facility_now,
    facility_today,
    next_run_date,
    reservation_day_for,
    should_run,
    validate_prior_days,
    wait_until,
)
from reservations.state_machine import RunTimings
from reservations.status_store import JsonRecordWriter, StatusStore
from reservations.validation import validate_reservation_config, validate_user_profile

logger = logging.getLogger('odyssey.cli')

BOLD = "\033[1m"
RESET = "\033[0m"

Echo = Callable[[str], None]


def _bold(text: str) -> str:
    return f"{BOLD}{text}{RESET}"


def build_parser() -> argparse.ArgumentParser:
    t('cli.main.build_parser')
    parser = argparse.ArgumentParser(
        prog="odyssey-cli",
        description="🚀 ODYSSEY CLI - Ottawa Drop-in Your Sports & Schedule Easily Yourself",
        epilog=f"Environment: {EXPORT_TOKEN_ENV}=<exported_token> (required)",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run reservations for configurations scheduled today")
    run_parser.add_argument("--now", action="store_true", help="Run immediately instead of waiting for 18:00:01")
    run_parser.add_argument("--prior", help="Days before the reservation day to run (default: 2)")
    visibility = run_parser.add_mutually_exclusive_group()
    visibility.add_argument("--hide", dest="headless", action="store_true", default=None,
                            help="Run the browser headless")
    visibility.add_argument("--show", dest="headless", action="store_false",
                            help="Show the browser window")
    run_parser.set_defaults(headless=None)
    run_parser.add_argument("--screenshots", action="store_true", help="Capture a screenshot when a run fails")

    subparsers.add_parser("configs", help="List all available configurations")
    settings_parser = subparsers.add_parser("settings", help="Show user settings from export token")
    settings_parser.add_argument("--unmask", action="store_true", help="Show phone, email and password in clear")
    subparsers.add_parser("version", help="Show version information")
    subparsers.add_parser("help", help="Show this help message")
    return parser


def _load_bundle(env: Mapping[str, str], echo: Echo) -> Optional[ExportBundle]:
    t('cli.main._load_bundle')
    token = env.get(EXPORT_TOKEN_ENV)
    if not token:
        echo(f"❌ {EXPORT_TOKEN_ENV} environment variable not set")
        echo("💡 Please set your export token:")
        echo(f'   export {EXPORT_TOKEN_ENV}="<exported_token>"')
        return None
    try:
        return decode_export_token(token)
    except ExportTokenError as exc:
        logger.error("❌ Failed to load configuration from token: %s", exc)
        echo(f"❌ Error loading configuration: {exc}")
        return None


def _format_date(day: date) -> str:
    return day.strftime("%b %d, %Y")


def _timezone_label(timezone_name: str) -> str:
    return timezone_name.rsplit("/", 1)[-1].replace("_", " ")


# ----------------------------------------------------------------------
# configs / settings / version
# ----------------------------------------------------------------------
def list_configurations(bundle: ExportBundle, echo: Echo = print) -> int:
    t('cli.main.list_configurations')
    echo("📋 Available Configurations:")
    echo("=" * 50)
    for index, config in enumerate(bundle.configs, start=1):
        marker = "✅" if config.is_enabled else "❌"
        echo(f"{index}. {marker} {config.name}")
        echo(f"   {_bold('Sport')}: {config.sport_name}")
        echo(f"   {_bold('Facility')}: {config.facility_name}")
        echo(f"   {_bold('People')}: {config.number_of_people}")
        echo(f"   {_bold('Time Slots')}:")
        for day in config.active_days():
            labels = ", ".join(slot.label for slot in config.day_time_slots[day])
            echo(f"     {day.short_name}: {labels}")
        echo("")
    return 0


def show_user_settings(bundle: ExportBundle, unmask: bool = False, echo: Echo = print) -> int:
    t('cli.main.show_user_settings')
    profile = bundle.profile
    echo("📋 User Settings:")
    echo("=" * 30)
    echo(f"{_bold('Name')}: {profile.name}")
    if unmask:
        echo(f"{_bold('Phone')}: {profile.phone_number}")
        echo(f"{_bold('Email')}: {profile.email}")
        echo(f"{_bold('IMAP Password')}: {profile.imap_password}")
    else:
        echo(f"{_bold('Phone')}: {profile.masked_phone}")
        echo(f"{_bold('Email')}: {profile.masked_email}")
        echo(f"{_bold('IMAP Password')}: ***")
    echo(f"{_bold('IMAP Server')}: {profile.imap_server}")
    echo("")
    return 0


def print_version(echo: Echo = print) -> int:
    t('cli.main.print_version')
    echo(f"ODYSSEY CLI v{APP_VERSION}")
    return 0


# ----------------------------------------------------------------------
# run
# ----------------------------------------------------------------------
def select_configs_for_today(
    configs: Sequence[ReservationConfig], today: date, prior_days: int
) -> List[ReservationConfig]:
    """Enabled configs whose booking window opens ``today``."""
    t('cli.main.select_configs_for_today')
    return [config for config in runnable_configs(configs) if should_run(config, today, prior_days)]


def _report_nothing_to_run(bundle: ExportBundle, today: date, prior_days: int, settings: AppSettings, echo: Echo) -> None:
    t('cli.main._report_nothing_to_run')
    echo("❌ No configurations are scheduled to run today")
    echo(f"💡 Configurations are only run {prior_days} days before their reservation day")
    echo(f"📅 Today's date: {_format_date(today)}")
    echo("")
    echo("📋 All configurations:")
    for config in bundle.configs:
        upcoming = next_run_date(config, prior_days, today=today, timezone_name=settings.timezone)
        echo(f"   - {config.name}: Next run {_format_date(upcoming)}")


async def _wait_for_cutoff(settings: AppSettings, echo: Echo) -> None:
    t('cli.main._wait_for_cutoff')
    now = facility_now(settings.timezone)
    target = default_target_time(now, timezone_name=settings.timezone, autorun_time=settings.autorun_time)
    if now >= target:
        echo(f"⏰ Current time is {now:%H:%M:%S} - proceeding immediately")
        return
    echo(f"⏰ Current time is {now:%H:%M:%S}")
    echo(f"⏰ Waiting until {target:%H:%M:%S} ({_timezone_label(settings.timezone)} timezone)")
    echo(f"⏰ Waiting {int((target - now).total_seconds())} seconds...")
    await wait_until(
        target,
        on_progress=lambda remaining: echo(f"⏰ Still waiting... {int(remaining)} seconds remaining"),
    )
    echo("⏰ Target time reached! Starting reservations...")


def _playwright_factory(settings: AppSettings, headless: bool) -> DriverFactory:
    def factory(config: ReservationConfig) -> PlaywrightPageDriver:
        return PlaywrightPageDriver(
            headless=headless,
            timezone_id=settings.timezone,
            session_label=config.name,
        )

    return factory


async def run_reservations(
    bundle: ExportBundle,
    settings: AppSettings,
    *,
    prior_days: int,
    run_now: bool = False,
    headless: bool = True,
    screenshots: bool = False,
    today: Optional[date] = None,
    driver_factory: Optional[DriverFactory] = None,
    mailbox: Optional[Mailbox] = None,
    timings: Optional[RunTimings] = None,
    echo: Echo = print,
) -> int:
    """Select today's configs, launch them concurrently and watch them to the end."""
    t('cli.main.run_reservations')
    profile = bundle.profile
    echo(f"👤 User: {profile.name}")
    echo(f"📧 Email: {profile.masked_email}")
    echo(f"📋 Configurations: {len(bundle.configs)}")
    echo("")

    profile_check = validate_user_profile(profile)
    if not profile_check.is_valid:
        for error in profile_check.errors:
            echo(f"❌ User settings: {error}")
        return 1

    today = today or facility_today(settings.timezone)
    selected = select_configs_for_today(bundle.configs, today, prior_days)
    echo(f"🔍 Found {len(selected)} configurations scheduled for today ({prior_days} days before reservation)")
    if not selected:
        _report_nothing_to_run(bundle, today, prior_days, settings, echo)
        return 0

    runnable: List[ReservationConfig] = []
    for config in selected:
        check = validate_reservation_config(config)
        if check.is_valid:
            runnable.append(config)
        else:
            echo(f"⚠️ Skipping {config.name}: {'; '.join(check.errors)}")
    if not runnable:
        return 1

    if run_now:
        echo("⏰ Skipping time check (--now flag)")
    else:
        await _wait_for_cutoff(settings, echo)

    mailbox = mailbox or ImapMailbox(profile.imap_server, profile.email, profile.imap_password)
    poller = VerificationMailPoller(
        mailbox,
        window_minutes=settings.mail_window_minutes,
        failure_limit=settings.mail_failure_limit,
    )
    writer = JsonRecordWriter(Path(settings.run_records_path)) if settings.run_records_path else None
    status_store = StatusStore(writer=writer)
    orchestrator = ReservationOrchestrator(
        status_store,
        driver_factory or _playwright_factory(settings, headless),
        VerificationCodePool(poller),
        profile,
        timings=timings or RunTimings.from_settings(settings),
        screenshot_dir=settings.screenshot_directory if screenshots else None,
        notifier=TelegramNotifier.from_settings(settings),
    )
    target_days: Dict[str, Weekday] = {}
    for config in runnable:
        day = reservation_day_for(config, today, prior_days)
        if day is not None:
            target_days[config.config_id] = day

    run_type = RunType.MANUAL if run_now else RunType.AUTORUN
    echo(f"🚀 Starting reservation automation for {len(runnable)} configurations...")
    for index, config in enumerate(runnable, start=1):
        echo(f"   📋 {index}. {config.name or f'Config {index}'} - {config.sport_name}")
    echo("")

    try:
        await orchestrator.run_multiple_reservations(runnable, run_type, target_days)
        report = await watch_until_complete(
            status_store,
            runnable,
            timeout=settings.watch_timeout,
            echo=echo,
        )
        if report.timed_out:
            await orchestrator.stop_all()
    except (asyncio.CancelledError, KeyboardInterrupt):
        await orchestrator.emergency_cleanup(run_type)
        raise
    finally:
        await status_store.flush()
        close = getattr(mailbox, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as exc:  # pragma: no cover - defensive guard
                logger.warning("⚠️ Mailbox close failed: %s", exc)

    print_report(report, {config.config_id: config.name for config in runnable}, echo)
    logger.info("✅ CLI reservation run completed")
    return 0 if report.all_succeeded else 1


# ----------------------------------------------------------------------
# Entry point
# ----------------------------------------------------------------------
def main(
    argv: Optional[Sequence[str]] = None,
    *,
    env: Optional[Mapping[str, str]] = None,
    echo: Echo = print,
    configure_logging: bool = True,
) -> int:
    t('cli.main.main')
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.command in (None, "help"):
        parser.print_help()
        return 0 if args.command == "help" else 1
    if args.command == "version":
        return print_version(echo)

    settings = load_settings(env) if env is not None else get_settings()
    env = env if env is not None else os.environ
    if configure_logging:
        setup_logging(production_mode=settings.production_mode)

    prior_days = settings.prior_days
    if args.command == "run" and args.prior is not None:
        try:
            prior_days = validate_prior_days(args.prior)
        except SchedulerInputError:
            echo(f"❌ Invalid --prior value: {args.prior}. Must be a positive number.")
            return 1
        echo(f"📅 Using {prior_days} days prior to reservation (--prior flag)")

    bundle = _load_bundle(env, echo)
    if bundle is None:
        return 1

    if args.command == "configs":
        return list_configurations(bundle, echo)
    if args.command == "settings":
        return show_user_settings(bundle, args.unmask, echo)

    if args.now:
        echo("⚡ Running reservations immediately (--now flag detected)")
    headless = settings.headless if args.headless is None else args.headless
    try:
        return asyncio.run(
            run_reservations(
                bundle,
                settings,
                prior_days=prior_days,
                run_now=args.now,
                headless=headless,
                screenshots=args.screenshots,
                echo=echo,
            )
        )
    except KeyboardInterrupt:
        echo("⏹️ Interrupted - browser sessions were closed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
