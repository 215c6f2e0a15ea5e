"""Polls the status store until every launched config is terminal or time runs out."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from automation.shared.reservation_contracts import ReservationConfig, RunState
from infrastructure.constants import RunLimits
from reservations.status_store import StatusStore

PROGRESS_EVERY_SECONDS = 10

logger = logging.getLogger(__name__)


@dataclass
class WatchReport:
    """Final classification of every watched config."""

    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    stopped: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not (self.failed or self.stopped or self.timed_out)


async def watch_until_complete(
    status_store: StatusStore,
    configs: Sequence[ReservationConfig],
    *,
    timeout: float = RunLimits.WATCH_TIMEOUT,
    poll_interval: float = RunLimits.WATCH_POLL_INTERVAL,
    echo: Callable[[str], None] = print,
) -> WatchReport:
    """Print status changes once per poll; configs still pending at the deadline are "timed out"."""
    t('cli.watcher.watch_until_complete')
    names = {config.config_id: config.name for config in configs}
    loop = asyncio.get_running_loop()
    started = loop.time()
    last_seen: Dict[str, Optional[RunState]] = {config_id: None for config_id in names}
    last_progress = 0

    echo("📊 Monitoring reservation progress...")
    while True:
        for config_id, name in names.items():
            record = status_store.get_last_run_info(config_id)
            state = record.status.state if record else None
            if state is not last_seen[config_id] and record is not None:
                echo(f"   {_icon(state)} {name}: {record.status.description}")
                last_seen[config_id] = state

        pending = status_store.pending(names)
        if not pending:
            break
        elapsed = loop.time() - started
        if elapsed >= timeout:
            echo(f"⏰ Reservations timed out after {_minutes(timeout)}")
            break
        if int(elapsed) // PROGRESS_EVERY_SECONDS > last_progress:
            last_progress = int(elapsed) // PROGRESS_EVERY_SECONDS
            echo(f"⏳ Still running... ({int(elapsed)}s)")
        await asyncio.sleep(min(poll_interval, max(timeout - elapsed, 0)))

    return build_report(status_store, names)


def build_report(status_store: StatusStore, names: Dict[str, str]) -> WatchReport:
    t('cli.watcher.build_report')
    report = WatchReport()
    for config_id in names:
        record = status_store.get_last_run_info(config_id)
        if record is None or not record.status.is_terminal:
            report.timed_out.append(config_id)
        elif record.status.state is RunState.SUCCESS:
            report.succeeded.append(config_id)
        elif record.status.state is RunState.FAILED:
            report.failed[config_id] = record.status.reason or "Unknown error"
        else:
            report.stopped.append(config_id)
    logger.info(
        "Watch finished: %s succeeded, %s failed, %s stopped, %s timed out",
        len(report.succeeded),
        len(report.failed),
        len(report.stopped),
        len(report.timed_out),
    )
    return report


def print_report(report: WatchReport, names: Dict[str, str], echo: Callable[[str], None] = print) -> None:
    t('cli.watcher.print_report')
    echo("")
    echo("📋 Results Summary:")
    echo("==================")
    for config_id in report.succeeded:
        echo(f"✅ {names.get(config_id, config_id)}: Successful")
    for config_id, reason in report.failed.items():
        echo(f"❌ {names.get(config_id, config_id)}: Failed - {reason}")
    for config_id in report.stopped:
        echo(f"⏹️ {names.get(config_id, config_id)}: Stopped")
    for config_id in report.timed_out:
        echo(f"⏰ {names.get(config_id, config_id)}: Timed out (still pending)")


def _icon(state: Optional[RunState]) -> str:
    return {
        RunState.RUNNING: "🔄",
        RunState.SUCCESS: "✅",
        RunState.FAILED: "❌",
        RunState.STOPPED: "⏹️",
    }.get(state, "ℹ️")


def _minutes(seconds: float) -> str:
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    return f"{seconds:g} seconds"


__all__ = ["WatchReport", "watch_until_complete", "build_report", "print_report"]
