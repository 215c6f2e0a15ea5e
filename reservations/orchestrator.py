"""Runs many reservation configs concurrently and tracks their outcomes."""

from __future__ import annotations
from tracking import t

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Protocol, Sequence

from automation.driver.protocol import PageAutomationDriver
from automation.shared.errors import ReservationError
from automation.shared.reservation_contracts import (
    ReservationConfig,
    RunState,
    RunStatus,
    RunType,
    UserProfile,
    Weekday,
)
from reservations.state_machine import (
    CancellationToken,
    CodeSource,
    RunOutcome,
    RunStateMachine,
    RunTimings,
)
from reservations.status_store import StatusStore

EMERGENCY_CLEANUP_REASON = "Emergency cleanup - automation was interrupted unexpectedly"
STOP_GRACE_SECONDS = 5.0

DriverFactory = Callable[[ReservationConfig], PageAutomationDriver]


class SuccessNotifier(Protocol):
    def notify_success(self, config: ReservationConfig, slot_text: str) -> Awaitable[bool]: ...


@dataclass
class ActiveRun:
    """Book-keeping for one in-flight run."""

    config: ReservationConfig
    run_type: RunType
    token: CancellationToken
    machine: RunStateMachine
    task: Optional[asyncio.Task] = None
    outcome: Optional[RunOutcome] = None


@dataclass
class BatchProgress:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    stopped: int = 0
    config_ids: List[str] = field(default_factory=list)

    @property
    def finished(self) -> int:
        return self.succeeded + self.failed + self.stopped


class ReservationOrchestrator:
    """Owns the active-run set and feeds terminal statuses into :class:`StatusStore`.

    At most one run per config id is active at any moment. Runs are fully
    independent: a failure in one never touches another.
    """

    def __init__(
        self,
        status_store: StatusStore,
        driver_factory: DriverFactory,
        code_source: CodeSource,
        profile: UserProfile,
        *,
        timings: Optional[RunTimings] = None,
        screenshot_dir: Optional[str] = None,
        notifier: Optional[SuccessNotifier] = None,
        stop_grace_seconds: float = STOP_GRACE_SECONDS,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('reservations.orchestrator.ReservationOrchestrator.__init__')
        self.status_store = status_store
        self.driver_factory = driver_factory
        self.code_source = code_source
        self.profile = profile
        self.timings = timings or RunTimings()
        self.screenshot_dir = screenshot_dir
        self.notifier = notifier
        self.stop_grace_seconds = stop_grace_seconds
        self.logger = logger or logging.getLogger('ReservationOrchestrator')

        self._active: Dict[str, ActiveRun] = {}
        self._lock = asyncio.Lock()
        self._batch = BatchProgress()
        self.last_run_status: RunStatus = RunStatus.idle()

    # ------------------------------------------------------------------
    # Launching
    # ------------------------------------------------------------------
    async def run_multiple_reservations(
        self,
        configs: Sequence[ReservationConfig],
        run_type: RunType = RunType.MANUAL,
        target_days: Optional[Dict[str, Weekday]] = None,
    ) -> List[str]:
        """Spawn one run per config that is not already running; return the ids launched."""
        t('reservations.orchestrator.ReservationOrchestrator.run_multiple_reservations')
        target_days = target_days or {}
        launched: List[str] = []

        async with self._lock:
            for config in configs:
                if config.config_id in self._active:
                    self.logger.warning(
                        "⚠️ %s already running - skipping duplicate %s run", config.name, run_type.value
                    )
                    continue
                try:
                    self._spawn(config, run_type, target_days.get(config.config_id))
                except Exception as exc:
                    error = ReservationError.from_exception(exc)
                    self.logger.error("❌ Could not start %s: %s", config.name, exc)
                    self._active.pop(config.config_id, None)
                    self.status_store.update(
                        config.config_id, RunStatus.failed(error.user_message, error.kind), run_type
                    )
                    continue
                launched.append(config.config_id)

            if launched:
                if not self._batch.config_ids or self._batch.finished >= self._batch.total:
                    self._batch = BatchProgress()
                self._batch.total += len(launched)
                self._batch.config_ids.extend(launched)
                self.last_run_status = RunStatus.running()

        self.logger.info(
            "🚀 Launched %s of %s %s reservation(s)", len(launched), len(configs), run_type.value
        )
        return launched

    def _spawn(self, config: ReservationConfig, run_type: RunType, target_day: Optional[Weekday]) -> None:
        t('reservations.orchestrator.ReservationOrchestrator._spawn')
        token = CancellationToken()
        machine = RunStateMachine(
            config,
            self.profile,
            self.driver_factory(config),
            self.code_source,
            token=token,
            run_type=run_type,
            target_day=target_day,
            timings=self.timings,
            screenshot_dir=self.screenshot_dir,
        )
        active = ActiveRun(config=config, run_type=run_type, token=token, machine=machine)
        self._active[config.config_id] = active
        self.status_store.update(config.config_id, RunStatus.running(), run_type)
        active.task = asyncio.create_task(
            self._run_and_record(active),
            name=f"reservation-{config.config_id[:8]}",
        )

    async def _run_and_record(self, active: ActiveRun) -> Optional[RunOutcome]:
        t('reservations.orchestrator.ReservationOrchestrator._run_and_record')
        config = active.config
        outcome: Optional[RunOutcome] = None
        status = RunStatus.stopped()
        try:
            outcome = await active.machine.run()
            status = outcome.status
            return outcome
        except asyncio.CancelledError:
            status = RunStatus.stopped()
            raise
        except Exception as exc:  # pragma: no cover - defensive guard
            error = ReservationError.from_exception(exc)
            self.logger.error("❌ Run for %s raised unexpectedly: %s", config.name, exc)
            status = RunStatus.failed(error.user_message, error.kind)
            return None
        finally:
            active.outcome = outcome
            await self._finish(active, status)

    async def _finish(self, active: ActiveRun, status: RunStatus) -> None:
        t('reservations.orchestrator.ReservationOrchestrator._finish')
        config = active.config
        current = self.status_store.get_last_run_info(config.config_id)
        if current is not None and current.status.is_terminal and current.status.reason == EMERGENCY_CLEANUP_REASON:
            status = current.status
        else:
            self.status_store.update(config.config_id, status, active.run_type)

        async with self._lock:
            if self._active.get(config.config_id) is active:
                del self._active[config.config_id]
            self._record_batch_result(status)

        if status.state is RunState.SUCCESS:
            self.logger.info("✅ %s booked successfully", config.name)
            await self._notify(active)
        elif status.state is RunState.FAILED:
            self.logger.error("❌ %s failed: %s", config.name, status.reason)
        else:
            self.logger.info("⏹️ %s stopped", config.name)

    def _record_batch_result(self, status: RunStatus) -> None:
        t('reservations.orchestrator.ReservationOrchestrator._record_batch_result')
        batch = self._batch
        if status.state is RunState.SUCCESS:
            batch.succeeded += 1
        elif status.state is RunState.FAILED:
            batch.failed += 1
        else:
            batch.stopped += 1

        if batch.finished < batch.total:
            return
        if batch.failed:
            self.last_run_status = RunStatus.failed(f"{batch.failed} of {batch.total} reservations failed")
        elif batch.stopped == batch.total:
            self.last_run_status = RunStatus.stopped()
        else:
            self.last_run_status = RunStatus.success()
        self.logger.info("🏁 Batch finished: %s", self.last_run_status.description)

    async def _notify(self, active: ActiveRun) -> None:
        t('reservations.orchestrator.ReservationOrchestrator._notify')
        if self.notifier is None:
            return
        machine = active.machine
        slot_text = ""
        if machine.target_day is not None:
            slot = active.config.slot_for(machine.target_day)
            if slot is not None:
                slot_text = f"{machine.target_day.value} {slot.label}"
        try:
            await self.notifier.notify_success(active.config, slot_text)
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.warning("⚠️ Notification for %s failed: %s", active.config.name, exc)

    # ------------------------------------------------------------------
    # Observing
    # ------------------------------------------------------------------
    @property
    def is_running(self) -> bool:
        return bool(self._active)

    def active_config_ids(self) -> List[str]:
        t('reservations.orchestrator.ReservationOrchestrator.active_config_ids')
        return list(self._active)

    def get_last_run_info(self, config_id: str):
        t('reservations.orchestrator.ReservationOrchestrator.get_last_run_info')
        return self.status_store.get_last_run_info(config_id)

    async def wait_for_all(self, timeout: Optional[float] = None) -> Dict[str, RunOutcome]:
        """Wait for every active run; runs still going after ``timeout`` keep running."""
        t('reservations.orchestrator.ReservationOrchestrator.wait_for_all')
        runs = list(self._active.values())
        tasks = [run.task for run in runs if run.task is not None]
        if tasks:
            await asyncio.wait(tasks, timeout=timeout, return_when=asyncio.ALL_COMPLETED)
        return {run.config.config_id: run.outcome for run in runs if run.outcome is not None}

    # ------------------------------------------------------------------
    # Stopping
    # ------------------------------------------------------------------
    async def stop_reservation(self, config_id: str) -> bool:
        """Signal a run to stop and wait for it to release its browser session."""
        t('reservations.orchestrator.ReservationOrchestrator.stop_reservation')
        active = self._active.get(config_id)
        if active is None:
            return False
        self.logger.info("⏹️ Stopping %s", active.config.name)
        active.token.cancel()
        await self._await_stopped([active])
        return True

    async def stop_all(self) -> int:
        t('reservations.orchestrator.ReservationOrchestrator.stop_all')
        runs = list(self._active.values())
        for active in runs:
            active.token.cancel()
        if runs:
            self.logger.info("⏹️ Stopping %s active run(s)", len(runs))
            await self._await_stopped(runs)
        return len(runs)

    async def _await_stopped(self, runs: Iterable[ActiveRun]) -> None:
        t('reservations.orchestrator.ReservationOrchestrator._await_stopped')
        tasks = [run.task for run in runs if run.task is not None and not run.task.done()]
        if not tasks:
            return
        done, pending = await asyncio.wait(tasks, timeout=self.stop_grace_seconds)
        if pending:
            self.logger.warning("Found %s runs ignoring the stop signal - cancelling them", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def emergency_cleanup(self, run_type: Optional[RunType] = None) -> int:
        """Tear down every active run of ``run_type`` (all runs when None); never raises."""
        t('reservations.orchestrator.ReservationOrchestrator.emergency_cleanup')
        try:
            runs = [
                active
                for active in list(self._active.values())
                if run_type is None or active.run_type is run_type
            ]
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.error("❌ Emergency cleanup could not list runs: %s", exc)
            return 0

        if not runs:
            return 0
        self.logger.warning("⚠️ Emergency cleanup of %s run(s)", len(runs))
        failure = RunStatus.failed(EMERGENCY_CLEANUP_REASON)
        for active in runs:
            try:
                self.status_store.update(active.config.config_id, failure, active.run_type)
                active.token.cancel()
            except Exception as exc:  # pragma: no cover - defensive guard
                self.logger.error("❌ Cleanup signal failed for %s: %s", active.config.name, exc)
        try:
            await self._await_stopped(runs)
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.error("❌ Emergency cleanup did not finish cleanly: %s", exc)
        return len(runs)


__all__ = [
    "EMERGENCY_CLEANUP_REASON",
    "ActiveRun",
    "BatchProgress",
    "DriverFactory",
    "ReservationOrchestrator",
    "SuccessNotifier",
]
