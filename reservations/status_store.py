"""Last-known run status per config, exposed to the CLI for polling."""

from __future__ import annotations
from tracking import t

import asyncio
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

from automation.shared.reservation_contracts import RunRecord, RunStatus, RunType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


RecordWriter = Callable[[RunRecord], None]


class StatusStore:
    """Owns :class:`RunRecord` objects; last write wins.

    Terminal records are handed to the optional ``writer``. Inside a running
    event loop the write happens on a worker thread and :meth:`flush` waits for
    outstanding writes; without a loop it happens inline. Writer failures are
    only logged.
    """

    def __init__(
        self,
        *,
        writer: Optional[RecordWriter] = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('reservations.status_store.StatusStore.__init__')
        self._records: Dict[str, RunRecord] = {}
        self._lock = threading.Lock()
        self._writer = writer
        self._clock = clock
        self.logger = logger or logging.getLogger('ReservationOrchestrator')
        self._pending_writes: Set[asyncio.Task] = set()
        self._write_lock: Optional[asyncio.Lock] = None

    def update(
        self,
        config_id: str,
        status: RunStatus,
        run_type: Optional[RunType] = None,
    ) -> RunRecord:
        t('reservations.status_store.StatusStore.update')
        record = RunRecord(
            config_id=config_id,
            status=status,
            updated_at=self._clock(),
            run_type=run_type,
        )
        with self._lock:
            self._records[config_id] = record

        self.logger.debug("Status %s -> %s", config_id[:8], status.description)
        if self._writer is not None and status.is_terminal:
            self._schedule_write(record)
        return record

    def _schedule_write(self, record: RunRecord) -> None:
        t('reservations.status_store.StatusStore._schedule_write')
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            self._write(record)
            return
        task = asyncio.create_task(self._write_in_thread(record), name=f"persist-{record.config_id[:8]}")
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_in_thread(self, record: RunRecord) -> None:
        t('reservations.status_store.StatusStore._write_in_thread')
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        # FIFO lock keeps writes in update order
        async with self._write_lock:
            await asyncio.to_thread(self._write, record)

    def _write(self, record: RunRecord) -> None:
        t('reservations.status_store.StatusStore._write')
        try:
            self._writer(record)
        except Exception as exc:  # pragma: no cover - defensive guard
            self.logger.warning("⚠️ Failed to persist status for %s: %s", record.config_id[:8], exc)

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        t('reservations.status_store.StatusStore.flush')
        while self._pending_writes:
            await asyncio.gather(*list(self._pending_writes), return_exceptions=True)

    def get_last_run_info(self, config_id: str) -> Optional[RunRecord]:
        t('reservations.status_store.StatusStore.get_last_run_info')
        with self._lock:
            return self._records.get(config_id)

    def snapshot(self) -> Dict[str, RunRecord]:
        t('reservations.status_store.StatusStore.snapshot')
        with self._lock:
            return dict(self._records)

    def pending(self, config_ids: Iterable[str]) -> List[str]:
        """Ids from ``config_ids`` that have not reached a terminal status."""
        t('reservations.status_store.StatusStore.pending')
        with self._lock:
            return [
                config_id
                for config_id in config_ids
                if config_id not in self._records or not self._records[config_id].status.is_terminal
            ]

    def clear(self, config_id: Optional[str] = None) -> None:
        t('reservations.status_store.StatusStore.clear')
        with self._lock:
            if config_id is None:
                self._records.clear()
            else:
                self._records.pop(config_id, None)


class JsonRecordWriter:
    """Keeps the latest terminal record of every config in one JSON file."""

    def __init__(self, path: Path) -> None:
        t('reservations.status_store.JsonRecordWriter.__init__')
        self.path = Path(path)
        self._lock = threading.Lock()

    def __call__(self, record: RunRecord) -> None:
        t('reservations.status_store.JsonRecordWriter.__call__')
        with self._lock:
            data: Dict[str, dict] = {}
            if self.path.exists():
                try:
                    loaded = json.loads(self.path.read_text(encoding='utf-8'))
                    if isinstance(loaded, dict):
                        data = loaded
                except (OSError, ValueError):
                    data = {}
            data[record.config_id] = record.to_dict()
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding='utf-8')


__all__ = ["StatusStore", "JsonRecordWriter"]
