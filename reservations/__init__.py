"""Reservation scheduling, execution and status tracking."""

from reservations.conflicts import ConflictDetector
from reservations.orchestrator import ReservationOrchestrator
from reservations.state_machine import CancellationToken, RunOutcome, RunStateMachine, RunStep, RunTimings
from reservations.status_store import JsonRecordWriter, StatusStore

__all__ = [
    "CancellationToken",
    "ConflictDetector",
    "JsonRecordWriter",
    "ReservationOrchestrator",
    "RunOutcome",
    "RunStateMachine",
    "RunStep",
    "RunTimings",
    "StatusStore",
]
