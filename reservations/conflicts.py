"""Advisory conflict detection between reservation configs (edit time only)."""

from __future__ import annotations
from tracking import t

import logging
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlsplit

from automation.shared.reservation_contracts import (
    Conflict,
    ConflictSeverity,
    ConflictType,
    ReservationConfig,
    TimeSlot,
    Weekday,
)

SLOT_DURATION_MINUTES = 60


def normalize_facility_url(url: str) -> str:
    """Host + path, lower-cased, without query, fragment or trailing slash."""
    t('reservations.conflicts.normalize_facility_url')
    parts = urlsplit((url or "").strip())
    if not parts.netloc:
        return (url or "").strip().lower().rstrip("/")
    return f"{parts.netloc.lower()}{parts.path.rstrip('/').lower()}"


def slots_overlap(first: TimeSlot, second: TimeSlot, duration: int = SLOT_DURATION_MINUTES) -> bool:
    t('reservations.conflicts.slots_overlap')
    return abs(first.minutes - second.minutes) < duration


class ConflictDetector:
    """Compares a candidate config against existing enabled configs.

    - same facility, same sport, overlapping window: critical
    - different facility, identical day and time: warning
    - same facility, different sport, overlapping window: info
    """

    def __init__(
        self,
        slot_duration_minutes: int = SLOT_DURATION_MINUTES,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        t('reservations.conflicts.ConflictDetector.__init__')
        self.slot_duration = slot_duration_minutes
        self.logger = logger or logging.getLogger(__name__)

    def validate(
        self, new_config: ReservationConfig, existing_configs: Sequence[ReservationConfig]
    ) -> List[Conflict]:
        """Conflicts between ``new_config`` and every other enabled config."""
        t('reservations.conflicts.ConflictDetector.validate')
        conflicts: List[Conflict] = []
        for other in existing_configs:
            if other.config_id == new_config.config_id or not other.is_enabled:
                continue
            conflicts.extend(self._compare(new_config, other))
        conflicts.sort(key=lambda conflict: conflict.severity.rank, reverse=True)
        self.logger.info(
            "🔍 %s conflict(s) for %s against %s config(s)",
            len(conflicts),
            new_config.name,
            len(existing_configs),
        )
        return conflicts

    def detect_all(self, configs: Sequence[ReservationConfig]) -> List[Conflict]:
        """Pairwise conflicts across a whole config set (enabled configs only)."""
        t('reservations.conflicts.ConflictDetector.detect_all')
        enabled = [config for config in configs if config.is_enabled]
        conflicts: List[Conflict] = []
        for index, first in enumerate(enabled):
            for second in enabled[index + 1:]:
                conflicts.extend(self._compare(first, second))
        conflicts.sort(key=lambda conflict: conflict.severity.rank, reverse=True)
        return conflicts

    def _compare(self, first: ReservationConfig, second: ReservationConfig) -> List[Conflict]:
        t('reservations.conflicts.ConflictDetector._compare')
        shared_days = [day for day in first.active_days() if day in second.active_days()]
        if not shared_days:
            return []

        same_facility = normalize_facility_url(first.facility_url) == normalize_facility_url(second.facility_url)
        same_sport = first.sport_name.strip().lower() == second.sport_name.strip().lower()
        ids = (first.config_id, second.config_id)

        if same_facility:
            overlaps = self._pairs(shared_days, first, second, exact=False)
            if not overlaps:
                return []
            details = tuple(self._describe(day, a, b) for day, a, b in overlaps)
            if same_sport:
                return [
                    Conflict(
                        conflict_type=ConflictType.SAME_FACILITY_OVERLAP,
                        severity=ConflictSeverity.CRITICAL,
                        message=f"'{first.name}' and '{second.name}' book {first.sport_name} "
                        f"at {first.facility_name} at overlapping times",
                        details=details,
                        config_ids=ids,
                    )
                ]
            return [
                Conflict(
                    conflict_type=ConflictType.SAME_FACILITY_DIFFERENT_SPORT,
                    severity=ConflictSeverity.INFO,
                    message=f"'{first.name}' ({first.sport_name}) and '{second.name}' ({second.sport_name}) "
                    f"overlap at {first.facility_name}",
                    details=details,
                    config_ids=ids,
                )
            ]

        clashes = self._pairs(shared_days, first, second, exact=True)
        if not clashes:
            return []
        return [
            Conflict(
                conflict_type=ConflictType.SAME_TIME_DIFFERENT_FACILITY,
                severity=ConflictSeverity.WARNING,
                message=f"'{first.name}' at {first.facility_name} and '{second.name}' at "
                f"{second.facility_name} are booked at the same time",
                details=tuple(f"{day.value} at {a.label}" for day, a, _ in clashes),
                config_ids=ids,
            )
        ]

    def _pairs(
        self,
        days: Sequence[Weekday],
        first: ReservationConfig,
        second: ReservationConfig,
        *,
        exact: bool,
    ) -> List[Tuple[Weekday, TimeSlot, TimeSlot]]:
        t('reservations.conflicts.ConflictDetector._pairs')
        matches: List[Tuple[Weekday, TimeSlot, TimeSlot]] = []
        for day in days:
            for a in first.day_time_slots.get(day, ()):
                for b in second.day_time_slots.get(day, ()):
                    if (a == b) if exact else slots_overlap(a, b, self.slot_duration):
                        matches.append((day, a, b))
        return matches

    @staticmethod
    def _describe(day: Weekday, a: TimeSlot, b: TimeSlot) -> str:
        if a == b:
            return f"{day.value} at {a.label}"
        return f"{day.value}: {a.label} and {b.label}"

    @staticmethod
    def summary(conflicts: Sequence[Conflict]) -> str:
        t('reservations.conflicts.ConflictDetector.summary')
        if not conflicts:
            return "No conflicts detected"
        critical = sum(1 for conflict in conflicts if conflict.severity is ConflictSeverity.CRITICAL)
        warnings = sum(1 for conflict in conflicts if conflict.severity is ConflictSeverity.WARNING)
        info = sum(1 for conflict in conflicts if conflict.severity is ConflictSeverity.INFO)

        lines = ["Conflict Summary:"]
        if critical:
            lines.append(f"• {critical} critical conflicts")
        if warnings:
            lines.append(f"• {warnings} warnings")
        if info:
            lines.append(f"• {info} informational conflicts")
        return "\n".join(lines)

    @staticmethod
    def has_blocking_conflicts(conflicts: Sequence[Conflict]) -> bool:
        """True when a save should be refused (any critical conflict)."""
        t('reservations.conflicts.ConflictDetector.has_blocking_conflicts')
        return any(conflict.severity is ConflictSeverity.CRITICAL for conflict in conflicts)


__all__ = [
    "SLOT_DURATION_MINUTES",
    "ConflictDetector",
    "normalize_facility_url",
    "slots_overlap",
]
