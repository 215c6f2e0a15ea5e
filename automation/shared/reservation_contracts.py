"""Shared reservation contracts for the scheduler, runs, mail poller and CLI."""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from automation.shared.errors import ReservationErrorKind
from infrastructure.constants import FACILITY_URL_PATTERN


class Weekday(Enum):
    """Days a config can book, in the facility's Sunday-first order."""

    SUNDAY = "Sunday"
    MONDAY = "Monday"
    TUESDAY = "Tuesday"
    WEDNESDAY = "Wednesday"
    THURSDAY = "Thursday"
    FRIDAY = "Friday"
    SATURDAY = "Saturday"

    @property
    def short_name(self) -> str:
        return self.value[:3]

    @property
    def python_weekday(self) -> int:
        """Index matching :meth:`datetime.date.weekday` (Monday == 0)."""
        return (list(Weekday).index(self) - 1) % 7

    @classmethod
    def from_date(cls, day: date) -> "Weekday":
        return list(cls)[(day.weekday() + 1) % 7]

    @classmethod
    def parse(cls, value: str) -> "Weekday":
        """Accept full or short day names in any case."""
        text = (value or "").strip().lower()
        for member in cls:
            if text in (member.value.lower(), member.short_name.lower()):
                return member
        raise ValueError(f"Unknown weekday: {value!r}")


_TIME_PATTERN = re.compile(r"^\s*(\d{1,2}):(\d{2})(?::\d{2})?\s*([AaPp][Mm])?\s*$")


@dataclass(frozen=True, order=True)
class TimeSlot:
    """A time of day on the facility clock."""

    hour: int
    minute: int = 0

    def __post_init__(self) -> None:
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise ValueError(f"Invalid time slot {self.hour}:{self.minute}")

    @property
    def minutes(self) -> int:
        return self.hour * 60 + self.minute

    @property
    def label(self) -> str:
        """Render as the site displays slots, e.g. ``8:30 AM``."""
        suffix = "AM" if self.hour < 12 else "PM"
        hour = self.hour % 12 or 12
        return f"{hour}:{self.minute:02d} {suffix}"

    def to_json(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @classmethod
    def parse(cls, value: str) -> "TimeSlot":
        """Parse ``18:00``, ``18:00:00``, ``6:00 PM`` or ``6:00PM``."""
        match = _TIME_PATTERN.match(value or "")
        if not match:
            raise ValueError(f"Invalid time slot: {value!r}")
        hour, minute, meridiem = int(match.group(1)), int(match.group(2)), match.group(3)
        if meridiem:
            if not 1 <= hour <= 12:
                raise ValueError(f"Invalid 12-hour time: {value!r}")
            hour = hour % 12 + (12 if meridiem.lower() == "pm" else 0)
        return cls(hour, minute)

    def __str__(self) -> str:
        return self.label


def _normalize_slots(
    day_time_slots: Mapping[Any, Iterable[Any]]
) -> Dict[Weekday, Tuple[TimeSlot, ...]]:
    normalized: Dict[Weekday, Tuple[TimeSlot, ...]] = {}
    for raw_day, raw_slots in day_time_slots.items():
        day = raw_day if isinstance(raw_day, Weekday) else Weekday.parse(str(raw_day))
        slots = [
            slot if isinstance(slot, TimeSlot) else TimeSlot.parse(str(slot))
            for slot in raw_slots
        ]
        normalized[day] = tuple(dict.fromkeys(slots))
    return normalized


@dataclass(frozen=True)
class ReservationConfig:
    """One booking target. Owned by the config store, read-only here."""

    config_id: str
    name: str
    facility_url: str
    sport_name: str
    number_of_people: int = 1
    is_enabled: bool = True
    day_time_slots: Dict[Weekday, Tuple[TimeSlot, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "day_time_slots", _normalize_slots(self.day_time_slots))

    @classmethod
    def create(
        cls,
        name: str,
        facility_url: str,
        sport_name: str,
        day_time_slots: Mapping[Any, Iterable[Any]],
        *,
        number_of_people: int = 1,
        is_enabled: bool = True,
        config_id: Optional[str] = None,
    ) -> "ReservationConfig":
        return cls(
            config_id=config_id or str(uuid.uuid4()),
            name=name,
            facility_url=facility_url,
            sport_name=sport_name,
            number_of_people=number_of_people,
            is_enabled=is_enabled,
            day_time_slots=dict(day_time_slots),
        )

    def active_days(self) -> List[Weekday]:
        """Weekdays with at least one slot, Sunday first."""
        return [day for day in Weekday if self.day_time_slots.get(day)]

    @property
    def is_runnable(self) -> bool:
        return bool(self.active_days())

    def slot_for(self, day: Weekday) -> Optional[TimeSlot]:
        """Slot to book on ``day``; only the first slot per day is supported."""
        slots = self.day_time_slots.get(day) or ()
        return slots[0] if slots else None

    @property
    def facility_name(self) -> str:
        return extract_facility_name(self.facility_url)

    @property
    def schedule_summary(self) -> str:
        """Inline schedule such as ``Mon 8:30 AM, 9:30 AM • Wed 7:00 PM``."""
        parts = [
            f"{day.short_name} {', '.join(slot.label for slot in self.day_time_slots[day])}"
            for day in self.active_days()
        ]
        return " • ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.config_id,
            "name": self.name,
            "facilityURL": self.facility_url,
            "sportName": self.sport_name,
            "numberOfPeople": self.number_of_people,
            "isEnabled": self.is_enabled,
            "dayTimeSlots": {
                day.value: [slot.to_json() for slot in slots]
                for day, slots in self.day_time_slots.items()
            },
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ReservationConfig":
        return cls(
            config_id=str(payload.get("id") or uuid.uuid4()),
            name=str(payload.get("name", "")),
            facility_url=str(payload.get("facilityURL", "")),
            sport_name=str(payload.get("sportName", "")),
            number_of_people=int(payload.get("numberOfPeople", 1)),
            is_enabled=bool(payload.get("isEnabled", True)),
            day_time_slots=dict(payload.get("dayTimeSlots") or {}),
        )


def extract_facility_name(facility_url: str) -> str:
    """Pull the facility slug out of the reservation URL, capitalised."""
    match = re.search(FACILITY_URL_PATTERN, facility_url or "")
    if not match:
        return facility_url
    return match.group(1).capitalize()


@dataclass(frozen=True)
class UserProfile:
    """Contact details typed into the form plus mailbox credentials."""

    name: str
    phone_number: str
    email: str
    imap_password: str = ""
    imap_server: str = ""

    @property
    def contact_phone(self) -> str:
        """Phone as the form expects it, without separators."""
        return self.phone_number.replace("-", "").replace(" ", "")

    @property
    def masked_phone(self) -> str:
        return f"***{self.phone_number[-3:]}" if self.phone_number else "***"

    @property
    def masked_email(self) -> str:
        domain = self.email.split("@")[-1] if "@" in self.email else "unknown"
        return f"***@{domain}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "phoneNumber": self.phone_number,
            "imapEmail": self.email,
            "imapPassword": self.imap_password,
            "imapServer": self.imap_server,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "UserProfile":
        return cls(
            name=str(payload.get("name", "")),
            phone_number=str(payload.get("phoneNumber", "")),
            email=str(payload.get("imapEmail", "")),
            imap_password=str(payload.get("imapPassword", "")),
            imap_server=str(payload.get("imapServer", "")),
        )


class RunType(Enum):
    """How a run was triggered. Does not change automation behaviour."""

    MANUAL = "manual"
    AUTORUN = "autorun"


class RunState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass(frozen=True)
class RunStatus:
    """Status of a config's latest run; ``reason`` is set only when failed."""

    state: RunState
    reason: Optional[str] = None
    error_kind: Optional[ReservationErrorKind] = None

    @classmethod
    def idle(cls) -> "RunStatus":
        return cls(RunState.IDLE)

    @classmethod
    def running(cls) -> "RunStatus":
        return cls(RunState.RUNNING)

    @classmethod
    def success(cls) -> "RunStatus":
        return cls(RunState.SUCCESS)

    @classmethod
    def stopped(cls) -> "RunStatus":
        return cls(RunState.STOPPED)

    @classmethod
    def failed(
        cls, reason: str, kind: Optional[ReservationErrorKind] = None
    ) -> "RunStatus":
        return cls(RunState.FAILED, reason=reason, error_kind=kind)

    @property
    def is_terminal(self) -> bool:
        return self.state in (RunState.SUCCESS, RunState.FAILED, RunState.STOPPED)

    @property
    def description(self) -> str:
        if self.state == RunState.FAILED:
            return f"Failed: {self.reason}"
        return {
            RunState.IDLE: "Idle",
            RunState.RUNNING: "Running",
            RunState.SUCCESS: "Successful",
            RunState.STOPPED: "Stopped",
        }[self.state]


@dataclass(frozen=True)
class RunRecord:
    """Last known status of a config plus when it was written."""

    config_id: str
    status: RunStatus
    updated_at: datetime
    run_type: Optional[RunType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "configId": self.config_id,
            "status": self.status.state.value,
            "reason": self.status.reason,
            "errorCode": self.status.error_kind.code if self.status.error_kind else None,
            "updatedAt": self.updated_at.isoformat(),
            "runType": self.run_type.value if self.run_type else None,
        }


@dataclass(frozen=True)
class VerificationEmail:
    """A message fetched from the mailbox; never persisted."""

    sender: str
    subject: str
    body: str
    received_at: datetime


class ConflictType(Enum):
    SAME_FACILITY_OVERLAP = "Same Facility Overlap"
    SAME_TIME_DIFFERENT_FACILITY = "Same Time Different Facility"
    SAME_FACILITY_DIFFERENT_SPORT = "Same Facility Different Sport"


class ConflictSeverity(Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return {"info": 0, "warning": 1, "critical": 2}[self.value]


@dataclass(frozen=True)
class Conflict:
    """Advisory clash between two configs, shown at edit time only."""

    conflict_type: ConflictType
    severity: ConflictSeverity
    message: str
    details: Tuple[str, ...] = field(default_factory=tuple)
    config_ids: Tuple[str, ...] = field(default_factory=tuple)


def runnable_configs(configs: Sequence[ReservationConfig]) -> List[ReservationConfig]:
    """Keep enabled configs that have at least one slot."""
    return [config for config in configs if config.is_enabled and config.is_runnable]


__all__ = [
    "Weekday",
    "TimeSlot",
    "ReservationConfig",
    "UserProfile",
    "RunType",
    "RunState",
    "RunStatus",
    "RunRecord",
    "VerificationEmail",
    "ConflictType",
    "ConflictSeverity",
    "Conflict",
    "extract_facility_name",
    "runnable_configs",
]
