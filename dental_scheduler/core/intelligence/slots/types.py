"""
Closed slot structure accumulated over a conversation.

Slot values come from the extractor, which is an LLM and therefore not
trusted: only known fields are kept, each one type-checked, and each
intent accepts only the fields its handler uses.
"""

import logging
import re
from dataclasses import asdict, dataclass, fields, replace
from datetime import date
from enum import Enum
from typing import Any, Iterable, Mapping, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dental_scheduler.core.intelligence.intent.types import Intent
from dental_scheduler.core.scheduling.requests import (
    DATE_PATTERN,
    EMAIL_PATTERN,
    MAX_DURATION,
    MIN_DURATION,
    TIME_PATTERN,
)
from dental_scheduler.core.scheduling.types import TimeWindow

logger = logging.getLogger(__name__)

_DATE_RE = re.compile(DATE_PATTERN)
_TIME_RE = re.compile(TIME_PATTERN)
_EMAIL_RE = re.compile(EMAIL_PATTERN)
_LOOSE_TIME_RE = re.compile(r"^(\d{1,2})[:hH](\d{2})$")

MAX_TEXT_LENGTH = 500


class Urgency(str, Enum):
    """How soon the patient needs to be seen."""

    ROUTINE = "routine"
    URGENT = "urgent"
    EMERGENCY = "emergency"


# Extractors and UIs use camelCase; stored slots are snake_case
ALIASES = {
    "cabinetId": "cabinet_id",
    "patientEmail": "patient_email",
    "email": "patient_email",
    "patientPhone": "patient_phone",
    "phone": "patient_phone",
    "practitionerId": "practitioner_id",
    "serviceType": "service_type",
    "timeWindow": "time_window",
    "appointmentId": "appointment_id",
}

# Order in which missing slots are asked for
SLOT_PRIORITY = (
    "date",
    "time",
    "service_type",
    "patient_email",
    "practitioner_id",
    "appointment_id",
)


@dataclass
class CollectedSlots:
    """Slot values gathered so far in one conversation."""

    cabinet_id: Optional[str] = None
    patient_email: Optional[str] = None
    patient_phone: Optional[str] = None
    practitioner_id: Optional[str] = None
    service_type: Optional[str] = None
    duration: Optional[int] = None
    date: Optional[str] = None           # YYYY-MM-DD
    time: Optional[str] = None           # HH:MM
    time_window: Optional[TimeWindow] = None
    timezone: Optional[str] = None
    urgency: Optional[Urgency] = None
    notes: Optional[str] = None
    appointment_id: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def field_names(cls) -> frozenset[str]:
        return frozenset(f.name for f in fields(cls))

    @classmethod
    def from_mapping(
        cls,
        raw: Optional[Mapping[str, Any]],
        accepted: Optional[Iterable[str]] = None,
    ) -> tuple["CollectedSlots", dict[str, Any]]:
        """
        Build slots from an untrusted mapping.

        Args:
            raw: Slot values keyed by snake_case or camelCase names
            accepted: Field names to keep (all known fields when None)

        Returns:
            Tuple of (slots, rejected values keyed by original name)
        """
        allowed = cls.field_names() if accepted is None else frozenset(accepted)
        values: dict[str, Any] = {}
        rejected: dict[str, Any] = {}

        for key, value in (raw or {}).items():
            if value is None or value == "":
                continue
            name = ALIASES.get(key, key)
            if name not in allowed:
                rejected[key] = value
                continue
            cleaned = _clean(name, value)
            if cleaned is None:
                rejected[key] = value
                continue
            values[name] = cleaned

        if rejected:
            logger.debug(f"Dropped slot values: {sorted(rejected)}")
        return cls(**values), rejected

    @classmethod
    def for_intent(cls, intent: Intent, raw: Optional[Mapping[str, Any]]) -> "CollectedSlots":
        """Slots from raw values restricted to the fields of an intent."""
        slots, _ = cls.from_mapping(raw, INTENT_FIELDS.get(intent, frozenset()))
        return slots

    def merge(self, other: "CollectedSlots") -> "CollectedSlots":
        """Return a copy where every value set in other replaces ours."""
        updates = {key: value for key, value in asdict(other).items() if value is not None}
        return replace(self, **updates)

    def clear(self, *names: str) -> "CollectedSlots":
        """Return a copy with the given fields unset."""
        return replace(self, **{name: None for name in names})

    def missing(self, required: Iterable[str]) -> list[str]:
        """Required fields still unset, in asking order."""
        required = set(required)
        ordered = [name for name in SLOT_PRIORITY if name in required]
        ordered += sorted(required - set(SLOT_PRIORITY))
        return [name for name in ordered if getattr(self, name) is None]

    def to_dict(self) -> dict:
        """Convert to dict, excluding None values."""
        result = {}
        for key, value in asdict(self).items():
            if value is None:
                continue
            result[key] = value.value if isinstance(value, Enum) else value
        return result


# Fields each intent may set
INTENT_FIELDS: dict[Intent, frozenset[str]] = {
    Intent.CHECK_AVAILABILITY: frozenset({
        "cabinet_id", "practitioner_id", "service_type", "date", "time_window", "timezone",
    }),
    Intent.BOOK_APPOINTMENT: frozenset({
        "cabinet_id", "patient_email", "patient_phone", "practitioner_id", "service_type",
        "duration", "date", "time", "time_window", "timezone", "urgency", "notes",
    }),
    Intent.RESCHEDULE_APPOINTMENT: frozenset({
        "cabinet_id", "appointment_id", "patient_email", "date", "time", "timezone",
    }),
    Intent.CANCEL_APPOINTMENT: frozenset({
        "cabinet_id", "appointment_id", "patient_email", "reason",
    }),
    Intent.LIST_PRACTITIONERS: frozenset({"service_type"}),
    Intent.EMERGENCY: frozenset({"patient_phone", "notes", "urgency"}),
}

# Fields that must be set before an intent's operation can run
INTENT_REQUIRED: dict[Intent, frozenset[str]] = {
    Intent.CHECK_AVAILABILITY: frozenset({"date", "service_type"}),
    Intent.BOOK_APPOINTMENT: frozenset({
        "patient_email", "practitioner_id", "service_type", "date", "time",
    }),
    Intent.RESCHEDULE_APPOINTMENT: frozenset({"appointment_id", "date", "time"}),
    Intent.CANCEL_APPOINTMENT: frozenset({"appointment_id"}),
}


def _clean(name: str, value: Any) -> Any:
    """Validate and normalize one slot value. Returns None when invalid."""
    if name == "duration":
        if isinstance(value, bool):
            return None
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            return None
        return minutes if MIN_DURATION <= minutes <= MAX_DURATION else None

    if name == "time_window":
        try:
            return TimeWindow(str(value).lower())
        except ValueError:
            return None

    if name == "urgency":
        try:
            return Urgency(str(value).lower())
        except ValueError:
            return None

    if not isinstance(value, (str, int)) or isinstance(value, bool):
        return None
    text = str(value).strip()
    if not text or len(text) > MAX_TEXT_LENGTH:
        return None

    if name == "date":
        if not _DATE_RE.match(text):
            return None
        try:
            date.fromisoformat(text)
        except ValueError:
            return None
        return text

    if name == "time":
        loose = _LOOSE_TIME_RE.match(text)
        if loose:
            text = f"{int(loose.group(1)):02d}:{loose.group(2)}"
        return text if _TIME_RE.match(text) else None

    if name == "patient_email":
        text = text.lower()
        return text if _EMAIL_RE.match(text) else None

    if name == "timezone":
        try:
            ZoneInfo(text)
        except (ZoneInfoNotFoundError, ValueError):
            return None
        return text

    return text
