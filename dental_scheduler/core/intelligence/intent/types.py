"""Intent types produced by the intent/entity extractor."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Intent(str, Enum):
    """Patient intent categories."""

    # Conversation
    GREETING = "greeting"
    HELP = "help"
    GOODBYE = "goodbye"

    # Scheduling
    CHECK_AVAILABILITY = "check_availability"
    BOOK_APPOINTMENT = "book_appointment"
    RESCHEDULE_APPOINTMENT = "reschedule_appointment"
    CANCEL_APPOINTMENT = "cancel_appointment"

    # Information
    LIST_PRACTITIONERS = "list_practitioners"
    CLINIC_INFO = "clinic_info"

    # Urgent care, always handed to staff
    EMERGENCY = "emergency"

    # Fallback
    FALLBACK = "fallback"


# Intents that write to the schedule and need a permission check
MUTATING_INTENTS = frozenset({
    Intent.BOOK_APPOINTMENT,
    Intent.RESCHEDULE_APPOINTMENT,
    Intent.CANCEL_APPOINTMENT,
})


@dataclass
class Entity:
    """Span recognised in the message (date, time, email, phone, service...)."""

    type: str
    value: str
    confidence: float = 1.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {"type": self.type, "value": self.value, "confidence": self.confidence}


@dataclass
class NLUResult:
    """Result of intent and entity extraction."""

    intent: Intent
    confidence: float  # 0.0 - 1.0
    slots: dict[str, Any] = field(default_factory=dict)
    entities: list[Entity] = field(default_factory=list)
    raw_text: str = ""

    # Raw LLM output for debugging
    raw_response: Optional[str] = None

    # Processing time
    processing_time_ms: float = 0.0

    @property
    def is_mutating(self) -> bool:
        """Check if the intent changes the schedule."""
        return self.intent in MUTATING_INTENTS

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "slots": self.slots,
            "entities": [entity.to_dict() for entity in self.entities],
            "raw_text": self.raw_text,
            "processing_time_ms": self.processing_time_ms,
        }
