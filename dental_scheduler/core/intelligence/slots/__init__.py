"""Slot accumulation module."""

from .types import (
    CollectedSlots,
    INTENT_FIELDS,
    INTENT_REQUIRED,
    SLOT_PRIORITY,
    Urgency,
)

__all__ = [
    "CollectedSlots",
    "INTENT_FIELDS",
    "INTENT_REQUIRED",
    "SLOT_PRIORITY",
    "Urgency",
]
