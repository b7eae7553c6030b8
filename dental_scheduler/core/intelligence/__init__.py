"""
Intelligence Layer Module

Intent/entity extraction, the closed slot structure and conversation
session management used by the dialogue orchestrator.

Usage:
    from dental_scheduler.core.intelligence import (
        ClaudeIntentExtractor,
        CollectedSlots,
        SessionManager,
    )

    extractor = ClaudeIntentExtractor(claude_client)
    result = await extractor.extract("Can I book a cleaning tomorrow at 10?")
    print(result.intent)  # Intent.BOOK_APPOINTMENT

    slots = CollectedSlots.for_intent(result.intent, result.slots)
    print(slots.time)  # "10:00"
"""

# Intent Extraction
from dental_scheduler.core.intelligence.intent.types import Entity, Intent, MUTATING_INTENTS, NLUResult
from dental_scheduler.core.intelligence.intent.extractor import (
    ClaudeIntentExtractor,
    ExtractorError,
    IntentExtractor,
)

# Slots
from dental_scheduler.core.intelligence.slots.types import (
    CollectedSlots,
    INTENT_FIELDS,
    INTENT_REQUIRED,
    Urgency,
)

# Session Management
from dental_scheduler.core.intelligence.session.state import (
    ConversationState,
    can_transition,
    is_terminal_state,
)
from dental_scheduler.core.intelligence.session.models import (
    ChatMessage,
    ChatUser,
    ConversationContext,
    TenantInfo,
)
from dental_scheduler.core.intelligence.session.manager import SessionManager

__all__ = [
    # Intent
    "Entity",
    "Intent",
    "MUTATING_INTENTS",
    "NLUResult",
    "ClaudeIntentExtractor",
    "ExtractorError",
    "IntentExtractor",
    # Slots
    "CollectedSlots",
    "INTENT_FIELDS",
    "INTENT_REQUIRED",
    "Urgency",
    # Session
    "ConversationState",
    "can_transition",
    "is_terminal_state",
    "ChatMessage",
    "ChatUser",
    "ConversationContext",
    "TenantInfo",
    "SessionManager",
]
