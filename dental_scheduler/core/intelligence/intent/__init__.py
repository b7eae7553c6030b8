"""Intent and entity extraction module."""

from .types import Entity, Intent, MUTATING_INTENTS, NLUResult
from .extractor import (
    ClaudeIntentExtractor,
    ExtractorError,
    IntentExtractor,
)

__all__ = [
    # Types
    "Entity",
    "Intent",
    "MUTATING_INTENTS",
    "NLUResult",
    # Extractor
    "ClaudeIntentExtractor",
    "ExtractorError",
    "IntentExtractor",
]
