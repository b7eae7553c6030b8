"""
Conversation security checks.

- SecurityFilter: screens a raw message before it reaches the extractor
- AccessPolicy: decides whether a user may act on a cabinet
"""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

from dental_scheduler.core.intelligence.session.models import ChatUser

logger = logging.getLogger(__name__)


# ==================================
# Configuration
# ==================================

# Prompt injection patterns to detect
PROMPT_INJECTION_PATTERNS = [
    # Direct instruction override
    r"ignore\s+(all\s+)?(previous|prior|above|all)\s+(instructions?|prompts?|rules?)",
    r"disregard\s+(all\s+)?(previous|prior|above)\s+(instructions?|prompts?|rules?)",
    r"forget\s+(all\s+)?(previous|prior|above)\s+(instructions?|prompts?|rules?)",
    r"ignore[rz]?\s+(toutes\s+)?(les\s+)?instructions\s+(pr[ée]c[ée]dentes|ci-dessus)",

    # Role manipulation
    r"you\s+are\s+now\s+",
    r"pretend\s+(you're|you\s+are|to\s+be)\s+",
    r"act\s+as\s+(a|an|if)\s+",
    r"roleplay\s+as\s+",
    r"switch\s+to\s+.+\s+mode",

    # Role markers
    r"^\s*(system|assistant)\s*:",
    r"\n\s*(system|assistant)\s*:",
    r"\[\s*(system|assistant)\s*\]",
    r"<\|.*?\|>",

    # Template injection
    r"\{\{.*?\}\}",
    r"\{%.*?%\}",

    # System prompt extraction
    r"(show|reveal|display|print|output)\s+(me\s+)?(your|the)\s+(system\s+)?(prompt|instructions?)",
    r"what\s+(are|is)\s+your\s+(system\s+)?(prompt|instructions?)",
    r"repeat\s+(your|the)\s+(system\s+)?(prompt|instructions?)",

    # Jailbreak attempts
    r"jailbreak",
    r"DAN\s+mode",
    r"developer\s+mode",
    r"bypass\s+(your\s+)?(restrictions?|filters?|rules?)",
]

# Roles allowed to act on every cabinet
ADMIN_ROLES = frozenset({"admin", "super_admin"})

# Roles limited to the cabinets they are assigned to
STAFF_ROLES = frozenset({"manager", "practitioner", "assistant", "staff"})


# ==================================
# Security Filter
# ==================================

class SecurityFilter(ABC):
    """Screens inbound messages. Replaceable by any classifier."""

    @abstractmethod
    def is_unsafe(self, text: str) -> bool:
        """True when the message must not reach the extractor."""


class PromptInjectionFilter(SecurityFilter):
    """
    Regex screen for prompt-injection phrasing.

    Usage:
        screen = PromptInjectionFilter()
        screen.is_unsafe("Ignore all previous instructions")  # True
        screen.is_unsafe("Can I book a cleaning on Monday?")  # False
    """

    def __init__(self, patterns: Optional[list[str]] = None):
        """
        Initialize filter.

        Args:
            patterns: Regex patterns (defaults to PROMPT_INJECTION_PATTERNS)
        """
        self._patterns = [
            re.compile(pattern, re.IGNORECASE | re.MULTILINE)
            for pattern in (patterns or PROMPT_INJECTION_PATTERNS)
        ]

    def matches(self, text: str) -> list[str]:
        """Patterns that match the text (first 50 chars of each, for logging)."""
        return [pattern.pattern[:50] for pattern in self._patterns if pattern.search(text or "")]

    def is_unsafe(self, text: str) -> bool:
        matched = self.matches(text)
        if matched:
            logger.warning(f"Prompt injection detected: {matched}")
        return bool(matched)


# ==================================
# Access Policy
# ==================================

class AccessPolicy:
    """
    Cabinet-level authorization for mutating conversation intents.

    - admin / super_admin: every cabinet
    - staff roles: cabinets listed in assigned_cabinets
    - anyone else: only the cabinet the session belongs to
    """

    def can_access(self, user: ChatUser, cabinet_id: str, session_cabinet_id: str) -> bool:
        """
        Check access.

        Args:
            user: Acting user
            cabinet_id: Cabinet the operation targets
            session_cabinet_id: Cabinet of the conversation
        """
        role = (user.role or "").lower()
        if role in ADMIN_ROLES:
            return True
        if role in STAFF_ROLES:
            return cabinet_id in user.assigned_cabinets
        return cabinet_id == session_cabinet_id
