"""Conversation session module: state machine, context and persistence."""

from .state import (
    ConversationState,
    can_transition,
    get_valid_transitions,
    is_terminal_state,
)
from .models import (
    ChatMessage,
    ChatUser,
    ConversationContext,
    InvalidTransitionError,
    TenantInfo,
)
from .manager import SessionManager

__all__ = [
    # State
    "ConversationState",
    "can_transition",
    "get_valid_transitions",
    "is_terminal_state",
    # Models
    "ChatMessage",
    "ChatUser",
    "ConversationContext",
    "InvalidTransitionError",
    "TenantInfo",
    # Manager
    "SessionManager",
]
