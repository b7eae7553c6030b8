"""Conversation state machine."""

from enum import Enum
from typing import Set


class ConversationState(str, Enum):
    """States of one chat session."""

    ACTIVE = "active"
    WAITING_FOR_INPUT = "waiting_for_input"

    # Terminal states
    COMPLETED = "completed"
    ESCALATED = "escalated"


# Valid state transitions
VALID_TRANSITIONS: dict[ConversationState, Set[ConversationState]] = {
    ConversationState.ACTIVE: {
        ConversationState.ACTIVE,
        ConversationState.WAITING_FOR_INPUT,
        ConversationState.COMPLETED,
        ConversationState.ESCALATED,
    },
    ConversationState.WAITING_FOR_INPUT: {
        ConversationState.ACTIVE,
        ConversationState.WAITING_FOR_INPUT,
        ConversationState.COMPLETED,
        ConversationState.ESCALATED,
    },
    ConversationState.COMPLETED: set(),  # Terminal state
    ConversationState.ESCALATED: set(),  # Terminal state
}


def can_transition(from_state: ConversationState, to_state: ConversationState) -> bool:
    """Check if a state transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


def get_valid_transitions(state: ConversationState) -> Set[ConversationState]:
    """Get all valid transitions from a state."""
    return VALID_TRANSITIONS.get(state, set())


def is_terminal_state(state: ConversationState) -> bool:
    """Check if state is terminal (a new session is needed to continue)."""
    return state in {
        ConversationState.COMPLETED,
        ConversationState.ESCALATED,
    }
