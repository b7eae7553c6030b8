"""
Conversation context stored between turns.

The dialogue orchestrator is the only writer. The context is serialized
to JSON for Redis and rebuilt on the next message of the session.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from dental_scheduler.config import settings
from dental_scheduler.core.intelligence.intent.types import Intent
from dental_scheduler.core.intelligence.slots.types import CollectedSlots
from .state import ConversationState, can_transition, is_terminal_state

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class InvalidTransitionError(Exception):
    """Raised on a state change the conversation state machine forbids."""
    pass


@dataclass
class ChatUser:
    """Acting user of a session."""

    user_id: str
    role: str = "patient"
    email: Optional[str] = None
    assigned_cabinets: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "role": self.role,
            "email": self.email,
            "assigned_cabinets": list(self.assigned_cabinets),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChatUser":
        return cls(
            user_id=data["user_id"],
            role=data.get("role", "patient"),
            email=data.get("email"),
            assigned_cabinets=list(data.get("assigned_cabinets") or []),
        )


@dataclass
class TenantInfo:
    """Cabinet the session talks to."""

    id: str
    name: str
    timezone: str
    business_hours: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "timezone": self.timezone,
            "business_hours": self.business_hours,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TenantInfo":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            timezone=data.get("timezone") or settings.default_timezone,
            business_hours=data.get("business_hours") or {},
        )


@dataclass
class ChatMessage:
    """One history entry."""

    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: Optional[dict] = None

    def to_dict(self) -> dict:
        return {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        return cls(
            role=data["role"],
            content=data["content"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            metadata=data.get("metadata"),
        )


@dataclass
class ConversationContext:
    """
    Complete per-session conversation state.

    collected_slots is replaced wholesale on every merge; the history is
    trimmed to max_messages.
    """

    user: ChatUser
    tenant: TenantInfo
    session_id: str = field(default_factory=lambda: str(uuid4()))
    messages: list[ChatMessage] = field(default_factory=list)
    state: ConversationState = ConversationState.ACTIVE
    current_intent: Optional[Intent] = None
    collected_slots: CollectedSlots = field(default_factory=CollectedSlots)
    confirmation_pending: bool = False

    # Appointment ids offered in a numbered list, awaiting the user's pick
    pending_selection: list[str] = field(default_factory=list)

    max_messages: int = field(default_factory=lambda: settings.max_history_messages)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return is_terminal_state(self.state)

    def transition(self, new_state: ConversationState) -> None:
        """
        Move to a new state.

        Raises:
            InvalidTransitionError: If the state machine forbids it
        """
        if not can_transition(self.state, new_state):
            raise InvalidTransitionError(f"Invalid transition: {self.state.value} -> {new_state.value}")
        if new_state != self.state:
            logger.debug(f"Session {self.session_id} transitioned to {new_state.value}")
        self.state = new_state

    def add_message(self, role: str, content: str, metadata: Optional[dict] = None) -> None:
        """Append to history."""
        self.messages.append(ChatMessage(role=role, content=content, metadata=metadata))
        self.updated_at = _utcnow()
        if len(self.messages) > self.max_messages:
            self.messages = self.messages[-self.max_messages:]

    def trailing_fallback_turns(self) -> int:
        """Consecutive most recent assistant turns tagged with the fallback intent."""
        count = 0
        for message in reversed(self.messages):
            if message.role != "assistant":
                continue
            if (message.metadata or {}).get("intent") != Intent.FALLBACK.value:
                break
            count += 1
        return count

    def last_assistant_message(self) -> Optional[str]:
        for message in reversed(self.messages):
            if message.role == "assistant":
                return message.content
        return None

    def reset_pending(self) -> None:
        """Drop any confirmation or selection in progress."""
        self.confirmation_pending = False
        self.pending_selection = []

    def extractor_context(self, practitioners: Optional[list] = None) -> dict[str, Any]:
        """Context handed to the intent/entity extractor.

        Args:
            practitioners: Active practitioners of the cabinet, so a name
                in the message can be matched to an id
        """
        return {
            "practitioners": [{"id": p.id, "name": p.name} for p in practitioners or []],
            "tenant": {"id": self.tenant.id, "name": self.tenant.name, "timezone": self.tenant.timezone},
            "user": {"user_id": self.user.user_id, "role": self.user.role},
            "previous_state": {
                "state": self.state.value,
                "current_intent": self.current_intent.value if self.current_intent else None,
                "collected_slots": self.collected_slots.to_dict(),
                "confirmation_pending": self.confirmation_pending,
                "last_assistant_message": self.last_assistant_message(),
            },
        }

    def to_json(self) -> str:
        """Convert to JSON string for Redis storage."""
        return json.dumps(self.to_dict())

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "user": self.user.to_dict(),
            "tenant": self.tenant.to_dict(),
            "messages": [message.to_dict() for message in self.messages],
            "state": self.state.value,
            "current_intent": self.current_intent.value if self.current_intent else None,
            "collected_slots": self.collected_slots.to_dict(),
            "confirmation_pending": self.confirmation_pending,
            "pending_selection": list(self.pending_selection),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_json(cls, json_str: str) -> "ConversationContext":
        """Create from JSON string."""
        data = json.loads(json_str)
        slots, _ = CollectedSlots.from_mapping(data.get("collected_slots"))
        return cls(
            session_id=data["session_id"],
            user=ChatUser.from_dict(data["user"]),
            tenant=TenantInfo.from_dict(data["tenant"]),
            messages=[ChatMessage.from_dict(m) for m in data.get("messages", [])],
            state=ConversationState(data.get("state", ConversationState.ACTIVE.value)),
            current_intent=Intent(data["current_intent"]) if data.get("current_intent") else None,
            collected_slots=slots,
            confirmation_pending=data.get("confirmation_pending", False),
            pending_selection=list(data.get("pending_selection") or []),
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )
