"""
Conversation Event Logging

Structured security and business events raised by the dialogue
orchestrator. Events are written to the "dental_scheduler.events" logger
as JSON so a log shipper can index them, and kept in a bounded in-memory
buffer for inspection.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

events_logger = logging.getLogger("dental_scheduler.events")


class AuditEventType(str, Enum):
    """Types of conversation events."""

    # Security Events
    PROMPT_INJECTION_DETECTED = "prompt_injection_detected"
    UNAUTHORIZED_CABINET_ACCESS = "unauthorized_cabinet_access"

    # Business Events
    APPOINTMENT_BOOKED = "appointment_booked"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    BOOKING_CONFLICT = "booking_conflict"
    EMERGENCY_REQUEST = "emergency_request"

    # Escalation
    HUMAN_ESCALATION_REQUESTED = "human_escalation_requested"

    # System Events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity levels for events."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


SECURITY_EVENTS = frozenset({
    AuditEventType.PROMPT_INJECTION_DETECTED,
    AuditEventType.UNAUTHORIZED_CABINET_ACCESS,
})


@dataclass
class AuditEvent:
    """Individual event record."""

    event_type: AuditEventType
    severity: AuditSeverity
    tenant_id: str
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    details: dict = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_security_event(self) -> bool:
        return self.event_type in SECURITY_EVENTS

    def to_dict(self) -> dict:
        """Convert to dictionary for storage/transmission."""
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "tenant_id": self.tenant_id,
            "session_id": self.session_id,
            "user_id": self.user_id,
            "details": self.details,
        }

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), default=str)


class EventLogger:
    """
    Records security and business events.

    Usage:
        events = EventLogger()
        events.security_event(
            AuditEventType.PROMPT_INJECTION_DETECTED,
            tenant_id="cabinet-1",
            session_id="abc",
            user_id="user-1",
        )
    """

    def __init__(self, buffer_size: int = 1000):
        """
        Initialize EventLogger.

        Args:
            buffer_size: Number of recent events kept in memory
        """
        self._events: deque[AuditEvent] = deque(maxlen=buffer_size)

    @property
    def events(self) -> list[AuditEvent]:
        """Recent events, oldest first."""
        return list(self._events)

    def log(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        tenant_id: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Record an event."""
        event = AuditEvent(
            event_type=event_type,
            severity=severity,
            tenant_id=tenant_id,
            session_id=session_id,
            user_id=user_id,
            details=details or {},
        )
        self._events.append(event)

        log_level = getattr(logging, severity.value.upper(), logging.INFO)
        events_logger.log(log_level, event.to_json())
        return event

    def security_event(
        self,
        event_type: AuditEventType,
        tenant_id: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Record a security event (always WARNING)."""
        return self.log(
            event_type,
            AuditSeverity.WARNING,
            tenant_id,
            session_id=session_id,
            user_id=user_id,
            details=details,
        )

    def business_event(
        self,
        event_type: AuditEventType,
        tenant_id: str,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        """Record a business event. Emergencies are CRITICAL, everything else INFO."""
        severity = (
            AuditSeverity.CRITICAL
            if event_type == AuditEventType.EMERGENCY_REQUEST
            else AuditSeverity.INFO
        )
        return self.log(
            event_type,
            severity,
            tenant_id,
            session_id=session_id,
            user_id=user_id,
            details=details,
        )
