"""
Dialogue Module

Security screening, event logging, reply templates and the orchestrator
that drives a conversation through availability and booking.

Usage:
    from dental_scheduler.core.dialogue import DialogueOrchestrator

    orchestrator = DialogueOrchestrator(availability, booking, cabinet_directory, extractor)
    response = await orchestrator.handle_message("I'd like to book a cleaning", context)
    print(response.to_dict())
"""

# Security
from dental_scheduler.core.dialogue.security import (
    AccessPolicy,
    PromptInjectionFilter,
    SecurityFilter,
)

# Events
from dental_scheduler.core.dialogue.audit import (
    AuditEvent,
    AuditEventType,
    AuditSeverity,
    EventLogger,
)

# Responses
from dental_scheduler.core.dialogue.responses import ChatOption, ChatResponse, InputType

# Orchestration
from dental_scheduler.core.dialogue.orchestrator import DialogueOrchestrator

__all__ = [
    # Security
    "AccessPolicy",
    "PromptInjectionFilter",
    "SecurityFilter",
    # Events
    "AuditEvent",
    "AuditEventType",
    "AuditSeverity",
    "EventLogger",
    # Responses
    "ChatOption",
    "ChatResponse",
    "InputType",
    # Orchestration
    "DialogueOrchestrator",
]
