"""
Dialogue Orchestrator.

Turns free-text conversation into scheduling operations:

1. Security screen (no extractor call on unsafe input)
2. Pending selection / confirmation handling
3. Intent and slot extraction
4. Confidence gate
5. Slot merge, restricted to the fields of the intent
6. Permission check for mutating intents
7. Intent routing
8. History and state bookkeeping

Every reply is a fixed template from responses.py; the extractor only
produces structure.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from dental_scheduler.config import settings
from dental_scheduler.core.dialogue import responses
from dental_scheduler.core.dialogue.audit import AuditEventType, AuditSeverity, EventLogger
from dental_scheduler.core.dialogue.responses import ChatOption, ChatResponse, InputType
from dental_scheduler.core.dialogue.security import (
    AccessPolicy,
    PromptInjectionFilter,
    SecurityFilter,
)
from dental_scheduler.core.intelligence.intent.extractor import IntentExtractor
from dental_scheduler.core.intelligence.intent.types import Intent, MUTATING_INTENTS
from dental_scheduler.core.intelligence.session.models import ConversationContext
from dental_scheduler.core.intelligence.session.state import ConversationState
from dental_scheduler.core.intelligence.slots.types import CollectedSlots, INTENT_REQUIRED
from dental_scheduler.core.scheduling.availability import AvailabilityService
from dental_scheduler.core.scheduling.booking import BookingTransactionManager
from dental_scheduler.core.scheduling.cabinet import CabinetDirectory
from dental_scheduler.core.scheduling.errors import ConflictError, ResourceNotFound, ValidationError
from dental_scheduler.core.scheduling.timeutils import resolve_timezone
from dental_scheduler.core.scheduling.types import PractitionerInfo
from dental_scheduler.models.database import AppointmentStatus

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


# Replies accepted as confirming a pending booking or cancellation
AFFIRMATIVE_TOKENS = frozenset({"yes", "y", "ok", "okay", "confirm", "oui"})

# Replies that drop a pending booking or cancellation
NEGATIVE_TOKENS = frozenset({"no", "n", "non", "change"})

# Request fields named differently from the slot they come from
REQUEST_FIELD_SLOTS = {"new_date": "date", "new_time": "time"}

# Words signalling an explicit request for a human
HUMAN_KEYWORDS = (
    "human",
    "agent",
    "person",
    "staff",
    "representative",
    "receptionist",
    "conseiller",
    "humain",
)

# Appointments that can still be rescheduled or cancelled from the chat
SELECTABLE_STATUSES = [AppointmentStatus.SCHEDULED, AppointmentStatus.CONFIRMED]

# Apology per intent when a downstream call fails
FAILURE_MESSAGES = {
    Intent.BOOK_APPOINTMENT: responses.BOOKING_FAILED,
    Intent.RESCHEDULE_APPOINTMENT: responses.RESCHEDULE_FAILED,
    Intent.CANCEL_APPOINTMENT: responses.CANCEL_FAILED,
}

_HUMAN_RE = re.compile(r"\b(" + "|".join(HUMAN_KEYWORDS) + r")s?\b", re.IGNORECASE)


def _token(text: str) -> str:
    """Lowercased reply stripped of surrounding punctuation."""
    return re.sub(r"[^\w\s-]", "", (text or "").strip().lower()).strip()


def wants_human(text: str) -> bool:
    return bool(_HUMAN_RE.search(text or ""))


# Courtesy titles ignored when matching a practitioner by name
NAME_TITLES = frozenset({"dr", "doctor", "docteur", "prof"})


def _name_tokens(name: str) -> frozenset[str]:
    return frozenset(re.findall(r"\w+", name.lower())) - NAME_TITLES


def match_practitioner(value: str, practitioners: list[PractitionerInfo]) -> Optional[str]:
    """
    Id of the practitioner a slot value refers to.

    Matches an exact id first, then a name whose words contain every word
    of the value ("Dr Martin" matches "Dr Alice Martin"). Returns None when
    nothing or more than one practitioner matches.
    """
    for practitioner in practitioners:
        if practitioner.id == value:
            return practitioner.id

    wanted = _name_tokens(value)
    if not wanted:
        return None
    matches = [p.id for p in practitioners if wanted <= _name_tokens(p.name)]
    return matches[0] if len(matches) == 1 else None


@dataclass
class _Turn:
    """Intent and confidence attached to the assistant reply in history."""

    intent: Optional[Intent] = None
    confidence: float = 0.0

    def metadata(self) -> dict:
        return {
            "intent": self.intent.value if self.intent else None,
            "confidence": self.confidence,
        }


class DialogueOrchestrator:
    """
    Per-session conversation state machine.

    Usage:
        orchestrator = DialogueOrchestrator(
            availability=AvailabilityService(tenants),
            booking=BookingTransactionManager(tenants, notifications),
            cabinet_directory=CabinetDirectory(tenants),
            extractor=ClaudeIntentExtractor(ClaudeClient()),
        )
        response = await orchestrator.handle_message("Hello", context)
    """

    def __init__(
        self,
        availability: AvailabilityService,
        booking: BookingTransactionManager,
        cabinet_directory: CabinetDirectory,
        extractor: IntentExtractor,
        security_filter: Optional[SecurityFilter] = None,
        access_policy: Optional[AccessPolicy] = None,
        events: Optional[EventLogger] = None,
        confidence_threshold: Optional[float] = None,
        fallback_threshold: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._availability = availability
        self._booking = booking
        self._cabinet = cabinet_directory
        self._extractor = extractor
        self._security = security_filter or PromptInjectionFilter()
        self._access = access_policy or AccessPolicy()
        self._events = events or EventLogger()
        self._confidence_threshold = (
            settings.confidence_threshold if confidence_threshold is None else confidence_threshold
        )
        self._fallback_threshold = fallback_threshold or settings.fallback_escalation_threshold
        self._clock = clock

    @property
    def events(self) -> EventLogger:
        return self._events

    # =========================================================================
    # Entry point
    # =========================================================================

    async def handle_message(self, text: str, context: ConversationContext) -> ChatResponse:
        """
        Process one inbound message.

        Never raises for downstream failures: they become an apologetic
        reply with escalate=True and are logged server-side.

        Args:
            text: Raw user message
            context: Session context, mutated in place

        Returns:
            ChatResponse for the UI
        """
        if context.is_terminal:
            return ChatResponse(
                message=responses.SESSION_CLOSED,
                completed=context.state == ConversationState.COMPLETED,
                escalate=context.state == ConversationState.ESCALATED,
            )

        if self._security.is_unsafe(text):
            self._events.security_event(
                AuditEventType.PROMPT_INJECTION_DETECTED,
                tenant_id=context.tenant.id,
                session_id=context.session_id,
                user_id=context.user.user_id,
                details={"message_length": len(text or "")},
            )
            response = ChatResponse(
                message=responses.UNSAFE_MESSAGE,
                suggested_replies=list(responses.UNSAFE_SUGGESTIONS),
            )
            context.add_message("user", text, {"blocked": True})
            context.add_message("assistant", response.message, {"intent": None, "confidence": 0.0})
            return response

        context.add_message("user", text)
        turn = _Turn()

        try:
            response = await self._process(text, context, turn)
        except ConflictError as e:
            logger.info(f"Conflict in session {context.session_id}: {e.message}")
            context.reset_pending()
            context.collected_slots = context.collected_slots.clear("time")
            response = self._conflict_response()
        except ResourceNotFound as e:
            logger.info(f"Resource not found in session {context.session_id}: {e.message}")
            context.reset_pending()
            if turn.intent == Intent.BOOK_APPOINTMENT:
                message = responses.BOOKING_FAILED
            else:
                message = responses.APPOINTMENT_NOT_FOUND
            response = ChatResponse(
                message=message,
                suggested_replies=["Talk to a receptionist"],
                escalate=True,
            )
        except ValidationError as e:
            logger.info(f"Invalid slot values in session {context.session_id}: {e.field_errors}")
            context.reset_pending()
            invalid = sorted({
                REQUEST_FIELD_SLOTS.get(name, name) for name in e.field_errors
            } & CollectedSlots.field_names())
            context.collected_slots = context.collected_slots.clear(*invalid)
            response = ChatResponse(
                message=responses.INVALID_DETAILS.format(fields=", ".join(invalid) or "request"),
                requires_input=True,
                input_type=InputType.TEXT,
            )
        except Exception as e:
            logger.exception(f"Error handling message in session {context.session_id}: {e}")
            self._events.log(
                AuditEventType.SYSTEM_ERROR,
                AuditSeverity.ERROR,
                context.tenant.id,
                session_id=context.session_id,
                user_id=context.user.user_id,
                details={"error_type": type(e).__name__},
            )
            context.reset_pending()
            response = ChatResponse(
                message=FAILURE_MESSAGES.get(turn.intent, responses.TECHNICAL_ERROR),
                escalate=True,
            )

        self._apply_state(context, response)
        context.add_message("assistant", response.message, turn.metadata())
        return response

    async def _process(
        self,
        text: str,
        context: ConversationContext,
        turn: _Turn,
    ) -> ChatResponse:
        # Numbered appointment choice offered on the previous turn
        if context.pending_selection and context.current_intent:
            selected = self._match_selection(text, context.pending_selection)
            context.pending_selection = []
            if selected:
                turn.intent, turn.confidence = context.current_intent, 1.0
                context.collected_slots = context.collected_slots.merge(
                    CollectedSlots(appointment_id=selected)
                )
                return await self._route(context.current_intent, context, turn)

        # Confirmation handshake
        reentry_intent = None
        if context.confirmation_pending and context.current_intent:
            pending = context.current_intent
            answer = _token(text)
            if answer in AFFIRMATIVE_TOKENS:
                turn.intent, turn.confidence = pending, 1.0
                denied = self._check_permission(context)
                if denied:
                    return denied
                return await self._execute_confirmed(pending, context)
            if answer in NEGATIVE_TOKENS:
                turn.intent, turn.confidence = pending, 1.0
                context.reset_pending()
                if pending == Intent.CANCEL_APPOINTMENT:
                    context.current_intent = None
                    context.collected_slots = context.collected_slots.clear("appointment_id", "reason")
                    return ChatResponse(
                        message=responses.CANCEL_KEPT,
                        suggested_replies=list(responses.MAIN_MENU),
                    )
                return ChatResponse(
                    message=responses.CONFIRMATION_DECLINED,
                    requires_input=True,
                    input_type=InputType.TEXT,
                )
            # Anything else goes back to slot filling for the pending intent
            context.confirmation_pending = False
            reentry_intent = pending

        practitioners = await self._cabinet.list_practitioners(context.tenant.id)
        result = await self._extractor.extract(text, context.extractor_context(practitioners))
        turn.intent, turn.confidence = result.intent, result.confidence

        if result.confidence < self._confidence_threshold:
            turn.intent = Intent.FALLBACK
            logger.info(
                f"Low confidence ({result.confidence:.2f}) for {result.intent.value} "
                f"in session {context.session_id}"
            )
            return self._low_confidence(text, context)

        intent = result.intent
        if intent == Intent.FALLBACK and reentry_intent:
            intent = reentry_intent
            turn.intent = intent

        extracted = CollectedSlots.for_intent(intent, result.slots)
        if extracted.practitioner_id:
            # Names left unmatched stay as given and fail at the operation
            matched = match_practitioner(extracted.practitioner_id, practitioners)
            if matched:
                extracted = extracted.merge(CollectedSlots(practitioner_id=matched))
        context.collected_slots = context.collected_slots.merge(extracted)

        if intent in MUTATING_INTENTS:
            denied = self._check_permission(context)
            if denied:
                return denied

        if intent != Intent.FALLBACK:
            context.current_intent = intent

        return await self._route(intent, context, turn)

    async def _route(self, intent: Intent, context: ConversationContext, turn: _Turn) -> ChatResponse:
        handlers = {
            Intent.GREETING: self._handle_greeting,
            Intent.CHECK_AVAILABILITY: self._handle_check_availability,
            Intent.BOOK_APPOINTMENT: self._handle_book,
            Intent.RESCHEDULE_APPOINTMENT: self._handle_reschedule,
            Intent.CANCEL_APPOINTMENT: self._handle_cancel,
            Intent.LIST_PRACTITIONERS: self._handle_list_practitioners,
            Intent.CLINIC_INFO: self._handle_clinic_info,
            Intent.EMERGENCY: self._handle_emergency,
            Intent.HELP: self._handle_help,
            Intent.GOODBYE: self._handle_goodbye,
        }
        handler = handlers.get(intent)
        if handler is None:
            return self._handle_fallback(context)
        return await handler(context)

    # =========================================================================
    # Gates
    # =========================================================================

    def _low_confidence(self, text: str, context: ConversationContext) -> ChatResponse:
        if wants_human(text):
            return self._human_handoff(context)
        if context.trailing_fallback_turns() >= self._fallback_threshold:
            return self._fallback_escalation(context)
        return ChatResponse(
            message=responses.LOW_CONFIDENCE,
            requires_input=True,
            input_type=InputType.SELECT,
            options=list(responses.LOW_CONFIDENCE_OPTIONS),
        )

    def _check_permission(self, context: ConversationContext) -> Optional[ChatResponse]:
        """Denial reply when the user may not act on the target cabinet."""
        target = self._target_cabinet(context)
        if self._access.can_access(context.user, target, context.tenant.id):
            return None

        self._events.security_event(
            AuditEventType.UNAUTHORIZED_CABINET_ACCESS,
            tenant_id=context.tenant.id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"target_cabinet": target, "role": context.user.role},
        )
        context.reset_pending()
        return ChatResponse(message=responses.ACCESS_DENIED, escalate=True)

    @staticmethod
    def _target_cabinet(context: ConversationContext) -> str:
        return context.collected_slots.cabinet_id or context.tenant.id

    @staticmethod
    def _match_selection(text: str, candidates: list[str]) -> Optional[str]:
        """Appointment id picked by number (1-based) or by id."""
        answer = (text or "").strip().rstrip(".")
        if answer.isdigit():
            index = int(answer) - 1
            if 0 <= index < len(candidates):
                return candidates[index]
            return None
        for candidate in candidates:
            if candidate.lower() == answer.lower():
                return candidate
        return None

    # =========================================================================
    # Informational intents
    # =========================================================================

    async def _handle_greeting(self, context: ConversationContext) -> ChatResponse:
        local_now = self._clock().astimezone(resolve_timezone(context.tenant.timezone))
        return ChatResponse(
            message=responses.greeting(local_now, context.tenant.name),
            suggested_replies=list(responses.MAIN_MENU),
        )

    async def _handle_help(self, context: ConversationContext) -> ChatResponse:
        return ChatResponse(
            message=responses.HELP,
            suggested_replies=list(responses.HELP_SUGGESTIONS),
        )

    async def _handle_goodbye(self, context: ConversationContext) -> ChatResponse:
        return ChatResponse(message=responses.GOODBYE, completed=True)

    async def _handle_list_practitioners(self, context: ConversationContext) -> ChatResponse:
        practitioners = await self._cabinet.list_practitioners(context.tenant.id)
        if not practitioners:
            return ChatResponse(message=responses.NO_PRACTITIONERS, escalate=True)

        return ChatResponse(
            message=responses.practitioners_list(practitioners),
            suggested_replies=[p.name for p in practitioners[:3]],
            data={"practitioners": [p.to_dict() for p in practitioners]},
        )

    async def _handle_clinic_info(self, context: ConversationContext) -> ChatResponse:
        info = await self._cabinet.get_info(context.tenant.id)
        return ChatResponse(
            message=responses.clinic_info(info.to_dict()),
            suggested_replies=list(responses.CLINIC_INFO_SUGGESTIONS),
            data={"cabinet": info.to_dict()},
        )

    async def _handle_emergency(self, context: ConversationContext) -> ChatResponse:
        slots = context.collected_slots
        self._events.business_event(
            AuditEventType.EMERGENCY_REQUEST,
            tenant_id=context.tenant.id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={
                "urgency": slots.urgency.value if slots.urgency else None,
                "callback_phone": slots.patient_phone,
            },
        )
        return ChatResponse(message=responses.EMERGENCY, escalate=True, completed=True)

    def _handle_fallback(self, context: ConversationContext) -> ChatResponse:
        last_user = next(
            (m.content for m in reversed(context.messages) if m.role == "user"),
            "",
        )
        if wants_human(last_user):
            return self._human_handoff(context)
        if context.trailing_fallback_turns() >= self._fallback_threshold:
            return self._fallback_escalation(context)
        return ChatResponse(
            message=responses.FALLBACK,
            suggested_replies=list(responses.FALLBACK_SUGGESTIONS),
        )

    def _human_handoff(self, context: ConversationContext) -> ChatResponse:
        self._events.business_event(
            AuditEventType.HUMAN_ESCALATION_REQUESTED,
            tenant_id=context.tenant.id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"reason": "user_request"},
        )
        return ChatResponse(message=responses.HUMAN_HANDOFF, escalate=True)

    def _fallback_escalation(self, context: ConversationContext) -> ChatResponse:
        self._events.business_event(
            AuditEventType.HUMAN_ESCALATION_REQUESTED,
            tenant_id=context.tenant.id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"reason": "repeated_fallback"},
        )
        return ChatResponse(message=responses.FALLBACK_ESCALATION, escalate=True)

    # =========================================================================
    # Availability
    # =========================================================================

    async def _handle_check_availability(self, context: ConversationContext) -> ChatResponse:
        slots = context.collected_slots
        missing = slots.missing(INTENT_REQUIRED[Intent.CHECK_AVAILABILITY])
        if missing:
            return self._prompt_for(missing[0])

        result = await self._availability.check_availability(
            tenant_id=self._target_cabinet(context),
            date=slots.date,
            service_type=slots.service_type,
            practitioner_id=slots.practitioner_id,
            time_window=slots.time_window.value if slots.time_window else None,
            timezone=slots.timezone,
        )

        if not result.slots:
            return ChatResponse(
                message=responses.NO_SLOTS.format(day=responses.format_day(slots.date)),
                suggested_replies=list(responses.NO_SLOTS_SUGGESTIONS),
                data={"available_slots": [], "business_hours": result.business_hours},
            )

        shown = result.slots[: settings.max_slots_displayed]
        return ChatResponse(
            message=responses.slots_list(slots.date, shown),
            requires_input=True,
            input_type=InputType.SELECT,
            options=[
                ChatOption(
                    value=slot.start_time.strftime("%H:%M"),
                    label=f"{slot.start_time.strftime('%H:%M')} - {slot.practitioner_name}",
                )
                for slot in shown
            ],
            data={
                "available_slots": [slot.to_dict() for slot in result.slots],
                "business_hours": result.business_hours,
            },
        )

    # =========================================================================
    # Booking
    # =========================================================================

    async def _handle_book(self, context: ConversationContext) -> ChatResponse:
        slots = context.collected_slots
        missing = slots.missing(INTENT_REQUIRED[Intent.BOOK_APPOINTMENT])
        if missing:
            return self._prompt_for(missing[0])

        context.confirmation_pending = True
        return ChatResponse(
            message=responses.booking_recap(slots),
            requires_input=True,
            input_type=InputType.CONFIRMATION,
            options=list(responses.BOOKING_OPTIONS),
        )

    async def _execute_confirmed(self, intent: Intent, context: ConversationContext) -> ChatResponse:
        if intent == Intent.BOOK_APPOINTMENT:
            return await self._execute_booking(context)
        if intent == Intent.CANCEL_APPOINTMENT:
            return await self._execute_cancel(context)

        # Only booking and cancellation use the confirmation handshake
        context.reset_pending()
        return await self._route(intent, context, _Turn(intent, 1.0))

    async def _execute_booking(self, context: ConversationContext) -> ChatResponse:
        slots = context.collected_slots
        tenant_id = self._target_cabinet(context)
        try:
            appointment = await self._booking.book_appointment(
                tenant_id=tenant_id,
                patient_email=slots.patient_email,
                practitioner_id=slots.practitioner_id,
                service_type=slots.service_type,
                date=slots.date,
                time=slots.time,
                timezone=slots.timezone,
                duration=slots.duration,
                notes=slots.notes,
                booked_by=context.user.user_id,
            )
        except ConflictError as e:
            self._record_conflict(context, e)
            raise

        context.reset_pending()
        self._events.business_event(
            AuditEventType.APPOINTMENT_BOOKED,
            tenant_id=tenant_id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"appointment_id": appointment.id},
        )
        return ChatResponse(
            message=responses.booking_confirmed(appointment, context.tenant.name),
            completed=True,
            data={"appointment": appointment.to_dict()},
        )

    # =========================================================================
    # Reschedule / cancel
    # =========================================================================

    async def _resolve_appointment(
        self,
        context: ConversationContext,
        action: str,
    ) -> Optional[ChatResponse]:
        """
        Fill appointment_id from the patient's email when possible.

        Returns:
            A reply to send instead of proceeding, or None to continue
        """
        slots = context.collected_slots
        if slots.appointment_id or not slots.patient_email:
            return None

        appointments = await self._booking.find_patient_appointments(
            tenant_id=self._target_cabinet(context),
            patient_email=slots.patient_email,
            status=SELECTABLE_STATUSES,
        )

        if not appointments:
            return ChatResponse(
                message=responses.APPOINTMENT_NOT_FOUND,
                suggested_replies=["Talk to a receptionist"],
                escalate=True,
            )

        if len(appointments) == 1:
            context.collected_slots = slots.merge(CollectedSlots(appointment_id=appointments[0].id))
            return None

        context.pending_selection = [appointment.id for appointment in appointments]
        return ChatResponse(
            message=responses.appointment_choices(appointments, action),
            requires_input=True,
            input_type=InputType.SELECT,
            options=[
                ChatOption(
                    value=str(index),
                    label=f"{responses.format_day(appointment.date)} at {appointment.time}",
                )
                for index, appointment in enumerate(appointments, start=1)
            ],
            data={"appointments": [appointment.to_dict() for appointment in appointments]},
        )

    async def _handle_reschedule(self, context: ConversationContext) -> ChatResponse:
        pending = await self._resolve_appointment(context, "move")
        if pending:
            return pending

        slots = context.collected_slots
        missing = slots.missing(INTENT_REQUIRED[Intent.RESCHEDULE_APPOINTMENT])
        if missing:
            return self._prompt_for(missing[0])

        tenant_id = self._target_cabinet(context)
        try:
            appointment = await self._booking.reschedule_appointment(
                tenant_id=tenant_id,
                appointment_id=slots.appointment_id,
                new_date=slots.date,
                new_time=slots.time,
                timezone=slots.timezone,
                rescheduled_by=context.user.user_id,
            )
        except ConflictError as e:
            self._record_conflict(context, e)
            raise

        context.reset_pending()
        self._events.business_event(
            AuditEventType.APPOINTMENT_RESCHEDULED,
            tenant_id=tenant_id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"appointment_id": appointment.id, "version": appointment.version},
        )
        return ChatResponse(
            message=responses.reschedule_confirmed(appointment),
            completed=True,
            data={"appointment": appointment.to_dict()},
        )

    async def _handle_cancel(self, context: ConversationContext) -> ChatResponse:
        pending = await self._resolve_appointment(context, "cancel")
        if pending:
            return pending

        missing = context.collected_slots.missing(INTENT_REQUIRED[Intent.CANCEL_APPOINTMENT])
        if missing:
            return self._prompt_for(missing[0])

        context.confirmation_pending = True
        return ChatResponse(
            message=responses.CANCEL_QUESTION,
            requires_input=True,
            input_type=InputType.CONFIRMATION,
            options=list(responses.CANCEL_OPTIONS),
        )

    async def _execute_cancel(self, context: ConversationContext) -> ChatResponse:
        slots = context.collected_slots
        tenant_id = self._target_cabinet(context)
        await self._booking.cancel_appointment(
            tenant_id=tenant_id,
            appointment_id=slots.appointment_id,
            reason=slots.reason,
            cancelled_by=context.user.user_id,
        )

        context.reset_pending()
        self._events.business_event(
            AuditEventType.APPOINTMENT_CANCELLED,
            tenant_id=tenant_id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"appointment_id": slots.appointment_id},
        )
        return ChatResponse(message=responses.CANCEL_CONFIRMED, completed=True)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _record_conflict(self, context: ConversationContext, error: ConflictError) -> None:
        self._events.business_event(
            AuditEventType.BOOKING_CONFLICT,
            tenant_id=context.tenant.id,
            session_id=context.session_id,
            user_id=context.user.user_id,
            details={"conflicts": error.details.get("conflicts", [])},
        )

    @staticmethod
    def _conflict_response() -> ChatResponse:
        return ChatResponse(
            message=responses.CONFLICT,
            suggested_replies=list(responses.CONFLICT_SUGGESTIONS),
            requires_input=True,
            input_type=InputType.TIME,
        )

    @staticmethod
    def _prompt_for(slot: str) -> ChatResponse:
        return ChatResponse(
            message=responses.slot_prompt(slot),
            requires_input=True,
            input_type=responses.SLOT_INPUT_TYPES.get(slot, InputType.TEXT),
        )

    @staticmethod
    def _apply_state(context: ConversationContext, response: ChatResponse) -> None:
        if response.completed:
            context.transition(ConversationState.COMPLETED)
        elif response.escalate:
            context.transition(ConversationState.ESCALATED)
        elif response.requires_input:
            context.transition(ConversationState.WAITING_FOR_INPUT)
        else:
            context.transition(ConversationState.ACTIVE)
