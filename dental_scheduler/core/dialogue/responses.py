"""
Chat responses and reply templates.

Replies are fixed templates: the orchestrator never lets the language
model write user-facing text.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from dental_scheduler.core.intelligence.slots.types import CollectedSlots
from dental_scheduler.core.scheduling.types import AppointmentResult, PractitionerInfo, Slot


class InputType(str, Enum):
    """Kind of input the UI should collect next."""

    TEXT = "text"
    DATE = "date"
    TIME = "time"
    SELECT = "select"
    CONFIRMATION = "confirmation"


@dataclass
class ChatOption:
    """Selectable option."""

    value: str
    label: str

    def to_dict(self) -> dict:
        return {"value": self.value, "label": self.label}


@dataclass
class ChatResponse:
    """Reply to one inbound message."""

    message: str
    suggested_replies: list[str] = field(default_factory=list)
    requires_input: bool = False
    input_type: Optional[InputType] = None
    options: list[ChatOption] = field(default_factory=list)
    completed: bool = False
    escalate: bool = False
    data: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "message": self.message,
            "suggested_replies": self.suggested_replies,
            "requires_input": self.requires_input,
            "input_type": self.input_type.value if self.input_type else None,
            "options": [option.to_dict() for option in self.options],
            "completed": self.completed,
            "escalate": self.escalate,
            "data": self.data,
        }


# ==================================
# Fixed replies
# ==================================

MAIN_MENU = [
    "Book an appointment",
    "Check availability",
    "Change my appointment",
    "Cancel my appointment",
]

UNSAFE_MESSAGE = (
    "I can't process that request. Could you rephrase your question about your appointments?"
)
UNSAFE_SUGGESTIONS = ["Book an appointment", "See my appointments", "Talk to a receptionist"]

SESSION_CLOSED = "This conversation has ended. Please start a new conversation to continue."

HUMAN_HANDOFF = "I'm connecting you with a member of our team. Please wait a moment..."

LOW_CONFIDENCE = (
    "I'm not sure I understood. Would you like to:\n\n"
    "• Book an appointment\n"
    "• Change an existing appointment\n"
    "• Check availability\n"
    "• Talk to a receptionist?"
)
LOW_CONFIDENCE_OPTIONS = [
    ChatOption("book", "Book an appointment"),
    ChatOption("modify", "Change an appointment"),
    ChatOption("availability", "Check availability"),
    ChatOption("human", "Talk to a receptionist"),
]

FALLBACK = (
    "I'm not sure I understand. Could you rephrase? "
    "I can help you book, change or cancel an appointment."
)
FALLBACK_SUGGESTIONS = [
    "Book an appointment",
    "Change my appointment",
    "Cancel my appointment",
    "Talk to a receptionist",
]
FALLBACK_ESCALATION = "I'm having trouble understanding your request. A member of our team will help you personally."

ACCESS_DENIED = "You don't have access to this practice. Please contact your administrator."

TECHNICAL_ERROR = "Sorry, I'm having a technical problem. A member of our team will help you."

HELP = (
    "I can help you with:\n\n"
    "• Booking an appointment\n"
    "• Changing or cancelling an appointment\n"
    "• Checking availability\n"
    "• Practice information\n"
    "• Dental emergencies\n\n"
    "What would you like to do?"
)
HELP_SUGGESTIONS = [
    "Book an appointment",
    "Change my appointment",
    "Check availability",
    "Talk to a receptionist",
]

GOODBYE = "Goodbye! Come back any time you need help with your appointments. Have a nice day!"

EMERGENCY = (
    "For a dental emergency:\n\n"
    "📞 Call the practice right away\n"
    "🏥 Or go to the nearest hospital emergency department\n\n"
    "I'm passing your request to our team, who will call you back as soon as possible."
)

NO_SLOTS = "Sorry, there are no free slots on {day}. Would you like to see other dates?"
NO_SLOTS_SUGGESTIONS = ["See other dates", "Change practitioner", "Talk to a receptionist"]

CONFLICT = "That time is no longer available. Would you like to choose another time?"
CONFLICT_SUGGESTIONS = ["See other slots", "Change the date", "Talk to a receptionist"]

BOOKING_FAILED = "I can't complete your booking. A member of our team will help you right away."
RESCHEDULE_FAILED = "I can't move your appointment. A member of our team will help you."
CANCEL_FAILED = "I can't cancel your appointment. A member of our team will help you."

APPOINTMENT_NOT_FOUND = (
    "I can't find a matching appointment. "
    "Would you like to check your email address or talk to a receptionist?"
)

NO_PRACTITIONERS = "No practitioner is available at the moment."

CONFIRMATION_DECLINED = "No problem. What would you like to change?"

INVALID_DETAILS = "Some details don't look right ({fields}). Could you give them to me again?"

# Prompt for the first missing slot, per slot
SLOT_PROMPTS = {
    "date": "What date would you like?",
    "time": "What time would you prefer?",
    "service_type": "What type of treatment do you need?",
    "patient_email": "What is your email address?",
    "practitioner_id": "Do you have a preferred practitioner?",
    "appointment_id": "Could you give me your appointment number or your email address?",
}

SLOT_INPUT_TYPES = {
    "date": InputType.DATE,
    "time": InputType.TIME,
}


# ==================================
# Formatting helpers
# ==================================

def format_day(value: str) -> str:
    """YYYY-MM-DD as "Monday 15 January 2024"; unparseable values unchanged."""
    try:
        parsed = date.fromisoformat(value)
    except (TypeError, ValueError):
        return value
    return f"{parsed.strftime('%A')} {parsed.day} {parsed.strftime('%B %Y')}"


def greeting(now: datetime, cabinet_name: str) -> str:
    """Salutation depending on the local hour."""
    if now.hour >= 18:
        salutation = "Good evening"
    elif now.hour >= 12:
        salutation = "Good afternoon"
    else:
        salutation = "Good morning"
    return (
        f"{salutation}! I'm the appointment assistant for {cabinet_name}. "
        "How can I help you today?"
    )


def slot_prompt(name: str) -> str:
    return SLOT_PROMPTS.get(name, f"Could you tell me the {name.replace('_', ' ')}?")


def slots_list(day: str, slots: list[Slot]) -> str:
    lines = "\n".join(
        f"• {slot.start_time.strftime('%H:%M')} with {slot.practitioner_name}" for slot in slots
    )
    return f"Here are the free slots on {format_day(day)}:\n\n{lines}\n\nWould you like to book one of them?"


def booking_recap(slots: CollectedSlots, practitioner_name: Optional[str] = None) -> str:
    lines = [
        f"• Date: {format_day(slots.date)}",
        f"• Time: {slots.time}",
        f"• Treatment: {slots.service_type}",
        f"• Practitioner: {practitioner_name or slots.practitioner_id}",
        f"• Email: {slots.patient_email}",
    ]
    return "Here is a summary of your appointment:\n\n" + "\n".join(lines) + "\n\nShall I confirm this booking?"


BOOKING_OPTIONS = [
    ChatOption("yes", "Confirm"),
    ChatOption("no", "Change"),
]


def booking_confirmed(appointment: AppointmentResult, cabinet_name: str) -> str:
    return (
        f"Your appointment is confirmed:\n\n"
        f"📅 {format_day(appointment.date)} at {appointment.time}\n"
        f"📍 {cabinet_name}\n"
        f"📧 A confirmation email is on its way to {appointment.patient_email}\n\n"
        "We'll send you a reminder before your visit. See you soon!"
    )


def reschedule_confirmed(appointment: AppointmentResult) -> str:
    return (
        "Your appointment has been moved.\n\n"
        f"📅 New date: {format_day(appointment.date)} at {appointment.time}\n"
        "📧 A confirmation email has been sent."
    )


CANCEL_QUESTION = "Are you sure you want to cancel your appointment? This cannot be undone."
CANCEL_OPTIONS = [
    ChatOption("yes", "Confirm cancellation"),
    ChatOption("no", "Keep my appointment"),
]
CANCEL_CONFIRMED = (
    "Your appointment has been cancelled. A confirmation email has been sent.\n\n"
    "Feel free to book a new appointment whenever you like!"
)


def appointment_choices(appointments: list[AppointmentResult], action: str) -> str:
    lines = "\n".join(
        f"{index}. {format_day(appointment.date)} at {appointment.time}"
        for index, appointment in enumerate(appointments, start=1)
    )
    return f"I found several appointments:\n\n{lines}\n\nWhich one would you like to {action}?"


def practitioners_list(practitioners: list[PractitionerInfo]) -> str:
    lines = "\n".join(
        f"• {p.name}" + (f" - {p.specialization}" if p.specialization else "")
        for p in practitioners
    )
    return f"Here are our practitioners:\n\n{lines}\n\nWould you like to book with one of them?"


def clinic_info(info: dict) -> str:
    hours = info.get("business_hours") or {}
    hours_lines = []
    for weekday, value in hours.items():
        if value:
            hours_lines.append(f"  {weekday.capitalize()}: {value['open']}-{value['close']}")
        else:
            hours_lines.append(f"  {weekday.capitalize()}: closed")

    lines = [f"About {info['name']}:", ""]
    if info.get("address"):
        lines.append(f"📍 Address: {info['address']}")
    if info.get("phone"):
        lines.append(f"📞 Phone: {info['phone']}")
    if info.get("email"):
        lines.append(f"📧 Email: {info['email']}")
    if hours_lines:
        lines.append("🕒 Opening hours:")
        lines.extend(hours_lines)
    lines += ["", "How else can I help you?"]
    return "\n".join(lines)


CLINIC_INFO_SUGGESTIONS = ["Book an appointment", "See the practitioners", "Talk to a receptionist"]

CANCEL_KEPT = "No problem, your appointment is kept. Is there anything else I can do for you?"
