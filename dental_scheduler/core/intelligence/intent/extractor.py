"""
LLM-based intent and entity extraction using Claude.

One call returns the intent, a confidence score, the slot values the
message mentions, and the recognised entities.
"""

import json
import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from dental_scheduler.config import settings
from dental_scheduler.core.scheduling.errors import InternalError
from dental_scheduler.infra.claude import ClaudeClient, ClaudeClientError
from .types import Entity, Intent, NLUResult

logger = logging.getLogger(__name__)


class ExtractorError(InternalError):
    """Raised when the extraction service cannot be reached."""
    pass


EXTRACTION_PROMPT = """You are the language understanding step of a dental clinic appointment assistant.
Patients may write in English or French.

Classify the patient's message into ONE intent and extract the appointment details it mentions.

## Intents

- greeting: hello, good morning, bonjour
- check_availability: asks which slots/times are free
- book_appointment: wants to BOOK a NEW appointment
- reschedule_appointment: wants to MOVE an existing appointment
- cancel_appointment: wants to CANCEL an existing appointment
- list_practitioners: asks which dentists/practitioners work at the clinic
- clinic_info: asks for address, phone, opening hours, services
- emergency: dental emergency, severe pain, trauma, swelling, bleeding
- help: asks what the assistant can do, is confused
- goodbye: bye, thanks, that's all
- fallback: anything else, or impossible to tell

## Slots (use null when not mentioned)

- date: YYYY-MM-DD, resolved relative to today ({today})
- time: HH:MM, 24-hour ("2pm" -> "14:00")
- time_window: morning, afternoon or evening
- service_type: cleaning, consultation, filling, extraction, crown, whitening, ...
- practitioner_id: the id from the practitioner list below when the message names one of them, otherwise the name as written
- patient_email, patient_phone
- appointment_id: only if the message contains an appointment reference
- duration: minutes, integer
- urgency: routine, urgent or emergency
- notes, reason: short free text

## Entities

Every date, time, email, phone or service mention as {{"type": ..., "value": <text as written>, "confidence": 0.0-1.0}}.

## Context

{context}

## Patient Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{
    "intent": "<intent>",
    "confidence": <0.0-1.0>,
    "slots": {{"date": null, "time": null, "time_window": null, "service_type": null,
               "practitioner_id": null, "patient_email": null, "patient_phone": null,
               "appointment_id": null, "duration": null, "urgency": null, "notes": null, "reason": null}},
    "entities": []
}}"""


class IntentExtractor(ABC):
    """Turns free text plus conversation context into an NLUResult."""

    @abstractmethod
    async def extract(self, text: str, context: Optional[dict] = None) -> NLUResult:
        """
        Extract intent, confidence, slots and entities.

        Args:
            text: Patient message
            context: {"tenant": ..., "user": ..., "previous_state": ...}

        Raises:
            ExtractorError: The extraction backend is unreachable
        """

    async def close(self) -> None:
        """Release backend connections."""


class ClaudeIntentExtractor(IntentExtractor):
    """
    Extractor backed by Claude Haiku.

    Malformed model output degrades to the fallback intent with zero
    confidence, which the dialogue's confidence gate then handles.
    """

    def __init__(self, claude_client: ClaudeClient, model: Optional[str] = None):
        """Initialize extractor.

        Args:
            claude_client: Claude client
            model: Model override (defaults to settings.claude_intent_model)
        """
        self._client = claude_client
        self._model = model or settings.claude_intent_model

    async def close(self) -> None:
        await self._client.close()

    async def extract(self, text: str, context: Optional[dict] = None) -> NLUResult:
        text = text.strip()
        start_time = time.time()

        if not text:
            return NLUResult(intent=Intent.FALLBACK, confidence=0.0, raw_text=text)

        prompt = EXTRACTION_PROMPT.format(
            today=datetime.now(timezone.utc).date().isoformat(),
            context=self._build_context(context) or "New conversation, no prior context.",
            message=text,
        )

        try:
            response = await self._client.generate(
                prompt=prompt,
                model=self._model,
                max_tokens=settings.claude_max_tokens,
                temperature=0,  # Deterministic
            )
        except ClaudeClientError as e:
            logger.error(f"Claude API error: {e}")
            raise ExtractorError("Intent extraction unavailable", cause=e) from e

        result = self._parse_response(response.content, text)
        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(f"Extracted intent: {result.intent.value} (confidence: {result.confidence:.2f})")
        return result

    def _build_context(self, context: Optional[dict]) -> str:
        """Build context string for the prompt."""
        if not context:
            return ""

        parts = []

        tenant = context.get("tenant") or {}
        if tenant.get("name"):
            parts.append(f"Clinic: {tenant['name']} (timezone {tenant.get('timezone', 'unknown')})")

        practitioners = context.get("practitioners") or []
        if practitioners:
            listing = ", ".join(f"{p['name']} [id={p['id']}]" for p in practitioners)
            parts.append(f"Practitioners: {listing}")

        previous = context.get("previous_state") or {}
        if previous.get("current_intent"):
            parts.append(f"Current intent: {previous['current_intent']}")

        collected = previous.get("collected_slots") or {}
        if collected:
            items = ", ".join(f"{key}={value}" for key, value in collected.items())
            parts.append(f"Collected: {items}")

        if previous.get("confirmation_pending"):
            parts.append("Assistant is WAITING for a yes/no confirmation")

        if previous.get("last_assistant_message"):
            parts.append(f'Assistant just said: "{previous["last_assistant_message"][:200]}"')

        return "\n".join(parts)

    def _parse_response(self, response: str, text: str) -> NLUResult:
        """Parse LLM JSON response."""
        # Clean markdown if present
        response = response.strip()
        if response.startswith("```"):
            lines = response.split("\n")[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            response = "\n".join(lines)
        response = response.strip()

        try:
            data = json.loads(response)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return NLUResult(
                intent=Intent.FALLBACK,
                confidence=0.0,
                raw_text=text,
                raw_response=response,
            )

        if not isinstance(data, dict):
            return NLUResult(intent=Intent.FALLBACK, confidence=0.0, raw_text=text, raw_response=response)

        try:
            intent = Intent(str(data.get("intent", "fallback")).lower())
        except ValueError:
            intent = Intent.FALLBACK

        slots = data.get("slots")
        if not isinstance(slots, dict):
            slots = {}

        return NLUResult(
            intent=intent,
            confidence=_clamp_confidence(data.get("confidence")),
            slots={key: value for key, value in slots.items() if value is not None},
            entities=_parse_entities(data.get("entities")),
            raw_text=text,
            raw_response=response,
        )


def _clamp_confidence(value: Any) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(max(confidence, 0.0), 1.0)


def _parse_entities(raw: Any) -> list[Entity]:
    entities = []
    for item in raw or []:
        if not isinstance(item, dict) or not item.get("type") or item.get("value") is None:
            continue
        entities.append(
            Entity(
                type=str(item["type"]),
                value=str(item["value"]),
                confidence=_clamp_confidence(item.get("confidence", 1.0)),
            )
        )
    return entities
