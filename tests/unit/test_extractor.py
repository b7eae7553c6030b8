"""Tests for the Claude intent/entity extractor."""

import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from dental_scheduler.core.intelligence.intent.extractor import (
    ClaudeIntentExtractor,
    ExtractorError,
)
from dental_scheduler.core.intelligence.intent.types import Intent
from dental_scheduler.core.scheduling.errors import InternalError
from dental_scheduler.infra.claude import ClaudeClientError, ClaudeResponse


def _response(content: str) -> ClaudeResponse:
    return ClaudeResponse(
        content=content,
        model="claude-haiku",
        input_tokens=100,
        output_tokens=50,
        stop_reason="end_turn",
        latency_ms=120.0,
    )


@pytest.fixture
def client():
    client = MagicMock()
    client.generate = AsyncMock()
    return client


@pytest.fixture
def extractor(client):
    return ClaudeIntentExtractor(client, model="claude-haiku")


class TestParseResponse:
    """Test parsing of model output."""

    def test_valid_json(self, extractor):
        raw = json.dumps({
            "intent": "book_appointment",
            "confidence": 0.92,
            "slots": {"date": "2024-01-15", "time": "14:00", "patient_email": None},
            "entities": [{"type": "date", "value": "Monday", "confidence": 0.9}],
        })

        result = extractor._parse_response(raw, "Book Monday 2pm")

        assert result.intent == Intent.BOOK_APPOINTMENT
        assert result.confidence == 0.92
        assert result.slots == {"date": "2024-01-15", "time": "14:00"}
        assert result.entities[0].value == "Monday"
        assert result.is_mutating is True

    def test_markdown_fence(self, extractor):
        raw = '```json\n{"intent": "greeting", "confidence": 0.99}\n```'

        result = extractor._parse_response(raw, "Hello")

        assert result.intent == Intent.GREETING
        assert result.slots == {}

    def test_invalid_json_is_fallback(self, extractor):
        result = extractor._parse_response("I think they want to book", "book")

        assert result.intent == Intent.FALLBACK
        assert result.confidence == 0.0
        assert result.raw_response == "I think they want to book"

    def test_unknown_intent_is_fallback(self, extractor):
        result = extractor._parse_response('{"intent": "order_pizza", "confidence": 0.9}', "pizza")

        assert result.intent == Intent.FALLBACK

    def test_confidence_clamped(self, extractor):
        high = extractor._parse_response('{"intent": "help", "confidence": 3}', "help")
        junk = extractor._parse_response('{"intent": "help", "confidence": "very"}', "help")

        assert high.confidence == 1.0
        assert junk.confidence == 0.0

    def test_non_dict_slots_ignored(self, extractor):
        result = extractor._parse_response(
            '{"intent": "help", "confidence": 0.8, "slots": ["date"]}', "help"
        )

        assert result.slots == {}

    def test_bad_entities_skipped(self, extractor):
        raw = json.dumps({
            "intent": "book_appointment",
            "confidence": 0.8,
            "entities": [{"type": "email"}, "junk", {"type": "time", "value": "14:00"}],
        })

        result = extractor._parse_response(raw, "x")

        assert [entity.type for entity in result.entities] == ["time"]


class TestExtract:
    """Test the extraction call."""

    @pytest.mark.asyncio
    async def test_extract(self, extractor, client):
        client.generate.return_value = _response(
            '{"intent": "check_availability", "confidence": 0.85, "slots": {"date": "2024-01-15"}}'
        )

        result = await extractor.extract(
            "Any slots Monday?",
            {
                "tenant": {"name": "Smile Dental", "timezone": "UTC"},
                "practitioners": [{"id": "prac-1", "name": "Dr Alice Martin"}],
                "previous_state": {
                    "current_intent": "book_appointment",
                    "collected_slots": {"service_type": "cleaning"},
                    "confirmation_pending": True,
                },
            },
        )

        assert result.intent == Intent.CHECK_AVAILABILITY
        assert result.raw_text == "Any slots Monday?"
        kwargs = client.generate.await_args.kwargs
        assert kwargs["model"] == "claude-haiku"
        assert kwargs["temperature"] == 0
        assert "Clinic: Smile Dental" in kwargs["prompt"]
        assert "Practitioners: Dr Alice Martin [id=prac-1]" in kwargs["prompt"]
        assert "Collected: service_type=cleaning" in kwargs["prompt"]
        assert "WAITING for a yes/no confirmation" in kwargs["prompt"]
        assert '"Any slots Monday?"' in kwargs["prompt"]

    @pytest.mark.asyncio
    async def test_empty_text_skips_call(self, extractor, client):
        result = await extractor.extract("   ")

        assert result.intent == Intent.FALLBACK
        client.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_client_failure(self, extractor, client):
        client.generate.side_effect = ClaudeClientError("Claude API call failed")

        with pytest.raises(ExtractorError) as exc_info:
            await extractor.extract("Hello")

        assert isinstance(exc_info.value, InternalError)
