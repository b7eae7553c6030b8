"""Tests for the Claude client wrapper."""

import httpx
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from anthropic import APIConnectionError

from dental_scheduler.infra.claude import ClaudeClient, ClaudeClientError

SLEEP = "dental_scheduler.infra.claude.asyncio.sleep"


def _message(text: str = '{"intent": "greeting"}', stop_reason: str = "end_turn"):
    message = MagicMock()
    message.content = [MagicMock(type="text", text=text)] if text else []
    message.usage.input_tokens = 120
    message.usage.output_tokens = 30
    message.stop_reason = stop_reason
    return message


def _connection_error():
    return APIConnectionError(request=httpx.Request("POST", "https://api.anthropic.com/v1/messages"))


@pytest.fixture
def client():
    client = ClaudeClient(
        api_key="test-key",
        default_model="primary",
        fallback_model="backup",
        max_retries=2,
    )
    client._client = MagicMock()
    client._client.messages.create = AsyncMock()
    return client


def test_api_key_required():
    with patch("dental_scheduler.infra.claude.settings") as settings:
        settings.anthropic_api_key = ""
        with pytest.raises(ValueError):
            ClaudeClient()


class TestGenerate:
    """Test calls, retries and model fallback."""

    @pytest.mark.asyncio
    async def test_success(self, client):
        client._client.messages.create.return_value = _message()

        response = await client.generate("Hello", system_prompt="Be brief", max_tokens=50)

        assert response.content == '{"intent": "greeting"}'
        assert response.model == "primary"
        assert response.fallback_used is False
        kwargs = client._client.messages.create.await_args.kwargs
        assert kwargs["model"] == "primary"
        assert kwargs["system"] == "Be brief"
        assert kwargs["messages"] == [{"role": "user", "content": "Hello"}]
        assert client.usage["primary:input"] == 120

    @pytest.mark.asyncio
    async def test_transient_error_retried(self, client):
        client._client.messages.create.side_effect = [_connection_error(), _message()]

        with patch(SLEEP, AsyncMock()) as sleep:
            response = await client.generate("Hello")

        assert response.model == "primary"
        sleep.assert_awaited_once_with(0.5)

    @pytest.mark.asyncio
    async def test_fallback_model(self, client):
        client._client.messages.create.side_effect = [
            _connection_error(),
            _connection_error(),
            _message(),
        ]

        with patch(SLEEP, AsyncMock()):
            response = await client.generate("Hello")

        assert response.model == "backup"
        assert response.fallback_used is True
        models = [call.kwargs["model"] for call in client._client.messages.create.await_args_list]
        assert models == ["primary", "primary", "backup"]

    @pytest.mark.asyncio
    async def test_empty_response_uses_fallback(self, client):
        client._client.messages.create.side_effect = [_message(text=""), _message()]

        response = await client.generate("Hello")

        assert response.fallback_used is True

    @pytest.mark.asyncio
    async def test_all_models_fail(self, client):
        client._client.messages.create.side_effect = _connection_error()

        with patch(SLEEP, AsyncMock()):
            with pytest.raises(ClaudeClientError):
                await client.generate("Hello")

        assert client._client.messages.create.await_count == 4

    @pytest.mark.asyncio
    async def test_no_fallback_when_disabled(self, client):
        client._client.messages.create.side_effect = [_message(text="")]

        with pytest.raises(ClaudeClientError):
            await client.generate("Hello", use_fallback_on_error=False)
