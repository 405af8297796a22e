"""Unit tests for the Ollama client wrapper and JSON extraction."""

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from flowguard.config import LLMConfig
from flowguard.llm_client import (
    LLMResponseError,
    OllamaClient,
    OllamaConnectionError,
    OllamaGenerationError,
    OllamaModelNotFoundError,
    parse_json_response,
)

SCHEMA = {"type": "object", "properties": {"ok": {"type": "boolean"}}}
MESSAGES = [{"role": "user", "content": "hi"}]


def chat_response(content: str) -> dict:
    return {"message": {"role": "assistant", "content": content}}


@pytest.fixture
def mock_async_client():
    with patch('flowguard.llm_client.AsyncClient') as client_cls:
        instance = MagicMock()
        instance.chat = AsyncMock(return_value=chat_response('{"ok": true}'))
        instance.list = AsyncMock(return_value={"models": [{"model": "qwen2.5-coder:7b"}]})
        client_cls.return_value = instance
        yield instance


class TestParseJsonResponse:
    """Test tolerant JSON extraction."""

    def test_bare_json(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_json_fence(self):
        text = 'Here you go:\n```json\n{"a": 2}\n```\nDone.'

        assert parse_json_response(text) == {"a": 2}

    def test_generic_fence(self):
        assert parse_json_response('```\n{"a": 3}\n```') == {"a": 3}

    def test_embedded_in_prose(self):
        assert parse_json_response('Result: {"a": {"b": 4}} as requested') == {"a": {"b": 4}}

    def test_not_an_object(self):
        with pytest.raises(LLMResponseError):
            parse_json_response('[1, 2, 3]')

    def test_garbage(self):
        with pytest.raises(LLMResponseError):
            parse_json_response('no json here')


class TestOllamaClient:
    """Test OllamaClient behaviour against a mocked ollama AsyncClient."""

    def test_from_config(self):
        client = OllamaClient.from_config(LLMConfig(model='llama3', timeout=30, max_retries=2))

        assert client.model == 'llama3'
        assert client.timeout == 30
        assert client.max_retries == 2

    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = OllamaClient()

        with pytest.raises(OllamaConnectionError, match="not initialized"):
            await client.generate_structured(MESSAGES, SCHEMA)

    @pytest.mark.asyncio
    async def test_generate_structured(self, mock_async_client):
        async with OllamaClient(model='m', temperature=0.1, max_tokens=100) as client:
            result = await client.generate_structured(MESSAGES, SCHEMA)

        assert result == {"ok": True}
        kwargs = mock_async_client.chat.call_args.kwargs
        assert kwargs['model'] == 'm'
        assert kwargs['format'] == SCHEMA
        assert kwargs['stream'] is False
        assert kwargs['options'] == {"temperature": 0.1, "num_predict": 100}
        assert client.get_metrics('m')['m'].success_count == 1

    @pytest.mark.asyncio
    async def test_fenced_output_accepted(self, mock_async_client):
        mock_async_client.chat.return_value = chat_response('```json\n{"ok": false}\n```')

        async with OllamaClient() as client:
            assert await client.generate_structured(MESSAGES, SCHEMA) == {"ok": False}

    @pytest.mark.asyncio
    async def test_retries_connection_errors(self, mock_async_client):
        mock_async_client.chat.side_effect = [
            httpx.ConnectError("refused"),
            chat_response('{"ok": true}'),
        ]

        with patch('asyncio.sleep', new=AsyncMock()) as sleep:
            async with OllamaClient(max_retries=3, retry_delay=1.0) as client:
                result = await client.generate_structured(MESSAGES, SCHEMA)

        assert result == {"ok": True}
        assert mock_async_client.chat.await_count == 2
        sleep.assert_awaited_once_with(1.0)

    @pytest.mark.asyncio
    async def test_connection_errors_exhaust_retries(self, mock_async_client):
        mock_async_client.chat.side_effect = httpx.ConnectError("refused")

        with patch('asyncio.sleep', new=AsyncMock()):
            async with OllamaClient(max_retries=2) as client:
                with pytest.raises(OllamaConnectionError):
                    await client.generate_structured(MESSAGES, SCHEMA)

        assert mock_async_client.chat.await_count == 2

    @pytest.mark.asyncio
    async def test_model_not_found(self, mock_async_client):
        mock_async_client.chat.side_effect = Exception("model 'x' not found")

        async with OllamaClient() as client:
            with pytest.raises(OllamaModelNotFoundError):
                await client.generate_structured(MESSAGES, SCHEMA)

    @pytest.mark.asyncio
    async def test_other_errors_wrapped(self, mock_async_client):
        mock_async_client.chat.side_effect = RuntimeError("boom")

        async with OllamaClient() as client:
            with pytest.raises(OllamaGenerationError):
                await client.generate_structured(MESSAGES, SCHEMA)

    @pytest.mark.asyncio
    async def test_circuit_breaker_opens(self, mock_async_client):
        mock_async_client.chat.side_effect = RuntimeError("boom")

        async with OllamaClient(circuit_breaker_threshold=2, circuit_breaker_timeout=60) as client:
            for _ in range(2):
                with pytest.raises(OllamaGenerationError):
                    await client.generate_structured(MESSAGES, SCHEMA)

            with pytest.raises(OllamaGenerationError, match="Circuit breaker is open"):
                await client.generate_structured(MESSAGES, SCHEMA)

        assert mock_async_client.chat.await_count == 2

    @pytest.mark.asyncio
    async def test_health_check(self, mock_async_client):
        async with OllamaClient() as client:
            assert await client.health_check() is True
            assert await client.check_model() is True
            assert await client.check_model('missing-model') is False

        mock_async_client.list.side_effect = httpx.ConnectError("down")
        async with OllamaClient() as client:
            assert await client.health_check() is False

    @pytest.mark.asyncio
    async def test_invalid_json_not_retried(self, mock_async_client):
        mock_async_client.chat.return_value = chat_response('not json')

        async with OllamaClient() as client:
            with pytest.raises(LLMResponseError):
                await client.generate_structured(MESSAGES, SCHEMA)

        assert mock_async_client.chat.await_count == 1
