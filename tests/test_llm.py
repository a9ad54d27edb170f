"""
Tests for the Response Generator

The HTTP call is patched out; these tests cover request shaping and the
sentinel responses returned on failure.
"""

import pytest
from unittest.mock import AsyncMock, patch

from voiceloop.config import AzureOpenAIConfig, LLMConfig
from voiceloop.core.llm import (
    EMPTY_INPUT_RESPONSE,
    ERROR_MARKER,
    NO_CONTENT_RESPONSE,
    ResponseGenerator,
    is_error_response,
)


def completion(content):
    return {"choices": [{"message": {"role": "assistant", "content": content}}]}


@pytest.fixture
def llm():
    azure = AzureOpenAIConfig(
        api_key="key",
        endpoint="https://test.openai.azure.com/",
        api_version="2024-08-01-preview",
        chat_deployment="chat-model",
    )
    config = LLMConfig(system_prompt="Be brief.", temperature=0.2, max_tokens=50)
    return ResponseGenerator(azure, config)


class TestIsErrorResponse:
    """Tests for sentinel detection."""

    def test_sentinels(self):
        assert is_error_response(EMPTY_INPUT_RESPONSE)
        assert is_error_response(NO_CONTENT_RESPONSE)
        assert is_error_response(f"{ERROR_MARKER} timeout")

    def test_blank(self):
        assert is_error_response(None)
        assert is_error_response("")
        assert is_error_response("   ")

    def test_regular_text(self):
        assert not is_error_response("It is three o'clock.")
        assert not is_error_response("There was an error generating content, sorry.")


class TestGenerate:
    """Tests for generate()."""

    @pytest.mark.asyncio
    async def test_returns_content(self, llm):
        with patch.object(ResponseGenerator, "_post", AsyncMock(return_value=completion(" Hello! "))):
            reply = await llm.generate("hi")

        assert reply == "Hello!"
        assert llm.stats["requests"] == 1
        assert llm.stats["errors"] == 0

    @pytest.mark.asyncio
    async def test_blank_input_makes_no_request(self, llm):
        post = AsyncMock()
        with patch.object(ResponseGenerator, "_post", post):
            reply = await llm.generate("   ")

        assert reply == EMPTY_INPUT_RESPONSE
        post.assert_not_called()
        assert llm.stats["requests"] == 0

    @pytest.mark.asyncio
    async def test_request_failure_returns_marker(self, llm):
        with patch.object(ResponseGenerator, "_post", AsyncMock(side_effect=ConnectionError("refused"))):
            reply = await llm.generate("hi")

        assert reply.startswith(ERROR_MARKER)
        assert "refused" in reply
        assert is_error_response(reply)
        assert llm.stats["errors"] == 1

    @pytest.mark.asyncio
    async def test_no_content(self, llm):
        with patch.object(ResponseGenerator, "_post", AsyncMock(return_value=completion(None))):
            assert await llm.generate("hi") == NO_CONTENT_RESPONSE

        with patch.object(ResponseGenerator, "_post", AsyncMock(return_value={"choices": []})):
            assert await llm.generate("hi") == NO_CONTENT_RESPONSE

    @pytest.mark.asyncio
    async def test_single_request_per_call(self, llm):
        post = AsyncMock(side_effect=ConnectionError("refused"))
        with patch.object(ResponseGenerator, "_post", post):
            await llm.generate("hi")

        assert post.await_count == 1

    @pytest.mark.asyncio
    async def test_request_body(self, llm):
        post = AsyncMock(return_value=completion("ok"))
        with patch.object(ResponseGenerator, "_post", post):
            await llm.generate("  what time is it  ")

        body = post.await_args.args[0]
        assert body["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "what time is it"},
        ]
        assert body["temperature"] == 0.2
        assert body["max_tokens"] == 50


class TestBuildRequest:
    """Tests for request construction."""

    def test_model_id(self, llm):
        request = llm.build_request("hello")
        assert request.model_id == "chat-model"
        assert request.user_text == "hello"

    def test_without_system_prompt(self):
        generator = ResponseGenerator(
            AzureOpenAIConfig(api_key="key", endpoint="https://x.openai.azure.com"),
            LLMConfig(system_prompt=""),
        )
        assert generator.build_request("hello").messages() == [
            {"role": "user", "content": "hello"}
        ]
