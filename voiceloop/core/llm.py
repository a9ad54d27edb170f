"""
Response Generation Module

Sends one user utterance to Azure OpenAI chat completions and returns one
response string.

Failures never raise: they come back as sentinel strings that
is_error_response() recognizes, so the turn loop decides purely on the
returned text.

Usage:
    from voiceloop.core.llm import ResponseGenerator, is_error_response

    generator = ResponseGenerator()
    reply = await generator.generate("What's the weather like?")
    if not is_error_response(reply):
        ...
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from voiceloop.config import AzureOpenAIConfig, LLMConfig, settings
from voiceloop.logger import get_logger

logger = get_logger(__name__)


EMPTY_INPUT_RESPONSE = "Input text cannot be empty."
NO_CONTENT_RESPONSE = "No content generated."
ERROR_MARKER = "Error generating content:"


def is_error_response(text: Optional[str]) -> bool:
    """True for any generator sentinel (or blank text) that must not be spoken."""
    if text is None or not text.strip():
        return True
    return (
        text.startswith(ERROR_MARKER)
        or text == EMPTY_INPUT_RESPONSE
        or text == NO_CONTENT_RESPONSE
    )


@dataclass
class GenerationRequest:
    """
    One generation request.

    Attributes:
        model_id: Deployment name of the chat model
        system_prompt: Optional instruction prepended as a system message
        user_text: The user's utterance
    """
    model_id: str
    user_text: str
    system_prompt: Optional[str] = None

    def messages(self) -> List[Dict[str, str]]:
        msgs = []
        if self.system_prompt:
            msgs.append({"role": "system", "content": self.system_prompt})
        msgs.append({"role": "user", "content": self.user_text})
        return msgs

    def to_body(self, temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {
            "messages": self.messages(),
            "temperature": temperature,
            "max_tokens": max_tokens,
        }


class ResponseGenerator:
    """
    Azure OpenAI chat completion client for single-shot replies.

    Exactly one HTTP request per generate() call; no retries.

    Example:
        generator = ResponseGenerator()
        reply = await generator.generate("Tell me a joke")
        print(generator.stats)
    """

    def __init__(
        self,
        azure: Optional[AzureOpenAIConfig] = None,
        config: Optional[LLMConfig] = None,
    ):
        self._azure = azure or settings.azure
        self._config = config or settings.llm

        self._request_count = 0
        self._error_count = 0
        self._total_latency_ms = 0.0

        logger.info(
            f"ResponseGenerator initialized: deployment={self._azure.chat_deployment}, "
            f"max_tokens={self._config.max_tokens}"
        )

    @property
    def _url(self) -> str:
        return self._azure.chat_url

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "api-key": self._azure.api_key,
            "Content-Type": "application/json",
        }

    def build_request(self, utterance: str) -> GenerationRequest:
        return GenerationRequest(
            model_id=self._azure.chat_deployment,
            user_text=utterance,
            system_prompt=self._config.system_prompt or None,
        )

    async def generate(self, utterance: str) -> str:
        """
        Generate a reply to one utterance.

        Args:
            utterance: Aggregated user text

        Returns:
            The reply text, or one of the sentinel strings on failure
        """
        if not utterance or not utterance.strip():
            logger.debug("Empty utterance, skipping generation")
            return EMPTY_INPUT_RESPONSE

        request = self.build_request(utterance.strip())
        body = request.to_body(self._config.temperature, self._config.max_tokens)

        self._request_count += 1
        start_time = time.time()
        try:
            data = await self._post(body)
        except Exception as e:
            self._error_count += 1
            logger.error(f"Generation failed: {e}")
            return f"{ERROR_MARKER} {e}"
        finally:
            self._total_latency_ms += (time.time() - start_time) * 1000

        content = self._extract_content(data)
        if not content:
            self._error_count += 1
            logger.warning("Generation returned no content")
            return NO_CONTENT_RESPONSE

        logger.debug(f"Generated {len(content)} chars")
        return content

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """POST the request body and return the decoded JSON response."""
        timeout = aiohttp.ClientTimeout(
            total=self._config.read_timeout_s,
            connect=self._config.connect_timeout_s,
        )
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.post(self._url, headers=self._headers, json=body) as response:
                response.raise_for_status()
                return await response.json()

    @staticmethod
    def _extract_content(data: Any) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            return ""
        return (content or "").strip()

    @property
    def stats(self) -> Dict[str, Any]:
        avg = self._total_latency_ms / self._request_count if self._request_count else 0.0
        return {
            "requests": self._request_count,
            "errors": self._error_count,
            "avg_latency_ms": round(avg, 1),
        }
