"""Language-model completion clients.

Two backends share one interface (CompletionClient):

- ChatCompletionClient: any OpenAI-compatible chat-completions endpoint
  over httpx (Groq by default)
- AnthropicCompletionClient: the Anthropic messages API via the SDK

Both go through the same retry loop. Only HTTP 429 is retried, with
exponential backoff plus jitter (1-2s, 2-3s, 4-5s, ...). The last
rate-limited attempt propagates RateLimitedError. Every other failure
(non-2xx status, network error, timeout) raises CompletionError at once.

parse_json_answer() recovers the JSON object from free-form model output.

Usage:
    from mailtriage.classifier.ai_client import create_completion_client, parse_json_answer

    client = create_completion_client(config.ai)
    text = await client.complete(user_prompt)
    data = parse_json_answer(text)
"""

from __future__ import annotations

import asyncio
import json
import os
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import anthropic
import httpx
import regex

from mailtriage.classifier.prompts import SYSTEM_PROMPT
from mailtriage.config_schema import AIConfig
from mailtriage.core.errors import CompletionError, RateLimitedError, ResponseParseError
from mailtriage.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_TIMEOUT_SECONDS = 30.0

REGEX_TIMEOUT = 1.0

# Markdown code fences around the answer (```json ... ```)
FENCE_PATTERN = regex.compile(r"```(?:json)?[ \t]*\n?", regex.IGNORECASE)

type SleepFunc = Callable[[float], Awaitable[None]]


class CompletionClient(Protocol):
    """Anything that turns a user prompt into model text."""

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str: ...

    async def aclose(self) -> None: ...


# ---------------------------------------------------------------------------
# Shared retry loop
# ---------------------------------------------------------------------------


class RetryingCompletionClient(ABC):
    """Base class implementing the rate-limit retry loop.

    Subclasses implement _request(), raising RateLimitedError for 429 and
    CompletionError for anything else.

    Attributes:
        model: Model identifier
        max_attempts: Total attempts allowed for rate-limited requests
    """

    def __init__(
        self,
        model: str,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        sleep: SleepFunc = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.model = model
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._jitter = jitter

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after a 429 on the given 0-based attempt."""
        return 2**attempt + self._jitter()

    async def complete(self, prompt: str, system: str = SYSTEM_PROMPT) -> str:
        """Request a completion, retrying on rate limits.

        Args:
            prompt: User prompt
            system: System instruction

        Returns:
            The model's text output

        Raises:
            RateLimitedError: If every attempt was rate limited
            CompletionError: On any other provider or network failure
        """
        for attempt in range(self.max_attempts):
            try:
                return await self._request(system, prompt)
            except RateLimitedError:
                if attempt >= self.max_attempts - 1:
                    logger.error(
                        "ai_rate_limit_exhausted",
                        model=self.model,
                        attempts=self.max_attempts,
                    )
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "ai_rate_limited",
                    model=self.model,
                    attempt=attempt + 1,
                    max_attempts=self.max_attempts,
                    delay=round(delay, 2),
                )
                await self._sleep(delay)

        raise CompletionError(f"Completion failed after {self.max_attempts} attempts")

    @abstractmethod
    async def _request(self, system: str, prompt: str) -> str:
        """Send one request and return the model text."""

    async def aclose(self) -> None:
        """Release network resources."""

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions (httpx)
# ---------------------------------------------------------------------------


class ChatCompletionClient(RetryingCompletionClient):
    """Client for OpenAI-compatible POST {base_url}/chat/completions."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "llama-3.1-8b-instant",
        base_url: str = "https://api.groq.com/openai/v1",
        temperature: float = 0.2,
        max_tokens: int = 300,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        http_client: httpx.AsyncClient | None = None,
        sleep: SleepFunc = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        super().__init__(model, max_attempts=max_attempts, sleep=sleep, jitter=jitter)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def _request(self, system: str, prompt: str) -> str:
        if not self.api_key:
            raise CompletionError("No API key configured for the completion endpoint")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        url = f"{self.base_url}/chat/completions"

        try:
            response = await self._http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise CompletionError(
                f"Completion request timed out after {self.timeout}s"
            ) from e
        except httpx.HTTPError as e:
            raise CompletionError(f"Completion request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(f"Rate limited by {self.base_url}")
        if not response.is_success:
            raise CompletionError(
                f"Completion endpoint returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise CompletionError(
                f"Unexpected completion response shape: {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(content, str):
            raise CompletionError("Completion response has no text content")
        return content

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()


# ---------------------------------------------------------------------------
# Anthropic messages API
# ---------------------------------------------------------------------------


class AnthropicCompletionClient(RetryingCompletionClient):
    """Client for the Anthropic messages API.

    SDK-level retries are disabled so that rate limits follow the same
    backoff schedule as the other backend.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "claude-haiku-4-5",
        temperature: float = 0.2,
        max_tokens: int = 300,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        anthropic_client: anthropic.AsyncAnthropic | None = None,
        sleep: SleepFunc = asyncio.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        super().__init__(model, max_attempts=max_attempts, sleep=sleep, jitter=jitter)
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._owns_client = anthropic_client is None
        self._client = anthropic_client or anthropic.AsyncAnthropic(
            api_key=api_key, max_retries=0, timeout=timeout
        )

    async def _request(self, system: str, prompt: str) -> str:
        try:
            message = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.RateLimitError as e:
            raise RateLimitedError(f"Rate limited by Anthropic: {e}") from e
        except anthropic.APIStatusError as e:
            raise CompletionError(
                f"Anthropic API error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise CompletionError(f"Anthropic connection error: {e}") from e

        return "".join(block.text for block in message.content if block.type == "text")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.close()


def create_completion_client(
    config: AIConfig,
    http_client: httpx.AsyncClient | None = None,
) -> RetryingCompletionClient:
    """Build the completion client described by the AI config section.

    The credential is read from the environment variable named by
    config.api_key_env. A missing key is not an error here; requests fail
    and classification falls back to the rule engine.
    """
    api_key = os.environ.get(config.api_key_env or "")
    if not api_key:
        logger.warning("ai_api_key_missing", env_var=config.api_key_env)

    if config.provider == "anthropic":
        return AnthropicCompletionClient(
            api_key=api_key,
            model=config.model,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_seconds,
            max_attempts=config.max_attempts,
        )

    return ChatCompletionClient(
        api_key=api_key,
        model=config.model,
        base_url=config.base_url,
        temperature=config.temperature,
        max_tokens=config.max_tokens,
        timeout=config.timeout_seconds,
        max_attempts=config.max_attempts,
        http_client=http_client,
    )


# ---------------------------------------------------------------------------
# Answer parsing
# ---------------------------------------------------------------------------


def parse_json_answer(text: str) -> dict[str, Any]:
    """Recover the JSON object from model output.

    Strips markdown fences, then decodes the first complete {...} object,
    ignoring any prose before or after it.

    Raises:
        ResponseParseError: If no JSON object can be recovered
    """
    if not text or not text.strip():
        raise ResponseParseError("Empty model response", raw_text=text or "")

    try:
        cleaned = FENCE_PATTERN.sub("", text, timeout=REGEX_TIMEOUT).strip()
    except TimeoutError as e:
        raise ResponseParseError("Timed out cleaning model response", raw_text=text) from e

    decoder = json.JSONDecoder()
    start = cleaned.find("{")
    while start != -1:
        try:
            value, _end = decoder.raw_decode(cleaned, start)
        except json.JSONDecodeError:
            start = cleaned.find("{", start + 1)
            continue
        if isinstance(value, dict):
            return value
        start = cleaned.find("{", start + 1)

    raise ResponseParseError("No JSON object found in model response", raw_text=text)
