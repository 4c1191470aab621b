"""OpenAI-compatible LLM client for devflow.

Talks to OpenRouter (or any OpenAI-compatible endpoint) over httpx. Each
call is a single attempt bounded by the caller's timeout; fallback across
models is the cascade invoker's job, not this client's.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Optional

import httpx

from devflow.core.config import LLMConfig
from devflow.core.exceptions import (
    AuthenticationError,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
)

logger = logging.getLogger("devflow.llm")


class LLMMessage:
    """A single message in a conversation."""

    def __init__(self, role: str, content: str):
        self.role = role
        self.content = content

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


class LLMResponse:
    """Parsed response from the LLM."""

    def __init__(self, content: str, model: str, tokens_used: int = 0, raw: Optional[dict] = None):
        self.content = content
        self.model = model
        self.tokens_used = tokens_used
        self.raw = raw or {}


class LLMClient:
    """HTTP client for an OpenAI-compatible chat completions API."""

    def __init__(self, config: Optional[LLMConfig] = None, api_key: Optional[str] = None):
        self.config = config or LLMConfig()
        self.api_key = api_key or os.getenv("OPENROUTER_API_KEY", "")
        self.base_url = self.config.base_url.rstrip("/")
        self._client: Optional[httpx.Client] = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.config.attempt_timeout_seconds),
            )
        return self._client

    def complete(
        self,
        messages: list[LLMMessage],
        model: str,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Send one chat completion request.

        Args:
            messages: Conversation messages.
            model: Model ID (e.g., "google/gemini-2.5-pro").
            timeout: Seconds allowed for this attempt (default from config).
            temperature: Sampling temperature (default from config).
            max_tokens: Max response tokens (default from config).

        Returns:
            LLMResponse with content, model, and token usage.

        Raises:
            AuthenticationError: Missing or rejected API key.
            ModelNotFoundError: Model unknown to the provider.
            RateLimitError: Provider returned 429.
            LLMError: Any other HTTP or network failure.
        """
        if not self.api_key:
            raise AuthenticationError("OPENROUTER_API_KEY not set")

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature if temperature is not None else self.config.default_temperature,
            "max_tokens": max_tokens or self.config.default_max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "devflow",
        }
        request_timeout = timeout if timeout is not None else self.config.attempt_timeout_seconds

        try:
            resp = self.client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers=headers,
                timeout=httpx.Timeout(request_timeout),
            )
        except httpx.TimeoutException as e:
            raise LLMError(f"Model {model} timed out after {request_timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"Request to {model} failed: {e}") from e

        if resp.status_code == 401:
            raise AuthenticationError("Invalid API key")
        if resp.status_code == 404:
            raise ModelNotFoundError(f"Model not found: {model}")
        if resp.status_code == 429:
            raise RateLimitError(f"Rate limited on {model}")
        if resp.status_code >= 400:
            raise LLMError(f"Model {model} returned HTTP {resp.status_code}")

        try:
            data = resp.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMError(f"Malformed completion from {model}: {e}") from e

        tokens = data.get("usage", {}).get("total_tokens", 0)
        logger.debug("LLM response: model=%s tokens=%d", data.get("model", model), tokens)
        return LLMResponse(content=content or "", model=data.get("model", model), tokens_used=tokens, raw=data)

    def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
