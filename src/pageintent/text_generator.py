# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""Generative-text collaborator used by the classifier and the resolver.

The pipeline only needs "prompt in, text out". ``TextGenerator`` is that
seam; tests inject fakes, production uses ``ChatCompletionsGenerator``
against any OpenAI-compatible ``/chat/completions`` endpoint (OpenAI,
OpenRouter, a local vLLM/Ollama gateway).

No retries here: a failed call is reported once and the caller degrades.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

import httpx

from .errors import ModelError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TIMEOUT_SECONDS = 20.0
_MAX_ERROR_BODY = 300


@runtime_checkable
class TextGenerator(Protocol):
    """Single-turn text generation."""

    async def generate(self, prompt: str) -> str: ...


class ChatCompletionsGenerator:
    """OpenAI-compatible chat completions client over httpx.

    Owns its ``httpx.AsyncClient`` unless one is injected; call ``aclose()``
    (or use ``async with``) to release connections.
    """

    def __init__(
        self,
        *,
        model: str = DEFAULT_MODEL,
        api_key: str = "",
        base_url: str = DEFAULT_BASE_URL,
        timeout_s: float = DEFAULT_TIMEOUT_SECONDS,
        temperature: float = 0.0,
        max_tokens: int = 300,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        # OpenRouter-style "openai/gpt-4o" names are accepted by direct endpoints without the prefix
        if model.startswith("openai/") and "openrouter" not in base_url:
            model = model[len("openai/") :]
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _payload(self, prompt: str) -> dict:
        return {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    async def generate(self, prompt: str) -> str:
        """Send *prompt* as one user message and return the assistant text.

        Raises:
            ModelError: transport failure, non-2xx status, or unexpected response shape.
        """
        url = f"{self.base_url}/chat/completions"
        try:
            response = await self._client.post(url, headers=self._headers(), json=self._payload(prompt))
        except httpx.TimeoutException as exc:
            raise ModelError(f"Model request timed out ({type(exc).__name__})") from exc
        except httpx.HTTPError as exc:
            raise ModelError(f"Model request failed: {exc}") from exc

        if response.status_code >= 400:
            body = response.text[:_MAX_ERROR_BODY]
            logger.warning("Model endpoint returned %d: %s", response.status_code, body)
            raise ModelError(
                f"Model endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ModelError("Unexpected model response shape") from exc

        if not isinstance(content, str):
            raise ModelError("Model response content is not text")
        logger.debug("Model %s returned %d chars", self.model, len(content))
        return content

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> ChatCompletionsGenerator:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
