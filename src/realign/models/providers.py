"""Language-model providers: Anthropic API (official SDK) and Ollama (HTTP).

Providers translate transport failures into ProviderError so that the
orchestrator can treat every provider uniformly. Missing credentials are a
ModelConfigurationError and are not worth retrying.
"""

from __future__ import annotations

import asyncio
import os
import re
import time
from typing import Any

import anthropic
import httpx

from realign.core.config import ProviderConfig
from realign.core.errors import ModelConfigurationError, ProviderError
from realign.core.logging import get_logger
from realign.models.base import ModelProvider, ProviderRequest, ProviderResponse

_logger = get_logger("models.providers")

_RATE_LIMIT_PATTERNS = (
    r"rate.?limit",
    r"quota",
    r"too many requests",
    r"429",
    r"capacity",
    r"try again later",
)


def detect_rate_limit(message: str) -> bool:
    """Check an error message for rate limit indicators."""
    lowered = message.lower()
    return any(re.search(p, lowered) for p in _RATE_LIMIT_PATTERNS)


class AnthropicProvider(ModelProvider):
    """Run requests directly via the Anthropic API."""

    def __init__(
        self,
        model: str = "claude-sonnet-4-20250514",
        api_key_env: str = "ANTHROPIC_API_KEY",
        timeout_seconds: float = 60.0,
    ) -> None:
        self.model = model
        self.api_key_env = api_key_env
        self.timeout_seconds = timeout_seconds
        self._api_key = os.environ.get(api_key_env)
        self._client: anthropic.AsyncAnthropic | None = None
        self._client_lock = asyncio.Lock()

    @classmethod
    def from_config(cls, config: ProviderConfig, model: str) -> AnthropicProvider:
        return cls(
            model=config.model or model,
            api_key_env=config.api_key_env,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "anthropic"

    async def _get_client(self) -> anthropic.AsyncAnthropic:
        """Get or lazily create the async client."""
        async with self._client_lock:
            if self._client is None:
                if not self._api_key:
                    raise ModelConfigurationError(
                        f"API key not found in environment variable: {self.api_key_env}"
                    )
                self._client = anthropic.AsyncAnthropic(
                    api_key=self._api_key,
                    timeout=self.timeout_seconds,
                )
            return self._client

    async def complete(self, request: ProviderRequest) -> ProviderResponse:
        client = await self._get_client()
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.user_message}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise ProviderError(f"Rate limited: {e}", self.name, retriable=True) from e
        except anthropic.AuthenticationError as e:
            raise ProviderError(
                f"Authentication failed: {e}", self.name, retriable=False
            ) from e
        except anthropic.BadRequestError as e:
            raise ProviderError(f"Bad request: {e}", self.name, retriable=False) from e
        except anthropic.APITimeoutError as e:
            raise ProviderError(f"API timeout: {e}", self.name, retriable=True) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(f"Connection error: {e}", self.name, retriable=True) from e
        except anthropic.APIStatusError as e:
            raise ProviderError(
                str(e), self.name, retriable=detect_rate_limit(str(e)) or e.status_code >= 500
            ) from e

        text = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        tokens_used = (
            response.usage.input_tokens + response.usage.output_tokens
            if response.usage
            else 0
        )
        return ProviderResponse(text=text, tokens_used=tokens_used)

    async def health_check(self) -> bool:
        if not self._api_key:
            return False
        try:
            await self.complete(
                ProviderRequest(user_message="Reply with only: ok", max_tokens=10)
            )
        except (ProviderError, ModelConfigurationError) as e:
            _logger.warning("anthropic_health_check_failed", error=str(e))
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class OllamaProvider(ModelProvider):
    """Run requests against a local Ollama server via /api/chat."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        timeout_seconds: float = 60.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: ProviderConfig, model: str) -> OllamaProvider:
        return cls(
            base_url=config.base_url,
            model=config.model or model,
            timeout_seconds=config.timeout_seconds,
        )

    @property
    def name(self) -> str:
        return "ollama"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds, connect=10.0),
            )
        return self._client

    async def complete(self, request: ProviderRequest) -> ProviderResponse:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.user_message})
        payload = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }

        start = time.monotonic()
        try:
            response = await self._get_client().post("/api/chat", json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ProviderError(
                f"Ollama returned HTTP {status}",
                self.name,
                retriable=status >= 500 or status == 429,
            ) from e
        except httpx.HTTPError as e:
            raise ProviderError(f"Ollama request failed: {e}", self.name) from e
        except ValueError as e:
            raise ProviderError(f"Ollama returned invalid JSON: {e}", self.name) from e

        _logger.debug(
            "ollama_completion",
            model=self.model,
            duration_ms=round((time.monotonic() - start) * 1000, 1),
        )
        text = data.get("message", {}).get("content", "")
        tokens_used = int(data.get("prompt_eval_count", 0)) + int(data.get("eval_count", 0))
        return ProviderResponse(text=text, tokens_used=tokens_used)

    async def health_check(self) -> bool:
        """Check that Ollama is running and the configured model is pulled."""
        try:
            response = await self._get_client().get("/api/tags", timeout=10.0)
        except httpx.HTTPError as e:
            _logger.warning("ollama_health_check_error", error=str(e))
            return False
        if response.status_code != 200:
            _logger.warning("ollama_health_check_failed", status_code=response.status_code)
            return False
        model_base = self.model.split(":")[0]
        return any(
            entry.get("name", "").startswith(model_base)
            for entry in response.json().get("models", [])
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def build_provider(config: ProviderConfig, model: str) -> ModelProvider:
    """Create the provider for a non-offline ProviderConfig."""
    if config.type == "anthropic":
        return AnthropicProvider.from_config(config, model)
    if config.type == "ollama":
        return OllamaProvider.from_config(config, model)
    raise ModelConfigurationError(f"Provider type {config.type!r} has no network transport")
