"""Provider-backed models that drive a language model with a system prompt.

Conversational replies are returned as text; every other kind is expected to
answer with a JSON object which is parsed and range-checked here.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

from realign.core.config import ModelSpec
from realign.core.errors import ProviderError
from realign.models.base import (
    AIModel,
    ModelProvider,
    ModelResult,
    ProviderRequest,
    Task,
    TaskContext,
    TaskKind,
    clamp_unit,
)
from realign.models.prompts import SYSTEM_PROMPTS

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)

# Numeric fields that must lie in [0, 1] when present
_UNIT_FIELDS = ("distress", "hope", "frustration", "complexity", "confidence")


def render_input(value: Any) -> str:
    """Render task input as the user message."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("message"), str):
        return value["message"]
    return json.dumps(value, default=str, sort_keys=True)


def parse_json_reply(text: str, provider: str) -> dict[str, Any]:
    """Extract the first JSON object from a model reply.

    Raises:
        ProviderError: If the reply has no parseable JSON object.
    """
    match = _JSON_OBJECT.search(text)
    if match is None:
        raise ProviderError("Model reply contained no JSON object", provider)
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ProviderError(f"Model reply was not valid JSON: {e}", provider) from e
    if not isinstance(data, dict):
        raise ProviderError("Model reply JSON was not an object", provider)
    for key in _UNIT_FIELDS:
        if isinstance(data.get(key), (int, float)):
            data[key] = clamp_unit(data[key])
    if isinstance(data.get("sentiment"), (int, float)):
        data["sentiment"] = max(-1.0, min(1.0, float(data["sentiment"])))
    return data


class PromptedModel(AIModel):
    """A task-kind model backed by a language-model provider."""

    def __init__(
        self,
        spec: ModelSpec,
        kind: TaskKind,
        provider: ModelProvider,
        system_prompt: str | None = None,
    ) -> None:
        self._spec = spec
        self._kind = kind
        self._provider = provider
        self._system_prompt = system_prompt or SYSTEM_PROMPTS[kind]

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def kind(self) -> TaskKind:
        return self._kind

    @property
    def provider(self) -> ModelProvider:
        return self._provider

    @property
    def provider_name(self) -> str:
        return self._provider.name

    async def execute(self, task: Task, context: TaskContext) -> ModelResult:
        start = time.monotonic()
        request = ProviderRequest(
            user_message=render_input(task.input),
            system_prompt=self._system_prompt,
            temperature=(
                task.options.temperature
                if task.options.temperature is not None
                else self._spec.temperature
            ),
            max_tokens=task.options.max_tokens or self._spec.max_tokens,
        )
        response = await self._provider.complete(request)

        if self._kind is TaskKind.CONVERSATIONAL:
            data: Any = {"message": response.text, "confidence": response.confidence}
            confidence = response.confidence
            warnings: list[str] = []
        else:
            data = parse_json_reply(response.text, self._provider.name)
            confidence = data.get("confidence", response.confidence)
            warnings = [str(w) for w in data.get("warnings", [])]

        return ModelResult(
            data=data,
            confidence=confidence,
            execution_time_ms=(time.monotonic() - start) * 1000,
            model_name=self.name,
            tokens_used=response.tokens_used,
            warnings=warnings,
        )

    def estimated_cost(self, task: Task) -> float:
        return self._spec.cost_per_1k_tokens

    def estimated_time(self, task: Task) -> float:
        return self._spec.estimated_time_ms

    async def health_check(self) -> bool:
        return await self._provider.health_check()

    async def close(self) -> None:
        await self._provider.close()
