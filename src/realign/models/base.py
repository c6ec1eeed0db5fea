"""Abstract base for language-model implementations and providers.

A provider is a transport to a hosted or local language model (Anthropic API,
Ollama). A model is what the orchestrator dispatches to: it owns a task kind,
a system prompt and output interpretation, and produces a ModelResult.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class TaskKind(str, Enum):
    """Categories of AI work, each mapped to one model configuration."""

    CONVERSATIONAL = "conversational"
    DOCUMENT = "document"
    EMOTIONAL = "emotional"
    INTENT = "intent"
    REGULATORY = "regulatory"


class Urgency(str, Enum):
    """Dispatch urgency tier."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Specialization(str, Enum):
    """Specialized model variants and the context predicate that selects them."""

    ACCURACY = "accuracy"
    """Selected when the context requires accuracy (e.g. financial documents)."""

    HEAVY_PAYLOAD = "heavy_payload"
    """Selected when the payload exceeds the heavy-payload threshold (e.g. scans)."""


@dataclass(frozen=True)
class TaskOptions:
    """Per-task generation options."""

    temperature: float | None = None
    max_tokens: int | None = None
    timeout_ms: int | None = None


@dataclass(frozen=True)
class Task:
    """A unit of orchestrated work. Immutable once dispatched."""

    kind: TaskKind
    input: Any
    options: TaskOptions = field(default_factory=TaskOptions)


@dataclass(frozen=True)
class TaskContext:
    """Dispatch hints used only for model selection."""

    urgency: Urgency | None = None
    data_size: int | None = None
    requires_accuracy: bool = False
    case_id: str | None = None
    user_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "urgency": self.urgency.value if self.urgency else None,
            "data_size": self.data_size,
            "requires_accuracy": self.requires_accuracy,
            "case_id": self.case_id,
            "user_id": self.user_id,
        }


def clamp_unit(value: float) -> float:
    """Clamp a score into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


@dataclass
class ModelResult:
    """Result of one successful model execution.

    Confidence is clamped into [0, 1] on construction.
    """

    data: Any
    confidence: float
    execution_time_ms: float
    model_name: str
    success: bool = True
    tokens_used: int | None = None
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.confidence = clamp_unit(self.confidence)


@dataclass(frozen=True)
class ProviderRequest:
    """Request sent to a language-model provider."""

    user_message: str
    system_prompt: str | None = None
    temperature: float = 0.7
    max_tokens: int = 2000


@dataclass(frozen=True)
class ProviderResponse:
    """Response from a language-model provider."""

    text: str
    tokens_used: int = 0
    confidence: float = 0.85


class ModelProvider(ABC):
    """Transport to a language model."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identity, e.g. "anthropic"."""
        ...

    @abstractmethod
    async def complete(self, request: ProviderRequest) -> ProviderResponse:
        """Send one request and return the reply.

        Raises:
            ProviderError: On any transport or API failure.
            ModelConfigurationError: When credentials are missing.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the provider is reachable and configured."""
        ...

    async def close(self) -> None:
        """Release network resources. Safe to call repeatedly."""


class AIModel(ABC):
    """A model implementation the orchestrator can dispatch tasks to."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Model name recorded in results and execution history."""
        ...

    @property
    @abstractmethod
    def kind(self) -> TaskKind:
        """The task kind this model serves."""
        ...

    @abstractmethod
    async def execute(self, task: Task, context: TaskContext) -> ModelResult:
        """Execute a task.

        Raises:
            Exception: Any failure; the orchestrator treats it as transient.
        """
        ...

    def can_handle(self, task: Task) -> bool:
        return task.kind == self.kind

    @abstractmethod
    def estimated_cost(self, task: Task) -> float:
        """Rough cost in USD per 1K tokens."""
        ...

    @abstractmethod
    def estimated_time(self, task: Task) -> float:
        """Rough latency in milliseconds."""
        ...

    async def health_check(self) -> bool:
        return True

    @property
    def provider_name(self) -> str:
        """Name of the backing provider, or "local" for in-process models."""
        return "local"

    async def close(self) -> None:
        """Release resources held by the backing provider."""
