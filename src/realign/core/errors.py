"""Exception hierarchy for the ReAlign intelligence core.

All exceptions inherit from RealignError, enabling callers to catch broadly
(RealignError) or narrowly (e.g., ModelExecutionError). Only configuration
errors and learning-fatal errors are meant to cross component boundaries;
transient and degraded-accuracy failures are absorbed where they occur.
"""

from __future__ import annotations

from typing import Any


class RealignError(Exception):
    """Base exception for all intelligence-core errors."""


class ConfigError(RealignError):
    """Raised when a configuration file cannot be read or fails validation."""


class ModelConfigurationError(RealignError):
    """Raised when no model is registered for a task kind, or a provider
    is missing credentials.

    A missing task kind fails before any attempt is made. Raised from inside
    a model attempt, it counts as a failed attempt like any other error.
    """


class ModelTimeoutError(RealignError):
    """Raised when a single model attempt exceeds its deadline."""

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(f"Operation timed out after {timeout_seconds:.3f}s")
        self.timeout_seconds = timeout_seconds


class ProviderError(RealignError):
    """Raised when a language-model provider call fails.

    Attributes:
        provider: Provider name (e.g., "anthropic", "ollama").
        retriable: Whether retrying the same call may succeed. Logged with
            each retry for diagnosis.
    """

    def __init__(self, message: str, provider: str, retriable: bool = True) -> None:
        super().__init__(message)
        self.provider = provider
        self.retriable = retriable


class ModelExecutionError(RealignError):
    """Raised by the orchestrator after primary and fallback attempts exhaust.

    Attributes:
        task_kind: The task kind that could not be executed.
        correlation_id: Execution id shared with every related log line.
        context: The dispatch context, for external diagnosis.
        cause: The last error observed.
    """

    def __init__(
        self,
        message: str,
        *,
        task_kind: str,
        correlation_id: str,
        context: Any = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.task_kind = task_kind
        self.correlation_id = correlation_id
        self.context = context
        self.cause = cause


class LearningError(RealignError):
    """Raised when feature extraction fails and an interaction cannot be learned from.

    The interaction itself is persisted upstream, so callers may skip learning
    for it without data loss.
    """

    def __init__(
        self,
        message: str,
        *,
        interaction: Any,
        outcome: Any,
        correlation_id: str,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.interaction = interaction
        self.outcome = outcome
        self.correlation_id = correlation_id
        self.cause = cause


class PatternError(RealignError):
    """Base exception for pattern recognition failures."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


class PatternAnalysisError(PatternError):
    """Raised when batch pattern discovery fails."""


class PatternSearchError(PatternError):
    """Raised when the pattern store cannot answer a similarity query."""


class PatternStorageError(PatternError):
    """Raised when a pattern cannot be written to the pattern store."""
