"""Configuration models for the intelligence core.

Pydantic models for loading and validating YAML configuration. Every threshold
used by the orchestrator, the pattern recognition engine and the learning
pipeline lives here so it can be tuned per deployment.

Example YAML:
    orchestrator:
      retry:
        max_retries: 3
      models:
        conversational:
          primary:
            name: claude-sonnet-4-20250514
            provider:
              type: anthropic
    learning:
      slow_response_ms: 5000
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from realign.core.errors import ConfigError
from realign.models.base import Specialization, TaskKind


class ProviderConfig(BaseModel):
    """Connection settings for a language-model provider.

    ``offline`` selects the in-process heuristic models, which need no
    network access and are the default.
    """

    type: Literal["anthropic", "ollama", "offline"] = Field(
        default="offline",
        description="Provider transport",
    )
    model: str | None = Field(
        default=None,
        description="Provider-side model id. Defaults to the ModelSpec name.",
    )
    api_key_env: str = Field(
        default="ANTHROPIC_API_KEY",
        description="Environment variable holding the API key (anthropic only)",
    )
    base_url: str = Field(
        default="http://localhost:11434",
        description="Server base URL (ollama only)",
    )
    timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Client-level request timeout",
    )


class ModelSpec(BaseModel):
    """One model implementation: a name, a provider and generation defaults."""

    name: str = Field(description="Model name recorded in results and metrics")
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2000, ge=1)
    cost_per_1k_tokens: float = Field(default=0.01, ge=0.0)
    estimated_time_ms: float = Field(default=2000.0, ge=0.0)


class TaskModelConfig(BaseModel):
    """Primary, fallback and specialized models for one task kind."""

    primary: ModelSpec
    fallback: ModelSpec | None = None
    specialized: dict[Specialization, ModelSpec] = Field(default_factory=dict)


class RetryConfig(BaseModel):
    """Retry-with-timeout policy for primary model attempts.

    Attempt n (1-based) that fails waits ``base_delay_seconds * 2**n`` before
    the next attempt. The fallback model is never retried.
    """

    max_retries: int = Field(default=3, ge=0, le=10)
    base_delay_seconds: float = Field(default=1.0, ge=0.0)
    default_timeout_ms: int = Field(default=30000, gt=0)


def _offline(name: str, temperature: float = 0.7) -> ModelSpec:
    return ModelSpec(name=name, temperature=temperature)


def _default_models() -> dict[TaskKind, TaskModelConfig]:
    return {
        TaskKind.CONVERSATIONAL: TaskModelConfig(
            primary=_offline("offline-conversational"),
        ),
        TaskKind.DOCUMENT: TaskModelConfig(
            primary=_offline("offline-document", 0.1),
        ),
        TaskKind.EMOTIONAL: TaskModelConfig(
            primary=_offline("offline-emotion", 0.3),
        ),
        TaskKind.INTENT: TaskModelConfig(
            primary=_offline("offline-intent", 0.2),
        ),
        TaskKind.REGULATORY: TaskModelConfig(
            primary=_offline("offline-regulatory", 0.2),
        ),
    }


class OrchestratorConfig(BaseModel):
    """Model registry and dispatch policy."""

    models: dict[TaskKind, TaskModelConfig] = Field(default_factory=_default_models)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    history_size: int = Field(
        default=1000,
        ge=1,
        description="Execution records kept for performance metrics",
    )
    heavy_payload_bytes: int = Field(
        default=1024 * 1024,
        ge=1,
        description="data_size above which the heavy-payload variant applies",
    )


class PatternRecognitionConfig(BaseModel):
    """Thresholds for batch pattern discovery and similarity search."""

    min_cases: int = Field(default=10, ge=1)
    min_cluster_size: int = Field(default=5, ge=1)
    max_clusters: int = Field(default=10, ge=1)
    min_candidate_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    cv_folds: int = Field(default=5, ge=2)
    min_cv_accuracy: float = Field(default=0.7, ge=0.0, le=1.0)
    min_cv_consistency: float = Field(default=0.8, ge=0.0, le=1.0)
    default_min_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    embedding_dimensions: int = Field(default=50, ge=16)
    duplicate_similarity: float = Field(
        default=0.97,
        ge=0.0,
        le=1.0,
        description="Embedding similarity at which a stored pattern is updated "
        "in place instead of inserting a new one",
    )
    random_seed: int = Field(default=0, description="Seed for k-means initialisation")


class LearningConfig(BaseModel):
    """Per-interaction learning thresholds.

    The notable-interaction cutoffs are deliberately configurable; their
    defaults reproduce the historical behavior.
    """

    similar_min_similarity: float = Field(default=0.75, ge=0.0, le=1.0)
    similar_max_results: int = Field(default=10, ge=1)
    experiment_min_potential: float = Field(default=0.7, ge=0.0, le=1.0)
    slow_response_ms: float = Field(default=5000.0, ge=0.0)
    slow_metric_response_ms: float = Field(default=3000.0, ge=0.0)
    high_satisfaction: float = Field(default=0.8, ge=0.0, le=1.0)
    notable_success_satisfaction: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="A successful interaction spawns a pattern only at or above this",
    )
    unremarkable_min_satisfaction: float = Field(
        default=0.4,
        ge=0.0,
        le=1.0,
        description="Failures with satisfaction in [min, max) do not spawn a pattern",
    )
    unremarkable_max_satisfaction: float = Field(default=0.7, ge=0.0, le=1.0)
    low_satisfaction: float = Field(default=0.7, ge=0.0, le=1.0)
    distress_critical: float = Field(default=0.8, ge=0.0, le=1.0)
    frustration_medium: float = Field(default=0.7, ge=0.0, le=1.0)
    efficient_response_ms: float = Field(default=2000.0, ge=0.0)


class LogConfig(BaseModel):
    """Logging output settings."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console", "both"] = "console"
    file_path: Path | None = None

    @model_validator(mode="after")
    def _validate_file_for_both(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("file_path is required when format is 'both'")
        return self


class RealignConfig(BaseModel):
    """Top-level configuration. Defaults give a fully offline setup."""

    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    patterns: PatternRecognitionConfig = Field(default_factory=PatternRecognitionConfig)
    learning: LearningConfig = Field(default_factory=LearningConfig)
    logging: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> RealignConfig:
        """Load configuration from a YAML file."""
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config {path}: {e}") from e
        return cls._validate(data, str(path))

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> RealignConfig:
        """Load configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigError(f"Cannot parse config: {e}") from e
        return cls._validate(data, "<string>")

    @classmethod
    def _validate(cls, data: object, source: str) -> RealignConfig:
        try:
            return cls.model_validate(data or {})
        except ValidationError as e:
            raise ConfigError(f"Invalid config {source}: {e}") from e
