"""Model selection, retry and fallback."""

from realign.orchestration.orchestrator import (
    ExecutionRecord,
    ModelConfiguration,
    ModelOrchestrator,
    PerformanceMetrics,
    ServiceHealth,
)
from realign.orchestration.registry import build_model_registry

__all__ = [
    "ExecutionRecord",
    "ModelConfiguration",
    "ModelOrchestrator",
    "PerformanceMetrics",
    "ServiceHealth",
    "build_model_registry",
]
