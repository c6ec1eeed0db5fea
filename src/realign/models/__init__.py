"""AI models and language-model providers.

Only the base abstractions are re-exported here; provider-backed and offline
models are imported from their own modules.
"""

from realign.models.base import (
    AIModel,
    ModelProvider,
    ModelResult,
    Specialization,
    Task,
    TaskContext,
    TaskKind,
    TaskOptions,
    Urgency,
)

__all__ = [
    "AIModel",
    "ModelProvider",
    "ModelResult",
    "Specialization",
    "Task",
    "TaskContext",
    "TaskKind",
    "TaskOptions",
    "Urgency",
]
