"""Build the model dispatch table from configuration."""

from __future__ import annotations

from realign.core.config import ModelSpec, OrchestratorConfig
from realign.core.errors import ModelConfigurationError
from realign.models.base import AIModel, TaskKind
from realign.models.offline import OfflineModel
from realign.models.prompted import PromptedModel
from realign.models.providers import build_provider
from realign.orchestration.orchestrator import ModelConfiguration


def build_model(spec: ModelSpec, kind: TaskKind) -> AIModel:
    """Instantiate one model from its spec."""
    if spec.provider.type == "offline":
        return OfflineModel(spec, kind)
    return PromptedModel(spec, kind, build_provider(spec.provider, spec.name))


def build_model_registry(config: OrchestratorConfig) -> dict[TaskKind, ModelConfiguration]:
    """Create a ModelConfiguration for every task kind.

    Raises:
        ModelConfigurationError: A task kind has no configured model.
    """
    missing = [kind.value for kind in TaskKind if kind not in config.models]
    if missing:
        raise ModelConfigurationError(f"No model configured for task kinds: {', '.join(missing)}")

    registry: dict[TaskKind, ModelConfiguration] = {}
    for kind in TaskKind:
        task_config = config.models[kind]
        registry[kind] = ModelConfiguration(
            primary=build_model(task_config.primary, kind),
            fallback=(
                build_model(task_config.fallback, kind)
                if task_config.fallback is not None
                else None
            ),
            specialized={
                specialization: build_model(spec, kind)
                for specialization, spec in task_config.specialized.items()
            },
        )
    return registry
