"""Composition root: builds one set of intelligence services per process."""

from __future__ import annotations

from dataclasses import dataclass

from realign.core.config import RealignConfig
from realign.core.logging import get_logger
from realign.learning.cases import CaseRepository, InMemoryCaseRepository
from realign.learning.embedding import PatternEmbedder
from realign.learning.experiments import ExperimentRunner, LoggingModelUpdater, ModelUpdater
from realign.learning.features import FeatureExtractor
from realign.learning.hypotheses import HypothesisGenerator
from realign.learning.pipeline import ContinuousLearningPipeline
from realign.learning.recognition import PatternRecognitionEngine
from realign.learning.store import InMemoryVectorStore, VectorStore
from realign.learning.validation import CrossValidator
from realign.memory import CaseMemory, InMemoryCaseMemory
from realign.orchestration import ModelOrchestrator, build_model_registry

_logger = get_logger("services")


@dataclass
class IntelligenceServices:
    """The wired orchestrator, recognition engine and learning pipeline."""

    config: RealignConfig
    orchestrator: ModelOrchestrator
    memory: CaseMemory
    cases: CaseRepository
    recognition: PatternRecognitionEngine
    pipeline: ContinuousLearningPipeline
    updater: ModelUpdater

    async def close(self) -> None:
        await self.orchestrator.close()


def build_services(
    config: RealignConfig | None = None,
    *,
    memory: CaseMemory | None = None,
    cases: CaseRepository | None = None,
    store: VectorStore | None = None,
    updater: ModelUpdater | None = None,
) -> IntelligenceServices:
    """Assemble the services from configuration.

    External collaborators default to in-memory implementations.

    Raises:
        ModelConfigurationError: If a task kind has no model configured.
    """
    config = config or RealignConfig()
    orchestrator = ModelOrchestrator(
        build_model_registry(config.orchestrator),
        retry=config.orchestrator.retry,
        history_size=config.orchestrator.history_size,
        heavy_payload_bytes=config.orchestrator.heavy_payload_bytes,
    )
    if memory is None:
        memory = InMemoryCaseMemory()
    if cases is None:
        cases = InMemoryCaseRepository()
    if store is None:
        store = InMemoryVectorStore()
    if updater is None:
        updater = LoggingModelUpdater()

    recognition = PatternRecognitionEngine(
        cases,
        store=store,
        embedder=PatternEmbedder(orchestrator, dimensions=config.patterns.embedding_dimensions),
        config=config.patterns,
        validator=CrossValidator(
            folds=config.patterns.cv_folds, random_seed=config.patterns.random_seed
        ),
    )
    pipeline = ContinuousLearningPipeline(
        recognition,
        FeatureExtractor(orchestrator, memory=memory, cases=cases, config=config.learning),
        memory=memory,
        cases=cases,
        updater=updater,
        config=config.learning,
        hypotheses=HypothesisGenerator(config.learning),
        experiments=ExperimentRunner(config.learning),
    )
    _logger.debug(
        "services_built",
        task_kinds=len(orchestrator.configured_kinds()),
        embedding_dimensions=config.patterns.embedding_dimensions,
    )
    return IntelligenceServices(
        config=config,
        orchestrator=orchestrator,
        memory=memory,
        cases=cases,
        recognition=recognition,
        pipeline=pipeline,
        updater=updater,
    )
