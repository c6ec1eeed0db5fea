"""Learning module: feature extraction, pattern recognition and continuous learning."""

from realign.learning.cases import CaseRepository, InMemoryCaseRepository, load_cases_json
from realign.learning.experiments import ExperimentRunner, LoggingModelUpdater, ModelUpdater
from realign.learning.features import FeatureExtractor
from realign.learning.hypotheses import HypothesisGenerator
from realign.learning.models import (
    Interaction,
    InteractionOutcome,
    LabeledCase,
    LearningResult,
    Pattern,
    PatternSearchOptions,
    PatternType,
)
from realign.learning.pipeline import ContinuousLearningPipeline
from realign.learning.recognition import PatternRecognitionEngine
from realign.learning.store import InMemoryVectorStore, VectorStore

__all__ = [
    # Data
    "Interaction",
    "InteractionOutcome",
    "LabeledCase",
    "LearningResult",
    "Pattern",
    "PatternSearchOptions",
    "PatternType",
    # History and storage
    "CaseRepository",
    "InMemoryCaseRepository",
    "load_cases_json",
    "VectorStore",
    "InMemoryVectorStore",
    # Components
    "FeatureExtractor",
    "PatternRecognitionEngine",
    "HypothesisGenerator",
    "ExperimentRunner",
    "ModelUpdater",
    "LoggingModelUpdater",
    "ContinuousLearningPipeline",
]
