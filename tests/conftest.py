"""Pytest fixtures for ReAlign tests."""

import logging
from pathlib import Path
from typing import Generator

import pytest
import structlog

from realign.learning.cases import InMemoryCaseRepository
from realign.learning.recognition import PatternRecognitionEngine
from realign.learning.store import InMemoryVectorStore
from realign.memory import InMemoryCaseMemory


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging state before and after each test.

    This ensures test isolation for logging configuration.
    """
    # Reset structlog to default state
    structlog.reset_defaults()

    # Clear all handlers from root logger
    root_logger = logging.getLogger()
    original_level = root_logger.level
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    structlog.reset_defaults()

    # Restore original handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(original_level)


@pytest.fixture
def case_repository() -> InMemoryCaseRepository:
    return InMemoryCaseRepository()


@pytest.fixture
def case_memory() -> InMemoryCaseMemory:
    return InMemoryCaseMemory()


@pytest.fixture
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def engine(
    case_repository: InMemoryCaseRepository, vector_store: InMemoryVectorStore
) -> PatternRecognitionEngine:
    """Recognition engine with offline embeddings (no model-scored block)."""
    return PatternRecognitionEngine(case_repository, store=vector_store)


@pytest.fixture
def sample_config_dict() -> dict:
    """Return a sample configuration dictionary with offline models."""
    return {
        "orchestrator": {
            "retry": {"max_retries": 2, "base_delay_seconds": 0.5},
            "history_size": 50,
            "models": {
                kind: {"primary": {"name": f"offline-{kind}"}}
                for kind in ("conversational", "document", "emotional", "intent", "regulatory")
            },
        },
        "patterns": {"min_cases": 12, "random_seed": 7},
        "learning": {"slow_response_ms": 4000},
    }


@pytest.fixture
def sample_yaml_config(tmp_path: Path, sample_config_dict: dict) -> Path:
    """Create a sample YAML config file."""
    import yaml

    config_path = tmp_path / "realign.yaml"
    with open(config_path, "w") as f:
        yaml.dump(sample_config_dict, f)
    return config_path
