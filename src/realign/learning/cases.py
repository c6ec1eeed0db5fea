"""Outcome-labeled case history used by batch pattern discovery."""

from __future__ import annotations

import asyncio
import json
from collections import deque
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from realign.core.errors import ConfigError
from realign.core.logging import get_logger
from realign.learning.models import (
    FeatureSet,
    Interaction,
    InteractionOutcome,
    LabeledCase,
    PatternFeatures,
    PatternOutcome,
)

_logger = get_logger("learning.cases")

DEFAULT_MAX_CASES_PER_CATEGORY = 5000

_CASES_ADAPTER: TypeAdapter[list[LabeledCase]] = TypeAdapter(list[LabeledCase])


class CaseRepository(Protocol):
    """Source of labeled cases per category."""

    async def query_labeled_cases(self, category: str) -> list[LabeledCase]: ...

    async def record_case(self, case: LabeledCase) -> None: ...


def labeled_case_from_interaction(
    interaction: Interaction,
    outcome: InteractionOutcome,
    features: FeatureSet,
) -> LabeledCase:
    """Build the labeled case recorded for a processed interaction."""
    return LabeledCase(
        case_id=interaction.case_id,
        category=interaction.type.value,
        features=PatternFeatures.from_feature_set(
            features, outcome, interaction.context.previous_outcomes
        ),
        outcome=PatternOutcome.from_interaction(interaction, outcome),
        user_role=interaction.context.user_role,
        case_type=interaction.context.case_stage,
    )


class InMemoryCaseRepository:
    """Bounded per-category case history."""

    def __init__(self, max_cases_per_category: int = DEFAULT_MAX_CASES_PER_CATEGORY) -> None:
        self._max_cases = max_cases_per_category
        self._cases: dict[str, deque[LabeledCase]] = {}
        self._lock = asyncio.Lock()

    async def query_labeled_cases(self, category: str) -> list[LabeledCase]:
        return list(self._cases.get(category, ()))

    async def record_case(self, case: LabeledCase) -> None:
        async with self._lock:
            history = self._cases.setdefault(case.category, deque(maxlen=self._max_cases))
            history.append(case)

    async def extend(self, cases: list[LabeledCase]) -> None:
        for case in cases:
            await self.record_case(case)

    def categories(self) -> list[str]:
        return sorted(self._cases)


def load_cases_json(path: Path) -> list[LabeledCase]:
    """Load labeled cases from a JSON array.

    Raises:
        ConfigError: If the file cannot be read or does not match the schema.
    """
    try:
        data = json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read cases file {path}: {e}") from e
    try:
        cases = _CASES_ADAPTER.validate_python(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid cases file {path}: {e}") from e
    _logger.info("cases_loaded", path=str(path), count=len(cases))
    return cases
