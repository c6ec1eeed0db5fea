"""Case memory: per-case context shared by the conversational and learning subsystems.

The production store lives behind the relational persistence layer; this
module defines the contract the learning pipeline consumes and an in-memory
implementation used by the composition root and tests.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Protocol

from realign.core.logging import get_logger
from realign.utils.time import ensure_aware, utc_now

_logger = get_logger("memory")

# Most recent entries kept per list in a snapshot
MAX_MEMORY_ITEMS = 50


@dataclass(frozen=True)
class MemoryUpdate:
    """One change to a case's memory."""

    type: Literal["learning", "interaction", "document", "financial"]
    data: dict[str, Any]
    source: str
    confidence: float | None = None
    timestamp: datetime | None = None


@dataclass
class CaseMemorySnapshot:
    """Point-in-time copy of a case's memory."""

    case_id: str
    pattern_matches: list[str] = field(default_factory=list)
    success_factors: list[str] = field(default_factory=list)
    risk_indicators: list[str] = field(default_factory=list)
    next_best_actions: list[str] = field(default_factory=list)
    last_interaction_at: datetime | None = None
    interaction_count: int = 0
    learning_history: list[dict[str, Any]] = field(default_factory=list)
    conversation: list[dict[str, Any]] = field(default_factory=list)
    updated_at: datetime = field(default_factory=utc_now)


class CaseMemory(Protocol):
    """Persistence of conversational, document and learning context per case."""

    async def get_memory(self, case_id: str) -> CaseMemorySnapshot | None: ...

    async def update_memory(self, case_id: str, update: MemoryUpdate) -> CaseMemorySnapshot: ...

    async def get_conversation_context(self, case_id: str) -> list[dict[str, Any]]: ...


def _merge_unique(existing: list[str], new: list[Any]) -> list[str]:
    merged = list(existing)
    for item in new:
        text = str(item)
        if text not in merged:
            merged.append(text)
    return merged[-MAX_MEMORY_ITEMS:]


class InMemoryCaseMemory:
    """Dict-backed CaseMemory. Reads return copies; writes are serialized."""

    def __init__(self) -> None:
        self._memories: dict[str, CaseMemorySnapshot] = {}
        self._lock = asyncio.Lock()

    async def get_memory(self, case_id: str) -> CaseMemorySnapshot | None:
        memory = self._memories.get(case_id)
        return copy.deepcopy(memory) if memory is not None else None

    async def update_memory(self, case_id: str, update: MemoryUpdate) -> CaseMemorySnapshot:
        async with self._lock:
            current = self._memories.get(case_id) or CaseMemorySnapshot(case_id=case_id)
            memory = copy.deepcopy(current)
            timestamp = ensure_aware(update.timestamp) if update.timestamp else utc_now()

            if update.type == "learning":
                data = update.data
                memory.pattern_matches = _merge_unique(
                    memory.pattern_matches, data.get("pattern_matches", [])
                )
                memory.success_factors = _merge_unique(
                    memory.success_factors, data.get("success_factors", [])
                )
                memory.risk_indicators = _merge_unique(
                    memory.risk_indicators, data.get("risk_indicators", [])
                )
                memory.next_best_actions = _merge_unique(
                    memory.next_best_actions, data.get("next_best_actions", [])
                )
                memory.learning_history.append(
                    {
                        "timestamp": timestamp.isoformat(),
                        "source": update.source,
                        "confidence": update.confidence,
                        "summary": data.get("summary", ""),
                    }
                )
                memory.learning_history = memory.learning_history[-MAX_MEMORY_ITEMS:]
            elif update.type == "interaction":
                memory.last_interaction_at = timestamp
                memory.interaction_count += 1
                memory.conversation.append({"timestamp": timestamp.isoformat(), **update.data})
                memory.conversation = memory.conversation[-MAX_MEMORY_ITEMS:]

            memory.updated_at = utc_now()
            # whole-snapshot swap so readers never observe a partial update
            self._memories[case_id] = memory

        _logger.debug("memory_updated", case_id=case_id, update_type=update.type)
        return copy.deepcopy(memory)

    async def get_conversation_context(self, case_id: str) -> list[dict[str, Any]]:
        memory = self._memories.get(case_id)
        return copy.deepcopy(memory.conversation) if memory is not None else []
