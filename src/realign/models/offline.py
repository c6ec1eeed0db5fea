"""Deterministic in-process models.

Used when no provider is configured (the default) and as cheap fallbacks.
They keep the learning subsystem functional without network access: the
emotional analyzer in particular feeds content features for every interaction.
"""

from __future__ import annotations

import json
import re
import time
from collections.abc import Callable
from typing import Any

from realign.core.config import ModelSpec
from realign.models.base import AIModel, ModelResult, Task, TaskContext, TaskKind

_WORD = re.compile(r"[a-z']+")
_SENTENCE = re.compile(r"[.!?]+")

POSITIVE_WORDS = frozenset({
    "thank", "thanks", "great", "helpful", "appreciate", "good", "relieved",
    "happy", "approved", "glad", "hope", "hopeful", "better", "resolved",
})
NEGATIVE_WORDS = frozenset({
    "angry", "frustrated", "terrible", "worried", "scared", "afraid", "lose",
    "losing", "foreclosure", "denied", "late", "behind", "desperate", "upset",
    "confused", "unfair", "ignored", "stress", "stressed",
})
DISTRESS_WORDS = frozenset({
    "foreclosure", "evicted", "eviction", "desperate", "scared", "afraid",
    "losing", "lose", "emergency", "urgent", "help", "panic", "homeless",
})
FRUSTRATION_WORDS = frozenset({
    "again", "still", "never", "ignored", "frustrated", "ridiculous",
    "waiting", "nobody", "unfair", "angry", "upset",
})
HOPE_WORDS = frozenset({
    "hope", "hopeful", "approved", "modification", "plan", "possible",
    "thanks", "relieved", "better", "option", "options",
})

TOPIC_KEYWORDS: dict[str, frozenset[str]] = {
    "financial_hardship": frozenset(
        {"hardship", "income", "job", "unemployed", "medical", "divorce"}
    ),
    "payment_assistance": frozenset({"payment", "payments", "forbearance", "deferral", "behind"}),
    "loan_modification": frozenset({"modification", "modify", "rate", "term"}),
    "foreclosure": frozenset({"foreclosure", "auction", "sale", "eviction"}),
    "documents": frozenset({"paystub", "statement", "document", "documents", "upload", "tax"}),
    "servicer_contact": frozenset({"servicer", "bank", "lender", "call", "called"}),
}

INTENT_KEYWORDS: list[tuple[str, frozenset[str]]] = [
    ("escalation", frozenset({"manager", "supervisor", "human", "person", "complaint"})),
    ("document_upload", frozenset({"upload", "uploaded", "attached", "attachment", "paystub"})),
    ("status_update", frozenset({"update", "status", "heard", "received", "approved"})),
    ("help_request", frozenset({"help", "assist", "need", "urgent"})),
]

DOCUMENT_TYPES: list[tuple[str, frozenset[str]]] = [
    ("paystub", frozenset({"gross", "net", "pay", "employer", "ytd"})),
    ("bank_statement", frozenset({"balance", "deposit", "withdrawal", "account"})),
    ("tax_return", frozenset({"irs", "1040", "adjusted", "refund"})),
    ("hardship_letter", frozenset({"hardship", "because", "lost", "unable"})),
]

REGULATORY_RULES: dict[str, frozenset[str]] = {
    "possible_dual_tracking": frozenset({"foreclosure", "sale", "auction"}),
    "missing_acknowledgement": frozenset({"never", "acknowledged", "received", "response"}),
    "deadline_risk": frozenset({"deadline", "days", "expires", "expired"}),
}


def _text_of(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("message", "content", "text"):
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value, default=str, sort_keys=True)


def _words(text: str) -> list[str]:
    return _WORD.findall(text.lower())


def _ratio(hits: int, total: int, scale: float = 4.0) -> float:
    """Saturating hit ratio in [0, 1]."""
    if total == 0:
        return 0.0
    return min(1.0, hits * scale / max(total, 1) + (0.15 * min(hits, 3)))


def analyze_emotion(text: str) -> dict[str, Any]:
    """Lexicon-based emotional analysis of a message."""
    words = _words(text)
    total = len(words)
    positive = sum(1 for w in words if w in POSITIVE_WORDS)
    negative = sum(1 for w in words if w in NEGATIVE_WORDS)
    sentences = max(1, len([s for s in _SENTENCE.split(text) if s.strip()]))
    avg_word = sum(len(w) for w in words) / total if total else 0.0
    avg_sentence = total / sentences
    complexity = min(1.0, (avg_word / 10.0) * 0.5 + (avg_sentence / 40.0) * 0.5)
    topics = sorted(
        topic for topic, keys in TOPIC_KEYWORDS.items() if any(w in keys for w in words)
    )
    sentiment = (positive - negative) / (positive + negative) if positive + negative else 0.0
    return {
        "sentiment": sentiment,
        "distress": _ratio(sum(1 for w in words if w in DISTRESS_WORDS), total),
        "hope": _ratio(sum(1 for w in words if w in HOPE_WORDS), total),
        "frustration": _ratio(sum(1 for w in words if w in FRUSTRATION_WORDS), total),
        "complexity": round(complexity, 4),
        "topics": topics,
        "emotionalMarkers": positive + negative + text.count("!"),
    }


def classify_intent(text: str) -> dict[str, Any]:
    words = set(_words(text))
    for intent, keys in INTENT_KEYWORDS:
        hits = len(words & keys)
        if hits:
            return {
                "type": intent,
                "confidence": min(0.95, 0.6 + 0.1 * hits),
                "entities": sorted(words & keys),
                "urgency": "high" if intent == "escalation" else "medium",
            }
    return {"type": "question", "confidence": 0.5, "entities": [], "urgency": "low"}


def analyze_document(text: str) -> dict[str, Any]:
    words = set(_words(text))
    best_type, best_hits = "unknown", 0
    for doc_type, keys in DOCUMENT_TYPES:
        hits = len(words & keys)
        if hits > best_hits:
            best_type, best_hits = doc_type, hits
    extracted: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip() and value.strip():
            extracted[key.strip()] = value.strip()
    warnings = [] if best_hits else ["document type could not be determined"]
    return {
        "documentType": best_type,
        "extracted": extracted,
        "confidence": min(0.9, 0.4 + 0.15 * best_hits),
        "warnings": warnings,
    }


def review_regulatory(text: str) -> dict[str, Any]:
    words = set(_words(text))
    issues = sorted(name for name, keys in REGULATORY_RULES.items() if len(words & keys) >= 2)
    severity = "none" if not issues else ("high" if len(issues) > 1 else "medium")
    return {"issues": issues, "severity": severity, "confidence": 0.6}


def converse(text: str) -> dict[str, Any]:
    emotion = analyze_emotion(text)
    if emotion["distress"] > 0.6:
        opening = "I can hear how stressful this is, and you are not facing it alone."
    else:
        opening = "Thanks for the update."
    return {
        "message": f"{opening} Let's look at the next step in your loss mitigation case together.",
        "confidence": 0.7,
    }


_ANALYZERS: dict[TaskKind, Callable[[str], dict[str, Any]]] = {
    TaskKind.CONVERSATIONAL: converse,
    TaskKind.EMOTIONAL: analyze_emotion,
    TaskKind.INTENT: classify_intent,
    TaskKind.DOCUMENT: analyze_document,
    TaskKind.REGULATORY: review_regulatory,
}

_DEFAULT_CONFIDENCE: dict[TaskKind, float] = {
    TaskKind.CONVERSATIONAL: 0.7,
    TaskKind.EMOTIONAL: 0.75,
    TaskKind.INTENT: 0.7,
    TaskKind.DOCUMENT: 0.6,
    TaskKind.REGULATORY: 0.6,
}


class OfflineModel(AIModel):
    """Heuristic model for one task kind; needs no network access."""

    def __init__(self, spec: ModelSpec, kind: TaskKind) -> None:
        self._spec = spec
        self._kind = kind

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def kind(self) -> TaskKind:
        return self._kind

    async def execute(self, task: Task, context: TaskContext) -> ModelResult:
        start = time.monotonic()
        data = _ANALYZERS[self._kind](_text_of(task.input))
        confidence = data.get("confidence", _DEFAULT_CONFIDENCE[self._kind])
        return ModelResult(
            data=data,
            confidence=confidence,
            execution_time_ms=(time.monotonic() - start) * 1000,
            model_name=self.name,
            tokens_used=0,
            warnings=list(data.get("warnings", [])),
        )

    def estimated_cost(self, task: Task) -> float:
        return 0.0

    def estimated_time(self, task: Task) -> float:
        return 5.0
