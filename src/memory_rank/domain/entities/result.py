"""
Downstream result entities returned by the ranking pipeline.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from memory_rank.domain.entities.query import FeatureDecision, QueryProfile


@dataclass(frozen=True)
class RankedItem:
    """One entry of the final ordered sequence."""

    id: str
    score: float
    snippet: str
    provenance: str
    age_days: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "score": round(self.score, 6),
            "snippet": self.snippet,
            "provenance": self.provenance,
        }
        if self.age_days is not None:
            data["age_days"] = round(self.age_days, 3)
        return data


@dataclass
class RankingResult:
    """Final sequence plus the observability record of one ranking call."""

    query: str
    items: list[RankedItem]
    decision: FeatureDecision
    profile: QueryProfile
    learning_advice: dict[str, bool | None] = field(default_factory=dict)
    timings_ms: dict[str, float] = field(default_factory=dict)
    notes: list[str] = field(default_factory=list)
    dropped_inputs: int = 0
    tokens_used: int = 0
    # Search monitor event id, when the call was recorded
    search_id: str | None = None

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "query": self.query,
            "total_results": len(self.items),
            "results": [item.to_dict() for item in self.items],
            "decision": self.decision.to_dict(),
            "profile": self.profile.to_dict(),
            "learning_advice": self.learning_advice,
            "timings_ms": {k: round(v, 3) for k, v in self.timings_ms.items()},
            "notes": self.notes,
            "dropped_inputs": self.dropped_inputs,
            "tokens_used": self.tokens_used,
            "search_id": self.search_id,
        }
