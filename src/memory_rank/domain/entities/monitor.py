"""
Search monitor domain entities.

- QueryType: coarse query class the monitor tunes weights for
- SearchEvent: one ranking call plus the effectiveness reported for it
- WeightState: the currently tuned semantic / keyword weights
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        parsed = datetime.fromisoformat(value)
    else:
        return _utcnow()
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


class QueryType(str, Enum):
    """Query classes with their own effectiveness history."""

    TECHNICAL = "technical"
    VAGUE = "vague"
    FACTUAL = "factual"
    EXPLORATORY = "exploratory"


@dataclass
class SearchEvent:
    """One recorded ranking call."""

    id: str
    query: str
    query_type: QueryType
    results_count: int
    avg_score: float
    semantic_weight: float
    keyword_weight: float
    timestamp: datetime = field(default_factory=_utcnow)

    # Success signals, set once the caller reports back
    clicked_result: bool | None = None
    follow_up_query: str | None = None
    session_extended: bool | None = None
    context_used: bool | None = None
    effectiveness: float | None = None

    @property
    def scored(self) -> bool:
        return self.effectiveness is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "query_type": self.query_type.value,
            "results_count": self.results_count,
            "avg_score": self.avg_score,
            "semantic_weight": self.semantic_weight,
            "keyword_weight": self.keyword_weight,
            "timestamp": self.timestamp.isoformat(),
            "clicked_result": self.clicked_result,
            "follow_up_query": self.follow_up_query,
            "session_extended": self.session_extended,
            "context_used": self.context_used,
            "effectiveness": self.effectiveness,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchEvent:
        effectiveness = data.get("effectiveness")
        return cls(
            id=str(data["id"]),
            query=str(data.get("query", "")),
            query_type=QueryType(data["query_type"]),
            results_count=int(data.get("results_count", 0)),
            avg_score=float(data.get("avg_score", 0.0)),
            semantic_weight=float(data["semantic_weight"]),
            keyword_weight=float(data["keyword_weight"]),
            timestamp=_parse_time(data.get("timestamp")),
            clicked_result=data.get("clicked_result"),
            follow_up_query=data.get("follow_up_query"),
            session_extended=data.get("session_extended"),
            context_used=data.get("context_used"),
            effectiveness=None if effectiveness is None else float(effectiveness),
        )


@dataclass
class WeightState:
    """Auto-tuned fusion weights and why they last changed."""

    semantic: float = 0.7
    keyword: float = 0.3
    last_adjusted: datetime = field(default_factory=_utcnow)
    reason: str = "default"

    def to_dict(self) -> dict[str, Any]:
        return {
            "semantic": self.semantic,
            "keyword": self.keyword,
            "last_adjusted": self.last_adjusted.isoformat(),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeightState:
        return cls(
            semantic=float(data["semantic"]),
            keyword=float(data["keyword"]),
            last_adjusted=_parse_time(data.get("last_adjusted")),
            reason=str(data.get("reason", "default")),
        )
