"""
Learning domain entity.

QueryPatternStats is the only state that outlives a ranking call. One record
exists per (feature, query pattern); it is created on the first outcome
report for that pattern and updated, never deleted, afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class QueryPatternStats:
    """Running outcome means with and without one optional feature."""

    pattern: str
    feature: str
    count_with: int = 0
    count_without: int = 0
    mean_with: float = 0.0
    mean_without: float = 0.0
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def total(self) -> int:
        return self.count_with + self.count_without

    def record(self, used_feature: bool, quality: float) -> None:
        """Incremental mean update: new = old + (value - old) / count."""
        if used_feature:
            self.count_with += 1
            self.mean_with += (quality - self.mean_with) / self.count_with
        else:
            self.count_without += 1
            self.mean_without += (quality - self.mean_without) / self.count_without
        self.updated_at = _utcnow()

    def to_dict(self) -> dict[str, Any]:
        """Flat key-value record used by the persistent store."""
        return {
            "feature": self.feature,
            "count_with": self.count_with,
            "count_without": self.count_without,
            "mean_with": self.mean_with,
            "mean_without": self.mean_without,
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, pattern: str, data: dict[str, Any]) -> QueryPatternStats:
        updated = data.get("updated_at")
        if isinstance(updated, str):
            updated_at = datetime.fromisoformat(updated)
        elif isinstance(updated, datetime):
            updated_at = updated
        else:
            updated_at = _utcnow()
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)

        return cls(
            pattern=pattern,
            feature=str(data["feature"]),
            count_with=int(data.get("count_with", 0)),
            count_without=int(data.get("count_without", 0)),
            mean_with=float(data.get("mean_with", 0.0)),
            mean_without=float(data.get("mean_without", 0.0)),
            updated_at=updated_at,
        )
