"""
Candidate domain entities.

Transient objects created and discarded within one ranking call:
- CandidateMetadata: per-item age / pinned / confidence / type
- CandidateItem: one scored entry from an upstream source
- RankedList: entries from one source, sorted by that source's score
- FusedResult: one merged record per unique id after fusion
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from memory_rank.core.exceptions import InputError

logger = logging.getLogger(__name__)

PINNED_MARKER = "\N{PUSHPIN}"


class Provenance(str, Enum):
    """Where a fused score mainly came from."""

    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    HYBRID = "hybrid"


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        # Epoch milliseconds above 1e11, seconds otherwise
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            parsed = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("Ignoring out-of-range timestamp %r", value)
            return None
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Ignoring unparseable timestamp %r", value)
            return None
    else:
        logger.warning("Ignoring timestamp of unsupported type %s", type(value).__name__)
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_TRUE_STRINGS = frozenset({"true", "yes", "1", "on"})


def _parse_flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    if isinstance(value, (int, float)):
        return value == 1
    return False


def _optional_str(value: Any) -> str | None:
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    text = str(value).strip()
    return text or None


def _optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


@dataclass(frozen=True)
class CandidateMetadata:
    """Optional per-item metadata carried through every stage."""

    age_days: float | None = None
    timestamp: datetime | None = None
    pinned: bool = False
    confidence: float | None = None
    source: str | None = None
    memory_type: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    _KNOWN_KEYS = frozenset(
        {
            "age_days",
            "ageDays",
            "timestamp",
            "created",
            "pinned",
            "confidence",
            "source",
            "type",
            "memory_type",
            "memoryType",
        }
    )

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> CandidateMetadata:
        """Build metadata from an upstream dict (camelCase or snake_case keys)."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise InputError(f"Metadata must be a mapping, got {type(data).__name__}", value=data)

        confidence = _optional_float(data.get("confidence"))
        if confidence is not None:
            confidence = min(max(confidence, 0.0), 1.0)

        return cls(
            age_days=_optional_float(data.get("age_days", data.get("ageDays"))),
            timestamp=_parse_timestamp(data.get("timestamp", data.get("created"))),
            pinned=_parse_flag(data.get("pinned")),
            confidence=confidence,
            source=_optional_str(data.get("source")),
            memory_type=_optional_str(data.get("memory_type", data.get("memoryType", data.get("type")))),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


@dataclass(frozen=True)
class CandidateItem:
    """One scored entry from an upstream ranked list."""

    id: str
    snippet: str
    score: float
    metadata: CandidateMetadata = field(default_factory=CandidateMetadata)

    @property
    def is_pinned(self) -> bool:
        return self.metadata.pinned or PINNED_MARKER in self.snippet

    @classmethod
    def from_dict(cls, data: Any) -> CandidateItem:
        """
        Parse one upstream entry.

        Raises:
            InputError: entry is not a mapping, has no id, has no numeric score,
                or carries non-mapping metadata
        """
        if not isinstance(data, dict):
            raise InputError(f"Candidate must be a mapping, got {type(data).__name__}", value=data)

        raw_id = data.get("id")
        if raw_id is None or str(raw_id).strip() == "":
            raise InputError("Candidate is missing an 'id'", value=data)

        raw_score = data.get("score", 0.0)
        if isinstance(raw_score, bool) or not isinstance(raw_score, (int, float)):
            raise InputError(f"Candidate {raw_id!r} has a non-numeric score: {raw_score!r}", value=data)
        if not math.isfinite(raw_score):
            raise InputError(f"Candidate {raw_id!r} has a non-finite score", value=data)

        raw_metadata = data.get("metadata")
        if raw_metadata is not None and not isinstance(raw_metadata, dict):
            raise InputError(
                f"Candidate {raw_id!r} has metadata of type {type(raw_metadata).__name__}, expected a mapping",
                value=data,
            )

        snippet = data.get("snippet", data.get("content", "")) or ""
        return cls(
            id=str(raw_id),
            snippet=str(snippet),
            score=float(raw_score),
            metadata=CandidateMetadata.from_dict(raw_metadata),
        )


class RankedList:
    """
    Entries from one source, sorted by that source's own score descending.

    Sorting happens on construction (ties broken by id ascending), so every
    RankedList handed to fusion is already ordered. Duplicate ids inside one
    list keep their highest-scoring occurrence.
    """

    def __init__(self, source: str, items: list[CandidateItem] | tuple[CandidateItem, ...] = (), dropped: int = 0):
        self.source = source
        ordered = sorted(items, key=lambda item: (-item.score, item.id))

        unique: list[CandidateItem] = []
        seen: set[str] = set()
        for item in ordered:
            if item.id in seen:
                logger.warning("Duplicate id %r in %s list, keeping the first occurrence", item.id, source)
                continue
            seen.add(item.id)
            unique.append(item)

        self.items: tuple[CandidateItem, ...] = tuple(unique)
        self.dropped = dropped
        self._ranks = {item.id: rank for rank, item in enumerate(self.items)}

    @classmethod
    def from_dicts(cls, source: str, entries: list[Any]) -> RankedList:
        """Parse upstream entries, dropping malformed ones with a warning."""
        items: list[CandidateItem] = []
        dropped = 0
        for entry in entries or []:
            try:
                items.append(CandidateItem.from_dict(entry))
            except InputError as e:
                dropped += 1
                logger.warning("Dropping malformed %s candidate: %s", source, e)
        return cls(source, items, dropped=dropped)

    def rank_of(self, item_id: str) -> int | None:
        """Zero-based position of ``item_id`` in this list, or None."""
        return self._ranks.get(item_id)

    @property
    def max_score(self) -> float:
        return self.items[0].score if self.items else 0.0

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._ranks

    def __repr__(self) -> str:
        return f"RankedList(source={self.source!r}, items={len(self.items)})"


@dataclass
class FusedResult:
    """One merged record per unique id after fusion."""

    id: str
    score: float
    provenance: str
    snippet: str = ""
    metadata: CandidateMetadata = field(default_factory=CandidateMetadata)

    # Per-source diagnostics: normalized score / rank contribution
    source_scores: dict[str, float] = field(default_factory=dict)
    source_ranks: dict[str, int] = field(default_factory=dict)

    # Fused score before decay and boosts
    original_score: float | None = None
    age_days: float | None = None

    def __post_init__(self) -> None:
        if self.original_score is None:
            self.original_score = self.score

    @property
    def is_pinned(self) -> bool:
        return self.metadata.pinned or PINNED_MARKER in self.snippet

    def with_score(self, score: float, **changes: Any) -> FusedResult:
        """Copy with a new score (and any other field changes)."""
        return replace(self, score=score, **changes)


def sort_by_score(results: list[FusedResult]) -> list[FusedResult]:
    """Score descending, id ascending on ties."""
    return sorted(results, key=lambda r: (-r.score, r.id))
