"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from memory_rank.domain.entities import CandidateItem, CandidateMetadata, FusedResult, RankedList

# ============================================================
# Environment Fixtures
# ============================================================


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fixed_now():
    """Reference time for age calculations."""
    return datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _no_config_env(monkeypatch):
    """Keep a developer's MEMORY_RANK_CONFIG out of the tests."""
    monkeypatch.delenv("MEMORY_RANK_CONFIG", raising=False)


# ============================================================
# Candidate Builders
# ============================================================


def make_item(
    item_id: str,
    score: float,
    snippet: str = "",
    **metadata,
) -> CandidateItem:
    """Create a CandidateItem with optional metadata fields."""
    return CandidateItem(item_id, snippet, score, CandidateMetadata(**metadata))


def make_result(
    item_id: str,
    score: float,
    snippet: str = "",
    provenance: str = "semantic",
    **metadata,
) -> FusedResult:
    """Create a FusedResult with optional metadata fields."""
    return FusedResult(
        id=item_id,
        score=score,
        provenance=provenance,
        snippet=snippet,
        metadata=CandidateMetadata(**metadata),
    )


@pytest.fixture
def semantic_entries():
    """Upstream semantic hits as plain dicts."""
    return [
        {
            "id": "m1",
            "score": 0.92,
            "snippet": "Configured the gateway on port 18789 behind nginx",
            "metadata": {"ageDays": 0.5, "confidence": 0.9, "type": "fact"},
        },
        {
            "id": "m2",
            "score": 0.81,
            "snippet": "Gateway setup notes: restart the service after editing config",
            "metadata": {"age_days": 12, "confidence": 0.85, "type": "decision"},
        },
        {
            "id": "m3",
            "score": 0.77,
            "snippet": "\N{PUSHPIN} Database backups run nightly at 02:00",
            "metadata": {"age_days": 40, "confidence": 0.95, "type": "fact"},
        },
        {
            "id": "m4",
            "score": 0.65,
            "snippet": "Unrelated note about lunch plans",
            "metadata": {"age_days": 2, "confidence": 0.8, "type": "fact"},
        },
    ]


@pytest.fixture
def semantic_list(semantic_entries):
    return RankedList.from_dicts("semantic", semantic_entries)
