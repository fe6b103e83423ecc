"""
YAML persistence for learned state.

Storage model:
    {data_dir}/{feature}.yaml          PatternStatsStore, e.g. expansion.yaml
    {data_dir}/search_monitor.yaml    MonitorStore: tuned weights + recent events

Each feature file maps a query pattern to its flat statistics record:

    gateway setup:
      feature: expansion
      count_with: 4
      count_without: 2
      mean_with: 0.81
      mean_without: 0.55
      updated_at: '2026-10-19T08:30:00+00:00'

Writes go to a temporary file in the same directory which then replaces the
target, so a crash mid-write never leaves a truncated file behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import yaml

from memory_rank.core.exceptions import LearningStoreError
from memory_rank.domain.entities import Feature, QueryPatternStats, SearchEvent, WeightState

logger = logging.getLogger(__name__)


def _write_atomic(path: Path, text: str) -> None:
    """Write through a temporary sibling file that then replaces ``path``."""
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}-", suffix=".yaml.tmp", dir=path.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        tmp_path.replace(path)
    except OSError as e:
        tmp_path.unlink(missing_ok=True)
        raise LearningStoreError(f"Cannot write learning store {path}: {e}", path=str(path)) from e


def _read_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise LearningStoreError(f"Cannot read learning store {path}: {e}", path=str(path)) from e


class PatternStatsStore:
    """One YAML file per feature holding pattern → statistics records.

    Args:
        data_dir: Directory for the statistics files (created if missing)
    """

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir).expanduser()
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def path_for(self, feature: Feature) -> Path:
        return self._data_dir / f"{feature.value}.yaml"

    # ── Read ─────────────────────────────────────────────────────────────

    def load(self, feature: Feature) -> dict[str, QueryPatternStats]:
        """Load all pattern statistics for one feature.

        Returns an empty mapping when the file does not exist yet.

        Raises:
            LearningStoreError: file unreadable, not YAML, or records malformed
        """
        path = self.path_for(feature)
        if not path.exists():
            return {}

        data = _read_yaml(path)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise LearningStoreError(f"Learning store {path} is not a mapping", path=str(path))

        stats: dict[str, QueryPatternStats] = {}
        for pattern, record in data.items():
            if not isinstance(record, dict):
                raise LearningStoreError(f"Malformed record for pattern {pattern!r} in {path}", path=str(path))
            try:
                stats[str(pattern)] = QueryPatternStats.from_dict(str(pattern), {"feature": feature.value, **record})
            except (KeyError, TypeError, ValueError) as e:
                raise LearningStoreError(
                    f"Malformed record for pattern {pattern!r} in {path}: {e}", path=str(path)
                ) from e
        return stats

    def load_all(self) -> dict[Feature, dict[str, QueryPatternStats]]:
        """Load every feature's statistics."""
        return {feature: self.load(feature) for feature in Feature}

    # ── Write ────────────────────────────────────────────────────────────

    def save(self, feature: Feature, stats: dict[str, QueryPatternStats]) -> Path:
        """Replace one feature's file with ``stats``.

        Raises:
            LearningStoreError: the file could not be written
        """
        path = self.path_for(feature)
        data = {pattern: record.to_dict() for pattern, record in sorted(stats.items())}
        _write_atomic(path, yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False))
        logger.debug("Saved %d %s pattern records to %s", len(stats), feature.value, path)
        return path


class MonitorStore:
    """Single YAML file holding the search monitor's weights and recent events.

    Args:
        data_dir: Directory for the monitor file (created if missing)
    """

    FILENAME = "search_monitor.yaml"

    def __init__(self, data_dir: str | Path) -> None:
        self._data_dir = Path(data_dir).expanduser()
        self._data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._data_dir / self.FILENAME

    def load(self) -> tuple[WeightState | None, list[SearchEvent]]:
        """Load the tuned weights (None if never saved) and recorded events.

        Raises:
            LearningStoreError: file unreadable, not YAML, or records malformed
        """
        path = self.path
        if not path.exists():
            return None, []

        data = _read_yaml(path)
        if data is None:
            return None, []
        if not isinstance(data, dict):
            raise LearningStoreError(f"Monitor store {path} is not a mapping", path=str(path))

        try:
            raw_weights = data.get("current_weights")
            weights = WeightState.from_dict(raw_weights) if raw_weights else None
            events = [SearchEvent.from_dict(record) for record in data.get("events") or []]
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise LearningStoreError(f"Malformed monitor record in {path}: {e}", path=str(path)) from e
        return weights, events

    def save(self, weights: WeightState, events: list[SearchEvent]) -> Path:
        """Replace the monitor file.

        Raises:
            LearningStoreError: the file could not be written
        """
        path = self.path
        data = {
            "current_weights": weights.to_dict(),
            "events": [event.to_dict() for event in events],
        }
        _write_atomic(path, yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False))
        logger.debug("Saved %d search events to %s", len(events), path)
        return path
