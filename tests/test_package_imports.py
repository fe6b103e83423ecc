"""
Package Import Tests - Verify all exports are working correctly.

This test module ensures:
1. All __all__ exports are importable
2. Subpackages import in any order (no circular import issues)
3. Version is correct

Run with: uv run pytest tests/test_package_imports.py -v
"""

import importlib

import pytest


class TestPackageImports:
    """Test all package imports work correctly."""

    def test_version(self):
        """Version should be a valid semver string."""
        import memory_rank

        parts = memory_rank.__version__.split(".")
        assert len(parts) >= 2
        assert all(p.isdigit() for p in parts[:2])

    def test_all_exports_importable(self):
        """All items in __all__ should be importable."""
        import memory_rank

        for name in memory_rank.__all__:
            obj = getattr(memory_rank, name, None)
            assert obj is not None, f"Export '{name}' is None or missing"

    @pytest.mark.parametrize(
        "module",
        [
            "memory_rank.core",
            "memory_rank.domain",
            "memory_rank.application.search",
            "memory_rank.application.learning",
            "memory_rank.application.pipeline",
            "memory_rank.infrastructure.rerank",
        ],
    )
    def test_subpackage_exports(self, module):
        """Every subpackage __all__ entry resolves."""
        mod = importlib.import_module(module)
        for name in mod.__all__:
            assert getattr(mod, name, None) is not None, f"{module}.{name} missing"

    def test_quickstart(self):
        """The package docstring example runs."""
        from memory_rank import RankingContext, RankingPipeline, load_config

        pipeline = RankingPipeline(RankingContext.from_config(load_config()))
        result = pipeline.rank("gateway setup", {"semantic": [{"id": "a", "score": 1.0, "snippet": "gateway"}]})
        assert isinstance(result.ids, list)
