"""
Tests for the batch generator CLI
"""

import json
import pytest
from pathlib import Path
import sys

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import run_all
from common.config import make_rng


class TestPickCategories:
    """Test fragment category selection."""

    def test_torso_first(self):
        """The first draw is always a torso."""
        categories = run_all.pick_categories(6, make_rng(0))
        assert categories[0] == "torso"
        assert len(categories) == 6
        assert "torso" not in categories[1:]

    def test_zero(self):
        """No fragments requested, nothing drawn."""
        assert run_all.pick_categories(0, make_rng(0)) == []


class TestMain:
    """Test end-to-end generation with primitive fragments."""

    def test_generates_creatures(self, tmp_path):
        """Each creature gets a GLB, a sidecar and a summary entry."""
        out = tmp_path / "out"
        run_all.main([
            "--catalog", str(tmp_path / "no_catalog"),
            "--count", "2",
            "--fragments", "6",
            "--seed", "5",
            "--output", str(out),
        ])
        with open(out / "run_summary.json") as f:
            summary = json.load(f)
        assert len(summary["creatures"]) == 2
        assert summary["errors"] == []
        assert summary["catalog"] is None
        for i in range(2):
            assert (out / "creatures" / f"creature_{i:03d}.glb").exists()
            assert (out / "creatures" / f"creature_{i:03d}.json").exists()
        roles = summary["creatures"][0]["metadata"]["roles"]
        assert roles["torso"] == 1
        assert roles["foot"] == 2

    def test_skinned_run(self, tmp_path):
        """Skinned creatures export point clouds."""
        out = tmp_path / "skinned"
        run_all.main(["--catalog", str(tmp_path / "none"), "--count", "1", "--fragments", "2",
                      "--seed", "1", "--skin", "--output", str(out)])
        with open(out / "creatures" / "creature_000.json") as f:
            metadata = json.load(f)
        assert metadata["point_count"] > 0
        assert metadata["n_triangles"] == 0

    def test_rejects_non_positive_count(self, tmp_path):
        """Invalid counts exit with a usage error."""
        with pytest.raises(SystemExit) as exc:
            run_all.main(["--count", "0", "--output", str(tmp_path)])
        assert exc.value.code == 2
