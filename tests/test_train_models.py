"""
Tests for the offline training script
"""
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

import train_models


@pytest.fixture
def catalog_file(tmp_path, catalog_users, catalog_products):
    """JSON catalog with the shared test users and products."""
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({
        "users": [u.model_dump(by_alias=True, mode="json") for u in catalog_users],
        "products": [p.model_dump(by_alias=True, mode="json") for p in catalog_products],
    }))
    return path


class TestParseArgs:
    """Tests for command line parsing"""

    def test_defaults(self):
        args = train_models.parse_args([])

        assert args.strategy == "all"
        assert args.incremental is False
        assert args.force is False
        assert args.catalog is None

    def test_gnn_alias_accepted(self):
        args = train_models.parse_args(["--strategy", "gnn", "--force"])

        assert args.strategy == "gnn"
        assert args.force is True

    def test_unknown_strategy_rejected(self):
        with pytest.raises(SystemExit):
            train_models.parse_args(["--strategy", "bogus"])


class TestRun:
    """Tests for a training run over a JSON catalog"""

    async def test_trains_and_persists(self, monkeypatch, test_settings, catalog_file, capsys):
        """Test a single strategy is trained and written to the model directory"""
        monkeypatch.setattr(train_models, "get_settings", lambda: test_settings)
        args = train_models.parse_args(["--strategy", "content", "--catalog", str(catalog_file)])

        assert await train_models.run(args) == 0

        assert (test_settings.models_dir / "content_model.json").exists()
        assert not (test_settings.models_dir / "graph_model.json").exists()
        output = capsys.readouterr().out
        assert "content" in output
        assert "trained" in output
        assert "products=12" in output

    async def test_incremental_after_full(self, monkeypatch, test_settings, catalog_file, capsys):
        monkeypatch.setattr(train_models, "get_settings", lambda: test_settings)

        await train_models.run(train_models.parse_args(["--strategy", "hybrid", "--catalog", str(catalog_file)]))
        capsys.readouterr()
        await train_models.run(
            train_models.parse_args(["--strategy", "hybrid", "--incremental", "--catalog", str(catalog_file)])
        )

        assert "incremental" in capsys.readouterr().out
