"""
Integration tests for the scenario simulation and run artifacts.

Tests verify:
- The shipped config wires a working vault (one and two venues)
- Runs are deterministic for a given seed
- Snapshot rows carry the reporting columns
- ArtifactWriter output is sorted and de-duplicated by step
"""

import json
import sys
from pathlib import Path

import pandas as pd
import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.config.vault_config import load_config
from src.reporting import ArtifactWriter, create_artifact_writer
from src.simulation import build_simulated_vault, run_scenario, summarize_scenario

CONFIG_PATH = Path(__file__).parent.parent / "configs" / "vault.yaml"


@pytest.fixture
def config():
    return load_config(CONFIG_PATH)


class TestBuildSimulatedVault:
    """Test vault wiring from config."""

    def test_single_venue(self, config):
        env = build_simulated_vault(config)

        assert len(env.venues) == 1
        assert env.keeper == "keeper"
        assert env.vault.state.fee_bps == 1000
        assert not env.vault.strategy.is_multi_venue

    def test_multi_venue_flag(self, config):
        env = build_simulated_vault(config, multi_venue=True)
        assert len(env.venues) == 2
        assert env.vault.strategy.is_multi_venue

    def test_empty_config_uses_defaults(self):
        env = build_simulated_vault({})
        assert env.vault.base_asset == "wstETH"
        assert len(env.venues) == 1

    def test_profile_override(self, config):
        env = build_simulated_vault(config, profile="conservative")
        assert env.vault.strategy_params.target_leverage_bps == 20_000


class TestRunScenario:
    """Test scenario runs."""

    def test_columns_and_length(self, config):
        env = build_simulated_vault(config)
        df = run_scenario(env, steps=15, seed=3)

        assert len(df) == 16
        assert list(df["step"]) == list(range(16))
        for column in ("action", "share_price", "total_assets", "leverage", "min_safety_ratio", "fee_shares"):
            assert column in df.columns
        assert df["action"].iloc[0] == "deposit"
        assert df["leverage"].iloc[0] > 1.0

    def test_deterministic(self, config):
        first = run_scenario(build_simulated_vault(config), steps=20, seed=11)
        second = run_scenario(build_simulated_vault(config), steps=20, seed=11)
        pd.testing.assert_frame_equal(first, second)

    def test_multi_venue_run(self, config):
        env = build_simulated_vault(config, multi_venue=True)
        df = run_scenario(env, steps=20, seed=5)

        assert df["leverage"].iloc[0] > 1.0
        assert (df["total_assets"] >= 0).all()
        assert df["min_safety_ratio"].dropna().min() >= 1.0

    def test_summary(self, config):
        env = build_simulated_vault(config)
        df = run_scenario(env, steps=10, seed=2)
        summary = summarize_scenario(df)

        assert summary["steps"] == 10
        assert summary["start_share_price"] > 0
        assert summary["deposits"] >= 1
        assert summarize_scenario(df.iloc[0:0]) == {}


class TestArtifactWriter:
    """Test CSV/JSON artifacts."""

    def test_append_replaces_same_step(self, tmp_path):
        writer = ArtifactWriter(tmp_path)
        writer.write_csv("history.csv", pd.DataFrame({"step": [1, 0], "b": [1.0, 2.0]}))
        path = writer.write_csv("history.csv", pd.DataFrame({"step": [1], "b": [5.0]}))

        df = pd.read_csv(path)
        assert list(df["step"]) == [0, 1]
        assert list(df["b"]) == [2.0, 5.0]

    def test_invalid_mode(self, tmp_path):
        writer = ArtifactWriter(tmp_path)
        with pytest.raises(ValueError):
            writer.write_csv("x.csv", pd.DataFrame({"step": [0]}), mode="merge")

    def test_json_once(self, tmp_path):
        writer = create_artifact_writer(tmp_path)
        assert writer.write_json("params.json", {"a": 1}) is not None
        assert writer.write_json("params.json", {"a": 2}) is None

        with open(tmp_path / "params.json", encoding="utf-8") as f:
            assert json.load(f) == {"a": 1}

    def test_no_run_dir(self):
        assert create_artifact_writer(None) is None

    def test_scenario_round_trip(self, tmp_path, config):
        df = run_scenario(build_simulated_vault(config), steps=5, seed=1)
        writer = create_artifact_writer(tmp_path / "run")
        writer.write_csv("history.csv", df, mode="overwrite")
        writer.write_json("summary.json", summarize_scenario(df), mode="overwrite")

        written = pd.read_csv(tmp_path / "run" / "history.csv")
        assert len(written) == 6
        assert (tmp_path / "run" / "summary.json").exists()
