"""
Tests for the application wiring and CSV helpers.
"""

import pytest
import numpy as np
import pandas as pd
import yaml

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from config import reset_config
from main import FrontierApplication, load_returns, load_risk_free


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.delenv("MVF_GRID_SIZE", raising=False)
    reset_config()
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({
        "frontier": {"grid_size": 15},
        "rolling": {"window_length_years": 3, "window_step_years": 1},
        "log_level": "WARNING"
    }))
    yield FrontierApplication(config_file=str(path))
    reset_config()


@pytest.fixture
def returns():
    rng = np.random.default_rng(7)
    index = pd.date_range("2010-01-01", periods=48, freq="MS")
    data = np.array([0.008, 0.005]) + np.array([0.04, 0.02]) * rng.standard_normal((48, 2))
    return pd.DataFrame(data, index=index, columns=["STOCKS", "BONDS"])


class TestFrontierApplication:
    """Test cases for FrontierApplication."""

    def test_components_follow_config(self, app):
        assert app.config.frontier.grid_size == 15
        assert app.sweep.config.grid_size == 15
        assert app.analyzer.sweep.config.grid_size == 15
        assert app.analyzer.selector is app.selector

    def test_rolling_sweep_runs_sequentially(self, monkeypatch):
        monkeypatch.setenv("MVF_N_JOBS", "3")
        reset_config()

        app = FrontierApplication()

        assert app.analyzer.n_jobs == 3
        assert app.sweep.n_jobs == 3
        assert app.analyzer.sweep.n_jobs == 1
        assert app.analyzer.sweep.frontier_solver is app.frontier_solver
        reset_config()

    def test_compute_frontier(self, app, returns):
        result = app.compute_frontier(returns, risk_free=0.01, no_short=True)

        assert result['frontier'].no_short
        assert np.sum(result['tangency'].weights) == pytest.approx(1.0)
        assert result['moments'].n_observations == 48

    def test_rolling_outputs_written(self, app, returns, tmp_path):
        run = app.run_rolling(returns, risk_free=0.01)
        out = tmp_path / "results"

        app.write_rolling_results(run, str(out))

        assert run.settings['n_windows'] == 2
        for label in ("short_allowed", "no_short"):
            weights = pd.read_csv(out / f"tangency_weights_{label}.csv", index_col=0)
            assert list(weights.columns) == ["STOCKS", "BONDS"]
            assert len(weights) == 2
            assert (out / f"tangency_sharpe_{label}.csv").exists()
            assert (out / f"weight_drift_{label}.csv").exists()

    def test_frontier_written(self, app, returns, tmp_path):
        result = app.compute_frontier(returns)

        app.write_frontier(result['frontier'], result['tangency'], str(tmp_path))

        frame = pd.read_csv(tmp_path / "frontier_short_allowed.csv")
        assert len(frame) == len(result['frontier'])
        assert {'weight_STOCKS', 'weight_BONDS'} <= set(frame.columns)


class TestLoaders:

    def test_load_returns(self, returns, tmp_path):
        path = tmp_path / "returns.csv"
        returns.to_csv(path)

        loaded = load_returns(str(path))

        assert isinstance(loaded.index, pd.DatetimeIndex)
        assert np.allclose(loaded.values, returns.values)

    def test_load_risk_free_scalar_and_file(self, returns, tmp_path):
        assert load_risk_free(None, returns.index) is None
        assert load_risk_free("0.02", returns.index) == 0.02

        path = tmp_path / "rf.csv"
        pd.Series(0.03, index=returns.index[:40], name="rf").to_csv(path)

        series = load_risk_free(str(path), returns.index)

        assert len(series) == 48
        assert series.iloc[0] == pytest.approx(0.03)
        assert np.isnan(series.iloc[-1])
