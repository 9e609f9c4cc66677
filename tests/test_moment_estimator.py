"""
Tests for annualized moment estimation.
"""

import pytest
import numpy as np
import pandas as pd

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from moment_estimator import MomentEstimator, InsufficientDataError
from config import MomentConfig


def moment_config(**overrides) -> MomentConfig:
    settings = dict(
        periods_per_year=12,
        covariance_method="sample",
        missing_policy="complete",
        use_excess_returns=False,
        regularization=0.0
    )
    settings.update(overrides)
    return MomentConfig(**settings)


class TestMomentEstimator:
    """Test cases for MomentEstimator."""

    def setup_method(self):
        np.random.seed(42)
        dates = pd.date_range("2000-01-01", periods=60, freq="MS")
        self.returns = pd.DataFrame(
            np.random.multivariate_normal(
                [0.008, 0.005, 0.003],
                [[0.0020, 0.0004, 0.0001],
                 [0.0004, 0.0010, 0.0002],
                 [0.0001, 0.0002, 0.0005]],
                size=60
            ),
            index=dates,
            columns=["EQ", "BOND", "CASH"]
        )
        self.estimator = MomentEstimator(moment_config())

    def test_annualization(self):
        moments = self.estimator.estimate(self.returns)

        assert np.allclose(moments.mean, self.returns.mean().values * 12)
        assert np.allclose(moments.covariance, self.returns.cov().values * 12)
        assert moments.assets == ("EQ", "BOND", "CASH")
        assert moments.n_observations == 60
        assert moments.n_assets == 3
        assert moments.period == (self.returns.index[0], self.returns.index[-1])

    def test_weekly_periods_per_year(self):
        estimator = MomentEstimator(moment_config(periods_per_year=52))

        moments = estimator.estimate(self.returns)

        assert np.allclose(moments.mean, self.returns.mean().values * 52)

    def test_half_open_datetime_window(self):
        moments = self.estimator.estimate(self.returns, "2001-01-01", "2002-01-01")

        expected = self.returns.loc["2001-01-01":"2001-12-01"]
        assert moments.n_observations == 12
        assert np.allclose(moments.mean, expected.mean().values * 12)
        assert moments.period == (pd.Timestamp("2001-01-01"), pd.Timestamp("2001-12-01"))

    def test_period_is_last_observation_used(self):
        """Period ends on the last row used, whether or not an end bound is given."""
        bounded = self.estimator.estimate(self.returns, "2003-01-01", "2004-01-01")
        open_ended = self.estimator.estimate(self.returns.loc[:"2003-12-01"], "2003-01-01")

        assert bounded.period == open_ended.period
        assert bounded.period[1] == pd.Timestamp("2003-12-01")

    def test_positional_window(self):
        returns = self.returns.reset_index(drop=True)

        moments = self.estimator.estimate(returns, 12, 36)

        assert moments.n_observations == 24
        assert np.allclose(moments.mean, returns.iloc[12:36].mean().values * 12)
        assert moments.period == (12, 35)

    def test_minimum_observations(self):
        # n_assets + 1 rows is the minimum
        moments = self.estimator.estimate(self.returns.iloc[:4])
        assert moments.n_observations == 4

        with pytest.raises(InsufficientDataError):
            self.estimator.estimate(self.returns.iloc[:3])

    def test_empty_window(self):
        with pytest.raises(InsufficientDataError):
            self.estimator.estimate(self.returns, "1990-01-01", "1991-01-01")

    def test_complete_policy_drops_rows(self):
        returns = self.returns.copy()
        returns.iloc[:10, 0] = np.nan

        moments = self.estimator.estimate(returns)

        assert moments.n_observations == 50
        assert np.allclose(moments.mean, returns.iloc[10:].mean().values * 12)

    def test_pairwise_policy_uses_available_data(self):
        returns = self.returns.copy()
        returns.iloc[:10, 0] = np.nan
        estimator = MomentEstimator(moment_config(missing_policy="pairwise"))

        moments = estimator.estimate(returns)

        assert moments.n_observations == 50
        # assets without gaps keep every observation
        assert moments.mean[1] == pytest.approx(returns["BOND"].mean() * 12)
        assert moments.covariance[1, 2] == pytest.approx(returns["BOND"].cov(returns["CASH"]) * 12)

    def test_pairwise_policy_insufficient_overlap(self):
        returns = self.returns.copy()
        returns.iloc[2:, 0] = np.nan
        estimator = MomentEstimator(moment_config(missing_policy="pairwise"))

        with pytest.raises(InsufficientDataError):
            estimator.estimate(returns)

    def test_excess_returns(self):
        estimator = MomentEstimator(moment_config(use_excess_returns=True))

        raw = self.estimator.estimate(self.returns)
        excess = estimator.estimate(self.returns, risk_free=0.12)

        assert excess.is_excess
        assert excess.risk_free_rate == 0.0
        assert np.allclose(excess.mean, raw.mean - 0.12)
        assert np.allclose(excess.covariance, raw.covariance)

    def test_risk_free_series_recorded(self):
        risk_free = pd.Series(0.03, index=self.returns.index)

        moments = self.estimator.estimate(self.returns, risk_free=risk_free)

        assert not moments.is_excess
        assert moments.risk_free_rate == pytest.approx(0.03)

    def test_risk_free_series_gaps_filled(self):
        risk_free = pd.Series(0.03, index=self.returns.index)
        risk_free.iloc[5:8] = np.nan

        moments = self.estimator.estimate(self.returns, risk_free=risk_free)

        assert moments.risk_free_rate == pytest.approx(0.03)

    def test_ledoit_wolf(self):
        estimator = MomentEstimator(moment_config(covariance_method="ledoit_wolf"))

        moments = estimator.estimate(self.returns)
        validation = estimator.validate_covariance(moments.covariance)

        assert moments.covariance.shape == (3, 3)
        assert validation['symmetric']
        assert validation['positive_definite']

    def test_regularization(self):
        estimator = MomentEstimator(moment_config(regularization=0.01))

        raw = self.estimator.estimate(self.returns)
        regularized = estimator.estimate(self.returns)

        assert np.allclose(regularized.covariance - raw.covariance, 0.01 * np.eye(3))

    def test_estimates_are_read_only(self):
        moments = self.estimator.estimate(self.returns)

        with pytest.raises(ValueError):
            moments.mean[0] = 1.0
        with pytest.raises(ValueError):
            moments.covariance[0, 0] = 1.0

    def test_validate_covariance(self):
        result = self.estimator.validate_covariance(np.diag([4.0, 1.0]))

        assert result['symmetric']
        assert result['positive_definite']
        assert result['condition_number'] == pytest.approx(4.0)

        singular = self.estimator.validate_covariance(np.ones((2, 2)))
        assert singular['positive_semidefinite']
        assert not singular['positive_definite']
        assert singular['min_eigenvalue'] == pytest.approx(0.0, abs=1e-12)
