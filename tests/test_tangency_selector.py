"""
Tests for tangency portfolio selection.
"""

import pytest
import numpy as np

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from tangency_selector import TangencySelector, NoFeasibleTangencyError
from frontier_sweep import FrontierSweep
from frontier_solver import FrontierSolver
from qp_solver import CvxpyQPSolver
from config import FrontierConfig, TangencyConfig
from interfaces import Frontier, FrontierPoint, MomentEstimate, SolveStatus


def tangency_config(**overrides) -> TangencyConfig:
    settings = dict(strategy="auto", agreement_tolerance=1e-3, check_agreement=True)
    settings.update(overrides)
    return TangencyConfig(**settings)


def frontier_config(**overrides) -> FrontierConfig:
    settings = dict(
        no_short=False,
        grid_size=200,
        short_return_multiple=2.0,
        return_tolerance=1e-8,
        risk_tolerance=1e-6,
        psd_tolerance=1e-10,
        include_inefficient=False,
        inefficient_fraction=0.25,
        solver="cvxpy",
        solve_timeout=None
    )
    settings.update(overrides)
    return FrontierConfig(**settings)


def make_moments(mean, covariance) -> MomentEstimate:
    mean = np.asarray(mean, dtype=float)
    return MomentEstimate(
        mean=mean,
        covariance=np.asarray(covariance, dtype=float),
        period=(0, 60),
        assets=tuple(f"A{i}" for i in range(len(mean))),
        n_observations=60
    )


def manual_frontier(pairs, no_short=False) -> Frontier:
    """Frontier from (return, risk) pairs with placeholder weights."""
    points = tuple(
        FrontierPoint(target_return=r, weights=np.array([0.5, 0.5]), risk=s,
                      status=SolveStatus.OPTIMAL, expected_return=r)
        for r, s in pairs
    )
    return Frontier(
        points=points,
        minimum_variance=points[0] if points else None,
        no_short=no_short,
        assets=("A", "B"),
        lower_bound=pairs[0][0] if pairs else 0.0,
        upper_bound=pairs[-1][0] if pairs else 0.0
    )


class TestScan:
    """Scan strategy over precomputed frontiers."""

    def setup_method(self):
        self.selector = TangencySelector(FrontierSolver(CvxpyQPSolver()), tangency_config())

    def test_highest_sharpe_selected(self):
        frontier = manual_frontier([(0.05, 0.10), (0.08, 0.12), (0.10, 0.20)])

        tangency = self.selector.scan(frontier, risk_free_rate=0.02)

        # Sharpe ratios: 0.3, 0.5, 0.4
        assert tangency.expected_return == pytest.approx(0.08)
        assert tangency.sharpe_ratio == pytest.approx(0.5)
        assert tangency.strategy == "scan"
        assert tangency.risk_free_rate == 0.02

    def test_least_negative_sharpe_when_all_negative(self):
        frontier = manual_frontier([(0.05, 0.10), (0.06, 0.12), (0.07, 0.20)])

        tangency = self.selector.scan(frontier, risk_free_rate=0.10)

        # Sharpe ratios: -0.5, -0.333, -0.15
        assert tangency.sharpe_ratio == pytest.approx(-0.15)
        assert tangency.expected_return == pytest.approx(0.07)

    def test_empty_frontier_raises(self):
        with pytest.raises(NoFeasibleTangencyError):
            self.selector.scan(None)
        with pytest.raises(NoFeasibleTangencyError):
            self.selector.scan(manual_frontier([]))

    def test_zero_risk_points_skipped(self):
        with pytest.raises(NoFeasibleTangencyError):
            self.selector.scan(manual_frontier([(0.05, 0.0)]))

        tangency = self.selector.scan(manual_frontier([(0.05, 0.0), (0.06, 0.1)]), 0.02)
        assert tangency.expected_return == pytest.approx(0.06)


class TestDirect:
    """Direct maximum-Sharpe solutions."""

    def setup_method(self):
        self.selector = TangencySelector(FrontierSolver(CvxpyQPSolver()), tangency_config())
        self.moments = make_moments([0.10, 0.05], np.diag([0.04, 0.01]))

    def test_closed_form_two_assets(self):
        tangency = self.selector.direct(self.moments, risk_free_rate=0.02)

        # Sigma^-1 (mu - rf) = (2, 3), normalized
        assert np.allclose(tangency.weights, [0.4, 0.6])
        assert tangency.expected_return == pytest.approx(0.07)
        assert tangency.risk == pytest.approx(0.1)
        assert tangency.sharpe_ratio == pytest.approx(0.5)
        assert tangency.strategy == "direct"

    def test_no_short_matches_closed_form_when_long_only(self):
        tangency = self.selector.direct(self.moments, risk_free_rate=0.02, no_short=True)

        assert np.allclose(tangency.weights, [0.4, 0.6], atol=1e-4)
        assert tangency.sharpe_ratio == pytest.approx(0.5, abs=1e-6)

    def test_closed_form_undefined_above_minimum_variance_return(self):
        # minimum-variance return is 0.06
        with pytest.raises(NoFeasibleTangencyError):
            self.selector.direct(self.moments, risk_free_rate=0.08)

    def test_no_short_without_positive_excess_return(self):
        with pytest.raises(NoFeasibleTangencyError):
            self.selector.direct(self.moments, risk_free_rate=0.12, no_short=True)

    def test_singular_covariance_uses_least_squares(self):
        moments = make_moments([0.10, 0.05, 0.05], [[0.04, 0.0, 0.0],
                                                   [0.0, 0.01, 0.01],
                                                   [0.0, 0.01, 0.01]])

        tangency = self.selector.direct(moments, risk_free_rate=0.02)

        assert np.sum(tangency.weights) == pytest.approx(1.0)
        assert tangency.sharpe_ratio == pytest.approx(0.5, abs=1e-6)


class TestStrategyAgreement:
    """Scan and direct strategies on full frontiers."""

    def setup_method(self):
        self.frontier_solver = FrontierSolver(CvxpyQPSolver())
        self.selector = TangencySelector(self.frontier_solver, tangency_config())

    def test_short_allowed_agreement(self):
        moments = make_moments([0.10, 0.05], np.diag([0.04, 0.01]))
        frontier = FrontierSweep(self.frontier_solver, frontier_config(), n_jobs=1).build(moments)

        scanned = self.selector.scan(frontier, 0.02)
        direct = self.selector.direct(moments, 0.02)

        assert scanned.sharpe_ratio == pytest.approx(direct.sharpe_ratio, abs=1e-3)
        assert np.allclose(scanned.weights, direct.weights, atol=0.02)
        assert self.selector.check_agreement(scanned, direct)

    def test_no_short_agreement(self):
        moments = make_moments(
            [0.12, 0.08, 0.03],
            [[0.040, 0.006, 0.002],
             [0.006, 0.020, 0.001],
             [0.002, 0.001, 0.005]]
        )
        frontier = FrontierSweep(self.frontier_solver, frontier_config(no_short=True), n_jobs=1).build(moments)

        scanned = self.selector.scan(frontier, 0.02)
        direct = self.selector.direct(moments, 0.02, no_short=True)

        assert direct.weights.min() >= 0.0
        assert scanned.sharpe_ratio == pytest.approx(direct.sharpe_ratio, abs=1e-3)
        assert direct.sharpe_ratio >= scanned.sharpe_ratio - 1e-6

    def test_check_agreement_flags_disagreement(self):
        moments = make_moments([0.10, 0.05], np.diag([0.04, 0.01]))
        direct = self.selector.direct(moments, 0.02)
        poor = self.selector.scan(manual_frontier([(0.06, 0.2)]), 0.02)

        assert not self.selector.check_agreement(direct, poor)


class TestSelect:
    """Strategy dispatch."""

    def setup_method(self):
        self.selector = TangencySelector(FrontierSolver(CvxpyQPSolver()), tangency_config())
        self.moments = make_moments([0.10, 0.05], np.diag([0.04, 0.01]))

    def test_auto_uses_direct_with_shorts(self):
        frontier = manual_frontier([(0.06, 0.09), (0.07, 0.1)], no_short=False)

        tangency = self.selector.select(frontier, self.moments, 0.02)

        assert tangency.strategy == "direct"

    def test_auto_uses_scan_without_shorts(self):
        frontier = manual_frontier([(0.06, 0.09), (0.07, 0.1)], no_short=True)

        tangency = self.selector.select(frontier, self.moments, 0.02)

        assert tangency.strategy == "scan"

    def test_auto_falls_back_to_scan(self):
        frontier = manual_frontier([(0.06, 0.09), (0.07, 0.1)], no_short=False)

        tangency = self.selector.select(frontier, self.moments, 0.08)

        assert tangency.strategy == "scan"
        assert tangency.sharpe_ratio < 0

    def test_explicit_strategy(self):
        frontier = manual_frontier([(0.06, 0.09), (0.07, 0.1)], no_short=False)

        assert self.selector.select(frontier, self.moments, 0.02, strategy="scan").strategy == "scan"
        assert self.selector.select(frontier, self.moments, 0.02, strategy="direct").strategy == "direct"

    def test_unknown_strategy(self):
        frontier = manual_frontier([(0.06, 0.09)])

        with pytest.raises(ValueError):
            self.selector.select(frontier, self.moments, 0.02, strategy="bisect")
