"""
Rolling window analysis for the mean-variance frontier engine.

This module partitions the return history into fixed-length estimation
windows, builds the short-allowed and no-short frontiers for each window and
collects the tangency portfolios into a chronologically ordered time series.
"""

import pandas as pd
from concurrent.futures import ThreadPoolExecutor
from typing import Any, List, Optional, Tuple, Union

from interfaces import MomentEstimate, RollingResult, RollingRun, TangencyPortfolio
from config import get_config, SystemConfig
from logging_config import get_logger, log_execution_time
from moment_estimator import MomentEstimator, InsufficientDataError
from qp_solver import create_solver
from frontier_solver import FrontierSolver
from frontier_sweep import FrontierSweep, EmptyFrontierError, resolve_n_jobs
from tangency_selector import TangencySelector, NoFeasibleTangencyError


Window = Tuple[int, Any, Any]


class RollingWindowAnalyzer:
    """Runs the frontier pipeline over rolling estimation windows."""

    VARIANTS = (False, True)

    def __init__(self, config: Optional[SystemConfig] = None,
                 estimator: Optional[MomentEstimator] = None,
                 sweep: Optional[FrontierSweep] = None,
                 selector: Optional[TangencySelector] = None):
        """Initialize rolling window analyzer.

        Components not supplied are built from the configuration.

        Args:
            config: System configuration; defaults to the global configuration
            estimator: Moment estimator
            sweep: Frontier sweep orchestrator
            selector: Tangency selector

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self.config = config or get_config()
        self.config.validate()
        self.logger = get_logger(__name__)

        self.n_jobs = resolve_n_jobs(self.config.n_jobs)

        if sweep is None or selector is None:
            solver = create_solver(self.config.frontier.solver,
                                   psd_tolerance=self.config.frontier.psd_tolerance)
            frontier_solver = FrontierSolver(solver, return_tolerance=self.config.frontier.return_tolerance)
        else:
            frontier_solver = sweep.frontier_solver

        self.estimator = estimator or MomentEstimator(self.config.moments)
        # Parallelism is spent on windows; grid points within a window run sequentially
        self.sweep = sweep or FrontierSweep(frontier_solver, self.config.frontier, n_jobs=1)
        self.selector = selector or TangencySelector(frontier_solver, self.config.tangency)

    def generate_windows(self, index: pd.Index) -> List[Window]:
        """Split an index into [start, end) windows, earliest first.

        Datetime indexes are cut on calendar years; other indexes on
        ``years * periods_per_year`` rows, with positions as bounds.
        """
        length_years = self.config.rolling.window_length_years
        step_years = self.config.rolling.window_step_years

        if len(index) == 0:
            return []

        windows = []
        if isinstance(index, pd.DatetimeIndex):
            first, last = index[0], index[-1]
            spacing = pd.Series(index).diff().median() if len(index) > 1 else pd.Timedelta(0)
            if pd.isna(spacing):
                spacing = pd.Timedelta(0)
            i = 0
            while True:
                start = first + pd.DateOffset(years=i * step_years)
                end = start + pd.DateOffset(years=length_years)
                if end > last + spacing:
                    break
                windows.append((i, start, end))
                i += 1
        else:
            ppy = self.config.moments.periods_per_year
            length = length_years * ppy
            step = step_years * ppy
            i = 0
            while i * step + length <= len(index):
                windows.append((i, i * step, i * step + length))
                i += 1

        if not windows:
            self.logger.warning(
                f"History of {len(index)} periods is shorter than one {length_years}-year window"
            )
        return windows

    @log_execution_time
    def run(self, returns: pd.DataFrame,
            risk_free: Optional[Union[pd.Series, float]] = None) -> RollingRun:
        """Run the rolling analysis.

        Args:
            returns: Periodic asset returns, rows in chronological order
            risk_free: Annualized risk-free rate series aligned with returns, or a scalar

        Returns:
            RollingRun ordered by window, short-allowed variant first within a window
        """
        returns = returns.sort_index()
        windows = self.generate_windows(returns.index)
        self.logger.info(f"Running rolling frontier analysis over {len(windows)} windows "
                         f"with {self.n_jobs} worker(s)")

        def process(window: Window) -> List[RollingResult]:
            return self.process_window(window, returns, risk_free)

        if self.n_jobs > 1 and len(windows) > 1:
            with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
                # map yields in submission order regardless of completion order
                per_window = list(executor.map(process, windows))
        else:
            per_window = [process(window) for window in windows]

        results = [result for window_results in per_window for result in window_results]

        run = RollingRun(
            results=results,
            assets=tuple(str(col) for col in returns.columns),
            settings={
                'window_length_years': self.config.rolling.window_length_years,
                'window_step_years': self.config.rolling.window_step_years,
                'periods_per_year': self.config.moments.periods_per_year,
                'grid_size': self.config.frontier.grid_size,
                'tangency_strategy': self.config.tangency.strategy,
                'n_windows': len(windows)
            }
        )

        summary = run.summary()
        self.logger.info(
            f"Rolling analysis finished: short-allowed {summary['short_allowed']['succeeded']}/{len(windows)}, "
            f"no-short {summary['no_short']['succeeded']}/{len(windows)} windows succeeded"
        )
        return run

    def process_window(self, window: Window, returns: pd.DataFrame,
                       risk_free: Optional[Union[pd.Series, float]] = None) -> List[RollingResult]:
        """Estimate, sweep and select for both variants of one window.

        Window-level failures produce sentinel results instead of raising.
        """
        index, start, end = window

        try:
            moments = self.estimator.estimate(returns, start, end, risk_free)
        except InsufficientDataError as e:
            self.logger.warning(f"Skipping window {index} [{start}, {end}): {e}")
            return [
                RollingResult(window_index=index, start=start, end=end, no_short=no_short, error=str(e))
                for no_short in self.VARIANTS
            ]

        return [self._process_variant(index, start, end, moments, no_short)
                for no_short in self.VARIANTS]

    def _process_variant(self, index: int, start: Any, end: Any,
                         moments: MomentEstimate, no_short: bool) -> RollingResult:
        result = RollingResult(window_index=index, start=start, end=end,
                               no_short=no_short, moments=moments)
        rf = moments.risk_free_rate

        try:
            result.frontier = self.sweep.build(moments, no_short=no_short)
            result.tangency = self.selector.select(result.frontier, moments, rf)
        except (EmptyFrontierError, NoFeasibleTangencyError) as e:
            label = "no-short" if no_short else "short-allowed"
            self.logger.warning(f"No tangency for window {index} ({label}): {e}")
            result.tangency = None
            result.error = str(e)
            return result

        if self.config.tangency.check_agreement:
            result.direct_tangency = self._cross_check(result, moments, rf)

        return result

    def _cross_check(self, result: RollingResult, moments: MomentEstimate,
                     rf: float) -> Optional[TangencyPortfolio]:
        """Compute the other tangency strategy and compare; returns the direct solution."""
        try:
            if result.tangency.strategy == "direct":
                direct = result.tangency
                other = self.selector.scan(result.frontier, rf)
            else:
                direct = self.selector.direct(moments, rf, no_short=result.no_short)
                other = direct
        except NoFeasibleTangencyError as e:
            self.logger.debug(f"Cross-check skipped for window {result.window_index}: {e}")
            return None

        self.selector.check_agreement(result.tangency, other)
        return direct

    @staticmethod
    def weight_drift(weights: pd.DataFrame) -> pd.Series:
        """L1 turnover of tangency weights between consecutive windows."""
        return weights.diff().abs().sum(axis=1, min_count=1).rename('weight_drift')
