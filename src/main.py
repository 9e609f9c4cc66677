"""
Main application entry point for the mean-variance frontier engine.

This module provides the application class that wires the components together
from configuration, plus a small command-line harness that reads a prepared
return matrix from CSV and writes frontier and tangency results back out.
"""

import sys
from pathlib import Path
from typing import Optional, Dict, Any, Union
import argparse

import pandas as pd

# Add src to path for imports
sys.path.append(str(Path(__file__).parent))

from config import get_config, ConfigurationError
from logging_config import setup_logging, LoggerMixin
from interfaces import Frontier, RollingRun, TangencyPortfolio
from moment_estimator import MomentEstimator
from qp_solver import create_solver
from frontier_solver import FrontierSolver
from frontier_sweep import FrontierSweep
from tangency_selector import TangencySelector
from rolling_window import RollingWindowAnalyzer


class FrontierApplication(LoggerMixin):
    """Application class for frontier and rolling tangency analysis."""

    def __init__(self, config_file: Optional[str] = None, log_file: Optional[str] = None):
        """Initialize the application.

        Args:
            config_file: Path to configuration file (optional)
            log_file: Path to log file (optional)
        """
        self.config = get_config(config_file)

        setup_logging(
            log_level=self.config.log_level,
            log_file=log_file,
            enable_console=True
        )

        self.logger.info("Initializing mean-variance frontier engine")
        self.logger.debug(f"Configuration loaded: {self.config}")

        solver = create_solver(self.config.frontier.solver, psd_tolerance=self.config.frontier.psd_tolerance)
        self.frontier_solver = FrontierSolver(solver, return_tolerance=self.config.frontier.return_tolerance)
        self.estimator = MomentEstimator(self.config.moments)
        # Single frontiers spread grid points over n_jobs threads
        self.sweep = FrontierSweep(self.frontier_solver, self.config.frontier, n_jobs=self.config.n_jobs)
        self.selector = TangencySelector(self.frontier_solver, self.config.tangency)
        # Rolling runs spread windows instead, so each window sweeps sequentially
        self.analyzer = RollingWindowAnalyzer(
            self.config,
            estimator=self.estimator,
            sweep=FrontierSweep(self.frontier_solver, self.config.frontier, n_jobs=1),
            selector=self.selector
        )

    def compute_frontier(self, returns: pd.DataFrame,
                         risk_free: Optional[Union[pd.Series, float]] = None,
                         no_short: Optional[bool] = None) -> Dict[str, Any]:
        """Build one frontier and its tangency portfolio over the full history."""
        moments = self.estimator.estimate(returns, risk_free=risk_free)
        frontier = self.sweep.build(moments, no_short=no_short)
        tangency = self.selector.select(frontier, moments, moments.risk_free_rate)
        return {'moments': moments, 'frontier': frontier, 'tangency': tangency}

    def run_rolling(self, returns: pd.DataFrame,
                    risk_free: Optional[Union[pd.Series, float]] = None) -> RollingRun:
        """Run the rolling window analysis."""
        return self.analyzer.run(returns, risk_free)

    def write_rolling_results(self, run: RollingRun, output_dir: str) -> None:
        """Write tangency weight and Sharpe time series for both variants to CSV."""
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)

        for no_short, label in ((False, "short_allowed"), (True, "no_short")):
            weights = run.tangency_weights(no_short)
            weights.to_csv(out / f"tangency_weights_{label}.csv")
            run.sharpe_ratios(no_short).to_csv(out / f"tangency_sharpe_{label}.csv")
            self.analyzer.weight_drift(weights).to_csv(out / f"weight_drift_{label}.csv")

        self.logger.info(f"Rolling results written to {out}")

    def write_frontier(self, frontier: Frontier, tangency: TangencyPortfolio, output_dir: str) -> None:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        label = "no_short" if frontier.no_short else "short_allowed"

        frontier.to_frame().to_csv(out / f"frontier_{label}.csv", index=False)
        pd.Series(tangency.weights, index=list(frontier.assets), name='weight').to_csv(
            out / f"tangency_{label}.csv"
        )
        self.logger.info(f"Frontier written to {out}")


def load_returns(path: str) -> pd.DataFrame:
    """Read a return matrix: first column is the date index, one column per asset."""
    returns = pd.read_csv(path, index_col=0, parse_dates=True)
    return returns.apply(pd.to_numeric, errors='coerce')


def load_risk_free(value: Optional[str], index: pd.Index) -> Optional[Union[pd.Series, float]]:
    """Parse --risk-free as a scalar annual rate or a CSV path of annual rates."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        series = pd.read_csv(value, index_col=0, parse_dates=True).iloc[:, 0]
        return pd.to_numeric(series, errors='coerce').reindex(index)


def main():
    """Main entry point for command-line interface."""
    parser = argparse.ArgumentParser(
        description="Mean-variance efficient frontiers and rolling tangency portfolios"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to configuration file (YAML or JSON)"
    )
    parser.add_argument(
        "--returns",
        type=str,
        help="CSV of periodic returns (date index, one column per asset)"
    )
    parser.add_argument(
        "--risk-free",
        type=str,
        help="Annual risk-free rate, as a number or a CSV path aligned with the returns"
    )
    parser.add_argument(
        "--output",
        type=str,
        default="results",
        help="Directory for result CSV files"
    )
    parser.add_argument(
        "--single",
        action="store_true",
        help="Build one frontier over the full history instead of rolling windows"
    )
    parser.add_argument(
        "--no-short",
        action="store_true",
        help="Exclude short sales for --single runs"
    )
    parser.add_argument(
        "--log-file",
        type=str,
        help="Optional log file path"
    )

    args = parser.parse_args()

    try:
        app = FrontierApplication(config_file=args.config, log_file=args.log_file)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(2)

    if not args.returns:
        print("Mean-Variance Frontier Engine")
        print("Use --help for available options")
        return

    returns = load_returns(args.returns)
    risk_free = load_risk_free(args.risk_free, returns.index)

    if args.single:
        no_short = True if args.no_short else None
        result = app.compute_frontier(returns, risk_free, no_short=no_short)
        app.write_frontier(result['frontier'], result['tangency'], args.output)
        tangency = result['tangency']
        print(f"Tangency Sharpe ratio: {tangency.sharpe_ratio:.4f}")
        for asset, weight in zip(result['frontier'].assets, tangency.weights):
            print(f"  {asset}: {weight:.2%}")
    else:
        run = app.run_rolling(returns, risk_free)
        app.write_rolling_results(run, args.output)
        summary = run.summary()
        print(f"Windows: {summary['n_windows']}")
        print(f"  short allowed: {summary['short_allowed']['succeeded']} succeeded, "
              f"{summary['short_allowed']['failed']} failed")
        print(f"  no short:      {summary['no_short']['succeeded']} succeeded, "
              f"{summary['no_short']['failed']} failed")


if __name__ == "__main__":
    main()
