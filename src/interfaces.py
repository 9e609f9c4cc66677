"""
Base interfaces and data structures for the mean-variance frontier engine.

This module defines the value types passed between components and the abstract
interfaces that solver backends and estimators implement, so that components
can be swapped (e.g. a mock QP solver in tests).
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import pandas as pd
import numpy as np
from dataclasses import dataclass, field


class SolveStatus(Enum):
    """Outcome tag for a single quadratic program."""
    OPTIMAL = "optimal"
    INFEASIBLE = "infeasible"
    NUMERICAL_FAILURE = "numerical_failure"


def _readonly(array: Optional[np.ndarray]) -> Optional[np.ndarray]:
    if array is None:
        return None
    frozen = np.array(array, dtype=float, copy=True)
    frozen.setflags(write=False)
    return frozen


@dataclass(frozen=True)
class MomentEstimate:
    """Annualized mean vector and covariance matrix for one estimation window.

    ``period`` holds the index labels of the first and last observations used,
    both inclusive. The half-open window bounds live on RollingResult.
    """
    mean: np.ndarray
    covariance: np.ndarray
    period: Tuple[Any, Any]
    assets: Tuple[str, ...]
    n_observations: int
    risk_free_rate: float = 0.0
    is_excess: bool = False

    def __post_init__(self):
        object.__setattr__(self, "mean", _readonly(self.mean))
        object.__setattr__(self, "covariance", _readonly(self.covariance))
        object.__setattr__(self, "assets", tuple(self.assets))

    @property
    def n_assets(self) -> int:
        return len(self.mean)


@dataclass(frozen=True)
class ConstraintSet:
    """Linear constraints in matrix form: A_eq w = b_eq, A_ineq w <= b_ineq."""
    A_eq: np.ndarray
    b_eq: np.ndarray
    A_ineq: Optional[np.ndarray] = None
    b_ineq: Optional[np.ndarray] = None

    @property
    def has_inequalities(self) -> bool:
        return self.A_ineq is not None and len(self.A_ineq) > 0


@dataclass
class QPSolution:
    """Result of one call to a quadratic programming backend."""
    x: Optional[np.ndarray]
    objective_value: float
    status: SolveStatus
    solver_name: str
    message: str = ""
    computation_time: float = 0.0

    @property
    def is_optimal(self) -> bool:
        return self.status is SolveStatus.OPTIMAL and self.x is not None


@dataclass
class FrontierPoint:
    """One solved (or failed) point of a mean-variance frontier.

    ``weights`` is None unless the point is feasible. ``efficient`` is False for
    points on the lower branch of the frontier, below the minimum-variance
    return.
    """
    target_return: float
    weights: Optional[np.ndarray]
    risk: float
    status: SolveStatus = SolveStatus.OPTIMAL
    expected_return: float = float('nan')
    efficient: bool = True
    message: str = ""

    @property
    def feasible(self) -> bool:
        return self.status is SolveStatus.OPTIMAL and self.weights is not None

    def raise_for_status(self) -> "FrontierPoint":
        """Return self if feasible, otherwise raise the matching solver error."""
        from qp_solver import SolverInfeasibleError, SolverNumericalFailureError

        if self.status is SolveStatus.INFEASIBLE:
            raise SolverInfeasibleError(
                f"No feasible portfolio for target return {self.target_return:.6f}: {self.message}"
            )
        if self.status is SolveStatus.NUMERICAL_FAILURE or self.weights is None:
            raise SolverNumericalFailureError(
                f"Solver failed for target return {self.target_return:.6f}: {self.message}"
            )
        return self


@dataclass
class Frontier:
    """Feasible frontier points ordered by ascending target return."""
    points: Tuple[FrontierPoint, ...]
    minimum_variance: FrontierPoint
    no_short: bool
    assets: Tuple[str, ...]
    lower_bound: float
    upper_bound: float
    n_infeasible: int = 0
    n_numerical_failures: int = 0
    n_duplicates: int = 0

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self):
        return iter(self.points)

    def efficient_points(self) -> List[FrontierPoint]:
        return [p for p in self.points if p.efficient]

    def to_frame(self) -> pd.DataFrame:
        """Tabulate the frontier: one row per point, one weight column per asset."""
        rows = []
        for point in self.points:
            row = {
                'target_return': point.target_return,
                'expected_return': point.expected_return,
                'risk': point.risk,
                'efficient': point.efficient,
            }
            row.update({f'weight_{asset}': w for asset, w in zip(self.assets, point.weights)})
            rows.append(row)
        return pd.DataFrame(rows)


@dataclass
class TangencyPortfolio:
    """Maximum-Sharpe portfolio for a given risk-free rate."""
    point: FrontierPoint
    sharpe_ratio: float
    risk_free_rate: float
    strategy: str

    @property
    def weights(self) -> np.ndarray:
        return self.point.weights

    @property
    def risk(self) -> float:
        return self.point.risk

    @property
    def expected_return(self) -> float:
        return self.point.expected_return


@dataclass
class RollingResult:
    """Result of one estimation window for one constraint variant.

    A result with ``tangency`` set to None is a sentinel for a window that
    produced no usable frontier; ``error`` says why.
    """
    window_index: int
    start: Any
    end: Any
    no_short: bool
    moments: Optional[MomentEstimate] = None
    frontier: Optional[Frontier] = None
    tangency: Optional[TangencyPortfolio] = None
    direct_tangency: Optional[TangencyPortfolio] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.tangency is not None


@dataclass
class RollingRun:
    """Chronologically ordered rolling results for both constraint variants."""
    results: List[RollingResult]
    assets: Tuple[str, ...]
    settings: Dict[str, Any] = field(default_factory=dict)

    def for_variant(self, no_short: bool) -> List[RollingResult]:
        return [r for r in self.results if r.no_short == no_short]

    def tangency_weights(self, no_short: bool) -> pd.DataFrame:
        """Tangency weights per window (rows) and asset (columns); NaN for sentinels."""
        results = self.for_variant(no_short)
        index = pd.Index([r.start for r in results], name='window_start')
        data = [
            r.tangency.weights if r.succeeded else np.full(len(self.assets), np.nan)
            for r in results
        ]
        return pd.DataFrame(data, index=index, columns=list(self.assets))

    def sharpe_ratios(self, no_short: bool) -> pd.Series:
        results = self.for_variant(no_short)
        return pd.Series(
            [r.tangency.sharpe_ratio if r.succeeded else np.nan for r in results],
            index=pd.Index([r.start for r in results], name='window_start'),
            name='sharpe_ratio'
        )

    def summary(self) -> Dict[str, Any]:
        summary = {'n_windows': len({r.window_index for r in self.results})}
        for no_short in (False, True):
            label = 'no_short' if no_short else 'short_allowed'
            results = self.for_variant(no_short)
            summary[label] = {
                'succeeded': sum(r.succeeded for r in results),
                'failed': sum(not r.succeeded for r in results),
                'errors': [r.error for r in results if r.error]
            }
        return summary


class QuadraticSolverInterface(ABC):
    """Interface for an external quadratic programming capability.

    Solves: minimize 1/2 x'Qx + c'x  subject to  A_eq x = b_eq, A_ineq x <= b_ineq.
    Infeasibility and numerical trouble are reported through
    ``QPSolution.status`` rather than raised.
    """

    @abstractmethod
    def solve(self, Q: np.ndarray, c: np.ndarray,
              A_eq: Optional[np.ndarray], b_eq: Optional[np.ndarray],
              A_ineq: Optional[np.ndarray] = None,
              b_ineq: Optional[np.ndarray] = None) -> QPSolution:
        """Solve one quadratic program."""
        pass


class MomentEstimatorInterface(ABC):
    """Interface for per-window moment estimation."""

    @abstractmethod
    def estimate(self, returns: pd.DataFrame, start: Any = None, end: Any = None,
                 risk_free: Optional[Any] = None) -> MomentEstimate:
        """Estimate annualized moments for returns in [start, end)."""
        pass

    @abstractmethod
    def validate_covariance(self, cov_matrix: np.ndarray) -> Dict[str, Any]:
        """Validate covariance matrix properties."""
        pass
