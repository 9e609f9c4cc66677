"""
Tangency portfolio selection for the mean-variance frontier engine.

Two strategies are supported:

* scan: evaluate the Sharpe ratio of every feasible frontier point and keep the
  best one. Works under any constraint set.
* direct: solve for the maximum-Sharpe portfolio itself. With short sales this
  is the closed form w ~ Sigma^-1 (mu - rf); without short sales it is the QP
      minimize y'Sigma y  subject to  (mu - rf)'y = 1, y >= 0
  rescaled so the weights sum to one.
"""

import numpy as np
from typing import Optional
from scipy import linalg

from interfaces import (
    Frontier, FrontierPoint, MomentEstimate, SolveStatus, TangencyPortfolio
)
from frontier_solver import FrontierSolver
from config import get_config, TangencyConfig
from logging_config import get_logger


class NoFeasibleTangencyError(RuntimeError):
    """Raised when no portfolio is available to rank by Sharpe ratio."""
    pass


class TangencySelector:
    """Selects the maximum-Sharpe portfolio of a frontier."""

    MIN_RISK = 1e-12

    def __init__(self, frontier_solver: FrontierSolver, config: Optional[TangencyConfig] = None):
        """Initialize tangency selector.

        Args:
            frontier_solver: Used for its QP backend by the no-short direct strategy
            config: Tangency configuration; defaults to the global configuration
        """
        self.frontier_solver = frontier_solver
        self.config = config or get_config().tangency
        self.logger = get_logger(__name__)

    def scan(self, frontier: Optional[Frontier], risk_free_rate: float = 0.0) -> TangencyPortfolio:
        """Pick the frontier point with the highest Sharpe ratio.

        If every Sharpe ratio is negative the least negative one is returned.

        Raises:
            NoFeasibleTangencyError: If the frontier has no point with positive risk
        """
        if frontier is None or len(frontier) == 0:
            raise NoFeasibleTangencyError("Frontier is empty")

        candidates = [p for p in frontier.points if p.feasible and p.risk > self.MIN_RISK]
        if not candidates:
            raise NoFeasibleTangencyError("Frontier has no feasible point with positive risk")

        sharpe = np.array([(p.target_return - risk_free_rate) / p.risk for p in candidates])
        best = int(np.argmax(sharpe))

        if sharpe[best] < 0:
            self.logger.info(
                f"All Sharpe ratios negative at risk-free rate {risk_free_rate:.4%}, "
                f"keeping least negative ({sharpe[best]:.4f})"
            )

        return TangencyPortfolio(
            point=candidates[best],
            sharpe_ratio=float(sharpe[best]),
            risk_free_rate=float(risk_free_rate),
            strategy="scan"
        )

    def direct(self, moments: MomentEstimate, risk_free_rate: float = 0.0,
               no_short: bool = False) -> TangencyPortfolio:
        """Solve for the maximum-Sharpe portfolio without a frontier.

        Raises:
            NoFeasibleTangencyError: If no portfolio has a positive excess return
                reachable on the efficient branch
        """
        mu = np.asarray(moments.mean)
        covariance = np.asarray(moments.covariance)
        excess = mu - risk_free_rate

        if no_short:
            weights = self._direct_no_short(covariance, excess)
        else:
            weights = self._direct_closed_form(covariance, excess)

        risk = float(np.sqrt(max(float(weights @ covariance @ weights), 0.0)))
        if risk <= self.MIN_RISK:
            raise NoFeasibleTangencyError("Tangency portfolio has zero risk")

        expected_return = float(mu @ weights)
        point = FrontierPoint(
            target_return=expected_return,
            weights=weights,
            risk=risk,
            status=SolveStatus.OPTIMAL,
            expected_return=expected_return
        )

        return TangencyPortfolio(
            point=point,
            sharpe_ratio=(expected_return - risk_free_rate) / risk,
            risk_free_rate=float(risk_free_rate),
            strategy="direct"
        )

    def select(self, frontier: Optional[Frontier], moments: MomentEstimate,
               risk_free_rate: float = 0.0, strategy: Optional[str] = None) -> TangencyPortfolio:
        """Select the tangency portfolio with the given (or configured) strategy.

        "auto" uses the closed form when short sales are allowed and the scan
        otherwise, falling back to the scan if the closed form is undefined.
        """
        strategy = strategy or self.config.strategy
        no_short = frontier.no_short if frontier is not None else False

        if strategy == "scan":
            return self.scan(frontier, risk_free_rate)
        if strategy == "direct":
            return self.direct(moments, risk_free_rate, no_short)
        if strategy == "auto":
            if no_short:
                return self.scan(frontier, risk_free_rate)
            try:
                return self.direct(moments, risk_free_rate, no_short=False)
            except NoFeasibleTangencyError as e:
                self.logger.warning(f"Closed-form tangency unavailable ({e}), scanning frontier")
                return self.scan(frontier, risk_free_rate)

        raise ValueError(f"Unknown tangency strategy: {strategy}")

    def check_agreement(self, first: TangencyPortfolio, second: TangencyPortfolio) -> bool:
        """True if two tangency portfolios have Sharpe ratios within tolerance."""
        difference = abs(first.sharpe_ratio - second.sharpe_ratio)
        if difference > self.config.agreement_tolerance:
            self.logger.warning(
                f"Tangency strategies disagree: {first.strategy} Sharpe {first.sharpe_ratio:.6f} "
                f"vs {second.strategy} Sharpe {second.sharpe_ratio:.6f}"
            )
            return False
        return True

    def _direct_closed_form(self, covariance: np.ndarray, excess: np.ndarray) -> np.ndarray:
        try:
            z = linalg.solve(covariance, excess, assume_a='sym')
        except (linalg.LinAlgError, ValueError):
            z = None

        if z is None or not np.all(np.isfinite(z)):
            self.logger.debug("Covariance singular, using least-squares tangency direction")
            z = linalg.lstsq(covariance, excess)[0]

        total = float(np.sum(z))
        if not np.isfinite(total) or total <= self.MIN_RISK:
            raise NoFeasibleTangencyError(
                "Closed-form tangency undefined: risk-free rate is not below the minimum-variance return"
            )
        return z / total

    def _direct_no_short(self, covariance: np.ndarray, excess: np.ndarray) -> np.ndarray:
        if np.max(excess) <= 0:
            raise NoFeasibleTangencyError("No asset has a positive excess return")

        n_assets = len(excess)
        solution = self.frontier_solver.solver.solve(
            covariance, np.zeros(n_assets),
            excess.reshape(1, -1), np.array([1.0]),
            -np.eye(n_assets), np.zeros(n_assets)
        )
        if not solution.is_optimal:
            raise NoFeasibleTangencyError(
                f"Tangency QP {solution.status.value}: {solution.message}"
            )

        y = np.clip(solution.x, 0.0, None)
        total = float(np.sum(y))
        if total <= self.MIN_RISK:
            raise NoFeasibleTangencyError("Tangency QP returned a degenerate solution")
        return y / total
