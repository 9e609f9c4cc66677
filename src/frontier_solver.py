"""
Frontier solver module for the mean-variance frontier engine.

This module formulates the Markowitz problem for a single target return

    minimize    1/2 w'Sigma w
    subject to  1'w = 1
                mu'w = r        (when a target return is given)
                w >= 0          (when short sales are excluded)

and hands it to an injected quadratic programming backend.
"""

import numpy as np
from typing import Any, Dict, List, Optional

from interfaces import (
    ConstraintSet, FrontierPoint, QuadraticSolverInterface, SolveStatus
)
from logging_config import get_logger


class ConstraintManager:
    """Manages portfolio constraints and compiles them to matrix form."""

    SUPPORTED = ("budget", "target_return", "long_only")

    def __init__(self):
        self.constraints = {}
        self.logger = get_logger(__name__)

    def add_constraint(self, constraint_type: str, parameters: Optional[Dict[str, Any]] = None) -> None:
        """Add a constraint to the optimization problem.

        Args:
            constraint_type: Type of constraint ("budget", "target_return", "long_only")
            parameters: Constraint parameters
        """
        if constraint_type not in self.SUPPORTED:
            raise ValueError(f"Unknown constraint type: {constraint_type}")
        self.constraints[constraint_type] = parameters or {}
        self.logger.debug(f"Added {constraint_type} constraint")

    def remove_constraint(self, constraint_type: str) -> bool:
        if constraint_type in self.constraints:
            del self.constraints[constraint_type]
            return True
        return False

    def get_constraints(self) -> Dict[str, Any]:
        return self.constraints.copy()

    def validate_constraints(self, n_assets: int) -> List[str]:
        """Validate constraints for consistency.

        Args:
            n_assets: Number of assets

        Returns:
            List of validation errors
        """
        errors = []

        if "budget" in self.constraints:
            if self.constraints["budget"].get("target_sum", 1.0) <= 0:
                errors.append("Budget target_sum must be positive")

        if "target_return" in self.constraints:
            params = self.constraints["target_return"]
            mu = params.get("expected_returns")
            if mu is None or len(mu) != n_assets:
                errors.append(f"expected_returns must have length n_assets ({n_assets})")
            target = params.get("target")
            if target is None or not np.isfinite(target):
                errors.append("target return must be a finite number")

        return errors

    def to_matrices(self, n_assets: int) -> ConstraintSet:
        """Compile constraints to A_eq w = b_eq and A_ineq w <= b_ineq."""
        errors = self.validate_constraints(n_assets)
        if errors:
            raise ValueError("; ".join(errors))

        eq_rows, eq_rhs = [], []

        if "budget" in self.constraints:
            eq_rows.append(np.ones(n_assets))
            eq_rhs.append(self.constraints["budget"].get("target_sum", 1.0))

        if "target_return" in self.constraints:
            params = self.constraints["target_return"]
            eq_rows.append(np.asarray(params["expected_returns"], dtype=float))
            eq_rhs.append(float(params["target"]))

        A_eq = np.vstack(eq_rows) if eq_rows else np.zeros((0, n_assets))
        b_eq = np.array(eq_rhs, dtype=float)

        A_ineq, b_ineq = None, None
        if "long_only" in self.constraints:
            A_ineq = -np.eye(n_assets)
            b_ineq = np.zeros(n_assets)

        return ConstraintSet(A_eq=A_eq, b_eq=b_eq, A_ineq=A_ineq, b_ineq=b_ineq)


class FrontierSolver:
    """Solves one mean-variance quadratic program per call."""

    def __init__(self, solver: QuadraticSolverInterface, return_tolerance: float = 1e-8,
                 weight_tolerance: float = 1e-5):
        """Initialize frontier solver.

        Args:
            solver: Quadratic programming backend
            return_tolerance: Slack allowed when comparing target returns to attainable bounds
            weight_tolerance: Slack allowed on budget and non-negativity of returned weights
        """
        self.solver = solver
        self.return_tolerance = return_tolerance
        self.weight_tolerance = weight_tolerance
        self.logger = get_logger(__name__)

    def build_constraints(self, mu: np.ndarray, target_return: Optional[float],
                          no_short: bool) -> ConstraintSet:
        manager = ConstraintManager()
        manager.add_constraint("budget", {"target_sum": 1.0})
        if target_return is not None:
            manager.add_constraint("target_return", {"expected_returns": mu, "target": target_return})
        if no_short:
            manager.add_constraint("long_only")
        return manager.to_matrices(len(mu))

    def solve(self, mu: np.ndarray, covariance: np.ndarray,
              target_return: Optional[float] = None, no_short: bool = False,
              return_floor: Optional[float] = None) -> FrontierPoint:
        """Solve for the minimum-risk portfolio at a target return.

        The solver does not know the minimum-variance return of its inputs.
        Callers that want the lower (inefficient) branch reported infeasible
        must solve ``minimum_variance`` first and pass its return as
        ``return_floor``, as FrontierSweep does. Without a floor, a target
        below the minimum-variance return is solved like any other.

        Args:
            mu: Expected returns
            covariance: Covariance matrix
            target_return: Required portfolio return; None for the global minimum-variance problem
            no_short: Exclude negative weights
            return_floor: Targets below this return are reported infeasible
                without calling the backend

        Returns:
            FrontierPoint tagged with the solve status
        """
        mu = np.asarray(mu, dtype=float)
        covariance = np.asarray(covariance, dtype=float)

        rejection = self._check_attainable(mu, target_return, no_short, return_floor)
        if rejection is not None:
            return self._failed_point(target_return, SolveStatus.INFEASIBLE, rejection)

        effective_target = target_return
        if target_return is not None and np.ptp(mu) <= self._return_tol(mu):
            # Return row duplicates the budget row when all assets earn the same
            effective_target = None

        constraints = self.build_constraints(mu, effective_target, no_short)
        solution = self.solver.solve(
            covariance, np.zeros(len(mu)),
            constraints.A_eq, constraints.b_eq,
            constraints.A_ineq, constraints.b_ineq
        )

        if not solution.is_optimal:
            if solution.status is SolveStatus.NUMERICAL_FAILURE:
                self.logger.warning(
                    f"Numerical failure at target return {self._fmt(target_return)} "
                    f"({solution.solver_name}): {solution.message}"
                )
            else:
                self.logger.debug(f"Infeasible target return {self._fmt(target_return)}")
            status = solution.status if solution.status is not SolveStatus.OPTIMAL \
                else SolveStatus.NUMERICAL_FAILURE
            return self._failed_point(target_return, status, solution.message)

        weights = self._clean_weights(solution.x, no_short)
        problem = self._check_weights(weights, no_short)
        if problem is not None:
            self.logger.warning(f"Rejected solution at target return {self._fmt(target_return)}: {problem}")
            return self._failed_point(target_return, SolveStatus.NUMERICAL_FAILURE, problem)

        variance = float(weights @ covariance @ weights)
        risk = float(np.sqrt(max(variance, 0.0)))
        expected_return = float(mu @ weights)

        return FrontierPoint(
            target_return=expected_return if target_return is None else float(target_return),
            weights=weights,
            risk=risk,
            status=SolveStatus.OPTIMAL,
            expected_return=expected_return
        )

    def minimum_variance(self, mu: np.ndarray, covariance: np.ndarray,
                         no_short: bool = False) -> FrontierPoint:
        """Solve the return-unconstrained minimum-variance problem."""
        return self.solve(mu, covariance, target_return=None, no_short=no_short)

    def _check_attainable(self, mu: np.ndarray, target_return: Optional[float],
                          no_short: bool, return_floor: Optional[float]) -> Optional[str]:
        """Reason a target return cannot be met, or None if it may be feasible."""
        if target_return is None:
            return None

        tol = self._return_tol(mu)

        if return_floor is not None and target_return < return_floor - tol:
            return f"target {target_return:.6f} below minimum-variance return {return_floor:.6f}"

        if no_short:
            if target_return > mu.max() + tol:
                return f"target {target_return:.6f} above best single-asset return {mu.max():.6f}"
            if target_return < mu.min() - tol:
                return f"target {target_return:.6f} below worst single-asset return {mu.min():.6f}"
        elif np.ptp(mu) <= tol and abs(target_return - mu[0]) > tol:
            return f"all assets return {mu[0]:.6f}; target {target_return:.6f} unattainable"

        return None

    def _return_tol(self, mu: np.ndarray) -> float:
        return self.return_tolerance * max(1.0, float(np.max(np.abs(mu))))

    def _clean_weights(self, x: np.ndarray, no_short: bool) -> np.ndarray:
        weights = np.array(x, dtype=float)
        weights[np.abs(weights) < 1e-10] = 0.0
        if no_short:
            weights[(weights < 0) & (weights > -self.weight_tolerance)] = 0.0
        total = weights.sum()
        if abs(total - 1.0) <= self.weight_tolerance and total > 0:
            weights = weights / total
        return weights

    def _check_weights(self, weights: np.ndarray, no_short: bool) -> Optional[str]:
        if not np.all(np.isfinite(weights)):
            return "non-finite weights"
        if abs(weights.sum() - 1.0) > self.weight_tolerance:
            return f"weights sum to {weights.sum():.8f}"
        if no_short and weights.min() < -self.weight_tolerance:
            return f"negative weight {weights.min():.3e} under no-short constraint"
        return None

    @staticmethod
    def _failed_point(target_return: Optional[float], status: SolveStatus, message: str) -> FrontierPoint:
        target = float('nan') if target_return is None else float(target_return)
        return FrontierPoint(
            target_return=target,
            weights=None,
            risk=float('nan'),
            status=status,
            message=message
        )

    @staticmethod
    def _fmt(target_return: Optional[float]) -> str:
        return "none" if target_return is None else f"{target_return:.6f}"
