"""
Quadratic programming backends for the mean-variance frontier engine.

Each backend solves

    minimize    1/2 x'Qx + c'x
    subject to  A_eq x = b_eq
                A_ineq x <= b_ineq

and reports the outcome as a tagged ``QPSolution``. Infeasibility and numerical
trouble are expected outcomes during a frontier sweep, so backends return them
as statuses instead of raising.
"""

import time
from typing import List, Optional, Tuple

import numpy as np
import cvxpy as cp
from scipy.optimize import minimize

from interfaces import QuadraticSolverInterface, QPSolution, SolveStatus
from logging_config import get_logger


class SolverError(Exception):
    """Base class for quadratic program failures."""
    pass


class SolverInfeasibleError(SolverError):
    """A quadratic program has no feasible point."""
    pass


class SolverNumericalFailureError(SolverError):
    """The quadratic form is not PSD or the solver did not converge."""
    pass


def min_eigenvalue(Q: np.ndarray) -> float:
    """Smallest eigenvalue of the symmetric part of Q."""
    sym = 0.5 * (Q + Q.T)
    return float(np.linalg.eigvalsh(sym)[0])


def is_psd(Q: np.ndarray, tolerance: float = 1e-10) -> Tuple[bool, float]:
    """Check positive semi-definiteness with a tolerance relative to the matrix scale."""
    eig_min = min_eigenvalue(Q)
    scale = max(1.0, float(np.max(np.abs(np.diag(Q)))) if Q.size else 1.0)
    return eig_min >= -tolerance * scale, eig_min


def _as_matrix(A: Optional[np.ndarray], n: int) -> Optional[np.ndarray]:
    if A is None:
        return None
    A = np.atleast_2d(np.asarray(A, dtype=float))
    if A.size == 0:
        return None
    if A.shape[1] != n:
        raise ValueError(f"Constraint matrix has {A.shape[1]} columns, expected {n}")
    return A


class CvxpyQPSolver(QuadraticSolverInterface):
    """Solves quadratic programs through CVXPY, trying several installed solvers."""

    DEFAULT_SOLVERS = ('CLARABEL', 'OSQP', 'SCS')

    def __init__(self, solvers: Optional[List[str]] = None, psd_tolerance: float = 1e-10):
        """Initialize CVXPY backend.

        Args:
            solvers: Solver names to try in order; names that are not installed are skipped
            psd_tolerance: Relative tolerance for the PSD check on Q
        """
        self.logger = get_logger(__name__)
        self.psd_tolerance = psd_tolerance

        installed = set(cp.installed_solvers())
        requested = list(solvers) if solvers else list(self.DEFAULT_SOLVERS)
        self.solvers = [name for name in requested if name in installed]

        if not self.solvers:
            raise ImportError(f"None of the requested CVXPY solvers are installed: {requested}")

        self.logger.debug(f"CvxpyQPSolver initialized with solvers: {self.solvers}")

    def solve(self, Q: np.ndarray, c: np.ndarray,
              A_eq: Optional[np.ndarray], b_eq: Optional[np.ndarray],
              A_ineq: Optional[np.ndarray] = None,
              b_ineq: Optional[np.ndarray] = None) -> QPSolution:
        start_time = time.time()

        Q = np.asarray(Q, dtype=float)
        n = Q.shape[0]
        c = np.zeros(n) if c is None else np.asarray(c, dtype=float)

        psd, eig_min = is_psd(Q, self.psd_tolerance)
        if not psd:
            return QPSolution(
                x=None,
                objective_value=float('inf'),
                status=SolveStatus.NUMERICAL_FAILURE,
                solver_name="cvxpy",
                message=f"quadratic form is not PSD (min eigenvalue {eig_min:.3e})",
                computation_time=time.time() - start_time
            )

        Q = 0.5 * (Q + Q.T)
        A_eq = _as_matrix(A_eq, n)
        A_ineq = _as_matrix(A_ineq, n)

        x = cp.Variable(n)
        objective = cp.Minimize(0.5 * cp.quad_form(x, cp.psd_wrap(Q)) + c @ x)

        cvx_constraints = []
        if A_eq is not None:
            cvx_constraints.append(A_eq @ x == np.asarray(b_eq, dtype=float))
        if A_ineq is not None:
            cvx_constraints.append(A_ineq @ x <= np.asarray(b_ineq, dtype=float))

        problem = cp.Problem(objective, cvx_constraints)

        status = SolveStatus.NUMERICAL_FAILURE
        solver_used = "cvxpy"
        messages = []

        for solver_name in self.solvers:
            try:
                problem.solve(solver=solver_name, verbose=False)
            except (cp.SolverError, ArithmeticError, ValueError) as e:
                self.logger.debug(f"Solver {solver_name} failed: {str(e)}")
                messages.append(f"{solver_name}: {str(e)[:80]}")
                continue

            solver_used = solver_name
            if problem.status in [cp.OPTIMAL, cp.OPTIMAL_INACCURATE]:
                if problem.status == cp.OPTIMAL_INACCURATE:
                    self.logger.debug(f"Solver {solver_name} returned an inaccurate optimum")
                status = SolveStatus.OPTIMAL
                break
            if problem.status in [cp.INFEASIBLE, cp.INFEASIBLE_INACCURATE]:
                # Infeasibility is a property of the problem, not the solver
                status = SolveStatus.INFEASIBLE
                messages.append(f"{solver_name}: {problem.status}")
                break

            messages.append(f"{solver_name}: {problem.status}")

        if status is SolveStatus.OPTIMAL and x.value is None:
            status = SolveStatus.NUMERICAL_FAILURE
            messages.append(f"{solver_used}: no primal solution returned")

        if status is not SolveStatus.OPTIMAL:
            return QPSolution(
                x=None,
                objective_value=float('inf'),
                status=status,
                solver_name=solver_used,
                message="; ".join(messages),
                computation_time=time.time() - start_time
            )

        solution = np.array(x.value, dtype=float).flatten()
        solution[np.abs(solution) < 1e-12] = 0.0

        return QPSolution(
            x=solution,
            objective_value=float(0.5 * solution @ Q @ solution + c @ solution),
            status=SolveStatus.OPTIMAL,
            solver_name=solver_used,
            computation_time=time.time() - start_time
        )


class ScipyQPSolver(QuadraticSolverInterface):
    """Solves quadratic programs with scipy's SLSQP method."""

    # SLSQP exit mode for incompatible inequality constraints
    _INCOMPATIBLE_CONSTRAINTS = 4

    def __init__(self, tolerance: float = 1e-12, max_iter: int = 500,
                 feasibility_tolerance: float = 1e-7, psd_tolerance: float = 1e-10):
        self.tolerance = tolerance
        self.max_iter = max_iter
        self.feasibility_tolerance = feasibility_tolerance
        self.psd_tolerance = psd_tolerance
        self.logger = get_logger(__name__)

    def solve(self, Q: np.ndarray, c: np.ndarray,
              A_eq: Optional[np.ndarray], b_eq: Optional[np.ndarray],
              A_ineq: Optional[np.ndarray] = None,
              b_ineq: Optional[np.ndarray] = None) -> QPSolution:
        start_time = time.time()

        Q = np.asarray(Q, dtype=float)
        n = Q.shape[0]
        c = np.zeros(n) if c is None else np.asarray(c, dtype=float)

        psd, eig_min = is_psd(Q, self.psd_tolerance)
        if not psd:
            return QPSolution(
                x=None,
                objective_value=float('inf'),
                status=SolveStatus.NUMERICAL_FAILURE,
                solver_name="scipy",
                message=f"quadratic form is not PSD (min eigenvalue {eig_min:.3e})",
                computation_time=time.time() - start_time
            )

        Q = 0.5 * (Q + Q.T)
        A_eq = _as_matrix(A_eq, n)
        A_ineq = _as_matrix(A_ineq, n)
        b_eq = None if A_eq is None else np.asarray(b_eq, dtype=float)
        b_ineq = None if A_ineq is None else np.asarray(b_ineq, dtype=float)

        constraints = []
        if A_eq is not None:
            constraints.append({
                'type': 'eq',
                'fun': lambda x: A_eq @ x - b_eq,
                'jac': lambda x: A_eq
            })
        if A_ineq is not None:
            constraints.append({
                'type': 'ineq',
                'fun': lambda x: b_ineq - A_ineq @ x,
                'jac': lambda x: -A_ineq
            })

        # Least-norm point of the equality system as the starting guess
        if A_eq is not None:
            x0 = np.linalg.lstsq(A_eq, b_eq, rcond=None)[0]
        else:
            x0 = np.zeros(n)

        try:
            result = minimize(
                lambda x: 0.5 * x @ Q @ x + c @ x,
                x0,
                jac=lambda x: Q @ x + c,
                method='SLSQP',
                constraints=constraints,
                options={'ftol': self.tolerance, 'maxiter': self.max_iter}
            )
        except (ValueError, ArithmeticError, np.linalg.LinAlgError) as e:
            self.logger.debug(f"SLSQP raised: {str(e)}")
            return QPSolution(
                x=None,
                objective_value=float('inf'),
                status=SolveStatus.NUMERICAL_FAILURE,
                solver_name="scipy",
                message=str(e)[:120],
                computation_time=time.time() - start_time
            )

        violation = self._constraint_violation(result.x, A_eq, b_eq, A_ineq, b_ineq)

        if result.success and violation <= self.feasibility_tolerance:
            return QPSolution(
                x=np.asarray(result.x, dtype=float),
                objective_value=float(result.fun),
                status=SolveStatus.OPTIMAL,
                solver_name="scipy",
                computation_time=time.time() - start_time
            )

        if result.status == self._INCOMPATIBLE_CONSTRAINTS or violation > self.feasibility_tolerance:
            status = SolveStatus.INFEASIBLE
        else:
            status = SolveStatus.NUMERICAL_FAILURE

        return QPSolution(
            x=None,
            objective_value=float('inf'),
            status=status,
            solver_name="scipy",
            message=f"{result.message} (constraint violation {violation:.2e})",
            computation_time=time.time() - start_time
        )

    @staticmethod
    def _constraint_violation(x, A_eq, b_eq, A_ineq, b_ineq) -> float:
        violation = 0.0
        if A_eq is not None:
            violation = max(violation, float(np.max(np.abs(A_eq @ x - b_eq))))
        if A_ineq is not None:
            violation = max(violation, float(np.max(A_ineq @ x - b_ineq, initial=0.0)))
        return violation


def create_solver(name: str = "cvxpy", psd_tolerance: float = 1e-10) -> QuadraticSolverInterface:
    """Build a QP backend by name ("cvxpy" or "scipy")."""
    if name == "cvxpy":
        return CvxpyQPSolver(psd_tolerance=psd_tolerance)
    elif name == "scipy":
        return ScipyQPSolver(psd_tolerance=psd_tolerance)
    else:
        raise ValueError(f"Unknown solver: {name}")
