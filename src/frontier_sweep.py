"""
Frontier sweep module for the mean-variance frontier engine.

This module builds a complete efficient frontier for one MomentEstimate by
solving the minimum-variance problem, laying an evenly spaced grid of target
returns over the attainable range and solving every grid point independently.
"""

import os
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, FIRST_COMPLETED, wait
from typing import List, Optional, Tuple

import numpy as np

from interfaces import Frontier, FrontierPoint, MomentEstimate, SolveStatus
from frontier_solver import FrontierSolver
from config import get_config, FrontierConfig
from logging_config import get_logger


class EmptyFrontierError(RuntimeError):
    """Raised when a sweep yields no feasible frontier point."""
    pass


def resolve_n_jobs(n_jobs: Optional[int]) -> int:
    """Translate an n_jobs setting (-1 for all cores) into a worker count."""
    if n_jobs is None:
        return 1
    if n_jobs < 0:
        return max(1, (os.cpu_count() or 1) + 1 + n_jobs)
    return max(1, n_jobs)


class FrontierSweep:
    """Drives a FrontierSolver across a grid of target returns."""

    def __init__(self, frontier_solver: FrontierSolver, config: Optional[FrontierConfig] = None,
                 n_jobs: Optional[int] = None):
        """Initialize frontier sweep.

        Args:
            frontier_solver: Solver for single target-return problems
            config: Frontier configuration; defaults to the global configuration
            n_jobs: Worker threads for grid-point solves (-1 for all cores)
        """
        self.config = config or get_config().frontier
        self.n_jobs = resolve_n_jobs(n_jobs if n_jobs is not None else get_config().n_jobs)
        self.frontier_solver = frontier_solver
        self.logger = get_logger(__name__)

    def compute_bounds(self, mu: np.ndarray, min_variance_return: float,
                       no_short: bool) -> Tuple[float, float]:
        """Target-return range of the efficient branch.

        The lower bound is the minimum-variance return. Without short sales the
        upper bound is the best single-asset return; with short sales there is
        no natural cap, so it is ``short_return_multiple`` times max(mu).
        """
        lower = float(min_variance_return)
        best = float(np.max(mu))
        spread = float(np.ptp(mu))

        if spread <= self.config.return_tolerance:
            # Every portfolio earns the same return
            return lower, lower

        if no_short:
            return lower, max(best, lower)

        upper = max(self.config.short_return_multiple * best, best)
        if upper <= lower + self.config.return_tolerance:
            # Minimum-variance return already above max(mu); extend by the cross-sectional spread
            upper = lower + self.config.short_return_multiple * spread
        return lower, max(upper, lower)

    def build_grid(self, lower: float, upper: float, mu: np.ndarray, no_short: bool) -> np.ndarray:
        """Evenly spaced ascending target returns."""
        if upper - lower <= self.config.return_tolerance:
            return np.array([lower])

        grid_lower = lower
        if self.config.include_inefficient:
            grid_lower = lower - self.config.inefficient_fraction * (upper - lower)
            if no_short:
                grid_lower = max(grid_lower, float(np.min(mu)))

        return np.linspace(grid_lower, upper, self.config.grid_size)

    def build(self, moments: MomentEstimate, no_short: Optional[bool] = None) -> Frontier:
        """Build the frontier for one set of moments.

        Args:
            moments: Annualized mean and covariance
            no_short: Exclude short sales; defaults to the configured value

        Returns:
            Frontier ordered by ascending target return

        Raises:
            EmptyFrontierError: If no feasible point exists
        """
        if no_short is None:
            no_short = self.config.no_short

        mu = np.asarray(moments.mean)
        covariance = np.asarray(moments.covariance)
        label = "no-short" if no_short else "short-allowed"

        min_variance = self.frontier_solver.minimum_variance(mu, covariance, no_short=no_short)
        if not min_variance.feasible:
            raise EmptyFrontierError(
                f"Minimum-variance problem ({label}) failed for period {moments.period}: "
                f"{min_variance.status.value} {min_variance.message}"
            )

        lower, upper = self.compute_bounds(mu, min_variance.expected_return, no_short)
        grid = self.build_grid(lower, upper, mu, no_short)
        return_floor = None if self.config.include_inefficient else lower

        self.logger.debug(
            f"Sweeping {len(grid)} target returns over [{grid[0]:.6f}, {grid[-1]:.6f}] ({label})"
        )

        solved = self._solve_grid(mu, covariance, grid, no_short, return_floor)

        n_infeasible = sum(p.status is SolveStatus.INFEASIBLE for p in solved)
        n_failures = sum(p.status is SolveStatus.NUMERICAL_FAILURE for p in solved)
        if n_failures:
            self.logger.warning(
                f"{n_failures} of {len(grid)} grid points failed numerically ({label}), "
                f"covariance may be ill-conditioned"
            )

        feasible = [min_variance] + [p for p in solved if p.feasible]
        points, n_duplicates = self._deduplicate(feasible)
        points = self._tag_efficiency(points, min_variance)

        if not points:
            raise EmptyFrontierError(f"No feasible frontier points ({label}) for period {moments.period}")

        self.logger.info(
            f"Built {label} frontier with {len(points)} points "
            f"({n_infeasible} infeasible, {n_failures} failed, {n_duplicates} duplicates dropped)"
        )

        return Frontier(
            points=tuple(points),
            minimum_variance=min_variance,
            no_short=no_short,
            assets=moments.assets,
            lower_bound=lower,
            upper_bound=upper,
            n_infeasible=n_infeasible,
            n_numerical_failures=n_failures,
            n_duplicates=n_duplicates
        )

    def _solve_grid(self, mu: np.ndarray, covariance: np.ndarray, grid: np.ndarray,
                    no_short: bool, return_floor: Optional[float]) -> List[FrontierPoint]:
        """Solve every grid point; the result list is ordered like the grid."""

        def solve_point(target: float) -> FrontierPoint:
            return self.frontier_solver.solve(mu, covariance, float(target),
                                              no_short=no_short, return_floor=return_floor)

        timeout = self.config.solve_timeout
        if timeout is not None:
            return self._solve_with_deadlines(solve_point, grid, timeout)

        if self.n_jobs == 1:
            return [solve_point(target) for target in grid]

        with ThreadPoolExecutor(max_workers=self.n_jobs) as executor:
            return list(executor.map(solve_point, grid))

    def _solve_with_deadlines(self, solve_point, grid: np.ndarray,
                              timeout: float) -> List[FrontierPoint]:
        """Solve grid points with at most n_jobs in flight, each under its own deadline.

        Every point runs on a dedicated single-worker executor so that a hung
        solve is abandoned without holding up the points queued behind it.
        The deadline is counted from the moment the point is started.
        """
        results: List[Optional[FrontierPoint]] = [None] * len(grid)
        queue = deque(enumerate(grid))
        running = {}

        while queue or running:
            while queue and len(running) < self.n_jobs:
                index, target = queue.popleft()
                executor = ThreadPoolExecutor(max_workers=1)
                future = executor.submit(solve_point, target)
                running[future] = (index, executor, time.monotonic() + timeout)

            next_deadline = min(deadline for _, _, deadline in running.values())
            wait(running, timeout=max(0.0, next_deadline - time.monotonic()),
                 return_when=FIRST_COMPLETED)
            now = time.monotonic()

            for future, (index, executor, deadline) in list(running.items()):
                if future.done():
                    results[index] = future.result()
                elif now >= deadline:
                    target = float(grid[index])
                    self.logger.warning(f"Solve timed out after {timeout}s at target return {target:.6f}")
                    results[index] = FrontierPoint(
                        target_return=target,
                        weights=None,
                        risk=float('nan'),
                        status=SolveStatus.NUMERICAL_FAILURE,
                        message=f"timed out after {timeout}s"
                    )
                else:
                    continue
                executor.shutdown(wait=False, cancel_futures=True)
                del running[future]

        return results

    def _deduplicate(self, points: List[FrontierPoint]) -> Tuple[List[FrontierPoint], int]:
        """Sort by target return and collapse targets closer than the return tolerance.

        Among near-duplicates the lower-risk point is kept.
        """
        ordered = sorted(points, key=lambda p: (p.target_return, p.risk))
        tol = self.config.return_tolerance
        kept: List[FrontierPoint] = []
        n_duplicates = 0

        for point in ordered:
            if kept and abs(point.target_return - kept[-1].target_return) <= tol:
                n_duplicates += 1
                if point.risk < kept[-1].risk:
                    kept[-1] = point
                continue
            kept.append(point)

        return kept, n_duplicates

    def _tag_efficiency(self, points: List[FrontierPoint],
                        min_variance: FrontierPoint) -> List[FrontierPoint]:
        """Mark lower-branch points and risk-monotonicity violations as inefficient."""
        floor = min_variance.expected_return
        return_tol = self.config.return_tolerance
        risk_tol = self.config.risk_tolerance
        running_max = -np.inf
        n_violations = 0

        for point in points:
            if point.target_return < floor - return_tol:
                point.efficient = False
                continue
            if point.risk < running_max - risk_tol:
                point.efficient = False
                n_violations += 1
                continue
            point.efficient = True
            running_max = max(running_max, point.risk)

        if n_violations:
            self.logger.warning(
                f"{n_violations} frontier points broke risk monotonicity and were tagged inefficient"
            )

        return points
