"""
Moment estimation module for the mean-variance frontier engine.

This module turns a window of periodic asset returns into an annualized
MomentEstimate (mean vector and covariance matrix), optionally net of a
risk-free rate, with a configurable policy for missing observations.
"""

import numpy as np
import pandas as pd
from typing import Any, Dict, Optional, Union
from sklearn.covariance import LedoitWolf

from interfaces import MomentEstimatorInterface, MomentEstimate
from config import get_config, MomentConfig
from logging_config import get_logger


class InsufficientDataError(ValueError):
    """Raised when a window has too few usable observations to estimate moments."""
    pass


class MomentEstimator(MomentEstimatorInterface):
    """Estimates annualized mean returns and covariance for an estimation window."""

    def __init__(self, config: Optional[MomentConfig] = None):
        """Initialize moment estimator.

        Args:
            config: Moment configuration; defaults to the global configuration
        """
        self.config = config or get_config().moments
        self.logger = get_logger(__name__)

    @property
    def periods_per_year(self) -> int:
        return self.config.periods_per_year

    def select_window(self, data: Union[pd.DataFrame, pd.Series],
                      start: Any = None, end: Any = None) -> Union[pd.DataFrame, pd.Series]:
        """Restrict data to the half-open window [start, end).

        Labels are used for datetime indexes and integer positions otherwise.
        """
        if start is None and end is None:
            return data

        if isinstance(data.index, pd.DatetimeIndex):
            mask = np.ones(len(data), dtype=bool)
            if start is not None:
                mask &= data.index >= pd.Timestamp(start)
            if end is not None:
                mask &= data.index < pd.Timestamp(end)
            return data[mask]

        return data.iloc[start:end]

    def estimate(self, returns: pd.DataFrame, start: Any = None, end: Any = None,
                 risk_free: Optional[Union[pd.Series, float]] = None) -> MomentEstimate:
        """Estimate annualized moments for returns in [start, end).

        Args:
            returns: Periodic returns, one column per asset
            start: Window start (inclusive)
            end: Window end (exclusive)
            risk_free: Annualized risk-free rate, as a series aligned with the
                returns index or a scalar

        Returns:
            MomentEstimate with annualized mean and covariance

        Raises:
            InsufficientDataError: If fewer than n_assets + 1 usable observations remain
        """
        window = self.select_window(returns, start, end).astype(float)
        assets = tuple(str(col) for col in window.columns)
        n_assets = len(assets)

        if n_assets == 0:
            raise InsufficientDataError("Return matrix has no asset columns")

        rf_periodic = self._align_risk_free(risk_free, window)
        annual_rf = float(rf_periodic.mean() * self.periods_per_year) if rf_periodic is not None else 0.0
        if not np.isfinite(annual_rf):
            annual_rf = 0.0

        is_excess = bool(self.config.use_excess_returns and rf_periodic is not None)
        if is_excess:
            window = window.sub(rf_periodic, axis=0)

        use_complete = (self.config.missing_policy == "complete"
                        or self.config.covariance_method == "ledoit_wolf")
        if use_complete:
            window = window.dropna(how='any')

        n_observations = self.count_usable_observations(window)
        if n_observations < n_assets + 1:
            raise InsufficientDataError(
                f"Window {self._describe_period(start, end)} has {n_observations} usable "
                f"observations, need at least {n_assets + 1} for {n_assets} assets"
            )

        mean = window.mean().values
        covariance = self._estimate_covariance(window)

        if not np.all(np.isfinite(mean)) or not np.all(np.isfinite(covariance)):
            raise InsufficientDataError(
                f"Window {self._describe_period(start, end)} produced non-finite moments"
            )

        ppy = self.periods_per_year
        mean = mean * ppy
        covariance = covariance * ppy
        covariance = 0.5 * (covariance + covariance.T)

        if self.config.regularization > 0:
            covariance = covariance + self.config.regularization * np.eye(n_assets)

        # First and last observation used, both inclusive
        observed = window.index[window.notna().any(axis=1).values]
        period = (observed[0], observed[-1])

        self.logger.debug(
            f"Estimated moments for {n_assets} assets over {period[0]} to {period[1]} "
            f"from {n_observations} observations"
        )

        return MomentEstimate(
            mean=mean,
            covariance=covariance,
            period=period,
            assets=assets,
            n_observations=n_observations,
            risk_free_rate=annual_rf if not is_excess else 0.0,
            is_excess=is_excess
        )

    def count_usable_observations(self, window: pd.DataFrame) -> int:
        """Observations usable for covariance estimation.

        Complete rows when every asset is observed; otherwise the smallest
        pairwise-complete count across all asset pairs.
        """
        if window.empty:
            return 0
        observed = window.notna().values.astype(int)
        pairwise_counts = observed.T @ observed
        return int(pairwise_counts.min())

    def _estimate_covariance(self, window: pd.DataFrame) -> np.ndarray:
        if self.config.covariance_method == "ledoit_wolf":
            lw = LedoitWolf()
            lw.fit(window.values)
            self.logger.debug(f"Ledoit-Wolf shrinkage intensity: {lw.shrinkage_:.4f}")
            return lw.covariance_

        # DataFrame.cov uses pairwise-complete observations
        return window.cov().values

    def _align_risk_free(self, risk_free: Optional[Union[pd.Series, float]],
                         window: pd.DataFrame) -> Optional[pd.Series]:
        """Convert annualized risk-free quotes to per-period rates on the window index."""
        if risk_free is None:
            return None

        if isinstance(risk_free, pd.Series):
            aligned = risk_free.reindex(window.index)
            if aligned.isna().any():
                n_missing = int(aligned.isna().sum())
                self.logger.warning(f"{n_missing} risk-free observations missing in window, forward filling")
                aligned = aligned.ffill().bfill()
            if aligned.isna().all():
                return None
        else:
            aligned = pd.Series(float(risk_free), index=window.index)

        return aligned / self.periods_per_year

    def validate_covariance(self, cov_matrix: np.ndarray) -> Dict[str, Any]:
        """Validate covariance matrix properties.

        Args:
            cov_matrix: Covariance matrix to check

        Returns:
            Dictionary with symmetry, PSD and conditioning diagnostics
        """
        cov_matrix = np.asarray(cov_matrix, dtype=float)
        symmetric = bool(np.allclose(cov_matrix, cov_matrix.T))
        eigenvalues = np.linalg.eigvalsh(0.5 * (cov_matrix + cov_matrix.T))
        min_eig = float(eigenvalues[0])
        max_eig = float(eigenvalues[-1])

        return {
            'symmetric': symmetric,
            'positive_semidefinite': min_eig >= -1e-10,
            'positive_definite': min_eig > 1e-12,
            'min_eigenvalue': min_eig,
            'max_eigenvalue': max_eig,
            'condition_number': max_eig / min_eig if min_eig > 0 else float('inf')
        }

    @staticmethod
    def _describe_period(start: Any, end: Any) -> str:
        return f"[{start}, {end})"
