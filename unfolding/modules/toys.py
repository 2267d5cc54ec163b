"""
Toy Monte-Carlo resampling

Estimates the covariance of an unfolded result empirically: the measured
input is resampled many times, every pseudo-measurement is unfolded with
the same strategy and response, and the spread of the results is taken as
the covariance.

Two resampling schemes:
- correlated Gaussian noise through the Cholesky factor of the measured
  covariance (used whenever a measured covariance was supplied)
- per-bin resampling from the measured errors, either Poisson-like or
  Gaussian truncated at zero (ToyPolicy)

All draws come from the numpy Generator handed in by the caller, in a
fixed order, so a seeded generator reproduces the toys exactly.
"""

from __future__ import annotations

from enum import Enum

import numpy as np
from scipy import linalg

from .exceptions import DecompositionError
from .strategies import UnfoldInputs, UnfoldStrategy


class ToyPolicy(Enum):
    """Per-bin resampling scheme when no measured covariance is available."""

    POISSON = "poisson"
    GAUSSIAN = "gaussian"


def cholesky_lower(cov: np.ndarray) -> np.ndarray:
    """
    Lower-triangular L with cov = L L^T.

    Bins with zero variance get zero rows/columns in L, so a covariance
    that is positive definite apart from empty bins can still be used.

    Raises:
        DecompositionError: If the covariance is not positive definite
    """
    cov = np.asarray(cov, dtype=float)
    keep = np.diag(cov) > 0.0
    lower = np.zeros_like(cov)
    if not np.any(keep):
        return lower
    try:
        lower[np.ix_(keep, keep)] = linalg.cholesky(cov[np.ix_(keep, keep)], lower=True)
    except linalg.LinAlgError as e:
        raise DecompositionError(f"Measured covariance is not positive definite: {e}") from e
    return lower


def draw_measurement(
    values: np.ndarray,
    errors: np.ndarray,
    rng: np.random.Generator,
    policy: ToyPolicy = ToyPolicy.POISSON,
    cov_lower: np.ndarray | None = None,
) -> np.ndarray:
    """
    Draw one pseudo-measurement.

    Args:
        values: Nominal measured vector
        errors: Measured errors (used when cov_lower is None)
        rng: Random generator
        policy: Per-bin resampling scheme
        cov_lower: Cholesky factor of the measured covariance, if any

    Returns:
        Perturbed measured vector
    """
    values = np.asarray(values, dtype=float)

    if cov_lower is not None:
        z = rng.standard_normal(len(values))
        return values + cov_lower @ z

    errors = np.asarray(errors, dtype=float)
    newmeas = values.copy()
    for i, (old, e) in enumerate(zip(values, errors)):
        if e <= 0.0:
            continue
        if policy is ToyPolicy.POISSON:
            # Poisson with the same relative error, scaled back to the measured units
            sig = old / e
            draw = rng.poisson(sig * sig)
            newmeas[i] = draw * (e * e / old) if old != 0.0 else 0.0
        else:
            newmeas[i] = old + rng.normal(0.0, e)
            while newmeas[i] < 0.0:
                newmeas[i] = old + rng.normal(0.0, e)
    return newmeas


def run_toy(
    strategy: UnfoldStrategy, inputs: UnfoldInputs, perturbed: np.ndarray
) -> np.ndarray | None:
    """
    Unfold one pseudo-measurement.

    Only the measured vector changes; response, errors and covariance are
    those of the nominal inputs. The toy runs on a copy of the strategy so
    state kept between calls never reaches the nominal instance.

    Returns:
        Reconstructed vector, or None if the strategy failed
    """
    rec = strategy.copy().unfold(inputs.with_measured(perturbed))
    if rec is None or len(rec) != inputs.n_truth:
        return None
    return np.asarray(rec, dtype=float)


class ToyAccumulator:
    """
    Running first and second moments of toy results

    Attributes:
        n: Length of each result vector
        count: Number of results added
    """

    def __init__(self, n: int) -> None:
        self.n: int = n
        self.count: int = 0
        self._sum: np.ndarray = np.zeros(n)
        self._sum2: np.ndarray = np.zeros((n, n))

    def add(self, x: np.ndarray) -> None:
        x = np.asarray(x, dtype=float)
        self._sum += x
        self._sum2 += np.outer(x, x)
        self.count += 1

    def mean(self) -> np.ndarray | None:
        if self.count == 0:
            return None
        return self._sum / self.count

    def covariance(self) -> np.ndarray | None:
        """(sum x_i x_j - sum x_i sum x_j / N) / (N - 1), or None with fewer than 2 toys."""
        if self.count <= 1:
            return None
        return (self._sum2 - np.outer(self._sum, self._sum) / self.count) / (self.count - 1)
