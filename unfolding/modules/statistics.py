"""
Statistical helpers for the unfolding engine

Goodness-of-fit (pull and covariance chi-squared), the lazy Poisson
log-likelihood of a folded result, zero-information pruning of covariance
matrices, and small matrix utilities.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from scipy import linalg
from scipy.special import gammaln

from .histogram import Histogram

# Condition number above which a covariance solve is flagged as unreliable
CONDITION_MAX: float = 1e17

# Determinant magnitude below which a covariance matrix is flagged as degenerate
SMALL_DETERMINANT: float = 1e-5


@dataclass
class Chi2Result:
    """
    Outcome of a covariance chi-squared computation.

    Attributes:
        value: r^T V^-1 r
        condition: Ratio of largest to smallest singular value of the reduced covariance
        determinant: Determinant of the reduced covariance
        n_used: Size of the reduced system
    """

    value: float
    condition: float
    determinant: float
    n_used: int

    @property
    def small_determinant(self) -> bool:
        return abs(self.determinant) < SMALL_DETERMINANT

    @property
    def ill_conditioned(self) -> bool:
        return self.condition >= CONDITION_MAX


def zero_rows(matrix: np.ndarray) -> np.ndarray:
    """Boolean mask of rows whose elements sum to exactly zero."""
    return np.asarray(matrix, dtype=float).sum(axis=1) == 0.0


def cut_zeros(matrix: np.ndarray) -> np.ndarray:
    """
    Remove every row and matching column whose row sums to exactly zero.

    The remaining rows/columns keep their order, e.g. diag(4, 0, 9) becomes
    diag(4, 9).
    """
    matrix = np.asarray(matrix, dtype=float)
    keep = ~zero_rows(matrix)
    return matrix[np.ix_(keep, keep)]


def abat(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Return A B A^T."""
    a = np.asarray(a, dtype=float)
    return a @ np.asarray(b, dtype=float) @ a.T


def propagate_measured_cov(cov_measured: np.ndarray, n_truth: int) -> np.ndarray:
    """
    Placeholder covariance: the measured covariance copied into an
    n_truth x n_truth matrix over the overlapping bin range.
    """
    cov_measured = np.asarray(cov_measured, dtype=float)
    nb = min(cov_measured.shape[0], n_truth)
    cov = np.zeros((n_truth, n_truth))
    cov[:nb, :nb] = cov_measured[:nb, :nb]
    return cov


def _reference_mask(true_values: np.ndarray, true_errors: np.ndarray) -> np.ndarray:
    # bins with no reference content and no reference error carry no information
    return (true_values != 0.0) | (true_errors > 0.0)


def pull_chi2(
    rec: np.ndarray,
    errors: np.ndarray,
    true_values: np.ndarray,
    true_errors: np.ndarray,
) -> float:
    """
    Sum of squared pulls ((rec - true) / error)^2.

    Only bins with a positive error and a nonzero reference content or
    positive reference error contribute.
    """
    rec = np.asarray(rec, dtype=float)
    errors = np.asarray(errors, dtype=float)
    true_values = np.asarray(true_values, dtype=float)
    true_errors = np.asarray(true_errors, dtype=float)

    use = (errors > 0.0) & _reference_mask(true_values, true_errors)
    pulls = (rec[use] - true_values[use]) / errors[use]
    return float(np.sum(pulls**2))


def covariance_chi2(
    rec: np.ndarray,
    cov: np.ndarray,
    true_values: np.ndarray,
    true_errors: np.ndarray,
) -> Chi2Result:
    """
    Chi-squared r^T V^-1 r using the full covariance matrix.

    Residuals are set only where the reference has content or error. Rows
    and columns of V that sum to zero are excised (the same indices are
    dropped from the residual) and the reduced system is solved by
    singular value decomposition, discarding vanishing singular values.

    Args:
        rec: Reconstructed vector
        cov: Covariance matrix of rec
        true_values: Reference contents
        true_errors: Reference errors

    Returns:
        Chi2Result with the value and the diagnostics of the reduced covariance
    """
    rec = np.asarray(rec, dtype=float)
    cov = np.asarray(cov, dtype=float)
    true_values = np.asarray(true_values, dtype=float)
    true_errors = np.asarray(true_errors, dtype=float)

    residual = np.where(_reference_mask(true_values, true_errors), rec - true_values, 0.0)

    keep = ~zero_rows(cov)
    cov_cut = cov[np.ix_(keep, keep)]
    if cov_cut.shape[0] == 0:
        return Chi2Result(0.0, 0.0, 0.0, 0)
    res_cut = residual[keep]

    determinant = float(linalg.det(cov_cut))
    u, s, vt = linalg.svd(cov_cut)
    condition = float(s[0] / s[-1]) if s[-1] > 0.0 else np.inf

    tol = s[0] * max(cov_cut.shape) * np.finfo(float).eps
    inv_s = np.zeros_like(s)
    inv_s[s > tol] = 1.0 / s[s > tol]
    solved = vt.T @ (inv_s * (u.T @ res_cut))

    return Chi2Result(float(res_cut @ solved), condition, determinant, cov_cut.shape[0])


def poisson_log_likelihood(observed: Histogram, expected: Histogram) -> float:
    """
    Lazy Poisson log-likelihood sum(x ln(mu) - ln Gamma(x + 1) - mu).

    The sum runs over global bins 1 .. nx*ny - 1 of the observed histogram
    (so for 1D the last nominal bin is not included) and only where both
    the observed x and the expected mu are strictly positive.
    """
    nbins = observed.nbins_x * observed.nbins_y
    bins = range(1, nbins)
    x = np.array([observed.get_bin_content(b) for b in bins])
    mu = np.array([expected.get_bin_content(b) for b in bins])

    use = (x > 0.0) & (mu > 0.0)
    x, mu = x[use], mu[use]
    return float(np.sum(x * np.log(mu) - gammaln(x + 1.0) - mu))
