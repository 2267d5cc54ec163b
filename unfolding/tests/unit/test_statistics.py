"""
Unit tests for chi-squared, log-likelihood and matrix helpers.
"""

from __future__ import annotations

import numpy as np
import pytest
from scipy.special import gammaln

from unfolding.modules.histogram import Histogram
from unfolding.modules.statistics import (
    CONDITION_MAX,
    Chi2Result,
    abat,
    covariance_chi2,
    cut_zeros,
    poisson_log_likelihood,
    propagate_measured_cov,
    pull_chi2,
    zero_rows,
)
from unfolding.tests.utils.test_helpers import assert_arrays_close


@pytest.mark.unit
class TestMatrixHelpers:
    """Test cut_zeros, abat and the placeholder covariance."""

    def test_cut_zeros_removes_zero_row_and_column(self) -> None:
        assert_arrays_close(cut_zeros(np.diag([4.0, 0.0, 9.0])), np.diag([4.0, 9.0]))

    def test_cut_zeros_keeps_order_and_off_diagonals(self) -> None:
        m = np.array([
            [1.0, 0.0, 2.0],
            [0.0, 0.0, 0.0],
            [2.0, 0.0, 5.0],
        ])

        assert_arrays_close(cut_zeros(m), [[1.0, 2.0], [2.0, 5.0]])

    def test_cut_zeros_nothing_to_cut(self) -> None:
        m = np.array([[2.0, 1.0], [1.0, 2.0]])

        assert_arrays_close(cut_zeros(m), m)

    def test_zero_rows_uses_row_sum(self) -> None:
        m = np.array([[1.0, -1.0], [0.0, 3.0]])

        assert list(zero_rows(m)) == [True, False]

    def test_abat(self) -> None:
        a = np.array([[1.0, 2.0], [0.0, 1.0]])
        b = np.array([[1.0, 0.0], [0.0, 2.0]])

        assert_arrays_close(abat(a, b), a @ b @ a.T)

    def test_propagate_measured_cov_truncates(self) -> None:
        cov = np.diag([1.0, 2.0, 3.0])

        assert_arrays_close(propagate_measured_cov(cov, 2), np.diag([1.0, 2.0]))

    def test_propagate_measured_cov_pads(self) -> None:
        cov = np.diag([1.0, 2.0])

        assert_arrays_close(propagate_measured_cov(cov, 3), np.diag([1.0, 2.0, 0.0]))


@pytest.mark.unit
class TestPullChi2:
    """Test the bin-by-bin chi-squared."""

    def test_sum_of_pulls(self) -> None:
        rec = np.array([10.0, 20.0, 30.0])
        errors = np.array([1.0, 2.0, 3.0])
        true = np.array([11.0, 22.0, 27.0])

        assert pull_chi2(rec, errors, true, np.zeros(3)) == pytest.approx(1.0 + 1.0 + 1.0)

    def test_zero_error_bins_skipped(self) -> None:
        rec = np.array([10.0, 20.0])
        errors = np.array([0.0, 2.0])
        true = np.array([0.0, 22.0])

        assert pull_chi2(rec, errors, true, np.zeros(2)) == pytest.approx(1.0)

    def test_empty_reference_bins_skipped(self) -> None:
        rec = np.array([10.0, 20.0])
        errors = np.array([1.0, 1.0])
        true = np.array([0.0, 20.0])

        assert pull_chi2(rec, errors, true, np.zeros(2)) == 0.0


@pytest.mark.unit
class TestCovarianceChi2:
    """Test the covariance chi-squared."""

    def test_identical_reference_gives_zero(self) -> None:
        rec = np.array([10.0, 20.0, 30.0])

        result = covariance_chi2(rec, np.diag(rec), rec, np.sqrt(rec))

        assert result.value == pytest.approx(0.0)
        assert result.n_used == 3

    def test_diagonal_matches_pull_chi2(self) -> None:
        rec = np.array([10.0, 20.0, 30.0])
        true = np.array([12.0, 18.0, 33.0])
        cov = np.diag([4.0, 4.0, 9.0])

        result = covariance_chi2(rec, cov, true, np.zeros(3))

        assert result.value == pytest.approx(1.0 + 1.0 + 1.0)
        assert result.determinant == pytest.approx(144.0)
        assert result.condition == pytest.approx(9.0 / 4.0)
        assert not result.small_determinant
        assert not result.ill_conditioned

    def test_correlated_covariance(self) -> None:
        rec = np.array([1.0, 2.0])
        true = np.zeros(2)
        cov = np.array([[2.0, 1.0], [1.0, 2.0]])
        # reference bins are empty, so no residual survives
        assert covariance_chi2(rec, cov, true, np.zeros(2)).value == 0.0

        true = np.array([0.5, 0.5])
        residual = rec - true
        expected = residual @ np.linalg.inv(cov) @ residual

        assert covariance_chi2(rec, cov, true, np.zeros(2)).value == pytest.approx(expected)

    def test_zero_rows_pruned(self) -> None:
        rec = np.array([10.0, 5.0, 30.0])
        true = np.array([12.0, 1.0, 33.0])
        cov = np.diag([4.0, 0.0, 9.0])

        result = covariance_chi2(rec, cov, true, np.zeros(3))

        assert result.n_used == 2
        assert result.value == pytest.approx(2.0)

    def test_all_zero_covariance(self) -> None:
        result = covariance_chi2(np.ones(3), np.zeros((3, 3)), np.ones(3), np.ones(3))

        assert result == Chi2Result(0.0, 0.0, 0.0, 0)

    def test_small_determinant_flag(self) -> None:
        result = covariance_chi2(np.ones(2), np.diag([1e-3, 1e-3]), np.ones(2), np.zeros(2))

        assert result.small_determinant

    def test_near_singular_covariance_is_ill_conditioned(self) -> None:
        cov = np.diag([1.0, 1e-18])

        result = covariance_chi2(np.array([2.0, 2.0]), cov, np.ones(2), np.zeros(2))

        assert result.condition >= CONDITION_MAX
        assert result.ill_conditioned
        assert np.isfinite(result.value)


@pytest.mark.unit
class TestPoissonLogLikelihood:
    """Test the lazy Poisson log-likelihood."""

    def test_1d_excludes_last_bin(self) -> None:
        observed = Histogram(np.arange(4.0), values=[2.0, 3.0, 4.0])
        expected = Histogram(np.arange(4.0), values=[2.5, 3.5, 100.0])

        ll = poisson_log_likelihood(observed, expected)

        x = np.array([2.0, 3.0])
        mu = np.array([2.5, 3.5])
        assert ll == pytest.approx(np.sum(x * np.log(mu) - gammaln(x + 1.0) - mu))

    def test_non_positive_bins_skipped(self) -> None:
        observed = Histogram(np.arange(4.0), values=[0.0, 3.0, 4.0])
        expected = Histogram(np.arange(4.0), values=[1.0, -1.0, 4.0])

        assert poisson_log_likelihood(observed, expected) == 0.0
