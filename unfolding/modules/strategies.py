"""
Unfolding algorithm strategies

The engine delegates the actual unfolding to a strategy object chosen at
configuration time. A strategy receives an immutable UnfoldInputs bundle
and returns the reconstructed truth-level vector (or None on failure). It
may also supply its own covariance or variances; when it does not, the
engine falls back to its base propagation.

Built-in strategies:
- DummyStrategy (Algorithm.NONE): copies the measured vector
- BinByBinStrategy: correction factors from the training sample
- InvertStrategy: (pseudo-)inverse of the response matrix

The iterative Bayes, SVD, TUnfold and D'Agostini kinds are recognised but
only available once a strategy for them is registered with
register_algorithm().
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Callable

import numpy as np
from scipy import linalg

from .response import ResponseMatrix
from .statistics import abat

logger = logging.getLogger("Unfolding.Strategy")


class Algorithm(IntEnum):
    """Closed set of unfolding methods."""

    NONE = 0
    BAYES = 1
    SVD = 2
    BIN_BY_BIN = 3
    TUNFOLD = 4
    INVERT = 5
    DAGOSTINI = 6


@dataclass(frozen=True)
class UnfoldInputs:
    """
    Everything a strategy may use to unfold one measurement.

    Attributes:
        response: Response matrix
        measured: Measured vector, length n_measured
        errors: Measured errors, length n_measured
        covariance: Measured covariance, n_measured x n_measured
        n_measured: Logical measured bins (overflow included when used)
        n_truth: Logical truth bins (overflow included when used)
        overflow: Whether under/overflow cells are unfolded
        verbose: Verbosity of the owning engine
    """

    response: ResponseMatrix
    measured: np.ndarray
    errors: np.ndarray
    covariance: np.ndarray
    n_measured: int
    n_truth: int
    overflow: bool
    verbose: int = 1

    def with_measured(self, measured: np.ndarray) -> "UnfoldInputs":
        """Same inputs with a different measured vector (used for toys)."""
        return replace(self, measured=np.asarray(measured, dtype=float))


class UnfoldStrategy(ABC):
    """
    Interface shared by all unfolding algorithms

    Attributes:
        algorithm: Algorithm kind implemented
        min_parm: Suggested minimum regularisation parameter
        max_parm: Suggested maximum regularisation parameter
        step_size_parm: Suggested regularisation scan step
        default_parm: Suggested regularisation parameter
    """

    algorithm: Algorithm = Algorithm.NONE

    def __init__(self) -> None:
        self.min_parm: float = 0.0
        self.max_parm: float = 0.0
        self.step_size_parm: float = 0.0
        self.default_parm: float = 0.0

    @property
    def reg_parm(self) -> float:
        """Regularisation parameter; -1 when the method has none."""
        return -1.0

    @reg_parm.setter
    def reg_parm(self, value: float) -> None:
        logger.debug(f"{type(self).__name__} has no regularisation parameter, ignoring {value}")

    @abstractmethod
    def unfold(self, inputs: UnfoldInputs) -> np.ndarray | None:
        """
        Reconstruct the truth-level vector.

        Returns:
            Vector of length inputs.n_truth, or None if unfolding failed
        """

    def covariance(self, inputs: UnfoldInputs, rec: np.ndarray) -> np.ndarray | None:
        """Covariance of rec, or None to use the engine's base propagation."""
        return None

    def variances(self, inputs: UnfoldInputs, rec: np.ndarray) -> np.ndarray | None:
        """Variances of rec when cheaper than the covariance, or None."""
        return None

    def copy(self) -> "UnfoldStrategy":
        return copy.deepcopy(self)


class DummyStrategy(UnfoldStrategy):
    """Dummy unfolding: the measured vector is copied into the truth binning."""

    algorithm = Algorithm.NONE

    def unfold(self, inputs: UnfoldInputs) -> np.ndarray:
        if inputs.verbose >= 1:
            logger.info("Dummy unfolding - just copy input")
        rec = np.zeros(inputs.n_truth)
        nb = min(inputs.n_measured, inputs.n_truth)
        rec[:nb] = inputs.measured[:nb]
        return rec


class BinByBinStrategy(UnfoldStrategy):
    """
    Bin-by-bin correction factors truth_train / measured_train.

    Requires identical measured and truth binning; cannot account for
    migrations between bins.
    """

    algorithm = Algorithm.BIN_BY_BIN

    def _factors(self, inputs: UnfoldInputs) -> np.ndarray:
        measured = inputs.response.measured_vector()
        truth = inputs.response.truth_vector()
        factors = np.zeros(inputs.n_truth)
        nonzero = measured != 0.0
        factors[nonzero] = truth[nonzero] / measured[nonzero]
        return factors

    def unfold(self, inputs: UnfoldInputs) -> np.ndarray | None:
        if inputs.n_measured != inputs.n_truth:
            logger.error(
                f"Bin-by-bin unfolding needs identical binning, got {inputs.n_measured} "
                f"measured and {inputs.n_truth} truth bins"
            )
            return None
        return self._factors(inputs) * inputs.measured

    def covariance(self, inputs: UnfoldInputs, rec: np.ndarray) -> np.ndarray:
        factors = self._factors(inputs)
        return np.outer(factors, factors) * inputs.covariance

    def variances(self, inputs: UnfoldInputs, rec: np.ndarray) -> np.ndarray:
        return self._factors(inputs) ** 2 * inputs.errors**2


class InvertStrategy(UnfoldStrategy):
    """
    Unfolding by inverting the response matrix.

    Uses the SVD pseudo-inverse, so non-square responses are solved in the
    least-squares sense. Useful mainly to show why regularised methods are
    needed: with low statistics the result oscillates strongly.
    """

    algorithm = Algorithm.INVERT

    def _inverse(self, inputs: UnfoldInputs) -> np.ndarray | None:
        response = inputs.response.response_matrix()
        if not np.any(response):
            logger.error("Response matrix is empty, cannot invert")
            return None
        try:
            return linalg.pinv(response)
        except linalg.LinAlgError as e:
            logger.error(f"Response matrix inversion failed: {e}")
            return None

    def unfold(self, inputs: UnfoldInputs) -> np.ndarray | None:
        rinv = self._inverse(inputs)
        if rinv is None:
            return None
        return rinv @ inputs.measured

    def covariance(self, inputs: UnfoldInputs, rec: np.ndarray) -> np.ndarray | None:
        rinv = self._inverse(inputs)
        if rinv is None:
            return None
        return abat(rinv, inputs.covariance)


_REGISTRY: dict[Algorithm, Callable[[], UnfoldStrategy]] = {
    Algorithm.NONE: DummyStrategy,
    Algorithm.BIN_BY_BIN: BinByBinStrategy,
    Algorithm.INVERT: InvertStrategy,
}


def register_algorithm(algorithm: Algorithm, factory: Callable[[], UnfoldStrategy]) -> None:
    """Make an algorithm kind available to create()."""
    _REGISTRY[Algorithm(algorithm)] = factory


def unregister_algorithm(algorithm: Algorithm) -> None:
    _REGISTRY.pop(Algorithm(algorithm), None)


def available_algorithms() -> list[Algorithm]:
    return sorted(_REGISTRY)


def make_strategy(algorithm: int) -> UnfoldStrategy | None:
    """
    Instantiate the strategy for an algorithm kind.

    Unknown kinds and kinds with no registered strategy are reported at
    error level and yield None.
    """
    try:
        kind = Algorithm(algorithm)
    except ValueError:
        logger.error(f"Unknown unfolding method {algorithm}")
        return None

    factory = _REGISTRY.get(kind)
    if factory is None:
        logger.error(f"Unfolding method {kind.name} is not available")
        return None
    return factory()
