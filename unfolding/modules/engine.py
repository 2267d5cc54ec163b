"""
Unfolding engine

Corrects a measured binned distribution for detector smearing and
efficiency using a response matrix. The engine owns the bookkeeping that
is common to every method; the method itself is a strategy object (see
strategies.py) selected at construction time or through create().

Unfolding is lazy: nothing runs until a result or an error estimate is
requested. The reconstructed vector and each of the error estimates are
computed at most once per configuration and cached in an UnfoldResult.
Rebinding the response or the measured distribution drops the cache.

Error treatments (ErrorTreatment):
    NO_ERROR   - no error estimate; errors taken as sqrt(content) where needed
    ERRORS     - variances (diagonal of the unfolding covariance)
    COVARIANCE - full covariance from the unfolding method
    COV_TOY    - full covariance from the spread of toy MC unfoldings

If a method cannot unfold the input the engine enters a failed state and
every later request returns immediately without retrying.

Example:
    >>> engine = create(Algorithm.INVERT, response, measured, n_toys=200)
    >>> reco = engine.hreco(ErrorTreatment.COVARIANCE)
    >>> engine.print_table(sys.stdout, truth, ErrorTreatment.COVARIANCE)
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import TextIO

import numpy as np
import pandas as pd
from tqdm import tqdm

from ..utils.logging_config import get_tqdm_kwargs
from .exceptions import BinningError, ConfigurationError, DecompositionError
from .histogram import Histogram, get_bin
from .response import ResponseMatrix
from .statistics import covariance_chi2, poisson_log_likelihood, propagate_measured_cov, pull_chi2
from .strategies import Algorithm, DummyStrategy, UnfoldInputs, UnfoldStrategy, make_strategy
from .toys import ToyAccumulator, ToyPolicy, cholesky_lower, draw_measurement, run_toy

# Regularisation parameter value meaning "leave the method default"
REGPARM_UNSET: float = -1e30


class ErrorTreatment(IntEnum):
    """Which error estimate to compute and use."""

    NO_ERROR = 0
    ERRORS = 1
    COVARIANCE = 2
    COV_TOY = 3


@dataclass
class UnfoldResult:
    """
    Result of one unfolding and its lazily filled error caches.

    Attributes:
        rec: Reconstructed truth-level vector
        variances: Variances of rec (ERRORS)
        cov: Covariance of rec from the method (COVARIANCE)
        err_mat: Covariance of rec from toy MC (COV_TOY)
    """

    rec: np.ndarray
    variances: np.ndarray | None = None
    cov: np.ndarray | None = None
    err_mat: np.ndarray | None = None


class UnfoldingEngine:
    """
    Binned unfolding with lazy evaluation and cached error estimates

    Attributes:
        name: Engine name (defaults to the response name)
        title: Engine title (defaults to "Unfold <response title>")
        strategy: Unfolding method
        rng: Random generator used for toys (shared with clones)
        toy_policy: Per-bin toy resampling scheme
        n_toys: Number of toys for COV_TOY
        verbose: 0 quiet, 1 warnings and summaries, 2 debug output
    """

    DEFAULT_NTOYS: int = 50

    def __init__(
        self,
        response: ResponseMatrix | None = None,
        measured: Histogram | None = None,
        strategy: UnfoldStrategy | None = None,
        name: str = "",
        title: str = "",
        *,
        rng: np.random.Generator | None = None,
        toy_policy: ToyPolicy = ToyPolicy.POISSON,
        n_toys: int = DEFAULT_NTOYS,
        verbose: int = 1,
    ) -> None:
        """
        Initialize unfolding engine.

        Args:
            response: Response matrix (not owned)
            measured: Measured distribution (not owned)
            strategy: Unfolding method (default: DummyStrategy, copies the input)
            name: Engine name
            title: Engine title
            rng: Random generator for toys (default: fresh unseeded generator)
            toy_policy: Per-bin toy resampling scheme
            n_toys: Number of toys for the COV_TOY treatment
            verbose: Verbosity level
        """
        self.logger = logging.getLogger("Unfolding.Engine")
        self.name: str = name
        self.title: str = title
        self.strategy: UnfoldStrategy = strategy if strategy is not None else DummyStrategy()
        self.rng: np.random.Generator = rng if rng is not None else np.random.default_rng()
        self.toy_policy: ToyPolicy = ToyPolicy(toy_policy)
        self.n_toys: int = int(n_toys)
        self.verbose: int = int(verbose)

        self._init_state()
        if response is not None:
            self.setup(response, measured)

    def _init_state(self) -> None:
        self._response: ResponseMatrix | None = None
        self._meas: Histogram | None = None
        self._meas_mine: Histogram | None = None
        self._cov_mes: np.ndarray | None = None
        self._cov_l: np.ndarray | None = None
        self._nm: int = 0
        self._nt: int = 0
        self._overflow: bool = False
        self._result: UnfoldResult | None = None
        self._failed: bool = False
        self._ll: float = 0.0

    def _invalidate(self) -> None:
        self._result = None
        self._failed = False
        self._ll = 0.0

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop all configuration-dependent state (settings are kept)."""
        self._init_state()

    def setup(self, response: ResponseMatrix, measured: Histogram | None) -> "UnfoldingEngine":
        """
        Bind a response matrix and a measured distribution.

        Every cache is reset, so this can be called repeatedly to reconfigure.
        """
        self.reset()
        self.set_response(response)
        if measured is not None:
            self.set_measured(measured)
        return self

    def set_response(self, response: ResponseMatrix) -> None:
        """
        Set the response matrix and derive the logical bin counts.

        If the measured binning changes, measured values set from vectors and
        the measured covariance no longer fit and are dropped.
        """
        old_binning = (self._nm, self._nt, self._overflow)
        self._response = response
        self._overflow = response.uses_overflow()
        self._nm = response.n_measured_bins
        self._nt = response.n_truth_bins
        if self._overflow:
            self._nm += 2
            self._nt += 2
        if old_binning != (self._nm, self._nt, self._overflow):
            self._drop_measured_vectors()
        self._set_name_title_default()
        self._invalidate()

    def _drop_measured_vectors(self) -> None:
        if self._meas is not None and self._meas is self._meas_mine:
            self._meas = None
        self._meas_mine = None
        self._cov_mes = None
        self._cov_l = None

    def _set_name_title_default(self) -> None:
        if not self.name:
            self.name = self._response.name
        if not self.title:
            self.title = f"Unfold {self._response.title}"

    def set_measured(self, measured: Histogram) -> None:
        """Set the measured distribution and its errors. The histogram is not owned."""
        self._meas = measured
        self._invalidate()

    def set_measured_values(self, values: np.ndarray, errors: np.ndarray) -> None:
        """
        Set the measured distribution from vectors.

        Values and errors are written into an internal copy of the response's
        measured template, so the response must be set first.
        """
        if self._response is None:
            raise ConfigurationError("Response matrix must be set before measured vectors")
        values = np.asarray(values, dtype=float)
        errors = np.asarray(errors, dtype=float)
        if len(values) != self._nm or len(errors) != self._nm:
            raise BinningError(
                f"Measured vectors of length {len(values)}/{len(errors)} "
                f"do not match {self._nm} measured bins"
            )

        if self._meas_mine is None:
            self._meas_mine = self._response.measured.clone(self.name)
            self._meas_mine.reset()
            self._meas_mine.title = self.title
        for i in range(self._nm):
            j = get_bin(self._meas_mine, i, self._overflow)
            self._meas_mine.set_bin_content(j, values[i])
            self._meas_mine.set_bin_error(j, errors[i])
        self.set_measured(self._meas_mine)

    def set_measured_cov(self, cov: np.ndarray) -> None:
        """Set the covariance matrix of the measured distribution."""
        cov = np.array(cov, dtype=float)
        if cov.shape != (self._nm, self._nm):
            raise BinningError(
                f"Measured covariance of shape {cov.shape} does not match {self._nm} measured bins"
            )
        self._cov_mes = cov
        self._cov_l = None
        self._invalidate()

    def set_measured_with_cov(self, values: np.ndarray, cov: np.ndarray) -> None:
        """Set the measured distribution and its full covariance matrix."""
        self.set_measured_cov(cov)
        self.set_measured_values(values, self.measured_errors)

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def response(self) -> ResponseMatrix | None:
        return self._response

    @property
    def measured(self) -> Histogram | None:
        return self._meas

    @property
    def n_measured_bins(self) -> int:
        return self._nm

    @property
    def n_truth_bins(self) -> int:
        return self._nt

    @property
    def overflow(self) -> bool:
        return self._overflow

    @property
    def unfolded(self) -> bool:
        return self._result is not None

    @property
    def failed(self) -> bool:
        return self._failed

    @property
    def have_errors(self) -> bool:
        return self._result is not None and self._result.variances is not None

    @property
    def have_cov(self) -> bool:
        return self._result is not None and self._result.cov is not None

    @property
    def have_err_mat(self) -> bool:
        return self._result is not None and self._result.err_mat is not None

    @property
    def have_cov_mes(self) -> bool:
        return self._cov_mes is not None

    @property
    def log_likelihood(self) -> float:
        """Poisson log-likelihood of the folded result; filled by hreco()."""
        return self._ll

    @property
    def measured_values(self) -> np.ndarray:
        if self._meas is None:
            return np.zeros(self._nm)
        return np.array(
            [self._meas.get_bin_content(get_bin(self._meas, i, self._overflow)) for i in range(self._nm)]
        )

    @property
    def measured_errors(self) -> np.ndarray:
        if self._cov_mes is not None:
            diag = np.diag(self._cov_mes)
            return np.where(diag > 0.0, np.sqrt(np.clip(diag, 0.0, None)), 0.0)
        if self._meas is None:
            return np.zeros(self._nm)
        return np.array(
            [self._meas.get_bin_error(get_bin(self._meas, i, self._overflow)) for i in range(self._nm)]
        )

    @property
    def measured_cov(self) -> np.ndarray:
        """Measured covariance, or the diagonal of the squared errors if none was set."""
        if self._cov_mes is not None:
            return self._cov_mes.copy()
        return np.diag(self.measured_errors**2)

    @property
    def reg_parm(self) -> float:
        return self.strategy.reg_parm

    @reg_parm.setter
    def reg_parm(self, value: float) -> None:
        self.strategy.reg_parm = value
        self._invalidate()

    @property
    def min_parm(self) -> float:
        return self.strategy.min_parm

    @property
    def max_parm(self) -> float:
        return self.strategy.max_parm

    @property
    def step_size_parm(self) -> float:
        return self.strategy.step_size_parm

    @property
    def default_parm(self) -> float:
        return self.strategy.default_parm

    @property
    def algorithm(self) -> Algorithm:
        return self.strategy.algorithm

    def _inputs(self) -> UnfoldInputs:
        return UnfoldInputs(
            response=self._response,
            measured=self.measured_values,
            errors=self.measured_errors,
            covariance=self.measured_cov,
            n_measured=self._nm,
            n_truth=self._nt,
            overflow=self._overflow,
            verbose=self.verbose,
        )

    # ------------------------------------------------------------------
    # Unfolding
    # ------------------------------------------------------------------

    def _check_binning(self) -> None:
        rmeas = self._response.measured
        meas = self._meas
        if (
            meas.dimension != rmeas.dimension
            or meas.nbins_x != rmeas.nbins_x
            or meas.nbins_y != rmeas.nbins_y
            or meas.nbins_z != rmeas.nbins_z
        ):
            self.logger.warning(
                f"Measured {'x'.join(map(str, meas.nominal_shape))}-bin histogram does not match "
                f"{'x'.join(map(str, rmeas.nominal_shape))}-bin measured histogram from response"
            )

    def _unfold(self) -> None:
        rec = self.strategy.unfold(self._inputs())
        if rec is None:
            self.logger.error(f"{type(self.strategy).__name__} failed to unfold '{self.name}'")
            return
        rec = np.asarray(rec, dtype=float)
        if rec.shape != (self._nt,):
            self.logger.error(
                f"{type(self.strategy).__name__} returned {rec.shape} result, expected ({self._nt},)"
            )
            return
        self._result = UnfoldResult(rec=rec)

    def unfold_with_errors(self, treatment: ErrorTreatment = ErrorTreatment.NO_ERROR) -> bool:
        """
        Unfold (once) and make sure the requested error estimate is available.

        Args:
            treatment: Error estimate required

        Returns:
            True if the result and the requested error estimate are available
        """
        if self._result is None:
            if self._failed:
                return False
            if self._response is None or self._meas is None:
                self.logger.error("Response matrix and measured distribution must be set before unfolding")
                return False
            self._check_binning()
            self._unfold()
            if self._result is None:
                self._failed = True
                return False

        if treatment == ErrorTreatment.ERRORS:
            if self._result.variances is None:
                self._compute_errors()
            return self._result.variances is not None
        if treatment == ErrorTreatment.COVARIANCE:
            if self._result.cov is None:
                self._compute_cov()
            return self._result.cov is not None
        if treatment == ErrorTreatment.COV_TOY:
            if self._result.err_mat is None:
                self._compute_err_mat()
            return self._result.err_mat is not None
        return True

    def _compute_errors(self) -> None:
        variances = self.strategy.variances(self._inputs(), self._result.rec)
        if variances is None:
            if self._result.cov is None:
                self._compute_cov()
            if self._result.cov is None:
                return
            variances = np.diag(self._result.cov).copy()
        self._result.variances = np.asarray(variances, dtype=float)

    def _compute_cov(self) -> None:
        cov = self.strategy.covariance(self._inputs(), self._result.rec)
        if cov is None:
            cov = propagate_measured_cov(self.measured_cov, self._nt)
        self._result.cov = np.asarray(cov, dtype=float)

    def _measured_cov_lower(self) -> np.ndarray | None:
        if self._cov_l is None:
            try:
                self._cov_l = cholesky_lower(self._cov_mes)
            except DecompositionError as e:
                self.logger.error(f"Cannot generate correlated toys for '{self.name}': {e}")
                return None
            if self.verbose >= 2:
                self.logger.debug(f"Decomposed measurement covariance matrix:\n{self._cov_l}")
        return self._cov_l

    def _compute_err_mat(self) -> None:
        """Covariance from the variation of the results in toy MC tests."""
        if self.n_toys <= 1:
            return
        inputs = replace(self._inputs(), verbose=0)
        cov_lower = None
        if self.have_cov_mes:
            cov_lower = self._measured_cov_lower()
            if cov_lower is None:
                return

        acc = ToyAccumulator(self._nt)
        n_failed = 0
        for _ in tqdm(range(self.n_toys), **get_tqdm_kwargs(f"Toys {self.name}")):
            perturbed = draw_measurement(
                inputs.measured, inputs.errors, self.rng, self.toy_policy, cov_lower
            )
            x = run_toy(self.strategy, inputs, perturbed)
            if x is None:
                n_failed += 1
                continue
            acc.add(x)

        if n_failed and self.verbose >= 1:
            self.logger.warning(f"{n_failed} of {self.n_toys} toys failed to unfold and were skipped")
        err_mat = acc.covariance()
        if err_mat is None:
            self.logger.warning(f"Too few successful toys ({acc.count}) for a toy covariance")
            return
        self._result.err_mat = err_mat

    def run_toy(self, name: str | None = None) -> "UnfoldingEngine | None":
        """
        New engine bound to one resampled pseudo-measurement.

        Returns:
            Toy engine (not yet unfolded), or None if the measured covariance
            cannot be decomposed
        """
        toy = self.clone(name or f"{self.name}_toy")
        if self.have_cov_mes:
            cov_lower = self._measured_cov_lower()
            if cov_lower is None:
                return None
            newmeas = draw_measurement(
                self.measured_values, self.measured_errors, self.rng, self.toy_policy, cov_lower
            )
            toy.set_measured_with_cov(newmeas, self._cov_mes)
        else:
            errors = self.measured_errors
            newmeas = draw_measurement(self.measured_values, errors, self.rng, self.toy_policy)
            toy.set_measured_values(newmeas, errors)
        return toy

    def clone(self, name: str | None = None) -> "UnfoldingEngine":
        """
        Copy of the configuration with empty caches.

        Response and non-owned measured histogram are shared; an owned
        measured histogram, the measured covariance and the strategy are
        copied. The random generator is shared so draws continue one stream.
        """
        other = UnfoldingEngine(
            strategy=self.strategy.copy(),
            name=name if name is not None else self.name,
            title=self.title,
            rng=self.rng,
            toy_policy=self.toy_policy,
            n_toys=self.n_toys,
            verbose=self.verbose,
        )
        if self._response is None:
            return other
        other.set_response(self._response)
        if self._cov_mes is not None:
            other.set_measured_cov(self._cov_mes)
        if self._meas is not None:
            if self._meas is self._meas_mine:
                other._meas_mine = self._meas_mine.clone()
                other.set_measured(other._meas_mine)
            else:
                other.set_measured(self._meas)
        return other

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    @property
    def vreco(self) -> np.ndarray:
        """Reconstructed vector (zeros if unfolding failed)."""
        if not self.unfold_with_errors(ErrorTreatment.NO_ERROR):
            return np.zeros(self._nt)
        return self._result.rec.copy()

    def ereco(self, treatment: ErrorTreatment = ErrorTreatment.COVARIANCE) -> np.ndarray:
        """
        Covariance matrix of the result for the given treatment.

        NO_ERROR gives diag(rec) (Poisson errors), ERRORS the diagonal matrix
        of variances. A zero matrix is returned if the estimate is unavailable.
        """
        ereco = np.zeros((self._nt, self._nt))
        if not self.unfold_with_errors(treatment):
            return ereco
        if treatment == ErrorTreatment.NO_ERROR:
            ereco = np.diag(self._result.rec)
        elif treatment == ErrorTreatment.ERRORS:
            ereco = np.diag(self._result.variances)
        elif treatment == ErrorTreatment.COVARIANCE:
            ereco = self._result.cov.copy()
        elif treatment == ErrorTreatment.COV_TOY:
            ereco = self._result.err_mat.copy()
        else:
            self.logger.error(f"Unrecognised error method {treatment}")
        return ereco

    def ereco_v(self, treatment: ErrorTreatment = ErrorTreatment.ERRORS) -> np.ndarray:
        """Vector of errors on the result for the given treatment."""
        if not self.unfold_with_errors(treatment):
            return np.zeros(self._nt)
        if treatment not in tuple(ErrorTreatment):
            self.logger.error(f"Unrecognised error method {treatment}")
            return np.zeros(self._nt)
        return np.sqrt(np.abs(np.diag(self.ereco(treatment))))

    def hreco(self, treatment: ErrorTreatment = ErrorTreatment.ERRORS) -> Histogram | None:
        """
        Reconstructed distribution as a histogram binned like the truth template.

        Falls back to NO_ERROR if the requested estimate is unavailable. As a
        side effect the folded result is compared with the measured input and
        the Poisson log-likelihood stored (see log_likelihood).

        Returns:
            Histogram (empty if unfolding failed), or None if no response is set
        """
        if not self.unfold_with_errors(treatment):
            treatment = ErrorTreatment.NO_ERROR
        if self._response is None:
            self.logger.error(f"No response matrix set for '{self.name}', cannot build result histogram")
            return None
        reco = self._response.truth.clone(self.name)
        reco.reset()
        reco.title = self.title
        if not self.unfolded:
            return reco

        diag = None
        if treatment == ErrorTreatment.ERRORS:
            diag = self._result.variances
        elif treatment == ErrorTreatment.COVARIANCE:
            diag = np.diag(self._result.cov)
        elif treatment == ErrorTreatment.COV_TOY:
            diag = np.diag(self._result.err_mat)

        for i in range(self._nt):
            j = get_bin(reco, i, self._overflow)
            reco.set_bin_content(j, self._result.rec[i])
            if diag is not None:
                reco.set_bin_error(j, np.sqrt(np.abs(diag[i])))

        refold = self._response.apply_to_truth(reco)
        self._ll = poisson_log_likelihood(self._meas, refold)
        if self.verbose >= 1:
            self.logger.info(f"LL is: {self._ll}")
        return reco

    def _reference(self, h_true: Histogram) -> tuple[np.ndarray, np.ndarray]:
        bins = [get_bin(h_true, i, self._overflow) for i in range(self._nt)]
        return (
            np.array([h_true.get_bin_content(b) for b in bins]),
            np.array([h_true.get_bin_error(b) for b in bins]),
        )

    def chi2(self, h_true: Histogram, treatment: ErrorTreatment = ErrorTreatment.ERRORS) -> float:
        """
        Chi-squared of the result against a truth-level reference.

        NO_ERROR / ERRORS: sum of squared pulls. COVARIANCE / COV_TOY: full
        r^T V^-1 r with zero rows/columns of V removed. Returns -1 if the
        unfolding failed.
        """
        true_values, true_errors = self._reference(h_true)

        if treatment in (ErrorTreatment.COVARIANCE, ErrorTreatment.COV_TOY):
            ereco = self.ereco(treatment)
            if not self.unfolded:
                return -1.0
            result = covariance_chi2(self._result.rec, ereco, true_values, true_errors)
            if result.n_used == 0:
                return 0.0
            if result.small_determinant and self.verbose >= 1:
                self.logger.warning(
                    f"Small determinant of covariance matrix = {result.determinant}, "
                    f"chi^2 may be invalid"
                )
            if self.verbose >= 1:
                self.logger.info(
                    f"For covariance matrix condition = {result.condition} "
                    f"determinant = {result.determinant}"
                )
            if result.ill_conditioned and self.verbose >= 1:
                self.logger.warning(
                    f"Very large matrix condition = {result.condition}, chi^2 may be inaccurate"
                )
            return result.value

        errors = self.ereco_v(treatment)
        if not self.unfolded:
            return -1.0
        return pull_chi2(self._result.rec, errors, true_values, true_errors)

    def print_table(
        self,
        stream: TextIO | None = None,
        h_true: Histogram | None = None,
        treatment: ErrorTreatment = ErrorTreatment.ERRORS,
    ) -> None:
        """Print a bin-by-bin comparison of training, test and unfolded distributions."""
        from .report import format_table

        text = format_table(self, h_true, treatment)
        if text:
            (stream or sys.stdout).write(text)

    def results_dataframe(
        self, h_true: Histogram | None = None, treatment: ErrorTreatment = ErrorTreatment.ERRORS
    ) -> pd.DataFrame:
        """Per-bin results as a pandas DataFrame (see report.results_dataframe)."""
        from .report import results_dataframe

        return results_dataframe(self, h_true, treatment)

    def describe(self) -> str:
        return (
            f"{self.name}: {self.title}\n"
            f"regularisation parameter = {self.reg_parm}, ntoys = {self.n_toys}"
        )

    def __repr__(self) -> str:
        return (
            f"UnfoldingEngine(name={self.name!r}, algorithm={self.algorithm.name}, "
            f"measured={self._nm}, truth={self._nt}, unfolded={self.unfolded}, failed={self.failed})"
        )


def create(
    algorithm: Algorithm,
    response: ResponseMatrix,
    measured: Histogram | None,
    reg_parm: float = REGPARM_UNSET,
    name: str | None = None,
    title: str | None = None,
    **engine_kwargs,
) -> UnfoldingEngine | None:
    """
    Create an engine for the given algorithm kind.

    Args:
        algorithm: Unfolding method
        response: Response matrix
        measured: Measured distribution
        reg_parm: Regularisation parameter (REGPARM_UNSET keeps the method default)
        name: Optional engine name
        title: Optional engine title
        **engine_kwargs: rng, toy_policy, n_toys, verbose

    Returns:
        Configured engine, or None if the algorithm is unknown or not available
    """
    strategy = make_strategy(algorithm)
    if strategy is None:
        return None
    engine = UnfoldingEngine(response, measured, strategy=strategy, **engine_kwargs)
    if name:
        engine.name = name
    if title:
        engine.title = title
    if reg_parm != REGPARM_UNSET:
        engine.reg_parm = reg_parm
    return engine
