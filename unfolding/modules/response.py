"""
Response matrix for binned unfolding

Holds the training measured and truth distributions together with the
migration counts between them. The normalised response R[i, j] is the
probability for an event generated in truth bin j to be measured in bin i,
so detector efficiency is included (columns need not sum to one).
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from .exceptions import BinningError
from .histogram import Histogram, get_bin


class ResponseMatrix:
    """
    Response matrix mapping a truth binning to a measured binning

    Attributes:
        measured: Training measured distribution (also the measured template)
        truth: Training truth distribution (also the truth template)
        migration: Migration counts indexed [measured global bin, truth global bin]
        overflow: Whether under/overflow cells take part in unfolding
        name: Response name
        title: Response title
    """

    def __init__(
        self,
        measured: Histogram,
        truth: Histogram,
        migration: np.ndarray | None = None,
        overflow: bool = False,
        name: str = "",
        title: str = "",
    ) -> None:
        """
        Initialize response matrix.

        Args:
            measured: Measured-axis template histogram (training measured content)
            truth: Truth-axis template histogram (training truth content)
            migration: Optional (measured.n_cells, truth.n_cells) array of migration counts
            overflow: Treat under/overflow cells as real bins
            name: Response name
            title: Response title
        """
        self.logger = logging.getLogger("Unfolding.Response")
        self.measured: Histogram = measured
        self.truth: Histogram = truth
        self.overflow: bool = bool(overflow)
        self.name: str = name
        self.title: str = title

        shape = (measured.n_cells, truth.n_cells)
        if migration is None:
            migration = np.zeros(shape)
        migration = np.asarray(migration, dtype=float)
        if migration.shape != shape:
            raise BinningError(
                f"Migration matrix of shape {migration.shape} does not match "
                f"measured x truth cells {shape}"
            )
        self.migration: np.ndarray = migration

    @classmethod
    def from_arrays(
        cls,
        migration: np.ndarray,
        measured: np.ndarray | None = None,
        truth: np.ndarray | None = None,
        measured_edges: Sequence[float] | None = None,
        truth_edges: Sequence[float] | None = None,
        overflow: bool = False,
        name: str = "response",
        title: str = "",
    ) -> "ResponseMatrix":
        """
        Build a 1D response from plain arrays.

        Args:
            migration: (n_measured, n_truth) migration counts. With overflow=True
                       the arrays include the under/overflow cells (n + 2 entries)
            measured: Training measured contents (default: row sums of migration)
            truth: Training truth contents (default: column sums of migration)
            measured_edges: Measured bin edges (default: 0..n)
            truth_edges: Truth bin edges (default: 0..n)
            overflow: Whether arrays include under/overflow cells
            name: Response name
            title: Response title

        Returns:
            ResponseMatrix instance
        """
        migration = np.asarray(migration, dtype=float)
        if migration.ndim != 2:
            raise BinningError("Migration matrix must be two-dimensional")
        extra = 2 if overflow else 0
        nm, nt = migration.shape[0] - extra, migration.shape[1] - extra
        if nm < 1 or nt < 1:
            raise BinningError(f"Migration matrix shape {migration.shape} leaves no nominal bins")

        if measured is None:
            measured = migration.sum(axis=1)
        if truth is None:
            truth = migration.sum(axis=0)
        if measured_edges is None:
            measured_edges = np.arange(nm + 1, dtype=float)
        if truth_edges is None:
            truth_edges = np.arange(nt + 1, dtype=float)

        hmeas = Histogram(measured_edges, name=f"{name}_measured", values=measured, flow=overflow)
        htrue = Histogram(truth_edges, name=f"{name}_truth", values=truth, flow=overflow)

        cells = np.zeros((hmeas.n_cells, htrue.n_cells))
        rows = [get_bin(hmeas, i, overflow) for i in range(nm + extra)]
        cols = [get_bin(htrue, j, overflow) for j in range(nt + extra)]
        cells[np.ix_(rows, cols)] = migration
        return cls(hmeas, htrue, cells, overflow=overflow, name=name, title=title)

    # ------------------------------------------------------------------
    # Binning
    # ------------------------------------------------------------------

    @property
    def n_measured_bins(self) -> int:
        """Nominal measured bins (overflow cells not counted)."""
        return self.measured.n_bins

    @property
    def n_truth_bins(self) -> int:
        """Nominal truth bins (overflow cells not counted)."""
        return self.truth.n_bins

    def uses_overflow(self) -> bool:
        return self.overflow

    def _measured_bins(self) -> list[int]:
        n = self.n_measured_bins + (2 if self.overflow else 0)
        return [get_bin(self.measured, i, self.overflow) for i in range(n)]

    def _truth_bins(self) -> list[int]:
        n = self.n_truth_bins + (2 if self.overflow else 0)
        return [get_bin(self.truth, j, self.overflow) for j in range(n)]

    # ------------------------------------------------------------------
    # Filling
    # ------------------------------------------------------------------

    def fill(self, x_measured, x_truth, weight: float = 1.0) -> None:
        """Record an event generated at x_truth and measured at x_measured."""
        mb = self.measured.fill(*np.atleast_1d(x_measured), weight=weight)
        tb = self.truth.fill(*np.atleast_1d(x_truth), weight=weight)
        self.migration[mb, tb] += weight

    def miss(self, x_truth, weight: float = 1.0) -> None:
        """Record an event generated at x_truth that was not measured."""
        self.truth.fill(*np.atleast_1d(x_truth), weight=weight)

    def fake(self, x_measured, weight: float = 1.0) -> None:
        """Record a measured event with no truth counterpart."""
        self.measured.fill(*np.atleast_1d(x_measured), weight=weight)

    # ------------------------------------------------------------------
    # Matrices
    # ------------------------------------------------------------------

    def measured_vector(self) -> np.ndarray:
        return np.array([self.measured.get_bin_content(b) for b in self._measured_bins()])

    def truth_vector(self) -> np.ndarray:
        return np.array([self.truth.get_bin_content(b) for b in self._truth_bins()])

    def migration_matrix(self) -> np.ndarray:
        """Migration counts over the logical measured x truth bins."""
        return self.migration[np.ix_(self._measured_bins(), self._truth_bins())]

    def response_matrix(self) -> np.ndarray:
        """Migration normalised to the training truth of each column."""
        migration = self.migration_matrix()
        truth = self.truth_vector()
        response = np.zeros_like(migration)
        nonzero = truth != 0.0
        response[:, nonzero] = migration[:, nonzero] / truth[nonzero]
        if np.any(migration[:, ~nonzero] != 0.0):
            self.logger.warning(
                f"Response '{self.name}': migration entries in truth bins with no training truth are ignored"
            )
        return response

    def apply_to_truth(self, reco: Histogram, name: str = "") -> Histogram:
        """
        Fold a truth-level histogram through the response.

        Args:
            reco: Histogram binned like the truth template
            name: Name of the returned histogram

        Returns:
            Histogram binned like the measured template holding R · reco
        """
        truth_bins = [get_bin(reco, j, self.overflow) for j in range(len(self._truth_bins()))]
        vtruth = np.array([reco.get_bin_content(b) for b in truth_bins])
        folded = self.response_matrix() @ vtruth

        result = self.measured.clone(name or f"{reco.name}_folded")
        result.reset()
        result.title = f"{reco.title} folded"
        for b, value in zip(self._measured_bins(), folded):
            result.set_bin_content(b, value)
        return result

    def __repr__(self) -> str:
        return (
            f"ResponseMatrix(name={self.name!r}, measured={self.n_measured_bins}, "
            f"truth={self.n_truth_bins}, overflow={self.overflow})"
        )
