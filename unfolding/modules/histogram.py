"""
Binned containers for the unfolding engine

Histogram is a small numpy-backed replacement for the ROOT TH1/TH2/TH3
family: up to three axes, an underflow and an overflow cell per axis, and
ROOT's global bin numbering (x runs fastest). Contents and squared errors
are kept in flat arrays so that engine code can address bins by global
index exactly like the histogram classes it was modelled on.

The module also holds the bin-index mapping used wherever a logical
vector index meets a histogram (get_bin), and two helpers for reshaping
histograms (hist_no_overflow, resize).
"""

from __future__ import annotations

import copy
from typing import Sequence

import numpy as np

from .exceptions import BinningError


def _normalise_edges(edges) -> tuple[np.ndarray, ...]:
    """Accept one edge array (1D) or a sequence of up to three edge arrays."""
    if len(edges) == 0:
        raise BinningError("Histogram needs at least one axis")
    if np.ndim(edges[0]) == 0:
        edges = [edges]
    if len(edges) > 3:
        raise BinningError(f"Histogram supports up to 3 axes, got {len(edges)}")

    axes = []
    for axis, e in enumerate(edges):
        e = np.asarray(e, dtype=float)
        if e.ndim != 1 or len(e) < 2:
            raise BinningError(f"Axis {axis} needs at least two bin edges")
        if np.any(np.diff(e) <= 0):
            raise BinningError(f"Bin edges on axis {axis} must be strictly increasing")
        axes.append(e)
    return tuple(axes)


class Histogram:
    """
    Binned distribution with under/overflow cells

    Attributes:
        name: Histogram name
        title: Histogram title
    """

    def __init__(
        self,
        edges: Sequence,
        name: str = "",
        title: str = "",
        values: np.ndarray | None = None,
        errors: np.ndarray | None = None,
        flow: bool = False,
    ) -> None:
        """
        Initialize histogram.

        Args:
            edges: Bin edges of a 1D histogram, or a sequence of edge arrays
            name: Histogram name
            title: Histogram title
            values: Optional bin contents, nominal shape (or flow shape if flow=True)
            errors: Optional bin errors, same shape as values.
                    Defaults to sqrt(|values|) when values are given.
            flow: Whether values/errors include the under/overflow cells
        """
        self.name: str = name
        self.title: str = title
        self._edges: tuple[np.ndarray, ...] = _normalise_edges(edges)
        self._contents: np.ndarray = np.zeros(self.n_cells)
        self._sumw2: np.ndarray = np.zeros(self.n_cells)

        if values is not None:
            self._load(values, errors, flow)

    def _load(self, values, errors, flow: bool) -> None:
        shape = self.shape if flow else self.nominal_shape
        values = np.asarray(values, dtype=float)
        if values.shape != shape:
            raise BinningError(f"Values of shape {values.shape} do not match binning {shape}")
        if errors is None:
            sumw2 = np.abs(values)
        else:
            errors = np.asarray(errors, dtype=float)
            if errors.shape != shape:
                raise BinningError(f"Errors of shape {errors.shape} do not match binning {shape}")
            sumw2 = errors**2

        contents = np.zeros(self.shape)
        variances = np.zeros(self.shape)
        region = tuple(slice(None) if flow else slice(1, -1) for _ in self.shape)
        contents[region] = values
        variances[region] = sumw2
        self._contents = contents.ravel(order="F")
        self._sumw2 = variances.ravel(order="F")

    # ------------------------------------------------------------------
    # Binning
    # ------------------------------------------------------------------

    @property
    def dimension(self) -> int:
        return len(self._edges)

    @property
    def nbins_x(self) -> int:
        return len(self._edges[0]) - 1

    @property
    def nbins_y(self) -> int:
        return len(self._edges[1]) - 1 if self.dimension >= 2 else 1

    @property
    def nbins_z(self) -> int:
        return len(self._edges[2]) - 1 if self.dimension >= 3 else 1

    @property
    def nominal_shape(self) -> tuple[int, ...]:
        return tuple(len(e) - 1 for e in self._edges)

    @property
    def shape(self) -> tuple[int, ...]:
        """Cell shape including under/overflow."""
        return tuple(len(e) + 1 for e in self._edges)

    @property
    def n_bins(self) -> int:
        """Number of nominal bins (no under/overflow)."""
        return int(np.prod(self.nominal_shape))

    @property
    def n_cells(self) -> int:
        return int(np.prod(self.shape))

    def edges(self, axis: int = 0) -> np.ndarray:
        return self._edges[axis].copy()

    def get_bin(self, ix: int, iy: int = 0, iz: int = 0) -> int:
        """Global bin number of cell (ix, iy, iz), ROOT convention."""
        shape = self.shape
        if self.dimension == 1:
            return ix
        if self.dimension == 2:
            return ix + shape[0] * iy
        return ix + shape[0] * (iy + shape[1] * iz)

    def find_bin(self, *coords: float) -> int:
        """Global bin containing the given coordinates (under/overflow included)."""
        if len(coords) != self.dimension:
            raise BinningError(
                f"{self.dimension}D histogram needs {self.dimension} coordinates, got {len(coords)}"
            )
        cells = [int(np.searchsorted(e, x, side="right")) for e, x in zip(self._edges, coords)]
        return self.get_bin(*cells)

    # ------------------------------------------------------------------
    # Contents
    # ------------------------------------------------------------------

    def get_bin_content(self, b: int) -> float:
        if 0 <= b < self.n_cells:
            return float(self._contents[b])
        return 0.0

    def get_bin_error(self, b: int) -> float:
        if 0 <= b < self.n_cells:
            return float(np.sqrt(self._sumw2[b]))
        return 0.0

    def set_bin_content(self, b: int, value: float) -> None:
        if 0 <= b < self.n_cells:
            self._contents[b] = value

    def set_bin_error(self, b: int, error: float) -> None:
        if 0 <= b < self.n_cells:
            self._sumw2[b] = error * error

    def fill(self, *coords: float, weight: float = 1.0) -> int:
        """Fill one entry. Returns the global bin that was filled."""
        b = self.find_bin(*coords)
        self._contents[b] += weight
        self._sumw2[b] += weight * weight
        return b

    def values(self, flow: bool = False) -> np.ndarray:
        return self._view(self._contents, flow)

    def variances(self, flow: bool = False) -> np.ndarray:
        return self._view(self._sumw2, flow)

    def errors(self, flow: bool = False) -> np.ndarray:
        return np.sqrt(self.variances(flow))

    def _view(self, flat: np.ndarray, flow: bool) -> np.ndarray:
        arr = flat.reshape(self.shape, order="F")
        if not flow:
            arr = arr[tuple(slice(1, -1) for _ in self.shape)]
        return arr.copy()

    def integral(self) -> float:
        """Sum of the nominal bins."""
        return float(self.values().sum())

    def reset(self) -> None:
        self._contents[:] = 0.0
        self._sumw2[:] = 0.0

    def clone(self, name: str | None = None) -> "Histogram":
        h = copy.deepcopy(self)
        if name is not None:
            h.name = name
        return h

    def __repr__(self) -> str:
        bins = "x".join(str(n) for n in self.nominal_shape)
        return f"Histogram(name={self.name!r}, bins={bins}, integral={self.integral():.6g})"


def get_bin(hist: Histogram, i: int, overflow: bool) -> int:
    """
    Map a logical vector index to the histogram's global bin number.

    For 1D histograms the logical index is shifted past the underflow cell
    unless overflow bins are part of the logical vector, in which case it
    passes through. For 2D/3D histograms the index runs over nominal bins
    only (x fastest) and overflow is not representable.

    Args:
        hist: Histogram whose bin numbering is used
        i: Logical index in [0, n)
        overflow: Whether the logical vector includes the under/overflow cells

    Returns:
        Global bin number
    """
    if hist.dimension < 2:
        return i + (0 if overflow else 1)
    nx, ny, nz = hist.nbins_x, hist.nbins_y, hist.nbins_z
    ix = i % nx + 1
    iy = (i // nx) % ny + 1
    if hist.dimension == 2:
        return hist.get_bin(ix, iy)
    iz = (i // (nx * ny)) % nz + 1
    return hist.get_bin(ix, iy, iz)


def hist_no_overflow(h: Histogram, overflow: bool) -> Histogram:
    """
    Produce a 1D histogram suitable for plotting a logical vector.

    Without overflow, the histogram is flattened to 1D (x fastest) and its
    under/overflow cells cleared. With overflow (1D only), the under and
    overflow cells become ordinary bins, one bin width beyond each end.
    """
    if not overflow:
        edges = h.edges(0) if h.dimension == 1 else np.arange(h.n_bins + 1, dtype=float)
        return Histogram(
            edges,
            name=h.name,
            title=h.title,
            values=h.values().ravel(order="F"),
            errors=h.errors().ravel(order="F"),
        )

    nb = h.nbins_x
    xlo, xhi = h.edges(0)[0], h.edges(0)[-1]
    xb = (xhi - xlo) / nb
    return Histogram(
        np.linspace(xlo - xb, xhi + xb, nb + 3),
        name=h.name,
        title=h.title,
        values=h.values(flow=True),
        errors=h.errors(flow=True),
    )


def resize(h: Histogram, nx: int = -1, ny: int = -1, nz: int = -1) -> Histogram:
    """
    Resize a histogram in place to a different number of bins.

    Contents and errors are copied to the same bin numbers; the old overflow
    cell is copied to the new overflow cell. Extra bins are zeroed. Each
    resized axis keeps its lower edge and bin width.

    Args:
        h: Histogram to modify
        nx, ny, nz: New bin counts; negative (or beyond the dimension) keeps the old count

    Returns:
        The same histogram, for chaining
    """
    old = h.nominal_shape
    requested = (nx, ny, nz)[: h.dimension]
    new = tuple(m if n < 0 else n for m, n in zip(old, requested))
    if new == old:
        return h

    new_edges = []
    for e, m, n in zip(h._edges, old, new):
        if n == m:
            new_edges.append(e)
            continue
        width = (e[-1] - e[0]) / m
        new_edges.append(np.linspace(e[0], e[0] + width * n, n + 1))

    # old cell index -> new cell index, per axis
    src, dst = [], []
    for m, n in zip(old, new):
        keep = np.arange(min(m, n) + 1)
        src.append(np.append(keep, m + 1))
        dst.append(np.append(keep, n + 1))

    old_contents = h.values(flow=True)
    old_sumw2 = h.variances(flow=True)
    new_shape = tuple(n + 2 for n in new)
    contents = np.zeros(new_shape)
    sumw2 = np.zeros(new_shape)
    contents[np.ix_(*dst)] = old_contents[np.ix_(*src)]
    sumw2[np.ix_(*dst)] = old_sumw2[np.ix_(*src)]

    h._edges = tuple(new_edges)
    h._contents = contents.ravel(order="F")
    h._sumw2 = sumw2.ravel(order="F")
    return h
