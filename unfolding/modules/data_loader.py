"""
Read histograms and response matrices from ROOT files with uproot.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import uproot

from .exceptions import BinningError, DataLoadError, HistogramMissingError
from .histogram import Histogram, get_bin
from .response import ResponseMatrix


class HistogramLoader:
    """
    Load TH1/TH2/TH3 objects from one ROOT file

    The response migration matrix is a TH2 with the measured axis on x and
    the truth axis on y.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.logger = logging.getLogger("Unfolding.DataLoader")
        if not self.path.exists():
            raise DataLoadError(
                f"Input file not found: {self.path}\n"
                f"Please check [input].file in the configuration"
            )

    def keys(self) -> list[str]:
        with uproot.open(self.path) as f:
            return [k.split(";")[0] for k in f.keys()]

    def _read(self, key: str):
        try:
            with uproot.open(self.path) as f:
                if key not in f:
                    raise HistogramMissingError(key, str(self.path))
                obj = f[key]
                edges = [axis.edges() for axis in obj.axes]
                values = obj.values(flow=True)
                variances = obj.variances(flow=True)
                title = obj.member("fTitle")
        except HistogramMissingError:
            raise
        except (OSError, ValueError, AttributeError) as e:
            raise DataLoadError(f"Cannot read '{key}' from {self.path}: {e}")
        return edges, np.asarray(values, dtype=float), np.asarray(variances, dtype=float), title

    def load_histogram(self, key: str) -> Histogram:
        """
        Read a histogram including its under/overflow cells.

        Raises:
            HistogramMissingError: If the key is not in the file
            DataLoadError: If the object cannot be read as a histogram
        """
        edges, values, variances, title = self._read(key)
        hist = Histogram(
            edges if len(edges) > 1 else edges[0],
            name=key,
            title=title or "",
            values=values,
            errors=np.sqrt(np.clip(variances, 0.0, None)),
            flow=True,
        )
        self.logger.debug(f"Loaded {hist!r} from {self.path}")
        return hist

    def load_response(
        self,
        measured_key: str,
        truth_key: str,
        migration_key: str,
        overflow: bool = False,
        name: str = "",
    ) -> ResponseMatrix:
        """
        Build a ResponseMatrix from training measured/truth histograms and a
        migration TH2 (x = measured, y = truth).

        For 1D measured and truth histograms the TH2 under/overflow cells map
        onto theirs. For multi-dimensional binnings the TH2 axes run over the
        nominal bins (x fastest) of the measured and truth histograms.

        Raises:
            HistogramMissingError: If a key is not in the file
            BinningError: If the migration binning does not match
        """
        measured = self.load_histogram(measured_key)
        truth = self.load_histogram(truth_key)
        edges, values, _, title = self._read(migration_key)
        if len(edges) != 2:
            raise BinningError(f"Migration matrix '{migration_key}' must be a TH2, got {len(edges)}D")

        if measured.dimension == 1 and truth.dimension == 1:
            migration = values
        else:
            nominal = values[1:-1, 1:-1]
            if nominal.shape != (measured.n_bins, truth.n_bins):
                raise BinningError(
                    f"Migration matrix '{migration_key}' has {nominal.shape} bins, expected "
                    f"({measured.n_bins}, {truth.n_bins})"
                )
            migration = np.zeros((measured.n_cells, truth.n_cells))
            rows = [get_bin(measured, i, False) for i in range(measured.n_bins)]
            cols = [get_bin(truth, j, False) for j in range(truth.n_bins)]
            migration[np.ix_(rows, cols)] = nominal

        response = ResponseMatrix(
            measured,
            truth,
            migration,
            overflow=overflow,
            name=name or migration_key,
            title=title or "",
        )
        self.logger.info(f"Loaded {response!r} from {self.path}")
        return response
