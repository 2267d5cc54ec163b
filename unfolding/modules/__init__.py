"""
Unfolding modules

- histogram: binned containers and bin-index mapping
- response: response matrix
- strategies: unfolding algorithms and registry
- toys: toy MC resampling
- statistics: chi-squared, log-likelihood, matrix helpers
- engine: the unfolding engine and create()
- report: bin-by-bin tables
- config, data_loader, persistence, plotter: run configuration and I/O
"""

from .engine import ErrorTreatment, UnfoldingEngine, create
from .exceptions import (
    BinningError,
    ConfigurationError,
    DataLoadError,
    DecompositionError,
    HistogramMissingError,
    PersistenceError,
    UnfoldingError,
)
from .histogram import Histogram, get_bin, hist_no_overflow, resize
from .response import ResponseMatrix
from .strategies import Algorithm, UnfoldStrategy, available_algorithms, register_algorithm

__all__ = [
    'Algorithm',
    'BinningError',
    'ConfigurationError',
    'DataLoadError',
    'DecompositionError',
    'ErrorTreatment',
    'Histogram',
    'HistogramMissingError',
    'PersistenceError',
    'ResponseMatrix',
    'UnfoldStrategy',
    'UnfoldingEngine',
    'UnfoldingError',
    'available_algorithms',
    'create',
    'get_bin',
    'hist_no_overflow',
    'register_algorithm',
    'resize',
]
