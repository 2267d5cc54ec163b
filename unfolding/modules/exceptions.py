#!/usr/bin/env python3
"""
Custom exceptions for the unfolding package

Provides a hierarchy of exceptions for the configuration, input and
persistence layers. The engine itself reports runtime problems through
return values and log messages; these exceptions cover misuse and I/O.
All custom exceptions inherit from UnfoldingError for easy catching.
"""


class UnfoldingError(Exception):
    """
    Base exception for all unfolding errors

    All custom exceptions inherit from this class, allowing users to catch
    all unfolding-specific errors with a single except clause.
    """
    pass


class ConfigurationError(UnfoldingError):
    """
    Raised when configuration is invalid or missing required fields

    Examples:
    - Missing configuration file
    - Unknown algorithm or error-treatment name
    - Missing required config sections
    """
    pass


class DataLoadError(UnfoldingError):
    """
    Raised when input histograms cannot be loaded

    Examples:
    - File not found
    - Object is not a histogram
    - Unsupported histogram dimension
    """
    pass


class HistogramMissingError(UnfoldingError):
    """
    Raised when a required histogram key is not found in an input file

    Examples:
    - Typo in the configured histogram name
    - Response matrix stored under a different directory
    """
    def __init__(self, key: str, file_path: str = None):
        """
        Initialize HistogramMissingError

        Args:
            key: Name of the missing histogram
            file_path: Optional path to the file being read
        """
        self.key = key
        self.file_path = file_path

        message = f"Required histogram '{key}' not found"
        if file_path:
            message += f" in file: {file_path}"

        super().__init__(message)


class BinningError(UnfoldingError):
    """
    Raised when binned containers are constructed inconsistently

    Examples:
    - Non-increasing bin edges
    - Value array shape does not match the binning
    - Migration matrix shape does not match measured/truth binning
    """
    pass


class DecompositionError(UnfoldingError):
    """
    Raised when a matrix decomposition fails

    Examples:
    - Measured covariance is not positive definite (Cholesky)
    """
    pass


class PersistenceError(UnfoldingError):
    """
    Raised when saving or loading an engine snapshot fails

    Examples:
    - Cannot write snapshot file
    - Corrupted snapshot
    - Snapshot format version mismatch
    """
    pass
