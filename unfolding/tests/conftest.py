"""
Global pytest fixtures and configuration for the test suite.

Provides reusable responses, histograms and directories for testing the
unfolding components without duplicating setup code across test modules.
"""

from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Dict, Generator

import numpy as np
import pytest

from unfolding.modules.histogram import Histogram
from unfolding.modules.response import ResponseMatrix

from .utils.mock_data_generator import make_smearing_response


@pytest.fixture(autouse=True)
def _no_progress_bars(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep toy progress bars out of the test output."""
    monkeypatch.setenv("UNFOLDING_PROGRESS", "off")


@pytest.fixture
def tmp_test_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test operations.

    Automatically cleaned up after test completion.

    Yields:
        Path to temporary directory
    """
    tmp_dir = Path(tempfile.mkdtemp(prefix="unfolding_test_"))
    try:
        yield tmp_dir
    finally:
        if tmp_dir.exists():
            shutil.rmtree(tmp_dir)


@pytest.fixture
def tmp_output_dir(tmp_test_dir: Path) -> Path:
    """
    Create a temporary output directory.

    Args:
        tmp_test_dir: Temporary test directory fixture

    Returns:
        Path to output directory
    """
    output_dir = tmp_test_dir / "output"
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


@pytest.fixture
def rng() -> np.random.Generator:
    """Seeded random generator."""
    return np.random.default_rng(12345)


@pytest.fixture
def identity_response() -> ResponseMatrix:
    """
    5-bin response with no smearing and full efficiency.

    Training truth and measured are 100 entries per bin, so the
    normalised response matrix is the identity.
    """
    return ResponseMatrix.from_arrays(np.diag([100.0] * 5), name="identity", title="identity response")


@pytest.fixture
def measured_values() -> np.ndarray:
    return np.array([10.0, 20.0, 30.0, 40.0, 50.0])


@pytest.fixture
def measured_hist(measured_values: np.ndarray) -> Histogram:
    """5-bin measured histogram with Poisson errors."""
    return Histogram(np.arange(6.0), name="measured", title="measured", values=measured_values)


@pytest.fixture
def truth_hist(measured_values: np.ndarray) -> Histogram:
    """5-bin truth reference equal to the measured input."""
    return Histogram(np.arange(6.0), name="truth", title="truth", values=measured_values)


@pytest.fixture
def smearing_response() -> ResponseMatrix:
    """3-bin response with neighbour migrations and 90-100% efficiency."""
    return make_smearing_response()


@pytest.fixture
def sample_config_dict() -> Dict[str, Any]:
    """
    Provide a minimal valid run configuration dictionary.

    Returns:
        Dictionary with sample configuration
    """
    return {
        "unfolding": {
            "algorithm": "invert",
            "error_treatment": "covariance",
            "n_toys": 20,
            "verbose": 1,
        },
        "toys": {
            "policy": "gaussian",
            "seed": 42,
        },
        "input": {
            "file": "inputs.root",
            "measured": "h_measured",
            "truth": "h_truth",
            "response_measured": "h_train_measured",
            "response_truth": "h_train_truth",
            "response_matrix": "h_migration",
            "overflow": False,
        },
        "output": {
            "dir": "output",
            "table": "table.txt",
            "csv": "results.csv",
            "plot": "",
            "snapshot": "engine.pkl",
        },
    }


def pytest_configure(config: pytest.Config) -> None:
    """
    Configure pytest with custom markers.

    Args:
        config: pytest configuration object
    """
    config.addinivalue_line("markers", "unit: Fast tests of a single component")
    config.addinivalue_line("markers", "integration: Tests crossing file I/O and several components")
    config.addinivalue_line("markers", "validation: Statistical validation with many toys")
