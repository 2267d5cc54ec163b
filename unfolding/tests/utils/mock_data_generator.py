"""
Mock data generators for testing unfolding components.

Provides synthetic responses, smeared Monte-Carlo samples and ROOT input
files for reproducible testing without real data.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import numpy as np
import uproot

from unfolding.modules.histogram import Histogram
from unfolding.modules.response import ResponseMatrix


def make_smearing_response() -> ResponseMatrix:
    """
    3-bin response with 10% migration to each neighbour.

    The normalised response matrix is
        [[0.8, 0.1, 0.0],
         [0.1, 0.8, 0.1],
         [0.0, 0.1, 0.8]]
    i.e. 90%, 100% and 90% efficiency per truth bin.
    """
    migration = np.array([
        [80.0, 10.0, 0.0],
        [10.0, 80.0, 10.0],
        [0.0, 10.0, 80.0],
    ])
    return ResponseMatrix.from_arrays(
        migration,
        truth=np.array([100.0, 100.0, 100.0]),
        name="smearing",
        title="smearing response",
    )


def generate_smeared_sample(
    n_events: int = 10000,
    edges: Optional[np.ndarray] = None,
    resolution: float = 0.5,
    efficiency: float = 0.9,
    seed: int = 42,
) -> Tuple[ResponseMatrix, Histogram, Histogram]:
    """
    Fill a response from a Gaussian-smeared exponential MC sample, and
    produce an independent test sample from the same model.

    Args:
        n_events: Number of generated events per sample
        edges: Bin edges used for both truth and measured axes
        resolution: Gaussian smearing width
        efficiency: Probability for an event to be measured
        seed: Random seed for reproducibility

    Returns:
        (response, test measured histogram, test truth histogram)
    """
    rng = np.random.default_rng(seed)
    if edges is None:
        edges = np.linspace(0.0, 10.0, 11)

    response = ResponseMatrix(
        Histogram(edges, name="train_measured"),
        Histogram(edges, name="train_truth"),
        name="mc_response",
        title="MC response",
    )
    for x_true in rng.exponential(3.0, n_events):
        if rng.uniform() < efficiency:
            response.fill(x_true + rng.normal(0.0, resolution), x_true)
        else:
            response.miss(x_true)

    test_measured = Histogram(edges, name="test_measured")
    test_truth = Histogram(edges, name="test_truth")
    for x_true in rng.exponential(3.0, n_events):
        test_truth.fill(x_true)
        if rng.uniform() < efficiency:
            test_measured.fill(x_true + rng.normal(0.0, resolution))

    return response, test_measured, test_truth


def create_mock_response_root_file(
    output_path: Union[str, Path],
    response: ResponseMatrix,
    measured: Histogram,
    truth: Optional[Histogram] = None,
) -> Path:
    """
    Write a 1D response and test histograms to a ROOT file.

    Keys: h_train_measured, h_train_truth, h_migration (x = measured,
    y = truth), h_measured and (if given) h_truth.

    Returns:
        Path to created ROOT file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with uproot.recreate(output_path) as file:
        file["h_train_measured"] = (response.measured.values(), response.measured.edges())
        file["h_train_truth"] = (response.truth.values(), response.truth.edges())
        file["h_migration"] = (
            response.migration_matrix(),
            response.measured.edges(),
            response.truth.edges(),
        )
        file["h_measured"] = (measured.values(), measured.edges())
        if truth is not None:
            file["h_truth"] = (truth.values(), truth.edges())

    return output_path


def create_mock_config_toml(
    output_path: Union[str, Path],
    config: Dict[str, Any],
) -> Path:
    """
    Create a TOML run configuration file.

    Args:
        output_path: Path where TOML file will be created
        config: Configuration tables

    Returns:
        Path to created TOML file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    # Write TOML file using binary mode
    import tomli_w
    with open(output_path, 'wb') as f:
        tomli_w.dump(config, f)

    return output_path
