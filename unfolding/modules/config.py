"""
Configuration for unfolding runs

One TOML file describes a complete run:

    [unfolding]
    algorithm = "invert"          # none, bayes, svd, bin_by_bin, tunfold, invert, dagostini
    reg_parm = 4.0                # optional, method default if absent
    error_treatment = "covariance"  # no_error, errors, covariance, cov_toy
    n_toys = 50
    verbose = 1

    [toys]
    policy = "poisson"            # poisson or gaussian
    seed = 12345                  # optional

    [input]
    file = "response.root"
    measured = "h_measured"
    truth = "h_truth"             # optional reference for chi-squared
    response_measured = "h_train_measured"
    response_truth = "h_train_truth"
    response_matrix = "h_migration"
    overflow = false

    [output]
    dir = "output"
    table = "table.txt"
    csv = "results.csv"
    plot = "unfolded.pdf"
    snapshot = "engine.pkl"
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np
import tomli

from .engine import ErrorTreatment
from .exceptions import ConfigurationError
from .strategies import Algorithm
from .toys import ToyPolicy

DEFAULTS: dict[str, dict[str, Any]] = {
    "unfolding": {
        "algorithm": "none",
        "error_treatment": "errors",
        "n_toys": 50,
        "verbose": 1,
    },
    "toys": {
        "policy": "poisson",
    },
    "input": {
        "overflow": False,
    },
    "output": {
        "dir": "output",
        "table": "table.txt",
        "csv": "results.csv",
        "plot": "unfolded.pdf",
        "snapshot": "",
    },
}


def _parse_enum(enum_cls, value, what: str):
    if isinstance(value, int) and not isinstance(value, bool):
        try:
            return enum_cls(value)
        except ValueError:
            raise ConfigurationError(f"Unknown {what}: {value}")
    key = str(value).strip().upper().replace("-", "_")
    try:
        return enum_cls[key]
    except KeyError:
        valid = ", ".join(m.name.lower() for m in enum_cls)
        raise ConfigurationError(f"Unknown {what} '{value}' (valid: {valid})")


def parse_algorithm(value) -> Algorithm:
    return _parse_enum(Algorithm, value, "unfolding algorithm")


def parse_error_treatment(value) -> ErrorTreatment:
    return _parse_enum(ErrorTreatment, value, "error treatment")


def parse_toy_policy(value) -> ToyPolicy:
    return _parse_enum(ToyPolicy, value, "toy policy")


class UnfoldingConfig:
    """
    Load and validate an unfolding run configuration

    Attributes:
        path: Configuration file
        unfolding: [unfolding] table merged with defaults
        toys: [toys] table merged with defaults
        input: [input] table merged with defaults
        output: [output] table merged with defaults
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        raw = self._load_toml(self.path)

        self.unfolding = {**DEFAULTS["unfolding"], **raw.get("unfolding", {})}
        self.toys = {**DEFAULTS["toys"], **raw.get("toys", {})}
        self.input = {**DEFAULTS["input"], **raw.get("input", {})}
        self.output = {**DEFAULTS["output"], **raw.get("output", {})}

        # Validate names up front so a bad config fails before any I/O
        self.algorithm = parse_algorithm(self.unfolding["algorithm"])
        self.error_treatment = parse_error_treatment(self.unfolding["error_treatment"])
        self.toy_policy = parse_toy_policy(self.toys["policy"])
        if int(self.unfolding["n_toys"]) < 0:
            raise ConfigurationError(f"n_toys must be non-negative, got {self.unfolding['n_toys']}")

    @staticmethod
    def _load_toml(path: Path) -> dict:
        """
        Load TOML configuration file with proper error handling

        Raises:
            ConfigurationError: If file not found or parsing fails
        """
        try:
            with open(path, 'rb') as f:
                return tomli.load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {path}")
        except tomli.TOMLDecodeError as e:
            raise ConfigurationError(f"Error parsing TOML file {path}: {e}")

    @property
    def reg_parm(self) -> float | None:
        value = self.unfolding.get("reg_parm")
        return None if value is None else float(value)

    @property
    def seed(self) -> int | None:
        return self.toys.get("seed")

    def make_rng(self) -> np.random.Generator:
        """Random generator for toys, seeded if [toys].seed is set."""
        return np.random.default_rng(self.seed)

    def engine_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for UnfoldingEngine / create()."""
        return {
            "rng": self.make_rng(),
            "toy_policy": self.toy_policy,
            "n_toys": int(self.unfolding["n_toys"]),
            "verbose": int(self.unfolding["verbose"]),
        }

    def input_path(self) -> Path:
        """Input ROOT file, relative paths resolved against the config file."""
        if "file" not in self.input:
            raise ConfigurationError(f"No [input].file given in {self.path}")
        path = Path(self.input["file"])
        return path if path.is_absolute() else self.path.parent / path

    def output_dir(self) -> Path:
        """Output directory (created on demand)."""
        out = Path(self.output["dir"])
        if not out.is_absolute():
            out = self.path.parent / out
        out.mkdir(parents=True, exist_ok=True)
        return out

    def output_file(self, key: str) -> Path | None:
        """Path of one output product, or None if disabled (empty name)."""
        name = self.output.get(key)
        if not name:
            return None
        return self.output_dir() / name
