"""
Logging and Warning Configuration Utilities

This module provides centralized control over log output, warning messages
and progress bars for the unfolding package.

Usage:
    # At the start of a script:
    from unfolding.utils.logging_config import setup_logging, suppress_warnings
    logger = setup_logging(verbose=True)
    suppress_warnings()  # Suppress library warnings by default

    # Or with more control:
    suppress_warnings(level='error')  # Only show errors
    suppress_warnings(level='default')  # Show all warnings

    # Via environment variable:
    export UNFOLDING_WARNINGS=on  # Show warnings
    export UNFOLDING_WARNINGS=off  # Suppress warnings (default)
    export UNFOLDING_PROGRESS=off  # No toy progress bars
"""

import logging
import os
import warnings
from typing import Literal

import numpy as np


def setup_logging(verbose: bool = False) -> logging.Logger:
    """
    Configure root logging and return the package logger.

    Args:
        verbose: DEBUG level if True, INFO otherwise

    Returns:
        The "Unfolding" logger
    """
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    logger = logging.getLogger("Unfolding")
    logger.setLevel(level)
    return logger


def suppress_warnings(level: Literal["off", "error", "default", "all"] = "off") -> None:
    """
    Configure warning levels for the unfolding package.

    Args:
        level: Warning level to set
            - 'off': Suppress all warnings (default for batch running)
            - 'error': Turn warnings into errors
            - 'default': Show important warnings but filter common noise
            - 'all': Show everything (useful for debugging)

    Environment variable UNFOLDING_WARNINGS overrides the level parameter.
    """
    env_level = os.environ.get("UNFOLDING_WARNINGS", "").lower()
    if env_level in ["on", "yes", "true", "1"]:
        level = "all"
    elif env_level in ["off", "no", "false", "0"]:
        level = "off"
    elif env_level in ["error", "default"]:
        level = env_level

    if level == "off":
        warnings.filterwarnings("ignore")
        # Division by zero in empty bins is expected
        np.seterr(all="ignore")

    elif level == "error":
        warnings.filterwarnings("error")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", category=FutureWarning)

    elif level == "default":
        warnings.filterwarnings("default")
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        warnings.filterwarnings("ignore", message=".*uproot.*")

    elif level == "all":
        warnings.filterwarnings("default")
        np.seterr(all="warn")

    _suppress_library_warnings(level)


def _suppress_library_warnings(level: str) -> None:
    """Suppress known noisy warnings from specific libraries."""
    if level in ["off", "error", "default"]:
        # Matplotlib font/backend warnings
        warnings.filterwarnings("ignore", message=".*Matplotlib.*")
        logging.getLogger("matplotlib.font_manager").setLevel(logging.ERROR)


def enable_progress_bars() -> bool:
    """
    Check if progress bars should be enabled.

    Returns:
        True if progress bars should be shown, False otherwise.

    Can be controlled via UNFOLDING_PROGRESS environment variable.
    """
    env_progress = os.environ.get("UNFOLDING_PROGRESS", "on").lower()
    return env_progress in ["on", "yes", "true", "1"]


def get_tqdm_kwargs(desc: str = "", **kwargs) -> dict:
    """
    Get standard kwargs for tqdm progress bars with consistent styling.

    Args:
        desc: Description for the progress bar
        **kwargs: Additional tqdm parameters

    Returns:
        Dictionary of tqdm parameters
    """
    default_kwargs = {
        "desc": desc,
        "unit": "toy",
        "ncols": 80,
        "bar_format": "{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}]",
        "disable": not enable_progress_bars(),
        "leave": False,
    }
    default_kwargs.update(kwargs)
    return default_kwargs
