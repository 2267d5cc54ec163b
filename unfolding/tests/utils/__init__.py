"""
Test utilities and helper functions.

Provides common functionality for test setup, data generation,
and result validation across the test suite.
"""

from .mock_data_generator import (
    create_mock_config_toml,
    create_mock_response_root_file,
    generate_smeared_sample,
    make_smearing_response,
)
from .test_helpers import (
    assert_arrays_close,
    assert_file_exists,
    assert_raises_with_message,
    assert_value_in_range,
)

__all__ = [
    "assert_arrays_close",
    "assert_file_exists",
    "assert_raises_with_message",
    "assert_value_in_range",
    "create_mock_config_toml",
    "create_mock_response_root_file",
    "generate_smeared_sample",
    "make_smearing_response",
]
