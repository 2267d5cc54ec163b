"""
Unit tests for the bin-by-bin table and the results DataFrame.
"""

from __future__ import annotations

import io
import logging

import numpy as np
import pytest

from unfolding.modules.engine import ErrorTreatment, UnfoldingEngine
from unfolding.modules.histogram import Histogram
from unfolding.modules.report import RULE, format_table, results_dataframe
from unfolding.modules.response import ResponseMatrix
from unfolding.tests.utils.test_helpers import assert_arrays_close


class FailingStrategyMixin:
    def unfold(self, inputs):
        return None


@pytest.fixture
def engine(identity_response: ResponseMatrix, measured_hist: Histogram) -> UnfoldingEngine:
    return UnfoldingEngine(identity_response, measured_hist, verbose=0)


def data_lines(text: str) -> list[str]:
    """Lines between the second and third rule."""
    lines = text.splitlines()
    rules = [i for i, line in enumerate(lines) if line.startswith("=====")]
    return lines[rules[1] + 1:rules[2]]


@pytest.mark.unit
class TestFormatTable:
    """Test the fixed-width table."""

    def test_layout(self, engine: UnfoldingEngine, truth_hist: Histogram) -> None:
        text = format_table(engine, truth_hist, ErrorTreatment.ERRORS)
        lines = text.splitlines()

        assert lines[0] == RULE
        assert lines[1].split() == ["Train", "Train", "Test", "Test", "Unfolded", "Error", "on", "Diff", "Pull"]
        assert lines[2].split() == ["Bin", "Truth", "Measured", "Truth", "Input", "Output", "Unfolding"]
        assert lines[3] == RULE
        assert len(data_lines(text)) == 5

    def test_bin_rows(self, engine: UnfoldingEngine, truth_hist: Histogram) -> None:
        rows = data_lines(format_table(engine, truth_hist, ErrorTreatment.ERRORS))

        assert rows[0].split() == ["1", "100", "100", "10", "10", "10.0", "3.2", "0.0", "0.0"]
        assert rows[4].split()[0] == "5"
        assert rows[0].startswith("    1")

    def test_totals_and_chi2(self, engine: UnfoldingEngine, caplog: pytest.LogCaptureFixture) -> None:
        truth = Histogram(np.arange(6.0), values=[12.0, 20.0, 30.0, 40.0, 50.0])

        with caplog.at_level(logging.WARNING, logger="Unfolding.Report"):
            text = format_table(engine, truth, ErrorTreatment.ERRORS)
        lines = text.splitlines()

        assert lines[-3] == RULE
        assert lines[-2].split() == ["500", "500", "152", "150", "150.0", "12.2", "-2.0", "-0.2"]
        assert lines[-1] == "Bin-by-bin Chi^2/NDF=0.4/5"
        assert "Invalid Chi^2" not in caplog.text

    def test_zero_chi2_warns(self, engine: UnfoldingEngine, truth_hist: Histogram, caplog) -> None:
        with caplog.at_level(logging.WARNING, logger="Unfolding.Report"):
            text = format_table(engine, truth_hist, ErrorTreatment.ERRORS)

        assert text.splitlines()[-1] == "Bin-by-bin Chi^2/NDF=0/5"
        assert "Invalid Chi^2 Value" in caplog.text

    def test_covariance_summary(self, engine: UnfoldingEngine) -> None:
        truth = Histogram(np.arange(6.0), values=[12.0, 20.0, 30.0, 40.0, 50.0])

        text = format_table(engine, truth, ErrorTreatment.COVARIANCE)

        assert text.splitlines()[-1] == "Chi^2/NDF=0.4/5 (bin-by-bin Chi^2=0.4)"

    def test_without_truth(self, engine: UnfoldingEngine) -> None:
        text = format_table(engine)
        rows = data_lines(text)

        assert rows[0].split() == ["1", "100", "100", "10", "10.0", "3.2"]
        assert not text.splitlines()[-1].startswith("Bin-by-bin")
        assert text.splitlines()[-1] == RULE

    def test_no_error_skips_zero_reference(self, identity_response, measured_hist) -> None:
        e = UnfoldingEngine(identity_response, measured_hist, verbose=0)
        truth = Histogram(np.arange(6.0), values=[0.0, 20.0, 30.0, 40.0, 50.0])

        rows = data_lines(format_table(e, truth, ErrorTreatment.NO_ERROR))

        # no diff where the reference is empty, no pull without errors
        assert len(rows[0].split()) == 7
        assert len(rows[1].split()) == 8

    def test_failed_engine_prints_nothing(self, identity_response, measured_hist) -> None:
        from unfolding.modules.strategies import DummyStrategy

        class Failing(FailingStrategyMixin, DummyStrategy):
            pass

        e = UnfoldingEngine(identity_response, measured_hist, strategy=Failing(), verbose=0)
        stream = io.StringIO()

        e.print_table(stream)

        assert stream.getvalue() == ""

    def test_print_table_writes_stream(self, engine: UnfoldingEngine, truth_hist: Histogram) -> None:
        stream = io.StringIO()

        engine.print_table(stream, truth_hist)

        assert stream.getvalue() == format_table(engine, truth_hist, ErrorTreatment.ERRORS)

    def test_2d_bin_labels(self) -> None:
        edges = [np.arange(3.0), np.arange(3.0)]
        measured = Histogram(edges, values=np.full((2, 2), 100.0))
        truth = Histogram(edges, values=np.full((2, 2), 100.0))
        migration = np.zeros((measured.n_cells, truth.n_cells))
        for b in (5, 6, 9, 10):
            migration[b, b] = 100.0
        response = ResponseMatrix(measured, truth, migration)
        test = Histogram(edges, values=np.array([[1.0, 2.0], [3.0, 4.0]]))
        e = UnfoldingEngine(response, test, verbose=0)

        text = format_table(e)
        rows = data_lines(text)

        assert text.splitlines()[0] == RULE + "=="
        assert rows[0].startswith("  1,  1")
        assert rows[1].startswith("  2,  1")
        assert rows[3].startswith("  2,  2")
        assert rows[1].split()[4] == "3"

    def test_engine_without_response(self) -> None:
        assert format_table(UnfoldingEngine(verbose=0)) == ""


@pytest.mark.unit
class TestResultsDataFrame:
    """Test the per-bin DataFrame."""

    def test_columns_and_values(self, engine: UnfoldingEngine, truth_hist: Histogram) -> None:
        df = results_dataframe(engine, truth_hist, ErrorTreatment.ERRORS)

        assert list(df.columns) == [
            "bin", "train_truth", "train_measured", "test_truth",
            "test_input", "unfolded", "error", "diff", "pull",
        ]
        assert len(df) == 5
        assert list(df["bin"]) == [1, 2, 3, 4, 5]
        assert_arrays_close(df["unfolded"].to_numpy(), [10.0, 20.0, 30.0, 40.0, 50.0])
        assert_arrays_close(df["pull"].to_numpy(), np.zeros(5))

    def test_without_truth_has_nan(self, engine: UnfoldingEngine) -> None:
        df = engine.results_dataframe()

        assert df["test_truth"].isna().all()
        assert df["diff"].isna().all()
        assert not df["unfolded"].isna().any()

    def test_failed_engine_empty(self, identity_response, measured_hist) -> None:
        from unfolding.modules.strategies import DummyStrategy

        class Failing(FailingStrategyMixin, DummyStrategy):
            pass

        e = UnfoldingEngine(identity_response, measured_hist, strategy=Failing(), verbose=0)

        assert results_dataframe(e).empty

    def test_engine_without_response_empty(self) -> None:
        df = results_dataframe(UnfoldingEngine(verbose=0), treatment=ErrorTreatment.COVARIANCE)

        assert df.empty
        assert list(df.columns)[0] == "bin"
