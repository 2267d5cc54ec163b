"""
Tabular reporting of unfolding results

format_table() renders the fixed-width bin-by-bin comparison printed by
UnfoldingEngine.print_table(); results_dataframe() gives the same numbers
as a pandas DataFrame for CSV export.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from .engine import ErrorTreatment, UnfoldingEngine
from .histogram import Histogram, get_bin

logger = logging.getLogger("Unfolding.Report")

RULE = "=" * 79


def _bin_label(reco: Histogram, i: int, it: int, dim: int, overflow: bool) -> str:
    if dim in (2, 3):
        ntxb = reco.nbins_x + 2
        ntyb = reco.nbins_y + 2
        iw = 3 if dim == 2 else 2
        ix = it % ntxb
        iy = ((it - ix) // ntxb) % ntyb
        label = f"{ix:>{iw}},{iy:>{iw}}"
        if dim == 3:
            label += f",{((it - ix) // ntxb - iy) // ntyb:>{iw}}"
        return label
    return f"{i + (0 if overflow else 1):>5}"


def _table_dimension(reco: Histogram, meas: Histogram) -> int:
    # fall back to plain bin numbers when measured and truth binnings differ
    if (
        meas.dimension != reco.dimension
        or meas.nbins_x != reco.nbins_x
        or meas.nbins_y != reco.nbins_y
    ):
        return 1
    return reco.dimension


def _rows(engine: UnfoldingEngine, reco: Histogram, h_true: Histogram | None, with_error: bool):
    """Yield one dict per logical bin with the quantities shown in the table."""
    meas = engine.measured
    train_truth = engine.response.truth
    train_meas = engine.response.measured
    nm, nt = engine.n_measured_bins, engine.n_truth_bins

    for i in range(max(nm, nt)):
        it = get_bin(reco, i, engine.overflow)
        im = get_bin(meas, i, engine.overflow)
        row = {
            "i": i,
            "it": it,
            "train_truth_total": train_truth.get_bin_content(it),
            "train_measured_total": train_meas.get_bin_content(im),
            "test_truth_total": h_true.get_bin_content(it) if h_true is not None else 0.0,
            "test_input_total": meas.get_bin_content(im),
            "unfolded_total": reco.get_bin_content(it),
            "train_truth": train_truth.get_bin_content(it) if i < nt else None,
            "train_measured": train_meas.get_bin_content(im) if i < nm else None,
            "test_truth": h_true.get_bin_content(it) if h_true is not None and i < nt else None,
            "test_input": meas.get_bin_content(im) if i < nm else None,
            "unfolded": None,
            "error": None,
            "diff": None,
            "pull": None,
        }
        if i < nt:
            y = reco.get_bin_content(it)
            yerr = reco.get_bin_error(it)
            row["unfolded"] = y
            row["error"] = yerr
            if (
                h_true is not None
                and (y != 0.0 or (with_error and yerr > 0.0))
                and (h_true.get_bin_content(it) != 0.0 or (with_error and h_true.get_bin_error(it) > 0.0))
            ):
                row["diff"] = y - h_true.get_bin_content(it)
                if yerr > 0.0:
                    row["pull"] = row["diff"] / yerr
        yield row


def _cell(value: float | None, width: int, precision: int) -> str:
    if value is None:
        return " " * (width + 1)
    return f" {value:{width}.{precision}f}"


def format_table(
    engine: UnfoldingEngine,
    h_true: Histogram | None = None,
    treatment: ErrorTreatment = ErrorTreatment.ERRORS,
) -> str:
    """
    Render the bin-by-bin comparison table.

    Columns: training truth and measured, test truth and input, unfolded
    output with its error, and (with a reference) difference and pull. A
    totals line follows, then a chi-squared summary when a reference is
    given. Returns an empty string if the engine could not unfold.

    Args:
        engine: Configured unfolding engine
        h_true: Optional truth-level reference
        treatment: Error treatment used for the unfolded errors

    Returns:
        Table text including trailing newline
    """
    reco = engine.hreco(treatment)
    if reco is None or not engine.unfolded:
        return ""
    meas = engine.measured
    with_error = int(treatment) != ErrorTreatment.NO_ERROR

    dim = _table_dimension(reco, meas)
    iwid = 8 if dim == 3 else 7 if dim == 2 else 5
    rule = RULE + ("===" if dim == 3 else "==" if dim == 2 else "")

    lines = [
        rule,
        f"{'':>{iwid}}{'Train':>9}{'Train':>9}{'Test':>9}{'Test':>9}{'Unfolded':>9}{'Error on':>10}{'Diff':>9}{'Pull':>9}",
        f"{'Bin':>{iwid}}{'Truth':>9}{'Measured':>9}{'Truth':>9}{'Input':>9}{'Output':>9}{'Unfolding':>10}",
        rule,
    ]

    totals = dict.fromkeys(
        ["train_truth_total", "train_measured_total", "test_truth_total", "test_input_total", "unfolded_total"],
        0.0,
    )
    chi2 = 0.0
    ndf = 0
    for row in _rows(engine, reco, h_true, with_error):
        for key in totals:
            totals[key] += row[key]
        line = _bin_label(reco, row["i"], row["it"], dim, engine.overflow)
        line += _cell(row["train_truth"], 8, 0)
        line += _cell(row["train_measured"], 8, 0)
        line += _cell(row["test_truth"], 8, 0)
        line += _cell(row["test_input"], 8, 0)
        if row["unfolded"] is not None:
            line += _cell(row["unfolded"], 8, 1) + _cell(row["error"], 9, 1)
            if row["diff"] is not None:
                line += _cell(row["diff"], 8, 1)
            if row["pull"] is not None:
                ndf += 1
                chi2 += row["pull"] ** 2
                line += _cell(row["pull"], 8, 1)
        lines.append(line)

    true_train = totals["train_truth_total"]
    meas_train = totals["train_measured_total"]
    true_test = totals["test_truth_total"]
    meas_test = totals["test_input_total"]
    unf = totals["unfolded_total"]
    with np.errstate(divide="ignore", invalid="ignore"):
        expected_error = np.sqrt(np.float64(meas_test)) * (np.float64(true_train) / np.float64(meas_train))
        total_pull = np.float64(unf - true_test) / np.sqrt(np.float64(meas_test))

    line = f"{'':>{iwid}}" + _cell(true_train, 8, 0) + _cell(meas_train, 8, 0)
    line += _cell(true_test if h_true is not None else None, 8, 0)
    line += _cell(meas_test, 8, 0) + _cell(unf, 8, 1)
    line += _cell(float(expected_error), 9, 1) + _cell(unf - true_test, 8, 1)
    if meas.integral() > 0:
        line += _cell(float(total_pull), 8, 1)
    lines += [rule, line, rule]

    if h_true is not None:
        chi_squ = chi2
        if int(treatment) in (ErrorTreatment.COVARIANCE, ErrorTreatment.COV_TOY):
            chi_squ = engine.chi2(h_true, treatment)
            lines.append(f"Chi^2/NDF={chi_squ:g}/{ndf} (bin-by-bin Chi^2={chi2:g})")
        else:
            lines.append(f"Bin-by-bin Chi^2/NDF={chi_squ:g}/{ndf}")
        if chi_squ <= 0:
            logger.warning("Invalid Chi^2 Value")

    return "\n".join(lines) + "\n"


def results_dataframe(
    engine: UnfoldingEngine,
    h_true: Histogram | None = None,
    treatment: ErrorTreatment = ErrorTreatment.ERRORS,
) -> pd.DataFrame:
    """
    Per-bin results as a DataFrame (one row per logical bin).

    Columns: bin, train_truth, train_measured, test_truth, test_input,
    unfolded, error, diff, pull. Entries that do not apply are NaN.
    """
    reco = engine.hreco(treatment)
    columns = [
        "bin", "train_truth", "train_measured", "test_truth",
        "test_input", "unfolded", "error", "diff", "pull",
    ]
    if reco is None or not engine.unfolded:
        return pd.DataFrame(columns=columns)

    with_error = int(treatment) != ErrorTreatment.NO_ERROR
    records = []
    for row in _rows(engine, reco, h_true, with_error):
        record = {"bin": row["i"] + (0 if engine.overflow else 1)}
        for key in columns[1:]:
            record[key] = np.nan if row[key] is None else row[key]
        records.append(record)
    return pd.DataFrame.from_records(records, columns=columns)
