"""
Run one unfolding from a TOML configuration.

Usage:
    unfolding-run --config unfolding.toml
    unfolding-run --config unfolding.toml --algorithm invert --errors cov_toy --ntoys 500 --seed 42

Loads the training response and the measured distribution from the input
ROOT file, unfolds, prints the bin-by-bin table and writes the table, a
CSV of the per-bin results, a plot and (optionally) an engine snapshot to
the output directory.
"""

from __future__ import annotations

import argparse
import logging
import sys

from .modules.config import UnfoldingConfig, parse_algorithm, parse_error_treatment
from .modules.data_loader import HistogramLoader
from .modules.engine import REGPARM_UNSET, ErrorTreatment, UnfoldingEngine, create
from .modules.exceptions import ConfigurationError, UnfoldingError
from .modules.histogram import Histogram
from .modules.persistence import save_engine
from .utils.logging_config import setup_logging, suppress_warnings


class UnfoldingRunner:
    """Drive one configured unfolding from input files to output products"""

    def __init__(self, config: UnfoldingConfig):
        self.config = config
        self.logger = logging.getLogger("Unfolding.Runner")

    def build_engine(self) -> tuple[UnfoldingEngine, Histogram | None]:
        """
        Load inputs and create the engine.

        Returns:
            (engine, truth reference or None)

        Raises:
            ConfigurationError: If required input keys are missing or the algorithm is unavailable
        """
        inp = self.config.input
        for key in ("measured", "response_measured", "response_truth", "response_matrix"):
            if key not in inp:
                raise ConfigurationError(f"Missing [input].{key} in {self.config.path}")

        loader = HistogramLoader(self.config.input_path())
        response = loader.load_response(
            inp["response_measured"],
            inp["response_truth"],
            inp["response_matrix"],
            overflow=bool(inp["overflow"]),
        )
        measured = loader.load_histogram(inp["measured"])
        h_true = loader.load_histogram(inp["truth"]) if inp.get("truth") else None

        reg_parm = self.config.reg_parm
        engine = create(
            self.config.algorithm,
            response,
            measured,
            reg_parm=REGPARM_UNSET if reg_parm is None else reg_parm,
            **self.config.engine_kwargs(),
        )
        if engine is None:
            raise ConfigurationError(
                f"Unfolding algorithm '{self.config.algorithm.name.lower()}' is not available"
            )
        return engine, h_true

    def run(self) -> bool:
        """
        Unfold and write all configured outputs.

        Returns:
            True if unfolding succeeded
        """
        engine, h_true = self.build_engine()
        treatment = self.config.error_treatment
        self.logger.info(f"Unfolding with {engine.describe()}")

        if not engine.unfold_with_errors(treatment):
            if engine.failed:
                self.logger.error(f"Unfolding '{engine.name}' failed")
                return False
            self.logger.warning(
                f"Error treatment {treatment.name} unavailable, falling back to {ErrorTreatment.NO_ERROR.name}"
            )
            treatment = ErrorTreatment.NO_ERROR

        engine.print_table(sys.stdout, h_true, treatment)

        table_path = self.config.output_file("table")
        if table_path is not None:
            with open(table_path, "w") as f:
                engine.print_table(f, h_true, treatment)
            self.logger.info(f"Saved table to {table_path}")

        csv_path = self.config.output_file("csv")
        if csv_path is not None:
            engine.results_dataframe(h_true, treatment).to_csv(csv_path, index=False)
            self.logger.info(f"Saved per-bin results to {csv_path}")

        plot_path = self.config.output_file("plot")
        if plot_path is not None:
            from .modules.plotter import UnfoldingPlotter

            plotter = UnfoldingPlotter(plot_path.parent)
            plotter.plot_unfolded(engine, h_true, treatment, filename=plot_path.name)
            if treatment in (ErrorTreatment.COVARIANCE, ErrorTreatment.COV_TOY):
                plotter.plot_covariance(
                    engine.ereco(treatment),
                    filename=f"{plot_path.stem}_correlation{plot_path.suffix}",
                    correlation=True,
                    title=engine.title,
                )

        snapshot_path = self.config.output_file("snapshot")
        if snapshot_path is not None:
            save_engine(engine, snapshot_path, description=engine.describe())

        if h_true is not None:
            self.logger.info(f"Chi^2 = {engine.chi2(h_true, treatment):g}")
        return True


def main(argv=None) -> int:
    """Main entry point with argument parsing"""
    parser = argparse.ArgumentParser(description="Binned unfolding of a measured distribution")
    parser.add_argument("--config", required=True, help="TOML run configuration")
    parser.add_argument(
        "--algorithm",
        type=str,
        default=None,
        help="Override [unfolding].algorithm (none, bin_by_bin, invert, ...)",
    )
    parser.add_argument(
        "--errors",
        type=str,
        default=None,
        help="Override [unfolding].error_treatment (no_error, errors, covariance, cov_toy)",
    )
    parser.add_argument("--ntoys", type=int, default=None, help="Override [unfolding].n_toys")
    parser.add_argument("--seed", type=int, default=None, help="Override [toys].seed")
    parser.add_argument("--verbose", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    logger = setup_logging(verbose=args.verbose)
    suppress_warnings()

    try:
        config = UnfoldingConfig(args.config)
        if args.algorithm is not None:
            config.algorithm = parse_algorithm(args.algorithm)
        if args.errors is not None:
            config.error_treatment = parse_error_treatment(args.errors)
        if args.ntoys is not None:
            config.unfolding["n_toys"] = args.ntoys
        if args.seed is not None:
            config.toys["seed"] = args.seed
        if args.verbose:
            config.unfolding["verbose"] = max(int(config.unfolding["verbose"]), 2)

        ok = UnfoldingRunner(config).run()
    except UnfoldingError as e:
        logger.error(str(e))
        return 1

    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
