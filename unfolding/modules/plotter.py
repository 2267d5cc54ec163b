"""
Plots of unfolding results

Example usage:
    plotter = UnfoldingPlotter(output_dir="output")
    plotter.plot_unfolded(engine, h_true=truth, treatment=ErrorTreatment.COVARIANCE)
    plotter.plot_covariance(engine.ereco(ErrorTreatment.COV_TOY), correlation=True)
"""

import logging
import warnings
from pathlib import Path

import matplotlib
import matplotlib.pyplot as plt
import mplhep as hep
import numpy as np

from .engine import ErrorTreatment, UnfoldingEngine
from .histogram import Histogram, hist_no_overflow

# Suppress all font-related warnings
warnings.filterwarnings('ignore', category=UserWarning, module='matplotlib')
logging.getLogger('matplotlib.font_manager').setLevel(logging.ERROR)

# Configure matplotlib to use available fonts before setting style
matplotlib.rcParams['font.family'] = 'sans-serif'
matplotlib.rcParams['font.sans-serif'] = ['DejaVu Sans', 'Arial', 'Helvetica', 'sans-serif']

# Set LHCb style for all plots
plt.style.use(hep.style.LHCb2)

# Override any Times New Roman settings from the style
matplotlib.rcParams['font.family'] = 'sans-serif'


class UnfoldingPlotter:
    """Class for creating unfolding result plots"""

    def __init__(self, output_dir):
        """
        Initialize with output directory

        Parameters:
        - output_dir: Directory to save plots
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger = logging.getLogger("Unfolding.Plotter")

    def plot_unfolded(
        self,
        engine: UnfoldingEngine,
        h_true: Histogram = None,
        treatment: ErrorTreatment = ErrorTreatment.ERRORS,
        filename: str = "unfolded.pdf",
        xlabel: str = "Observable",
    ):
        """
        Plot measured input, unfolded output and (optionally) the truth
        reference, with an unfolded/truth ratio panel.

        Multi-dimensional results are drawn against the flattened bin number.

        Returns:
            Path of the saved plot, or None if the engine could not unfold
        """
        reco = engine.hreco(treatment)
        if reco is None or not engine.unfolded:
            self.logger.warning(f"Nothing to plot: '{engine.name}' did not unfold")
            return None

        reco = hist_no_overflow(reco, engine.overflow)
        meas = hist_no_overflow(engine.measured, engine.overflow)
        true = hist_no_overflow(h_true, engine.overflow) if h_true is not None else None

        if true is not None:
            fig, (ax, rax) = plt.subplots(
                2, 1, figsize=(10, 9), sharex=True, gridspec_kw={'height_ratios': [3, 1], 'hspace': 0.05}
            )
        else:
            fig, ax = plt.subplots(figsize=(10, 7))
            rax = None

        if meas.n_bins == reco.n_bins:
            hep.histplot(meas.values(), reco.edges(), ax=ax, histtype='step', color='grey', label='Measured')
        if true is not None:
            hep.histplot(true.values(), true.edges(), ax=ax, histtype='step', color='red', label='Truth')
        hep.histplot(
            reco.values(), reco.edges(), yerr=reco.errors(), ax=ax,
            histtype='errorbar', color='black', label='Unfolded',
        )

        ax.set_ylabel('Entries', fontsize=14)
        ax.set_title(engine.title, fontsize=16, pad=20)
        ax.legend(fontsize=12)

        if rax is not None:
            with np.errstate(divide='ignore', invalid='ignore'):
                ratio = np.where(true.values() != 0, reco.values() / true.values(), np.nan)
                ratio_err = np.where(true.values() != 0, reco.errors() / np.abs(true.values()), np.nan)
            hep.histplot(ratio, reco.edges(), yerr=ratio_err, ax=rax, histtype='errorbar', color='black')
            rax.axhline(1.0, color='red', linestyle='--', linewidth=1)
            rax.set_ylabel('Unfolded / Truth', fontsize=12)
            rax.set_xlabel(xlabel, fontsize=14)
        else:
            ax.set_xlabel(xlabel, fontsize=14)

        plot_path = self.output_dir / filename
        plt.savefig(plot_path, dpi=300, bbox_inches='tight')
        plt.close(fig)
        self.logger.info(f"Saved unfolding plot to {plot_path}")
        return plot_path

    def plot_covariance(self, cov, filename: str = "covariance.pdf", correlation: bool = False, title: str = ""):
        """
        Heatmap of a covariance matrix, or of the correlation matrix derived from it.
        """
        matrix = np.asarray(cov, dtype=float)
        if correlation:
            sigma = np.sqrt(np.abs(np.diag(matrix)))
            with np.errstate(divide='ignore', invalid='ignore'):
                matrix = np.where(np.outer(sigma, sigma) > 0, matrix / np.outer(sigma, sigma), 0.0)

        fig, ax = plt.subplots(figsize=(9, 8))
        if correlation:
            mesh = ax.pcolormesh(matrix.T, cmap='RdBu_r', vmin=-1.0, vmax=1.0)
        else:
            mesh = ax.pcolormesh(matrix.T, cmap='viridis')
        fig.colorbar(mesh, ax=ax, label='Correlation' if correlation else 'Covariance')
        ax.set_xlabel('Bin', fontsize=14)
        ax.set_ylabel('Bin', fontsize=14)
        if title:
            ax.set_title(title, fontsize=16, pad=20)

        plot_path = self.output_dir / filename
        plt.savefig(plot_path, dpi=300, bbox_inches='tight')
        plt.close(fig)
        self.logger.info(f"Saved covariance plot to {plot_path}")
        return plot_path
