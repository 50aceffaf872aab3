"""
Visualization of COMPASS fits.

Functions
---------
response_heatmap
    Heatmap of posterior response probabilities (individuals x categories).
hyperparameter_trace_plot
    Trace plot of one concentration vector over the retained iterations.
"""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

import matplotlib.pyplot as plt
import numpy as np

if TYPE_CHECKING:
    from .engine import CompassFit


def response_heatmap(
    fit: "CompassFit",
    *,
    categories: Optional[Sequence[str]] = None,
    cmap: str = "Reds",
    title: Optional[str] = None,
    figsize: Optional[tuple[float, float]] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Create a heatmap of posterior response probabilities.

    Parameters
    ----------
    fit : CompassFit
        Output of the MCMC engine.
    categories : sequence of str, optional
        Subset (and order) of non-null categories to show. Defaults to all,
        ordered by mean response probability.
    cmap : str, default "Reds"
        Matplotlib colormap name.
    title : str or None, default None
        Plot title.
    figsize : tuple of float or None, default None
        Figure size. If None, auto-sized based on data.
    outpath : str, Path, or None, default None
        If provided, save the figure to this path.
    dpi : int, default 200
        Resolution for saved figure.

    Returns
    -------
    fig : matplotlib.figure.Figure
    ax : matplotlib.axes.Axes
    data : pd.DataFrame
        The plotted mean_gamma table.
    """
    data = fit.mean_gamma
    if categories is None:
        categories = list(data.mean(axis=0).sort_values(ascending=False).index)
    data = data[list(categories)]

    if figsize is None:
        n_rows, n_cols = data.shape
        figsize = (max(4, n_cols * 0.5 + 2), max(4, n_rows * 0.25 + 1))

    fig, ax = plt.subplots(figsize=figsize)
    im = ax.imshow(data.values, aspect="auto", cmap=cmap, vmin=0.0, vmax=1.0,
                   interpolation="nearest")

    ax.set_xticks(range(data.shape[1]))
    ax.set_xticklabels(data.columns, rotation=90, fontsize=7)
    ax.set_yticks(range(data.shape[0]))
    ax.set_yticklabels(data.index, fontsize=7)
    ax.set_xlabel("Category")
    ax.set_ylabel("Individual")
    if title:
        ax.set_title(title)

    cbar = fig.colorbar(im, ax=ax, shrink=0.8)
    cbar.set_label("P(response)")
    fig.tight_layout()

    if outpath is not None:
        outpath = Path(outpath)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outpath, dpi=dpi, bbox_inches="tight")

    return fig, ax, data


def hyperparameter_trace_plot(
    fit: "CompassFit",
    which: str = "alpha_s",
    *,
    log_scale: bool = True,
    title: Optional[str] = None,
    outpath: Optional[str | Path] = None,
    dpi: int = 200,
):
    """Trace of alpha_s or alpha_u over the retained iterations, one line per category.

    Returns
    -------
    fig : matplotlib.figure.Figure
    ax : matplotlib.axes.Axes
    """
    traces = {"alpha_s": fit.alpha_s_trace, "alpha_u": fit.alpha_u_trace}
    if which not in traces:
        raise ValueError(f"Unknown which='{which}'. Use 'alpha_s' or 'alpha_u'.")
    trace = traces[which]

    fig, ax = plt.subplots(figsize=(8, 4))
    iters = np.arange(1, trace.shape[0] + 1)
    for k, name in enumerate(fit.data.category_names):
        ax.plot(iters, trace[:, k], lw=0.6, label=name)

    if log_scale:
        ax.set_yscale("log")
    ax.set_xlabel("Iteration")
    ax.set_ylabel(which)
    ax.set_title(title or f"{which} trace")
    if trace.shape[1] <= 12:
        ax.legend(fontsize=7, frameon=False)
    fig.tight_layout()

    if outpath is not None:
        outpath = Path(outpath)
        outpath.parent.mkdir(parents=True, exist_ok=True)
        fig.savefig(outpath, dpi=dpi, bbox_inches="tight")

    return fig, ax
