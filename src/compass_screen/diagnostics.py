"""
Chain diagnostics.

Functions
---------
acceptance_summary
    Per-category Metropolis-Hastings acceptance rates of a fit.
responder_flip_summary
    Per-individual indicator flip rates and mean response.
effective_sample_size
    ESS of a scalar trace from its autocorrelation.
hyperparameter_ess
    ESS of every concentration parameter trace.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from statsmodels.tsa.stattools import acf

if TYPE_CHECKING:
    from .engine import CompassFit

logger = logging.getLogger(__name__)


def acceptance_summary(fit: "CompassFit") -> pd.DataFrame:
    """Acceptance rates of the alpha_s and alpha_u samplers, one row per category."""
    return pd.DataFrame(
        {
            "alpha_s": fit.alpha_s,
            "alpha_u": fit.alpha_u,
            "accept_alpha_s": fit.acceptance_alpha_s,
            "accept_alpha_u": fit.acceptance_alpha_u,
        },
        index=pd.Index(fit.data.category_names, name="category"),
    )


def responder_flip_summary(fit: "CompassFit") -> pd.DataFrame:
    """Flip rate and number of categories with mean response above 0.5, per individual."""
    mean_gamma = fit.mean_gamma
    return pd.DataFrame(
        {
            "flip_rate": fit.gamma_flip_rate,
            "mean_gamma": mean_gamma.mean(axis=1).to_numpy(),
            "n_responding": (mean_gamma > 0.5).sum(axis=1).to_numpy(),
        },
        index=mean_gamma.index,
    )


def effective_sample_size(trace: np.ndarray) -> float:
    """Effective sample size of a 1-D trace.

    Uses Geyer's initial positive sequence: autocorrelations are summed in
    consecutive pairs until a pair sum turns non-positive.

    Parameters
    ----------
    trace : np.ndarray
        Samples, shape (T,).

    Returns
    -------
    float
        ESS in (0, T]. A constant trace returns T.
    """
    x = np.asarray(trace, dtype=float)
    n = x.size
    if n < 4 or np.allclose(x, x[0]):
        return float(n)

    rho = acf(x, nlags=n - 1, fft=True)
    tau = -1.0
    for m in range(0, n - 1, 2):
        pair = rho[m] + rho[m + 1]
        if pair <= 0:
            break
        tau += 2.0 * pair
    tau = max(tau, 1.0 / n)
    return float(min(n, n / tau))


def hyperparameter_ess(fit: "CompassFit") -> pd.DataFrame:
    """ESS of the log concentration traces, one row per category."""
    out = pd.DataFrame(
        {
            "ess_alpha_s": [effective_sample_size(np.log(fit.alpha_s_trace[:, k]))
                            for k in range(fit.alpha_s_trace.shape[1])],
            "ess_alpha_u": [effective_sample_size(np.log(fit.alpha_u_trace[:, k]))
                            for k in range(fit.alpha_u_trace.shape[1])],
        },
        index=pd.Index(fit.data.category_names, name="category"),
    )
    low = out.index[(out < 0.01 * fit.n_iterations).any(axis=1)]
    if len(low):
        logger.warning(f"Very low effective sample size for categories {list(low)}")
    return out
