"""
Posterior draws of condition-specific proportions.

For every retained iteration t, with responder set R_t and non-responder set
C_t (which always contains the null category), proportions are drawn from
their exact conditional posterior::

    q        ~ Dirichlet(alpha_u,C + n_u,C + n_s,C)          shared shape within C
    (u_R, u_C) ~ Dirichlet(alpha_u,R + n_u,R, A_C + N_u(C))
    (s_R, s_C) ~ Dirichlet(alpha_s,R + n_s,R, A_C + N_s(C))
    p_u = u_R on R, u_C * q on C
    p_s = s_R on R, s_C * q on C

With no responder categories this reduces to p_s = p_u ~ Dirichlet(alpha_u +
n_s + n_u). Reported vectors exclude the null category.

Classes
-------
PosteriorDraws
    Every iteration's draw for one individual.
PosteriorSummary
    Iteration-wise mean for one individual.
PosteriorPredictor
    Draws for one individual given its responder trace.

Functions
---------
compute_posterior
    Draws for every individual of a fit.
posterior_ps, posterior_pu, posterior_diff, posterior_log_diff
    Posterior mean tables (individual x category).
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Union

import numpy as np
import pandas as pd

if TYPE_CHECKING:
    from .engine import CompassFit

TINY = np.finfo(float).tiny


@dataclass
class PosteriorSummary:
    """Mean posterior proportions for one individual, each shape (K-1,)."""
    p_s: np.ndarray
    p_u: np.ndarray
    diff: np.ndarray
    logd: np.ndarray


@dataclass
class PosteriorDraws:
    """Per-iteration posterior proportions for one individual, each shape (T, K-1)."""
    p_s: np.ndarray
    p_u: np.ndarray
    diff: np.ndarray
    logd: np.ndarray

    @property
    def n_draws(self) -> int:
        return self.p_s.shape[0]

    def mean(self) -> PosteriorSummary:
        return PosteriorSummary(
            p_s=self.p_s.mean(axis=0),
            p_u=self.p_u.mean(axis=0),
            diff=self.diff.mean(axis=0),
            logd=self.logd.mean(axis=0),
        )


def _masked_gamma(rng: np.random.Generator, shape: np.ndarray, mask: np.ndarray) -> np.ndarray:
    """Standard gamma draws where ``mask`` is set, zero elsewhere."""
    draws = rng.standard_gamma(np.where(mask, shape, 1.0))
    return np.where(mask, draws, 0.0)


class PosteriorPredictor:
    """Draw p_s and p_u for one individual along its responder trace.

    Parameters
    ----------
    alpha_s, alpha_u : np.ndarray
        Final concentration vectors, shape (K,).
    """

    def __init__(self, alpha_s: np.ndarray, alpha_u: np.ndarray):
        self.alpha_s = np.asarray(alpha_s, dtype=float)
        self.alpha_u = np.asarray(alpha_u, dtype=float)

    def predict_full(
        self,
        gamma_trace_row: np.ndarray,
        n_s_row: np.ndarray,
        n_u_row: np.ndarray,
        rng: np.random.Generator,
    ) -> PosteriorDraws:
        """One draw per retained iteration.

        Parameters
        ----------
        gamma_trace_row : np.ndarray
            Responder trace of one individual, shape (K-1, T).
        n_s_row, n_u_row : np.ndarray
            Counts of that individual, shape (K,).
        rng : np.random.Generator
            Random source.

        Returns
        -------
        PosteriorDraws
            Arrays of shape (T, K-1).
        """
        n_s = np.asarray(n_s_row, dtype=float)
        n_u = np.asarray(n_u_row, dtype=float)
        g = np.asarray(gamma_trace_row, dtype=bool).T
        T = g.shape[0]
        R = np.concatenate([g, np.zeros((T, 1), dtype=bool)], axis=1)
        C = ~R

        a_s, a_u = self.alpha_s, self.alpha_u
        A_C = np.sum(np.where(C, a_u, 0.0), axis=1)
        Nu_C = np.sum(np.where(C, n_u, 0.0), axis=1)
        Ns_C = np.sum(np.where(C, n_s, 0.0), axis=1)

        # shared composition of the non-responder block
        q = _masked_gamma(rng, np.broadcast_to(a_u + n_u + n_s, R.shape), C)
        q = q / np.maximum(q.sum(axis=1, keepdims=True), TINY)

        u_R = _masked_gamma(rng, np.broadcast_to(a_u + n_u, R.shape), R)
        u_C = rng.standard_gamma(A_C + Nu_C)
        s_R = _masked_gamma(rng, np.broadcast_to(a_s + n_s, R.shape), R)
        s_C = rng.standard_gamma(A_C + Ns_C)

        p_u = (u_R + u_C[:, None] * q) / np.maximum(u_R.sum(axis=1) + u_C, TINY)[:, None]
        p_s = (s_R + s_C[:, None] * q) / np.maximum(s_R.sum(axis=1) + s_C, TINY)[:, None]

        p_s = np.maximum(p_s[:, :-1], TINY)
        p_u = np.maximum(p_u[:, :-1], TINY)
        return PosteriorDraws(
            p_s=p_s,
            p_u=p_u,
            diff=p_s - p_u,
            logd=np.log(p_s) - np.log(p_u),
        )

    def predict(self, gamma_trace_row, n_s_row, n_u_row, rng) -> PosteriorSummary:
        """Iteration-wise mean of :meth:`predict_full`."""
        return self.predict_full(gamma_trace_row, n_s_row, n_u_row, rng).mean()


def compute_posterior(
    fit: "CompassFit",
    full: bool = True,
    seed: Optional[Union[int, np.random.SeedSequence]] = None,
) -> Dict[str, Union[PosteriorDraws, PosteriorSummary]]:
    """Posterior proportions for every individual of a fit.

    Parameters
    ----------
    fit : CompassFit
        Output of the MCMC engine.
    full : bool, default True
        Return every iteration's draw. If False, return the means only.
    seed : int or SeedSequence, optional
        Defaults to the seed the engine reserved for posterior draws, so the
        summary and full variants of one fit share the same random stream.

    Returns
    -------
    dict
        Keyed by individual id, in data order.
    """
    rng = np.random.default_rng(fit.posterior_seed if seed is None else seed)
    predictor = PosteriorPredictor(fit.alpha_s, fit.alpha_u)
    data = fit.data

    out = {}
    for i, ind in enumerate(data.individual_ids):
        draws = predictor.predict_full(fit.gamma_trace[i], data.n_s[i], data.n_u[i], rng)
        out[ind] = draws if full else draws.mean()
    return out


def _posterior_frame(fit: "CompassFit", attr: str) -> pd.DataFrame:
    if fit.posterior is None:
        raise ValueError("fit has no posterior; run compute_posterior first.")
    rows = []
    for ind in fit.data.individual_ids:
        values = getattr(fit.posterior[ind], attr)
        rows.append(values.mean(axis=0) if values.ndim == 2 else values)
    return pd.DataFrame(
        np.vstack(rows),
        index=pd.Index(fit.data.individual_ids, name="individual"),
        columns=fit.data.responder_categories,
    )


def posterior_ps(fit: "CompassFit") -> pd.DataFrame:
    """Posterior mean stimulated proportions (null category excluded)."""
    return _posterior_frame(fit, "p_s")


def posterior_pu(fit: "CompassFit") -> pd.DataFrame:
    """Posterior mean unstimulated proportions (null category excluded)."""
    return _posterior_frame(fit, "p_u")


def posterior_diff(fit: "CompassFit") -> pd.DataFrame:
    """Posterior mean of p_s - p_u."""
    return _posterior_frame(fit, "diff")


def posterior_log_diff(fit: "CompassFit") -> pd.DataFrame:
    """Posterior mean of log(p_s) - log(p_u)."""
    return _posterior_frame(fit, "logd")
