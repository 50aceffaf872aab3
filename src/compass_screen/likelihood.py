"""
Dirichlet-Multinomial likelihood kernel.

All samplers in this package compare a proposed state against the current
state, so the multinomial coefficient (which depends on the counts only) is
never needed inside the chain. It is still available through
:func:`dm_log_likelihood` for absolute evaluations.

Model for individual i with responder set R (categories with
gamma = 1) and non-responder set C (the rest, always including the null
category)::

    p_u ~ Dirichlet(alpha_u)
    p_s,k / p_s(C) = p_u,k / p_u(C)                     for k in C
    (p_s,R, p_s(C)) ~ Dirichlet(alpha_s,R, A_C),        A_C = sum_{k in C} alpha_u,k
    n_u ~ Multinomial(N_u, p_u),  n_s ~ Multinomial(N_s, p_s)

Integrating out p_s and p_u gives, with lB(v) = sum lgamma(v) - lgamma(sum v)::

    ll_i = lB(alpha_u,C + n_u,C + n_s,C) - lB(alpha_u,C)
         + lB(alpha_u,R + n_u,R, A_C + N_u(C)) - lB(alpha_u,R, A_C)
         + lB(alpha_s,R + n_s,R, A_C + N_s(C)) - lB(alpha_s,R, A_C)

Functions
---------
log_multivariate_beta
    Log of the multivariate Beta function.
dm_log_kernel
    Per-row DM log-likelihood without the multinomial coefficient.
dm_log_likelihood
    Per-row absolute DM log-likelihood.
dm_log_likelihood_ratio
    Per-row log-likelihood ratio between two concentration vectors.
compass_log_likelihood
    Per-individual marginal log-likelihood of the responder mixture.
estimate_concentration
    Profile-likelihood starting value for a concentration vector.
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
from scipy.optimize import minimize_scalar
from scipy.special import gammaln


def log_multivariate_beta(v: np.ndarray, axis: int = -1) -> np.ndarray:
    """Compute log B(v) = sum(lgamma(v)) - lgamma(sum(v)) along ``axis``."""
    v = np.asarray(v, dtype=float)
    return np.sum(gammaln(v), axis=axis) - gammaln(np.sum(v, axis=axis))


def dm_log_kernel(counts: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Per-row Dirichlet-Multinomial log-likelihood without the coefficient.

    Parameters
    ----------
    counts : np.ndarray
        Counts, shape (..., K).
    alpha : np.ndarray
        Concentration parameters, broadcastable against ``counts``.

    Returns
    -------
    np.ndarray
        Shape (...,).
    """
    # DirMult(n | a) = Γ(Σa) / Γ(N + Σa) × Π_k Γ(n_k + a_k) / Γ(a_k)
    counts = np.asarray(counts, dtype=float)
    alpha = np.broadcast_to(np.asarray(alpha, dtype=float), counts.shape)

    N = counts.sum(axis=-1)
    alpha_sum = alpha.sum(axis=-1)

    return (gammaln(alpha_sum) - gammaln(N + alpha_sum) +
            np.sum(gammaln(counts + alpha) - gammaln(alpha), axis=-1))


def dm_log_likelihood(counts: np.ndarray, alpha: np.ndarray) -> np.ndarray:
    """Per-row absolute Dirichlet-Multinomial log-likelihood.

    Adds log(N! / prod n_k!) to :func:`dm_log_kernel`. Agrees with
    ``scipy.stats.dirichlet_multinomial.logpmf``.
    """
    counts = np.asarray(counts, dtype=float)
    log_coef = gammaln(counts.sum(axis=-1) + 1.0) - np.sum(gammaln(counts + 1.0), axis=-1)
    return dm_log_kernel(counts, alpha) + log_coef


def dm_log_likelihood_ratio(
    counts: np.ndarray,
    alpha_new: np.ndarray,
    alpha_old: np.ndarray,
) -> np.ndarray:
    """Per-row log L(alpha_new) - log L(alpha_old).

    The multinomial coefficient cancels and is never evaluated.
    """
    return dm_log_kernel(counts, alpha_new) - dm_log_kernel(counts, alpha_old)


def responder_mask(gamma: np.ndarray) -> np.ndarray:
    """Expand an (I, K-1) responder matrix to an (I, K) boolean mask.

    The null category (last column) is never a responder.
    """
    gamma = np.asarray(gamma).astype(bool)
    null_col = np.zeros(gamma.shape[:-1] + (1,), dtype=bool)
    return np.concatenate([gamma, null_col], axis=-1)


def compass_log_likelihood(
    n_s: np.ndarray,
    n_u: np.ndarray,
    gamma: np.ndarray,
    alpha_s: np.ndarray,
    alpha_u: np.ndarray,
) -> np.ndarray:
    """Per-individual marginal log-likelihood of the responder mixture.

    Multinomial coefficients are dropped: they depend on neither ``gamma``
    nor the concentration vectors.

    Parameters
    ----------
    n_s, n_u : np.ndarray
        Stimulated and unstimulated counts, shape (I, K). Last column is null.
    gamma : np.ndarray
        Responder indicators, shape (I, K-1).
    alpha_s, alpha_u : np.ndarray
        Concentration vectors, shape (K,).

    Returns
    -------
    np.ndarray
        Log-likelihoods, shape (I,).

    Notes
    -----
    With gamma all zero this equals ``dm_log_kernel(n_s + n_u, alpha_u)``.
    With gamma all one it equals ``dm_log_kernel(n_u, alpha_u)`` plus
    ``dm_log_kernel(n_s, [alpha_s[:-1], alpha_u[-1]])``.
    """
    n_s = np.asarray(n_s, dtype=float)
    n_u = np.asarray(n_u, dtype=float)
    alpha_s = np.asarray(alpha_s, dtype=float)
    alpha_u = np.asarray(alpha_u, dtype=float)

    R = responder_mask(gamma)
    C = ~R

    A_C = np.sum(np.where(C, alpha_u, 0.0), axis=-1)
    Nu_C = np.sum(np.where(C, n_u, 0.0), axis=-1)
    Ns_C = np.sum(np.where(C, n_s, 0.0), axis=-1)
    S_R = np.sum(np.where(R, alpha_s, 0.0), axis=-1)

    # Per-category terms
    pooled = gammaln(alpha_u + n_u + n_s) - gammaln(alpha_u)
    unstim = gammaln(alpha_u + n_u) - gammaln(alpha_u)
    stim = gammaln(alpha_s + n_s) - gammaln(alpha_s)
    per_category = np.sum(np.where(C, pooled, unstim + stim), axis=-1)

    Au = alpha_u.sum()
    Nu = n_u.sum(axis=-1)
    Ns = n_s.sum(axis=-1)

    return (per_category
            + _aggregate_terms(A_C, Nu_C, Ns_C, S_R, Ns)
            - gammaln(Au + Nu) + gammaln(Au))


def _aggregate_terms(A_C, Nu_C, Ns_C, S_R, Ns):
    """Terms of the likelihood that depend on the category partition only."""
    return (-gammaln(A_C + Nu_C + Ns_C)
            + gammaln(A_C + Nu_C) + gammaln(A_C + Ns_C) - gammaln(A_C)
            - gammaln(S_R + A_C + Ns) + gammaln(S_R + A_C))


def estimate_concentration(
    counts: np.ndarray,
    precision_bounds: Tuple[float, float] = (1e-2, 1e6),
    pseudocount: float = 0.5,
) -> np.ndarray:
    """Profile-likelihood estimate of a DM concentration vector.

    The mean is fixed at the pooled (smoothed) proportions across rows and
    the precision is found by bounded 1-D optimisation on the log scale.

    Parameters
    ----------
    counts : np.ndarray
        Counts, shape (I, K).
    precision_bounds : tuple of float
        Bounds on the total concentration sum(alpha).
    pseudocount : float
        Added to every pooled category count to keep the mean away from 0.

    Returns
    -------
    np.ndarray
        Concentration vector, shape (K,), strictly positive.
    """
    counts = np.asarray(counts, dtype=float)
    K = counts.shape[1]

    pooled = counts.sum(axis=0) + pseudocount
    mu = pooled / pooled.sum()

    def neg_ll(log_precision):
        return -float(np.sum(dm_log_kernel(counts, np.exp(log_precision) * mu)))

    lo, hi = np.log(precision_bounds[0]), np.log(precision_bounds[1])
    res = minimize_scalar(neg_ll, bounds=(lo, hi), method="bounded")
    alpha = float(np.exp(res.x)) * mu

    # small floor so that the log-scale random walk has a finite start
    return np.maximum(alpha, 1e-6 * np.ones(K))
