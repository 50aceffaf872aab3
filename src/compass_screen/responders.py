"""
Gibbs updates and starting values for the responder indicators.

Each (individual, category) indicator is drawn from its full conditional:
the log-likelihood ratio of "responder" vs "non-responder" (from the
responder mixture model, see :mod:`compass_screen.likelihood`) plus the
prior log odds of the collapsed Beta-Bernoulli mixing prior::

    gamma_ik | omega_k ~ Bernoulli(omega_k),  omega_k ~ Beta(pb1, pb2)
    P(gamma_ik = 1 | gamma_-i,k) = (m_k + pb1) / (I* + pb1 + pb2)

where m_k counts the *other* individuals currently responding in category k
and I* = I - 1.

Classes
-------
ResponderSampler
    One Gibbs sweep over the responder matrix.

Functions
---------
responder_log_likelihood_ratio
    Log-likelihood ratio for flipping a single indicator on.
initialize_responders_default
    Start as a responder unless the unstimulated proportion is higher.
initialize_responders_fisher
    Start from Fisher's exact one-sided lower bound of the log odds ratio.
"""
from __future__ import annotations

import math
from typing import Tuple

import numpy as np
from scipy.special import expit, gammaln
from scipy.stats.contingency import odds_ratio


def _aggregate(A_C: float, Nu_C: float, Ns_C: float, S_R: float, Ns: float) -> float:
    lg = math.lgamma
    return (-lg(A_C + Nu_C + Ns_C)
            + lg(A_C + Nu_C) + lg(A_C + Ns_C) - lg(A_C)
            - lg(S_R + A_C + Ns) + lg(S_R + A_C))


def _partition_sums(gamma_row, n_s_row, n_u_row, alpha_s, alpha_u):
    R = np.append(np.asarray(gamma_row, dtype=bool), False)
    C = ~R
    return (float(alpha_u[C].sum()), float(n_u_row[C].sum()),
            float(n_s_row[C].sum()), float(alpha_s[R].sum()))


def _category_terms(n_s, n_u, alpha_s, alpha_u):
    """Per-(i, k) likelihood terms for k < K-1.

    Returns
    -------
    delta : np.ndarray
        Responder minus non-responder category term, shape (I, K-1).
    """
    a_s = alpha_s[:-1]
    a_u = alpha_u[:-1]
    ns = n_s[:, :-1]
    nu = n_u[:, :-1]
    pooled = gammaln(a_u + nu + ns) - gammaln(a_u)
    split = (gammaln(a_u + nu) - gammaln(a_u)) + (gammaln(a_s + ns) - gammaln(a_s))
    return split - pooled


def responder_log_likelihood_ratio(
    i: int,
    k: int,
    gamma: np.ndarray,
    n_s: np.ndarray,
    n_u: np.ndarray,
    alpha_s: np.ndarray,
    alpha_u: np.ndarray,
) -> float:
    """log L(gamma_ik = 1) - log L(gamma_ik = 0), other indicators fixed.

    Parameters
    ----------
    i, k : int
        Individual and category (k < K-1).
    gamma : np.ndarray
        Responder matrix, shape (I, K-1). Only row ``i`` is read.
    n_s, n_u : np.ndarray
        Count matrices, shape (I, K).
    alpha_s, alpha_u : np.ndarray
        Concentration vectors, shape (K,).
    """
    n_s = np.asarray(n_s, dtype=float)
    n_u = np.asarray(n_u, dtype=float)
    alpha_s = np.asarray(alpha_s, dtype=float)
    alpha_u = np.asarray(alpha_u, dtype=float)

    row = np.array(gamma[i], dtype=bool)
    row[k] = False
    A_C, Nu_C, Ns_C, S_R = _partition_sums(row, n_s[i], n_u[i], alpha_s, alpha_u)
    Ns = float(n_s[i].sum())

    delta = _category_terms(n_s[i:i + 1], n_u[i:i + 1], alpha_s, alpha_u)[0, k]
    off = _aggregate(A_C, Nu_C, Ns_C, S_R, Ns)
    on = _aggregate(A_C - alpha_u[k], Nu_C - n_u[i, k], Ns_C - n_s[i, k], S_R + alpha_s[k], Ns)
    return float(delta + on - off)


class ResponderSampler:
    """Gibbs sampler for the (I, K-1) responder matrix.

    Parameters
    ----------
    pb1, pb2 : float
        Beta prior parameters on each category's response probability.
    indi : bool, default True
        If True, the responder margin ``m_k`` reflects updates made earlier
        in the same sweep. If False, margins are computed once at the start
        of the sweep and shared by every individual.
    """

    def __init__(self, pb1: float, pb2: float, indi: bool = True):
        self.pb1 = float(pb1)
        self.pb2 = float(pb2)
        self.indi = bool(indi)

    def update(
        self,
        gamma: np.ndarray,
        n_s: np.ndarray,
        n_u: np.ndarray,
        alpha_s: np.ndarray,
        alpha_u: np.ndarray,
        rng: np.random.Generator,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Run one sweep over every individual and non-null category.

        Returns
        -------
        gamma_new : np.ndarray
            Updated responder matrix (a copy), dtype uint8.
        flips : np.ndarray
            Number of indicators that changed, per individual, shape (I,).
        """
        gamma = np.array(gamma, dtype=np.uint8)
        n_s = np.asarray(n_s, dtype=float)
        n_u = np.asarray(n_u, dtype=float)
        alpha_s = np.asarray(alpha_s, dtype=float)
        alpha_u = np.asarray(alpha_u, dtype=float)

        I, Km1 = gamma.shape
        Istar = I - 1
        delta = _category_terms(n_s, n_u, alpha_s, alpha_u)
        u = rng.random((I, Km1))

        mk = gamma.sum(axis=0).astype(np.int64)
        mk_sweep = mk.copy()
        flips = np.zeros(I, dtype=np.int64)

        for i in range(I):
            A_C, Nu_C, Ns_C, S_R = _partition_sums(gamma[i], n_s[i], n_u[i], alpha_s, alpha_u)
            Ns = float(n_s[i].sum())

            for k in range(Km1):
                current = int(gamma[i, k])
                margins = mk if self.indi else mk_sweep
                m = int(margins[k]) - current
                prior_log_odds = math.log(m + self.pb1) - math.log(Istar - m + self.pb2)

                a_u, a_s = alpha_u[k], alpha_s[k]
                nu, ns = n_u[i, k], n_s[i, k]
                if current:
                    on = (A_C, Nu_C, Ns_C, S_R)
                    off = (A_C + a_u, Nu_C + nu, Ns_C + ns, S_R - a_s)
                else:
                    off = (A_C, Nu_C, Ns_C, S_R)
                    on = (A_C - a_u, Nu_C - nu, Ns_C - ns, S_R + a_s)

                ll_ratio = delta[i, k] + _aggregate(*on, Ns) - _aggregate(*off, Ns)
                new = int(u[i, k] < expit(ll_ratio + prior_log_odds))

                if new != current:
                    gamma[i, k] = new
                    mk[k] += 1 if new else -1
                    flips[i] += 1
                    A_C, Nu_C, Ns_C, S_R = on if new else off

        return gamma, flips


def initialize_responders_default(n_s: np.ndarray, n_u: np.ndarray) -> np.ndarray:
    """Responder unless the raw unstimulated proportion is strictly higher.

    Ties, including categories with no cells in either condition, start as
    responders.

    Returns
    -------
    np.ndarray
        Shape (I, K-1), dtype uint8.
    """
    n_s = np.asarray(n_s, dtype=float)
    n_u = np.asarray(n_u, dtype=float)
    p_s = n_s / n_s.sum(axis=1, keepdims=True)
    p_u = n_u / n_u.sum(axis=1, keepdims=True)
    return (p_s[:, :-1] >= p_u[:, :-1]).astype(np.uint8)


def fisher_lower_bounds(n_s: np.ndarray, n_u: np.ndarray, level: float = 0.95) -> np.ndarray:
    """One-sided lower confidence bounds of the stimulated vs unstimulated log odds ratio.

    For each individual i and category k the 2x2 table is::

        [[n_s[i, k], N_s[i] - n_s[i, k]],
         [n_u[i, k], N_u[i] - n_u[i, k]]]

    The bound is the exact conditional one from Fisher's test (inverting the
    noncentral hypergeometric distribution), with ``alternative="greater"``.
    A zero lower bound on the odds ratio gives ``-inf``; a table with an
    empty column (no cells in either condition) gives ``-inf`` as well.

    Returns
    -------
    np.ndarray
        Shape (I, K-1).
    """
    n_s = np.asarray(n_s, dtype=np.int64)
    n_u = np.asarray(n_u, dtype=np.int64)
    I, K = n_s.shape
    Ns = n_s.sum(axis=1)
    Nu = n_u.sum(axis=1)

    lower = np.empty((I, K - 1))
    for i in range(I):
        for k in range(K - 1):
            table = np.array([[n_s[i, k], Ns[i] - n_s[i, k]],
                              [n_u[i, k], Nu[i] - n_u[i, k]]])
            ci = odds_ratio(table, kind="conditional").confidence_interval(
                confidence_level=level, alternative="greater"
            )
            lower[i, k] = np.log(ci.low) if ci.low > 0 else -np.inf
    return lower


def initialize_responders_fisher(
    n_s: np.ndarray,
    n_u: np.ndarray,
    level: float = 0.95,
    log_odds_threshold: float = 0.0,
) -> np.ndarray:
    """Responder where the one-sided log odds ratio lower bound exceeds a threshold.

    Returns
    -------
    np.ndarray
        Shape (I, K-1), dtype uint8.
    """
    lower = fisher_lower_bounds(n_s, n_u, level=level)
    return (lower > log_odds_threshold).astype(np.uint8)
