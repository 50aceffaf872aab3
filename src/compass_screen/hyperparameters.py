"""
Metropolis-Hastings updates for the concentration vectors.

Each category of a concentration vector is updated in turn with a random walk
on the log scale::

    log alpha'_k = log alpha_k + N(0, sigma_k^2)

and accepted with probability min(1, exp(r)), where::

    r = sum_{i in rows_k} [ll_i(alpha') - ll_i(alpha)]
        - lambda * (alpha'_k - alpha_k)           # Exponential(lambda) prior
        + log(alpha'_k) - log(alpha_k)            # Jacobian of the log walk

``rows_k`` are the individuals whose likelihood involves alpha_k. The two
proposal schedules differ only in how sigma_k^2 is chosen.

Classes
-------
ProposalSchedule
    Base class for proposal variance selection.
FixedProposal
    Iteration-independent wide/narrow variance mixture.
AdaptiveProposal
    Wide/narrow mixture with a per-category scale tuned during burn-in.
ConcentrationSampler
    Per-category Metropolis-Hastings sampler for one concentration vector.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable, Optional, Tuple

import numpy as np

from .errors import NumericDegeneracyError

LogLikelihoodFn = Callable[[np.ndarray, np.ndarray], np.ndarray]


class ProposalSchedule(ABC):
    """Chooses one proposal variance per category for every update."""

    def __init__(self, var_1: float, var_2: float, p_var: float, max_variance: float = 4.0):
        self.var_1 = float(var_1)
        self.var_2 = float(var_2)
        self.p_var = float(p_var)
        self.max_variance = float(max_variance)

    def _mixture(self, rng: np.random.Generator, n: int) -> np.ndarray:
        # one uniform per category, always drawn
        wide = rng.random(n) < self.p_var
        return np.where(wide, self.var_1, self.var_2)

    @abstractmethod
    def variances(self, rng: np.random.Generator, n: int, iteration: int) -> np.ndarray:
        """Return proposal variances, shape (n,)."""

    def record(self, accepted: np.ndarray, iteration: int) -> None:
        """Feed back the acceptance outcome of one update."""
        pass


class FixedProposal(ProposalSchedule):
    """Fixed-variance Metropolis-Hastings: var_1 with probability p_var, else var_2."""

    def variances(self, rng, n, iteration):
        return np.minimum(self._mixture(rng, n), self.max_variance)


class AdaptiveProposal(ProposalSchedule):
    """Wide/narrow mixture scaled by a per-category factor tuned until ``ttt``.

    Every ``batch_size`` iterations before ``ttt`` the log standard-deviation
    scale of each category moves by ``min(0.5, 1 / sqrt(n_batches))``, up if
    the batch acceptance rate exceeded ``target_acceptance`` and down
    otherwise. From iteration ``ttt`` on the scale is frozen, so the chain
    after burn-in is a plain Metropolis-Hastings chain.
    """

    def __init__(
        self,
        var_1: float,
        var_2: float,
        p_var: float,
        ttt: int,
        max_variance: float = 4.0,
        target_acceptance: float = 0.44,
        batch_size: int = 50,
    ):
        super().__init__(var_1, var_2, p_var, max_variance)
        self.ttt = int(ttt)
        self.target_acceptance = float(target_acceptance)
        self.batch_size = int(batch_size)
        self.log_scale: Optional[np.ndarray] = None
        self._batch_accepts: Optional[np.ndarray] = None
        self._batch_len = 0
        self._n_batches = 0

    def _ensure_size(self, n: int):
        if self.log_scale is None:
            self.log_scale = np.zeros(n)
            self._batch_accepts = np.zeros(n)

    def variances(self, rng, n, iteration):
        self._ensure_size(n)
        var = self._mixture(rng, n) * np.exp(2.0 * self.log_scale)
        return np.minimum(var, self.max_variance)

    def record(self, accepted, iteration):
        if iteration >= self.ttt:
            return
        self._ensure_size(len(accepted))
        self._batch_accepts += accepted
        self._batch_len += 1
        if self._batch_len < self.batch_size:
            return

        self._n_batches += 1
        rate = self._batch_accepts / self._batch_len
        delta = min(0.5, 1.0 / np.sqrt(self._n_batches))
        self.log_scale = self.log_scale + np.where(rate > self.target_acceptance, delta, -delta)
        self._batch_accepts[:] = 0.0
        self._batch_len = 0

    @property
    def frozen(self) -> bool:
        return self._n_batches * self.batch_size >= self.ttt


class ConcentrationSampler:
    """Metropolis-Hastings sampler for one concentration vector.

    Parameters
    ----------
    prior_rate : float
        Rate lambda of the independent Exponential priors on each entry.
    proposal : ProposalSchedule
        Proposal variance schedule.
    name : str
        Label used in error messages (e.g. "alpha_s").
    """

    def __init__(self, prior_rate: float, proposal: ProposalSchedule, name: str = "alpha"):
        self.prior_rate = float(prior_rate)
        self.proposal = proposal
        self.name = name

    def update(
        self,
        alpha: np.ndarray,
        log_likelihood: LogLikelihoodFn,
        contributors: np.ndarray,
        rng: np.random.Generator,
        iteration: int,
    ) -> Tuple[np.ndarray, np.ndarray]:
        """Run one sweep of per-category updates.

        Parameters
        ----------
        alpha : np.ndarray
            Current concentration vector, shape (K,). Not modified.
        log_likelihood : callable
            ``log_likelihood(alpha, rows)`` returns the per-individual
            log-likelihood, shape (rows.sum(),), for a boolean row mask.
        contributors : np.ndarray
            Boolean (I, K) mask; column k selects the individuals whose
            likelihood involves ``alpha[k]``.
        rng : np.random.Generator
            Random source.
        iteration : int
            Current iteration index, passed to the proposal schedule.

        Returns
        -------
        alpha_new : np.ndarray
            Updated vector, shape (K,).
        accepted : np.ndarray
            Boolean mask of accepted proposals, shape (K,).

        Raises
        ------
        NumericDegeneracyError
            If a proposal is zero, negative or non-finite.
        """
        alpha = np.array(alpha, dtype=float)
        contributors = np.asarray(contributors, dtype=bool)
        K = alpha.size

        sd = np.sqrt(self.proposal.variances(rng, K, iteration))
        z = rng.standard_normal(K)
        log_u = np.log(rng.random(K))

        current_ll = log_likelihood(alpha, np.ones(contributors.shape[0], dtype=bool))
        accepted = np.zeros(K, dtype=bool)

        for k in range(K):
            proposed = alpha.copy()
            proposed[k] = alpha[k] * np.exp(sd[k] * z[k])
            if not (np.isfinite(proposed[k]) and proposed[k] > 0) or not np.isfinite(proposed.sum()):
                raise NumericDegeneracyError(
                    f"{self.name}[{k}] proposal degenerated to {proposed[k]!r} "
                    f"from {alpha[k]!r} at iteration {iteration}."
                )

            rows = contributors[:, k]
            if rows.any():
                new_ll = log_likelihood(proposed, rows)
                ll_ratio = float(np.sum(new_ll - current_ll[rows]))
            else:
                new_ll = None
                ll_ratio = 0.0

            log_ratio = (ll_ratio
                         - self.prior_rate * (proposed[k] - alpha[k])
                         + np.log(proposed[k]) - np.log(alpha[k]))
            if np.isnan(log_ratio):
                raise NumericDegeneracyError(
                    f"{self.name}[{k}] acceptance ratio is NaN at iteration {iteration}."
                )

            if log_u[k] < log_ratio:
                alpha = proposed
                accepted[k] = True
                if new_ll is not None:
                    current_ll[rows] = new_ll

        self.proposal.record(accepted, iteration)
        return alpha, accepted


def make_proposal(
    adaptive: bool,
    var_1: float,
    var_2: float,
    p_var: float,
    ttt: int,
    max_variance: float,
) -> ProposalSchedule:
    """Build the adaptive or fixed-variance schedule."""
    if adaptive:
        return AdaptiveProposal(var_1, var_2, p_var, ttt, max_variance=max_variance)
    return FixedProposal(var_1, var_2, p_var, max_variance=max_variance)
