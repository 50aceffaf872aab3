"""
MCMC engine for the COMPASS responder mixture model.

The engine owns the chain state (alpha_s, alpha_u and the responder matrix)
for the whole run. Every iteration updates alpha_s, then alpha_u, then the
responder matrix. Replications repeat the sampling phase; only the last
replication's traces are kept.

Classes
-------
EngineState
    Phases of a run.
CompassFit
    Container for the output of a run.
MCMCEngine
    Iterate-and-replicate driver.

Functions
---------
fit_compass
    Fit the model (and optionally the posterior summaries) in one call.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

import numpy as np
import pandas as pd

from .config import SamplerConfig
from .data import CompassData
from .errors import NumericDegeneracyError
from .hyperparameters import ConcentrationSampler, make_proposal
from .likelihood import compass_log_likelihood, estimate_concentration, responder_mask
from .posterior import compute_posterior as _compute_posterior
from .responders import (
    ResponderSampler,
    initialize_responders_default,
    initialize_responders_fisher,
)

logger = logging.getLogger(__name__)

ACCEPTANCE_WARN_RANGE = (0.05, 0.95)


class EngineState(Enum):
    INITIALIZING = "initializing"
    SAMPLING = "sampling"
    REPLICATION_BOUNDARY = "replication_boundary"
    TERMINAL = "terminal"


@dataclass
class CompassFit:
    """Output of :meth:`MCMCEngine.run`.

    Attributes
    ----------
    alpha_s, alpha_u : np.ndarray
        Final concentration vectors, shape (K,).
    alpha_s_trace, alpha_u_trace : np.ndarray
        Concentration vectors after every iteration of the last
        replication, shape (T, K).
    gamma_trace : np.ndarray
        Responder matrix after every iteration of the last replication,
        shape (I, K-1, T), dtype uint8.
    acceptance_alpha_s, acceptance_alpha_u : np.ndarray
        Per-category acceptance rates of the last replication, shape (K,).
    gamma_flip_rate : np.ndarray
        Indicator flips per iteration for each individual, shape (I,).
    data : CompassData
        The data the chain was run on.
    config : SamplerConfig
        The configuration used.
    posterior_seed : np.random.SeedSequence
        Seed reserved for posterior draws.
    posterior : dict, optional
        Posterior draws or summaries keyed by individual id.
    """
    alpha_s: np.ndarray
    alpha_u: np.ndarray
    alpha_s_trace: np.ndarray
    alpha_u_trace: np.ndarray
    gamma_trace: np.ndarray
    acceptance_alpha_s: np.ndarray
    acceptance_alpha_u: np.ndarray
    gamma_flip_rate: np.ndarray
    data: CompassData
    config: SamplerConfig
    posterior_seed: np.random.SeedSequence
    posterior: Optional[Dict] = field(default=None, repr=False)

    @property
    def n_iterations(self) -> int:
        return self.gamma_trace.shape[2]

    @property
    def mean_gamma(self) -> pd.DataFrame:
        """Posterior probability of response, individuals x non-null categories."""
        return pd.DataFrame(
            self.gamma_trace.mean(axis=2),
            index=pd.Index(self.data.individual_ids, name="individual"),
            columns=self.data.responder_categories,
        )


class MCMCEngine:
    """Run the COMPASS Markov chain.

    Parameters
    ----------
    data : CompassData
        Validated count data.
    config : SamplerConfig, optional
        Sampler settings. Defaults to ``SamplerConfig()``.

    Examples
    --------
    >>> data, truth = simulate_compass_data(n_individuals=10, seed=1)
    >>> fit = MCMCEngine(data, SamplerConfig(iterations=500, replications=1, seed=1)).run()
    >>> fit.mean_gamma.round(2)
    """

    def __init__(self, data: CompassData, config: Optional[SamplerConfig] = None):
        self.data = data
        self.config = config if config is not None else SamplerConfig()
        self.state = EngineState.INITIALIZING

        self._n_s = data.n_s.astype(float)
        self._n_u = data.n_u.astype(float)
        self.alpha_s: Optional[np.ndarray] = None
        self.alpha_u: Optional[np.ndarray] = None
        self.gamma: Optional[np.ndarray] = None

    def initial_state(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Seed concentrations and the starting responder matrix."""
        cfg = self.config
        alpha_s = estimate_concentration(self._n_s)
        alpha_u = estimate_concentration(self._n_u)
        if cfg.init_with_fisher:
            gamma = initialize_responders_fisher(
                self._n_s, self._n_u,
                level=cfg.fisher_level,
                log_odds_threshold=cfg.fisher_log_odds_threshold,
            )
        else:
            gamma = initialize_responders_default(self._n_s, self._n_u)
        return alpha_s, alpha_u, gamma

    def _ll_alpha_s(self, alpha, rows):
        return compass_log_likelihood(
            self._n_s[rows], self._n_u[rows], self.gamma[rows], alpha, self.alpha_u
        )

    def _ll_alpha_u(self, alpha, rows):
        return compass_log_likelihood(
            self._n_s[rows], self._n_u[rows], self.gamma[rows], self.alpha_s, alpha
        )

    def _make_samplers(self):
        cfg = self.config

        def proposal():
            return make_proposal(cfg.adaptive, cfg.var_1, cfg.var_2, cfg.p_var, cfg.ttt,
                                 cfg.max_proposal_variance)

        return (
            ConcentrationSampler(cfg.lambda_s, proposal(), name="alpha_s"),
            ConcentrationSampler(cfg.lambda_u, proposal(), name="alpha_u"),
            ResponderSampler(cfg.pb1, cfg.pb2, indi=cfg.indi),
        )

    def run(self) -> CompassFit:
        """Run every replication and return the last one's traces.

        Raises
        ------
        NumericDegeneracyError
            If a concentration proposal degenerates. No partial result is
            returned.
        """
        cfg = self.config
        I, K = self.data.n_s.shape
        T = cfg.iterations

        seeds = np.random.SeedSequence(cfg.seed).spawn(cfg.replications + 1)
        all_rows = np.ones((I, K), dtype=bool)

        for r in range(cfg.replications):
            self.state = EngineState.INITIALIZING
            rng = np.random.default_rng(seeds[r])
            if r == 0 or not cfg.warm_start:
                self.alpha_s, self.alpha_u, self.gamma = self.initial_state()
            sampler_s, sampler_u, sampler_gamma = self._make_samplers()

            retain = r == cfg.replications - 1
            if retain:
                alpha_s_trace = np.empty((T, K))
                alpha_u_trace = np.empty((T, K))
                gamma_trace = np.empty((I, K - 1, T), dtype=np.uint8)
            accepted_s = np.zeros(K)
            accepted_u = np.zeros(K)
            flips = np.zeros(I)

            logger.info(f"Replication {r + 1}/{cfg.replications}: sampling {T} iterations "
                        f"({I} individuals, {K} categories)")
            self.state = EngineState.SAMPLING
            try:
                for t in range(T):
                    self.alpha_s, acc_s = sampler_s.update(
                        self.alpha_s, self._ll_alpha_s, responder_mask(self.gamma), rng, t
                    )
                    self.alpha_u, acc_u = sampler_u.update(
                        self.alpha_u, self._ll_alpha_u, all_rows, rng, t
                    )
                    self.gamma, flipped = sampler_gamma.update(
                        self.gamma, self._n_s, self._n_u, self.alpha_s, self.alpha_u, rng
                    )

                    accepted_s += acc_s
                    accepted_u += acc_u
                    flips += flipped
                    if retain:
                        alpha_s_trace[t] = self.alpha_s
                        alpha_u_trace[t] = self.alpha_u
                        gamma_trace[:, :, t] = self.gamma

                    if (t + 1) % cfg.log_every == 0:
                        logger.info(f"Replication {r + 1}: iteration {t + 1}/{T}, "
                                    f"mean responders {self.gamma.mean():.3f}")
            except NumericDegeneracyError as e:
                self.state = EngineState.TERMINAL
                logger.error(f"Aborting run in replication {r + 1}: {e}")
                raise

            self.state = EngineState.REPLICATION_BOUNDARY
            logger.info(f"Replication {r + 1}/{cfg.replications} complete")

        self.state = EngineState.TERMINAL
        fit = CompassFit(
            alpha_s=self.alpha_s.copy(),
            alpha_u=self.alpha_u.copy(),
            alpha_s_trace=alpha_s_trace,
            alpha_u_trace=alpha_u_trace,
            gamma_trace=gamma_trace,
            acceptance_alpha_s=accepted_s / T,
            acceptance_alpha_u=accepted_u / T,
            gamma_flip_rate=flips / T,
            data=self.data,
            config=cfg,
            posterior_seed=seeds[-1],
        )
        _warn_on_acceptance(fit)
        return fit


def _warn_on_acceptance(fit: CompassFit):
    lo, hi = ACCEPTANCE_WARN_RANGE
    for name, rates in (("alpha_s", fit.acceptance_alpha_s), ("alpha_u", fit.acceptance_alpha_u)):
        outside = np.where((rates < lo) | (rates > hi))[0]
        if outside.size:
            logger.warning(
                f"{name} acceptance rate outside [{lo}, {hi}] for categories "
                f"{[fit.data.category_names[k] for k in outside]}"
            )


def fit_compass(
    data: CompassData,
    config: Optional[SamplerConfig] = None,
    compute_posterior: bool = True,
    full_posterior: bool = False,
) -> CompassFit:
    """Run the sampler and attach posterior draws.

    Parameters
    ----------
    data : CompassData
        Count data.
    config : SamplerConfig, optional
        Sampler settings.
    compute_posterior : bool, default True
        Attach posterior proportions to ``fit.posterior``.
    full_posterior : bool, default False
        Keep every iteration's draw rather than the per-individual mean.

    Returns
    -------
    CompassFit
    """
    fit = MCMCEngine(data, config).run()
    if compute_posterior:
        fit.posterior = _compute_posterior(fit, full=full_posterior)
    return fit
