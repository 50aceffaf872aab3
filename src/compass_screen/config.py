"""
Sampler configuration.

Classes
-------
SamplerConfig
    Frozen set of tuning parameters for one call to the MCMC engine.
"""
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Optional


@dataclass(frozen=True)
class SamplerConfig:
    """Tuning parameters for :class:`compass_screen.engine.MCMCEngine`.

    Attributes
    ----------
    iterations : int, default 40000
        Number of sweeps per replication.
    replications : int, default 8
        Number of replications. Only the last one is retained.
    lambda_s, lambda_u : float, default 1e-3
        Rates of the Exponential priors on alpha_s and alpha_u.
    var_1, var_2 : float
        Wide and narrow variances of the log-scale random walk proposal.
    p_var : float, default 0.5
        Probability of proposing with ``var_1`` rather than ``var_2``.
    ttt : int, default 1000
        Iteration after which the adaptive proposal scale is frozen.
    adaptive : bool, default True
        Use the adaptive proposal schedule. If False, the fixed-variance
        Metropolis-Hastings schedule is used.
    max_proposal_variance : float, default 4.0
        Upper bound on any single proposal variance.
    pb1, pb2 : float
        Beta prior parameters on the per-category response probability.
    indi : bool, default True
        Update the responder margins after every individual. If False, the
        margins are taken once per sweep.
    init_with_fisher : bool, default False
        Initialize the responder matrix from a one-sided odds ratio bound.
    fisher_level : float, default 0.95
        One-sided confidence level of that bound.
    fisher_log_odds_threshold : float, default 0.0
        Log odds ratio the lower bound must exceed to start as a responder.
        The default 0.0 means an odds ratio above 1. The R package documents
        its rule as "lower 95% log odds estimate > 1"; set this to 1.0 to
        read that literally (odds ratio above e).
    warm_start : bool, default False
        Start every replication from the final state of the previous one.
    seed : int, optional
        Seed for :class:`numpy.random.SeedSequence`.
    log_every : int, default 1000
        Emit a progress message every ``log_every`` iterations.
    """
    iterations: int = 40000
    replications: int = 8
    lambda_s: float = 1e-3
    lambda_u: float = 1e-3
    var_1: float = 0.25
    var_2: float = 0.01
    p_var: float = 0.5
    ttt: int = 1000
    adaptive: bool = True
    max_proposal_variance: float = 4.0
    pb1: float = 1.5
    pb2: float = 3.5
    indi: bool = True
    init_with_fisher: bool = False
    fisher_level: float = 0.95
    fisher_log_odds_threshold: float = 0.0
    warm_start: bool = False
    seed: Optional[int] = None
    log_every: int = 1000

    def __post_init__(self):
        if self.iterations < 1:
            raise ValueError(f"iterations must be >= 1, got {self.iterations}.")
        if self.replications < 1:
            raise ValueError(f"replications must be >= 1, got {self.replications}.")
        for name in ("lambda_s", "lambda_u"):
            value = getattr(self, name)
            if not value > 0:
                raise ValueError(f"{name} must be positive, got {value}.")
        for name in ("var_1", "var_2", "max_proposal_variance"):
            value = getattr(self, name)
            if not (value > 0 and value < float("inf")):
                raise ValueError(f"{name} must be positive and finite, got {value}.")
        if not 0.0 <= self.p_var <= 1.0:
            raise ValueError(f"p_var must lie in [0, 1], got {self.p_var}.")
        if self.ttt < 0:
            raise ValueError(f"ttt must be non-negative, got {self.ttt}.")
        if not (self.pb1 > 0 and self.pb2 > 0):
            raise ValueError(f"pb1 and pb2 must be positive, got ({self.pb1}, {self.pb2}).")
        if not 0.5 <= self.fisher_level < 1.0:
            raise ValueError(f"fisher_level must lie in [0.5, 1), got {self.fisher_level}.")
        if self.log_every < 1:
            raise ValueError(f"log_every must be >= 1, got {self.log_every}.")

    def replace(self, **changes) -> "SamplerConfig":
        """Return a copy with ``changes`` applied (and validated)."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(changes) - known)
        if unknown:
            raise ValueError(f"Unknown SamplerConfig fields: {unknown}")
        return replace(self, **changes)
