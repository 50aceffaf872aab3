"""
compass-screen: Bayesian responder analysis of paired cell-subset counts.

This package fits a hierarchical Dirichlet-Multinomial mixture model to
stimulated vs unstimulated cell counts per individual and marker combination,
and reports the posterior probability that each individual responds in each
combination.

Modules
-------
data
    Validated count container and simulation.
preprocess
    From per-cell marker tables to paired count matrices.
likelihood
    Dirichlet-Multinomial likelihood kernel.
hyperparameters
    Metropolis-Hastings updates of the concentration vectors.
responders
    Gibbs updates and starting values of the responder indicators.
engine
    MCMC driver and fit container.
posterior
    Posterior draws of condition-specific proportions.
diagnostics
    Acceptance, flip rate and effective sample size summaries.
plots
    Response heatmap and hyperparameter traces.
io
    Loading count tables and writing results.

Example
-------
>>> import compass_screen as cs
>>> data, truth = cs.simulate_compass_data(n_individuals=20, seed=1)
>>> fit = cs.fit_compass(data, cs.SamplerConfig(iterations=2000, replications=2, seed=1))
>>> fit.mean_gamma.head()
"""

__version__ = "0.1.0"

# config
from .config import SamplerConfig

# data
from .data import (
    CompassData,
    category_names,
    simulate_compass_data,
)

# diagnostics
from .diagnostics import (
    acceptance_summary,
    effective_sample_size,
    hyperparameter_ess,
    responder_flip_summary,
)

# engine
from .engine import (
    CompassFit,
    EngineState,
    MCMCEngine,
    fit_compass,
)

# errors
from .errors import (
    CompassError,
    InvalidInputError,
    NumericDegeneracyError,
)

# hyperparameters
from .hyperparameters import (
    AdaptiveProposal,
    ConcentrationSampler,
    FixedProposal,
)

# io
from .io import (
    load_categories,
    load_compass_data,
    load_counts_matrix,
    write_fit_results,
)

# likelihood
from .likelihood import (
    compass_log_likelihood,
    dm_log_kernel,
    dm_log_likelihood,
    dm_log_likelihood_ratio,
    estimate_concentration,
)

# plots
from .plots import (
    hyperparameter_trace_plot,
    response_heatmap,
)

# posterior
from .posterior import (
    PosteriorDraws,
    PosteriorPredictor,
    PosteriorSummary,
    compute_posterior,
    posterior_diff,
    posterior_log_diff,
    posterior_ps,
    posterior_pu,
)

# preprocess
from .preprocess import (
    DegreeOneFilter,
    count_categories,
    drop_degree_one,
    filter_categories,
    generate_categories,
    prepare_compass_data,
    select_markers,
)

# responders
from .responders import (
    ResponderSampler,
    initialize_responders_default,
    initialize_responders_fisher,
    responder_log_likelihood_ratio,
)

__all__ = [
    # config
    "SamplerConfig",
    # data
    "CompassData",
    "category_names",
    "simulate_compass_data",
    # diagnostics
    "acceptance_summary",
    "effective_sample_size",
    "hyperparameter_ess",
    "responder_flip_summary",
    # engine
    "CompassFit",
    "EngineState",
    "MCMCEngine",
    "fit_compass",
    # errors
    "CompassError",
    "InvalidInputError",
    "NumericDegeneracyError",
    # hyperparameters
    "AdaptiveProposal",
    "ConcentrationSampler",
    "FixedProposal",
    # io
    "load_categories",
    "load_compass_data",
    "load_counts_matrix",
    "write_fit_results",
    # likelihood
    "compass_log_likelihood",
    "dm_log_kernel",
    "dm_log_likelihood",
    "dm_log_likelihood_ratio",
    "estimate_concentration",
    # plots
    "hyperparameter_trace_plot",
    "response_heatmap",
    # posterior
    "PosteriorDraws",
    "PosteriorPredictor",
    "PosteriorSummary",
    "compute_posterior",
    "posterior_diff",
    "posterior_log_diff",
    "posterior_ps",
    "posterior_pu",
    # preprocess
    "DegreeOneFilter",
    "count_categories",
    "drop_degree_one",
    "filter_categories",
    "generate_categories",
    "prepare_compass_data",
    "select_markers",
    # responders
    "ResponderSampler",
    "initialize_responders_default",
    "initialize_responders_fisher",
    "responder_log_likelihood_ratio",
]
