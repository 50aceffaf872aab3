from __future__ import annotations

import logging

import numpy as np
import pytest

from compass_screen import engine as engine_module
from compass_screen.config import SamplerConfig
from compass_screen.data import CompassData, simulate_compass_data
from compass_screen.engine import EngineState, MCMCEngine, fit_compass
from compass_screen.errors import NumericDegeneracyError


def _disparity_data():
    """Category A: strong stimulated excess for everyone. Category B: none."""
    I = 8
    N = 100000
    baseline_b = np.linspace(100, 2000, I).astype(int)
    n_u = np.column_stack([np.full(I, 200), baseline_b, N - 200 - baseline_b])
    n_s = np.column_stack([np.full(I, 6000), baseline_b, N - 6000 - baseline_b])
    return CompassData(n_s=n_s, n_u=n_u)


def _small_config(**kw):
    base = dict(iterations=60, replications=2, seed=11, ttt=50, log_every=20)
    base.update(kw)
    return SamplerConfig(**base)


def test_responder_probability_converges_on_disparity_data():
    data = _disparity_data()
    fit = MCMCEngine(data, SamplerConfig(iterations=1500, replications=1, seed=2, ttt=500)).run()

    mean_gamma = fit.mean_gamma
    assert list(mean_gamma.columns) == data.category_names[:-1]
    assert (mean_gamma.iloc[:, 0] > 0.9).all()
    assert mean_gamma.iloc[:, 1].mean() < 0.2


def test_fisher_initialization_runs_to_the_same_answer():
    data = _disparity_data()
    fit = MCMCEngine(data, SamplerConfig(iterations=1000, replications=1, seed=3,
                                         ttt=300, init_with_fisher=True)).run()
    assert (fit.mean_gamma.iloc[:, 0] > 0.9).all()


def test_trace_shapes_and_invariants():
    data, _ = simulate_compass_data(n_individuals=6, seed=4)
    fit = MCMCEngine(data, _small_config()).run()
    I, K = data.n_s.shape
    T = 60

    assert fit.gamma_trace.shape == (I, K - 1, T)
    assert fit.gamma_trace.dtype == np.uint8
    assert set(np.unique(fit.gamma_trace)) <= {0, 1}
    assert fit.alpha_s_trace.shape == (T, K)
    assert fit.alpha_u_trace.shape == (T, K)
    for trace in (fit.alpha_s_trace, fit.alpha_u_trace):
        assert np.all(np.isfinite(trace)) and np.all(trace > 0)
    np.testing.assert_array_equal(fit.alpha_s, fit.alpha_s_trace[-1])
    for rates in (fit.acceptance_alpha_s, fit.acceptance_alpha_u):
        assert rates.shape == (K,)
        assert np.all((rates >= 0) & (rates <= 1))
    assert fit.gamma_flip_rate.shape == (I,)
    assert fit.n_iterations == T


def test_same_seed_gives_identical_chains():
    data, _ = simulate_compass_data(n_individuals=6, seed=5)
    a = MCMCEngine(data, _small_config()).run()
    b = MCMCEngine(data, _small_config()).run()
    np.testing.assert_array_equal(a.gamma_trace, b.gamma_trace)
    np.testing.assert_array_equal(a.alpha_s_trace, b.alpha_s_trace)
    np.testing.assert_array_equal(a.alpha_u_trace, b.alpha_u_trace)


def test_different_seed_gives_different_chain():
    data, _ = simulate_compass_data(n_individuals=6, seed=5)
    a = MCMCEngine(data, _small_config(seed=1)).run()
    b = MCMCEngine(data, _small_config(seed=2)).run()
    assert not np.array_equal(a.alpha_u_trace, b.alpha_u_trace)


def test_vanishing_proposal_variance_accepts_nearly_everything():
    data, _ = simulate_compass_data(n_individuals=6, seed=6)
    cfg = _small_config(var_1=1e-10, var_2=1e-10, adaptive=False, replications=1)
    fit = MCMCEngine(data, cfg).run()
    assert np.all(fit.acceptance_alpha_u > 0.9)
    assert np.all(fit.acceptance_alpha_s > 0.9)


def test_engine_reaches_terminal_state():
    data, _ = simulate_compass_data(n_individuals=4, seed=7)
    eng = MCMCEngine(data, _small_config(replications=3, warm_start=True))
    assert eng.state is EngineState.INITIALIZING
    eng.run()
    assert eng.state is EngineState.TERMINAL


def _record_replication_starts(monkeypatch):
    """Count initial_state calls and record the state each replication starts from."""
    calls = []
    starts = []
    original_initial_state = MCMCEngine.initial_state
    original_make_samplers = MCMCEngine._make_samplers

    def initial_state(self):
        state = original_initial_state(self)
        calls.append(tuple(x.copy() for x in state))
        return state

    def make_samplers(self):
        starts.append((self.alpha_s.copy(), self.alpha_u.copy(), self.gamma.copy()))
        return original_make_samplers(self)

    monkeypatch.setattr(MCMCEngine, "initial_state", initial_state)
    monkeypatch.setattr(MCMCEngine, "_make_samplers", make_samplers)
    return calls, starts


def test_warm_start_continues_from_previous_replication(monkeypatch):
    calls, starts = _record_replication_starts(monkeypatch)
    data, _ = simulate_compass_data(n_individuals=5, seed=12)
    MCMCEngine(data, _small_config(replications=3, warm_start=True)).run()

    assert len(calls) == 1
    assert len(starts) == 3
    for a, b in zip(calls[0], starts[0]):
        np.testing.assert_array_equal(a, b)
    # later replications pick up where the sampler left off, not at the seed values
    assert not np.array_equal(starts[1][0], calls[0][0])
    assert not np.array_equal(starts[2][1], starts[1][1])


def test_cold_start_reinitializes_every_replication(monkeypatch):
    calls, starts = _record_replication_starts(monkeypatch)
    data, _ = simulate_compass_data(n_individuals=5, seed=12)
    MCMCEngine(data, _small_config(replications=3, warm_start=False)).run()

    assert len(calls) == 3
    for state, start in zip(calls, starts):
        for a, b in zip(state, start):
            np.testing.assert_array_equal(a, b)
    for a, b in zip(starts[0], starts[2]):
        np.testing.assert_array_equal(a, b)


def test_numeric_degeneracy_aborts_the_run(monkeypatch):
    data, _ = simulate_compass_data(n_individuals=4, seed=8)
    monkeypatch.setattr(engine_module, "estimate_concentration",
                        lambda counts: np.zeros(counts.shape[1]))
    eng = MCMCEngine(data, _small_config())
    with pytest.raises(NumericDegeneracyError):
        eng.run()
    assert eng.state is EngineState.TERMINAL


def test_progress_is_logged(caplog):
    caplog.set_level(logging.INFO, logger="compass_screen.engine")
    data, _ = simulate_compass_data(n_individuals=4, seed=9)
    MCMCEngine(data, _small_config(replications=1)).run()
    assert "iteration 20/60" in caplog.text
    assert "Replication 1/1 complete" in caplog.text


def test_fit_compass_attaches_posterior():
    data, _ = simulate_compass_data(n_individuals=4, seed=10)
    fit = fit_compass(data, _small_config(replications=1))
    assert set(fit.posterior) == set(data.individual_ids)
    assert fit.posterior[data.individual_ids[0]].diff.shape == (data.n_categories - 1,)

    bare = fit_compass(data, _small_config(replications=1), compute_posterior=False)
    assert bare.posterior is None
