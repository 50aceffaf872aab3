from __future__ import annotations

import numpy as np
import pytest
from scipy.special import expit
from scipy.stats.contingency import odds_ratio

from compass_screen.likelihood import compass_log_likelihood
from compass_screen.responders import (
    ResponderSampler,
    fisher_lower_bounds,
    initialize_responders_default,
    initialize_responders_fisher,
    responder_log_likelihood_ratio,
)


def _random_problem(seed=0, I=5, K=4):
    rng = np.random.default_rng(seed)
    n_s = rng.integers(0, 300, size=(I, K))
    n_u = rng.integers(0, 300, size=(I, K))
    n_s[:, -1] += 1000
    n_u[:, -1] += 1000
    gamma = rng.integers(0, 2, size=(I, K - 1)).astype(np.uint8)
    alpha_s = rng.uniform(0.5, 5.0, size=K)
    alpha_u = rng.uniform(0.5, 5.0, size=K)
    return n_s, n_u, gamma, alpha_s, alpha_u


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_ratio_matches_full_likelihood_difference(seed):
    n_s, n_u, gamma, alpha_s, alpha_u = _random_problem(seed)
    for i in range(gamma.shape[0]):
        for k in range(gamma.shape[1]):
            on = gamma.copy()
            on[i, k] = 1
            off = gamma.copy()
            off[i, k] = 0
            expected = (compass_log_likelihood(n_s, n_u, on, alpha_s, alpha_u)[i]
                        - compass_log_likelihood(n_s, n_u, off, alpha_s, alpha_u)[i])
            got = responder_log_likelihood_ratio(i, k, gamma, n_s, n_u, alpha_s, alpha_u)
            assert got == pytest.approx(expected, rel=1e-8, abs=1e-8)


def test_sweep_keeps_binary_state_and_counts_flips():
    n_s, n_u, gamma, alpha_s, alpha_u = _random_problem(3, I=8, K=5)
    sampler = ResponderSampler(pb1=1.5, pb2=3.5, indi=True)
    rng = np.random.default_rng(0)

    for _ in range(20):
        new, flips = sampler.update(gamma, n_s, n_u, alpha_s, alpha_u, rng)
        assert new.shape == gamma.shape
        assert set(np.unique(new)) <= {0, 1}
        np.testing.assert_array_equal(flips, (new != gamma).sum(axis=1))
        gamma = new


@pytest.mark.parametrize("indi", [True, False])
def test_overwhelming_disparity_selects_responder(indi):
    I = 6
    n_u = np.tile([20, 100, 9880], (I, 1))
    n_s = np.tile([2000, 100, 7900], (I, 1))
    alpha_s = np.array([10.0, 1.0, 100.0])
    alpha_u = np.array([1.0, 1.0, 100.0])
    gamma = np.zeros((I, 2), dtype=np.uint8)
    sampler = ResponderSampler(pb1=1.5, pb2=3.5, indi=indi)
    rng = np.random.default_rng(1)

    trace = []
    for _ in range(50):
        gamma, _ = sampler.update(gamma, n_s, n_u, alpha_s, alpha_u, rng)
        trace.append(gamma.copy())
    trace = np.array(trace)
    assert trace[10:, :, 0].mean() > 0.99


def test_sweep_is_reproducible():
    n_s, n_u, gamma, alpha_s, alpha_u = _random_problem(4)
    sampler = ResponderSampler(pb1=1.5, pb2=3.5, indi=False)
    a, fa = sampler.update(gamma, n_s, n_u, alpha_s, alpha_u, np.random.default_rng(9))
    b, fb = sampler.update(gamma, n_s, n_u, alpha_s, alpha_u, np.random.default_rng(9))
    np.testing.assert_array_equal(a, b)
    np.testing.assert_array_equal(fa, fb)


def test_sweep_does_not_mutate_input():
    n_s, n_u, gamma, alpha_s, alpha_u = _random_problem(5)
    snapshot = gamma.copy()
    ResponderSampler(1.5, 3.5).update(gamma, n_s, n_u, alpha_s, alpha_u, np.random.default_rng(0))
    np.testing.assert_array_equal(gamma, snapshot)


def test_default_initialization_compares_raw_proportions():
    n_s = np.array([[100, 10, 890], [5, 40, 955], [0, 30, 970]])
    n_u = np.array([[10, 10, 980], [9, 10, 981], [0, 50, 950]])
    gamma = initialize_responders_default(n_s, n_u)
    # ties, including empty categories, start as responders
    np.testing.assert_array_equal(gamma, [[1, 1], [0, 1], [1, 0]])
    assert gamma.dtype == np.uint8


def test_fisher_initialization_uses_lower_bound():
    n_s = np.array([[100, 10, 890], [12, 0, 988]])
    n_u = np.array([[10, 10, 980], [10, 0, 990]])
    lower = fisher_lower_bounds(n_s, n_u, level=0.95)
    assert lower[0, 0] > 1.0
    assert lower[0, 1] < 0.0
    # small, non-significant excess is not a responder, unlike the raw-proportion rule
    gamma = initialize_responders_fisher(n_s, n_u)
    np.testing.assert_array_equal(gamma, [[1, 0], [0, 0]])
    assert initialize_responders_default(n_s, n_u)[1, 0] == 1


def test_fisher_bound_is_exact_on_small_counts():
    # 5 vs 0 events: the normal approximation puts the bound below zero, the exact one above
    n_s = np.array([[5, 995]])
    n_u = np.array([[0, 1000]])
    expected = np.log(
        odds_ratio([[5, 995], [0, 1000]], kind="conditional")
        .confidence_interval(confidence_level=0.95, alternative="greater").low
    )
    lower = fisher_lower_bounds(n_s, n_u, level=0.95)
    assert lower[0, 0] == pytest.approx(expected)
    assert lower[0, 0] > 0.0
    assert initialize_responders_fisher(n_s, n_u)[0, 0] == 1
    # the literal "log odds above 1" reading is stricter
    assert initialize_responders_fisher(n_s, n_u, log_odds_threshold=1.0)[0, 0] == 0


def test_fisher_bound_of_empty_category_is_minus_infinity():
    n_s = np.array([[0, 50, 950]])
    n_u = np.array([[0, 40, 960]])
    lower = fisher_lower_bounds(n_s, n_u)
    assert lower[0, 0] == -np.inf
    assert initialize_responders_fisher(n_s, n_u)[0, 0] == 0


class _FixedUniforms:
    """Stands in for a Generator whose ``random`` returns preset values."""

    def __init__(self, u):
        self.u = np.asarray(u, dtype=float)

    def random(self, size=None):
        return self.u.copy()


def _margin_policy_setup(pb1=1.5, pb2=3.5):
    """Two individuals, one category, both starting as non-responders.

    Individual 0 always flips on. The uniform for individual 1 sits between
    its response probability under the sweep-start margin (m = 0) and under
    the live margin (m = 1), so the outcome shows which margin was used.
    """
    n_s = np.array([[30, 970], [25, 975]])
    n_u = np.array([[20, 980], [22, 978]])
    alpha_s = np.array([2.0, 50.0])
    alpha_u = np.array([2.0, 50.0])
    gamma = np.zeros((2, 1), dtype=np.uint8)

    ll = responder_log_likelihood_ratio(1, 0, gamma, n_s, n_u, alpha_s, alpha_u)
    p_sweep = expit(ll + np.log(0 + pb1) - np.log(1 - 0 + pb2))
    p_live = expit(ll + np.log(1 + pb1) - np.log(1 - 1 + pb2))
    assert p_live - p_sweep > 1e-3
    u = [[0.0], [(p_sweep + p_live) / 2.0]]
    return (gamma, n_s, n_u, alpha_s, alpha_u), _FixedUniforms(u)


def test_live_margins_see_earlier_flips_in_the_sweep():
    args, rng = _margin_policy_setup()
    new, flips = ResponderSampler(pb1=1.5, pb2=3.5, indi=True).update(*args, rng)
    np.testing.assert_array_equal(new, [[1], [1]])
    np.testing.assert_array_equal(flips, [1, 1])


def test_sweep_start_margins_ignore_earlier_flips():
    args, rng = _margin_policy_setup()
    new, flips = ResponderSampler(pb1=1.5, pb2=3.5, indi=False).update(*args, rng)
    np.testing.assert_array_equal(new, [[1], [0]])
    np.testing.assert_array_equal(flips, [1, 0])


def test_fisher_threshold_is_configurable():
    n_s = np.array([[100, 10, 890]])
    n_u = np.array([[10, 10, 980]])
    lower = fisher_lower_bounds(n_s, n_u)
    gamma = initialize_responders_fisher(n_s, n_u, log_odds_threshold=lower[0, 0] + 0.1)
    assert gamma[0, 0] == 0
