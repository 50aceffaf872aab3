from __future__ import annotations

import numpy as np
import pytest
from scipy.stats import dirichlet_multinomial

from compass_screen.likelihood import (
    compass_log_likelihood,
    dm_log_kernel,
    dm_log_likelihood,
    dm_log_likelihood_ratio,
    estimate_concentration,
    log_multivariate_beta,
)


def _counts(rng, n_rows=6, alpha=(2.0, 1.0, 0.5, 40.0), total=500):
    p = rng.dirichlet(alpha, size=n_rows)
    return np.array([rng.multinomial(total, p_i) for p_i in p])


def test_dm_log_likelihood_matches_scipy():
    rng = np.random.default_rng(0)
    counts = _counts(rng)
    alpha = np.array([1.5, 0.7, 0.3, 25.0])

    ours = dm_log_likelihood(counts, alpha)
    ref = np.array([dirichlet_multinomial.logpmf(x, alpha, x.sum()) for x in counts])
    np.testing.assert_allclose(ours, ref, rtol=1e-10)


def test_ratio_cancels_multinomial_coefficient():
    rng = np.random.default_rng(1)
    counts = _counts(rng)
    a_old = np.array([1.0, 1.0, 1.0, 10.0])
    a_new = np.array([2.0, 0.5, 1.5, 30.0])

    ratio = dm_log_likelihood_ratio(counts, a_new, a_old)
    direct = dm_log_likelihood(counts, a_new) - dm_log_likelihood(counts, a_old)
    np.testing.assert_allclose(ratio, direct, rtol=1e-9, atol=1e-9)


def test_log_multivariate_beta_two_components():
    # B(a, b) = Γ(a)Γ(b)/Γ(a+b); B(2, 3) = 1/12
    assert log_multivariate_beta(np.array([2.0, 3.0])) == pytest.approx(np.log(1 / 12))


def test_compass_ll_no_responders_pools_conditions():
    rng = np.random.default_rng(2)
    n_s = _counts(rng)
    n_u = _counts(rng)
    alpha_s = np.array([5.0, 3.0, 2.0, 1.0])
    alpha_u = np.array([1.0, 0.8, 0.4, 30.0])
    gamma = np.zeros((6, 3), dtype=np.uint8)

    ll = compass_log_likelihood(n_s, n_u, gamma, alpha_s, alpha_u)
    np.testing.assert_allclose(ll, dm_log_kernel(n_s + n_u, alpha_u), rtol=1e-10)


def test_compass_ll_all_responders_separates_conditions():
    rng = np.random.default_rng(3)
    n_s = _counts(rng)
    n_u = _counts(rng)
    alpha_s = np.array([5.0, 3.0, 2.0, 1.0])
    alpha_u = np.array([1.0, 0.8, 0.4, 30.0])
    gamma = np.ones((6, 3), dtype=np.uint8)

    ll = compass_log_likelihood(n_s, n_u, gamma, alpha_s, alpha_u)
    alpha_s_eff = np.append(alpha_s[:-1], alpha_u[-1])
    expected = dm_log_kernel(n_u, alpha_u) + dm_log_kernel(n_s, alpha_s_eff)
    np.testing.assert_allclose(ll, expected, rtol=1e-10)


def test_compass_ll_ignores_null_entry_of_alpha_s():
    rng = np.random.default_rng(4)
    n_s = _counts(rng)
    n_u = _counts(rng)
    gamma = rng.integers(0, 2, size=(6, 3))
    alpha_u = np.array([1.0, 0.8, 0.4, 30.0])

    ll_a = compass_log_likelihood(n_s, n_u, gamma, np.array([5.0, 3.0, 2.0, 1.0]), alpha_u)
    ll_b = compass_log_likelihood(n_s, n_u, gamma, np.array([5.0, 3.0, 2.0, 900.0]), alpha_u)
    np.testing.assert_allclose(ll_a, ll_b)


def test_compass_ll_alpha_s_only_affects_responders():
    rng = np.random.default_rng(5)
    n_s = _counts(rng)
    n_u = _counts(rng)
    gamma = np.zeros((6, 3), dtype=np.uint8)
    gamma[:3, 0] = 1
    alpha_u = np.array([1.0, 0.8, 0.4, 30.0])

    a1 = np.array([5.0, 3.0, 2.0, 1.0])
    a2 = a1.copy()
    a2[0] = 50.0
    ll_1 = compass_log_likelihood(n_s, n_u, gamma, a1, alpha_u)
    ll_2 = compass_log_likelihood(n_s, n_u, gamma, a2, alpha_u)
    assert np.all(ll_1[:3] != ll_2[:3])
    np.testing.assert_allclose(ll_1[3:], ll_2[3:])


def test_estimate_concentration_tracks_pooled_mean():
    rng = np.random.default_rng(6)
    alpha_true = np.array([4.0, 2.0, 1.0, 93.0])
    counts = _counts(rng, n_rows=200, alpha=alpha_true, total=2000)

    alpha_hat = estimate_concentration(counts)
    assert np.all(alpha_hat > 0)
    np.testing.assert_allclose(alpha_hat / alpha_hat.sum(), alpha_true / alpha_true.sum(), atol=0.01)
    # precision within a factor of 2
    assert 50 < alpha_hat.sum() < 200
