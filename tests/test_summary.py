# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for bssmjax.summary."""

import jax.numpy as jnp
import jax.random as jr
import numpy as np
import pytest

from bssmjax.containers import MCMCOutput
from bssmjax.summary import (
    importance_ess,
    mcmc_ess,
    posterior_mean,
    posterior_quantiles,
    states_summary,
    summary,
)


def _output(theta, weights=None, counts=None, mcmc_type='exact', states=None):
    n = theta.shape[0]
    return MCMCOutput(
        theta=theta,
        states=states,
        log_posterior=jnp.zeros(n),
        weights=jnp.ones(n) if weights is None else weights,
        counts=jnp.ones(n, dtype=int) if counts is None else counts,
        acceptance_rate=jnp.asarray(0.25),
        proposal_chol=jnp.eye(theta.shape[1]),
        mcmc_type=mcmc_type,
        param_names=tuple(f'p{i}' for i in range(theta.shape[1])),
    )


class TestImportanceESS:
    def test_uniform(self):
        assert float(importance_ess(jnp.ones(10))) == pytest.approx(10.0)

    def test_degenerate(self):
        w = jnp.array([1.0, 0.0, 0.0])
        assert float(importance_ess(w)) == pytest.approx(1.0)


class TestPosteriorMoments:
    def test_weighted_mean(self):
        theta = jnp.array([[0.0], [1.0], [2.0]])
        out = _output(theta, weights=jnp.array([1.0, 0.0, 3.0]))
        assert jnp.allclose(posterior_mean(out), jnp.array([1.5]))

    def test_counts_equal_repetition(self):
        """Weights of a jump chain act like repeated rows."""
        theta = jnp.array([[0.0, 1.0], [1.0, 3.0]])
        counts = jnp.array([3, 1])
        out = _output(theta, weights=counts.astype(float), counts=counts)
        repeated = _output(jnp.repeat(theta, counts, axis=0))
        assert jnp.allclose(posterior_mean(out), posterior_mean(repeated))

    def test_quantiles_shape_and_order(self):
        theta = jr.normal(jr.PRNGKey(0), (2_000, 3))
        q = posterior_quantiles(_output(theta))
        assert q.shape == (3, 3)
        assert jnp.all(q[0] < q[1])
        assert jnp.all(q[1] < q[2])
        assert jnp.allclose(q[1], 0.0, atol=0.1)


class TestMCMCESS:
    def test_independent_draws(self):
        theta = jr.normal(jr.PRNGKey(1), (1_000, 2))
        ess = mcmc_ess(_output(theta))
        assert ess.shape == (2,)
        assert jnp.all(ess > 500)

    def test_importance_sampling_penalised(self):
        theta = jr.normal(jr.PRNGKey(2), (500, 1))
        counts = jnp.ones(500, dtype=int)
        even = mcmc_ess(
            _output(theta, weights=jnp.ones(500), counts=counts, mcmc_type='is')
        )
        skewed_w = jnp.where(jnp.arange(500) < 50, 1.0, 0.01)
        skewed = mcmc_ess(
            _output(theta, weights=skewed_w, counts=counts, mcmc_type='is')
        )
        assert float(skewed[0]) < float(even[0])


class TestSummaryTable:
    def test_keys_and_values(self):
        theta = jnp.stack(
            [jnp.linspace(-1.0, 1.0, 101), jnp.linspace(0.0, 2.0, 101)],
            axis=1,
        )
        table = summary(_output(theta))
        assert set(table) == {'p0', 'p1'}
        row = table['p1']
        assert set(row) == {'mean', 'sd', 'ess', 'q0.025', 'q0.5', 'q0.975'}
        assert row['mean'] == pytest.approx(1.0)
        assert row['sd'] == pytest.approx(float(np.std(np.linspace(0, 2, 101))))
        assert row['q0.025'] < row['q0.5'] < row['q0.975']


class TestStatesSummary:
    def test_shapes(self):
        states = jr.normal(jr.PRNGKey(3), (200, 10, 2))
        out = _output(jnp.zeros((200, 1)), states=states)
        result = states_summary(out, q=(0.1, 0.9))
        assert result['mean'].shape == (10, 2)
        assert result['sd'].shape == (10, 2)
        assert result['quantiles'].shape == (2, 10, 2)
        assert jnp.all(result['quantiles'][0] < result['quantiles'][1])

    def test_missing_states(self):
        with pytest.raises(ValueError, match='no state draws'):
            states_summary(_output(jnp.zeros((5, 1))))
