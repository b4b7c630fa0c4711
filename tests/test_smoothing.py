# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for bssmjax.smoothing."""

import jax
import jax.numpy as jnp
import jax.random as jr

from bssmjax.containers import ParticleFilterPosterior
from bssmjax.constructors import ar1_lg
from bssmjax.kalman import kalman_smoother
from bssmjax.smoothing import sample_trajectory


def test_traces_ancestry():
    particles = jnp.array(
        [[[0.0], [1.0]], [[10.0], [11.0]], [[20.0], [21.0]]]
    )
    posterior = ParticleFilterPosterior(
        marginal_loglik=jnp.asarray(0.0),
        filtered_particles=particles,
        filtered_log_weights=jnp.array(
            [[0.0, 0.0], [0.0, 0.0], [-jnp.inf, 0.0]]
        ),
        ancestors=jnp.array([[0, 1], [1, 0], [0, 0]]),
        ess=jnp.ones(3),
        log_evidence_increments=jnp.zeros(3),
    )
    path = sample_trajectory(jr.PRNGKey(0), posterior)
    assert jnp.allclose(path[:, 0], jnp.array([1.0, 10.0, 21.0]))


def test_psi_trajectories_match_smoother(lgssm_data):
    """For a linear-Gaussian model psi trajectories are smoothing draws."""
    _, emissions = lgssm_data
    model = ar1_lg(emissions, rho=0.9, sigma=0.5, sd_y=1.0)
    theta = jnp.zeros(0)

    def draw(key):
        return model.sample_states(key, theta, 5)[1]

    paths = jax.vmap(draw)(jr.split(jr.PRNGKey(1), 3_000))
    smoothed = kalman_smoother(model.params(theta), model.emissions)
    assert jnp.allclose(
        paths.mean(axis=0), smoothed.smoothed_means, atol=0.07
    )
