# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Shared test fixtures for bssmjax."""

import jax
import jax.numpy as jnp
import jax.random as jr
import pytest

# Configure JAX to use 64-bit floats for higher precision in tests.
# Must run before bssmjax is imported so module-level constants are float64.
jax.config.update('jax_enable_x64', True)

import bssmjax
from bssmjax.containers import GaussianSSMParams


@pytest.fixture
def package():
    """Return the top-level package module for introspection."""
    return bssmjax


@pytest.fixture
def key():
    """Fixed JAX PRNG key for reproducibility."""
    return jr.PRNGKey(42)


@pytest.fixture
def lgssm_params():
    """Simple 1-D linear Gaussian SSM parameters.

    Model:
        z_0  ~ N(0, 1)
        z_t  = 0.9 * z_{t-1} + eps,  eps ~ N(0, 0.5^2)
        y_t  = z_t + eta,             eta ~ N(0, 1.0^2)

    Returns a dict with keys matching Dynamax ``make_lgssm_params``.
    """
    return dict(
        initial_mean=jnp.array([0.0]),
        initial_cov=jnp.array([[1.0]]),
        dynamics_weights=jnp.array([[0.9]]),
        dynamics_cov=jnp.array([[0.25]]),  # 0.5^2
        emissions_weights=jnp.array([[1.0]]),
        emissions_cov=jnp.array([[1.0]]),
    )


@pytest.fixture
def gaussian_params(lgssm_params):
    """The same model as :class:`GaussianSSMParams`."""
    return GaussianSSMParams(
        initial_mean=lgssm_params['initial_mean'],
        initial_cov=lgssm_params['initial_cov'],
        dynamics_weights=lgssm_params['dynamics_weights'],
        dynamics_bias=jnp.zeros(1),
        dynamics_cov=lgssm_params['dynamics_cov'],
        emissions_weights=lgssm_params['emissions_weights'],
        emissions_bias=jnp.zeros(1),
        emissions_cov=lgssm_params['emissions_cov'],
    )


@pytest.fixture
def lgssm_data(key, lgssm_params):
    """Simulate T=50 observations from the 1-D LGSSM.

    Returns (states, emissions) each of shape (50, 1).
    """
    from dynamax.linear_gaussian_ssm.inference import (
        lgssm_joint_sample,
        make_lgssm_params,
    )

    params = make_lgssm_params(**lgssm_params)
    states, emissions = lgssm_joint_sample(params, key, num_timesteps=50)
    return states, emissions


@pytest.fixture
def poisson_data():
    """Counts from a Poisson local level model, T=60.

    Model:
        a_{t+1} = a_t + eps,  eps ~ N(0, 0.1^2),  a_0 = log(5)
        y_t     ~ Poisson(exp(a_t))
    """
    k_level, k_obs = jr.split(jr.PRNGKey(7))
    level = jnp.log(5.0) + jnp.cumsum(0.1 * jr.normal(k_level, (60,)))
    return jr.poisson(k_obs, jnp.exp(level)).astype(float)

