# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Forward simulation from a state-space model.

Generates a single trajectory of latent states and observed emissions
by drawing from the initial, transition, and emission distributions
sequentially.  Uses the same time-indexed callback interface as
:func:`~bssmjax.bootstrap.bootstrap_filter` so that model definitions
are reusable.

The implementation uses :func:`jax.lax.scan` so the full time-loop is
compiled into a single XLA program.
"""

from collections.abc import Callable

import jax.numpy as jnp
import jax.random as jr
from jax import lax
from jaxtyping import Array, Float

from bssmjax.bootstrap import prepend
from bssmjax.types import PRNGKeyT


def simulate(
    key: PRNGKeyT,
    initial_sampler: Callable,
    transition_sampler: Callable,
    emission_sampler: Callable,
    num_timesteps: int,
) -> tuple[
    Float[Array, 'ntime state_dim'],
    Float[Array, 'ntime emission_dim'],
]:
    r"""Simulate a single trajectory from a state-space model.

    Args:
        key: JAX PRNG key.
        initial_sampler: Function ``(key) -> state`` that draws a
            single sample from :math:`p(\alpha_0)`.  Unlike the filter
            interface, this draws *one* sample (no ``num_particles``
            argument).
        transition_sampler: Function ``(key, state, t) -> state`` that
            draws :math:`\alpha_t` given :math:`\alpha_{t-1}`.
        emission_sampler: Function ``(key, state, t) -> emission`` that
            draws from :math:`p(y_t \mid \alpha_t)`.
        num_timesteps: Number of time steps :math:`T` to simulate.

    Returns:
        A tuple ``(states, emissions)`` where *states* has shape
        ``(T, state_dim)`` and *emissions* has shape
        ``(T, emission_dim)``.
    """
    k_init, k_rest = jr.split(key)

    # --- t = 0 --------------------------------------------------------------
    k_z0, k_y0 = jr.split(k_init)
    z_0 = initial_sampler(k_z0)
    y_0 = emission_sampler(k_y0, z_0, 0)

    # --- Scan body for t = 1, ..., T-1 --------------------------------------
    def _step(
        z_prev: Array,
        args: tuple[PRNGKeyT, Array],
    ) -> tuple[Array, tuple[Array, Array]]:
        step_key, t = args
        k_z, k_y = jr.split(step_key)
        z_t = transition_sampler(k_z, z_prev, t)
        y_t = emission_sampler(k_y, z_t, t)
        return z_t, (z_t, y_t)

    step_keys = jr.split(k_rest, num_timesteps - 1)
    _, (states_rest, emissions_rest) = lax.scan(
        _step, z_0, (step_keys, jnp.arange(1, num_timesteps))
    )

    return prepend(z_0, states_rest), prepend(y_0, emissions_rest)
