# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Importance-sampling correction of approximate MCMC output.

An MCMC chain targeting the approximate posterior
:math:`\pi_a(\theta) \propto p(\theta)\,\hat p_a(y \mid \theta)` is
corrected towards the exact posterior with the weights

.. math::

    w(\theta) = \frac{\hat p_N(y \mid \theta)}{\hat p_a(y \mid \theta)},

where :math:`\hat p_N` is an unbiased particle filter estimate.  The
weights only need to be computed once per *accepted* state, so the
chain is first collapsed into its jump chain with :func:`jump_chain`;
the particle filter runs of :func:`post_correct` are independent of one
another and are evaluated in batches with :func:`jax.lax.map`.
"""

from typing import Optional

import jax.numpy as jnp
import jax.random as jr
import numpy as np
from jax import lax
from jaxtyping import Array, Float, Int

from bssmjax.containers import PostCorrection
from bssmjax.types import PRNGKeyT


def jump_chain(
    theta: Float[Array, 'num_samples num_params'],
    log_likelihood: Float[Array, ' num_samples'],
) -> tuple[
    Float[Array, 'num_draws num_params'],
    Float[Array, ' num_draws'],
    Int[Array, ' num_draws'],
]:
    """Collapse consecutive repeats of an MCMC chain.

    Runs on the host since the number of distinct states is data
    dependent.

    Args:
        theta: Chain of hyperparameter draws.
        log_likelihood: Log-likelihood attached to each draw.

    Returns:
        ``(theta, log_likelihood, counts)`` of the accepted states, with
        ``counts`` the number of iterations spent in each.
    """
    theta = np.asarray(theta)
    if theta.shape[0] == 0:
        raise ValueError('Cannot build the jump chain of an empty chain.')
    moved = np.any(theta[1:] != theta[:-1], axis=1)
    starts = np.flatnonzero(np.concatenate([[True], moved]))
    counts = np.diff(np.append(starts, theta.shape[0]))
    return (
        jnp.asarray(theta[starts]),
        jnp.asarray(np.asarray(log_likelihood)[starts]),
        jnp.asarray(counts),
    )


def post_correct(
    key: PRNGKeyT,
    model,
    theta: Float[Array, 'num_draws num_params'],
    approx_log_likelihood: Float[Array, ' num_draws'],
    num_particles: int,
    method: Optional[str] = None,
    batch_size: Optional[int] = None,
) -> PostCorrection:
    """Importance weights and state draws for each accepted ``theta``.

    Args:
        key: JAX PRNG key.
        model: A :class:`~bssmjax.models.StateSpaceModel`.
        theta: Accepted hyperparameters, shape ``(num_draws, num_params)``.
        approx_log_likelihood: Approximate log-likelihood the chain was
            run with, per draw.
        num_particles: Particles per filter run.
        method: ``'psi'`` or ``'bootstrap'``; defaults to the model's
            preferred filter.
        batch_size: Number of filters evaluated in parallel by
            :func:`jax.lax.map`; ``None`` evaluates them one at a time.

    Returns:
        :class:`~bssmjax.containers.PostCorrection`.  Weights of draws
        whose filter produced a non-finite estimate are zero.
    """
    keys = jr.split(key, theta.shape[0])

    def _one(
        args: tuple[PRNGKeyT, Float[Array, ' num_params']],
    ) -> tuple[Array, Float[Array, 'ntime state_dim']]:
        k, th = args
        return model.sample_states(k, th, num_particles, method)

    log_lik, states = lax.map(_one, (keys, theta), batch_size=batch_size)
    log_lik = jnp.where(jnp.isnan(log_lik), -jnp.inf, log_lik)
    log_weights = log_lik - approx_log_likelihood
    log_weights = jnp.where(jnp.isnan(log_weights), -jnp.inf, log_weights)
    return PostCorrection(
        log_weights=log_weights, log_likelihood=log_lik, states=states
    )


def correction_weights(
    correction: PostCorrection,
    counts: Int[Array, ' num_draws'],
) -> Float[Array, ' num_draws']:
    """Non-negative weights ``counts * w`` scaled to a maximum log weight of 0."""
    log_w = correction.log_weights
    shift = jnp.max(jnp.where(jnp.isfinite(log_w), log_w, -jnp.inf))
    shift = jnp.where(jnp.isfinite(shift), shift, 0.0)
    return counts * jnp.exp(log_w - shift)
