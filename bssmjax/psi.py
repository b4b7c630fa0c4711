# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r""":math:`\psi`-auxiliary particle filter.

The :math:`\psi`-APF (Vihola, Helske & Franks, 2020) uses a Gaussian
approximation of the model (see :mod:`bssmjax.approximation`) as a
look-ahead.  Particles are proposed from the forward conditionals of the
approximating smoothing distribution,

.. math::

    q_t(\alpha_t \mid \alpha_{t-1})
        = g(\alpha_t \mid \alpha_{t-1}, \tilde y_{0:T-1}),

which are Gaussian with moments given by the smoothed means,
covariances and lag-one cross covariances.  The weights then only
correct for the approximation error,

.. math::

    w_t = \frac{p(y_t \mid \alpha_t)}{g(\tilde y_t \mid \alpha_t)}
          \frac{p(\alpha_t \mid \alpha_{t-1})}{g(\alpha_t \mid \alpha_{t-1})},

and the evidence estimate starts from the Gaussian log-likelihood
:math:`\log p_G(\tilde y)`.  The estimate stays unbiased for
:math:`p(y \mid \theta)`; for a linear-Gaussian model, where the
approximation is exact, every weight equals one and the estimate equals
the Kalman filter likelihood.

The implementation uses :func:`jax.lax.scan` so the full time-loop is
compiled into a single XLA program.
"""

from collections.abc import Callable
from typing import NamedTuple, Optional

import jax.numpy as jnp
import jax.random as jr
from blackjax.smc.ess import ess as compute_ess
from blackjax.smc.resampling import systematic
from jax import lax, vmap
from jaxtyping import Array, Float

from bssmjax.bootstrap import prepend
from bssmjax.containers import (
    GaussianApproximation,
    ParticleFilterPosterior,
    ParticleState,
)
from bssmjax.kalman import broadcast_in_time, log_emission_density, psd_sqrt
from bssmjax.types import PRNGKeyT
from bssmjax.weights import log_normalize, normalize


class ConditionalProposal(NamedTuple):
    r"""Gaussian forward conditionals :math:`\alpha_t \mid \alpha_{t-1}`.

    ``mean = weights @ prev + bias`` and ``chol`` is a square root of
    the conditional covariance; index ``t - 1`` holds step ``t``.
    """

    weights: Float[Array, 'ntime_1 state_dim state_dim']
    bias: Float[Array, 'ntime_1 state_dim']
    chol: Float[Array, 'ntime_1 state_dim state_dim']


def _psd_pinv(cov: Array, rtol: float = 1e-10) -> Array:
    eigvals, eigvecs = jnp.linalg.eigh(0.5 * (cov + cov.T))
    cutoff = rtol * jnp.max(jnp.abs(eigvals))
    keep = eigvals > cutoff
    inv = jnp.where(keep, 1.0 / jnp.where(keep, eigvals, 1.0), 0.0)
    return (eigvecs * inv) @ eigvecs.T


def conditional_proposal(
    approximation: GaussianApproximation,
) -> ConditionalProposal:
    """Forward conditionals of the approximating smoothing distribution."""
    sm = approximation.smoother
    mu, V, C = (
        sm.smoothed_means,
        sm.smoothed_covariances,
        sm.smoothed_cross_covariances,
    )

    def _one(
        mu_prev: Array, V_prev: Array, mu_t: Array, V_t: Array, C_t: Array
    ) -> tuple[Array, Array, Array]:
        A = C_t @ _psd_pinv(V_prev)
        cov = V_t - A @ C_t.T
        return A, mu_t - A @ mu_prev, psd_sqrt(cov)

    A, b, L = vmap(_one)(mu[:-1], V[:-1], mu[1:], V[1:], C)
    return ConditionalProposal(weights=A, bias=b, chol=L)


def psi_filter(
    key: PRNGKeyT,
    approximation: GaussianApproximation,
    log_observation_fn: Callable,
    emissions: Float[Array, 'ntime emission_dim'],
    num_particles: int,
    log_transition_ratio_fn: Optional[Callable] = None,
    resampling_fn: Callable = systematic,
    resampling_threshold: float = 0.5,
) -> ParticleFilterPosterior:
    r"""Run a :math:`\psi`-auxiliary particle filter.

    Args:
        key: JAX PRNG key.
        approximation: Gaussian approximation of the model at the
            current :math:`\theta`.
        log_observation_fn: Function ``(emission, state, t) -> log_prob``
            evaluating the *true* :math:`\log p(y_t \mid \alpha_t)`, zero
            for missing emissions.
        emissions: Observed emissions, shape ``(T, D)``.
        num_particles: Number of particles :math:`N`.
        log_transition_ratio_fn: Optional function
            ``(prev_state, state, t) -> log p(alpha_t | alpha_{t-1})
            - log g(alpha_t | alpha_{t-1})``.  ``None`` when the
            approximating model shares the true dynamics.
        resampling_fn: Resampling algorithm matching the Blackjax
            signature ``(key, weights, num_samples) -> indices``.
        resampling_threshold: Fraction of ``num_particles`` below which
            resampling is triggered.

    Returns:
        :class:`~bssmjax.containers.ParticleFilterPosterior`.
    """
    num_timesteps = emissions.shape[0]
    gauss = broadcast_in_time(approximation.params, num_timesteps)
    proposal = conditional_proposal(approximation)
    sm = approximation.smoother
    state_dim = sm.smoothed_means.shape[-1]

    def _log_weight(
        prev: Float[Array, ' state_dim'],
        state: Float[Array, ' state_dim'],
        t: Array,
        y_t: Float[Array, ' emission_dim'],
        pseudo_y_t: Float[Array, ' emission_dim'],
    ) -> Array:
        log_g = log_emission_density(
            pseudo_y_t,
            state,
            gauss.emissions_weights[t],
            gauss.emissions_bias[t],
            gauss.emissions_cov[t],
        )
        log_w = log_observation_fn(y_t, state, t) - log_g
        if log_transition_ratio_fn is not None:
            log_w = log_w + jnp.where(
                t > 0, log_transition_ratio_fn(prev, state, t), 0.0
            )
        return log_w

    key, init_key = jr.split(key)
    log_n = jnp.log(jnp.asarray(num_particles, dtype=jnp.float64))

    # --- Initialise at t=0 from the smoothed marginal ------------------------
    z0 = jr.normal(init_key, (num_particles, state_dim))
    particles_0 = sm.smoothed_means[0] + z0 @ psd_sqrt(
        sm.smoothed_covariances[0]
    ).T
    log_obs_0 = vmap(
        lambda z: _log_weight(z, z, 0, emissions[0], approximation.emissions[0])
    )(particles_0)
    log_w_0, log_sum_0 = log_normalize(log_obs_0)
    log_ev_0 = approximation.gaussian_loglik + log_sum_0 - log_n
    ess_0 = compute_ess(log_w_0)
    identity_ancestors = jnp.arange(num_particles, dtype=jnp.int32)

    init_state = ParticleState(
        particles=particles_0,
        log_weights=log_w_0,
        log_marginal_likelihood=log_ev_0,
    )

    # --- Scan body for t = 1, ..., T-1 -------------------------------------
    def _step(
        carry: ParticleState, args: tuple[Array, ...]
    ) -> tuple[ParticleState, tuple[Array, Array, Array, Array, Array]]:
        state = carry
        step_key, t, y_t, pseudo_y_t, A, b, L = args
        k1, k2 = jr.split(step_key)

        # 1. Conditionally resample
        cur_ess = compute_ess(state.log_weights)
        do_resample = cur_ess < resampling_threshold * num_particles
        ancestors = lax.cond(
            do_resample,
            lambda: resampling_fn(
                k1, normalize(state.log_weights), num_particles
            ).astype(jnp.int32),
            lambda: identity_ancestors,
        )
        prev = state.particles[ancestors]

        # 2. Propagate through the approximate smoothing conditional
        noise = jr.normal(k2, (num_particles, state_dim))
        propagated = prev @ A.T + b + noise @ L.T

        # 3. Correct for the approximation error
        log_inc = vmap(
            lambda zp, z: _log_weight(zp, z, t, y_t, pseudo_y_t)
        )(prev, propagated)
        log_w_unnorm = jnp.where(
            do_resample, log_inc, state.log_weights + log_inc
        )
        log_w_norm, log_sum = log_normalize(log_w_unnorm)
        log_ev_inc = jnp.where(do_resample, log_sum - log_n, log_sum)

        new_state = ParticleState(
            particles=propagated,
            log_weights=log_w_norm,
            log_marginal_likelihood=(
                state.log_marginal_likelihood + log_ev_inc
            ),
        )
        ess_t: Array = jnp.asarray(compute_ess(log_w_norm))
        return new_state, (propagated, log_w_norm, ancestors, ess_t, log_ev_inc)

    step_keys = jr.split(key, num_timesteps - 1)
    final_state, (
        particles_rest,
        log_w_rest,
        ancestors_rest,
        ess_rest,
        log_ev_rest,
    ) = lax.scan(
        _step,
        init_state,
        (
            step_keys,
            jnp.arange(1, num_timesteps),
            emissions[1:],
            approximation.emissions[1:],
            proposal.weights,
            proposal.bias,
            proposal.chol,
        ),
    )

    return ParticleFilterPosterior(
        marginal_loglik=final_state.log_marginal_likelihood,
        filtered_particles=prepend(particles_0, particles_rest),
        filtered_log_weights=prepend(log_w_0, log_w_rest),
        ancestors=prepend(identity_ancestors, ancestors_rest),
        ess=prepend(jnp.asarray(ess_0), ess_rest),
        log_evidence_increments=prepend(jnp.asarray(log_ev_0), log_ev_rest),
    )
