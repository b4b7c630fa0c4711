# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Diagnostic utilities for particle filter posteriors.

Filtering summaries:

- :func:`weighted_mean`: weighted filtering mean at each time step
- :func:`weighted_variance`: weighted filtering variance
- :func:`weighted_quantile`: weighted quantiles for credible
  intervals

Computational faithfulness:

- :func:`particle_diversity`: fraction of unique ancestors per step
- :func:`log_ml_increments`: per-step evidence contributions
- :func:`replicated_log_ml`: Monte Carlo variability of the
  log-likelihood estimate, e.g. to compare the bootstrap filter and
  the :math:`\psi`-APF or to choose the number of particles for
  pseudo-marginal MCMC

All functions are pure, operate on
:class:`~bssmjax.containers.ParticleFilterPosterior` and are
JIT-compatible.
"""

from collections.abc import Callable

import jax.numpy as jnp
import jax.random as jr
from jax import vmap
from jaxtyping import Array, Float, Int

from bssmjax.containers import ParticleFilterPosterior
from bssmjax.types import PRNGKeyT, Scalar
from bssmjax.weights import normalize, weighted_quantile_1d


def weighted_mean(
    posterior: ParticleFilterPosterior,
) -> Float[Array, 'ntime state_dim']:
    """Weighted mean of the particles at each time step.

    Args:
        posterior: Particle filter posterior output.

    Returns:
        Weighted means, shape ``(ntime, state_dim)``.
    """
    weights = vmap(normalize)(posterior.filtered_log_weights)
    return jnp.einsum('tn,tnd->td', weights, posterior.filtered_particles)


def weighted_variance(
    posterior: ParticleFilterPosterior,
) -> Float[Array, 'ntime state_dim']:
    r"""Weighted variance of the particles at each time step.

    Uses :math:`V = \sum_i w_i (x_i - \mu)^2` where :math:`\mu` is the
    weighted mean.

    Args:
        posterior: Particle filter posterior output.

    Returns:
        Weighted variances, shape ``(ntime, state_dim)``.
    """
    weights = vmap(normalize)(posterior.filtered_log_weights)
    means = weighted_mean(posterior)
    deviations = posterior.filtered_particles - means[:, None, :]
    return jnp.einsum('tn,tnd->td', weights, deviations**2)


def weighted_quantile(
    posterior: ParticleFilterPosterior,
    q: Float[Array, ' num_quantiles'],
) -> Float[Array, 'ntime num_quantiles state_dim']:
    """Weighted quantiles of the particles at each time step.

    Args:
        posterior: Particle filter posterior output.
        q: Quantile levels in [0, 1], e.g. ``jnp.array([0.025, 0.975])``
            for a 95% credible interval.

    Returns:
        Weighted quantiles, shape ``(ntime, num_quantiles, state_dim)``.
    """
    weights = vmap(normalize)(posterior.filtered_log_weights)

    def _quantile_one_time(particles_t, weights_t):
        return vmap(weighted_quantile_1d, in_axes=(1, None, None))(
            particles_t, weights_t, q
        ).T

    return vmap(_quantile_one_time)(posterior.filtered_particles, weights)


def log_ml_increments(
    posterior: ParticleFilterPosterior,
) -> Float[Array, ' ntime']:
    r"""Per-step log marginal likelihood increments.

    .. math::

        \log \hat p(y_{0:T-1}) = \sum_{t=0}^{T-1}
            \log \hat p(y_t \mid y_{0:t-1})

    For the :math:`\psi`-APF the first increment also contains the
    Gaussian log-likelihood of the approximating model.

    Args:
        posterior: Particle filter posterior output.

    Returns:
        Per-step evidence increments, shape ``(ntime,)``.  These sum
        to ``posterior.marginal_loglik``.
    """
    return posterior.log_evidence_increments


def particle_diversity(
    posterior: ParticleFilterPosterior,
) -> Float[Array, ' ntime']:
    """Fraction of distinct ancestors at each time step.

    A value near 1 means most particles survived resampling, near 0
    means heavy duplication.  Counts changes in the sorted ancestor
    vector instead of using ``jnp.unique`` to stay JIT-compatible.

    Args:
        posterior: Particle filter posterior output.

    Returns:
        Diversity fraction in [0, 1] at each time step,
        shape ``(ntime,)``.
    """
    num_particles = posterior.ancestors.shape[1]

    def _diversity_one_step(anc: Int[Array, ' num_particles']) -> Scalar:
        sorted_anc = jnp.sort(anc)
        is_unique = jnp.concatenate(
            [jnp.array([True]), sorted_anc[1:] != sorted_anc[:-1]]
        )
        return jnp.sum(is_unique) / num_particles

    return vmap(_diversity_one_step)(posterior.ancestors)


def replicated_log_ml(
    key: PRNGKeyT,
    filter_fn: Callable[[PRNGKeyT], Scalar],
    num_replicates: int,
) -> Float[Array, ' num_replicates']:
    """Run a particle filter repeatedly to assess log-likelihood variability.

    Args:
        key: JAX PRNG key.
        filter_fn: Function ``(key) -> scalar`` that runs a particle
            filter and returns the marginal log-likelihood.
        num_replicates: Number of independent filter runs.

    Returns:
        Array of log-likelihood estimates, shape ``(num_replicates,)``.
    """
    keys = jr.split(key, num_replicates)
    return jnp.asarray(vmap(filter_fn)(keys))
