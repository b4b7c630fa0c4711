# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""State trajectories from particle filter genealogies.

Tracing the ancestry of a particle drawn from the final weights gives a
draw from the particle approximation of the joint smoothing
distribution, which is what the pseudo-marginal and post-corrected
samplers attach to each hyperparameter draw.
"""

import jax.random as jr
from jax import lax
from jaxtyping import Array, Float

from bssmjax.containers import ParticleFilterPosterior
from bssmjax.types import PRNGKeyT


def sample_trajectory(
    key: PRNGKeyT,
    posterior: ParticleFilterPosterior,
) -> Float[Array, 'ntime state_dim']:
    """Sample one state trajectory by ancestor tracing.

    Args:
        key: JAX PRNG key.
        posterior: Output of a particle filter.

    Returns:
        Trajectory of shape ``(ntime, state_dim)``.
    """
    last_idx = jr.categorical(key, posterior.filtered_log_weights[-1]).astype(
        posterior.ancestors.dtype
    )

    def _step(
        idx: Array, args: tuple[Array, Array]
    ) -> tuple[Array, Array]:
        particles_t, ancestors_t = args
        return ancestors_t[idx], particles_t[idx]

    _, path = lax.scan(
        _step,
        last_idx,
        (posterior.filtered_particles, posterior.ancestors),
        reverse=True,
    )
    return path

