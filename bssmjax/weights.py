# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Log-space weight utilities shared by the filters and the summaries."""

import jax.numpy as jnp
from jaxtyping import Array, Float

from bssmjax.types import Scalar


def log_normalize(
    log_weights: Float[Array, ' num_samples'],
) -> tuple[Float[Array, ' num_samples'], Scalar]:
    """Normalize log weights and return the log normalizing constant.

    Args:
        log_weights: Unnormalized log weights.

    Returns:
        A tuple ``(log_normalized, log_normalizer)`` where
        *log_normalized* has ``logsumexp == 0`` and
        *log_normalizer* is ``logsumexp(log_weights)``.
    """
    log_normalizer = jnp.logaddexp.reduce(log_weights)  # type: ignore[union-attr]
    log_normalized = log_weights - log_normalizer
    return log_normalized, log_normalizer


def normalize(
    log_weights: Float[Array, ' num_samples'],
) -> Float[Array, ' num_samples']:
    """Exponentiate and normalize log weights so they sum to one."""
    log_norm, _ = log_normalize(log_weights)
    return jnp.exp(log_norm)


def weighted_quantile_1d(
    x: Float[Array, ' num_samples'],
    weights: Float[Array, ' num_samples'],
    q: Float[Array, ' num_quantiles'],
) -> Float[Array, ' num_quantiles']:
    """Quantiles of a weighted one-dimensional sample.

    Sorts the sample, accumulates the (normalized) weights and
    interpolates the requested levels, which keeps the computation
    JIT-compatible.

    Args:
        x: Sample values.
        weights: Normalized, non-negative weights.
        q: Quantile levels in [0, 1].

    Returns:
        Interpolated quantiles, one per level in *q*.
    """
    sort_idx = jnp.argsort(x)
    cum_w = jnp.cumsum(weights[sort_idx])
    return jnp.interp(jnp.asarray(q), cum_w, x[sort_idx])
