# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Posterior summaries of :class:`~bssmjax.containers.MCMCOutput`.

All summaries use the output's ``weights``: ones for the ``exact``,
``approx``, ``pm`` and ``da`` chains, and ``counts`` times the
importance weights for the ``is`` jump chain, so the same estimators
apply to every algorithm.
"""

import jax.numpy as jnp
import numpy as np
from blackjax.diagnostics import effective_sample_size
from jax import vmap
from jaxtyping import Array, Float

from bssmjax.containers import MCMCOutput
from bssmjax.types import Scalar
from bssmjax.weights import weighted_quantile_1d

DEFAULT_QUANTILES = (0.025, 0.5, 0.975)


def _normalized_weights(output: MCMCOutput) -> Float[Array, ' num_draws']:
    return output.weights / jnp.sum(output.weights)


def importance_ess(weights: Float[Array, ' num_draws']) -> Scalar:
    r"""Effective sample size :math:`(\sum w)^2 / \sum w^2` of weights."""
    weights = jnp.asarray(weights)
    return jnp.sum(weights) ** 2 / jnp.sum(weights**2)


def posterior_mean(output: MCMCOutput) -> Float[Array, ' num_params']:
    """Weighted posterior mean of theta."""
    return _normalized_weights(output) @ output.theta


def posterior_quantiles(
    output: MCMCOutput,
    q=DEFAULT_QUANTILES,
) -> Float[Array, 'num_quantiles num_params']:
    """Weighted posterior quantiles (credible interval bounds) of theta."""
    weights = _normalized_weights(output)
    return vmap(weighted_quantile_1d, in_axes=(1, None, None))(
        output.theta, weights, jnp.asarray(q)
    ).T


def mcmc_ess(output: MCMCOutput) -> Float[Array, ' num_params']:
    """Effective sample size of each entry of theta.

    For plain chains this is the autocorrelation-based estimate of
    :func:`blackjax.diagnostics.effective_sample_size`.  For the ``is``
    jump chain the chain is expanded back to one row per iteration and
    the estimate is scaled by the relative importance-sampling
    efficiency of the per-iteration weights.
    """
    if output.mcmc_type != 'is':
        return effective_sample_size(
            output.theta[None], chain_axis=0, sample_axis=1
        )
    counts = np.asarray(output.counts)
    chain = np.repeat(np.asarray(output.theta), counts, axis=0)
    per_iteration = np.repeat(
        np.asarray(output.weights) / np.maximum(counts, 1), counts
    )
    ess = effective_sample_size(
        jnp.asarray(chain)[None], chain_axis=0, sample_axis=1
    )
    return ess * importance_ess(per_iteration) / chain.shape[0]


def summary(output: MCMCOutput, q=DEFAULT_QUANTILES) -> dict[str, dict]:
    """Posterior summary table keyed by parameter name.

    Each entry holds ``mean``, ``sd``, ``ess`` and one value per
    requested quantile under the key ``'q<level>'`` (e.g. ``'q0.025'``).
    """
    weights = _normalized_weights(output)
    mean = weights @ output.theta
    sd = jnp.sqrt(weights @ (output.theta - mean) ** 2)
    quantiles = posterior_quantiles(output, q)
    ess = mcmc_ess(output)
    table = {}
    for i, name in enumerate(output.param_names):
        row = {'mean': float(mean[i]), 'sd': float(sd[i]), 'ess': float(ess[i])}
        for j, level in enumerate(q):
            row[f'q{level}'] = float(quantiles[j, i])
        table[name] = row
    return table


def states_summary(
    output: MCMCOutput, q=DEFAULT_QUANTILES
) -> dict[str, Float[Array, '...']]:
    """Weighted mean, standard deviation and quantiles of the states.

    Returns:
        Dict with ``mean`` and ``sd`` of shape ``(ntime, state_dim)``
        and ``quantiles`` of shape ``(num_quantiles, ntime, state_dim)``.

    Raises:
        ValueError: If the output carries no state draws.
    """
    if output.states is None:
        raise ValueError('The MCMC output carries no state draws.')
    weights = _normalized_weights(output)
    states = output.states
    mean = jnp.einsum('n,ntd->td', weights, states)
    sd = jnp.sqrt(jnp.einsum('n,ntd->td', weights, (states - mean) ** 2))
    flat = states.reshape(states.shape[0], -1)
    quantiles = vmap(weighted_quantile_1d, in_axes=(1, None, None))(
        flat, weights, jnp.asarray(q)
    ).T
    return {
        'mean': mean,
        'sd': sd,
        'quantiles': quantiles.reshape(len(q), *states.shape[1:]),
    }
