# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Adaptive MCMC over the hyperparameters of a state-space model.

The random-walk proposal :math:`\theta' = \theta + S u`,
:math:`u \sim N(0, I)`, is tuned by the robust adaptive Metropolis
algorithm (Vihola, 2012):

.. math::

    S_n S_n^\top = S_{n-1}\Big(I + \eta_n (a_n - a^*)
        \frac{u_n u_n^\top}{\lVert u_n \rVert^2}\Big) S_{n-1}^\top,
    \qquad \eta_n = \min(1, d\, n^{-\gamma}),

with acceptance probability :math:`a_n` and target :math:`a^*`.

Five algorithms are available through :func:`run_mcmc`:

``exact``
    Kalman filter likelihood (linear-Gaussian models).
``approx``
    The approximate likelihood of the model only.
``pm``
    Pseudo-marginal MCMC with a particle filter likelihood.
``da``
    Delayed acceptance: the approximate likelihood screens proposals
    before the particle filter is run.
``is``
    The ``approx`` chain followed by importance-sampling correction of
    its jump chain (see :mod:`bssmjax.post_correction`).

Proposals outside the prior support are rejected without evaluating the
likelihood, and non-finite likelihood estimates count as rejections.
"""

import logging
from typing import Optional

import jax.numpy as jnp
import jax.random as jr
import numpy as np
from jax import lax
from jaxtyping import Array, Float

from bssmjax.containers import MCMCInfo, MCMCOutput, RAMState
from bssmjax.models import (
    LinearGaussianModel,
    NonGaussianModel,
    NonlinearModel,
    StateSpaceModel,
    check_method,
)
from bssmjax.post_correction import correction_weights, jump_chain, post_correct
from bssmjax.types import PRNGKeyT, Scalar

logger = logging.getLogger(__name__)

MCMC_TYPES = ('exact', 'approx', 'pm', 'da', 'is')


def ram_adapt(
    chol: Float[Array, 'dim dim'],
    u: Float[Array, ' dim'],
    acceptance_prob: Scalar,
    iteration: Scalar,
    target_acceptance: float = 0.234,
    gamma: float = 2 / 3,
) -> Float[Array, 'dim dim']:
    """One robust adaptive Metropolis update of the proposal factor.

    Args:
        chol: Current lower Cholesky factor ``S``.
        u: Standard normal draw used for the last proposal.
        acceptance_prob: Acceptance probability of the last proposal.
        iteration: Iteration number ``n >= 1``.
        target_acceptance: Target acceptance rate.
        gamma: Step size decay exponent in ``(0.5, 1]``.

    Returns:
        Updated lower Cholesky factor.
    """
    dim = u.shape[0]
    eta = jnp.minimum(1.0, dim * iteration ** (-gamma))
    direction = jnp.outer(u, u) / jnp.sum(u**2)
    scale = eta * (acceptance_prob - target_acceptance)
    middle = jnp.eye(dim) + scale * direction
    # S chol(M) is lower triangular with a positive diagonal.
    return chol @ jnp.linalg.cholesky(middle)


def _finite_or_neg_inf(x: Scalar) -> Scalar:
    return jnp.where(jnp.isnan(x), -jnp.inf, x)


def _log_accept_prob(log_ratio: Scalar) -> Scalar:
    return jnp.minimum(0.0, _finite_or_neg_inf(log_ratio))


def _validate(
    model: StateSpaceModel,
    num_iterations: int,
    mcmc_type: str,
    num_particles: Optional[int],
    burnin: int,
    thin: int,
) -> None:
    if mcmc_type not in MCMC_TYPES:
        raise ValueError(
            f"Unknown mcmc_type '{mcmc_type}'. Choose from {MCMC_TYPES}."
        )
    if mcmc_type == 'exact' and not isinstance(model, LinearGaussianModel):
        raise ValueError(
            "mcmc_type='exact' needs a linear-Gaussian model; "
            "use 'pm', 'da' or 'is' instead."
        )
    if mcmc_type in ('pm', 'da', 'is') and (
        num_particles is None or num_particles < 1
    ):
        raise ValueError(
            f"mcmc_type='{mcmc_type}' needs a positive num_particles."
        )
    if model.num_params < 1:
        raise ValueError('The model has no hyperparameters to sample.')
    if num_iterations < 1:
        raise ValueError(
            f'num_iterations must be positive, got {num_iterations}.'
        )
    if not 0 <= burnin < num_iterations:
        raise ValueError(
            f'burnin must be in [0, num_iterations), got {burnin}.'
        )
    if thin < 1:
        raise ValueError(f'thin must be at least 1, got {thin}.')


def _check_approximation(model: StateSpaceModel) -> None:
    if not isinstance(model, (NonGaussianModel, NonlinearModel)):
        return
    approx = model.approximation(model.theta)
    if int(approx.iterations) >= model.max_iter:
        logger.warning(
            'Gaussian approximation did not converge in %d iterations '
            'at the initial theta.',
            model.max_iter,
        )
    if not np.isfinite(float(approx.log_likelihood)):
        logger.warning(
            'Approximate log-likelihood is not finite at the initial theta.'
        )


def run_mcmc(
    key: PRNGKeyT,
    model: StateSpaceModel,
    num_iterations: int,
    num_particles: Optional[int] = None,
    mcmc_type: Optional[str] = None,
    sampling_method: Optional[str] = None,
    burnin: Optional[int] = None,
    thin: int = 1,
    target_acceptance: float = 0.234,
    gamma: float = 2 / 3,
    proposal_chol: Optional[Float[Array, 'dim dim']] = None,
    end_adaptive_phase: bool = False,
    batch_size: Optional[int] = None,
) -> MCMCOutput:
    """Sample the posterior of a state-space model.

    Args:
        key: JAX PRNG key.
        model: Model to fit; its ``theta`` is the starting point.
        num_iterations: Total number of iterations including burn-in.
        num_particles: Particles per filter run (``pm``, ``da``, ``is``).
        mcmc_type: One of ``'exact'``, ``'approx'``, ``'pm'``, ``'da'``,
            ``'is'``.  Defaults to ``'exact'`` for linear-Gaussian models
            and ``'is'`` otherwise.
        sampling_method: Particle filter, ``'psi'`` or ``'bootstrap'``;
            defaults to the model's preferred filter.
        burnin: Number of initial iterations to discard, defaults to
            ``num_iterations // 2``.
        thin: Keep every ``thin``-th draw after burn-in (ignored by
            ``is``, which stores the jump chain).
        target_acceptance: Target acceptance rate of the adaptation.
        gamma: Adaptation step size decay exponent.
        proposal_chol: Initial proposal Cholesky factor, defaults to
            ``0.1 * I``.
        end_adaptive_phase: Freeze the proposal after burn-in.
        batch_size: Parallel batch size for post-hoc state sampling and
            importance-sampling correction.

    Returns:
        :class:`~bssmjax.containers.MCMCOutput`.

    Raises:
        ValueError: On invalid arguments, or when the log prior is not
            finite at the starting point.
    """
    mcmc_type = mcmc_type or model.default_mcmc_type
    method = sampling_method or model.default_sampling_method
    burnin = num_iterations // 2 if burnin is None else burnin
    _validate(model, num_iterations, mcmc_type, num_particles, burnin, thin)
    if mcmc_type in ('pm', 'da', 'is'):
        check_method(model, method)

    theta0 = model.theta
    dim = model.num_params
    if not np.isfinite(float(model.log_prior(theta0))):
        raise ValueError(
            'The log prior is not finite at the initial theta '
            f'{np.asarray(theta0)}.'
        )
    if proposal_chol is None:
        proposal_chol = 0.1 * jnp.eye(dim)
    proposal_chol = jnp.asarray(proposal_chol, dtype=float)
    if proposal_chol.shape != (dim, dim):
        raise ValueError(
            f'proposal_chol must have shape ({dim}, {dim}), '
            f'got {proposal_chol.shape}.'
        )
    if mcmc_type != 'exact':
        _check_approximation(model)

    logger.info(
        'Running %s MCMC: %d iterations, burn-in %d, thin %d, %s particles '
        '(%s).',
        mcmc_type,
        num_iterations,
        burnin,
        thin,
        num_particles,
        method,
    )

    k_init, k_chain, k_post = jr.split(key, 3)
    chain = _run_chain(
        k_init,
        k_chain,
        model,
        num_iterations,
        num_particles,
        mcmc_type,
        method,
        burnin,
        target_acceptance,
        gamma,
        proposal_chol,
        end_adaptive_phase,
    )
    final_state, info = chain

    acceptance_rate = jnp.mean(info.accepted[burnin:])
    logger.info('Acceptance rate after burn-in: %.3f', float(acceptance_rate))

    if mcmc_type == 'is':
        return _importance_corrected(
            k_post,
            model,
            info,
            burnin,
            num_particles,
            method,
            batch_size,
            acceptance_rate,
            final_state.chol,
        )

    keep = slice(burnin, None, thin)
    theta = info.position[keep]
    log_posterior = info.log_prior[keep] + info.log_likelihood[keep]
    if mcmc_type in ('pm', 'da'):
        states = info.states[keep]
    else:
        keys = jr.split(k_post, theta.shape[0])
        states = lax.map(
            lambda args: model.sample_approx_states(*args),
            (keys, theta),
            batch_size=batch_size,
        )
    num_draws = theta.shape[0]
    return MCMCOutput(
        theta=theta,
        states=states,
        log_posterior=log_posterior,
        weights=jnp.ones(num_draws),
        counts=jnp.ones(num_draws, dtype=int),
        acceptance_rate=acceptance_rate,
        proposal_chol=final_state.chol,
        mcmc_type=mcmc_type,
        param_names=model.param_names,
    )


def _run_chain(
    k_init: PRNGKeyT,
    k_chain: PRNGKeyT,
    model: StateSpaceModel,
    num_iterations: int,
    num_particles: Optional[int],
    mcmc_type: str,
    method: str,
    burnin: int,
    target_acceptance: float,
    gamma: float,
    proposal_chol: Float[Array, 'dim dim'],
    end_adaptive_phase: bool,
) -> tuple[RAMState, MCMCInfo]:
    """Scan over the iterations; returns the final state and the trace."""
    carries_states = mcmc_type in ('pm', 'da')
    neg_inf = jnp.asarray(-jnp.inf)

    def approx_ll(key: PRNGKeyT, theta: Array) -> Scalar:
        if mcmc_type == 'exact':
            return model.exact_log_likelihood(theta)
        return model.approx_log_likelihood(key, theta)

    def pf_ll(
        key: PRNGKeyT, theta: Array
    ) -> tuple[Scalar, Float[Array, 'ntime state_dim']]:
        return model.sample_states(key, theta, num_particles, method)

    theta0 = model.theta
    k_a, k_pf = jr.split(k_init)
    lp0 = model.log_prior(theta0)
    lla0 = _finite_or_neg_inf(approx_ll(k_a, theta0))
    if carries_states:
        ll0, states0 = pf_ll(k_pf, theta0)
        ll0 = _finite_or_neg_inf(ll0)
    else:
        ll0, states0 = lla0, jnp.zeros(0)
    init = RAMState(
        position=theta0,
        log_prior=lp0,
        log_likelihood=ll0,
        log_likelihood_approx=lla0,
        states=states0,
        chol=proposal_chol,
        num_accepted=jnp.asarray(0),
    )

    def _one_stage(
        state: RAMState, proposal: Array, lp_prop: Scalar, key: PRNGKeyT
    ) -> tuple[Scalar, Scalar, Array, Scalar]:
        if mcmc_type == 'pm':
            ll, states = lax.cond(
                jnp.isfinite(lp_prop),
                lambda: pf_ll(key, proposal),
                lambda: (neg_inf, state.states),
            )
            ll = _finite_or_neg_inf(ll)
            lla = ll
        else:
            lla = lax.cond(
                jnp.isfinite(lp_prop),
                lambda: _finite_or_neg_inf(approx_ll(key, proposal)),
                lambda: neg_inf,
            )
            ll, states = lla, state.states
        log_alpha = _log_accept_prob(
            lp_prop + ll - state.log_prior - state.log_likelihood
        )
        return ll, lla, states, log_alpha

    def _delayed(
        state: RAMState,
        proposal: Array,
        lp_prop: Scalar,
        key: PRNGKeyT,
        u_stage2: Float[Array, ' 2'],
    ) -> tuple[Scalar, Scalar, Array, Scalar, Array]:
        k_a, k_pf = jr.split(key)
        lla = lax.cond(
            jnp.isfinite(lp_prop),
            lambda: _finite_or_neg_inf(approx_ll(k_a, proposal)),
            lambda: neg_inf,
        )
        log_alpha1 = _log_accept_prob(
            lp_prop + lla - state.log_prior - state.log_likelihood_approx
        )
        # The particle filter only runs for proposals passing stage one.
        stage1 = jnp.log(u_stage2[0]) < log_alpha1
        ll, states = lax.cond(
            stage1,
            lambda: pf_ll(k_pf, proposal),
            lambda: (neg_inf, state.states),
        )
        ll = _finite_or_neg_inf(ll)
        log_alpha2 = _log_accept_prob(
            ll - state.log_likelihood - (lla - state.log_likelihood_approx)
        )
        accept = stage1 & (jnp.log(u_stage2[1]) < log_alpha2)
        return ll, lla, states, log_alpha1, accept

    def _step(
        state: RAMState, args: tuple[PRNGKeyT, Scalar]
    ) -> tuple[RAMState, MCMCInfo]:
        step_key, n = args
        k_u, k_ll, k_acc = jr.split(step_key, 3)
        u = jr.normal(k_u, (theta0.shape[0],))
        proposal = state.position + state.chol @ u
        lp_prop = model.log_prior(proposal)

        if mcmc_type == 'da':
            ll, lla, states, log_alpha, accept = _delayed(
                state, proposal, lp_prop, k_ll, jr.uniform(k_acc, (2,))
            )
        else:
            ll, lla, states, log_alpha = _one_stage(
                state, proposal, lp_prop, k_ll
            )
            accept = jnp.log(jr.uniform(k_acc)) < log_alpha

        adapt = jnp.logical_or(not end_adaptive_phase, n <= burnin)
        chol = jnp.where(
            adapt,
            ram_adapt(
                state.chol,
                u,
                jnp.exp(log_alpha),
                n,
                target_acceptance,
                gamma,
            ),
            state.chol,
        )

        def _pick(new: Array, old: Array) -> Array:
            return jnp.where(accept, new, old)

        new_state = RAMState(
            position=_pick(proposal, state.position),
            log_prior=_pick(lp_prop, state.log_prior),
            log_likelihood=_pick(ll, state.log_likelihood),
            log_likelihood_approx=_pick(lla, state.log_likelihood_approx),
            states=_pick(states, state.states),
            chol=chol,
            num_accepted=state.num_accepted + accept.astype(int),
        )
        info = MCMCInfo(
            position=new_state.position,
            log_prior=new_state.log_prior,
            log_likelihood=new_state.log_likelihood,
            log_likelihood_approx=new_state.log_likelihood_approx,
            states=new_state.states,
            accepted=accept,
            acceptance_prob=jnp.exp(log_alpha),
        )
        return new_state, info

    keys = jr.split(k_chain, num_iterations)
    iterations = jnp.arange(1, num_iterations + 1, dtype=float)
    return lax.scan(_step, init, (keys, iterations))


def _importance_corrected(
    key: PRNGKeyT,
    model: StateSpaceModel,
    info: MCMCInfo,
    burnin: int,
    num_particles: int,
    method: str,
    batch_size: Optional[int],
    acceptance_rate: Scalar,
    chol: Float[Array, 'dim dim'],
) -> MCMCOutput:
    theta, log_lik_approx, counts = jump_chain(
        info.position[burnin:], info.log_likelihood_approx[burnin:]
    )
    logger.info(
        'Post-correcting %d accepted states with %d particles.',
        theta.shape[0],
        num_particles,
    )
    correction = post_correct(
        key,
        model,
        theta,
        log_lik_approx,
        num_particles,
        method=method,
        batch_size=batch_size,
    )
    log_prior = lax.map(model.log_prior, theta)
    return MCMCOutput(
        theta=theta,
        states=correction.states,
        log_posterior=log_prior + correction.log_likelihood,
        weights=correction_weights(correction, counts),
        counts=counts,
        acceptance_rate=acceptance_rate,
        proposal_chol=chol,
        mcmc_type='is',
        param_names=model.param_names,
    )
