# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Containers for model parameters, filter output and posterior draws.

All containers are :class:`~typing.NamedTuple` subclasses so they are
registered as JAX PyTrees by default.
"""

from typing import NamedTuple, Optional

from jaxtyping import Array, Bool, Float, Int

from bssmjax.types import Scalar

# ---------------------------------------------------------------------------
# Model parameters
# ---------------------------------------------------------------------------


class GaussianSSMParams(NamedTuple):
    r"""Parameters of a linear-Gaussian state-space model.

    .. math::

        \alpha_0 &\sim \mathcal{N}(a_1, P_1) \\
        \alpha_{t+1} &= T_t \alpha_t + c_t + \eta_t,
            \quad \eta_t \sim \mathcal{N}(0, Q_t) \\
        y_t &= Z_t \alpha_t + d_t + \epsilon_t,
            \quad \epsilon_t \sim \mathcal{N}(0, H_t)

    Any of the dynamics or emission fields may carry a leading time
    axis of length ``ntime``; the dynamics at index ``t`` map
    :math:`\alpha_t` to :math:`\alpha_{t+1}`.

    Attributes:
        initial_mean: :math:`a_1`, shape ``(state_dim,)``.
        initial_cov: :math:`P_1`, shape ``(state_dim, state_dim)``.
        dynamics_weights: :math:`T`, shape ``([ntime,] state_dim, state_dim)``.
        dynamics_bias: :math:`c`, shape ``([ntime,] state_dim)``.
        dynamics_cov: :math:`Q`, shape ``([ntime,] state_dim, state_dim)``.
        emissions_weights: :math:`Z`, shape ``([ntime,] emission_dim, state_dim)``.
        emissions_bias: :math:`d`, shape ``([ntime,] emission_dim)``.
        emissions_cov: :math:`H`, shape ``([ntime,] emission_dim, emission_dim)``.
    """

    initial_mean: Float[Array, ' state_dim']
    initial_cov: Float[Array, 'state_dim state_dim']
    dynamics_weights: Float[Array, '...']
    dynamics_bias: Float[Array, '...']
    dynamics_cov: Float[Array, '...']
    emissions_weights: Float[Array, '...']
    emissions_bias: Float[Array, '...']
    emissions_cov: Float[Array, '...']


class NonGaussianParams(NamedTuple):
    r"""Parameters of a linear-Gaussian state with non-Gaussian emissions.

    The signal :math:`\eta_t = Z \alpha_t + d` enters the observation
    density of each series through its family (see
    :mod:`bssmjax.distributions`).

    Attributes:
        initial_mean: shape ``(state_dim,)``.
        initial_cov: shape ``(state_dim, state_dim)``.
        dynamics_weights: shape ``(state_dim, state_dim)``.
        dynamics_bias: shape ``(state_dim,)``.
        dynamics_cov: shape ``(state_dim, state_dim)``.
        emissions_weights: shape ``(emission_dim, state_dim)``.
        emissions_bias: shape ``(emission_dim,)``.
        phi: Dispersion parameter per series, shape ``(emission_dim,)``.
    """

    initial_mean: Float[Array, ' state_dim']
    initial_cov: Float[Array, 'state_dim state_dim']
    dynamics_weights: Float[Array, 'state_dim state_dim']
    dynamics_bias: Float[Array, ' state_dim']
    dynamics_cov: Float[Array, 'state_dim state_dim']
    emissions_weights: Float[Array, 'emission_dim state_dim']
    emissions_bias: Float[Array, ' emission_dim']
    phi: Float[Array, ' emission_dim']


class NonlinearParams(NamedTuple):
    """Gaussian noise parameters of a non-linear state-space model.

    The mean functions themselves live on
    :class:`~bssmjax.models.NonlinearModel`.
    """

    initial_mean: Float[Array, ' state_dim']
    initial_cov: Float[Array, 'state_dim state_dim']
    dynamics_cov: Float[Array, 'state_dim state_dim']
    emissions_cov: Float[Array, 'emission_dim emission_dim']


# ---------------------------------------------------------------------------
# Kalman output
# ---------------------------------------------------------------------------


class KalmanFilterPosterior(NamedTuple):
    r"""Output of a (extended) Kalman filter run.

    Attributes:
        marginal_loglik: :math:`\log p(y_{0:T-1})`.
        filtered_means: shape ``(ntime, state_dim)``.
        filtered_covariances: shape ``(ntime, state_dim, state_dim)``.
        predicted_means: Moments of :math:`p(\alpha_t \mid y_{0:t-1})`,
            shape ``(ntime, state_dim)``.
        predicted_covariances: shape ``(ntime, state_dim, state_dim)``.
    """

    marginal_loglik: Scalar
    filtered_means: Float[Array, 'ntime state_dim']
    filtered_covariances: Float[Array, 'ntime state_dim state_dim']
    predicted_means: Float[Array, 'ntime state_dim']
    predicted_covariances: Float[Array, 'ntime state_dim state_dim']


class KalmanSmootherPosterior(NamedTuple):
    r"""Output of a Rauch-Tung-Striebel smoother run.

    Attributes:
        marginal_loglik: :math:`\log p(y_{0:T-1})`.
        filtered_means: shape ``(ntime, state_dim)``.
        filtered_covariances: shape ``(ntime, state_dim, state_dim)``.
        smoothed_means: shape ``(ntime, state_dim)``.
        smoothed_covariances: shape ``(ntime, state_dim, state_dim)``.
        smoothed_cross_covariances:
            :math:`\mathrm{Cov}(\alpha_{t+1}, \alpha_t \mid y)`,
            shape ``(ntime - 1, state_dim, state_dim)``.
    """

    marginal_loglik: Scalar
    filtered_means: Float[Array, 'ntime state_dim']
    filtered_covariances: Float[Array, 'ntime state_dim state_dim']
    smoothed_means: Float[Array, 'ntime state_dim']
    smoothed_covariances: Float[Array, 'ntime state_dim state_dim']
    smoothed_cross_covariances: Float[Array, 'ntime_1 state_dim state_dim']


class GaussianApproximation(NamedTuple):
    r"""Linear-Gaussian surrogate of a non-Gaussian or non-linear model.

    Attributes:
        params: Time-varying :class:`GaussianSSMParams` of the
            approximating model.
        emissions: Pseudo-observations :math:`\tilde y_t`, ``NaN``
            where the original observation is missing.
        smoother: Smoother output of the approximating model.
        mode: State mode, shape ``(ntime, state_dim)``.
        log_likelihood: Approximate :math:`\log p(y \mid \theta)`.
        gaussian_loglik: :math:`\log p_G(\tilde y \mid \theta)` of the
            approximating model.
        iterations: Number of mode-finding iterations used.
    """

    params: GaussianSSMParams
    emissions: Float[Array, 'ntime emission_dim']
    smoother: KalmanSmootherPosterior
    mode: Float[Array, 'ntime state_dim']
    log_likelihood: Scalar
    gaussian_loglik: Scalar
    iterations: Int[Array, '']


# ---------------------------------------------------------------------------
# Particle filter output
# ---------------------------------------------------------------------------


class ParticleState(NamedTuple):
    r"""State of a particle cloud at a single time step.

    Attributes:
        particles: Particle values, shape ``(num_particles, state_dim)``.
        log_weights: Normalized log importance weights,
            shape ``(num_particles,)``.
        log_marginal_likelihood: Running log marginal likelihood estimate.
    """

    particles: Float[Array, 'num_particles state_dim']
    log_weights: Float[Array, ' num_particles']
    log_marginal_likelihood: Scalar


class ParticleFilterPosterior(NamedTuple):
    r"""Full output of a particle filter run.

    Attributes:
        marginal_loglik: Scalar estimate of :math:`\log p(y_{0:T-1})`.
        filtered_particles: Particle values at each time step,
            shape ``(ntime, num_particles, state_dim)``.
        filtered_log_weights: Normalized log weights at each time step,
            shape ``(ntime, num_particles)``.
        ancestors: Ancestor indices into the previous step's particles,
            shape ``(ntime, num_particles)``.
        ess: Effective sample size at each time step, shape ``(ntime,)``.
        log_evidence_increments: Per-step contributions to
            ``marginal_loglik``, shape ``(ntime,)``.
    """

    marginal_loglik: Scalar
    filtered_particles: Float[Array, 'ntime num_particles state_dim']
    filtered_log_weights: Float[Array, 'ntime num_particles']
    ancestors: Int[Array, 'ntime num_particles']
    ess: Float[Array, ' ntime']
    log_evidence_increments: Float[Array, ' ntime']


# ---------------------------------------------------------------------------
# MCMC output
# ---------------------------------------------------------------------------


class RAMState(NamedTuple):
    r"""State of a robust adaptive Metropolis chain.

    Attributes:
        position: Current :math:`\theta`.
        log_prior: :math:`\log p(\theta)` at ``position``.
        log_likelihood: Log-likelihood used in the acceptance ratio.
        log_likelihood_approx: Approximate log-likelihood at
            ``position`` (equal to ``log_likelihood`` for exact chains).
        states: Latent trajectory attached to ``position``.
        chol: Lower Cholesky factor of the proposal covariance.
        num_accepted: Number of accepted proposals so far.
    """

    position: Float[Array, ' num_params']
    log_prior: Scalar
    log_likelihood: Scalar
    log_likelihood_approx: Scalar
    states: Float[Array, 'ntime state_dim']
    chol: Float[Array, 'num_params num_params']
    num_accepted: Int[Array, '']


class MCMCInfo(NamedTuple):
    """Per-iteration record of a chain."""

    position: Float[Array, ' num_params']
    log_prior: Scalar
    log_likelihood: Scalar
    log_likelihood_approx: Scalar
    states: Float[Array, 'ntime state_dim']
    accepted: Bool[Array, '']
    acceptance_prob: Scalar


class PostCorrection(NamedTuple):
    """Importance-sampling correction of an approximate chain.

    Attributes:
        log_weights: ``log p^_N(y|theta) - log p_approx(y|theta)`` per
            accepted state.
        log_likelihood: Particle filter log-likelihood estimates.
        states: One trajectory sampled from each particle filter.
    """

    log_weights: Float[Array, ' num_draws']
    log_likelihood: Float[Array, ' num_draws']
    states: Float[Array, 'num_draws ntime state_dim']


class MCMCOutput(NamedTuple):
    """Posterior draws returned by :func:`~bssmjax.mcmc.run_mcmc`.

    For ``mcmc_type='is'`` the draws form the *jump chain*: each row is
    a distinct accepted state, ``counts`` records how many iterations
    the chain spent there and ``weights`` are ``counts`` times the
    importance correction.  For the other types ``counts`` and
    ``weights`` are ones.

    Attributes:
        theta: Hyperparameter draws, shape ``(num_draws, num_params)``.
        states: Latent trajectories, shape
            ``(num_draws, ntime, state_dim)`` (``None`` when not stored).
        log_posterior: Log prior plus log-likelihood per draw.
        weights: Non-negative weights per draw.
        counts: Repetition counts per draw.
        acceptance_rate: Fraction of accepted proposals after burn-in.
        proposal_chol: Final Cholesky factor of the RAM proposal.
        mcmc_type: Algorithm used.
        param_names: Names of the entries of ``theta``.
    """

    theta: Float[Array, 'num_draws num_params']
    states: Optional[Float[Array, 'num_draws ntime state_dim']]
    log_posterior: Float[Array, ' num_draws']
    weights: Float[Array, ' num_draws']
    counts: Int[Array, ' num_draws']
    acceptance_rate: Scalar
    proposal_chol: Float[Array, 'num_params num_params']
    mcmc_type: str
    param_names: tuple[str, ...]
