# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""State-space model definitions.

A model bundles the observed data with a hyperparameter vector
:math:`\theta`, a function mapping :math:`\theta` to the concrete model
(``update_fn``) and the prior density ``log_prior_fn``.  Four families
are provided:

* :class:`LinearGaussianModel`: exact inference with the Kalman filter.
* :class:`NonGaussianModel`: linear-Gaussian state, exponential family
  observations; Laplace approximation and :math:`\psi`-APF.
* :class:`NonlinearModel`: non-linear Gaussian model; iterated
  extended Kalman smoother approximation and :math:`\psi`-APF.
* :class:`SDEModel`: univariate diffusion state observed at integer
  times; Euler-Maruyama bootstrap filters at two discretisation levels.

All of them expose the same interface used by
:func:`~bssmjax.mcmc.run_mcmc`: :meth:`~StateSpaceModel.log_prior`,
:meth:`~StateSpaceModel.approx_log_likelihood`,
:meth:`~StateSpaceModel.sample_approx_states`,
:meth:`~StateSpaceModel.particle_filter` and
:meth:`~StateSpaceModel.simulate`.  Every method is a pure function of
``theta`` and traceable by JAX.
"""

import copy
from collections.abc import Callable, Sequence
from typing import Optional, Union

import jax.numpy as jnp
import jax.random as jr
from jax import lax, vmap
from jax.scipy.stats import multivariate_normal
from jaxtyping import Array, Float

from bssmjax.approximation import (
    exact_approximation,
    laplace_approximation,
    linearised_approximation,
    signal_log_density,
)
from bssmjax.bootstrap import bootstrap_filter
from bssmjax.containers import (
    GaussianApproximation,
    GaussianSSMParams,
    NonGaussianParams,
    NonlinearParams,
    ParticleFilterPosterior,
)
from bssmjax.distributions import resolve_families
from bssmjax.kalman import (
    broadcast_in_time,
    extended_kalman_filter,
    kalman_filter,
    kalman_sample,
    log_emission_density,
    masked_mvn_logpdf,
    mvn_sample,
)
from bssmjax.psi import psi_filter
from bssmjax.simulate import simulate
from bssmjax.smoothing import sample_trajectory
from bssmjax.types import LogPriorFn, PRNGKeyT, Scalar, Theta

SAMPLING_METHODS = ('bootstrap', 'psi')


def _as_emissions(emissions: Array) -> Float[Array, 'ntime emission_dim']:
    """Validate observations and return them with shape ``(T, D)``."""
    emissions = jnp.asarray(emissions, dtype=float)
    if emissions.ndim == 1:
        emissions = emissions[:, None]
    if emissions.ndim != 2:
        raise ValueError(
            f'emissions must have shape (T,) or (T, D), '
            f'got {emissions.shape}.'
        )
    if emissions.shape[0] < 2:
        raise ValueError('At least two time points are required.')
    return emissions


class StateSpaceModel:
    """Common data handling and interface of all model families.

    Args:
        emissions: Observations, shape ``(T,)`` or ``(T, D)``; ``NaN``
            marks missing values.
        theta: Initial hyperparameter vector (the MCMC starting point).
        update_fn: Function ``theta -> model parameters``.
        log_prior_fn: Function ``theta -> log p(theta)``.
        param_names: Names of the entries of ``theta``.

    Raises:
        ValueError: If the emissions are not one- or two-dimensional or
            ``param_names`` does not match ``theta``.
    """

    default_mcmc_type = 'is'
    default_sampling_method = 'psi'

    def __init__(
        self,
        emissions: Array,
        theta: Union[Sequence[float], Array],
        update_fn: Callable,
        log_prior_fn: LogPriorFn,
        param_names: Optional[Sequence[str]] = None,
    ):
        emissions = _as_emissions(emissions)
        theta = jnp.atleast_1d(jnp.asarray(theta, dtype=float))
        if theta.ndim != 1:
            raise ValueError(f'theta must be a vector, got {theta.shape}.')
        if param_names is None:
            param_names = tuple(f'theta_{i}' for i in range(theta.shape[0]))
        param_names = tuple(param_names)
        if len(param_names) != theta.shape[0]:
            raise ValueError(
                f'{len(param_names)} parameter names given for '
                f'{theta.shape[0]} parameters.'
            )
        self.emissions = emissions
        self.theta = theta
        self.update_fn = update_fn
        self.log_prior_fn = log_prior_fn
        self.param_names = param_names

    # --- shapes ---------------------------------------------------------------

    @property
    def num_timesteps(self) -> int:
        return self.emissions.shape[0]

    @property
    def emission_dim(self) -> int:
        return self.emissions.shape[1]

    @property
    def num_params(self) -> int:
        return self.theta.shape[0]

    def with_emissions(self, emissions: Array) -> 'StateSpaceModel':
        """Copy of the model with different observations.

        Raises:
            ValueError: If the new emissions fail the construction checks
                or have a different number of series.
        """
        emissions = _as_emissions(emissions)
        if emissions.shape[1] != self.emission_dim:
            raise ValueError(
                f'Model has {self.emission_dim} series, '
                f'got emissions of shape {emissions.shape}.'
            )
        new = copy.copy(self)
        new.emissions = emissions
        return new

    # --- interface ------------------------------------------------------------

    def log_prior(self, theta: Theta) -> Scalar:
        """Log prior density of ``theta``."""
        return jnp.asarray(self.log_prior_fn(theta))

    def approx_log_likelihood(self, key: PRNGKeyT, theta: Theta) -> Scalar:
        """Log-likelihood targeted by the approximate chains."""
        raise NotImplementedError

    def sample_approx_states(
        self, key: PRNGKeyT, theta: Theta
    ) -> Float[Array, 'ntime state_dim']:
        """One state trajectory from the approximate posterior."""
        raise NotImplementedError

    def particle_filter(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: str = 'psi',
    ) -> ParticleFilterPosterior:
        """Run a particle filter at ``theta``."""
        raise NotImplementedError

    def simulate(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_timesteps: Optional[int] = None,
    ) -> tuple[
        Float[Array, 'ntime state_dim'],
        Float[Array, 'ntime emission_dim'],
    ]:
        """Simulate states and emissions at ``theta``."""
        raise NotImplementedError

    def log_likelihood(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: Optional[str] = None,
    ) -> Scalar:
        """Unbiased particle estimate of :math:`\\log p(y \\mid \\theta)`.

        ``method`` defaults to the model's ``default_sampling_method``.
        """
        method = method or self.default_sampling_method
        posterior = self.particle_filter(key, theta, num_particles, method)
        return posterior.marginal_loglik

    def sample_states(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: Optional[str] = None,
    ) -> tuple[Scalar, Float[Array, 'ntime state_dim']]:
        """Log-likelihood estimate and one trajectory from a particle filter."""
        method = method or self.default_sampling_method
        k_pf, k_path = jr.split(key)
        posterior = self.particle_filter(k_pf, theta, num_particles, method)
        return posterior.marginal_loglik, sample_trajectory(k_path, posterior)


def check_method(model: StateSpaceModel, method: str) -> None:
    """Raise if ``method`` is not a particle filter ``model`` supports."""
    if method not in SAMPLING_METHODS:
        raise ValueError(
            f"Unknown sampling method '{method}'. "
            f'Choose from {SAMPLING_METHODS}.'
        )
    if method == 'psi' and isinstance(model, SDEModel):
        raise ValueError('SDE models only support the bootstrap filter.')


def _gaussian_particle_fns(
    initial_mean: Array,
    initial_cov: Array,
    dynamics_weights: Array,
    dynamics_bias: Array,
    dynamics_cov: Array,
) -> tuple[Callable, Callable]:
    """Samplers of a linear-Gaussian state with time-leading dynamics."""

    def initial_sampler(key, num_particles):
        keys = jr.split(key, num_particles)
        return vmap(lambda k: mvn_sample(k, initial_mean, initial_cov))(keys)

    def transition_sampler(key, state, t):
        mean = dynamics_weights[t - 1] @ state + dynamics_bias[t - 1]
        return mvn_sample(key, mean, dynamics_cov[t - 1])

    return initial_sampler, transition_sampler


# ---------------------------------------------------------------------------
# Linear-Gaussian
# ---------------------------------------------------------------------------


class LinearGaussianModel(StateSpaceModel):
    """Linear-Gaussian state-space model (univariate or multivariate).

    ``update_fn(theta)`` must return a
    :class:`~bssmjax.containers.GaussianSSMParams`.
    """

    default_mcmc_type = 'exact'

    def params(self, theta: Theta) -> GaussianSSMParams:
        return broadcast_in_time(self.update_fn(theta), self.num_timesteps)

    def approximation(self, theta: Theta) -> GaussianApproximation:
        return exact_approximation(self.params(theta), self.emissions)

    def exact_log_likelihood(self, theta: Theta) -> Scalar:
        """Kalman filter log-likelihood."""
        return kalman_filter(self.params(theta), self.emissions).marginal_loglik

    def approx_log_likelihood(self, key: PRNGKeyT, theta: Theta) -> Scalar:
        return self.exact_log_likelihood(theta)

    def sample_approx_states(
        self, key: PRNGKeyT, theta: Theta
    ) -> Float[Array, 'ntime state_dim']:
        """FFBS draw from the exact smoothing distribution."""
        return kalman_sample(key, self.params(theta), self.emissions)

    def _log_observation_fn(self, params: GaussianSSMParams) -> Callable:
        def log_observation_fn(emission, state, t):
            return log_emission_density(
                emission,
                state,
                params.emissions_weights[t],
                params.emissions_bias[t],
                params.emissions_cov[t],
            )

        return log_observation_fn

    def particle_filter(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: str = 'psi',
    ) -> ParticleFilterPosterior:
        """Run the psi-APF (exact here) or the bootstrap filter."""
        check_method(self, method)
        params = self.params(theta)
        log_obs = self._log_observation_fn(params)
        if method == 'psi':
            return psi_filter(
                key,
                exact_approximation(params, self.emissions),
                log_obs,
                self.emissions,
                num_particles,
            )
        init, trans = _gaussian_particle_fns(
            params.initial_mean,
            params.initial_cov,
            params.dynamics_weights,
            params.dynamics_bias,
            params.dynamics_cov,
        )
        return bootstrap_filter(
            key, init, trans, log_obs, self.emissions, num_particles
        )

    def simulate(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_timesteps: Optional[int] = None,
    ) -> tuple[
        Float[Array, 'ntime state_dim'],
        Float[Array, 'ntime emission_dim'],
    ]:
        """Simulate states and emissions at ``theta``."""
        num_timesteps = num_timesteps or self.num_timesteps
        params = broadcast_in_time(self.update_fn(theta), num_timesteps)
        init, trans = _gaussian_particle_fns(
            params.initial_mean,
            params.initial_cov,
            params.dynamics_weights,
            params.dynamics_bias,
            params.dynamics_cov,
        )

        def emission_sampler(k, state, t):
            mean = params.emissions_weights[t] @ state + params.emissions_bias[t]
            return mvn_sample(k, mean, params.emissions_cov[t])

        return simulate(
            key,
            lambda k: init(k, 1)[0],
            trans,
            emission_sampler,
            num_timesteps,
        )


# ---------------------------------------------------------------------------
# Non-Gaussian observations
# ---------------------------------------------------------------------------


class NonGaussianModel(StateSpaceModel):
    """Linear-Gaussian state with exponential family observations.

    ``update_fn(theta)`` must return a
    :class:`~bssmjax.containers.NonGaussianParams`.

    Args:
        emissions: Observations, shape ``(T,)`` or ``(T, D)``.
        theta: Initial hyperparameters.
        update_fn: ``theta -> NonGaussianParams``.
        log_prior_fn: ``theta -> log p(theta)``.
        distribution: Family name, or one name per series (see
            :mod:`bssmjax.distributions`).
        exposure: Exposures / numbers of trials, broadcastable to
            ``(T, D)``; defaults to ones.
        param_names: Names of the entries of ``theta``.
        max_iter: Maximum Laplace iterations.
        tol: Laplace convergence tolerance.
    """

    def __init__(
        self,
        emissions,
        theta,
        update_fn,
        log_prior_fn,
        distribution: Union[str, Sequence[str]] = 'poisson',
        exposure: Optional[Array] = None,
        param_names=None,
        max_iter: int = 100,
        tol: float = 1e-8,
    ):
        super().__init__(emissions, theta, update_fn, log_prior_fn, param_names)
        if isinstance(distribution, str):
            distribution = (distribution,) * self.emission_dim
        distribution = tuple(distribution)
        if len(distribution) != self.emission_dim:
            raise ValueError(
                f'{len(distribution)} distributions given for '
                f'{self.emission_dim} series.'
            )
        self.distribution = distribution
        self.families = resolve_families(distribution)
        self.exposure = _as_exposure(exposure, self.emissions)
        self.max_iter = max_iter
        self.tol = tol

    def with_emissions(
        self, emissions: Array, exposure: Optional[Array] = None
    ) -> 'NonGaussianModel':
        """Copy of the model with different observations and exposures.

        Without ``exposure`` the current exposures are kept when the
        number of time points is unchanged.  Otherwise they default to
        ones, which is only allowed if the current exposures are all one.

        Raises:
            ValueError: If the new emissions or exposures are invalid, or
                non-unit exposures cannot be carried over to a series of
                a different length.
        """
        new = super().with_emissions(emissions)
        if exposure is None:
            if new.num_timesteps == self.num_timesteps:
                return new
            if not bool(jnp.all(self.exposure == 1.0)):
                raise ValueError(
                    f'exposure is known for {self.num_timesteps} time points, '
                    f'not {new.num_timesteps}; pass exposure.'
                )
        new.exposure = _as_exposure(exposure, new.emissions)
        return new

    def params(self, theta: Theta) -> NonGaussianParams:
        return self.update_fn(theta)

    def approximation(self, theta: Theta) -> GaussianApproximation:
        """Laplace approximation at ``theta``."""
        return laplace_approximation(
            self.params(theta),
            self.families,
            self.emissions,
            self.exposure,
            max_iter=self.max_iter,
            tol=self.tol,
        )

    def approx_log_likelihood(self, key: PRNGKeyT, theta: Theta) -> Scalar:
        """Approximate log-likelihood of the Laplace approximation."""
        return self.approximation(theta).log_likelihood

    def sample_approx_states(
        self, key: PRNGKeyT, theta: Theta
    ) -> Float[Array, 'ntime state_dim']:
        """FFBS draw from the Laplace approximating model."""
        approx = self.approximation(theta)
        return kalman_sample(key, approx.params, approx.emissions)

    def _log_observation_fn(self, params: NonGaussianParams) -> Callable:
        def log_observation_fn(emission, state, t):
            signal = params.emissions_weights @ state + params.emissions_bias
            return jnp.sum(
                signal_log_density(
                    self.families,
                    emission,
                    signal,
                    params.phi,
                    self.exposure[t],
                )
            )

        return log_observation_fn

    def _state_fns(
        self, params: NonGaussianParams, num_timesteps: int
    ) -> tuple[Callable, Callable]:
        state = broadcast_in_time(
            GaussianSSMParams(
                params.initial_mean,
                params.initial_cov,
                params.dynamics_weights,
                params.dynamics_bias,
                params.dynamics_cov,
                params.emissions_weights,
                params.emissions_bias,
                jnp.eye(self.emission_dim),
            ),
            num_timesteps,
        )
        return _gaussian_particle_fns(
            state.initial_mean,
            state.initial_cov,
            state.dynamics_weights,
            state.dynamics_bias,
            state.dynamics_cov,
        )

    def particle_filter(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: str = 'psi',
    ) -> ParticleFilterPosterior:
        """psi-APF on the Laplace approximation, or a bootstrap filter."""
        check_method(self, method)
        params = self.params(theta)
        log_obs = self._log_observation_fn(params)
        if method == 'psi':
            return psi_filter(
                key,
                self.approximation(theta),
                log_obs,
                self.emissions,
                num_particles,
            )
        init, trans = self._state_fns(params, self.num_timesteps)
        return bootstrap_filter(
            key, init, trans, log_obs, self.emissions, num_particles
        )

    def simulate(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_timesteps: Optional[int] = None,
    ) -> tuple[
        Float[Array, 'ntime state_dim'],
        Float[Array, 'ntime emission_dim'],
    ]:
        """Simulate at ``theta``; exposures are taken from the data.

        Raises:
            ValueError: If more time steps are requested than there are
                exposures.
        """
        num_timesteps = num_timesteps or self.num_timesteps
        if num_timesteps > self.num_timesteps:
            raise ValueError(
                f'Exposure is only known for {self.num_timesteps} steps.'
            )
        params = self.params(theta)
        init, trans = self._state_fns(params, num_timesteps)

        def emission_sampler(k, state, t):
            signal = params.emissions_weights @ state + params.emissions_bias
            keys = jr.split(k, self.emission_dim)
            return jnp.stack(
                [
                    family.sample(
                        keys[i], signal[i], params.phi[i], self.exposure[t, i]
                    )
                    for i, family in enumerate(self.families)
                ]
            )

        return simulate(
            key,
            lambda k: init(k, 1)[0],
            trans,
            emission_sampler,
            num_timesteps,
        )


def _as_exposure(
    exposure: Optional[Array], emissions: Float[Array, 'ntime emission_dim']
) -> Float[Array, 'ntime emission_dim']:
    """Positive exposures broadcast to the shape of ``emissions``."""
    if exposure is None:
        return jnp.ones_like(emissions)
    exposure = jnp.asarray(exposure, dtype=float)
    if exposure.ndim == 1 and emissions.shape[1] == 1:
        exposure = exposure[:, None]
    try:
        exposure = jnp.broadcast_to(exposure, emissions.shape)
    except ValueError as err:
        raise ValueError(
            f'exposure of shape {exposure.shape} does not match emissions '
            f'of shape {emissions.shape}.'
        ) from err
    if jnp.any(exposure <= 0):
        raise ValueError('exposure must be positive.')
    return exposure


# ---------------------------------------------------------------------------
# Non-linear Gaussian
# ---------------------------------------------------------------------------


class NonlinearModel(StateSpaceModel):
    r"""Non-linear Gaussian state-space model.

    .. math::

        \alpha_{t+1} &= T(\alpha_t, t, \theta) + \eta_t,
            \quad \eta_t \sim N(0, Q) \\
        y_t &= Z(\alpha_t, t, \theta) + \epsilon_t,
            \quad \epsilon_t \sim N(0, H)

    Args:
        emissions: Observations, shape ``(T,)`` or ``(T, D)``.
        theta: Initial hyperparameters.
        update_fn: ``theta -> NonlinearParams`` (noise covariances and
            initial distribution).
        dynamics_fn: ``(state, t, theta) -> mean of alpha_{t+1}``.
        emission_fn: ``(state, t, theta) -> mean of y_t``.
        log_prior_fn: ``theta -> log p(theta)``.
        param_names: Names of the entries of ``theta``.
        approximation: ``'mode'`` for the iterated extended Kalman
            smoother (default) or ``'ekf'`` to use the extended Kalman
            filter likelihood for the approximate chains.
        max_iter: Maximum smoother iterations.
        tol: Convergence tolerance on the state mode.
    """

    def __init__(
        self,
        emissions,
        theta,
        update_fn,
        dynamics_fn: Callable,
        emission_fn: Callable,
        log_prior_fn,
        param_names=None,
        approximation: str = 'mode',
        max_iter: int = 100,
        tol: float = 1e-8,
    ):
        super().__init__(emissions, theta, update_fn, log_prior_fn, param_names)
        if approximation not in ('mode', 'ekf'):
            raise ValueError(
                f"approximation must be 'mode' or 'ekf', got '{approximation}'."
            )
        self.dynamics_fn = dynamics_fn
        self.emission_fn = emission_fn
        self.approximation_method = approximation
        self.max_iter = max_iter
        self.tol = tol

    def params(self, theta: Theta) -> NonlinearParams:
        return self.update_fn(theta)

    def _fns(self, theta: Theta) -> tuple[Callable, Callable]:
        return (
            lambda state, t: self.dynamics_fn(state, t, theta),
            lambda state, t: self.emission_fn(state, t, theta),
        )

    def approximation(self, theta: Theta) -> GaussianApproximation:
        """Iterated extended Kalman smoother approximation at ``theta``."""
        dynamics, emission = self._fns(theta)
        return linearised_approximation(
            self.params(theta),
            dynamics,
            emission,
            self.emissions,
            max_iter=self.max_iter,
            tol=self.tol,
        )

    def ekf(self, theta: Theta):
        """Extended Kalman filter at ``theta``."""
        dynamics, emission = self._fns(theta)
        return extended_kalman_filter(
            self.params(theta), dynamics, emission, self.emissions
        )

    def approx_log_likelihood(self, key: PRNGKeyT, theta: Theta) -> Scalar:
        """IEKS or EKF approximate log-likelihood."""
        if self.approximation_method == 'ekf':
            return self.ekf(theta).marginal_loglik
        return self.approximation(theta).log_likelihood

    def sample_approx_states(
        self, key: PRNGKeyT, theta: Theta
    ) -> Float[Array, 'ntime state_dim']:
        """FFBS draw from the linearised approximating model."""
        approx = self.approximation(theta)
        return kalman_sample(key, approx.params, approx.emissions)

    def particle_filter(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: str = 'psi',
    ) -> ParticleFilterPosterior:
        """psi-APF on the IEKS approximation, or a bootstrap filter."""
        check_method(self, method)
        params = self.params(theta)
        dynamics, emission = self._fns(theta)

        def log_obs(y, state, t):
            return masked_mvn_logpdf(y, emission(state, t), params.emissions_cov)

        if method == 'psi':
            approx = self.approximation(theta)
            lin = broadcast_in_time(approx.params, self.num_timesteps)

            def log_transition_ratio(prev, state, t):
                exact = multivariate_normal.logpdf(
                    state, dynamics(prev, t - 1), params.dynamics_cov
                )
                linear = multivariate_normal.logpdf(
                    state,
                    lin.dynamics_weights[t - 1] @ prev + lin.dynamics_bias[t - 1],
                    params.dynamics_cov,
                )
                return exact - linear

            return psi_filter(
                key,
                approx,
                log_obs,
                self.emissions,
                num_particles,
                log_transition_ratio_fn=log_transition_ratio,
            )

        def initial_sampler(k, n):
            keys = jr.split(k, n)
            return vmap(
                lambda kk: mvn_sample(kk, params.initial_mean, params.initial_cov)
            )(keys)

        def transition_sampler(k, state, t):
            return mvn_sample(k, dynamics(state, t - 1), params.dynamics_cov)

        return bootstrap_filter(
            key,
            initial_sampler,
            transition_sampler,
            log_obs,
            self.emissions,
            num_particles,
        )

    def simulate(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_timesteps: Optional[int] = None,
    ) -> tuple[
        Float[Array, 'ntime state_dim'],
        Float[Array, 'ntime emission_dim'],
    ]:
        """Simulate states and emissions at ``theta``."""
        num_timesteps = num_timesteps or self.num_timesteps
        params = self.params(theta)
        dynamics, emission = self._fns(theta)
        return simulate(
            key,
            lambda k: mvn_sample(k, params.initial_mean, params.initial_cov),
            lambda k, state, t: mvn_sample(
                k, dynamics(state, t - 1), params.dynamics_cov
            ),
            lambda k, state, t: mvn_sample(
                k, emission(state, t), params.emissions_cov
            ),
            num_timesteps,
        )


# ---------------------------------------------------------------------------
# Diffusion state
# ---------------------------------------------------------------------------


class SDEModel(StateSpaceModel):
    r"""Univariate diffusion state observed at integer times.

    .. math::

        dX_t = \mu(X_t, \theta)\,dt + \sigma(X_t, \theta)\,dB_t,
        \qquad y_t \sim p(y_t \mid X_t, \theta)

    Transitions over one time unit are simulated with ``2**level``
    Euler-Maruyama steps.  Exact inference uses the bootstrap filter at
    ``fine_level``; the approximate chains use a bootstrap filter at
    ``coarse_level`` with ``approx_particles`` particles.

    Args:
        emissions: Observations, shape ``(T,)``.
        theta: Initial hyperparameters.
        drift_fn: ``(x, theta) -> mu``.
        diffusion_fn: ``(x, theta) -> sigma``.
        log_observation_fn: ``(y, x, theta) -> log p(y | x)``.
        x0: Value of the process one time unit before the first
            observation.
        log_prior_fn: ``theta -> log p(theta)``.
        param_names: Names of the entries of ``theta``.
        positive: Reflect the process at zero after each step.
        coarse_level: Discretisation level of the approximate filter.
        fine_level: Discretisation level of the exact filter.
        approx_particles: Particles used by the approximate filter.
        observation_sampler: Optional ``(key, x, theta) -> y`` used by
            :meth:`simulate`.
    """

    default_sampling_method = 'bootstrap'

    def __init__(
        self,
        emissions,
        theta,
        drift_fn: Callable,
        diffusion_fn: Callable,
        log_observation_fn: Callable,
        x0: float,
        log_prior_fn,
        param_names=None,
        positive: bool = False,
        coarse_level: int = 0,
        fine_level: int = 4,
        approx_particles: int = 10,
        observation_sampler: Optional[Callable] = None,
    ):
        super().__init__(emissions, theta, None, log_prior_fn, param_names)
        if self.emission_dim != 1:
            raise ValueError('SDE models take a univariate series.')
        if not 0 <= coarse_level <= fine_level:
            raise ValueError(
                'Need 0 <= coarse_level <= fine_level, got '
                f'{coarse_level} and {fine_level}.'
            )
        self.drift_fn = drift_fn
        self.diffusion_fn = diffusion_fn
        self.observation_log_density = log_observation_fn
        self.x0 = float(x0)
        self.positive = positive
        self.coarse_level = coarse_level
        self.fine_level = fine_level
        self.approx_particles = approx_particles
        self.observation_sampler = observation_sampler

    def euler_maruyama(
        self, key: PRNGKeyT, x: Float[Array, ' 1'], theta: Theta, level: int
    ) -> Float[Array, ' 1']:
        """Advance the state by one time unit with ``2**level`` steps."""
        num_steps = 2**level
        dt = 1.0 / num_steps
        noise = jr.normal(key, (num_steps,))

        def _step(i: int, x: Float[Array, ' 1']) -> Float[Array, ' 1']:
            x = (
                x
                + self.drift_fn(x, theta) * dt
                + self.diffusion_fn(x, theta) * jnp.sqrt(dt) * noise[i]
            )
            return jnp.abs(x) if self.positive else x

        return lax.fori_loop(0, num_steps, _step, x)

    def _particle_fns(
        self, theta: Theta, level: int
    ) -> tuple[Callable, Callable, Callable]:
        x0 = jnp.full((1,), self.x0)

        def initial_sampler(key, num_particles):
            keys = jr.split(key, num_particles)
            return vmap(lambda k: self.euler_maruyama(k, x0, theta, level))(keys)

        def transition_sampler(key, state, t):
            return self.euler_maruyama(key, state, theta, level)

        def log_observation_fn(emission, state, t):
            y = emission[0]
            lp = self.observation_log_density(
                jnp.where(jnp.isnan(y), 0.0, y), state[0], theta
            )
            return jnp.where(jnp.isnan(y), 0.0, lp)

        return initial_sampler, transition_sampler, log_observation_fn

    def _bootstrap(
        self, key: PRNGKeyT, theta: Theta, num_particles: int, level: int
    ) -> ParticleFilterPosterior:
        init, trans, log_obs = self._particle_fns(theta, level)
        return bootstrap_filter(
            key, init, trans, log_obs, self.emissions, num_particles
        )

    def approx_log_likelihood(self, key: PRNGKeyT, theta: Theta) -> Scalar:
        """Coarse-level bootstrap filter log-likelihood estimate."""
        return self._bootstrap(
            key, theta, self.approx_particles, self.coarse_level
        ).marginal_loglik

    def sample_approx_states(
        self, key: PRNGKeyT, theta: Theta
    ) -> Float[Array, 'ntime state_dim']:
        """Trajectory from the coarse-level bootstrap filter."""
        k_pf, k_path = jr.split(key)
        posterior = self._bootstrap(
            k_pf, theta, self.approx_particles, self.coarse_level
        )
        return sample_trajectory(k_path, posterior)

    def particle_filter(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_particles: int,
        method: str = 'bootstrap',
    ) -> ParticleFilterPosterior:
        """Run the bootstrap filter at the fine discretisation level."""
        check_method(self, method)
        return self._bootstrap(key, theta, num_particles, self.fine_level)

    def simulate(
        self,
        key: PRNGKeyT,
        theta: Theta,
        num_timesteps: Optional[int] = None,
    ) -> tuple[
        Float[Array, 'ntime state_dim'],
        Float[Array, 'ntime emission_dim'],
    ]:
        """Simulate at the fine discretisation level.

        Raises:
            ValueError: If no ``observation_sampler`` was given.
        """
        if self.observation_sampler is None:
            raise ValueError('Simulation needs an observation_sampler.')
        num_timesteps = num_timesteps or self.num_timesteps
        init, trans, _ = self._particle_fns(theta, self.fine_level)
        return simulate(
            key,
            lambda k: init(k, 1)[0],
            trans,
            lambda k, state, t: jnp.atleast_1d(
                self.observation_sampler(k, state[0], theta)
            ),
            num_timesteps,
        )
