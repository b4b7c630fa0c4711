# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Constructors for commonly used state-space models.

Scalar arguments may be given either as plain numbers, which are kept
fixed, or as prior objects from :mod:`bssmjax.priors`, which turns them
into entries of the hyperparameter vector :math:`\theta` (in argument
order) with the prior's ``init`` as starting value::

    from bssmjax.constructors import bsm_lg
    from bssmjax.priors import HalfNormal

    model = bsm_lg(
        y,
        sd_level=HalfNormal(init=1.0, sd=5.0),
        sd_y=HalfNormal(init=1.0, sd=5.0),
    )
    model.param_names  # ('sd_level', 'sd_y')
"""

from collections.abc import Sequence
from typing import Optional, Union

import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Float

from bssmjax.containers import GaussianSSMParams, NonGaussianParams
from bssmjax.models import LinearGaussianModel, NonGaussianModel
from bssmjax.priors import Prior, is_prior, joint_log_prior
from bssmjax.types import Scalar, Theta

Value = Union[float, Prior]


class Hyperparameters:
    """Split named arguments into fixed values and estimated entries of theta.

    Args:
        **values: Argument name to number or prior; ``None`` entries are
            ignored.

    Raises:
        ValueError: If a fixed value is not finite.
    """

    def __init__(self, **values: Optional[Value]):
        self.priors: list[Prior] = []
        self.index: dict[str, int] = {}
        self.fixed: dict[str, float] = {}
        for name, value in values.items():
            if value is None:
                continue
            if is_prior(value):
                self.index[name] = len(self.priors)
                self.priors.append(value)
            else:
                value = float(value)
                if not np.isfinite(value):
                    raise ValueError(f'{name} must be finite, got {value}.')
                self.fixed[name] = value

    def __call__(self, theta: Theta, name: str) -> Scalar:
        if name in self.index:
            return theta[self.index[name]]
        return jnp.asarray(self.fixed[name])

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self.index)

    @property
    def init(self) -> Theta:
        return jnp.asarray([p.init for p in self.priors], dtype=float)

    def log_prior_fn(self):
        return joint_log_prior(self.priors)


def _check_scale(name: str, value: Optional[Value]) -> None:
    if value is not None and not is_prior(value) and value < 0:
        raise ValueError(f'{name} must be non-negative, got {value}.')


def _univariate(y) -> np.ndarray:
    y = np.asarray(y, dtype=float)
    if y.ndim == 2 and y.shape[1] == 1:
        y = y[:, 0]
    if y.ndim != 1:
        raise ValueError(f'Expected a univariate series, got shape {y.shape}.')
    return y


def _initial_moments(a1, P1, state_dim: int, default_var: float):
    a1 = jnp.zeros(state_dim) if a1 is None else jnp.atleast_1d(
        jnp.asarray(a1, dtype=float)
    )
    if P1 is None:
        P1 = default_var * jnp.eye(state_dim)
    P1 = jnp.asarray(P1, dtype=float)
    if P1.ndim < 2:
        P1 = jnp.diag(jnp.broadcast_to(P1, (state_dim,)))
    if a1.shape != (state_dim,) or P1.shape != (state_dim, state_dim):
        raise ValueError(
            f'a1 and P1 must have shapes ({state_dim},) and '
            f'({state_dim}, {state_dim}), got {a1.shape} and {P1.shape}.'
        )
    return a1, P1


# ---------------------------------------------------------------------------
# Basic structural model
# ---------------------------------------------------------------------------


def bsm_structure(slope: bool, period: Optional[int]):
    """Fixed system matrices of a basic structural model.

    The state holds the level, optionally the slope, and ``period - 1``
    dummy seasonal components.

    Returns:
        ``(Z, T, seasonal_index)`` where ``seasonal_index`` is the
        position of the current seasonal effect (``None`` without a
        seasonal component).
    """
    trend = np.array([[1.0, 1.0], [0.0, 1.0]]) if slope else np.eye(1)
    blocks, z = [trend], [1.0] + [0.0] * (trend.shape[0] - 1)
    seasonal_index = None
    if period is not None:
        if period < 2:
            raise ValueError(f'period must be at least 2, got {period}.')
        seasonal = np.zeros((period - 1, period - 1))
        seasonal[0, :] = -1.0
        seasonal[1:, :-1] = np.eye(period - 2)
        seasonal_index = trend.shape[0]
        blocks.append(seasonal)
        z += [1.0] + [0.0] * (period - 2)
    dim = sum(b.shape[0] for b in blocks)
    T = np.zeros((dim, dim))
    offset = 0
    for block in blocks:
        n = block.shape[0]
        T[offset : offset + n, offset : offset + n] = block
        offset += n
    return jnp.asarray(z)[None, :], jnp.asarray(T), seasonal_index


def _bsm_dynamics_cov(
    hp: Hyperparameters,
    theta: Theta,
    state_dim: int,
    slope: bool,
    seasonal_index: Optional[int],
) -> Float[Array, 'state_dim state_dim']:
    q = jnp.zeros(state_dim).at[0].set(hp(theta, 'sd_level') ** 2)
    if slope:
        q = q.at[1].set(hp(theta, 'sd_slope') ** 2)
    if seasonal_index is not None:
        q = q.at[seasonal_index].set(hp(theta, 'sd_seasonal') ** 2)
    return jnp.diag(q)


def bsm_lg(
    y,
    sd_level: Value,
    sd_y: Value,
    sd_slope: Optional[Value] = None,
    sd_seasonal: Optional[Value] = None,
    period: Optional[int] = None,
    a1=None,
    P1=None,
) -> LinearGaussianModel:
    r"""Gaussian basic structural time series model.

    .. math::

        y_t &= \mu_t + \gamma_t + \epsilon_t \\
        \mu_{t+1} &= \mu_t + \nu_t + \eta_t \\
        \nu_{t+1} &= \nu_t + \xi_t \\
        \gamma_{t+1} &= -\textstyle\sum_{j=1}^{s-1} \gamma_{t+1-j} + \omega_t

    Args:
        y: Univariate observations, ``NaN`` for missing values.
        sd_level: Standard deviation of the level noise.
        sd_y: Standard deviation of the observation noise.
        sd_slope: Standard deviation of the slope noise; ``None`` drops
            the slope component.
        sd_seasonal: Standard deviation of the seasonal noise; ``None``
            with a ``period`` gives a fixed seasonal pattern.
        period: Seasonal period; ``None`` drops the seasonal component.
        a1: Prior mean of the initial state, defaults to zeros.
        P1: Prior covariance of the initial state, defaults to
            ``1000 * max(1, var(y))`` on the diagonal.

    Returns:
        :class:`~bssmjax.models.LinearGaussianModel`.
    """
    y = _univariate(y)
    for name, value in (
        ('sd_level', sd_level),
        ('sd_y', sd_y),
        ('sd_slope', sd_slope),
        ('sd_seasonal', sd_seasonal),
    ):
        _check_scale(name, value)
    slope = sd_slope is not None
    if period is not None and sd_seasonal is None:
        sd_seasonal = 0.0
    Z, T, seasonal_index = bsm_structure(slope, period)
    state_dim = T.shape[0]
    default_var = 1000.0 * max(1.0, float(np.nanvar(y)))
    a1, P1 = _initial_moments(a1, P1, state_dim, default_var)
    hp = Hyperparameters(
        sd_level=sd_level,
        sd_slope=sd_slope,
        sd_seasonal=sd_seasonal,
        sd_y=sd_y,
    )

    def update_fn(theta: Theta) -> GaussianSSMParams:
        return GaussianSSMParams(
            initial_mean=a1,
            initial_cov=P1,
            dynamics_weights=T,
            dynamics_bias=jnp.zeros(state_dim),
            dynamics_cov=_bsm_dynamics_cov(
                hp, theta, state_dim, slope, seasonal_index
            ),
            emissions_weights=Z,
            emissions_bias=jnp.zeros(1),
            emissions_cov=jnp.reshape(hp(theta, 'sd_y') ** 2, (1, 1)),
        )

    return LinearGaussianModel(
        y, hp.init, update_fn, hp.log_prior_fn(), hp.names
    )


def bsm_ng(
    y,
    sd_level: Value,
    sd_slope: Optional[Value] = None,
    sd_seasonal: Optional[Value] = None,
    period: Optional[int] = None,
    distribution: str = 'poisson',
    phi: Value = 1.0,
    exposure=None,
    a1=None,
    P1=None,
) -> NonGaussianModel:
    """Basic structural time series model with non-Gaussian observations.

    The structural components drive the signal of a ``distribution``
    family observation model; see :func:`bsm_lg` for the state and
    :mod:`bssmjax.distributions` for the families.  ``P1`` defaults to
    ``100`` on the diagonal.
    """
    y = _univariate(y)
    for name, value in (
        ('sd_level', sd_level),
        ('sd_slope', sd_slope),
        ('sd_seasonal', sd_seasonal),
        ('phi', phi),
    ):
        _check_scale(name, value)
    slope = sd_slope is not None
    if period is not None and sd_seasonal is None:
        sd_seasonal = 0.0
    Z, T, seasonal_index = bsm_structure(slope, period)
    state_dim = T.shape[0]
    a1, P1 = _initial_moments(a1, P1, state_dim, 100.0)
    hp = Hyperparameters(
        sd_level=sd_level,
        sd_slope=sd_slope,
        sd_seasonal=sd_seasonal,
        phi=phi,
    )

    def update_fn(theta: Theta) -> NonGaussianParams:
        return NonGaussianParams(
            initial_mean=a1,
            initial_cov=P1,
            dynamics_weights=T,
            dynamics_bias=jnp.zeros(state_dim),
            dynamics_cov=_bsm_dynamics_cov(
                hp, theta, state_dim, slope, seasonal_index
            ),
            emissions_weights=Z,
            emissions_bias=jnp.zeros(1),
            phi=jnp.reshape(hp(theta, 'phi'), (1,)),
        )

    return NonGaussianModel(
        y,
        hp.init,
        update_fn,
        hp.log_prior_fn(),
        distribution=distribution,
        exposure=exposure,
        param_names=hp.names,
    )


# ---------------------------------------------------------------------------
# AR(1) state
# ---------------------------------------------------------------------------


def _ar1_state(hp: Hyperparameters, theta: Theta):
    rho, sigma, mu = hp(theta, 'rho'), hp(theta, 'sigma'), hp(theta, 'mu')
    return (
        jnp.reshape(mu, (1,)),
        jnp.reshape(sigma**2 / (1.0 - rho**2), (1, 1)),
        jnp.reshape(rho, (1, 1)),
        jnp.reshape(mu * (1.0 - rho), (1,)),
        jnp.reshape(sigma**2, (1, 1)),
    )


def ar1_lg(
    y,
    rho: Value,
    sigma: Value,
    sd_y: Value,
    mu: Value = 0.0,
) -> LinearGaussianModel:
    r"""Noisy observations of a stationary AR(1) process.

    .. math::

        \alpha_{t+1} = \mu + \rho(\alpha_t - \mu) + \sigma\eta_t, \qquad
        y_t = \alpha_t + \sigma_y \epsilon_t

    The initial state follows the stationary distribution.
    """
    y = _univariate(y)
    _check_scale('sigma', sigma)
    _check_scale('sd_y', sd_y)
    hp = Hyperparameters(rho=rho, sigma=sigma, mu=mu, sd_y=sd_y)

    def update_fn(theta: Theta) -> GaussianSSMParams:
        a1, P1, T, c, Q = _ar1_state(hp, theta)
        return GaussianSSMParams(
            initial_mean=a1,
            initial_cov=P1,
            dynamics_weights=T,
            dynamics_bias=c,
            dynamics_cov=Q,
            emissions_weights=jnp.ones((1, 1)),
            emissions_bias=jnp.zeros(1),
            emissions_cov=jnp.reshape(hp(theta, 'sd_y') ** 2, (1, 1)),
        )

    return LinearGaussianModel(
        y, hp.init, update_fn, hp.log_prior_fn(), hp.names
    )


def ar1_ng(
    y,
    rho: Value,
    sigma: Value,
    mu: Value = 0.0,
    distribution: str = 'poisson',
    phi: Value = 1.0,
    exposure=None,
) -> NonGaussianModel:
    """Stationary AR(1) signal with non-Gaussian observations."""
    y = _univariate(y)
    _check_scale('sigma', sigma)
    _check_scale('phi', phi)
    hp = Hyperparameters(rho=rho, sigma=sigma, mu=mu, phi=phi)

    def update_fn(theta: Theta) -> NonGaussianParams:
        a1, P1, T, c, Q = _ar1_state(hp, theta)
        return NonGaussianParams(
            initial_mean=a1,
            initial_cov=P1,
            dynamics_weights=T,
            dynamics_bias=c,
            dynamics_cov=Q,
            emissions_weights=jnp.ones((1, 1)),
            emissions_bias=jnp.zeros(1),
            phi=jnp.reshape(hp(theta, 'phi'), (1,)),
        )

    return NonGaussianModel(
        y,
        hp.init,
        update_fn,
        hp.log_prior_fn(),
        distribution=distribution,
        exposure=exposure,
        param_names=hp.names,
    )


def svm(
    y,
    rho: Value,
    sd_ar: Value,
    sigma: Optional[Value] = None,
    mu: Optional[Value] = None,
) -> NonGaussianModel:
    r"""Stochastic volatility model.

    .. math::

        y_t = \sigma \exp(\alpha_t / 2)\epsilon_t, \qquad
        \alpha_{t+1} = \mu + \rho(\alpha_t - \mu) + \sigma_\eta\eta_t

    Exactly one of ``sigma`` and ``mu`` must be given; the other is
    fixed (``mu = 0`` or ``sigma = 1``) to keep the model identifiable.

    Raises:
        ValueError: If both or neither of ``sigma`` and ``mu`` are given.
    """
    if (sigma is None) == (mu is None):
        raise ValueError('Give exactly one of sigma and mu.')
    _check_scale('sd_ar', sd_ar)
    _check_scale('sigma', sigma)
    model = ar1_ng(
        y,
        rho=rho,
        sigma=sd_ar,
        mu=0.0 if mu is None else mu,
        distribution='svm',
        phi=1.0 if sigma is None else sigma,
    )
    # The AR(1) noise is sd_ar here and the observation scale is sigma.
    renamed = {'sigma': 'sd_ar', 'phi': 'sigma'}
    model.param_names = tuple(renamed.get(n, n) for n in model.param_names)
    return model


def multivariate_lg(
    y,
    update_fn,
    priors: Sequence[Prior],
    param_names: Optional[Sequence[str]] = None,
) -> LinearGaussianModel:
    """General linear-Gaussian model with independent priors on theta.

    Args:
        y: Observations, shape ``(T, D)``.
        update_fn: ``theta -> GaussianSSMParams``.
        priors: One prior per entry of theta.
        param_names: Names of the entries of theta.
    """
    theta = jnp.asarray([p.init for p in priors], dtype=float)
    return LinearGaussianModel(
        y, theta, update_fn, joint_log_prior(priors), param_names
    )
