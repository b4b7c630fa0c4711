# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Kalman filtering, smoothing and simulation smoothing.

Exact inference for the linear-Gaussian model described by
:class:`~bssmjax.containers.GaussianSSMParams`.  The first observation
:math:`y_0` is made on the initial state :math:`\alpha_0 \sim N(a_1, P_1)`,
matching the convention of the particle filters.

Missing observations are encoded as ``NaN`` and handled per component:
the corresponding rows of the emission model are dropped from the
update, so a fully missing time step reduces to a pure prediction.

All time loops use :func:`jax.lax.scan`; time-invariant parameters are
broadcast along the time axis first so a single code path serves both
time-invariant and time-varying systems.
"""

from collections.abc import Callable

import jax
import jax.numpy as jnp
import jax.random as jr
from jax import lax
from jax.scipy.linalg import cho_solve, solve, solve_triangular
from jaxtyping import Array, Float

from bssmjax.containers import (
    GaussianSSMParams,
    KalmanFilterPosterior,
    KalmanSmootherPosterior,
    NonlinearParams,
)
from bssmjax.types import PRNGKeyT, Scalar

_LOG_2PI = jnp.log(2.0 * jnp.pi)

# Number of non-time dimensions of each dynamics / emission field.
_BASE_NDIM = GaussianSSMParams(
    initial_mean=1,
    initial_cov=2,
    dynamics_weights=2,
    dynamics_bias=1,
    dynamics_cov=2,
    emissions_weights=2,
    emissions_bias=1,
    emissions_cov=2,
)


def broadcast_in_time(
    params: GaussianSSMParams, num_timesteps: int
) -> GaussianSSMParams:
    """Give every dynamics and emission field a leading time axis."""

    def _expand(x: Array, base_ndim: int) -> Array:
        x = jnp.asarray(x)
        if x.ndim == base_ndim + 1:
            return x
        return jnp.broadcast_to(x, (num_timesteps, *x.shape))

    return params._replace(
        **{
            name: _expand(getattr(params, name), base_ndim)
            for name, base_ndim in _BASE_NDIM._asdict().items()
            if not name.startswith('initial')
        }
    )


# ---------------------------------------------------------------------------
# Gaussian helpers
# ---------------------------------------------------------------------------


def psd_sqrt(cov: Float[Array, 'dim dim']) -> Float[Array, 'dim dim']:
    """Square root ``L`` with ``L L^T = cov`` for a PSD matrix.

    Uses an eigendecomposition so that singular covariances (e.g.
    deterministic state components) are handled.
    """
    cov = 0.5 * (cov + cov.T)
    eigvals, eigvecs = jnp.linalg.eigh(cov)
    return eigvecs * jnp.sqrt(jnp.clip(eigvals, 0.0))


def mvn_sample(
    key: PRNGKeyT,
    mean: Float[Array, ' dim'],
    cov: Float[Array, 'dim dim'],
) -> Float[Array, ' dim']:
    """Draw from :math:`N(\\mu, \\Sigma)` with a possibly singular ``cov``."""
    z = jr.normal(key, mean.shape, dtype=mean.dtype)
    return mean + psd_sqrt(cov) @ z


def _symmetrize(cov: Array) -> Array:
    return 0.5 * (cov + cov.T)


def _predict(
    mean: Array, cov: Array, F: Array, c: Array, Q: Array
) -> tuple[Array, Array]:
    return F @ mean + c, _symmetrize(F @ cov @ F.T + Q)


def _update(
    mean: Array,
    cov: Array,
    H: Array,
    d: Array,
    R: Array,
    y: Array,
) -> tuple[Array, Array, Scalar]:
    """Condition on the observed components of ``y``."""
    observed = ~jnp.isnan(y)
    num_missing = jnp.sum(~observed)
    # Missing rows get H = 0, d = 0, R = I so they carry no information.
    H = jnp.where(observed[:, None], H, 0.0)
    d = jnp.where(observed, d, 0.0)
    R = jnp.where(observed[:, None] & observed[None, :], R, 0.0)
    R = R + jnp.diag(jnp.where(observed, 0.0, 1.0))
    resid = jnp.where(observed, y, 0.0) - H @ mean - d

    S = _symmetrize(H @ cov @ H.T + R)
    chol = jnp.linalg.cholesky(S)
    gain_t = cho_solve((chol, True), H @ cov)  # (p, m) = K^T
    mean_f = mean + gain_t.T @ resid
    cov_f = _symmetrize(cov - gain_t.T @ S @ gain_t)

    z = solve_triangular(chol, resid, lower=True)
    ll = (
        -0.5 * jnp.sum(z**2)
        - jnp.sum(jnp.log(jnp.diag(chol)))
        - 0.5 * (y.shape[0] - num_missing) * _LOG_2PI
    )
    return mean_f, cov_f, ll


# ---------------------------------------------------------------------------
# Filter / smoother / sampler
# ---------------------------------------------------------------------------


def kalman_filter(
    params: GaussianSSMParams,
    emissions: Float[Array, 'ntime emission_dim'],
) -> KalmanFilterPosterior:
    r"""Run the Kalman filter.

    Args:
        params: Model parameters (time-invariant or time-varying).
        emissions: Observations, shape ``(T, D)``; ``NaN`` marks missing
            components.

    Returns:
        :class:`~bssmjax.containers.KalmanFilterPosterior` with the
        exact marginal log-likelihood
        :math:`\log p(y_{0:T-1} \mid \theta)`.
    """
    num_timesteps = emissions.shape[0]
    p = broadcast_in_time(params, num_timesteps)

    def _step(
        carry: tuple[Array, Array, Scalar], args: tuple[Array, ...]
    ) -> tuple[tuple[Array, Array, Scalar], tuple[Array, ...]]:
        pred_mean, pred_cov, ll = carry
        F, c, Q, H, d, R, y = args
        filt_mean, filt_cov, ll_t = _update(pred_mean, pred_cov, H, d, R, y)
        next_mean, next_cov = _predict(filt_mean, filt_cov, F, c, Q)
        return (next_mean, next_cov, ll + ll_t), (
            filt_mean,
            filt_cov,
            pred_mean,
            pred_cov,
        )

    init = (p.initial_mean, p.initial_cov, jnp.asarray(0.0))
    (_, _, ll), (filt_m, filt_P, pred_m, pred_P) = lax.scan(
        _step,
        init,
        (
            p.dynamics_weights,
            p.dynamics_bias,
            p.dynamics_cov,
            p.emissions_weights,
            p.emissions_bias,
            p.emissions_cov,
            emissions,
        ),
    )
    return KalmanFilterPosterior(
        marginal_loglik=ll,
        filtered_means=filt_m,
        filtered_covariances=filt_P,
        predicted_means=pred_m,
        predicted_covariances=pred_P,
    )


def _smoother_gain(
    filt_cov: Array, pred_cov_next: Array, F: Array
) -> Array:
    # G = P_f F^T P_pred^{-1}, computed as a solve against P_pred.
    return solve(pred_cov_next, F @ filt_cov, assume_a='pos').T


def kalman_smoother(
    params: GaussianSSMParams,
    emissions: Float[Array, 'ntime emission_dim'],
) -> KalmanSmootherPosterior:
    r"""Run the Rauch-Tung-Striebel smoother.

    Besides the marginal smoothing moments, the lag-one cross
    covariances :math:`\mathrm{Cov}(\alpha_{t+1}, \alpha_t \mid y)` are
    returned; together they describe the full (Markov) joint smoothing
    distribution used by :func:`~bssmjax.psi.psi_filter`.

    Args:
        params: Model parameters (time-invariant or time-varying).
        emissions: Observations, shape ``(T, D)``.

    Returns:
        :class:`~bssmjax.containers.KalmanSmootherPosterior`.
    """
    num_timesteps = emissions.shape[0]
    p = broadcast_in_time(params, num_timesteps)
    filt = kalman_filter(p, emissions)

    def _step(
        carry: tuple[Array, Array], args: tuple[Array, ...]
    ) -> tuple[tuple[Array, Array], tuple[Array, Array, Array]]:
        sm_mean_next, sm_cov_next = carry
        filt_mean, filt_cov, pred_mean_next, pred_cov_next, F = args
        G = _smoother_gain(filt_cov, pred_cov_next, F)
        sm_mean = filt_mean + G @ (sm_mean_next - pred_mean_next)
        sm_cov = _symmetrize(
            filt_cov + G @ (sm_cov_next - pred_cov_next) @ G.T
        )
        cross = sm_cov_next @ G.T
        return (sm_mean, sm_cov), (sm_mean, sm_cov, cross)

    last = (filt.filtered_means[-1], filt.filtered_covariances[-1])
    _, (sm_m, sm_P, cross) = lax.scan(
        _step,
        last,
        (
            filt.filtered_means[:-1],
            filt.filtered_covariances[:-1],
            filt.predicted_means[1:],
            filt.predicted_covariances[1:],
            p.dynamics_weights[:-1],
        ),
        reverse=True,
    )
    return KalmanSmootherPosterior(
        marginal_loglik=filt.marginal_loglik,
        filtered_means=filt.filtered_means,
        filtered_covariances=filt.filtered_covariances,
        smoothed_means=jnp.concatenate([sm_m, last[0][None]], axis=0),
        smoothed_covariances=jnp.concatenate([sm_P, last[1][None]], axis=0),
        smoothed_cross_covariances=cross,
    )


def kalman_sample(
    key: PRNGKeyT,
    params: GaussianSSMParams,
    emissions: Float[Array, 'ntime emission_dim'],
) -> Float[Array, 'ntime state_dim']:
    """Draw a state trajectory from :math:`p(\\alpha_{0:T-1} \\mid y)`.

    Forward filtering, backward sampling.
    """
    num_timesteps = emissions.shape[0]
    p = broadcast_in_time(params, num_timesteps)
    filt = kalman_filter(p, emissions)
    k_last, k_rest = jr.split(key)
    last = mvn_sample(
        k_last, filt.filtered_means[-1], filt.filtered_covariances[-1]
    )

    def _step(
        state_next: Float[Array, ' state_dim'], args: tuple[Array, ...]
    ) -> tuple[Array, Array]:
        step_key, filt_mean, filt_cov, pred_mean_next, pred_cov_next, F = args
        G = _smoother_gain(filt_cov, pred_cov_next, F)
        mean = filt_mean + G @ (state_next - pred_mean_next)
        cov = filt_cov - G @ pred_cov_next @ G.T
        state = mvn_sample(step_key, mean, cov)
        return state, state

    keys = jr.split(k_rest, num_timesteps - 1)
    _, rest = lax.scan(
        _step,
        last,
        (
            keys,
            filt.filtered_means[:-1],
            filt.filtered_covariances[:-1],
            filt.predicted_means[1:],
            filt.predicted_covariances[1:],
            p.dynamics_weights[:-1],
        ),
        reverse=True,
    )
    return jnp.concatenate([rest, last[None]], axis=0)


# ---------------------------------------------------------------------------
# Extended Kalman filter
# ---------------------------------------------------------------------------


def extended_kalman_filter(
    params: NonlinearParams,
    dynamics_fn: Callable,
    emission_fn: Callable,
    emissions: Float[Array, 'ntime emission_dim'],
) -> KalmanFilterPosterior:
    r"""Run the extended Kalman filter on a non-linear Gaussian model.

    The emission function is linearised around the predicted mean and
    the dynamics around the filtered mean; the resulting
    ``marginal_loglik`` is an approximation of
    :math:`\log p(y \mid \theta)`.

    Args:
        params: Noise parameters of the model.
        dynamics_fn: ``(state, t) -> mean of alpha_{t+1}``.
        emission_fn: ``(state, t) -> mean of y_t``.
        emissions: Observations, shape ``(T, D)``.

    Returns:
        :class:`~bssmjax.containers.KalmanFilterPosterior`.
    """
    num_timesteps = emissions.shape[0]

    def _step(
        carry: tuple[Array, Array, Scalar], args: tuple[Array, Array]
    ) -> tuple[tuple[Array, Array, Scalar], tuple[Array, ...]]:
        pred_mean, pred_cov, ll = carry
        t, y = args
        H = jax.jacfwd(emission_fn)(pred_mean, t)
        d = emission_fn(pred_mean, t) - H @ pred_mean
        filt_mean, filt_cov, ll_t = _update(
            pred_mean, pred_cov, H, d, params.emissions_cov, y
        )
        F = jax.jacfwd(dynamics_fn)(filt_mean, t)
        c = dynamics_fn(filt_mean, t) - F @ filt_mean
        next_mean, next_cov = _predict(
            filt_mean, filt_cov, F, c, params.dynamics_cov
        )
        return (next_mean, next_cov, ll + ll_t), (
            filt_mean,
            filt_cov,
            pred_mean,
            pred_cov,
        )

    init = (params.initial_mean, params.initial_cov, jnp.asarray(0.0))
    (_, _, ll), (filt_m, filt_P, pred_m, pred_P) = lax.scan(
        _step, init, (jnp.arange(num_timesteps), emissions)
    )
    return KalmanFilterPosterior(
        marginal_loglik=ll,
        filtered_means=filt_m,
        filtered_covariances=filt_P,
        predicted_means=pred_m,
        predicted_covariances=pred_P,
    )


def masked_mvn_logpdf(
    y: Float[Array, ' emission_dim'],
    mean: Float[Array, ' emission_dim'],
    cov: Float[Array, 'emission_dim emission_dim'],
) -> Scalar:
    """Gaussian log density of the observed (non-``NaN``) components of ``y``."""
    observed = ~jnp.isnan(y)
    num_missing = jnp.sum(~observed)
    cov = jnp.where(observed[:, None] & observed[None, :], cov, 0.0)
    cov = cov + jnp.diag(jnp.where(observed, 0.0, 1.0))
    resid = jnp.where(observed, y - mean, 0.0)
    chol = jnp.linalg.cholesky(cov)
    z = solve_triangular(chol, resid, lower=True)
    return (
        -0.5 * jnp.sum(z**2)
        - jnp.sum(jnp.log(jnp.diag(chol)))
        - 0.5 * (y.shape[0] - num_missing) * _LOG_2PI
    )


def log_emission_density(
    y: Float[Array, ' emission_dim'],
    state: Float[Array, ' state_dim'],
    H: Float[Array, 'emission_dim state_dim'],
    d: Float[Array, ' emission_dim'],
    R: Float[Array, 'emission_dim emission_dim'],
) -> Scalar:
    """Log density of ``y`` under the linear emission ``N(H state + d, R)``."""
    return masked_mvn_logpdf(y, H @ state + d, R)
