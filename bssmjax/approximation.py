# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Gaussian approximations of non-Gaussian and non-linear models.

Both approximations produce a (time-varying) linear-Gaussian model
whose smoothing distribution :math:`q(\alpha \mid \tilde y)` matches the
mode of the target :math:`p(\alpha \mid y)`:

* :func:`laplace_approximation`: non-Gaussian emissions of a
  linear-Gaussian state.  Newton iterations on the signal
  :math:`\eta = Z\alpha + d`: with :math:`g(\eta) = \log p(y \mid \eta)`,

  .. math::

      \tilde H_t = -1 / g''(\hat\eta_t), \qquad
      \tilde y_t = \hat\eta_t + \tilde H_t\, g'(\hat\eta_t),

  followed by a Kalman smoother pass on the pseudo-model
  :math:`\tilde y_t \sim N(\eta_t, \tilde H_t)` which yields the next
  :math:`\hat\eta`.
* :func:`linearised_approximation`: non-linear Gaussian models.
  Iterated extended Kalman smoother, re-linearising the dynamics and
  emission functions around the current state mode.

The approximate log-likelihood is the importance sampling estimate
evaluated at the mode :math:`\hat\alpha`,

.. math::

    \log \hat p(y \mid \theta) = \log p_G(\tilde y \mid \theta)
        + \log \frac{p(y, \hat\alpha)}{g(\tilde y, \hat\alpha)},

which the :func:`~bssmjax.psi.psi_filter` turns into an unbiased
estimate by averaging the same ratio over simulated paths.
"""

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import lax, vmap
from jaxtyping import Array, Float

from bssmjax.containers import (
    GaussianApproximation,
    GaussianSSMParams,
    KalmanSmootherPosterior,
    NonGaussianParams,
    NonlinearParams,
)
from bssmjax.distributions import Family
from bssmjax.kalman import extended_kalman_filter, kalman_smoother

_LOG_2PI = jnp.log(2.0 * jnp.pi)

# Pseudo-variances are kept inside [_MIN_VAR, _MAX_VAR].
_MIN_VAR = 1e-12
_MAX_VAR = 1e12


def exact_approximation(
    params: GaussianSSMParams,
    emissions: Float[Array, 'ntime emission_dim'],
) -> GaussianApproximation:
    """Wrap a linear-Gaussian model as its own (exact) approximation."""
    smoother = kalman_smoother(params, emissions)
    return GaussianApproximation(
        params=params,
        emissions=emissions,
        smoother=smoother,
        mode=smoother.smoothed_means,
        log_likelihood=smoother.marginal_loglik,
        gaussian_loglik=smoother.marginal_loglik,
        iterations=jnp.asarray(0),
    )


# ---------------------------------------------------------------------------
# Non-Gaussian emissions
# ---------------------------------------------------------------------------


def signal_log_density(
    families: tuple[Family, ...],
    emissions: Float[Array, '... emission_dim'],
    signal: Float[Array, '... emission_dim'],
    phi: Float[Array, ' emission_dim'],
    exposure: Float[Array, '... emission_dim'],
) -> Float[Array, '... emission_dim']:
    """Elementwise :math:`\\log p(y \\mid \\eta)`, zero where ``y`` is missing.

    The last axis indexes the observed series, each with its own family.
    """
    observed = ~jnp.isnan(emissions)
    # A valid placeholder keeps gradients finite at missing entries.
    y = jnp.where(observed, emissions, 1.0)
    columns = [
        family.log_density(y[..., i], signal[..., i], phi[i], exposure[..., i])
        for i, family in enumerate(families)
    ]
    return jnp.where(observed, jnp.stack(columns, axis=-1), 0.0)


def _initial_signal(
    families: tuple[Family, ...],
    emissions: Array,
    phi: Array,
    exposure: Array,
    prior_signal: Array,
) -> Array:
    observed = ~jnp.isnan(emissions)
    y = jnp.where(observed, emissions, 1.0)
    columns = [
        family.init_signal(y[:, i], phi[i], exposure[:, i])
        for i, family in enumerate(families)
    ]
    signal = jnp.stack(columns, axis=-1)
    return jnp.where(observed & jnp.isfinite(signal), signal, prior_signal)


def laplace_approximation(
    params: NonGaussianParams,
    families: tuple[Family, ...],
    emissions: Float[Array, 'ntime emission_dim'],
    exposure: Float[Array, 'ntime emission_dim'],
    max_iter: int = 100,
    tol: float = 1e-8,
) -> GaussianApproximation:
    r"""Laplace approximation of a non-Gaussian state-space model.

    Args:
        params: Model parameters.
        families: One observation family per series.
        emissions: Observations, shape ``(T, D)``; ``NaN`` marks missing.
        exposure: Exposures / trials, shape ``(T, D)``.
        max_iter: Maximum number of Newton iterations.
        tol: Convergence tolerance on :math:`\max |\Delta \hat\eta|`.

    Returns:
        :class:`~bssmjax.containers.GaussianApproximation`.
    """
    observed = ~jnp.isnan(emissions)
    Z, d = params.emissions_weights, params.emissions_bias
    ones = jnp.ones_like(exposure)

    def _log_obs(signal):
        return signal_log_density(
            families, emissions, signal, params.phi, exposure
        )

    def _pseudo_model(signal):
        def _d1(s):
            return jax.jvp(_log_obs, (s,), (ones,))[1]

        g1, g2 = jax.jvp(_d1, (signal,), (ones,))
        var = 1.0 / jnp.clip(-g2, 1.0 / _MAX_VAR, 1.0 / _MIN_VAR)
        pseudo_y = jnp.where(observed, signal + var * g1, jnp.nan)
        gauss = GaussianSSMParams(
            initial_mean=params.initial_mean,
            initial_cov=params.initial_cov,
            dynamics_weights=params.dynamics_weights,
            dynamics_bias=params.dynamics_bias,
            dynamics_cov=params.dynamics_cov,
            emissions_weights=Z,
            emissions_bias=d,
            emissions_cov=vmap(jnp.diag)(var),
        )
        return gauss, pseudo_y, var

    def _smooth(signal) -> tuple[KalmanSmootherPosterior, Array]:
        gauss, pseudo_y, _ = _pseudo_model(signal)
        smoother = kalman_smoother(gauss, pseudo_y)
        return smoother, smoother.smoothed_means @ Z.T + d

    def _cond(carry):
        _, diff, it = carry
        return (it < max_iter) & (diff > tol)

    def _body(carry):
        signal, _, it = carry
        _, new_signal = _smooth(signal)
        diff = jnp.max(jnp.abs(new_signal - signal))
        # A diverged step leaves the loop with the last finite signal.
        finite = jnp.all(jnp.isfinite(new_signal))
        new_signal = jnp.where(finite, new_signal, signal)
        diff = jnp.where(finite, diff, 0.0)
        return new_signal, diff, it + 1

    prior_signal = Z @ params.initial_mean + d
    signal0 = _initial_signal(
        families, emissions, params.phi, exposure, prior_signal
    )
    signal, _, iterations = lax.while_loop(
        _cond, _body, (signal0, jnp.asarray(jnp.inf), jnp.asarray(0))
    )

    gauss, pseudo_y, var = _pseudo_model(signal)
    smoother = kalman_smoother(gauss, pseudo_y)
    log_g = -0.5 * (_LOG_2PI + jnp.log(var) + (pseudo_y - signal) ** 2 / var)
    correction = jnp.sum(
        jnp.where(observed, _log_obs(signal) - log_g, 0.0)
    )
    return GaussianApproximation(
        params=gauss,
        emissions=pseudo_y,
        smoother=smoother,
        mode=smoother.smoothed_means,
        log_likelihood=smoother.marginal_loglik + correction,
        gaussian_loglik=smoother.marginal_loglik,
        iterations=iterations,
    )


# ---------------------------------------------------------------------------
# Non-linear models
# ---------------------------------------------------------------------------


def linearise(
    params: NonlinearParams,
    dynamics_fn: Callable,
    emission_fn: Callable,
    mode: Float[Array, 'ntime state_dim'],
) -> GaussianSSMParams:
    """First-order Taylor expansion of a non-linear model around ``mode``."""
    ts = jnp.arange(mode.shape[0])
    H = vmap(jax.jacfwd(emission_fn))(mode, ts)
    d = vmap(emission_fn)(mode, ts) - jnp.einsum('tij,tj->ti', H, mode)
    F = vmap(jax.jacfwd(dynamics_fn))(mode, ts)
    c = vmap(dynamics_fn)(mode, ts) - jnp.einsum('tij,tj->ti', F, mode)
    return GaussianSSMParams(
        initial_mean=params.initial_mean,
        initial_cov=params.initial_cov,
        dynamics_weights=F,
        dynamics_bias=c,
        dynamics_cov=params.dynamics_cov,
        emissions_weights=H,
        emissions_bias=d,
        emissions_cov=params.emissions_cov,
    )


def linearised_approximation(
    params: NonlinearParams,
    dynamics_fn: Callable,
    emission_fn: Callable,
    emissions: Float[Array, 'ntime emission_dim'],
    max_iter: int = 100,
    tol: float = 1e-8,
) -> GaussianApproximation:
    r"""Iterated extended Kalman smoother approximation.

    Starts from the extended Kalman filter means and re-linearises
    around the smoothed means until :math:`\max |\Delta\hat\alpha| <`
    ``tol``.  At the linearisation point the true and linearised
    densities coincide, so the approximate log-likelihood equals the
    Gaussian log-likelihood of the linearised model.

    Args:
        params: Noise parameters.
        dynamics_fn: ``(state, t) -> mean of alpha_{t+1}``.
        emission_fn: ``(state, t) -> mean of y_t``.
        emissions: Observations, shape ``(T, D)``.
        max_iter: Maximum number of smoother passes.
        tol: Convergence tolerance on the state mode.

    Returns:
        :class:`~bssmjax.containers.GaussianApproximation`.
    """
    ekf = extended_kalman_filter(params, dynamics_fn, emission_fn, emissions)

    def _smooth(mode):
        gauss = linearise(params, dynamics_fn, emission_fn, mode)
        return kalman_smoother(gauss, emissions).smoothed_means

    def _cond(carry):
        _, diff, it = carry
        return (it < max_iter) & (diff > tol)

    def _body(carry):
        mode, _, it = carry
        new_mode = _smooth(mode)
        finite = jnp.all(jnp.isfinite(new_mode))
        diff = jnp.where(finite, jnp.max(jnp.abs(new_mode - mode)), 0.0)
        return jnp.where(finite, new_mode, mode), diff, it + 1

    mode, _, iterations = lax.while_loop(
        _cond,
        _body,
        (ekf.filtered_means, jnp.asarray(jnp.inf), jnp.asarray(0)),
    )
    gauss = linearise(params, dynamics_fn, emission_fn, mode)
    smoother = kalman_smoother(gauss, emissions)
    return GaussianApproximation(
        params=gauss,
        emissions=emissions,
        smoother=smoother,
        mode=smoother.smoothed_means,
        log_likelihood=smoother.marginal_loglik,
        gaussian_loglik=smoother.marginal_loglik,
        iterations=iterations,
    )
