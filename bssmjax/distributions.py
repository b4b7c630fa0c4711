# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Observation families of non-Gaussian state-space models.

Every family is parameterised by the linear signal
:math:`\eta_t = Z \alpha_t + d`, a dispersion :math:`\phi` and an
exposure (or number of trials) :math:`u`:

=====================  ==================================================
``gaussian``           :math:`y \sim N(\eta, \phi^2)`
``poisson``            :math:`y \sim \mathrm{Poisson}(u e^{\eta})`
``binomial``           :math:`y \sim \mathrm{Bin}(u, \mathrm{logit}^{-1}\eta)`
``negative binomial``  :math:`y \sim \mathrm{NB}(\text{mean } u e^{\eta},
                       \text{size } \phi)`
``gamma``              :math:`y \sim \mathrm{Gamma}(\text{shape } \phi,
                       \text{mean } u e^{\eta})`
``svm``                :math:`y \sim N(0, \phi^2 e^{\eta})`
=====================  ==================================================

The log densities are written directly in terms of :math:`\eta` so
that :func:`jax.grad` gives the stable derivatives needed by the
Laplace approximation.
"""

from collections.abc import Callable
from typing import NamedTuple

import jax
import jax.numpy as jnp
import jax.random as jr
from jax.scipy.special import gammaln

from bssmjax.types import PRNGKeyT, Scalar

_LOG_2PI = jnp.log(2.0 * jnp.pi)


class Family(NamedTuple):
    """Scalar observation family.

    Attributes:
        log_density: ``(y, eta, phi, u) -> log p(y | eta)``.
        init_signal: ``(y, phi, u) -> eta`` data-based starting value for
            mode finding.
        sample: ``(key, eta, phi, u) -> y``.
    """

    log_density: Callable[..., Scalar]
    init_signal: Callable[..., Scalar]
    sample: Callable[..., Scalar]


# --- gaussian ---------------------------------------------------------------


def _gaussian_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    z = (y - eta) / phi
    return -0.5 * (_LOG_2PI + z**2) - jnp.log(phi)


def _gaussian_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    return eta + phi * jr.normal(key, jnp.shape(eta))


# --- poisson ----------------------------------------------------------------


def _poisson_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    return y * (jnp.log(u) + eta) - u * jnp.exp(eta) - gammaln(y + 1.0)


def _poisson_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    return jr.poisson(key, u * jnp.exp(eta)).astype(jnp.result_type(eta))


# --- binomial ---------------------------------------------------------------


def _binomial_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    log_choose = gammaln(u + 1.0) - gammaln(y + 1.0) - gammaln(u - y + 1.0)
    return log_choose + y * eta - u * jax.nn.softplus(eta)


def _binomial_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    draw = jr.binomial(key, u, jax.nn.sigmoid(eta))
    return draw.astype(jnp.result_type(eta))


# --- negative binomial ------------------------------------------------------


def _nb_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    log_mu = jnp.log(u) + eta
    log_phi = jnp.log(phi)
    log_total = jnp.logaddexp(log_phi, log_mu)
    return (
        gammaln(y + phi)
        - gammaln(phi)
        - gammaln(y + 1.0)
        + phi * (log_phi - log_total)
        + y * (log_mu - log_total)
    )


def _nb_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    k_rate, k_count = jr.split(key)
    mean = u * jnp.exp(eta)
    rate = jr.gamma(k_rate, phi, jnp.shape(eta)) * mean / phi
    return jr.poisson(k_count, rate).astype(jnp.result_type(eta))


# --- gamma ------------------------------------------------------------------


def _gamma_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    log_mu = jnp.log(u) + eta
    return (
        phi * jnp.log(phi)
        - gammaln(phi)
        + (phi - 1.0) * jnp.log(y)
        - phi * log_mu
        - phi * y * jnp.exp(-log_mu)
    )


def _gamma_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    mean = u * jnp.exp(eta)
    return jr.gamma(key, phi, jnp.shape(eta)) * mean / phi


# --- stochastic volatility --------------------------------------------------


def _svm_log_density(
    y: Scalar, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    return (
        -0.5 * _LOG_2PI
        - jnp.log(phi)
        - 0.5 * eta
        - 0.5 * y**2 * jnp.exp(-eta) / phi**2
    )


def _svm_sample(
    key: PRNGKeyT, eta: Scalar, phi: Scalar, u: Scalar
) -> Scalar:
    return phi * jnp.exp(0.5 * eta) * jr.normal(key, jnp.shape(eta))


FAMILIES: dict[str, Family] = {
    'gaussian': Family(
        _gaussian_log_density,
        lambda y, phi, u: y,
        _gaussian_sample,
    ),
    'poisson': Family(
        _poisson_log_density,
        lambda y, phi, u: jnp.log((y + 0.1) / u),
        _poisson_sample,
    ),
    'binomial': Family(
        _binomial_log_density,
        lambda y, phi, u: jax.scipy.special.logit((y + 0.5) / (u + 1.0)),
        _binomial_sample,
    ),
    'negative binomial': Family(
        _nb_log_density,
        lambda y, phi, u: jnp.log((y + 0.1) / u),
        _nb_sample,
    ),
    'gamma': Family(
        _gamma_log_density,
        lambda y, phi, u: jnp.log(y / u),
        _gamma_sample,
    ),
    'svm': Family(
        _svm_log_density,
        lambda y, phi, u: jnp.log((y**2 + 1e-4) / phi**2),
        _svm_sample,
    ),
}

_ALIASES = {
    'normal': 'gaussian',
    'negative_binomial': 'negative binomial',
    'nb': 'negative binomial',
}


def get_family(name: str) -> Family:
    """Look up an observation family by name.

    Raises:
        ValueError: If *name* is not a known family.
    """
    key = _ALIASES.get(name.lower(), name.lower())
    if key not in FAMILIES:
        raise ValueError(
            f"Unknown distribution '{name}'. "
            f'Choose from {sorted(FAMILIES)}.'
        )
    return FAMILIES[key]


def resolve_families(names: tuple[str, ...]) -> tuple[Family, ...]:
    """Resolve one family per observed series."""
    return tuple(get_family(name) for name in names)
