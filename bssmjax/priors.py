# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
r"""Prior distributions for scalar hyperparameters.

Each prior carries an ``init`` value, used as the starting point of
the MCMC chain, and a JIT-compatible :meth:`log_prob` which returns
:math:`-\infty` outside the support.  Model constructors such as
:func:`~bssmjax.constructors.bsm_lg` treat any argument given as a
prior as an unknown hyperparameter.
"""

from collections.abc import Sequence
from dataclasses import dataclass

import jax.numpy as jnp
from jax.scipy import stats as jstats

from bssmjax.types import LogPriorFn, Scalar, Theta


def _check_positive(name: str, value: float) -> None:
    if not value > 0:
        raise ValueError(f'{name} must be positive, got {value}.')


@dataclass(frozen=True)
class Uniform:
    """Uniform prior on ``[min, max]``."""

    init: float
    min: float
    max: float

    def __post_init__(self):
        if not self.min < self.max:
            raise ValueError(
                f'Uniform prior needs min < max, got [{self.min}, {self.max}].'
            )
        if not self.min <= self.init <= self.max:
            raise ValueError(
                f'Initial value {self.init} is outside [{self.min}, {self.max}].'
            )

    def log_prob(self, x: Scalar) -> Scalar:
        return jstats.uniform.logpdf(x, self.min, self.max - self.min)


@dataclass(frozen=True)
class HalfNormal:
    """Half-normal prior on ``[0, inf)`` with scale ``sd``."""

    init: float
    sd: float

    def __post_init__(self):
        _check_positive('sd', self.sd)
        if self.init < 0:
            raise ValueError(
                f'Initial value of a half-normal prior must be non-negative, '
                f'got {self.init}.'
            )

    def log_prob(self, x: Scalar) -> Scalar:
        lp = jnp.log(2.0) + jstats.norm.logpdf(x, 0.0, self.sd)
        return jnp.where(x >= 0, lp, -jnp.inf)


@dataclass(frozen=True)
class Normal:
    """Normal prior with mean ``mean`` and standard deviation ``sd``."""

    init: float
    mean: float
    sd: float

    def __post_init__(self):
        _check_positive('sd', self.sd)

    def log_prob(self, x: Scalar) -> Scalar:
        return jstats.norm.logpdf(x, self.mean, self.sd)


@dataclass(frozen=True)
class TruncatedNormal:
    """Normal prior truncated to ``[min, max]``."""

    init: float
    mean: float
    sd: float
    min: float = -jnp.inf
    max: float = jnp.inf

    def __post_init__(self):
        _check_positive('sd', self.sd)
        if not self.min <= self.init <= self.max:
            raise ValueError(
                f'Initial value {self.init} is outside [{self.min}, {self.max}].'
            )

    def log_prob(self, x: Scalar) -> Scalar:
        a = (self.min - self.mean) / self.sd
        b = (self.max - self.mean) / self.sd
        return jstats.truncnorm.logpdf(x, a, b, self.mean, self.sd)


@dataclass(frozen=True)
class Gamma:
    """Gamma prior with ``shape`` and ``rate``."""

    init: float
    shape: float
    rate: float

    def __post_init__(self):
        _check_positive('shape', self.shape)
        _check_positive('rate', self.rate)
        if self.init <= 0:
            raise ValueError(
                f'Initial value of a gamma prior must be positive, '
                f'got {self.init}.'
            )

    def log_prob(self, x: Scalar) -> Scalar:
        lp = jstats.gamma.logpdf(x, self.shape, scale=1.0 / self.rate)
        return jnp.where(x > 0, lp, -jnp.inf)


Prior = Uniform | HalfNormal | Normal | TruncatedNormal | Gamma

PRIOR_TYPES = (Uniform, HalfNormal, Normal, TruncatedNormal, Gamma)


def is_prior(value: object) -> bool:
    """Whether *value* is one of the prior classes in this module."""
    return isinstance(value, PRIOR_TYPES)


def joint_log_prior(priors: Sequence[Prior]) -> LogPriorFn:
    """Build ``theta -> sum_i log p_i(theta_i)`` for independent priors.

    Args:
        priors: One prior per entry of ``theta``.

    Returns:
        A JIT-compatible log prior density function.
    """
    priors = tuple(priors)

    def log_prior(theta: Theta) -> Scalar:
        lp = jnp.asarray(0.0)
        for i, prior in enumerate(priors):
            lp = lp + prior.log_prob(theta[i])
        return lp

    return log_prior
