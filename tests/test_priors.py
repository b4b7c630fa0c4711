# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for bssmjax.priors, validated against jax.scipy.stats."""

import jax
import jax.numpy as jnp
import jax.scipy.stats as jstats
import pytest

from bssmjax.priors import (
    Gamma,
    HalfNormal,
    Normal,
    TruncatedNormal,
    Uniform,
    is_prior,
    joint_log_prior,
)


class TestLogProb:
    def test_uniform(self):
        prior = Uniform(init=0.0, min=-1.0, max=3.0)
        assert float(prior.log_prob(1.0)) == pytest.approx(-jnp.log(4.0))
        assert prior.log_prob(3.5) == -jnp.inf

    def test_half_normal_integrates_to_one(self):
        prior = HalfNormal(init=1.0, sd=2.0)
        x = jnp.linspace(0.0, 20.0, 20_001)
        density = jnp.exp(jax.vmap(prior.log_prob)(x))
        assert float(jnp.trapezoid(density, x)) == pytest.approx(1.0, abs=1e-4)
        assert prior.log_prob(-0.1) == -jnp.inf

    def test_normal(self):
        prior = Normal(init=0.0, mean=1.0, sd=0.5)
        assert float(prior.log_prob(0.2)) == pytest.approx(
            float(jstats.norm.logpdf(0.2, 1.0, 0.5))
        )

    def test_truncated_normal(self):
        prior = TruncatedNormal(init=0.5, mean=0.0, sd=1.0, min=0.0, max=1.0)
        z = jstats.norm.cdf(1.0) - jstats.norm.cdf(0.0)
        expected = jstats.norm.logpdf(0.5) - jnp.log(z)
        assert float(prior.log_prob(0.5)) == pytest.approx(float(expected))
        assert prior.log_prob(1.5) == -jnp.inf

    def test_gamma(self):
        prior = Gamma(init=1.0, shape=2.0, rate=3.0)
        expected = jstats.gamma.logpdf(1.5, 2.0, scale=1.0 / 3.0)
        assert float(prior.log_prob(1.5)) == pytest.approx(float(expected))
        assert prior.log_prob(-1.0) == -jnp.inf


class TestValidation:
    def test_initial_value_in_support(self):
        with pytest.raises(ValueError, match='outside'):
            Uniform(init=2.0, min=0.0, max=1.0)
        with pytest.raises(ValueError, match='non-negative'):
            HalfNormal(init=-1.0, sd=1.0)
        with pytest.raises(ValueError, match='positive'):
            Gamma(init=0.0, shape=1.0, rate=1.0)

    def test_scale_positive(self):
        with pytest.raises(ValueError, match='sd'):
            Normal(init=0.0, mean=0.0, sd=0.0)
        with pytest.raises(ValueError, match='min < max'):
            Uniform(init=0.0, min=1.0, max=1.0)


def test_is_prior():
    assert is_prior(Normal(init=0.0, mean=0.0, sd=1.0))
    assert not is_prior(1.0)


def test_joint_log_prior_sums_and_jits():
    priors = [
        Normal(init=0.0, mean=0.0, sd=1.0),
        HalfNormal(init=1.0, sd=1.0),
    ]
    log_prior = jax.jit(joint_log_prior(priors))
    theta = jnp.array([0.3, 0.7])
    expected = priors[0].log_prob(0.3) + priors[1].log_prob(0.7)
    assert float(log_prior(theta)) == pytest.approx(float(expected))
    assert log_prior(jnp.array([0.3, -0.7])) == -jnp.inf
