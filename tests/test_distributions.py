# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for bssmjax.distributions.

Log densities are compared with TensorFlow Probability after mapping
the signal to the natural parameters of each family.
"""

import jax
import jax.numpy as jnp
import jax.random as jr
import pytest
from tensorflow_probability.substrates.jax import distributions as tfd

from bssmjax.distributions import FAMILIES, get_family, resolve_families

ETA = jnp.array([-1.0, 0.0, 0.7])


class TestLogDensities:
    def test_gaussian(self):
        lp = get_family('gaussian').log_density(1.2, ETA, 0.5, 1.0)
        expected = tfd.Normal(ETA, 0.5).log_prob(1.2)
        assert jnp.allclose(lp, expected)

    def test_poisson_with_exposure(self):
        lp = get_family('poisson').log_density(3.0, ETA, 1.0, 2.0)
        expected = tfd.Poisson(rate=2.0 * jnp.exp(ETA)).log_prob(3.0)
        assert jnp.allclose(lp, expected)

    def test_binomial(self):
        lp = get_family('binomial').log_density(4.0, ETA, 1.0, 10.0)
        expected = tfd.Binomial(total_count=10.0, logits=ETA).log_prob(4.0)
        assert jnp.allclose(lp, expected)

    def test_negative_binomial(self):
        phi, u = 2.5, 1.5
        lp = get_family('negative binomial').log_density(5.0, ETA, phi, u)
        mean = u * jnp.exp(ETA)
        expected = tfd.NegativeBinomial(
            total_count=phi, probs=mean / (mean + phi)
        ).log_prob(5.0)
        assert jnp.allclose(lp, expected)

    def test_gamma(self):
        phi = 3.0
        lp = get_family('gamma').log_density(0.8, ETA, phi, 1.0)
        expected = tfd.Gamma(
            concentration=phi, rate=phi / jnp.exp(ETA)
        ).log_prob(0.8)
        assert jnp.allclose(lp, expected)

    def test_svm(self):
        sigma = 0.3
        lp = get_family('svm').log_density(0.1, ETA, sigma, 1.0)
        expected = tfd.Normal(0.0, sigma * jnp.exp(ETA / 2)).log_prob(0.1)
        assert jnp.allclose(lp, expected)


class TestSampling:
    @pytest.mark.parametrize('name', sorted(FAMILIES))
    def test_sample_mean(self, name):
        """Sample means match the family's mean at eta = 0."""
        family = get_family(name)
        phi, u = 2.0, 4.0
        keys = jr.split(jr.PRNGKey(0), 20_000)
        draws = jax.vmap(lambda k: family.sample(k, 0.0, phi, u))(keys)
        expected = {
            'gaussian': 0.0,
            'poisson': u,
            'binomial': u / 2,
            'negative binomial': u,
            'gamma': u,
            'svm': 0.0,
        }[name]
        assert float(jnp.mean(draws)) == pytest.approx(expected, abs=0.1)


class TestLookup:
    def test_aliases(self):
        assert get_family('NB') is FAMILIES['negative binomial']
        assert get_family('Normal') is FAMILIES['gaussian']

    def test_unknown(self):
        with pytest.raises(ValueError, match='Unknown distribution'):
            get_family('weibull')

    def test_resolve(self):
        families = resolve_families(('poisson', 'gamma'))
        assert families == (FAMILIES['poisson'], FAMILIES['gamma'])


def test_poisson_derivatives_stable():
    """Gradients with respect to the signal stay finite for large signals."""
    log_density = get_family('poisson').log_density
    grad = jax.grad(log_density, argnums=1)(5.0, 20.0, 1.0, 1.0)
    assert jnp.isfinite(grad)
