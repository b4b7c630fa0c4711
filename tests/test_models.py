# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for bssmjax.models.

The linear-Gaussian model anchors everything: its particle filters must
reproduce the Kalman likelihood, and a non-Gaussian model with a
Gaussian family must agree with it.
"""

import jax
import jax.numpy as jnp
import jax.random as jr
import jax.scipy.stats as jstats
import pytest

from bssmjax.containers import (
    GaussianSSMParams,
    NonGaussianParams,
    NonlinearParams,
)
from bssmjax.models import (
    LinearGaussianModel,
    NonGaussianModel,
    NonlinearModel,
    SDEModel,
    check_method,
)


def _lg_model(lgssm_data, gaussian_params):
    _, emissions = lgssm_data

    def update_fn(theta):
        return gaussian_params._replace(
            dynamics_weights=jnp.reshape(theta[0], (1, 1))
        )

    return LinearGaussianModel(
        emissions[:, 0],
        jnp.array([0.9]),
        update_fn,
        lambda theta: jstats.uniform.logpdf(theta[0], -1.0, 2.0),
        param_names=['rho'],
    )


def _poisson_model(poisson_data, distribution='poisson', exposure=None):
    def update_fn(theta):
        return NonGaussianParams(
            initial_mean=jnp.zeros(1),
            initial_cov=10.0 * jnp.eye(1),
            dynamics_weights=jnp.eye(1),
            dynamics_bias=jnp.zeros(1),
            dynamics_cov=jnp.reshape(theta[0] ** 2, (1, 1)),
            emissions_weights=jnp.eye(1),
            emissions_bias=jnp.zeros(1),
            phi=jnp.ones(1),
        )

    return NonGaussianModel(
        poisson_data,
        jnp.array([0.1]),
        update_fn,
        lambda theta: jstats.norm.logpdf(theta[0], 0.0, 1.0),
        distribution=distribution,
        exposure=exposure,
        param_names=['sd_level'],
    )


def _nonlinear_model(emissions, dynamics_fn, emission_fn, **kwargs):
    def update_fn(theta):
        return NonlinearParams(
            initial_mean=jnp.zeros(1),
            initial_cov=jnp.eye(1),
            dynamics_cov=jnp.reshape(theta[0] ** 2, (1, 1)),
            emissions_cov=jnp.eye(1),
        )

    return NonlinearModel(
        emissions,
        jnp.array([0.5]),
        update_fn,
        dynamics_fn,
        emission_fn,
        lambda theta: jstats.norm.logpdf(theta[0]),
        **kwargs,
    )


def _ou_model(emissions, **kwargs):
    """Ornstein-Uhlenbeck state observed with unit Gaussian noise."""
    return SDEModel(
        emissions,
        jnp.array([0.5, 1.0]),
        drift_fn=lambda x, theta: -theta[0] * x,
        diffusion_fn=lambda x, theta: theta[1],
        log_observation_fn=lambda y, x, theta: jstats.norm.logpdf(y, x, 1.0),
        x0=0.0,
        log_prior_fn=lambda theta: jnp.sum(jstats.norm.logpdf(theta)),
        param_names=['kappa', 'sigma'],
        observation_sampler=lambda k, x, theta: x + jr.normal(k),
        **kwargs,
    )


class TestStateSpaceModel:
    def test_shapes_and_names(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        assert model.emissions.shape == (50, 1)
        assert model.num_timesteps == 50
        assert model.emission_dim == 1
        assert model.num_params == 1
        assert model.param_names == ('rho',)

    def test_default_param_names(self, gaussian_params):
        model = LinearGaussianModel(
            jnp.zeros(5),
            [0.1, 0.2],
            lambda theta: gaussian_params,
            lambda theta: 0.0,
        )
        assert model.param_names == ('theta_0', 'theta_1')

    def test_rejects_bad_input(self, gaussian_params):
        def build(y, theta=(0.1,), names=None):
            return LinearGaussianModel(
                y,
                theta,
                lambda theta: gaussian_params,
                lambda theta: 0.0,
                param_names=names,
            )

        with pytest.raises(ValueError, match='shape'):
            build(jnp.zeros((5, 1, 1)))
        with pytest.raises(ValueError, match='two time points'):
            build(jnp.zeros(1))
        with pytest.raises(ValueError, match='names'):
            build(jnp.zeros(5), names=['a', 'b'])

    def test_with_emissions_keeps_original(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        other = model.with_emissions(jnp.zeros(10))
        assert other.emissions.shape == (10, 1)
        assert model.emissions.shape == (50, 1)
        assert other.theta is model.theta

    def test_with_emissions_validates(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        with pytest.raises(ValueError, match='shape'):
            model.with_emissions(jnp.zeros((5, 1, 1)))
        with pytest.raises(ValueError, match='two time points'):
            model.with_emissions(jnp.zeros(1))
        with pytest.raises(ValueError, match='1 series'):
            model.with_emissions(jnp.zeros((10, 2)))

    def test_check_method(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        check_method(model, 'psi')
        check_method(model, 'bootstrap')
        with pytest.raises(ValueError, match='Unknown sampling method'):
            check_method(model, 'spdk')


class TestLinearGaussianModel:
    def test_exact_log_likelihood_matches_dynamax(
        self, lgssm_params, lgssm_data, gaussian_params
    ):
        from dynamax.linear_gaussian_ssm.inference import (
            lgssm_filter,
            make_lgssm_params,
        )

        _, emissions = lgssm_data
        expected = lgssm_filter(make_lgssm_params(**lgssm_params), emissions)
        model = _lg_model(lgssm_data, gaussian_params)
        ll = model.exact_log_likelihood(model.theta)
        assert float(ll) == pytest.approx(
            float(expected.marginal_loglik), abs=1e-8
        )
        assert float(model.approx_log_likelihood(None, model.theta)) == (
            pytest.approx(float(ll))
        )

    def test_psi_filter_is_exact(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        exact = model.exact_log_likelihood(model.theta)
        ll = model.log_likelihood(jr.PRNGKey(0), model.theta, 5, 'psi')
        assert float(ll) == pytest.approx(float(exact), abs=1e-6)

    def test_bootstrap_close_to_exact(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        exact = model.exact_log_likelihood(model.theta)
        ll = model.log_likelihood(jr.PRNGKey(1), model.theta, 5_000, 'bootstrap')
        assert float(ll) == pytest.approx(float(exact), abs=1.5)

    def test_sample_states_shapes(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        ll, path = model.sample_states(jr.PRNGKey(2), model.theta, 20)
        assert path.shape == (50, 1)
        assert jnp.isfinite(ll)
        approx_path = model.sample_approx_states(jr.PRNGKey(3), model.theta)
        assert approx_path.shape == (50, 1)

    def test_simulate(self, lgssm_data, gaussian_params):
        model = _lg_model(lgssm_data, gaussian_params)
        states, emissions = model.simulate(jr.PRNGKey(4), model.theta, 30)
        assert states.shape == (30, 1)
        assert emissions.shape == (30, 1)
        states, _ = model.simulate(jr.PRNGKey(4), model.theta)
        assert states.shape == (50, 1)


class TestNonGaussianModel:
    def test_families_and_exposure(self, poisson_data):
        model = _poisson_model(poisson_data)
        assert model.distribution == ('poisson',)
        assert model.exposure.shape == (60, 1)
        assert model.default_mcmc_type == 'is'

    def test_invalid_arguments(self, poisson_data):
        with pytest.raises(ValueError, match='Unknown distribution'):
            _poisson_model(poisson_data, distribution='weibull')
        with pytest.raises(ValueError, match='exposure'):
            _poisson_model(poisson_data, exposure=jnp.zeros(60))
        with pytest.raises(ValueError, match='distributions given'):
            _poisson_model(poisson_data, distribution=['poisson', 'gamma'])

    def test_with_emissions_exposure(self, poisson_data):
        exposure = jnp.arange(1.0, 61.0)
        model = _poisson_model(poisson_data, exposure=exposure)
        # Same length keeps the exposures.
        same = model.with_emissions(poisson_data + 1.0)
        assert jnp.allclose(same.exposure[:, 0], exposure)
        # Non-unit exposures cannot be carried to a shorter series.
        with pytest.raises(ValueError, match='exposure'):
            model.with_emissions(poisson_data[:10])
        with pytest.raises(ValueError, match='exposure'):
            model.with_emissions(poisson_data[:10], exposure=jnp.ones(5))

        short = model.with_emissions(
            poisson_data[:10], exposure=exposure[:10]
        )
        assert short.exposure.shape == (10, 1)
        assert model.exposure.shape == (60, 1)
        fresh = _poisson_model(poisson_data[:10], exposure=exposure[:10])
        assert float(short.approx_log_likelihood(None, short.theta)) == (
            pytest.approx(float(fresh.approx_log_likelihood(None, fresh.theta)))
        )

    def test_with_emissions_unit_exposure(self, poisson_data):
        model = _poisson_model(poisson_data)
        short = model.with_emissions(poisson_data[:10])
        assert jnp.allclose(short.exposure, jnp.ones((10, 1)))
        ll = short.log_likelihood(jr.PRNGKey(0), short.theta, 10)
        assert jnp.isfinite(ll)

    def test_psi_close_to_bootstrap(self, poisson_data):
        model = _poisson_model(poisson_data)
        psi = model.log_likelihood(jr.PRNGKey(0), model.theta, 200, 'psi')
        boot = model.log_likelihood(
            jr.PRNGKey(0), model.theta, 5_000, 'bootstrap'
        )
        assert float(psi) == pytest.approx(float(boot), abs=2.0)

    def test_gaussian_family_matches_linear_gaussian(
        self, lgssm_data, gaussian_params
    ):
        _, emissions = lgssm_data

        def update_fn(theta):
            return NonGaussianParams(
                initial_mean=gaussian_params.initial_mean,
                initial_cov=gaussian_params.initial_cov,
                dynamics_weights=gaussian_params.dynamics_weights,
                dynamics_bias=gaussian_params.dynamics_bias,
                dynamics_cov=gaussian_params.dynamics_cov,
                emissions_weights=gaussian_params.emissions_weights,
                emissions_bias=gaussian_params.emissions_bias,
                phi=jnp.ones(1),
            )

        ng = NonGaussianModel(
            emissions,
            jnp.array([0.0]),
            update_fn,
            lambda theta: 0.0,
            distribution='gaussian',
        )
        lg = _lg_model(lgssm_data, gaussian_params)
        assert float(ng.approx_log_likelihood(None, ng.theta)) == (
            pytest.approx(float(lg.exact_log_likelihood(lg.theta)), abs=1e-6)
        )
        psi = ng.log_likelihood(jr.PRNGKey(0), ng.theta, 3)
        assert float(psi) == pytest.approx(
            float(lg.exact_log_likelihood(lg.theta)), abs=1e-5
        )

    def test_simulate_counts(self, poisson_data):
        model = _poisson_model(poisson_data)
        states, counts = model.simulate(jr.PRNGKey(5), model.theta)
        assert states.shape == (60, 1)
        assert counts.shape == (60, 1)
        assert jnp.all(counts >= 0)
        assert jnp.allclose(counts, jnp.round(counts))
        with pytest.raises(ValueError, match='Exposure'):
            model.simulate(jr.PRNGKey(5), model.theta, 61)


class TestNonlinearModel:
    def test_linear_dynamics_psi_is_exact(self, lgssm_data, gaussian_params):
        """With linear functions every approximation is exact."""
        _, emissions = lgssm_data
        model = _nonlinear_model(
            emissions, lambda x, t, th: 0.9 * x, lambda x, t, th: x
        )
        lg = LinearGaussianModel(
            emissions,
            jnp.array([0.5]),
            lambda th: gaussian_params,
            lambda th: 0.0,
        )
        exact = lg.exact_log_likelihood(lg.theta)
        assert float(model.approx_log_likelihood(None, model.theta)) == (
            pytest.approx(float(exact), abs=1e-6)
        )
        psi = model.log_likelihood(jr.PRNGKey(0), model.theta, 4)
        assert float(psi) == pytest.approx(float(exact), abs=1e-5)

    def test_ekf_approximation(self, lgssm_data):
        _, emissions = lgssm_data
        model = _nonlinear_model(
            emissions,
            lambda x, t, th: 0.9 * x,
            lambda x, t, th: x,
            approximation='ekf',
        )
        assert jnp.isfinite(model.approx_log_likelihood(None, model.theta))
        with pytest.raises(ValueError, match='approximation'):
            _nonlinear_model(
                emissions,
                lambda x, t, th: x,
                lambda x, t, th: x,
                approximation='ukf',
            )

    def test_nonlinear_filters_agree(self, lgssm_data):
        _, emissions = lgssm_data
        model = _nonlinear_model(
            emissions,
            lambda x, t, th: 0.9 * x + 0.2 * jnp.sin(x),
            lambda x, t, th: x + 0.1 * x**2 / (1.0 + x**2),
        )
        psi = jax.vmap(
            lambda k: model.log_likelihood(k, model.theta, 100, 'psi')
        )(jr.split(jr.PRNGKey(0), 10))
        boot = model.log_likelihood(
            jr.PRNGKey(1), model.theta, 10_000, 'bootstrap'
        )
        assert jnp.all(jnp.isfinite(psi))
        assert float(jnp.mean(psi)) == pytest.approx(float(boot), abs=1.5)

    def test_simulate(self, lgssm_data):
        _, emissions = lgssm_data
        model = _nonlinear_model(
            emissions, lambda x, t, th: jnp.tanh(x), lambda x, t, th: x
        )
        states, ys = model.simulate(jr.PRNGKey(0), model.theta, 15)
        assert states.shape == (15, 1)
        assert ys.shape == (15, 1)


class TestSDEModel:
    def test_only_bootstrap(self, lgssm_data):
        _, emissions = lgssm_data
        model = _ou_model(emissions[:20])
        assert model.default_sampling_method == 'bootstrap'
        with pytest.raises(ValueError, match='bootstrap'):
            model.particle_filter(jr.PRNGKey(0), model.theta, 10, 'psi')

    def test_level_validation(self, lgssm_data):
        _, emissions = lgssm_data
        with pytest.raises(ValueError, match='coarse_level'):
            _ou_model(emissions, coarse_level=3, fine_level=2)

    def test_euler_maruyama_moments(self):
        """Fine discretisation recovers the exact OU transition variance."""
        model = _ou_model(jnp.zeros(5))
        theta = jnp.array([0.5, 1.0])
        x = jnp.ones(1)
        draws = jax.vmap(lambda k: model.euler_maruyama(k, x, theta, 6))(
            jr.split(jr.PRNGKey(0), 20_000)
        )
        mean = jnp.exp(-0.5)
        var = (1.0 - jnp.exp(-1.0)) / (2 * 0.5)
        assert float(jnp.mean(draws)) == pytest.approx(float(mean), abs=0.03)
        assert float(jnp.var(draws)) == pytest.approx(float(var), abs=0.03)

    def test_positive_reflection(self):
        model = _ou_model(jnp.zeros(5), positive=True)
        draws = jax.vmap(
            lambda k: model.euler_maruyama(
                k, jnp.zeros(1), jnp.array([0.5, 2.0]), 3
            )
        )(jr.split(jr.PRNGKey(1), 500))
        assert jnp.all(draws >= 0.0)

    def test_likelihoods_finite(self, lgssm_data):
        _, emissions = lgssm_data
        model = _ou_model(emissions[:20])
        approx = model.approx_log_likelihood(jr.PRNGKey(0), model.theta)
        exact = model.log_likelihood(jr.PRNGKey(1), model.theta, 200)
        assert jnp.isfinite(approx)
        assert jnp.isfinite(exact)
        path = model.sample_approx_states(jr.PRNGKey(2), model.theta)
        assert path.shape == (20, 1)

    def test_missing_observation_ignored(self, lgssm_data):
        _, emissions = lgssm_data
        y = emissions[:20, 0].at[5].set(jnp.nan)
        model = _ou_model(y)
        ll = model.log_likelihood(jr.PRNGKey(1), model.theta, 200)
        assert jnp.isfinite(ll)

    def test_simulate(self, lgssm_data):
        _, emissions = lgssm_data
        model = _ou_model(emissions[:20])
        states, ys = model.simulate(jr.PRNGKey(3), model.theta)
        assert states.shape == (20, 1)
        assert ys.shape == (20, 1)
        bare = SDEModel(
            emissions[:20],
            jnp.array([0.5]),
            lambda x, th: -x,
            lambda x, th: 1.0,
            lambda y, x, th: jstats.norm.logpdf(y, x),
            0.0,
            lambda th: 0.0,
        )
        with pytest.raises(ValueError, match='observation_sampler'):
            bare.simulate(jr.PRNGKey(3), bare.theta)
