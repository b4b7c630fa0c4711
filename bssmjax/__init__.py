# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Bayesian inference of state-space models in JAX."""

from importlib.metadata import PackageNotFoundError as _PackageNotFoundError
from importlib.metadata import version as _version

from blackjax.smc.ess import ess, log_ess
from blackjax.smc.resampling import (
    multinomial,
    residual,
    stratified,
    systematic,
)

from bssmjax.bootstrap import bootstrap_filter
from bssmjax.constructors import ar1_lg, ar1_ng, bsm_lg, bsm_ng, svm
from bssmjax.containers import (
    GaussianApproximation,
    GaussianSSMParams,
    MCMCOutput,
    NonGaussianParams,
    NonlinearParams,
    ParticleFilterPosterior,
    ParticleState,
)
from bssmjax.kalman import kalman_filter, kalman_sample, kalman_smoother
from bssmjax.mcmc import run_mcmc
from bssmjax.models import (
    LinearGaussianModel,
    NonGaussianModel,
    NonlinearModel,
    SDEModel,
)
from bssmjax.psi import psi_filter
from bssmjax.summary import summary
from bssmjax.weights import log_normalize, normalize

try:
    __version__ = _version('bssmjax')
except _PackageNotFoundError:
    __version__ = '0.0.0'

__all__ = [
    'GaussianApproximation',
    'GaussianSSMParams',
    'LinearGaussianModel',
    'MCMCOutput',
    'NonGaussianModel',
    'NonGaussianParams',
    'NonlinearModel',
    'NonlinearParams',
    'ParticleFilterPosterior',
    'ParticleState',
    'SDEModel',
    '__version__',
    'ar1_lg',
    'ar1_ng',
    'bootstrap_filter',
    'bsm_lg',
    'bsm_ng',
    'ess',
    'kalman_filter',
    'kalman_sample',
    'kalman_smoother',
    'log_ess',
    'log_normalize',
    'multinomial',
    'normalize',
    'psi_filter',
    'residual',
    'run_mcmc',
    'stratified',
    'summary',
    'svm',
    'systematic',
]
