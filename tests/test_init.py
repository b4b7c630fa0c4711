# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Tests for the package-level API."""

from importlib.metadata import PackageNotFoundError
from unittest.mock import patch

from bssmjax import __version__


def test_version_is_accessible():
    """Test that __version__ is a non-empty string."""
    assert isinstance(__version__, str)
    assert __version__ != ''


def test_public_api_exports_all_expected_names(package):
    """Test that __all__ contains exactly the expected public API."""
    expected = [
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
    assert sorted(package.__all__) == sorted(expected)


def test_all_names_resolve(package):
    for name in package.__all__:
        assert hasattr(package, name), name


def test_version_fallback_when_package_not_found():
    """Test that __version__ falls back to '0.0.0' when not installed."""
    import importlib

    import bssmjax

    with patch(
        'importlib.metadata.version',
        side_effect=PackageNotFoundError,
    ):
        importlib.reload(bssmjax)
        assert bssmjax.__version__ == '0.0.0'

    # Restore the real version
    importlib.reload(bssmjax)
