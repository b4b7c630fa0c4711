# Copyright 2026 Michael Ellis
# SPDX-License-Identifier: Apache-2.0
"""Type aliases shared across bssmjax."""

from collections.abc import Callable
from typing import Union

from jaxtyping import Array, Float, Int, PRNGKeyArray

PRNGKeyT = PRNGKeyArray
"""JAX PRNG key (handles both old and new JAX key formats)."""

Scalar = Union[float, Float[Array, '']]
"""Python float or scalar JAX array with float dtype."""

IntScalar = Union[int, Int[Array, '']]
"""Python int or scalar JAX array with int dtype."""

Theta = Float[Array, ' num_params']
"""Hyperparameter vector, one entry per estimated quantity."""

LogPriorFn = Callable[[Theta], Scalar]
"""Function ``theta -> log p(theta)``."""
