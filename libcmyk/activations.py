"""
activations.py
~~~~~~~~~~~~~~

Numeric primitives shared by the forward and backward passes.
"""

from typing import Optional, Tuple

import numpy as np


def sigmoid(z):
    """The logistic function 1 / (1 + e^-z), elementwise."""
    return 1.0 / (1.0 + np.exp(-z))


def dsigmoid(y):
    """
    Derivative of the sigmoid written in terms of its output.

    ``y`` is an activation value (already squashed), not the
    pre-activation sum, so the derivative is simply y * (1 - y).
    """
    return y * (1.0 - y)


def random_uniform(
    shape: Tuple[int, ...],
    low: float = -1.0,
    high: float = 1.0,
    rng: Optional[np.random.Generator] = None
) -> np.ndarray:
    """
    Draw float64 values uniformly from [low, high).

    Args:
        shape: Shape of the returned array
        low: Lower bound of the range
        high: Upper bound of the range
        rng: Generator to draw from; a fresh unseeded one if omitted

    Returns:
        np.ndarray of the requested shape
    """
    if rng is None:
        rng = np.random.default_rng()
    return (high - low) * rng.random(shape) + low
