"""
Loss Functions
==============

Losses score one prediction against its correct values.

Each loss implements:
- calculate(predicted, correct): scalar loss for one sample
- derivative(predicted, correct): elementwise dL/d(predicted), the output deltas

Both arguments are flattened, so Tensors, arrays and lists are accepted.
"""

import numpy as np


def _as_vector(values):
    return np.asarray(values, dtype=np.float64).ravel()


class LossFunction:
    """Base class for loss functions."""

    name = 'loss'

    def calculate(self, predicted, correct):
        raise NotImplementedError

    def derivative(self, predicted, correct):
        raise NotImplementedError

    def __call__(self, predicted, correct):
        return self.calculate(predicted, correct)

    def __repr__(self):
        return self.name


class MeanSquareError(LossFunction):
    """
    L = (1/n) * sum((p - c)^2)

    dL/dp = (2/n) * (p - c)
    """

    name = 'mean_square_error'

    def calculate(self, predicted, correct):
        p, c = _as_vector(predicted), _as_vector(correct)
        return float(np.mean((p - c) ** 2))

    def derivative(self, predicted, correct):
        p, c = _as_vector(predicted), _as_vector(correct)
        return 2 * (p - c) / p.size


class CrossEntropy(LossFunction):
    """
    L = -sum(c * log(p))

    Predictions are clipped to [epsilon, 1 - epsilon] so log(0) never occurs.
    The derivative assumes a softmax output lobe, where dL/dz = p - c.

    Args:
        epsilon: Clipping margin (default: 1e-12)
    """

    name = 'cross_entropy'

    def __init__(self, epsilon=1e-12):
        self.epsilon = epsilon

    def calculate(self, predicted, correct):
        p, c = _as_vector(predicted), _as_vector(correct)
        p = np.clip(p, self.epsilon, 1 - self.epsilon)
        return float(-np.sum(c * np.log(p)))

    def derivative(self, predicted, correct):
        p, c = _as_vector(predicted), _as_vector(correct)
        return p - c


LOSSES = {
    'mse': MeanSquareError,
    'mean_square_error': MeanSquareError,
    'mean_squared_error': MeanSquareError,
    'cross_entropy': CrossEntropy,
    'crossentropy': CrossEntropy,
    'ce': CrossEntropy,
}


def get_loss(name):
    """
    Get loss function by name.

    Args:
        name: String name or LossFunction instance

    Returns:
        LossFunction instance
    """
    if isinstance(name, LossFunction):
        return name

    name_lower = name.lower().replace('-', '_').replace(' ', '_')
    if name_lower not in LOSSES:
        available = ', '.join(sorted(LOSSES.keys()))
        raise ValueError(f"Unknown loss '{name}'. Available: {available}")

    return LOSSES[name_lower]()
