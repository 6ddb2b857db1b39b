"""
Activation Functions
====================

Elementwise non-linearities applied by Dense, Convolution and
TransposedConvolution lobes after their linear step.

Each activation implements:
- forward(x): the activation itself
- derivative(x): f'(x), evaluated at the pre-activation values

Softmax is the exception: it is only used on output lobes together with
cross-entropy, whose derivative already includes the softmax Jacobian, so the
lobe passes the delta through unchanged (see `combined_with_loss`).
"""

import numpy as np


class Activation:
    """Base class for all activation functions."""

    name = 'activation'
    combined_with_loss = False

    def forward(self, x):
        raise NotImplementedError

    def derivative(self, x):
        raise NotImplementedError

    def __call__(self, x):
        return self.forward(x)

    def __repr__(self):
        return self.name


class ReLU(Activation):
    """f(x) = max(0, x); f'(x) = 1 if x > 0 else 0"""

    name = 'relu'

    def forward(self, x):
        return np.maximum(0, x)

    def derivative(self, x):
        return (x > 0).astype(np.float64)


class LeakyReLU(Activation):
    """
    f(x) = x if x > 0 else alpha * x

    Args:
        alpha: Slope for negative values (default: 0.01)
    """

    name = 'leaky_relu'

    def __init__(self, alpha=0.01):
        self.alpha = alpha

    def forward(self, x):
        return np.where(x > 0, x, self.alpha * x)

    def derivative(self, x):
        return np.where(x > 0, 1.0, self.alpha)


class Sigmoid(Activation):
    """f(x) = 1 / (1 + exp(-x)); f'(x) = f(x) * (1 - f(x))"""

    name = 'sigmoid'

    def forward(self, x):
        # clip keeps exp() finite
        return 1.0 / (1.0 + np.exp(-np.clip(x, -500, 500)))

    def derivative(self, x):
        s = self.forward(x)
        return s * (1 - s)


class Tanh(Activation):
    """f(x) = tanh(x); f'(x) = 1 - tanh(x)^2"""

    name = 'tanh'

    def forward(self, x):
        return np.tanh(x)

    def derivative(self, x):
        return 1 - np.tanh(x) ** 2


class Softmax(Activation):
    """
    f(x_i) = exp(x_i) / sum_j exp(x_j), over every element of x.

    The maximum is subtracted before exp() to avoid overflow.
    """

    name = 'softmax'
    combined_with_loss = True

    def forward(self, x):
        exp_x = np.exp(x - np.max(x))
        return exp_x / np.sum(exp_x)

    def derivative(self, x):
        # delta is already dL/dz for softmax + cross-entropy
        return np.ones_like(x)


class Linear(Activation):
    """f(x) = x"""

    name = 'linear'

    def forward(self, x):
        return x

    def derivative(self, x):
        return np.ones_like(x)


ACTIVATIONS = {
    'relu': ReLU,
    'leaky_relu': LeakyReLU,
    'leakyrelu': LeakyReLU,
    'sigmoid': Sigmoid,
    'tanh': Tanh,
    'softmax': Softmax,
    'linear': Linear,
    'none': Linear,
}


def get_activation(name):
    """
    Get activation function by name.

    Args:
        name: String name ('relu', 'sigmoid', ...), an Activation instance or None

    Returns:
        Activation instance
    """
    if isinstance(name, Activation):
        return name

    if name is None:
        return Linear()

    name_lower = name.lower().replace('-', '_')
    if name_lower not in ACTIVATIONS:
        available = ', '.join(ACTIVATIONS.keys())
        raise ValueError(f"Unknown activation '{name}'. Available: {available}")

    return ACTIVATIONS[name_lower]()
