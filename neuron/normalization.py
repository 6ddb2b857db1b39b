"""
Batch Normalizer
================

Normalizes one vector of activations to zero mean and unit variance, then
scales and shifts it with a learned scalar gamma and beta:

    x_hat  = (x - mean) / sqrt(var + eps)
    output = gamma * x_hat + beta

Moving averages of mean and variance are kept for inference.

Backward pass (n activations, dxhat = gradient * gamma):
    dgamma = sum(gradient * x_hat)
    dbeta  = sum(gradient)
    dx     = (n * dxhat - sum(dxhat) - x_hat * sum(dxhat * x_hat)) / (n * std)
"""

import numpy as np


class BatchNormalizer:
    """
    Scalar-gamma/beta normalizer for one activation vector.

    Args:
        gamma: Initial scale (default: 1)
        beta: Initial shift (default: 0)
        momentum: Weight of the old moving statistics (default: 0.9)
        epsilon: Smoothing term added to the variance (default: 5e-5)
    """

    def __init__(self, gamma=1.0, beta=0.0, momentum=0.9, epsilon=5e-5):
        self.gamma = float(gamma)
        self.beta = float(beta)
        self.momentum = momentum
        self.epsilon = epsilon

        self.moving_mean = 0.0
        self.moving_variance = 1.0

        self.normalized_activations = None
        self.standard_deviation = None

        self.gamma_gradient = 0.0
        self.beta_gradient = 0.0

    def normalize(self, activations, training=True):
        """
        Normalize a vector of activations.

        Args:
            activations: Array of any shape, normalized over all its elements
            training: Use (and update) batch statistics; otherwise moving statistics

        Returns:
            Scaled and shifted activations, same shape as the input
        """
        x = np.asarray(activations, dtype=np.float64)

        if training:
            mean = float(np.mean(x))
            variance = float(np.var(x))
            self.moving_mean = self.momentum * self.moving_mean + (1 - self.momentum) * mean
            self.moving_variance = self.momentum * self.moving_variance + (1 - self.momentum) * variance
        else:
            mean = self.moving_mean
            variance = self.moving_variance

        std = np.sqrt(variance + self.epsilon)
        normalized = (x - mean) / std

        self.standard_deviation = std
        self.normalized_activations = normalized

        return self.gamma * normalized + self.beta

    def backward(self, gradient):
        """
        Gradient w.r.t. the pre-normalization activations.

        dgamma and dbeta are accumulated until apply_gradients() or zero_gradients().
        """
        gradient = np.asarray(gradient, dtype=np.float64).reshape(self.normalized_activations.shape)
        x_hat = self.normalized_activations
        n = x_hat.size

        self.gamma_gradient += float(np.sum(gradient * x_hat))
        self.beta_gradient += float(np.sum(gradient))

        dx_hat = gradient * self.gamma
        return (n * dx_hat - np.sum(dx_hat) - x_hat * np.sum(dx_hat * x_hat)) / (n * self.standard_deviation)

    def apply_gradients(self, learning_rate, batch_size=1):
        """Plain gradient descent on gamma and beta."""
        self.gamma -= learning_rate * self.gamma_gradient / batch_size
        self.beta -= learning_rate * self.beta_gradient / batch_size
        self.zero_gradients()

    def zero_gradients(self):
        self.gamma_gradient = 0.0
        self.beta_gradient = 0.0

    def clear(self):
        """Forget moving statistics and the cached batch."""
        self.moving_mean = 0.0
        self.moving_variance = 1.0
        self.normalized_activations = None
        self.standard_deviation = None
        self.zero_gradients()

    def __repr__(self):
        return f"BatchNormalizer(gamma={self.gamma:.4f}, beta={self.beta:.4f})"
