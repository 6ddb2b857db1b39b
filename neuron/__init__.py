"""
Neuron
======

A small neural network framework built on NumPy.

- Tensor: shape-aware (depth, rows, columns) buffer with axis reductions
- Compute devices performing strided, padded 2D correlation
- Lobes: Convolution, TransposedConvolution, MaxPool, Flatten, Reshape,
  Dense, Normalization
- Network: compile, feed, backpropagate, train
- GAN: Wasserstein-style adversarial training with weight clipping
- Adam and SGD optimizers
"""

from .tensor import Tensor, TensorSize
from .device import Device, CPUDevice, get_device
from .activations import ReLU, LeakyReLU, Sigmoid, Tanh, Softmax, Linear, get_activation
from .layers import Lobe, Convolution, TransposedConvolution, MaxPool, Flatten, Reshape
from .layers import Dense, Normalization
from .normalization import BatchNormalizer
from .losses import MeanSquareError, CrossEntropy, get_loss
from .optimizers import Adam, SGD, get_optimizer
from .data import TrainingData, DatasetData
from .network import Network
from .gan import GAN, GANLossFunction, GANType
from .errors import (NeuronError, NotCompiledError, ShapeMismatchError, EmptyInputError,
                     MissingComponentError)
from . import visualizations

__version__ = "1.0.0"
__all__ = [
    # Tensor and devices
    'Tensor', 'TensorSize', 'Device', 'CPUDevice', 'get_device',
    # Activations
    'ReLU', 'LeakyReLU', 'Sigmoid', 'Tanh', 'Softmax', 'Linear', 'get_activation',
    # Lobes
    'Lobe', 'Convolution', 'TransposedConvolution', 'MaxPool', 'Flatten', 'Reshape',
    'Dense', 'Normalization', 'BatchNormalizer',
    # Losses
    'MeanSquareError', 'CrossEntropy', 'get_loss',
    # Optimizers
    'Adam', 'SGD', 'get_optimizer',
    # Training
    'TrainingData', 'DatasetData', 'Network', 'GAN', 'GANLossFunction', 'GANType',
    # Errors
    'NeuronError', 'NotCompiledError', 'ShapeMismatchError', 'EmptyInputError',
    'MissingComponentError',
]
