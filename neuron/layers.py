"""
Lobes
=====

Layers ("lobes") of a network. Every lobe works on one sample at a time and
honours the same contract:

- build(input_size): size the lobe for an incoming TensorSize, return its output size
- feed(inputs, training): forward pass, Tensor in, Tensor out
- calculate_gradients(deltas): backward pass; accumulates parameter gradients
  and returns the deltas for the previous lobe
- adjust_weights(batch_size): hand the accumulated gradients to the optimizer
- zero_gradients(): reset the per-batch accumulators
- clear(): forget cached forward state

Lobes implemented:
- Convolution: strided, padded 2D convolution
- TransposedConvolution: learned upsampling (adjoint of Convolution)
- MaxPool: max pooling with recorded argmax positions
- Flatten: (depth, rows, columns) -> vector
- Reshape: vector -> (depth, rows, columns)
- Dense: fully connected
- Normalization: BatchNormalizer over the incoming activations
"""

import numpy as np

from .activations import get_activation
from .convolution import (as_pair, check_padding, conv_output_length, convolution_gradients, convolve,
                          transpose_convolve, transposed_convolution_gradients, transposed_output_length)
from .device import get_device
from .errors import ShapeMismatchError
from .normalization import BatchNormalizer
from .optimizers import SGD
from .tensor import Tensor, TensorSize


def initialize(shape, fan_in, initializer, rng):
    """
    Draw initial weights.

    'he': N(0, 2 / fan_in), 'xavier': N(0, 1 / fan_in), 'zeros': all zero.
    """
    if initializer == 'zeros':
        return np.zeros(shape)
    if initializer == 'he':
        scale = np.sqrt(2.0 / fan_in)
    elif initializer == 'xavier':
        scale = np.sqrt(1.0 / fan_in)
    else:
        raise ValueError(f"Unknown initializer '{initializer}'. Available: he, xavier, zeros")
    return rng.standard_normal(shape) * scale


class Lobe:
    """
    Base class for all lobes.

    Args:
        input_size: Optional TensorSize the lobe expects. When given, compile()
            verifies that the previous lobe produces exactly this size.
    """

    def __init__(self, input_size=None):
        self.params = {}    # Trainable parameters
        self.grads = {}     # Accumulated gradients of parameters
        self.trainable = True
        self.training = True
        self.built = False
        self.cache = {}

        self.declared_input_size = TensorSize(*input_size) if input_size is not None else None
        self.input_size = None
        self.output_size = None

        self.optimizer = None
        self.rng = None

    # ------------------------------------------------------------------
    # Sizing
    # ------------------------------------------------------------------

    def accepts(self, size):
        """Whether an incoming size satisfies the declared input size."""
        return self.declared_input_size is None or tuple(size) == tuple(self.declared_input_size)

    def build(self, input_size):
        """
        Size the lobe for its input and return the output size.

        Raises:
            ShapeMismatchError: the incoming size contradicts the declared one
        """
        input_size = TensorSize(*input_size)
        if not self.built and not self.accepts(input_size):
            raise ShapeMismatchError(
                f"{self!r} expects input {tuple(self.declared_input_size)}, got {tuple(input_size)}",
                expected=self.declared_input_size, actual=input_size)

        if self.rng is None:
            self.rng = np.random.default_rng()

        self.input_size = input_size
        self.output_size = TensorSize(*self._build(input_size))
        self.built = True
        return self.output_size

    def _build(self, input_size):
        return input_size

    # ------------------------------------------------------------------
    # Forward / backward
    # ------------------------------------------------------------------

    def feed(self, inputs, training=True):
        raise NotImplementedError

    def calculate_gradients(self, deltas):
        raise NotImplementedError

    def __call__(self, inputs, training=True):
        return self.feed(inputs, training)

    # ------------------------------------------------------------------
    # Parameters
    # ------------------------------------------------------------------

    def adjust_weights(self, batch_size=1):
        """Average the accumulated gradients over the batch and update params."""
        if not self.trainable or not self.params:
            return
        if self.optimizer is None:
            self.optimizer = SGD(learning_rate=0.01, momentum=0.0)
        self.optimizer.apply(self, batch_size)

    def _accumulate(self, name, gradient):
        if self.trainable:
            self.grads[name] = self.grads.get(name, 0.0) + gradient

    def zero_gradients(self):
        self.grads = {name: np.zeros_like(param) for name, param in self.params.items()}

    def clip_weights(self, low, high):
        """Clamp weights and biases into [low, high]."""
        for name in ('weight', 'bias'):
            if name in self.params:
                self.params[name] = np.clip(self.params[name], low, high)

    def clear(self):
        self.cache = {}
        self.zero_gradients()

    @property
    def parameter_count(self):
        return int(sum(param.size for param in self.params.values()))

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class Convolution(Lobe):
    """
    2D Convolution lobe.

    Args:
        filter_count: Number of filters (output channels)
        filter_size: (rows, columns) of each filter, or an int
        stride: Stride (int or tuple, default: 1)
        padding: 'valid' (no padding) or 'same'
        activation: Activation name or instance (default: 'relu')
        bias: Whether to learn a per-filter bias (default: True)
        initializer: 'he', 'xavier' or 'zeros'
        trainable: Whether adjust_weights() updates the filters
        input_size: Optional expected TensorSize
        rng: numpy Generator used for initialization
        device: Device (or name) that performs the 2D correlations

    Input:  (depth, rows, columns)
    Output: (filter_count, out_rows, out_columns)

        valid: out = (in - filter) // stride + 1
        same:  out = ceil(in / stride)
    """

    default_activation = 'relu'

    def __init__(self, filter_count, filter_size=(3, 3), stride=1, padding='valid',
                 activation=None, bias=True, initializer='he', trainable=True,
                 input_size=None, rng=None, device=None):
        super().__init__(input_size)

        self.filter_count = filter_count
        self.filter_size = as_pair(filter_size)
        self.stride = as_pair(stride)
        self.padding = check_padding(padding)
        self.activation = get_activation(activation if activation is not None else self.default_activation)
        self.bias_enabled = bias
        self.initializer = initializer
        self.trainable = trainable
        self.rng = rng
        self.device = get_device(device)

    def _spatial_output(self, rows, columns):
        fr, fc = self.filter_size
        sr, sc = self.stride
        return (conv_output_length(rows, fr, sr, self.padding),
                conv_output_length(columns, fc, sc, self.padding))

    def _build(self, input_size):
        fr, fc = self.filter_size
        shape = (self.filter_count, input_size.depth, fr, fc)

        # Rebuilding for a new spatial size keeps the learned filters
        if self.params.get('weight') is None or self.params['weight'].shape != shape:
            fan_in = input_size.depth * fr * fc
            self.params['weight'] = initialize(shape, fan_in, self.initializer, self.rng)
            if self.bias_enabled:
                self.params['bias'] = np.zeros(self.filter_count)
            self.zero_gradients()
            if self.optimizer is not None:
                self.optimizer.forget(self)

        rows, columns = self._spatial_output(input_size.rows, input_size.columns)
        if rows <= 0 or columns <= 0:
            raise ShapeMismatchError(
                f"{self!r} filter {self.filter_size} does not fit input {tuple(input_size)}",
                expected=self.filter_size, actual=input_size)
        return TensorSize(rows, columns, self.filter_count)

    def _forward_kernel(self, inputs):
        return convolve(inputs, self.params['weight'], self.params.get('bias'),
                        self.stride, self.padding, self.device)

    def _backward_kernel(self, inputs, delta):
        return convolution_gradients(inputs, self.params['weight'], delta,
                                     self.stride, self.padding, self.device)

    def feed(self, inputs, training=True):
        """
        Correlate every input channel with its filter slice and sum per filter.

        Args:
            inputs: Tensor (depth, rows, columns)

        Returns:
            Activated feature maps
        """
        self.training = training
        x = Tensor(inputs).value
        if not self.built:
            self.build(TensorSize.from_shape(x.shape))

        if x.shape[0] != self.params['weight'].shape[1]:
            raise ShapeMismatchError(
                f"{self!r} expects depth {self.params['weight'].shape[1]}, got {x.shape[0]}",
                expected=self.params['weight'].shape[1], actual=x.shape[0])

        z = self._forward_kernel(x)

        self.cache['x'] = x
        self.cache['z'] = z

        return Tensor(self.activation.forward(z))

    def calculate_gradients(self, deltas):
        """
        Backward pass.

        Args:
            deltas: dL/d(output), same shape as the feed() result

        Returns:
            dL/d(input) as a Tensor
        """
        z = self.cache['z']
        delta = Tensor(deltas).value.reshape(z.shape) * self.activation.derivative(z)

        input_gradients, filter_gradients, bias_gradients = self._backward_kernel(self.cache['x'], delta)

        self._accumulate('weight', filter_gradients)
        if self.bias_enabled:
            self._accumulate('bias', bias_gradients)

        return Tensor(input_gradients)

    @property
    def filters(self):
        return self.params['weight']

    def __repr__(self):
        return (f"{self.__class__.__name__}({self.filter_count}, filter_size={self.filter_size}, "
                f"stride={self.stride}, padding={self.padding})")


class TransposedConvolution(Convolution):
    """
    Transposed 2D convolution lobe (deconvolution / learned upsampling).

    Takes the same arguments as Convolution; only the size formula and the
    kernels differ.

        valid: out = (in - 1) * stride + filter
        same:  out = in * stride
    """

    default_activation = 'linear'

    def _spatial_output(self, rows, columns):
        fr, fc = self.filter_size
        sr, sc = self.stride
        return (transposed_output_length(rows, fr, sr, self.padding),
                transposed_output_length(columns, fc, sc, self.padding))

    def _forward_kernel(self, inputs):
        return transpose_convolve(inputs, self.params['weight'], self.params.get('bias'),
                                  self.stride, self.padding, self.device)

    def _backward_kernel(self, inputs, delta):
        return transposed_convolution_gradients(inputs, self.params['weight'], delta,
                                                self.stride, self.padding, self.device)


class MaxPool(Lobe):
    """
    Max pooling lobe.

    Args:
        pool_size: Size of pooling window (int or tuple, default: 2)
        stride: Stride (default: same as pool_size)

    Backprop: each window's delta goes to the position of its maximum.
    """

    def __init__(self, pool_size=2, stride=None, input_size=None):
        super().__init__(input_size)
        self.pool_size = as_pair(pool_size)
        self.stride = as_pair(stride) if stride is not None else self.pool_size
        self.trainable = False

    def _build(self, input_size):
        ph, pw = self.pool_size
        sh, sw = self.stride
        rows = (input_size.rows - ph) // sh + 1
        columns = (input_size.columns - pw) // sw + 1
        if rows <= 0 or columns <= 0:
            raise ShapeMismatchError(f"{self!r} does not fit input {tuple(input_size)}",
                                     expected=self.pool_size, actual=input_size)
        return TensorSize(rows, columns, input_size.depth)

    def feed(self, inputs, training=True):
        self.training = training
        x = np.ascontiguousarray(Tensor(inputs).value)

        channels, rows, columns = x.shape
        ph, pw = self.pool_size
        sh, sw = self.stride

        h_out = (rows - ph) // sh + 1
        w_out = (columns - pw) // sw + 1

        # View of every pooling window: (channels, h_out, w_out, ph, pw)
        shape = (channels, h_out, w_out, ph, pw)
        strides = (
            x.strides[0],        # channel
            x.strides[1] * sh,   # output row (strided)
            x.strides[2] * sw,   # output column (strided)
            x.strides[1],        # pool row
            x.strides[2],        # pool column
        )
        windows = np.lib.stride_tricks.as_strided(x, shape=shape, strides=strides, writeable=False)
        windows_flat = windows.reshape(channels, h_out, w_out, -1)

        self.cache['x_shape'] = x.shape
        self.cache['max_indices'] = np.argmax(windows_flat, axis=-1)

        return Tensor(np.max(windows_flat, axis=-1))

    def calculate_gradients(self, deltas):
        x_shape = self.cache['x_shape']
        max_indices = self.cache['max_indices']
        channels, h_out, w_out = max_indices.shape
        delta = Tensor(deltas).value.reshape(max_indices.shape)

        pw = self.pool_size[1]
        sh, sw = self.stride

        # Absolute input position of every window maximum
        abs_h = np.arange(h_out).reshape(1, h_out, 1) * sh + max_indices // pw
        abs_w = np.arange(w_out).reshape(1, 1, w_out) * sw + max_indices % pw
        c_idx = np.broadcast_to(np.arange(channels).reshape(channels, 1, 1), max_indices.shape)

        grad_input = np.zeros(x_shape)
        np.add.at(grad_input, (c_idx, abs_h, abs_w), delta)

        return Tensor(grad_input)

    def __repr__(self):
        return f"MaxPool(pool_size={self.pool_size}, stride={self.stride})"


class Flatten(Lobe):
    """
    Reshape (depth, rows, columns) into a vector.

    Element order is depth-major (C order), matching Dense weight columns.
    """

    def __init__(self, input_size=None):
        super().__init__(input_size)
        self.trainable = False

    def _build(self, input_size):
        return TensorSize(1, input_size.count, 1)

    def feed(self, inputs, training=True):
        x = Tensor(inputs).value
        self.cache['input_shape'] = x.shape
        return Tensor(x.ravel())

    def calculate_gradients(self, deltas):
        return Tensor(Tensor(deltas).value.reshape(self.cache['input_shape']))


class Reshape(Lobe):
    """
    Reshape a vector into a (depth, rows, columns) tensor.

    Args:
        size: Target TensorSize (rows, columns, depth)
    """

    def __init__(self, size, input_size=None):
        super().__init__(input_size)
        self.size = TensorSize(*size)
        self.trainable = False

    def _build(self, input_size):
        if input_size.count != self.size.count:
            raise ShapeMismatchError(
                f"cannot reshape {tuple(input_size)} into {tuple(self.size)}",
                expected=self.size.count, actual=input_size.count)
        return self.size

    def feed(self, inputs, training=True):
        x = Tensor(inputs).value
        self.cache['input_shape'] = x.shape
        return Tensor(x.reshape(self.size.shape))

    def calculate_gradients(self, deltas):
        return Tensor(Tensor(deltas).value.reshape(self.cache['input_shape']))

    def __repr__(self):
        return f"Reshape({tuple(self.size)})"


class Dense(Lobe):
    """
    Fully connected lobe: output = activation(W @ x + b)

    Args:
        units: Number of output nodes
        activation: Activation name or instance (default: 'relu')
        bias: Whether to learn a bias vector (default: True)
        initializer: 'he', 'xavier' or 'zeros'
        input_size: Optional input count (int) or TensorSize
        rng: numpy Generator used for initialization

    The input count is unknown until the lobe is built, so a Dense lobe
    starts unbuilt and gets its weights from build() or replace_inputs().
    """

    def __init__(self, units, activation='relu', bias=True, initializer='he',
                 trainable=True, input_size=None, rng=None):
        if isinstance(input_size, int):
            input_size = TensorSize(1, input_size, 1)
        super().__init__(input_size)

        self.units = units
        self.activation = get_activation(activation)
        self.bias_enabled = bias
        self.initializer = initializer
        self.trainable = trainable
        self.rng = rng

    @property
    def input_count(self):
        return self.params['weight'].shape[1] if 'weight' in self.params else 0

    def accepts(self, size):
        return self.declared_input_size is None or TensorSize(*size).count == self.declared_input_size.count

    def _build(self, input_size):
        self._initialize(input_size.count)
        return TensorSize(1, self.units, 1)

    def _initialize(self, count):
        if self.input_count == count:
            return False
        self.params['weight'] = initialize((self.units, count), count, self.initializer, self.rng)
        if self.bias_enabled:
            self.params['bias'] = np.zeros(self.units)
        self.zero_gradients()
        if self.optimizer is not None:
            self.optimizer.forget(self)
        return True

    def replace_inputs(self, count):
        """
        Rebuild the weights for a new input count.

        Returns:
            True if the weights were rebuilt, False if the count was unchanged
        """
        if self.rng is None:
            self.rng = np.random.default_rng()
        replaced = self._initialize(count)
        self.input_size = TensorSize(1, count, 1)
        self.output_size = TensorSize(1, self.units, 1)
        self.built = True
        return replaced

    def feed(self, inputs, training=True):
        self.training = training
        x_tensor = Tensor(inputs)
        x = x_tensor.value.ravel()
        if not self.built:
            self.replace_inputs(x.size)

        if x.size != self.input_count:
            raise ShapeMismatchError(f"{self!r} expects {self.input_count} inputs, got {x.size}",
                                     expected=self.input_count, actual=x.size)

        z = self.params['weight'] @ x
        if self.bias_enabled:
            z = z + self.params['bias']

        self.cache['x'] = x
        self.cache['x_shape'] = x_tensor.value.shape
        self.cache['z'] = z

        return Tensor(self.activation.forward(z))

    def calculate_gradients(self, deltas):
        """
        dL/dW = outer(delta, x)
        dL/db = delta
        dL/dx = W.T @ delta
        """
        z = self.cache['z']
        delta = Tensor(deltas).value.ravel() * self.activation.derivative(z)

        self._accumulate('weight', np.outer(delta, self.cache['x']))
        if self.bias_enabled:
            self._accumulate('bias', delta)

        grad_input = self.params['weight'].T @ delta
        return Tensor(grad_input.reshape(self.cache['x_shape']))

    def __repr__(self):
        return f"Dense({self.input_count}, {self.units}, activation={self.activation!r})"


class Normalization(Lobe):
    """
    Batch normalization lobe.

    Normalizes all incoming activations of a sample with a BatchNormalizer.
    gamma and beta are exposed as params, so the network's optimizer updates
    them like any other weight.

    Args:
        gamma: Initial scale (default: 1)
        beta: Initial shift (default: 0)
        momentum: Moving-average momentum (default: 0.9)
        epsilon: Variance smoothing term (default: 5e-5)
    """

    def __init__(self, gamma=1.0, beta=0.0, momentum=0.9, epsilon=5e-5, input_size=None):
        super().__init__(input_size)
        self.normalizer = BatchNormalizer(gamma=gamma, beta=beta, momentum=momentum, epsilon=epsilon)
        self.params['gamma'] = np.array(self.normalizer.gamma)
        self.params['beta'] = np.array(self.normalizer.beta)
        self.zero_gradients()

    def feed(self, inputs, training=True):
        self.training = training
        self.normalizer.gamma = float(self.params['gamma'])
        self.normalizer.beta = float(self.params['beta'])
        return Tensor(self.normalizer.normalize(Tensor(inputs).value, training=training))

    def calculate_gradients(self, deltas):
        self.normalizer.zero_gradients()
        dx = self.normalizer.backward(Tensor(deltas).value)
        self._accumulate('gamma', np.array(self.normalizer.gamma_gradient))
        self._accumulate('beta', np.array(self.normalizer.beta_gradient))
        return Tensor(dx)

    def clear(self):
        super().clear()
        self.normalizer.clear()

    def __repr__(self):
        return f"Normalization(gamma={float(self.params['gamma']):.4f}, beta={float(self.params['beta']):.4f})"
