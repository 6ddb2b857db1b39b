"""
Tensor
======

A small shape-aware wrapper around a NumPy array.

Every tensor is stored as a 3D array laid out as (depth, rows, columns),
which is the layout convolution lobes work in. Vectors are promoted to
(1, 1, n) and matrices to (1, rows, columns).

Axis numbering follows TensorSize order, not storage order:
    axis 0 -> rows
    axis 1 -> columns
    axis 2 -> depth
    axis -1 -> every element (result is a single scalar)

Reductions keep every dimension except the reduced one, which collapses to 1.
"""

from collections import namedtuple

import numpy as np


class TensorSize(namedtuple('TensorSize', ['rows', 'columns', 'depth'])):
    """Shape of one sample: (rows, columns, depth)."""

    __slots__ = ()

    @classmethod
    def from_shape(cls, shape):
        """Build a size from a (depth, rows, columns) storage shape."""
        depth, rows, columns = shape
        return cls(rows, columns, depth)

    @property
    def shape(self):
        """Storage shape (depth, rows, columns)."""
        return (self.depth, self.rows, self.columns)

    @property
    def count(self):
        return self.rows * self.columns * self.depth


# TensorSize axis -> storage axis
_STORAGE_AXIS = {0: 1, 1: 2, 2: 0}


class Tensor:
    """
    N-dimensional numeric buffer with axis reductions.

    Args:
        value: Nested list, scalar, ndarray or another Tensor
        size: Optional TensorSize to reshape the value into

    Example:
        >>> t = Tensor([[[1, 1, 1], [2, 2, 2]], [[5, 3, 5], [5, 3, 5]]])
        >>> t.size
        TensorSize(rows=2, columns=3, depth=2)
        >>> t.sum(axis=-1).item()
        35.0
    """

    def __init__(self, value=None, size=None):
        if isinstance(value, Tensor):
            array = value.value.copy()
        elif value is None:
            array = np.zeros((0, 0, 0))
        else:
            array = np.array(value, dtype=np.float64)

        if size is not None:
            array = array.reshape(TensorSize(*size).shape)
        elif array.ndim == 0:
            array = array.reshape(1, 1, 1)
        elif array.ndim == 1:
            array = array.reshape(1, 1, -1)
        elif array.ndim == 2:
            array = array[np.newaxis, :, :]
        elif array.ndim != 3:
            raise ValueError(f"Tensor supports at most 3 dimensions, got {array.ndim}")

        self.value = array

    @classmethod
    def zeros(cls, size):
        return cls(np.zeros(TensorSize(*size).shape))

    @property
    def size(self):
        return TensorSize.from_shape(self.value.shape)

    @property
    def shape(self):
        """Storage shape (depth, rows, columns)."""
        return self.value.shape

    @property
    def is_empty(self):
        return self.value.size == 0

    def copy(self):
        return Tensor(self.value.copy())

    def flatten(self):
        """Values as a 1D array in (depth, rows, columns) order."""
        return self.value.ravel().copy()

    def reshaped(self, size):
        return Tensor(self.value.reshape(TensorSize(*size).shape))

    def item(self):
        if self.value.size != 1:
            raise ValueError(f"item() needs a single element, tensor has {self.value.size}")
        return float(self.value.reshape(-1)[0])

    # ------------------------------------------------------------------
    # Axis reductions
    # ------------------------------------------------------------------

    def _reduce(self, ufunc, axis):
        if axis == -1:
            return Tensor(ufunc.reduce(self.value, axis=None))
        if axis not in _STORAGE_AXIS:
            raise ValueError(f"axis must be -1, 0, 1 or 2, got {axis}")
        return Tensor(ufunc.reduce(self.value, axis=_STORAGE_AXIS[axis], keepdims=True))

    def sum(self, axis=-1):
        return self._reduce(np.add, axis)

    def subtract(self, axis=-1):
        """
        Fold the reduced axis with subtraction: first slice minus the rest.

        Over all axes the fold starts from zero, i.e. the negated total.
        """
        if axis == -1:
            return Tensor(-np.sum(self.value))
        return self._reduce(np.subtract, axis)

    def multiply(self, axis=-1):
        return self._reduce(np.multiply, axis)

    def sum_of_squares(self, axis=-1):
        return Tensor(self.value ** 2).sum(axis)

    def norm(self, axis=-1):
        """L2 norm of every reduced slice."""
        return Tensor(np.sqrt(self.sum_of_squares(axis).value))

    # ------------------------------------------------------------------
    # Comparison
    # ------------------------------------------------------------------

    def is_value_equal(self, other, tolerance=1e-5):
        """Shape and value equality within an absolute tolerance."""
        other = other if isinstance(other, Tensor) else Tensor(other)
        if self.value.shape != other.value.shape:
            return False
        return bool(np.allclose(self.value, other.value, rtol=0.0, atol=tolerance))

    # ------------------------------------------------------------------
    # Elementwise arithmetic (always returns a new Tensor)
    # ------------------------------------------------------------------

    @staticmethod
    def _operand(other):
        return other.value if isinstance(other, Tensor) else other

    def __add__(self, other):
        return Tensor(self.value + self._operand(other))

    def __radd__(self, other):
        return Tensor(self._operand(other) + self.value)

    def __sub__(self, other):
        return Tensor(self.value - self._operand(other))

    def __rsub__(self, other):
        return Tensor(self._operand(other) - self.value)

    def __mul__(self, other):
        return Tensor(self.value * self._operand(other))

    def __rmul__(self, other):
        return Tensor(self._operand(other) * self.value)

    def __truediv__(self, other):
        return Tensor(self.value / self._operand(other))

    def __neg__(self):
        return Tensor(-self.value)

    def __array__(self, dtype=None, copy=None):
        if dtype is None:
            return self.value
        return self.value.astype(dtype)

    def __len__(self):
        return self.value.shape[0]

    def __repr__(self):
        return f"Tensor(size={tuple(self.size)})"
