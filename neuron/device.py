"""
Compute Devices
===============

A device performs the one numeric primitive the convolution engine needs:
a strided, padded 2D cross-correlation of a signal with a filter.

    out[r, c] = sum_{i, j} signal[r * sr + i, c * sc + j] * filter[i, j]

Lobes hold a device and never run the sliding window themselves, so a
different kernel (BLAS, GPU, ...) can be swapped in without touching them.
"""

import numpy as np

from .convolution import as_pair, check_padding, conv_output_length, same_padding, zero_pad
from .errors import ShapeMismatchError


class Device:
    """Base class for compute devices."""

    name = 'device'

    def correlate2d(self, signal, filter, stride=(1, 1), padding='valid',
                    filter_size=None, input_size=None, output_size=None):
        """
        Correlate a 2D signal with a 2D filter.

        Args:
            signal: 2D array (rows, columns)
            filter: 2D array (filter_rows, filter_columns)
            stride: int or (rows, columns)
            padding: 'valid' or 'same'
            filter_size: Expected (rows, columns) of the filter, checked if given
            input_size: Expected (rows, columns) of the signal, checked if given
            output_size: Expected (rows, columns) of the result, checked if given

        Returns:
            2D array with the correlation result
        """
        signal = np.asarray(signal, dtype=np.float64)
        filter = np.asarray(filter, dtype=np.float64)
        check_padding(padding)
        stride = as_pair(stride)

        if filter_size is not None and tuple(filter.shape) != as_pair(filter_size):
            raise ShapeMismatchError("filter does not match filter_size",
                                     expected=as_pair(filter_size), actual=filter.shape)
        if input_size is not None and tuple(signal.shape) != as_pair(input_size):
            raise ShapeMismatchError("signal does not match input_size",
                                     expected=as_pair(input_size), actual=signal.shape)

        result = self._correlate(signal, filter, stride, padding)

        if output_size is not None and result.shape != as_pair(output_size):
            raise ShapeMismatchError("correlation result does not match output_size",
                                     expected=as_pair(output_size), actual=result.shape)
        return result

    def _correlate(self, signal, filter, stride, padding):
        raise NotImplementedError

    def __repr__(self):
        return f"{self.__class__.__name__}()"


class CPUDevice(Device):
    """
    NumPy device.

    Builds a strided view of every window (no copy) and contracts it with the
    filter in a single tensordot call.
    """

    name = 'cpu'

    def _correlate(self, signal, filter, stride, padding):
        fr, fc = filter.shape
        sr, sc = stride

        if padding == 'same':
            top, bottom = same_padding(signal.shape[0], fr, sr)
            left, right = same_padding(signal.shape[1], fc, sc)
            signal = zero_pad(signal, top, bottom, left, right)

        signal = np.ascontiguousarray(signal)
        rows, columns = signal.shape
        out_rows = conv_output_length(rows, fr, sr, 'valid')
        out_columns = conv_output_length(columns, fc, sc, 'valid')
        if out_rows <= 0 or out_columns <= 0:
            raise ShapeMismatchError(
                f"filter {filter.shape} does not fit signal {signal.shape}",
                expected=filter.shape, actual=signal.shape)

        # Window view: (out_rows, out_columns, fr, fc)
        shape = (out_rows, out_columns, fr, fc)
        strides = (
            signal.strides[0] * sr,  # output row (strided)
            signal.strides[1] * sc,  # output column (strided)
            signal.strides[0],       # filter row
            signal.strides[1],       # filter column
        )
        windows = np.lib.stride_tricks.as_strided(signal, shape=shape, strides=strides, writeable=False)

        return np.tensordot(windows, filter, axes=([2, 3], [0, 1]))


DEVICES = {
    'cpu': CPUDevice,
}


def get_device(name=None):
    """
    Get a device by name.

    Args:
        name: 'cpu', a Device instance, or None for the default CPU device
    """
    if isinstance(name, Device):
        return name
    if name is None:
        return CPUDevice()

    name_lower = name.lower()
    if name_lower not in DEVICES:
        raise ValueError(f"Unknown device '{name}'. Available: {list(DEVICES.keys())}")
    return DEVICES[name_lower]()
