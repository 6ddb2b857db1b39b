"""
Convolution Engine
==================

Size arithmetic, padding helpers and the forward/backward kernels shared by
the Convolution and TransposedConvolution lobes.

All kernels work on one sample at a time:
    inputs:  (in_channels, rows, columns)
    filters: (filter_count, in_channels, filter_rows, filter_columns)
    deltas:  (filter_count, out_rows, out_columns)

Every 2D correlation is delegated to a Device, so the kernels only decide
*what* to correlate, never *how*.

Gradients (derived for cross-correlation, y = x * w with stride s):
    dL/dw[f, i] = x_padded[i] correlated with dilate(delta[f], s)
    dL/dx[i]    = sum_f full(dilate(delta[f], s)) correlated with flip180(w[f, i])
    dL/db[f]    = sum(delta[f])

The transposed convolution is the adjoint of the strided convolution, so its
forward pass is the input-gradient formula above and its backward pass is
the convolution forward pass.
"""

import numpy as np

PADDING_MODES = ('valid', 'same')


def as_pair(value):
    """Turn an int or a 2-sequence into a (rows, columns) tuple."""
    if isinstance(value, int):
        return (value, value)
    rows, columns = value[:2]
    return (int(rows), int(columns))


def check_padding(padding):
    if padding not in PADDING_MODES:
        raise ValueError(f"Unknown padding '{padding}'. Available: {', '.join(PADDING_MODES)}")
    return padding


# ============================================================================
# Output sizes
# ============================================================================

def conv_output_length(length, filter_length, stride, padding):
    """
    Output length of a strided correlation along one axis.

    valid: floor((length - filter) / stride) + 1
    same:  ceil(length / stride)
    """
    if check_padding(padding) == 'same':
        return -(-length // stride)
    return (length - filter_length) // stride + 1


def transposed_output_length(length, filter_length, stride, padding):
    """
    Output length of a transposed correlation along one axis.

    valid: (length - 1) * stride + filter
    same:  length * stride
    """
    if check_padding(padding) == 'same':
        return length * stride
    return (length - 1) * stride + filter_length


def same_padding(length, filter_length, stride):
    """
    Zero padding (before, after) that gives a 'same' correlation.

    The smaller half goes before the signal.
    """
    out = -(-length // stride)
    total = max((out - 1) * stride + filter_length - length, 0)
    before = total // 2
    return before, total - before


def transposed_offset(filter_length, stride, padding):
    """Offset of the kept window inside the full transposed output."""
    if padding == 'same':
        return max(filter_length - stride, 0) // 2
    return 0


# ============================================================================
# Signal helpers
# ============================================================================

def zero_pad(signal, top, bottom, left, right):
    """Zero pad the last two axes of a 2D or 3D array."""
    if top == bottom == left == right == 0:
        return signal
    widths = [(0, 0)] * (signal.ndim - 2) + [(top, bottom), (left, right)]
    return np.pad(signal, widths, mode='constant')


def stride_pad(signal, stride):
    """
    Insert (stride - 1) zeros between neighbouring samples of the last two axes.

    A (r, c) signal becomes ((r - 1) * sr + 1, (c - 1) * sc + 1).
    """
    sr, sc = as_pair(stride)
    if sr == 1 and sc == 1:
        return signal
    rows, columns = signal.shape[-2:]
    shape = signal.shape[:-2] + ((rows - 1) * sr + 1, (columns - 1) * sc + 1)
    dilated = np.zeros(shape, dtype=signal.dtype)
    dilated[..., ::sr, ::sc] = signal
    return dilated


def flip180(kernel):
    """Rotate the last two axes by 180 degrees."""
    return kernel[..., ::-1, ::-1]


def window(signal, top, left, rows, columns):
    """
    Read a (rows, columns) window of the last two axes starting at (top, left).

    Positions outside the signal read as zero.
    """
    out = np.zeros(signal.shape[:-2] + (rows, columns), dtype=signal.dtype)
    src_rows = min(rows, signal.shape[-2] - top)
    src_columns = min(columns, signal.shape[-1] - left)
    if src_rows > 0 and src_columns > 0:
        out[..., :src_rows, :src_columns] = signal[..., top:top + src_rows, left:left + src_columns]
    return out


def embed(signal, top, left, rows, columns):
    """Adjoint of window(): place signal into a zero (rows, columns) buffer at (top, left)."""
    out = np.zeros(signal.shape[:-2] + (rows, columns), dtype=signal.dtype)
    src_rows = min(signal.shape[-2], rows - top)
    src_columns = min(signal.shape[-1], columns - left)
    if src_rows > 0 and src_columns > 0:
        out[..., top:top + src_rows, left:left + src_columns] = signal[..., :src_rows, :src_columns]
    return out


# ============================================================================
# Convolution
# ============================================================================

def convolve(inputs, filters, bias, stride, padding, device):
    """
    Forward pass of a convolution lobe.

    Returns:
        Feature maps, shape (filter_count, out_rows, out_columns)
    """
    filter_count, in_channels, fr, fc = filters.shape
    sr, sc = as_pair(stride)
    _, rows, columns = inputs.shape

    out_rows = conv_output_length(rows, fr, sr, padding)
    out_columns = conv_output_length(columns, fc, sc, padding)
    output = np.zeros((filter_count, out_rows, out_columns))

    for f in range(filter_count):
        for i in range(in_channels):
            output[f] += device.correlate2d(inputs[i], filters[f, i], (sr, sc), padding,
                                            output_size=(out_rows, out_columns))

    if bias is not None:
        output += bias.reshape(-1, 1, 1)

    return output


def convolution_gradients(inputs, filters, delta, stride, padding, device):
    """
    Backward pass of a convolution lobe.

    Args:
        inputs: Forward inputs, shape (in_channels, rows, columns)
        filters: Filters used in the forward pass
        delta: dL/d(output), shape (filter_count, out_rows, out_columns)

    Returns:
        (input_gradients, filter_gradients, bias_gradients)
    """
    filter_count, in_channels, fr, fc = filters.shape
    sr, sc = as_pair(stride)
    _, rows, columns = inputs.shape

    if padding == 'same':
        top, bottom = same_padding(rows, fr, sr)
        left, right = same_padding(columns, fc, sc)
    else:
        top = bottom = left = right = 0

    padded = zero_pad(inputs, top, bottom, left, right)
    padded_rows, padded_columns = padded.shape[-2:]
    dilated = stride_pad(delta, (sr, sc))

    filter_gradients = np.zeros_like(filters)
    padded_input_gradients = np.zeros((in_channels, padded_rows, padded_columns))

    for f in range(filter_count):
        # full correlation of the dilated delta with the flipped kernel
        full_delta = zero_pad(dilated[f], fr - 1, fr - 1, fc - 1, fc - 1)
        for i in range(in_channels):
            weight_gradient = device.correlate2d(padded[i], dilated[f], (1, 1), 'valid')
            filter_gradients[f, i] = weight_gradient[:fr, :fc]

            contribution = device.correlate2d(full_delta, flip180(filters[f, i]), (1, 1), 'valid')
            # rows/columns a floor-divided stride never visited keep a zero gradient
            cr, cc = contribution.shape
            padded_input_gradients[i, :cr, :cc] += contribution

    input_gradients = padded_input_gradients[:, top:top + rows, left:left + columns]
    bias_gradients = delta.sum(axis=(1, 2))

    return input_gradients, filter_gradients, bias_gradients


# ============================================================================
# Transposed convolution
# ============================================================================

def transpose_convolve(inputs, filters, bias, stride, padding, device):
    """
    Forward pass of a transposed convolution lobe (learned upsampling).

    The input is stride padded, fully zero padded and correlated with the
    flipped filters; 'same' keeps an (in * stride) window of the result.
    """
    filter_count, in_channels, fr, fc = filters.shape
    sr, sc = as_pair(stride)
    _, rows, columns = inputs.shape

    full_rows = (rows - 1) * sr + fr
    full_columns = (columns - 1) * sc + fc
    upsampled = zero_pad(stride_pad(inputs, (sr, sc)), fr - 1, fr - 1, fc - 1, fc - 1)

    full = np.zeros((filter_count, full_rows, full_columns))
    for f in range(filter_count):
        for i in range(in_channels):
            full[f] += device.correlate2d(upsampled[i], flip180(filters[f, i]), (1, 1), 'valid',
                                          output_size=(full_rows, full_columns))

    output = window(full,
                    transposed_offset(fr, sr, padding),
                    transposed_offset(fc, sc, padding),
                    transposed_output_length(rows, fr, sr, padding),
                    transposed_output_length(columns, fc, sc, padding))

    if bias is not None:
        output += bias.reshape(-1, 1, 1)

    return output


def transposed_convolution_gradients(inputs, filters, delta, stride, padding, device):
    """
    Backward pass of a transposed convolution lobe.

    Returns:
        (input_gradients, filter_gradients, bias_gradients)
    """
    filter_count, in_channels, fr, fc = filters.shape
    sr, sc = as_pair(stride)
    _, rows, columns = inputs.shape

    full_rows = (rows - 1) * sr + fr
    full_columns = (columns - 1) * sc + fc
    full_delta = embed(delta,
                       transposed_offset(fr, sr, padding),
                       transposed_offset(fc, sc, padding),
                       full_rows, full_columns)
    dilated_inputs = stride_pad(inputs, (sr, sc))

    input_gradients = np.zeros(inputs.shape)
    filter_gradients = np.zeros_like(filters)

    for f in range(filter_count):
        for i in range(in_channels):
            input_gradients[i] += device.correlate2d(full_delta[f], filters[f, i], (sr, sc), 'valid',
                                                     output_size=(rows, columns))
            filter_gradients[f, i] = device.correlate2d(full_delta[f], dilated_inputs[i], (1, 1), 'valid',
                                                        output_size=(fr, fc))

    bias_gradients = delta.sum(axis=(1, 2))

    return input_gradients, filter_gradients, bias_gradients
