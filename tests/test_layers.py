"""
Tests for Lobes
===============

Unit tests for convolution, transposed convolution, pooling, reshaping,
dense and normalization lobes.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from neuron.errors import ShapeMismatchError
from neuron.layers import (Convolution, Dense, Flatten, MaxPool, Normalization, Reshape,
                           TransposedConvolution, initialize)
from neuron.normalization import BatchNormalizer
from neuron.optimizers import SGD
from neuron.tensor import Tensor, TensorSize


class TestConvolution:
    """Tests for the Convolution lobe."""

    @pytest.mark.parametrize("filter_size", [1, 3, 5])
    @pytest.mark.parametrize("stride", [1, 2, 3])
    @pytest.mark.parametrize("padding", ['same', 'valid'])
    def test_output_size(self, filter_size, stride, padding):
        """Output size follows ceil(in / s) for same and (in - f) // s + 1 for valid."""
        rng = np.random.default_rng(0)
        conv = Convolution(4, filter_size=filter_size, stride=stride, padding=padding, rng=rng)
        size = conv.build(TensorSize(11, 9, 2))

        if padding == 'same':
            expected = (int(np.ceil(11 / stride)), int(np.ceil(9 / stride)))
        else:
            expected = ((11 - filter_size) // stride + 1, (9 - filter_size) // stride + 1)

        assert size == TensorSize(expected[0], expected[1], 4)

        out = conv.feed(Tensor(rng.standard_normal((2, 11, 9))))
        assert out.size == size

    def test_feed_builds_lazily(self):
        conv = Convolution(3, filter_size=3, padding='same', rng=np.random.default_rng(0))
        out = conv.feed(np.zeros((2, 6, 6)))

        assert conv.built
        assert conv.filters.shape == (3, 2, 3, 3)
        assert out.shape == (3, 6, 6)

    def test_depth_mismatch(self):
        conv = Convolution(3, filter_size=3, rng=np.random.default_rng(0))
        conv.build(TensorSize(6, 6, 2))

        with pytest.raises(ShapeMismatchError):
            conv.feed(np.zeros((3, 6, 6)))

    def test_filter_does_not_fit(self):
        conv = Convolution(3, filter_size=5, padding='valid', rng=np.random.default_rng(0))

        with pytest.raises(ShapeMismatchError):
            conv.build(TensorSize(3, 3, 1))

    def test_declared_input_size(self):
        conv = Convolution(3, input_size=(8, 8, 1), rng=np.random.default_rng(0))

        with pytest.raises(ShapeMismatchError):
            conv.build(TensorSize(8, 8, 2))

    def test_rebuild_keeps_filters(self):
        """A new spatial size keeps the learned filters."""
        conv = Convolution(3, filter_size=3, padding='same', rng=np.random.default_rng(0))
        conv.build(TensorSize(8, 8, 2))
        filters = conv.filters.copy()

        size = conv.build(TensorSize(12, 10, 2))

        assert size == TensorSize(12, 10, 3)
        np.testing.assert_array_equal(conv.filters, filters)

    def test_bias_disabled(self):
        conv = Convolution(2, filter_size=3, bias=False, rng=np.random.default_rng(0))
        conv.build(TensorSize(5, 5, 1))

        assert 'bias' not in conv.params
        assert conv.parameter_count == 2 * 9

    def test_backward_shapes(self):
        rng = np.random.default_rng(0)
        conv = Convolution(4, filter_size=3, stride=2, padding='same', rng=rng)
        x = rng.standard_normal((3, 9, 9))

        out = conv.feed(x)
        grad_input = conv.calculate_gradients(np.ones(out.shape))

        assert grad_input.shape == x.shape
        assert conv.grads['weight'].shape == conv.params['weight'].shape
        assert conv.grads['bias'].shape == (4,)

    def test_gradients_accumulate_until_zeroed(self):
        rng = np.random.default_rng(0)
        conv = Convolution(2, filter_size=3, activation='linear', rng=rng)
        x = rng.standard_normal((1, 5, 5))

        out = conv.feed(x)
        conv.calculate_gradients(np.ones(out.shape))
        once = conv.grads['weight'].copy()
        conv.calculate_gradients(np.ones(out.shape))

        np.testing.assert_allclose(conv.grads['weight'], 2 * once)

        conv.zero_gradients()
        assert np.all(conv.grads['weight'] == 0)

    def test_adjust_weights_averages_batch(self):
        rng = np.random.default_rng(0)
        conv = Convolution(2, filter_size=3, activation='linear', rng=rng)
        conv.optimizer = SGD(learning_rate=1.0, momentum=0.0)
        x = rng.standard_normal((1, 5, 5))

        out = conv.feed(x)
        conv.calculate_gradients(np.ones(out.shape))
        conv.calculate_gradients(np.ones(out.shape))
        before = conv.filters.copy()
        per_sample = conv.grads['weight'] / 2

        conv.adjust_weights(batch_size=2)

        np.testing.assert_allclose(conv.filters, before - per_sample)

    def test_untrainable_keeps_weights(self):
        rng = np.random.default_rng(0)
        conv = Convolution(2, filter_size=3, trainable=False, rng=rng)
        out = conv.feed(rng.standard_normal((1, 5, 5)))
        before = conv.filters.copy()

        conv.calculate_gradients(np.ones(out.shape))
        conv.adjust_weights()

        np.testing.assert_array_equal(conv.filters, before)

    def test_clip_weights(self):
        conv = Convolution(2, filter_size=3, rng=np.random.default_rng(0))
        conv.build(TensorSize(5, 5, 1))
        conv.params['bias'] = np.array([5.0, -5.0])

        conv.clip_weights(-0.01, 0.01)

        assert np.all(np.abs(conv.filters) <= 0.01)
        np.testing.assert_allclose(conv.params['bias'], [0.01, -0.01])


class TestTransposedConvolution:
    """Tests for the TransposedConvolution lobe."""

    @pytest.mark.parametrize("filter_size", [1, 3, 5])
    @pytest.mark.parametrize("stride", [1, 2, 3])
    def test_output_size(self, filter_size, stride):
        rng = np.random.default_rng(0)

        valid = TransposedConvolution(2, filter_size=filter_size, stride=stride, padding='valid', rng=rng)
        same = TransposedConvolution(2, filter_size=filter_size, stride=stride, padding='same', rng=rng)

        assert valid.build(TensorSize(4, 5, 3)) == TensorSize(3 * stride + filter_size, 4 * stride + filter_size, 2)
        assert same.build(TensorSize(4, 5, 3)) == TensorSize(4 * stride, 5 * stride, 2)

        out = same.feed(rng.standard_normal((3, 4, 5)))
        assert out.shape == (2, 4 * stride, 5 * stride)

    def test_default_activation_is_linear(self):
        deconv = TransposedConvolution(1, filter_size=2, stride=2)
        assert deconv.activation.name == 'linear'

    def test_upsamples_single_pixel(self):
        """One input pixel with stride 2 stamps the filter into the output."""
        deconv = TransposedConvolution(1, filter_size=2, stride=2, padding='valid', bias=False)
        deconv.build(TensorSize(2, 2, 1))
        deconv.params['weight'] = np.arange(4, dtype=float).reshape(1, 1, 2, 2)

        x = np.zeros((1, 2, 2))
        x[0, 1, 1] = 1.0
        out = deconv.feed(x).value

        np.testing.assert_allclose(out[0, 2:, 2:], [[0, 1], [2, 3]])
        assert out[0, :2, :].sum() == 0


class TestMaxPool:
    """Tests for the MaxPool lobe."""

    def test_forward(self):
        pool = MaxPool(pool_size=2)
        x = np.array([[[1, 2, 5, 6],
                       [3, 4, 7, 8],
                       [9, 10, 13, 14],
                       [11, 12, 15, 16]]], dtype=float)
        pool.build(TensorSize(4, 4, 1))

        out = pool.feed(x).value

        np.testing.assert_allclose(out, [[[4, 8], [12, 16]]])

    def test_backward_routes_to_max(self):
        pool = MaxPool(pool_size=2)
        x = np.array([[[1, 0, 0, 0],
                       [0, 0, 0, 2],
                       [0, 3, 0, 0],
                       [0, 0, 4, 0]]], dtype=float)
        pool.feed(x)

        grad = pool.calculate_gradients(np.array([[[10, 20], [30, 40]]], dtype=float)).value

        expected = np.zeros((1, 4, 4))
        expected[0, 0, 0] = 10
        expected[0, 1, 3] = 20
        expected[0, 2, 1] = 30
        expected[0, 3, 2] = 40
        np.testing.assert_allclose(grad, expected)

    def test_build_size(self):
        assert MaxPool(pool_size=2).build(TensorSize(7, 6, 3)) == TensorSize(3, 3, 3)
        assert MaxPool(pool_size=3, stride=1).build(TensorSize(5, 5, 1)) == TensorSize(3, 3, 1)

    def test_too_small(self):
        with pytest.raises(ShapeMismatchError):
            MaxPool(pool_size=3).build(TensorSize(2, 2, 1))


class TestFlattenAndReshape:
    """Tests for Flatten and Reshape."""

    def test_flatten_round_trip(self):
        flatten = Flatten()
        x = np.random.default_rng(0).standard_normal((3, 4, 5))

        assert flatten.build(TensorSize(4, 5, 3)) == TensorSize(1, 60, 1)

        out = flatten.feed(x)
        assert out.value.size == 60

        back = flatten.calculate_gradients(out).value
        np.testing.assert_array_equal(back, x)

    def test_reshape(self):
        reshape = Reshape((2, 3, 4))
        assert reshape.build(TensorSize(1, 24, 1)) == TensorSize(2, 3, 4)

        out = reshape.feed(np.arange(24, dtype=float))
        assert out.shape == (4, 2, 3)

        back = reshape.calculate_gradients(out)
        assert back.shape == (1, 1, 24)

    def test_reshape_count_mismatch(self):
        with pytest.raises(ShapeMismatchError):
            Reshape((2, 3, 4)).build(TensorSize(1, 10, 1))


class TestDense:
    """Tests for the Dense lobe."""

    def test_forward(self):
        dense = Dense(2, activation='linear')
        dense.replace_inputs(3)
        dense.params['weight'] = np.array([[1.0, 0.0, 1.0], [0.0, 2.0, 0.0]])
        dense.params['bias'] = np.array([0.5, -0.5])

        out = dense.feed(np.array([1.0, 2.0, 3.0])).value.ravel()

        np.testing.assert_allclose(out, [4.5, 3.5])

    def test_replace_inputs_idempotent(self):
        dense = Dense(4, rng=np.random.default_rng(0))

        assert dense.replace_inputs(6)
        weights = dense.params['weight'].copy()

        assert not dense.replace_inputs(6)
        np.testing.assert_array_equal(dense.params['weight'], weights)

        assert dense.replace_inputs(8)
        assert dense.params['weight'].shape == (4, 8)
        assert dense.input_count == 8

    def test_feed_builds_lazily(self):
        dense = Dense(3, rng=np.random.default_rng(0))
        out = dense.feed(np.ones((2, 2, 2)))

        assert dense.input_count == 8
        assert out.size == TensorSize(1, 3, 1)

    def test_input_count_mismatch(self):
        dense = Dense(3, rng=np.random.default_rng(0))
        dense.replace_inputs(4)

        with pytest.raises(ShapeMismatchError):
            dense.feed(np.ones(5))

    def test_declared_input_count(self):
        dense = Dense(3, input_size=10)

        assert dense.accepts(TensorSize(2, 5, 1))
        with pytest.raises(ShapeMismatchError):
            dense.build(TensorSize(1, 9, 1))

    def test_backward_returns_input_shape(self):
        rng = np.random.default_rng(0)
        dense = Dense(3, rng=rng)
        x = rng.standard_normal((2, 2, 2))

        out = dense.feed(x)
        grad = dense.calculate_gradients(np.ones(out.shape))

        assert grad.shape == x.shape
        assert dense.grads['weight'].shape == (3, 8)

    def test_zeros_initializer(self):
        dense = Dense(3, initializer='zeros')
        dense.replace_inputs(5)
        assert np.all(dense.params['weight'] == 0)

    def test_unknown_initializer(self):
        with pytest.raises(ValueError):
            initialize((2, 2), 2, 'orthogonal', np.random.default_rng(0))


class TestNormalization:
    """Tests for BatchNormalizer and the Normalization lobe."""

    def test_idempotent_on_standardized_input(self):
        """A zero-mean, unit-variance input passes through unchanged."""
        normalizer = BatchNormalizer()
        x = np.array([-1.0, 1.0, -1.0, 1.0])

        out = normalizer.normalize(x)

        np.testing.assert_allclose(out, x, atol=1e-4)

    def test_output_statistics(self):
        normalizer = BatchNormalizer(gamma=2.0, beta=3.0)
        x = np.random.default_rng(0).normal(5.0, 4.0, 100)

        out = normalizer.normalize(x)

        assert abs(np.mean(out) - 3.0) < 1e-8
        assert abs(np.std(out) - 2.0) < 1e-3

    def test_moving_statistics(self):
        normalizer = BatchNormalizer(momentum=0.9)

        normalizer.normalize(np.array([0.0, 4.0]))

        assert normalizer.moving_mean == pytest.approx(0.2)
        assert normalizer.moving_variance == pytest.approx(0.9 * 1.0 + 0.1 * 4.0)

    def test_inference_uses_moving_statistics(self):
        normalizer = BatchNormalizer()
        normalizer.moving_mean = 1.0
        normalizer.moving_variance = 4.0

        out = normalizer.normalize(np.array([3.0]), training=False)

        np.testing.assert_allclose(out, [2.0 / np.sqrt(4.0 + 5e-5)])
        assert normalizer.moving_mean == 1.0

    def test_apply_gradients(self):
        normalizer = BatchNormalizer()
        normalizer.normalize(np.array([0.0, 2.0]))
        normalizer.backward(np.array([1.0, 1.0]))

        assert normalizer.beta_gradient == pytest.approx(2.0)

        normalizer.apply_gradients(learning_rate=0.5, batch_size=2)

        assert normalizer.beta == pytest.approx(-0.5)
        assert normalizer.beta_gradient == 0.0

    def test_clear(self):
        normalizer = BatchNormalizer()
        normalizer.normalize(np.array([0.0, 4.0]))
        normalizer.clear()

        assert normalizer.moving_mean == 0.0
        assert normalizer.moving_variance == 1.0
        assert normalizer.normalized_activations is None

    def test_lobe_exposes_gamma_beta(self):
        lobe = Normalization(gamma=1.5, beta=0.25)

        assert float(lobe.params['gamma']) == 1.5
        assert float(lobe.params['beta']) == 0.25
        assert lobe.build(TensorSize(1, 10, 1)) == TensorSize(1, 10, 1)

    def test_lobe_updates_through_optimizer(self):
        lobe = Normalization()
        lobe.optimizer = SGD(learning_rate=0.1, momentum=0.0)
        x = np.array([0.0, 1.0, 2.0, 3.0])

        lobe.feed(x)
        lobe.calculate_gradients(np.ones(4))
        lobe.adjust_weights()

        # dbeta = sum(ones) = 4
        assert float(lobe.params['beta']) == pytest.approx(-0.4)
        lobe.feed(x)
        assert lobe.normalizer.beta == pytest.approx(-0.4)
