"""
Tests for GAN
=============

Alternating training protocol, weight clipping, label noise and the
validation hook.
"""

import numpy as np
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from neuron.data import TrainingData
from neuron.errors import EmptyInputError, MissingComponentError
from neuron.gan import GAN, GANLossFunction, GANType
from neuron.layers import Convolution, Dense, Flatten, Reshape
from neuron.network import Network


def make_generator(seed=0):
    net = Network(loss='mse', input_size=4, seed=seed)
    net.add(Dense(16, activation='relu'))
    net.add(Dense(36, activation='tanh'))
    net.add(Reshape((6, 6, 1)))
    return net


def make_discriminator(seed=1):
    net = Network(loss='mse', input_size=(6, 6, 1), seed=seed)
    net.add(Convolution(2, filter_size=3, padding='same', activation='leaky_relu'))
    net.add(Flatten())
    net.add(Dense(1, activation='linear'))
    return net


def real_data(count, seed=2):
    rng = np.random.default_rng(seed)
    samples = []
    for _ in range(count):
        image = np.zeros((1, 6, 6))
        image[0, rng.integers(6), :] = 1.0
        samples.append(TrainingData(image, [0.0]))
    return samples


def discriminator_weights(gan):
    return [lobe.params[name].copy()
            for lobe in gan.discriminator.lobes
            for name in ('weight', 'bias') if name in lobe.params]


class TestGANSetup:
    """Component ownership and error handling."""

    def test_add_compiles(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator())

        assert gan.generator.compiled
        assert gan.discriminator.compiled

    def test_missing_components(self):
        with pytest.raises(MissingComponentError):
            GAN().train(real_data(4))

        gan = GAN(generator=make_generator())
        with pytest.raises(MissingComponentError):
            gan.train(real_data(4))
        with pytest.raises(MissingComponentError):
            gan.discriminate(np.zeros((1, 6, 6)))

    def test_empty_data(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator())

        with pytest.raises(EmptyInputError):
            gan.train([])

    def test_generate_and_discriminate(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(), seed=0)

        sample = gan.generate()
        score = gan.discriminate(sample)

        assert sample.shape == (1, 6, 6)
        assert score.value.size == 1


class TestGANLoss:
    """Wasserstein loss from the critic averages."""

    def test_wasserstein(self):
        loss = GANLossFunction.WASSERSTEIN

        assert loss.loss(GANType.DISCRIMINATOR, 1.0, 0.4) == pytest.approx(0.6)
        assert loss.loss(GANType.GENERATOR, 1.0, 0.4) == pytest.approx(0.4)


class TestGANLabels:
    """Fake label noise."""

    def test_fake_label_noise_range(self):
        gan = GAN(discriminator_noise_factor=0.1, seed=0)
        labels = [gan.fake_label() for _ in range(200)]

        assert min(labels) >= 0.9
        assert max(labels) <= 1.0
        assert len(set(labels)) > 1

    def test_fake_label_without_noise(self):
        gan = GAN(discriminator_noise_factor=1.0, seed=0)

        assert gan.fake_label() == 1.0

    def test_fake_label_does_not_reach_critic_deltas(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  discriminator_noise_factor=0.5, seed=0)
        first, second = gan.fake_batch(2)
        assert first.label[0] != second.label[0]

        deltas = [gan.discriminator.set_output_deltas(sample.label, override_loss=0.3).value.copy()
                  for sample in (first, second)]

        np.testing.assert_array_equal(deltas[0], deltas[1])
        np.testing.assert_allclose(deltas[0].ravel(), [0.3])


class TestGANTraining:
    """The alternating training loop."""

    def test_clipping_invariant(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  epochs=4, batch_size=4, weight_constraints=(-0.01, 0.01), seed=0)

        stopped = gan.train(real_data(8))

        assert stopped is False
        for weights in discriminator_weights(gan):
            assert np.all(weights >= -0.01)
            assert np.all(weights <= 0.01)

    def test_single_step_trains_discriminator_only(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  epochs=50, batch_size=2, seed=0)
        gen_before = [lobe.params['weight'].copy() for lobe in gan.generator.lobes if 'weight' in lobe.params]
        dis_before = discriminator_weights(gan)

        assert gan.train(real_data(4), single_step=True) is False

        gen_after = [lobe.params['weight'] for lobe in gan.generator.lobes if 'weight' in lobe.params]
        for before, after in zip(gen_before, gen_after):
            np.testing.assert_array_equal(before, after)
        assert any(not np.array_equal(b, a) for b, a in zip(dis_before, discriminator_weights(gan)))
        assert gan.discriminator.optimizer.t == 2 * 2

    def test_generator_phase_leaves_discriminator(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  batch_size=3, seed=0)
        dis_before = discriminator_weights(gan)
        gen_before = gan.generator.lobes[0].params['weight'].copy()

        gan.train_generator()

        for before, after in zip(dis_before, discriminator_weights(gan)):
            np.testing.assert_array_equal(before, after)
        assert not np.array_equal(gen_before, gan.generator.lobes[0].params['weight'])
        assert gan.generator.optimizer.t == 3
        for lobe in gan.discriminator.lobes:
            for grad in lobe.grads.values():
                assert np.all(grad == 0)

    def test_critic_averages_reset_after_generator_step(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  epochs=2, batch_size=2, seed=0)

        gan.train(real_data(4))

        assert gan.average_critic_real_score == 0.0
        assert gan.average_critic_fake_score == 0.0

    def test_critic_averages_after_discriminator_step(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  batch_size=2, seed=0)

        gan.train(real_data(4), single_step=True)

        assert gan.average_critic_real_score != 0.0
        assert gan.average_critic_fake_score != 0.0


class TestGANValidation:
    """validate_generator can stop training."""

    def test_early_stop(self):
        seen = []

        def validate(sample):
            seen.append(sample)
            return True

        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  epochs=10, batch_size=2, validate_generator=validate, seed=0)
        dis_before = discriminator_weights(gan)

        assert gan.train(real_data(4)) is True
        assert len(seen) == 1
        assert seen[0].shape == (1, 6, 6)
        for before, after in zip(dis_before, discriminator_weights(gan)):
            np.testing.assert_array_equal(before, after)

    def test_validation_interval(self):
        calls = []

        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  epochs=11, batch_size=1, validate_generator=lambda sample: calls.append(1) and False,
                  seed=0)

        assert gan.train(real_data(2)) is False
        # steps 0, 5 and 10
        assert len(calls) == 3

    def test_custom_noise(self):
        gan = GAN(generator=make_generator(), discriminator=make_discriminator(),
                  noise=lambda: np.full(4, 0.5), seed=0)

        first = gan.generate().value
        second = gan.generate().value

        np.testing.assert_array_equal(first, second)
