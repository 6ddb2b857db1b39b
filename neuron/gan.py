"""
Adversarial Training
====================

A GAN owns a generator and a discriminator Network and trains them in
alternating phases:

- even steps: the discriminator sees a batch of real samples, then a batch
  of freshly generated fakes, and is updated after every sample; its
  weights are clamped into `weight_constraints` after each update
- odd steps: the generator produces one sample at a time, the discriminator
  scores it, and the discriminator's input deltas are backpropagated into
  the generator; the discriminator's own weights are left untouched

Every 5 steps an optional `validate_generator(sample)` hook may stop the run.

Labels: real = 0, fake = 1 (drawn from [1 - noise_factor, 1] when the noise
factor is below 1).
"""

import enum
import logging

import numpy as np

from .data import TrainingData, batched, shuffled
from .errors import EmptyInputError, MissingComponentError
from .tensor import Tensor

logger = logging.getLogger(__name__)

REAL_LABEL = 0.0
FAKE_LABEL = 1.0
VALIDATION_INTERVAL = 5


class GANType(enum.Enum):
    GENERATOR = 'generator'
    DISCRIMINATOR = 'discriminator'


class GANTrainingType(enum.Enum):
    REAL = 'real'
    FAKE = 'fake'


class GANLossFunction(enum.Enum):
    """Loss from the session's average critic scores."""

    WASSERSTEIN = 'wasserstein'

    def loss(self, network_type, real, fake):
        if network_type is GANType.DISCRIMINATOR:
            return real - fake
        return fake


class GAN:
    """
    Generator/discriminator pair with a Wasserstein-style training loop.

    Args:
        generator: Generator Network (compiled on assignment)
        discriminator: Discriminator Network (compiled on assignment)
        epochs: Number of training steps
        batch_size: Samples per discriminator batch and per generator phase
        noise: Callable returning one generator input; defaults to uniform
            [0, 1) noise sized to the generator input
        validate_generator: Callable(sample) -> bool, True stops training
        discriminator_noise_factor: Width of the fake-label noise interval
        loss_function: GANLossFunction
        weight_constraints: (low, high) range for discriminator weights
        seed: Seed for shuffling, label noise and default noise
    """

    def __init__(self, generator=None, discriminator=None, epochs=100, batch_size=16,
                 noise=None, validate_generator=None, discriminator_noise_factor=0.1,
                 loss_function=GANLossFunction.WASSERSTEIN, weight_constraints=(-0.01, 0.01),
                 seed=None):
        self.generator = None
        self.discriminator = None
        self.epochs = epochs
        self.batch_size = batch_size
        self.discriminator_noise_factor = discriminator_noise_factor
        self.loss_function = loss_function
        self.weight_constraints = weight_constraints
        self.rng = np.random.default_rng(seed)

        self.noise = noise if noise is not None else self._uniform_noise
        self.validate_generator = validate_generator

        self.average_critic_real_score = 0.0
        self.average_critic_fake_score = 0.0
        self._critic_scores = {GANTrainingType.REAL: [], GANTrainingType.FAKE: []}

        if generator is not None:
            self.add_generator(generator)
        if discriminator is not None:
            self.add_discriminator(discriminator)

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    def add_generator(self, generator):
        """Take ownership of the generator and compile it."""
        self.generator = generator
        generator.compile()

    def add_discriminator(self, discriminator):
        """Take ownership of the discriminator and compile it."""
        self.discriminator = discriminator
        discriminator.compile()

    def _require_components(self):
        if self.generator is None or self.discriminator is None:
            raise MissingComponentError("GAN needs both a generator and a discriminator")

    def _uniform_noise(self):
        size = self.generator.input_size
        return self.rng.uniform(0.0, 1.0, size=size.shape)

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def generate(self):
        """Feed fresh noise through the generator."""
        if self.generator is None:
            raise MissingComponentError("GAN has no generator")
        return self.generator.feed(Tensor(self.noise()), training=True)

    def discriminate(self, sample):
        """Critic score(s) for one sample."""
        if self.discriminator is None:
            raise MissingComponentError("GAN has no discriminator")
        return self.discriminator.feed(sample, training=True)

    def fake_label(self):
        """
        Target recorded on generated samples.

        The critic is driven by the Wasserstein override loss, so this label
        only documents the sample as fake and never reaches the deltas.
        """
        if self.discriminator_noise_factor < 1.0:
            factor = min(1.0, max(0.0, self.discriminator_noise_factor))
            return self.rng.uniform(FAKE_LABEL - factor, FAKE_LABEL)
        return FAKE_LABEL

    def fake_batch(self, count):
        return [TrainingData(self.generate(), [self.fake_label()]) for _ in range(count)]

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, data, single_step=False):
        """
        Run the alternating training loop.

        Args:
            data: Sequence of real TrainingData
            single_step: Run one step instead of `epochs`

        Returns:
            True if validate_generator stopped training early
        """
        self._require_components()
        if len(data) == 0:
            raise EmptyInputError("GAN training needs real samples")

        real_batches = batched(shuffled(data, self.rng), self.batch_size)
        epochs = 1 if single_step else self.epochs

        logger.info("GAN training started: %d steps", epochs)

        for i in range(epochs):
            if self._check_generator_validation(i):
                logger.info("GAN training stopped by validation at step %d", i)
                return True

            if i % 2 == 0:
                real_batch = real_batches[self.rng.integers(len(real_batches))]
                self.train_discriminator(real_batch, GANTrainingType.REAL)
                self.train_discriminator(self.fake_batch(self.batch_size), GANTrainingType.FAKE)
            else:
                self.train_generator()
                self.reset_session()

        logger.info("GAN training complete")
        return False

    def _check_generator_validation(self, step):
        if self.validate_generator is None or step % VALIDATION_INTERVAL != 0:
            return False
        return bool(self.validate_generator(self.generate()))

    def _record_critic_score(self, training_type, output):
        scores = self._critic_scores[training_type]
        scores.append(float(Tensor(output).flatten()[0]))
        average = float(np.mean(scores))
        if training_type is GANTrainingType.REAL:
            self.average_critic_real_score = average
        else:
            self.average_critic_fake_score = average

    def reset_session(self):
        """Forget the running critic averages."""
        self.average_critic_real_score = 0.0
        self.average_critic_fake_score = 0.0
        for scores in self._critic_scores.values():
            scores.clear()

    def train_discriminator(self, samples, training_type):
        """Per-sample discriminator update followed by weight clipping."""
        self._require_components()
        dis = self.discriminator

        for sample in samples:
            output = self.discriminate(sample.data)
            self._record_critic_score(training_type, output)

            loss = self.loss_function.loss(GANType.DISCRIMINATOR,
                                           self.average_critic_real_score,
                                           self.average_critic_fake_score)
            logger.debug("Discriminator loss: %.6f", loss)

            dis.zero_gradients()
            # override_loss fills every delta; the (noisy) label is not used
            dis.set_output_deltas(sample.label, override_loss=loss)
            dis.backpropagate()
            dis.adjust_weights(batch_size=1, constraints=self.weight_constraints)
            dis.optimizer.step()

    def train_generator(self):
        """
        One generator phase of `batch_size` samples.

        The discriminator only supplies deltas; its gradients are discarded.
        """
        self._require_components()
        dis, gen = self.discriminator, self.generator

        for _ in range(self.batch_size):
            gen.zero_gradients()
            sample = self.generate()
            output = self.discriminate(sample)
            self._record_critic_score(GANTrainingType.FAKE, output)

            loss = self.loss_function.loss(GANType.GENERATOR,
                                           self.average_critic_real_score,
                                           self.average_critic_fake_score)
            logger.debug("Generator loss: %.6f", loss)

            dis.set_output_deltas([REAL_LABEL], override_loss=loss)
            sample_deltas = dis.backpropagate()
            dis.zero_gradients()

            gen.backpropagate(sample_deltas)
            gen.adjust_weights(batch_size=1)
            gen.optimizer.step()
