"""
Network
=======

A Network ("brain") owns an ordered sequence of lobes, a loss function and
an optimizer, and ties them together:

- compile(): size every lobe from the input size, checking the chain
- feed(): forward pass through every lobe
- get_output_deltas() / backpropagate(): backward pass in reverse lobe order
- adjust_weights(): optimizer update of every lobe
- train_on() / train(): batched supervised training

Typical use:
    >>> net = Network(input_size=(28, 28, 1), loss='cross_entropy', seed=0)
    >>> net.add(Convolution(8, filter_size=3, padding='same'))
    >>> net.add(MaxPool())
    >>> net.add(Flatten())
    >>> net.add(Dense(10, activation='softmax'))
    >>> net.compile()
    True
"""

import logging

import numpy as np
from tqdm import tqdm

from .data import DatasetData, batched, shuffled
from .errors import EmptyInputError, NotCompiledError, ShapeMismatchError
from .layers import Dense
from .losses import get_loss
from .optimizers import get_optimizer
from .tensor import Tensor, TensorSize

logger = logging.getLogger(__name__)


def _as_size(size):
    if size is None:
        return None
    if isinstance(size, int):
        return TensorSize(1, size, 1)
    return TensorSize(*size)


class Network:
    """
    Ordered stack of lobes trained by backpropagation.

    Args:
        lobes: Optional initial lobes
        loss: Loss name or LossFunction instance (default: 'cross_entropy')
        optimizer: Optimizer name or instance (default: 'adam')
        learning_rate: Learning rate when the optimizer is given by name
        input_size: TensorSize (rows, columns, depth) of one sample, or an int
            for vector inputs
        seed: Seed for weight initialization and shuffling
    """

    def __init__(self, lobes=None, loss='cross_entropy', optimizer='adam', learning_rate=0.001,
                 input_size=None, seed=None):
        self.lobes = []
        self.loss_function = get_loss(loss)
        if isinstance(optimizer, str):
            self.optimizer = get_optimizer(optimizer, learning_rate=learning_rate)
        else:
            self.optimizer = get_optimizer(optimizer)
        self.input_size = _as_size(input_size)
        self.rng = np.random.default_rng(seed)

        self.compiled = False
        self.output_deltas = None
        self.loss_history = []
        self.validation_history = []

        for lobe in lobes or []:
            self.add(lobe)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def add(self, lobe):
        """Append a lobe. The network must be compiled again afterwards."""
        self.lobes.append(lobe)
        self.compiled = False
        return self

    def compile(self):
        """
        Build every lobe in order and validate the size chain.

        Failures are logged and leave `compiled` False; nothing is raised.

        Returns:
            True if the network is ready to be fed
        """
        self.compiled = False

        if not self.lobes:
            logger.error("Cannot compile a network without lobes")
            return False

        input_size = self.input_size or self.lobes[0].declared_input_size
        if input_size is None:
            logger.error("Cannot compile: no input size given to the network or its first lobe")
            return False

        for lobe in self.lobes:
            lobe.optimizer = self.optimizer
            if lobe.rng is None:
                lobe.rng = self.rng

        try:
            output_size = self._build_chain(input_size)
        except ShapeMismatchError as error:
            logger.error("Compile failed: %s", error)
            return False

        self.input_size = TensorSize(*input_size)
        self.compiled = True
        logger.info("Compiled %d lobes: %s -> %s", len(self.lobes), tuple(self.input_size), tuple(output_size))
        return True

    def _build_chain(self, input_size):
        size = TensorSize(*input_size)
        for lobe in self.lobes:
            size = lobe.build(size)
        return size

    def _rebuild(self, input_size):
        """Rebuild the chain for a new input size, restoring every lobe if it does not fit."""
        lobes = [{key: dict(value) if isinstance(value, dict) else value
                  for key, value in vars(lobe).items()} for lobe in self.lobes]
        optimizer_state = dict(self.optimizer._state)
        try:
            return self._build_chain(input_size)
        except ShapeMismatchError as error:
            logger.error("Rebuild for input %s failed: %s", tuple(input_size), error)
            for lobe, state in zip(self.lobes, lobes):
                vars(lobe).clear()
                vars(lobe).update(state)
            self.optimizer._state = optimizer_state
            raise

    @property
    def output_size(self):
        return self.lobes[-1].output_size if self.lobes else None

    @property
    def input_lobe(self):
        """First Dense lobe: the input layer of the fully connected part."""
        for lobe in self.lobes:
            if isinstance(lobe, Dense):
                return lobe
        return None

    def replace_inputs(self, count):
        """
        Resize the fully connected input layer to `count` inputs.

        A no-op when the count is unchanged.

        Returns:
            True if the weights were rebuilt
        """
        lobe = self.input_lobe
        if lobe is None:
            return False
        replaced = lobe.replace_inputs(count)
        if replaced:
            logger.warning("Replaced inputs of %r with %d", lobe, count)
        return replaced

    # ------------------------------------------------------------------
    # Forward
    # ------------------------------------------------------------------

    def feed(self, inputs, training=True):
        """
        Run one sample through every lobe.

        If the sample size differs from the compiled input size (e.g. a
        different crop), the lobe chain is rebuilt first; only lobes whose
        parameter shapes change get new weights.

        Raises:
            NotCompiledError: compile() has not succeeded
            ShapeMismatchError: the new input size does not fit the lobes;
                every lobe keeps its previous size and weights
        """
        if not self.compiled:
            raise NotCompiledError("Please call compile() before feeding the network")

        x = inputs if isinstance(inputs, Tensor) else Tensor(inputs)
        if x.size != self.input_size:
            logger.warning("Input size changed from %s to %s, rebuilding lobes",
                           tuple(self.input_size), tuple(x.size))
            self._rebuild(x.size)
            self.input_size = x.size

        for lobe in self.lobes:
            x = lobe.feed(x, training=training)
        return x

    def predict(self, inputs):
        """Inference pass (moving statistics, no training side effects)."""
        return self.feed(inputs, training=False)

    # ------------------------------------------------------------------
    # Loss and backward
    # ------------------------------------------------------------------

    def loss(self, predicted, correct):
        return self.loss_function.calculate(predicted, correct)

    def get_output_deltas(self, outputs, correct):
        """Elementwise loss derivative at the output lobe."""
        outputs = outputs if isinstance(outputs, Tensor) else Tensor(outputs)
        deltas = self.loss_function.derivative(outputs, correct)
        return Tensor(deltas.reshape(outputs.shape))

    def set_output_deltas(self, correct, override_loss=None, outputs=None):
        """
        Store the deltas the next backpropagate() call starts from.

        Args:
            correct: Correct output values
            override_loss: When given, every output delta is set to this scalar
            outputs: Network outputs; required without override_loss
        """
        if override_loss is not None:
            self.output_deltas = Tensor.zeros(self.output_size) + float(override_loss)
        elif outputs is not None:
            self.output_deltas = self.get_output_deltas(outputs, correct)
        else:
            raise ValueError("set_output_deltas needs outputs or override_loss")
        return self.output_deltas

    def backpropagate(self, deltas=None):
        """
        Walk the lobes in reverse, each turning its output deltas into input deltas.

        Args:
            deltas: Output deltas; defaults to those stored by set_output_deltas()

        Returns:
            Deltas with respect to the network input
        """
        if deltas is None:
            deltas = self.output_deltas
        if deltas is None:
            raise ValueError("No output deltas to backpropagate")

        for lobe in reversed(self.lobes):
            deltas = lobe.calculate_gradients(deltas)
        return deltas

    def adjust_weights(self, batch_size=1, constraints=None):
        """
        Apply the optimizer to every lobe's accumulated gradients.

        Args:
            batch_size: Number of samples the gradients were summed over
            constraints: Optional (low, high) range weights are clamped into afterwards
        """
        for lobe in self.lobes:
            lobe.adjust_weights(batch_size)
            if constraints is not None:
                lobe.clip_weights(*constraints)

    def zero_gradients(self):
        for lobe in self.lobes:
            lobe.zero_gradients()

    def clear(self):
        self.loss_history = []
        self.validation_history = []
        self.output_deltas = None
        for lobe in self.lobes:
            lobe.clear()

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train_on(self, batch):
        """
        Train on one batch.

        zero gradients -> feed + backpropagate every sample -> average loss
        -> adjust weights -> optimizer step

        Returns:
            Average loss over the batch

        Raises:
            EmptyInputError: the batch holds no samples
            ShapeMismatchError: the samples of the batch differ in size
        """
        if len(batch) == 0:
            raise EmptyInputError("Cannot train on an empty batch")

        # Gradients accumulate across the batch, so every sample must share one size
        sizes = [sample.data.size if isinstance(sample.data, Tensor) else Tensor(sample.data).size
                 for sample in batch]
        expected = sizes[0]
        for actual in sizes[1:]:
            if actual != expected:
                raise ShapeMismatchError(
                    f"Batch mixes input sizes {tuple(expected)} and {tuple(actual)}",
                    expected=expected, actual=actual)

        self.zero_gradients()

        batch_loss = 0.0
        for sample in batch:
            out = self.feed(sample.data, training=True)
            batch_loss += self.loss(out, sample.label) / len(batch)
            self.backpropagate(self.get_output_deltas(out, sample.label))

        self.adjust_weights(batch_size=len(batch))
        self.optimizer.step()

        return batch_loss

    def evaluate(self, samples):
        """Average loss over samples without training."""
        if len(samples) == 0:
            raise EmptyInputError("Cannot evaluate without samples")
        losses = [self.loss(self.predict(sample.data), sample.label) for sample in samples]
        return float(np.mean(losses))

    def train(self, data, epochs=1, batch_size=32, epoch_completed=None, completed=None, verbose=True):
        """
        Train the network.

        Args:
            data: DatasetData or a sequence of TrainingData
            epochs: Number of passes over the training data
            batch_size: Mini-batch size
            epoch_completed: Optional callback(epoch)
            completed: Optional callback(loss_history)
            verbose: Show a progress bar

        Returns:
            Per-batch loss history, or None if the network is not compiled
        """
        if not self.compiled:
            logger.error("Please call compile() before training")
            return None

        dataset = data if isinstance(data, DatasetData) else DatasetData(data)
        if not dataset.training:
            raise EmptyInputError("Cannot train without training samples")

        logger.info("Training started: %d samples, %d epochs", len(dataset.training), epochs)

        for epoch in range(epochs):
            batches = batched(shuffled(dataset.training, self.rng), batch_size)

            pbar = tqdm(batches, desc=f"Epoch {epoch+1}/{epochs}", disable=not verbose)
            for batch in pbar:
                batch_loss = self.train_on(batch)
                self.loss_history.append(batch_loss)
                pbar.set_postfix({'loss': f'{batch_loss:.4f}'})

            if dataset.validation:
                val_loss = self.evaluate(dataset.validation)
                self.validation_history.append(val_loss)
                logger.info("Epoch %d/%d - Loss: %.4f - Val Loss: %.4f",
                            epoch + 1, epochs, self.loss_history[-1], val_loss)
            else:
                logger.info("Epoch %d/%d - Loss: %.4f", epoch + 1, epochs, self.loss_history[-1])

            if epoch_completed is not None:
                epoch_completed(epoch)

        logger.info("Training complete")
        if completed is not None:
            completed(self.loss_history)

        return self.loss_history

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def summary(self):
        """Print lobe table and return the total parameter count."""
        print("\n" + "=" * 70)
        print("Network Summary")
        print("=" * 70)
        print(f"Input size: {tuple(self.input_size) if self.input_size else None}")
        print("-" * 70)

        total_params = 0
        for i, lobe in enumerate(self.lobes):
            n_params = lobe.parameter_count
            total_params += n_params
            out = tuple(lobe.output_size) if lobe.output_size else '?'
            print(f"{i:3d}. {str(lobe):<40} {str(out):<15} Params: {n_params:,}")

        print("-" * 70)
        print(f"Total trainable parameters: {total_params:,}")
        print("=" * 70 + "\n")

        return total_params

    def __repr__(self):
        return f"Network(lobes={len(self.lobes)}, compiled={self.compiled})"
