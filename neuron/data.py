"""
Training Data
=============

Containers for what a network trains on. Loading or decoding datasets is
left to the caller; these only hold already-prepared samples.
"""

import numpy as np

from .tensor import Tensor


class TrainingData:
    """
    One sample: an input tensor and its correct output values.

    Args:
        data: Input (Tensor, array or nested list)
        label: Correct output values
    """

    __slots__ = ('data', 'label')

    def __init__(self, data, label):
        self.data = data if isinstance(data, Tensor) else Tensor(data)
        self.label = np.asarray(label, dtype=np.float64).ravel()

    def __repr__(self):
        return f"TrainingData(data={self.data!r}, label={self.label.tolist()})"


class DatasetData:
    """
    Training and validation splits.

    Args:
        training: Sequence of TrainingData
        validation: Optional sequence of TrainingData
    """

    def __init__(self, training, validation=None):
        self.training = list(training)
        self.validation = list(validation) if validation is not None else []

    def __len__(self):
        return len(self.training)


def batched(items, batch_size):
    """
    Split a sequence into consecutive batches; the last one may be shorter.

    Args:
        items: Sequence to split
        batch_size: Maximum batch length

    Returns:
        List of lists
    """
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    items = list(items)
    return [items[start:start + batch_size] for start in range(0, len(items), batch_size)]


def shuffled(items, rng):
    """Return a shuffled copy of items using a numpy Generator."""
    items = list(items)
    return [items[i] for i in rng.permutation(len(items))]
