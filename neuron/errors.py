"""
Errors
======

Exception types raised (or logged) by the framework.

- NotCompiledError: a network was used before its lobe chain was built
- ShapeMismatchError: a lobe's output size does not fit the next lobe's input
- EmptyInputError: training was invoked without samples
- MissingComponentError: GAN training without both generator and discriminator
"""


class NeuronError(Exception):
    """Base class for all framework errors."""


class NotCompiledError(NeuronError):
    """Raised when a network is fed before compile() succeeded."""


class ShapeMismatchError(NeuronError, ValueError):
    """Raised when two sizes that must agree do not."""

    def __init__(self, message, expected=None, actual=None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual


class EmptyInputError(NeuronError, ValueError):
    """Raised when training is invoked with zero samples or batches."""


class MissingComponentError(NeuronError):
    """Raised when a GAN is trained before both networks were added."""
