"""
Visualization Utilities
=======================

Plots for inspecting training:
- Loss curves recorded by Network.train()
- Convolution filters of a lobe
- Samples drawn from a GAN generator

Every function returns the matplotlib Figure; pass show=False when running
headless (tests, scripts) and save_path to write the image to disk.
"""

import logging

import numpy as np
import matplotlib.pyplot as plt

from .tensor import Tensor

logger = logging.getLogger(__name__)


def _finish(fig, save_path, show, what):
    plt.tight_layout()

    if save_path:
        fig.savefig(save_path, dpi=150, bbox_inches='tight')
        logger.info("%s saved to %s", what, save_path)

    if show:
        plt.show()
    return fig


def _normalized(image):
    return (image - image.min()) / (image.max() - image.min() + 1e-8)


def _grid(count, figsize):
    n_cols = int(np.ceil(np.sqrt(count)))
    n_rows = int(np.ceil(count / n_cols))
    fig, axes = plt.subplots(n_rows, n_cols, figsize=figsize)
    return fig, np.array(axes).flatten()


def plot_loss_history(losses, validation=None, figsize=(10, 5), save_path=None, show=True):
    """
    Plot per-batch training loss and, optionally, per-epoch validation loss.

    Args:
        losses: Sequence of batch losses (Network.loss_history)
        validation: Optional sequence of epoch validation losses
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show()
    """
    fig, ax = plt.subplots(figsize=figsize)

    ax.plot(range(1, len(losses) + 1), losses, 'b-', label='Training Loss', linewidth=2)
    if validation:
        # one validation point per epoch, spread across the batch axis
        per_epoch = len(losses) / len(validation)
        x = [per_epoch * (i + 1) for i in range(len(validation))]
        ax.plot(x, validation, 'ro-', label='Validation Loss', linewidth=2)

    ax.set_xlabel('Batch', fontsize=12)
    ax.set_ylabel('Loss', fontsize=12)
    ax.set_title('Training Loss', fontsize=14)
    ax.legend(fontsize=10)
    ax.grid(True, alpha=0.3)

    return _finish(fig, save_path, show, "Loss history plot")


def visualize_filters(lobe, max_filters=16, figsize=(12, 8), save_path=None, show=True):
    """
    Visualize the filters of a Convolution or TransposedConvolution lobe.

    Multi-channel filters are averaged across their input channels.

    Args:
        lobe: Built convolution lobe (or a raw (count, channels, rows, columns) array)
        max_filters: Maximum number of filters to display
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show()
    """
    filters = lobe.filters if hasattr(lobe, 'filters') else np.asarray(lobe)
    n_filters = min(filters.shape[0], max_filters)

    fig, axes = _grid(n_filters, figsize)

    for i in range(n_filters):
        filter_img = np.mean(filters[i], axis=0)
        axes[i].imshow(_normalized(filter_img), cmap='gray')
        axes[i].set_title(f'Filter {i}', fontsize=8)
        axes[i].axis('off')

    for i in range(n_filters, len(axes)):
        axes[i].axis('off')

    fig.suptitle('Convolutional Filters', fontsize=14)
    return _finish(fig, save_path, show, "Filters visualization")


def plot_generated_samples(gan, count=16, figsize=(8, 8), save_path=None, show=True):
    """
    Draw `count` samples from a GAN's generator and show the first channel of each.

    Args:
        gan: GAN with a compiled generator
        count: Number of samples
        figsize: Figure size
        save_path: Path to save figure
        show: Call plt.show()
    """
    fig, axes = _grid(count, figsize)

    for i in range(count):
        sample = Tensor(gan.generator.predict(Tensor(gan.noise()))).value
        axes[i].imshow(_normalized(sample[0]), cmap='gray')
        axes[i].axis('off')

    for i in range(count, len(axes)):
        axes[i].axis('off')

    fig.suptitle('Generated Samples', fontsize=14)
    return _finish(fig, save_path, show, "Generated samples")
