"""
Optimizers
==========

Optimizers turn the gradients a lobe accumulated over a batch into a
parameter update.

The contract has two halves:
- apply(lobe, batch_size): called by each lobe from adjust_weights(); averages
  the accumulated gradients over the batch and updates lobe.params in place
- step(): called once per batch after every lobe was updated; advances the
  timestep (Adam bias correction) and the learning-rate schedule

Per-parameter state (momentum, velocity) is keyed by lobe identity, so one
optimizer instance can serve every lobe of a network.

This module implements:
- Adam (default)
- SGD with momentum
"""

import numpy as np


class Optimizer:
    """Base class for optimizers."""

    def __init__(self, learning_rate, weight_decay=0.0, clip_grad=None):
        self.learning_rate = learning_rate
        self.initial_lr = learning_rate
        self.weight_decay = weight_decay
        self.clip_grad = clip_grad

        self.t = 0
        self.lr_scheduler = None
        self._state = {}

    def set_lr_scheduler(self, scheduler, **kwargs):
        """
        Attach a learning rate scheduler: scheduler(step, initial_lr) -> lr.

        Args:
            scheduler: A scheduler callable, or a name from LR_SCHEDULERS
            **kwargs: Arguments for the named scheduler factory
        """
        if isinstance(scheduler, str):
            name = scheduler.lower()
            if name not in LR_SCHEDULERS:
                raise ValueError(f"Unknown scheduler '{scheduler}'. Available: {list(LR_SCHEDULERS.keys())}")
            scheduler = LR_SCHEDULERS[name](**kwargs)
        self.lr_scheduler = scheduler

    def get_lr(self):
        return self.learning_rate

    def apply(self, lobe, batch_size=1):
        """
        Update every parameter of one lobe from its accumulated gradients.

        Args:
            lobe: Lobe with `params` and `grads` dictionaries
            batch_size: Number of samples the gradients were summed over
        """
        batch_size = max(int(batch_size), 1)
        state = self._state.setdefault(id(lobe), {})

        for name, param in lobe.params.items():
            grad = lobe.grads.get(name)
            if grad is None:
                continue

            grad = grad / batch_size

            # Gradient clipping
            if self.clip_grad is not None:
                grad_norm = np.linalg.norm(grad)
                if grad_norm > self.clip_grad:
                    grad = grad * (self.clip_grad / (grad_norm + 1e-8))

            # Weight decay (L2 regularization)
            if self.weight_decay > 0 and name == 'weight':
                grad = grad + self.weight_decay * param

            lobe.params[name] = self._update(state, name, param, grad)

    def _update(self, state, name, param, grad):
        raise NotImplementedError

    def step(self):
        """Post-batch bookkeeping."""
        self.t += 1
        if self.lr_scheduler is not None:
            self.learning_rate = self.lr_scheduler(self.t, self.initial_lr)

    def forget(self, lobe):
        """Drop the state kept for one lobe (its parameter shapes changed)."""
        self._state.pop(id(lobe), None)

    def reset(self):
        """Reset optimizer state."""
        self.t = 0
        self.learning_rate = self.initial_lr
        self._state = {}


class Adam(Optimizer):
    """
    Adam (Adaptive Moment Estimation) optimizer.

    Keeps running averages of the gradient (m) and of its square (v) and
    bias-corrects both with the current timestep.

    Args:
        learning_rate: Step size (default: 0.001)
        beta1: Decay rate for first moment (default: 0.9)
        beta2: Decay rate for second moment (default: 0.999)
        epsilon: Small constant for numerical stability (default: 1e-8)
        weight_decay: L2 regularization strength (default: 0)
        clip_grad: Max gradient norm for clipping (default: None)
    """

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999,
                 epsilon=1e-8, weight_decay=0.0, clip_grad=None):
        super().__init__(learning_rate, weight_decay, clip_grad)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon

    def _update(self, state, name, param, grad):
        m = state.get(f'm_{name}', np.zeros_like(param))
        v = state.get(f'v_{name}', np.zeros_like(param))

        m = self.beta1 * m + (1 - self.beta1) * grad
        v = self.beta2 * v + (1 - self.beta2) * (grad ** 2)

        # step() runs after the update, so this batch is timestep t + 1
        t = self.t + 1
        m_hat = m / (1 - self.beta1 ** t)
        v_hat = v / (1 - self.beta2 ** t)

        state[f'm_{name}'] = m
        state[f'v_{name}'] = v

        return param - self.learning_rate * m_hat / (np.sqrt(v_hat) + self.epsilon)


class SGD(Optimizer):
    """
    Stochastic Gradient Descent with momentum.

    Args:
        learning_rate: Step size (default: 0.01)
        momentum: Momentum factor (default: 0.9)
        weight_decay: L2 regularization (default: 0)
        nesterov: Use Nesterov momentum (default: False)
        clip_grad: Max gradient norm (default: None)
    """

    def __init__(self, learning_rate=0.01, momentum=0.9, weight_decay=0.0,
                 nesterov=False, clip_grad=None):
        super().__init__(learning_rate, weight_decay, clip_grad)
        self.momentum = momentum
        self.nesterov = nesterov

    def _update(self, state, name, param, grad):
        v = self.momentum * state.get(name, np.zeros_like(param)) + grad
        state[name] = v

        if self.nesterov:
            return param - self.learning_rate * (self.momentum * v + grad)
        return param - self.learning_rate * v


# ============================================================================
# Learning Rate Schedulers
# ============================================================================

def step_decay(drop_rate=0.5, drop_every=10):
    """LR = initial_lr * drop_rate^(step // drop_every)"""
    def scheduler(step, initial_lr):
        return initial_lr * (drop_rate ** (step // drop_every))
    return scheduler


def exponential_decay(decay_rate=0.95):
    """LR = initial_lr * decay_rate^step"""
    def scheduler(step, initial_lr):
        return initial_lr * (decay_rate ** step)
    return scheduler


def cosine_annealing(total_steps, min_lr=0.0):
    """Cosine decay from initial_lr to min_lr over total_steps."""
    def scheduler(step, initial_lr):
        progress = min(step / total_steps, 1.0)
        return min_lr + 0.5 * (initial_lr - min_lr) * (1 + np.cos(np.pi * progress))
    return scheduler


def constant_lr():
    def scheduler(step, initial_lr):
        return initial_lr
    return scheduler


OPTIMIZERS = {
    'adam': Adam,
    'sgd': SGD,
}


def get_optimizer(name, **kwargs):
    """
    Get optimizer by name.

    Args:
        name: 'adam', 'sgd' or an Optimizer instance
        **kwargs: Arguments to pass to the optimizer

    Returns:
        Optimizer instance
    """
    if isinstance(name, Optimizer):
        return name

    name_lower = name.lower()
    if name_lower not in OPTIMIZERS:
        raise ValueError(f"Unknown optimizer '{name}'. Available: {list(OPTIMIZERS.keys())}")

    return OPTIMIZERS[name_lower](**kwargs)


LR_SCHEDULERS = {
    'step': step_decay,
    'exponential': exponential_decay,
    'cosine': cosine_annealing,
    'constant': constant_lr,
}
