"""
Huber loss for the one-step TD error.

Quadratic for |e| <= delta, linear beyond it:

    0.5 * e^2                     if |e| <= delta
    delta * (|e| - 0.5 * delta)   otherwise

Computed by clamping the quadratic region at delta and adding the
linear remainder.
"""

import torch
from torch import Tensor


def huber_loss(target: Tensor, prediction: Tensor, delta: float = 1.0) -> Tensor:
    """Mean Huber loss between ``target`` and ``prediction``.

    Args:
        target: (N,) TD targets
        prediction: (N,) predicted Q-values for the taken actions
        delta: Width of the quadratic region

    Returns:
        Scalar loss tensor
    """
    abs_error = torch.abs(target - prediction)
    quadratic = torch.clamp(abs_error, max=delta)
    linear = abs_error - quadratic
    return (0.5 * quadratic.pow(2) + delta * linear).mean()
