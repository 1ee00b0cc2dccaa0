"""
Experience Replay Buffer for DQN.

Bounded FIFO memory of transitions with uniform sampling.

Invariants:
- len(buffer) never exceeds capacity; the oldest transition is evicted
  first when a push would overflow it
- sample() draws batch_size distinct entries from one random
  permutation of the current contents, or returns None while fewer
  than batch_size transitions are stored

Transitions are kept exactly as pushed. Validation happens when a batch
is unpacked for training, so a malformed entry costs one dropped sample
instead of a failed push.
"""

import math
import numbers
from collections import deque
from dataclasses import dataclass
from typing import Any, List, Optional

import torch
from torch import Tensor


@dataclass(frozen=True)
class Experience:
    """A single transition in the replay buffer.

    Attributes:
        observation: (ray_count,) observation before the action
        action: int action index
        reward: float reward for the transition
        next_observation: (ray_count,) observation after the action
        done: bool whether next_observation is terminal
    """
    observation: Any
    action: Any
    reward: Any
    next_observation: Any
    done: bool


def as_observation(value: Any, size: int) -> Optional[Tensor]:
    """Coerce ``value`` into a (size,) float32 observation.

    Returns None unless ``value`` is a one-dimensional numeric vector
    of exactly ``size`` finite entries.
    """
    if value is None or isinstance(value, (str, bytes)):
        return None
    try:
        tensor = torch.as_tensor(value, dtype=torch.float32)
    except (TypeError, ValueError, RuntimeError):
        return None

    if tensor.dim() != 1 or tensor.numel() != size:
        return None
    if not torch.isfinite(tensor).all():
        return None
    return tensor


def as_action(value: Any, action_count: int) -> Optional[int]:
    """Coerce ``value`` into an action index in [0, action_count)."""
    if isinstance(value, Tensor):
        if value.numel() != 1 or value.is_floating_point():
            return None
        value = value.item()
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        return None
    if not 0 <= value < action_count:
        return None
    return int(value)


def as_reward(value: Any) -> Optional[float]:
    """Coerce ``value`` into a finite float reward."""
    if isinstance(value, Tensor):
        if value.numel() != 1:
            return None
        value = value.item()
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        return None
    value = float(value)
    if not math.isfinite(value):
        return None
    return value


class ReplayBuffer:
    """FIFO replay buffer with uniform sampling.

    Owned by a single agent; mutated only through push() and read only
    through sample().
    """

    def __init__(
        self,
        capacity: int,
        batch_size: int,
        generator: Optional[torch.Generator] = None,
    ):
        """Initialize replay buffer.

        Args:
            capacity: Maximum number of transitions to store
            batch_size: Number of transitions returned by sample()
            generator: Optional random source for reproducible sampling
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.capacity = capacity
        self.batch_size = batch_size
        self.generator = generator
        self._buffer: deque = deque(maxlen=capacity)

    def push(self, experience: Experience) -> None:
        """Append a transition, evicting the oldest one when full."""
        self._buffer.append(experience)

    def sample(self) -> Optional[List[Experience]]:
        """Sample a batch without replacement.

        Returns:
            List of batch_size experiences, or None if fewer than
            batch_size transitions are stored
        """
        if not self.is_ready():
            return None

        indices = torch.randperm(len(self._buffer), generator=self.generator)
        return [self._buffer[i] for i in indices[: self.batch_size].tolist()]

    def size(self) -> int:
        """Return current number of transitions in buffer."""
        return len(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def is_ready(self) -> bool:
        """Check if buffer has enough samples for one batch."""
        return len(self._buffer) >= self.batch_size
