"""
DQN Algorithm Module.

Deep Q-Network for the side-scrolling obstacle environment.

Key decisions:
- Epsilon is owned by the training session and passed into act()
- Exploration draws from the lower 60% of the action index range
- Targets bootstrap from the same network (no target network)
- Huber loss; malformed sampled transitions are dropped, an empty
  batch after filtering raises EmptyBatchError
"""

from algorithms.dqn.agent import DQNAgent, EmptyBatchError
from algorithms.dqn.checkpoint import CheckpointError
from algorithms.dqn.loss import huber_loss
from algorithms.dqn.model import DQNNetwork
from algorithms.dqn.replay_buffer import Experience, ReplayBuffer

__all__ = [
    "DQNAgent",
    "DQNNetwork",
    "ReplayBuffer",
    "Experience",
    "EmptyBatchError",
    "CheckpointError",
    "huber_loss",
]
