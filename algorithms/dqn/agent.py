"""
DQN Agent.

Implements the DQN algorithm with:
- Epsilon-greedy action selection; epsilon is supplied by the caller
- One-step bootstrapped targets from the same network (no target network)
- Huber loss on the TD error
- Validity filtering of sampled transitions before each update
- A re-entry guard around optimize_model()
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import torch
import torch.nn as nn
import torch.nn.functional as F
import torch.optim as optim
from torch import Tensor

from algorithms.dqn.checkpoint import CheckpointError, read_checkpoint, write_checkpoint
from algorithms.dqn.loss import huber_loss
from algorithms.dqn.model import DQNNetwork
from algorithms.dqn.replay_buffer import (
    Experience,
    ReplayBuffer,
    as_action,
    as_observation,
    as_reward,
)

logger = logging.getLogger(__name__)


class EmptyBatchError(RuntimeError):
    """Raised when every transition in a sampled batch was malformed.

    No parameters are updated. Callers may skip the optimize cycle, but
    must not treat it as a completed training step.
    """
    pass


class DQNAgent:
    """DQN Agent for the side-scrolling obstacle environment.

    Owns the Q-network, its Adam optimizer and the replay buffer.
    """

    def __init__(
        self,
        input_size: int = 180,
        output_size: int = 2,
        device: Optional[torch.device] = None,
        hidden_layers: list = [256, 256],
        learning_rate: float = 0.001,
        gamma: float = 0.99,
        buffer_capacity: int = 10000,
        batch_size: int = 64,
        exploration_fraction: float = 0.6,
        max_grad_norm: float = 10.0,
        generator: Optional[torch.Generator] = None,
    ):
        """Initialize DQN agent.

        Args:
            input_size: Observation length (one reading per lidar ray)
            output_size: Number of discrete actions
            device: PyTorch device, auto-detected if None
            hidden_layers: Hidden layer sizes for the network
            learning_rate: Adam optimizer learning rate
            gamma: Discount factor
            buffer_capacity: Replay buffer capacity
            batch_size: Batch size for training
            exploration_fraction: Share of the action index range that
                                  random exploration draws from
            max_grad_norm: Gradient clipping norm
            generator: Optional random source for exploration and sampling
        """
        if not 0.0 <= gamma <= 1.0:
            raise ValueError(f"gamma must be in [0, 1], got {gamma}")
        if not 0.0 < exploration_fraction <= 1.0:
            raise ValueError(
                f"exploration_fraction must be in (0, 1], got {exploration_fraction}"
            )

        if device is None:
            device = torch.device("cuda" if torch.cuda.is_available() else "cpu")

        self.device = device
        self.input_size = input_size
        self.output_size = output_size
        self.learning_rate = learning_rate
        self.gamma = gamma
        self.batch_size = batch_size
        self.exploration_fraction = exploration_fraction
        self.max_grad_norm = max_grad_norm
        self.generator = generator

        self.policy_net = DQNNetwork(
            input_size=input_size,
            output_size=output_size,
            hidden_layers=hidden_layers,
        ).to(device)

        self.optimizer = optim.Adam(self.policy_net.parameters(), lr=learning_rate)

        self.replay_buffer = ReplayBuffer(buffer_capacity, batch_size, generator=generator)

        # Training state
        self.step_count = 0
        self._optimize_lock = threading.Lock()

    def act(self, observation: Any, epsilon: float) -> int:
        """Select an action with an epsilon-greedy policy.

        With probability epsilon, explore uniformly over the lower
        ``exploration_fraction`` of the action indices (the canonical
        0.6 with two actions explores "no-op" five times as often as
        "impulse"). Otherwise return the index of the largest Q-value;
        ties go to the lowest index.

        Args:
            observation: (input_size,) observation
            epsilon: Exploration probability in [0, 1]

        Returns:
            Action index
        """
        if torch.rand((), generator=self.generator).item() < epsilon:
            draw = torch.rand((), generator=self.generator).item()
            return int(draw * self.exploration_fraction * self.output_size)

        state = torch.as_tensor(observation, dtype=torch.float32, device=self.device)
        q_values = self.policy_net.predict(state)
        return int(q_values.argmax(dim=1).item())

    def store_transition(
        self,
        observation: Any,
        action: Any,
        reward: Any,
        next_observation: Any,
        done: bool,
    ) -> None:
        """Push one transition into the replay buffer."""
        self.replay_buffer.push(
            Experience(observation, action, reward, next_observation, bool(done))
        )

    def optimize_model(self) -> Optional[Dict[str, float]]:
        """Perform one training step.

        Returns:
            Dict with training metrics, or None if the buffer holds fewer
            than batch_size transitions or a step is already in flight

        Raises:
            EmptyBatchError: If no sampled transition survives validation
        """
        if not self._optimize_lock.acquire(blocking=False):
            logger.warning("optimize_model called while a step is in flight; skipping")
            return None
        try:
            return self._optimize()
        finally:
            self._optimize_lock.release()

    def _optimize(self) -> Optional[Dict[str, float]]:
        batch = self.replay_buffer.sample()
        if batch is None:
            return None

        # Tensors below are local to this call and released on every exit
        observations, actions, rewards, next_observations, dones = \
            self._unpack_batch(batch)
        dropped = len(batch) - observations.size(0)

        # Current Q values for the actions taken
        q_values = self.policy_net(observations)
        action_masks = F.one_hot(actions, self.output_size).to(q_values.dtype)
        chosen_q = (q_values * action_masks).sum(dim=1)

        # One-step bootstrapped target; terminal transitions get no continuation
        with torch.no_grad():
            max_next_q = self.policy_net(next_observations).max(dim=1).values
            target_q = rewards + self.gamma * (1.0 - dones) * max_next_q

        loss = huber_loss(target_q, chosen_q)

        self.optimizer.zero_grad()
        loss.backward()
        nn.utils.clip_grad_norm_(self.policy_net.parameters(), max_norm=self.max_grad_norm)
        self.optimizer.step()

        self.step_count += 1

        return {
            "loss": loss.item(),
            "q_mean": chosen_q.mean().item(),
            "batch_size": float(observations.size(0)),
            "dropped": float(dropped),
        }

    def _unpack_batch(
        self, batch: List[Experience]
    ) -> Tuple[Tensor, Tensor, Tensor, Tensor, Tensor]:
        """Filter malformed transitions and stack the rest into tensors.

        Raises:
            EmptyBatchError: If the batch is empty after filtering
        """
        observations = []
        actions = []
        rewards = []
        next_observations = []
        dones = []

        for experience in batch:
            observation = as_observation(experience.observation, self.input_size)
            next_observation = as_observation(experience.next_observation, self.input_size)
            action = as_action(experience.action, self.output_size)
            reward = as_reward(experience.reward)

            if observation is None or next_observation is None or action is None or reward is None:
                logger.warning("Skipping invalid experience: %r", experience)
                continue

            observations.append(observation)
            actions.append(action)
            rewards.append(reward)
            next_observations.append(next_observation)
            dones.append(1.0 if experience.done else 0.0)

        if not observations:
            raise EmptyBatchError(
                f"No valid data in batch after filtering {len(batch)} experiences"
            )

        return (
            torch.stack(observations).to(self.device),
            torch.tensor(actions, dtype=torch.long, device=self.device),
            torch.tensor(rewards, dtype=torch.float32, device=self.device),
            torch.stack(next_observations).to(self.device),
            torch.tensor(dones, dtype=torch.float32, device=self.device),
        )

    def checkpoint_state(self) -> Dict[str, Any]:
        """Detached snapshot of everything needed to restore the agent.

        The snapshot shares no storage with live parameters, so it can be
        written out while training continues.
        """
        model_state = {
            name: tensor.detach().to("cpu").clone()
            for name, tensor in self.policy_net.state_dict().items()
        }
        optimizer_state = copy.deepcopy(self.optimizer.state_dict())
        return {
            "architecture": self.policy_net.architecture(),
            "model_state_dict": model_state,
            "optimizer_state_dict": optimizer_state,
            "step_count": self.step_count,
        }

    def apply_checkpoint(self, payload: Dict[str, Any]) -> None:
        """Replace parameters with those in ``payload``.

        Everything is validated against a scratch network and optimizer
        first; live parameters change only once validation succeeded.

        Raises:
            CheckpointError: If the payload is malformed or was produced
                             by a different architecture
        """
        try:
            architecture = payload["architecture"]
            model_state = payload["model_state_dict"]
        except (KeyError, TypeError) as e:
            raise CheckpointError(f"Malformed checkpoint payload: {e}") from e

        if architecture != self.policy_net.architecture():
            raise CheckpointError(
                f"Checkpoint architecture {architecture} does not match "
                f"agent architecture {self.policy_net.architecture()}"
            )

        candidate = DQNNetwork(**architecture).to(self.device)
        try:
            candidate.load_state_dict(model_state)
        except (RuntimeError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Incompatible model state: {e}") from e

        optimizer_state = payload.get("optimizer_state_dict")
        if optimizer_state is not None:
            probe = optim.Adam(candidate.parameters(), lr=self.learning_rate)
            try:
                probe.load_state_dict(optimizer_state)
            except (ValueError, KeyError, TypeError) as e:
                raise CheckpointError(f"Incompatible optimizer state: {e}") from e

        self.policy_net.load_state_dict(candidate.state_dict())
        if optimizer_state is not None:
            self.optimizer.load_state_dict(optimizer_state)
        self.step_count = int(payload.get("step_count", self.step_count))

    def save_checkpoint(self, path: str) -> None:
        """Save agent checkpoint.

        Args:
            path: Path to save checkpoint
        """
        write_checkpoint(path, self.checkpoint_state())

    def load_checkpoint(self, path: str) -> None:
        """Load agent checkpoint.

        Args:
            path: Path to load checkpoint from

        Raises:
            CheckpointError: If the file is missing, malformed or
                             incompatible; parameters are left unchanged
        """
        self.apply_checkpoint(read_checkpoint(path, map_location=self.device))
