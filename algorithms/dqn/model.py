"""
DQN Network Model.

MLP network that maps a lidar observation (N, ray_count) to one Q-value
per discrete action (N, action_count).
"""

from typing import Any, Dict, List

import torch
import torch.nn as nn
from torch import Tensor


class DQNNetwork(nn.Module):
    """DQN network with MLP architecture.

    Architecture:
    - Input: (N, input_size) normalized range readings
    - Hidden layers: configurable sizes with ReLU activation
    - Output: (N, output_size) Q-values, linear so values may be negative

    No recurrence and no normalization layers.
    """

    def __init__(
        self,
        input_size: int = 180,  # one reading per lidar ray
        output_size: int = 2,  # 0 = no-op, 1 = impulse
        hidden_layers: List[int] = [256, 256],
    ):
        """Initialize DQN network.

        Args:
            input_size: Length of the observation vector
            output_size: Number of discrete actions
            hidden_layers: List of hidden layer sizes (at least one)
        """
        super().__init__()

        if not hidden_layers:
            raise ValueError("hidden_layers must contain at least one layer")
        if input_size <= 0 or output_size <= 0:
            raise ValueError("input_size and output_size must be positive")

        self.input_size = input_size
        self.output_size = output_size
        self.hidden_layers = [int(size) for size in hidden_layers]

        # Build network layers
        layers = []
        in_features = input_size

        for hidden_size in self.hidden_layers:
            layers.append(nn.Linear(in_features, hidden_size))
            layers.append(nn.ReLU())
            in_features = hidden_size

        # Output layer (no activation)
        layers.append(nn.Linear(in_features, output_size))

        self.network = nn.Sequential(*layers)

    def forward(self, observation: Tensor) -> Tensor:
        """Forward pass through the network.

        Args:
            observation: (N, input_size) batch, or a single (input_size,)
                         observation

        Returns:
            (N, output_size) Q-values for each action
        """
        if observation.dim() == 1:
            observation = observation.unsqueeze(0)

        if observation.dtype != torch.float32:
            observation = observation.float()

        return self.network(observation)

    def predict(self, observations: Tensor) -> Tensor:
        """Q-values without gradient tracking, for action selection."""
        with torch.no_grad():
            return self.forward(observations)

    def architecture(self) -> Dict[str, Any]:
        """Constructor arguments needed to rebuild this network."""
        return {
            "input_size": self.input_size,
            "output_size": self.output_size,
            "hidden_layers": list(self.hidden_layers),
        }
