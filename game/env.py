"""
Environment interface and headless side-scroller implementation.

The training loop only talks to an Environment: reset, step, observe and
ask whether the episode is over. Rendering and real-time physics live
outside this package; SideScrollerEnv is a headless stand-in built on
ObstacleWorld so training runs end to end without a display.

Actions are integers:
- 0: no-op
- 1: impulse (upward velocity kick)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import torch
from torch import Tensor

from game.reward import RewardInput, RewardModel
from game.world import ObstacleWorld, WorldParams
from sensors.lidar import Lidar


class InvalidActionError(ValueError):
    """Raised when step() receives an action outside the action set."""
    pass


@dataclass
class StepResult:
    """Result of a single environment step.

    Attributes:
        observation: (observation_size,) sensor reading after the step
        reward: Scalar reward for the transition
        done: Whether the episode ended on this step
        score: Episode score counter after the step
        terminal_cause: "floor", "crash" or None while running
    """
    observation: Tensor
    reward: float
    done: bool
    score: int = 0
    terminal_cause: Optional[str] = None


class Environment(ABC):
    """Interface the training loop drives, one fixed timestep per step()."""

    NOOP = 0
    IMPULSE = 1

    action_count: int = 2

    @property
    @abstractmethod
    def observation_size(self) -> int:
        """Length of the observation vector."""

    @abstractmethod
    def reset(self) -> None:
        """Reinitialize world state, score and terminal flag."""

    @abstractmethod
    def step(self, action: int) -> StepResult:
        """Advance one timestep with ``action``."""

    @abstractmethod
    def observation(self) -> Tensor:
        """Current sensor reading, without advancing state."""

    @abstractmethod
    def is_done(self) -> bool:
        """Whether the current episode has ended."""

    @property
    def score(self) -> int:
        return 0


class SideScrollerEnv(Environment):
    """Headless obstacle course observed through a lidar fan.

    Args:
        params: World physics and layout
        lidar: Range sensor producing the observation
        reward_model: Per-transition reward
    """

    def __init__(
        self,
        params: Optional[WorldParams] = None,
        lidar: Optional[Lidar] = None,
        reward_model: Optional[RewardModel] = None,
    ):
        self.world = ObstacleWorld(params)
        self.lidar = lidar if lidar is not None else Lidar()
        self.reward_model = reward_model if reward_model is not None else RewardModel()

    @property
    def observation_size(self) -> int:
        return self.lidar.ray_count

    @property
    def score(self) -> int:
        return self.world.score

    def reset(self) -> None:
        self.world.reset()

    def observation(self) -> Tensor:
        return self.lidar.scan(self.world.position, self.world.geometry())

    def is_done(self) -> bool:
        return self.world.done

    def step(self, action: int) -> StepResult:
        """Apply ``action`` for one timestep.

        Stepping a finished episode changes nothing and yields zero reward.

        Raises:
            InvalidActionError: If action is not a valid index
        """
        if isinstance(action, Tensor):
            action = action.item()
        if isinstance(action, bool) or action not in range(self.action_count):
            raise InvalidActionError(
                f"Action must be in [0, {self.action_count}), got {action!r}"
            )

        world = self.world
        if world.done:
            return StepResult(
                observation=self.observation(),
                reward=0.0,
                done=True,
                score=world.score,
                terminal_cause=world.terminal_cause,
            )

        previous_score = world.score
        world.step(impulse=action == self.IMPULSE)

        reward = self.reward_model.compute(RewardInput(
            previous_score=previous_score,
            score=world.score,
            agent_y=world.agent_y,
            agent_height=world.params.agent_height,
            ceiling_y=0.0,
            ground_y=world.params.ground_y,
            done=world.done,
            was_done=False,
            terminal_cause=world.terminal_cause,
        ))

        return StepResult(
            observation=self.observation(),
            reward=reward,
            done=world.done,
            score=world.score,
            terminal_cause=world.terminal_cause,
        )


def zero_observation(size: int) -> Tensor:
    """Safe default observation used when a live reading is unusable."""
    return torch.zeros(size, dtype=torch.float32)
