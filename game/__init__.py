"""Game module for the side-scrolling obstacle environment."""

from game.env import Environment, InvalidActionError, SideScrollerEnv, StepResult
from game.reward import RewardInput, RewardModel
from game.world import ObstacleWorld, WorldParams

__all__ = [
    "Environment",
    "InvalidActionError",
    "SideScrollerEnv",
    "StepResult",
    "RewardInput",
    "RewardModel",
    "ObstacleWorld",
    "WorldParams",
]
