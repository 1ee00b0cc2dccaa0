"""
Reward shaping for the side-scrolling obstacle environment.

Rewards are a pure function of one transition. Magnitudes are
configuration constants; nothing here carries state between calls.
"""

from dataclasses import dataclass
from typing import Optional

from game.world import CRASH, FLOOR


@dataclass(frozen=True)
class RewardInput:
    """Everything the reward model needs about one transition.

    Attributes:
        previous_score: Score counter before the step
        score: Score counter after the step
        agent_y: Agent center y after the step (screen coordinates)
        agent_height: Agent bounding box height
        ceiling_y: y of the top boundary
        ground_y: y of the ground boundary
        done: Whether the transition ended the episode
        was_done: Whether the episode had already ended before the step
        terminal_cause: "floor" or "crash" when known; None falls back to
                        the agent height test
    """
    previous_score: int
    score: int
    agent_y: float
    agent_height: float
    ceiling_y: float
    ground_y: float
    done: bool
    was_done: bool = False
    terminal_cause: Optional[str] = None


@dataclass(frozen=True)
class RewardModel:
    """Per-step reward with distinct floor and crash terminal penalties.

    Setting ``floor_penalty == crash_penalty`` gives a single-magnitude
    terminal penalty.
    """
    alive_bonus: float = 0.1
    score_bonus: float = 10.0
    ceiling_penalty: float = -3.0
    floor_penalty: float = -15.0
    crash_penalty: float = -10.0

    def compute(self, transition: RewardInput) -> float:
        reward = self.alive_bonus

        if transition.score > transition.previous_score:
            reward += self.score_bonus

        if transition.agent_y <= transition.ceiling_y + transition.agent_height / 2:
            reward += self.ceiling_penalty

        if transition.done and not transition.was_done:
            if self.is_floor_terminal(transition):
                reward += self.floor_penalty
            else:
                reward += self.crash_penalty

        return reward

    @staticmethod
    def is_floor_terminal(transition: RewardInput) -> bool:
        """True when the episode ended on the floor.

        Uses the reported terminal cause; without one, the agent counts as
        grounded when its center is at or below the resting height.
        """
        if transition.terminal_cause == FLOOR:
            return True
        if transition.terminal_cause == CRASH:
            return False
        return transition.agent_y >= transition.ground_y - transition.agent_height
