"""Fixtures for training session tests.

ScriptedEnv is a deterministic Environment whose episode length,
per-step rewards, observations and scores are fixed up front, so
terminal, NaN and threshold scenarios can be driven tick by tick.
"""

import pytest
import torch

from algorithms.dqn.agent import DQNAgent
from game.env import Environment, StepResult


OBS_SIZE = 4


class ScriptedEnv(Environment):
    """Environment that plays back a fixed script.

    Args:
        episode_length: Steps until done
        rewards: step number (1-based) -> reward, default 1.0
        observations: step number -> observation returned by step()
        scores: step number -> score after that step, default 0
    """

    def __init__(self, episode_length=3, rewards=None, observations=None, scores=None):
        self.episode_length = episode_length
        self.rewards = rewards or {}
        self.observations = observations or {}
        self.scores = scores or {}
        self.steps = 0
        self.done = False
        self.resets = 0
        self.actions = []

    @property
    def observation_size(self):
        return OBS_SIZE

    def reset(self):
        self.resets += 1
        self.steps = 0
        self.done = False

    def observation(self):
        return torch.full((OBS_SIZE,), self.steps / 10.0)

    def is_done(self):
        return self.done

    def step(self, action):
        self.actions.append(action)
        self.steps += 1
        self.done = self.steps >= self.episode_length
        observation = self.observations.get(self.steps, torch.full((OBS_SIZE,), self.steps / 10.0))
        return StepResult(
            observation=observation,
            reward=self.rewards.get(self.steps, 1.0),
            done=self.done,
            score=self.scores.get(self.steps, 0),
            terminal_cause="crash" if self.done else None,
        )


@pytest.fixture
def scripted_env():
    """Factory for ScriptedEnv instances."""
    return ScriptedEnv


@pytest.fixture
def agent_factory():
    """Factory for small CPU agents sized for ScriptedEnv."""
    def build(batch_size=2):
        return DQNAgent(
            input_size=OBS_SIZE,
            output_size=2,
            device=torch.device("cpu"),
            hidden_layers=[8],
            batch_size=batch_size,
            buffer_capacity=100,
            generator=torch.Generator().manual_seed(0),
        )
    return build
