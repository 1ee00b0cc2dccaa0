"""
Headless side-scrolling obstacle world.

A minimal stand-in for the rendered game: one agent falling under
gravity, an impulse action that sets its vertical velocity, and pairs of
upper/lower obstacles scrolling left with a gap between them. It only
needs to be good enough to exercise the training loop end to end.

Coordinates are screen coordinates (y grows downward). The agent's
position is the center of its bounding box.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

import torch

from sensors.geometry import Rect
from sensors.lidar import WorldGeometry

FLOOR = "floor"
CRASH = "crash"


@dataclass
class WorldParams:
    """Physical parameters of the obstacle world.

    Attributes:
        width: Visible width in pixels
        height: Visible height in pixels
        ground_height: Height of the ground strip at the bottom
        gravity: Downward acceleration (px/s^2)
        impulse_velocity: Vertical velocity set by an impulse (px/s)
        scroll_speed: Horizontal obstacle velocity (px/s, negative = left)
        gap_height: Vertical opening between paired obstacles
        obstacle_width: Width of each obstacle
        obstacle_height: Height of each obstacle
        obstacle_spacing: Minimum distance from the right edge to the last
                          obstacle before another pair spawns
        agent_width: Agent bounding box width
        agent_height: Agent bounding box height
        timestep: Seconds per step
        seed: Optional seed for gap placement
    """
    width: float = 288.0
    height: float = 512.0
    ground_height: float = 112.0
    gravity: float = 1300.0
    impulse_velocity: float = -400.0
    scroll_speed: float = -150.0
    gap_height: float = 130.0
    obstacle_width: float = 52.0
    obstacle_height: float = 320.0
    obstacle_spacing: float = 200.0
    agent_width: float = 34.0
    agent_height: float = 24.0
    timestep: float = 1.0 / 60.0
    seed: Optional[int] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError("width and height must be positive")
        if not 0 <= self.ground_height < self.height:
            raise ValueError("ground_height must be in [0, height)")
        if self.gap_height <= 0 or self.gap_height >= self.height - self.ground_height:
            raise ValueError("gap_height must fit between ceiling and ground")
        if self.timestep <= 0:
            raise ValueError("timestep must be positive")

    @property
    def ground_y(self) -> float:
        return self.height - self.ground_height


@dataclass
class ObstaclePair:
    upper: Rect
    lower: Rect
    passed: bool = False

    @property
    def right(self) -> float:
        return self.upper.right

    @property
    def left(self) -> float:
        return self.upper.left


class ObstacleWorld:
    """Single-agent obstacle world advanced in fixed timesteps."""

    def __init__(self, params: Optional[WorldParams] = None):
        self.params = params if params is not None else WorldParams()
        self.generator = torch.Generator()
        if self.params.seed is not None:
            self.generator.manual_seed(self.params.seed)
        else:
            self.generator.seed()

        self.agent_x = 0.0
        self.agent_y = 0.0
        self.velocity_y = 0.0
        self.obstacles: List[ObstaclePair] = []
        self.score = 0
        self.done = False
        self.terminal_cause: Optional[str] = None
        self.reset()

    def reset(self) -> None:
        """Put the agent back at its start position and clear obstacles."""
        p = self.params
        self.agent_x = p.width / 4
        self.agent_y = p.height / 2
        self.velocity_y = 0.0
        self.obstacles = []
        self.score = 0
        self.done = False
        self.terminal_cause = None
        self._spawn_pair()

    @property
    def agent_rect(self) -> Rect:
        p = self.params
        return Rect.from_center(self.agent_x, self.agent_y, p.agent_width, p.agent_height)

    def step(self, impulse: bool) -> None:
        """Advance one timestep. No-op once the episode is over."""
        if self.done:
            return

        p = self.params
        dt = p.timestep

        if impulse:
            self.velocity_y = p.impulse_velocity
        self.velocity_y += p.gravity * dt
        self.agent_y += self.velocity_y * dt

        # Ceiling is a hard bound, not a terminal
        top_limit = p.agent_height / 2
        if self.agent_y < top_limit:
            self.agent_y = top_limit
            self.velocity_y = 0.0

        dx = p.scroll_speed * dt
        for pair in self.obstacles:
            pair.upper = pair.upper.translated(dx)
            pair.lower = pair.lower.translated(dx)
        self.obstacles = [pair for pair in self.obstacles if pair.right >= 0]

        # At most one point per step
        for pair in self.obstacles:
            if not pair.passed and pair.right < self.agent_x:
                pair.passed = True
                self.score += 1
                break

        if not self.obstacles or p.width - self.obstacles[-1].left >= p.obstacle_spacing:
            self._spawn_pair()

        self._check_collisions()

    def _check_collisions(self) -> None:
        p = self.params
        agent = self.agent_rect

        if agent.bottom >= p.ground_y:
            self.agent_y = p.ground_y - p.agent_height / 2
            self.velocity_y = 0.0
            self._end(FLOOR)
            return

        for pair in self.obstacles:
            if agent.intersects(pair.upper) or agent.intersects(pair.lower):
                self._end(CRASH)
                return

    def _end(self, cause: str) -> None:
        self.done = True
        self.terminal_cause = cause

    def _spawn_pair(self) -> None:
        p = self.params
        low = p.gap_height / 2
        high = p.ground_y - p.gap_height / 2
        draw = torch.rand((), generator=self.generator).item()
        gap_center = low + draw * (high - low)

        left = p.width
        right = p.width + p.obstacle_width
        gap_top = gap_center - p.gap_height / 2
        gap_bottom = gap_center + p.gap_height / 2

        self.obstacles.append(ObstaclePair(
            upper=Rect(left, gap_top - p.obstacle_height, right, gap_top),
            lower=Rect(left, gap_bottom, right, gap_bottom + p.obstacle_height),
        ))

    def geometry(self) -> WorldGeometry:
        """Surfaces visible to the range sensor."""
        return WorldGeometry(
            ground_y=self.params.ground_y,
            ceiling_y=0.0,
            upper_obstacles=tuple(pair.upper for pair in self.obstacles),
            lower_obstacles=tuple(pair.lower for pair in self.obstacles),
        )

    @property
    def position(self) -> Tuple[float, float]:
        return (self.agent_x, self.agent_y)
