"""
Training Configuration.

Defines configuration dataclasses for a DQN training run and the YAML
loader/saver for them. Each top-level YAML key maps to one section
dataclass; missing sections fall back to defaults.
"""

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from game.reward import RewardModel
from game.world import WorldParams


VALID_LOG_LEVELS = frozenset(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])


@dataclass
class NetworkConfig:
    """Q-network shape.

    Attributes:
        hidden_layers: Sizes of the hidden fully-connected layers
    """
    hidden_layers: List[int] = field(default_factory=lambda: [256, 256])

    def __post_init__(self):
        if not self.hidden_layers:
            raise ValueError("hidden_layers must not be empty")
        if any(size <= 0 for size in self.hidden_layers):
            raise ValueError("hidden_layers sizes must be positive")


@dataclass
class AgentConfig:
    """DQN agent hyperparameters.

    Attributes:
        learning_rate: Adam learning rate
        gamma: Discount factor
        batch_size: Transitions per update
        buffer_capacity: Replay buffer capacity
        exploration_fraction: Share of action indices random exploration draws from
        max_grad_norm: Gradient clipping norm
        device: "cpu", "cuda" or None to auto-detect
        seed: Seed for torch and the agent's generator, None for nondeterministic
    """
    learning_rate: float = 0.001
    gamma: float = 0.99
    batch_size: int = 64
    buffer_capacity: int = 10000
    exploration_fraction: float = 0.6
    max_grad_norm: float = 10.0
    device: Optional[str] = None
    seed: Optional[int] = None

    def __post_init__(self):
        if self.learning_rate <= 0:
            raise ValueError("learning_rate must be positive")
        if not 0.0 <= self.gamma <= 1.0:
            raise ValueError(f"gamma must be in [0, 1], got {self.gamma}")
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if self.buffer_capacity <= 0:
            raise ValueError("buffer_capacity must be positive")
        if self.batch_size > self.buffer_capacity:
            raise ValueError("batch_size must not exceed buffer_capacity")
        if not 0.0 < self.exploration_fraction <= 1.0:
            raise ValueError("exploration_fraction must be in (0, 1]")
        if self.max_grad_norm <= 0:
            raise ValueError("max_grad_norm must be positive")


@dataclass
class EpsilonConfig:
    """Linear exploration schedule endpoints."""
    start: float = 1.0
    end: float = 0.05

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"epsilon {name} must be in [0, 1], got {value}")
        if self.end > self.start:
            raise ValueError("epsilon end must not exceed epsilon start")


@dataclass
class SessionConfig:
    """Episode budget and loop timing.

    Attributes:
        total_episodes: Episodes before training finishes
        score_threshold: Score that finishes training early, None to disable
        reset_delay_ticks: Ticks between a terminal and the next reset
        checkpoint_name: Name of the checkpoint saved on finish
        max_ticks: Hard cap on ticks per run, None for no cap
    """
    total_episodes: int = 500
    score_threshold: Optional[int] = 100
    reset_delay_ticks: int = 18
    checkpoint_name: str = "dqn-final"
    max_ticks: Optional[int] = None

    def __post_init__(self):
        if self.total_episodes <= 0:
            raise ValueError("total_episodes must be positive")
        if self.score_threshold is not None and self.score_threshold <= 0:
            raise ValueError("score_threshold must be positive")
        if self.reset_delay_ticks < 0:
            raise ValueError("reset_delay_ticks must be non-negative")
        if not self.checkpoint_name:
            raise ValueError("checkpoint_name must not be empty")
        if self.max_ticks is not None and self.max_ticks <= 0:
            raise ValueError("max_ticks must be positive")


@dataclass
class LidarConfig:
    ray_count: int = 180
    max_distance: float = 300.0
    max_orientation: float = 45.0

    def __post_init__(self):
        if self.ray_count <= 0:
            raise ValueError("ray_count must be positive")
        if self.max_distance <= 0:
            raise ValueError("max_distance must be positive")


@dataclass
class CheckpointConfig:
    save_dir: str = "checkpoints"


@dataclass
class LoggingConfig:
    """Console logging and metrics output.

    Attributes:
        level: Root log level name
        log_frequency: Print a progress line every N episodes
        metrics_dir: Directory for episodes.jsonl and training_metrics.json
    """
    level: str = "INFO"
    log_frequency: int = 10
    metrics_dir: str = "results"

    def __post_init__(self):
        self.level = self.level.upper()
        if self.level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"Invalid log level '{self.level}'. "
                f"Must be one of: {sorted(VALID_LOG_LEVELS)}"
            )
        if self.log_frequency <= 0:
            raise ValueError("log_frequency must be positive")

    @property
    def level_number(self) -> int:
        return getattr(logging, self.level)


@dataclass
class TrainingConfig:
    """Complete configuration for a training run."""
    network: NetworkConfig = field(default_factory=NetworkConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    epsilon: EpsilonConfig = field(default_factory=EpsilonConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    lidar: LidarConfig = field(default_factory=LidarConfig)
    reward: RewardModel = field(default_factory=RewardModel)
    world: WorldParams = field(default_factory=WorldParams)
    checkpoint: CheckpointConfig = field(default_factory=CheckpointConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "TrainingConfig":
        """Build a config from a parsed YAML mapping.

        Raises:
            ValueError: On unknown sections or keys, or invalid values
        """
        if not isinstance(raw, dict):
            raise ValueError("Config must be a mapping of sections")

        section_types = {f.name: f.default_factory for f in fields(cls)}
        unknown = sorted(set(raw) - set(section_types))
        if unknown:
            raise ValueError(f"Unknown config sections: {unknown}")

        sections = {}
        for name, raw_section in raw.items():
            if raw_section is None:
                continue
            if not isinstance(raw_section, dict):
                raise ValueError(f"Config section '{name}' must be a mapping")
            section_cls = section_types[name]
            known = {f.name for f in fields(section_cls)}
            unknown_keys = sorted(set(raw_section) - known)
            if unknown_keys:
                raise ValueError(f"Unknown keys in section '{name}': {unknown_keys}")
            sections[name] = section_cls(**raw_section)

        return cls(**sections)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: asdict(getattr(self, f.name)) for f in fields(self)}


def load_config(config_path: str) -> TrainingConfig:
    """Load training configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        TrainingConfig with defaults for missing sections

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r') as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raise ValueError("Config file is empty")

    return TrainingConfig.from_dict(raw)


def save_config(config: TrainingConfig, config_path: str) -> None:
    """Save training configuration to YAML file.

    Args:
        config: Configuration to save
        config_path: Path to output YAML file
    """
    path = Path(config_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)
