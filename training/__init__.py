"""Training loop: episode state machine, epsilon schedule and checkpoints."""

from training.checkpoints import CheckpointStore
from training.schedule import linear_epsilon
from training.session import (
    Command,
    EpisodeRecord,
    EpisodeState,
    SessionState,
    TickResult,
    TrainingSession,
)

__all__ = [
    "CheckpointStore",
    "linear_epsilon",
    "Command",
    "EpisodeRecord",
    "EpisodeState",
    "SessionState",
    "TickResult",
    "TrainingSession",
]
