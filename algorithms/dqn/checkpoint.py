"""
Checkpoint file I/O for DQN agents.

A checkpoint is a single torch-serialized dict:

    {
        "architecture": {"input_size", "output_size", "hidden_layers"},
        "model_state_dict": ...,
        "optimizer_state_dict": ...,
        "step_count": int,
    }

Writes go to a temporary sibling file first and are moved into place,
so an interrupted save never leaves a truncated checkpoint behind.
"""

import os
from pathlib import Path
from typing import Any, Dict, Union

import torch

PathLike = Union[str, Path]

REQUIRED_KEYS = ("architecture", "model_state_dict")


class CheckpointError(RuntimeError):
    """Raised when a checkpoint is missing, unreadable or incompatible.

    The agent's parameters are never modified when this is raised.
    """
    pass


def write_checkpoint(path: PathLike, payload: Dict[str, Any]) -> Path:
    """Serialize ``payload`` to ``path``.

    Args:
        path: Destination file
        payload: Checkpoint dict

    Returns:
        The path written

    Raises:
        CheckpointError: If the file cannot be written
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        torch.save(payload, tmp_path)
        os.replace(tmp_path, path)
    except (OSError, RuntimeError) as e:
        raise CheckpointError(f"Failed to write checkpoint {path}: {e}") from e
    return path


def read_checkpoint(path: PathLike, map_location: Any = "cpu") -> Dict[str, Any]:
    """Load and structurally validate a checkpoint dict.

    Args:
        path: Checkpoint file
        map_location: Device mapping passed to torch.load

    Returns:
        Checkpoint dict

    Raises:
        CheckpointError: If the file is missing or malformed
    """
    path = Path(path)
    if not path.is_file():
        raise CheckpointError(f"Checkpoint not found: {path}")

    try:
        payload = torch.load(path, map_location=map_location)
    except Exception as e:
        raise CheckpointError(f"Failed to read checkpoint {path}: {e}") from e

    if not isinstance(payload, dict):
        raise CheckpointError(f"Malformed checkpoint {path}: expected a dict")
    missing = [key for key in REQUIRED_KEYS if key not in payload]
    if missing:
        raise CheckpointError(f"Malformed checkpoint {path}: missing {missing}")

    return payload
