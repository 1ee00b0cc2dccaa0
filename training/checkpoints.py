"""
Named checkpoint storage.

Maps checkpoint names to files in a single directory. Names are plain
identifiers; path separators are rejected so a name can never escape
the store's directory.
"""

from pathlib import Path
from typing import Any, Dict, List

from algorithms.dqn.checkpoint import CheckpointError, read_checkpoint, write_checkpoint


class CheckpointStore:
    """File-backed checkpoint store.

    Attributes:
        save_dir: Directory holding checkpoint files
        suffix: File extension appended to each name
    """

    def __init__(self, save_dir: str, suffix: str = ".pt"):
        self.save_dir = Path(save_dir)
        self.suffix = suffix

    def path_for(self, name: str) -> Path:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise CheckpointError(f"Invalid checkpoint name: {name!r}")
        return self.save_dir / f"{name}{self.suffix}"

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def write(self, name: str, payload: Dict[str, Any]) -> Path:
        """Persist ``payload`` under ``name``.

        Raises:
            CheckpointError: If the name is invalid or the write fails
        """
        return write_checkpoint(self.path_for(name), payload)

    def read(self, name: str, map_location: Any = "cpu") -> Dict[str, Any]:
        """Load the payload stored under ``name``.

        Raises:
            CheckpointError: If missing or malformed
        """
        return read_checkpoint(self.path_for(name), map_location=map_location)

    def names(self) -> List[str]:
        if not self.save_dir.is_dir():
            return []
        return sorted(p.stem for p in self.save_dir.glob(f"*{self.suffix}"))
