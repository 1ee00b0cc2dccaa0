"""
Metrics Collection.

Collects per-episode training records and evaluation scores.

Episodes are appended to ``episodes.jsonl`` as they finish, one JSON
object per line, so a crashed run still leaves its history on disk.
The end-of-run summary goes to ``training_metrics.json``.
"""

import json
import statistics
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List

from training.session import EpisodeRecord


EPISODES_FILE = "episodes.jsonl"
SUMMARY_FILE = "training_metrics.json"
EVALUATION_FILE = "evaluation_metrics.json"


@dataclass
class EvaluationMetrics:
    """Metrics from a greedy evaluation run.

    Attributes:
        num_episodes: Number of episodes played
        scores: Final score of each episode
        rewards: Cumulative reward of each episode
        avg_score: Mean score
        max_score: Maximum score achieved
        min_score: Minimum score
        std_score: Standard deviation of scores
        timestamp: When evaluation completed
    """
    num_episodes: int
    scores: List[int]
    rewards: List[float]
    avg_score: float
    max_score: int
    min_score: int
    std_score: float
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @classmethod
    def from_episodes(cls, scores: List[int], rewards: List[float]) -> "EvaluationMetrics":
        """Create EvaluationMetrics from per-episode scores and rewards."""
        if not scores:
            return cls(
                num_episodes=0,
                scores=[],
                rewards=[],
                avg_score=0.0,
                max_score=0,
                min_score=0,
                std_score=0.0,
            )

        return cls(
            num_episodes=len(scores),
            scores=list(scores),
            rewards=list(rewards),
            avg_score=statistics.mean(scores),
            max_score=max(scores),
            min_score=min(scores),
            std_score=statistics.stdev(scores) if len(scores) > 1 else 0.0,
        )


class MetricsCollector:
    """Collects episode records for one training run.

    Attributes:
        results_dir: Directory receiving the metrics files
        episodes: Records added so far, in order
    """

    def __init__(self, results_dir: str):
        """Initialize metrics collector.

        Args:
            results_dir: Directory for storing metrics files
        """
        self.results_dir = Path(results_dir)
        self.episodes: List[EpisodeRecord] = []

    @property
    def episodes_path(self) -> Path:
        return self.results_dir / EPISODES_FILE

    def add_episode(self, record: EpisodeRecord) -> None:
        """Add an episode record and append it to the JSONL log.

        Args:
            record: Finished episode
        """
        self.episodes.append(record)
        self.results_dir.mkdir(parents=True, exist_ok=True)
        with open(self.episodes_path, 'a') as f:
            line = asdict(record)
            line["timestamp"] = datetime.now().isoformat()
            f.write(json.dumps(line) + "\n")

    def summary(self) -> Dict[str, Any]:
        """Aggregate statistics over all recorded episodes."""
        if not self.episodes:
            return {
                "total_episodes": 0,
                "total_steps": 0,
                "best_reward": None,
                "mean_reward": None,
                "best_score": None,
                "mean_score": None,
            }

        rewards = [r.reward for r in self.episodes]
        scores = [r.score for r in self.episodes]
        return {
            "total_episodes": len(self.episodes),
            "total_steps": sum(r.steps for r in self.episodes),
            "best_reward": max(rewards),
            "mean_reward": statistics.mean(rewards),
            "best_score": max(scores),
            "mean_score": statistics.mean(scores),
        }

    def save_summary(self, **extra: Any) -> Path:
        """Write the run summary to training_metrics.json.

        Args:
            **extra: Additional fields merged into the summary

        Returns:
            Path written
        """
        self.results_dir.mkdir(parents=True, exist_ok=True)
        data = self.summary()
        data.update(extra)
        data["timestamp"] = datetime.now().isoformat()

        path = self.results_dir / SUMMARY_FILE
        with open(path, 'w') as f:
            json.dump(data, f, indent=2)
        return path

    def save_evaluation(self, metrics: EvaluationMetrics) -> Path:
        self.results_dir.mkdir(parents=True, exist_ok=True)
        path = self.results_dir / EVALUATION_FILE
        with open(path, 'w') as f:
            json.dump(asdict(metrics), f, indent=2)
        return path


def load_episodes(results_dir: str) -> List[EpisodeRecord]:
    """Read back the episode log written by MetricsCollector.

    Args:
        results_dir: Directory containing episodes.jsonl

    Returns:
        Records in file order; empty if the log does not exist
    """
    path = Path(results_dir) / EPISODES_FILE
    if not path.exists():
        return []

    records = []
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            data = json.loads(line)
            data.pop("timestamp", None)
            records.append(EpisodeRecord(**data))
    return records
