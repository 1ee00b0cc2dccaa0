"""
Training Orchestrator Package.

Wires configuration, environment, agent and training session together
for command-line runs.

Key modules:
- config: YAML-backed TrainingConfig dataclasses
- runner: train() and evaluate() entry points
- metrics: Episode JSONL log and run summaries
- logging_setup: Console logging for CLI runs
"""

from orchestrator.config import TrainingConfig, load_config, save_config
from orchestrator.metrics import EvaluationMetrics, MetricsCollector
from orchestrator.runner import EvalResult, TrainingResult, evaluate, train

__all__ = [
    "TrainingConfig",
    "load_config",
    "save_config",
    "EvaluationMetrics",
    "MetricsCollector",
    "EvalResult",
    "TrainingResult",
    "evaluate",
    "train",
]
