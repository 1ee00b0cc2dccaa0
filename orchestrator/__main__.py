"""
DQN Training CLI.

Entry point for training, evaluating and inspecting configurations.

Usage:
    python -m orchestrator train <config.yaml>
    python -m orchestrator evaluate <config.yaml> --checkpoint <path>
    python -m orchestrator show <config.yaml>
    python -m orchestrator init <config.yaml>
"""

import argparse
import sys
from pathlib import Path

from algorithms.dqn.checkpoint import CheckpointError
from orchestrator.config import TrainingConfig, load_config, save_config
from orchestrator.logging_setup import setup_logging
from orchestrator.metrics import EvaluationMetrics, MetricsCollector
from orchestrator.runner import evaluate, train


def _load_or_exit(config_path: str) -> TrainingConfig:
    if not Path(config_path).exists():
        print(f"Error: Config file not found: {config_path}")
        sys.exit(1)

    try:
        return load_config(config_path)
    except ValueError as e:
        print(f"Error loading config: {e}")
        sys.exit(1)


def cmd_train(args):
    """Train an agent from a configuration file.

    Args:
        args: Parsed command line arguments
    """
    config = _load_or_exit(args.config)

    if args.metrics_dir:
        config.logging.metrics_dir = args.metrics_dir
    if args.save_dir:
        config.checkpoint.save_dir = args.save_dir
    if args.episodes is not None:
        if args.episodes <= 0:
            print("Error: --episodes must be positive")
            sys.exit(1)
        config.session.total_episodes = args.episodes

    setup_logging(config.logging.level_number)

    print(f"Loaded configuration from: {args.config}")
    print(f"  Episodes: {config.session.total_episodes}")
    print(f"  Checkpoint dir: {config.checkpoint.save_dir}")
    print(f"  Metrics dir: {config.logging.metrics_dir}")

    result = train(config, max_ticks=args.max_ticks)

    print(f"\nFinal Summary:")
    print(f"  Episodes: {result.metrics['total_episodes']}")
    print(f"  Finished: {result.metrics['finished']}")
    for path in result.checkpoints:
        print(f"  Checkpoint: {path}")


def cmd_evaluate(args):
    """Evaluate a saved checkpoint with the greedy policy.

    Args:
        args: Parsed command line arguments
    """
    config = _load_or_exit(args.config)
    setup_logging(config.logging.level_number)

    try:
        result = evaluate(config, args.checkpoint, args.episodes, max_steps=args.max_steps)
    except CheckpointError as e:
        print(f"Error: {e}")
        sys.exit(1)

    metrics = EvaluationMetrics.from_episodes(result.scores, result.rewards)
    path = MetricsCollector(config.logging.metrics_dir).save_evaluation(metrics)

    print(f"\nEvaluation Results:")
    print(f"  Episodes: {metrics.num_episodes}")
    print(f"  Avg Score: {metrics.avg_score:.1f}")
    print(f"  Max Score: {metrics.max_score}")
    print(f"  Saved to: {path}")


def cmd_show(args):
    """Print the resolved configuration.

    Args:
        args: Parsed command line arguments
    """
    config = _load_or_exit(args.config)

    print(f"Configuration: {args.config}")
    for section, values in config.to_dict().items():
        print(f"  {section}:")
        for key, value in values.items():
            print(f"      {key}: {value}")


def cmd_init(args):
    """Write a default configuration file.

    Args:
        args: Parsed command line arguments
    """
    output_path = Path(args.output)
    if output_path.exists() and not args.force:
        print(f"Error: {output_path} already exists (use --force to overwrite)")
        sys.exit(1)

    save_config(TrainingConfig(), str(output_path))
    print(f"Saved default config to: {output_path}")


def main():
    """Main entry point for CLI."""
    parser = argparse.ArgumentParser(
        prog="orchestrator",
        description="DQN training for the side-scrolling obstacle environment",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # train command
    train_parser = subparsers.add_parser(
        "train",
        help="Train an agent from a config file",
    )
    train_parser.add_argument(
        "config",
        help="Path to YAML configuration file",
    )
    train_parser.add_argument(
        "--episodes",
        type=int,
        help="Override total episodes",
    )
    train_parser.add_argument(
        "--max-ticks",
        type=int,
        help="Stop after this many ticks",
    )
    train_parser.add_argument(
        "--save-dir",
        help="Override checkpoint directory",
    )
    train_parser.add_argument(
        "--metrics-dir",
        help="Override metrics directory",
    )
    train_parser.set_defaults(func=cmd_train)

    # evaluate command
    evaluate_parser = subparsers.add_parser(
        "evaluate",
        help="Evaluate a checkpoint with the greedy policy",
    )
    evaluate_parser.add_argument(
        "config",
        help="Path to YAML configuration file",
    )
    evaluate_parser.add_argument(
        "--checkpoint", "-c",
        required=True,
        help="Checkpoint path",
    )
    evaluate_parser.add_argument(
        "--episodes", "-n",
        type=int,
        default=10,
        help="Number of evaluation episodes (default: 10)",
    )
    evaluate_parser.add_argument(
        "--max-steps",
        type=int,
        default=10000,
        help="Step cap per episode (default: 10000)",
    )
    evaluate_parser.set_defaults(func=cmd_evaluate)

    # show command
    show_parser = subparsers.add_parser(
        "show",
        help="Show a resolved config file",
    )
    show_parser.add_argument(
        "config",
        help="Path to YAML configuration file",
    )
    show_parser.set_defaults(func=cmd_show)

    # init command
    init_parser = subparsers.add_parser(
        "init",
        help="Write a default config file",
    )
    init_parser.add_argument(
        "output",
        nargs="?",
        default="config.yaml",
        help="Output config file (default: config.yaml)",
    )
    init_parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite an existing file",
    )
    init_parser.set_defaults(func=cmd_init)

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == "__main__":
    main()
