"""
Training Runner.

Builds the environment, agent and session described by a TrainingConfig
and drives them headlessly: train() ticks a TrainingSession with AI
control and learning enabled until it finishes, evaluate() plays the
greedy policy from a checkpoint.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import torch

from algorithms.dqn.agent import DQNAgent, EmptyBatchError
from algorithms.dqn.replay_buffer import as_observation, as_reward
from game.env import Environment, SideScrollerEnv
from orchestrator.config import TrainingConfig
from orchestrator.metrics import MetricsCollector
from sensors.lidar import Lidar
from training.checkpoints import CheckpointStore
from training.session import Command, EpisodeRecord, SessionState, TrainingSession

logger = logging.getLogger(__name__)


@dataclass
class TrainingResult:
    """Result of a training run.

    Attributes:
        checkpoints: Saved checkpoint paths
        metrics: Run summary as written to training_metrics.json
        history: Every finished episode, in order
    """
    checkpoints: List[str]
    metrics: Dict[str, Any]
    history: List[EpisodeRecord] = field(default_factory=list)


@dataclass
class EvalResult:
    """Result of an evaluation run.

    Attributes:
        scores: Final score per episode
        rewards: Cumulative reward per episode
        avg_score: Average across all episodes
        max_score: Best score achieved
    """
    scores: List[int]
    rewards: List[float]
    avg_score: float
    max_score: int


def resolve_device(name: Optional[str]) -> torch.device:
    if name is None:
        return torch.device("cuda" if torch.cuda.is_available() else "cpu")
    return torch.device(name)


def build_env(config: TrainingConfig) -> SideScrollerEnv:
    """Create the headless side-scroller described by ``config``."""
    lidar = Lidar(
        max_distance=config.lidar.max_distance,
        ray_count=config.lidar.ray_count,
        max_orientation=config.lidar.max_orientation,
    )
    return SideScrollerEnv(params=config.world, lidar=lidar, reward_model=config.reward)


def build_agent(config: TrainingConfig, input_size: int, output_size: int) -> DQNAgent:
    """Create a DQN agent from the network and agent sections."""
    generator = None
    if config.agent.seed is not None:
        generator = torch.Generator().manual_seed(config.agent.seed)

    return DQNAgent(
        input_size=input_size,
        output_size=output_size,
        device=resolve_device(config.agent.device),
        hidden_layers=list(config.network.hidden_layers),
        learning_rate=config.agent.learning_rate,
        gamma=config.agent.gamma,
        buffer_capacity=config.agent.buffer_capacity,
        batch_size=config.agent.batch_size,
        exploration_fraction=config.agent.exploration_fraction,
        max_grad_norm=config.agent.max_grad_norm,
        generator=generator,
    )


def train(
    config: TrainingConfig,
    env_factory: Optional[Callable[[], Environment]] = None,
    max_ticks: Optional[int] = None,
) -> TrainingResult:
    """Train a DQN agent until the session finishes.

    Args:
        config: Training configuration
        env_factory: Callable returning a fresh Environment; defaults to
                     the headless side-scroller built from config
        max_ticks: Stop after this many ticks even if unfinished;
                   defaults to config.session.max_ticks

    Returns:
        TrainingResult with checkpoint paths and run summary
    """
    if config.agent.seed is not None:
        torch.manual_seed(config.agent.seed)
    if max_ticks is None:
        max_ticks = config.session.max_ticks

    env = env_factory() if env_factory is not None else build_env(config)
    collector = MetricsCollector(config.logging.metrics_dir)
    store = CheckpointStore(config.checkpoint.save_dir)
    log_frequency = config.logging.log_frequency

    def on_episode_end(record: EpisodeRecord) -> None:
        collector.add_episode(record)
        if record.episode % log_frequency == 0:
            loss = f"{record.mean_loss:.4f}" if record.mean_loss is not None else "n/a"
            print(f"Episode {record.episode} | "
                  f"Reward: {record.reward:.2f} | "
                  f"Steps: {record.steps} | "
                  f"Score: {record.score} | "
                  f"Epsilon: {record.epsilon:.3f} | "
                  f"Loss: {loss}")

    session = TrainingSession(
        env,
        lambda: build_agent(config, env.observation_size, env.action_count),
        total_episodes=config.session.total_episodes,
        epsilon_start=config.epsilon.start,
        epsilon_end=config.epsilon.end,
        score_threshold=config.session.score_threshold,
        reset_delay_ticks=config.session.reset_delay_ticks,
        checkpoint_store=store,
        checkpoint_name=config.session.checkpoint_name,
        on_episode_end=on_episode_end,
    )

    print(f"Starting training for {config.session.total_episodes} episodes...")
    session.handle(Command.TOGGLE_TRAINING)
    print(f"Using device: {session.agent.device}")

    ticks = 0
    skipped_updates = 0
    start_time = time.time()
    try:
        while session.state is not SessionState.FINISHED:
            if max_ticks is not None and ticks >= max_ticks:
                print(f"Stopping after {ticks} ticks without finishing")
                session.wait_for_io()
                session.save_checkpoint(config.session.checkpoint_name)
                break
            try:
                session.tick()
            except EmptyBatchError as e:
                skipped_updates += 1
                logger.warning("Skipping optimize cycle: %s", e)
            ticks += 1
    finally:
        session.close()
    training_time = time.time() - start_time

    checkpoints = []
    if store.exists(config.session.checkpoint_name):
        checkpoint_path = str(store.path_for(config.session.checkpoint_name))
        checkpoints.append(checkpoint_path)
        print(f"  Saved checkpoint: {checkpoint_path}")

    finished = session.state is SessionState.FINISHED
    collector.save_summary(
        total_ticks=ticks,
        skipped_updates=skipped_updates,
        optimizer_steps=session.agent.step_count,
        finished=finished,
        training_time_seconds=training_time,
    )
    summary = collector.summary()
    summary.update(total_ticks=ticks, skipped_updates=skipped_updates, finished=finished)

    print(f"\nTraining complete!")
    print(f"Total episodes: {summary['total_episodes']}")
    if summary["best_score"] is not None:
        print(f"Best score: {summary['best_score']}")

    return TrainingResult(checkpoints=checkpoints, metrics=summary, history=list(session.history))


def evaluate(
    config: TrainingConfig,
    checkpoint_path: str,
    num_episodes: int,
    env_factory: Optional[Callable[[], Environment]] = None,
    max_steps: int = 10000,
) -> EvalResult:
    """Evaluate a saved agent with the greedy policy (epsilon 0).

    Args:
        config: Training configuration the checkpoint was produced with
        checkpoint_path: Path to saved model
        num_episodes: How many episodes to run
        env_factory: Callable returning a fresh Environment
        max_steps: Per-episode step cap

    Returns:
        EvalResult with scores

    Raises:
        CheckpointError: If the checkpoint is missing or incompatible
    """
    env = env_factory() if env_factory is not None else build_env(config)
    agent = build_agent(config, env.observation_size, env.action_count)
    agent.load_checkpoint(checkpoint_path)

    scores: List[int] = []
    rewards: List[float] = []

    for _ in range(num_episodes):
        env.reset()
        episode_reward = 0.0
        steps = 0

        while not env.is_done() and steps < max_steps:
            observation = as_observation(env.observation(), env.observation_size)
            if observation is None:
                logger.warning("Invalid observation during evaluation; ending episode")
                break

            result = env.step(agent.act(observation, 0.0))
            reward = as_reward(result.reward)
            episode_reward += reward if reward is not None else 0.0
            steps += 1

        scores.append(env.score)
        rewards.append(episode_reward)

    return EvalResult(
        scores=scores,
        rewards=rewards,
        avg_score=sum(scores) / len(scores) if scores else 0.0,
        max_score=max(scores) if scores else 0,
    )
