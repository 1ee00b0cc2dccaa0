"""
Episodic training session.

TrainingSession is the single aggregate that owns the agent, the episode
counters and the control-mode flags. An external fixed-rate loop calls
tick() once per frame; discrete control inputs arrive through handle()
as Command values.

States:
- IDLE: no agent yet, or neither AI control nor training is enabled
- RUNNING: episode active, stepping and optionally learning
- AWAITING_RESET: terminal just occurred; a fixed number of ticks pass
  before the environment is reset
- FINISHED: episode budget exhausted or score threshold reached; a
  checkpoint save was submitted and training is halted for good

Checkpoint save/load run on a single background worker. While one is
outstanding, tick() neither acts nor optimizes.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from torch import Tensor

from algorithms.dqn.agent import DQNAgent
from algorithms.dqn.checkpoint import CheckpointError
from algorithms.dqn.replay_buffer import as_observation, as_reward
from game.env import Environment, zero_observation
from training.checkpoints import CheckpointStore
from training.schedule import linear_epsilon

logger = logging.getLogger(__name__)


class SessionState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    AWAITING_RESET = "awaiting_reset"
    FINISHED = "finished"


class Command(Enum):
    """Discrete control inputs accepted by TrainingSession.handle()."""
    TOGGLE_TRAINING = "toggle_training"
    TOGGLE_AI_CONTROL = "toggle_ai_control"
    SAVE_CHECKPOINT = "save_checkpoint"
    LOAD_CHECKPOINT = "load_checkpoint"
    TOGGLE_SENSOR_OVERLAY = "toggle_sensor_overlay"


@dataclass
class EpisodeRecord:
    """Summary of one finished episode.

    Attributes:
        episode: 1-based episode number
        reward: Cumulative reward
        steps: Environment steps taken
        score: Final score counter
        epsilon: Exploration rate used during the episode
        mean_loss: Mean training loss, None if no update ran
        terminal_cause: "floor", "crash", "invalid_observation" or None
    """
    episode: int
    reward: float
    steps: int
    score: int
    epsilon: float
    mean_loss: Optional[float] = None
    terminal_cause: Optional[str] = None


@dataclass
class EpisodeState:
    """Episode counter plus per-episode accumulators."""
    count: int = 0
    steps: int = 0
    cumulative_reward: float = 0.0
    score: int = 0
    losses: List[float] = field(default_factory=list)

    def reset_accumulators(self) -> None:
        self.steps = 0
        self.cumulative_reward = 0.0
        self.score = 0
        self.losses = []

    @property
    def mean_loss(self) -> Optional[float]:
        if not self.losses:
            return None
        return sum(self.losses) / len(self.losses)


@dataclass
class TickResult:
    """What happened during one tick.

    Attributes:
        state: Session state after the tick
        skipped: True if the tick did not step the environment
        action: Action applied, if a step happened
        reward: Reward of the step
        done: Whether the step ended the episode
        metrics: optimize_model() metrics, if an update ran
        record: EpisodeRecord if an episode ended on this tick
    """
    state: SessionState
    skipped: bool = False
    action: Optional[int] = None
    reward: float = 0.0
    done: bool = False
    metrics: Optional[Dict[str, float]] = None
    record: Optional[EpisodeRecord] = None


INVALID_OBSERVATION = "invalid_observation"


class TrainingSession:
    """Drives one agent through episodes of one environment.

    Args:
        env: Environment to drive
        agent_factory: Builds the agent the first time one is needed
        total_episodes: Episode budget; also the epsilon decay horizon
        epsilon_start: Exploration rate at episode 0
        epsilon_end: Exploration rate at the last episode
        score_threshold: Score that ends training mid-episode, None to disable
        reset_delay_ticks: Ticks spent in AWAITING_RESET after a terminal
        checkpoint_store: Where SAVE/LOAD commands read and write
        checkpoint_name: Default checkpoint name
        on_episode_end: Called with each EpisodeRecord
        agent: Pre-built agent, skips agent_factory
    """

    def __init__(
        self,
        env: Environment,
        agent_factory: Callable[[], DQNAgent],
        *,
        total_episodes: int = 500,
        epsilon_start: float = 1.0,
        epsilon_end: float = 0.05,
        score_threshold: Optional[int] = 100,
        reset_delay_ticks: int = 18,
        checkpoint_store: Optional[CheckpointStore] = None,
        checkpoint_name: str = "dqn-final",
        on_episode_end: Optional[Callable[[EpisodeRecord], None]] = None,
        agent: Optional[DQNAgent] = None,
    ):
        if total_episodes <= 0:
            raise ValueError("total_episodes must be positive")
        if reset_delay_ticks < 0:
            raise ValueError("reset_delay_ticks must be non-negative")

        self.env = env
        self.agent_factory = agent_factory
        self.agent = agent
        self.total_episodes = total_episodes
        self.epsilon_start = epsilon_start
        self.epsilon_end = epsilon_end
        self.score_threshold = score_threshold
        self.reset_delay_ticks = reset_delay_ticks
        self.checkpoint_store = checkpoint_store
        self.checkpoint_name = checkpoint_name
        self.on_episode_end = on_episode_end

        # Control modes
        self.ai_control = False
        self.training_mode = False
        self.sensor_overlay = False

        self.episode = EpisodeState()
        self.history: List[EpisodeRecord] = []

        self._started = False
        self._finished = False
        self._reset_countdown: Optional[int] = None
        self._prev_observation: Optional[Tensor] = None
        self._prev_action: Optional[int] = None

        self._executor: Optional[ThreadPoolExecutor] = None
        self._io_future: Optional[Future] = None
        self._io_kind: Optional[str] = None
        self._io_name: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        if self._finished:
            return SessionState.FINISHED
        if self.agent is None or not (self.ai_control or self.training_mode):
            return SessionState.IDLE
        if self._reset_countdown is not None:
            return SessionState.AWAITING_RESET
        return SessionState.RUNNING

    @property
    def epsilon(self) -> float:
        """Scheduled exploration rate for the current episode."""
        return linear_epsilon(
            self.episode.count, self.epsilon_start, self.epsilon_end, self.total_episodes
        )

    @property
    def io_pending(self) -> bool:
        return self._io_future is not None

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def handle(self, command: Command, name: Optional[str] = None) -> bool:
        """Apply a control command.

        Args:
            command: Command to apply
            name: Checkpoint name for SAVE/LOAD, defaults to checkpoint_name

        Returns:
            True if the command took effect
        """
        if command is Command.TOGGLE_TRAINING:
            return self._toggle_training()
        if command is Command.TOGGLE_AI_CONTROL:
            return self._toggle_ai_control()
        if command is Command.SAVE_CHECKPOINT:
            return self.save_checkpoint(name)
        if command is Command.LOAD_CHECKPOINT:
            return self.load_checkpoint(name)
        if command is Command.TOGGLE_SENSOR_OVERLAY:
            self.sensor_overlay = not self.sensor_overlay
            return True
        raise ValueError(f"Unknown command: {command!r}")

    def _toggle_training(self) -> bool:
        if self._finished:
            logger.warning("Training already finished; ignoring toggle")
            return False
        self._ensure_agent()
        self.ai_control = not self.ai_control
        self.training_mode = self.ai_control
        self._ensure_started()
        logger.info("Training %s", "enabled" if self.training_mode else "paused")
        return True

    def _toggle_ai_control(self) -> bool:
        if self._finished:
            logger.warning("Training already finished; ignoring toggle")
            return False
        self._ensure_agent()
        self.ai_control = not self.ai_control
        self._ensure_started()
        return True

    def _ensure_agent(self) -> DQNAgent:
        if self.agent is None:
            self.agent = self.agent_factory()
        return self.agent

    def _ensure_started(self) -> None:
        if not self._started:
            self.env.reset()
            self._started = True

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, human_action: int = 0) -> TickResult:
        """Advance the session by one tick.

        Args:
            human_action: Action applied when AI control is off

        Returns:
            TickResult describing the tick

        Raises:
            EmptyBatchError: If a training update found no valid sample;
                             episode bookkeeping for this tick is already
                             complete when it propagates
        """
        self._poll_io()
        if self.io_pending:
            return TickResult(self.state, skipped=True)

        state = self.state
        if state in (SessionState.IDLE, SessionState.FINISHED):
            return TickResult(state, skipped=True)

        if state is SessionState.AWAITING_RESET:
            self._reset_countdown -= 1
            if self._reset_countdown <= 0:
                self._reset_environment()
            return TickResult(self.state, skipped=True)

        agent = self.agent
        if self.env.is_done():
            # Episode ended outside step(); close it with a synthetic terminal
            if self._prev_observation is not None and self._prev_action is not None:
                agent.store_transition(
                    self._prev_observation, self._prev_action, 0.0,
                    self._prev_observation, True,
                )
            record = self._end_episode(None)
            return TickResult(self.state, done=True, record=record)

        force_done = False
        observation = self._prev_observation
        if observation is None:
            observation = self._sanitize_observation(self.env.observation())
            if observation is None:
                observation = zero_observation(self.env.observation_size)
                force_done = True

        if self.ai_control:
            epsilon = self.epsilon if self.training_mode else 0.0
            action = agent.act(observation, epsilon)
        else:
            action = human_action

        result = self.env.step(action)

        next_observation = self._sanitize_observation(result.observation)
        if next_observation is None:
            next_observation = zero_observation(self.env.observation_size)
            force_done = True

        reward = as_reward(result.reward)
        if reward is None:
            logger.warning("Non-finite reward %r replaced with 0.0", result.reward)
            reward = 0.0

        done = bool(result.done) or force_done
        cause = INVALID_OBSERVATION if force_done and not result.done else result.terminal_cause

        agent.store_transition(observation, action, reward, next_observation, done)
        self._prev_observation = next_observation
        self._prev_action = action

        self.episode.steps += 1
        self.episode.cumulative_reward += reward
        self.episode.score = result.score

        metrics = None
        record = None
        try:
            if self.training_mode:
                metrics = agent.optimize_model()
                if metrics is not None:
                    self.episode.losses.append(metrics["loss"])
        finally:
            threshold_reached = self._threshold_reached(result.score)
            if done:
                record = self._end_episode(cause)
            if threshold_reached and not self._finished:
                logger.info("Score threshold %d reached", self.score_threshold)
                self._finish()

        return TickResult(
            self.state,
            action=action,
            reward=reward,
            done=done,
            metrics=metrics,
            record=record,
        )

    def _sanitize_observation(self, value: Any) -> Optional[Tensor]:
        observation = as_observation(value, self.env.observation_size)
        if observation is None:
            logger.warning("Invalid observation from environment; ending episode")
        return observation

    def _threshold_reached(self, score: int) -> bool:
        return (
            self.training_mode
            and self.score_threshold is not None
            and score >= self.score_threshold
        )

    def _end_episode(self, cause: Optional[str]) -> EpisodeRecord:
        episode = self.episode
        record = EpisodeRecord(
            episode=episode.count + 1,
            reward=episode.cumulative_reward,
            steps=episode.steps,
            score=episode.score,
            epsilon=self.epsilon if self.training_mode else 0.0,
            mean_loss=episode.mean_loss,
            terminal_cause=cause,
        )

        episode.count += 1
        episode.reset_accumulators()
        self._prev_observation = None
        self._prev_action = None
        self.history.append(record)

        if self.on_episode_end is not None:
            self.on_episode_end(record)

        if self.training_mode and episode.count >= self.total_episodes:
            logger.info("Episode budget of %d reached", self.total_episodes)
            self._finish()
        elif self.reset_delay_ticks > 0:
            self._reset_countdown = self.reset_delay_ticks
        else:
            self._reset_environment()

        return record

    def _reset_environment(self) -> None:
        self._reset_countdown = None
        self._prev_observation = None
        self._prev_action = None
        self.env.reset()

    def _finish(self) -> None:
        self.ai_control = False
        self.training_mode = False
        self._finished = True
        self._reset_countdown = None
        if self.checkpoint_store is not None:
            self.save_checkpoint(self.checkpoint_name)

    # ------------------------------------------------------------------
    # Checkpoint I/O
    # ------------------------------------------------------------------

    def save_checkpoint(self, name: Optional[str] = None) -> bool:
        """Submit an asynchronous save of the current parameters.

        Returns:
            True if the save was submitted
        """
        name = name or self.checkpoint_name
        if not self._can_submit("save"):
            return False
        if self.agent is None:
            logger.warning("No agent to save")
            return False

        snapshot = self.agent.checkpoint_state()
        self._submit("save", name, self.checkpoint_store.write, name, snapshot)
        return True

    def load_checkpoint(self, name: Optional[str] = None) -> bool:
        """Submit an asynchronous load; parameters swap when it completes.

        Returns:
            True if the load was submitted
        """
        name = name or self.checkpoint_name
        if not self._can_submit("load"):
            return False

        agent = self._ensure_agent()
        self._submit("load", name, self.checkpoint_store.read, name, agent.device)
        return True

    def _can_submit(self, kind: str) -> bool:
        if self.checkpoint_store is None:
            logger.warning("No checkpoint store configured; %s ignored", kind)
            return False
        self._poll_io()
        if self.io_pending:
            logger.warning("Checkpoint %s already in progress; %s ignored", self._io_kind, kind)
            return False
        return True

    def _submit(self, kind: str, name: str, fn: Callable, *args) -> None:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="checkpoint-io"
            )
        self._io_kind = kind
        self._io_name = name
        self._io_future = self._executor.submit(fn, *args)

    def _poll_io(self) -> None:
        if self._io_future is not None and self._io_future.done():
            self._settle_io()

    def _settle_io(self) -> None:
        future, kind, name = self._io_future, self._io_kind, self._io_name
        self._io_future = None
        self._io_kind = None
        self._io_name = None

        try:
            result = future.result()
            if kind == "load":
                self.agent.apply_checkpoint(result)
        except CheckpointError as e:
            logger.error("Checkpoint %s of '%s' failed: %s", kind, name, e)
            return

        if kind == "load":
            logger.info("Loaded checkpoint '%s'", name)
        else:
            logger.info("Saved checkpoint '%s' to %s", name, result)

    def wait_for_io(self, timeout: Optional[float] = None) -> None:
        """Block until any outstanding save/load has settled."""
        if self._io_future is not None:
            wait([self._io_future], timeout=timeout)
        self._poll_io()

    def close(self) -> None:
        """Drain outstanding I/O and release the worker thread."""
        self.wait_for_io()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
