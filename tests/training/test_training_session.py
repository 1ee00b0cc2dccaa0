"""Tests for the episodic training session state machine."""

import logging
import threading
from unittest.mock import MagicMock, patch

import pytest
import torch

from algorithms.dqn.agent import EmptyBatchError
from training.checkpoints import CheckpointStore
from training.session import Command, SessionState, TrainingSession


class BlockingStore(CheckpointStore):
    """Store whose writes wait for a gate, to hold I/O in flight."""

    def __init__(self, save_dir, gate):
        super().__init__(save_dir)
        self.gate = gate

    def write(self, name, payload):
        self.gate.wait(timeout=5)
        return super().write(name, payload)


@pytest.fixture
def make_session(agent_factory):
    sessions = []

    def build(env, **kwargs):
        kwargs.setdefault("reset_delay_ticks", 0)
        session = TrainingSession(env, agent_factory, **kwargs)
        sessions.append(session)
        return session

    yield build
    for session in sessions:
        session.close()


def snapshot_params(agent):
    return {name: p.detach().clone() for name, p in agent.policy_net.named_parameters()}


def params_equal(agent, snapshot):
    return all(
        torch.equal(p.detach(), snapshot[name])
        for name, p in agent.policy_net.named_parameters()
    )


class TestControlModes:
    """Test command handling and derived state."""

    def test_starts_idle(self, scripted_env, make_session):
        env = scripted_env()
        session = make_session(env)

        result = session.tick()

        assert session.state is SessionState.IDLE
        assert result.skipped
        assert session.agent is None
        assert env.actions == []

    def test_toggle_training_starts_running(self, scripted_env, make_session):
        env = scripted_env()
        session = make_session(env)

        assert session.handle(Command.TOGGLE_TRAINING)

        assert session.state is SessionState.RUNNING
        assert session.agent is not None
        assert session.ai_control and session.training_mode
        assert env.resets == 1

    def test_toggle_twice_pauses(self, scripted_env, make_session):
        env = scripted_env()
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)
        session.handle(Command.TOGGLE_TRAINING)

        result = session.tick()

        assert session.state is SessionState.IDLE
        assert result.skipped
        assert env.actions == []
        assert env.resets == 1

    def test_human_action_passthrough(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)
        session.handle(Command.TOGGLE_AI_CONTROL)

        assert session.training_mode and not session.ai_control
        session.tick(human_action=1)
        session.tick(human_action=0)

        assert env.actions == [1, 0]

    def test_sensor_overlay_toggle(self, scripted_env, make_session):
        session = make_session(scripted_env())
        assert session.handle(Command.TOGGLE_SENSOR_OVERLAY)
        assert session.sensor_overlay
        session.handle(Command.TOGGLE_SENSOR_OVERLAY)
        assert not session.sensor_overlay

    def test_pre_built_agent_used(self, scripted_env, agent_factory):
        agent = agent_factory()
        factory = MagicMock()
        session = TrainingSession(scripted_env(), factory, agent=agent)

        session.handle(Command.TOGGLE_TRAINING)

        assert session.agent is agent
        factory.assert_not_called()
        session.close()


class TestRunningTick:
    """Test per-tick stepping, storage and learning."""

    def test_each_step_pushes_transition(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        for _ in range(3):
            session.tick()

        buffer = list(session.agent.replay_buffer._buffer)
        assert len(buffer) == 3
        # Each transition starts where the previous one ended
        assert torch.equal(buffer[1].observation, buffer[0].next_observation)
        assert torch.equal(buffer[2].observation, buffer[1].next_observation)

    def test_optimizes_once_buffer_ready(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        first = session.tick()
        second = session.tick()

        assert first.metrics is None
        assert second.metrics is not None
        assert session.agent.step_count == 1
        assert session.episode.losses == [second.metrics["loss"]]

    def test_no_learning_without_training_mode(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_AI_CONTROL)

        for _ in range(4):
            session.tick()

        assert session.agent.step_count == 0

    def test_epsilon_follows_episode_schedule(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env, total_episodes=4, epsilon_start=1.0, epsilon_end=0.0)
        session.handle(Command.TOGGLE_TRAINING)

        with patch.object(session.agent, "act", wraps=session.agent.act) as act:
            session.tick()
            session.tick()

        epsilons = [call.args[1] for call in act.call_args_list]
        assert epsilons == [1.0, 0.75]

    def test_greedy_without_training(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_AI_CONTROL)

        with patch.object(session.agent, "act", wraps=session.agent.act) as act:
            session.tick()

        assert act.call_args.args[1] == 0.0


class TestTerminalBookkeeping:
    """Test what happens when an episode ends."""

    def test_done_increments_count_and_resets_accumulators(self, scripted_env, make_session):
        env = scripted_env(episode_length=3)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        results = [session.tick() for _ in range(3)]

        assert [r.done for r in results] == [False, False, True]
        record = results[-1].record
        assert record.episode == 1
        assert record.steps == 3
        assert record.reward == pytest.approx(3.0)
        assert record.terminal_cause == "crash"
        assert session.episode.count == 1
        assert session.episode.steps == 0
        assert session.episode.cumulative_reward == 0.0
        assert session.episode.losses == []
        assert session.history == [record]

    def test_last_transition_is_terminal(self, scripted_env, make_session):
        env = scripted_env(episode_length=2)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        session.tick()

        buffer = list(session.agent.replay_buffer._buffer)
        assert [e.done for e in buffer] == [False, True]

    def test_reset_delay(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env, reset_delay_ticks=2)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        assert session.state is SessionState.AWAITING_RESET
        assert env.resets == 1

        first_wait = session.tick()
        assert first_wait.skipped
        assert session.state is SessionState.AWAITING_RESET

        session.tick()
        assert session.state is SessionState.RUNNING
        assert env.resets == 2
        assert env.actions == [env.actions[0]]

    def test_zero_delay_resets_immediately(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()

        assert session.state is SessionState.RUNNING
        assert env.resets == 2

    def test_external_terminal_pushes_synthetic_transition(self, scripted_env, make_session):
        env = scripted_env(episode_length=10)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)
        session.tick()
        env.done = True

        result = session.tick()

        buffer = list(session.agent.replay_buffer._buffer)
        assert len(buffer) == 2
        synthetic = buffer[-1]
        assert synthetic.done is True
        assert synthetic.reward == 0.0
        assert synthetic.action == buffer[0].action
        assert torch.equal(synthetic.observation, buffer[0].next_observation)
        assert torch.equal(synthetic.next_observation, buffer[0].next_observation)
        assert result.record.episode == 1
        assert session.episode.count == 1

    def test_callback_receives_record(self, scripted_env, make_session):
        records = []
        env = scripted_env(episode_length=1)
        session = make_session(env, on_episode_end=records.append)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        session.tick()

        assert [r.episode for r in records] == [1, 2]

    def test_empty_batch_propagates_after_bookkeeping(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        with patch.object(session.agent, "optimize_model", side_effect=EmptyBatchError("empty")):
            with pytest.raises(EmptyBatchError):
                session.tick()

        assert session.episode.count == 1
        assert session.episode.steps == 0
        assert len(session.history) == 1


class TestInvalidInputs:
    """Test recovery from bad environment output."""

    def test_nan_observation_forces_done(self, scripted_env, make_session, caplog):
        nan = torch.tensor([0.1, float("nan"), 0.2, 0.3])
        env = scripted_env(episode_length=10, observations={2: nan})
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        with caplog.at_level(logging.WARNING, logger="training.session"):
            result = session.tick()

        assert result.done
        assert result.record.terminal_cause == "invalid_observation"
        last = list(session.agent.replay_buffer._buffer)[-1]
        assert last.done is True
        assert torch.equal(last.next_observation, torch.zeros(4))
        assert "Invalid observation" in caplog.text

    def test_wrong_length_observation_forces_done(self, scripted_env, make_session):
        env = scripted_env(episode_length=10, observations={1: torch.zeros(3)})
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        result = session.tick()

        assert result.done
        assert session.episode.count == 1

    def test_non_finite_reward_replaced(self, scripted_env, make_session):
        env = scripted_env(episode_length=10, rewards={1: float("inf")})
        session = make_session(env)
        session.handle(Command.TOGGLE_TRAINING)

        result = session.tick()

        assert result.reward == 0.0
        assert list(session.agent.replay_buffer._buffer)[0].reward == 0.0


class TestFinish:
    """Test the transition into FINISHED."""

    def test_episode_budget_finishes_and_saves(self, scripted_env, make_session, tmp_path):
        store = CheckpointStore(str(tmp_path))
        env = scripted_env(episode_length=1)
        session = make_session(env, total_episodes=2, checkpoint_store=store)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        session.tick()
        session.wait_for_io()

        assert session.state is SessionState.FINISHED
        assert not session.training_mode and not session.ai_control
        assert store.exists("dqn-final")

    def test_score_threshold_finishes_mid_episode(self, scripted_env, make_session, tmp_path):
        store = CheckpointStore(str(tmp_path))
        env = scripted_env(episode_length=10, scores={1: 1, 2: 2})
        session = make_session(env, score_threshold=2, checkpoint_store=store)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        assert session.state is SessionState.RUNNING
        session.tick()
        session.wait_for_io()

        assert session.state is SessionState.FINISHED
        assert session.history == []
        assert store.exists("dqn-final")

    def test_score_threshold_on_terminal_step_finishes(self, scripted_env, make_session, tmp_path):
        """Scoring and crashing on the same step still ends training."""
        store = CheckpointStore(str(tmp_path))
        env = scripted_env(episode_length=2, scores={2: 2})
        session = make_session(env, score_threshold=2, checkpoint_store=store)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()
        result = session.tick()
        session.wait_for_io()

        assert result.record is not None
        assert result.record.score == 2
        assert session.state is SessionState.FINISHED
        assert not session.training_mode and not session.ai_control
        assert len(session.history) == 1
        assert store.exists("dqn-final")

    def test_finished_ignores_toggles_and_ticks(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env, total_episodes=1)
        session.handle(Command.TOGGLE_TRAINING)
        session.tick()

        assert not session.handle(Command.TOGGLE_TRAINING)
        assert not session.handle(Command.TOGGLE_AI_CONTROL)
        result = session.tick()

        assert result.skipped
        assert session.state is SessionState.FINISHED
        assert len(env.actions) == 1

    def test_finish_without_store(self, scripted_env, make_session):
        env = scripted_env(episode_length=1)
        session = make_session(env, total_episodes=1)
        session.handle(Command.TOGGLE_TRAINING)

        session.tick()

        assert session.state is SessionState.FINISHED
        assert not session.io_pending


class TestCheckpointCommands:
    """Test asynchronous save/load through the session."""

    def test_tick_skipped_while_io_pending(self, scripted_env, make_session, tmp_path):
        gate = threading.Event()
        env = scripted_env(episode_length=10)
        session = make_session(env, checkpoint_store=BlockingStore(str(tmp_path), gate))
        session.handle(Command.TOGGLE_TRAINING)

        assert session.handle(Command.SAVE_CHECKPOINT, "manual")
        result = session.tick()

        assert result.skipped
        assert env.actions == []
        assert not session.handle(Command.SAVE_CHECKPOINT, "again")

        gate.set()
        session.wait_for_io()

        assert not session.io_pending
        assert not session.tick().skipped
        assert len(env.actions) == 1

    def test_save_then_load_restores_params(self, scripted_env, make_session, tmp_path):
        env = scripted_env(episode_length=10)
        session = make_session(env, checkpoint_store=CheckpointStore(str(tmp_path)))
        session.handle(Command.TOGGLE_TRAINING)

        session.handle(Command.SAVE_CHECKPOINT)
        session.wait_for_io()
        saved = snapshot_params(session.agent)
        with torch.no_grad():
            for p in session.agent.policy_net.parameters():
                p.add_(1.0)

        session.handle(Command.LOAD_CHECKPOINT)
        session.wait_for_io()

        assert params_equal(session.agent, saved)

    def test_load_failure_keeps_params_and_mode(self, scripted_env, make_session, tmp_path, caplog):
        env = scripted_env(episode_length=10)
        session = make_session(env, checkpoint_store=CheckpointStore(str(tmp_path)))
        session.handle(Command.TOGGLE_TRAINING)
        before = snapshot_params(session.agent)

        with caplog.at_level(logging.ERROR, logger="training.session"):
            assert session.handle(Command.LOAD_CHECKPOINT, "missing")
            session.wait_for_io()

        assert params_equal(session.agent, before)
        assert session.state is SessionState.RUNNING
        assert session.training_mode
        assert "failed" in caplog.text

    def test_save_failure_is_logged(self, scripted_env, make_session, tmp_path, caplog):
        env = scripted_env(episode_length=10)
        session = make_session(env, checkpoint_store=CheckpointStore(str(tmp_path)))
        session.handle(Command.TOGGLE_TRAINING)

        with caplog.at_level(logging.ERROR, logger="training.session"):
            session.handle(Command.SAVE_CHECKPOINT, "../escape")
            session.wait_for_io()

        assert "failed" in caplog.text
        assert session.state is SessionState.RUNNING

    def test_no_store_configured(self, scripted_env, make_session):
        session = make_session(scripted_env())
        session.handle(Command.TOGGLE_TRAINING)

        assert not session.handle(Command.SAVE_CHECKPOINT)
        assert not session.handle(Command.LOAD_CHECKPOINT)

    def test_load_builds_agent_when_idle(self, scripted_env, make_session, tmp_path):
        store = CheckpointStore(str(tmp_path))
        env = scripted_env()
        session = make_session(env, checkpoint_store=store)

        session.handle(Command.LOAD_CHECKPOINT, "missing")
        session.wait_for_io()

        assert session.agent is not None
        assert session.state is SessionState.IDLE
