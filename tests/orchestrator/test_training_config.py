"""Tests for training configuration module.

Tests the section dataclasses and YAML config I/O.
"""

import tempfile
from pathlib import Path

import pytest
import yaml

from game.reward import RewardModel
from game.world import WorldParams
from orchestrator.config import (
    AgentConfig,
    EpsilonConfig,
    LoggingConfig,
    NetworkConfig,
    SessionConfig,
    TrainingConfig,
    load_config,
    save_config,
)


class TestSectionValidation:
    """Tests for per-section __post_init__ validation."""

    def test_defaults(self):
        config = TrainingConfig()
        assert config.network.hidden_layers == [256, 256]
        assert config.agent.learning_rate == 0.001
        assert config.agent.gamma == 0.99
        assert config.agent.buffer_capacity == 10000
        assert config.agent.batch_size == 64
        assert config.epsilon.start == 1.0
        assert config.epsilon.end == 0.05
        assert config.session.total_episodes == 500
        assert config.session.score_threshold == 100
        assert config.lidar.ray_count == 180
        assert config.lidar.max_distance == 300.0
        assert config.reward == RewardModel()
        assert config.world == WorldParams()

    def test_gamma_out_of_range(self):
        with pytest.raises(ValueError) as exc_info:
            AgentConfig(gamma=1.2)
        assert "gamma" in str(exc_info.value)

    def test_batch_larger_than_capacity(self):
        with pytest.raises(ValueError) as exc_info:
            AgentConfig(batch_size=128, buffer_capacity=64)
        assert "batch_size" in str(exc_info.value)

    def test_non_positive_batch_size(self):
        with pytest.raises(ValueError):
            AgentConfig(batch_size=0)

    def test_epsilon_end_above_start(self):
        with pytest.raises(ValueError):
            EpsilonConfig(start=0.1, end=0.5)

    def test_empty_hidden_layers(self):
        with pytest.raises(ValueError):
            NetworkConfig(hidden_layers=[])

    def test_session_episode_budget(self):
        with pytest.raises(ValueError):
            SessionConfig(total_episodes=0)

    def test_session_threshold_can_be_disabled(self):
        assert SessionConfig(score_threshold=None).score_threshold is None

    def test_logging_level_normalized(self):
        config = LoggingConfig(level="debug")
        assert config.level == "DEBUG"
        assert config.level_number == 10

    def test_logging_level_invalid(self):
        with pytest.raises(ValueError):
            LoggingConfig(level="LOUD")


class TestConfigIO:
    """Tests for load_config and save_config."""

    def test_load_missing_file(self):
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_load_empty_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "empty.yaml"
            path.write_text("")
            with pytest.raises(ValueError):
                load_config(str(path))

    def test_missing_sections_use_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "partial.yaml"
            path.write_text("agent:\n  gamma: 0.9\n")

            config = load_config(str(path))

        assert config.agent.gamma == 0.9
        assert config.agent.batch_size == 64
        assert config.lidar.ray_count == 180

    def test_unknown_section(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bad.yaml"
            path.write_text("optimizer:\n  lr: 0.1\n")
            with pytest.raises(ValueError) as exc_info:
                load_config(str(path))
        assert "optimizer" in str(exc_info.value)

    def test_unknown_key(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bad.yaml"
            path.write_text("agent:\n  momentum: 0.9\n")
            with pytest.raises(ValueError) as exc_info:
                load_config(str(path))
        assert "momentum" in str(exc_info.value)

    def test_invalid_value_in_file(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "bad.yaml"
            path.write_text("agent:\n  gamma: 2.0\n")
            with pytest.raises(ValueError):
                load_config(str(path))

    def test_save_and_load_roundtrip(self):
        config = TrainingConfig(
            network=NetworkConfig(hidden_layers=[32]),
            agent=AgentConfig(batch_size=8, buffer_capacity=100, seed=3),
            reward=RewardModel(floor_penalty=-10.0),
        )
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "sub" / "config.yaml"
            save_config(config, str(path))

            loaded = load_config(str(path))

        assert loaded == config

    def test_saved_layout_has_all_sections(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            save_config(TrainingConfig(), str(path))
            raw = yaml.safe_load(path.read_text())

        assert list(raw) == [
            "network", "agent", "epsilon", "session", "lidar",
            "reward", "world", "checkpoint", "logging",
        ]

    def test_shipped_default_config_loads(self):
        path = Path(__file__).resolve().parents[2] / "algorithms" / "dqn" / "config.yaml"
        config = load_config(str(path))
        assert config.lidar.ray_count == 180
        assert config.session.reset_delay_ticks == 18

    def test_shipped_default_config_lists_every_field(self):
        path = Path(__file__).resolve().parents[2] / "algorithms" / "dqn" / "config.yaml"
        raw = yaml.safe_load(path.read_text())

        for section, values in TrainingConfig().to_dict().items():
            assert set(raw[section]) == set(values), section
