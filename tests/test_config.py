"""Tests for ralph.lib.envparse and ralph.lib.config modules."""

import logging

import pytest

from ralph.lib import envparse
from ralph.lib.config import (
    EngineConfig,
    ProjectPolicy,
    effective_max_iterations,
    load_engine_config,
    load_project_policy,
)
from ralph.lib.constants import CheckpointKind


class TestParseEnvText:
    """Test the safe KEY=value parser."""

    def test_parses_plain_and_quoted_values(self):
        """Should parse plain and quoted values."""
        env = envparse.parse_env_text('MAX_ITERATIONS=3\nPROJECT_ROOT="/srv/app"\n')
        assert env == {"MAX_ITERATIONS": "3", "PROJECT_ROOT": "/srv/app"}

    def test_skips_comments_and_blank_lines(self):
        """Should ignore comments and blank lines."""
        env = envparse.parse_env_text("# settings\n\nLOCK_TIMEOUT=10\n")
        assert env == {"LOCK_TIMEOUT": "10"}

    def test_accepts_export_prefix(self):
        """Should accept an export prefix."""
        env = envparse.parse_env_text("export LOCK_TIMEOUT=5")
        assert env["LOCK_TIMEOUT"] == "5"

    def test_rejects_command_substitution(self):
        """Should refuse command substitution."""
        with pytest.raises(ValueError, match="forbidden"):
            envparse.parse_env_text("PROJECT_ROOT=$(pwd)")

    def test_rejects_command_chaining(self):
        """Should refuse chained shell commands."""
        with pytest.raises(ValueError, match="forbidden"):
            envparse.parse_env_text("PROJECT_ROOT=/tmp; rm -rf /")

    def test_rejects_lowercase_key(self):
        """Should refuse keys that are not upper case."""
        with pytest.raises(ValueError, match="invalid key"):
            envparse.parse_env_text("max=3")

    def test_rejects_line_without_equals(self):
        """Should refuse a line without '='."""
        with pytest.raises(ValueError, match="expected KEY=value"):
            envparse.parse_env_text("JUSTAKEY")


class TestGetInt:
    """Test get_int fallbacks."""

    def test_reads_value(self):
        """Should read an integer value."""
        assert envparse.get_int({"N": "7"}, "N", 1) == 7

    def test_missing_uses_default(self):
        """Should use the default for a missing key."""
        assert envparse.get_int({}, "N", 4) == 4

    def test_invalid_logs_and_uses_default(self, caplog):
        """Should log and fall back on a non-integer value."""
        caplog.set_level(logging.WARNING)
        assert envparse.get_int({"N": "lots"}, "N", 4) == 4
        assert "Invalid integer for N" in caplog.text

    def test_below_minimum_uses_default(self, caplog):
        """Should fall back when the value is below the minimum."""
        caplog.set_level(logging.WARNING)
        assert envparse.get_int({"N": "0"}, "N", 4, minimum=1) == 4
        assert "below minimum" in caplog.text


class TestLoadEngineConfig:
    """Test load_engine_config function."""

    def test_defaults_without_env_file(self, tmp_path):
        """Should use defaults when ralph.env is absent."""
        config = load_engine_config(tmp_path, project_root=tmp_path)
        assert config.max_iterations == 5
        assert config.freshness_window_seconds == 1800
        assert config.lock_timeout == 30
        assert config.project_root == tmp_path

    def test_reads_ralph_env(self, tmp_path):
        """Should read settings from ralph.env."""
        (tmp_path / "ralph.env").write_text(
            "MAX_ITERATIONS=3\nFRESHNESS_WINDOW_SECONDS=60\nLOCK_TIMEOUT=2\n"
        )
        config = load_engine_config(tmp_path, project_root=tmp_path)
        assert config.max_iterations == 3
        assert config.freshness_window_seconds == 60
        assert config.lock_timeout == 2

    def test_project_root_from_env(self, tmp_path):
        """Should take PROJECT_ROOT from ralph.env."""
        (tmp_path / "ralph.env").write_text(f'PROJECT_ROOT="{tmp_path / "app"}"\n')
        config = load_engine_config(tmp_path)
        assert config.project_root == tmp_path / "app"

    def test_project_root_defaults_to_cwd(self, tmp_path, monkeypatch):
        """Should default the project root to the working directory."""
        monkeypatch.chdir(tmp_path)
        config = load_engine_config(tmp_path / "state")
        assert config.project_root == tmp_path


class TestProjectPolicy:
    """Test prd.json config handling."""

    def test_empty_config_requires_everything(self):
        """Should require every checkpoint when config is empty."""
        policy = load_project_policy(None)
        assert policy.max_attempts_per_story is None
        assert policy.required_checkpoints() == list(CheckpointKind)

    def test_disables_whitebox_and_cleanup(self):
        """Should drop whitebox and cleanup when disabled."""
        policy = load_project_policy({"enable_whitebox": False, "cleanup_per_story": False})
        kinds = policy.required_checkpoints()
        assert CheckpointKind.WHITEBOX_VALIDATED not in kinds
        assert CheckpointKind.CLEANUP_COMPLETE not in kinds

    def test_invalid_max_attempts_ignored(self, caplog):
        """Should ignore an unusable max_attempts_per_story."""
        caplog.set_level(logging.WARNING)
        policy = load_project_policy({"max_attempts_per_story": 0})
        assert policy.max_attempts_per_story is None
        assert "max_attempts_per_story" in caplog.text

    def test_policy_overrides_engine_bound(self, tmp_path):
        """Should let max_attempts_per_story override MAX_ITERATIONS."""
        config = EngineConfig(state_dir=tmp_path, project_root=tmp_path, max_iterations=5)
        assert effective_max_iterations(config, ProjectPolicy(max_attempts_per_story=2)) == 2
        assert effective_max_iterations(config, ProjectPolicy()) == 5
