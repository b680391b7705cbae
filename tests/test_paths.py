"""Tests for the configuration directory layout helpers."""

from pathlib import Path

import pytest

from guest_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    REPORTS_DIRNAME,
    resolve_config_dir,
    resolve_state_dir,
)


@pytest.fixture
def no_env_dir(monkeypatch):
    monkeypatch.delenv(CONFIG_DIR_ENV_VAR, raising=False)


class TestResolveConfigDir:
    """Tests for resolve_config_dir."""

    def test_home_default(self, no_env_dir):
        """Test that ~/.guest-sync is used when nothing else is given."""
        assert DEFAULT_CONFIG_DIR == Path.home() / ".guest-sync"
        assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()

    @pytest.mark.parametrize("as_str", [True, False])
    def test_explicit_dir(self, tmp_path, no_env_dir, as_str):
        """Test that an explicit str or Path is used as given."""
        given = str(tmp_path) if as_str else tmp_path
        assert resolve_config_dir(given) == tmp_path.resolve()

    def test_environment_variable(self, tmp_path, monkeypatch):
        """Test that GUEST_SYNC_CONFIG_DIR replaces the home default."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert resolve_config_dir() == tmp_path.resolve()

    def test_empty_environment_variable_ignored(self, monkeypatch):
        """Test that an empty GUEST_SYNC_CONFIG_DIR falls back to the default."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, "")
        assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()

    def test_explicit_beats_environment(self, tmp_path, monkeypatch):
        """Test that the --config-dir value wins over the environment."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path / "from-env"))
        assert resolve_config_dir(tmp_path / "cli") == (tmp_path / "cli").resolve()

    def test_tilde_expanded(self, monkeypatch):
        """Test that ~ is expanded in both the argument and the environment."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, "~/tenant-a")
        assert resolve_config_dir() == Path.home() / "tenant-a"
        assert resolve_config_dir("~/tenant-b") == Path.home() / "tenant-b"

    def test_relative_made_absolute(self, tmp_path, monkeypatch):
        """Test that a relative directory is resolved against the cwd."""
        monkeypatch.chdir(tmp_path)
        result = resolve_config_dir("state")

        assert result.is_absolute()
        assert result == tmp_path.resolve() / "state"


class TestResolveStateDir:
    """Tests for resolve_state_dir."""

    def test_default_under_config_dir(self, tmp_path):
        """Test that an unset key places the directory in the config dir."""
        result = resolve_state_dir(tmp_path, {}, "reports_dir", REPORTS_DIRNAME)
        assert result == tmp_path / "reports"

    def test_configured_value(self, tmp_path):
        """Test that a configured directory is used instead."""
        config = {"reports_dir": str(tmp_path / "elsewhere")}

        result = resolve_state_dir(tmp_path, config, "reports_dir", REPORTS_DIRNAME)

        assert result == tmp_path / "elsewhere"

    def test_configured_value_expands_tilde(self, tmp_path):
        """Test that ~ in a configured directory is expanded."""
        config = {"log_dir": "~/guest-sync-logs"}

        result = resolve_state_dir(tmp_path, config, "log_dir", "logs")

        assert result == Path.home() / "guest-sync-logs"

    def test_empty_value_uses_default(self, tmp_path):
        """Test that an empty configured value is treated as unset."""
        result = resolve_state_dir(tmp_path, {"log_dir": ""}, "log_dir", "logs")
        assert result == tmp_path / "logs"
