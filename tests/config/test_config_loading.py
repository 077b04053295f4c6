"""Tests for loading settings from files and the environment."""

from pathlib import Path

import pytest

from repokit.config import InvalidConfigurationError, RepoKitSettings
from repokit.vcs.factory import VCSType


@pytest.fixture(autouse=True)
def isolated(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Run every test in an empty directory without REPOKIT_ variables.

    Args:
        tmp_path: Pytest temporary directory fixture
        monkeypatch: Pytest monkeypatch fixture
    """
    monkeypatch.chdir(tmp_path)
    for name in ("REPOKIT_HG_COMMAND", "REPOKIT_GIT_COMMAND", "REPOKIT_DEFAULT_VCS", "REPOKIT_TEMP_DIR"):
        monkeypatch.delenv(name, raising=False)


class TestConfigLoading:
    """Tests for settings sources."""

    def test_load_from_env_repokit(self, tmp_path: Path) -> None:
        """Test loading from .env.repokit."""
        (tmp_path / ".env.repokit").write_text("REPOKIT_HG_COMMAND=/opt/hg/bin/hg\n")

        settings = RepoKitSettings()

        assert settings.hg_command == "/opt/hg/bin/hg"
        assert RepoKitSettings.find_env_file() == tmp_path / ".env.repokit"

    def test_env_repokit_takes_precedence(self, tmp_path: Path) -> None:
        """Test .env.repokit overrides .env."""
        (tmp_path / ".env").write_text("REPOKIT_DEFAULT_VCS=git\nREPOKIT_GIT_COMMAND=git-from-env\n")
        (tmp_path / ".env.repokit").write_text("REPOKIT_DEFAULT_VCS=hg\n")

        settings = RepoKitSettings()

        assert settings.default_vcs == VCSType.MERCURIAL
        assert settings.git_command == "git-from-env"

    def test_environment_variables_override_files(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables win over env files."""
        (tmp_path / ".env").write_text("REPOKIT_GIT_COMMAND=git-from-file\n")
        monkeypatch.setenv("REPOKIT_GIT_COMMAND", "git-from-env")

        assert RepoKitSettings().git_command == "git-from-env"

    def test_case_insensitive_env_vars(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test variable names are case-insensitive."""
        monkeypatch.setenv("repokit_hg_command", "lower-hg")

        assert RepoKitSettings().hg_command == "lower-hg"

    def test_custom_env_file(self, tmp_path: Path) -> None:
        """Test a custom env file replaces the default ones."""
        (tmp_path / ".env.repokit").write_text("REPOKIT_HG_COMMAND=default-hg\n")
        custom = tmp_path / "custom.env"
        custom.write_text("REPOKIT_GIT_COMMAND=custom-git\n")

        settings = RepoKitSettings(env_file=str(custom))

        assert settings.git_command == "custom-git"
        assert settings.hg_command == "hg"

    def test_missing_custom_env_file(self, tmp_path: Path) -> None:
        """Test a missing custom env file is an error."""
        with pytest.raises(InvalidConfigurationError, match="Environment file not found"):
            RepoKitSettings(env_file=str(tmp_path / "missing.env"))

    def test_no_env_file(self) -> None:
        """Test find_env_file without any file."""
        assert RepoKitSettings.find_env_file() is None
