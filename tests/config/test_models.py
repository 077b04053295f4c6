"""Tests for configuration models."""

from pathlib import Path
from unittest.mock import patch

import pytest

from repokit.config import InvalidConfigurationError, MissingConfigurationError, RepoKitSettings
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


class TestRepoKitSettings:
    """Tests for RepoKitSettings model."""

    def test_defaults(self) -> None:
        """Test default values."""
        settings = RepoKitSettings()

        assert settings.hg_command == "hg"
        assert settings.git_command == "git"
        assert settings.default_vcs == VCSType.GIT
        assert settings.temp_dir is None

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("git", VCSType.GIT),
            ("mercurial", VCSType.MERCURIAL),
            ("hg", VCSType.MERCURIAL),
            (" Mercurial ", VCSType.MERCURIAL),
            (VCSType.MERCURIAL, VCSType.MERCURIAL),
        ],
    )
    def test_default_vcs_parsing(self, value: str | VCSType, expected: VCSType) -> None:
        """Test VCS names and aliases."""
        assert RepoKitSettings(default_vcs=value).default_vcs == expected

    def test_invalid_default_vcs(self) -> None:
        """Test an unknown VCS name is rejected."""
        with pytest.raises(InvalidConfigurationError, match="Invalid VCS"):
            RepoKitSettings(default_vcs="svn")

    def test_temp_dir_must_exist(self, tmp_path: Path) -> None:
        """Test the temporary directory is validated."""
        assert RepoKitSettings(temp_dir=tmp_path).temp_dir == tmp_path

        with pytest.raises(InvalidConfigurationError, match="does not exist"):
            RepoKitSettings(temp_dir=tmp_path / "missing")

    def test_command_for(self) -> None:
        """Test executables are located on the PATH."""
        settings = RepoKitSettings(hg_command="my-hg")

        with patch("repokit.config.models.shutil.which", return_value="/usr/bin/my-hg") as which:
            assert settings.command_for(VCSType.MERCURIAL) == "/usr/bin/my-hg"

        which.assert_called_once_with("my-hg")

    def test_command_for_missing(self) -> None:
        """Test a missing executable."""
        settings = RepoKitSettings(git_command="no-such-git")

        with patch("repokit.config.models.shutil.which", return_value=None):
            with pytest.raises(MissingConfigurationError, match="Git executable not found"):
                settings.command_for(VCSType.GIT)
