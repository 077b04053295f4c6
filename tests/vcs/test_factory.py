"""Tests for VCS factory and auto-detection."""

import shutil
from pathlib import Path
from unittest.mock import MagicMock, patch

import git
import hglib  # type: ignore[import-untyped]
import pytest

from repokit.config import MissingConfigurationError, RepoKitSettings
from repokit.vcs.exceptions import NotARepositoryError
from repokit.vcs.factory import VCSFactory, VCSType
from repokit.vcs.git.repository import GitRepository
from repokit.vcs.mercurial.repository import HgRepository

# Helper to check if Mercurial is installed
MERCURIAL_AVAILABLE = shutil.which("hg") is not None
requires_mercurial = pytest.mark.skipif(
    not MERCURIAL_AVAILABLE,
    reason="Mercurial (hg) is not installed",
)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch) -> RepoKitSettings:
    """Create settings independent of the environment.

    Args:
        monkeypatch: Pytest monkeypatch fixture

    Returns:
        Default settings
    """
    monkeypatch.delenv("REPOKIT_DEFAULT_VCS", raising=False)
    return RepoKitSettings(hg_command="hg", git_command="git")


class TestVCSType:
    """Tests for VCSType."""

    def test_display_names(self) -> None:
        """Test human-readable names."""
        assert VCSType.GIT.display_name == "Git"
        assert VCSType.MERCURIAL.display_name == "Mercurial"

    def test_markers(self) -> None:
        """Test metadata directory names."""
        assert VCSType.GIT.marker == ".git"
        assert VCSType.MERCURIAL.marker == ".hg"


class TestVCSDetection:
    """Tests for VCS detection."""

    def test_detect_git_repo(self, tmp_path: Path) -> None:
        """Test detection of Git repository."""
        git.Repo.init(tmp_path)

        vcs_type = VCSFactory.detect_vcs(tmp_path)

        assert vcs_type == VCSType.GIT

    @requires_mercurial
    def test_detect_mercurial_repo(self, tmp_path: Path) -> None:
        """Test detection of Mercurial repository."""
        hglib.init(str(tmp_path))

        vcs_type = VCSFactory.detect_vcs(tmp_path)

        assert vcs_type == VCSType.MERCURIAL

    def test_git_takes_precedence_when_both_exist(self, tmp_path: Path) -> None:
        """Test that Git is detected first if both markers exist."""
        (tmp_path / ".git").mkdir()
        (tmp_path / ".hg").mkdir()

        assert VCSFactory.detect_vcs(tmp_path) == VCSType.GIT

    def test_default_when_neither_exists(self, tmp_path: Path) -> None:
        """Test the fallback when no VCS is detected."""
        assert VCSFactory.find_vcs(tmp_path) is None
        assert VCSFactory.detect_vcs(tmp_path) == VCSType.GIT
        assert VCSFactory.detect_vcs(tmp_path, default=VCSType.MERCURIAL) == VCSType.MERCURIAL

    def test_detect_searches_parent_directories(self, tmp_path: Path) -> None:
        """Test that detection walks up to the repository root."""
        (tmp_path / ".hg").mkdir()
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)

        assert VCSFactory.detect_vcs(nested) == VCSType.MERCURIAL


class TestCreateRepository:
    """Tests for VCSFactory.create_repository."""

    @patch("repokit.config.models.shutil.which", side_effect=lambda command: f"/usr/bin/{command}")
    def test_explicit_types(self, mock_which: MagicMock, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test the backend follows the requested type."""
        git_repo = VCSFactory.create_repository(tmp_path, VCSType.GIT, settings)
        hg_repo = VCSFactory.create_repository(tmp_path, VCSType.MERCURIAL, settings)

        assert isinstance(git_repo, GitRepository)
        assert isinstance(hg_repo, HgRepository)
        assert hg_repo.root() == tmp_path.absolute()

    @patch("repokit.config.models.shutil.which", return_value="/usr/bin/hg")
    def test_configured_default(self, mock_which: MagicMock, tmp_path: Path) -> None:
        """Test the configured default applies without markers."""
        settings = RepoKitSettings(default_vcs="hg", temp_dir=tmp_path)

        repository = VCSFactory.create_repository(tmp_path, settings=settings)

        assert isinstance(repository, HgRepository)
        assert repository.temp_dir == tmp_path

    @patch("repokit.config.models.shutil.which", return_value="/opt/hg")
    def test_settings_passed_to_backend(self, mock_which: MagicMock, tmp_path: Path) -> None:
        """Test the configured executable is used."""
        settings = RepoKitSettings(hg_command="/opt/hg")

        repository = VCSFactory.create_repository(tmp_path, VCSType.MERCURIAL, settings)

        assert repository.hg_command == "/opt/hg"  # type: ignore[attr-defined]
        mock_which.assert_called_once_with("/opt/hg")

    @patch("repokit.config.models.shutil.which", return_value=None)
    def test_missing_executable(self, mock_which: MagicMock, tmp_path: Path) -> None:
        """Test a backend whose executable cannot be found is refused."""
        settings = RepoKitSettings(hg_command="no-such-hg")

        with pytest.raises(MissingConfigurationError, match="Mercurial executable not found: no-such-hg"):
            VCSFactory.create_repository(tmp_path, VCSType.MERCURIAL, settings)


class TestGet:
    """Tests for VCSFactory.get."""

    def test_get_git(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test opening a Git repository from a subdirectory."""
        git.Repo.init(tmp_path).close()
        nested = tmp_path / "src"
        nested.mkdir()

        repository = VCSFactory.get(nested, settings)

        assert isinstance(repository, GitRepository)
        assert repository.root() == tmp_path

    @requires_mercurial
    def test_get_mercurial(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test opening a Mercurial repository."""
        hglib.init(str(tmp_path))

        repository = VCSFactory.get(tmp_path, settings)

        assert isinstance(repository, HgRepository)

    def test_not_a_repository(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test a plain directory."""
        with pytest.raises(NotARepositoryError):
            VCSFactory.get(tmp_path, settings)

    @patch("repokit.vcs.git.repository.GitRepository.get", return_value=None)
    def test_backend_rejects_marker(self, mock_get: MagicMock, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test a stray marker directory is not a repository."""
        (tmp_path / ".git").mkdir()

        with pytest.raises(NotARepositoryError):
            VCSFactory.get(tmp_path, settings)

        mock_get.assert_called_once()


class TestInitAndClone:
    """Tests for VCSFactory.init and clone."""

    def test_init_git(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test creating an empty Git repository."""
        repository = VCSFactory.init(tmp_path / "new", VCSType.GIT, settings)

        assert repository.exists()
        assert repository.is_empty()

    def test_clone_git(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test cloning a Git repository."""
        source = VCSFactory.init(tmp_path / "source", VCSType.GIT, settings)
        (source.root() / "a.txt").write_text("a\n")
        source.add(Path("a.txt"))
        head = source.commit("root", "Test User", "test@example.com")

        clone = VCSFactory.clone(str(source.root()), tmp_path / "clone", VCSType.GIT, settings)

        assert isinstance(clone, GitRepository)
        assert clone.head() == head

    @requires_mercurial
    def test_init_mercurial(self, tmp_path: Path, settings: RepoKitSettings) -> None:
        """Test creating an empty Mercurial repository."""
        repository = VCSFactory.init(tmp_path / "new", VCSType.MERCURIAL, settings)

        assert isinstance(repository, HgRepository)
        assert repository.is_empty()
