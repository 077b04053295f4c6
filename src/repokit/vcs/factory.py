"""VCS detection and factory for creating repositories.

This module provides automatic detection of the version control system
in use and factory methods for creating the matching repository backend.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from repokit.vcs.exceptions import NotARepositoryError

if TYPE_CHECKING:
    from repokit.config.models import RepoKitSettings
    from repokit.vcs.base import Repository

logger = logging.getLogger(__name__)


class VCSType(Enum):
    """Supported version control systems."""

    GIT = "git"
    MERCURIAL = "mercurial"

    @property
    def display_name(self) -> str:
        """Get display name for the VCS type.

        Returns:
            Human-readable name
        """
        return {
            VCSType.GIT: "Git",
            VCSType.MERCURIAL: "Mercurial",
        }[self]

    @property
    def marker(self) -> str:
        """Metadata directory identifying a repository of this type."""
        return {
            VCSType.GIT: ".git",
            VCSType.MERCURIAL: ".hg",
        }[self]


class VCSFactory:
    """Factory for creating repository backends.

    Provides automatic VCS detection and factory methods for creating
    appropriate VCS-specific implementations.
    """

    @staticmethod
    def find_vcs(path: Path | None = None) -> VCSType | None:
        """Find the VCS owning a path by searching it and its parents.

        Git wins when a directory carries both markers.

        Args:
            path: Path to check (default: current directory)

        Returns:
            Detected VCS, None if no marker is found
        """
        current = Path(path or Path.cwd()).resolve()
        for directory in (current, *current.parents):
            for vcs_type in VCSType:
                if (directory / vcs_type.marker).exists():
                    return vcs_type
        return None

    @staticmethod
    def detect_vcs(path: Path | None = None, default: VCSType = VCSType.GIT) -> VCSType:
        """Detect which VCS is in use at the given path.

        Args:
            path: Path to check (default: current directory)
            default: Type assumed when no marker is found

        Returns:
            VCSType enum value indicating detected VCS
        """
        return VCSFactory.find_vcs(path) or default

    @staticmethod
    def check_command(vcs_type: VCSType, settings: "RepoKitSettings") -> None:
        """Make sure the configured executable of a backend can be run.

        Raises:
            MissingConfigurationError: If the executable cannot be found
        """
        located = settings.command_for(vcs_type)
        logger.debug("%s executable: %s", vcs_type.display_name, located)

    @staticmethod
    def create_repository(
        path: str | Path | None = None,
        vcs_type: VCSType | None = None,
        settings: "RepoKitSettings | None" = None,
    ) -> "Repository":
        """Create a repository backend rooted at a path.

        The repository does not have to exist yet; see :meth:`Repository.init`.

        Args:
            path: Repository root (default: current directory)
            vcs_type: VCS type (default: auto-detect, then the configured default)
            settings: Settings (default: loaded from the environment)

        Returns:
            Repository instance (GitRepository or HgRepository)

        Raises:
            MissingConfigurationError: If the backend executable cannot be found
            ValueError: If unsupported VCS type is specified
        """
        if settings is None:
            from repokit.config.models import RepoKitSettings

            settings = RepoKitSettings()

        root = Path(path or Path.cwd())
        if vcs_type is None:
            vcs_type = VCSFactory.detect_vcs(root, settings.default_vcs)
        logger.debug("Using %s backend for %s", vcs_type.display_name, root)
        VCSFactory.check_command(vcs_type, settings)

        if vcs_type == VCSType.GIT:
            from repokit.vcs.git.repository import GitRepository

            return GitRepository(root, settings.git_command, settings.temp_dir)
        elif vcs_type == VCSType.MERCURIAL:
            from repokit.vcs.mercurial.repository import HgRepository

            return HgRepository(root, settings.hg_command, settings.temp_dir)
        else:
            msg = f"Unsupported VCS type: {vcs_type}"
            raise ValueError(msg)

    @staticmethod
    def get(path: str | Path | None = None, settings: "RepoKitSettings | None" = None) -> "Repository":
        """Open the existing repository containing a path.

        Args:
            path: Any path inside the working copy (default: current directory)
            settings: Settings (default: loaded from the environment)

        Returns:
            Repository rooted at the working copy root

        Raises:
            MissingConfigurationError: If the backend executable cannot be found
            NotARepositoryError: If no repository contains the path
        """
        if settings is None:
            from repokit.config.models import RepoKitSettings

            settings = RepoKitSettings()

        start = Path(path or Path.cwd())
        vcs_type = VCSFactory.find_vcs(start)
        if vcs_type is not None:
            VCSFactory.check_command(vcs_type, settings)
        repository: Repository | None = None
        if vcs_type == VCSType.GIT:
            from repokit.vcs.git.repository import GitRepository

            repository = GitRepository.get(start, settings.git_command, settings.temp_dir)
        elif vcs_type == VCSType.MERCURIAL:
            from repokit.vcs.mercurial.repository import HgRepository

            repository = HgRepository.get(start, settings.hg_command, settings.temp_dir)

        if repository is None:
            msg = f"Not a repository: {start}"
            raise NotARepositoryError(msg)
        return repository

    @staticmethod
    def init(path: str | Path, vcs_type: VCSType, settings: "RepoKitSettings | None" = None) -> "Repository":
        """Create an empty repository.

        Args:
            path: Repository root, created if missing
            vcs_type: VCS type

        Returns:
            The new repository
        """
        return VCSFactory.create_repository(path, vcs_type, settings).init()

    @staticmethod
    def clone(
        uri: str,
        to: str | Path,
        vcs_type: VCSType,
        settings: "RepoKitSettings | None" = None,
    ) -> "Repository":
        """Clone a remote repository.

        Args:
            uri: Source repository
            to: Destination directory
            vcs_type: VCS type of the source

        Returns:
            The cloned repository
        """
        if settings is None:
            from repokit.config.models import RepoKitSettings

            settings = RepoKitSettings()

        VCSFactory.check_command(vcs_type, settings)
        if vcs_type == VCSType.GIT:
            from repokit.vcs.git.repository import GitRepository

            return GitRepository.clone(uri, Path(to), settings.git_command, settings.temp_dir)

        from repokit.vcs.mercurial.repository import HgRepository

        return HgRepository.clone(uri, Path(to), settings.hg_command, settings.temp_dir)
