"""Git backend."""

from repokit.vcs.git.commits import GitCommits
from repokit.vcs.git.repository import GitRepository

__all__ = ["GitCommits", "GitRepository"]
