"""Mercurial backend."""

from repokit.vcs.mercurial.commits import HgCommits
from repokit.vcs.mercurial.repository import HgRepository

__all__ = ["HgCommits", "HgRepository"]
