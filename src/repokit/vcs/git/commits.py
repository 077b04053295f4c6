"""Lazy history traversal through GitPython."""

import logging
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Any

import git

from repokit.process import ExecutionResult, ProcessError
from repokit.vcs.base import Commits
from repokit.vcs.diff import parse_git_raw
from repokit.vcs.models import NULL_HASH, Author, Commit, CommitMetadata, Diff, Hash

logger = logging.getLogger(__name__)

# Object name of the empty tree, the diff base of root commits.
EMPTY_TREE = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

DIFF_OPTIONS = ("--find-renames", "--unified=0", "--full-index", "--no-color", "--no-ext-diff")


def command_error(e: git.GitCommandError) -> ProcessError:
    """Convert a GitPython command failure into a ProcessError."""
    status = e.status if isinstance(e.status, int) else -1
    command = [str(part) for part in e.command] if isinstance(e.command, list | tuple) else [str(e.command)]
    result = ExecutionResult(
        command,
        status,
        str(e.stdout).strip().splitlines(),
        str(e.stderr).strip().splitlines(),
    )
    return ProcessError(result)


def to_metadata(commit: git.Commit) -> CommitMetadata:
    """Build metadata from a GitPython commit object."""
    message = commit.message if isinstance(commit.message, str) else commit.message.decode("utf-8", "replace")
    message = message.rstrip("\n")
    return CommitMetadata(
        hash=Hash(commit.hexsha),
        parents=tuple(Hash(p.hexsha) for p in commit.parents) or (NULL_HASH,),
        author=Author(name=commit.author.name or "", email=commit.author.email or None),
        committer=Author(name=commit.committer.name or "", email=commit.committer.email or None),
        timestamp=datetime.fromtimestamp(commit.authored_date, UTC),
        message=tuple(message.split("\n")) if message else (),
    )


def diff_lines(repo: git.Repo, *revisions: str) -> list[str]:
    """Raw git-extended diff output between revisions."""
    output = repo.git.diff(*DIFF_OPTIONS, *revisions)
    return output.split("\n") if output else []


class GitCommits(Commits):
    """Commits selected by a ``git rev-list`` range.

    Args:
        repo: Open repository
        range: Revision range (default: all refs)
        limit: Keep only the newest ``limit`` commits
        reverse: Oldest first
    """

    def __init__(self, repo: git.Repo, range: str | None = None, limit: int | None = None, reverse: bool = False) -> None:  # noqa: A002
        self.repo = repo
        self.range = range
        self.limit = limit
        self.reverse = reverse

    def _options(self) -> dict[str, Any]:
        options: dict[str, Any] = {}
        if self.limit is not None:
            options["max_count"] = self.limit
        if self.reverse:
            options["reverse"] = True
        return options

    def metadata(self) -> Iterator[CommitMetadata]:
        """Traverse without computing diffs."""
        for commit in self._traverse():
            yield to_metadata(commit)

    def _traverse(self) -> Iterator[git.Commit]:
        if self.limit is not None and self.limit <= 0:
            return
        if self.range is None and not self.repo.refs:
            # no commits yet
            return
        try:
            yield from self.repo.iter_commits(self.range or "--all", **self._options())
        except git.GitCommandError as e:
            raise command_error(e) from e

    def __iter__(self) -> Iterator[Commit]:
        for commit in self._traverse():
            metadata = to_metadata(commit)
            bases = [p.hex for p in metadata.parents] if not metadata.is_initial_commit() else [EMPTY_TREE]
            diffs = []
            for parent, base in zip(metadata.parents, bases, strict=True):
                try:
                    lines = diff_lines(self.repo, base, commit.hexsha)
                except git.GitCommandError as e:
                    raise command_error(e) from e
                diffs.append(Diff(from_hash=parent, to_hash=metadata.hash, patches=tuple(parse_git_raw(lines))))
            yield Commit.from_metadata(metadata, diffs)
