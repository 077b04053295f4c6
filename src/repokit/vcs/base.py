"""Abstract base classes for version control system operations.

This module defines the common interface that all repository backends
(Git, Mercurial) implement. Callers program against :class:`Repository` and
never see which native tool answers them.
"""

import logging
import shutil
from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Self

from repokit.vcs.exceptions import NotYetImplementedError, RevisionNotFoundError
from repokit.vcs.models import Branch, Commit, CommitMetadata, Diff, Hash, Tag

logger = logging.getLogger(__name__)

Reference = Hash | Branch | Tag


class Commits(ABC):
    """Lazy, re-iterable sequence of commits.

    Every iteration re-issues the underlying history query; commits are
    produced one at a time while the native tool is still running.
    """

    @abstractmethod
    def __iter__(self) -> Iterator[Commit]:
        """Start a new traversal.

        Yields:
            Commits in the requested order

        Raises:
            ProcessError: If the history query fails
            ParseError: If the tool output is malformed
        """

    def as_list(self) -> list[Commit]:
        """Run one full traversal and keep every commit."""
        return list(self)


class Repository(ABC):
    """Abstract base class for a repository rooted at a working directory.

    Each concrete implementation must provide all the abstract methods defined
    here. One instance serves one working directory and is not safe for
    concurrent use.
    """

    @abstractmethod
    def root(self) -> Path:
        """Get the root directory of the working copy.

        Returns:
            Absolute repository root
        """

    @abstractmethod
    def exists(self) -> bool:
        """Check whether a repository has been initialized at the root.

        Returns:
            True if the repository exists
        """

    @abstractmethod
    def init(self) -> Self:
        """Create an empty repository at the root.

        Returns:
            This repository
        """

    def reinitialize(self) -> Self:
        """Delete the working copy including its history and start afresh.

        Returns:
            This repository
        """
        root = self.root()
        if root.exists():
            logger.debug("Removing %s before reinitializing", root)
            shutil.rmtree(root)
        root.mkdir(parents=True)
        return self.init()

    @abstractmethod
    def head(self) -> Hash | None:
        """Get the commit the working copy is based on.

        Returns:
            Hash of the working copy parent, None in an empty repository
        """

    @abstractmethod
    def current_branch(self) -> Branch | None:
        """Get the active branch.

        Returns:
            Active branch, None when detached (no active bookmark)
        """

    @abstractmethod
    def default_branch(self) -> Branch:
        """Name of the branch new repositories start on."""

    @abstractmethod
    def default_tag(self) -> Tag | None:
        """Name of the tag the tool maintains automatically, if any."""

    @abstractmethod
    def branches(self) -> list[Branch]:
        """List all branches, re-queried on every call."""

    @abstractmethod
    def tags(self) -> list[Tag]:
        """List all tags, re-queried on every call."""

    @abstractmethod
    def resolve(self, ref: str | Branch | Tag) -> Hash | None:
        """Resolve a reference to a commit hash.

        Args:
            ref: Branch, tag or any revision expression

        Returns:
            The hash, or None if the reference does not resolve to exactly
            one commit
        """

    def lookup(self, ref: Reference) -> Commit | None:
        """Get a single commit together with its diffs.

        Args:
            ref: Hash, branch or tag

        Returns:
            The commit, None if a hash does not exist

        Raises:
            RevisionNotFoundError: If a branch or tag cannot be resolved
        """
        if isinstance(ref, Hash):
            commit_hash = self.resolve(ref.hex)
            if commit_hash is None:
                return None
        else:
            commit_hash = self.resolve(ref)
            if commit_hash is None:
                msg = f"Cannot resolve {ref}"
                raise RevisionNotFoundError(msg)

        for commit in self.commits(commit_hash.hex, limit=1):
            return commit
        return None

    @abstractmethod
    def commits(self, range: str | None = None, limit: int | None = None, reverse: bool = False) -> Commits:  # noqa: A002
        """Lazy history query.

        Args:
            range: Native revision range expression (default: all commits)
            limit: Keep only the newest ``limit`` commits
            reverse: Produce oldest first instead of newest first

        Returns:
            Re-iterable sequence of commits
        """

    def commit_metadata(
        self,
        range: str | None = None,  # noqa: A002
        limit: int | None = None,
        reverse: bool = False,
    ) -> list[CommitMetadata]:
        """History without diffs, newest first.

        Args:
            range: Native revision range expression (default: all commits)
            limit: Keep only the newest ``limit`` commits
            reverse: Produce oldest first instead of newest first

        Returns:
            Commit metadata
        """
        fields = CommitMetadata.model_fields
        return [
            CommitMetadata(**{name: getattr(commit, name) for name in fields})
            for commit in self.commits(range, limit=limit, reverse=reverse)
        ]

    @abstractmethod
    def checkout(self, ref: Hash | Branch, force: bool = False) -> None:
        """Update the working copy to a commit or branch.

        Args:
            ref: Target commit or branch; a branch becomes the active one
            force: Discard local modifications

        Raises:
            DirtyWorkingDirectoryError: If not forced and tracked files are
                modified; nothing is touched in that case
        """

    @abstractmethod
    def commit(
        self,
        message: str,
        author_name: str,
        author_email: str,
        author_date: datetime | None = None,
        committer_name: str | None = None,
        committer_email: str | None = None,
        committer_date: datetime | None = None,
    ) -> Hash:
        """Commit all tracked modifications.

        Committer fields default to the author's.

        Args:
            message: Commit message
            author_name: Author name
            author_email: Author email
            author_date: Author date (default: now)
            committer_name: Committer name
            committer_email: Committer email
            committer_date: Committer date

        Returns:
            Hash of the new commit

        Raises:
            UnsupportedOperationError: If the backend cannot record a
                committer different from the author
        """

    def amend(
        self,
        message: str,
        author_name: str,
        author_email: str,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> Hash:
        """Replace the working copy parent with an amended commit."""
        msg = f"amend is not implemented for {type(self).__name__}"
        raise NotYetImplementedError(msg)

    @abstractmethod
    def tag(self, commit_hash: Hash, name: str, message: str, author_name: str, author_email: str) -> Tag:
        """Create an annotated tag.

        Returns:
            The new tag
        """

    @abstractmethod
    def branch(self, commit_hash: Hash, name: str) -> Branch:
        """Create (or move) a branch pointing at a commit.

        Returns:
            The branch
        """

    @abstractmethod
    def merge_base(self, first: Hash, second: Hash) -> Hash:
        """Find the best common ancestor of two commits.

        Raises:
            VCSOperationError: If there is not exactly one merge base
        """

    @abstractmethod
    def is_ancestor(self, ancestor: Hash, descendant: Hash) -> bool:
        """Check whether ``ancestor`` is reachable from ``descendant``."""

    @abstractmethod
    def rebase(self, commit_hash: Hash, committer_name: str, committer_email: str) -> None:
        """Replay the commits of the current branch on top of a commit.

        Args:
            commit_hash: New base
            committer_name: Committer recorded on rewritten commits
            committer_email: Committer email recorded on rewritten commits
        """

    @abstractmethod
    def squash(self, commit_hash: Hash) -> None:
        """Fold the changes from the working copy parent to a descendant into
        the working copy, uncommitted.

        Args:
            commit_hash: Last commit whose changes are folded in
        """

    @abstractmethod
    def merge(
        self,
        commit_hash: Hash,
        strategy: str | None = None,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> None:
        """Merge a commit into the working copy without committing.

        Args:
            commit_hash: Commit to merge
            strategy: Native merge strategy or tool
            committer_name: Identity for tools that require one to merge
                (default: the configured user)
            committer_email: Email of that identity
        """

    @abstractmethod
    def diff(self, from_hash: Hash, to_hash: Hash | None = None) -> Diff:
        """Compute the changes between two commits.

        Args:
            from_hash: Source commit
            to_hash: Target commit (default: the working copy)

        Returns:
            The diff
        """

    @abstractmethod
    def apply(self, diff: Diff | Path, force: bool = False) -> None:
        """Apply a diff to the working copy without committing."""

    @abstractmethod
    def fetch(self, uri: str, refspec: str) -> Hash:
        """Fetch a single head from a remote.

        Returns:
            Hash of the fetched head, the current head if nothing new arrived

        Raises:
            MultipleHeadsError: If more than one new head arrived
        """

    @abstractmethod
    def push(self, commit_hash: Hash, uri: str, ref: str, force: bool = False) -> None:
        """Publish a commit to a remote reference."""

    @abstractmethod
    def push_all(self, uri: str) -> None:
        """Publish every branch and tag to a remote."""

    @abstractmethod
    def pull(self, remote: str | None = None, refspec: str | None = None) -> None:
        """Fetch from a remote and update the working copy."""

    @abstractmethod
    def add(self, *paths: Path) -> None:
        """Start tracking files."""

    @abstractmethod
    def remove(self, *paths: Path) -> None:
        """Stop tracking and delete files."""

    @abstractmethod
    def move(self, source: Path, destination: Path) -> None:
        """Rename a tracked file."""

    @abstractmethod
    def copy(self, source: Path, destination: Path) -> None:
        """Copy a tracked file, recording the copy where the tool supports it."""

    @abstractmethod
    def show(self, path: Path, commit_hash: Hash) -> bytes | None:
        """Get file contents at a commit.

        Returns:
            File contents, None if the file does not exist at that commit
        """

    @abstractmethod
    def is_clean(self) -> bool:
        """Check if working directory has no modified, added, removed or
        untracked files.

        Returns:
            True if working directory is clean
        """

    @abstractmethod
    def is_healthy(self) -> bool:
        """Check that no lock left behind by an interrupted command exists."""

    @abstractmethod
    def is_empty(self) -> bool:
        """Check that the repository has no commits, branches or tags."""

    @abstractmethod
    def clean(self) -> None:
        """Bring the working copy back to a pristine state.

        Every step runs even when an earlier one fails.

        Raises:
            VCSOperationError: If a file deletion or revert step failed
        """

    @abstractmethod
    def username(self) -> str | None:
        """Configured user name of the repository, if any."""

    @abstractmethod
    def config(self, key: str) -> list[str]:
        """Values of a configuration key, empty if unset."""

    @abstractmethod
    def copy_to(self, destination: Path) -> "Repository":
        """Copy the whole repository to another directory.

        Returns:
            Repository at the destination
        """

    @abstractmethod
    def set_paths(self, remote: str, pull_path: str, push_path: str | None = None) -> None:
        """Configure the pull and push locations of a remote."""

    def add_remote(self, name: str, path: str) -> None:
        """Register a remote used for both pulling and pushing."""
        self.set_paths(name, path, path)

    @abstractmethod
    def pull_path(self, remote: str) -> str | None:
        """Configured pull location of a remote."""

    @abstractmethod
    def push_path(self, remote: str) -> str | None:
        """Configured push location of a remote."""

    @abstractmethod
    def is_valid_revision_range(self, expression: str) -> bool:
        """Check that an expression is a valid revision range."""

    @abstractmethod
    def upstream_for(self, branch: Branch) -> str | None:
        """Remote branch a local branch tracks, if any."""

    def close(self) -> None:
        """Release resources held by the backend."""

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


