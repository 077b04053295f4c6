"""Git repository backend."""

import configparser
import logging
import os
import shutil
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import git

from repokit.process import ProcessError
from repokit.vcs.base import Repository
from repokit.vcs.diff import parse_git_raw
from repokit.vcs.exceptions import (
    DirtyWorkingDirectoryError,
    MultipleHeadsError,
    NotARepositoryError,
    VCSOperationError,
)
from repokit.vcs.git.commits import GitCommits, command_error
from repokit.vcs.models import Branch, CommitMetadata, Diff, Hash, Tag
from repokit.vcs.utils import scoped_temp_file

logger = logging.getLogger(__name__)

# Ignore system and global configuration so output is stable.
GIT_ENVIRONMENT = {
    "GIT_CONFIG_NOSYSTEM": "1",
    "GIT_CONFIG_GLOBAL": os.devnull,
    "GIT_TERMINAL_PROMPT": "0",
}


def _date(moment: datetime | None) -> str | None:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return f"{int(moment.timestamp())} +0000"


def _identity(role: str, name: str, email: str, moment: datetime | None = None) -> dict[str, str]:
    env = {f"GIT_{role}_NAME": name, f"GIT_{role}_EMAIL": email}
    date = _date(moment)
    if date is not None:
        env[f"GIT_{role}_DATE"] = date
    return env


def _config_location(key: str) -> tuple[str, str]:
    """Translate ``remote.origin.url`` into GitPython's section and option."""
    parts = key.split(".")
    if len(parts) < 2:
        msg = f"Invalid configuration key: {key}"
        raise ValueError(msg)
    if len(parts) == 2:
        return parts[0], parts[1]
    return f'{parts[0]} "{".".join(parts[1:-1])}"', parts[-1]


class GitRepository(Repository):
    """Repository driven through GitPython.

    Args:
        path: Repository root
        git_command: Git executable
        temp_dir: Directory for temporary files (default: system temp)
    """

    def __init__(self, path: str | Path, git_command: str = "git", temp_dir: Path | None = None) -> None:
        self._root = Path(path).absolute()
        self.git_command = git_command
        self.temp_dir = temp_dir
        self._repo: git.Repo | None = None
        if git_command != "git":
            git.refresh(git_command)

    @property
    def repo(self) -> git.Repo:
        """Open GitPython repository.

        Raises:
            NotARepositoryError: If the root holds no repository
        """
        if self._repo is None:
            try:
                repo = git.Repo(self._root)
            except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
                msg = f"Not a Git repository: {self._root}"
                raise NotARepositoryError(msg) from e
            repo.git.update_environment(**GIT_ENVIRONMENT)
            self._repo = repo
        return self._repo

    def _git(self, command: str, *args: str, **kwargs: Any) -> Any:
        try:
            return getattr(self.repo.git, command)(*args, **kwargs)
        except git.GitCommandError as e:
            raise command_error(e) from e

    def root(self) -> Path:
        """Repository root directory."""
        return self._root

    def exists(self) -> bool:
        """Check for a ``.git`` directory at the root."""
        return (self._root / ".git").exists()

    def init(self) -> "GitRepository":
        """Create an empty repository at the root.

        The initial branch is always ``master``.

        Returns:
            This repository
        """
        self._root.mkdir(parents=True, exist_ok=True)
        self.close()
        repo = git.Repo.init(self._root, initial_branch=self.default_branch().name)
        repo.git.update_environment(**GIT_ENVIRONMENT)
        self._repo = repo
        return self

    def head(self) -> Hash | None:
        """Commit checked out in the working tree.

        Returns:
            Hash of HEAD, None on an unborn branch
        """
        try:
            return Hash(self.repo.head.commit.hexsha)
        except ValueError:
            # unborn branch
            return None

    def current_branch(self) -> Branch | None:
        """Branch checked out in the working tree.

        Returns:
            Active branch, None when HEAD is detached
        """
        if self.repo.head.is_detached:
            return None
        return Branch(self.repo.active_branch.name)

    def default_branch(self) -> Branch:
        """Branch created by :meth:`init`."""
        return Branch("master")

    def default_tag(self) -> Tag | None:
        """Git has no implicit tag."""
        return None

    def branches(self) -> list[Branch]:
        """List local branches."""
        return [Branch(head.name) for head in self.repo.heads]

    def tags(self) -> list[Tag]:
        """List tags."""
        return [Tag(tag.name) for tag in self.repo.tags]

    def resolve(self, ref: str | Branch | Tag) -> Hash | None:
        """Resolve a revision to a commit.

        Args:
            ref: Any ``git rev-parse`` expression, branch or tag

        Returns:
            Commit hash, None if it does not name exactly one commit
        """
        if isinstance(ref, Branch):
            name = f"refs/heads/{ref.name}"
        elif isinstance(ref, Tag):
            name = f"refs/tags/{ref.name}"
        else:
            name = ref
        try:
            output = self.repo.git.rev_parse("--verify", "--quiet", f"{name}^{{commit}}")
        except git.GitCommandError:
            return None
        lines = output.split()
        return Hash(lines[0]) if len(lines) == 1 else None

    def commits(self, range: str | None = None, limit: int | None = None, reverse: bool = False) -> GitCommits:  # noqa: A002
        """Lazy history query.

        Args:
            range: ``git rev-list`` range (default: all refs)
            limit: Keep only the newest ``limit`` commits
            reverse: Oldest first

        Returns:
            Re-iterable commits with their diffs
        """
        return GitCommits(self.repo, range, limit, reverse)

    def commit_metadata(
        self,
        range: str | None = None,  # noqa: A002
        limit: int | None = None,
        reverse: bool = False,
    ) -> list[CommitMetadata]:
        """History without diffs.

        Args:
            range: ``git rev-list`` range (default: all refs)
            limit: Keep only the newest ``limit`` commits
            reverse: Oldest first

        Returns:
            Commit metadata
        """
        return list(GitCommits(self.repo, range, limit, reverse).metadata())

    def checkout(self, ref: Hash | Branch, force: bool = False) -> None:
        """Check out a commit or branch.

        Args:
            ref: Target; a commit leaves HEAD detached
            force: Discard local modifications

        Raises:
            DirtyWorkingDirectoryError: If tracked files are modified and force is off
            ProcessError: If git fails
        """
        if not force and self.repo.is_dirty(untracked_files=False):
            msg = f"Cannot check out {ref}: working directory has local modifications"
            raise DirtyWorkingDirectoryError(msg)
        target = ref.hex if isinstance(ref, Hash) else ref.name
        if force:
            self._git("checkout", "--force", target, "--")
        else:
            self._git("checkout", target, "--")

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
        """Commit every tracked modification.

        Args:
            message: Commit message
            author_name: Author name
            author_email: Author email
            author_date: Author date (default: now)
            committer_name: Committer name (default: the author)
            committer_email: Committer email (default: the author)
            committer_date: Committer date (default: the author date)

        Returns:
            Hash of the new commit
        """
        env = _identity("AUTHOR", author_name, author_email, author_date)
        env |= _identity(
            "COMMITTER",
            committer_name or author_name,
            committer_email or author_email,
            committer_date or author_date,
        )
        self._git("commit", "--all", f"--message={message}", env=env)
        return Hash(self.repo.head.commit.hexsha)

    def amend(
        self,
        message: str,
        author_name: str,
        author_email: str,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> Hash:
        """Replace the head commit, folding in every tracked modification.

        Args:
            message: New commit message
            author_name: Author name
            author_email: Author email
            committer_name: Committer name (default: the author)
            committer_email: Committer email (default: the author)

        Returns:
            Hash of the rewritten commit
        """
        env = _identity("COMMITTER", committer_name or author_name, committer_email or author_email)
        self._git(
            "commit",
            "--amend",
            "--all",
            f"--message={message}",
            f"--author={author_name} <{author_email}>",
            env=env,
        )
        return Hash(self.repo.head.commit.hexsha)

    def tag(self, commit_hash: Hash, name: str, message: str, author_name: str, author_email: str) -> Tag:
        """Create an annotated tag.

        Args:
            commit_hash: Tagged commit
            name: Tag name
            message: Annotation
            author_name: Tagger name
            author_email: Tagger email

        Returns:
            The new tag
        """
        # The tagger is taken from the committer identity.
        env = _identity("COMMITTER", author_name, author_email)
        self._git("tag", "--annotate", f"--message={message}", name, commit_hash.hex, env=env)
        return Tag(name)

    def branch(self, commit_hash: Hash, name: str) -> Branch:
        """Create a branch at a commit without checking it out."""
        self._git("branch", name, commit_hash.hex)
        return Branch(name)

    def merge_base(self, first: Hash, second: Hash) -> Hash:
        """Single common ancestor of two commits.

        Raises:
            VCSOperationError: If there is no common ancestor or more than one
        """
        try:
            output = self.repo.git.merge_base("--all", first.hex, second.hex)
        except git.GitCommandError:
            # exit status 1 means no common ancestor
            output = ""
        bases = output.split()
        if len(bases) != 1:
            msg = f"Expected exactly one merge base of {first.abbreviate()} and {second.abbreviate()}, found {len(bases)}"
            raise VCSOperationError(msg)
        return Hash(bases[0])

    def is_ancestor(self, ancestor: Hash, descendant: Hash) -> bool:
        """Check whether ``ancestor`` is reachable from ``descendant``."""
        return self.repo.is_ancestor(ancestor.hex, descendant.hex)

    def rebase(self, commit_hash: Hash, committer_name: str, committer_email: str) -> None:
        """Rebase the current branch onto a commit.

        An aborted rebase is rolled back before the error propagates.

        Args:
            commit_hash: New base
            committer_name: Committer of the rewritten commits
            committer_email: Committer email

        Raises:
            ProcessError: If git fails, after ``git rebase --abort``
        """
        env = _identity("COMMITTER", committer_name, committer_email)
        try:
            self._git("rebase", commit_hash.hex, env=env)
        except ProcessError:
            try:
                self.repo.git.rebase("--abort")
            except git.GitCommandError as e:
                logger.warning("Failed to abort rebase: %s", e)
            raise

    def squash(self, commit_hash: Hash) -> None:
        """Stage the changes of a branch tip without committing."""
        self._git("merge", "--squash", commit_hash.hex)

    def merge(
        self,
        commit_hash: Hash,
        strategy: str | None = None,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> None:
        """Merge a commit into the working tree, leaving the result uncommitted.

        git refuses to merge without an identity, even when nothing is
        committed. Global configuration is ignored, so the identity comes
        from the arguments or from the repository configuration.

        Args:
            commit_hash: Commit to merge
            strategy: Merge strategy passed to ``--strategy``
            committer_name: Identity name (default: ``user.name``)
            committer_email: Identity email (default: ``user.email``)
        """
        args = ["--no-commit", "--no-ff"]
        if strategy is not None:
            args.append(f"--strategy={strategy}")
        name = committer_name or self.username()
        emails = self.config("user.email")
        email = committer_email or (emails[-1] if emails else None)
        env: dict[str, str] = {}
        if name and email:
            env = _identity("AUTHOR", name, email) | _identity("COMMITTER", name, email)
        self._git("merge", *args, commit_hash.hex, env=env)

    def diff(self, from_hash: Hash, to_hash: Hash | None = None) -> Diff:
        """Changes between two commits, or between a commit and the working tree.

        Args:
            from_hash: Source commit
            to_hash: Target commit (default: the working tree)

        Returns:
            Parsed zero-context diff
        """
        revisions = [from_hash.hex] if to_hash is None else [from_hash.hex, to_hash.hex]
        process = self._git(
            "diff",
            "--find-renames",
            "--unified=0",
            "--full-index",
            "--no-color",
            "--no-ext-diff",
            *revisions,
            "--",
            as_process=True,
        )
        lines = (
            (raw[:-1] if raw.endswith(b"\n") else raw).decode("utf-8", errors="surrogateescape")
            for raw in process.stdout
        )
        patches = parse_git_raw(lines)
        try:
            process.wait()
        except git.GitCommandError as e:
            raise command_error(e) from e
        return Diff(from_hash=from_hash, to_hash=to_hash, patches=tuple(patches))

    def apply(self, diff: Diff | Path, force: bool = False) -> None:
        """Apply a diff to the working tree.

        Args:
            diff: Parsed diff or patch file
            force: Skip the index, only touching the working tree
        """
        # Diffs are stored without context lines.
        args = ["--unidiff-zero"]
        if not force:
            args.append("--index")
        if isinstance(diff, Path):
            self._git("apply", *args, str(diff))
            return
        with scoped_temp_file(suffix=".patch", directory=self.temp_dir) as patch:
            diff.write_to(patch)
            self._git("apply", *args, str(patch))

    def fetch(self, uri: str, refspec: str) -> Hash:
        """Fetch a refspec and report the fetched head.

        Args:
            uri: Remote repository
            refspec: Refspec to fetch

        Returns:
            The fetched head, the current head if nothing new arrived

        Raises:
            MultipleHeadsError: If the refspec matched several different heads
        """
        self._git("fetch", uri, refspec)
        fetch_head = Path(self.repo.git_dir) / "FETCH_HEAD"
        heads = [
            line.split("\t")[0]
            for line in fetch_head.read_text(encoding="utf-8").splitlines()
            if line and "\tnot-for-merge\t" not in line
        ]
        if len(set(heads)) > 1:
            msg = f"Fetching {refspec} from {uri} produced {len(set(heads))} heads"
            raise MultipleHeadsError(msg)
        if heads:
            return Hash(heads[0])
        head = self.head()
        if head is None:
            msg = f"Nothing fetched from {uri} and the repository is empty"
            raise VCSOperationError(msg)
        return head

    def push(self, commit_hash: Hash, uri: str, ref: str, force: bool = False) -> None:
        """Push a commit to a branch or ref of a remote.

        Args:
            commit_hash: Commit to push
            uri: Remote repository
            ref: Branch name or full ref
            force: Allow non-fast-forward updates
        """
        destination = ref if ref.startswith("refs/") else f"refs/heads/{ref}"
        args = ["--force"] if force else []
        self._git("push", *args, uri, f"{commit_hash.hex}:{destination}")

    def push_all(self, uri: str) -> None:
        """Push every branch and tag."""
        self._git("push", "--all", uri)
        self._git("push", "--tags", uri)

    def pull(self, remote: str | None = None, refspec: str | None = None) -> None:
        """Fast-forward pull.

        Args:
            remote: Remote name (default: ``origin``)
            refspec: Refspec to pull (default: the configured upstream)
        """
        args = [remote or "origin"]
        if refspec is not None:
            args.append(refspec)
        self._git("pull", "--ff-only", *args)

    def add(self, *paths: Path) -> None:
        """Stage files."""
        self._git("add", "--", *map(str, paths))

    def remove(self, *paths: Path) -> None:
        """Remove files from the index and the working tree."""
        self._git("rm", "--", *map(str, paths))

    def move(self, source: Path, destination: Path) -> None:
        """Rename a tracked file."""
        self._git("mv", "--", str(source), str(destination))

    def copy(self, source: Path, destination: Path) -> None:
        """Copy a file and stage the copy."""
        # git detects copies from content, nothing is recorded
        shutil.copy2(self._root / source, self._root / destination)
        self.add(destination)

    def show(self, path: Path, commit_hash: Hash) -> bytes | None:
        """Content of a file at a commit.

        Args:
            path: Path relative to the root
            commit_hash: Commit to read from

        Returns:
            Raw file content, None if the file does not exist there
        """
        try:
            return self.repo.git.cat_file(
                "blob",
                f"{commit_hash.hex}:{path.as_posix()}",
                stdout_as_string=False,
                strip_newline_in_stdout=False,
            )
        except git.GitCommandError:
            return None

    def is_clean(self) -> bool:
        """Check for modified or untracked files."""
        return not self.repo.is_dirty(untracked_files=True)

    def is_healthy(self) -> bool:
        """Check for a stale ``index.lock``."""
        return not (Path(self.repo.git_dir) / "index.lock").exists()

    def is_empty(self) -> bool:
        """Check for a repository without commits, branches or tags."""
        return self.head() is None and not self.branches() and not self.tags()

    def clean(self) -> None:
        """Discard every local modification and untracked file.

        Raises:
            VCSOperationError: If ``git clean`` or ``git reset`` failed
        """
        for command in ("merge", "rebase"):
            try:
                getattr(self.repo.git, command)("--abort")
            except git.GitCommandError:
                logger.debug("Ignoring failed clean step: %s --abort", command)

        errors: list[Exception] = []
        steps = [("clean", "-fdx")]
        if self.head() is not None:
            steps.append(("reset", "--hard"))
        for command, flag in steps:
            try:
                self._git(command, flag)
            except ProcessError as e:
                logger.warning("Clean step failed: %s", e)
                errors.append(e)

        if errors:
            msg = "Failed to clean working directory:\n" + "\n".join(str(e) for e in errors)
            raise VCSOperationError(msg) from errors[0]

    def config(self, key: str) -> list[str]:
        """Read a configuration value from all configuration levels.

        Args:
            key: Dotted key such as ``remote.origin.url``

        Returns:
            Configured values, empty if unset
        """
        section, option = _config_location(key)
        try:
            values = self.repo.config_reader().get_values(section, option)
        except (configparser.NoSectionError, configparser.NoOptionError, KeyError):
            # GitPython raises KeyError for a missing option in an existing section
            return []
        return [str(value) for value in values]

    def username(self) -> str | None:
        """Configured ``user.name``."""
        values = self.config("user.name")
        return values[-1] if values else None

    def copy_to(self, destination: Path) -> "GitRepository":
        """Clone this repository to a local directory.

        Returns:
            The copy
        """
        target = destination.absolute()
        git.Repo.clone_from(str(self._root), target).close()
        return GitRepository(target, self.git_command, self.temp_dir)

    def set_paths(self, remote: str, pull_path: str, push_path: str | None = None) -> None:
        """Set the fetch and push URLs of a remote.

        Args:
            remote: Remote name
            pull_path: Fetch URL
            push_path: Push URL (default: same as fetch)
        """
        section = f'remote "{remote}"'
        with self.repo.config_writer() as writer:
            writer.set_value(section, "url", pull_path)
            if push_path:
                writer.set_value(section, "pushurl", push_path)

    def add_remote(self, name: str, path: str) -> None:
        """Register a new remote."""
        self.repo.create_remote(name, path)

    def pull_path(self, remote: str) -> str | None:
        """Fetch URL of a remote."""
        values = self.config(f"remote.{remote}.url")
        return values[-1] if values else None

    def push_path(self, remote: str) -> str | None:
        """Push URL of a remote, falling back to its fetch URL."""
        values = self.config(f"remote.{remote}.pushurl")
        return values[-1] if values else self.pull_path(remote)

    def is_valid_revision_range(self, expression: str) -> bool:
        """Check whether ``git rev-parse`` accepts an expression."""
        try:
            self.repo.git.rev_parse(expression)
        except git.GitCommandError:
            return False
        return True

    def upstream_for(self, branch: Branch) -> str | None:
        """Remote-tracking branch of a local branch.

        Returns:
            Name such as ``origin/master``, None if not tracking
        """
        try:
            head = self.repo.heads[branch.name]
        except IndexError:
            return None
        tracking = head.tracking_branch()
        return tracking.name if tracking is not None else None

    def close(self) -> None:
        """Release the GitPython repository."""
        if self._repo is not None:
            self._repo.close()
            self._repo = None

    @classmethod
    def clone(cls, uri: str, to: Path, git_command: str = "git", temp_dir: Path | None = None) -> "GitRepository":
        """Clone a remote repository.

        Args:
            uri: Source repository
            to: Destination directory

        Returns:
            The cloned repository
        """
        target = Path(to).absolute()
        try:
            git.Repo.clone_from(uri, target, env=GIT_ENVIRONMENT).close()
        except git.GitCommandError as e:
            raise command_error(e) from e
        return cls(target, git_command, temp_dir)

    @classmethod
    def get(cls, path: Path, git_command: str = "git", temp_dir: Path | None = None) -> "GitRepository | None":
        """Open the repository containing ``path``, if any."""
        try:
            repo = git.Repo(path, search_parent_directories=True)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError):
            return None
        try:
            if repo.working_tree_dir is None:
                return None
            return cls(Path(repo.working_tree_dir), git_command, temp_dir)
        finally:
            repo.close()
