"""Mercurial repository backend."""

import logging
import re
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

import hglib  # type: ignore[import-untyped]

from repokit.process import ExecutionResult, ProcessError, ProcessExecutor
from repokit.vcs.base import Repository
from repokit.vcs.diff import parse_git_raw
from repokit.vcs.exceptions import (
    DirtyWorkingDirectoryError,
    MultipleHeadsError,
    NotARepositoryError,
    UnsupportedOperationError,
    VCSOperationError,
)
from repokit.vcs.mercurial.commits import HgCommits
from repokit.vcs.mercurial.extension import helper_extension
from repokit.vcs.models import NULL_HASH, Branch, CommitMetadata, Diff, Hash, Tag
from repokit.vcs.stream import decode_all
from repokit.vcs.utils import scoped_temp_file

logger = logging.getLogger(__name__)

# Ignore user and system configuration so output is stable.
HG_ENVIRONMENT = {"HGRCPATH": "", "HGPLAIN": "1", "HGENCODING": "utf-8"}

NODE_TEMPLATE = "--template={node}\\n"
BACKUP_BUNDLE = re.compile(r"saved backup bundle to (.+)$")
STRIP = ("--config", "extensions.strip=", "strip")


def _symbol(name: str) -> str:
    """Quote a branch, bookmark or tag name for use inside a revset."""
    escaped = name.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def _user(name: str, email: str | None) -> str:
    return f"{name} <{email}>" if email else name


def _epoch(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return int(moment.timestamp())


class HgRepository(Repository):
    """Repository driven through the ``hg`` command line.

    Bookmarks play the role of branches. History and diffs are read through a
    helper extension loaded into each ``hg`` invocation.

    Args:
        path: Repository root
        hg_command: Mercurial executable
        temp_dir: Directory for temporary files (default: system temp)
    """

    def __init__(self, path: str | Path, hg_command: str = "hg", temp_dir: Path | None = None) -> None:
        self._root = Path(path).absolute()
        self.hg_command = hg_command
        self.temp_dir = temp_dir
        self.executor = ProcessExecutor(self._root, HG_ENVIRONMENT)

    def _hg(self, *args: str) -> ExecutionResult:
        return self.executor.capture(self.hg_command, *args).check()

    def _hg_status(self, *args: str) -> ExecutionResult:
        return self.executor.capture(self.hg_command, *args).wait()

    def root(self) -> Path:
        """Repository root directory."""
        return self._root

    def exists(self) -> bool:
        """Check for a ``.hg`` directory at the root."""
        return (self._root / ".hg").is_dir()

    def init(self) -> "HgRepository":
        """Create an empty repository at the root.

        Returns:
            This repository
        """
        self._root.mkdir(parents=True, exist_ok=True)
        self._hg("init")
        return self

    def head(self) -> Hash | None:
        """Working directory parent.

        Returns:
            Its hash, None before the first commit
        """
        commit_hash = self.resolve(".")
        if commit_hash is None or commit_hash == NULL_HASH:
            return None
        return commit_hash

    def current_branch(self) -> Branch | None:
        """Get the active bookmark, or the named branch when none is active.

        Returns:
            Current branch
        """
        result = self._hg("log", "--rev=.", "--template={activebookmark}")
        bookmark = "".join(result.stdout).strip()
        if bookmark:
            return Branch(bookmark)
        result = self._hg("branch")
        return Branch(result.stdout[0]) if len(result.stdout) == 1 else None

    def default_branch(self) -> Branch:
        """Mercurial's initial named branch."""
        return Branch("default")

    def default_tag(self) -> Tag | None:
        """``tip`` always names the newest revision."""
        return Tag("tip")

    def branches(self) -> list[Branch]:
        """List named branches followed by bookmarks."""
        names = self._hg("branches", "--template={branch}\\n").stdout
        names += self._hg("bookmarks", "--template={bookmark}\\n").stdout
        return [Branch(name) for name in dict.fromkeys(names) if name]

    def tags(self) -> list[Tag]:
        """List tags, ``tip`` included."""
        return [Tag(line.split()[0]) for line in self._hg("tags").stdout if line.strip()]

    def resolve(self, ref: str | Branch | Tag) -> Hash | None:
        """Resolve a revision to a single commit.

        The working directory pseudo-revision (``wdir()``, ``ffff...``) is
        not a commit and never resolves.

        Args:
            ref: Revset, branch or tag

        Returns:
            Commit hash, None unless exactly one commit matches
        """
        revset = ref if isinstance(ref, str) else _symbol(ref.name)
        result = self._hg_status("log", f"--rev=({revset}) and not wdir()", NODE_TEMPLATE)
        if result.status == 0 and len(result.stdout) == 1:
            return Hash(result.stdout[0])
        return None

    def commits(self, range: str | None = None, limit: int | None = None, reverse: bool = False) -> HgCommits:  # noqa: A002
        """Lazy history query streamed through the helper extension.

        Args:
            range: Revset (default: all revisions)
            limit: Keep only the newest ``limit`` commits
            reverse: Oldest first

        Returns:
            Re-iterable commits with their per-parent diffs
        """
        return HgCommits(self.executor, self.hg_command, range, limit, reverse, self.temp_dir)

    def commit_metadata(
        self,
        range: str | None = None,  # noqa: A002
        limit: int | None = None,
        reverse: bool = False,
    ) -> list[CommitMetadata]:
        """History without diffs, read in one helper extension run.

        Args:
            range: Revset (default: all revisions)
            limit: Keep only the newest ``limit`` commits
            reverse: Oldest first

        Returns:
            Commit metadata
        """
        if limit is not None and limit <= 0:
            return []
        args = ["repokit-log", "--no-diffs"]
        if limit is not None:
            args.append(f"--limit={limit}")
        if reverse:
            args.append("--reverse")
        if range is not None:
            args.extend(["--", range])
        with helper_extension(self.temp_dir) as extension:
            with self.executor.stream(self.hg_command, *extension, *args) as execution:
                metadata = list(decode_all(execution.lines()))
            execution.check()
        return metadata

    def _tracked_modifications(self) -> list[str]:
        return self._hg("status", "--modified", "--added", "--removed", "--deleted", "--no-status").stdout

    def checkout(self, ref: Hash | Branch, force: bool = False) -> None:
        """Update the working directory to a revision or bookmark.

        Updating to a bookmark activates it.

        Args:
            ref: Target revision or bookmark
            force: Discard local modifications

        Raises:
            DirtyWorkingDirectoryError: If tracked files are modified and force is off
        """
        if not force and self._tracked_modifications():
            msg = f"Cannot check out {ref}: working directory has local modifications"
            raise DirtyWorkingDirectoryError(msg)
        target = ref.hex if isinstance(ref, Hash) else ref.name
        self._hg("update", "--clean" if force else "--check", "--", target)

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
        """Commit every outstanding change.

        Args:
            message: Commit message
            author_name: Author name
            author_email: Author email
            author_date: Commit date (default: now)
            committer_name: Must match the author if given
            committer_email: Must match the author if given
            committer_date: Must match the author date if given

        Returns:
            Hash of the new commit

        Raises:
            UnsupportedOperationError: If the committer differs from the author
        """
        if (committer_name or author_name) != author_name or (committer_email or author_email) != author_email:
            msg = "Mercurial cannot record a committer different from the author"
            raise UnsupportedOperationError(msg)
        if committer_date is not None and committer_date != author_date:
            msg = "Mercurial cannot record a commit date different from the author date"
            raise UnsupportedOperationError(msg)

        args = ["commit", f"--message={message}", f"--user={_user(author_name, author_email)}"]
        if author_date is not None:
            args.append(f"--date={_epoch(author_date)} 0")
        self._hg(*args)

        commit_hash = self.head()
        if commit_hash is None:
            msg = "Could not resolve the new commit"
            raise VCSOperationError(msg)
        return commit_hash

    def tag(self, commit_hash: Hash, name: str, message: str, author_name: str, author_email: str) -> Tag:
        """Tag a revision, which commits ``.hgtags``.

        Args:
            commit_hash: Tagged revision
            name: Tag name
            message: Message of the tagging commit
            author_name: Author of the tagging commit
            author_email: Author email

        Returns:
            The new tag
        """
        self._hg(
            "tag",
            f"--message={message}",
            f"--user={_user(author_name, author_email)}",
            f"--rev={commit_hash.hex}",
            "--",
            name,
        )
        return Tag(name)

    def branch(self, commit_hash: Hash, name: str) -> Branch:
        """Create a bookmark at a revision without activating it."""
        # Bookmarks are the closest match to lightweight branches.
        self._hg("bookmark", f"--rev={commit_hash.hex}", "--", name)
        return Branch(name)

    def merge_base(self, first: Hash, second: Hash) -> Hash:
        """Common ancestor of two revisions.

        Raises:
            VCSOperationError: If the histories are disjoint
        """
        result = self._hg("log", f"--rev=ancestor({first.hex}, {second.hex})", NODE_TEMPLATE)
        if len(result.stdout) != 1 or result.stdout[0] == NULL_HASH.hex:
            msg = f"Expected exactly one merge base of {first.abbreviate()} and {second.abbreviate()}\n{result}"
            raise VCSOperationError(msg)
        return Hash(result.stdout[0])

    def is_ancestor(self, ancestor: Hash, descendant: Hash) -> bool:
        """Check whether ``ancestor`` is an ancestor of ``descendant``."""
        result = self._hg("log", f"--rev={ancestor.hex} and ancestors({descendant.hex})", NODE_TEMPLATE)
        return len(result.stdout) == 1

    def _export(self, revset: str, destination: Path) -> None:
        self._hg("export", "--git", f"--output={destination}", f"--rev={revset}")

    def _strip(self, revset: str) -> Path | None:
        """Strip revisions, keeping the backup bundle.

        Returns:
            Path of the backup bundle, if reported
        """
        result = self._hg(*STRIP, f"--rev={revset}")
        for line in result.stdout + result.stderr:
            match = BACKUP_BUNDLE.search(line)
            if match:
                return Path(match.group(1).strip())
        logger.warning("Strip did not report a backup bundle")
        return None

    def _restore(self, backup: Path | None, revision: Hash, bookmark: str | None) -> None:
        """Best-effort recovery after a failed history rewrite."""
        if backup is None:
            logger.warning("No backup bundle available, cannot restore %s", revision.abbreviate())
            return
        logger.warning("Restoring %s from %s", revision.abbreviate(), backup)
        steps = [("unbundle", str(backup)), ("update", "--clean", revision.hex)]
        if bookmark:
            # moving a bookmark does not activate it, updating to it does
            steps.append(("bookmark", "--force", f"--rev={revision.hex}", "--", bookmark))
            steps.append(("update", "--clean", "--", bookmark))
        for args in steps:
            result = self._hg_status(*args)
            if not result.success:
                logger.warning("Restore step failed: %s", result)

    def _active_bookmark(self) -> str | None:
        result = self._hg("log", "--rev=.", "--template={activebookmark}")
        return "".join(result.stdout).strip() or None

    @contextmanager
    def _patch_file(self) -> Iterator[Path]:
        with scoped_temp_file(suffix=".patch", directory=self.temp_dir) as path:
            yield path

    def squash(self, commit_hash: Hash) -> None:
        """Fold the descendants of the working directory parent, up to a revision,
        into the working directory.

        The folded revisions are stripped. If re-applying them fails they are
        restored from the strip backup.

        Args:
            commit_hash: Last revision to fold in

        Raises:
            VCSOperationError: If the repository has no commits
            ProcessError: If export, strip or import fails
        """
        head = self.head()
        if head is None:
            msg = "Cannot squash in an empty repository"
            raise VCSOperationError(msg)

        revset = f".:{commit_hash.hex} and not ."
        with self._patch_file() as patch:
            self._export(revset, patch)
            backup = self._strip(revset)
            try:
                self._hg("import", "--no-commit", str(patch))
            except ProcessError:
                self._restore(backup, head, None)
                raise

    def rebase(self, commit_hash: Hash, committer_name: str, committer_email: str) -> None:
        """Replay the commits of the current bookmark onto a new base.

        Mercurial records no committer, so the committer identity is not
        stored on the rewritten commits.
        """
        if self._tracked_modifications():
            msg = "Cannot rebase: working directory has local modifications"
            raise DirtyWorkingDirectoryError(msg)

        logger.debug("Ignoring committer %s for Mercurial rebase", _user(committer_name, committer_email))
        bookmark = self._active_bookmark()
        old_head = self.head()
        revset = f"only(., {commit_hash.hex})"
        if old_head is None or not self._hg("log", f"--rev={revset}", NODE_TEMPLATE).stdout:
            self._hg("update", "--", commit_hash.hex)
            if bookmark:
                self._hg("bookmark", "--force", "--", bookmark)
            return

        with self._patch_file() as patch:
            self._export(revset, patch)
            self._hg("update", "--", commit_hash.hex)
            backup = self._strip(f"only({old_head.hex}, {commit_hash.hex})")
            try:
                self._hg("import", str(patch))
            except ProcessError:
                self._restore(backup, old_head, bookmark)
                raise
        if bookmark:
            self._hg("bookmark", "--force", "--", bookmark)

    def merge(
        self,
        commit_hash: Hash,
        strategy: str | None = None,
        committer_name: str | None = None,
        committer_email: str | None = None,
    ) -> None:
        """Merge a revision into the working copy without committing.

        Args:
            commit_hash: Revision to merge
            strategy: Merge tool passed to ``--tool``
            committer_name: Unused, Mercurial needs no identity to merge
            committer_email: Unused
        """
        args = ["merge", f"--rev={commit_hash.hex}"]
        if strategy is not None:
            args.append(f"--tool={strategy}")
        self._hg(*args)

    def diff(self, from_hash: Hash, to_hash: Hash | None = None) -> Diff:
        """Changes between two revisions, or between a revision and the working directory.

        Args:
            from_hash: Source revision
            to_hash: Target revision (default: the working directory)

        Returns:
            Parsed zero-context diff
        """
        args = ["repokit-diff", "--", from_hash.hex]
        if to_hash is not None:
            args.append(to_hash.hex)
        with helper_extension(self.temp_dir) as extension:
            with self.executor.stream(self.hg_command, *extension, *args) as execution:
                patches = parse_git_raw(execution.lines())
            execution.check()
        return Diff(from_hash=from_hash, to_hash=to_hash, patches=tuple(patches))

    def apply(self, diff: Diff | Path, force: bool = False) -> None:
        """Apply a diff to the working directory without committing.

        Args:
            diff: Parsed diff or patch file
            force: Apply on top of local modifications
        """
        args = ["import", "--no-commit"]
        if force:
            args.append("--force")
        if isinstance(diff, Path):
            self._hg(*args, str(diff))
            return
        with self._patch_file() as patch:
            diff.write_to(patch)
            self._hg(*args, str(patch))

    def _heads(self) -> set[Hash]:
        # hg heads exits with 1 when there are none
        result = self._hg_status("heads", NODE_TEMPLATE)
        return {Hash(line) for line in result.stdout} if result.status == 0 else set()

    def fetch(self, uri: str, refspec: str) -> Hash:
        """Pull a revision and report the head it introduced.

        Args:
            uri: Remote repository
            refspec: Revision to pull

        Returns:
            The new head, the working directory parent if none appeared

        Raises:
            MultipleHeadsError: If the pull introduced more than one head
        """
        old_heads = self._heads()
        self._hg("pull", f"--rev={refspec}", "--", uri)
        new_heads = self._heads() - old_heads

        if len(new_heads) > 1:
            msg = f"Fetching {refspec} from {uri} introduced {len(new_heads)} new heads"
            raise MultipleHeadsError(msg)
        if new_heads:
            return new_heads.pop()

        head = self.head()
        if head is None:
            msg = f"Nothing fetched from {uri} and the repository is empty"
            raise VCSOperationError(msg)
        return head

    def _push(self, *args: str) -> None:
        # hg push exits with 1 when there is nothing to push
        result = self._hg_status("push", *args)
        if result.status not in (0, 1):
            raise ProcessError(result)

    def push(self, commit_hash: Hash, uri: str, ref: str, force: bool = False) -> None:
        """Push a revision to a branch of a remote.

        Args:
            commit_hash: Revision to push
            uri: Remote repository
            ref: Target branch, appended as ``uri#ref``
            force: Allow new heads
        """
        args = [f"--rev={commit_hash.hex}"]
        if force:
            args.append("--force")
        self._push(*args, "--", f"{uri}#{ref}")

    def push_all(self, uri: str) -> None:
        """Push every revision, creating new branches as needed."""
        self._push("--new-branch", "--", uri)

    def pull(self, remote: str | None = None, refspec: str | None = None) -> None:
        """Pull and update the working directory.

        Args:
            remote: Path alias or URL (default: ``default``)
            refspec: Named branch to pull (default: everything)
        """
        args = ["pull", "--update"]
        if refspec is not None:
            args.append(f"--branch={refspec}")
        self._hg(*args, "--", remote or "default")

    def add(self, *paths: Path) -> None:
        """Track files."""
        self._hg("add", "--", *map(str, paths))

    def remove(self, *paths: Path) -> None:
        """Stop tracking files and delete them."""
        self._hg("remove", "--", *map(str, paths))

    def move(self, source: Path, destination: Path) -> None:
        """Rename a tracked file, recording the rename."""
        self._hg("move", "--", str(source), str(destination))

    def copy(self, source: Path, destination: Path) -> None:
        """Copy a tracked file, recording the copy."""
        self._hg("copy", "--", str(source), str(destination))

    def show(self, path: Path, commit_hash: Hash) -> bytes | None:
        """Content of a file at a revision.

        Args:
            path: Path relative to the root
            commit_hash: Revision to read from

        Returns:
            Raw file content, None if the file does not exist there
        """
        with scoped_temp_file(suffix=".bin", directory=self.temp_dir) as output:
            result = self._hg_status("cat", f"--output={output}", f"--rev={commit_hash.hex}", "--", str(path))
            if not result.success:
                return None
            return output.read_bytes()

    def is_clean(self) -> bool:
        """Check for modified, added, removed, missing or unknown files."""
        return not self._hg("status").stdout

    def is_healthy(self) -> bool:
        """Check for stale working directory or store locks."""
        hg = self._root / ".hg"
        return not ((hg / "wlock").exists() or (hg / "store" / "lock").exists())

    def is_empty(self) -> bool:
        """Check for a repository without revisions, bookmarks or tags."""
        # "tip" always exists
        if self.branches() or len(self.tags()) > 1:
            return False
        tip = self.resolve("tip")
        return tip is None or tip == NULL_HASH

    def _delete_listed(self, *status_args: str) -> None:
        for name in self._hg("status", *status_args, "--no-status").stdout:
            (self._root / name).unlink(missing_ok=True)

    def clean(self) -> None:
        """Discard local modifications, unknown and ignored files.

        An interrupted merge is aborted and an interrupted transaction recovered
        first; failures of those two steps are only logged.

        Raises:
            VCSOperationError: If deleting files or reverting failed
        """
        for args in (("merge", "--abort"), ("recover",)):
            result = self._hg_status(*args)
            if not result.success:
                logger.debug("Ignoring failed clean step: %s", " ".join(args))

        errors: list[Exception] = []
        for step in (
            lambda: self._delete_listed("--ignored"),
            lambda: self._delete_listed("--unknown"),
            lambda: self._hg("revert", "--no-backup", "--all"),
        ):
            try:
                step()
            except (ProcessError, OSError) as e:
                logger.warning("Clean step failed: %s", e)
                errors.append(e)

        if errors:
            msg = "Failed to clean working directory:\n" + "\n".join(str(e) for e in errors)
            raise VCSOperationError(msg) from errors[0]

    def config(self, key: str) -> list[str]:
        """Read a configuration value including user and system configuration.

        Args:
            key: ``section.name`` key

        Returns:
            Configured values, empty if unset
        """
        section, _, name = key.partition(".")
        try:
            client = hglib.open(str(self._root))
        except hglib.error.ServerError as e:
            msg = f"Not a Mercurial repository: {self._root}"
            raise NotARepositoryError(msg) from e
        try:
            # hg exits with 1 for a section without entries
            entries = client.config(section.encode("utf-8"))
        except hglib.error.CommandError:
            return []
        finally:
            client.close()
        return [value.decode("utf-8") for _, entry, value in entries if entry.decode("utf-8") == name]

    def username(self) -> str | None:
        """Configured ``ui.username``, None unless set exactly once."""
        values = self.config("ui.username")
        return values[0] if len(values) == 1 else None

    def copy_to(self, destination: Path) -> "HgRepository":
        """Clone this repository to a local directory.

        Returns:
            The copy
        """
        target = destination.absolute()
        self._hg("clone", "--", str(self._root), str(target))
        return HgRepository(target, self.hg_command, self.temp_dir)

    def set_paths(self, remote: str, pull_path: str, push_path: str | None = None) -> None:
        """Write a path alias and its push URL to ``.hg/hgrc``.

        Other sections and aliases are kept.

        Args:
            remote: Path alias
            pull_path: Pull URL
            push_path: Push URL (default: same as pull)
        """
        hgrc = self._root / ".hg" / "hgrc"
        lines = hgrc.read_text(encoding="utf-8").splitlines() if hgrc.exists() else []
        entries = [f"{remote} = {pull_path}", f"{remote}-push = {push_path or ''}"]
        own_keys = (remote, f"{remote}-push", f"{remote}:pushurl")

        result: list[str] = []
        in_paths = False
        found = False
        for line in lines:
            stripped = line.strip()
            if stripped.startswith("[") and stripped.endswith("]"):
                in_paths = stripped == "[paths]"
                result.append(line)
                if in_paths and not found:
                    result.extend(entries)
                    found = True
                continue
            if in_paths and "=" in stripped and stripped.split("=", 1)[0].strip() in own_keys:
                continue
            result.append(line)

        if not found:
            result.extend(["[paths]", *entries])
        hgrc.write_text("\n".join(result) + "\n", encoding="utf-8")

    def pull_path(self, remote: str) -> str | None:
        """URL of a path alias."""
        values = self.config(f"paths.{remote}")
        return values[0] if len(values) == 1 else None

    def push_path(self, remote: str) -> str | None:
        """Push URL of a path alias, falling back to its pull URL."""
        for key in (f"paths.{remote}-push", f"paths.{remote}:pushurl"):
            values = self.config(key)
            if len(values) == 1 and values[0]:
                return values[0]
        return self.pull_path(remote)

    def is_valid_revision_range(self, expression: str) -> bool:
        """Check whether a revset parses and resolves."""
        return self._hg_status("log", "--template= ", f"--rev={expression}").success

    def upstream_for(self, branch: Branch) -> str | None:
        """Remote branch of a bookmark.

        Mercurial has no remote-tracking branches, so the remote uses the
        same name.
        """
        # No remote-tracking branches; the remote uses the same name.
        return branch.name

    @classmethod
    def clone(cls, uri: str, to: Path, hg_command: str = "hg", temp_dir: Path | None = None) -> "HgRepository":
        """Clone a remote repository.

        Args:
            uri: Source repository
            to: Destination directory

        Returns:
            The cloned repository
        """
        target = Path(to).absolute()
        executor = ProcessExecutor(Path.cwd(), HG_ENVIRONMENT)
        executor.capture(hg_command, "clone", "--", uri, str(target)).check()
        return cls(target, hg_command, temp_dir)

    @classmethod
    def get(cls, path: Path, hg_command: str = "hg", temp_dir: Path | None = None) -> "HgRepository | None":
        """Open the repository containing ``path``, if any."""
        directory = Path(path).absolute()
        if not directory.is_dir():
            return None
        result = ProcessExecutor(directory, HG_ENVIRONMENT).capture(hg_command, "root").wait()
        if not result.success or len(result.stdout) != 1:
            return None
        return cls(Path(result.stdout[0]), hg_command, temp_dir)
