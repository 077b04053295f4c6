"""Lazy history traversal backed by the helper extension."""

import logging
from collections.abc import Iterator
from pathlib import Path

from repokit.process import ProcessError, ProcessExecutor
from repokit.vcs.base import Commits
from repokit.vcs.diff import parse_git_raw
from repokit.vcs.exceptions import MetadataParseError, ParseError
from repokit.vcs.mercurial.extension import helper_extension
from repokit.vcs.models import Commit, Diff
from repokit.vcs.stream import DIFF_MARKER, SENTINEL, LineReader, decode_metadata

logger = logging.getLogger(__name__)


def _at_record(line: str) -> bool:
    return line.startswith(SENTINEL)


def decode_commit(reader: LineReader) -> Commit:
    """Decode one record followed by its per-parent diffs.

    Args:
        reader: Reader positioned at a record sentinel

    Returns:
        The commit with one diff per parent

    Raises:
        ParseError: If the record or a diff is malformed
    """
    metadata = decode_metadata(reader)
    diffs = []
    for parent in metadata.parents:
        marker = reader.next()
        if marker != DIFF_MARKER + parent.hex:
            msg = f"expected diff marker for parent {parent.abbreviate()}, got {marker!r}"
            raise MetadataParseError(msg, reader.line_number)
        patches = parse_git_raw(reader, stop=_at_record)
        diffs.append(Diff(from_hash=parent, to_hash=metadata.hash, patches=tuple(patches)))
    return Commit.from_metadata(metadata, diffs)


class HgCommits(Commits):
    """Commits selected by a revset.

    Args:
        executor: Executor bound to the repository root
        hg_command: Mercurial executable
        revset: Revision set (default: all commits)
        limit: Keep only the newest ``limit`` commits
        reverse: Oldest first
        temp_dir: Where the extension is materialized
    """

    def __init__(
        self,
        executor: ProcessExecutor,
        hg_command: str = "hg",
        revset: str | None = None,
        limit: int | None = None,
        reverse: bool = False,
        temp_dir: Path | None = None,
    ) -> None:
        self.executor = executor
        self.hg_command = hg_command
        self.revset = revset
        self.limit = limit
        self.reverse = reverse
        self.temp_dir = temp_dir

    def _arguments(self) -> list[str]:
        args = ["repokit-log"]
        if self.limit is not None:
            args.append(f"--limit={self.limit}")
        if self.reverse:
            args.append("--reverse")
        if self.revset is not None:
            args.extend(["--", self.revset])
        return args

    def __iter__(self) -> Iterator[Commit]:
        if self.limit is not None and self.limit <= 0:
            return
        with helper_extension(self.temp_dir) as extension:
            with self.executor.stream(self.hg_command, *extension, *self._arguments()) as execution:
                reader = LineReader(execution.lines())
                try:
                    while not reader.at_end():
                        yield decode_commit(reader)
                except ParseError:
                    result = execution.wait()
                    if not result.success:
                        raise ProcessError(result) from None
                    raise
            execution.check()
