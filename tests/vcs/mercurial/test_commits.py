"""Tests for decoding the Mercurial history stream."""

from unittest.mock import MagicMock

import pytest

from repokit.process import ExecutionResult, ProcessError
from repokit.vcs.exceptions import DiffParseError, MetadataParseError
from repokit.vcs.mercurial.commits import HgCommits, decode_commit
from repokit.vcs.models import Hash, PatchStatus
from repokit.vcs.stream import DIFF_MARKER, SENTINEL, LineReader

HEX_A = "a" * 40
HEX_B = "b" * 40
HEX_C = "c" * 40


def record(commit: str, *parents: str, title: str = "Change") -> list[str]:
    return [SENTINEL, commit, " ".join(parents), "Duke", "duke@example.com", "Duke", "duke@example.com", "0", "1", title]


def modification(path: str) -> list[str]:
    return [f"diff --git a/{path} b/{path}", f"--- a/{path}", f"+++ b/{path}", "@@ -1 +1 @@", "-old", "+new"]


STREAM = [
    *record(HEX_A, HEX_B, HEX_C, title="Merge"),
    DIFF_MARKER + HEX_B,
    *modification("one.txt"),
    DIFF_MARKER + HEX_C,
    *modification("two.txt"),
    *modification("three.txt"),
    *record(HEX_B, "0" * 40, title="Root"),
    DIFF_MARKER + "0" * 40,
    "diff --git a/one.txt b/one.txt",
    "new file mode 100644",
    "--- /dev/null",
    "+++ b/one.txt",
    "@@ -0,0 +1 @@",
    "+old",
]


@pytest.fixture
def executor() -> MagicMock:
    """Create an executor whose streamed command prints STREAM.

    Returns:
        Mock executor
    """
    mock = MagicMock()
    execution = mock.stream.return_value.__enter__.return_value
    execution.lines.return_value = iter(STREAM)
    execution.wait.return_value = ExecutionResult(["hg"], 0, [], [])
    return mock


class TestDecodeCommit:
    """Tests for decode_commit."""

    def test_merge_has_one_diff_per_parent(self) -> None:
        """Test diffs are attached in parent order."""
        reader = LineReader(STREAM)

        commit = decode_commit(reader)

        assert commit.hash == Hash(HEX_A)
        assert commit.is_merge()
        assert [d.from_hash for d in commit.parent_diffs] == [Hash(HEX_B), Hash(HEX_C)]
        assert all(d.to_hash == Hash(HEX_A) for d in commit.parent_diffs)
        assert [str(p.path) for p in commit.parent_diffs[1].patches] == ["two.txt", "three.txt"]
        assert [str(p.path) for p in commit.patches] == ["one.txt"]
        assert reader.peek() == SENTINEL

    def test_root_commit_diff(self) -> None:
        """Test the root commit diffs against the null revision."""
        reader = LineReader(STREAM)
        decode_commit(reader)

        root = decode_commit(reader)

        assert root.is_initial_commit()
        assert root.patches[0].status is PatchStatus.ADDED
        assert reader.at_end()

    def test_missing_diff_marker(self) -> None:
        """Test a record without its diff marker."""
        with pytest.raises(MetadataParseError, match="line 11: expected diff marker"):
            decode_commit(LineReader(record(HEX_A, HEX_B) + record(HEX_B, HEX_C)))

    def test_empty_diff(self) -> None:
        """Test a parent with no changes yields an empty diff."""
        commit = decode_commit(LineReader([*record(HEX_A, HEX_B), DIFF_MARKER + HEX_B]))

        assert commit.parent_diffs[0].patches == ()


class TestHgCommits:
    """Tests for HgCommits."""

    def test_iterates_lazily(self, executor: MagicMock) -> None:
        """Test commits are decoded from the streamed output."""
        commits = HgCommits(executor)

        iterator = iter(commits)
        first = next(iterator)

        assert first.hash == Hash(HEX_A)
        assert [c.hash.hex for c in iterator] == [HEX_B]
        executor.stream.return_value.__enter__.return_value.check.assert_called_once()

    def test_arguments(self, executor: MagicMock) -> None:
        """Test selection options are passed to the helper command."""
        HgCommits(executor, hg_command="/opt/hg", revset="draft()", limit=2, reverse=True).as_list()

        args = executor.stream.call_args[0]
        assert args[0] == "/opt/hg"
        assert args[1] == "--config"
        assert args[2].startswith("extensions.repokit_dump=")
        assert list(args[3:]) == ["repokit-log", "--limit=2", "--reverse", "--", "draft()"]

    def test_non_positive_limit(self, executor: MagicMock) -> None:
        """Test a limit of zero yields nothing without running hg."""
        assert HgCommits(executor, limit=0).as_list() == []
        executor.stream.assert_not_called()

    def test_failed_command_wins_over_parse_error(self, executor: MagicMock) -> None:
        """Test a garbled stream from a failing hg reports the process failure."""
        execution = executor.stream.return_value.__enter__.return_value
        execution.lines.return_value = iter(["abort: unknown revision"])
        execution.wait.return_value = ExecutionResult(["hg"], 255, [], ["abort: unknown revision"])

        with pytest.raises(ProcessError) as exc_info:
            HgCommits(executor).as_list()

        assert exc_info.value.status == 255

    def test_parse_error_from_successful_command(self, executor: MagicMock) -> None:
        """Test malformed output of a successful hg is a parse error."""
        execution = executor.stream.return_value.__enter__.return_value
        execution.lines.return_value = iter([*record(HEX_A, HEX_B), DIFF_MARKER + HEX_B, "garbage"])

        with pytest.raises(DiffParseError):
            HgCommits(executor).as_list()
