"""Parsers for unified and git-extended diff text.

Hunks are always normalised to zero-context form: a hunk carrying context
lines is split into one hunk per contiguous run of changes, with ranges
computed the way ``diff -U0`` prints them. Parsing is strict, malformed input
raises :class:`DiffParseError` with the offending line number.
"""

import logging
import re
from collections.abc import Callable, Iterable

from pydantic import ValidationError

from repokit.vcs.exceptions import DiffParseError
from repokit.vcs.models import (
    DEV_NULL,
    FileType,
    Hash,
    Hunk,
    HunkSide,
    Patch,
    PatchInfo,
    PatchStatus,
    Range,
)
from repokit.vcs.stream import LineReader

logger = logging.getLogger(__name__)

HUNK_HEADER = re.compile(r"^@@ -(\d+(?:,\d+)?) \+(\d+(?:,\d+)?) @@")
INDEX_LINE = re.compile(r"^index ([0-9a-fA-F]+)\.\.([0-9a-fA-F]+)(?: (\d{6}))?$")
SCORE_LINE = re.compile(r"^(?:dis)?similarity index (\d+)%$")
BINARY_FILES = re.compile(r"^Binary files (.+) and (.+) differ$")

GIT_HEADER = "diff --git "

ESCAPES = {"\\": "\\", '"': '"', "t": "\t", "n": "\n", "r": "\r", "a": "\a", "b": "\b", "f": "\f", "v": "\v"}

StopPredicate = Callable[[str], bool]


def _reader(lines: LineReader | Iterable[str]) -> LineReader:
    return lines if isinstance(lines, LineReader) else LineReader(lines)


def unquote_path(text: str) -> str:
    """Undo git's C-style quoting of a path.

    Args:
        text: Path, possibly enclosed in double quotes

    Returns:
        The raw path
    """
    if len(text) < 2 or not (text.startswith('"') and text.endswith('"')):
        return text
    out = bytearray()
    body = text[1:-1]
    i = 0
    while i < len(body):
        c = body[i]
        if c != "\\" or i + 1 == len(body):
            out.extend(c.encode("utf-8", errors="surrogateescape"))
            i += 1
            continue
        escaped = body[i + 1]
        if escaped in "01234567" and i + 4 <= len(body):
            out.append(int(body[i + 1 : i + 4], 8))
            i += 4
        else:
            out.extend(ESCAPES.get(escaped, escaped).encode("utf-8"))
            i += 2
    return out.decode("utf-8", errors="surrogateescape")


def _quoted_prefix(text: str) -> tuple[str, str]:
    """Split a leading quoted token off ``text``."""
    i = 1
    while i < len(text):
        if text[i] == "\\":
            i += 2
        elif text[i] == '"':
            return text[: i + 1], text[i + 1 :]
        else:
            i += 1
    return text, ""


def _strip_prefix(path: str, prefix: str) -> str:
    return path[len(prefix) :] if path.startswith(prefix) else path


def _split_git_paths(rest: str, line_number: int) -> tuple[str, str]:
    if rest.startswith('"'):
        a, remainder = _quoted_prefix(rest)
        b = remainder.lstrip(" ")
    elif rest.endswith('"') and ' "' in rest:
        index = rest.index(' "')
        a, b = rest[:index], rest[index + 1 :]
    else:
        # Unquoted paths may contain spaces; both sides name the same file
        # unless the patch is a rename or copy, which carries explicit paths.
        half = (len(rest) - 1) // 2
        if len(rest) % 2 == 1 and rest[half] == " " and rest[2:half] == rest[half + 3 :]:
            a, b = rest[:half], rest[half + 1 :]
        else:
            index = rest.find(" b/")
            if index < 0:
                raise DiffParseError(f"malformed diff header {GIT_HEADER}{rest!r}", line_number)
            a, b = rest[:index], rest[index + 1 :]
    return _strip_prefix(unquote_path(a), "a/"), _strip_prefix(unquote_path(b), "b/")


def _side_path(text: str, prefix: str) -> str | None:
    """Path of a ``---``/``+++`` line, None for /dev/null."""
    path = text.split("\t", 1)[0]
    if path == DEV_NULL:
        return None
    return _strip_prefix(unquote_path(path), prefix)


def _parse_range(text: str, line_number: int) -> Range:
    try:
        return Range.from_string(text)
    except ValueError as e:
        raise DiffParseError(f"invalid range {text!r}", line_number) from e


class _Run:
    """Contiguous removed and added lines between two context lines."""

    def __init__(self, source_start: int, target_start: int) -> None:
        self.source_start = source_start
        self.target_start = target_start
        self.source: list[str] = []
        self.target: list[str] = []
        self.source_no_newline = False
        self.target_no_newline = False

    def to_hunk(self) -> Hunk:
        def side(start: int, lines: list[str], no_newline: bool) -> HunkSide:
            # diff -U0 anchors an empty side on the line before the change
            r = Range(start=start, count=len(lines)) if lines else Range(start=max(start - 1, 0), count=0)
            return HunkSide(range=r, lines=tuple(lines), no_newline_at_end=no_newline)

        return Hunk(
            source=side(self.source_start, self.source, self.source_no_newline),
            target=side(self.target_start, self.target, self.target_no_newline),
        )


def _parse_hunks(reader: LineReader) -> list[Hunk]:
    """Parse one ``@@`` block into zero-context hunks."""
    header = reader.next()
    if header is None:
        raise DiffParseError("unexpected end of input, expected hunk header", reader.line_number + 1)
    match = HUNK_HEADER.match(header)
    if match is None:
        raise DiffParseError(f"malformed hunk header {header!r}", reader.line_number)

    source = _parse_range(match.group(1), reader.line_number)
    target = _parse_range(match.group(2), reader.line_number)
    source_left, target_left = source.count, target.count
    source_line = source.start if source.count > 0 else source.start + 1
    target_line = target.start if target.count > 0 else target.start + 1

    hunks: list[Hunk] = []
    run: _Run | None = None
    last_kind = ""

    def mark_no_newline() -> None:
        if run is not None and last_kind == "-":
            run.source_no_newline = True
        elif run is not None and last_kind == "+":
            run.target_no_newline = True

    while source_left > 0 or target_left > 0:
        line = reader.next()
        if line is None:
            raise DiffParseError("unexpected end of input inside hunk", reader.line_number + 1)
        kind = line[:1]
        if kind == " ":
            if source_left == 0 or target_left == 0:
                raise DiffParseError("context line exceeds hunk range", reader.line_number)
            if run is not None:
                hunks.append(run.to_hunk())
                run = None
            source_line += 1
            target_line += 1
            source_left -= 1
            target_left -= 1
        elif kind == "-":
            if source_left == 0:
                raise DiffParseError("removed line exceeds hunk range", reader.line_number)
            if run is None:
                run = _Run(source_line, target_line)
            run.source.append(line[1:])
            source_line += 1
            source_left -= 1
        elif kind == "+":
            if target_left == 0:
                raise DiffParseError("added line exceeds hunk range", reader.line_number)
            if run is None:
                run = _Run(source_line, target_line)
            run.target.append(line[1:])
            target_line += 1
            target_left -= 1
        elif kind == "\\":
            mark_no_newline()
        else:
            raise DiffParseError(f"unexpected line in hunk body {line!r}", reader.line_number)
        if kind != "\\":
            last_kind = kind

    next_line = reader.peek()
    if next_line is not None and next_line.startswith("\\"):
        reader.next()
        mark_no_newline()

    if run is not None:
        hunks.append(run.to_hunk())
    return hunks


def _parse_hunk_blocks(reader: LineReader) -> list[Hunk]:
    hunks: list[Hunk] = []
    while (line := reader.peek()) is not None and line.startswith("@@"):
        hunks.extend(_parse_hunks(reader))
    return hunks


def _status(source: str | None, target: str | None) -> PatchStatus:
    if source is None:
        return PatchStatus.ADDED
    if target is None:
        return PatchStatus.DELETED
    if source != target:
        return PatchStatus.RENAMED
    return PatchStatus.MODIFIED


def _info(path: str | None) -> PatchInfo:
    return PatchInfo(path=path)


def parse_unified(lines: LineReader | Iterable[str]) -> list[Patch]:
    """Parse a conventional unified diff.

    Lines before a ``---`` header (``diff`` command lines, ``Index:``
    banners, patch descriptions) are skipped.

    Args:
        lines: Diff text as lines without newlines

    Returns:
        Patches in input order

    Raises:
        DiffParseError: If a header or hunk is malformed
    """
    reader = _reader(lines)
    patches: list[Patch] = []
    while (line := reader.peek()) is not None:
        if line.startswith("--- "):
            reader.next()
            new = reader.next()
            if new is None or not new.startswith("+++ "):
                raise DiffParseError("expected '+++' header", reader.line_number)
            source = _side_path(line[4:], "a/")
            target = _side_path(new[4:], "b/")
            hunks = _parse_hunk_blocks(reader)
            patches.append(
                Patch(source=_info(source), target=_info(target), status=_status(source, target), hunks=tuple(hunks))
            )
        elif (binary := BINARY_FILES.match(line)) is not None:
            reader.next()
            source = _side_path(binary.group(1), "a/")
            target = _side_path(binary.group(2), "b/")
            patches.append(
                Patch(source=_info(source), target=_info(target), status=_status(source, target), binary=True)
            )
        elif line.startswith(("@@", "+++ ")):
            raise DiffParseError(f"unexpected line outside of a patch {line!r}", reader.line_number + 1)
        else:
            reader.next()
    return patches


def _optional_hash(text: str) -> Hash | None:
    try:
        return Hash(text)
    except ValidationError:
        # abbreviated object names cannot be represented as hashes
        return None


def _file_type(mode: str, line_number: int) -> FileType:
    try:
        return FileType.from_octal(mode.strip())
    except ValueError as e:
        raise DiffParseError(f"unknown file mode {mode!r}", line_number) from e


def _parse_git_patch(reader: LineReader, stop: StopPredicate | None) -> Patch:
    header = reader.next()
    if header is None:
        msg = f"unexpected end of input, expected {GIT_HEADER.strip()!r} header"
        raise DiffParseError(msg, reader.line_number + 1)
    source_path, target_path = _split_git_paths(header[len(GIT_HEADER) :], reader.line_number)

    status = PatchStatus.MODIFIED
    source_type: FileType | None = None
    target_type: FileType | None = None
    index_type: FileType | None = None
    source_hash: Hash | None = None
    target_hash: Hash | None = None
    score: int | None = None
    binary = False
    hunks: list[Hunk] = []

    while (line := reader.peek()) is not None:
        if line.startswith(GIT_HEADER) or (stop is not None and stop(line)):
            break
        reader.next()
        number = reader.line_number

        if line.startswith("old mode "):
            source_type = _file_type(line[len("old mode ") :], number)
        elif line.startswith("new mode "):
            target_type = _file_type(line[len("new mode ") :], number)
        elif line.startswith("new file mode "):
            status = PatchStatus.ADDED
            target_type = _file_type(line[len("new file mode ") :], number)
        elif line.startswith("deleted file mode "):
            status = PatchStatus.DELETED
            source_type = _file_type(line[len("deleted file mode ") :], number)
        elif (match := SCORE_LINE.match(line)) is not None:
            score = int(match.group(1))
        elif line.startswith("rename from "):
            status = PatchStatus.RENAMED
            source_path = unquote_path(line[len("rename from ") :])
        elif line.startswith("rename to "):
            target_path = unquote_path(line[len("rename to ") :])
        elif line.startswith("copy from "):
            status = PatchStatus.COPIED
            source_path = unquote_path(line[len("copy from ") :])
        elif line.startswith("copy to "):
            target_path = unquote_path(line[len("copy to ") :])
        elif (match := INDEX_LINE.match(line)) is not None:
            source_hash = _optional_hash(match.group(1))
            target_hash = _optional_hash(match.group(2))
            if match.group(3):
                index_type = _file_type(match.group(3), number)
        elif BINARY_FILES.match(line) is not None:
            binary = True
            break
        elif line == "GIT binary patch":
            binary = True
            # base85 payload lines never start with a space or the sentinel
            while (payload := reader.peek()) is not None:
                if payload.startswith(GIT_HEADER) or (stop is not None and stop(payload)):
                    break
                reader.next()
            break
        elif line.startswith("--- "):
            new = reader.next()
            if new is None or not new.startswith("+++ "):
                raise DiffParseError("expected '+++' header", reader.line_number)
            hunks = _parse_hunk_blocks(reader)
            break
        else:
            raise DiffParseError(f"unexpected line in patch header {line!r}", number)

    if status not in (PatchStatus.ADDED, PatchStatus.DELETED):
        source_type = source_type or index_type
        target_type = target_type or index_type or source_type

    return Patch(
        source=PatchInfo(
            path=None if status is PatchStatus.ADDED else source_path,
            type=source_type,
            hash=source_hash,
        ),
        target=PatchInfo(
            path=None if status is PatchStatus.DELETED else target_path,
            type=target_type,
            hash=target_hash,
        ),
        status=status,
        score=score,
        hunks=tuple(hunks),
        binary=binary,
    )


def parse_git_raw(lines: LineReader | Iterable[str], stop: StopPredicate | None = None) -> list[Patch]:
    """Parse diff text in git's extended header form.

    Args:
        lines: Diff text as lines, or a reader shared with an enclosing stream
        stop: Predicate marking the first line after the diff; that line is
            left unconsumed

    Returns:
        Patches in input order

    Raises:
        DiffParseError: If a header or hunk is malformed
    """
    reader = _reader(lines)
    patches: list[Patch] = []
    while (line := reader.peek()) is not None:
        if stop is not None and stop(line):
            break
        if not line.startswith(GIT_HEADER):
            raise DiffParseError(f"expected {GIT_HEADER.strip()!r} header, got {line!r}", reader.line_number + 1)
        patches.append(_parse_git_patch(reader, stop))
    logger.debug("Parsed %d patches", len(patches))
    return patches
