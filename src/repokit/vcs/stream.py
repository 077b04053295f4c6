"""Line framing of commit metadata records.

Both the Mercurial helper extension and the test fixtures produce records in
this form, one per commit::

    #@!_-=&
    <hash>
    <parent hashes, space separated>
    <author name>
    <author email, empty when unknown>
    <committer name>
    <committer email, empty when unknown>
    <timestamp, epoch seconds>
    <N>
    <N message lines>

In the combined history stream every record is followed, per parent, by a
``#@!_-=&diff <parent hash>`` marker and the git-extended diff against that
parent.
"""

from collections.abc import Iterable, Iterator
from datetime import UTC, datetime

from pydantic import ValidationError

from repokit.vcs.exceptions import MetadataParseError
from repokit.vcs.models import Author, CommitMetadata, Hash

SENTINEL = "#@!_-=&"
DIFF_MARKER = SENTINEL + "diff "


class LineReader:
    """Line iterator with one line of look-ahead and a position counter.

    Args:
        lines: Source of lines without trailing newlines
    """

    def __init__(self, lines: Iterable[str]) -> None:
        self._lines: Iterator[str] = iter(lines)
        self._peeked: str | None = None
        self._has_peeked = False
        self.line_number = 0

    def peek(self) -> str | None:
        """Next line without consuming it, or None at end of input."""
        if not self._has_peeked:
            self._peeked = next(self._lines, None)
            self._has_peeked = True
        return self._peeked

    def next(self) -> str | None:
        """Consume and return the next line, or None at end of input."""
        line = self.peek()
        self._has_peeked = False
        self._peeked = None
        if line is not None:
            self.line_number += 1
        return line

    def at_end(self) -> bool:
        return self.peek() is None

    def __iter__(self) -> Iterator[str]:
        while (line := self.next()) is not None:
            yield line


def _require(reader: LineReader, what: str) -> str:
    line = reader.next()
    if line is None:
        raise MetadataParseError(f"unexpected end of input, expected {what}", reader.line_number + 1)
    return line


def _hash(text: str, line_number: int) -> Hash:
    try:
        return Hash(text)
    except ValidationError as e:
        raise MetadataParseError(f"invalid hash {text!r}", line_number) from e


def _integer(text: str, what: str, line_number: int, signed: bool = False) -> int:
    try:
        value = int(text)
    except ValueError as e:
        raise MetadataParseError(f"invalid {what} {text!r}", line_number) from e
    if value < 0 and not signed:
        raise MetadataParseError(f"negative {what} {value}", line_number)
    return value


def decode_metadata(reader: LineReader) -> CommitMetadata:
    """Decode one record.

    Args:
        reader: Reader positioned at a record sentinel

    Returns:
        The decoded metadata

    Raises:
        MetadataParseError: If the record is malformed or truncated
    """
    sentinel = _require(reader, "record sentinel")
    if sentinel != SENTINEL:
        raise MetadataParseError(f"expected record sentinel, got {sentinel!r}", reader.line_number)

    commit_hash = _hash(_require(reader, "hash"), reader.line_number)
    parents = tuple(_hash(p, reader.line_number) for p in _require(reader, "parents").split())
    if not parents:
        raise MetadataParseError("commit without parents", reader.line_number)

    author_name = _require(reader, "author name")
    author_email = _require(reader, "author email")
    committer_name = _require(reader, "committer name")
    committer_email = _require(reader, "committer email")
    # dates before 1970 are negative
    seconds = _integer(_require(reader, "timestamp"), "timestamp", reader.line_number, signed=True)
    count = _integer(_require(reader, "message line count"), "message line count", reader.line_number)
    message = tuple(_require(reader, "message line") for _ in range(count))

    return CommitMetadata(
        hash=commit_hash,
        parents=parents,
        author=Author(name=author_name, email=author_email or None),
        committer=Author(name=committer_name, email=committer_email or None),
        timestamp=datetime.fromtimestamp(seconds, UTC),
        message=message,
    )


def decode_all(lines: Iterable[str]) -> Iterator[CommitMetadata]:
    """Decode consecutive records until the input ends.

    Args:
        lines: Records with no interleaved diffs

    Yields:
        Decoded metadata, in input order
    """
    reader = LineReader(lines)
    while not reader.at_end():
        yield decode_metadata(reader)


def encode_metadata(metadata: CommitMetadata) -> list[str]:
    """Encode one record, the inverse of :func:`decode_metadata`.

    Args:
        metadata: Commit to encode

    Returns:
        Record lines without newlines
    """
    return [
        SENTINEL,
        metadata.hash.hex,
        " ".join(p.hex for p in metadata.parents),
        metadata.author.name,
        metadata.author.email or "",
        metadata.committer.name,
        metadata.committer.email or "",
        str(int(metadata.timestamp.timestamp())),
        str(len(metadata.message)),
        *metadata.message,
    ]
