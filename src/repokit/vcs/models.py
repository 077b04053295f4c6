"""Value types shared by every backend.

Identifiers, commit metadata and the diff/patch model. All models are frozen:
they compare and hash by value and never reference the repository that
produced them.
"""

import re
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator, model_validator

HASH_PATTERN = re.compile(r"^(?:[0-9a-f]{40}|[0-9a-f]{64})$")
DIGITS = re.compile(r"^\d+$")

# Some git versions print a count of -1 as an unsigned 64-bit integer.
UNSIGNED_MINUS_ONE = "18446744073709551615"

NO_NEWLINE_MARKER = "\\ No newline at end of file"
DEV_NULL = "/dev/null"


class Hash(BaseModel):
    """Content-derived commit (or blob) identifier."""

    model_config = {"frozen": True}

    hex: str = Field(description="Full lower-case hexadecimal digest")

    def __init__(self, hex: str, **data: Any) -> None:  # noqa: A002
        super().__init__(hex=hex, **data)

    @field_validator("hex", mode="before")
    @classmethod
    def validate_hex(cls, v: str) -> str:
        """Normalize and validate the digest.

        Args:
            v: Digest as printed by a VCS tool

        Returns:
            Lower-case digest

        Raises:
            ValueError: If the digest is not 40 or 64 hex characters
        """
        value = str(v).strip().lower()
        if not HASH_PATTERN.match(value):
            raise ValueError(f"Invalid hash: {v!r}")
        return value

    def abbreviate(self) -> str:
        """Short form used in human-readable output."""
        return self.hex[:8]

    def __str__(self) -> str:
        return self.hex


NULL_HASH = Hash("0" * 40)


class Branch(BaseModel):
    """A named, movable reference to a commit."""

    model_config = {"frozen": True}

    name: str

    def __init__(self, name: str, **data: Any) -> None:
        super().__init__(name=name, **data)

    def __str__(self) -> str:
        return self.name


class Tag(BaseModel):
    """A named reference to a commit."""

    model_config = {"frozen": True}

    name: str

    def __init__(self, name: str, **data: Any) -> None:
        super().__init__(name=name, **data)

    def __str__(self) -> str:
        return self.name


class Author(BaseModel):
    """Name and email of a person recorded in history."""

    model_config = {"frozen": True}

    name: str
    email: str | None = None

    @classmethod
    def from_string(cls, s: str) -> Self:
        """Parse the common ``Name <email>`` user form.

        Args:
            s: User string as stored by a VCS

        Returns:
            Parsed author; the email is None when no ``<...>`` part exists
        """
        match = re.match(r"^(.*?)\s*<([^>]*)>\s*$", s)
        if match is None:
            return cls(name=s.strip())
        return cls(name=match.group(1).strip(), email=match.group(2).strip() or None)

    def __str__(self) -> str:
        if self.email:
            return f"{self.name} <{self.email}>"
        return self.name


class CommitMetadata(BaseModel):
    """Everything about a commit except its changes."""

    model_config = {"frozen": True}

    hash: Hash
    parents: tuple[Hash, ...] = Field(description="Parent hashes; roots carry NULL_HASH")
    author: Author
    committer: Author
    timestamp: datetime = Field(description="Commit time, always UTC")
    message: tuple[str, ...] = Field(default=(), description="Commit message lines")

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        """Store timestamps as aware UTC datetimes.

        Args:
            v: Timestamp, naive values are taken as UTC

        Returns:
            UTC timestamp
        """
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    def is_initial_commit(self) -> bool:
        """True for a root commit (the only parent is the null hash)."""
        return self.parents == (NULL_HASH,)

    def is_merge(self) -> bool:
        """True when the commit has more than one parent."""
        return len(self.parents) > 1

    def num_parents(self) -> int:
        return len(self.parents)

    @property
    def date(self) -> datetime:
        return self.timestamp

    @property
    def title(self) -> str:
        """First line of the message, or an empty string."""
        return self.message[0] if self.message else ""

    def __str__(self) -> str:
        display_date = self.timestamp.strftime("%Y-%m-%d %H:%M")
        return f"{self.hash}  {str(self.author):<12}  {display_date}  {self.title}"


class Range(BaseModel):
    """Half-open line interval ``[start, start + count)`` inside a file."""

    model_config = {"frozen": True}

    start: int = Field(ge=0)
    count: int = Field(ge=0)

    @classmethod
    def from_string(cls, s: str) -> Self:
        """Parse the ``start[,count]`` notation of a hunk header.

        A missing count means one line.

        Args:
            s: Range text, e.g. ``"10,5"`` or ``"7"``

        Returns:
            Parsed range

        Raises:
            ValueError: If the text is not a valid range
        """
        start_text, separator, count_text = s.partition(",")
        if not DIGITS.match(start_text):
            raise ValueError(f"Invalid range: {s!r}")
        start = int(start_text)
        if not separator:
            return cls(start=start, count=1)

        # Workaround: the unsigned rendering of -1 is treated as an empty range.
        if count_text == UNSIGNED_MINUS_ONE:
            return cls(start=start, count=0)
        if not DIGITS.match(count_text):
            raise ValueError(f"Invalid range: {s!r}")
        return cls(start=start, count=int(count_text))

    @property
    def end(self) -> int:
        return self.start + self.count

    def __str__(self) -> str:
        return f"{self.start},{self.count}"


class FileType(Enum):
    """File kinds as git octal modes."""

    REGULAR = "100644"
    EXECUTABLE = "100755"
    SYMLINK = "120000"
    DIRECTORY = "040000"
    GITLINK = "160000"

    @classmethod
    def from_octal(cls, mode: str) -> "FileType":
        """Map an octal mode to a file type.

        Legacy regular-file modes such as ``100664`` map by their
        executable bits.

        Args:
            mode: Six digit octal mode

        Returns:
            The matching file type

        Raises:
            ValueError: If the mode is unknown
        """
        try:
            return cls(mode)
        except ValueError:
            if len(mode) == 6 and mode.startswith("100") and all(c in "01234567" for c in mode):
                return cls.EXECUTABLE if int(mode, 8) & 0o111 else cls.REGULAR
            raise

    def permissions(self) -> int | None:
        """Posix permission bits for regular files, None otherwise."""
        if self is FileType.REGULAR:
            return 0o644
        if self is FileType.EXECUTABLE:
            return 0o755
        return None


class PatchStatus(Enum):
    """How a file changed, by git's status letters."""

    ADDED = "A"
    DELETED = "D"
    MODIFIED = "M"
    RENAMED = "R"
    COPIED = "C"


class PatchInfo(BaseModel):
    """One side of a patch; a missing path means the file does not exist there."""

    model_config = {"frozen": True}

    path: PurePosixPath | None = None
    type: FileType | None = None
    hash: Hash | None = None


class HunkSide(BaseModel):
    """Range and lines of one side of a hunk."""

    model_config = {"frozen": True}

    range: Range
    lines: tuple[str, ...] = ()
    no_newline_at_end: bool = False

    @model_validator(mode="after")
    def validate_line_count(self) -> Self:
        """Ensure the range covers exactly the carried lines.

        Returns:
            Self

        Raises:
            ValueError: If the number of lines differs from the range count
        """
        if len(self.lines) != self.range.count:
            raise ValueError(f"Range {self.range} does not match {len(self.lines)} lines")
        return self


def _format_range(r: Range) -> str:
    # git omits the count when it is one
    return str(r.start) if r.count == 1 else str(r)


class Hunk(BaseModel):
    """One contiguous changed region of a file."""

    model_config = {"frozen": True}

    source: HunkSide
    target: HunkSide

    @property
    def modified(self) -> int:
        """Lines counted as modified (paired removals and additions)."""
        return min(self.source.range.count, self.target.range.count)

    @property
    def added(self) -> int:
        """Lines added beyond the modified ones."""
        return self.target.range.count - self.modified

    @property
    def removed(self) -> int:
        """Lines removed beyond the modified ones."""
        return self.source.range.count - self.modified

    def render(self) -> list[str]:
        """Render the hunk in unified zero-context form.

        Returns:
            Header and body lines without newlines
        """
        lines = [f"@@ -{_format_range(self.source.range)} +{_format_range(self.target.range)} @@"]
        lines.extend("-" + line for line in self.source.lines)
        if self.source.no_newline_at_end:
            lines.append(NO_NEWLINE_MARKER)
        lines.extend("+" + line for line in self.target.lines)
        if self.target.no_newline_at_end:
            lines.append(NO_NEWLINE_MARKER)
        return lines


def quote_path(path: str) -> str:
    """Quote a path the way git does when it holds special characters."""
    if not any(c in path for c in '"\\\t\n') and path.isascii():
        return path
    escaped = []
    for c in path:
        if c in '"\\':
            escaped.append("\\" + c)
        elif c == "\t":
            escaped.append("\\t")
        elif c == "\n":
            escaped.append("\\n")
        elif c.isascii():
            escaped.append(c)
        else:
            escaped.extend(f"\\{b:03o}" for b in c.encode("utf-8", errors="surrogateescape"))
    return '"' + "".join(escaped) + '"'


class Patch(BaseModel):
    """Changes to one file between two snapshots."""

    model_config = {"frozen": True}

    source: PatchInfo
    target: PatchInfo
    status: PatchStatus
    score: int | None = Field(default=None, description="Similarity percentage for renames and copies")
    hunks: tuple[Hunk, ...] = ()
    binary: bool = False

    @property
    def is_binary(self) -> bool:
        return self.binary

    @property
    def is_textual(self) -> bool:
        return not self.binary

    @property
    def path(self) -> PurePosixPath | None:
        """Target path, or the source path for deletions."""
        return self.target.path if self.target.path is not None else self.source.path

    @property
    def modified(self) -> int:
        return sum(h.modified for h in self.hunks)

    @property
    def added(self) -> int:
        return sum(h.added for h in self.hunks)

    @property
    def removed(self) -> int:
        return sum(h.removed for h in self.hunks)

    def render(self) -> list[str]:
        """Render in git extended-header form.

        Binary content is not retained, binary patches render as a
        ``Binary files ... differ`` notice.

        Returns:
            Lines without newlines
        """
        source_path = self.source.path if self.source.path is not None else self.target.path
        target_path = self.target.path if self.target.path is not None else self.source.path
        a = quote_path(f"a/{source_path}")
        b = quote_path(f"b/{target_path}")
        lines = [f"diff --git {a} {b}"]

        if self.status is PatchStatus.ADDED:
            if self.target.type is not None:
                lines.append(f"new file mode {self.target.type.value}")
        elif self.status is PatchStatus.DELETED:
            if self.source.type is not None:
                lines.append(f"deleted file mode {self.source.type.value}")
        elif self.source.type is not None and self.target.type is not None and self.source.type != self.target.type:
            lines.append(f"old mode {self.source.type.value}")
            lines.append(f"new mode {self.target.type.value}")

        if self.status in (PatchStatus.RENAMED, PatchStatus.COPIED):
            verb = "rename" if self.status is PatchStatus.RENAMED else "copy"
            if self.score is not None:
                lines.append(f"similarity index {self.score}%")
            lines.append(f"{verb} from {quote_path(str(self.source.path))}")
            lines.append(f"{verb} to {quote_path(str(self.target.path))}")

        if self.source.hash is not None and self.target.hash is not None:
            index = f"index {self.source.hash}..{self.target.hash}"
            same_type = self.source.type is not None and self.source.type == self.target.type
            if same_type and self.status not in (PatchStatus.ADDED, PatchStatus.DELETED):
                index += f" {self.source.type.value}"  # type: ignore[union-attr]
            lines.append(index)

        old = DEV_NULL if self.source.path is None else a
        new = DEV_NULL if self.target.path is None else b
        if self.binary:
            lines.append(f"Binary files {old} and {new} differ")
        elif self.hunks:
            lines.append(f"--- {old}")
            lines.append(f"+++ {new}")
            for hunk in self.hunks:
                lines.extend(hunk.render())
        return lines


class Diff(BaseModel):
    """Ordered patches between two endpoints.

    A missing ``to_hash`` stands for the working tree.
    """

    model_config = {"frozen": True}

    from_hash: Hash
    to_hash: Hash | None = None
    patches: tuple[Patch, ...] = ()

    @property
    def modified(self) -> int:
        return sum(p.modified for p in self.patches)

    @property
    def added(self) -> int:
        return sum(p.added for p in self.patches)

    @property
    def removed(self) -> int:
        return sum(p.removed for p in self.patches)

    def render(self) -> str:
        """Render all patches as one git-style diff text."""
        lines: list[str] = []
        for patch in self.patches:
            lines.extend(patch.render())
        return "".join(line + "\n" for line in lines)

    def write_to(self, path: Path) -> None:
        """Write the rendered diff to a file.

        Args:
            path: Destination file, overwritten
        """
        path.write_bytes(self.render().encode("utf-8", errors="surrogateescape"))


class Commit(CommitMetadata):
    """Commit metadata together with the changes it introduces."""

    parent_diffs: tuple[Diff, ...] = Field(default=(), description="One diff per parent, in parent order")

    @classmethod
    def from_metadata(cls, metadata: CommitMetadata, parent_diffs: list[Diff] | tuple[Diff, ...]) -> Self:
        """Combine decoded metadata with the diffs against its parents.

        Args:
            metadata: Decoded commit metadata
            parent_diffs: Diffs against each parent

        Returns:
            The complete commit
        """
        fields = {name: getattr(metadata, name) for name in CommitMetadata.model_fields}
        return cls(**fields, parent_diffs=tuple(parent_diffs))

    @property
    def patches(self) -> tuple[Patch, ...]:
        """Changes relative to the primary parent."""
        return self.parent_diffs[0].patches if self.parent_diffs else ()
