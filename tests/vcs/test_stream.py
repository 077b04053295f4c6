"""Tests for commit metadata record framing."""

from datetime import UTC, datetime

import pytest

from repokit.vcs.exceptions import MetadataParseError
from repokit.vcs.models import NULL_HASH, Author, CommitMetadata, Hash
from repokit.vcs.stream import SENTINEL, LineReader, decode_all, decode_metadata, encode_metadata

HEX_A = "a" * 40
HEX_B = "b" * 40
HEX_C = "c" * 40


def record(**overrides: str | list[str]) -> list[str]:
    """Build record lines, overriding individual fields.

    Args:
        **overrides: Field name to replacement line(s)

    Returns:
        Record lines
    """
    fields: dict[str, str | list[str]] = {
        "sentinel": SENTINEL,
        "hash": HEX_A,
        "parents": HEX_B,
        "author_name": "Duke",
        "author_email": "duke@example.com",
        "committer_name": "Ada",
        "committer_email": "",
        "timestamp": "1700000000",
        "count": "2",
        "message": ["Title", "Body"],
    }
    fields.update(overrides)
    lines: list[str] = []
    for value in fields.values():
        lines.extend(value if isinstance(value, list) else [value])
    return lines


class TestLineReader:
    """Tests for LineReader."""

    def test_peek_does_not_consume(self) -> None:
        """Test look-ahead and line numbering."""
        reader = LineReader(["a", "b"])

        assert reader.peek() == "a"
        assert reader.line_number == 0
        assert reader.next() == "a"
        assert reader.line_number == 1
        assert list(reader) == ["b"]
        assert reader.at_end()
        assert reader.next() is None
        assert reader.line_number == 2


class TestDecodeMetadata:
    """Tests for decode_metadata."""

    def test_decodes_record(self) -> None:
        """Test every field of a well-formed record."""
        metadata = decode_metadata(LineReader(record()))

        assert metadata.hash == Hash(HEX_A)
        assert metadata.parents == (Hash(HEX_B),)
        assert metadata.author == Author(name="Duke", email="duke@example.com")
        assert metadata.committer == Author(name="Ada")
        assert metadata.timestamp == datetime.fromtimestamp(1700000000, UTC)
        assert metadata.message == ("Title", "Body")

    def test_merge_and_empty_message(self) -> None:
        """Test several parents and zero message lines."""
        metadata = decode_metadata(LineReader(record(parents=f"{HEX_B} {HEX_C}", count="0", message=[])))

        assert metadata.is_merge()
        assert metadata.message == ()

    def test_root_commit(self) -> None:
        """Test the null parent of a root commit."""
        metadata = decode_metadata(LineReader(record(parents="0" * 40)))

        assert metadata.parents == (NULL_HASH,)
        assert metadata.is_initial_commit()

    def test_empty_message_lines_are_kept(self) -> None:
        """Test blank lines inside the message are content."""
        metadata = decode_metadata(LineReader(record(count="3", message=["Title", "", "Body"])))

        assert metadata.message == ("Title", "", "Body")

    def test_date_before_epoch(self) -> None:
        """Test a negative timestamp is a valid pre-1970 date."""
        metadata = decode_metadata(LineReader(record(timestamp="-86400")))

        assert metadata.timestamp == datetime(1969, 12, 31, tzinfo=UTC)

    @pytest.mark.parametrize(
        ("overrides", "line"),
        [
            ({"sentinel": "garbage"}, 1),
            ({"hash": "xyz"}, 2),
            ({"parents": ""}, 3),
            ({"parents": f"{HEX_B} nothex"}, 3),
            ({"timestamp": "yesterday"}, 8),
            ({"count": "-1"}, 9),
        ],
    )
    def test_malformed_fields(self, overrides: dict[str, str], line: int) -> None:
        """Test errors carry the offending line number."""
        with pytest.raises(MetadataParseError) as exc_info:
            decode_metadata(LineReader(record(**overrides)))

        assert exc_info.value.line_number == line
        assert str(exc_info.value).startswith(f"line {line}: ")

    def test_truncated_record(self) -> None:
        """Test a record cut short reports the missing line."""
        with pytest.raises(MetadataParseError, match="line 3: unexpected end of input"):
            decode_metadata(LineReader([SENTINEL, HEX_A]))

    def test_missing_message_lines(self) -> None:
        """Test fewer message lines than declared."""
        with pytest.raises(MetadataParseError, match="line 12"):
            decode_metadata(LineReader(record(count="3")))


class TestDecodeAll:
    """Tests for decode_all and encode_metadata."""

    def test_consecutive_records(self) -> None:
        """Test records are decoded in input order."""
        lines = record() + record(hash=HEX_C, parents=HEX_A)

        history = list(decode_all(lines))

        assert [m.hash.hex for m in history] == [HEX_A, HEX_C]

    def test_encode_inverts_decode(self) -> None:
        """Test encoding reproduces the record lines."""
        metadata = CommitMetadata(
            hash=Hash(HEX_A),
            parents=(Hash(HEX_B),),
            author=Author(name="Duke", email="duke@example.com"),
            committer=Author(name="Ada"),
            timestamp=datetime.fromtimestamp(1700000000, UTC),
            message=("Title", "Body"),
        )

        assert encode_metadata(metadata) == record()
        assert list(decode_all(encode_metadata(metadata))) == [metadata]

    def test_empty_input(self) -> None:
        """Test no lines means no records."""
        assert list(decode_all([])) == []
