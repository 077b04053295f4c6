"""Tests for the helper extension resource."""

from pathlib import Path

from repokit.vcs.mercurial.extension import EXTENSION_NAME, extension_source, helper_extension
from repokit.vcs.stream import SENTINEL


class TestHelperExtension:
    """Tests for helper_extension."""

    def test_source_is_packaged(self) -> None:
        """Test the extension ships with the package."""
        source = extension_source()

        assert b"repokit-log" in source
        assert b"repokit-diff" in source
        assert SENTINEL.encode() in source

    def test_materialized_for_block(self, tmp_path: Path) -> None:
        """Test the extension file lives only for the duration of the block."""
        with helper_extension(tmp_path) as args:
            assert args[0] == "--config"
            name, _, location = args[1].partition("=")
            assert name == f"extensions.{EXTENSION_NAME}"
            path = Path(location)
            assert path.read_bytes() == extension_source()

        assert not path.exists()
