"""Access to the helper extension shipped with the Mercurial backend."""

from collections.abc import Iterator
from contextlib import contextmanager
from importlib import resources
from pathlib import Path

from repokit.vcs.utils import scoped_temp_file

EXTENSION_NAME = "repokit_dump"
EXTENSION_RESOURCE = "repokit_ext.py"


def extension_source() -> bytes:
    """Source of the helper extension."""
    return resources.files(__package__).joinpath("resources", EXTENSION_RESOURCE).read_bytes()


@contextmanager
def helper_extension(directory: Path | None = None) -> Iterator[list[str]]:
    """Materialize the helper extension for the duration of a command.

    Args:
        directory: Where to place the temporary copy (default: system temp)

    Yields:
        Global ``hg`` arguments enabling the extension
    """
    with scoped_temp_file(suffix=".py", content=extension_source(), directory=directory) as path:
        yield ["--config", f"extensions.{EXTENSION_NAME}={path}"]
