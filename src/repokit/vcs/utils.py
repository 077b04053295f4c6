"""Shared helpers for backends."""

import logging
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

logger = logging.getLogger(__name__)


@contextmanager
def scoped_temp_file(
    suffix: str = "",
    content: bytes | None = None,
    directory: Path | None = None,
) -> Iterator[Path]:
    """Create a temporary file that is removed when the block exits.

    Args:
        suffix: File name suffix
        content: Initial content (default: empty)
        directory: Where to create the file (default: system temp directory)

    Yields:
        Path to the file
    """
    fd, name = tempfile.mkstemp(suffix=suffix, prefix="repokit-", dir=directory)
    path = Path(name)
    try:
        with os.fdopen(fd, "wb") as f:
            if content:
                f.write(content)
        logger.debug("Created temporary file %s", path)
        yield path
    finally:
        path.unlink(missing_ok=True)
        logger.debug("Removed temporary file %s", path)
