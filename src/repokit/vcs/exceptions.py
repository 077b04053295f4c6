"""Common VCS exceptions for repokit.

This module provides VCS-agnostic exception classes that can be used
by any version control system implementation (Git, Mercurial, etc.).

Failures of the native tool itself surface as
:class:`repokit.process.ProcessError`; "not found" answers are ``None``
results and never exceptions.
"""


class VCSError(Exception):
    """Base exception for all VCS-related errors."""


class NotARepositoryError(VCSError):
    """Raised when a directory is not a valid repository."""


class DirtyWorkingDirectoryError(VCSError):
    """Raised when local modifications would be lost by an operation."""


class VCSOperationError(VCSError):
    """Raised when a VCS operation produces an unexpected outcome."""


class RevisionNotFoundError(VCSError):
    """Raised when a branch or tag cannot be resolved to a commit."""


class ParseError(VCSError):
    """Base exception for malformed tool output."""

    def __init__(self, message: str, line_number: int | None = None) -> None:
        """Initialize the error.

        Args:
            message: What was wrong
            line_number: 1-based position of the offending line, if known
        """
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


class MetadataParseError(ParseError):
    """Raised when a commit metadata record is malformed."""


class DiffParseError(ParseError):
    """Raised when a diff header or hunk is malformed."""


class UnsupportedOperationError(VCSError):
    """Raised when the backend cannot express the requested semantics."""


class MultipleHeadsError(UnsupportedOperationError):
    """Raised when a fetch introduces more than one new head."""


class NotYetImplementedError(VCSError, NotImplementedError):
    """Raised by operations a backend does not provide yet."""
