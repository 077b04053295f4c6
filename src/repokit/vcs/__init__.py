"""Version control abstraction for repokit.

This module provides a unified interface for working with different
version control systems (Git, Mercurial).
"""

from repokit.vcs.base import Commits, Repository
from repokit.vcs.exceptions import (
    DiffParseError,
    DirtyWorkingDirectoryError,
    MetadataParseError,
    MultipleHeadsError,
    NotARepositoryError,
    NotYetImplementedError,
    ParseError,
    RevisionNotFoundError,
    UnsupportedOperationError,
    VCSError,
    VCSOperationError,
)
from repokit.vcs.factory import VCSFactory, VCSType
from repokit.vcs.models import (
    NULL_HASH,
    Author,
    Branch,
    Commit,
    CommitMetadata,
    Diff,
    FileType,
    Hash,
    Hunk,
    HunkSide,
    Patch,
    PatchInfo,
    PatchStatus,
    Range,
    Tag,
)

__all__ = [
    "NULL_HASH",
    "Author",
    "Branch",
    "Commit",
    "CommitMetadata",
    "Commits",
    "Diff",
    "DiffParseError",
    "DirtyWorkingDirectoryError",
    "FileType",
    "Hash",
    "Hunk",
    "HunkSide",
    "MetadataParseError",
    "MultipleHeadsError",
    "NotARepositoryError",
    "NotYetImplementedError",
    "ParseError",
    "Patch",
    "PatchInfo",
    "PatchStatus",
    "Range",
    "Repository",
    "RevisionNotFoundError",
    "Tag",
    "UnsupportedOperationError",
    "VCSError",
    "VCSFactory",
    "VCSOperationError",
    "VCSType",
]
