"""Exceptions raised by the archive core.

Underlying read/write/rename failures are not wrapped: they surface as the
OSError the operating system reported.
"""

from __future__ import annotations


class ArchiveError(Exception):
    """Base class for every error the archive core raises on purpose."""


class PathNotFound(ArchiveError, FileNotFoundError):
    """A source file or directory is missing or has the wrong type."""


class WrongArchiveFile(ArchiveError):
    """The archive path is not an existing regular file."""


class WrongCompressionLevel(ArchiveError, ValueError):
    """Compression level outside [0, 9]."""


class DuplicateEntry(ArchiveError):
    """An entry name was appended twice in one write session."""


class CorruptEntry(ArchiveError, ValueError):
    """Archive bytes do not parse as a valid entry."""


class UnsupportedEntry(CorruptEntry):
    """Entry uses a feature this core does not decode (encryption, unknown method)."""
