"""zipman: create, inspect and atomically rewrite ZIP archives."""

__version__ = "0.1.0"

from .engine import Notice, NoticeKind, ZipFileManager
from .errors import (
    ArchiveError,
    CorruptEntry,
    DuplicateEntry,
    PathNotFound,
    UnsupportedEntry,
    WrongArchiveFile,
    WrongCompressionLevel,
)
from .format import CompressionMethod, EntryMetadata
from .inspector import ArchiveInspector
from .reader import ArchiveReader
from .writer import ArchiveWriter

__all__ = [
    "ArchiveError",
    "ArchiveInspector",
    "ArchiveReader",
    "ArchiveWriter",
    "CompressionMethod",
    "CorruptEntry",
    "DuplicateEntry",
    "EntryMetadata",
    "Notice",
    "NoticeKind",
    "PathNotFound",
    "UnsupportedEntry",
    "WrongArchiveFile",
    "WrongCompressionLevel",
    "ZipFileManager",
]
