"""Sequential appender of entries into a fresh archive file."""

from __future__ import annotations

import logging
import os
import pathlib
from typing import BinaryIO, List, Optional, Set, Tuple, Union

from .codec import EntryRecord, write_entry
from .errors import DuplicateEntry, WrongCompressionLevel
from .format import (
    CENTRAL_HDR,
    DEFAULT_DIR_ATTR,
    DEFAULT_FILE_ATTR,
    DEFAULT_LEVEL,
    EOCD,
    EXTRA_HDR,
    EXTRA_ZIP64,
    MADE_BY_UNIX,
    SIG_CENTRAL,
    SIG_EOCD,
    SIG_ZIP64_EOCD,
    SIG_ZIP64_LOCATOR,
    U64,
    VERSION_DEFAULT,
    VERSION_ZIP64,
    ZIP64_COUNT_LIMIT,
    ZIP64_EOCD,
    ZIP64_LIMIT,
    ZIP64_LOCATOR,
    CompressionMethod,
    EntryMetadata,
    method_for_level,
    normalize_name,
    valid_level,
)

logger = logging.getLogger(__name__)


class ArchiveWriter:
    """
    Build a new archive one entry at a time.

    The compression level applies to every entry of the session and can only
    change before the first one is appended. Nothing is a valid archive until
    close() has written the central directory; when the context manager exits
    on an exception the handle is released without finalizing, and the file
    left behind must be discarded by the caller.
    """

    def __init__(self, path: Union[str, os.PathLike], level: int = DEFAULT_LEVEL) -> None:
        if not valid_level(level):
            raise WrongCompressionLevel(f"compression level {level!r} not in [0, 9]")
        self.path = pathlib.Path(path)
        self._level = level
        self._f: BinaryIO = self.path.open("wb")
        self._records: List[EntryRecord] = []
        self._names: Set[str] = set()
        self._closed = False

    def __enter__(self) -> "ArchiveWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
        else:
            self.abort()

    @property
    def level(self) -> int:
        return self._level

    def set_compression_level(self, level: int) -> None:
        if self._records:
            raise RuntimeError("compression level must be set before the first entry")
        if not valid_level(level):
            raise WrongCompressionLevel(f"compression level {level!r} not in [0, 9]")
        self._level = level

    def put_entry(
        self,
        name: str,
        payload: BinaryIO,
        *,
        date_time: Optional[Tuple[int, ...]] = None,
        size_hint: Optional[int] = None,
    ) -> EntryMetadata:
        """Append one entry, reading `payload` to the end."""
        if self._closed:
            raise RuntimeError(f"{self.path}: writer is closed")
        name = normalize_name(name)
        if not name:
            raise ValueError("entry name must not be empty")
        if name in self._names:
            raise DuplicateEntry(f"{name} already written to {self.path}")

        if name.endswith("/"):
            method, attr = CompressionMethod.STORED, DEFAULT_DIR_ATTR
        else:
            method, attr = method_for_level(self._level), DEFAULT_FILE_ATTR
        rec = write_entry(
            self._f,
            name,
            method,
            payload,
            level=self._level,
            date_time=date_time,
            size_hint=size_hint,
            external_attr=attr,
        )
        self._names.add(name)
        self._records.append(rec)
        logger.debug("put %s (%d -> %d bytes)", name, rec.uncompressed_size, rec.compressed_size)
        return rec.metadata()

    def close(self) -> None:
        """Write the central directory and end record, then release the file."""
        if self._closed:
            return
        try:
            self._write_central_directory()
        finally:
            self._f.close()
            self._closed = True

    def abort(self) -> None:
        if not self._closed:
            self._f.close()
            self._closed = True

    def _write_central_directory(self) -> None:
        f = self._f
        cd_offset = f.tell()
        for rec in self._records:
            raw, comp, offset = rec.uncompressed_size, rec.compressed_size, rec.header_offset
            extra = b""
            needed = VERSION_DEFAULT
            if rec.zip64:
                fields = []
                if raw >= ZIP64_LIMIT:
                    fields.append(raw)
                    raw = ZIP64_LIMIT
                if comp >= ZIP64_LIMIT:
                    fields.append(comp)
                    comp = ZIP64_LIMIT
                if offset >= ZIP64_LIMIT:
                    fields.append(offset)
                    offset = ZIP64_LIMIT
                extra = EXTRA_HDR.pack(EXTRA_ZIP64, U64.size * len(fields)) + b"".join(U64.pack(v) for v in fields)
                needed = VERSION_ZIP64
            f.write(CENTRAL_HDR.pack(
                SIG_CENTRAL,
                MADE_BY_UNIX | needed,
                needed,
                rec.flags,
                rec.method.value,
                rec.dos_time,
                rec.dos_date,
                rec.crc32,
                comp,
                raw,
                len(rec.raw_name),
                len(extra),
                0,
                0,
                0,
                rec.external_attr,
                offset,
            ))
            f.write(rec.raw_name)
            f.write(extra)

        cd_end = f.tell()
        cd_size = cd_end - cd_offset
        count = len(self._records)
        if count >= ZIP64_COUNT_LIMIT or cd_size >= ZIP64_LIMIT or cd_offset >= ZIP64_LIMIT:
            f.write(ZIP64_EOCD.pack(
                SIG_ZIP64_EOCD,
                ZIP64_EOCD.size - 12,
                MADE_BY_UNIX | VERSION_ZIP64,
                VERSION_ZIP64,
                0,
                0,
                count,
                count,
                cd_size,
                cd_offset,
            ))
            f.write(ZIP64_LOCATOR.pack(SIG_ZIP64_LOCATOR, 0, cd_end, 1))
        f.write(EOCD.pack(
            SIG_EOCD,
            0,
            0,
            min(count, ZIP64_COUNT_LIMIT),
            min(count, ZIP64_COUNT_LIMIT),
            min(cd_size, ZIP64_LIMIT),
            min(cd_offset, ZIP64_LIMIT),
            0,
        ))
        logger.debug("%s: central directory with %d entries at offset %d", self.path, count, cd_offset)
