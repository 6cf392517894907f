"""Sequential reader over the entries of an existing archive."""

from __future__ import annotations

import io
import logging
import os
import pathlib
from typing import BinaryIO, Dict, Iterator, Optional, Tuple, Union

from .codec import EntryStream, parse_zip64_extra, read_entry
from .errors import CorruptEntry, WrongArchiveFile
from .format import (
    CENTRAL_HDR,
    EOCD,
    MAX_EOCD_SEARCH,
    SIG_CENTRAL,
    SIG_EOCD,
    SIG_ZIP64_EOCD,
    SIG_ZIP64_LOCATOR,
    ZIP64_EOCD,
    ZIP64_LOCATOR,
    EntryMetadata,
    decode_name,
)

logger = logging.getLogger(__name__)


def read_central_directory(f: BinaryIO) -> Dict[str, Tuple[int, int, int]]:
    """Map entry name -> (crc32, comp_size, raw_size) from the trailing index."""
    f.seek(0, io.SEEK_END)
    size = f.tell()
    tail_len = min(size, MAX_EOCD_SEARCH)
    f.seek(size - tail_len)
    tail = f.read(tail_len)
    pos = tail.rfind(SIG_EOCD)
    if pos < 0 or pos + EOCD.size > len(tail):
        raise CorruptEntry("end of central directory record not found")
    _sig, _disk, _cd_disk, _n_disk, total, _cd_size, cd_offset, _clen = EOCD.unpack_from(tail, pos)

    eocd_offset = size - tail_len + pos
    if eocd_offset >= ZIP64_LOCATOR.size:
        f.seek(eocd_offset - ZIP64_LOCATOR.size)
        loc = f.read(ZIP64_LOCATOR.size)
        if loc[:4] == SIG_ZIP64_LOCATOR:
            _lsig, _ldisk, z64_offset, _ndisks = ZIP64_LOCATOR.unpack(loc)
            f.seek(z64_offset)
            rec = f.read(ZIP64_EOCD.size)
            if len(rec) != ZIP64_EOCD.size or rec[:4] != SIG_ZIP64_EOCD:
                raise CorruptEntry("ZIP64 end of central directory record not found")
            (_zsig, _rsize, _made_by, _needed, _zdisk, _zcd_disk,
             _zn_disk, total, _zcd_size, cd_offset) = ZIP64_EOCD.unpack(rec)

    out: Dict[str, Tuple[int, int, int]] = {}
    f.seek(cd_offset)
    for _ in range(total):
        hdr = f.read(CENTRAL_HDR.size)
        if len(hdr) != CENTRAL_HDR.size or hdr[:4] != SIG_CENTRAL:
            raise CorruptEntry("corrupt central directory header")
        (_csig, _made_by, _needed, flags, _method, _time, _date, crc, comp_size, raw_size,
         name_len, extra_len, comment_len, _disk_start, _iattr, _eattr, _offset) = CENTRAL_HDR.unpack(hdr)
        raw_name = f.read(name_len)
        extra = f.read(extra_len)
        f.seek(comment_len, io.SEEK_CUR)
        _zip64, raw_size, comp_size = parse_zip64_extra(extra, raw_size, comp_size)
        out[decode_name(raw_name, flags)] = (crc, comp_size, raw_size)
    return out


class ArchiveReader:
    """
    Visit the entries of an archive in storage order.

    Only one payload stream is live at a time: advancing with next() drains
    (and CRC-checks) whatever is left of the previous entry. A reader makes
    a single pass; a second pass needs a second reader.

        with ArchiveReader(path) as reader:
            for meta in reader:
                data = reader.stream.read()
    """

    def __init__(self, path: Union[str, os.PathLike]) -> None:
        self.path = pathlib.Path(path)
        if not self.path.is_file() or not os.access(self.path, os.R_OK):
            raise WrongArchiveFile(f"{self.path} is not an existing, readable archive file")
        self._f: BinaryIO = self.path.open("rb")
        self._stream: Optional[EntryStream] = None
        self._directory: Optional[Dict[str, Tuple[int, int, int]]] = None
        self._done = False

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[EntryMetadata]:
        while True:
            meta = self.next()
            if meta is None:
                return
            yield meta

    def next(self) -> Optional[EntryMetadata]:
        """Advance to the next entry; None once the entries are exhausted."""
        if self._done:
            return None
        self._release_stream()
        got = read_entry(self._f, directory=self._lookup)
        if got is None:
            self._done = True
            return None
        meta, self._stream = got
        return meta

    @property
    def stream(self) -> EntryStream:
        """Payload of the entry last returned by next()."""
        if self._stream is None:
            raise RuntimeError("no current entry; call next() first")
        return self._stream

    def close(self) -> None:
        if self._stream is not None:
            self._stream.close()
            self._stream = None
        self._f.close()

    def _release_stream(self) -> None:
        if self._stream is not None:
            self._stream.skip()
            self._stream.close()
            self._stream = None

    def _lookup(self, name: str) -> Optional[Tuple[int, int, int]]:
        if self._directory is None:
            pos = self._f.tell()
            try:
                self._directory = read_central_directory(self._f)
            finally:
                self._f.seek(pos)
            logger.debug("%s: loaded central directory (%d entries)", self.path, len(self._directory))
        return self._directory.get(name)
