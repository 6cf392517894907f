"""Entry codec: one local header plus its payload, against an open stream.

`write_entry` appends a single entry to a seekable sink and returns the record
the central directory needs. `read_entry` parses the local header at the
current position and hands back a stream that decodes exactly that entry's
payload, verifying its size and CRC-32 once drained.
"""

from __future__ import annotations

import io
import logging
import zlib
from dataclasses import dataclass
from typing import BinaryIO, Callable, Optional, Tuple

from .errors import ArchiveError, CorruptEntry, UnsupportedEntry
from .format import (
    DEFAULT_FILE_ATTR,
    DEFAULT_LEVEL,
    DESCRIPTOR,
    END_SIGNATURES,
    EXTRA_HDR,
    EXTRA_ZIP64,
    FLAG_DESCRIPTOR,
    FLAG_ENCRYPTED,
    FLAG_STRONG_ENCRYPTION,
    IO_CHUNK,
    LOCAL_CRC_OFFSET,
    LOCAL_HDR,
    LOCAL_SIZES,
    SIG_DESCRIPTOR,
    SIG_LOCAL,
    U64,
    UNPATCHED_SIZE64,
    VERSION_DEFAULT,
    VERSION_ZIP64,
    ZIP64_DESCRIPTOR,
    ZIP64_LIMIT,
    ZIP64_SIZES,
    CompressionMethod,
    EntryMetadata,
    decode_name,
    dos_datetime,
    encode_name,
    from_dos_datetime,
    now_date_time,
)

logger = logging.getLogger(__name__)

# -----------------------------
# Optional deps
# -----------------------------
HAVE_ZSTD = False
try:
    import zstandard as zstd  # type: ignore
    HAVE_ZSTD = True
except ImportError:
    HAVE_ZSTD = False

# name -> (crc32, comp_size, raw_size) as recorded in the central directory
DirectoryLookup = Callable[[str], Optional[Tuple[int, int, int]]]


@dataclass(frozen=True)
class EntryRecord:
    """Everything the central directory needs about one written entry."""
    name: str
    raw_name: bytes
    flags: int
    method: CompressionMethod
    dos_time: int
    dos_date: int
    crc32: int
    compressed_size: int
    uncompressed_size: int
    header_offset: int
    bytes_written: int
    external_attr: int = DEFAULT_FILE_ATTR

    @property
    def zip64(self) -> bool:
        return (self.compressed_size >= ZIP64_LIMIT
                or self.uncompressed_size >= ZIP64_LIMIT
                or self.header_offset >= ZIP64_LIMIT)

    def metadata(self) -> EntryMetadata:
        return EntryMetadata(
            name=self.name,
            uncompressed_size=self.uncompressed_size,
            compressed_size=self.compressed_size,
            compression_method=self.method,
            crc32=self.crc32,
            date_time=from_dos_datetime(self.dos_time, self.dos_date),
        )


# -----------------------------
# Write
# -----------------------------
def write_entry(
    sink: BinaryIO,
    name: str,
    method: CompressionMethod,
    payload: BinaryIO,
    *,
    level: int = DEFAULT_LEVEL,
    date_time: Optional[Tuple[int, ...]] = None,
    size_hint: Optional[int] = None,
    external_attr: int = DEFAULT_FILE_ATTR,
) -> EntryRecord:
    """
    Append one entry at the sink's current position.

    The local header goes out first with blank CRC/sizes; the payload is
    streamed through in IO_CHUNK pieces and the header is patched once the
    totals are known, so the sink must be seekable. A ZIP64 extra field is
    reserved when `size_hint` says the entry may not fit 32-bit fields.
    """
    if method is CompressionMethod.ZSTANDARD:
        raise UnsupportedEntry(f"{name}: zstandard entries can be read but not written")
    raw_name, flags = encode_name(name)
    zip64 = size_hint is not None and size_hint * 1.05 >= ZIP64_LIMIT
    dos_time, dos_date = dos_datetime(date_time or now_date_time())
    # placeholders claim the largest sizes, so an interrupted entry reads as truncated
    extra = b""
    if zip64:
        extra = EXTRA_HDR.pack(EXTRA_ZIP64, ZIP64_SIZES.size) + ZIP64_SIZES.pack(UNPATCHED_SIZE64, UNPATCHED_SIZE64)
    blank = ZIP64_LIMIT

    offset = sink.tell()
    sink.write(LOCAL_HDR.pack(
        SIG_LOCAL,
        VERSION_ZIP64 if zip64 else VERSION_DEFAULT,
        flags,
        method.value,
        dos_time,
        dos_date,
        0,
        blank,
        blank,
        len(raw_name),
        len(extra),
    ))
    sink.write(raw_name)
    sink.write(extra)

    compressor = None
    if method is CompressionMethod.DEFLATED:
        compressor = zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
    crc = 0
    raw_size = 0
    comp_size = 0
    while True:
        buf = payload.read(IO_CHUNK)
        if not buf:
            break
        crc = zlib.crc32(buf, crc)
        raw_size += len(buf)
        if compressor is not None:
            buf = compressor.compress(buf)
        sink.write(buf)
        comp_size += len(buf)
    if compressor is not None:
        tail = compressor.flush()
        sink.write(tail)
        comp_size += len(tail)
    crc &= 0xFFFFFFFF

    if not zip64 and (raw_size >= ZIP64_LIMIT or comp_size >= ZIP64_LIMIT):
        raise ArchiveError(f"{name}: entry of {raw_size} bytes needs ZIP64 but no size hint was given")

    end = sink.tell()
    sink.seek(offset + LOCAL_CRC_OFFSET)
    if zip64:
        sink.write(LOCAL_SIZES.pack(crc, ZIP64_LIMIT, ZIP64_LIMIT))
        sink.seek(offset + LOCAL_HDR.size + len(raw_name) + EXTRA_HDR.size)
        sink.write(ZIP64_SIZES.pack(raw_size, comp_size))
    else:
        sink.write(LOCAL_SIZES.pack(crc, comp_size, raw_size))
    sink.seek(end)

    return EntryRecord(
        name=name,
        raw_name=raw_name,
        flags=flags,
        method=method,
        dos_time=dos_time,
        dos_date=dos_date,
        crc32=crc,
        compressed_size=comp_size,
        uncompressed_size=raw_size,
        header_offset=offset,
        bytes_written=end - offset,
        external_attr=external_attr,
    )


# -----------------------------
# Read
# -----------------------------
def parse_zip64_extra(extra: bytes, raw_size: int, comp_size: int) -> Tuple[bool, int, int]:
    """Resolve 0xFFFFFFFF size fields from a ZIP64 extra block (local header order)."""
    off = 0
    while off + EXTRA_HDR.size <= len(extra):
        tag, size = EXTRA_HDR.unpack_from(extra, off)
        off += EXTRA_HDR.size
        if tag == EXTRA_ZIP64:
            body = extra[off:off + size]
            vals = iter([U64.unpack_from(body, i)[0] for i in range(0, len(body) - U64.size + 1, U64.size)])
            try:
                if raw_size == ZIP64_LIMIT:
                    raw_size = next(vals)
                if comp_size == ZIP64_LIMIT:
                    comp_size = next(vals)
            except StopIteration:
                raise CorruptEntry("ZIP64 extra field too short") from None
            return True, raw_size, comp_size
        off += size
    return False, raw_size, comp_size


def read_entry(
    source: BinaryIO,
    *,
    directory: Optional[DirectoryLookup] = None,
) -> Optional[Tuple[EntryMetadata, "EntryStream"]]:
    """
    Parse the local header at the current position.

    Returns None at the end of the entry run (central directory, end record
    or a clean EOF). Sizes a header defers to a data descriptor are taken
    from `directory` when it knows the entry; deflated payloads can do
    without, the others cannot.
    """
    offset = source.tell()
    hdr = source.read(LOCAL_HDR.size)
    if not hdr:
        return None
    sig = hdr[:4]
    if sig in END_SIGNATURES:
        return None
    if sig != SIG_LOCAL:
        raise CorruptEntry(f"bad local header signature {sig!r} at offset {offset}")
    if len(hdr) != LOCAL_HDR.size:
        raise CorruptEntry(f"truncated local header at offset {offset}")

    (_sig, _version, flags, method, dos_time, dos_date,
     crc, comp_size, raw_size, name_len, extra_len) = LOCAL_HDR.unpack(hdr)
    raw_name = source.read(name_len)
    extra = source.read(extra_len)
    if len(raw_name) != name_len or len(extra) != extra_len:
        raise CorruptEntry(f"truncated local header at offset {offset}")
    name = decode_name(raw_name, flags)

    if flags & (FLAG_ENCRYPTED | FLAG_STRONG_ENCRYPTION):
        raise UnsupportedEntry(f"{name}: encrypted entries are not supported")
    try:
        cm = CompressionMethod(method)
    except ValueError:
        raise UnsupportedEntry(f"{name}: unsupported compression method {method}") from None
    if cm is CompressionMethod.ZSTANDARD and not HAVE_ZSTD:
        raise UnsupportedEntry(f"{name}: zstandard not installed; cannot decode zstd")

    zip64, raw_size, comp_size = parse_zip64_extra(extra, raw_size, comp_size)
    expect_crc: Optional[int] = crc
    expect_comp: Optional[int] = comp_size
    expect_raw: Optional[int] = raw_size
    if flags & FLAG_DESCRIPTOR:
        known = directory(name) if directory is not None else None
        if known is not None:
            expect_crc, expect_comp, expect_raw = known
        elif cm is CompressionMethod.DEFLATED:
            expect_crc = expect_comp = expect_raw = None
        else:
            raise CorruptEntry(f"{name}: size deferred to a data descriptor and no central directory entry")

    date_time = from_dos_datetime(dos_time, dos_date)
    meta = EntryMetadata(
        name=name,
        uncompressed_size=expect_raw or 0,
        compressed_size=expect_comp or 0,
        compression_method=cm,
        crc32=expect_crc or 0,
        date_time=date_time,
    )
    stream = EntryStream(
        source,
        name=name,
        method=cm,
        flags=flags,
        zip64=zip64,
        crc32=expect_crc,
        compressed_size=expect_comp,
        uncompressed_size=expect_raw,
        date_time=date_time,
    )
    logger.debug("entry %s at offset %d method=%s", name, offset, cm.name)
    return meta, stream


class EntryStream(io.RawIOBase):
    """
    Decoded payload of one entry.

    Yields exactly the entry's uncompressed bytes. Once the payload is used
    up the trailing data descriptor (if any) is consumed and size and CRC are
    checked; any disagreement raises CorruptEntry. Closing the stream does
    not close the underlying source.
    """

    def __init__(
        self,
        source: BinaryIO,
        *,
        name: str,
        method: CompressionMethod,
        flags: int,
        zip64: bool,
        crc32: Optional[int],
        compressed_size: Optional[int],
        uncompressed_size: Optional[int],
        date_time: Tuple[int, int, int, int, int, int],
    ) -> None:
        super().__init__()
        self.name = name
        self.method = method
        self._source = source
        self._flags = flags
        self._zip64 = zip64
        self._crc = crc32
        self._comp_size = compressed_size
        self._raw_size = uncompressed_size
        self._date_time = date_time

        self._remaining = compressed_size
        self._consumed = 0
        self._produced = 0
        self._running_crc = 0
        self._pending = b""
        self._eof = False

        self._zlib = None
        self._zstd = None
        if method is CompressionMethod.DEFLATED:
            self._zlib = zlib.decompressobj(-zlib.MAX_WBITS)
        elif method is CompressionMethod.ZSTANDARD:
            self._zstd = zstd.ZstdDecompressor().decompressobj()

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._pending and not self._eof:
            self._fill()
        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def drain(self) -> EntryMetadata:
        """Decode and discard whatever is left; return what was observed."""
        while not self._eof:
            self._fill()
        self._pending = b""
        return self.observed()

    def skip(self) -> None:
        self.drain()

    def observed(self) -> EntryMetadata:
        if not self._eof:
            raise RuntimeError(f"{self.name}: payload not fully read")
        return EntryMetadata(
            name=self.name,
            uncompressed_size=self._produced,
            compressed_size=self._consumed,
            compression_method=self.method,
            crc32=self._running_crc,
            date_time=self._date_time,
        )

    # -----------------------------
    # internals
    # -----------------------------
    def _read_source(self) -> bytes:
        want = IO_CHUNK if self._remaining is None else min(IO_CHUNK, self._remaining)
        buf = self._source.read(want)
        if not buf:
            raise CorruptEntry(f"{self.name}: truncated payload")
        self._consumed += len(buf)
        if self._remaining is not None:
            self._remaining -= len(buf)
        return buf

    def _emit(self, out: bytes) -> None:
        if out:
            self._running_crc = zlib.crc32(out, self._running_crc) & 0xFFFFFFFF
            self._produced += len(out)
            self._pending = out

    def _fill(self) -> None:
        if self._zlib is not None:
            data = self._zlib.unconsumed_tail
            if not data and self._remaining != 0:
                data = self._read_source()
            out = self._zlib.decompress(data, IO_CHUNK)
            if not out and not data and not self._zlib.eof:
                raise CorruptEntry(f"{self.name}: deflate stream ends early")
            self._emit(out)
            if self._zlib.eof:
                unused = self._zlib.unused_data
                if unused:
                    self._source.seek(-len(unused), io.SEEK_CUR)
                    self._consumed -= len(unused)
                    if self._remaining is not None:
                        self._remaining += len(unused)
                self._finish()
            return

        if self._remaining == 0:
            if self._zstd is not None:
                self._emit(self._zstd.flush())
            self._finish()
            return
        buf = self._read_source()
        if self._zstd is not None:
            buf = self._zstd.decompress(buf)
        self._emit(buf)

    def _read_descriptor(self) -> None:
        body = ZIP64_DESCRIPTOR if self._zip64 else DESCRIPTOR
        head = self._source.read(4)
        if head == SIG_DESCRIPTOR:
            raw = self._source.read(body.size)
        else:
            raw = head + self._source.read(body.size - len(head))
        if len(raw) != body.size:
            raise CorruptEntry(f"{self.name}: truncated data descriptor")
        self._crc, self._comp_size, self._raw_size = body.unpack(raw)

    def _finish(self) -> None:
        self._eof = True
        if self._flags & FLAG_DESCRIPTOR:
            self._read_descriptor()
        if self._comp_size is not None and self._consumed != self._comp_size:
            raise CorruptEntry(f"{self.name}: compressed size mismatch {self._consumed} != {self._comp_size}")
        if self._raw_size is not None and self._produced != self._raw_size:
            raise CorruptEntry(f"{self.name}: size mismatch {self._produced} != {self._raw_size}")
        if self._crc is not None and self._running_crc != self._crc:
            raise CorruptEntry(f"{self.name}: CRC mismatch {self._running_crc:08x} != {self._crc:08x}")
