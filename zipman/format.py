"""ZIP container layout: signatures, header structs, methods, limits and knobs.

Everything that describes bytes on disk lives here so the codec, reader and
writer agree on one definition. Layouts follow PKWARE APPNOTE 6.3.x.
"""

from __future__ import annotations

import os
import struct
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

# -----------------------------
# Signatures
# -----------------------------
SIG_LOCAL = b"PK\x03\x04"
SIG_CENTRAL = b"PK\x01\x02"
SIG_EOCD = b"PK\x05\x06"
SIG_ZIP64_EOCD = b"PK\x06\x06"
SIG_ZIP64_LOCATOR = b"PK\x06\x07"
SIG_DESCRIPTOR = b"PK\x07\x08"

# Signatures that end the run of local entries.
END_SIGNATURES = (SIG_CENTRAL, SIG_EOCD, SIG_ZIP64_EOCD, SIG_ZIP64_LOCATOR)

# -----------------------------
# Header structs
# -----------------------------
# Local file header:
#   4s signature
#   u16 version_needed
#   u16 flags
#   u16 method
#   u16 dos_time
#   u16 dos_date
#   u32 crc32
#   u32 comp_size
#   u32 raw_size
#   u16 name_len
#   u16 extra_len
LOCAL_HDR = struct.Struct("<4sHHHHHIIIHH")
# offset of the crc32 field inside LOCAL_HDR (patched after the payload is written)
LOCAL_CRC_OFFSET = 14
LOCAL_SIZES = struct.Struct("<III")  # crc32, comp_size, raw_size

# Central directory header:
#   4s signature
#   u16 version_made_by, version_needed, flags, method, dos_time, dos_date
#   u32 crc32, comp_size, raw_size
#   u16 name_len, extra_len, comment_len, disk_start, internal_attr
#   u32 external_attr, local_header_offset
CENTRAL_HDR = struct.Struct("<4sHHHHHHIIIHHHHHII")

# End of central directory:
#   4s signature
#   u16 disk, cd_disk, entries_on_disk, entries_total
#   u32 cd_size, cd_offset
#   u16 comment_len
EOCD = struct.Struct("<4sHHHHIIH")

# ZIP64 end of central directory record (fixed part):
#   4s signature, u64 record_size, u16 made_by, u16 needed,
#   u32 disk, u32 cd_disk, u64 entries_on_disk, u64 entries_total,
#   u64 cd_size, u64 cd_offset
ZIP64_EOCD = struct.Struct("<4sQHHIIQQQQ")
# ZIP64 locator: 4s signature, u32 disk, u64 zip64_eocd_offset, u32 total_disks
ZIP64_LOCATOR = struct.Struct("<4sIQI")

# Data descriptor body (signature is optional and read separately)
DESCRIPTOR = struct.Struct("<III")     # crc32, comp_size, raw_size
ZIP64_DESCRIPTOR = struct.Struct("<IQQ")

EXTRA_HDR = struct.Struct("<HH")  # tag, size
EXTRA_ZIP64 = 0x0001
ZIP64_SIZES = struct.Struct("<QQ")  # raw_size, comp_size (local header order)
U64 = struct.Struct("<Q")

# -----------------------------
# Flags / versions / limits
# -----------------------------
FLAG_ENCRYPTED = 1 << 0
FLAG_DESCRIPTOR = 1 << 3
FLAG_STRONG_ENCRYPTION = 1 << 6
FLAG_UTF8 = 1 << 11

VERSION_DEFAULT = 20
VERSION_ZIP64 = 45
MADE_BY_UNIX = 3 << 8

ZIP64_LIMIT = 0xFFFFFFFF
ZIP64_COUNT_LIMIT = 0xFFFF
# size fields of a local header that has not been patched yet
UNPATCHED_SIZE64 = 0xFFFFFFFFFFFFFFFF

DEFAULT_FILE_ATTR = (0o100644 & 0xFFFF) << 16
DEFAULT_DIR_ATTR = ((0o040755 & 0xFFFF) << 16) | 0x10

# EOCD may be followed by a comment of up to 64 KiB
MAX_EOCD_SEARCH = EOCD.size + 0xFFFF

# -----------------------------
# Knobs
# -----------------------------
IO_CHUNK = 64 * 1024
DEFAULT_LEVEL = 6
MIN_LEVEL = 0
MAX_LEVEL = 9

# DOS timestamps cannot express anything before 1980
DOS_EPOCH = (1980, 1, 1, 0, 0, 0)
DOS_LAST = (2107, 12, 31, 23, 59, 58)


class CompressionMethod(Enum):
    STORED = 0
    DEFLATED = 8
    # readable when the optional `zstandard` package is installed
    ZSTANDARD = 93


@dataclass(frozen=True)
class EntryMetadata:
    """Point-in-time description of one archive entry."""
    name: str
    uncompressed_size: int
    compressed_size: int
    compression_method: CompressionMethod
    crc32: int = 0
    date_time: Tuple[int, int, int, int, int, int] = DOS_EPOCH

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")


# -----------------------------
# Utilities
# -----------------------------
def valid_level(level: object) -> bool:
    return isinstance(level, int) and not isinstance(level, bool) and MIN_LEVEL <= level <= MAX_LEVEL

def method_for_level(level: int) -> CompressionMethod:
    return CompressionMethod.STORED if level == 0 else CompressionMethod.DEFLATED

def normalize_name(name: str) -> str:
    return name.replace("\\", "/").lstrip("/")

def encode_name(name: str) -> Tuple[bytes, int]:
    """Return (raw name bytes, extra flag bits) for an entry name."""
    try:
        return name.encode("ascii"), 0
    except UnicodeEncodeError:
        return name.encode("utf-8"), FLAG_UTF8

def decode_name(raw: bytes, flags: int) -> str:
    if flags & FLAG_UTF8:
        return raw.decode("utf-8", errors="replace")
    return raw.decode("cp437")

def dos_datetime(date_time: Tuple[int, ...]) -> Tuple[int, int]:
    """Pack a (Y, M, D, h, m, s) tuple into (dos_time, dos_date)."""
    if tuple(date_time[:6]) < DOS_EPOCH:
        date_time = DOS_EPOCH
    elif tuple(date_time[:6]) > DOS_LAST:
        date_time = DOS_LAST
    y, mo, d, h, mi, s = date_time[:6]
    dos_date = ((y - 1980) << 9) | (mo << 5) | d
    dos_time = (h << 11) | (mi << 5) | (s // 2)
    return dos_time, dos_date

def from_dos_datetime(dos_time: int, dos_date: int) -> Tuple[int, int, int, int, int, int]:
    return (
        ((dos_date >> 9) & 0x7F) + 1980,
        (dos_date >> 5) & 0x0F,
        dos_date & 0x1F,
        (dos_time >> 11) & 0x1F,
        (dos_time >> 5) & 0x3F,
        (dos_time & 0x1F) * 2,
    )

def source_date_epoch() -> Optional[int]:
    """
    Reproducible-build timestamp source.

    If SOURCE_DATE_EPOCH is set to a non-negative integer, return it in seconds.
    Otherwise return None.
    """
    v = os.environ.get("SOURCE_DATE_EPOCH")
    if not v:
        return None
    try:
        sec = int(v.strip())
    except ValueError:
        return None
    return sec if sec >= 0 else None

def file_date_time(mtime: float) -> Tuple[int, int, int, int, int, int]:
    """Timestamp to store for a file added from disk."""
    sde = source_date_epoch()
    if sde is not None:
        return tuple(time.gmtime(sde)[:6])  # type: ignore[return-value]
    return tuple(time.localtime(mtime)[:6])  # type: ignore[return-value]

def now_date_time() -> Tuple[int, int, int, int, int, int]:
    return file_date_time(time.time())
