"""Tests for ArchiveReader."""

import zipfile
from pathlib import Path

import pytest

from conftest import write_streamed_zip
from zipman import ArchiveReader, CompressionMethod, WrongArchiveFile
from zipman.errors import CorruptEntry


def test_reads_zipfile_archive_in_storage_order(tmp_path: Path):
    path = tmp_path / "std.zip"
    with zipfile.ZipFile(path, "w") as zf:
        zf.writestr("z.txt", b"last letter", compress_type=zipfile.ZIP_DEFLATED)
        zf.writestr("a.txt", b"first letter", compress_type=zipfile.ZIP_STORED)

    with ArchiveReader(path) as reader:
        meta = reader.next()
        assert meta.name == "z.txt"
        assert meta.compression_method is CompressionMethod.DEFLATED
        assert reader.stream.read() == b"last letter"
        meta = reader.next()
        assert meta.name == "a.txt"
        assert meta.compression_method is CompressionMethod.STORED
        assert meta.uncompressed_size == len(b"first letter")
        assert reader.stream.read() == b"first letter"
        assert reader.next() is None
        assert reader.next() is None


def test_missing_archive(tmp_path: Path):
    with pytest.raises(WrongArchiveFile):
        ArchiveReader(tmp_path / "nope.zip")


def test_directory_is_not_an_archive(tmp_path: Path):
    with pytest.raises(WrongArchiveFile):
        ArchiveReader(tmp_path)


def test_unread_payload_is_skipped(archive: Path):
    with ArchiveReader(archive) as reader:
        names = [meta.name for meta in reader]
    assert names == ["a.txt", "sub/b.txt"]


def test_partially_read_payload_is_skipped(tmp_path: Path):
    path = tmp_path / "big.zip"
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("big.bin", bytes(range(256)) * 4096)
        zf.writestr("small.txt", b"tail")

    with ArchiveReader(path) as reader:
        reader.next()
        assert len(reader.stream.read(100)) == 100
        assert reader.next().name == "small.txt"
        assert reader.stream.read() == b"tail"


def test_stream_before_next_is_an_error(archive: Path):
    with ArchiveReader(archive) as reader:
        with pytest.raises(RuntimeError):
            reader.stream


def test_stored_descriptor_sizes_come_from_central_directory(tmp_path: Path):
    path = tmp_path / "streamed.zip"
    write_streamed_zip(path, {"s1.txt": b"one", "s2.txt": b"two two"}, compression=zipfile.ZIP_STORED)

    with ArchiveReader(path) as reader:
        got = []
        for meta in reader:
            got.append((meta.name, meta.uncompressed_size, reader.stream.read()))
    assert got == [("s1.txt", 3, b"one"), ("s2.txt", 7, b"two two")]


def test_zip64_local_extra(tmp_path: Path):
    path = tmp_path / "z64.zip"
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        with zf.open("forced.txt", "w", force_zip64=True) as f:
            f.write(b"zip64 sized header")

    with ArchiveReader(path) as reader:
        meta = reader.next()
        assert meta.uncompressed_size == len(b"zip64 sized header")
        assert reader.stream.read() == b"zip64 sized header"


def test_corrupt_second_entry_surfaces_on_advance(tmp_path: Path):
    path = tmp_path / "bad.zip"
    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_STORED) as zf:
        zf.writestr("ok.txt", b"fine")
        zf.writestr("bad.txt", b"broken")
    path.write_bytes(path.read_bytes().replace(b"broken", b"BROKEN"))

    with ArchiveReader(path) as reader:
        assert reader.next().name == "ok.txt"
        assert reader.next().name == "bad.txt"
        with pytest.raises(CorruptEntry):
            reader.next()
