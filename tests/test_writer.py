"""Tests for ArchiveWriter."""

import io
import zipfile
from pathlib import Path

import pytest

from zipman import ArchiveWriter, CompressionMethod, DuplicateEntry, WrongCompressionLevel


def test_output_is_readable_by_zipfile(tmp_path: Path):
    path = tmp_path / "w.zip"
    with ArchiveWriter(path, level=9) as writer:
        writer.put_entry("a.txt", io.BytesIO(b"hello"), date_time=(2020, 5, 17, 13, 45, 30))
        writer.put_entry("dir\\b.txt", io.BytesIO(b"world" * 100))
        writer.put_entry("empty/", io.BytesIO(b""))

    with zipfile.ZipFile(path) as zf:
        assert zf.testzip() is None
        assert zf.namelist() == ["a.txt", "dir/b.txt", "empty/"]
        assert zf.read("a.txt") == b"hello"
        assert zf.read("dir/b.txt") == b"world" * 100
        assert zf.getinfo("a.txt").date_time == (2020, 5, 17, 13, 45, 30)
        assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_DEFLATED
        assert zf.getinfo("empty/").is_dir()


def test_level_zero_stores(tmp_path: Path):
    path = tmp_path / "stored.zip"
    with ArchiveWriter(path, level=0) as writer:
        meta = writer.put_entry("a.txt", io.BytesIO(b"aaaaaaaaaaaaaaaa"))
    assert meta.compression_method is CompressionMethod.STORED
    assert meta.compressed_size == meta.uncompressed_size == 16
    with zipfile.ZipFile(path) as zf:
        assert zf.getinfo("a.txt").compress_type == zipfile.ZIP_STORED


def test_duplicate_entry(tmp_path: Path):
    with ArchiveWriter(tmp_path / "d.zip") as writer:
        writer.put_entry("a.txt", io.BytesIO(b"1"))
        with pytest.raises(DuplicateEntry):
            writer.put_entry("a.txt", io.BytesIO(b"2"))
        # normalized names collide too
        with pytest.raises(DuplicateEntry):
            writer.put_entry("/a.txt", io.BytesIO(b"3"))


def test_level_fixed_after_first_entry(tmp_path: Path):
    with ArchiveWriter(tmp_path / "l.zip") as writer:
        writer.set_compression_level(1)
        writer.put_entry("a.txt", io.BytesIO(b"1"))
        with pytest.raises(RuntimeError):
            writer.set_compression_level(9)
        assert writer.level == 1


@pytest.mark.parametrize("level", [-1, 10, True, 2.5])
def test_invalid_level(tmp_path: Path, level):
    with pytest.raises(WrongCompressionLevel):
        ArchiveWriter(tmp_path / "bad.zip", level=level)


def test_failed_session_is_not_an_archive(tmp_path: Path):
    path = tmp_path / "partial.zip"
    with pytest.raises(OSError):
        with ArchiveWriter(path) as writer:
            writer.put_entry("a.txt", io.BytesIO(b"hello"))
            raise OSError("disk went away")
    assert path.exists()
    assert not zipfile.is_zipfile(path)


def test_empty_archive(tmp_path: Path):
    path = tmp_path / "empty.zip"
    ArchiveWriter(path).close()
    with zipfile.ZipFile(path) as zf:
        assert zf.namelist() == []
