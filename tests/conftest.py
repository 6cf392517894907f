"""Shared pytest fixtures for zipman tests."""

import io
import zipfile
from pathlib import Path

import pytest

from zipman import ZipFileManager


class Unseekable:
    """Write-only sink; makes zipfile fall back to data descriptors."""

    def __init__(self):
        self.buf = io.BytesIO()

    def write(self, b):
        return self.buf.write(b)

    def flush(self):
        pass

    def getvalue(self):
        return self.buf.getvalue()


def write_streamed_zip(path: Path, members: dict, compression=zipfile.ZIP_DEFLATED) -> None:
    """Write `members` the way a streaming producer would: sizes after each payload."""
    sink = Unseekable()
    with zipfile.ZipFile(sink, "w", compression=compression) as zf:
        for name, data in members.items():
            zf.writestr(name, data)
    path.write_bytes(sink.getvalue())


@pytest.fixture
def payload_dir(tmp_path: Path) -> Path:
    """Directory with a.txt ("hello") and sub/b.txt ("world")."""
    root = tmp_path / "payload"
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_text("hello")
    (root / "sub" / "b.txt").write_text("world")
    return root


@pytest.fixture
def archive(tmp_path: Path, payload_dir: Path) -> Path:
    path = tmp_path / "out" / "test.zip"
    ZipFileManager(path).create_zip(payload_dir)
    return path
