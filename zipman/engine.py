"""Archive mutation engine.

Every mutating operation follows one shape: check preconditions, stream the
existing entries (filtered) plus any new input into a fresh temp file, and
promote that file over the archive with a single rename once it has been
finalized. A failure anywhere before the rename leaves the archive as it was.
"""

from __future__ import annotations

import contextlib
import errno
import logging
import os
import pathlib
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, List, Optional, Set, Union

from .errors import CorruptEntry, PathNotFound, WrongArchiveFile, WrongCompressionLevel
from .format import DEFAULT_LEVEL, IO_CHUNK, EntryMetadata, file_date_time, normalize_name, valid_level
from .inspector import ArchiveInspector
from .reader import ArchiveReader
from .writer import ArchiveWriter

logger = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


class NoticeKind(Enum):
    ADDED = "added"
    REMOVED = "removed"
    ALREADY_EXISTS = "already_exists"
    EXTRACTED = "extracted"


@dataclass(frozen=True)
class Notice:
    """Per-entry outcome reported back to the caller."""
    kind: NoticeKind
    name: str
    path: Optional[str] = None


# keep(meta, notices) -> bool: whether an existing entry is copied over
EntryFilter = Callable[[EntryMetadata, List[Notice]], bool]
# append(writer, names_written, notices): add new entries after the copy
Appender = Callable[[ArchiveWriter, Set[str], List[Notice]], None]


# -----------------------------
# Filesystem helpers
# -----------------------------
def iter_files(root: pathlib.Path) -> List[pathlib.Path]:
    """Regular files under `root`, sorted. Symlinks to files are followed and archived by content."""
    out: List[pathlib.Path] = []
    for dp, _, fnames in os.walk(root):
        for n in fnames:
            out.append(pathlib.Path(dp, n))
    out = [p for p in out if p.is_file()]
    out.sort()
    return out

def relpath_str(root: pathlib.Path, p: pathlib.Path) -> str:
    return p.relative_to(root).as_posix()

def entry_key(name: PathLike) -> str:
    return normalize_name(pathlib.PurePath(name).as_posix())

def _current_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask

@contextlib.contextmanager
def atomic_target(target: pathlib.Path, tmp_dir: Optional[PathLike] = None) -> Iterator[pathlib.Path]:
    """
    Yield a fresh temp file that replaces `target` when the block succeeds.

    The temp file lives in `tmp_dir` (default: the target's directory, so the
    final os.replace stays on one filesystem). On any exception it is removed
    and `target` is never touched.
    A `tmp_dir` on another filesystem costs one extra copy into a second
    temp file beside `target`, which is then renamed the same way.
    """
    directory = pathlib.Path(tmp_dir) if tmp_dir is not None else target.parent
    fd, name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=directory)
    os.close(fd)
    tmp = pathlib.Path(name)
    logger.debug("writing %s via %s", target, tmp)
    try:
        yield tmp
        if target.exists():
            shutil.copymode(target, tmp)
        else:
            os.chmod(tmp, 0o666 & ~_current_umask())
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    try:
        os.replace(tmp, target)
    except OSError as e:
        if e.errno != errno.EXDEV:
            tmp.unlink(missing_ok=True)
            raise
        # tmp_dir on another filesystem: stage a copy beside the target, then rename
        logger.debug("%s is on another filesystem; copying next to %s", tmp, target)
        try:
            with atomic_target(target) as local:
                shutil.copyfile(tmp, local)
        finally:
            tmp.unlink(missing_ok=True)
    logger.debug("replaced %s", target)


class ZipFileManager:
    """
    Create, list, extract and rewrite one ZIP archive.

    Mutating operations return the per-entry notices they produced; listing
    returns entry metadata. Errors are raised as zipman.errors exceptions or
    the OSError of the failing system call.
    """

    def __init__(self, zip_file: PathLike, *, level: int = DEFAULT_LEVEL, tmp_dir: Optional[PathLike] = None) -> None:
        if not valid_level(level):
            raise WrongCompressionLevel(f"compression level {level!r} not in [0, 9]")
        self.zip_file = pathlib.Path(zip_file)
        self.level = level
        self.tmp_dir = tmp_dir

    # -----------------------------
    # Operations
    # -----------------------------
    def create_zip(self, source: PathLike) -> List[Notice]:
        """Archive a single file (named by its basename) or a whole directory tree."""
        source = pathlib.Path(source)
        if source.is_dir():
            archive = self.zip_file.resolve()
            files = [p for p in iter_files(source) if p.resolve() != archive]
            pairs = [(p, relpath_str(source, p)) for p in files]
        elif source.is_file():
            pairs = [(source, source.name)]
        else:
            raise PathNotFound(f"{source} is not a file or directory")

        self.zip_file.parent.mkdir(parents=True, exist_ok=True)

        def append(writer: ArchiveWriter, names: Set[str], notices: List[Notice]) -> None:
            for path, name in pairs:
                names.add(self._put_file(writer, path, name))
                notices.append(Notice(NoticeKind.ADDED, name, str(path)))

        logger.debug("create %s from %s (%d files)", self.zip_file, source, len(pairs))
        return self._rewrite(append=append, read_existing=False)

    def extract_all(self, output_folder: PathLike) -> List[Notice]:
        self._require_archive()
        out = pathlib.Path(output_folder)
        out.mkdir(parents=True, exist_ok=True)
        root = out.resolve()
        notices: List[Notice] = []
        with ArchiveReader(self.zip_file) as reader:
            for meta in reader:
                target = (root / meta.name).resolve()
                if target != root and root not in target.parents:
                    raise CorruptEntry(f"{meta.name}: entry path escapes {out}")
                if meta.is_dir:
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with target.open("wb") as f:
                    shutil.copyfileobj(reader.stream, f, IO_CHUNK)
                notices.append(Notice(NoticeKind.EXTRACTED, meta.name, str(target)))
        logger.debug("extracted %d entries from %s to %s", len(notices), self.zip_file, out)
        return notices

    def remove_file(self, path: PathLike) -> List[Notice]:
        return self.remove_files([path])

    def remove_files(self, paths: Iterable[PathLike]) -> List[Notice]:
        """Drop every entry named in `paths`; names not in the archive are ignored."""
        self._require_archive()
        targets = {entry_key(p) for p in paths}

        def keep(meta: EntryMetadata, notices: List[Notice]) -> bool:
            if entry_key(meta.name) in targets:
                notices.append(Notice(NoticeKind.REMOVED, meta.name))
                return False
            return True

        return self._rewrite(keep=keep)

    def add_file(self, path: PathLike) -> List[Notice]:
        return self.add_files([path])

    def add_files(self, paths: Iterable[PathLike]) -> List[Notice]:
        """
        Append files under their basenames.

        A basename that already names an entry is reported as ALREADY_EXISTS
        and skipped; existing entries are never replaced.
        """
        self._require_archive()
        files = [pathlib.Path(p) for p in paths]
        for p in files:
            if not p.is_file():
                raise PathNotFound(f"{p} is not a regular file")

        def append(writer: ArchiveWriter, names: Set[str], notices: List[Notice]) -> None:
            for p in files:
                if p.name in names:
                    notices.append(Notice(NoticeKind.ALREADY_EXISTS, p.name, str(p)))
                    continue
                names.add(self._put_file(writer, p, p.name))
                notices.append(Notice(NoticeKind.ADDED, p.name, str(p)))

        return self._rewrite(append=append)

    def change_compression_level(self, level: int) -> List[Notice]:
        self._require_archive()
        if not valid_level(level):
            raise WrongCompressionLevel(f"compression level {level!r} not in [0, 9]")
        return self._rewrite(level=level)

    def get_files_list(self) -> List[EntryMetadata]:
        return ArchiveInspector(self.zip_file).list()

    # -----------------------------
    # Pipeline
    # -----------------------------
    def _rewrite(
        self,
        *,
        keep: Optional[EntryFilter] = None,
        append: Optional[Appender] = None,
        level: Optional[int] = None,
        read_existing: bool = True,
    ) -> List[Notice]:
        notices: List[Notice] = []
        names: Set[str] = set()
        level = self.level if level is None else level
        with atomic_target(self.zip_file, self.tmp_dir) as tmp, ArchiveWriter(tmp, level) as writer:
            if read_existing:
                with ArchiveReader(self.zip_file) as reader:
                    for meta in reader:
                        if keep is not None and not keep(meta, notices):
                            logger.debug("skip %s", meta.name)
                            continue
                        written = writer.put_entry(
                            meta.name,
                            reader.stream,
                            date_time=meta.date_time,
                            size_hint=meta.uncompressed_size or None,
                        )
                        names.add(written.name)
            if append is not None:
                append(writer, names, notices)
        return notices

    def _put_file(self, writer: ArchiveWriter, path: pathlib.Path, name: str) -> str:
        st = path.stat()
        with path.open("rb") as f:
            meta = writer.put_entry(name, f, date_time=file_date_time(st.st_mtime), size_hint=st.st_size)
        return meta.name

    def _require_archive(self) -> None:
        if not self.zip_file.is_file():
            raise WrongArchiveFile(f"{self.zip_file} is not an existing archive file")
