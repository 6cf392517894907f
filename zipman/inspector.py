"""Read-only listing of archive contents."""

from __future__ import annotations

import os
import pathlib
from dataclasses import dataclass
from typing import List, Sequence, Union

from .format import EntryMetadata
from .reader import ArchiveReader


@dataclass(frozen=True)
class ArchiveSummary:
    files: int
    raw_bytes: int
    compressed_bytes: int

    @property
    def ratio(self) -> float:
        return self.compressed_bytes / float(self.raw_bytes if self.raw_bytes else 1)


class ArchiveInspector:
    """
    List the entries of an archive.

    Sizes are measured by decoding every payload rather than trusted from
    the headers, so archives whose local headers defer sizes to data
    descriptors still report real numbers.
    """

    def __init__(self, path: Union[str, os.PathLike]) -> None:
        self.path = pathlib.Path(path)

    def list(self) -> List[EntryMetadata]:
        entries: List[EntryMetadata] = []
        with ArchiveReader(self.path) as reader:
            for _meta in reader:
                entries.append(reader.stream.drain())
        return entries


def summary(entries: Sequence[EntryMetadata]) -> ArchiveSummary:
    return ArchiveSummary(
        files=len(entries),
        raw_bytes=sum(e.uncompressed_size for e in entries),
        compressed_bytes=sum(e.compressed_size for e in entries),
    )
