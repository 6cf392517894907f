"""Command line front end.

Sub-commands:
  create   ARCHIVE SOURCE      archive a file or directory
  list     ARCHIVE             list entries (sizes measured by decoding)
  add      ARCHIVE FILE...     add files under their basenames
  remove   ARCHIVE NAME...     remove entries by name
  extract  ARCHIVE OUTDIR      extract everything
  level    ARCHIVE LEVEL       rewrite with a new compression level (0-9)
  menu                         interactive numbered menu
"""

from __future__ import annotations

import argparse
import logging
import sys
from enum import Enum
from typing import Callable, List, Optional, Sequence

from . import __version__
from .engine import Notice, NoticeKind, ZipFileManager
from .errors import ArchiveError, PathNotFound, WrongArchiveFile, WrongCompressionLevel
from .format import DEFAULT_LEVEL
from .inspector import summary

logger = logging.getLogger(__name__)

NOTICE_TEXT = {
    NoticeKind.ADDED: "File '{path}' added to archive.",
    NoticeKind.REMOVED: "File '{name}' removed from archive.",
    NoticeKind.ALREADY_EXISTS: "File '{path}' already exists in archive.",
    NoticeKind.EXTRACTED: "  - {name}",
}


def format_notice(n: Notice) -> str:
    return NOTICE_TEXT[n.kind].format(name=n.name, path=n.path or n.name)

def print_notices(notices: List[Notice], kinds: Sequence[NoticeKind]) -> None:
    for n in notices:
        if n.kind in kinds:
            print(format_notice(n))

def manager_for(args: argparse.Namespace) -> ZipFileManager:
    return ZipFileManager(args.archive, level=args.level, tmp_dir=args.tmp_dir)


# -----------------------------
# Commands
# -----------------------------
def cmd_create(args: argparse.Namespace) -> None:
    notices = manager_for(args).create_zip(args.source)
    print(f"OK: wrote {args.archive} ({len(notices)} file(s))")

def cmd_list(args: argparse.Namespace) -> None:
    entries = manager_for(args).get_files_list()
    print(f"{args.archive}: {len(entries)} file(s)")
    for e in entries:
        print(f"{e.uncompressed_size:12d} {e.compressed_size:12d}  {e.compression_method.name.lower():9s} {e.name}")
    s = summary(entries)
    print(f"  raw_sum={s.raw_bytes} compressed_sum={s.compressed_bytes} ratio={s.ratio:.4f}")

def cmd_add(args: argparse.Namespace) -> None:
    notices = manager_for(args).add_files(args.files)
    print_notices(notices, (NoticeKind.ADDED, NoticeKind.ALREADY_EXISTS))

def cmd_remove(args: argparse.Namespace) -> None:
    notices = manager_for(args).remove_files(args.names)
    print_notices(notices, (NoticeKind.REMOVED,))
    print(f"OK: removed {len(notices)} entr{'y' if len(notices) == 1 else 'ies'}")

def cmd_extract(args: argparse.Namespace) -> None:
    notices = manager_for(args).extract_all(args.outdir)
    if args.verbose:
        print_notices(notices, (NoticeKind.EXTRACTED,))
    print(f"OK: extracted {len(notices)} file(s) to {args.outdir}")

def cmd_level(args: argparse.Namespace) -> None:
    manager_for(args).change_compression_level(args.new_level)
    print(f"OK: {args.archive} rewritten at level {args.new_level}")


# -----------------------------
# Interactive menu
# -----------------------------
class Operation(Enum):
    CREATE = 1
    ADD = 2
    REMOVE = 3
    EXTRACT = 4
    CONTENT = 5
    CHANGE_LEVEL = 6
    EXIT = 7


def ask(prompt: str, reader: Callable[[str], str] = input) -> str:
    return reader(prompt + " ").strip()

def ask_operation(reader: Callable[[str], str] = input) -> Operation:
    print("Choose an operation:")
    for op in Operation:
        print(f"  {op.value} - {op.name.lower().replace('_', ' ')}")
    while True:
        raw = ask(">", reader)
        try:
            return Operation(int(raw))
        except ValueError:
            print(f"Unknown operation {raw!r}")

def run_menu(args: argparse.Namespace, reader: Callable[[str], str] = input) -> None:
    while True:
        op = ask_operation(reader)
        if op is Operation.EXIT:
            print("Bye.")
            return
        mgr = ZipFileManager(ask("Archive path:", reader), level=args.level, tmp_dir=args.tmp_dir)
        try:
            if op is Operation.CREATE:
                mgr.create_zip(ask("File or directory to archive:", reader))
                print("Archive created.")
            elif op is Operation.ADD:
                print_notices(mgr.add_file(ask("File to add:", reader)),
                              (NoticeKind.ADDED, NoticeKind.ALREADY_EXISTS))
            elif op is Operation.REMOVE:
                print_notices(mgr.remove_file(ask("Entry name to remove:", reader)), (NoticeKind.REMOVED,))
                print("Removal finished.")
            elif op is Operation.EXTRACT:
                mgr.extract_all(ask("Destination folder:", reader))
                print("Archive extracted.")
            elif op is Operation.CONTENT:
                for e in mgr.get_files_list():
                    print(f"{e.name}  {e.uncompressed_size} -> {e.compressed_size} ({e.compression_method.name.lower()})")
            elif op is Operation.CHANGE_LEVEL:
                raw = ask("New compression level (0-9):", reader)
                try:
                    level = int(raw)
                except ValueError:
                    raise WrongCompressionLevel(f"compression level {raw!r} not in [0, 9]") from None
                mgr.change_compression_level(level)
                print("Compression level changed.")
        except PathNotFound as e:
            print(f"Wrong file or directory name: {e}")
        except WrongArchiveFile as e:
            print(f"Wrong archive file: {e}")
        except WrongCompressionLevel as e:
            print(f"Unsupported compression level: {e}")
        except (ArchiveError, OSError) as e:
            print(f"ERROR: {e}")

def cmd_menu(args: argparse.Namespace) -> None:
    try:
        run_menu(args)
    except EOFError:
        print()


def build_argparser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="zipman", description="Create, inspect and rewrite ZIP archives.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging and per-entry output")
    ap.add_argument("--level", type=int, default=DEFAULT_LEVEL,
                    help=f"compression level for newly written archives (0-9, default {DEFAULT_LEVEL})")
    ap.add_argument("--tmp-dir", default=None,
                    help="directory for the temporary rewrite file (default: next to the archive)")
    sub = ap.add_subparsers(dest="cmd", required=True)

    pc = sub.add_parser("create", help="create archive from a file or directory")
    pc.add_argument("archive")
    pc.add_argument("source")
    pc.set_defaults(func=cmd_create)

    pl = sub.add_parser("list", help="list entries")
    pl.add_argument("archive")
    pl.set_defaults(func=cmd_list)

    pa = sub.add_parser("add", help="add files")
    pa.add_argument("archive")
    pa.add_argument("files", nargs="+")
    pa.set_defaults(func=cmd_add)

    pr = sub.add_parser("remove", help="remove entries")
    pr.add_argument("archive")
    pr.add_argument("names", nargs="+")
    pr.set_defaults(func=cmd_remove)

    px = sub.add_parser("extract", help="extract all entries")
    px.add_argument("archive")
    px.add_argument("outdir")
    px.set_defaults(func=cmd_extract)

    pv = sub.add_parser("level", help="change compression level")
    pv.add_argument("archive")
    pv.add_argument("new_level", type=int)
    pv.set_defaults(func=cmd_level)

    pm = sub.add_parser("menu", help="interactive menu")
    pm.set_defaults(func=cmd_menu)

    return ap

def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_argparser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        args.func(args)
    except (ArchiveError, OSError) as e:
        logger.debug("command %s failed", args.cmd, exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    return 0
