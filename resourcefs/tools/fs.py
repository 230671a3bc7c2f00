#!/usr/bin/env python
from __future__ import annotations

import argparse
import logging
import shutil
import sys
from typing import TYPE_CHECKING

from resourcefs.exceptions import FilesystemError
from resourcefs.helpers import fsutil
from resourcefs.tools.utils import (
    catch_sigpipe,
    configure_filesystem_arguments,
    configure_generic_arguments,
    open_filesystem,
    process_generic_arguments,
)

if TYPE_CHECKING:
    from resourcefs.appfs import AppFilesystem
    from resourcefs.filesystem import Filesystem

log = logging.getLogger(__name__)
logging.lastResort = None
logging.raiseExceptions = False


def _namespace(app: AppFilesystem, args: argparse.Namespace) -> Filesystem:
    return app.user if args.user else app.resources


def ls(app: AppFilesystem, path: str, args: argparse.Namespace) -> None:
    fs = _namespace(app, args)

    if not fs.is_dir(path):
        print(path)
        return

    for entry in sorted(fs.read_dir(path)):
        name = fsutil.basename(entry)
        print(f"{name}/" if fs.is_dir(entry) else name)


def cat(app: AppFilesystem, path: str, args: argparse.Namespace) -> None:
    stdout = sys.stdout
    if hasattr(stdout, "buffer"):
        stdout = stdout.buffer

    with _namespace(app, args).open(path) as fh:
        shutil.copyfileobj(fh, stdout)
    stdout.flush()


def stat(app: AppFilesystem, path: str, args: argparse.Namespace) -> None:
    metadata = _namespace(app, args).metadata(path)
    print(f"  Path: {path}")
    print(f"  Type: {'directory' if metadata.is_dir else 'file'}")
    print(f"  Size: {metadata.size}")


def dump(app: AppFilesystem, path: str | None, args: argparse.Namespace) -> None:
    print(app.dump(), end="")


@catch_sigpipe
def main() -> int:
    help_formatter = argparse.ArgumentDefaultsHelpFormatter
    parser = argparse.ArgumentParser(
        description="resourcefs",
        fromfile_prefix_chars="@",
        formatter_class=help_formatter,
    )

    baseparser = argparse.ArgumentParser(add_help=False)
    baseparser.add_argument("path", help="virtual path to perform an action on", metavar="PATH")
    baseparser.add_argument("--user", action="store_true", help="use the user data namespace instead of resources")

    subparsers = parser.add_subparsers(dest="subcommand", help="subcommands for performing various actions")

    parser_ls = subparsers.add_parser("ls", help="show a merged directory listing", parents=[baseparser])
    parser_ls.set_defaults(handler=ls)

    parser_cat = subparsers.add_parser("cat", help="dump file contents", parents=[baseparser])
    parser_cat.set_defaults(handler=cat)

    parser_stat = subparsers.add_parser("stat", help="display file status", parents=[baseparser])
    parser_stat.set_defaults(handler=stat)

    parser_dump = subparsers.add_parser("dump", help="list every mounted location and its top level entries")
    parser_dump.set_defaults(handler=dump, path=None, user=False)

    configure_filesystem_arguments(parser)
    configure_generic_arguments(parser)

    args = parser.parse_args()
    cfg = process_generic_arguments(args)

    if args.subcommand is None:
        parser.error("No subcommand specified")

    try:
        app = open_filesystem(args, cfg)

        if args.path is not None and not _namespace(app, args).exists(args.path):
            print("[!] Path doesn't exist")
            return 1

        args.handler(app, args.path, args)
    except FilesystemError as e:
        log.error(e)  # noqa: TRY400
        log.debug("", exc_info=e)
        return 1

    return 0


if __name__ == "__main__":
    main()
