from __future__ import annotations

import argparse
import errno
import os
import sys
from functools import wraps
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import TYPE_CHECKING, Callable

from resourcefs.appfs import AppFilesystem
from resourcefs.exceptions import FilesystemError
from resourcefs.helpers import config
from resourcefs.tools.logging import configure_logging

if TYPE_CHECKING:
    from types import ModuleType


def configure_generic_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-v", "--verbose", action="count", default=0, help="increase output verbosity")
    parser.add_argument("--version", action="store_true", help="print version")
    parser.add_argument("-q", "--quiet", action="store_true", help="do not output logging information")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path.cwd(),
        help=f"directory to start searching for a {config.CONFIG_NAME} configuration file",
    )


def configure_filesystem_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--app-id", help="application identifier, used to locate the user data directory")
    parser.add_argument("--author", help="application author, used to locate the user data directory on some platforms")
    parser.add_argument("--app-root", type=Path, help="directory containing the default resources locations")
    parser.add_argument("--user-data", type=Path, help="use this user data directory instead of the platform default")
    parser.add_argument(
        "--mount",
        action="append",
        type=Path,
        default=[],
        help="mount an extra resource directory (can be given multiple times)",
    )
    parser.add_argument(
        "--archive",
        action="append",
        type=Path,
        default=[],
        help="mount an extra resource zip archive (can be given multiple times)",
    )


def process_generic_arguments(args: argparse.Namespace) -> ModuleType:
    """Configure logging, handle ``--version`` and load the configuration file."""
    configure_logging(args.verbose, args.quiet)

    if args.version:
        try:
            print("resourcefs version " + version("resourcefs"))
        except PackageNotFoundError:
            print("unable to determine version")
        sys.exit(0)

    return config.load(args.config)


def open_filesystem(args: argparse.Namespace, cfg: ModuleType) -> AppFilesystem:
    """Create an :class:`AppFilesystem` from command line arguments, falling back to the configuration file.

    Raises:
        FilesystemError: If no application id is known or a location can not be mounted.
    """
    app_id = args.app_id or cfg.APP_ID
    if not app_id:
        raise FilesystemError(f"No application id given, use --app-id or set APP_ID in {config.CONFIG_NAME}")

    user_data = args.user_data or cfg.USER_DATA_DIR
    fs = AppFilesystem(
        app_id,
        args.author if args.author is not None else cfg.AUTHOR,
        app_root=args.app_root,
        user_data_dir=user_data,
    )

    # Later mounts take precedence, so command line locations go last
    for path in config.resource_paths(cfg) + args.mount:
        fs.mount(path)

    for path in args.archive:
        fs.mount_archive(path)

    return fs


def catch_sigpipe(func: Callable) -> Callable:
    """Catches ``KeyboardInterrupt`` and ``BrokenPipeError`` (``OSError 22`` on Windows)."""

    @wraps(func)
    def wrapper(*args, **kwargs) -> int:
        try:
            return func(*args, **kwargs)
        except KeyboardInterrupt:
            print("Aborted!", file=sys.stderr)
            return 1
        except OSError as e:
            # Only catch BrokenPipeError or OSError 22
            if e.errno in (errno.EPIPE, errno.EINVAL):
                devnull = os.open(os.devnull, os.O_WRONLY)
                os.dup2(devnull, sys.stdout.fileno())
                return 1
            # Raise other exceptions
            raise

    return wrapper
