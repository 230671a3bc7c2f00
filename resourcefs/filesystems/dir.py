from __future__ import annotations

import errno
import os
import shutil
import stat
from pathlib import Path
from typing import BinaryIO

from resourcefs.exceptions import (
    FilesystemError,
    IOFaultError,
    IsADirectoryError,
    NotADirectoryError,
    NotEmptyError,
    NotFoundError,
    TraversalRejectedError,
)
from resourcefs.filesystem import Filesystem, Metadata, OpenOptions
from resourcefs.helpers import fsutil
from resourcefs.helpers.logging import BackendLogAdapter, get_logger

log = get_logger(__name__)


class DirectoryFilesystem(Filesystem):
    """Filesystem backend that maps virtual paths onto a directory of the host.

    The directory does not have to exist when the backend is created. It is created on demand by the first
    write-capable open or :meth:`mkdir`.
    """

    __type__ = "dir"

    def __init__(self, path: Path | str, readonly: bool = False):
        super().__init__(readonly)
        self.base_path = Path(path)
        self.log = BackendLogAdapter(log, {"backend": self})

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.base_path}{' readonly' if self.readonly else ''}>"

    def _resolve_path(self, path: str) -> Path:
        return self.base_path.joinpath(*fsutil.parts(path))

    def _translate(self, path: str, real_path: Path, exc: OSError) -> FilesystemError:
        if exc.errno in (errno.ENOENT, errno.ENOTDIR):
            return NotFoundError(path)
        if exc.errno == errno.EISDIR:
            return IsADirectoryError(f"{path} is a directory")
        if exc.errno == errno.ENOTEMPTY:
            return NotEmptyError(f"Directory not empty: {path}")
        return IOFaultError(path, str(real_path), cause=exc)

    def _ensure_root(self) -> None:
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise IOFaultError("/", str(self.base_path), cause=e) from e

    def open_with_options(self, path: str, options: OpenOptions) -> BinaryIO:
        options.validate()
        if options.is_write():
            self._check_writable(path)

        entry = self._resolve_path(path)
        self.log.trace("open_with_options(%r, %r) -> %s", path, options, entry)

        if entry.is_dir():
            raise IsADirectoryError(f"{path} is a directory")

        if options.is_write():
            self._ensure_root()

        try:
            fd = os.open(entry, options.to_flags(), 0o666)
        except OSError as e:
            raise self._translate(path, entry, e) from e

        try:
            return os.fdopen(fd, options.to_mode())
        except OSError as e:
            os.close(fd)
            raise IOFaultError(path, str(entry), cause=e) from e

    def mkdir(self, path: str) -> None:
        self._check_writable(path)
        entry = self._resolve_path(path)
        self.log.trace("mkdir(%r) -> %s", path, entry)

        try:
            entry.mkdir(parents=True, exist_ok=True)
        except FileExistsError as e:
            raise NotADirectoryError(f"Cannot create directory {path}: a file is in the way") from e
        except OSError as e:
            raise self._translate(path, entry, e) from e

    def rm(self, path: str) -> None:
        self._check_writable(path)
        if fsutil.is_root(path):
            raise TraversalRejectedError(f"Cannot remove the root of {self!r}")

        entry = self._resolve_path(path)
        self.log.trace("rm(%r) -> %s", path, entry)

        try:
            if entry.is_dir() and not entry.is_symlink():
                entry.rmdir()
            else:
                entry.unlink()
        except OSError as e:
            raise self._translate(path, entry, e) from e

    def rmrf(self, path: str) -> None:
        self._check_writable(path)
        entry = self._resolve_path(path)
        self.log.trace("rmrf(%r) -> %s", path, entry)

        try:
            if fsutil.is_root(path):
                if entry.is_dir():
                    for child in entry.iterdir():
                        _remove_tree(child)
            elif os.path.lexists(entry):
                _remove_tree(entry)
        except OSError as e:
            raise self._translate(path, entry, e) from e

    def exists(self, path: str) -> bool:
        entry = self._resolve_path(path)
        try:
            return entry.exists()
        except OSError as e:
            raise self._translate(path, entry, e) from e

    def metadata(self, path: str) -> Metadata:
        entry = self._resolve_path(path)
        try:
            st = entry.stat()
        except OSError as e:
            raise self._translate(path, entry, e) from e

        return Metadata(is_file=stat.S_ISREG(st.st_mode), is_dir=stat.S_ISDIR(st.st_mode), size=st.st_size)

    def read_dir(self, path: str) -> list[str]:
        parts = fsutil.parts(path)
        entry = self.base_path.joinpath(*parts)

        try:
            if not entry.is_dir():
                return []
            return [fsutil.join(*parts, name) for name in sorted(os.listdir(entry))]
        except OSError as e:
            raise self._translate(path, entry, e) from e


def _remove_tree(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink()
