"""The filesystem of an application: read-only resources and a writable user data directory.

Resources are looked up in, in order of precedence:

- any directory, archive or filesystem mounted with :meth:`AppFilesystem.mount`,
  :meth:`AppFilesystem.mount_archive` or :meth:`AppFilesystem.mount_fs`, the last one mounted first,
- the ``resources`` directory next to the running program,
- the ``resources.zip`` archive next to the running program, if any.

User data lives in the platform specific data directory of the application, as given by ``platformdirs``.
"""

from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import platformdirs

from resourcefs.exceptions import FilesystemError
from resourcefs.filesystem import Filesystem, Metadata, OpenOptions, OverlayFilesystem
from resourcefs.filesystems.dir import DirectoryFilesystem
from resourcefs.filesystems.zip import ZipFilesystem
from resourcefs.helpers.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

log = get_logger(__name__)

RESOURCES_DIR = "resources"
RESOURCES_ZIP = "resources.zip"


def default_app_root() -> Path:
    """Return the directory of the running program."""
    if sys.argv and sys.argv[0]:
        return Path(sys.argv[0]).absolute().parent
    return Path.cwd()


def resolve_user_data_dir(app_id: str, author: str = "") -> Path:
    """Resolve the platform specific data directory of an application.

    Raises:
        FilesystemError: If no application id is given or the platform lookup fails.
    """
    if not app_id:
        raise FilesystemError("An application id is required to resolve the user data directory")

    try:
        path = platformdirs.user_data_dir(app_id, author or False)
    except Exception as e:
        raise FilesystemError(f"Unable to resolve the user data directory of {app_id!r}", cause=e) from e

    if not path:
        raise FilesystemError(f"Unable to resolve the user data directory of {app_id!r}")

    return Path(path)


class AppFilesystem:
    """The resource and user data namespaces of one application.

    Args:
        app_id: The application identifier, used to resolve the user data directory.
        author: The application author, used by some platforms to resolve the user data directory.
        app_root: The directory containing the ``resources`` directory and ``resources.zip``.
                  Defaults to the directory of the running program.
        user_data_dir: Use this directory for user data instead of the platform default.
    """

    def __init__(
        self,
        app_id: str,
        author: str = "",
        app_root: Path | str | None = None,
        user_data_dir: Path | str | None = None,
    ):
        if not app_id:
            raise FilesystemError("An application id is required")

        self.app_id = app_id
        self.author = author
        self.app_root = Path(app_root) if app_root is not None else default_app_root()
        self.user_data_dir = (
            Path(user_data_dir) if user_data_dir is not None else resolve_user_data_dir(app_id, author)
        )

        self.resources = OverlayFilesystem()
        self.user = OverlayFilesystem()

        resources_path = self.app_root.joinpath(RESOURCES_DIR)
        log.trace("Resources path: %s", resources_path)
        self.resources.push_back(DirectoryFilesystem(resources_path, readonly=True))

        resources_zip = self.app_root.joinpath(RESOURCES_ZIP)
        if resources_zip.is_file():
            log.trace("Resources zip file: %s", resources_zip)
            self.resources.push_back(ZipFilesystem.from_path(resources_zip))
        else:
            log.trace("No resources zip file found at %s", resources_zip)

        log.trace("User data path: %s", self.user_data_dir)
        self.user.push_back(DirectoryFilesystem(self.user_data_dir))

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.app_id}>"

    # Resources

    def open(self, path: str) -> BinaryIO:
        """Open a resource for reading."""
        return self.resources.open(path)

    def exists(self, path: str) -> bool:
        return self.resources.exists(path)

    def is_file(self, path: str) -> bool:
        return self.resources.is_file(path)

    def is_dir(self, path: str) -> bool:
        return self.resources.is_dir(path)

    def metadata(self, path: str) -> Metadata:
        return self.resources.metadata(path)

    def read_dir(self, path: str) -> list[str]:
        """List a resource directory, merged across all resource locations."""
        return self.resources.read_dir(path)

    def sha256(self, path: str) -> str:
        return self.resources.sha256(path)

    # User data

    def user_open(self, path: str) -> BinaryIO:
        """Open a file in the user data directory for reading."""
        return self.user.open(path)

    def open_options(self, path: str, options: OpenOptions) -> BinaryIO:
        """Open a file in the user data directory with the given :class:`OpenOptions`."""
        return self.user.open_with_options(path, options)

    def user_create(self, path: str) -> BinaryIO:
        """Create a file in the user data directory and open it for writing, truncating it if it exists."""
        return self.user.create(path)

    def user_create_dir(self, path: str) -> None:
        """Create a directory in the user data directory, including any missing parents."""
        self.user.mkdir(path)

    def user_delete(self, path: str) -> None:
        """Delete a file or an empty directory from the user data directory."""
        self.user.rm(path)

    def user_delete_dir(self, path: str) -> None:
        """Delete a directory and all its contents from the user data directory."""
        self.user.rmrf(path)

    def user_exists(self, path: str) -> bool:
        return self.user.exists(path)

    def user_is_file(self, path: str) -> bool:
        return self.user.is_file(path)

    def user_is_dir(self, path: str) -> bool:
        return self.user.is_dir(path)

    def user_metadata(self, path: str) -> Metadata:
        return self.user.metadata(path)

    def user_read_dir(self, path: str) -> list[str]:
        return self.user.read_dir(path)

    # Mounting

    def mount(self, path: Path | str, readonly: bool = True) -> DirectoryFilesystem:
        """Mount a host directory as a resource location with the highest precedence."""
        fs = DirectoryFilesystem(path, readonly=readonly)
        log.trace("Mounting new path: %r", fs)
        self.resources.push_front(fs)
        return fs

    def mount_archive(self, source: Path | str | bytes) -> ZipFilesystem:
        """Mount a zip archive, given by its path or its contents, with the highest precedence."""
        if isinstance(source, (bytes, bytearray, memoryview)):
            fs = ZipFilesystem.from_bytes(bytes(source))
        else:
            fs = ZipFilesystem.from_path(source)

        log.trace("Mounting new archive: %r", fs)
        self.resources.push_front(fs)
        return fs

    def mount_fs(self, fs: Filesystem) -> Filesystem:
        """Mount any filesystem as a resource location with the highest precedence."""
        log.trace("Mounting new filesystem: %r", fs)
        self.resources.push_front(fs)
        return fs

    # Diagnostics

    def _describe(self, overlay: OverlayFilesystem) -> Iterator[str]:
        for fs in overlay.roots():
            try:
                entries = fs.read_dir("/")
            except FilesystemError as e:
                yield f"Source {fs!r}: could not read source: {e!r}"
                continue

            yield f"Source {fs!r}"
            for entry in entries:
                yield f"  {entry}"

    def dump(self) -> str:
        """Describe every backend of both namespaces together with its top level entries."""
        buf = io.StringIO()

        buf.write("Resources:\n")
        for line in self._describe(self.resources):
            buf.write(f"{line}\n")

        buf.write("User data:\n")
        for line in self._describe(self.user):
            buf.write(f"{line}\n")

        return buf.getvalue()

    def print_all(self) -> None:
        """Print the contents of all data locations to stdout."""
        print(self.dump())

    def log_all(self) -> None:
        """Log the contents of all data locations at ``INFO`` level."""
        log.info("%s", self.dump())
