from __future__ import annotations

import io
import os
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, BinaryIO, ClassVar

from resourcefs.exceptions import (
    Attempt,
    FilesystemError,
    InvalidOptionsError,
    IsADirectoryError,
    NotADirectoryError,
    NotEmptyError,
    NotFoundError,
    TraversalRejectedError,
    WriteToReadOnlyError,
)
from resourcefs.helpers import fsutil, hashutil
from resourcefs.helpers.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator

log = get_logger(__name__)


@dataclass(frozen=True)
class OpenOptions:
    """The ways in which a file can be opened.

    Mirrors the flags of ``os.open``: at least one of ``read``, ``write`` or ``append`` must be given.
    """

    read: bool = False
    write: bool = False
    create: bool = False
    append: bool = False
    truncate: bool = False

    READ: ClassVar[OpenOptions]
    CREATE: ClassVar[OpenOptions]

    def validate(self) -> None:
        """Check that the combination of options makes sense.

        Raises:
            InvalidOptionsError: If the combination is nonsensical.
        """
        if not (self.read or self.write or self.append):
            raise InvalidOptionsError(f"No access mode requested: {self}")

        if self.create and not (self.write or self.append):
            raise InvalidOptionsError(f"create requires write or append: {self}")

        if self.truncate and not self.write:
            raise InvalidOptionsError(f"truncate requires write: {self}")

        if self.truncate and self.append:
            raise InvalidOptionsError(f"truncate and append are mutually exclusive: {self}")

    def is_write(self) -> bool:
        """Whether any write-capable flag is requested."""
        return self.write or self.create or self.append or self.truncate

    def to_flags(self) -> int:
        """Return the matching ``os.open`` flags."""
        writing = self.write or self.append

        if self.read and writing:
            flags = os.O_RDWR
        elif writing:
            flags = os.O_WRONLY
        else:
            flags = os.O_RDONLY

        if self.create:
            flags |= os.O_CREAT
        if self.truncate:
            flags |= os.O_TRUNC
        if self.append:
            flags |= os.O_APPEND

        return flags | getattr(os, "O_BINARY", 0)

    def to_mode(self) -> str:
        """Return the binary file mode matching these options, for use with ``os.fdopen``."""
        if self.append:
            return "a+b" if self.read else "ab"
        if self.write:
            return "r+b" if self.read else "wb"
        return "rb"


OpenOptions.READ = OpenOptions(read=True)
OpenOptions.CREATE = OpenOptions(write=True, create=True, truncate=True)


@dataclass(frozen=True)
class Metadata:
    """Metadata of a filesystem entry. Never cached, every query goes to the backend."""

    is_file: bool
    is_dir: bool
    size: int


class Filesystem:
    """Base class for filesystem backends.

    All paths given to a filesystem are virtual paths: absolute, ``/`` separated and relative to the root of
    the backend. Backends implement :meth:`open_with_options`, :meth:`mkdir`, :meth:`rm`, :meth:`rmrf`,
    :meth:`exists`, :meth:`metadata` and :meth:`read_dir`.
    """

    __type__: str = None
    """A short string identifying the type of filesystem."""

    def __init__(self, readonly: bool = False) -> None:
        """The base initializer for the class.

        Args:
            readonly: Whether every mutating call on this filesystem must be rejected.

        Raises:
            NotImplementedError: When the internal ``__type__`` of the class is not defined.
        """
        self._readonly = readonly

        if self.__type__ is None:
            raise NotImplementedError(f"{self.__class__.__name__} must define __type__")

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}{' readonly' if self.readonly else ''}>"

    @property
    def readonly(self) -> bool:
        """Whether this filesystem rejects mutating calls."""
        return self._readonly

    def _check_writable(self, path: str) -> None:
        if self.readonly:
            raise WriteToReadOnlyError(f"Cannot modify {path} on read-only {self!r}")

    def open(self, path: str) -> BinaryIO:
        """Open a file for reading.

        Args:
            path: The virtual path of the file.

        Returns:
            A file-like object.

        Raises:
            NotFoundError: If the path does not exist on this filesystem.
        """
        return self.open_with_options(path, OpenOptions.READ)

    def open_with_options(self, path: str, options: OpenOptions) -> BinaryIO:
        """Open a file with the given :class:`OpenOptions`.

        Raises:
            InvalidOptionsError: If the combination of options is invalid.
            WriteToReadOnlyError: If a write-capable option is requested on a read-only filesystem.
        """
        raise NotImplementedError

    def create(self, path: str) -> BinaryIO:
        """Create a file, truncating it if it already exists, and open it for writing."""
        return self.open_with_options(path, OpenOptions.CREATE)

    def mkdir(self, path: str) -> None:
        """Create a directory, including any missing parents."""
        raise NotImplementedError

    def rm(self, path: str) -> None:
        """Remove a file or an empty directory.

        Raises:
            NotEmptyError: If ``path`` is a directory that is not empty.
        """
        raise NotImplementedError

    def rmrf(self, path: str) -> None:
        """Remove a file or a directory and all its contents. Does nothing if the path does not exist."""
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        """Determine whether ``path`` exists on this filesystem."""
        raise NotImplementedError

    def metadata(self, path: str) -> Metadata:
        """Retrieve the :class:`Metadata` of ``path``.

        Raises:
            NotFoundError: If the path does not exist on this filesystem.
        """
        raise NotImplementedError

    def read_dir(self, path: str) -> list[str]:
        """List the contents of a directory as absolute virtual paths.

        Returns an empty list if ``path`` does not exist or is not a directory.
        """
        raise NotImplementedError

    def is_file(self, path: str) -> bool:
        """Determine whether ``path`` is a file. Never raises."""
        try:
            return self.metadata(path).is_file
        except FilesystemError:
            return False

    def is_dir(self, path: str) -> bool:
        """Determine whether ``path`` is a directory. Never raises."""
        try:
            return self.metadata(path).is_dir
        except FilesystemError:
            return False

    def sha256(self, path: str) -> str:
        """Calculate the SHA-256 hex digest of the contents of the file at ``path``."""
        with self.open(path) as fh:
            return hashutil.sha256(fh)


class VirtualDirectory:
    """Virtual directory implementation. Backed by a dict."""

    def __init__(self):
        self.entries: dict[str, VirtualDirectory | VirtualFile] = {}

    def __contains__(self, item: str) -> bool:
        return item in self.entries

    def __getitem__(self, item: str) -> VirtualDirectory | VirtualFile:
        return self.entries[item]


class VirtualFile:
    """Virtual file backed by a bytes object."""

    def __init__(self, data: bytes = b""):
        self.data = bytes(data)

    @property
    def size(self) -> int:
        return len(self.data)


class VirtualFileHandle(io.BytesIO):
    """An open handle on a :class:`VirtualFile`.

    Every handle works on its own copy of the contents. Written data is committed back to the file on
    :meth:`flush` and :meth:`close`.
    """

    def __init__(self, file: VirtualFile, options: OpenOptions):
        super().__init__(b"" if options.truncate else file.data)
        self.file = file
        self._readable = options.read
        self._writable = options.write or options.append
        self._append = options.append

        if self._append:
            self.seek(0, io.SEEK_END)

    def readable(self) -> bool:
        return self._readable

    def writable(self) -> bool:
        return self._writable

    def read(self, size: int | None = -1) -> bytes:
        if not self._readable:
            raise io.UnsupportedOperation("File not open for reading")
        return super().read(size)

    def readinto(self, b: bytearray) -> int:
        if not self._readable:
            raise io.UnsupportedOperation("File not open for reading")
        return super().readinto(b)

    def write(self, b: bytes) -> int:
        if not self._writable:
            raise io.UnsupportedOperation("File not open for writing")
        if self._append:
            self.seek(0, io.SEEK_END)
        return super().write(b)

    def flush(self) -> None:
        super().flush()
        if self._writable and not self.closed:
            self.file.data = self.getvalue()

    def close(self) -> None:
        if not self.closed:
            self.flush()
        super().close()


class VirtualFilesystem(Filesystem):
    """In-memory filesystem backend."""

    __type__ = "virtual"

    def __init__(self, readonly: bool = False, name: str | None = None):
        super().__init__(readonly)
        self.name = name
        self.root = VirtualDirectory()

    def __repr__(self) -> str:
        name = f" {self.name}" if self.name else ""
        return f"<{self.__class__.__name__}{name}{' readonly' if self.readonly else ''}>"

    def _lookup(self, parts: list[str]) -> VirtualDirectory | VirtualFile | None:
        entry = self.root
        for part in parts:
            if not isinstance(entry, VirtualDirectory) or part not in entry:
                return None
            entry = entry[part]
        return entry

    def _get_directory(self, parts: list[str], path: str) -> VirtualDirectory:
        entry = self._lookup(parts)
        if entry is None:
            raise NotFoundError(path)
        if not isinstance(entry, VirtualDirectory):
            raise NotADirectoryError(f"'{fsutil.join(*parts)}' is not a directory")
        return entry

    def makedirs(self, path: str) -> VirtualDirectory:
        """Create virtual directories from the given path, ignoring the read-only flag."""
        directory = self.root

        for part in fsutil.parts(path):
            if part not in directory:
                directory.entries[part] = VirtualDirectory()

            directory = directory[part]
            if not isinstance(directory, VirtualDirectory):
                raise NotADirectoryError(f"Cannot create directory {path}: {part} is a file")

        return directory

    def map_file_bytes(self, path: str, data: bytes) -> None:
        """Map a blob of bytes into the filesystem, ignoring the read-only flag.

        Any missing parent directories will be created.
        """
        parts = fsutil.parts(path)
        if not parts:
            raise IsADirectoryError(f"Can't map a file onto the root directory: {path}")

        directory = self.makedirs(fsutil.join(*parts[:-1]))
        directory.entries[parts[-1]] = VirtualFile(data)

    def map_file_fh(self, path: str, fh: BinaryIO) -> None:
        """Map the full contents of a file handle into the filesystem."""
        fh.seek(0)
        self.map_file_bytes(path, fh.read())

    def open_with_options(self, path: str, options: OpenOptions) -> BinaryIO:
        options.validate()
        if options.is_write():
            self._check_writable(path)

        parts = fsutil.parts(path)
        if not parts:
            raise IsADirectoryError(f"{path} is a directory")

        entry = self._lookup(parts)
        if entry is None:
            if not options.create:
                raise NotFoundError(path)

            directory = self._get_directory(parts[:-1], path)
            entry = directory.entries[parts[-1]] = VirtualFile()
        elif isinstance(entry, VirtualDirectory):
            raise IsADirectoryError(f"{path} is a directory")

        return VirtualFileHandle(entry, options)

    def mkdir(self, path: str) -> None:
        self._check_writable(path)
        self.makedirs(path)

    def rm(self, path: str) -> None:
        self._check_writable(path)

        parts = fsutil.parts(path)
        if not parts:
            raise TraversalRejectedError(f"Cannot remove the root of {self!r}")

        entry = self._lookup(parts)
        if entry is None:
            raise NotFoundError(path)
        if isinstance(entry, VirtualDirectory) and entry.entries:
            raise NotEmptyError(f"Directory not empty: {path}")

        del self._get_directory(parts[:-1], path).entries[parts[-1]]

    def rmrf(self, path: str) -> None:
        self._check_writable(path)

        parts = fsutil.parts(path)
        if not parts:
            self.root.entries.clear()
            return

        if self._lookup(parts) is not None:
            del self._get_directory(parts[:-1], path).entries[parts[-1]]

    def exists(self, path: str) -> bool:
        return self._lookup(fsutil.parts(path)) is not None

    def metadata(self, path: str) -> Metadata:
        entry = self._lookup(fsutil.parts(path))
        if entry is None:
            raise NotFoundError(path)
        if isinstance(entry, VirtualDirectory):
            return Metadata(is_file=False, is_dir=True, size=0)
        return Metadata(is_file=True, is_dir=False, size=entry.size)

    def read_dir(self, path: str) -> list[str]:
        parts = fsutil.parts(path)
        entry = self._lookup(parts)
        if not isinstance(entry, VirtualDirectory):
            return []
        return [fsutil.join(*parts, name) for name in entry.entries]


class OverlayFilesystem(Filesystem):
    """An ordered stack of filesystems presented as one namespace.

    The first layer has the highest priority. Lookups try every layer in order and return the first success,
    directory listings are merged across all layers, and writes only ever go to the first layer.
    Layers can be added to the front or the back, but never removed.
    """

    __type__ = "overlay"

    def __init__(self, layers: list[Filesystem] | None = None):
        self.layers: list[Filesystem] = []
        super().__init__()

        for layer in layers or []:
            self.push_back(layer)

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} layers={len(self.layers)}>"

    @property
    def readonly(self) -> bool:
        """An overlay is as writable as its first layer."""
        return not self.layers or self.layers[0].readonly

    def push_front(self, fs: Filesystem) -> None:
        """Add a filesystem with the highest priority, it will be checked first."""
        log.debug("Adding %r to the front of %r", fs, self)
        self.layers.insert(0, fs)

    def push_back(self, fs: Filesystem) -> None:
        """Add a filesystem with the lowest priority, it will be checked last."""
        log.debug("Adding %r to the back of %r", fs, self)
        self.layers.append(fs)

    def roots(self) -> Iterator[Filesystem]:
        """Iterate over the layers in order of precedence."""
        yield from self.layers

    def _resolve(self, path: str, func: str, *args, **kwargs) -> Any:
        """Execute ``func`` on every layer until one succeeds.

        Raises:
            NotFoundError: With one attempt per layer, if no layer succeeded.
        """
        attempts = []

        for layer in self.layers:
            try:
                return getattr(layer, func)(path, *args, **kwargs)
            except FilesystemError as e:  # noqa: PERF203
                log.trace("%r::%s(%r) failed: %r", layer, func, path, e)
                attempts.append(Attempt(repr(layer), e))

        raise NotFoundError(path, attempts)

    def _front(self, path: str) -> Filesystem:
        if not self.layers:
            raise FilesystemError(f"No filesystem mounted in {self!r} to write {path}")
        return self.layers[0]

    def open_with_options(self, path: str, options: OpenOptions) -> BinaryIO:
        log.debug("%r::open_with_options(%r, %r)", self, path, options)
        options.validate()

        if options.is_write():
            return self._front(path).open_with_options(path, options)
        return self._resolve(path, "open_with_options", options)

    def mkdir(self, path: str) -> None:
        self._front(path).mkdir(path)

    def rm(self, path: str) -> None:
        self._front(path).rm(path)

    def rmrf(self, path: str) -> None:
        self._front(path).rmrf(path)

    def exists(self, path: str) -> bool:
        for layer in self.layers:
            try:
                if layer.exists(path):
                    return True
            except FilesystemError as e:  # noqa: PERF203
                log.trace("%r::exists(%r) failed: %r", layer, path, e)
        return False

    def metadata(self, path: str) -> Metadata:
        return self._resolve(path, "metadata")

    def read_dir(self, path: str) -> list[str]:
        """List a directory as the union of that directory in every layer.

        Entries of a layer with a higher priority shadow entries with the same path in layers with a lower
        priority.

        Raises:
            NotFoundError: If none of the layers has a directory at ``path``.
        """
        attempts = []
        found = False
        result = {}

        for layer in self.layers:
            try:
                if not layer.metadata(path).is_dir:
                    raise NotADirectoryError(f"'{path}' is not a directory")

                for entry in layer.read_dir(path):
                    result.setdefault(entry, layer)
                found = True
            except FilesystemError as e:  # noqa: PERF203
                log.trace("%r::read_dir(%r) failed: %r", layer, path, e)
                attempts.append(Attempt(repr(layer), e))

        if not found:
            raise NotFoundError(path, attempts)

        return list(result)
