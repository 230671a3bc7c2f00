from __future__ import annotations

import itertools
import os
import threading
from pathlib import Path
from typing import TYPE_CHECKING

from resourcefs.appfs import AppFilesystem
from resourcefs.exceptions import ContextError
from resourcefs.helpers.logging import get_logger

if TYPE_CHECKING:
    from types import TracebackType

log = get_logger(__name__)

# Set RESOURCEFS_DEBUG_CHECKS=0 to disable ownership checks
DEBUG_CHECKS = os.getenv("RESOURCEFS_DEBUG_CHECKS", "1") != "0"

_debug_id_counter = itertools.count()
_context_lock = threading.Lock()


class DebugId:
    """A token identifying the :class:`Context` that created a resource.

    Every :class:`Context` draws a new token from a process wide counter. Resources that must only be used
    with the context that created them keep a copy and verify it with :meth:`assert_owner`.
    """

    __slots__ = ("value",)

    def __init__(self, value: int | None = None):
        self.value = next(_debug_id_counter) if value is None else value

    def __repr__(self) -> str:
        return f"<DebugId {self.value}>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, DebugId):
            return NotImplemented
        return self.value == other.value

    def __hash__(self) -> int:
        return hash(self.value)

    @classmethod
    def get(cls, ctx: Context) -> DebugId:
        """Copy the token of a context."""
        return cls(ctx.debug_id.value)

    def assert_owner(self, ctx: Context) -> None:
        """Verify that this token belongs to ``ctx``.

        Raises:
            ContextError: If the token was issued by another context.
        """
        if DEBUG_CHECKS and self != ctx.debug_id:
            raise ContextError(f"Tried to use a resource of {self!r} with a Context that did not create it: {ctx!r}")


class Context:
    """Holds the resources of a running application.

    Only one context can exist at a time. Close it, or leave its ``with`` block, before creating a new one.
    """

    _active: Context | None = None

    def __init__(self, filesystem: AppFilesystem):
        with _context_lock:
            if Context._active is not None:
                raise ContextError(f"A Context already exists: {Context._active!r}")
            Context._active = self

        self.filesystem = filesystem
        self.debug_id = DebugId()
        self.closed = False
        log.debug("Created %r", self)

    def __repr__(self) -> str:
        return f"<Context {self.filesystem.app_id} id={self.debug_id.value}>"

    def __enter__(self) -> Context:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    @classmethod
    def active(cls) -> Context | None:
        """Return the live context, if any."""
        return cls._active

    def close(self) -> None:
        """Release this context so a new one can be created. Calling this more than once has no effect."""
        if self.closed:
            return

        self.closed = True
        with _context_lock:
            if Context._active is self:
                Context._active = None
        log.debug("Closed %r", self)


class ContextBuilder:
    """Configure and create a :class:`Context`.

    Example::

        with ContextBuilder("mygame", "me").add_resource_path("./assets").build() as ctx:
            data = ctx.filesystem.open("/level1.txt").read()
    """

    def __init__(self, app_id: str, author: str = ""):
        self._app_id = app_id
        self._author = author
        self._app_root = None
        self._user_data_dir = None
        self._resource_paths: list[Path] = []
        self._zipfiles: list[bytes] = []

    def add_resource_path(self, path: Path | str) -> ContextBuilder:
        """Add a directory to search for resources, taking precedence over the default locations."""
        self._resource_paths.append(Path(path))
        return self

    def add_zipfile_bytes(self, data: bytes) -> ContextBuilder:
        """Add an in-memory zip archive to search for resources."""
        self._zipfiles.append(bytes(data))
        return self

    def app_root(self, path: Path | str) -> ContextBuilder:
        """Override the directory that contains the default ``resources`` locations."""
        self._app_root = Path(path)
        return self

    def user_data_dir(self, path: Path | str) -> ContextBuilder:
        """Override the user data directory."""
        self._user_data_dir = Path(path)
        return self

    def build(self) -> Context:
        """Create the :class:`Context`.

        Raises:
            ContextError: If another context is still alive.
            FilesystemError: If the filesystem could not be set up.
        """
        if Context.active() is not None:
            raise ContextError(f"A Context already exists: {Context.active()!r}")

        fs = AppFilesystem(
            self._app_id,
            self._author,
            app_root=self._app_root,
            user_data_dir=self._user_data_dir,
        )

        for path in self._resource_paths:
            fs.mount(path, readonly=True)

        for data in self._zipfiles:
            fs.mount_archive(data)

        return Context(fs)
