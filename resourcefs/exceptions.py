from __future__ import annotations

import traceback
from typing import NamedTuple


class Error(Exception):
    """Generic resourcefs error"""

    def __init__(self, message=None, cause=None, extra=None):
        if extra:
            exceptions = "\n\n".join(["".join(traceback.format_exception_only(type(e), e)) for e in extra])
            message = f"{message}\n\nAdditionally, the following exceptions occurred:\n\n{exceptions}"

        super().__init__(message)
        self.__cause__ = cause
        self.__extra__ = extra


class ContextError(Error):
    """A session (context) error occurred."""


class FilesystemError(Error):
    """A filesystem error occurred."""


class Attempt(NamedTuple):
    """A single failed lookup of a path on one backend of an overlay."""

    backend: str
    error: Exception


class NotFoundError(FilesystemError):
    """The requested path could not be found.

    When raised by an overlay, ``attempts`` holds one :class:`Attempt` per backend that was consulted,
    in the order they were consulted.
    """

    def __init__(self, path: str, attempts: list[Attempt] | None = None, message: str | None = None):
        self.path = path
        self.attempts = list(attempts) if attempts else []

        if message is None:
            message = f"Path not found: {path}"
            if self.attempts:
                tried = "\n".join(f"  {attempt.backend}: {attempt.error!r}" for attempt in self.attempts)
                message = f"{message}, searched {len(self.attempts)} backend(s):\n{tried}"

        super().__init__(message)


class WriteToReadOnlyError(FilesystemError):
    """A mutating operation was attempted on a read-only backend."""


class CorruptArchiveError(FilesystemError):
    """An archive container could not be parsed."""


class UnsupportedCompressionError(FilesystemError):
    """An archive entry uses a compression method or encryption that is not supported."""


class TraversalRejectedError(FilesystemError):
    """A virtual path is not absolute or would resolve outside of the backend root."""


class InvalidOptionsError(FilesystemError):
    """A combination of open options is nonsensical."""


class NotEmptyError(FilesystemError):
    """A non-recursive removal targeted a populated directory."""


class IsADirectoryError(FilesystemError):
    """The entry is a directory."""


class NotADirectoryError(FilesystemError):
    """The entry is not a directory."""


class IOFaultError(FilesystemError):
    """An I/O operation on the underlying storage failed.

    The original ``OSError`` is available as ``__cause__``.
    """

    def __init__(self, path: str, real_path: str | None = None, cause: Exception | None = None):
        self.path = path
        self.real_path = real_path

        message = f"I/O error on {path}"
        if real_path is not None:
            message = f"{message} ({real_path})"
        if cause is not None:
            message = f"{message}: {cause}"

        super().__init__(message, cause=cause)
