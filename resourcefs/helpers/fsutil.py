"""Virtual path related utilities.

Virtual paths are always absolute and ``/`` separated, independent of the host platform.
"""

from __future__ import annotations

import os
import posixpath
import re

from resourcefs.exceptions import TraversalRejectedError

re_normalize_path = re.compile(r"[/]+")

# Separators of the host that have no meaning in a virtual path
_HOST_SEPARATORS = tuple(sep for sep in (os.sep, os.altsep) if sep and sep != "/")

__all__ = [
    "basename",
    "dirname",
    "is_root",
    "join",
    "normalize",
    "parts",
    "relative_parts",
    "resolve",
]


def normalize(path: str) -> str:
    """Collapse repeated separators."""
    return re_normalize_path.sub("/", path)


def parts(path: str) -> list[str]:
    """Split a virtual path into its components, resolving ``.`` and ``..``.

    Raises:
        TraversalRejectedError: If the path is not absolute, contains host separators or NUL bytes,
            or would climb above the root.
    """
    if not isinstance(path, str):
        path = os.fspath(path)

    if not path.startswith("/"):
        raise TraversalRejectedError(f"Virtual path must be absolute: {path!r}")

    if "\x00" in path:
        raise TraversalRejectedError(f"Virtual path contains a NUL byte: {path!r}")

    result = []
    for part in normalize(path).split("/"):
        if not part or part == ".":
            continue

        if part == "..":
            if not result:
                raise TraversalRejectedError(f"Virtual path escapes the root: {path!r}")
            result.pop()
            continue

        if _HOST_SEPARATORS and any(sep in part for sep in _HOST_SEPARATORS):
            raise TraversalRejectedError(f"Virtual path contains a host separator: {path!r}")

        result.append(part)

    return result


def resolve(path: str) -> str:
    """Return the canonical form of a virtual path, e.g. ``//a/./b/../c/`` becomes ``/a/c``."""
    return "/" + "/".join(parts(path))


def relative_parts(name: str) -> list[str] | None:
    """Split a stored (relative) name, such as an archive member name, into components.

    Returns ``None`` if the name would resolve outside of the root.
    """
    name = name.replace("\\", "/")
    try:
        return parts("/" + name)
    except TraversalRejectedError:
        return None


def is_root(path: str) -> bool:
    return not parts(path)


def join(*args: str) -> str:
    return posixpath.join("/", *[normalize(part) for part in args])


def basename(path: str) -> str:
    return posixpath.basename(normalize(path).rstrip("/"))


def dirname(path: str) -> str:
    return posixpath.dirname(normalize(path).rstrip("/")) or "/"
