from __future__ import annotations

import io
import zipfile
from typing import TYPE_CHECKING, Callable

import pytest

from resourcefs.appfs import AppFilesystem
from resourcefs.context import Context
from resourcefs.filesystem import VirtualFilesystem

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


def create_zip(entries: dict[str, bytes | str], compression: int = zipfile.ZIP_DEFLATED) -> bytes:
    """Build a zip archive in memory. Names ending with ``/`` become directory entries."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in entries.items():
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def make_zip() -> Callable[..., bytes]:
    return create_zip


@pytest.fixture
def vfs() -> VirtualFilesystem:
    vfs = VirtualFilesystem(name="test")
    vfs.map_file_bytes("/file.txt", b"virtual file")
    vfs.map_file_bytes("/dir/nested.txt", b"nested file")
    return vfs


@pytest.fixture
def app_root(tmp_path: Path) -> Path:
    root = tmp_path.joinpath("app")
    root.joinpath("resources").mkdir(parents=True)
    return root


@pytest.fixture
def user_data(tmp_path: Path) -> Path:
    return tmp_path.joinpath("user")


@pytest.fixture
def app_fs(app_root: Path, user_data: Path) -> AppFilesystem:
    return AppFilesystem("testapp", "tester", app_root=app_root, user_data_dir=user_data)


@pytest.fixture(autouse=True)
def release_context() -> Iterator[None]:
    yield

    # A test that fails halfway must not block the next one from creating a Context
    if (ctx := Context.active()) is not None:
        ctx.close()
