from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from resourcefs.exceptions import (
    IOFaultError,
    IsADirectoryError,
    NotADirectoryError,
    NotEmptyError,
    NotFoundError,
    TraversalRejectedError,
    WriteToReadOnlyError,
)
from resourcefs.filesystem import Metadata, OpenOptions, OverlayFilesystem
from resourcefs.filesystems.dir import DirectoryFilesystem

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def root(tmp_path: Path) -> Path:
    root = tmp_path.joinpath("root")
    root.joinpath("sub").mkdir(parents=True)
    root.joinpath("file.txt").write_bytes(b"file contents")
    root.joinpath("sub", "nested.txt").write_bytes(b"nested contents")
    return root


def test_directory_filesystem_read(root: Path) -> None:
    fs = DirectoryFilesystem(root, readonly=True)

    with fs.open("/file.txt") as fh:
        assert fh.read() == b"file contents"

    assert fs.open("//sub/./nested.txt").read() == b"nested contents"

    assert fs.exists("/sub")
    assert fs.exists("/sub/nested.txt")
    assert not fs.exists("/nope")
    assert not fs.exists("/file.txt/child")

    assert fs.metadata("/file.txt") == Metadata(is_file=True, is_dir=False, size=13)
    assert fs.metadata("/sub").is_dir

    assert fs.read_dir("/") == ["/file.txt", "/sub"]
    assert fs.read_dir("/sub") == ["/sub/nested.txt"]
    assert fs.read_dir("/nope") == []
    assert fs.read_dir("/file.txt") == []

    assert "readonly" in repr(fs)
    assert str(root) in repr(fs)


def test_directory_filesystem_errors(root: Path) -> None:
    fs = DirectoryFilesystem(root)

    with pytest.raises(NotFoundError):
        fs.open("/nope")

    with pytest.raises(NotFoundError):
        fs.metadata("/nope")

    with pytest.raises(IsADirectoryError):
        fs.open("/sub")

    with pytest.raises(TraversalRejectedError):
        fs.open("/../file.txt")

    with pytest.raises(TraversalRejectedError):
        fs.open("file.txt")


def test_directory_filesystem_does_not_escape_root(root: Path) -> None:
    root.parent.joinpath("secret.txt").write_bytes(b"secret")
    fs = DirectoryFilesystem(root)

    with pytest.raises(TraversalRejectedError):
        fs.open("/../secret.txt")

    with pytest.raises(TraversalRejectedError):
        fs.exists("/sub/../../secret.txt")


def test_directory_filesystem_write_round_trip(tmp_path: Path) -> None:
    fs = DirectoryFilesystem(tmp_path.joinpath("not", "yet", "there"))
    assert not fs.base_path.exists()
    assert fs.read_dir("/") == []

    with fs.create("/save.dat") as fh:
        fh.write(b"progress")

    assert fs.base_path.joinpath("save.dat").read_bytes() == b"progress"
    assert fs.open("/save.dat").read() == b"progress"

    with fs.open_with_options("/save.dat", OpenOptions(append=True)) as fh:
        fh.write(b" and more")

    assert fs.open("/save.dat").read() == b"progress and more"

    with fs.open_with_options("/save.dat", OpenOptions(read=True, write=True)) as fh:
        assert fh.read(8) == b"progress"
        fh.seek(0)
        fh.write(b"PROGRESS")

    assert fs.open("/save.dat").read() == b"PROGRESS and more"


def test_directory_filesystem_create_requires_parent(tmp_path: Path) -> None:
    fs = DirectoryFilesystem(tmp_path)

    with pytest.raises(NotFoundError):
        fs.create("/missing/file.txt")

    with pytest.raises(NotFoundError):
        fs.open_with_options("/new.txt", OpenOptions(write=True))


def test_directory_filesystem_mkdir(tmp_path: Path) -> None:
    fs = DirectoryFilesystem(tmp_path.joinpath("root"))

    fs.mkdir("/a/b/c")
    assert fs.is_dir("/a/b/c")

    fs.mkdir("/a/b/c")

    with fs.create("/a/file") as fh:
        fh.write(b"x")

    with pytest.raises(NotADirectoryError):
        fs.mkdir("/a/file")


def test_directory_filesystem_rm(root: Path) -> None:
    fs = DirectoryFilesystem(root)

    with pytest.raises(NotEmptyError):
        fs.rm("/sub")

    fs.rm("/sub/nested.txt")
    fs.rm("/sub")
    assert not root.joinpath("sub").exists()

    with pytest.raises(NotFoundError):
        fs.rm("/sub")

    with pytest.raises(TraversalRejectedError):
        fs.rm("/")


def test_directory_filesystem_rmrf(root: Path) -> None:
    fs = DirectoryFilesystem(root)

    fs.rmrf("/sub")
    assert not root.joinpath("sub").exists()

    fs.rmrf("/sub")
    fs.rmrf("/does/not/exist")

    fs.rmrf("/")
    assert root.is_dir()
    assert list(root.iterdir()) == []


def test_directory_filesystem_readonly(root: Path) -> None:
    fs = DirectoryFilesystem(root, readonly=True)

    for func, args in [
        (fs.create, ("/file.txt",)),
        (fs.open_with_options, ("/file.txt", OpenOptions(append=True))),
        (fs.mkdir, ("/new",)),
        (fs.rm, ("/file.txt",)),
        (fs.rmrf, ("/sub",)),
    ]:
        with pytest.raises(WriteToReadOnlyError):
            func(*args)

    assert root.joinpath("file.txt").read_bytes() == b"file contents"
    assert root.joinpath("sub", "nested.txt").exists()
    assert not root.joinpath("new").exists()


def test_directory_filesystem_io_fault(root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    fs = DirectoryFilesystem(root)

    def raise_permission_error(*args, **kwargs) -> None:
        raise PermissionError(13, "Permission denied")

    monkeypatch.setattr("resourcefs.filesystems.dir.os.open", raise_permission_error)

    with pytest.raises(IOFaultError) as exc_info:
        fs.open("/file.txt")

    assert exc_info.value.path == "/file.txt"
    assert exc_info.value.real_path == str(root.joinpath("file.txt"))
    assert isinstance(exc_info.value.__cause__, PermissionError)


def test_directory_filesystem_nul_byte(root: Path) -> None:
    fs = DirectoryFilesystem(root, readonly=True)

    with pytest.raises(TraversalRejectedError):
        fs.open("/a\x00b")

    with pytest.raises(TraversalRejectedError):
        fs.metadata("/a\x00b")

    assert not fs.is_file("/a\x00b")
    assert not fs.is_dir("/a\x00b")

    overlay = OverlayFilesystem([fs])

    with pytest.raises(NotFoundError) as exc_info:
        overlay.open("/a\x00b")

    assert len(exc_info.value.attempts) == 1
    assert isinstance(exc_info.value.attempts[0].error, TraversalRejectedError)

    with pytest.raises(NotFoundError):
        overlay.metadata("/a\x00b")

    assert not overlay.exists("/a\x00b")
