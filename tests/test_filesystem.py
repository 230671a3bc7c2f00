from __future__ import annotations

import io
import os

import pytest

from resourcefs.exceptions import (
    FilesystemError,
    InvalidOptionsError,
    IsADirectoryError,
    NotADirectoryError,
    NotEmptyError,
    NotFoundError,
    TraversalRejectedError,
    WriteToReadOnlyError,
)
from resourcefs.filesystem import (
    Filesystem,
    Metadata,
    OpenOptions,
    OverlayFilesystem,
    VirtualFilesystem,
)


@pytest.mark.parametrize(
    "options",
    [
        OpenOptions(),
        OpenOptions(create=True),
        OpenOptions(read=True, create=True),
        OpenOptions(read=True, truncate=True),
        OpenOptions(append=True, truncate=True),
        OpenOptions(write=True, append=True, truncate=True),
    ],
)
def test_open_options_invalid(options: OpenOptions) -> None:
    with pytest.raises(InvalidOptionsError):
        options.validate()


@pytest.mark.parametrize(
    ("options", "mode"),
    [
        (OpenOptions.READ, "rb"),
        (OpenOptions.CREATE, "wb"),
        (OpenOptions(read=True, write=True), "r+b"),
        (OpenOptions(append=True, create=True), "ab"),
        (OpenOptions(read=True, append=True), "a+b"),
    ],
)
def test_open_options_valid(options: OpenOptions, mode: str) -> None:
    options.validate()
    assert options.to_mode() == mode


def test_open_options_flags() -> None:
    assert not OpenOptions.READ.is_write()
    assert OpenOptions.CREATE.is_write()
    assert OpenOptions(append=True).is_write()

    assert OpenOptions.READ.to_flags() & (os.O_WRONLY | os.O_RDWR) == 0

    flags = OpenOptions.CREATE.to_flags()
    assert flags & os.O_WRONLY
    assert flags & os.O_CREAT
    assert flags & os.O_TRUNC

    flags = OpenOptions(read=True, append=True).to_flags()
    assert flags & os.O_RDWR
    assert flags & os.O_APPEND


def test_filesystem_requires_type() -> None:
    class NoTypeFilesystem(Filesystem):
        pass

    with pytest.raises(NotImplementedError):
        NoTypeFilesystem()


def test_virtual_filesystem_read(vfs: VirtualFilesystem) -> None:
    with vfs.open("/file.txt") as fh:
        assert fh.read() == b"virtual file"

    assert vfs.exists("/dir")
    assert vfs.exists("/dir/nested.txt")
    assert not vfs.exists("/nope")

    assert vfs.metadata("/file.txt") == Metadata(is_file=True, is_dir=False, size=12)
    assert vfs.metadata("/dir") == Metadata(is_file=False, is_dir=True, size=0)
    assert vfs.is_file("/file.txt")
    assert vfs.is_dir("/dir")
    assert not vfs.is_file("/nope")

    assert sorted(vfs.read_dir("/")) == ["/dir", "/file.txt"]
    assert vfs.read_dir("/dir") == ["/dir/nested.txt"]
    assert vfs.read_dir("/nope") == []
    assert vfs.read_dir("/file.txt") == []

    with pytest.raises(NotFoundError):
        vfs.open("/nope")

    with pytest.raises(IsADirectoryError):
        vfs.open("/dir")

    with pytest.raises(TraversalRejectedError):
        vfs.open("/../file.txt")


def test_virtual_filesystem_map_file_fh() -> None:
    vfs = VirtualFilesystem()
    vfs.map_file_fh("/a/b/c.bin", io.BytesIO(b"\x00\x01\x02"))

    assert vfs.is_dir("/a/b")
    assert vfs.open("/a/b/c.bin").read() == b"\x00\x01\x02"


def test_virtual_filesystem_write(vfs: VirtualFilesystem) -> None:
    with vfs.create("/new.txt") as fh:
        fh.write(b"hello")

    assert vfs.open("/new.txt").read() == b"hello"

    with vfs.open_with_options("/new.txt", OpenOptions(append=True)) as fh:
        fh.write(b" world")

    assert vfs.open("/new.txt").read() == b"hello world"

    with vfs.create("/new.txt") as fh:
        fh.write(b"bye")

    assert vfs.open("/new.txt").read() == b"bye"

    with vfs.open_with_options("/new.txt", OpenOptions(read=True, write=True)) as fh:
        assert fh.read(1) == b"b"
        fh.write(b"Y")

    assert vfs.open("/new.txt").read() == b"bYe"


def test_virtual_filesystem_handles_are_independent(vfs: VirtualFilesystem) -> None:
    fh1 = vfs.open("/file.txt")
    fh2 = vfs.open("/file.txt")

    assert fh1.read(7) == b"virtual"
    assert fh2.read() == b"virtual file"
    assert fh1.read() == b" file"


def test_virtual_filesystem_handle_modes(vfs: VirtualFilesystem) -> None:
    fh = vfs.open("/file.txt")
    with pytest.raises(io.UnsupportedOperation):
        fh.write(b"nope")

    fh = vfs.open_with_options("/file.txt", OpenOptions(write=True))
    with pytest.raises(io.UnsupportedOperation):
        fh.read()


def test_virtual_filesystem_create_requires_parent(vfs: VirtualFilesystem) -> None:
    with pytest.raises(NotFoundError):
        vfs.create("/missing/file.txt")

    with pytest.raises(NotADirectoryError):
        vfs.create("/file.txt/child")


def test_virtual_filesystem_mkdir_rm(vfs: VirtualFilesystem) -> None:
    vfs.mkdir("/x/y/z")
    assert vfs.is_dir("/x/y/z")

    with pytest.raises(NotEmptyError):
        vfs.rm("/x")

    vfs.rm("/x/y/z")
    assert not vfs.exists("/x/y/z")

    vfs.rm("/file.txt")
    assert not vfs.exists("/file.txt")

    with pytest.raises(NotFoundError):
        vfs.rm("/file.txt")

    with pytest.raises(TraversalRejectedError):
        vfs.rm("/")

    vfs.rmrf("/x")
    assert not vfs.exists("/x")

    vfs.rmrf("/x")

    vfs.rmrf("/")
    assert vfs.read_dir("/") == []


def test_virtual_filesystem_readonly() -> None:
    vfs = VirtualFilesystem(readonly=True)
    vfs.map_file_bytes("/file.txt", b"data")

    assert vfs.open("/file.txt").read() == b"data"

    with pytest.raises(WriteToReadOnlyError):
        vfs.create("/file.txt")

    with pytest.raises(WriteToReadOnlyError):
        vfs.open_with_options("/file.txt", OpenOptions(read=True, write=True))

    with pytest.raises(WriteToReadOnlyError):
        vfs.mkdir("/dir")

    with pytest.raises(WriteToReadOnlyError):
        vfs.rm("/file.txt")

    with pytest.raises(WriteToReadOnlyError):
        vfs.rmrf("/")

    assert vfs.open("/file.txt").read() == b"data"


def _layer(name: str, files: dict[str, bytes], readonly: bool = False) -> VirtualFilesystem:
    fs = VirtualFilesystem(readonly=readonly, name=name)
    for path, data in files.items():
        fs.map_file_bytes(path, data)
    return fs


def test_overlay_precedence() -> None:
    front = _layer("front", {"/shared.txt": b"front", "/front.txt": b"front only"})
    back = _layer("back", {"/shared.txt": b"back", "/back.txt": b"back only"})

    overlay = OverlayFilesystem([front, back])

    assert overlay.open("/shared.txt").read() == b"front"
    assert overlay.open("/front.txt").read() == b"front only"
    assert overlay.open("/back.txt").read() == b"back only"
    assert overlay.metadata("/shared.txt").size == 5
    assert overlay.exists("/back.txt")
    assert not overlay.exists("/nope")


def test_overlay_push_front_and_back() -> None:
    overlay = OverlayFilesystem()
    a = _layer("a", {"/f": b"a"})
    b = _layer("b", {"/f": b"b"})
    c = _layer("c", {"/f": b"c"})

    overlay.push_back(a)
    overlay.push_back(b)
    overlay.push_front(c)

    assert list(overlay.roots()) == [c, a, b]
    assert overlay.open("/f").read() == b"c"


def test_overlay_not_found_aggregates_attempts() -> None:
    layers = [_layer(f"layer{i}", {}) for i in range(3)]
    overlay = OverlayFilesystem(layers)

    with pytest.raises(NotFoundError) as exc_info:
        overlay.open("/missing.txt")

    exc = exc_info.value
    assert exc.path == "/missing.txt"
    assert [attempt.backend for attempt in exc.attempts] == [repr(layer) for layer in layers]
    assert all(isinstance(attempt.error, NotFoundError) for attempt in exc.attempts)
    assert str(exc).count("\n  <VirtualFilesystem layer") == 3


def test_overlay_relative_path_is_not_found() -> None:
    overlay = OverlayFilesystem([_layer("a", {"/f": b"a"})])

    with pytest.raises(NotFoundError) as exc_info:
        overlay.open("f")

    assert isinstance(exc_info.value.attempts[0].error, TraversalRejectedError)
    assert not overlay.exists("f")
    assert not overlay.exists("/../f")


def test_overlay_read_dir_union() -> None:
    front = _layer("front", {"/dir/a.txt": b"1", "/dir/b.txt": b"2"})
    back = _layer("back", {"/dir/b.txt": b"3", "/dir/c.txt": b"4"})
    file_layer = _layer("file", {"/dir": b"not a directory"})

    overlay = OverlayFilesystem([front, file_layer, back])

    entries = overlay.read_dir("/dir")
    assert sorted(entries) == ["/dir/a.txt", "/dir/b.txt", "/dir/c.txt"]
    assert len(entries) == len(set(entries))


def test_overlay_read_dir_missing() -> None:
    overlay = OverlayFilesystem([_layer("a", {"/f": b""}), _layer("b", {})])

    with pytest.raises(NotFoundError) as exc_info:
        overlay.read_dir("/nope")
    assert len(exc_info.value.attempts) == 2

    with pytest.raises(NotFoundError) as exc_info:
        overlay.read_dir("/f")
    assert isinstance(exc_info.value.attempts[0].error, NotADirectoryError)


def test_overlay_writes_go_to_front() -> None:
    front = _layer("front", {})
    back = _layer("back", {"/existing.txt": b"back"})
    overlay = OverlayFilesystem([front, back])

    with overlay.create("/new.txt") as fh:
        fh.write(b"data")

    assert front.exists("/new.txt")
    assert not back.exists("/new.txt")

    overlay.mkdir("/dir")
    assert front.is_dir("/dir")
    assert not back.exists("/dir")

    with pytest.raises(NotFoundError):
        overlay.rm("/existing.txt")
    assert back.exists("/existing.txt")


def test_overlay_write_errors_propagate_from_front() -> None:
    front = _layer("front", {}, readonly=True)
    back = _layer("back", {})
    overlay = OverlayFilesystem([front, back])

    assert overlay.readonly

    with pytest.raises(WriteToReadOnlyError):
        overlay.create("/new.txt")

    assert not back.exists("/new.txt")


def test_overlay_invalid_options_rejected_before_backends() -> None:
    overlay = OverlayFilesystem()

    with pytest.raises(InvalidOptionsError):
        overlay.open_with_options("/f", OpenOptions(create=True))


def test_overlay_empty() -> None:
    overlay = OverlayFilesystem()

    assert overlay.readonly
    assert not overlay.exists("/")

    with pytest.raises(NotFoundError) as exc_info:
        overlay.open("/f")
    assert exc_info.value.attempts == []

    with pytest.raises(FilesystemError):
        overlay.create("/f")


def test_overlay_of_overlays() -> None:
    inner = OverlayFilesystem([_layer("inner", {"/inner.txt": b"inner"})])
    outer = OverlayFilesystem([_layer("outer", {"/outer.txt": b"outer"}), inner])

    assert outer.open("/inner.txt").read() == b"inner"
    assert sorted(outer.read_dir("/")) == ["/inner.txt", "/outer.txt"]
