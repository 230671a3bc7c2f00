from __future__ import annotations

import io
import zlib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

from dissect.cstruct import cstruct
from dissect.util.stream import AlignedStream, RangeStream

from resourcefs.exceptions import (
    CorruptArchiveError,
    IOFaultError,
    IsADirectoryError,
    NotFoundError,
    UnsupportedCompressionError,
    WriteToReadOnlyError,
)
from resourcefs.filesystem import Filesystem, Metadata, OpenOptions
from resourcefs.helpers import fsutil
from resourcefs.helpers.logging import BackendLogAdapter, get_logger

log = get_logger(__name__)

# Resource: https://pkware.cachefly.net/webdocs/casestudies/APPNOTE.TXT
zip_def = """
#define EOCD_SIGNATURE              0x06054b50
#define ZIP64_LOCATOR_SIGNATURE     0x07064b50
#define ZIP64_EOCD_SIGNATURE        0x06064b50
#define CENTRAL_SIGNATURE           0x02014b50
#define LOCAL_SIGNATURE             0x04034b50

#define ZIP64_EXTRA_ID              0x0001
#define ZIP64_LIMIT                 0xffffffff

#define FLAG_ENCRYPTED              0x0001
#define FLAG_UTF8                   0x0800

#define METHOD_STORED               0
#define METHOD_DEFLATED             8

struct end_of_central_directory {
    uint32  signature;
    uint16  disk_number;
    uint16  central_directory_disk;
    uint16  disk_entries;
    uint16  total_entries;
    uint32  central_directory_size;
    uint32  central_directory_offset;
    uint16  comment_length;
};

struct zip64_locator {
    uint32  signature;
    uint32  zip64_eocd_disk;
    uint64  zip64_eocd_offset;
    uint32  total_disks;
};

struct zip64_end_of_central_directory {
    uint32  signature;
    uint64  record_size;
    uint16  version_made_by;
    uint16  version_needed;
    uint32  disk_number;
    uint32  central_directory_disk;
    uint64  disk_entries;
    uint64  total_entries;
    uint64  central_directory_size;
    uint64  central_directory_offset;
};

struct central_directory_header {
    uint32  signature;
    uint16  version_made_by;
    uint16  version_needed;
    uint16  flags;
    uint16  compression;
    uint16  mod_time;
    uint16  mod_date;
    uint32  crc32;
    uint32  compressed_size;
    uint32  uncompressed_size;
    uint16  filename_length;
    uint16  extra_length;
    uint16  comment_length;
    uint16  disk_start;
    uint16  internal_attributes;
    uint32  external_attributes;
    uint32  local_header_offset;
    char    filename[filename_length];
    char    extra[extra_length];
    char    comment[comment_length];
};

struct local_file_header {
    uint32  signature;
    uint16  version_needed;
    uint16  flags;
    uint16  compression;
    uint16  mod_time;
    uint16  mod_date;
    uint32  crc32;
    uint32  compressed_size;
    uint32  uncompressed_size;
    uint16  filename_length;
    uint16  extra_length;
};

struct extra_field {
    uint16  header_id;
    uint16  data_size;
    char    data[data_size];
};
"""

c_zip = cstruct().load(zip_def)

EOCD_SIZE = len(c_zip.end_of_central_directory)
ZIP64_LOCATOR_SIZE = len(c_zip.zip64_locator)
LOCAL_HEADER_SIZE = len(c_zip.local_file_header)
MAX_COMMENT_SIZE = 0xFFFF

COMPRESSED_READ_SIZE = 64 * 1024


class ArchiveState(Enum):
    UNMOUNTED = "unmounted"
    INDEXING = "indexing"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class ZipEntry:
    """A single indexed member of a zip archive."""

    name: str
    data_offset: int
    compression: int
    compressed_size: int
    file_size: int
    crc32: int
    is_dir: bool
    encrypted: bool = False


class ZipFilesystem(Filesystem):
    """Read-only filesystem backend for zip archives.

    The central directory is parsed and validated once, when the archive is mounted. Entries are decompressed
    lazily when they are read. Only the stored and deflate compression methods are supported.
    """

    __type__ = "zip"

    def __init__(self, fh: BinaryIO, name: str | None = None):
        super().__init__(readonly=True)
        self.fh = fh
        self.name = name or getattr(fh, "name", None)
        self.log = BackendLogAdapter(log, {"backend": self})

        self.state = ArchiveState.UNMOUNTED
        self.entries: dict[str, ZipEntry] = {}
        self._dirs: dict[str, dict[str, None]] = {"/": {}}

        self.state = ArchiveState.INDEXING
        try:
            self.size = fh.seek(0, io.SEEK_END)
            self._index()
        except Exception:
            self.state = ArchiveState.FAILED
            raise

        self.state = ArchiveState.READY
        self.log.debug("Indexed %d entries", len(self.entries))

    def __repr__(self) -> str:
        name = f" {self.name}" if self.name else ""
        return f"<{self.__class__.__name__}{name} readonly>"

    @classmethod
    def from_path(cls, path: Path | str) -> ZipFilesystem:
        """Mount the zip archive at ``path`` on the host."""
        try:
            fh = Path(path).open("rb")
        except FileNotFoundError as e:
            raise NotFoundError(str(path)) from e
        except OSError as e:
            raise IOFaultError(str(path), str(path), cause=e) from e

        try:
            return cls(fh, name=str(path))
        except Exception:
            fh.close()
            raise

    @classmethod
    def from_bytes(cls, data: bytes, name: str | None = None) -> ZipFilesystem:
        """Mount a zip archive that is held in memory."""
        return cls(io.BytesIO(data), name=name)

    def _read_at(self, offset: int, length: int) -> bytes:
        self.fh.seek(offset)
        data = self.fh.read(length)
        if len(data) != length:
            raise CorruptArchiveError(f"Unexpected end of archive {self!r} at offset {offset:#x}")
        return data

    def _find_eocd(self) -> tuple[int, c_zip.end_of_central_directory]:
        """Scan backwards for the end of central directory record, which may be followed by a comment."""
        tail_size = min(self.size, EOCD_SIZE + MAX_COMMENT_SIZE)
        tail_offset = self.size - tail_size
        tail = self._read_at(tail_offset, tail_size)

        idx = tail.rfind(b"PK\x05\x06")
        while idx != -1:
            if idx + EOCD_SIZE <= len(tail):
                eocd = c_zip.end_of_central_directory(tail[idx : idx + EOCD_SIZE])
                if idx + EOCD_SIZE + eocd.comment_length <= len(tail):
                    return tail_offset + idx, eocd
            idx = tail.rfind(b"PK\x05\x06", 0, idx)

        raise CorruptArchiveError(f"No end of central directory record found in {self!r}")

    def _find_central_directory(self) -> tuple[int, int, int]:
        eocd_offset, eocd = self._find_eocd()

        if eocd.disk_number != 0 or eocd.central_directory_disk != 0:
            raise CorruptArchiveError(f"Multi-disk archives are not supported: {self!r}")

        total_entries = eocd.total_entries
        cd_size = eocd.central_directory_size
        cd_offset = eocd.central_directory_offset

        locator_offset = eocd_offset - ZIP64_LOCATOR_SIZE
        if locator_offset >= 0:
            locator = c_zip.zip64_locator(self._read_at(locator_offset, ZIP64_LOCATOR_SIZE))
            if locator.signature == c_zip.ZIP64_LOCATOR_SIGNATURE:
                self.log.trace("Found Zip64 locator at %#x", locator_offset)

                self.fh.seek(locator.zip64_eocd_offset)
                eocd64 = c_zip.zip64_end_of_central_directory(self.fh)
                if eocd64.signature != c_zip.ZIP64_EOCD_SIGNATURE:
                    raise CorruptArchiveError(f"Invalid Zip64 end of central directory signature in {self!r}")

                total_entries = eocd64.total_entries
                cd_size = eocd64.central_directory_size
                cd_offset = eocd64.central_directory_offset

        if cd_offset + cd_size > eocd_offset:
            raise CorruptArchiveError(f"Central directory of {self!r} lies outside of the archive")

        return cd_offset, cd_size, total_entries

    def _index(self) -> None:
        try:
            cd_offset, cd_size, total_entries = self._find_central_directory()
            buf = io.BytesIO(self._read_at(cd_offset, cd_size))

            for _ in range(total_entries):
                header = c_zip.central_directory_header(buf)
                if header.signature != c_zip.CENTRAL_SIGNATURE:
                    raise CorruptArchiveError(f"Invalid central directory header signature in {self!r}")

                entry = self._parse_entry(header)
                self._add_entry(entry)
        except EOFError as e:
            raise CorruptArchiveError(f"Truncated archive structure in {self!r}", cause=e) from e

    def _parse_entry(self, header: c_zip.central_directory_header) -> ZipEntry:
        if header.flags & c_zip.FLAG_UTF8:
            try:
                name = header.filename.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CorruptArchiveError(f"Invalid UTF-8 entry name in {self!r}", cause=e) from e
        else:
            name = header.filename.decode("cp437")

        file_size = header.uncompressed_size
        compressed_size = header.compressed_size
        header_offset = header.local_header_offset

        if c_zip.ZIP64_LIMIT in (file_size, compressed_size, header_offset):
            field = _zip64_extra(header.extra)
            if field is None:
                raise CorruptArchiveError(f"Missing Zip64 extra field for {name!r} in {self!r}")

            # Only the values that overflowed are present, in this order
            try:
                if file_size == c_zip.ZIP64_LIMIT:
                    file_size = c_zip.uint64(field)
                if compressed_size == c_zip.ZIP64_LIMIT:
                    compressed_size = c_zip.uint64(field)
                if header_offset == c_zip.ZIP64_LIMIT:
                    header_offset = c_zip.uint64(field)
            except EOFError as e:
                raise CorruptArchiveError(f"Truncated Zip64 extra field for {name!r} in {self!r}", cause=e) from e

        if header_offset + LOCAL_HEADER_SIZE > self.size:
            raise CorruptArchiveError(f"Local header of {name!r} lies outside of {self!r}")

        local = c_zip.local_file_header(self._read_at(header_offset, LOCAL_HEADER_SIZE))
        if local.signature != c_zip.LOCAL_SIGNATURE:
            raise CorruptArchiveError(f"Invalid local header signature for {name!r} in {self!r}")

        data_offset = header_offset + LOCAL_HEADER_SIZE + local.filename_length + local.extra_length
        if data_offset + compressed_size > self.size:
            raise CorruptArchiveError(f"Data of {name!r} lies outside of {self!r}")

        if header.compression == c_zip.METHOD_STORED and compressed_size != file_size:
            raise CorruptArchiveError(f"Stored entry {name!r} has mismatching sizes in {self!r}")

        return ZipEntry(
            name=name,
            data_offset=data_offset,
            compression=header.compression,
            compressed_size=compressed_size,
            file_size=file_size,
            crc32=header.crc32,
            is_dir=name.endswith(("/", "\\")),
            encrypted=bool(header.flags & c_zip.FLAG_ENCRYPTED),
        )

    def _add_dir(self, path: str) -> None:
        parent = "/"
        for part in fsutil.parts(path):
            child = fsutil.join(parent, part)
            self._dirs[parent][child] = None
            self._dirs.setdefault(child, {})
            parent = child

    def _add_entry(self, entry: ZipEntry) -> None:
        parts = fsutil.relative_parts(entry.name)
        if parts is None:
            self.log.warning("Skipping entry outside of the archive root: %r", entry.name)
            return

        if not parts:
            return

        path = fsutil.join(*parts)
        if entry.is_dir:
            self._add_dir(path)
        elif path in self._dirs:
            self.log.warning("Skipping file entry that collides with a directory: %r", entry.name)
            return
        else:
            parent = fsutil.dirname(path)
            self._add_dir(parent)
            self._dirs[parent][path] = None

        self.entries[path] = entry

    def open_with_options(self, path: str, options: OpenOptions) -> BinaryIO:
        options.validate()
        if options.is_write():
            raise WriteToReadOnlyError(f"Cannot modify {path} on read-only {self!r}")

        vpath = fsutil.resolve(path)
        if vpath in self._dirs:
            raise IsADirectoryError(f"{path} is a directory")

        entry = self.entries.get(vpath)
        if entry is None:
            raise NotFoundError(path)

        if entry.encrypted:
            raise UnsupportedCompressionError(f"Encrypted entries are not supported: {path}")

        self.log.trace("open(%r) -> %r", path, entry)

        if entry.compression == c_zip.METHOD_STORED:
            return RangeStream(self.fh, entry.data_offset, entry.file_size)

        if entry.compression == c_zip.METHOD_DEFLATED:
            compressed = RangeStream(self.fh, entry.data_offset, entry.compressed_size)
            return DeflateStream(compressed, entry.file_size, entry.crc32, name=path)

        raise UnsupportedCompressionError(f"Unsupported compression method {entry.compression} for {path}")

    def mkdir(self, path: str) -> None:
        self._check_writable(path)

    def rm(self, path: str) -> None:
        self._check_writable(path)

    def rmrf(self, path: str) -> None:
        self._check_writable(path)

    def exists(self, path: str) -> bool:
        vpath = fsutil.resolve(path)
        return vpath in self._dirs or vpath in self.entries

    def metadata(self, path: str) -> Metadata:
        vpath = fsutil.resolve(path)
        if vpath in self._dirs:
            return Metadata(is_file=False, is_dir=True, size=0)

        entry = self.entries.get(vpath)
        if entry is None:
            raise NotFoundError(path)
        return Metadata(is_file=True, is_dir=False, size=entry.file_size)

    def read_dir(self, path: str) -> list[str]:
        return list(self._dirs.get(fsutil.resolve(path), ()))


def _zip64_extra(extra: bytes) -> io.BytesIO | None:
    buf = io.BytesIO(extra)
    try:
        while buf.tell() < len(extra):
            field = c_zip.extra_field(buf)
            if field.header_id == c_zip.ZIP64_EXTRA_ID:
                return io.BytesIO(field.data)
    except EOFError as e:
        raise CorruptArchiveError("Truncated extra field", cause=e) from e
    return None


class DeflateStream(AlignedStream):
    """Transparently inflated stream of a deflate compressed zip entry.

    Deflate data can only be decompressed from the start, so seeking backwards restarts decompression.
    The CRC-32 is verified as soon as the end of the entry is reached.
    """

    def __init__(self, fh: BinaryIO, size: int, crc: int, name: str | None = None):
        self._fh = fh
        self._crc = crc
        self._name = name

        self._zlib = None
        self._zlib_offset = 0
        self._zlib_crc = 0
        self._reset_zlib()

        super().__init__(size)

    def _reset_zlib(self) -> None:
        self._zlib = zlib.decompressobj(-zlib.MAX_WBITS)
        self._zlib_offset = 0
        self._zlib_crc = 0
        self._fh.seek(0)

    def _inflate(self, length: int) -> bytes:
        result = []

        while length > 0 and not self._zlib.eof:
            data = self._zlib.unconsumed_tail or self._fh.read(COMPRESSED_READ_SIZE)

            try:
                buf = self._zlib.decompress(data, length)
            except zlib.error as e:
                raise CorruptArchiveError(f"Invalid deflate data in {self._name}", cause=e) from e

            if not buf and not data:
                raise CorruptArchiveError(f"Unexpected end of deflate data in {self._name}")

            self._zlib_crc = zlib.crc32(buf, self._zlib_crc)
            self._zlib_offset += len(buf)
            length -= len(buf)
            result.append(buf)

        if self._zlib.eof and self._zlib_offset < self.size:
            raise CorruptArchiveError(f"Deflate data of {self._name} is shorter than its declared size")

        if self._zlib_offset >= self.size and self._zlib_crc != self._crc:
            raise CorruptArchiveError(
                f"CRC-32 mismatch in {self._name}: expected {self._crc:#010x}, got {self._zlib_crc:#010x}"
            )

        return b"".join(result)

    def _seek_zlib(self, offset: int) -> None:
        if offset < self._zlib_offset:
            self._reset_zlib()

        while self._zlib_offset < offset:
            if not self._inflate(min(offset - self._zlib_offset, COMPRESSED_READ_SIZE)):
                break

    def _read(self, offset: int, length: int) -> bytes:
        self._seek_zlib(offset)
        return self._inflate(min(length, self.size - offset))
