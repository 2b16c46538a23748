"""
Read-only archive files holding many objects.

An archive packs a closure (or any set of objects of one hash kind) into a
single file that can be shipped and memory-mapped. A directory of
archives forms an ArchiveSet, which serves get/has/list like an object
store and can therefore be used as a closure source or a sync peer.

Layout:

    magic      4 bytes  b"ASAR"
    version    u8
    hash kind  u16 little-endian
    count      u32 big-endian
    index      count * (digest, offset u64 BE, length u64 BE), sorted by digest
    data       object bytes; offsets are relative to the start of the file
"""

import bisect
import logging
import mmap
import os
import shutil
import struct
import tempfile
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from ..errors import InvalidReferenceError, ObjectNotFoundError, StorageError
from ..integrity.hashing import DEFAULT_HASH_KIND, Hash, HashKind
from ..integrity.verification import verify_object_integrity
from .layout import TEMP_PREFIX, io_guard

logger = logging.getLogger(__name__)

ARCHIVE_MAGIC = b'ASAR'
ARCHIVE_VERSION = 1
ARCHIVE_SUFFIX = '.asar'

_PREAMBLE = struct.Struct('>4sB')
_KIND = struct.Struct('<H')
_COUNT = struct.Struct('>I')
_SPAN = struct.Struct('>QQ')
_HEADER_SIZE = _PREAMBLE.size + _KIND.size + _COUNT.size


def write_archive(path, source, hashes: Iterable[Hash]) -> int:
    """
    Write the objects named by `hashes` into a new archive file.

    source: anything exposing get(hash) -> bytes
    hashes: objects to include; duplicates are written once

    All hashes must share one kind. The file is written to a temporary
    name and renamed into place, so a reader never sees a partial archive.

    Returns the number of objects written.
    """
    path = Path(path)
    hashes = list(hashes)
    for obj_hash in hashes:
        if not isinstance(obj_hash, Hash):
            raise InvalidReferenceError(f"expected Hash, got {type(obj_hash).__name__}")
    unique = sorted(set(hashes))
    kinds = {h.kind for h in unique}
    if len(kinds) > 1:
        raise InvalidReferenceError(
            "archive entries mix hash kinds: " + ", ".join(sorted(k.value for k in kinds))
        )
    kind = unique[0].kind if unique else DEFAULT_HASH_KIND

    index_size = len(unique) * (kind.digest_size + _SPAN.size)
    data_start = _HEADER_SIZE + index_size

    with io_guard("write_archive", path):
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=TEMP_PREFIX)
    temp_path = Path(temp_name)
    try:
        with io_guard("write_archive", temp_path), os.fdopen(fd, 'wb') as out, \
                tempfile.TemporaryFile() as spool:
            # Object bytes are spooled first so the index can be written up front
            spans: List[Tuple[int, int]] = []
            offset = data_start
            for obj_hash in unique:
                data = source.get(obj_hash)
                spool.write(data)
                spans.append((offset, len(data)))
                offset += len(data)

            out.write(_PREAMBLE.pack(ARCHIVE_MAGIC, ARCHIVE_VERSION))
            out.write(_KIND.pack(kind.id))
            out.write(_COUNT.pack(len(unique)))
            for obj_hash, (start, length) in zip(unique, spans):
                out.write(obj_hash.digest)
                out.write(_SPAN.pack(start, length))
            spool.seek(0)
            shutil.copyfileobj(spool, out)
            out.flush()
            os.fsync(out.fileno())
        with io_guard("write_archive", path):
            os.replace(temp_path, path)
    except BaseException:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise

    logger.info("Wrote archive %s with %d objects", path, len(unique))
    return len(unique)


class Archive:
    """
    One memory-mapped archive file.

    Use through ArchiveSet; opening validates the header and index and
    raises StorageError for anything malformed.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        with io_guard("open_archive", self.path), open(self.path, 'rb') as f:
            size = os.fstat(f.fileno()).st_size
            if size < _HEADER_SIZE:
                raise self._invalid("file too short for header")
            self._map = mmap.mmap(f.fileno(), 0, access=mmap.ACCESS_READ)
        try:
            self.kind, self._digests, self._spans = self._read_index()
        except BaseException:
            self._map.close()
            raise

    def _invalid(self, reason: str) -> StorageError:
        return StorageError("open_archive", str(self.path), ValueError(reason))

    def _read_index(self) -> Tuple[HashKind, List[bytes], List[Tuple[int, int]]]:
        buf = self._map
        magic, version = _PREAMBLE.unpack_from(buf, 0)
        if magic != ARCHIVE_MAGIC:
            raise self._invalid(f"wrong magic {magic!r}")
        if version != ARCHIVE_VERSION:
            raise self._invalid(f"unsupported version {version}")
        (kind_id,) = _KIND.unpack_from(buf, _PREAMBLE.size)
        try:
            kind = HashKind.from_id(kind_id)
        except ValueError:
            raise self._invalid(f"unknown hash kind id {kind_id}") from None
        (count,) = _COUNT.unpack_from(buf, _PREAMBLE.size + _KIND.size)

        entry_size = kind.digest_size + _SPAN.size
        data_start = _HEADER_SIZE + count * entry_size
        if data_start > len(buf):
            raise self._invalid("truncated index")

        digests: List[bytes] = []
        spans: List[Tuple[int, int]] = []
        pos = _HEADER_SIZE
        for _ in range(count):
            digest = bytes(buf[pos:pos + kind.digest_size])
            start, length = _SPAN.unpack_from(buf, pos + kind.digest_size)
            pos += entry_size
            if digests and digest <= digests[-1]:
                raise self._invalid("index is not sorted by digest")
            if start < data_start or start + length > len(buf):
                raise self._invalid(f"entry {digest.hex()} points outside the file")
            digests.append(digest)
            spans.append((start, length))
        return kind, digests, spans

    def find(self, digest: bytes) -> Optional[Tuple[int, int]]:
        """Locate an entry by digest. Returns (offset, length) or None."""
        i = bisect.bisect_left(self._digests, digest)
        if i < len(self._digests) and self._digests[i] == digest:
            return self._spans[i]
        return None

    def read(self, digest: bytes) -> Optional[bytes]:
        span = self.find(digest)
        if span is None:
            return None
        start, length = span
        return self._map[start:start + length]

    def hashes(self) -> Iterator[Hash]:
        for digest in self._digests:
            yield Hash(self.kind, digest)

    def __len__(self) -> int:
        return len(self._digests)

    def close(self) -> None:
        self._map.close()


class ArchiveSet:
    """
    A read-only object source formed by a directory of archive files.

    Exposes get/has/list with the same contracts as ObjectStore, so a
    ClosureResolver, a verifier or a sync peer can read from it.
    """

    def __init__(self, archives: Iterable[Archive] = ()):
        self._archives: Dict[HashKind, List[Archive]] = {}
        for archive in archives:
            self._archives.setdefault(archive.kind, []).append(archive)

    @classmethod
    def open(cls, directory) -> 'ArchiveSet':
        """
        Open every archive in `directory`, creating the directory if necessary.

        Raises StorageError if any archive is unreadable or malformed.
        """
        directory = Path(directory)
        with io_guard("open_archive_set", directory):
            directory.mkdir(parents=True, exist_ok=True)
            paths = sorted(p for p in directory.iterdir()
                           if p.is_file() and p.suffix == ARCHIVE_SUFFIX)

        archives: List[Archive] = []
        try:
            for path in paths:
                archives.append(Archive(path))
        except BaseException:
            for archive in archives:
                archive.close()
            raise

        logger.debug("Opened %d archives from %s", len(archives), directory)
        return cls(archives)

    def get(self, obj_hash: Hash, verify: bool = True) -> bytes:
        """
        Retrieve object bytes by hash.

        Raises ObjectNotFoundError if no archive holds the object and
        ObjectCorruptedError if verify is set and the bytes do not match.
        """
        for archive in self._archives.get(obj_hash.kind, ()):
            data = archive.read(obj_hash.digest)
            if data is not None:
                if verify:
                    verify_object_integrity(data, obj_hash)
                return data
        raise ObjectNotFoundError(obj_hash)

    def has(self, obj_hash: Hash) -> bool:
        return any(
            archive.find(obj_hash.digest) is not None
            for archive in self._archives.get(obj_hash.kind, ())
        )

    def list(self) -> Iterator[Hash]:
        """
        Enumerate stored hashes.

        Meant for diagnostics; an object present in several archives is
        listed once per archive.
        """
        for archives in self._archives.values():
            for archive in archives:
                yield from archive.hashes()

    def close(self) -> None:
        for archives in self._archives.values():
            for archive in archives:
                archive.close()
        self._archives = {}

    def __contains__(self, obj_hash: Hash) -> bool:
        return self.has(obj_hash)

    def __enter__(self) -> 'ArchiveSet':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
