"""
Content-addressed object storage.

Provides immutable byte storage keyed by content hash.
"""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Iterator, Optional

from ..errors import ObjectCorruptedError, ObjectNotFoundError, StorageError
from ..integrity.hashing import DEFAULT_HASH_KIND, Hash, HashKind, Hasher, compute_hash
from ..integrity.verification import verify_object_integrity
from .layout import TEMP_PREFIX, StorageLayout, io_guard

logger = logging.getLogger(__name__)


class ObjectWriter:
    """
    A staging area for streaming data into the store in constant memory.

    Data is hashed as it is written and buffered in a temporary file.
    commit() must be called to move it into the store; otherwise the
    temporary file is deleted when the writer is closed.
    """

    def __init__(self, store: 'ObjectStore', hash_kind: Optional[HashKind] = None):
        self.store = store
        self._hasher = Hasher(hash_kind or store.hash_kind)
        with io_guard("create_temp", store.layout.temp_dir):
            store.layout.temp_dir.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(
                dir=str(store.layout.temp_dir),
                prefix=TEMP_PREFIX,
            )
        self.temp_path = Path(temp_path)
        self._file = os.fdopen(fd, 'wb')
        self._done = False
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        """Append a chunk. Returns the number of bytes written."""
        if self._done:
            raise ValueError("Writer already committed or aborted")
        self._hasher.update(data)
        with io_guard("write_temp", self.temp_path):
            self._file.write(data)
        self.bytes_written += len(data)
        return len(data)

    def commit(self) -> Hash:
        """
        Commit the written data to the store.

        Returns the content hash. If an object with that hash already
        exists the staged copy is discarded.
        """
        if self._done:
            raise ValueError("Writer already committed or aborted")
        obj_hash = self._hasher.finalize()
        try:
            with io_guard("write_temp", self.temp_path):
                self._file.flush()
                os.fsync(self._file.fileno())
                self._file.close()
            self.store._install(self.temp_path, obj_hash)
        except BaseException:
            self.abort()
            raise
        self._done = True
        return obj_hash

    def abort(self) -> None:
        """Discard staged data. Safe to call more than once."""
        if self._done:
            return
        self._done = True
        if not self._file.closed:
            self._file.close()
        try:
            self.temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove temp file %s: %s", self.temp_path, e)

    def __enter__(self) -> 'ObjectWriter':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.abort()


class ObjectStore:
    """
    Content-addressed object store with immutable objects.

    Objects are stored by the hash of their bytes.
    Once written, objects never change.
    """

    def __init__(self, layout: StorageLayout, hash_kind: HashKind = DEFAULT_HASH_KIND):
        """Initialize object store with given layout and hash algorithm."""
        self.layout = layout
        self.hash_kind = hash_kind

    def put(self, data: bytes, hash_kind: Optional[HashKind] = None) -> Hash:
        """
        Store bytes and return their hash.

        hash_kind overrides the store's default algorithm for this object.

        The object is stored immutably:
        - Hash is computed from the bytes
        - Object is written atomically (temp file + rename)
        - If hash already exists, no write (idempotent); the existing
          object is marked fresh for the garbage collector's grace window

        Returns the content hash.
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Can only store bytes, got {type(data).__name__}")
        data = bytes(data)
        obj_hash = compute_hash(data, hash_kind or self.hash_kind)

        obj_path = self.layout.get_object_path(obj_hash)
        if obj_path.exists():
            # Verify existing object integrity
            try:
                verify_object_integrity(self._read_object_file(obj_hash), obj_hash)
                self.touch(obj_hash)
                return obj_hash  # Already exists and valid
            except ObjectCorruptedError:
                logger.warning("Replacing corrupted object %s", obj_hash)
            except ObjectNotFoundError:
                pass  # Deleted concurrently, write it again

        with self.open_writer(obj_hash.kind) as writer:
            writer.write(data)
            return writer.commit()

    def open_writer(self, hash_kind: Optional[HashKind] = None) -> ObjectWriter:
        """Create a writer for streaming data into the store in constant memory."""
        return ObjectWriter(self, hash_kind)

    def get(self, obj_hash: Hash, verify: bool = True) -> bytes:
        """
        Retrieve object bytes by hash.

        If verify=True (default), re-hashes the bytes before returning.

        Raises ObjectNotFoundError if object doesn't exist.
        Raises ObjectCorruptedError if verification fails.
        """
        data = self._read_object_file(obj_hash)
        if verify:
            verify_object_integrity(data, obj_hash)
        return data

    def has(self, obj_hash: Hash) -> bool:
        """Check if an object exists in the store."""
        return self.layout.object_exists(obj_hash)

    def delete(self, obj_hash: Hash) -> bool:
        """
        Delete an object from the store.

        Only the garbage collector calls this: deleting an object that a
        live manifest references corrupts everything depending on it.

        Returns True if deleted, False if didn't exist.
        """
        obj_path = self.layout.get_object_path(obj_hash)
        try:
            obj_path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError("delete_object", str(obj_path), e) from e
        logger.debug("Deleted object %s", obj_hash)
        return True

    def list(self) -> Iterator[Hash]:
        """
        Enumerate all stored hashes.

        Lazy and one-shot; order is unspecified.
        """
        return self.layout.iter_objects()

    def touch(self, obj_hash: Hash) -> None:
        """Mark an object as freshly written."""
        obj_path = self.layout.get_object_path(obj_hash)
        try:
            os.utime(obj_path)
        except FileNotFoundError:
            raise ObjectNotFoundError(obj_hash) from None
        except OSError as e:
            raise StorageError("touch_object", str(obj_path), e) from e

    def mtime(self, obj_hash: Hash) -> float:
        """Last write (or refresh) time of an object, in seconds since the epoch."""
        return self._stat(obj_hash).st_mtime

    def size(self, obj_hash: Hash) -> int:
        """Size of an object in bytes."""
        return self._stat(obj_hash).st_size

    def prune_temp(self, grace_period: float) -> int:
        """
        Remove abandoned temporary files older than grace_period seconds.

        Writers interrupted by a crash leave their staging file behind.
        Returns the number of files removed.
        """
        temp_dir = self.layout.temp_dir
        if not temp_dir.exists():
            return 0

        removed = 0
        now = time.time()
        with io_guard("list_temp", temp_dir):
            candidates = [p for p in temp_dir.iterdir() if p.name.startswith(TEMP_PREFIX)]
        for path in candidates:
            try:
                if now - path.stat().st_mtime > grace_period:
                    path.unlink()
                    removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StorageError("prune_temp", str(path), e) from e
        if removed:
            logger.info("Pruned %d abandoned temp files", removed)
        return removed

    def stats(self) -> dict:
        """Get storage statistics."""
        return self.layout.get_storage_stats()

    def __contains__(self, obj_hash: Hash) -> bool:
        return self.has(obj_hash)

    def __iter__(self) -> Iterator[Hash]:
        return self.list()

    def _stat(self, obj_hash: Hash) -> os.stat_result:
        obj_path = self.layout.get_object_path(obj_hash)
        try:
            return obj_path.stat()
        except FileNotFoundError:
            raise ObjectNotFoundError(obj_hash) from None
        except OSError as e:
            raise StorageError("stat_object", str(obj_path), e) from e

    def _read_object_file(self, obj_hash: Hash) -> bytes:
        """Read object file contents."""
        obj_path = self.layout.get_object_path(obj_hash)
        try:
            with open(obj_path, 'rb') as f:
                return f.read()
        except (FileNotFoundError, NotADirectoryError):
            raise ObjectNotFoundError(obj_hash) from None
        except OSError as e:
            raise StorageError("read_object", str(obj_path), e) from e

    def _install(self, temp_path: Path, obj_hash: Hash) -> None:
        """
        Move a fully written temp file into place under its hash.

        The rename is atomic, so concurrent readers see either nothing
        or the complete object.
        """
        obj_path = self.layout.get_object_path(obj_hash)
        if obj_path.exists():
            try:
                verify_object_integrity(self._read_object_file(obj_hash), obj_hash)
                self.touch(obj_hash)
            except (ObjectCorruptedError, ObjectNotFoundError):
                pass  # Replace below
            else:
                with io_guard("discard_temp", temp_path):
                    temp_path.unlink()
                return

        self.layout.ensure_object_directory(obj_hash)
        with io_guard("install_object", obj_path):
            os.replace(temp_path, obj_path)
        logger.debug("Stored object %s", obj_hash)


def open_store(path, hash_kind: HashKind = DEFAULT_HASH_KIND, initialize: bool = True) -> ObjectStore:
    """Open an object store rooted at `path`, creating it if necessary."""
    layout = StorageLayout(Path(path))
    if initialize:
        layout.initialize()
    return ObjectStore(layout, hash_kind)
