"""
Filesystem layout for object storage.

Implements content-addressed storage with directory sharding.
"""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from ..errors import HashParseError, InvalidReferenceError, StorageError
from ..integrity.hashing import Hash, HashKind, get_hash_prefix

TEMP_PREFIX = '.tmp_'


@contextmanager
def io_guard(operation: str, path):
    """
    Scope one filesystem operation.

    Any OSError escaping the block is surfaced as StorageError naming the
    operation and path; nothing is retried.
    """
    try:
        yield
    except StorageError:
        raise
    except OSError as e:
        raise StorageError(operation, str(path), e) from e


class StorageLayout:
    """
    Manages filesystem layout for content-addressed objects.

    Layout:
        store_root/
            objects/
                <kind>/
                    <prefix>/
                        <hex digest>   # object file
            temp/
                .tmp_*                 # in-flight writes
            refs/
                <name>                 # named root references
    """

    def __init__(self, store_root: Path):
        """Initialize storage layout at given root."""
        self.store_root = Path(store_root).resolve()
        self.objects_dir = self.store_root / "objects"
        self.temp_dir = self.store_root / "temp"
        self.refs_dir = self.store_root / "refs"

    def initialize(self) -> None:
        """
        Initialize storage directory structure.

        Creates all necessary directories.
        Idempotent - safe to call multiple times.
        """
        with io_guard("initialize", self.store_root):
            self.store_root.mkdir(parents=True, exist_ok=True)
            self.objects_dir.mkdir(exist_ok=True)
            self.temp_dir.mkdir(exist_ok=True)
            self.refs_dir.mkdir(exist_ok=True)

    def get_object_path(self, obj_hash: Hash) -> Path:
        """
        Get filesystem path for an object by its hash.

        Uses 2-character prefix of the hex digest for directory sharding.
        """
        prefix = get_hash_prefix(obj_hash, 2)
        return self.objects_dir / obj_hash.kind.value / prefix / obj_hash.hex

    def get_ref_path(self, ref_name: str) -> Path:
        """Get path for a named reference."""
        safe_name = self._check_ref_name(ref_name)
        return self.refs_dir / safe_name

    def ensure_object_directory(self, obj_hash: Hash) -> Path:
        """Ensure the directory for an object exists and return it."""
        prefix_dir = self.get_object_path(obj_hash).parent
        with io_guard("mkdir", prefix_dir):
            prefix_dir.mkdir(parents=True, exist_ok=True)
        return prefix_dir

    def iter_objects(self) -> Iterator[Hash]:
        """
        Lazily enumerate all object hashes in the store.

        Scans kind and prefix directories. Entries that do not parse as a
        hash of a known kind (temp files, strays) are skipped.
        """
        if not self.objects_dir.exists():
            return

        with io_guard("list_objects", self.objects_dir):
            kind_dirs = list(os.scandir(self.objects_dir))
        for kind_entry in kind_dirs:
            if not kind_entry.is_dir():
                continue
            try:
                kind = HashKind(kind_entry.name)
            except ValueError:
                continue
            yield from self._iter_kind(kind, Path(kind_entry.path))

    def _iter_kind(self, kind: HashKind, kind_dir: Path) -> Iterator[Hash]:
        with io_guard("list_objects", kind_dir):
            prefix_dirs = [e.path for e in os.scandir(kind_dir) if e.is_dir()]
        for prefix_dir in prefix_dirs:
            try:
                with os.scandir(prefix_dir) as entries:
                    names = [e.name for e in entries if e.is_file()]
            except FileNotFoundError:
                # prefix directory removed by a concurrent sweep
                continue
            except OSError as e:
                raise StorageError("list_objects", prefix_dir, e) from e
            for name in names:
                try:
                    yield Hash.parse(f"{kind.value}:{name}")
                except HashParseError:
                    continue

    def list_refs(self) -> list[str]:
        """List all named references."""
        if not self.refs_dir.exists():
            return []

        with io_guard("list_refs", self.refs_dir):
            return sorted(f.name for f in self.refs_dir.iterdir() if f.is_file())

    def object_exists(self, obj_hash: Hash) -> bool:
        """Check if an object exists in storage."""
        return self.get_object_path(obj_hash).is_file()

    @staticmethod
    def _check_ref_name(name: str) -> str:
        """
        Check that a ref name maps to exactly one file under refs/.

        Names are never rewritten, so two distinct names can not share a
        file. Path separators, NUL, leading dots and the empty name are
        rejected to prevent directory traversal.
        """
        if not isinstance(name, str) or not name:
            raise InvalidReferenceError(f"invalid ref name {name!r}")
        if '/' in name or '\\' in name or '\0' in name:
            raise InvalidReferenceError(f"ref name {name!r} contains a reserved character")
        if name.startswith('.'):
            raise InvalidReferenceError(f"ref name {name!r} starts with a dot")
        return name

    def get_storage_stats(self) -> dict:
        """
        Get storage statistics.

        Returns dict with:
        - total_objects: number of objects
        - total_size_bytes: total size in bytes
        - refs: number of named references
        """
        stats = {
            'total_objects': 0,
            'total_size_bytes': 0,
            'refs': 0,
        }

        for obj_hash in self.iter_objects():
            try:
                size = self.get_object_path(obj_hash).stat().st_size
            except FileNotFoundError:
                continue  # Deleted since enumeration
            stats['total_objects'] += 1
            stats['total_size_bytes'] += size

        stats['refs'] = len(self.list_refs())
        return stats
