"""
Root sets for garbage collection and sync.

A root set is owned by the caller, never by the store. RootSet adds a
barrier so a collector can hold the set still while it marks; RootRefs
persists named roots next to the objects.
"""

import os
import tempfile
import threading
from contextlib import contextmanager
from typing import FrozenSet, Iterable, Iterator, List, Optional

from ..errors import HashParseError, InvalidReferenceError, ObjectNotFoundError, StorageError
from ..integrity.hashing import Hash
from .layout import TEMP_PREFIX, StorageLayout, io_guard


class RootSet:
    """
    A mutable collection of published root hashes with a mutation barrier.

    Writers add a root once the object it names (and everything that
    object references) is in the store. While a collector holds frozen(),
    add() and discard() block, so marking always sees one stable set.
    """

    def __init__(self, roots: Iterable[Hash] = ()):
        self._roots = set()
        self._lock = threading.RLock()
        for root in roots:
            self.add(root)

    def add(self, root: Hash) -> None:
        if not isinstance(root, Hash):
            raise InvalidReferenceError(f"expected Hash, got {type(root).__name__}")
        with self._lock:
            self._roots.add(root)

    def discard(self, root: Hash) -> None:
        with self._lock:
            self._roots.discard(root)

    def snapshot(self) -> FrozenSet[Hash]:
        """Point-in-time copy of the roots."""
        with self._lock:
            return frozenset(self._roots)

    @contextmanager
    def frozen(self) -> Iterator[FrozenSet[Hash]]:
        """
        Hold the set still for the duration of the block.

        Yields the snapshot; mutations from other threads wait until the
        block exits.
        """
        with self._lock:
            yield frozenset(self._roots)

    def __contains__(self, root: Hash) -> bool:
        with self._lock:
            return root in self._roots

    def __len__(self) -> int:
        with self._lock:
            return len(self._roots)

    def __iter__(self) -> Iterator[Hash]:
        return iter(self.snapshot())

    def __repr__(self) -> str:
        return f"RootSet(roots={len(self)})"


class RootRefs:
    """
    Named references to root objects, stored as small files under refs/.

    Each reference is one possible source of GC roots; the collector
    itself only ever sees the hashes. Passing a RootRefs to a collector
    holds set() and delete() off while it marks, the same barrier a
    RootSet gives. The barrier covers one RootRefs instance; other
    processes writing the same refs/ directory are not held off.
    """

    def __init__(self, layout: StorageLayout, store=None):
        """
        Initialize named references.

        store: optional object store used to check that targets exist
        """
        self.layout = layout
        self.store = store
        self._lock = threading.RLock()

    def set(self, name: str, target: Hash) -> None:
        """
        Point a named reference at an object.

        The new value is staged in temp/ under a unique name and renamed
        over the ref, so concurrent writers of one ref never collide and
        readers see either the old or the new target.

        Raises ObjectNotFoundError if a store is attached and the target
        is absent.
        """
        if not isinstance(target, Hash):
            raise InvalidReferenceError(f"expected Hash, got {type(target).__name__}")
        ref_path = self.layout.get_ref_path(name)

        with self._lock:
            if self.store is not None and not self.store.has(target):
                raise ObjectNotFoundError(target)

            with io_guard("write_ref", ref_path):
                ref_path.parent.mkdir(parents=True, exist_ok=True)
                self.layout.temp_dir.mkdir(parents=True, exist_ok=True)
                fd, temp_name = tempfile.mkstemp(
                    dir=str(self.layout.temp_dir),
                    prefix=TEMP_PREFIX,
                )
            try:
                with io_guard("write_ref", temp_name):
                    with os.fdopen(fd, 'w', encoding='utf-8') as f:
                        f.write(str(target))
                    os.replace(temp_name, ref_path)
            except BaseException:
                try:
                    os.unlink(temp_name)
                except FileNotFoundError:
                    pass
                raise

    def get(self, name: str) -> Optional[Hash]:
        """
        Get the hash a named reference points at.

        Returns None if reference doesn't exist.
        """
        ref_path = self.layout.get_ref_path(name)
        try:
            text = ref_path.read_text(encoding='utf-8')
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError("read_ref", str(ref_path), e) from e
        try:
            return Hash.parse(text.strip())
        except HashParseError as e:
            raise InvalidReferenceError(f"ref {name!r} is unreadable: {e}") from e

    def delete(self, name: str) -> bool:
        """
        Delete a named reference.

        Returns True if deleted, False if didn't exist.
        """
        ref_path = self.layout.get_ref_path(name)
        with self._lock:
            try:
                ref_path.unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageError("delete_ref", str(ref_path), e) from e
        return True

    def names(self) -> List[str]:
        """List all reference names."""
        return self.layout.list_refs()

    def targets(self) -> FrozenSet[Hash]:
        """Targets of all named references."""
        with self._lock:
            found = set()
            for name in self.names():
                target = self.get(name)
                if target is not None:
                    found.add(target)
            return frozenset(found)

    @contextmanager
    def frozen(self) -> Iterator[FrozenSet[Hash]]:
        """
        Hold the refs still for the duration of the block.

        Yields the targets read inside the block; set() and delete() from
        other threads wait until it exits.
        """
        with self._lock:
            yield self.targets()

    def root_set(self) -> RootSet:
        """Collect the targets of all named references into a RootSet."""
        return RootSet(self.targets())

    def __iter__(self) -> Iterator[Hash]:
        return iter(self.targets())
