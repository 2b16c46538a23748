"""
Closure resolution over the reference graph.

Computes the set of hashes transitively reachable from a set of roots,
and a leaves-first ordering of that set.
"""

import logging
from collections import deque
from typing import Iterable, List, Optional, Set, Tuple

from ..errors import (
    DanglingReferenceError,
    ObjectNotFoundError,
    ReferenceCycleError,
    TraversalLimitError,
)
from ..integrity.hashing import Hash
from ..model.objects import decode_object

logger = logging.getLogger(__name__)


class ClosureResolver:
    """
    Walks manifests to find every object reachable from given roots.

    The source can be anything exposing get(hash) -> bytes: an
    ObjectStore, an ArchiveSet or a peer adapter.

    Manifests are written after everything they reference, so the graph
    is acyclic. The visited set still guarantees termination if a
    corrupted store breaks that, and max_objects bounds the walk.
    """

    def __init__(self, source, max_objects: Optional[int] = None):
        """
        Initialize a resolver.

        source: object with get(hash) -> bytes
        max_objects: optional bound on the number of objects visited
        """
        self.source = source
        self.max_objects = max_objects

    def references(self, obj_hash: Hash, referencing: Optional[Hash] = None) -> Tuple[Hash, ...]:
        """
        Direct dependencies of an object (empty for blobs).

        Raises ObjectNotFoundError if the object is missing, or
        DanglingReferenceError when `referencing` names the manifest that
        pointed at it.
        """
        try:
            data = self.source.get(obj_hash)
        except ObjectNotFoundError:
            if referencing is None:
                raise
            raise DanglingReferenceError(referencing, obj_hash) from None
        return decode_object(data, obj_hash).references

    def closure(self, roots: Iterable[Hash]) -> Set[Hash]:
        """
        Compute the closure of roots, roots included.

        Uses breadth-first traversal. Only the resulting set is meaningful;
        the order of the walk is not.

        Raises ObjectNotFoundError for a missing root, DanglingReferenceError
        for a missing dependency, MalformedManifestError and
        ObjectCorruptedError as raised by decoding and the source,
        TraversalLimitError if max_objects is exceeded.
        """
        visited: Set[Hash] = set()
        queue = deque((root, None) for root in roots)

        while queue:
            obj_hash, parent = queue.popleft()

            # Skip if already processed
            if obj_hash in visited:
                continue
            self._check_limit(obj_hash, len(visited))
            visited.add(obj_hash)

            for ref in self.references(obj_hash, parent):
                if ref not in visited:
                    queue.append((ref, obj_hash))

        logger.debug("Resolved closure of %d objects", len(visited))
        return visited

    def topological_order(self, roots: Iterable[Hash]) -> List[Hash]:
        """
        Order the closure of roots so that every object comes after all
        objects it references (leaves first).

        Uses an iterative depth-first post-order walk. A cycle can only
        exist in a corrupted store and raises ReferenceCycleError.
        """
        order: List[Hash] = []
        done: Set[Hash] = set()
        in_progress: Set[Hash] = set()

        for root in roots:
            if root in done:
                continue
            stack = [(root, None, None)]
            while stack:
                obj_hash, parent, pending = stack.pop()
                if pending is None:
                    if obj_hash in done:
                        continue
                    if obj_hash in in_progress:
                        raise ReferenceCycleError(obj_hash)
                    self._check_limit(obj_hash, len(done) + len(in_progress))
                    in_progress.add(obj_hash)
                    pending = list(self.references(obj_hash, parent))
                    pending.reverse()

                while pending and pending[-1] in done:
                    pending.pop()

                if pending:
                    child = pending.pop()
                    stack.append((obj_hash, parent, pending))
                    stack.append((child, obj_hash, None))
                else:
                    in_progress.discard(obj_hash)
                    done.add(obj_hash)
                    order.append(obj_hash)

        return order

    def _check_limit(self, obj_hash: Hash, seen: int) -> None:
        if self.max_objects is not None and seen >= self.max_objects:
            raise TraversalLimitError(obj_hash, self.max_objects)


def closure(roots: Iterable[Hash], store, max_objects: Optional[int] = None) -> Set[Hash]:
    """Compute the set of hashes reachable from roots in store."""
    return ClosureResolver(store, max_objects).closure(roots)
