"""
Garbage collection for unreachable objects.

Implements mark-and-sweep with safety guarantees.
"""

import enum
import logging
import threading
import time
from typing import Iterable, List, Optional, Set, Union

from ..errors import (
    GarbageCollectionError,
    IncompleteGraphError,
    MalformedManifestError,
    ObjectCorruptedError,
    ObjectNotFoundError,
)
from ..integrity.hashing import Hash
from ..integrity.verification import verify_graph
from .closure import ClosureResolver
from .roots import RootRefs, RootSet

logger = logging.getLogger(__name__)


class GCState(enum.Enum):
    IDLE = 'idle'
    MARKING = 'marking'
    SWEEPING = 'sweeping'


class GarbageCollector:
    """
    Garbage collector for a content-addressed object store.

    Uses mark-and-sweep:
    1. Enumerate: take a point-in-time listing of the store
    2. Mark: compute the closure of the root set
    3. Sweep: delete listed objects that were not marked

    Safety guarantees:
    - Never deletes an object reachable from the roots when marking ends
    - A dangling reference, malformed manifest or corrupt object found
      while marking aborts the cycle before anything is deleted
    - Objects written after the listing are not candidates this cycle;
      with a grace period, objects written or re-put within it are kept

    Writers must make a new object reachable (write the manifest that
    references it, or add it to the root set) before a cycle marks. Pass
    a RootSet or RootRefs to hold root mutations off during marking; a plain
    iterable of hashes is only safe if the caller keeps it stable for the cycle.
    """

    def __init__(
        self,
        store,
        grace_period: Optional[float] = None,
        max_objects: Optional[int] = None,
    ):
        """
        Initialize garbage collector.

        store: ObjectStore to collect
        grace_period: seconds; objects written or refreshed this recently
            before the cycle started are kept. None or 0 disables the check.
        max_objects: optional bound on marking traversal size
        """
        self.store = store
        self.grace_period = grace_period
        self.resolver = ClosureResolver(store, max_objects)
        self.state = GCState.IDLE
        self._cycle_lock = threading.Lock()

    def collect(
        self,
        roots: Union[RootSet, RootRefs, Iterable[Hash]],
        dry_run: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> dict:
        """
        Run one garbage collection cycle.

        Args:
            roots: RootSet, RootRefs or iterable of root hashes to keep
            dry_run: if True, only report what would be deleted
            cancel: optional event; when set, sweeping stops early

        Returns dict with:
            - reachable: set of reachable object hashes
            - unreachable: set of listed objects not reachable
            - deleted: list of deleted object hashes (empty if dry_run)
            - skipped_fresh: list of unreachable hashes kept by the grace period
            - cancelled: True if sweeping was interrupted

        Raises IncompleteGraphError if marking cannot resolve the graph,
        GarbageCollectionError if another cycle is running, StorageError
        on storage faults.
        """
        if not self._cycle_lock.acquire(blocking=False):
            raise GarbageCollectionError("a collection cycle is already running")
        try:
            return self._run_cycle(roots, dry_run, cancel)
        finally:
            self.state = GCState.IDLE
            self._cycle_lock.release()

    def _run_cycle(self, roots, dry_run: bool, cancel: Optional[threading.Event]) -> dict:
        result = {
            'reachable': set(),
            'unreachable': set(),
            'deleted': [],
            'skipped_fresh': [],
            'cancelled': False,
        }
        started = time.time()

        # Phase 1: Point-in-time listing of candidates
        candidates = set(self.store.list())
        logger.info("GC cycle started: %d objects listed", len(candidates))

        # Phase 2: Mark - find all reachable objects
        self.state = GCState.MARKING
        reachable = self._mark(roots)
        result['reachable'] = reachable

        unreachable = candidates - reachable
        result['unreachable'] = unreachable

        if dry_run:
            logger.info(
                "GC dry run finished: %d reachable, %d unreachable",
                len(reachable), len(unreachable),
            )
            return result

        # Phase 3: Sweep - delete unreachable objects
        self.state = GCState.SWEEPING
        for obj_hash in sorted(unreachable):
            if cancel is not None and cancel.is_set():
                result['cancelled'] = True
                logger.warning("GC cycle cancelled after %d deletions", len(result['deleted']))
                break

            if self._is_fresh(obj_hash, started):
                result['skipped_fresh'].append(obj_hash)
                continue

            if self.store.delete(obj_hash):
                result['deleted'].append(obj_hash)

        if not result['cancelled'] and self.grace_period:
            self.store.prune_temp(self.grace_period)

        logger.info(
            "GC cycle finished: %d reachable, %d deleted, %d kept as fresh",
            len(reachable), len(result['deleted']), len(result['skipped_fresh']),
        )
        return result

    def _mark(self, roots) -> Set[Hash]:
        """
        Mark all objects reachable from roots.

        A RootSet or RootRefs is held frozen for the whole marking phase.
        """
        if isinstance(roots, (RootSet, RootRefs)):
            with roots.frozen() as stable_roots:
                return self._mark_reachable(stable_roots)
        return self._mark_reachable(set(roots))

    def _mark_reachable(self, roots: Set[Hash]) -> Set[Hash]:
        try:
            return self.resolver.closure(roots)
        except IncompleteGraphError as e:
            logger.warning("GC aborted: %s", e)
            raise
        except ObjectNotFoundError as e:
            logger.warning("GC aborted: %s", e)
            raise IncompleteGraphError(e.object_hash, str(e)) from e
        except (MalformedManifestError, ObjectCorruptedError) as e:
            logger.warning("GC aborted: %s", e)
            raise IncompleteGraphError(e.object_hash, str(e)) from e

    def _is_fresh(self, obj_hash: Hash, started: float) -> bool:
        if not self.grace_period:
            return False
        try:
            mtime = self.store.mtime(obj_hash)
        except ObjectNotFoundError:
            return True  # Already gone, nothing to delete
        return mtime >= started - self.grace_period

    def verify_gc_safety(self, roots: Iterable[Hash]) -> List[str]:
        """
        Verify that garbage collection would be safe.

        Checks:
        - All roots exist
        - Every object reachable from the roots exists and is intact

        Returns list of warnings/errors.
        """
        roots = set(roots)
        issues = []

        for root in sorted(roots):
            if not self.store.has(root):
                issues.append(f"Root does not exist: {root}")

        _, errors = verify_graph(roots, self.store)
        for error in errors:
            if error not in issues and not error.startswith("Root "):
                issues.append(error)

        return issues
