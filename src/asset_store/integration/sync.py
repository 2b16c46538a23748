"""
Synchronization from a peer.

Pulls exactly the objects of a remote closure that the local store is
missing, verifying every transferred object against the hash it was
requested under and storing leaves before the manifests that reference
them, so a concurrent reader never sees a manifest with a missing
dependency.
"""

import logging
import threading
from typing import Optional, Set, Tuple

from ..errors import (
    IncompleteGraphError,
    IntegrityMismatchError,
    ObjectCorruptedError,
    ObjectNotFoundError,
    PeerError,
    ReferenceCycleError,
    TraversalLimitError,
)
from ..integrity.hashing import Hash, compute_hash
from ..model.objects import decode_object
from ..storage.closure import ClosureResolver

logger = logging.getLogger(__name__)


class Synchronizer:
    """
    Replicates closures from a peer into a local object store.

    Sync is restartable: an interrupted pull leaves only complete objects
    behind (each put is all-or-nothing), and running it again fetches
    whatever is still missing.
    """

    def __init__(self, local, peer, max_objects: Optional[int] = None):
        """
        Initialize a synchronizer.

        Args:
            local: ObjectStore receiving the objects
            peer: object with fetch(hash) -> bytes, optionally closure_of(root)
            max_objects: optional bound on the size of a pulled closure
        """
        self.local = local
        self.peer = peer
        self.max_objects = max_objects

    def fetch(self, obj_hash: Hash) -> bytes:
        """
        Fetch one object from the peer and verify it.

        Raises ObjectNotFoundError if the peer does not have it,
        IntegrityMismatchError if the bytes do not hash to obj_hash,
        PeerError for any other peer failure.
        """
        try:
            data = self.peer.fetch(obj_hash)
        except ObjectNotFoundError:
            raise
        except Exception as e:
            # Transport failures (timeouts, resets) never count as delivery
            raise PeerError(obj_hash, e) from e

        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise PeerError(obj_hash, TypeError(f"peer returned {type(data).__name__}"))
        data = bytes(data)

        actual = compute_hash(data, obj_hash.kind)
        if actual != obj_hash:
            logger.error("Integrity mismatch from peer: requested %s, received %s", obj_hash, actual)
            raise IntegrityMismatchError(obj_hash, actual)
        return data

    def get(self, obj_hash: Hash) -> bytes:
        """
        Bytes for obj_hash, from the local store when it holds an intact
        copy, otherwise from the peer.
        """
        data, _ = self._read(obj_hash)
        return data

    def missing(self, root: Hash) -> Set[Hash]:
        """
        Hashes in the closure of root on the peer that are absent locally.

        Raises IncompleteGraphError if the remote graph cannot be resolved.
        """
        remote = self._remote_closure(root)
        return {obj_hash for obj_hash in remote if not self.local.has(obj_hash)}

    def pull(self, root: Hash, cancel: Optional[threading.Event] = None) -> dict:
        """
        Make the closure of root fully present in the local store.

        Walks the graph depth-first and stores each object after all of
        its references (post-order). Objects already present locally are
        reused but their references are still walked, since a local
        manifest may have lost dependencies to a sweep.

        Args:
            root: root hash to replicate
            cancel: optional event; when set, the pull stops between objects

        Returns dict with:
            - root: the requested root
            - fetched: hashes transferred from the peer, in store order
            - present: hashes that were already present locally
            - bytes_transferred: total size of fetched objects
            - cancelled: True if the pull was interrupted

        Raises IncompleteGraphError if the peer lacks a reachable object,
        IntegrityMismatchError if the peer sends wrong bytes, PeerError for
        other peer failures, MalformedManifestError for undecodable manifests.
        """
        result = {
            'root': root,
            'fetched': [],
            'present': [],
            'bytes_transferred': 0,
            'cancelled': False,
        }
        logger.info("Sync started for %s", root)

        done: Set[Hash] = set()
        in_progress: Set[Hash] = set()
        # Entries: (hash, referencing hash, bytes, was local, pending refs)
        stack = [(root, None, None, False, None)]

        while stack:
            if cancel is not None and cancel.is_set():
                result['cancelled'] = True
                logger.warning("Sync of %s cancelled after %d objects", root, len(result['fetched']))
                break

            obj_hash, parent, data, local, pending = stack.pop()
            if pending is None:
                if obj_hash in done:
                    continue
                if obj_hash in in_progress:
                    raise ReferenceCycleError(obj_hash)
                if self.max_objects is not None and len(done) + len(in_progress) >= self.max_objects:
                    raise TraversalLimitError(obj_hash, self.max_objects)

                data, local = self._load(obj_hash, parent)
                in_progress.add(obj_hash)
                pending = list(decode_object(data, obj_hash).references)
                pending.reverse()

            while pending and pending[-1] in done:
                pending.pop()

            if pending:
                child = pending.pop()
                stack.append((obj_hash, parent, data, local, pending))
                stack.append((child, obj_hash, None, False, None))
                continue

            # Every reference is stored; the object itself can follow
            if local:
                result['present'].append(obj_hash)
            else:
                self._store(obj_hash, data)
                result['fetched'].append(obj_hash)
                result['bytes_transferred'] += len(data)
            in_progress.discard(obj_hash)
            done.add(obj_hash)

        logger.info(
            "Sync of %s finished: %d fetched (%d bytes), %d already present",
            root, len(result['fetched']), result['bytes_transferred'], len(result['present']),
        )
        return result

    def _read(self, obj_hash: Hash) -> Tuple[bytes, bool]:
        """Return (bytes, was_local) for obj_hash."""
        if self.local.has(obj_hash):
            try:
                return self.local.get(obj_hash), True
            except ObjectNotFoundError:
                pass  # Swept since the check
            except ObjectCorruptedError:
                logger.warning("Local copy of %s is corrupt, fetching from peer", obj_hash)

        return self.fetch(obj_hash), False

    def _load(self, obj_hash: Hash, parent: Optional[Hash] = None) -> Tuple[bytes, bool]:
        try:
            return self._read(obj_hash)
        except ObjectNotFoundError as e:
            if parent is None:
                reason = "peer does not have the root"
            else:
                reason = f"peer does not have object referenced by {parent}"
            logger.warning("Sync aborted at %s: %s", obj_hash, reason)
            raise IncompleteGraphError(obj_hash, reason) from e

    def _store(self, obj_hash: Hash, data: bytes) -> None:
        stored = self.local.put(data, obj_hash.kind)
        if stored != obj_hash:
            raise IntegrityMismatchError(obj_hash, stored)
        logger.debug("Stored %s (%d bytes)", obj_hash, len(data))

    def _remote_closure(self, root: Hash) -> Set[Hash]:
        closure_of = getattr(self.peer, 'closure_of', None)
        if closure_of is not None:
            try:
                return set(closure_of(root))
            except IncompleteGraphError:
                raise
            except ObjectNotFoundError as e:
                raise IncompleteGraphError(e.object_hash, str(e)) from e
            except Exception as e:
                raise PeerError(root, e) from e

        try:
            return ClosureResolver(self, self.max_objects).closure([root])
        except ObjectNotFoundError as e:
            raise IncompleteGraphError(e.object_hash, str(e)) from e
