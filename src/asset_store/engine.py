"""
Asset Store Engine.

Main entry point coordinating all components.
"""

import threading
from pathlib import Path
from typing import BinaryIO, Iterable, List, Optional, Set

from .config import StoreConfig
from .errors import AssetStoreError, InvalidObjectError, InvalidReferenceError
from .integration.peers import StorePeer
from .integration.sync import Synchronizer
from .integrity.hashing import DEFAULT_HASH_KIND, Hash, HashKind
from .integrity.verification import scan_store, verify_graph
from .model.manifest import MANIFEST_MAGIC, Manifest, is_manifest_bytes
from .model.objects import AssetObject, decode_object
from .storage.archive import write_archive
from .storage.closure import ClosureResolver
from .storage.gc import GarbageCollector
from .storage.layout import StorageLayout
from .storage.object_store import ObjectStore
from .storage.roots import RootRefs, RootSet

STREAM_CHUNK_SIZE = 1 << 16


class AssetStore:
    """
    Main engine for asset store operations.

    This is the primary interface for:
    - Storing blobs and manifests
    - Retrieving and verifying objects
    - Resolving closures of root hashes
    - Managing named roots
    - Running garbage collection
    - Pulling closures from peers and packing archives
    """

    def __init__(
        self,
        store_path,
        hash_kind: HashKind = DEFAULT_HASH_KIND,
        grace_period: Optional[float] = None,
        max_traversal: Optional[int] = None,
    ):
        """
        Initialize asset store at given path.

        Args:
            store_path: filesystem path for object storage
            hash_kind: algorithm for newly written objects
            grace_period: GC keeps objects refreshed this many seconds
                before a cycle starts; None keeps nothing extra
            max_traversal: optional bound on closure walks
        """
        self.store_path = Path(store_path).resolve()
        self.layout = StorageLayout(self.store_path)
        self.object_store = ObjectStore(self.layout, hash_kind)
        self.refs = RootRefs(self.layout, self.object_store)
        self.max_traversal = max_traversal
        self.resolver = ClosureResolver(self.object_store, max_traversal)
        self.gc = GarbageCollector(self.object_store, grace_period, max_traversal)

    @classmethod
    def from_config(cls, config: StoreConfig) -> 'AssetStore':
        """Build a store from runtime configuration."""
        return cls(
            config.store_root,
            hash_kind=config.hash_kind,
            grace_period=config.gc_grace_seconds,
            max_traversal=config.max_traversal,
        )

    def initialize(self) -> None:
        """
        Initialize the store.

        Creates necessary directory structure.
        Safe to call multiple times (idempotent).
        """
        self.layout.initialize()

    # ========== Object Storage ==========

    def put_blob(self, data: bytes) -> Hash:
        """
        Store a blob and return its hash.

        Raises InvalidObjectError if the payload starts with the manifest
        tag; such bytes would be read back as a manifest.
        """
        if is_manifest_bytes(data):
            raise InvalidObjectError(f"blob payload starts with manifest tag {MANIFEST_MAGIC!r}")
        return self.object_store.put(data)

    def put_blob_stream(self, stream: BinaryIO, chunk_size: int = STREAM_CHUNK_SIZE) -> Hash:
        """
        Store a blob read from a binary stream in constant memory.

        Returns the content hash.
        """
        head = b''
        with self.object_store.open_writer() as writer:
            for chunk in iter(lambda: stream.read(chunk_size), b''):
                if len(head) < len(MANIFEST_MAGIC):
                    head += chunk[:len(MANIFEST_MAGIC) - len(head)]
                writer.write(chunk)
            if is_manifest_bytes(head):
                raise InvalidObjectError(f"blob payload starts with manifest tag {MANIFEST_MAGIC!r}")
            return writer.commit()

    def put_manifest(self, refs: Iterable[Hash], metadata: Optional[dict] = None) -> Hash:
        """
        Store a manifest referencing existing objects.

        Args:
            refs: ordered dependency hashes; each must already be stored
            metadata: optional JSON object

        Returns the manifest hash.

        Raises InvalidReferenceError if a reference is not in the store.
        """
        manifest = Manifest(refs, metadata)
        for ref in manifest.refs:
            if not isinstance(ref, Hash):
                raise InvalidReferenceError(f"expected Hash, got {type(ref).__name__}")
            if not self.object_store.has(ref):
                raise InvalidReferenceError(f"referenced object {ref} is not in the store")
        return self.object_store.put(manifest.to_bytes())

    def get(self, obj_hash: Hash) -> bytes:
        """Retrieve verified object bytes."""
        return self.object_store.get(obj_hash)

    def get_object(self, obj_hash: Hash) -> AssetObject:
        """Retrieve and decode an object (Blob or Manifest)."""
        return decode_object(self.object_store.get(obj_hash), obj_hash)

    def get_manifest(self, manifest_hash: Hash) -> Manifest:
        """
        Retrieve a manifest by hash.

        Raises InvalidObjectError if the object is a blob.
        """
        obj = self.get_object(manifest_hash)
        if not isinstance(obj, Manifest):
            raise InvalidObjectError("object is not a manifest", manifest_hash)
        return obj

    def has_object(self, obj_hash: Hash) -> bool:
        """Check if an object exists."""
        return self.object_store.has(obj_hash)

    def list_objects(self) -> List[Hash]:
        """List all object hashes in store, sorted."""
        return sorted(self.object_store.list())

    # ========== Reference Graph ==========

    def closure(self, roots: Iterable[Hash]) -> Set[Hash]:
        """Set of hashes reachable from roots, roots included."""
        return self.resolver.closure(roots)

    def topological_order(self, roots: Iterable[Hash]) -> List[Hash]:
        """Closure of roots ordered leaves first."""
        return self.resolver.topological_order(roots)

    # ========== Named References ==========

    def set_ref(self, name: str, target: Hash) -> None:
        """
        Create or move a named reference.

        Named references are GC roots: their closures are protected.
        """
        self.refs.set(name, target)

    def get_ref(self, name: str) -> Optional[Hash]:
        """Get hash for a named reference."""
        return self.refs.get(name)

    def delete_ref(self, name: str) -> bool:
        """Delete a named reference."""
        return self.refs.delete(name)

    def list_refs(self) -> List[str]:
        """List all named references."""
        return self.refs.names()

    def root_set(self) -> RootSet:
        """Root set formed by the targets of all named references."""
        return self.refs.root_set()

    # ========== Integrity Verification ==========

    def verify_object(self, obj_hash: Hash) -> bool:
        """
        Verify an object's integrity.

        Returns True if valid.
        Raises ObjectCorruptedError if corrupted.
        """
        # get with verify=True will check integrity
        self.object_store.get(obj_hash, verify=True)
        return True

    def verify_graph(self, roots: Iterable[Hash]) -> dict:
        """
        Verify that the closures of roots are complete and intact.

        Returns dict with:
            - valid: bool
            - errors: list of error messages
        """
        is_valid, errors = verify_graph(roots, self.object_store)
        return {
            'valid': is_valid,
            'errors': errors,
        }

    def detect_tampering(self) -> dict:
        """
        Detect tampering across all stored objects.

        Returns dict with:
            - tampered: list of tampered object hashes
            - verified: count of verified objects
            - errors: list of errors encountered
        """
        return scan_store(self.object_store)

    # ========== Garbage Collection ==========

    def garbage_collect(
        self,
        roots: Optional[Iterable[Hash]] = None,
        dry_run: bool = False,
        cancel: Optional[threading.Event] = None,
    ) -> dict:
        """
        Run garbage collection.

        Args:
            roots: roots to keep; defaults to the named references, which
                are held still (set_ref and delete_ref wait) while marking
            dry_run: if True, only report what would be deleted
            cancel: optional event that stops sweeping early

        Returns dict with GC results.
        """
        if roots is None:
            roots = self.refs
        return self.gc.collect(roots, dry_run=dry_run, cancel=cancel)

    def verify_gc_safety(self, roots: Optional[Iterable[Hash]] = None) -> List[str]:
        """
        Verify that garbage collection would be safe.

        Returns list of warnings/issues.
        """
        if roots is None:
            roots = self.root_set()
        return self.gc.verify_gc_safety(roots)

    # ========== Sync ==========

    def synchronizer(self, peer) -> Synchronizer:
        """Create a synchronizer pulling from peer into this store."""
        return Synchronizer(self.object_store, peer, self.max_traversal)

    def sync_from(self, peer, root: Hash, cancel: Optional[threading.Event] = None) -> dict:
        """
        Pull the closure of root from a peer.

        peer: a Peer, or an ObjectStore/ArchiveSet which is wrapped in a StorePeer
        """
        if not hasattr(peer, 'fetch'):
            peer = StorePeer(peer, self.max_traversal)
        return self.synchronizer(peer).pull(root, cancel=cancel)

    def missing_from(self, peer, root: Hash) -> Set[Hash]:
        """Hashes in the closure of root on peer that this store lacks."""
        if not hasattr(peer, 'fetch'):
            peer = StorePeer(peer, self.max_traversal)
        return self.synchronizer(peer).missing(root)

    # ========== Archives ==========

    def export_archive(self, output_path, roots: Iterable[Hash]) -> int:
        """
        Pack the closure of roots into an archive file.

        Returns the number of objects written.
        """
        return write_archive(output_path, self.object_store, self.closure(roots))

    # ========== Statistics and Diagnostics ==========

    def get_statistics(self) -> dict:
        """
        Get store statistics.

        Returns dict with total_objects, total_size_bytes, refs,
        blob_count, manifest_count and unreadable_count.
        """
        stats = self.object_store.stats()
        stats['blob_count'] = 0
        stats['manifest_count'] = 0
        stats['unreadable_count'] = 0

        for obj_hash in self.object_store.list():
            try:
                obj = self.get_object(obj_hash)
            except AssetStoreError:
                stats['unreadable_count'] += 1
                continue
            if isinstance(obj, Manifest):
                stats['manifest_count'] += 1
            else:
                stats['blob_count'] += 1

        return stats

    def __repr__(self) -> str:
        return f"AssetStore(path={self.store_path}, hash_kind={self.object_store.hash_kind})"
