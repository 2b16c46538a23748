from .engine import AssetStore
from .integrity.hashing import Hash, HashKind, Hasher, compute_hash
from .model.blob import Blob
from .model.manifest import Manifest, decode_manifest, encode_manifest
from .model.objects import decode_object
from .storage.archive import ArchiveSet, write_archive
from .storage.closure import ClosureResolver, closure
from .storage.gc import GarbageCollector, GCState
from .storage.object_store import ObjectStore, open_store
from .storage.roots import RootRefs, RootSet
from .integration.peers import Peer, StorePeer
from .integration.sync import Synchronizer
from .errors import (
    AssetStoreError,
    ObjectNotFoundError,
    DanglingReferenceError,
    ObjectCorruptedError,
    IntegrityMismatchError,
    MalformedManifestError,
    IncompleteGraphError,
    TraversalLimitError,
    InvalidObjectError,
    InvalidReferenceError,
    HashParseError,
    GarbageCollectionError,
    InvariantViolationError,
    ReferenceCycleError,
    StorageError,
    PeerError,
    ConfigError,
)

__version__ = '0.1.0'

__all__ = [
    'AssetStore',
    'Hash',
    'HashKind',
    'Hasher',
    'compute_hash',
    'Blob',
    'Manifest',
    'encode_manifest',
    'decode_manifest',
    'decode_object',
    'ArchiveSet',
    'write_archive',
    'ClosureResolver',
    'closure',
    'GarbageCollector',
    'GCState',
    'ObjectStore',
    'open_store',
    'RootRefs',
    'RootSet',
    'Peer',
    'StorePeer',
    'Synchronizer',
    'AssetStoreError',
    'ObjectNotFoundError',
    'DanglingReferenceError',
    'ObjectCorruptedError',
    'IntegrityMismatchError',
    'MalformedManifestError',
    'IncompleteGraphError',
    'TraversalLimitError',
    'InvalidObjectError',
    'InvalidReferenceError',
    'HashParseError',
    'GarbageCollectionError',
    'InvariantViolationError',
    'ReferenceCycleError',
    'StorageError',
    'PeerError',
    'ConfigError',
]
