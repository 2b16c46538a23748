"""
Error types for asset store operations.

All errors are explicit and never silent. Every error that concerns a
particular object carries the hash that triggered it, so callers can
repair the store (re-fetch, re-bake) instead of guessing.
"""


class AssetStoreError(Exception):
    """Base exception for all asset store errors."""
    pass


class ObjectNotFoundError(AssetStoreError):
    """Raised when a requested object does not exist."""

    def __init__(self, object_hash):
        self.object_hash = object_hash
        super().__init__(f"Object not found: {object_hash}")


class DanglingReferenceError(ObjectNotFoundError):
    """Raised when a manifest references an object absent from the store."""

    def __init__(self, referencing_hash, missing_hash):
        self.referencing_hash = referencing_hash
        self.missing_hash = missing_hash
        super().__init__(missing_hash)
        self.args = (
            f"Object {referencing_hash} references missing object {missing_hash}",
        )


class ObjectCorruptedError(AssetStoreError):
    """Raised when an object's bytes do not hash to the key it is stored under."""

    def __init__(self, object_hash, actual):
        self.object_hash = object_hash
        self.expected = object_hash
        self.actual = actual
        super().__init__(
            f"Object corrupted: {object_hash}\n"
            f"Expected hash: {object_hash}\n"
            f"Actual hash: {actual}"
        )


class IntegrityMismatchError(ObjectCorruptedError):
    """Raised when bytes received from a peer do not hash to the requested key."""
    pass


class MalformedManifestError(AssetStoreError):
    """Raised when bytes carrying the manifest tag fail to decode."""

    def __init__(self, reason: str, object_hash=None):
        self.reason = reason
        self.object_hash = object_hash
        msg = f"Malformed manifest: {reason}"
        if object_hash:
            msg += f" (hash: {object_hash})"
        super().__init__(msg)


class IncompleteGraphError(AssetStoreError):
    """
    Raised when the reference graph cannot be fully resolved.

    Aborts the enclosing GC or sync operation before any destructive action.
    """

    def __init__(self, object_hash, reason: str):
        self.object_hash = object_hash
        self.reason = reason
        super().__init__(f"Incomplete graph at {object_hash}: {reason}")


class TraversalLimitError(IncompleteGraphError):
    """Raised when a traversal visits more objects than it is allowed to."""

    def __init__(self, object_hash, limit: int):
        self.limit = limit
        super().__init__(object_hash, f"traversal exceeded {limit} objects")


class InvalidObjectError(AssetStoreError):
    """Raised when an object is unacceptable for the requested operation."""

    def __init__(self, reason: str, object_hash=None):
        self.reason = reason
        self.object_hash = object_hash
        msg = f"Invalid object: {reason}"
        if object_hash:
            msg += f" (hash: {object_hash})"
        super().__init__(msg)


class InvalidReferenceError(AssetStoreError):
    """Raised when an object reference is invalid."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid reference: {reason}")


class HashParseError(AssetStoreError, ValueError):
    """Raised when a textual hash cannot be parsed."""

    def __init__(self, text: str, reason: str):
        self.text = text
        self.reason = reason
        super().__init__(f"Cannot parse hash {text!r}: {reason}")


class GarbageCollectionError(AssetStoreError):
    """Raised when garbage collection cannot run."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Garbage collection error: {reason}")


class InvariantViolationError(AssetStoreError):
    """Raised when a system invariant is violated."""

    def __init__(self, invariant: str, details: str):
        self.invariant = invariant
        self.details = details
        super().__init__(f"Invariant violation: {invariant}\nDetails: {details}")


class ReferenceCycleError(InvariantViolationError):
    """Raised when the reference graph contains a cycle (corrupted store)."""

    def __init__(self, object_hash):
        self.object_hash = object_hash
        super().__init__(
            "acyclic_references",
            f"cycle through {object_hash}",
        )


class StorageError(AssetStoreError):
    """Raised when durable storage operations fail."""

    def __init__(self, operation: str, path: str, cause: Exception = None):
        self.operation = operation
        self.path = path
        self.cause = cause
        msg = f"Storage error during {operation}: {path}"
        if cause:
            msg += f"\nCause: {cause}"
        super().__init__(msg)


class PeerError(AssetStoreError):
    """Raised when a sync peer fails to deliver an object."""

    def __init__(self, object_hash, cause: Exception = None):
        self.object_hash = object_hash
        self.cause = cause
        msg = f"Peer failed to deliver {object_hash}"
        if cause:
            msg += f": {cause}"
        super().__init__(msg)


class ConfigError(AssetStoreError):
    """Raised for invalid runtime configuration."""
    pass
