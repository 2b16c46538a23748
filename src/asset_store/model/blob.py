"""
Blob object model.

Blobs store opaque binary payloads content-addressed by hash.
"""

from typing import Tuple

from ..integrity.hashing import DEFAULT_HASH_KIND, Hash, HashKind, compute_hash


class Blob:
    """
    Immutable blob object containing raw data.

    Blobs are leaf objects - they contain no references.
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def to_bytes(self) -> bytes:
        """Blobs are stored exactly as given."""
        return self.data

    @property
    def references(self) -> Tuple[Hash, ...]:
        return ()

    def compute_hash(self, kind: HashKind = DEFAULT_HASH_KIND) -> Hash:
        """Compute content hash of this blob."""
        return compute_hash(self.data, kind)

    def size(self) -> int:
        """Get size of blob data in bytes."""
        return len(self.data)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Blob):
            return NotImplemented
        return self.data == other.data

    def __hash__(self) -> int:
        return hash(self.data)

    def __repr__(self) -> str:
        hash_preview = self.compute_hash().hex[:8]
        return f"Blob(size={len(self.data)}, hash={hash_preview}...)"
