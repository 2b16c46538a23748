"""
Peers a store can synchronize from.

A peer only has to answer fetch(hash) -> bytes. A peer that can also
compute closures on its side exposes closure_of(root) -> set of hashes,
which saves the local side from walking the remote graph object by
object. Transport (sockets, TLS, HTTP) lives outside this package; an
adapter for a remote service only has to implement these two calls.
"""

from typing import Optional, Protocol, Set, runtime_checkable

from ..integrity.hashing import Hash
from ..storage.closure import ClosureResolver


@runtime_checkable
class Peer(Protocol):
    """Anything objects can be fetched from by hash."""

    def fetch(self, obj_hash: Hash) -> bytes:
        """Return the bytes stored under obj_hash; raise ObjectNotFoundError if absent."""
        ...


class StorePeer:
    """
    Peer backed by a local object source.

    Wraps an ObjectStore or ArchiveSet (anything with get(hash, verify))
    living on the same machine, e.g. a shared cache directory or a
    directory of shipped archives.
    """

    def __init__(self, source, max_objects: Optional[int] = None):
        """
        Args:
            source: ObjectStore, ArchiveSet or similar
            max_objects: optional bound on closure computations
        """
        self.source = source
        self.max_objects = max_objects

    def fetch(self, obj_hash: Hash) -> bytes:
        # Bytes are served as stored; the receiving side verifies them
        return self.source.get(obj_hash, verify=False)

    def closure_of(self, root: Hash) -> Set[Hash]:
        """Compute the closure of root on the peer's side."""
        return ClosureResolver(self.source, self.max_objects).closure([root])

    def __repr__(self) -> str:
        return f"StorePeer({self.source!r})"
