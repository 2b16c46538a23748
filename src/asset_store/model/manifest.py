"""
Manifest object model and codec.

A manifest is metadata plus an ordered list of dependency hashes. Its
byte encoding is canonical: one set of (metadata, refs) has exactly one
valid encoding, so equal manifests always share a hash.

Layout (big-endian):

    magic      4 bytes  b"ASMF"
    version    u8
    hash kind  u8       id of the kind shared by every reference
    meta len   u32
    metadata   canonical JSON object, UTF-8
    ref count  u32
    refs       ref count * digest size bytes
"""

import json
import struct
from typing import Iterable, Optional, Tuple

from ..errors import InvalidObjectError, InvalidReferenceError, MalformedManifestError
from ..integrity.canonical import canonical_json, is_canonical, validate_metadata
from ..integrity.hashing import DEFAULT_HASH_KIND, Hash, HashKind, compute_hash

MANIFEST_MAGIC = b'ASMF'
MANIFEST_VERSION = 1

_HEADER = struct.Struct('>4sBBI')
_COUNT = struct.Struct('>I')


def encode_manifest(metadata: dict, refs: Iterable[Hash]) -> bytes:
    """
    Encode metadata and ordered dependency hashes into manifest bytes.

    Raises InvalidObjectError for metadata that is not a JSON object and
    InvalidReferenceError for non-Hash, mixed-kind or duplicate references.
    """
    try:
        validate_metadata(metadata)
    except ValueError as e:
        raise InvalidObjectError(str(e)) from e

    refs = list(refs)
    seen = set()
    for ref in refs:
        if not isinstance(ref, Hash):
            raise InvalidReferenceError(f"expected Hash, got {type(ref).__name__}")
        if ref in seen:
            raise InvalidReferenceError(f"duplicate reference {ref}")
        seen.add(ref)

    kinds = {ref.kind for ref in refs}
    if len(kinds) > 1:
        raise InvalidReferenceError(
            "references mix hash kinds: " + ", ".join(sorted(k.value for k in kinds))
        )
    # An empty list always records kind id 0 so the encoding stays unique
    kind_id = refs[0].kind.id if refs else 0

    meta_bytes = canonical_json(metadata)
    parts = [
        _HEADER.pack(MANIFEST_MAGIC, MANIFEST_VERSION, kind_id, len(meta_bytes)),
        meta_bytes,
        _COUNT.pack(len(refs)),
    ]
    parts.extend(ref.digest for ref in refs)
    return b''.join(parts)


def decode_manifest(data: bytes, object_hash: Optional[Hash] = None) -> Tuple[dict, Tuple[Hash, ...]]:
    """
    Decode manifest bytes into (metadata, refs).

    Raises MalformedManifestError for anything encode_manifest would not
    have produced.
    """
    def malformed(reason: str) -> MalformedManifestError:
        return MalformedManifestError(reason, object_hash)

    data = bytes(data)
    if len(data) < _HEADER.size:
        raise malformed("truncated header")

    magic, version, kind_id, meta_len = _HEADER.unpack_from(data, 0)
    if magic != MANIFEST_MAGIC:
        raise malformed(f"wrong magic {magic!r}")
    if version != MANIFEST_VERSION:
        raise malformed(f"unsupported version {version}")
    try:
        kind = HashKind.from_id(kind_id)
    except ValueError:
        raise malformed(f"unknown hash kind id {kind_id}") from None

    offset = _HEADER.size
    if offset + meta_len + _COUNT.size > len(data):
        raise malformed("truncated metadata")
    meta_bytes = data[offset:offset + meta_len]
    offset += meta_len

    if not is_canonical(meta_bytes):
        raise malformed("metadata is not canonical JSON")
    metadata = json.loads(meta_bytes.decode('utf-8'))
    if not isinstance(metadata, dict):
        raise malformed("metadata is not a JSON object")

    (count,) = _COUNT.unpack_from(data, offset)
    offset += _COUNT.size

    size = kind.digest_size
    expected_end = offset + count * size
    if expected_end > len(data):
        raise malformed("truncated reference list")
    if expected_end < len(data):
        raise malformed("trailing bytes after reference list")
    if count == 0 and kind_id != 0:
        raise malformed("empty reference list must record kind id 0")

    refs = []
    seen = set()
    for i in range(count):
        ref = Hash(kind, data[offset + i * size:offset + (i + 1) * size])
        if ref in seen:
            raise malformed(f"duplicate reference {ref}")
        seen.add(ref)
        refs.append(ref)

    return metadata, tuple(refs)


def is_manifest_bytes(data: bytes) -> bool:
    """Check whether bytes carry the manifest tag."""
    return bytes(data[:len(MANIFEST_MAGIC)]) == MANIFEST_MAGIC


class Manifest:
    """
    Immutable manifest object.

    References are ordered; the order is part of the manifest's identity.
    """

    def __init__(self, refs: Iterable[Hash], metadata: Optional[dict] = None):
        """
        Create a manifest.

        Args:
            refs: ordered dependency hashes (already written to the store)
            metadata: optional JSON-compatible metadata
        """
        self.refs = tuple(refs)  # Copy to ensure immutability
        self.metadata = dict(metadata or {})

    def to_bytes(self) -> bytes:
        """Encode to canonical manifest bytes."""
        return encode_manifest(self.metadata, self.refs)

    @classmethod
    def from_bytes(cls, data: bytes, object_hash: Optional[Hash] = None) -> 'Manifest':
        """
        Reconstruct a manifest from stored bytes.

        Raises MalformedManifestError if data is invalid.
        """
        metadata, refs = decode_manifest(data, object_hash)
        return cls(refs, metadata)

    @property
    def references(self) -> Tuple[Hash, ...]:
        return self.refs

    def compute_hash(self, kind: Optional[HashKind] = None) -> Hash:
        """
        Compute content hash of this manifest.

        Defaults to the kind of its references.
        """
        if kind is None:
            kind = self.refs[0].kind if self.refs else DEFAULT_HASH_KIND
        return compute_hash(self.to_bytes(), kind)

    def with_ref(self, ref: Hash) -> 'Manifest':
        """
        Create a new manifest with an additional reference.

        Returns new Manifest instance (immutable).
        """
        return Manifest(self.refs + (ref,), self.metadata)

    def without_ref(self, ref: Hash) -> 'Manifest':
        """
        Create a new manifest without a specific reference.

        Returns new Manifest instance (immutable).
        """
        return Manifest([r for r in self.refs if r != ref], self.metadata)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Manifest):
            return NotImplemented
        return self.refs == other.refs and self.metadata == other.metadata

    def __hash__(self) -> int:
        return hash(self.to_bytes())

    def __repr__(self) -> str:
        return f"Manifest(refs={len(self.refs)}, metadata_keys={sorted(self.metadata)})"

