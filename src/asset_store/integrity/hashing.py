"""
Content-addressed hashing using BLAKE3 or SHA-256.

Provides the Hash identity type and deterministic hash computation.
The algorithm is part of every Hash, so identity never depends on which
library happens to be installed.
"""

import enum
import functools
import hashlib
from dataclasses import dataclass

import blake3

from ..errors import HashParseError


class HashKind(enum.Enum):
    """
    The algorithm used by a hash.

    New kinds may be added; existing ids are never reused.
    """

    BLAKE3 = 'blake3'
    SHA256 = 'sha256'

    @property
    def id(self) -> int:
        """Integer id used in binary encodings."""
        return _KIND_IDS[self]

    @property
    def digest_size(self) -> int:
        """Length in bytes of digests of this kind."""
        return 32

    @classmethod
    def from_id(cls, kind_id: int) -> 'HashKind':
        """
        Reconstruct a kind from a value previously obtained with `id`.

        Raises ValueError for unknown ids.
        """
        for kind, known_id in _KIND_IDS.items():
            if known_id == kind_id:
                return kind
        raise ValueError(f"Unknown hash kind id: {kind_id}")

    @classmethod
    def from_name(cls, name: str) -> 'HashKind':
        """Look up a kind by its concise name ('blake3', 'sha256')."""
        try:
            return cls(name.lower())
        except ValueError:
            raise ValueError(f"Unknown hash kind: {name}") from None

    def __str__(self) -> str:
        return self.value


_KIND_IDS = {
    HashKind.BLAKE3: 0,
    HashKind.SHA256: 1,
}

DEFAULT_HASH_KIND = HashKind.BLAKE3

_LOWER_HEX = frozenset('0123456789abcdef')


@functools.total_ordering
@dataclass(frozen=True)
class Hash:
    """
    A hash uniquely identifying some content.

    Human-readable form is '<kind>:<hex digest>'.
    """

    kind: HashKind
    digest: bytes

    def __post_init__(self):
        if not isinstance(self.digest, bytes):
            raise TypeError("Hash digest must be bytes")
        if len(self.digest) != self.kind.digest_size:
            raise ValueError(
                f"{self.kind} digest must be {self.kind.digest_size} bytes, "
                f"got {len(self.digest)}"
            )

    @classmethod
    def parse(cls, text: str) -> 'Hash':
        """
        Parse the human-readable form produced by str().

        Only the exact form is accepted (lowercase kind and hex, no
        whitespace), so str(Hash.parse(text)) == text.

        Raises HashParseError if the text is not a valid hash.
        """
        kind_name, sep, hex_digest = text.partition(':')
        if not sep:
            raise HashParseError(text, "missing delimiting ':'")
        try:
            kind = HashKind(kind_name)
        except ValueError:
            raise HashParseError(text, f"unknown hash kind {kind_name!r}") from None
        if len(hex_digest) != 2 * kind.digest_size:
            raise HashParseError(text, f"expected {kind.digest_size} digest bytes")
        if not _LOWER_HEX.issuperset(hex_digest):
            raise HashParseError(text, "digest must be lowercase hex")
        return cls(kind, bytes.fromhex(hex_digest))

    def __lt__(self, other):
        if not isinstance(other, Hash):
            return NotImplemented
        return (self.kind.id, self.digest) < (other.kind.id, other.digest)

    @property
    def hex(self) -> str:
        return self.digest.hex()

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.digest.hex()}"

    def __repr__(self) -> str:
        return f"Hash({self.kind.value}:{self.digest.hex()[:12]}...)"


class Hasher:
    """
    Incremental hash computation.

    Feed bytes with update(), then call finalize() once.
    """

    def __init__(self, kind: HashKind = DEFAULT_HASH_KIND):
        self.kind = kind
        if kind is HashKind.BLAKE3:
            self._state = blake3.blake3()
        else:
            self._state = hashlib.sha256()

    def update(self, data: bytes) -> None:
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError(f"Can only hash bytes, got {type(data).__name__}")
        self._state.update(data)

    def finalize(self) -> Hash:
        return Hash(self.kind, self._state.digest())


def compute_hash(data: bytes, kind: HashKind = DEFAULT_HASH_KIND) -> Hash:
    """
    Compute hash of raw bytes.

    Same bytes and kind always produce the same Hash.
    """
    hasher = Hasher(kind)
    hasher.update(data)
    return hasher.finalize()


def verify_hash(data: bytes, expected: Hash) -> bool:
    """
    Verify that data matches expected hash.

    Re-hashes with the algorithm recorded in `expected`.
    """
    return compute_hash(data, expected.kind) == expected


def get_hash_prefix(obj_hash: Hash, prefix_length: int = 2) -> str:
    """
    Get prefix of the hex digest for directory sharding.

    Default is 2 characters, creating 256 subdirectories.
    """
    if prefix_length > len(obj_hash.hex):
        raise ValueError(f"Hash too short for prefix length {prefix_length}")
    return obj_hash.hex[:prefix_length]
