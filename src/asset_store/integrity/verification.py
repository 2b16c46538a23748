"""
Integrity verification for objects and reference graphs.

Provides tamper detection and recursive verification.
"""

from typing import Iterable, List, Tuple

from ..errors import AssetStoreError, ObjectCorruptedError, ObjectNotFoundError
from ..model.objects import decode_object
from .hashing import Hash, compute_hash


def verify_object_integrity(data: bytes, expected_hash: Hash) -> None:
    """
    Verify that an object's bytes match its hash.

    Raises ObjectCorruptedError if mismatch detected.
    """
    actual_hash = compute_hash(data, expected_hash.kind)
    if actual_hash != expected_hash:
        raise ObjectCorruptedError(expected_hash, actual_hash)


def detect_tampering(obj_hash: Hash, stored_data: bytes) -> bool:
    """
    Detect if an object has been tampered with.

    Compares the key against the recomputed hash of the stored bytes.

    Returns True if tampering detected, False otherwise.
    """
    return compute_hash(stored_data, obj_hash.kind) != obj_hash


def scan_store(store) -> dict:
    """
    Re-hash every object in a store.

    Returns dict with:
        - tampered: list of hashes whose bytes no longer match
        - verified: count of verified objects
        - errors: list of error messages
    """
    result = {
        'tampered': [],
        'verified': 0,
        'errors': [],
    }

    for obj_hash in store.list():
        try:
            data = store.get(obj_hash, verify=False)
        except ObjectNotFoundError:
            continue  # Deleted since enumeration
        if detect_tampering(obj_hash, data):
            result['tampered'].append(obj_hash)
            result['errors'].append(f"{obj_hash}: content does not match hash")
        else:
            result['verified'] += 1

    return result


def verify_graph(roots: Iterable[Hash], source) -> Tuple[bool, List[str]]:
    """
    Verify that every object reachable from roots exists and is intact.

    source: anything exposing get(hash) -> bytes

    Unlike a closure computation this does not stop at the first
    problem: every broken edge is reported.

    Returns (is_valid, errors) where errors is list of error messages.
    """
    errors = []
    visited = set()
    stack = [(None, root) for root in roots]

    while stack:
        parent, obj_hash = stack.pop()
        if obj_hash in visited:
            continue
        visited.add(obj_hash)

        try:
            data = source.get(obj_hash)
            obj = decode_object(data, obj_hash)
        except ObjectNotFoundError:
            if parent is None:
                errors.append(f"Root {obj_hash} is missing")
            else:
                errors.append(f"Object {parent} references missing object {obj_hash}")
            continue
        except AssetStoreError as e:
            errors.append(f"Failed to verify {obj_hash}: {e}")
            continue

        for ref in obj.references:
            if ref not in visited:
                stack.append((obj_hash, ref))

    return len(errors) == 0, errors
