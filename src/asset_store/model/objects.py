"""
Object kind dispatch.

Every stored object is exactly one of Blob or Manifest. The decision is
made from the bytes alone: bytes carrying the manifest tag must decode as
a manifest, anything else is a blob.
"""

from typing import Optional, Union

from ..integrity.hashing import Hash
from .blob import Blob
from .manifest import Manifest, is_manifest_bytes

AssetObject = Union[Blob, Manifest]


def decode_object(data: bytes, object_hash: Optional[Hash] = None) -> AssetObject:
    """
    Decode stored bytes into a Blob or a Manifest.

    Raises MalformedManifestError when bytes carry the manifest tag but do
    not decode; such an object is a corrupt dependency edge, never a blob.
    """
    if is_manifest_bytes(data):
        return Manifest.from_bytes(data, object_hash)
    return Blob(data)
