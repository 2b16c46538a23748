"""
Test the manifest codec.

Verifies canonical encoding and strict decoding of manifests.
"""

import json
import struct

import pytest

from asset_store import (
    Blob,
    HashKind,
    InvalidObjectError,
    InvalidReferenceError,
    MalformedManifestError,
    Manifest,
    compute_hash,
    decode_manifest,
    decode_object,
    encode_manifest,
)
from asset_store.model.manifest import MANIFEST_MAGIC, MANIFEST_VERSION


def _refs(count, kind=HashKind.BLAKE3):
    return [compute_hash(f"object {i}".encode(), kind) for i in range(count)]


def _raw_manifest(meta_bytes, digests, kind_id=0, version=MANIFEST_VERSION, magic=MANIFEST_MAGIC):
    """Assemble manifest bytes by hand, bypassing encoder checks."""
    return b''.join([
        struct.pack('>4sBBI', magic, version, kind_id, len(meta_bytes)),
        meta_bytes,
        struct.pack('>I', len(digests)),
        *digests,
    ])


class TestManifestRoundTrip:
    """decode(encode(m, refs)) == (m, refs)."""

    def test_round_trip_with_refs(self):
        refs = _refs(3)
        metadata = {'name': 'castle', 'tags': ['stone', 'large'], 'scale': 1.5}

        assert decode_manifest(encode_manifest(metadata, refs)) == (metadata, tuple(refs))

    def test_round_trip_empty(self):
        """A manifest with no dependencies is valid."""
        assert decode_manifest(encode_manifest({}, [])) == ({}, ())

    def test_round_trip_sha256_refs(self):
        refs = _refs(2, HashKind.SHA256)
        metadata, decoded = decode_manifest(encode_manifest({'a': 1}, refs))

        assert decoded == tuple(refs)
        assert all(r.kind is HashKind.SHA256 for r in decoded)

    def test_round_trip_unicode_metadata(self):
        metadata = {'title': 'château', 'emoji': '☃'}
        assert decode_manifest(encode_manifest(metadata, []))[0] == metadata

    def test_manifest_object_round_trip(self):
        manifest = Manifest(_refs(2), {'lod': 0})
        assert Manifest.from_bytes(manifest.to_bytes()) == manifest

    def test_encoding_starts_with_tag(self):
        data = encode_manifest({}, _refs(1))
        assert data[:4] == MANIFEST_MAGIC
        assert data[4] == MANIFEST_VERSION

    def test_empty_manifest_records_kind_zero(self):
        data = encode_manifest({}, [])
        assert data[5] == 0


class TestManifestEncodeErrors:
    """Encoding refuses inputs with no canonical form."""

    def test_duplicate_refs_rejected(self):
        ref = _refs(1)[0]
        with pytest.raises(InvalidReferenceError):
            encode_manifest({}, [ref, ref])

    def test_mixed_kinds_rejected(self):
        with pytest.raises(InvalidReferenceError):
            encode_manifest({}, _refs(1) + _refs(1, HashKind.SHA256))

    def test_non_hash_ref_rejected(self):
        with pytest.raises(InvalidReferenceError):
            encode_manifest({}, ['blake3:abcd'])

    @pytest.mark.parametrize('metadata', [
        ['not', 'a', 'dict'],
        {'value': float('nan')},
        {1: 'integer key'},
        {'value': ('tuple',)},
        {'value': object()},
    ])
    def test_bad_metadata_rejected(self, metadata):
        with pytest.raises(InvalidObjectError):
            encode_manifest(metadata, [])


class TestManifestDecodeErrors:
    """Decoding rejects anything the encoder would not produce."""

    def test_wrong_magic(self):
        data = encode_manifest({}, _refs(1))
        with pytest.raises(MalformedManifestError):
            decode_manifest(b'XXXX' + data[4:])

    def test_unknown_version(self):
        data = encode_manifest({}, _refs(1))
        with pytest.raises(MalformedManifestError):
            decode_manifest(data[:4] + bytes([MANIFEST_VERSION + 1]) + data[5:])

    def test_unknown_hash_kind(self):
        data = encode_manifest({}, _refs(1))
        with pytest.raises(MalformedManifestError):
            decode_manifest(data[:5] + bytes([200]) + data[6:])

    def test_truncated_header(self):
        with pytest.raises(MalformedManifestError):
            decode_manifest(MANIFEST_MAGIC + b'\x01')

    def test_truncated_reference_list(self):
        data = encode_manifest({}, _refs(2))
        with pytest.raises(MalformedManifestError):
            decode_manifest(data[:-1])

    def test_truncated_metadata(self):
        data = encode_manifest({'key': 'value'}, [])
        with pytest.raises(MalformedManifestError):
            decode_manifest(data[:14])

    def test_trailing_bytes(self):
        data = encode_manifest({}, _refs(1))
        with pytest.raises(MalformedManifestError):
            decode_manifest(data + b'\x00')

    def test_duplicate_refs(self):
        digest = _refs(1)[0].digest
        with pytest.raises(MalformedManifestError):
            decode_manifest(_raw_manifest(b'{}', [digest, digest]))

    def test_non_canonical_metadata(self):
        with pytest.raises(MalformedManifestError):
            decode_manifest(_raw_manifest(b'{"b": 1, "a": 2}', []))

    def test_metadata_not_an_object(self):
        with pytest.raises(MalformedManifestError):
            decode_manifest(_raw_manifest(json.dumps([1, 2]).encode(), []))

    def test_empty_list_with_nonzero_kind(self):
        with pytest.raises(MalformedManifestError):
            decode_manifest(_raw_manifest(b'{}', [], kind_id=HashKind.SHA256.id))

    def test_error_carries_hash(self):
        object_hash = compute_hash(b'bad manifest')
        with pytest.raises(MalformedManifestError) as exc_info:
            decode_manifest(MANIFEST_MAGIC, object_hash)
        assert exc_info.value.object_hash == object_hash


class TestObjectDispatch:
    """Bytes decide whether an object is a blob or a manifest."""

    def test_plain_bytes_are_blobs(self):
        obj = decode_object(b'PNG image data')
        assert isinstance(obj, Blob)
        assert obj.references == ()

    def test_tagged_bytes_are_manifests(self):
        refs = _refs(2)
        obj = decode_object(encode_manifest({}, refs))
        assert isinstance(obj, Manifest)
        assert obj.references == tuple(refs)

    def test_tagged_bytes_that_fail_to_decode_are_not_blobs(self):
        with pytest.raises(MalformedManifestError):
            decode_object(MANIFEST_MAGIC + b'garbage')

    def test_with_and_without_ref(self):
        a, b = _refs(2)
        manifest = Manifest([a])

        assert manifest.with_ref(b).refs == (a, b)
        assert manifest.with_ref(b).without_ref(a).refs == (b,)
        assert manifest.refs == (a,)
