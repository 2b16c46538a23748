"""
Canonical encoding for manifest metadata.

Ensures semantically identical metadata always produces the same bytes,
and therefore the same manifest hash.
"""

import json
from typing import Any


def canonical_json(obj: Any) -> bytes:
    """
    Encode an object to canonical JSON bytes.

    Rules:
    - Keys sorted alphabetically
    - No whitespace
    - UTF-8 encoding
    - NaN and infinities rejected
    - No trailing newlines

    Same input always produces same output.
    """
    json_str = json.dumps(
        obj,
        sort_keys=True,
        separators=(',', ':'),
        ensure_ascii=False,
        allow_nan=False,
    )
    return json_str.encode('utf-8')


def validate_metadata(metadata: Any) -> dict:
    """
    Validate that manifest metadata can be canonically encoded.

    Metadata must be a JSON object with string keys. Returns the metadata
    unchanged. Raises ValueError otherwise.
    """
    if not isinstance(metadata, dict):
        raise ValueError(f"Metadata must be a dict, got {type(metadata).__name__}")
    _check_json_value(metadata)
    try:
        canonical_json(metadata)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Metadata cannot be canonically encoded: {e}") from e
    return metadata


def _check_json_value(value: Any) -> None:
    # Only values that decode back to themselves are accepted
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"Metadata keys must be strings, got {type(key).__name__}")
            _check_json_value(item)
    elif isinstance(value, list):
        for item in value:
            _check_json_value(item)
    elif value is not None and not isinstance(value, (str, int, float, bool)):
        raise ValueError(f"Metadata value of type {type(value).__name__} is not JSON")


def is_canonical(encoded: bytes) -> bool:
    """
    Check that JSON bytes are exactly the canonical encoding of their value.

    Decoding then re-encoding must reproduce the input byte for byte.
    """
    try:
        value = json.loads(encoded.decode('utf-8'))
    except (UnicodeDecodeError, ValueError):
        return False
    try:
        return canonical_json(value) == encoded
    except ValueError:
        return False
