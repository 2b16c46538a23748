"""
Runtime configuration.

All environment variable parsing and validation lives here; the rest of
the package consumes a StoreConfig instead of reading the environment.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .errors import ConfigError
from .integrity.hashing import DEFAULT_HASH_KIND, HashKind

DEFAULT_STORE_ROOT = Path('~/.asset-store')
DEFAULT_GC_GRACE_SECONDS = 3600.0
DEFAULT_LOG_LEVEL = 'WARNING'


@dataclass(frozen=True)
class StoreConfig:
    """
    Validated runtime configuration.

    Attributes:
        store_root: directory holding objects, temp files and refs
        hash_kind: algorithm used for newly written objects
        gc_grace_seconds: objects refreshed this recently survive a GC cycle
        max_traversal: optional bound on closure walks
        log_level: name of the level for the asset_store logger
    """

    store_root: Path
    hash_kind: HashKind = DEFAULT_HASH_KIND
    gc_grace_seconds: float = DEFAULT_GC_GRACE_SECONDS
    max_traversal: Optional[int] = None
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls) -> 'StoreConfig':
        """
        Build config from process environment variables.

        Raises ConfigError naming the variable if a value is invalid.
        """
        root = os.getenv('ASSET_STORE_ROOT', str(DEFAULT_STORE_ROOT))
        return cls(
            store_root=Path(root).expanduser().resolve(),
            hash_kind=parse_hash_kind(os.getenv('ASSET_STORE_HASH_KIND', DEFAULT_HASH_KIND.value)),
            gc_grace_seconds=_parse_grace(os.getenv('ASSET_STORE_GC_GRACE_SECONDS')),
            max_traversal=_parse_max_traversal(os.getenv('ASSET_STORE_MAX_TRAVERSAL')),
            log_level=parse_log_level(os.getenv('ASSET_STORE_LOG_LEVEL', DEFAULT_LOG_LEVEL)),
        )


def parse_hash_kind(raw_value: str, source: str = 'ASSET_STORE_HASH_KIND') -> HashKind:
    try:
        return HashKind.from_name(raw_value.strip())
    except ValueError as e:
        choices = ', '.join(k.value for k in HashKind)
        raise ConfigError(
            f"Invalid {source} value: expected one of {choices}, got {raw_value!r}"
        ) from e


def parse_log_level(raw_value: str, source: str = 'ASSET_STORE_LOG_LEVEL') -> str:
    level = raw_value.strip().upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(
            f"Invalid {source} value: expected a logging level name, got {raw_value!r}"
        )
    return level


def _parse_grace(raw_value: Optional[str]) -> float:
    if raw_value is None or not raw_value.strip():
        return DEFAULT_GC_GRACE_SECONDS
    try:
        value = float(raw_value)
    except ValueError as e:
        raise ConfigError(
            f"Invalid ASSET_STORE_GC_GRACE_SECONDS value: expected seconds, got {raw_value!r}"
        ) from e
    if value < 0 or value != value:
        raise ConfigError(
            f"Invalid ASSET_STORE_GC_GRACE_SECONDS value: must be non-negative, got {raw_value!r}"
        )
    return value


def _parse_max_traversal(raw_value: Optional[str]) -> Optional[int]:
    if raw_value is None or not raw_value.strip():
        return None
    try:
        value = int(raw_value)
    except ValueError as e:
        raise ConfigError(
            f"Invalid ASSET_STORE_MAX_TRAVERSAL value: expected integer, got {raw_value!r}"
        ) from e
    if value <= 0:
        raise ConfigError(
            f"Invalid ASSET_STORE_MAX_TRAVERSAL value: must be positive, got {raw_value!r}"
        )
    return value
