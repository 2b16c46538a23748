"""
Test package structure and exports.

Verifies that the package is correctly structured and exposes the right API.
"""

import asset_store
from asset_store import (
    AssetStore,
    ArchiveSet,
    Blob,
    ClosureResolver,
    GarbageCollector,
    Hash,
    Manifest,
    ObjectStore,
    Synchronizer,
    AssetStoreError,
)


def test_package_exports():
    """Verify that the package exposes the expected classes."""
    assert AssetStore is not None
    assert ArchiveSet is not None
    assert Blob is not None
    assert ClosureResolver is not None
    assert GarbageCollector is not None
    assert Hash is not None
    assert Manifest is not None
    assert ObjectStore is not None
    assert Synchronizer is not None
    assert AssetStoreError is not None
    assert asset_store.__version__ == '0.1.0'


def test_all_names_resolve():
    for name in asset_store.__all__:
        assert hasattr(asset_store, name), name


def test_engine_initialization(tmp_path):
    """Verify that the engine can be initialized."""
    engine = AssetStore(tmp_path)
    engine.initialize()
    engine.initialize()

    assert (tmp_path / "objects").is_dir()
    assert (tmp_path / "temp").is_dir()
    assert (tmp_path / "refs").is_dir()


def test_subpackage_imports():
    """Verify that subpackages are importable (even if not exposed directly)."""
    import asset_store.storage.object_store
    import asset_store.integrity.hashing
    import asset_store.model.manifest
    import asset_store.integration.sync

    assert asset_store.storage.object_store.ObjectStore is not None
    assert asset_store.integrity.hashing.compute_hash is not None
    assert asset_store.model.manifest.MANIFEST_MAGIC == b'ASMF'
    assert asset_store.integration.sync.Synchronizer is not None
