"""
Test archive files and archive sets.
"""

import struct
import tempfile
from pathlib import Path

import pytest

from asset_store import (
    ArchiveSet,
    AssetStore,
    HashKind,
    InvalidReferenceError,
    ObjectCorruptedError,
    ObjectNotFoundError,
    StorageError,
    compute_hash,
    write_archive,
)
from asset_store.storage.archive import ARCHIVE_MAGIC


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(workdir):
    engine = AssetStore(workdir / 'store')
    engine.initialize()
    return engine


@pytest.fixture
def scene(store):
    mesh = store.put_blob(b'mesh data')
    texture = store.put_blob(b'texture data')
    root = store.put_manifest([mesh, texture], {'name': 'scene'})
    return {'mesh': mesh, 'texture': texture, 'root': root}


class TestWriteArchive:
    """Archives pack objects into one file."""

    def test_write_and_read_back(self, store, scene, workdir):
        archive_dir = workdir / 'archives'
        count = write_archive(archive_dir / 'scene.asar', store.object_store, scene.values())
        assert count == 3

        with ArchiveSet.open(archive_dir) as archives:
            for obj_hash in scene.values():
                assert archives.get(obj_hash) == store.get(obj_hash)

    def test_duplicates_written_once(self, store, scene, workdir):
        path = workdir / 'dup.asar'
        hashes = [scene['mesh'], scene['mesh'], scene['texture']]

        assert write_archive(path, store.object_store, hashes) == 2

    def test_empty_archive(self, store, workdir):
        archive_dir = workdir / 'archives'
        assert write_archive(archive_dir / 'empty.asar', store.object_store, []) == 0

        with ArchiveSet.open(archive_dir) as archives:
            assert list(archives.list()) == []

    def test_missing_source_object(self, store, workdir):
        path = workdir / 'broken.asar'
        missing = compute_hash(b'not stored')

        with pytest.raises(ObjectNotFoundError):
            write_archive(path, store.object_store, [missing])
        assert not path.exists()
        assert list(workdir.iterdir()) == [workdir / 'store']

    def test_mixed_kinds_rejected(self, store, workdir):
        blake = store.object_store.put(b'asset')
        sha = store.object_store.put(b'asset', HashKind.SHA256)

        with pytest.raises(InvalidReferenceError):
            write_archive(workdir / 'mixed.asar', store.object_store, [blake, sha])

    def test_non_hash_rejected(self, store, workdir):
        with pytest.raises(InvalidReferenceError):
            write_archive(workdir / 'bad.asar', store.object_store, ['blake3:00'])

    def test_export_archive_packs_closure(self, store, scene, workdir):
        orphan = store.put_blob(b'not in the scene')
        archive_dir = workdir / 'archives'

        assert store.export_archive(archive_dir / 'scene.asar', [scene['root']]) == 3

        with ArchiveSet.open(archive_dir) as archives:
            assert set(archives.list()) == set(scene.values())
            assert orphan not in archives


class TestArchiveSet:
    """A directory of archives serves reads like a store."""

    @pytest.fixture
    def archive_dir(self, store, scene, workdir):
        archive_dir = workdir / 'archives'
        write_archive(archive_dir / 'scene.asar', store.object_store, scene.values())
        return archive_dir

    def test_has_and_list(self, archive_dir, scene):
        with ArchiveSet.open(archive_dir) as archives:
            assert archives.has(scene['mesh'])
            assert scene['root'] in archives
            assert not archives.has(compute_hash(b'absent'))
            assert sorted(archives.list()) == sorted(scene.values())

    def test_missing_object(self, archive_dir):
        with ArchiveSet.open(archive_dir) as archives:
            with pytest.raises(ObjectNotFoundError):
                archives.get(compute_hash(b'absent'))

    def test_lookup_respects_hash_kind(self, archive_dir, scene):
        other_kind = compute_hash(b'mesh data', HashKind.SHA256)

        with ArchiveSet.open(archive_dir) as archives:
            assert not archives.has(other_kind)

    def test_several_archives(self, store, archive_dir):
        extra = store.put_blob(b'extra')
        write_archive(archive_dir / 'extra.asar', store.object_store, [extra])

        with ArchiveSet.open(archive_dir) as archives:
            assert archives.get(extra) == b'extra'

    def test_corrupt_entry_detected(self, archive_dir, scene):
        path = archive_dir / 'scene.asar'
        data = path.read_bytes()
        start = data.index(b'mesh data')
        path.write_bytes(data[:start] + b'MESH' + data[start + 4:])

        with ArchiveSet.open(archive_dir) as archives:
            with pytest.raises(ObjectCorruptedError):
                archives.get(scene['mesh'])
            assert archives.get(scene['mesh'], verify=False).startswith(b'MESH')

    def test_bad_magic(self, archive_dir):
        path = archive_dir / 'scene.asar'
        path.write_bytes(b'NOPE' + path.read_bytes()[len(ARCHIVE_MAGIC):])

        with pytest.raises(StorageError):
            ArchiveSet.open(archive_dir)

    def test_truncated_file(self, archive_dir):
        (archive_dir / 'short.asar').write_bytes(ARCHIVE_MAGIC)

        with pytest.raises(StorageError):
            ArchiveSet.open(archive_dir)

    def test_entry_outside_file(self, workdir):
        archive_dir = workdir / 'archives'
        archive_dir.mkdir()
        header = ARCHIVE_MAGIC + struct.pack('>B', 1) + struct.pack('<H', 0) + struct.pack('>I', 1)
        entry = b'\x01' * 32 + struct.pack('>QQ', 1000, 10)
        (archive_dir / 'bad.asar').write_bytes(header + entry)

        with pytest.raises(StorageError):
            ArchiveSet.open(archive_dir)

    def test_other_files_ignored(self, archive_dir, scene):
        (archive_dir / 'README').write_text('not an archive')

        with ArchiveSet.open(archive_dir) as archives:
            assert archives.has(scene['root'])

    def test_open_creates_directory(self, workdir):
        with ArchiveSet.open(workdir / 'fresh') as archives:
            assert list(archives.list()) == []
        assert (workdir / 'fresh').is_dir()

    def test_archives_as_sync_peer(self, archive_dir, scene, workdir):
        target = AssetStore(workdir / 'target')
        target.initialize()

        with ArchiveSet.open(archive_dir) as archives:
            result = target.sync_from(archives, scene['root'])

        assert set(result['fetched']) == set(scene.values())
        assert target.get_manifest(scene['root']).metadata == {'name': 'scene'}
