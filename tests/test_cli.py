"""
Test the command-line interface.
"""

import logging

import pytest

from asset_store import AssetStore, Hash, compute_hash
from asset_store.cli import build_parser, main

ENV_VARS = (
    'ASSET_STORE_ROOT',
    'ASSET_STORE_HASH_KIND',
    'ASSET_STORE_GC_GRACE_SECONDS',
    'ASSET_STORE_MAX_TRAVERSAL',
    'ASSET_STORE_LOG_LEVEL',
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger('asset_store')
    handlers = list(logger.handlers)
    level = logger.level
    yield
    logger.handlers = handlers
    logger.setLevel(level)


@pytest.fixture
def store_dir(tmp_path):
    return tmp_path / 'store'


def run(store_dir, *args):
    return main(['--store', str(store_dir), *args])


def put_file(store_dir, tmp_path, capsys, name, content):
    path = tmp_path / name
    path.write_bytes(content)
    assert run(store_dir, 'put', str(path)) == 0
    return capsys.readouterr().out.strip()


class TestParser:

    def test_requires_command(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])
        assert exc_info.value.code == 2

    def test_bad_hash_is_usage_error(self, store_dir):
        with pytest.raises(SystemExit) as exc_info:
            run(store_dir, 'cat', 'not-a-hash')
        assert exc_info.value.code == 2

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(['--version'])
        assert exc_info.value.code == 0
        assert 'asset-store' in capsys.readouterr().out


class TestObjectCommands:

    def test_put_and_cat(self, store_dir, tmp_path, capsys):
        digest = put_file(store_dir, tmp_path, capsys, 'mesh.bin', b'mesh bytes')

        assert digest == str(compute_hash(b'mesh bytes'))
        assert run(store_dir, 'cat', digest) == 0
        assert capsys.readouterr().out == 'mesh bytes'

    def test_put_sha256(self, store_dir, tmp_path, capsys):
        path = tmp_path / 'asset'
        path.write_bytes(b'asset')

        assert main(['--store', str(store_dir), '--hash-kind', 'sha256', 'put', str(path)]) == 0
        assert capsys.readouterr().out.startswith('sha256:')

    def test_put_unreadable_file(self, store_dir, tmp_path, capsys):
        assert run(store_dir, 'put', str(tmp_path / 'missing')) == 1
        assert 'cannot read' in capsys.readouterr().err

    def test_ls(self, store_dir, tmp_path, capsys):
        a = put_file(store_dir, tmp_path, capsys, 'a', b'a')
        b = put_file(store_dir, tmp_path, capsys, 'b', b'b')

        assert run(store_dir, 'ls') == 0
        assert capsys.readouterr().out.split() == sorted([a, b])

    def test_manifest_and_closure(self, store_dir, tmp_path, capsys):
        mesh = put_file(store_dir, tmp_path, capsys, 'mesh', b'mesh')
        texture = put_file(store_dir, tmp_path, capsys, 'texture', b'texture')

        assert run(store_dir, 'manifest', '--meta', '{"name": "prop"}', mesh, texture) == 0
        root = capsys.readouterr().out.strip()

        assert run(store_dir, 'closure', root) == 0
        assert set(capsys.readouterr().out.split()) == {root, mesh, texture}

        store = AssetStore(store_dir)
        assert store.get_manifest(Hash.parse(root)).metadata == {'name': 'prop'}

    def test_manifest_bad_metadata(self, store_dir, capsys):
        assert run(store_dir, 'manifest', '--meta', '{oops') == 1
        assert 'not valid JSON' in capsys.readouterr().err

    def test_manifest_missing_reference(self, store_dir, capsys):
        missing = str(compute_hash(b'absent'))

        assert run(store_dir, 'manifest', missing) == 1
        assert 'not in the store' in capsys.readouterr().err

    def test_cat_missing_object(self, store_dir, capsys):
        missing = str(compute_hash(b'absent'))

        assert run(store_dir, 'cat', missing) == 1
        err = capsys.readouterr().err
        assert err.startswith('asset-store: error: ')
        assert missing in err


class TestRefCommands:

    def test_ref_lifecycle(self, store_dir, tmp_path, capsys):
        digest = put_file(store_dir, tmp_path, capsys, 'a', b'a')

        assert run(store_dir, 'ref', 'set', 'main', digest) == 0
        assert run(store_dir, 'ref', 'get', 'main') == 0
        assert capsys.readouterr().out.strip() == digest

        assert run(store_dir, 'ref', 'ls') == 0
        assert capsys.readouterr().out.strip() == f'main {digest}'

        assert run(store_dir, 'ref', 'rm', 'main') == 0
        assert run(store_dir, 'ref', 'get', 'main') == 1
        assert 'no such ref' in capsys.readouterr().err

    def test_ref_rm_missing(self, store_dir, capsys):
        assert run(store_dir, 'ref', 'rm', 'nothing') == 1


class TestGcCommand:

    def test_gc_deletes_unreachable(self, store_dir, tmp_path, capsys):
        keep = put_file(store_dir, tmp_path, capsys, 'keep', b'keep')
        drop = put_file(store_dir, tmp_path, capsys, 'drop', b'drop')
        run(store_dir, 'ref', 'set', 'main', keep)

        assert run(store_dir, 'gc', '--grace-period', '0') == 0
        assert capsys.readouterr().out.strip() == 'deleted 1 objects, kept 0 recent, 1 reachable'

        assert run(store_dir, 'ls') == 0
        listed = capsys.readouterr().out.split()
        assert keep in listed
        assert drop not in listed

    def test_gc_keeps_recent_objects_by_default(self, store_dir, tmp_path, capsys):
        put_file(store_dir, tmp_path, capsys, 'drop', b'drop')

        assert run(store_dir, 'gc') == 0
        assert capsys.readouterr().out.strip() == 'deleted 0 objects, kept 1 recent, 0 reachable'

    def test_gc_explicit_roots(self, store_dir, tmp_path, capsys):
        keep = put_file(store_dir, tmp_path, capsys, 'keep', b'keep')
        put_file(store_dir, tmp_path, capsys, 'drop', b'drop')

        assert run(store_dir, 'gc', '--grace-period', '0', keep) == 0
        assert 'deleted 1 objects' in capsys.readouterr().out

    def test_gc_root_ref(self, store_dir, tmp_path, capsys):
        keep = put_file(store_dir, tmp_path, capsys, 'keep', b'keep')
        run(store_dir, 'ref', 'set', 'release', keep)

        assert run(store_dir, 'gc', '--grace-period', '0', '--root-ref', 'release') == 0
        assert 'deleted 0 objects' in capsys.readouterr().out

    def test_gc_unknown_root_ref(self, store_dir, capsys):
        assert run(store_dir, 'gc', '--root-ref', 'nope') == 1
        assert 'no such ref' in capsys.readouterr().err

    def test_gc_dry_run(self, store_dir, tmp_path, capsys):
        drop = put_file(store_dir, tmp_path, capsys, 'drop', b'drop')

        assert run(store_dir, 'gc', '--dry-run', '--grace-period', '0') == 0
        captured = capsys.readouterr()
        assert captured.out.split() == [drop]
        assert 'dry run' in captured.err

        assert run(store_dir, 'ls') == 0
        assert capsys.readouterr().out.split() == [drop]


class TestVerifyCommand:

    def test_verify_clean_store(self, store_dir, tmp_path, capsys):
        digest = put_file(store_dir, tmp_path, capsys, 'a', b'a')
        run(store_dir, 'ref', 'set', 'main', digest)

        assert run(store_dir, 'verify') == 0
        assert 'verified 1 objects, 0 tampered' in capsys.readouterr().err

    def test_verify_tampered_store(self, store_dir, tmp_path, capsys):
        digest = put_file(store_dir, tmp_path, capsys, 'a', b'a')
        store = AssetStore(store_dir)
        store.layout.get_object_path(store.list_objects()[0]).write_bytes(b'b')

        assert run(store_dir, 'verify') == 1
        assert digest in capsys.readouterr().out


class TestTransferCommands:

    def test_sync_from_store(self, tmp_path, capsys):
        remote = tmp_path / 'remote'
        local = tmp_path / 'local'
        mesh = put_file(remote, tmp_path, capsys, 'mesh', b'mesh')
        run(remote, 'manifest', mesh)
        root = capsys.readouterr().out.strip()

        assert run(local, 'sync', '--from', str(remote), root) == 0
        assert capsys.readouterr().out.strip() == 'fetched 2 objects (%d bytes), 0 already present' % (
            AssetStore(remote).get_statistics()['total_size_bytes'],
        )

        assert run(local, 'closure', root) == 0
        assert set(capsys.readouterr().out.split()) == {root, mesh}

    def test_pack_and_sync_from_archives(self, tmp_path, capsys):
        source = tmp_path / 'source'
        target = tmp_path / 'target'
        archives = tmp_path / 'archives'
        mesh = put_file(source, tmp_path, capsys, 'mesh', b'mesh')
        run(source, 'manifest', mesh)
        root = capsys.readouterr().out.strip()

        output = archives / 'release.asar'
        assert run(source, 'pack', str(output), root) == 0
        assert capsys.readouterr().out.strip() == f'packed 2 objects into {output}'

        assert run(target, 'sync', '--archives', '--from', str(archives), root) == 0
        assert capsys.readouterr().out.startswith('fetched 2 objects')

    def test_sync_missing_root(self, tmp_path, capsys):
        remote = tmp_path / 'remote'
        AssetStore(remote).initialize()
        missing = str(compute_hash(b'absent'))

        assert run(tmp_path / 'local', 'sync', '--from', str(remote), missing) == 1
        assert 'Incomplete graph' in capsys.readouterr().err
