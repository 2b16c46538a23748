"""
Command-line interface.

Maps argparse commands onto AssetStore calls. Hashes are parsed at this
boundary; store errors exit with status 1 and a message on stderr.
"""

import argparse
import json
import sys
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from . import __version__
from .config import StoreConfig, parse_hash_kind, parse_log_level
from .engine import AssetStore
from .errors import AssetStoreError, InvalidObjectError
from .integration.peers import StorePeer
from .integrity.hashing import Hash
from .logging_config import configure_logging
from .storage.archive import ArchiveSet
from .storage.object_store import open_store


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser."""
    parser = argparse.ArgumentParser(prog='asset-store', description="Content-addressed asset store")
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('--store', help="Override ASSET_STORE_ROOT for this command")
    parser.add_argument('--hash-kind', help="Override ASSET_STORE_HASH_KIND (blake3, sha256)")
    parser.add_argument('--log-level', help="Override ASSET_STORE_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest='command', required=True)

    put = subparsers.add_parser('put', help="Store a blob from a file or stdin")
    put.add_argument('file', nargs='?', help="File to store; stdin when absent")

    cat = subparsers.add_parser('cat', help="Write an object's bytes to stdout")
    cat.add_argument('hash', type=Hash.parse)

    subparsers.add_parser('ls', help="List stored objects")

    manifest = subparsers.add_parser('manifest', help="Store a manifest referencing stored objects")
    manifest.add_argument('--meta', default='{}', help="Metadata as a JSON object")
    manifest.add_argument('refs', nargs='*', type=Hash.parse, metavar='HASH')

    closure = subparsers.add_parser('closure', help="List every object reachable from roots")
    closure.add_argument('roots', nargs='+', type=Hash.parse, metavar='ROOT')

    gc = subparsers.add_parser('gc', help="Delete objects unreachable from the roots")
    gc.add_argument('--dry-run', action='store_true', help="Report without deleting")
    gc.add_argument('--grace-period', type=float, help="Override ASSET_STORE_GC_GRACE_SECONDS")
    gc.add_argument('--root-ref', action='append', default=[], metavar='NAME',
                    help="Use a named ref as a root (repeatable)")
    gc.add_argument('roots', nargs='*', type=Hash.parse, metavar='ROOT')

    sync = subparsers.add_parser('sync', help="Pull the closure of a root from another store")
    sync.add_argument('--from', dest='source', required=True, metavar='PATH',
                      help="Store directory (or archive directory with --archives)")
    sync.add_argument('--archives', action='store_true', help="PATH holds archive files")
    sync.add_argument('root', type=Hash.parse)

    subparsers.add_parser('verify', help="Re-hash every object and check named roots")

    pack = subparsers.add_parser('pack', help="Write the closure of roots into an archive")
    pack.add_argument('output')
    pack.add_argument('roots', nargs='+', type=Hash.parse, metavar='ROOT')

    ref = subparsers.add_parser('ref', help="Manage named roots")
    ref_commands = ref.add_subparsers(dest='ref_command', required=True)
    ref_set = ref_commands.add_parser('set')
    ref_set.add_argument('name')
    ref_set.add_argument('hash', type=Hash.parse)
    ref_get = ref_commands.add_parser('get')
    ref_get.add_argument('name')
    ref_rm = ref_commands.add_parser('rm')
    ref_rm.add_argument('name')
    ref_commands.add_parser('ls')

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Run the CLI.

    Returns process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config = _build_config(args)
        configure_logging(config.log_level)
        store = AssetStore.from_config(config)
        store.initialize()
        return _COMMANDS[args.command](store, args)
    except AssetStoreError as e:
        message = str(e).replace('\n', '; ')
        print(f"asset-store: error: {message}", file=sys.stderr)
        return 1


def _build_config(args: argparse.Namespace) -> StoreConfig:
    """Environment config with command-line overrides applied."""
    config = StoreConfig.from_env()
    if args.store:
        config = replace(config, store_root=Path(args.store).expanduser().resolve())
    if args.hash_kind:
        config = replace(config, hash_kind=parse_hash_kind(args.hash_kind, '--hash-kind'))
    if args.log_level:
        config = replace(config, log_level=parse_log_level(args.log_level, '--log-level'))
    if getattr(args, 'grace_period', None) is not None:
        config = replace(config, gc_grace_seconds=args.grace_period)
    return config


def _run_put(store: AssetStore, args: argparse.Namespace) -> int:
    if args.file is None:
        obj_hash = store.put_blob_stream(sys.stdin.buffer)
    else:
        path = Path(args.file)
        try:
            with path.open('rb') as f:
                obj_hash = store.put_blob_stream(f)
        except OSError as e:
            raise InvalidObjectError(f"cannot read {path}: {e}") from e
    print(obj_hash)
    return 0


def _run_cat(store: AssetStore, args: argparse.Namespace) -> int:
    data = store.get(args.hash)
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()
    return 0


def _run_ls(store: AssetStore, args: argparse.Namespace) -> int:
    for obj_hash in store.list_objects():
        print(obj_hash)
    return 0


def _run_manifest(store: AssetStore, args: argparse.Namespace) -> int:
    try:
        metadata = json.loads(args.meta)
    except ValueError as e:
        raise InvalidObjectError(f"--meta is not valid JSON: {e}") from e
    print(store.put_manifest(args.refs, metadata))
    return 0


def _run_closure(store: AssetStore, args: argparse.Namespace) -> int:
    for obj_hash in sorted(store.closure(args.roots)):
        print(obj_hash)
    return 0


def _run_gc(store: AssetStore, args: argparse.Namespace) -> int:
    roots = set(args.roots)
    for name in args.root_ref:
        target = store.get_ref(name)
        if target is None:
            raise InvalidObjectError(f"no such ref: {name}")
        roots.add(target)
    if not args.roots and not args.root_ref:
        roots = None

    result = store.garbage_collect(roots, dry_run=args.dry_run)
    if args.dry_run:
        for obj_hash in sorted(result['unreachable']):
            print(obj_hash)
        print(f"{len(result['unreachable'])} unreachable, {len(result['reachable'])} reachable (dry run)",
              file=sys.stderr)
    else:
        print(f"deleted {len(result['deleted'])} objects, "
              f"kept {len(result['skipped_fresh'])} recent, "
              f"{len(result['reachable'])} reachable")
    return 0


def _run_sync(store: AssetStore, args: argparse.Namespace) -> int:
    if args.archives:
        source = ArchiveSet.open(args.source)
    else:
        source = open_store(args.source, initialize=False)
    try:
        result = store.sync_from(StorePeer(source, store.max_traversal), args.root)
    finally:
        if args.archives:
            source.close()
    print(f"fetched {len(result['fetched'])} objects ({result['bytes_transferred']} bytes), "
          f"{len(result['present'])} already present")
    return 0


def _run_verify(store: AssetStore, args: argparse.Namespace) -> int:
    scan = store.detect_tampering()
    issues = store.verify_gc_safety()
    for error in scan['errors']:
        print(error)
    for issue in issues:
        print(issue)
    print(f"verified {scan['verified']} objects, {len(scan['tampered'])} tampered, "
          f"{len(issues)} root issues", file=sys.stderr)
    return 1 if scan['tampered'] or issues else 0


def _run_pack(store: AssetStore, args: argparse.Namespace) -> int:
    count = store.export_archive(args.output, args.roots)
    print(f"packed {count} objects into {args.output}")
    return 0


def _run_ref(store: AssetStore, args: argparse.Namespace) -> int:
    if args.ref_command == 'set':
        store.set_ref(args.name, args.hash)
    elif args.ref_command == 'get':
        target = store.get_ref(args.name)
        if target is None:
            print(f"asset-store: no such ref: {args.name}", file=sys.stderr)
            return 1
        print(target)
    elif args.ref_command == 'rm':
        if not store.delete_ref(args.name):
            print(f"asset-store: no such ref: {args.name}", file=sys.stderr)
            return 1
    else:
        for name in store.list_refs():
            print(f"{name} {store.get_ref(name)}")
    return 0


_COMMANDS = {
    'put': _run_put,
    'cat': _run_cat,
    'ls': _run_ls,
    'manifest': _run_manifest,
    'closure': _run_closure,
    'gc': _run_gc,
    'sync': _run_sync,
    'verify': _run_verify,
    'pack': _run_pack,
    'ref': _run_ref,
}
