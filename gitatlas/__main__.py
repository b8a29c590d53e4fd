"""Main entry point for the gitatlas CLI."""

from dotenv import load_dotenv
load_dotenv()

import sys
import argparse
import threading
from typing import List

from .config import Config
from .core.errors import StoreUnavailable
from .core.identity import load_machine_identity, rotate_machine_identity
from .core.logger import setup_logging
from .discovery import find_git_dirs
from .extractor import TopologyExtractor
from .fetcher import FetchLimiter, RemoteFetcher, RetryPolicy
from .git import SubprocessGit
from .orchestrator import ScanOrchestrator
from .policies import get_policy, policy_registry
from .reconciler import Reconciler
from .store import SnapshotStore
from .utils.progress import print_classifications, print_report


def create_parser() -> argparse.ArgumentParser:
    """Create CLI argument parser.

    Returns:
        Configured ArgumentParser
    """
    parser = argparse.ArgumentParser(
        prog='gitatlas',
        description='Track the state of git repositories across machines',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Scan every repository under ~/src, fetching remotes first
  gitatlas scan ~/src

  # Rescan only repositories whose refs changed, without network access
  gitatlas scan ~/src --incremental --no-fetch

  # Classify all stored repositories (or one, by key prefix)
  gitatlas status
  gitatlas status 3f2a9c

  # Show snapshot history of a repository on this machine
  gitatlas history 3f2a9c --limit 5

  # List repositories found under a directory
  gitatlas find ~/src --ignore ~/src/vendor

  # Keep the last 10 snapshots per repository and machine
  gitatlas prune --keep 10
        """
    )

    parser.add_argument(
        '--list-policies',
        action='store_true',
        help='List available head policies and exit'
    )

    subparsers = parser.add_subparsers(
        dest='operation',
        help='Operation to perform',
        required=False
    )

    scan_parser = subparsers.add_parser('scan', help='Discover, snapshot and reconcile repositories')
    scan_parser.add_argument('paths', nargs='+', metavar='PATH', help='Directories to search')
    _add_discovery_args(scan_parser)
    _add_common_args(scan_parser)
    scan_group = scan_parser.add_argument_group('scan control')
    scan_group.add_argument(
        '--incremental',
        action='store_true',
        help='Skip repositories whose refs did not change since the last scan'
    )
    scan_group.add_argument(
        '--no-fetch',
        action='store_true',
        help='Do not refresh remotes (no network access)'
    )
    scan_group.add_argument(
        '--progress',
        action='store_true',
        help='Show a progress bar instead of per-repository lines'
    )
    exec_group = scan_parser.add_argument_group('execution control')
    exec_group.add_argument(
        '--workers',
        type=int,
        metavar='N',
        help='Number of parallel workers (default: CPU count)'
    )
    exec_group.add_argument(
        '--sequential',
        action='store_true',
        help='Force sequential processing (no parallelization)'
    )
    exec_group.add_argument(
        '--max-fetches',
        type=int,
        metavar='N',
        help='Maximum concurrent fetches (overrides GITATLAS_MAX_FETCHES)'
    )
    exec_group.add_argument(
        '--fetch-timeout',
        type=float,
        metavar='SECONDS',
        help='Timeout per fetch attempt (overrides GITATLAS_FETCH_TIMEOUT)'
    )

    status_parser = subparsers.add_parser('status', help='Classify stored repositories across machines')
    status_parser.add_argument('repository', nargs='?', metavar='REPO_KEY', help='Repository key prefix')
    _add_common_args(status_parser)

    history_parser = subparsers.add_parser('history', help='Show snapshot history of a repository')
    history_parser.add_argument('repository', metavar='REPO_KEY', help='Repository key prefix')
    history_parser.add_argument('--machine', metavar='KEY', help='Machine key prefix (default: this machine)')
    history_parser.add_argument('--limit', type=int, metavar='N', help='Maximum number of snapshots')
    _add_common_args(history_parser)

    find_parser = subparsers.add_parser('find', help='List repositories found under directories')
    find_parser.add_argument('paths', nargs='+', metavar='PATH', help='Directories to search')
    _add_discovery_args(find_parser)

    prune_parser = subparsers.add_parser('prune', help='Apply the snapshot retention policy')
    prune_parser.add_argument('--keep', type=int, metavar='M', help='Snapshots kept per key (overrides GITATLAS_KEEP)')
    _add_common_args(prune_parser)

    machine_parser = subparsers.add_parser('machine', help='Show or rotate the local machine identity')
    machine_parser.add_argument('--rotate', action='store_true', help='Revoke the current token and issue a new one')
    _add_common_args(machine_parser)

    return parser


def _add_common_args(parser: argparse.ArgumentParser) -> None:
    """Add configuration arguments to a parser."""
    config_group = parser.add_argument_group('configuration')
    config_group.add_argument(
        '--home',
        help='Configuration directory (overrides GITATLAS_HOME)'
    )
    config_group.add_argument(
        '--store',
        dest='store_dir',
        help='Snapshot store directory (overrides GITATLAS_STORE)'
    )
    config_group.add_argument(
        '--policy',
        dest='head_policy',
        help='Primary head policy (overrides GITATLAS_HEAD_POLICY)'
    )
    config_group.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Log debug output'
    )


def _add_discovery_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_argument_group('discovery')
    group.add_argument(
        '--follow',
        action='store_true',
        help='Follow symbolic links'
    )
    group.add_argument(
        '--ignore',
        action='append',
        default=[],
        metavar='PATH',
        help='Do not search below this path (can be repeated)'
    )


def _load_config(args) -> Config:
    return Config.from_env_and_args(
        home=getattr(args, 'home', None),
        store_dir=getattr(args, 'store_dir', None),
        max_workers=getattr(args, 'workers', None),
        max_fetches=getattr(args, 'max_fetches', None),
        fetch_timeout=getattr(args, 'fetch_timeout', None),
        keep=getattr(args, 'keep', None),
        head_policy=getattr(args, 'head_policy', None),
        sequential=getattr(args, 'sequential', False)
    )


def _run_scan(args, config: Config, logger) -> int:
    machine = load_machine_identity(config.home)
    logger.info(f"Machine: {machine.label}")

    backend = SubprocessGit()
    store = SnapshotStore(config.store_dir)
    fetcher = RemoteFetcher(
        backend,
        limiter=FetchLimiter(config.max_fetches, config.per_host_fetches),
        timeout=config.fetch_timeout,
        retry=RetryPolicy(max_attempts=config.fetch_attempts),
    )
    orchestrator = ScanOrchestrator(
        extractor=TopologyExtractor(backend, machine, history_depth=config.history_depth),
        fetcher=fetcher,
        store=store,
        reconciler=Reconciler(store, policy=get_policy(config.head_policy)),
        max_workers=config.max_workers,
        sequential=config.sequential,
        fetch=not args.no_fetch,
        show_progress=args.progress,
    )

    cancel = threading.Event()
    paths = find_git_dirs(args.paths, follow_symlinks=args.follow, ignore=args.ignore)
    report = orchestrator.scan(paths, incremental=args.incremental, cancel=cancel)

    print_report(report, operation_name="scan")
    if report.cancelled:
        return 130
    return 1 if report.has_failures else 0


def _run_status(args, config: Config, logger) -> int:
    store = SnapshotStore(config.store_dir)
    reconciler = Reconciler(store, policy=get_policy(config.head_policy))
    catalog = store.all_latest()

    if args.repository:
        repository = store.find_repository(args.repository)
        if repository is None:
            logger.error(f"Unknown repository: {args.repository}")
            return 1
        repositories = [repository]
    else:
        repositories = list(catalog)

    classifications = {
        repository: reconciler.classify_snapshots(catalog.get(repository, {}), repository)
        for repository in repositories
    }
    orphans = {
        r: c for r, c in reconciler.orphans(catalog).items() if r in classifications
    }
    print_classifications(classifications, orphans)
    return 0


def _run_history(args, config: Config, logger) -> int:
    store = SnapshotStore(config.store_dir)
    repository = store.find_repository(args.repository)
    if repository is None:
        logger.error(f"Unknown repository: {args.repository}")
        return 1

    if args.machine:
        machines = [m for m in store.machines() if m.key.startswith(args.machine)]
        if len(machines) != 1:
            logger.error(f"Unknown or ambiguous machine: {args.machine}")
            return 1
        machine = machines[0]
    else:
        machine = load_machine_identity(config.home)

    snapshots = store.history(machine, repository, args.limit)
    print(f"\nHistory of {repository.short} on {machine.label}: {len(snapshots)} snapshot(s)")
    for snapshot in snapshots:
        print(f"  {snapshot.captured_at.isoformat()}  {snapshot.path}")
        for ref in snapshot.refs:
            print(f"    {ref.commit[:12]} {ref.short_name} ({ref.freshness.value})")
    return 0


def _run_find(args) -> int:
    for path in find_git_dirs(args.paths, follow_symlinks=args.follow, ignore=args.ignore):
        print(path)
    return 0


def _run_prune(args, config: Config, logger) -> int:
    store = SnapshotStore(config.store_dir)
    removed = store.prune(config.keep)
    print(f"Removed {removed} snapshot(s), keeping {config.keep} per repository and machine")
    return 0


def _run_machine(args, config: Config, logger) -> int:
    if args.rotate:
        machine = rotate_machine_identity(config.home)
        logger.warning("Snapshots stored under the previous token now belong to a different machine")
    else:
        machine = load_machine_identity(config.home)
    print(f"Hostname: {machine.hostname}")
    print(f"Key: {machine.key}")
    return 0


def main(argv: List[str] = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.list_policies:
        print("Available head policies:")
        for name, policy_class in policy_registry.get_all().items():
            print(f"  {name}: {policy_class.description}")
        return 0

    if not args.operation:
        parser.print_help()
        return 1

    # find only prints paths
    if args.operation == 'find':
        return _run_find(args)

    logger = setup_logging(operation=args.operation, verbose=getattr(args, 'verbose', False))

    try:
        config = _load_config(args)
        logger.info("Configuration loaded")
        logger.info(f"  Store: {config.store_dir}")
        logger.info(f"  Head policy: {config.head_policy}")

        if args.operation == 'scan':
            return _run_scan(args, config, logger)
        if args.operation == 'status':
            return _run_status(args, config, logger)
        if args.operation == 'history':
            return _run_history(args, config, logger)
        if args.operation == 'prune':
            return _run_prune(args, config, logger)
        if args.operation == 'machine':
            return _run_machine(args, config, logger)

        parser.print_help()
        return 1

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyError as e:
        logger.error(f"Lookup error: {e.args[0] if e.args else e}")
        return 1
    except StoreUnavailable as e:
        logger.error(f"Snapshot store unavailable: {e}")
        return 2
    except KeyboardInterrupt:
        logger.info("\nOperation cancelled by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
