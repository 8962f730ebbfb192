"""Command-line interface for doclock."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Hashable, Sequence

from doclock.core.colors import ConsoleColors
from doclock.core.config import ProtocolConfig, load_env_file
from doclock.core.constants import (
    DEFAULT_STALE_AFTER_SECONDS,
    EXIT_ANOMALY,
    EXIT_ERROR,
    EXIT_OK,
    EXIT_TIMEOUT,
    SUPPORTED_STORE_BACKENDS,
)
from doclock.core.exceptions import DocLockError, LockAcquisitionTimeout, PartialMutationAnomaly
from doclock.core.logging import setup_logging
from doclock.core.version import __version__
from doclock.locks.orphans import OrphanSweeper
from doclock.locks.scheduler import RetryScheduler
from doclock.store import DocumentStore, MemoryDocumentStore, create_store


def parse_key(value: str) -> Hashable:
    """Convert numeric-looking keys to int so they match integer ``_id`` values."""
    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return text


def _non_negative_float(value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a number, got '{value}'") from None
    if parsed < 0:
        raise argparse.ArgumentTypeError(f"must not be negative, got {parsed}")
    return parsed


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected an integer, got '{value}'") from None
    if parsed < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {parsed}")
    return parsed


def parse_arguments(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments"""
    common = argparse.ArgumentParser(add_help=False)
    store_group = common.add_argument_group("store")
    store_group.add_argument("--backend", choices=SUPPORTED_STORE_BACKENDS, help="Store backend (default: memory)")
    store_group.add_argument("--uri", help="MongoDB connection string")
    store_group.add_argument("--database", help="Database name")
    store_group.add_argument("--collection", help="Collection holding the lockable records")
    store_group.add_argument("--env-file", help="Read DOCLOCK_* settings from this .env file (default: search for .env)")
    log_group = common.add_argument_group("logging")
    log_group.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], type=str.upper, help="Log level"
    )
    log_group.add_argument("--log-format", choices=["text", "json"], help="Log output format")
    log_group.add_argument("--log-dir", help="Also write a rotating log file in this directory")
    log_group.add_argument("--no-color", action="store_true", help="Disable colored output")

    parser = argparse.ArgumentParser(
        prog="doclock",
        description="Serialize updates to a set of records using store-side locks",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Lock, update and release records 1, 3 and 5
  doclock update 1 3 5 --backend mongo --uri mongodb://localhost:27017/

  # Give up after 30 seconds of contention
  doclock update 1 3 5 --backend mongo --timeout 30

  # Create free records
  doclock seed 1 2 3 4 5 --backend mongo

  # Show locked records
  doclock status --backend mongo

  # Release locks older than 10 minutes or held by dead local processes
  doclock sweep --backend mongo --stale-after 600
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    update = subparsers.add_parser("update", parents=[common], help="Lock, update and release records")
    update.add_argument("keys", nargs="+", type=parse_key, metavar="KEY", help="Record keys to update")
    update.add_argument("--owner", help="Owner token (default: host:pid:nonce)")
    update.add_argument("--timeout", type=_non_negative_float, help="Give up after this many seconds")
    update.add_argument("--max-attempts", type=_positive_int, help="Give up after this many lock attempts")
    update.add_argument("--base-delay", type=_non_negative_float, help="Initial backoff delay in seconds")
    update.add_argument("--max-delay", type=_non_negative_float, help="Maximum backoff delay in seconds")
    update.add_argument("--no-jitter", action="store_true", help="Disable backoff jitter")
    update.add_argument("--format", choices=["text", "json"], default="text", help="Result output format")

    seed = subparsers.add_parser("seed", parents=[common], help="Insert free records")
    seed.add_argument("keys", nargs="+", type=parse_key, metavar="KEY")

    status = subparsers.add_parser("status", parents=[common], help="List locked records")
    status.add_argument("keys", nargs="*", type=parse_key, metavar="KEY")
    status.add_argument("--format", choices=["text", "json"], default="text")

    sweep = subparsers.add_parser("sweep", parents=[common], help="Release orphaned locks")
    sweep.add_argument("keys", nargs="*", type=parse_key, metavar="KEY")
    sweep.add_argument(
        "--stale-after",
        type=_non_negative_float,
        default=DEFAULT_STALE_AFTER_SECONDS,
        help=f"Lock age in seconds after which it is orphaned (default: {DEFAULT_STALE_AFTER_SECONDS})",
    )

    return parser.parse_args(argv)


def _run_update(args: argparse.Namespace, config: ProtocolConfig, store: DocumentStore) -> int:
    if isinstance(store, MemoryDocumentStore):
        # A fresh in-memory store has no records; create them so the run can claim them.
        store.seed(args.keys)

    scheduler = RetryScheduler(store, config.retry, config.release, logger=logging.getLogger("doclock"))
    result = scheduler.run(args.keys, owner_token=args.owner)

    if args.format == "json":
        print(json.dumps(result.to_dict(), default=str))
    else:
        print(
            ConsoleColors.success(
                f"Updated {result.updated_count} record(s) as {result.owner_token} "
                f"after {result.attempts} attempt(s) in {result.elapsed_seconds:.2f}s"
            )
        )
    return EXIT_OK


def _run_seed(args: argparse.Namespace, store: DocumentStore) -> int:
    seeder = getattr(store, "seed", None)
    if seeder is None:
        print(ConsoleColors.error("ERROR: this backend cannot seed records"), file=sys.stderr)
        return EXIT_ERROR
    inserted = seeder(args.keys)
    print(f"Inserted {inserted} of {len(args.keys)} record(s)")
    return EXIT_OK


def _run_status(args: argparse.Namespace, store: DocumentStore) -> int:
    records = store.find_locked(args.keys or None)
    if args.format == "json":
        rows = [
            {"key": r.key, "owner_token": r.owner_token, "lock_timestamp": r.lock_timestamp} for r in records
        ]
        print(json.dumps(rows, default=str))
        return EXIT_OK

    if not records:
        print("No locked records")
        return EXIT_OK
    for record in records:
        print(f"{record.key!s:<20} {record.owner_token!s:<40} {record.lock_timestamp}")
    return EXIT_OK


def _run_sweep(args: argparse.Namespace, store: DocumentStore) -> int:
    sweeper = OrphanSweeper(store, args.stale_after)
    report = sweeper.sweep(args.keys or None)
    print(
        f"Inspected {report.inspected} locked record(s): released {len(report.released)}, "
        f"kept {len(report.skipped)}, failed {len(report.failed)}"
    )
    return EXIT_ERROR if report.failed else EXIT_OK


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the doclock command"""
    args = parse_arguments(argv)
    ConsoleColors.configure(no_color=args.no_color)

    load_env_file(args.env_file)
    config = ProtocolConfig.from_args(args, base=ProtocolConfig.from_env())
    setup_logging(log_level=config.log.level, log_format=config.log.format, log_dir=args.log_dir)
    logger = logging.getLogger("doclock")

    try:
        store = create_store(config.store, backend_name=args.backend, logger=logger)
    except DocLockError as e:
        print(ConsoleColors.error(f"ERROR: {e}"), file=sys.stderr)
        return EXIT_ERROR

    try:
        if args.command == "update":
            return _run_update(args, config, store)
        if args.command == "seed":
            return _run_seed(args, store)
        if args.command == "status":
            return _run_status(args, store)
        return _run_sweep(args, store)
    except LockAcquisitionTimeout as e:
        print(ConsoleColors.warning(f"TIMEOUT: {e}"), file=sys.stderr)
        return EXIT_TIMEOUT
    except PartialMutationAnomaly as e:
        print(ConsoleColors.error(f"ANOMALY: {e}"), file=sys.stderr)
        return EXIT_ANOMALY
    except DocLockError as e:
        print(ConsoleColors.error(f"ERROR: {e}"), file=sys.stderr)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print(ConsoleColors.warning("Interrupted; held records were released"), file=sys.stderr)
        return EXIT_TIMEOUT
    finally:
        store.close()
