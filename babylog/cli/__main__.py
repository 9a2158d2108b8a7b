"""
babylog CLI - account transfer and offline queue maintenance.

Usage:
    babylog [--owner ID] [--url URL | --db PATH] export [--output FILE]
    babylog [--owner ID] [--url URL | --db PATH] import FILE [--json]
    babylog [--owner ID] [--url URL | --db PATH] delete-account [--force]
    babylog [--owner ID] [--url URL | --db PATH] queue status|drain|clear
    babylog [--owner ID] [--url URL | --db PATH] sync [--json]
    babylog --db PATH schedules tick [--now UNIX] [--json]
"""

import argparse
import logging
import sys

from babylog.cli.commands import (
    build_client,
    build_remote,
    cmd_delete_account,
    cmd_export,
    cmd_import,
    cmd_queue,
    cmd_schedules,
    cmd_sync,
)
from babylog.logging_config import setup_babylog_logging
from babylog.protocols import BabyLogError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="babylog",
        description="Offline-first baby activity journal",
    )
    parser.add_argument("--owner", "-o", help="Owner id (default: $BABYLOG_OWNER_ID)", default=None)
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--url", help="Backend URL (default: $BABYLOG_BACKEND_URL)")
    target.add_argument("--db", help="Use a record store file in-process instead of HTTP")
    parser.add_argument("--client-db", dest="client_db", help="Client database (default: ~/.babylog/client.db)")
    parser.add_argument("--log-level", dest="log_level", default="WARNING")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # export
    p_export = subparsers.add_parser("export", help="Export account data as JSON")
    p_export.add_argument("--output", "-O", help="Write to FILE instead of stdout")

    # import
    p_import = subparsers.add_parser("import", help="Replace account data from an export file")
    p_import.add_argument("path", help="Export document to import")
    p_import.add_argument("--json", "-j", action="store_true")

    # delete-account
    p_delete = subparsers.add_parser("delete-account", help="Delete all server and local data")
    p_delete.add_argument("--force", "-f", action="store_true", help="Skip confirmation prompt")

    # queue
    p_queue = subparsers.add_parser("queue", help="Offline queue operations")
    q_sub = p_queue.add_subparsers(dest="queue_action", required=True)
    q_status = q_sub.add_parser("status", help="List pending writes")
    q_status.add_argument("--json", "-j", action="store_true")
    q_drain = q_sub.add_parser("drain", help="Replay pending writes now")
    q_drain.add_argument("--json", "-j", action="store_true")
    q_clear = q_sub.add_parser("clear", help="Drop pending writes without sending them")
    q_clear.add_argument("--force", "-f", action="store_true", help="Skip confirmation prompt")

    # sync
    p_sync = subparsers.add_parser("sync", help="Drain the queue, then pull the server snapshot")
    p_sync.add_argument("--json", "-j", action="store_true")

    # schedules
    p_sched = subparsers.add_parser("schedules", help="Notification schedule maintenance")
    s_sub = p_sched.add_subparsers(dest="schedules_action", required=True)
    s_tick = s_sub.add_parser("tick", help="Claim due schedules and advance their next run")
    s_tick.add_argument("--now", type=int, default=None, help="Unix time to tick at (default: now)")
    s_tick.add_argument("--batch-size", dest="batch_size", type=int, default=100)
    s_tick.add_argument("--json", "-j", action="store_true")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_babylog_logging(owner_id=args.owner, level=args.log_level)

    try:
        remote = build_remote(args)
    except (ValueError, TypeError) as e:
        logger.error(f"Failed to initialize backend: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "export":
            cmd_export(args, remote)
        elif args.command == "import":
            cmd_import(args, remote)
        elif args.command == "delete-account":
            cmd_delete_account(args, build_client(args, remote))
        elif args.command == "queue":
            cmd_queue(args, build_client(args, remote))
        elif args.command == "sync":
            cmd_sync(args, build_client(args, remote))
        elif args.command == "schedules":
            cmd_schedules(args, remote)
    except (ValueError, TypeError) as e:
        logger.error(f"Input validation error: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    except BabyLogError as e:
        logger.error(f"Command failed: {e}")
        print(f"✗ {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        close = getattr(remote, "close", None)
        if close is not None:
            close()


if __name__ == "__main__":
    main()
