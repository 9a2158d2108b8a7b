"""Offline queue commands."""

import logging
from datetime import datetime, timezone

from babylog.cli.commands.helpers import print_json

logger = logging.getLogger(__name__)


def _format_ts(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def cmd_queue(args, client):
    """Handle queue subcommands."""
    if args.queue_action == "status":
        entries = client.queue.pending(client.session)
        if args.json:
            print_json(
                [
                    {
                        "id": e.id,
                        "action": e.action,
                        "record_id": e.payload.get("id"),
                        "timestamp": e.timestamp,
                        "attempts": e.attempts,
                        "last_error": e.last_error,
                    }
                    for e in entries
                ]
            )
            return

        if not entries:
            print("Queue is empty.")
            return
        print(f"{len(entries)} pending write(s) for owner {client.owner_id}:")
        for e in entries:
            line = f"  {_format_ts(e.timestamp)}  {e.action:<22} {e.payload.get('id', '-')}"
            if e.attempts:
                line += f"  (attempts={e.attempts}, last error: {e.last_error})"
            print(line)

    elif args.queue_action == "drain":
        result = client.drain()
        if args.json:
            print_json(
                {
                    "applied": result.applied,
                    "retried": result.retried,
                    "discarded": [e.id for e in result.discarded],
                    "skipped_reason": result.skipped_reason,
                }
            )
            return

        if result.skipped:
            print(f"Drain skipped: {result.skipped_reason}")
            return
        print(
            f"✓ Applied {len(result.applied)}, retrying {len(result.retried)}, "
            f"discarded {len(result.discarded)}"
        )
        for notice in client.notices:
            print(f"  ! {notice.message}")

    elif args.queue_action == "clear":
        if not args.force:
            count = client.queue.pending_count(client.session)
            answer = input(f"Drop {count} unsent write(s)? [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                print("Aborted.")
                return
        dropped = client.queue.clear(client.session)
        print(f"✓ Dropped {dropped} pending write(s)")
