"""Sync command: drain the offline queue, then pull a fresh snapshot."""

import logging

from babylog.cli.commands.helpers import print_json

logger = logging.getLogger(__name__)


def cmd_sync(args, client):
    """Drain pending writes and merge the server snapshot into local state."""
    result = client.sync()
    state = client.state

    if args.json:
        print_json(
            {
                "success": result.success,
                "pulled": result.pulled,
                "applied": len(result.drain.applied) if result.drain else 0,
                "discarded": len(result.drain.discarded) if result.drain else 0,
                "skipped_reason": result.drain.skipped_reason if result.drain else None,
                "errors": result.errors,
                "activities": len(state.activities),
            }
        )
        return

    drain = result.drain
    if drain is not None and drain.skipped:
        print(f"Sync skipped: {drain.skipped_reason}")
        if drain.skipped_reason == "offline":
            return
    elif drain is not None:
        print(f"Pushed {len(drain.applied)} pending write(s), {len(drain.retried)} still queued")
        if drain.discarded:
            print(f"  {len(drain.discarded)} write(s) rejected by the server")
    if result.pulled:
        print(
            f"✓ Pulled {len(state.activities)} activities, "
            f"{len(state.custom_activities)} custom activities, "
            f"{len(state.growth_records)} growth records"
        )
    for error in result.errors:
        print(f"✗ {error}")
