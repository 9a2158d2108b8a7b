"""Notification schedule commands."""

import logging

from babylog.cli.commands.helpers import print_json
from babylog.scheduler import ScheduleConsumer

logger = logging.getLogger(__name__)


def cmd_schedules(args, remote):
    """Handle schedules subcommands. Needs an in-process record store (``--db``)."""
    service = getattr(remote, "service", None)
    if service is None:
        raise ValueError("Schedule maintenance needs direct store access: pass --db")

    if args.schedules_action == "tick":
        consumer = ScheduleConsumer(service.store, batch_size=args.batch_size)
        claimed = consumer.run_once(now=args.now)
        if args.json:
            print_json(
                [
                    {"id": s.id, "owner": s.user_id, "type": s.type, "due_at": s.next_run}
                    for s in claimed
                ]
            )
            return

        if not claimed:
            print("No schedules due.")
            return
        print(f"✓ Advanced {len(claimed)} due schedule(s)")
        for s in claimed:
            print(f"  {s.id}  {s.type:<12} owner={s.user_id}")
