"""Account-wide commands: export, import and delete."""

import logging

from babylog.cli.commands.helpers import print_json, resolve_owner_id
from babylog.protocols import RemoteBackend
from babylog.storage.transfer import dump_json, load_json

logger = logging.getLogger(__name__)


def cmd_export(args, remote: RemoteBackend):
    """Export one owner's data as a JSON document."""
    owner_id = resolve_owner_id(args)
    document = remote.export_account(owner_id)

    if not args.output:
        print_json(document)
        return

    path = dump_json(document, args.output)
    counts = ", ".join(
        f"{len(document.get(key) or [])} {key}"
        for key in ("activities", "customActivities", "growthRecords", "schedules")
    )
    print(f"✓ Exported {counts} to {path}")


def cmd_import(args, remote: RemoteBackend):
    """Replace one owner's data with an export document."""
    owner_id = resolve_owner_id(args)
    document = load_json(args.path)
    result = remote.import_account(owner_id, document) or {}

    if args.json:
        print_json(result)
        return

    imported = result.get("imported") or {}
    print(f"✓ Imported {sum(imported.values())} records from {args.path}")
    for key, count in imported.items():
        print(f"  {key}: {count}")
    for label in ("skipped", "conflicts"):
        counts = {k: v for k, v in (result.get(label) or {}).items() if v}
        if counts:
            print(f"  {label}: " + ", ".join(f"{k}={v}" for k, v in counts.items()))


def cmd_delete_account(args, client):
    """Delete everything the server holds for the owner, then local data."""
    if not args.force:
        answer = input(f"Delete ALL data for owner {client.owner_id}? This cannot be undone. [y/N] ")
        if answer.strip().lower() not in ("y", "yes"):
            print("Aborted.")
            return

    client.reset_all_data()
    print(f"✓ Deleted all data for owner {client.owner_id}")
