"""CLI command modules for babylog.

Each module holds related command handlers dispatched from __main__.py.
"""

from babylog.cli.commands.account import cmd_delete_account, cmd_export, cmd_import
from babylog.cli.commands.helpers import build_client, build_remote, print_json, resolve_owner_id
from babylog.cli.commands.queue import cmd_queue
from babylog.cli.commands.schedules import cmd_schedules
from babylog.cli.commands.sync import cmd_sync

__all__ = [
    "build_client",
    "build_remote",
    "cmd_delete_account",
    "cmd_export",
    "cmd_import",
    "cmd_queue",
    "cmd_schedules",
    "cmd_sync",
    "print_json",
    "resolve_owner_id",
]
