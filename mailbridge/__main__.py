"""Entry point for the bridge.

Usage::

    python -m mailbridge run                       # watch mailbox, deliver PDFs
    python -m mailbridge allow list|add|remove [PATTERN]
    python -m mailbridge topic list
    python -m mailbridge topic default <ID|none>
    python -m mailbridge topic set <PATTERN> <ID>
    python -m mailbridge topic remove <PATTERN>
    python -m mailbridge cleanup [HOURS]

Admin commands only read ``STORAGE_*`` settings, so they work without
IMAP or Telegram credentials.
"""

from __future__ import annotations

import argparse
import asyncio
import sys

from .config import StorageConfig
from .documents import DocumentStore
from .logging import setup_logging
from .service import open_allow_list, open_routing


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbridge")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("run", help="Run the bridge until SIGTERM/SIGINT")

    allow = commands.add_parser("allow", help="Manage the sender allow-list")
    allow_cmds = allow.add_subparsers(dest="action", required=True)
    allow_cmds.add_parser("list")
    allow_cmds.add_parser("add").add_argument("pattern")
    allow_cmds.add_parser("remove").add_argument("pattern")

    topic = commands.add_parser("topic", help="Manage sender → topic routing")
    topic_cmds = topic.add_subparsers(dest="action", required=True)
    topic_cmds.add_parser("list")
    topic_cmds.add_parser("default").add_argument("topic_id", help='Topic id or "none"')
    topic_set = topic_cmds.add_parser("set")
    topic_set.add_argument("pattern")
    topic_set.add_argument("topic_id")
    topic_cmds.add_parser("remove").add_argument("pattern")

    cleanup = commands.add_parser("cleanup", help="Delete old rendered documents")
    cleanup.add_argument("hours", nargs="?", type=float, default=None)

    return parser


def _allow(args: argparse.Namespace, storage: StorageConfig) -> int:
    store = open_allow_list(storage)
    if args.action == "list":
        entries = store.entries()
        if not entries:
            print("Allow-list is empty: all senders are accepted.")
        for entry in entries:
            print(entry)
        return 0
    if args.action == "add":
        if store.add(args.pattern):
            print(f"Added {args.pattern}")
        else:
            print(f"{args.pattern} is already on the allow-list")
        return 0
    if store.remove(args.pattern):
        print(f"Removed {args.pattern}")
        return 0
    print(f"{args.pattern} is not on the allow-list", file=sys.stderr)
    return 1


def _topic(args: argparse.Namespace, storage: StorageConfig) -> int:
    store = open_routing(storage)
    if args.action == "list":
        config = store.load()
        default = config.default_topic if config.default_topic is not None else "none"
        print(f"default: {default}")
        for pattern, topic_id in sorted(config.topic_mappings.items()):
            print(f"{pattern} -> {topic_id}")
        return 0
    if args.action == "default":
        value = None if args.topic_id.lower() == "none" else args.topic_id
        store.set_default_topic(value)
        print(f"Default topic set to {value or 'none'}")
        return 0
    if args.action == "set":
        store.set_topic(args.pattern, args.topic_id)
        print(f"{args.pattern.strip().lower()} -> {args.topic_id}")
        return 0
    if store.remove_topic(args.pattern):
        print(f"Removed mapping for {args.pattern}")
        return 0
    print(f"No mapping for {args.pattern}", file=sys.stderr)
    return 1


def _cleanup(args: argparse.Namespace, storage: StorageConfig) -> int:
    hours = args.hours if args.hours is not None else storage.retention_hours
    removed = asyncio.run(DocumentStore(storage.documents_dir).cleanup(hours))
    print(f"Removed {removed} document(s) older than {hours:g}h")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    if args.command == "run":
        from .config import BridgeConfig
        from .service import BridgeService

        service = BridgeService(BridgeConfig())
        asyncio.run(service.run())
        return 0

    setup_logging(json=False, level="WARNING")
    storage = StorageConfig()
    try:
        if args.command == "allow":
            return _allow(args, storage)
        if args.command == "topic":
            return _topic(args, storage)
        return _cleanup(args, storage)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
