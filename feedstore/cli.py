"""
Command-line access to a feed registry.

Usage:
    feedstore create [--name NAME]
    feedstore add KEY [--name NAME]
    feedstore has KEY
    feedstore resolve-name NAME
    feedstore resolve-dkey DISCOVERY_KEY
    feedstore delete ID
    feedstore list
"""

import argparse
import asyncio
import sys
from typing import Optional
import structlog
from dotenv import load_dotenv

from feedstore.config import DEFAULT_CONFIG_PATH, RegistryConfig, load_config
from feedstore.errors import FeedStoreError
from feedstore.log import setup_logging
from feedstore.registry.feed_registry import FeedRegistry


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedstore",
        description="Manage a registry of append-only feeds",
    )
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Path to configuration file")
    parser.add_argument("--root", help="Storage root (overrides config)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (overrides config)",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create", help="Create a feed owned by this registry")
    create.add_argument("--name", help="Local name for the feed")

    add = commands.add_parser("add", help="Register a remote feed by public key")
    add.add_argument("key", help="Public key (64 hex characters)")
    add.add_argument("--name", help="Local name for the feed")

    has = commands.add_parser("has", help="Check whether a feed exists")
    has.add_argument("key")

    resolve_name = commands.add_parser("resolve-name", help="Public key for a local name")
    resolve_name.add_argument("name")

    resolve_dkey = commands.add_parser("resolve-dkey", help="Public key for a discovery key")
    resolve_dkey.add_argument("dkey")

    delete = commands.add_parser("delete", help="Close a feed and erase its data")
    delete.add_argument("id", help="Public key or local name")

    commands.add_parser("list", help="List every known feed")

    return parser


async def run(args: argparse.Namespace, config: RegistryConfig) -> int:
    registry = FeedRegistry.from_config(config)

    try:
        if args.command == "create":
            feed = await registry.create_local(args.name)
            print(feed.key.hex())
            return 0

        if args.command == "add":
            feed = await registry.create_remote(args.key, args.name)
            print(feed.key.hex())
            return 0

        if args.command == "has":
            found = await registry.has(args.key)
            print("yes" if found else "no")
            return 0 if found else 1

        if args.command in ("resolve-name", "resolve-dkey"):
            if args.command == "resolve-name":
                key = await registry.from_local_name(args.name)
            else:
                key = await registry.from_discovery_key(args.dkey)
            if key is None:
                print("not found", file=sys.stderr)
                return 1
            print(key.hex())
            return 0

        if args.command == "delete":
            await registry.delete(args.id)
            return 0

        if args.command == "list":
            for key in await registry.list_keys():
                name = await registry.local_name_of(key)
                print(f"{key.hex()}  {name or ''}".rstrip())
            return 0

        raise ValueError(f"unknown command: {args.command}")
    finally:
        await registry.shutdown()


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Load environment variables
    load_dotenv()

    config = load_config(args.config)
    if args.root:
        config.storage_root = args.root
    if args.log_level:
        config.log_level = args.log_level

    setup_logging(config.log_level)
    logger = structlog.get_logger(__name__)
    logger.debug("feedstore_command", command=args.command, root=config.storage_root)

    try:
        return asyncio.run(run(args, config))
    except (FeedStoreError, ValueError) as e:
        logger.error("feedstore_command_failed", command=args.command, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
