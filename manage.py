#!/usr/bin/env python3
"""Operator commands: create indexes, grant a role (e.g. bootstrap the first admin)."""

import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

from mongo.accounts import AccountStore
from mongo.client import DirectMongoClient
from mongo.create_indexes import create_indexes
from rbac.permissions import NotFound, Role

logger = logging.getLogger(__name__)


async def _run(args: argparse.Namespace, mongo: DirectMongoClient) -> int:
    await mongo.connect()
    try:
        if args.command == "create-indexes":
            await create_indexes(mongo)
        elif args.command == "grant-role":
            try:
                assignment = await AccountStore(mongo).grant_role(args.email, Role(args.role))
            except NotFound as e:
                logger.error(e.message)
                return 1
            print(f"{args.email} -> {assignment['role']}")
        return 0
    finally:
        await mongo.disconnect()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Task tracker management commands.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Logging level to use (default: INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("create-indexes", help="Create the MongoDB indexes the store relies on.")
    grant = sub.add_parser("grant-role", help="Set the role of an existing user.")
    grant.add_argument("email")
    grant.add_argument("role", choices=[role.value for role in Role])
    return parser


def main(argv=None, mongo: DirectMongoClient = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    return asyncio.run(_run(args, mongo or DirectMongoClient()))


if __name__ == "__main__":
    sys.exit(main())
