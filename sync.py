#!/usr/bin/env python3
"""
Community / Directory Group Membership Sync

Keeps LDAP groups (the Community side) and their CiviCRM mirror groups (the
Directory side) in agreement, one page per invocation, so it can be driven
from cron or any other short-lived trigger.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict

from dotenv import load_dotenv

from civicrm_adapter import CiviCRMDirectoryStore
from config import describe_settings, load_settings, validate_settings
from engine import SyncEngine
from errors import SyncError
from ldap_adapter import LDAPCommunityStore
from openfga_adapter import OpenFGAAcl
from records import Direction
from state import StateStore


logger = logging.getLogger(__name__)


# Load environment variables
load_dotenv()


DIRECTIONS = [d.value for d in Direction]


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    commands = parser.add_subparsers(dest="command", required=True)

    batch = commands.add_parser("batch", help="Process the next page of a batch")
    batch.add_argument("direction", choices=DIRECTIONS)
    batch.add_argument("--identifier", help="Batch identifier (default: cron_<direction>)")
    batch.add_argument("--page-size", type=int, default=None,
                       help="Records per invocation; 0 processes everything in one call")

    stop = commands.add_parser("stop", help="Cancel a batch")
    stop.add_argument("identifier")

    status = commands.add_parser("status", help="Show the position of a batch")
    status.add_argument("identifier")

    group = commands.add_parser("group", help="Reconcile the whole roster of one group")
    group.add_argument("group_id", type=int)
    group.add_argument("direction", choices=DIRECTIONS)

    container = commands.add_parser("container", help="Nest parentless mirrors under the container group")
    container.add_argument("action", choices=["enable", "disable"])

    commands.add_parser("check", help="Validate configuration and test connections")
    return parser


def build_engine(settings):
    community = LDAPCommunityStore(sync_groups=settings.sync_groups)
    directory = CiviCRMDirectoryStore()
    acl = OpenFGAAcl()
    state = StateStore(settings.state_db)
    return SyncEngine(directory, community, acl, state, settings)


def close_engine(engine: SyncEngine) -> None:
    engine.community.disconnect_ldap()
    engine.acl.close()
    engine.state.close()


def check(settings) -> int:
    missing = validate_settings()
    if missing:
        print("Missing required configuration variables:")
        for var in missing:
            print(f"   - {var}")
        return 1
    for line in describe_settings():
        print(f"   {line}")

    try:
        engine = build_engine(settings)
    except SyncError as e:
        print(f"state: {e}")
        return 1
    try:
        results = engine.check()
    finally:
        close_engine(engine)
    for name, error in results.items():
        print(f"{name}: {'OK' if error is None else error}")
    return 0 if all(error is None for error in results.values()) else 1


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ValueError as e:
        logging.basicConfig(level=logging.INFO,
                            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        logger.error(f"Invalid configuration: {e}")
        return 1

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if args.command == "check":
        return check(settings)

    try:
        engine = build_engine(settings)
    except SyncError as e:
        logger.error(f"Could not start: {e}")
        return 1

    try:
        if args.command == "batch":
            identifier = args.identifier or f"cron_{args.direction}"
            result = engine.batch(identifier, Direction(args.direction), args.page_size)
        elif args.command == "stop":
            result = {"stopped": engine.stop(args.identifier)}
        elif args.command == "status":
            result = engine.status(args.identifier)
        elif args.command == "group":
            result = asdict(engine.sync_group(args.group_id, Direction(args.direction)))
        elif args.command == "container" and args.action == "enable":
            result = {"nested": engine.container_enable()}
        else:
            result = {"released": engine.container_disable()}
    except SyncError as e:
        logger.error(f"Sync failed: {e}", exc_info=True)
        return 1
    finally:
        close_engine(engine)

    print(json.dumps(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
