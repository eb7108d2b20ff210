#!/usr/bin/env python3
"""
Roster EventSub (twitch_chatbots)

Usage:
    python -m database.roster list
    python -m database.roster add <user_id>
    python -m database.roster remove <user_id>
"""

import argparse
import logging
import sys

from database.manager import DatabaseManager

LOGGER = logging.getLogger(__name__)


def main(argv=None) -> int:
    """Main entry point"""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s"
    )

    parser = argparse.ArgumentParser(description="Manage the EventSub chatbot roster")
    parser.add_argument('--db', type=str, default='aonyxengine.db', help='Path to database file')
    sub = parser.add_subparsers(dest='command', required=True)
    sub.add_parser('list', help='List roster users')
    add = sub.add_parser('add', help='Add a user to the roster')
    add.add_argument('user_id')
    remove = sub.add_parser('remove', help='Remove a user from the roster')
    remove.add_argument('user_id')

    args = parser.parse_args(argv)

    try:
        db = DatabaseManager(args.db)
    except FileNotFoundError as e:
        LOGGER.error(f"❌ {e}")
        return 1

    if args.command == 'list':
        for row in db.list_chatbots():
            print(f"{row['id']:>5}  {row['user_id']}  {row['created_at']}")
        return 0

    if args.command == 'add':
        row_id = db.add_chatbot(args.user_id)
        LOGGER.info(f"✅ {args.user_id} in roster (id={row_id})")
        return 0

    if db.remove_chatbot(args.user_id):
        LOGGER.info(f"✅ {args.user_id} removed from roster")
        return 0
    LOGGER.warning(f"⚠️ {args.user_id} not in roster")
    return 1


if __name__ == "__main__":
    sys.exit(main())
