"""ShipStream tracking database management CLI.

Creates and drops the tracking schema on SQL-backed providers. The default
in-memory provider needs neither.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys


def setup_database():
    from tracking.domain import tracking
    from tracking.utils.db import setup_db

    print("Initializing tracking domain...")
    tracking.init()
    providers = setup_db(tracking)
    if providers:
        print(f"  schema ready on: {', '.join(providers)}")
    else:
        print("  no SQL provider configured; nothing to create.")
    print("Done.")


def drop_database():
    from tracking.domain import tracking
    from tracking.utils.db import drop_db

    print("Initializing tracking domain...")
    tracking.init()
    providers = drop_db(tracking)
    if providers:
        print(f"  schema dropped on: {', '.join(providers)}")
    else:
        print("  no SQL provider configured; nothing to drop.")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="ShipStream tracking database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
