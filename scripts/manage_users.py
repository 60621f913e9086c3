#!/usr/bin/env python3
"""List or add local user accounts and print their API bearer tokens."""
import argparse
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from what2watch.config import load_settings
from what2watch.db import connect
from what2watch.models import ensure_user, init_db


def list_users(conn) -> None:
    rows = conn.execute(
        "SELECT user_id, email, display_name, is_admin, created_at FROM users ORDER BY user_id"
    ).fetchall()

    print("\n" + "=" * 90)
    print("ALL USER ACCOUNTS")
    print("=" * 90)

    if not rows:
        print("No accounts found in the database.")
    else:
        print(f"{'ID':<6} | {'Email':<30} | {'Name':<16} | {'Admin':<6} | {'Token'}")
        print("-" * 90)
        for row in rows:
            admin_status = "Yes" if row["is_admin"] else "No"
            token = f"Bearer {row['user_id']}:{row['email']}"
            print(f"{row['user_id']:<6} | {row['email']:<30} | {row['display_name'] or '':<16} | {admin_status:<6} | {token}")

    print("=" * 90)
    print(f"Total accounts: {len(rows)}")
    print("=" * 90)


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", help="Path to the SQLite database (default: DATABASE_PATH setting)")
    sub = parser.add_subparsers(dest="command")
    sub.add_parser("list", help="List accounts")
    add = sub.add_parser("add", help="Create an account if it does not exist")
    add.add_argument("email")
    add.add_argument("--name", default=None)
    add.add_argument("--admin", action="store_true")
    args = parser.parse_args()

    settings = load_settings({"DATABASE_PATH": args.db} if args.db else None)
    conn = connect(settings["DATABASE_PATH"])
    try:
        init_db(conn)
        if args.command == "add":
            user_id = ensure_user(conn, args.email, args.name, is_admin=args.admin)
            print(f"[OK] {args.email} -> Authorization: Bearer {user_id}:{args.email}")
        else:
            list_users(conn)
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
