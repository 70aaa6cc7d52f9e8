#!/usr/bin/env python3
"""
Create a user account directly in the database (e.g. the first admin).

Usage:
  python scripts/create_user.py --email admin@example.com --password s3cretpass [--name "Ada"] [--role admin]
"""
from __future__ import annotations

import argparse
import asyncio
import getpass
import sys

from serenity.core.config import get_settings
from serenity.core.security import hash_password
from serenity.db.session import Database
from serenity.repositories.sql_repository import SQLRepository

ROLES = ("user", "admin")


def main() -> None:
    ap = argparse.ArgumentParser(description="Create a user account")
    ap.add_argument("--email", required=True, help="Login email")
    ap.add_argument("--password", help="Password (prompted when omitted)")
    ap.add_argument("--name", help="Full name")
    ap.add_argument("--role", default="user", choices=ROLES)
    ap.add_argument("--database-url", help="Overrides DATABASE_URL")
    args = ap.parse_args()

    email = (args.email or "").strip().lower()
    if "@" not in email:
        raise SystemExit("Invalid email")
    password = args.password or getpass.getpass("Password: ")
    if len(password) < 8:
        raise SystemExit("Password must be at least 8 characters")

    database = Database(args.database_url or get_settings().database_url)
    asyncio.run(database.connect())
    try:
        repo = SQLRepository(database)
        if repo.get_user_by_email(email):
            raise SystemExit(f"User '{email}' already exists")
        user = repo.create_user(email, hash_password(password), full_name=args.name, role=args.role)
    finally:
        asyncio.run(database.close())

    print("OK: user created")
    print(f"  ID: {user.id}")
    print(f"  Email: {user.email}")
    print(f"  Role: {user.role}")


if __name__ == "__main__":
    try:
        main()
    except Exception as exc:  # pragma: no cover - CLI usage
        sys.stderr.write(f"Error: {exc}\n")
        raise SystemExit(1)
