#!/usr/bin/env python3
"""CLI script to seed or list trainer (ADMIN) accounts.

Usage:
    python scripts/create_admin.py --email admin@gmail.com --password changeme
    python scripts/create_admin.py --email coach@example.com --password s3cret --first-name Priya --last-name Rao
    python scripts/create_admin.py --list

Connects directly to the database using DATABASE_URL from environment or .env file.
Creates the tables if they do not exist yet. Existing accounts are left untouched.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.fitcoach
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


async def create_admin(email: str, password: str, first_name: str, last_name: str) -> int:
    """Create the admin account. Returns a process exit code."""
    from src.fitcoach.core.database import close_db, get_session, init_db
    from src.fitcoach.core.identity import Role
    from src.fitcoach.core.security import hash_password
    from src.fitcoach.services.accounts import AccountRepository, EmailAlreadyRegistered

    await init_db()
    accounts = AccountRepository(session_factory=get_session)
    try:
        existing = await accounts.get_by_email(email)
        if existing is not None:
            print(f"Account already exists: {existing.email} (role={existing.role}, id={existing.id})")
            return 0 if existing.role == Role.ADMIN.value else 1

        try:
            admin = await accounts.create(
                first_name=first_name,
                last_name=last_name,
                email=email,
                hashed_password=hash_password(password),
                role=Role.ADMIN,
            )
        except EmailAlreadyRegistered:
            print(f"Account already exists: {email}")
            return 1

        print("Admin account created:")
        print(f"  ID:    {admin.id}")
        print(f"  Name:  {admin.full_name}")
        print(f"  Email: {admin.email}")
        return 0
    finally:
        await close_db()


async def list_admins() -> int:
    from src.fitcoach.core.database import close_db, get_session
    from src.fitcoach.core.identity import Role
    from src.fitcoach.services.accounts import AccountRepository

    accounts = AccountRepository(session_factory=get_session)
    try:
        admins = await accounts.list_by_role(Role.ADMIN)
    finally:
        await close_db()

    if not admins:
        print("No admin accounts found.")
        return 0
    for index, admin in enumerate(admins, start=1):
        print(f"{index}. {admin.full_name} <{admin.email}> (id={admin.id})")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed or list trainer (ADMIN) accounts")
    parser.add_argument("--email", default=None, help="Admin email address")
    parser.add_argument("--password", default=None, help="Admin password")
    parser.add_argument("--first-name", default="Admin", help="First name (default: Admin)")
    parser.add_argument("--last-name", default="User", help="Last name (default: User)")
    parser.add_argument("--list", action="store_true", help="List existing admin accounts")
    args = parser.parse_args()

    if args.list:
        sys.exit(asyncio.run(list_admins()))

    if not args.email or not args.password:
        parser.error("--email and --password are required unless --list is given")

    sys.exit(asyncio.run(create_admin(args.email, args.password, args.first_name, args.last_name)))


if __name__ == "__main__":
    main()
