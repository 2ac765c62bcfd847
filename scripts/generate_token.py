#!/usr/bin/env python3
"""
Generate a member bearer token for the Scribe API (development).

Optionally bootstraps a household for the user so the token is usable
against an empty database.

Usage:
    python scripts/generate_token.py USER_ID
    python scripts/generate_token.py USER_ID --household "Home"

The signing secret is SCRIBE_JWT_SECRET, or the secret persisted next to the
Scribe config file.
"""

import argparse
import sys
from pathlib import Path

# Add the project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from scribe_printer.core import db as dbh
from scribe_printer.core.auth import MemberAuth


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Generate a Scribe member token")
    parser.add_argument("user_id", help="User id to put in the token subject")
    parser.add_argument("--household", help="Create a household with this name and add the user as owner")
    parser.add_argument("--days", type=int, default=30, help="Token lifetime in days (default: 30)")
    args = parser.parse_args(argv)

    if args.household:
        if dbh.get_membership(args.user_id) is not None:
            print(f"User '{args.user_id}' already belongs to a household; not creating another.")
        else:
            household = dbh.create_household(args.household)
            dbh.add_member(household["id"], args.user_id, role="owner")
            print(f"Created household '{household['name']}' ({household['id']})")

    token = MemberAuth(token_expiry_days=args.days).generate_token(args.user_id)
    print(f"Generated token for user '{args.user_id}':")
    print(f"Token: {token}")
    print()
    print("Use it as:  Authorization: Bearer <token>")
    return 0


if __name__ == "__main__":
    sys.exit(main())
