#!/usr/bin/env python3
"""Create a community and make a user its first admin.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=manager@example.com ADMIN_PASSWORD=SecurePassword123! \
        python scripts/bootstrap_community.py --name "Maple Court"

    # Or with command line args:
    python scripts/bootstrap_community.py --name "Maple Court" \
        --email manager@example.com --password SecurePassword123!

Environment Variables:
    ADMIN_EMAIL: Email of the community admin (created if missing)
    ADMIN_PASSWORD: Password used when the admin has to be created
    DATABASE_URL: PostgreSQL connection string (optional, uses memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import Optional

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_community(
    name: str,
    email: str,
    password: Optional[str],
    *,
    district: Optional[str] = None,
    dry_run: bool = False,
) -> dict:
    """Create the community and attach the admin.

    Returns:
        dict with community_id, user_id and status ('created' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from estategate.service.runtime import get_runtime

    runtime = get_runtime()
    user = runtime.store.get_user_by_email(email)

    if dry_run:
        action = "reuse" if user else "create"
        print(f"[DRY RUN] Would {action} user {email} and create community {name!r}")
        return {"community_id": None, "user_id": user.id if user else None, "status": "dry_run"}

    if not user:
        if not password:
            raise ValueError(f"user {email} does not exist; --password is required to create it")
        user = runtime.accounts.register(email, password)
        print(f"Created user: {email} (id: {user.id})")

    community = runtime.store.create_community(name, district=district)
    runtime.store.add_community_admin(community.id, user.id)
    print(f"Created community {name!r} (id: {community.id}) with admin {email}")
    return {"community_id": community.id, "user_id": user.id, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap a community and its admin for EstateGate",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--name", required=True, help="Community name")
    parser.add_argument("--district", default=None, help="Community district")
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Admin password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )

    args = parser.parse_args()

    if not args.email:
        print("Error: --email or ADMIN_EMAIL environment variable required")
        sys.exit(1)

    if args.password is not None and len(args.password) < 8:
        print("Error: Password must be at least 8 characters")
        sys.exit(1)

    # Use memory store if no database configured
    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_community(
            args.name,
            args.email,
            args.password,
            district=args.district,
            dry_run=args.dry_run,
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nCommunity created successfully!")
        print(f"  Community ID: {result['community_id']}")
        print(f"  Admin User ID: {result['user_id']}")


if __name__ == "__main__":
    main()
