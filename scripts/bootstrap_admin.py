#!/usr/bin/env python3
"""Create or promote a privileged principal.

Usage:
    # Using environment variables:
    ADMIN_USERNAME=root ADMIN_PASSWORD=correct-horse python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --username root --password correct-horse --role ADMIN

    # Show existing principals and their roles:
    python scripts/bootstrap_admin.py --list

Environment Variables:
    ADMIN_USERNAME: Username for the principal
    ADMIN_PASSWORD: Password for the principal
    DATABASE_URL: PostgreSQL connection string (uses the memory store if not set)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 12


def bootstrap_principal(
    username: str, password: str, role: str = "SUPERADMIN", dry_run: bool = False
) -> dict:
    """Ensure ``username`` exists with ``role``.

    Returns:
        dict with principal_id, username, role and status
        ('created', 'promoted', 'unchanged' or 'dry_run')
    """
    # Import here to avoid loading config before env vars are set
    from authkernel.service.runtime import get_runtime

    runtime = get_runtime()
    existing = runtime.store.get_principal_by_username(username)

    if dry_run:
        action = "create" if existing is None else "promote"
        print(f"[DRY RUN] Would {action} {username} as {role}")
        return {
            "principal_id": existing.id if existing else None,
            "username": username,
            "role": role,
            "status": "dry_run",
        }

    before_role = existing.role if existing else None
    principal, created = runtime.auth.ensure_principal(username, password, role)
    if created:
        status = "created"
    elif before_role != principal.role:
        status = "promoted"
    else:
        status = "unchanged"
    return {
        "principal_id": principal.id,
        "username": principal.username,
        "role": principal.role,
        "status": status,
    }


def list_principals(limit: int = 100) -> list[dict]:
    """Public view of stored principals, oldest first."""
    from authkernel.service.runtime import get_runtime

    return [p.public_view() for p in get_runtime().store.list_principals(limit)]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Bootstrap a privileged principal for authkernel",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--username",
        default=os.environ.get("ADMIN_USERNAME"),
        help="Username (or set ADMIN_USERNAME env var)",
    )
    parser.add_argument(
        "--password",
        default=os.environ.get("ADMIN_PASSWORD"),
        help="Password (or set ADMIN_PASSWORD env var)",
    )
    parser.add_argument("--role", default="SUPERADMIN", help="Role to grant")
    parser.add_argument(
        "--list",
        action="store_true",
        help="List existing principals and exit",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args(argv)

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: Using in-memory store (set DATABASE_URL for persistence)")

    if args.list:
        for principal in list_principals():
            print(f"{principal['id']}  {principal['username']}  {principal['role']}")
        return 0

    if not args.username:
        print("Error: --username or ADMIN_USERNAME environment variable required")
        return 1
    if not args.password or len(args.password) < MIN_PASSWORD_LENGTH:
        print(f"Error: password of at least {MIN_PASSWORD_LENGTH} characters required")
        return 1

    from authkernel.service.errors import ServiceError

    try:
        result = bootstrap_principal(args.username, args.password, args.role, args.dry_run)
    except ServiceError as exc:
        print(f"Error: {exc.message}")
        return 1

    print(
        f"{result['status']}: {result['username']} "
        f"(role: {result['role']}, id: {result['principal_id']})"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
