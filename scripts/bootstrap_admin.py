#!/usr/bin/env python3
"""Create an admin account, or promote an existing one.

Usage:
    # Using environment variables:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=SecurePass123 python scripts/bootstrap_admin.py

    # Or with command line args:
    python scripts/bootstrap_admin.py --email admin@example.com --password SecurePass123

Environment Variables:
    ADMIN_EMAIL: Email for the admin user
    ADMIN_NAME: Display name (defaults to "Administrator")
    ADMIN_PASSWORD: Password (8+ characters with upper, lower and a digit)
    STATE_ROOT: Directory holding the store snapshot; without it the account
        only lives for the duration of this process
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def bootstrap_admin(
    runtime, email: str, password: str, *, name: str = "Administrator", dry_run: bool = False
) -> dict:
    """Create or promote ``email`` to admin.

    Promotion revokes the account's existing tokens: abilities are fixed when
    a token is issued, so only a fresh login picks up the admin wildcard.

    Returns:
        dict with user_id, email, and status ('created', 'promoted',
        'already_admin' or 'dry_run')
    """
    email = email.strip().lower()
    existing_user = runtime.store.get_user_by_email(email)

    if existing_user:
        if existing_user.role == "admin":
            print(f"User {email} already exists as admin (id: {existing_user.id})")
            return {"user_id": existing_user.id, "email": email, "status": "already_admin"}

        if dry_run:
            print(f"[DRY RUN] Would promote existing user {email} to admin")
            return {"user_id": existing_user.id, "email": email, "status": "dry_run"}

        runtime.store.update_user_role(existing_user.id, "admin")
        revoked = runtime.tokens.revoke_all(existing_user.id)
        print(
            f"Promoted existing user {email} to admin (id: {existing_user.id}, "
            f"{revoked} session(s) revoked)"
        )
        return {"user_id": existing_user.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin user: {email}")
        return {"user_id": None, "email": email, "status": "dry_run"}

    user = runtime.store.create_user(name, email, role="admin")
    runtime.auth.save_password(user.id, password)
    print(f"Created admin user: {email} (id: {user.id})")
    return {"user_id": user.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin user for LessonHub",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--email",
        default=os.environ.get("ADMIN_EMAIL"),
        help="Admin email (or set ADMIN_EMAIL env var)",
    )
    parser.add_argument(
        "--name",
        default=os.environ.get("ADMIN_NAME", "Administrator"),
        help="Display name (or set ADMIN_NAME env var)",
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

    if not args.password:
        print("Error: --password or ADMIN_PASSWORD environment variable required")
        sys.exit(1)

    # Import after argument parsing so --help works without the app's dependencies
    from lessonhub.api.schemas import validate_password_strength
    from lessonhub.service.runtime import get_runtime

    try:
        validate_password_strength(args.password)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not os.environ.get("STATE_ROOT"):
        print("Note: STATE_ROOT is not set; the account will not outlive this process")

    try:
        result = bootstrap_admin(
            get_runtime(), args.email, args.password, name=args.name, dry_run=args.dry_run
        )
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin user created successfully!")
        print(f"  Email: {result['email']}")
        print(f"  User ID: {result['user_id']}")
    elif result["status"] == "promoted":
        print("\nExisting user promoted to admin!")
    elif result["status"] == "already_admin":
        print("\nNo changes needed - user is already an admin.")


if __name__ == "__main__":
    main()
