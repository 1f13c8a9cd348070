"""Promote an existing account to admin, or bootstrap a first admin.

Usage:
    python scripts/make_admin.py alice@example.com
    python scripts/make_admin.py root@example.com --create --name Root --password '...'
"""
from __future__ import annotations
import argparse
import getpass
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from werkzeug.security import generate_password_hash

from rbac_portal.config import load_settings
from rbac_portal.core.audit import AuditSink
from rbac_portal.core.database import create_mongo_client, ensure_indexes
from rbac_portal.core.exceptions import RbacError
from rbac_portal.core.models import ROLE_ADMIN
from rbac_portal.core.users import UserStore
from rbac_portal.core.validators import validate_email, validate_name, validate_password


def promote(users: UserStore, audit: AuditSink, email: str) -> str:
    """Promote ``email`` to admin; returns a human-readable outcome."""
    user = users.find_by_email(email)
    if user is None:
        raise LookupError(f"User not found: {email}")
    if user.role == ROLE_ADMIN:
        return f"{email} is already an admin"
    if not users.update_role(user.id, ROLE_ADMIN, expected_role=user.role):
        raise RuntimeError(f"{email} was modified concurrently; retry")
    audit.record(
        user.id,
        "UPDATE_ROLE",
        user.id,
        {"previousRole": user.role, "newRole": ROLE_ADMIN, "via": "cli"},
    )
    return f"Successfully promoted {email} to admin"


def bootstrap(users: UserStore, audit: AuditSink, email: str, name: str, password: str,
              min_password_length: int = 6) -> str:
    """Create a new admin account."""
    validate_password(password, min_password_length)
    user = users.create(
        email=validate_email(email),
        name=validate_name(name),
        role=ROLE_ADMIN,
        password_hash=generate_password_hash(password),
    )
    audit.record(user.id, "CREATE_USER", user.id, {"email": user.email, "role": ROLE_ADMIN, "via": "cli"})
    return f"Created admin account {user.email}"


def main(argv: list[str] | None = None, users: UserStore | None = None, audit: AuditSink | None = None) -> int:
    """Command-line entry point."""
    parser = argparse.ArgumentParser(description="Promote or create an admin account")
    parser.add_argument("email")
    parser.add_argument("--create", action="store_true", help="Create the account if it does not exist")
    parser.add_argument("--name", default="Administrator")
    parser.add_argument("--password", help="Password for --create (prompted when omitted)")
    args = parser.parse_args(argv)

    cfg = load_settings()
    if users is None or audit is None:
        db = create_mongo_client(cfg)[cfg.mongodb_db]
        ensure_indexes(db, cfg.audit_retention_seconds)
        users = UserStore(db)
        audit = AuditSink(db, signing_key=cfg.audit_log_signing_key)

    email = args.email.strip().lower()
    try:
        try:
            message = promote(users, audit, email)
        except LookupError:
            if not args.create:
                raise
            password = args.password or getpass.getpass("Password: ")
            message = bootstrap(users, audit, email, args.name, password, cfg.min_password_length)
    except (LookupError, RuntimeError, ValueError) as exc:
        print(f"[make_admin] {exc}", file=sys.stderr)
        return 1
    except RbacError as exc:
        print(f"[make_admin] {exc.kind}: {exc.message}", file=sys.stderr)
        return 1

    print(message)
    return 0


if __name__ == "__main__":
    sys.exit(main())
