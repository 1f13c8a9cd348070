"""Audit trail CLI: list recent entries and verify their signatures.

Usage:
    python scripts/audit.py list [--actor ID] [--target ID] [--action ACTION] [--limit N]
    python scripts/audit.py verify
"""
from __future__ import annotations
import argparse
import json
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).parent
PROJECT_ROOT = SCRIPT_DIR.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rbac_portal.config import load_settings
from rbac_portal.core.audit import AuditSink
from rbac_portal.core.database import create_mongo_client
from rbac_portal.core.exceptions import ServiceUnavailable
from rbac_portal.core.models import AUDIT_ACTIONS


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RBAC portal audit trail helper")
    sub = parser.add_subparsers(dest="cmd")

    lst = sub.add_parser("list", help="Print entries, newest first (JSON lines)")
    lst.add_argument("--actor")
    lst.add_argument("--target")
    lst.add_argument("--action", choices=AUDIT_ACTIONS)
    lst.add_argument("--limit", type=int, default=20)

    sub.add_parser("verify", help="Verify HMAC signatures of every entry")
    return parser


def main(argv: list[str] | None = None, sink: AuditSink | None = None) -> int:
    """Command-line entry point; returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.cmd:
        parser.print_help()
        return 2

    if sink is None:
        cfg = load_settings()
        db = create_mongo_client(cfg)[cfg.mongodb_db]
        sink = AuditSink(db, signing_key=cfg.audit_log_signing_key)

    try:
        if args.cmd == "list":
            entries = sink.list_entries(
                limit=args.limit,
                actor_id=args.actor,
                target_user_id=args.target,
                action=args.action,
            )
            for entry in entries:
                print(json.dumps(entry.to_dict(), ensure_ascii=False))
            return 0

        total, valid = sink.verify_entries()
    except ServiceUnavailable as exc:
        print(f"[audit] Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Audit log: {valid}/{total} events with valid signatures")
    return 0 if total == valid else 1


if __name__ == "__main__":
    sys.exit(main())
