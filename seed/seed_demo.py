#!/usr/bin/env python3
"""Seed demo accounts (and optionally demo progress) for local runs.

Every roster member gets an auth account with an obvious demo password, plus
one individual learner. With --with-progress, a few employees also get
progress entries so the HR and manager dashboards have something to show.

Run:
  python3 seed/seed_demo.py --with-progress

Then start the services:
  uvicorn portal.auth_api:create_auth_app --factory --port 3000
  uvicorn portal.main:create_app --factory --port 8000
"""

from __future__ import annotations

import argparse
import sqlite3
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.auth_api import create_user, connect, init_auth_db  # noqa: E402
from portal.catalog import ORG_ROSTER, SCENARIOS  # noqa: E402
from portal.config import configure_logging, load_settings  # noqa: E402
from portal.ledger import ProgressLedger  # noqa: E402
from portal.store import SqliteStore  # noqa: E402

DEMO_PASSWORD = "password1"

# Outside the org roster: signs up on their own.
INDIVIDUALS = [
    ("sam.rivera@example.org", "Sam Rivera"),
]


def seed_accounts(db_path: str, password: str = DEMO_PASSWORD) -> tuple[int, int]:
    """Create missing demo accounts. Returns (created, skipped)."""
    init_auth_db(db_path)
    created = skipped = 0
    people = [(m.email, m.name, m.role) for m in ORG_ROSTER] + [(e, n, "individual") for e, n in INDIVIDUALS]
    with connect(db_path) as conn:
        for email, name, role in people:
            try:
                create_user(conn, email, password, name, role)
                created += 1
            except sqlite3.IntegrityError:
                skipped += 1
    return created, skipped


def seed_progress(store_path: str) -> None:
    ledger = ProgressLedger(SqliteStore(store_path))
    sids = [s.id for s in SCENARIOS]
    employees = ORG_ROSTER.employees()

    # First employee finishes everything, second is mid-way, the rest untouched.
    if employees:
        for scenario in SCENARIOS:
            ledger.set_selected_choice(employees[0].email, scenario.id, scenario.choices[0].key)
            ledger.mark_complete(employees[0].email, scenario.id)
    if len(employees) > 1:
        ledger.ensure_entries(employees[1].email)
        ledger.mark_complete(employees[1].email, sids[0])
        ledger.mark_in_progress(employees[1].email, sids[1])


def main() -> int:
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    ap.add_argument("--auth-db", help="Auth SQLite path (default: TP_AUTH_DB_PATH)")
    ap.add_argument("--store", help="Portal store path (default: TP_STORE_PATH)")
    ap.add_argument("--password", default=DEMO_PASSWORD)
    ap.add_argument("--with-progress", action="store_true", help="Also write demo progress entries")
    args = ap.parse_args()

    settings = load_settings()
    configure_logging(settings.log_level)

    created, skipped = seed_accounts(args.auth_db or settings.auth_db_path, args.password)
    print(f"Accounts: {created} created, {skipped} already present (password: {args.password})")

    if args.with_progress:
        seed_progress(args.store or settings.store_path)
        print("Demo progress written.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
