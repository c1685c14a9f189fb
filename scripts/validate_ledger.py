#!/usr/bin/env python3
"""Check a portal store file against the progress ledger rules.

Rules checked:
1. Every progress entry parses and has a known status and a 0..100 percentage.
2. Completed entries report 100%.
3. Every account that has any entry has one entry per catalog scenario.
4. Entries only reference catalog scenarios.

Exit codes:
  0 all rules hold
  1 violations found
  2 store file missing
"""

from __future__ import annotations

import argparse
import sys
from collections import defaultdict
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.catalog import scenario_ids  # noqa: E402
from portal.config import load_settings  # noqa: E402
from portal.ledger import KEY_PREFIX, ProgressEntry  # noqa: E402
from portal.store import KeyValueStore, SqliteStore  # noqa: E402


def find_violations(store: KeyValueStore) -> list[str]:
    known = set(scenario_ids())
    problems: list[str] = []
    seen: dict[str, set[str]] = defaultdict(set)

    for key in store.keys(KEY_PREFIX):
        email, _, sid = key[len(KEY_PREFIX) :].rpartition(":")
        if sid not in known:
            problems.append(f"{key}: unknown scenario {sid!r}")
            continue
        seen[email].add(sid)

        loaded = store.load(key)
        if loaded.error is not None:
            problems.append(f"{key}: {loaded.error}")
            continue
        try:
            entry = ProgressEntry.from_dict(loaded.value)
        except ValueError as e:
            problems.append(f"{key}: {e}")
            continue
        # Readers normalize this, so check what is actually stored.
        stored_pct = loaded.value.get("progressPct", 0)
        if entry.status == "complete" and stored_pct != 100:
            problems.append(f"{key}: complete but progress is {stored_pct}%")

    for email, sids in sorted(seen.items()):
        missing = known - sids
        if missing:
            problems.append(f"{email}: missing entries for {sorted(missing)}")
    return problems


def main() -> int:
    ap = argparse.ArgumentParser(description="Validate portal progress entries.")
    ap.add_argument("--store", help="Portal store path (default: TP_STORE_PATH)")
    args = ap.parse_args()

    path = args.store or load_settings().store_path
    print(f"Validating progress entries in {path}...")
    if not Path(path).exists():
        print(f"❌ Store file not found: {path}")
        return 2

    problems = find_violations(SqliteStore(path))
    if problems:
        for p in problems:
            print(f"❌ {p}")
        print(f"\n❌ {len(problems)} problem(s) found.")
        return 1
    print("✅ All progress entries are consistent.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
