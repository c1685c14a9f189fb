"""Per-account, per-scenario progress ledger.

Each (email, scenario) pair is its own store key:

    tp_progress:<email>:<scenario_id>  ->  {"status", "progressPct", "selectedChoice", "lastUpdated"}

Writes are read-modify-write on that single key, guarded by the store's
version token, so two tabs updating different scenarios never clobber each
other and a stale writer on the same scenario retries against fresh data.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Literal

from portal.catalog import SCENARIOS, Scenario
from portal.session import normalize_email
from portal.store import KeyValueStore, VersionConflict

logger = logging.getLogger(__name__)

Status = Literal["not_started", "in_progress", "complete"]
STATUSES: tuple[Status, ...] = ("not_started", "in_progress", "complete")

KEY_PREFIX = "tp_progress:"
DEFAULT_IN_PROGRESS_PCT = 40
MAX_WRITE_ATTEMPTS = 5

_UPDATABLE = {"status", "progress_pct", "selected_choice"}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _check_pct(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"progress_pct must be an integer, got {value!r}")
    if not 0 <= value <= 100:
        raise ValueError(f"progress_pct must be within 0..100, got {value}")
    return value


@dataclass(frozen=True)
class ProgressEntry:
    status: Status = "not_started"
    progress_pct: int = 0
    selected_choice: str | None = None
    last_updated: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "progressPct": self.progress_pct,
            "selectedChoice": self.selected_choice,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Any) -> ProgressEntry:
        if not isinstance(data, dict):
            raise ValueError("progress entry must be an object")
        status = data.get("status", "not_started")
        if status not in STATUSES:
            raise ValueError(f"unknown status: {status!r}")
        pct = _check_pct(data.get("progressPct", 0))
        if status == "complete":
            pct = 100
        choice = data.get("selectedChoice")
        return cls(
            status=status,
            progress_pct=pct,
            selected_choice=str(choice) if choice is not None else None,
            last_updated=str(data.get("lastUpdated") or ""),
        )


@dataclass
class AccountLedger:
    scenarios: dict[str, ProgressEntry] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"scenarios": {sid: e.to_dict() for sid, e in self.scenarios.items()}}


class ProgressLedger:
    """Progress records scoped by account email.

    `complete` is terminal unless `allow_regression` is set: a later
    `mark_in_progress` on a completed scenario is ignored.
    """

    def __init__(
        self,
        store: KeyValueStore,
        catalog: Iterable[Scenario] = SCENARIOS,
        *,
        clock: Callable[[], datetime] = utc_now,
        allow_regression: bool = False,
    ) -> None:
        self.store = store
        self.catalog = tuple(catalog)
        self.clock = clock
        self.allow_regression = allow_regression
        self._scenario_ids = [s.id for s in self.catalog]

    # --- keys / raw entries ---

    def _key(self, email: str, scenario_id: str) -> str:
        return f"{KEY_PREFIX}{normalize_email(email)}:{scenario_id}"

    def _load_entry(self, key: str) -> tuple[ProgressEntry | None, int]:
        loaded = self.store.load(key)
        if loaded.error is not None:
            logger.warning("Treating corrupt progress entry as absent: %s", loaded.error)
            return None, loaded.version
        if not loaded.found:
            return None, 0
        try:
            return ProgressEntry.from_dict(loaded.value), loaded.version
        except ValueError as e:
            logger.warning("Treating invalid progress entry %s as absent: %s", key, e)
            return None, loaded.version

    def _stamp(self, previous: str = "") -> str:
        now = self.clock()
        if previous:
            try:
                prev = datetime.fromisoformat(previous)
            except ValueError:
                prev = None
            if prev is not None and prev.tzinfo is None:
                prev = prev.replace(tzinfo=timezone.utc)
            if prev is not None and now <= prev:
                now = prev + timedelta(microseconds=1)
        return now.isoformat()

    def _default_entry(self) -> ProgressEntry:
        return ProgressEntry(last_updated=self._stamp())

    def _require_scenario(self, scenario_id: str) -> None:
        if scenario_id not in self._scenario_ids:
            raise ValueError(f"unknown scenario: {scenario_id!r}")

    # --- reads ---

    def ensure_entries(self, email: str) -> int:
        """Create default entries for every scenario the account lacks.

        Only touches this account's keys. Existing entries are left alone,
        so repeated calls are no-ops. Returns how many entries were created.
        """
        email = normalize_email(email)
        created = 0
        for sid in self._scenario_ids:
            key = self._key(email, sid)
            entry, version = self._load_entry(key)
            if entry is not None:
                continue
            try:
                self.store.save(key, self._default_entry().to_dict(), expected_version=version)
                created += 1
            except VersionConflict:
                # Another writer initialized it first.
                continue
        if created:
            logger.info("Initialized %d progress entries for %s", created, email)
        return created

    def ensure_account_ledger(self, email: str) -> dict[str, AccountLedger]:
        """Like `ensure_entries`, but returns the full ledger map of every account."""
        self.ensure_entries(email)
        return self.snapshot()

    def get_progress(self, email: str) -> AccountLedger:
        self.ensure_entries(email)
        return self.peek(email) or AccountLedger()

    def peek(self, email: str) -> AccountLedger | None:
        """Read an account's entries without initializing anything."""
        email = normalize_email(email)
        scenarios: dict[str, ProgressEntry] = {}
        for sid in self._scenario_ids:
            entry, _ = self._load_entry(self._key(email, sid))
            if entry is not None:
                scenarios[sid] = entry
        return AccountLedger(scenarios) if scenarios else None

    def has_ledger(self, email: str) -> bool:
        return bool(self.store.keys(f"{KEY_PREFIX}{normalize_email(email)}:"))

    def snapshot(self) -> dict[str, AccountLedger]:
        out: dict[str, AccountLedger] = {}
        for key in self.store.keys(KEY_PREFIX):
            email, _, sid = key[len(KEY_PREFIX) :].rpartition(":")
            if not email or sid not in self._scenario_ids:
                continue
            entry, _ = self._load_entry(key)
            if entry is None:
                continue
            out.setdefault(email, AccountLedger()).scenarios[sid] = entry
        return out

    # --- writes ---

    def _mutate(
        self,
        email: str,
        scenario_id: str,
        changes_for: Callable[[ProgressEntry], dict[str, Any] | None],
    ) -> ProgressEntry:
        self._require_scenario(scenario_id)
        key = self._key(email, scenario_id)
        for _ in range(MAX_WRITE_ATTEMPTS):
            current, version = self._load_entry(key)
            base = current or self._default_entry()
            changes = changes_for(base)
            if changes is None:
                return base

            unknown = set(changes) - _UPDATABLE
            if unknown:
                raise ValueError(f"unknown progress fields: {sorted(unknown)}")
            merged = replace(base, **changes)
            if merged.status not in STATUSES:
                raise ValueError(f"unknown status: {merged.status!r}")
            _check_pct(merged.progress_pct)
            if merged.status == "complete":
                merged = replace(merged, progress_pct=100)
            merged = replace(merged, last_updated=self._stamp(base.last_updated))

            try:
                self.store.save(key, merged.to_dict(), expected_version=version)
            except VersionConflict:
                logger.debug("Retrying progress write for %s after version conflict", key)
                continue
            return merged
        raise VersionConflict(key, -1, -1)

    def update_scenario_progress(self, email: str, scenario_id: str, **changes: Any) -> ProgressEntry:
        """Merge `changes` into the entry and stamp `last_updated`."""
        return self._mutate(email, scenario_id, lambda _entry: dict(changes))

    def mark_in_progress(self, email: str, scenario_id: str, pct: int = DEFAULT_IN_PROGRESS_PCT) -> ProgressEntry:
        pct = max(pct, 1)

        def changes(entry: ProgressEntry) -> dict[str, Any] | None:
            if entry.status == "complete" and not self.allow_regression:
                logger.info("Not regressing completed scenario %s for %s", scenario_id, email)
                return None
            return {"status": "in_progress", "progress_pct": pct}

        return self._mutate(email, scenario_id, changes)

    def mark_complete(self, email: str, scenario_id: str) -> ProgressEntry:
        return self.update_scenario_progress(email, scenario_id, status="complete", progress_pct=100)

    def set_selected_choice(self, email: str, scenario_id: str, choice_key: str) -> ProgressEntry:
        return self.update_scenario_progress(email, scenario_id, selected_choice=choice_key)
