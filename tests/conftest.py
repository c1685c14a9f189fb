from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import pytest

from portal.catalog import SCENARIOS, Roster, RosterEntry
from portal.config import Settings
from portal.ledger import ProgressLedger
from portal.session import Account, SessionManager
from portal.store import MemoryStore

FROZEN = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger(store: MemoryStore) -> ProgressLedger:
    """Ledger whose clock never advances, so stamps rely on the +1us bump."""
    return ProgressLedger(store, SCENARIOS, clock=lambda: FROZEN)


@pytest.fixture
def sessions(store: MemoryStore) -> SessionManager:
    return SessionManager(store)


@pytest.fixture
def small_roster() -> Roster:
    return Roster(
        [
            RosterEntry("hr-1", "hr@corp.example", "Hana HR", "hr"),
            RosterEntry("m-1", "boss@corp.example", "Bea Boss", "manager", team_id="t-1"),
            RosterEntry("m-2", "lonely@corp.example", "Lee Lonely", "manager", team_id="t-2"),
            RosterEntry("e-1", "done@corp.example", "Dana Done", "employee", "t-1", "m-1"),
            RosterEntry("e-2", "busy@corp.example", "Bo Busy", "employee", "t-1", "m-1"),
            RosterEntry("e-3", "new@corp.example", "Nia New", "employee", "t-1", "m-1"),
        ]
    )


def make_account(role: str = "employee", email: str = "done@corp.example") -> Account:
    return Account(id="7", email=email, name="Test User", role=role, created_at="2026-01-05T10:00:00+00:00")


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=str(tmp_path),
        store_path=str(tmp_path / "store.db"),
        auth_db_path=str(tmp_path / "auth.db"),
        auth_base_url="http://testserver",
    )
