import pytest

from conftest import make_account
from portal.catalog import Roster
from portal.gate import UNAUTHENTICATED, UNAUTHORIZED, AccessGate, GateRedirect
from portal.ledger import KEY_PREFIX, ProgressLedger
from portal.session import SessionManager
from portal.store import MemoryStore


@pytest.fixture
def gate(sessions: SessionManager, ledger: ProgressLedger) -> AccessGate:
    return AccessGate(sessions, ledger)


def test_no_session_redirects_unauthenticated(gate: AccessGate, store: MemoryStore) -> None:
    with pytest.raises(GateRedirect) as exc:
        gate.require_role(["hr"])
    assert exc.value.reason == UNAUTHENTICATED
    assert exc.value.location == "/login?reason=unauthenticated"
    assert store.keys(KEY_PREFIX) == []


def test_wrong_role_redirects_unauthorized(gate: AccessGate, sessions: SessionManager) -> None:
    sessions.set_session(make_account("employee"))
    with pytest.raises(GateRedirect) as exc:
        gate.require_role(["hr"])
    assert exc.value.reason == UNAUTHORIZED
    assert exc.value.location == "/login?reason=unauthorized"


def test_hr_passes_without_ledger_initialization(gate: AccessGate, sessions: SessionManager, store: MemoryStore) -> None:
    sessions.set_session(make_account("hr", "hr@corp.example"))
    account = gate.require_role(["hr"])
    assert account.role == "hr"
    assert store.keys(KEY_PREFIX) == []


@pytest.mark.parametrize("role", ["employee", "individual"])
def test_learners_get_ledger_on_first_visit(
    gate: AccessGate, sessions: SessionManager, ledger: ProgressLedger, role: str
) -> None:
    sessions.set_session(make_account(role, "learner@corp.example"))
    gate.require_role({"employee", "individual"})
    assert ledger.has_ledger("learner@corp.example")


def test_corrupt_session_counts_as_unauthenticated(gate: AccessGate, store: MemoryStore) -> None:
    store.save_raw("tp_user", "not-json")
    with pytest.raises(GateRedirect) as exc:
        gate.require_role(["employee"])
    assert exc.value.reason == UNAUTHENTICATED


def test_roster_role_mismatch_is_unauthorized(
    sessions: SessionManager, ledger: ProgressLedger, small_roster: Roster
) -> None:
    gate = AccessGate(sessions, ledger, login_url="/signin", roster=small_roster)
    # Listed as an employee on the roster but holding a manager session.
    sessions.set_session(make_account("manager", "busy@corp.example"))
    with pytest.raises(GateRedirect) as exc:
        gate.require_role(["manager"])
    assert exc.value.location == "/signin?reason=unauthorized"


def test_roster_does_not_block_people_outside_it(
    sessions: SessionManager, ledger: ProgressLedger, small_roster: Roster
) -> None:
    gate = AccessGate(sessions, ledger, roster=small_roster)
    sessions.set_session(make_account("individual", "solo@home.example"))
    assert gate.require_role(["individual"]).email == "solo@home.example"


@pytest.mark.parametrize("role", ["hr", "manager", "employee"])
def test_org_role_off_the_roster_is_unauthorized(
    sessions: SessionManager, ledger: ProgressLedger, small_roster: Roster, store: MemoryStore, role: str
) -> None:
    gate = AccessGate(sessions, ledger, roster=small_roster)
    # A self-registered account claiming an org role.
    sessions.set_session(make_account(role, "intruder@evil.example"))
    with pytest.raises(GateRedirect) as exc:
        gate.require_role([role])
    assert exc.value.reason == UNAUTHORIZED
    assert store.keys(KEY_PREFIX) == []


def test_roster_member_with_matching_role_passes(
    sessions: SessionManager, ledger: ProgressLedger, small_roster: Roster
) -> None:
    gate = AccessGate(sessions, ledger, roster=small_roster)
    sessions.set_session(make_account("hr", "HR@corp.example"))
    assert gate.require_role(["hr"]).role == "hr"


def test_gate_only_reads_the_visitor_ledger() -> None:
    store = MemoryStore()
    ledger = ProgressLedger(store)
    for i in range(30):
        ledger.ensure_entries(f"user{i}@corp.example")
    sessions = SessionManager(store)
    sessions.set_session(make_account("employee", "learner@corp.example"))
    gate = AccessGate(sessions, ledger)

    before = len(store.keys(KEY_PREFIX))
    seen = []
    real_load = store.load
    store.load = lambda key: seen.append(key) or real_load(key)
    gate.require_role(["employee"])

    assert len(store.keys(KEY_PREFIX)) == before + len(ledger.catalog)
    assert all(k == "tp_user" or k.startswith(f"{KEY_PREFIX}learner@corp.example:") for k in seen)
