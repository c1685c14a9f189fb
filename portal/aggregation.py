"""Completion statistics derived from the progress ledger.

Nothing here writes: roster members who never opened a scenario simply have
no entries and count as not started.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, Literal

from portal.catalog import ORG_ROSTER, SCENARIOS, Roster, RosterEntry, Scenario
from portal.ledger import AccountLedger, ProgressLedger

TeamState = Literal["Not started", "In progress", "Completed"]


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


@dataclass(frozen=True)
class OrgStats:
    enrolled: int
    completed_all: int
    in_progress: int
    not_started: int
    completion_pct: int

    def to_dict(self) -> dict[str, int]:
        return {
            "enrolled": self.enrolled,
            "completedAll": self.completed_all,
            "inProgress": self.in_progress,
            "notStarted": self.not_started,
            "completionPct": self.completion_pct,
        }


@dataclass(frozen=True)
class TeamRow:
    user: RosterEntry
    pct: int
    state: TeamState

    def to_dict(self) -> dict[str, Any]:
        return {"user": self.user.to_dict(), "pct": self.pct, "state": self.state}


def classify(ledger: AccountLedger | None, catalog: Iterable[Scenario]) -> TeamState:
    entries = ledger.scenarios if ledger else {}
    statuses = [entries[s.id].status if s.id in entries else "not_started" for s in catalog]
    if statuses and all(st == "complete" for st in statuses):
        return "Completed"
    if any(st in ("in_progress", "complete") for st in statuses):
        return "In progress"
    return "Not started"


def count_complete(ledger: AccountLedger | None, catalog: Iterable[Scenario]) -> int:
    entries = ledger.scenarios if ledger else {}
    return sum(1 for s in catalog if s.id in entries and entries[s.id].status == "complete")


def compute_org_stats(
    ledger: ProgressLedger,
    roster: Roster = ORG_ROSTER,
    catalog: Iterable[Scenario] = SCENARIOS,
) -> OrgStats:
    catalog = tuple(catalog)
    counts = {"Completed": 0, "In progress": 0, "Not started": 0}
    employees = roster.employees()
    for member in employees:
        counts[classify(ledger.peek(member.email), catalog)] += 1

    enrolled = len(employees)
    return OrgStats(
        enrolled=enrolled,
        completed_all=counts["Completed"],
        in_progress=counts["In progress"],
        not_started=counts["Not started"],
        completion_pct=round_half_up(100 * counts["Completed"] / max(enrolled, 1)),
    )


def compute_team_stats(
    ledger: ProgressLedger,
    manager_id: str,
    roster: Roster = ORG_ROSTER,
    catalog: Iterable[Scenario] = SCENARIOS,
) -> list[TeamRow]:
    catalog = tuple(catalog)
    total = len(catalog)
    rows: list[TeamRow] = []
    for member in roster.team_of(manager_id):
        account_ledger = ledger.peek(member.email)
        done = count_complete(account_ledger, catalog)
        pct = round_half_up(100 * done / total) if total else 0
        rows.append(TeamRow(user=member, pct=pct, state=classify(account_ledger, catalog)))
    return rows
