"""Static reference data: the scenario catalog and the demo org roster.

Neither is mutated at runtime. The roster is only used for role checks and
team grouping; accounts themselves live in the auth service.
"""

from __future__ import annotations

from dataclasses import dataclass

from portal.session import Role, normalize_email


@dataclass(frozen=True)
class Choice:
    key: str
    label: str


@dataclass(frozen=True)
class Scenario:
    id: str
    title: str
    duration_mins: int
    perspectives: int
    choices: tuple[Choice, ...] = ()

    def choice_keys(self) -> list[str]:
        return [c.key for c in self.choices]


SCENARIOS: tuple[Scenario, ...] = (
    Scenario(
        id="meeting-interruptions",
        title="Interrupted in the Team Meeting",
        duration_mins=10,
        perspectives=3,
        choices=(
            Choice("redirect", "Redirect the conversation back to your colleague"),
            Choice("wait", "Wait and raise it privately after the meeting"),
            Choice("ignore", "Let it go; it was only one comment"),
        ),
    ),
    Scenario(
        id="pronoun-misuse",
        title="A Colleague's Pronouns",
        duration_mins=8,
        perspectives=2,
        choices=(
            Choice("correct-gently", "Gently correct the pronoun in the moment"),
            Choice("check-in", "Check in with your colleague about what they prefer"),
            Choice("stay-silent", "Say nothing to avoid drawing attention"),
        ),
    ),
    Scenario(
        id="inclusive-hiring",
        title="Bias in the Hiring Panel",
        duration_mins=15,
        perspectives=4,
        choices=(
            Choice("structured", "Ask the panel to return to the structured criteria"),
            Choice("escalate", "Flag the comment to HR after the panel"),
            Choice("defer", "Defer to the most senior panelist"),
        ),
    ),
    Scenario(
        id="accessibility-request",
        title="An Accessibility Request",
        duration_mins=12,
        perspectives=3,
        choices=(
            Choice("accommodate", "Arrange the adjustment and confirm with the requester"),
            Choice("ask-proof", "Ask for documentation before doing anything"),
            Choice("postpone", "Postpone until the next planning cycle"),
        ),
    ),
)

_SCENARIOS_BY_ID = {s.id: s for s in SCENARIOS}


def get_scenario(scenario_id: str) -> Scenario | None:
    return _SCENARIOS_BY_ID.get(scenario_id)


def scenario_ids() -> list[str]:
    return [s.id for s in SCENARIOS]


@dataclass(frozen=True)
class RosterEntry:
    id: str
    email: str
    name: str
    role: Role
    team_id: str | None = None
    manager_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "teamId": self.team_id,
            "managerId": self.manager_id,
        }


class Roster:
    def __init__(self, entries: tuple[RosterEntry, ...] | list[RosterEntry]) -> None:
        self.entries = tuple(entries)
        self._by_email = {normalize_email(e.email): e for e in self.entries}

    def __iter__(self):
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def find_by_email(self, email: str) -> RosterEntry | None:
        return self._by_email.get(normalize_email(email))

    def employees(self) -> list[RosterEntry]:
        return [e for e in self.entries if e.role == "employee"]

    def team_of(self, manager_id: str) -> list[RosterEntry]:
        return [e for e in self.employees() if e.manager_id == manager_id]


ORG_ROSTER = Roster(
    (
        RosterEntry("hr-1", "priya.hr@acme.example", "Priya Raman", "hr"),
        RosterEntry("mgr-1", "marcus.lee@acme.example", "Marcus Lee", "manager", team_id="team-product"),
        RosterEntry("mgr-2", "sofia.ortiz@acme.example", "Sofia Ortiz", "manager", team_id="team-ops"),
        RosterEntry("emp-1", "aisha.bello@acme.example", "Aisha Bello", "employee", "team-product", "mgr-1"),
        RosterEntry("emp-2", "tom.walsh@acme.example", "Tom Walsh", "employee", "team-product", "mgr-1"),
        RosterEntry("emp-3", "kenji.sato@acme.example", "Kenji Sato", "employee", "team-product", "mgr-1"),
        RosterEntry("emp-4", "lena.fischer@acme.example", "Lena Fischer", "employee", "team-ops", "mgr-2"),
        RosterEntry("emp-5", "omar.haddad@acme.example", "Omar Haddad", "employee", "team-ops", "mgr-2"),
    )
)
