from __future__ import annotations

import logging
from collections.abc import Iterable
from urllib.parse import urlencode

from portal.catalog import Roster
from portal.ledger import ProgressLedger
from portal.session import Account, SessionManager

logger = logging.getLogger(__name__)

UNAUTHENTICATED = "unauthenticated"
UNAUTHORIZED = "unauthorized"

# Learner roles get a ledger on their first protected page visit.
LEDGER_ROLES = frozenset({"employee", "individual"})

# Roles that must be backed by a roster entry when a roster is supplied.
ORG_ROLES = frozenset({"employee", "manager", "hr"})


class GateRedirect(Exception):
    """Raised by the gate; the web layer turns it into a redirect to login."""

    def __init__(self, reason: str, location: str):
        super().__init__(f"{reason}: redirect to {location}")
        self.reason = reason
        self.location = location


class AccessGate:
    def __init__(
        self,
        sessions: SessionManager,
        ledger: ProgressLedger,
        *,
        login_url: str = "/login",
        roster: Roster | None = None,
    ) -> None:
        self.sessions = sessions
        self.ledger = ledger
        self.login_url = login_url
        self.roster = roster

    def _redirect(self, reason: str) -> GateRedirect:
        return GateRedirect(reason, f"{self.login_url}?{urlencode({'reason': reason})}")

    def require_role(self, allowed_roles: Iterable[str]) -> Account:
        """Return the session account if its role is allowed.

        Otherwise raise GateRedirect; nothing after the call should run.
        """
        allowed = frozenset(allowed_roles)
        account = self.sessions.get_session()
        if account is None:
            raise self._redirect(UNAUTHENTICATED)

        if account.role not in allowed:
            logger.info("Role %s not allowed here (needs one of %s)", account.role, sorted(allowed))
            raise self._redirect(UNAUTHORIZED)

        if self.roster is not None:
            self._check_roster(account)

        if account.role in LEDGER_ROLES:
            self.ledger.ensure_entries(account.email)
        return account

    def _check_roster(self, account: Account) -> None:
        member = self.roster.find_by_email(account.email)
        if member is None:
            if account.role in ORG_ROLES:
                logger.warning("%s holds org role %s but is not on the roster", account.email, account.role)
                raise self._redirect(UNAUTHORIZED)
            return
        if member.role != account.role:
            logger.warning("Session role %s disagrees with roster role %s for %s", account.role, member.role, account.email)
            raise self._redirect(UNAUTHORIZED)
