from __future__ import annotations

import logging

from portal.catalog import Scenario
from portal.ledger import ProgressEntry, ProgressLedger

logger = logging.getLogger(__name__)


class NoChoiceSelected(Exception):
    pass


class ChoiceControl:
    """Single-selection answer control for one scenario page.

    States are "nothing selected" or exactly one option selected. Confirming
    is only possible once something is selected, and there is no way back to
    "nothing selected" short of a new learner.
    """

    def __init__(self, ledger: ProgressLedger, email: str, scenario: Scenario, selected: str | None = None):
        self.ledger = ledger
        self.email = email
        self.scenario = scenario
        self.options = scenario.choice_keys()
        self.selected = selected if selected in self.options else None

    @classmethod
    def enter(cls, ledger: ProgressLedger, email: str, scenario: Scenario) -> ChoiceControl:
        """Build the control, restoring any previously saved choice."""
        entry = ledger.get_progress(email).scenarios.get(scenario.id)
        saved = entry.selected_choice if entry else None
        if saved is not None and saved not in scenario.choice_keys():
            logger.warning("Dropping saved choice %r not offered by %s", saved, scenario.id)
            saved = None
        return cls(ledger, email, scenario, saved)

    @property
    def can_confirm(self) -> bool:
        return self.selected is not None

    def is_selected(self, key: str) -> bool:
        return self.selected == key

    def select(self, key: str) -> ProgressEntry:
        if key not in self.options:
            raise ValueError(f"{key!r} is not an option for {self.scenario.id}")
        self.selected = key
        return self.ledger.set_selected_choice(self.email, self.scenario.id, key)

    def confirm(self) -> ProgressEntry:
        if self.selected is None:
            raise NoChoiceSelected(f"No option selected for {self.scenario.id}")
        return self.ledger.mark_complete(self.email, self.scenario.id)
