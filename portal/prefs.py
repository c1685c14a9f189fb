from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields

from portal.session import normalize_email
from portal.store import KeyValueStore

logger = logging.getLogger(__name__)

NOTES_PREFIX = "tp_notes:"
A11Y_KEY = "tp_a11y"

# Stored document uses camelCase keys.
_A11Y_FIELDS = {
    "high_contrast": "highContrast",
    "large_text": "largeText",
    "reduced_motion": "reducedMotion",
    "dyslexia_font": "dyslexiaFont",
}


class NotesBook:
    """Free-text reflection notes, one document per account."""

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def _key(self, email: str) -> str:
        return f"{NOTES_PREFIX}{normalize_email(email)}"

    def get(self, email: str) -> str:
        loaded = self.store.load(self._key(email))
        if loaded.error is not None:
            logger.warning("Ignoring unreadable notes: %s", loaded.error)
            return ""
        value = loaded.or_default({})
        if not isinstance(value, dict):
            return ""
        return str(value.get("text") or "")

    def save(self, email: str, text: str) -> None:
        self.store.save(self._key(email), {"text": text or ""})


@dataclass(frozen=True)
class AccessibilityPrefs:
    high_contrast: bool = False
    large_text: bool = False
    reduced_motion: bool = False
    dyslexia_font: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {_A11Y_FIELDS[k]: v for k, v in asdict(self).items()}

    @classmethod
    def from_dict(cls, data: dict) -> AccessibilityPrefs:
        kwargs = {}
        for f in fields(cls):
            raw = data.get(_A11Y_FIELDS[f.name])
            if isinstance(raw, bool):
                kwargs[f.name] = raw
        return cls(**kwargs)


class PreferenceStore:
    def __init__(self, store: KeyValueStore, key: str = A11Y_KEY) -> None:
        self.store = store
        self.key = key

    def load(self) -> AccessibilityPrefs:
        loaded = self.store.load(self.key)
        if loaded.error is not None:
            logger.warning("Using default accessibility preferences: %s", loaded.error)
            return AccessibilityPrefs()
        value = loaded.or_default({})
        if not isinstance(value, dict):
            return AccessibilityPrefs()
        return AccessibilityPrefs.from_dict(value)

    def save(self, prefs: AccessibilityPrefs) -> None:
        self.store.save(self.key, prefs.to_dict())
