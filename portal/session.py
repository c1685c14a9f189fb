from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal

from portal.store import KeyValueStore

logger = logging.getLogger(__name__)

Role = Literal["employee", "manager", "hr", "individual"]
ROLES: tuple[Role, ...] = ("employee", "manager", "hr", "individual")

SESSION_KEY = "tp_user"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


@dataclass(frozen=True)
class Account:
    """Identity + role as returned by the auth service."""

    id: str
    email: str
    name: str
    role: Role
    created_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Account:
        if not isinstance(data, dict):
            raise ValueError("account record must be an object")
        email = normalize_email(str(data.get("email") or ""))
        role = data.get("role")
        if not email:
            raise ValueError("account record has no email")
        if role not in ROLES:
            raise ValueError(f"unknown role: {role!r}")
        created = data.get("createdAt")
        return cls(
            id=str(data.get("id") if data.get("id") is not None else ""),
            email=email,
            name=str(data.get("name") or email),
            role=role,
            created_at=str(created) if created is not None else None,
        )


class SessionManager:
    """The current signed-in account for one store (one browser origin).

    Last writer wins; there is no cross-tab coordination.
    """

    def __init__(self, store: KeyValueStore, key: str = SESSION_KEY) -> None:
        self.store = store
        self.key = key

    def set_session(self, account: Account) -> None:
        self.store.save(self.key, account.to_dict())

    def get_session(self) -> Account | None:
        loaded = self.store.load(self.key)
        if loaded.error is not None:
            logger.warning("Ignoring stored session: %s", loaded.error)
            return None
        if not loaded.found or loaded.value is None:
            return None
        try:
            return Account.from_dict(loaded.value)
        except ValueError as e:
            logger.warning("Ignoring malformed session record: %s", e)
            return None

    def clear_session(self) -> None:
        self.store.delete(self.key)
