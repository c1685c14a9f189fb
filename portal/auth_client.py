"""Client for the authentication service.

Normalizes every failure into `AuthError` with a human-readable message:
the service's own `error` text when it sends one, otherwise
"Request failed (<status>)".
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Literal

import httpx

from portal.session import Account

logger = logging.getLogger(__name__)

GuardState = Literal["idle", "pending", "settled"]


class AuthError(Exception):
    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.message = message
        self.status = status


class AuthInputError(AuthError):
    """Missing credentials; raised before any request is made."""


class RequestInFlight(AuthError):
    def __init__(self) -> None:
        super().__init__("A request is already in progress. Please wait.")


class SubmissionGuard:
    """idle -> pending -> settled; a second submit while pending is refused."""

    def __init__(self) -> None:
        self.state: GuardState = "idle"
        self._lock = threading.Lock()

    @contextmanager
    def submit(self) -> Iterator[None]:
        with self._lock:
            if self.state == "pending":
                raise RequestInFlight()
            self.state = "pending"
        try:
            yield
        finally:
            with self._lock:
                self.state = "settled"


def _require_credentials(email: str, password: str) -> None:
    if not (email or "").strip() or not password:
        raise AuthInputError("Email and password are required.", status=None)


class AuthClient:
    def __init__(
        self,
        base_url: str = "",
        *,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
        guard: SubmissionGuard | None = None,
    ) -> None:
        self.client = client or httpx.Client(base_url=base_url, timeout=httpx.Timeout(timeout, connect=5.0))
        self.guard = guard or SubmissionGuard()

    def with_guard(self, guard: SubmissionGuard) -> AuthClient:
        """Same connection pool, separate in-flight tracking."""
        return AuthClient(client=self.client, guard=guard)

    def close(self) -> None:
        self.client.close()

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        try:
            r = self.client.post(path, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Auth request to %s failed: %s", path, e)
            raise AuthError("Request failed (network error)") from e

        try:
            data = r.json()
        except ValueError:
            data = None

        if r.status_code >= 400:
            message = None
            if isinstance(data, dict) and isinstance(data.get("error"), str):
                message = data["error"]
            raise AuthError(message or f"Request failed ({r.status_code})", status=r.status_code)
        return data

    def _register(self, email: str, password: str, full_name: str | None, role: str) -> str:
        _require_credentials(email, password)
        data = self._post(
            "/api/register",
            {"email": email.strip(), "password": password, "fullName": full_name, "role": role},
        )
        message = data.get("message") if isinstance(data, dict) else None
        return str(message or "User created")

    def _login(self, email: str, password: str, role: str | None) -> Account:
        _require_credentials(email, password)
        payload: dict[str, Any] = {"email": email.strip(), "password": password}
        if role:
            payload["role"] = role
        data = self._post("/api/login", payload)
        try:
            return Account.from_dict(data)
        except ValueError as e:
            raise AuthError(f"Unexpected login response: {e}") from e

    def register(self, email: str, password: str, full_name: str | None = None, role: str = "individual") -> str:
        with self.guard.submit():
            return self._register(email, password, full_name, role)

    def login(self, email: str, password: str, role: str | None = None) -> Account:
        with self.guard.submit():
            return self._login(email, password, role)

    def register_and_login(self, email: str, password: str, full_name: str | None = None, role: str = "individual") -> Account:
        """Create the account, then sign in with the same role."""
        with self.guard.submit():
            self._register(email, password, full_name, role)
            return self._login(email, password, role)
