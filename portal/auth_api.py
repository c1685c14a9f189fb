"""Authentication service: account registration and credential checks.

Stateless: login only verifies credentials and returns the account record.
Sessions are kept by the portal, not here.

Run:
  uvicorn portal.auth_api:create_auth_app --factory --port 3000
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import os
import secrets
import sqlite3
from datetime import datetime, timezone
from functools import lru_cache

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from portal.config import Settings, configure_logging, load_settings
from portal.session import ROLES, normalize_email

logger = logging.getLogger(__name__)

DEFAULT_ROLE = "individual"
PBKDF2_ROUNDS = 200_000


class RegisterRequest(BaseModel):
    email: str = ""
    password: str = ""
    fullName: str | None = None
    role: str | None = None


class LoginRequest(BaseModel):
    email: str = ""
    password: str = ""
    role: str | None = None


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def hash_password(password: str, salt_hex: str) -> str:
    pw = (password or "").encode("utf-8")
    salt = bytes.fromhex(salt_hex)
    dk = hashlib.pbkdf2_hmac("sha256", pw, salt, PBKDF2_ROUNDS)
    return dk.hex()


def verify_password(password: str, salt_hex: str, hash_hex: str) -> bool:
    return hmac.compare_digest(hash_password(password, salt_hex), hash_hex)


@lru_cache(maxsize=1)
def _dummy_credentials() -> tuple[str, str]:
    """Salt and hash checked against when the email is unknown."""
    salt = secrets.token_bytes(16).hex()
    return salt, hash_password(secrets.token_hex(16), salt)


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=10.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA busy_timeout = 10000")
    return conn


def init_auth_db(db_path: str) -> None:
    parent = os.path.dirname(db_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with connect(db_path) as conn:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              email TEXT NOT NULL UNIQUE,
              password_salt_hex TEXT NOT NULL,
              password_hash_hex TEXT NOT NULL,
              full_name TEXT,
              role TEXT NOT NULL,
              created_at TEXT NOT NULL
            );
            """
        )


def create_user(conn: sqlite3.Connection, email: str, password: str, full_name: str | None, role: str) -> int:
    """Insert a user; raises sqlite3.IntegrityError on a duplicate email."""
    salt = secrets.token_bytes(16).hex()
    cur = conn.execute(
        """
        INSERT INTO users(email, password_salt_hex, password_hash_hex, full_name, role, created_at)
        VALUES (?,?,?,?,?,?)
        """,
        (normalize_email(email), salt, hash_password(password, salt), full_name, role, utc_now_iso()),
    )
    return int(cur.lastrowid)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def create_auth_app(settings: Settings | None = None, db_path: str | None = None) -> FastAPI:
    settings = settings or load_settings()
    path = db_path or settings.auth_db_path
    init_auth_db(path)

    app = FastAPI(title="DEI Training Portal Auth")
    app.state.db_path = path
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(500, "Server error")

    @app.get("/api/ping")
    def ping():
        try:
            with connect(path) as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            logger.exception("Ping failed")
            return _error(500, "Database error")
        return {"status": "ok"}

    @app.post("/api/register", status_code=201)
    def register(req: RegisterRequest):
        email = normalize_email(req.email)
        if not email or not req.password:
            return _error(400, "email and password required")
        role = req.role or DEFAULT_ROLE
        if role not in ROLES:
            return _error(400, "Invalid role")

        try:
            with connect(path) as conn:
                create_user(conn, email, req.password, (req.fullName or "").strip() or None, role)
        except sqlite3.IntegrityError:
            return _error(409, "Email already exists")
        except sqlite3.Error:
            logger.exception("Register failed for %s", email)
            return _error(500, "Server error")

        logger.info("Registered %s as %s", email, role)
        return {"message": "User created"}

    @app.post("/api/login")
    def login(req: LoginRequest):
        email = normalize_email(req.email)
        if not email or not req.password:
            return _error(400, "email and password required")

        try:
            with connect(path) as conn:
                u = conn.execute(
                    "SELECT id, email, full_name, role, password_salt_hex, password_hash_hex, created_at FROM users WHERE email=?",
                    (email,),
                ).fetchone()
        except sqlite3.Error:
            logger.exception("Login lookup failed for %s", email)
            return _error(500, "Server error")

        # Unknown email, wrong role and wrong password all cost one hash and look the same.
        if u:
            salt, hashed = str(u["password_salt_hex"]), str(u["password_hash_hex"])
        else:
            salt, hashed = _dummy_credentials()
        password_ok = verify_password(req.password, salt, hashed)
        role_ok = not req.role or (u is not None and str(u["role"]) == req.role)
        if not (u and password_ok and role_ok):
            return _error(401, "Invalid credentials")

        return {
            "id": int(u["id"]),
            "email": str(u["email"]),
            "name": str(u["full_name"] or u["email"]),
            "role": str(u["role"]),
            "createdAt": str(u["created_at"]),
        }

    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    s = load_settings()
    configure_logging(s.log_level)
    uvicorn.run(create_auth_app(s), host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
