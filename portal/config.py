from __future__ import annotations

import logging
import os
from dataclasses import dataclass

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DEFAULT_DATA_DIR = os.path.join(BASE_DIR, "data")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(frozen=True)
class Settings:
    data_dir: str
    store_path: str
    auth_db_path: str
    auth_base_url: str
    log_level: str = "INFO"
    cors_origins: tuple[str, ...] = ("*",)
    login_url: str = "/login"


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Read settings from TP_* environment variables.

    Paths default to files under ``data/`` next to the package.
    """
    env = os.environ if env is None else env
    data_dir = env.get("TP_DATA_DIR", DEFAULT_DATA_DIR)
    origins = tuple(o.strip() for o in env.get("TP_CORS_ORIGINS", "*").split(",") if o.strip())
    return Settings(
        data_dir=data_dir,
        store_path=env.get("TP_STORE_PATH", os.path.join(data_dir, "portal_store.db")),
        auth_db_path=env.get("TP_AUTH_DB_PATH", os.path.join(data_dir, "auth.db")),
        auth_base_url=env.get("TP_AUTH_BASE_URL", "http://127.0.0.1:3000").rstrip("/"),
        log_level=env.get("TP_LOG_LEVEL", "INFO").upper(),
        cors_origins=origins or ("*",),
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
