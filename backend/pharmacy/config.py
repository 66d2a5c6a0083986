# backend/pharmacy/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.pool import StaticPool


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Field-level encryption secret for PHI columns. Must be exactly 32 characters.
    ENCRYPTION_KEY = os.environ.get("ENCRYPTION_KEY", "dev-encryption-key-32-characters")

    # Primary (transactional) store
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///pharmacy.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Optional secondary stores. Unset means "not configured".
    CLOUD_DATABASE_URL = os.environ.get("CLOUD_DATABASE_URL") or None
    LOCAL_DATABASE_URL = os.environ.get("LOCAL_DATABASE_URL") or None
    READ_REPLICA_URL = os.environ.get("READ_REPLICA_URL") or None
    READ_REPLICA_ENABLED = _env_bool("READ_REPLICA_ENABLED", False)

    # Pool limits are mandatory for every target
    DB_MAX_OPEN_CONNS = _env_int("DB_MAX_OPEN_CONNS", 100)
    DB_MAX_IDLE_CONNS = _env_int("DB_MAX_IDLE_CONNS", 10)
    DB_CONN_MAX_LIFETIME = _env_int("DB_CONN_MAX_LIFETIME", 3600)
    DB_POOL_TIMEOUT = _env_int("DB_POOL_TIMEOUT", 30)
    REPLICA_MAX_OPEN_CONNS = _env_int("REPLICA_MAX_OPEN_CONNS", 50)
    REPLICA_MAX_IDLE_CONNS = _env_int("REPLICA_MAX_IDLE_CONNS", 5)

    DB_CONNECT_TIMEOUT_SECONDS = _env_int("DB_CONNECT_TIMEOUT_SECONDS", 10)
    DB_PROBE_TIMEOUT_SECONDS = _env_int("DB_PROBE_TIMEOUT_SECONDS", 5)

    # Create missing tables on primary, cloud and local at startup.
    # Production schemas are managed with Flask-Migrate instead.
    DB_AUTO_CREATE_SCHEMA = _env_bool("DB_AUTO_CREATE_SCHEMA", False)

    # Primary -> secondary replication
    SYNC_ENABLED = _env_bool("SYNC_ENABLED", False)
    SYNC_INTERVAL_SECONDS = _env_int("SYNC_INTERVAL_SECONDS", 300)
    SYNC_AUTOSTART = _env_bool("SYNC_AUTOSTART", True)

    # Best-effort side effects (QR scan logs, audit rows)
    BACKGROUND_WORKERS = _env_int("BACKGROUND_WORKERS", 4)
    BACKGROUND_TASKS_INLINE = _env_bool("BACKGROUND_TASKS_INLINE", False)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    API_VERSION = "1.0.0"


@dataclass(frozen=True)
class DatabaseTargetConfig:
    """Connection parameters and pool limits for one logical database target."""
    name: str
    url: str | None
    max_open: int
    max_idle: int
    max_lifetime_seconds: int
    pool_timeout_seconds: int
    connect_timeout_seconds: int
    enabled: bool

    @property
    def is_sqlite(self) -> bool:
        return bool(self.url) and self.url.startswith("sqlite")

    @property
    def is_memory_sqlite(self) -> bool:
        return self.url in ("sqlite://", "sqlite:///:memory:")

    def engine_options(self) -> dict[str, Any]:
        """
        Map pool limits onto SQLAlchemy engine arguments.

        max_open -> pool_size + max_overflow, max_idle -> pool_size,
        max_lifetime -> pool_recycle. SQLite has no server pool, so the
        limits are skipped there; an in-memory database needs a single
        shared connection to be visible across sessions.
        """
        if self.is_sqlite:
            if self.is_memory_sqlite:
                return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
            return {}

        pool_size = max(1, min(self.max_idle, self.max_open))
        options: dict[str, Any] = {
            "pool_size": pool_size,
            "max_overflow": max(0, self.max_open - pool_size),
            "pool_recycle": self.max_lifetime_seconds,
            "pool_timeout": self.pool_timeout_seconds,
            "pool_pre_ping": True,
        }
        if self.url and self.url.startswith("postgresql"):
            options["connect_args"] = {"connect_timeout": self.connect_timeout_seconds}
        return options


def load_database_targets(config: Mapping[str, Any]) -> dict[str, DatabaseTargetConfig]:
    """Build the four target configs (primary, cloud, local, replica) from app config."""
    def _target(name: str, url: str | None, enabled: bool, *, replica: bool = False) -> DatabaseTargetConfig:
        return DatabaseTargetConfig(
            name=name,
            url=url,
            max_open=config["REPLICA_MAX_OPEN_CONNS"] if replica else config["DB_MAX_OPEN_CONNS"],
            max_idle=config["REPLICA_MAX_IDLE_CONNS"] if replica else config["DB_MAX_IDLE_CONNS"],
            max_lifetime_seconds=config["DB_CONN_MAX_LIFETIME"],
            pool_timeout_seconds=config["DB_POOL_TIMEOUT"],
            connect_timeout_seconds=config["DB_CONNECT_TIMEOUT_SECONDS"],
            enabled=enabled,
        )

    cloud_url = config.get("CLOUD_DATABASE_URL")
    local_url = config.get("LOCAL_DATABASE_URL")
    replica_url = config.get("READ_REPLICA_URL")

    return {
        "primary": _target("primary", config["SQLALCHEMY_DATABASE_URI"], True),
        "cloud": _target("cloud", cloud_url, bool(cloud_url)),
        "local": _target("local", local_url, bool(local_url)),
        "replica": _target(
            "replica",
            replica_url,
            bool(replica_url) and bool(config.get("READ_REPLICA_ENABLED")),
            replica=True,
        ),
    }
