# Overview: Routes reads and writes across the primary, cloud, local backup and read-replica databases.

"""
Multi-target connection routing.

The primary engine is the one Flask-SQLAlchemy owns (db.engine); every
request-scoped write goes through db.session. Cloud, local and replica
targets get their own engines built from DatabaseTargetConfig pool limits.

for_read() re-probes the replica on every call with a bounded timeout and
falls back to the primary when the probe fails. Nothing is cached.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Iterator

from flask import Flask, current_app
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import DatabaseTargetConfig, load_database_targets
from .errors import DatabaseTargetError
from .extensions import db
from .time_utils import utcnow


logger = logging.getLogger(__name__)

EXTENSION_KEY = "connection_router"


class DatabaseTarget(str, Enum):
    PRIMARY = "primary"
    CLOUD = "cloud"
    LOCAL = "local"
    REPLICA = "replica"


# Targets that receive schema and execute_on_all work. The replica is read-only.
WRITABLE_TARGETS = (DatabaseTarget.PRIMARY, DatabaseTarget.CLOUD, DatabaseTarget.LOCAL)


@dataclass
class TargetState:
    config: DatabaseTargetConfig
    engine: Engine
    healthy: bool | None = None
    last_checked_at: datetime | None = None


class ConnectionRouter:
    """Holds one engine per configured target and decides which one serves a call."""

    def __init__(self, app: Flask | None = None):
        self._states: dict[DatabaseTarget, TargetState] = {}
        self._probe_timeout = 5
        self._probe_pool: ThreadPoolExecutor | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app: Flask) -> None:
        targets = load_database_targets(app.config)
        self._probe_timeout = app.config.get("DB_PROBE_TIMEOUT_SECONDS", 5)
        self._probe_pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="db-probe")

        with app.app_context():
            primary_engine = db.engine
        primary_cfg = targets[DatabaseTarget.PRIMARY.value]
        if not self._probe(primary_engine):
            self.close()
            raise DatabaseTargetError(DatabaseTarget.PRIMARY.value, "connect")
        self._states[DatabaseTarget.PRIMARY] = TargetState(
            config=primary_cfg, engine=primary_engine, healthy=True, last_checked_at=utcnow(),
        )
        logger.info("Connected to primary database")

        for target in (DatabaseTarget.CLOUD, DatabaseTarget.LOCAL, DatabaseTarget.REPLICA):
            cfg = targets[target.value]
            if not cfg.enabled:
                continue
            self._connect_secondary(target, cfg)

        app.extensions[EXTENSION_KEY] = self

    def _connect_secondary(self, target: DatabaseTarget, cfg: DatabaseTargetConfig) -> None:
        # A secondary that cannot be reached at startup stays unconfigured.
        try:
            engine = create_engine(cfg.url, **cfg.engine_options())
        except (SQLAlchemyError, ImportError) as exc:
            logger.warning("Could not create engine for %s database: %s", target.value, exc)
            return

        if not self._probe(engine):
            logger.warning("Failed to connect to %s database; continuing without it", target.value)
            engine.dispose()
            return

        self._states[target] = TargetState(
            config=cfg, engine=engine, healthy=True, last_checked_at=utcnow(),
        )
        logger.info("Connected to %s database", target.value)

    # ------------------------------------------------------------------
    # Probing

    def _ping(self, engine: Engine) -> None:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def _probe(self, engine: Engine) -> bool:
        """Run SELECT 1 with a bounded wait. A timeout counts as unhealthy."""
        if self._probe_pool is None:
            return False
        future = self._probe_pool.submit(self._ping, engine)
        try:
            future.result(timeout=self._probe_timeout)
            return True
        except FuturesTimeoutError:
            logger.warning("Database probe timed out after %ss", self._probe_timeout)
            return False
        except (SQLAlchemyError, OSError) as exc:
            logger.debug("Database probe failed: %s", exc)
            return False

    def _check(self, target: DatabaseTarget) -> bool:
        state = self._states.get(target)
        if state is None:
            return False
        state.healthy = self._probe(state.engine)
        state.last_checked_at = utcnow()
        return state.healthy

    # ------------------------------------------------------------------
    # Handles

    def _engine(self, target: DatabaseTarget) -> Engine | None:
        state = self._states.get(target)
        return state.engine if state else None

    def primary(self) -> Engine:
        return self._states[DatabaseTarget.PRIMARY].engine

    def for_write(self) -> Engine:
        return self.primary()

    def for_read(self) -> Engine:
        if DatabaseTarget.REPLICA in self._states:
            if self._check(DatabaseTarget.REPLICA):
                return self._states[DatabaseTarget.REPLICA].engine
            logger.warning("Read replica unhealthy, routing read to primary")
        return self.primary()

    def cloud(self) -> Engine | None:
        return self._engine(DatabaseTarget.CLOUD)

    def local(self) -> Engine | None:
        return self._engine(DatabaseTarget.LOCAL)

    def read_replica(self) -> Engine | None:
        return self._engine(DatabaseTarget.REPLICA)

    def configured_targets(self) -> list[DatabaseTarget]:
        return [target for target in DatabaseTarget if target in self._states]

    def is_configured(self, target: DatabaseTarget) -> bool:
        return target in self._states

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """
        Yield a session bound to the current read target.

        On the primary this is the request's db.session, so reads see the
        caller's own uncommitted work. On the replica it is a short-lived
        session closed on exit.
        """
        engine = self.for_read()
        if engine is self.primary():
            yield db.session
            return
        session = Session(bind=engine, expire_on_commit=False)
        try:
            yield session
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Fan-out and inspection

    def execute_on_all(self, fn: Callable[[DatabaseTarget, Engine], None]) -> None:
        """
        Run fn on primary, cloud and local in that order.

        Stops at the first failure. Targets already processed keep whatever
        fn did to them.
        """
        for target in WRITABLE_TARGETS:
            engine = self._engine(target)
            if engine is None:
                continue
            try:
                fn(target, engine)
            except DatabaseTargetError:
                raise
            except Exception as exc:
                raise DatabaseTargetError(target.value, "execute_on_all", cause=exc) from exc

    def is_healthy(self, target: DatabaseTarget) -> bool:
        return self._check(target)

    def health_check(self) -> dict[str, bool]:
        return {target.value: self._check(target) for target in self.configured_targets()}

    def stats(self) -> dict[str, dict]:
        result = {}
        for target, state in self._states.items():
            result[target.value] = {
                "pool": state.engine.pool.status(),
                "max_open": state.config.max_open,
                "max_idle": state.config.max_idle,
                "max_lifetime_seconds": state.config.max_lifetime_seconds,
                "healthy": state.healthy,
                "last_checked_at": state.last_checked_at.isoformat() + "Z" if state.last_checked_at else None,
            }
        return result

    def prepare_schemas(self) -> None:
        """Create missing tables on primary, cloud and local. The replica is never touched."""
        def _create(target: DatabaseTarget, engine: Engine) -> None:
            db.metadata.create_all(engine)
            logger.info("Schema ready on %s database", target.value)

        self.execute_on_all(_create)

    def close(self) -> None:
        # The primary engine belongs to Flask-SQLAlchemy.
        for target, state in list(self._states.items()):
            if target is not DatabaseTarget.PRIMARY:
                state.engine.dispose()
                del self._states[target]
        if self._probe_pool is not None:
            self._probe_pool.shutdown(wait=False)
            self._probe_pool = None


def get_router() -> ConnectionRouter:
    return current_app.extensions[EXTENSION_KEY]
