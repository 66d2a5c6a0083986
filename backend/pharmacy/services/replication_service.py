# Overview: Full-replace replication from the primary database to the cloud and local secondaries.

"""
Replication synchronizer.

Each cycle reads every replicated table from the primary once, then rewrites
each secondary inside a single transaction: clear all tables (children
first), then insert all rows (parents first). A failure on one secondary
rolls back that secondary only and the other one still syncs.

There is no conflict resolution. The primary always wins.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime

from flask import Flask, current_app
from sqlalchemy import Table, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from ..db_router import ConnectionRouter, DatabaseTarget
from ..errors import DatabaseTargetError, SyncDisabledError
from ..extensions import db
from ..time_utils import utcnow, to_utc_z


logger = logging.getLogger(__name__)

EXTENSION_KEY = "replication"

REPLICATED_TABLES = (
    "users",
    "customers",
    "products",
    "sales",
    "sale_items",
    "stock_movements",
    "purchase_history",
    "suppliers",
    "online_orders",
    "online_order_items",
    "shopping_carts",
    "order_status_histories",
    "qr_codes",
    "qr_scan_logs",
    "prescription_uploads",
    "audit_logs",
)

SECONDARY_TARGETS = (DatabaseTarget.CLOUD, DatabaseTarget.LOCAL)


@dataclass
class TargetSyncResult:
    target: str
    success: bool
    tables: int = 0
    rows: int = 0
    error: str | None = None
    failed_table: str | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict:
        return {
            "target": self.target,
            "success": self.success,
            "tables": self.tables,
            "rows": self.rows,
            "error": self.error,
            "failed_table": self.failed_table,
            "duration_ms": round(self.duration_ms, 2),
        }


@dataclass
class SyncReport:
    started_at: datetime
    finished_at: datetime | None = None
    results: list[TargetSyncResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(result.success for result in self.results)

    def result_for(self, target: DatabaseTarget) -> TargetSyncResult | None:
        for result in self.results:
            if result.target == target.value:
                return result
        return None

    def to_dict(self) -> dict:
        return {
            "started_at": to_utc_z(self.started_at),
            "finished_at": to_utc_z(self.finished_at),
            "success": self.success,
            "targets": [result.to_dict() for result in self.results],
        }


def replicated_tables() -> list[Table]:
    """Replicated tables in foreign-key order (parents before children)."""
    wanted = set(REPLICATED_TABLES)
    ordered = [table for table in db.metadata.sorted_tables if table.name in wanted]
    missing = wanted - {table.name for table in ordered}
    if missing:
        raise RuntimeError(f"Replicated tables missing from metadata: {sorted(missing)}")
    return ordered


class ReplicationSynchronizer:
    def __init__(self, app: Flask | None = None, router: ConnectionRouter | None = None):
        self._app: Flask | None = None
        self._router: ConnectionRouter | None = None
        self.enabled = False
        self.interval_seconds = 300
        self._last_report: SyncReport | None = None
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        if app is not None and router is not None:
            self.init_app(app, router)

    def init_app(self, app: Flask, router: ConnectionRouter) -> None:
        self._app = app
        self._router = router
        self.enabled = bool(app.config.get("SYNC_ENABLED", False))
        self.interval_seconds = app.config.get("SYNC_INTERVAL_SECONDS", 300)
        app.extensions[EXTENSION_KEY] = self

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # ------------------------------------------------------------------
    # One cycle

    def sync_data(self) -> SyncReport:
        """Copy every replicated table from primary to each configured secondary."""
        if not self.enabled:
            raise SyncDisabledError("sync is not enabled")

        with self._cycle_lock:
            report = SyncReport(started_at=utcnow())
            tables = replicated_tables()
            snapshot = self._read_primary(tables)

            for target in SECONDARY_TARGETS:
                engine = self._router.cloud() if target is DatabaseTarget.CLOUD else self._router.local()
                if engine is None:
                    continue
                report.results.append(self._sync_target(target, engine, tables, snapshot))

            report.finished_at = utcnow()
            self._last_report = report

        if not report.results:
            logger.info("Sync skipped: no secondary databases configured")
        elif report.success:
            logger.info("Sync completed to %s", ", ".join(r.target for r in report.results))
        else:
            failed = [r.target for r in report.results if not r.success]
            logger.error("Sync failed for %s", ", ".join(failed))
        return report

    def _read_primary(self, tables: list[Table]) -> dict[str, list[dict]]:
        snapshot: dict[str, list[dict]] = {}
        with self._router.primary().connect() as conn:
            with conn.begin():
                for table in tables:
                    try:
                        rows = conn.execute(table.select()).mappings().all()
                    except SQLAlchemyError as exc:
                        raise DatabaseTargetError(
                            DatabaseTarget.PRIMARY.value, "read", cause=exc, table=table.name,
                        ) from exc
                    snapshot[table.name] = [dict(row) for row in rows]
        return snapshot

    def _clear(self, conn: Connection, target: DatabaseTarget, tables: list[Table]) -> None:
        postgres = conn.dialect.name == "postgresql"
        preparer = conn.dialect.identifier_preparer
        for table in reversed(tables):
            try:
                if postgres:
                    conn.execute(text(f"TRUNCATE TABLE {preparer.format_table(table)} CASCADE"))
                else:
                    conn.execute(table.delete())
            except SQLAlchemyError as exc:
                raise DatabaseTargetError(target.value, "truncate", cause=exc, table=table.name) from exc

    def _sync_target(
        self,
        target: DatabaseTarget,
        engine: Engine,
        tables: list[Table],
        snapshot: dict[str, list[dict]],
    ) -> TargetSyncResult:
        start = time.time()
        result = TargetSyncResult(target=target.value, success=False)
        try:
            with engine.begin() as conn:
                self._clear(conn, target, tables)
                for table in tables:
                    rows = snapshot[table.name]
                    if rows:
                        try:
                            conn.execute(table.insert(), rows)
                        except SQLAlchemyError as exc:
                            raise DatabaseTargetError(target.value, "copy", cause=exc, table=table.name) from exc
                    result.tables += 1
                    result.rows += len(rows)
            result.success = True
        except DatabaseTargetError as exc:
            logger.error("Sync to %s failed: %s", target.value, exc.message, exc_info=exc.__cause__)
            result.error = exc.message
            result.failed_table = exc.table
            result.tables = 0
            result.rows = 0
        except SQLAlchemyError as exc:
            # Commit failure
            logger.error("Sync to %s failed on commit", target.value, exc_info=True)
            result.error = f"commit failed on {target.value}"
            result.tables = 0
            result.rows = 0
        result.duration_ms = (time.time() - start) * 1000
        return result

    # ------------------------------------------------------------------
    # Timer loop

    def start(self) -> bool:
        """Start the background loop. Returns False when already running or disabled."""
        if not self.enabled:
            logger.info("Sync is disabled; not starting the sync loop")
            return False
        if self.is_running:
            return False
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="replication-sync", daemon=True)
        self._thread.start()
        logger.info("Sync loop started (every %ss)", self.interval_seconds)
        return True

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop. An in-flight cycle is allowed to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Sync loop stopped")

    def run_forever(self) -> None:
        """Foreground variant of start() for the CLI; returns when stop() is called."""
        self._stop_event.clear()
        self._run_loop()

    def _run_loop(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                with self._app.app_context():
                    self.sync_data()
            except SyncDisabledError:
                logger.info("Sync disabled; leaving sync loop")
                return
            except Exception:
                logger.exception("Sync cycle failed")


def get_synchronizer() -> ReplicationSynchronizer:
    return current_app.extensions[EXTENSION_KEY]
