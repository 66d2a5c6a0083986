import time

import pytest
from sqlalchemy import text

from pharmacy.db_router import DatabaseTarget
from pharmacy.errors import DatabaseTargetError, SyncDisabledError
from pharmacy.services.replication_service import (
    REPLICATED_TABLES,
    ReplicationSynchronizer,
    replicated_tables,
)


def _count(engine, table):
    with engine.connect() as conn:
        return conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar()


def _insert_stale_user(engine):
    with engine.begin() as conn:
        conn.execute(text(
            "INSERT INTO users (id, username, email, password_hash, first_name, last_name, role, is_active, created_at, updated_at) "
            "VALUES ('stale', 'stale', 'stale@test.local', 'x', 'S', 'T', 'cashier', 1, '2026-01-01 00:00:00', '2026-01-01 00:00:00')"
        ))


@pytest.fixture
def sync(app):
    return app.extensions["replication"]


def test_tables_are_in_dependency_order():
    names = [table.name for table in replicated_tables()]
    assert set(names) == set(REPLICATED_TABLES)
    assert names.index("customers") < names.index("online_orders")
    assert names.index("online_orders") < names.index("online_order_items")
    assert names.index("qr_codes") < names.index("qr_scan_logs")


def test_full_replace_copies_primary(sync, router, pharmacist, customer, product_a):
    _insert_stale_user(router.cloud())

    report = sync.sync_data()

    assert report.success
    assert [r.target for r in report.results] == ["cloud", "local"]
    for engine in (router.cloud(), router.local()):
        assert _count(engine, "users") == 1
        assert _count(engine, "customers") == 1
        assert _count(engine, "products") == 1
    with router.cloud().connect() as conn:
        assert conn.execute(text("SELECT id FROM users")).scalar() == pharmacist.id
    assert report.result_for(DatabaseTarget.CLOUD).rows == 3
    assert sync.last_report is report


def test_failure_on_one_secondary_leaves_it_untouched(sync, router, pharmacist, product_a):
    _insert_stale_user(router.local())
    with router.local().begin() as conn:
        conn.execute(text("DROP TABLE products"))

    report = sync.sync_data()

    assert not report.success
    cloud = report.result_for(DatabaseTarget.CLOUD)
    local = report.result_for(DatabaseTarget.LOCAL)
    assert cloud.success
    assert _count(router.cloud(), "products") == 1

    assert local.success is False
    assert local.failed_table == "products"
    assert local.rows == 0
    # Rolled back: the stale row is still the only user
    with router.local().connect() as conn:
        assert conn.execute(text("SELECT id FROM users")).scalars().all() == ["stale"]


def test_second_cycle_is_idempotent(sync, router, customer):
    sync.sync_data()
    sync.sync_data()
    assert _count(router.local(), "customers") == 1


def test_disabled_sync_raises(app, router):
    sync = ReplicationSynchronizer()
    sync.init_app(app, router)
    sync.enabled = False

    with pytest.raises(SyncDisabledError):
        sync.sync_data()
    assert sync.start() is False


def test_report_serializes(sync):
    data = sync.sync_data().to_dict()
    assert data["success"] is True
    assert {t["target"] for t in data["targets"]} == {"cloud", "local"}
    assert data["finished_at"].endswith("Z")


def test_timer_loop_recovers_after_failed_cycle(sync, router, customer, monkeypatch):
    clear = sync._clear
    local_failures = []

    def clear_failing_local_once(conn, target, tables):
        if target is DatabaseTarget.LOCAL and not local_failures:
            local_failures.append(target)
            raise DatabaseTargetError(target.value, "truncate", table="products")
        return clear(conn, target, tables)

    cycle = sync.sync_data
    reports = []

    def recorded_cycle():
        report = cycle()
        reports.append(report)
        return report

    monkeypatch.setattr(sync, "_clear", clear_failing_local_once)
    monkeypatch.setattr(sync, "sync_data", recorded_cycle)
    sync.interval_seconds = 0.05

    assert sync.start() is True
    assert sync.start() is False
    deadline = time.monotonic() + 5
    while len(reports) < 2 and time.monotonic() < deadline:
        time.sleep(0.02)
    sync.stop(timeout=5)

    assert sync.is_running is False
    assert len(reports) >= 2
    first_local = reports[0].result_for(DatabaseTarget.LOCAL)
    assert first_local.success is False
    assert first_local.failed_table == "products"
    assert reports[0].result_for(DatabaseTarget.CLOUD).success
    assert reports[-1].success
    assert sync.last_report is reports[-1]
    assert _count(router.local(), "customers") == 1
