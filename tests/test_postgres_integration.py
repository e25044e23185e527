import os
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text


def _test_pg_url() -> str | None:
    return os.getenv("TEST_POSTGRES_DATABASE_URL")


@pytest.fixture()
def alembic_cfg(monkeypatch):
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")
    monkeypatch.setenv("DATABASE_URL", url)
    project_root = Path(__file__).resolve().parents[1]
    return Config(str(project_root / "alembic.ini"))


@pytest.mark.integration
def test_postgres_upgrade_creates_billing_tables(alembic_cfg):
    command.upgrade(alembic_cfg, "head")

    engine = create_engine(_test_pg_url(), pool_pre_ping=True)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1

    table_names = set(inspect(engine).get_table_names())
    assert {"products", "bills", "bill_items", "bill_counters", "stock_movements", "audit_logs"} <= table_names
    unique_names = {constraint["name"] for constraint in inspect(engine).get_unique_constraints("bills")}
    assert "uq_bills_business_type_number" in unique_names


@pytest.mark.integration
def test_alembic_upgrade_downgrade_smoke(alembic_cfg):
    if os.getenv("ALLOW_DESTRUCTIVE_MIGRATION_TESTS") != "1":
        pytest.skip("Set ALLOW_DESTRUCTIVE_MIGRATION_TESTS=1 for downgrade smoke test.")

    command.upgrade(alembic_cfg, "head")
    command.downgrade(alembic_cfg, "base")
    command.upgrade(alembic_cfg, "head")
