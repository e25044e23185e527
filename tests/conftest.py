import os
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "test")

import billbook.models  # noqa: F401
from billbook.core.config import settings
from billbook.core.deps import get_db
from billbook.core.id_utils import generate_shortuuid
from billbook.db.base import Base
from billbook.main import app
from billbook.models.product import Product


def _sqlite_engine(url: str, *, begin: str = "BEGIN", **kwargs):
    # Let SQLAlchemy, not pysqlite, emit BEGIN so SAVEPOINT nests correctly.
    engine = create_engine(url, **kwargs)

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql(begin)

    return engine


@pytest.fixture()
def session_local():
    engine = _sqlite_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def file_session_local(tmp_path):
    """File-backed database shared by several threads, each on its own connection."""
    engine = _sqlite_engine(
        f"sqlite:///{tmp_path / 'billbook.db'}",
        begin="BEGIN IMMEDIATE",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session(session_local):
    db = session_local()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_product():
    def _make_product(
        session_local,
        *,
        business_id: str = "biz-1",
        name: str = "Basmati Rice 5kg",
        opening_stock: int = 10,
        current_stock: int | None = None,
        low_stock_alert: int = 0,
    ) -> str:
        product_id = generate_shortuuid()
        with session_local() as db:
            db.add(
                Product(
                    id=product_id,
                    business_id=business_id,
                    name=name,
                    sale_price=Decimal("450.00"),
                    purchase_price=Decimal("380.00"),
                    opening_stock=opening_stock,
                    current_stock=opening_stock if current_stock is None else current_stock,
                    low_stock_alert=low_stock_alert,
                )
            )
            db.commit()
        return product_id

    return _make_product


@pytest.fixture()
def test_context(session_local):
    original_policy = settings.stock_failure_policy

    def override_get_db():
        db = session_local()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
    settings.stock_failure_policy = original_policy
