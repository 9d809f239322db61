"""
The alembic revision builds the same invariant the ORM declares:
one open ride per driver.
"""
import importlib.util
from pathlib import Path

import pytest
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.exc import IntegrityError

MIGRATION = Path(__file__).resolve().parents[2] / "migrations" / "versions" / "0001_initial.py"

INSERT_RIDE = text(
    "INSERT INTO rides (id, rider_id, driver_id, pickup_lat, pickup_lng, status, created_at, expires_at, ended_at) "
    "VALUES (:id, 'rider-1', 'driver-1', 32.08, 34.78, 'offered', '2025-03-01 12:00:00', '2025-03-01 12:02:00', :ended_at)"
)


def load_migration():
    spec = importlib.util.spec_from_file_location("migration_0001_initial", MIGRATION)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def upgraded_engine():
    engine = create_engine("sqlite://")
    migration = load_migration()
    with engine.begin() as conn:
        with Operations.context(MigrationContext.configure(conn)):
            migration.upgrade()
    return engine


def test_upgrade_creates_tables():
    engine = upgraded_engine()
    tables = set(inspect(engine).get_table_names())
    assert {"driver_presence", "driver_accounts", "rides"} <= tables

    indexes = {ix["name"]: ix for ix in inspect(engine).get_indexes("rides")}
    assert indexes["uq_rides_driver_open"]["unique"]


def test_closed_rides_do_not_block_a_new_one():
    engine = upgraded_engine()
    with engine.begin() as conn:
        conn.execute(INSERT_RIDE, {"id": "r1", "ended_at": "2025-03-01 12:10:00"})
        conn.execute(INSERT_RIDE, {"id": "r2", "ended_at": "2025-03-01 12:20:00"})
        conn.execute(INSERT_RIDE, {"id": "r3", "ended_at": None})


def test_second_open_ride_for_driver_is_rejected():
    engine = upgraded_engine()
    with engine.connect() as conn:
        conn.execute(INSERT_RIDE, {"id": "r1", "ended_at": None})
        with pytest.raises(IntegrityError):
            conn.execute(INSERT_RIDE, {"id": "r2", "ended_at": None})
