"""
Pytest fixtures for the member program finance test suite.

Provides:
- Database sessions (in-memory SQLite by default, PostgreSQL via DATABASE_URL)
- Seed factories for programs, therapies, items and finance records
- Structured log capture

Environment Variables:
- DATABASE_URL: SQLAlchemy URL. Defaults to ``sqlite://`` (in-memory).
  Tests marked ``postgres`` are skipped unless it names a PostgreSQL database.
"""

import json
import logging
import os
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID

import pytest
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session

from program_config.schema import AppSettings
from program_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from program_kernel.domain.clock import DeterministicClock
from program_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from program_modules.programs.orm import (
    ProgramFinanceModel,
    ProgramItemModel,
    ProgramModel,
    TherapyModel,
    TherapyTaskModel,
)

# Test actor ID for all test operations
TEST_ACTOR_ID = UUID("00000000-0000-4000-a000-00000000a001")

DEFAULT_DATABASE_URL = "sqlite://"


def get_database_url() -> str:
    """Get database URL from environment, or use in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


def is_postgres_url(url: str) -> bool:
    return make_url(url).get_backend_name() == "postgresql"


def pytest_collection_modifyitems(config, items):
    """Skip PostgreSQL-only tests when running against SQLite."""
    if is_postgres_url(get_database_url()):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


def _kill_orphaned_connections(url: str) -> None:
    """
    Terminate backends left open on the test database by a crashed run.

    Prevents DROP TABLE from hanging on locks held by orphaned sessions.
    """
    import psycopg2

    parsed = make_url(url)
    try:
        conn = psycopg2.connect(
            dbname="postgres",
            user=parsed.username,
            password=parsed.password,
            host=parsed.host or "localhost",
            port=parsed.port or 5432,
        )
    except psycopg2.Error as e:
        # Don't fail if we can't connect - DB might not be running
        print(f"\n[conftest] Could not clean orphaned connections: {e}")
        return
    conn.autocommit = True
    cur = conn.cursor()
    cur.execute(
        """
        SELECT pg_terminate_backend(pid)
        FROM pg_stat_activity
        WHERE datname = %s
        AND pid <> pg_backend_pid()
        """,
        (parsed.database,),
    )
    terminated = cur.rowcount
    cur.close()
    conn.close()
    if terminated > 0:
        print(f"\n[conftest] Killed {terminated} orphaned DB connection(s)")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture program_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, item_service):
            item_service.create_item(...)
            logs = captured_logs()
            assert any(r["message"] == "item_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("program_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    url = get_database_url()
    if is_postgres_url(url):
        _kill_orphaned_connections(url)
    eng = init_engine_from_url(url, echo=False, pool_size=10, max_overflow=10)
    yield eng
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """
    Provide a database session on freshly created tables.

    Services under test commit for real, so isolation comes from dropping
    every table at teardown rather than from an outer rollback.
    """
    drop_tables()
    create_tables()
    sess = get_session()
    try:
        yield sess
    finally:
        sess.rollback()
        sess.close()
        drop_tables()


@pytest.fixture
def test_actor_id() -> UUID:
    """Actor ID used by tests."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-01-01 12:00 UTC."""
    return DeterministicClock()


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


# =============================================================================
# Seed factories
# =============================================================================


@pytest.fixture
def make_therapy(session, test_actor_id):
    """
    Create a therapy (and optional task templates) and commit.

    Usage::

        therapy = make_therapy(cost="40", charge="100", taxable=True,
                               tasks=["Intake call", "Follow-up"])
    """

    def _make(
        cost="40",
        charge="100",
        taxable=False,
        name="Therapy",
        tasks=(),
        inactive_tasks=(),
    ) -> TherapyModel:
        therapy = TherapyModel(
            therapy_name=name,
            cost=Decimal(str(cost)),
            charge=Decimal(str(charge)),
            taxable=taxable,
            created_by_id=test_actor_id,
        )
        for delay, task_name in enumerate(tasks):
            therapy.tasks.append(
                TherapyTaskModel(
                    task_name=task_name,
                    task_delay=delay,
                    created_by_id=test_actor_id,
                )
            )
        for task_name in inactive_tasks:
            therapy.tasks.append(
                TherapyTaskModel(
                    task_name=task_name,
                    active_flag=False,
                    created_by_id=test_actor_id,
                )
            )
        session.add(therapy)
        session.commit()
        return therapy

    return _make


@pytest.fixture
def make_program(session, test_actor_id):
    """
    Create a program, optionally with a finance record, and commit.

    ``finance`` is a dict of ProgramFinanceModel column values.
    """

    def _make(status="Quote", name="Gut Reset", finance=None) -> ProgramModel:
        program = ProgramModel(
            program_name=name,
            status=status,
            total_cost=Decimal("0"),
            total_charge=Decimal("0"),
            created_by_id=test_actor_id,
        )
        session.add(program)
        session.flush()
        if finance is not None:
            values = {k: Decimal(str(v)) if v is not None else None for k, v in finance.items()}
            session.add(
                ProgramFinanceModel(
                    program_id=program.id,
                    created_by_id=test_actor_id,
                    **values,
                )
            )
        session.commit()
        return program

    return _make


@pytest.fixture
def make_item(session, test_actor_id):
    """Insert an item directly (no recompute) with the therapy's current price."""

    def _make(program, therapy, quantity=1, days_from_start=0, active=True) -> ProgramItemModel:
        item = ProgramItemModel(
            program_id=program.id,
            therapy_id=therapy.id,
            quantity=quantity,
            item_cost=therapy.cost,
            item_charge=therapy.charge,
            days_from_start=days_from_start,
            active_flag=active,
            created_by_id=test_actor_id,
        )
        session.add(item)
        session.commit()
        return item

    return _make
