from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Iterator

import psycopg
import pytest
from psycopg_pool import ConnectionPool

from pageview_pipeline.db.connect import DEFAULT_DSN, connect, open_pool
from pageview_pipeline.db.pageviews import PostgresPageviewStore


def _run_sql_file(conn: psycopg.Connection, sql_path: Path) -> None:
    sql = sql_path.read_text(encoding="utf-8")

    # split on semicolons, so a failing statement can be surfaced on its own.
    statements = [s.strip() for s in sql.split(";") if s.strip()]

    with conn.cursor() as cur:
        for i, stmt in enumerate(statements, 1):
            try:
                cur.execute(stmt)
            except Exception as e:
                raise RuntimeError(
                    f"DB init failed in {sql_path} on statement #{i}\n"
                    f"Postgres raised with: {e}\n"
                    f"--- statement ---\n{stmt}\n--- end ---\n"
                ) from e
    conn.commit()


@pytest.fixture(scope="session")
def dsn() -> str:
    """Test database. `docker compose up -d` serves the default."""
    # CLI/runtime uses PAGEVIEW_DSN.
    # tests have PAGEVIEW_TEST_DSN set.
    return os.getenv("PAGEVIEW_TEST_DSN", DEFAULT_DSN)


@pytest.fixture(scope="session")
def wait_for_db(dsn: str) -> None:
    """Wait until Postgres accepts connections, skip the integration tests when it never does."""
    deadline = time.time() + 5
    last_err: Exception | None = None
    while time.time() < deadline:
        try:
            with psycopg.connect(dsn, autocommit=True, connect_timeout=2) as conn:
                conn.execute("SELECT 1;")
            return
        except psycopg.OperationalError as e:
            last_err = e
            time.sleep(0.2)

    pytest.skip(f"Postgres not reachable at {dsn}: {last_err}")


@pytest.fixture(scope="session")
def schema(wait_for_db: None, dsn: str, repo_root: Path) -> None:
    """Recreate the `pageviews` table once per session, from the shipped DDL."""
    with connect(dsn) as c:
        c.execute("DROP TABLE IF EXISTS pageviews CASCADE;")
        c.commit()
        _run_sql_file(c, repo_root / "sql" / "001_pageviews.sql")


@pytest.fixture()
def conn(schema: None, dsn: str) -> Iterator[psycopg.Connection]:
    """A connection on an emptied `pageviews` table. Tables and schema remain, only rows are cleared."""
    with connect(dsn) as c:
        c.execute("TRUNCATE TABLE pageviews;")
        c.commit()
        yield c


@pytest.fixture()
def pool(conn: psycopg.Connection, dsn: str) -> Iterator[ConnectionPool]:
    with open_pool(dsn, max_size=2) as p:
        p.wait(timeout=10)
        yield p


@pytest.fixture()
def pg_store(pool: ConnectionPool) -> PostgresPageviewStore:
    return PostgresPageviewStore(pool)
