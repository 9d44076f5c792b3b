from __future__ import annotations

import psycopg
import pytest

from pageview_pipeline.db.pageviews import PAGEVIEWS

pytestmark = pytest.mark.integration


def test_pageviews_table_has_every_insert_column(conn: psycopg.Connection) -> None:
    rows = conn.execute(
        "SELECT column_name FROM information_schema.columns WHERE table_name = 'pageviews';"
    ).fetchall()
    db_cols = {r[0] for r in rows}

    assert set(PAGEVIEWS.columns) <= db_cols
    assert "created_at" in db_cols


def test_composite_unique_index_exists(conn: psycopg.Connection) -> None:
    row = conn.execute(
        "SELECT indexdef FROM pg_indexes WHERE tablename = 'pageviews' AND indexname = 'pageviews_unique_composite';"
    ).fetchone()

    assert row is not None
    assert "UNIQUE" in row[0]
    assert "(added_iso, path, session_id, hostname)" in row[0]
