from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable

import psycopg
import pytest

from pageview_pipeline.cli.loader import import_csv
from pageview_pipeline.cli.main import main
from pageview_pipeline.db.batch_inserter import insert_pageview_batch
from pageview_pipeline.db.pageviews import PostgresPageviewStore
from pageview_pipeline.ingest.log_manager import LogManager

pytestmark = pytest.mark.integration

CsvRow = Callable[..., dict[str, Any]]
WriteCsv = Callable[..., Path]


def _import(path: Path, store: PostgresPageviewStore, logs: Path, **kwargs: Any):
    with LogManager(logs) as log:
        return import_csv(path, insert_batch=partial(insert_pageview_batch, store), log=log, **kwargs)


def test_import_then_reimport(
    tmp_path: Path, pg_store: PostgresPageviewStore, conn: psycopg.Connection, csv_row: CsvRow, write_csv: WriteCsv
) -> None:
    path = write_csv([csv_row(i) for i in range(7)])

    first = _import(path, pg_store, tmp_path / "logs", batch_size=3)
    second = _import(path, pg_store, tmp_path / "logs", batch_size=3)

    assert (first.inserted, first.skipped, first.failed) == (7, 0, 0)
    assert first.batches_processed == 3
    assert (second.inserted, second.skipped, second.failed) == (0, 7, 0)
    assert second.succeeded

    conn.commit()
    assert conn.execute("SELECT count(*) FROM pageviews;").fetchone()[0] == 7


def test_stored_values(
    tmp_path: Path, pg_store: PostgresPageviewStore, conn: psycopg.Connection, csv_row: CsvRow, write_csv: WriteCsv
) -> None:
    path = write_csv([
        csv_row(
            0,
            uuid="cjld2cjxh0000qzrmn831i7rn",
            added_iso="2024-10-24T12:00:00.123456+02:00",
            document_referrer="https://t.co/abc",
            device_type="Tablet",
            is_robot="true",
        )
    ])

    summary = _import(path, pg_store, tmp_path / "logs")
    assert summary.inserted == 1

    conn.commit()
    row = conn.execute(
        "SELECT added_iso, referrer_domain, referrer_category, device_type, is_bot, language, created_at "
        "FROM pageviews WHERE page_id = %s;",
        ("cjld2cjxh0000qzrmn831i7rn",),
    ).fetchone()

    added_iso, referrer_domain, referrer_category, device_type, is_bot, language, created_at = row
    assert added_iso == datetime(2024, 10, 24, 10, 0, 0, 123000, tzinfo=timezone.utc)
    assert (referrer_domain, referrer_category) == ("t.co", "Social")
    assert device_type == "tablet"
    assert is_bot is True
    assert language == "en"
    assert created_at is not None


def test_anonymous_pageviews_all_insert(
    tmp_path: Path, pg_store: PostgresPageviewStore, csv_row: CsvRow, write_csv: WriteCsv
) -> None:
    path = write_csv([csv_row(0, session_id="", hostname="") for _ in range(3)])

    first = _import(path, pg_store, tmp_path / "logs")
    second = _import(path, pg_store, tmp_path / "logs")

    assert first.inserted == 3
    # without a full key there is nothing to compare against, so they import again
    assert (second.inserted, second.skipped) == (3, 0)


def test_cli_against_postgres(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
    dsn: str,
    conn: psycopg.Connection,
    csv_row: CsvRow,
    write_csv: WriteCsv,
    capsys: pytest.CaptureFixture[str],
) -> None:
    monkeypatch.setenv("PAGEVIEW_DSN", dsn)
    path = write_csv([csv_row(0), csv_row(1, datapoint="event"), csv_row(2, path="bad")])

    rc = main(["import", "--input", str(path), "--logs-dir", str(tmp_path / "logs")])

    assert rc == 0
    out = capsys.readouterr().out
    assert "Rows Processed:     3" in out
    assert "Rows Inserted:      1" in out
    assert "Rows Failed:        1" in out
    assert "Non-pageview Rows:  1 (not imported)" in out
