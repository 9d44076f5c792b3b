from __future__ import annotations

import csv
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Sequence

import pytest

from pageview_pipeline.db.pageviews import CompositeKey
from pageview_pipeline.parsing.payload import PageviewPayload
from pageview_pipeline.parsing.primitives import generate_page_id


def _find_repo_root(start: Path) -> Path:
    marker = "pyproject.toml"
    cur = start.resolve()
    for p in (cur, *cur.parents):
        if (p / marker).exists():
            return p
    raise RuntimeError(f"Could not find repo root from: {start}")


@pytest.fixture(scope="session")
def repo_root() -> Path:
    """The absolute path to the repo root (finds by walking up to `pyproject.toml`)."""
    return _find_repo_root(Path(__file__))


BASE_TS = datetime(2024, 10, 24, 10, 0, 0, tzinfo=timezone.utc)


## -- in-memory store


class _MemoryTransaction:
    """Works on a staged copy of the store's rows, published only on commit."""

    def __init__(self, store: MemoryPageviewStore, staged: dict[str, PageviewPayload]) -> None:
        self._store = store
        self._staged = staged

    def _stored_keys(self) -> set[CompositeKey]:
        return {CompositeKey.of(r) for r in self._staged.values()}

    def fetch_existing_keys(self, keys: Sequence[CompositeKey]) -> set[CompositeKey]:
        self._store.fetch_calls += 1
        if self._store.fetch_failures:
            raise self._store.fetch_failures.pop(0)
        if self._store.stale_reads:
            # a concurrent writer commits after this read
            return set()
        stored = self._stored_keys()
        return {k for k in keys if k.is_comparable and k in stored}

    def insert_pageviews(self, records: Sequence[PageviewPayload]) -> int:
        self._store.insert_calls += 1
        if self._store.insert_failures:
            raise self._store.insert_failures.pop(0)

        # ON CONFLICT DO NOTHING: primary key, plus the composite key with NULLs distinct
        written = 0
        stored = self._stored_keys()
        for r in records:
            key = CompositeKey.of(r)
            if r.page_id in self._staged or (key.is_comparable and key in stored):
                continue
            self._staged[r.page_id] = r
            stored.add(key)
            written += 1
        return written


class MemoryPageviewStore:
    """
    `PageviewStore` keeping rows in a dict.

    Same unique semantics as the `pageviews` table, a transaction commits on
    clean exit and is discarded on error. Failures can be scripted per call.
    """

    def __init__(self) -> None:
        self.rows: dict[str, PageviewPayload] = {}
        self.fetch_failures: list[Exception] = []
        self.insert_failures: list[Exception] = []
        self.stale_reads = False
        self.transactions = 0
        self.commits = 0
        self.fetch_calls = 0
        self.insert_calls = 0

    @contextmanager
    def transaction(self, *, timeout_s: float) -> Iterator[_MemoryTransaction]:
        self.transactions += 1
        staged = dict(self.rows)
        yield _MemoryTransaction(self, staged)
        self.rows = staged
        self.commits += 1

    def seed(self, records: Sequence[PageviewPayload]) -> None:
        for r in records:
            self.rows[r.page_id] = r


@pytest.fixture()
def store() -> MemoryPageviewStore:
    return MemoryPageviewStore()


@pytest.fixture()
def no_sleep() -> Callable[[float], None]:
    """Drop-in for `time.sleep` that records the requested delays instead of waiting."""
    delays: list[float] = []

    def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep


## -- record and CSV factories


def make_record(n: int = 0, **overrides: Any) -> PageviewPayload:
    """A valid pageview, `n` shifts the timestamp so keys differ."""
    values: dict[str, Any] = {
        "page_id": generate_page_id(),
        "added_iso": BASE_TS + timedelta(seconds=n),
        "session_id": "sess-1",
        "hostname": "example.com",
        "path": "/",
        "device_type": "desktop",
    }
    values.update(overrides)
    return PageviewPayload(**values)


@pytest.fixture()
def record_factory() -> Callable[..., PageviewPayload]:
    return make_record


def make_csv_row(n: int = 0, **overrides: Any) -> dict[str, Any]:
    """One raw export row as it appears in the CSV, every cell a string."""
    ts = (BASE_TS + timedelta(seconds=n)).strftime("%Y-%m-%dT%H:%M:%S.000Z")
    row: dict[str, Any] = {
        "datapoint": "pageview",
        "uuid": "",
        "added_iso": ts,
        "session_id": "sess-1",
        "hostname": "example.com",
        "path": "/",
        "query": "",
        "document_referrer": "https://www.google.com/search?q=analytics",
        "is_unique": "true",
        "is_robot": "false",
        "device_type": "desktop",
        "user_agent": "Mozilla/5.0",
        "country_code": "US",
        "lang_language": "en",
        "viewport_width": "1280",
        "duration_seconds": "12",
    }
    row.update(overrides)
    return row


@pytest.fixture()
def csv_row() -> Callable[..., dict[str, Any]]:
    return make_csv_row


@pytest.fixture()
def write_csv(tmp_path: Path) -> Callable[..., Path]:
    """Write dict rows to a CSV file under `tmp_path`, header is the union of keys in first-seen order."""

    def _write(rows: Sequence[dict[str, Any]], name: str = "export.csv") -> Path:
        fieldnames: list[str] = []
        for r in rows:
            for k in r:
                if k not in fieldnames:
                    fieldnames.append(k)
        path = tmp_path / name
        with path.open("w", encoding="utf-8", newline="") as f:
            w = csv.DictWriter(f, fieldnames=fieldnames)
            w.writeheader()
            w.writerows(rows)
        return path

    return _write
