from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, ContextManager, Iterator, Protocol, Sequence

from psycopg import Connection, sql
from psycopg_pool import ConnectionPool

from pageview_pipeline.parsing.payload import PageviewPayload



@dataclass(frozen=True)
class TableWriteSpec:
    """Whitelisted table contract used for safe SQL generation.

    Notes:
    - `columns` is the insert column order, `created_at` is left to its DB default.
    - `key_cols` is the natural key (the composite unique index), in `CompositeKey` order.
    """
    table_name: str
    columns: tuple[str, ...]
    key_cols: tuple[str, ...]


PAGEVIEWS = TableWriteSpec(
    table_name="pageviews",
    columns=tuple(PageviewPayload.model_fields),
    key_cols=("added_iso", "path", "session_id", "hostname"),
)



@dataclass(frozen=True)
class CompositeKey:
    """
    Natural key of a pageview: `(added_iso, path, session_id, hostname)`.

    Mirrors SQL NULL semantics: a key with an absent `session_id` or `hostname`
    is never equal to any stored row, so it can never be a duplicate.
    Two anonymous pageviews sharing timestamp + path must both insert.
    """
    added_iso: datetime
    path: str
    session_id: str | None
    hostname: str | None

    @classmethod
    def of(cls, record: PageviewPayload) -> CompositeKey:
        return cls.build(record.added_iso, record.path, record.session_id, record.hostname)

    @classmethod
    def build(cls, added_iso: datetime, path: str, session_id: str | None, hostname: str | None) -> CompositeKey:
        """Normalize `added_iso` to UTC milliseconds so store and file values compare equal."""
        ts = added_iso.astimezone(timezone.utc)
        ts = ts.replace(microsecond=(ts.microsecond // 1000) * 1000)
        return cls(ts, path, session_id, hostname)

    @property
    def is_comparable(self) -> bool:
        """`False` when any component is NULL, such a key never equals another."""
        return self.session_id is not None and self.hostname is not None



# -- Protocols: what the batch inserter needs from the store


class PageviewTransaction(Protocol):
    """One unit of work against the store. Committed on clean exit, rolled back on error."""

    def fetch_existing_keys(self, keys: Sequence[CompositeKey]) -> set[CompositeKey]:
        """Keys from `keys` already present in the store. One query, never one per key."""
        ...

    def insert_pageviews(self, records: Sequence[PageviewPayload]) -> int:
        """Bulk insert in one call, skipping conflicting rows. Returns rows actually written."""
        ...


class PageviewStore(Protocol):
    """Transactional access to the `pageviews` table."""

    def transaction(self, *, timeout_s: float) -> ContextManager[PageviewTransaction]: ...



class _PostgresTransaction:
    """`PageviewTransaction` on a psycopg connection that already has a transaction open."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def fetch_existing_keys(self, keys: Sequence[CompositeKey]) -> set[CompositeKey]:
        """
        Match all candidate keys in a single `JOIN (VALUES ...)`.

        Every key column is compared with `=`, so a NULL component never matches.
        Keys holding a NULL are not even sent, they cannot match anyway.
        """
        candidates = [k for k in keys if k.is_comparable]
        if not candidates:
            return set()

        key_cols = PAGEVIEWS.key_cols
        row_tmpl = sql.SQL("(%s::timestamptz, %s::text, %s::text, %s::text)")
        query = sql.SQL(
            "SELECT {select_cols}\n"
            "FROM {tbl} AS p\n"
            "JOIN (VALUES {rows}) AS k ({cols})\n"
            "  ON {on}"
        ).format(
            select_cols=sql.SQL(", ").join(sql.Identifier("p", c) for c in key_cols),
            tbl=sql.Identifier(PAGEVIEWS.table_name),
            rows=sql.SQL(", ").join(row_tmpl for _ in candidates),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in key_cols),
            on=sql.SQL(" AND ").join(
                sql.SQL("{p} = {k}").format(p=sql.Identifier("p", c), k=sql.Identifier("k", c))
                for c in key_cols
            ),
        )

        params: list[Any] = []
        for k in candidates:
            params.extend((k.added_iso, k.path, k.session_id, k.hostname))

        rows = self._conn.execute(query, params).fetchall()
        return {CompositeKey.build(*row) for row in rows}

    def insert_pageviews(self, records: Sequence[PageviewPayload]) -> int:
        """
        One multi-row `INSERT ... ON CONFLICT DO NOTHING`.

        Rows losing a race against a concurrent importer are silently skipped,
        `RETURNING` tells how many were really written.
        """
        if not records:
            return 0

        cols = PAGEVIEWS.columns    # identifiers only ever come from PAGEVIEWS
        row_tmpl = sql.SQL("({})").format(sql.SQL(", ").join(sql.Placeholder() for _ in cols))

        query = sql.SQL(
            "INSERT INTO {tbl} ({cols}) VALUES {rows}\n"
            "ON CONFLICT DO NOTHING\n"
            "RETURNING {pk}"
        ).format(
            tbl=sql.Identifier(PAGEVIEWS.table_name),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in cols),
            rows=sql.SQL(", ").join(row_tmpl for _ in records),
            pk=sql.Identifier("page_id"),
        )

        params: list[Any] = []
        for r in records:
            values = r.model_dump()
            params.extend(values[c] for c in cols)

        return len(self._conn.execute(query, params).fetchall())



class PostgresPageviewStore:
    """
    `PageviewStore` backed by a bounded `psycopg_pool.ConnectionPool`.

    A transaction's timeout bounds both the wait for a pooled connection and,
    through a transaction-local `statement_timeout`, the time spent executing.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        self._pool = pool

    @contextmanager
    def transaction(self, *, timeout_s: float) -> Iterator[PageviewTransaction]:
        # pool.connection() commits on clean exit and rolls back on exception.
        with self._pool.connection(timeout=timeout_s) as conn:
            timeout_ms = str(int(timeout_s * 1000))
            conn.execute(
                "SELECT set_config('statement_timeout', %s, true), set_config('lock_timeout', %s, true)",
                (timeout_ms, timeout_ms),
            )
            yield _PostgresTransaction(conn)
