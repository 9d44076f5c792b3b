from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def row_label(row_number: int, line_number: int | None = None) -> str:
    """`Row 5`, or `Row 5 (line 7)` once multiline cells put the file line ahead."""
    if line_number is None or line_number == row_number:
        return f"Row {row_number}"
    return f"Row {row_number} (line {line_number})"


@dataclass(frozen=True)
class RowError:
    """A row rejected by validation."""
    row_number: int
    error: str
    line_number: int | None = None

    @property
    def label(self) -> str:
        return row_label(self.row_number, self.line_number)


@dataclass(frozen=True)
class BatchError:
    """A batch the store did not fully accept."""
    batch_number: int
    error: str


@dataclass
class ImportStats:
    """
    Running totals for one import run.

    Created at run start, mutated only by the import loop, frozen into an
    `ImportSummary` by `finish()`.
    """
    total_rows: int = 0             # every data row read, non-pageviews included
    inserted: int = 0
    skipped: int = 0                # duplicates, already present in the store
    failed: int = 0                 # validation rejects + records of failed batches
    non_pageview_skipped: int = 0   # rows filtered out by `datapoint`, not failures
    page_id_replaced: int = 0
    batches_processed: int = 0      # batches whose insert fully succeeded
    validation_errors: list[RowError] = field(default_factory=list)
    database_errors: list[BatchError] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)

    def finish(self, finished_at: datetime | None = None) -> ImportSummary:
        """Freeze these stats into the run's final summary."""
        return ImportSummary(
            total_rows=self.total_rows,
            inserted=self.inserted,
            skipped=self.skipped,
            failed=self.failed,
            non_pageview_skipped=self.non_pageview_skipped,
            page_id_replaced=self.page_id_replaced,
            batches_processed=self.batches_processed,
            validation_errors=tuple(self.validation_errors),
            database_errors=tuple(self.database_errors),
            started_at=self.started_at,
            finished_at=finished_at or _utcnow(),
        )


@dataclass(frozen=True)
class ImportSummary:
    """Schema for all summary data that will be reported."""
    total_rows: int
    inserted: int
    skipped: int
    failed: int
    non_pageview_skipped: int
    page_id_replaced: int
    batches_processed: int
    validation_errors: tuple[RowError, ...]
    database_errors: tuple[BatchError, ...]
    started_at: datetime
    finished_at: datetime

    @property
    def duration_ms(self) -> int:
        return max(0, int((self.finished_at - self.started_at).total_seconds() * 1000))

    @property
    def rows_per_second(self) -> float:
        """Inserted records per second, 0 for an instantaneous run."""
        if self.duration_ms == 0:
            return 0.0
        return self.inserted / (self.duration_ms / 1000)

    @property
    def succeeded(self) -> bool:
        """
        Rows were inserted, or every row was already present.

        A re-import of an already-loaded file therefore succeeds.
        """
        return self.inserted > 0 or self.skipped > 0

    def render_one_line(self) -> str:
        """How the summary is formatted as a single terminal line."""
        return (
            f"pageviews: total={self.total_rows} inserted={self.inserted} "
            f"skipped={self.skipped} failed={self.failed} duration_ms={self.duration_ms}"
        )
