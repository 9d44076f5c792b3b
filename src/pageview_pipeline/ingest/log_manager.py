from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import Iterable, TextIO

from pageview_pipeline.ingest.summary import BatchError, ImportSummary, RowError

RULE = "=" * 80
THIN_RULE = "-" * 80


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _stamp(dt: datetime) -> str:
    """`YYYY-MM-DDTHH:MM:SS`, used for line prefixes."""
    return dt.strftime("%Y-%m-%dT%H:%M:%S")


class LogManager:
    """
    Append-only, human readable log file for one import run.

    One instance per run: the file is opened on construction and released by
    `close()` (or on leaving a `with` block, including on a fatal error).

    Every `log*` line is prefixed with a `[timestamp]`.
    """

    def __init__(self, logs_dir: Path | str = "logs") -> None:
        logs_dir = Path(logs_dir)
        logs_dir.mkdir(parents=True, exist_ok=True)

        # filenames cannot carry ':' everywhere, so the time part uses '-'.
        filename = f"import-{_now().strftime('%Y-%m-%dT%H-%M-%S')}.log"
        self._path = logs_dir / filename
        self._fh: TextIO | None = self._path.open("a", encoding="utf-8")
        self._write_header()

    def __enter__(self) -> LogManager:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    @property
    def path(self) -> Path:
        """Full path of this run's log file."""
        return self._path

    @property
    def closed(self) -> bool:
        return self._fh is None

    def _write(self, text: str) -> None:
        if self._fh is None:
            raise ValueError(f"log file already closed: {self._path}")
        self._fh.write(text)

    def _write_header(self) -> None:
        self._write(f"{RULE}\n")
        self._write("CSV Import Log\n")
        self._write(f"Started: {_now().isoformat()}\n")
        self._write(f"{RULE}\n\n")

    ## -- timestamped lines

    def log(self, message: str) -> None:
        self._write(f"[{_stamp(_now())}] {message}\n")

    def log_error(self, message: str) -> None:
        self._write(f"[{_stamp(_now())}] ERROR: {message}\n")

    def log_warning(self, message: str) -> None:
        self._write(f"[{_stamp(_now())}] WARNING: {message}\n")

    ## -- report blocks

    def log_summary(self, summary: ImportSummary) -> None:
        """Write the final totals, duration and throughput block."""
        self._write("\n")
        self._write(f"{RULE}\n")
        self._write(f"[{_stamp(_now())}] Import Summary\n")
        self._write(f"{RULE}\n")
        self._write(f"Total rows: {summary.total_rows}\n")
        self._write(f"Inserted: {summary.inserted}\n")
        self._write(f"Skipped: {summary.skipped} (duplicates)\n")
        self._write(f"Failed: {summary.failed}\n")
        self._write(f"Non-pageview rows skipped: {summary.non_pageview_skipped}\n")
        self._write(f"Page IDs replaced: {summary.page_id_replaced}\n")
        self._write(f"Batches processed: {summary.batches_processed}\n")
        self._write(f"Duration: {summary.duration_ms}ms ({summary.duration_ms / 1000:.2f}s)\n")
        self._write(f"Performance: {summary.rows_per_second:.2f} rows/second\n")
        self._write(f"{RULE}\n")

    def log_validation_errors(self, errors: Iterable[RowError]) -> None:
        errors = list(errors)
        if not errors:
            return
        self._write("\n")
        self._write(f"[{_stamp(_now())}] Validation Errors:\n")
        self._write(f"{THIN_RULE}\n")
        for err in errors:
            self._write(f"{err.label}: {err.error}\n")

    def log_database_errors(self, errors: Iterable[BatchError]) -> None:
        errors = list(errors)
        if not errors:
            return
        self._write("\n")
        self._write(f"[{_stamp(_now())}] Database Errors:\n")
        self._write(f"{THIN_RULE}\n")
        for err in errors:
            self._write(f"Batch {err.batch_number}: {err.error}\n")

    def flush(self) -> None:
        if self._fh is not None:
            self._fh.flush()

    def close(self) -> None:
        """Append the completion footer and release the file. Safe to call more than once."""
        if self._fh is None:
            return
        try:
            self._write("\n")
            self._write(f"Completed: {_now().isoformat()}\n")
            self._write(f"{RULE}\n")
        finally:
            fh, self._fh = self._fh, None
            fh.close()
