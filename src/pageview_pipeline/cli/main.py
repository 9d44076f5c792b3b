from __future__ import annotations

import argparse
import logging
from datetime import datetime, timezone
from functools import partial
from pathlib import Path

from pageview_pipeline.cli.loader import import_csv
from pageview_pipeline.config import MAX_BATCH_SIZE, ImportSettings, SettingsError, load_settings
from pageview_pipeline.db.batch_inserter import RetryPolicy, insert_pageview_batch
from pageview_pipeline.db.connect import open_pool
from pageview_pipeline.db.pageviews import PostgresPageviewStore
from pageview_pipeline.ingest.log_manager import LogManager
from pageview_pipeline.ingest.summary import ImportSummary
from pageview_pipeline.logging_setup import configure_logging

logger = logging.getLogger(__name__)

MAX_CONSOLE_ERRORS = 20     # the full list always goes to the log file
BANNER = "=" * 60


def _batch_size(value: str) -> int:
    n = int(value)
    if not 1 <= n <= MAX_BATCH_SIZE:
        raise argparse.ArgumentTypeError(f"batch size must be between 1 and {MAX_BATCH_SIZE}")
    return n


def _outcome_line(summary: ImportSummary) -> str | None:
    """Contextual one-liner, `None` when nothing was imported or skipped."""
    if summary.inserted > 0 and summary.skipped == 0:
        return f"Import successful: {summary.inserted} pageviews imported."
    if summary.inserted > 0:
        return (
            f"Import successful: Imported {summary.inserted} new pageviews, "
            f"skipped {summary.skipped} duplicates."
        )
    if summary.skipped > 0:
        return "Import successful: No new data to import (all rows already exist)."
    return None


def render_console_summary(summary: ImportSummary, log_path: Path) -> str:
    """
    Human readable run summary for the terminal.

    Validation errors are capped at `MAX_CONSOLE_ERRORS`, database errors are all shown.
    """
    lines: list[str] = [
        "",
        BANNER,
        "CSV Import Complete",
        "-" * 60,
        f"Rows Processed:     {summary.total_rows}",
        f"Rows Inserted:      {summary.inserted}",
        f"Rows Skipped:       {summary.skipped} (duplicates)",
        f"Rows Failed:        {summary.failed}",
        f"Non-pageview Rows:  {summary.non_pageview_skipped} (not imported)",
        f"Page IDs Replaced:  {summary.page_id_replaced}",
        "",
        f"Duration: {summary.duration_ms}ms ({summary.duration_ms / 1000:.2f}s)",
        f"Performance: {summary.rows_per_second:.2f} rows/second",
        "",
    ]

    outcome = _outcome_line(summary)
    if outcome:
        lines += [outcome, ""]

    if summary.validation_errors:
        lines.append(f"Validation Errors (showing first {MAX_CONSOLE_ERRORS}):")
        for err in summary.validation_errors[:MAX_CONSOLE_ERRORS]:
            lines.append(f"  {err.label}: {err.error}")
        remaining = len(summary.validation_errors) - MAX_CONSOLE_ERRORS
        if remaining > 0:
            lines.append(f"  ... and {remaining} more validation errors")
        lines.append("")

    if summary.database_errors:
        lines.append("Database Errors:")
        for err in summary.database_errors:
            lines.append(f"  Batch {err.batch_number}: {err.error}")
        lines.append("")

    lines += [f"Full log: {log_path}", BANNER]
    return "\n".join(lines)


def run_import(input_path: Path, settings: ImportSettings) -> int:
    """
    Import one file into the store. Returns the process exit code.

    0: rows were inserted, or every row was already present.
    1: nothing inserted and nothing skipped, or a fatal error aborted the run.
    """
    print(BANNER)
    print("CSV Import Script")
    print(BANNER)
    print(f"File: {input_path}")
    print(f"Start time: {datetime.now(timezone.utc).isoformat()}")

    with LogManager(settings.log_dir) as log:
        print(f"Log file: {log.path}")
        print("")

        try:
            with open_pool(settings.database_url, max_size=settings.pool_size) as pool:
                pool.wait(timeout=settings.transaction_timeout_s)
                store = PostgresPageviewStore(pool)
                insert_batch = partial(
                    insert_pageview_batch,
                    store,
                    policy=RetryPolicy(settings.max_retries, settings.retry_base_delay_s),
                    timeout_s=settings.transaction_timeout_s,
                )
                summary = import_csv(
                    input_path,
                    insert_batch=insert_batch,
                    log=log,
                    batch_size=settings.batch_size,
                )
        except Exception as e:
            # fatal: missing file, unreadable CSV, unreachable store at startup
            logger.exception("import aborted: %s", e)
            log.log_error(f"Import failed: {e}")
            print("")
            print(BANNER)
            print("IMPORT FAILED")
            print(BANNER)
            print(str(e))
            print(f"End time: {datetime.now(timezone.utc).isoformat()}")
            print(BANNER)
            return 1

        log.log_summary(summary)
        log.log_validation_errors(summary.validation_errors)
        log.log_database_errors(summary.database_errors)

    print(render_console_summary(summary, log.path))

    if not summary.succeeded:
        print("Import failed: No rows were successfully imported")
        return 1
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    A CLI for importing historical pageview exports into the analytics store.

    The `cmd` options are:
    ## import:
    Streams a CSV export into the `pageviews` table, skipping rows already present.
    - `--input` as the path to the CSV file,
    - `--batch-size` records per insert transaction (default from `PAGEVIEW_IMPORT_BATCH_SIZE`, else 50),
    - `--logs-dir` where the run log is written (default from `PAGEVIEW_IMPORT_LOG_DIR`, else `logs`).

    A results summary will print in the terminal upon completion of an import.

    ### Example import usage:
    - `pageviews import --input data/export-2024-10.csv`

    Exit code is 0 when rows were imported or all were already present, else 1.
    """
    p = argparse.ArgumentParser(prog="pageviews")
    sub = p.add_subparsers(dest="cmd", required=True)

    # import cmd
    imp = sub.add_parser("import", help="Import a CSV export of pageviews (duplicates are skipped).")
    imp.add_argument("--input", required=True, help="Path to the CSV export.")
    imp.add_argument("--batch-size", type=_batch_size, default=None, help="Records per insert transaction.")
    imp.add_argument("--logs-dir", default=None, help="Directory for the run log file.")

    args = p.parse_args(argv)

    configure_logging()

    if args.cmd == "import":
        try:
            settings = load_settings()
        except SettingsError as e:
            logger.error("invalid configuration: %s", e)
            print(f"Configuration error: {e}")
            return 1

        overrides: dict[str, object] = {}
        if args.batch_size is not None:
            overrides["batch_size"] = args.batch_size
        if args.logs_dir is not None:
            overrides["log_dir"] = Path(args.logs_dir)
        if overrides:
            settings = settings.model_copy(update=overrides)

        return run_import(Path(args.input).resolve(), settings)

    return 2
