from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol, Sequence

from pageview_pipeline.config import BATCH_SIZE
from pageview_pipeline.db.batch_inserter import BatchInsertResult
from pageview_pipeline.ingest.log_manager import LogManager
from pageview_pipeline.ingest.readers import stream_csv_dict_rows
from pageview_pipeline.ingest.summary import BatchError, ImportStats, ImportSummary, RowError, row_label
from pageview_pipeline.parsing.payload import PageviewPayload
from pageview_pipeline.parsing.profiles.pageviews import is_pageview_row, map_csv_row_to_pageview
from pageview_pipeline.parsing.types import RejectRow
from pageview_pipeline.parsing.validation import validate_pageview

logger = logging.getLogger(__name__)

PROGRESS_UPDATE_FREQUENCY = 5   # log progress every N batches, not every batch


class BatchInserter(Protocol):
    """Flushes one batch to the store. Reports store errors on the result, never raises them."""
    def __call__(self, records: Sequence[PageviewPayload], batch_number: int) -> BatchInsertResult: ...



def _flush_batch(
    batch: list[PageviewPayload],
    batch_number: int,
    *,
    insert_batch: BatchInserter,
    stats: ImportStats,
    log: LogManager,
) -> None:
    """
    Insert `batch` and merge the result into `stats`.

    Batch failures are recorded, never raised: the run continues with the next batch.
    """
    log.log(f"Inserting batch {batch_number} ({len(batch)} rows)...")

    result = insert_batch(batch, batch_number)

    stats.inserted += result.inserted
    stats.skipped += result.skipped
    stats.failed += result.failed

    if result.success:
        stats.batches_processed += 1
        log.log(
            f"Batch {batch_number} processed: {result.inserted} inserted, "
            f"{result.skipped} duplicates skipped"
        )
        return

    error = result.error or "Unknown database error"
    stats.database_errors.append(BatchError(batch_number=batch_number, error=error))
    log.log_error(
        f"Batch {batch_number} failed: {error} "
        f"({result.inserted} inserted, {result.skipped} skipped, {result.failed} failed)"
    )



def import_csv(
    input_path: Path,
    *,
    insert_batch: BatchInserter,
    log: LogManager,
    batch_size: int = BATCH_SIZE,
) -> ImportSummary:
    """
    End-to-end pageview import orchestrator:
      - Stream rows from the CSV, one at a time,
      - Skip rows whose `datapoint` is not `pageview` (logged, not failures),
      - Map then validate each row,
            - invalid rows -> recorded with their row number, run continues,
            - valid rows -> the current batch,
      - Flush each full batch through `insert_batch`, then flush the remainder at the end.

    Batches are strictly sequential: the next row is only pulled from the reader
    once the current flush has returned, so there is never more than one batch
    in flight against the store, and never more than `batch_size` records held.

    Raises only on fatal errors: `FileNotFoundError` and `CsvStructureError`.
    Will not raise on invalid rows or failed batches (they are counted instead).
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    stats = ImportStats()
    row_iter = stream_csv_dict_rows(input_path)

    log.log(f"Starting import from: {input_path}")

    batch: list[PageviewPayload] = []
    batch_number = 1

    ## -- Begin transformations
    for source_row, line, raw in row_iter:
        stats.total_rows += 1
        where = row_label(source_row, line)

        ## -- record type filter
        if not is_pageview_row(raw):
            stats.non_pageview_skipped += 1
            log.log(f"{where}: Skipped (not a pageview record)")
            continue

        ## -- map + validate. one bad row never aborts the run.
        try:
            mapped = map_csv_row_to_pageview(raw)
            res = validate_pageview(mapped.pageview)
        except Exception as e:
            logger.exception("%s could not be processed", where)
            error = f"Unexpected error: {str(e) or type(e).__name__}"
            stats.failed += 1
            stats.validation_errors.append(RowError(source_row, error, line_number=line))
            log.log_error(f"{where}: {error}")
            continue

        if mapped.page_id_replaced:
            stats.page_id_replaced += 1
            log.log(
                f'{where}: Replaced invalid page_id "{mapped.original_page_id}" '
                f'with "{mapped.pageview.page_id}"'
            )

        if isinstance(res, RejectRow):
            stats.failed += 1
            stats.validation_errors.append(RowError(source_row, res.reason_detail, line_number=line))
            log.log_error(f"{where}: {res.reason_detail}")
            continue

        batch.append(res.record)

        ## -- flush full batches. intake is suspended until the flush returns.
        if len(batch) >= batch_size:
            _flush_batch(batch, batch_number, insert_batch=insert_batch, stats=stats, log=log)
            batch = []
            batch_number += 1

            if (batch_number - 1) % PROGRESS_UPDATE_FREQUENCY == 0:
                progress = (
                    f"Progress: {stats.inserted} rows imported, {stats.skipped} duplicates skipped, "
                    f"{stats.failed} failed..."
                )
                log.log(progress)
                logger.info(progress)

    ## -- flush any remainder below the batch threshold
    if batch:
        _flush_batch(batch, batch_number, insert_batch=insert_batch, stats=stats, log=log)
        batch = []

    log.log("Import completed")
    return stats.finish()
