"""
Batch insertion of validated pageviews, with duplicate pre-filtering and retries.

Duplicates are filtered at the application layer *before* the bulk insert: a unique
violation inside a Postgres transaction aborts the whole transaction, so the insert
only ever carries records whose natural key is not already stored.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from pageview_pipeline.db.pageviews import CompositeKey, PageviewStore
from pageview_pipeline.parsing.payload import PageviewPayload

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3                 # retries after the first attempt, so 4 attempts in total
INITIAL_RETRY_DELAY_S = 1.0     # 1s, 2s, 4s
TRANSACTION_TIMEOUT_S = 60.0    # pool wait bound, and statement timeout inside the transaction

# SQLSTATEs that will never succeed on retry
PERMANENT_SQLSTATES: dict[str, str] = {
    "23505": "Duplicate pageview skipped",          # unique_violation
    "23503": "Foreign key constraint violation",    # foreign_key_violation
    "P0002": "Record not found",                    # no_data_found
}

# whole SQLSTATE classes that will never succeed on retry
PERMANENT_SQLSTATE_CLASSES: dict[str, str] = {
    "22": "Invalid data value",     # data_exception, ex: 22003 numeric_value_out_of_range
}



@dataclass(frozen=True)
class BatchInsertResult:
    """
    Outcome of one batch. Built once, never updated.

    Always: `inserted + skipped + failed == len(batch)`, and `success == (failed == 0)`.
    """
    inserted: int
    skipped: int
    failed: int
    batch_number: int | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.failed == 0

    @property
    def total(self) -> int:
        return self.inserted + self.skipped + self.failed



@dataclass(frozen=True)
class RetryPolicy:
    """How often, and how patiently, transient failures are retried."""
    max_retries: int = MAX_RETRIES
    base_delay_s: float = INITIAL_RETRY_DELAY_S

    def retrying(
        self,
        *,
        sleep: Callable[[float], None] = time.sleep,
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> Retrying:
        """
        A tenacity retryer for this policy: `1 + max_retries` attempts, waiting
        `base * 2**n` after the n-th (0-based) failed one.

        Permanent errors are not retried, they surface from the first attempt.
        """
        return Retrying(
            retry=retry_if_exception(lambda e: not is_permanent_error(e)),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=self.base_delay_s, min=0),
            sleep=sleep,
            before_sleep=before_sleep,
            reraise=False,
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


class RetryExhaustedError(Exception):
    """A transient failure that outlived every retry. Chains the last underlying error."""

    def __init__(self, message: str, *, attempts: int, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.attempts = attempts
        self.code = code



def error_code(error: BaseException) -> str | None:
    """SQLSTATE of a psycopg error, `None` for anything else."""
    code = getattr(error, "sqlstate", None)
    return code if isinstance(code, str) else None


def is_permanent_error(error: BaseException) -> bool:
    """
    Constraint violations, not-found and data exceptions (bad values, out of
    range numbers) are permanent, everything else is transient.
    """
    code = error_code(error)
    if code is None:
        return False
    return code in PERMANENT_SQLSTATES or code[:2] in PERMANENT_SQLSTATE_CLASSES


def format_database_error(error: BaseException) -> str:
    """User facing message for a store error."""
    if isinstance(error, RetryExhaustedError):
        return f"{error.message} (after {error.attempts} attempts)"
    code = error_code(error)
    if code in PERMANENT_SQLSTATES:
        return PERMANENT_SQLSTATES[code]
    if code is not None and code[:2] in PERMANENT_SQLSTATE_CLASSES:
        detail = str(error)
        prefix = PERMANENT_SQLSTATE_CLASSES[code[:2]]
        return f"{prefix}: {detail}" if detail else prefix
    return str(error) or type(error).__name__



def retry_with_backoff(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    batch_number: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation`, retrying transient failures with exponential backoff.

    - permanent errors are re-raised immediately, never retried
    - at most `1 + policy.max_retries` attempts
    - exhausting retries raises `RetryExhaustedError` carrying the last message and SQLSTATE

    All retry state (attempt, last error, next delay) lives in this call.
    """
    attempts = policy.max_retries + 1

    def log_retry(state: RetryCallState) -> None:
        e = state.outcome.exception() if state.outcome else None
        delay = state.next_action.sleep if state.next_action else 0.0
        logger.warning(
            "database operation failed (attempt %d/%d), retrying in %.2fs: batch=%s code=%s error=%s",
            state.attempt_number, attempts, delay, batch_number, error_code(e) if e else None, e,
        )

    retryer = policy.retrying(sleep=sleep, before_sleep=log_retry)
    try:
        return retryer(operation)
    except RetryError as exhausted:
        last_error = exhausted.last_attempt.exception()
        if last_error is None:
            raise
        raise RetryExhaustedError(
            str(last_error) or type(last_error).__name__,
            attempts=exhausted.last_attempt.attempt_number,
            code=error_code(last_error),
        ) from last_error



class _BulkInsertRejected(Exception):
    """Internal: carries a permanent bulk insert failure out of its transaction."""

    def __init__(self, cause: Exception, *, new_count: int, skipped: int) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.new_count = new_count
        self.skipped = skipped


def partition_new_records(
    records: Sequence[PageviewPayload],
    existing: set[CompositeKey],
) -> tuple[list[PageviewPayload], int]:
    """
    Split `records` into those to insert and a count of duplicates.

    A record is a duplicate only when its key is comparable (no NULL part) and
    already stored. Duplicates within `records` itself are left to the store's
    conflict skip.
    """
    new_records: list[PageviewPayload] = []
    skipped = 0
    for r in records:
        key = CompositeKey.of(r)
        if key.is_comparable and key in existing:
            skipped += 1
        else:
            new_records.append(r)
    return new_records, skipped


def _insert_with_prefilter(
    store: PageviewStore,
    records: Sequence[PageviewPayload],
    *,
    batch_number: int | None,
    timeout_s: float,
) -> BatchInsertResult:
    """
    One transaction: query existing keys, drop duplicates, bulk insert the rest.

    A permanent error from the bulk insert rolls the transaction back and fails
    every new record (no partial credit), duplicates stay counted as skipped.
    Transient errors propagate so the caller can retry the whole transaction.
    """
    try:
        with store.transaction(timeout_s=timeout_s) as tx:
            keys = [CompositeKey.of(r) for r in records]
            existing = tx.fetch_existing_keys(keys)
            new_records, skipped = partition_new_records(records, existing)

            if not new_records:
                return BatchInsertResult(inserted=0, skipped=skipped, failed=0, batch_number=batch_number)

            try:
                inserted = tx.insert_pageviews(new_records)
            except Exception as e:
                if not is_permanent_error(e):
                    raise
                # leave the `with` by raising, so the transaction is rolled back.
                raise _BulkInsertRejected(e, new_count=len(new_records), skipped=skipped) from e

    except _BulkInsertRejected as rejected:
        logger.error(
            "bulk insert failed: batch=%s new_records=%d code=%s error=%s",
            batch_number, rejected.new_count, error_code(rejected.cause), rejected.cause,
        )
        return BatchInsertResult(
            inserted=0,
            skipped=rejected.skipped,
            failed=rejected.new_count,
            batch_number=batch_number,
            error=format_database_error(rejected.cause),
        )

    # rows the store skipped on conflict lost a race (or repeat a key within this batch).
    raced = len(new_records) - inserted
    return BatchInsertResult(
        inserted=inserted,
        skipped=skipped + raced,
        failed=0,
        batch_number=batch_number,
    )



def insert_pageview_batch(
    store: PageviewStore,
    records: Sequence[PageviewPayload],
    batch_number: int | None = None,
    *,
    policy: RetryPolicy = DEFAULT_RETRY_POLICY,
    timeout_s: float = TRANSACTION_TIMEOUT_S,
    sleep: Callable[[float], None] = time.sleep,
) -> BatchInsertResult:
    """
    Insert a batch of validated pageviews exactly once per natural key.

    - an empty batch returns a zeroed, successful result without touching the store
    - transient failures retry the whole transaction per `policy`
    - permanent or exhausted failures mark every record of the batch failed

    Never raises on store errors: they are reported on the result.
    """
    if not records:
        return BatchInsertResult(inserted=0, skipped=0, failed=0, batch_number=batch_number)

    try:
        return retry_with_backoff(
            lambda: _insert_with_prefilter(store, records, batch_number=batch_number, timeout_s=timeout_s),
            policy=policy,
            batch_number=batch_number,
            sleep=sleep,
        )
    except Exception as e:
        logger.error(
            "batch insert failed after retries: batch=%s records=%d code=%s error=%s",
            batch_number, len(records), getattr(e, "code", None) or error_code(e), e,
        )
        return BatchInsertResult(
            inserted=0,
            skipped=0,
            failed=len(records),
            batch_number=batch_number,
            error=format_database_error(e),
        )
