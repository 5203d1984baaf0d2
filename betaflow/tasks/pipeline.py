# betaflow/tasks/pipeline.py

import asyncio
import csv
import json
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from betaflow.core.config import settings
from betaflow.core.store import ImportStore, StoreError
from betaflow.schemas.entities import Coercion, EntityKind, get_schema
from betaflow.schemas.validation import ImportOutcome, ImportRejected, ProgressEvent, RowError
from betaflow.schemas.validators import validate_rows
from betaflow.utils.parser import RawRow, parse_csv

logger = logging.getLogger(__name__)

TransformedRecord = Dict[str, Any]
ProgressCallback = Callable[[ProgressEvent], Awaitable[None]]
StageCallback = Callable[[str], Awaitable[None]]
CancelCheck = Callable[[], Awaitable[bool]]


def _to_number(raw: str) -> Optional[float]:
    try:
        value = float(raw.strip())
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _to_integer(raw: str) -> Optional[int]:
    number = _to_number(raw)
    return int(number) if number is not None else None


def _to_json(raw: str) -> Any:
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


COERCERS: Dict[Coercion, Callable[[str], Any]] = {
    Coercion.NUMBER: _to_number,
    Coercion.INTEGER: _to_integer,
    Coercion.JSON: _to_json,
}


def transform_row(row: RawRow, kind: EntityKind) -> TransformedRecord:
    """
    Map a validated CSV row to a storage-ready record.

    Never raises: an optional value that does not parse falls back to the
    rule's default (usually None) instead of failing the row.
    """
    schema = get_schema(kind)
    record: TransformedRecord = {}

    for field, value in row.items():
        if field in schema.required_fields:
            record[field] = value
        else:
            # Clean up empty strings → None for optional columns
            record[field] = value if value.strip() else None

    for rule in schema.coercions:
        raw = row.get(rule.field)
        coerced = COERCERS[rule.coercion](raw) if raw is not None else None
        record[rule.field] = coerced if coerced is not None else rule.default

    return record


class _Tally:
    """Mutable accumulator behind an ImportOutcome; only the driver writes to it."""

    def __init__(self, kind: EntityKind, total: int):
        self.kind = kind
        self.total = total
        self.processed = 0
        self.success = 0
        self.failure = 0
        self.row_errors: List[RowError] = []
        self.cancelled = False

    def fail(self, row: int, message: str) -> None:
        self.failure += 1
        self.row_errors.append(RowError(row=row, message=message))

    def freeze(self, skipped_lines: Sequence[int] = ()) -> ImportOutcome:
        return ImportOutcome(
            kind=self.kind,
            total=self.total,
            processed=self.processed,
            success=self.success,
            failure=self.failure,
            row_errors=list(self.row_errors),
            skipped=len(skipped_lines),
            skipped_lines=list(skipped_lines),
            cancelled=self.cancelled,
        )


async def _insert_with_retry(
    store: ImportStore,
    kind: EntityKind,
    record: TransformedRecord,
    insert_timeout: float,
    max_retries: int,
    retry_backoff: float,
) -> None:
    attempt = 0
    while True:
        try:
            await asyncio.wait_for(store.insert(kind, record), timeout=insert_timeout)
            return
        except StoreError as e:
            if not e.transient or attempt >= max_retries:
                raise
            delay = retry_backoff * (2 ** attempt)
            attempt += 1
            logger.warning(f"Transient store error ({e}); retry {attempt}/{max_retries} in {delay:.2f}s")
            await asyncio.sleep(delay)


async def persist_records(
    records: Sequence[TransformedRecord],
    kind: EntityKind,
    store: ImportStore,
    *,
    insert_timeout: float,
    max_retries: int = 0,
    retry_backoff: float = 0.0,
    on_progress: Optional[ProgressCallback] = None,
    should_cancel: Optional[CancelCheck] = None,
    skipped_lines: Sequence[int] = (),
) -> ImportOutcome:
    """
    Insert ``records`` one at a time, in order.

    A failing row is recorded as ``Row <n>`` and the loop moves on; nothing is
    rolled back. Cancellation is honoured between rows and returns whatever
    was done so far.
    """
    tally = _Tally(kind, total=len(records))

    for idx, record in enumerate(records):
        if should_cancel is not None and await should_cancel():
            logger.info(f"Import of {kind.value} cancelled after {tally.processed}/{tally.total} rows")
            tally.cancelled = True
            break

        row_number = idx + 1
        try:
            await _insert_with_retry(store, kind, record, insert_timeout, max_retries, retry_backoff)
        except StoreError as e:
            logger.warning(f"Row {row_number} rejected by store: {e}")
            tally.fail(row_number, str(e))
        except asyncio.TimeoutError:
            logger.warning(f"Row {row_number} timed out after {insert_timeout:g}s")
            tally.fail(row_number, f"Insert timed out after {insert_timeout:g}s")
        except Exception as e:
            logger.exception(f"Unexpected error inserting row {row_number}")
            tally.fail(row_number, f"Unexpected error: {e}")
        else:
            tally.success += 1

        tally.processed += 1
        if on_progress is not None:
            await on_progress(ProgressEvent(processed=tally.processed, total=tally.total))

    return tally.freeze(skipped_lines)


def read_rows(text: str) -> Tuple[List[RawRow], List[int]]:
    document = parse_csv(text)
    try:
        return list(document), document.skipped_lines
    except csv.Error as e:
        raise ImportRejected("structural", [f"Could not parse CSV file: {e}"]) from e


class PreparedImport:
    def __init__(self, kind: EntityKind, records: List[TransformedRecord], skipped_lines: List[int]):
        self.kind = kind
        self.records = records
        self.skipped_lines = skipped_lines


def prepare_import(kind: EntityKind, text: str) -> PreparedImport:
    """Everything up to persistence: parse, validate and transform without touching a store."""
    rows, skipped_lines = read_rows(text)
    validated = validate_rows(rows, get_schema(kind))
    return PreparedImport(kind, [transform_row(row, kind) for row in validated], skipped_lines)


class ImportPipeline:
    """
    Parse → validate → transform → persist for one uploaded file.

    ``run`` raises ImportRejected when the file is refused before any insert;
    otherwise it always returns an ImportOutcome, even if every row failed.
    """

    def __init__(
        self,
        store: ImportStore,
        *,
        insert_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ):
        self.store = store
        self.insert_timeout = settings.INSERT_TIMEOUT_SECONDS if insert_timeout is None else insert_timeout
        self.max_retries = settings.INSERT_MAX_RETRIES if max_retries is None else max_retries
        self.retry_backoff = settings.INSERT_RETRY_BACKOFF_SECONDS if retry_backoff is None else retry_backoff

    async def run(
        self,
        kind: EntityKind,
        text: str,
        *,
        on_stage: Optional[StageCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        should_cancel: Optional[CancelCheck] = None,
    ) -> ImportOutcome:
        async def stage(name: str) -> None:
            logger.debug(f"{kind.value} import: {name}")
            if on_stage is not None:
                await on_stage(name)

        await stage("parsing")
        rows, skipped_lines = read_rows(text)
        if skipped_lines:
            logger.warning(f"Skipped {len(skipped_lines)} line(s) with a mismatched field count: {skipped_lines}")

        await stage("validating")
        validated = validate_rows(rows, get_schema(kind))

        await stage("transforming")
        records = [transform_row(row, kind) for row in validated]

        await stage("importing")
        outcome = await persist_records(
            records,
            kind,
            self.store,
            insert_timeout=self.insert_timeout,
            max_retries=self.max_retries,
            retry_backoff=self.retry_backoff,
            on_progress=on_progress,
            should_cancel=should_cancel,
            skipped_lines=skipped_lines,
        )
        logger.info(
            f"{kind.value} import finished: {outcome.success} succeeded, "
            f"{outcome.failure} failed, {outcome.skipped} skipped"
        )
        return outcome
