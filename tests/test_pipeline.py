from __future__ import annotations

import asyncio
from typing import Any, Dict, List

import pytest

from betaflow.core.store import ImportStore, StoreError
from betaflow.schemas.entities import EntityKind
from betaflow.schemas.validation import ImportRejected, ProgressEvent
from betaflow.tasks.pipeline import ImportPipeline, persist_records, prepare_import

from conftest import RAW_MATERIALS_CSV, FakeStore


def pipeline(store: ImportStore, **kwargs: Any) -> ImportPipeline:
    kwargs.setdefault("insert_timeout", 1.0)
    kwargs.setdefault("max_retries", 0)
    kwargs.setdefault("retry_backoff", 0.0)
    return ImportPipeline(store, **kwargs)


async def test_all_valid_raw_materials_are_imported(store: FakeStore) -> None:
    outcome = await pipeline(store).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV)

    assert (outcome.success, outcome.failure, outcome.errors) == (3, 0, [])
    assert outcome.status == "completed"
    assert [r["sku"] for r in store.inserted] == ["RM-001", "RM-002", "RM-003"]
    assert store.inserted[0]["current_stock"] == 120.0


@pytest.mark.parametrize(
    "kind, header",
    [
        (EntityKind.RAW_MATERIAL, "name,sku,unit,minimum_stock"),
        (EntityKind.PRODUCT, "name,category,unit_price"),
        (EntityKind.EMPLOYEE, "full_name,role,department"),
        (EntityKind.MACHINE, "name,type,status"),
    ],
)
async def test_missing_header_rejects_before_any_insert(store: FakeStore, kind: EntityKind, header: str) -> None:
    width = len(header.split(","))
    text = header + "\n" + ",".join(["x"] * width) + "\n"

    with pytest.raises(ImportRejected) as ctx:
        await pipeline(store).run(kind, text)

    assert ctx.value.tier == "structural"
    assert store.calls == []


async def test_missing_sku_message_names_only_sku(store: FakeStore) -> None:
    text = "name,category,unit_price\nGear,Parts,10\n"

    with pytest.raises(ImportRejected) as ctx:
        await pipeline(store).run(EntityKind.PRODUCT, text)

    assert ctx.value.errors == ["Missing required columns: sku"]


async def test_one_bad_email_rejects_the_whole_file(store: FakeStore) -> None:
    text = (
        "full_name,email,role,department\n"
        "Sarah Johnson,sarah@betaflow.com,production_manager,Production\n"
        "Mike Rodriguez,mike@betaflow.com,machine_operator,Assembly\n"
        "Bad Row,not-an-email,machine_operator,Assembly\n"
        "Lisa Chen,lisa@betaflow.com,operations_admin,Operations\n"
    )

    with pytest.raises(ImportRejected) as ctx:
        await pipeline(store).run(EntityKind.EMPLOYEE, text)

    assert ctx.value.tier == "semantic"
    assert ctx.value.errors == ["Row 3: Invalid email format 'not-an-email'"]
    assert store.calls == []


async def test_unparseable_unit_cost_still_reaches_the_store(store: FakeStore) -> None:
    text = "name,sku,unit,current_stock,minimum_stock,unit_cost\nSteel,RM-1,kg,1,1,abc\n"

    outcome = await pipeline(store).run(EntityKind.RAW_MATERIAL, text)

    assert outcome.success == 1
    assert store.inserted[0]["unit_cost"] is None


async def test_ragged_lines_are_skipped_not_counted(store: FakeStore) -> None:
    text = RAW_MATERIALS_CSV + "Broken,RM-009,kg\n"

    outcome = await pipeline(store).run(EntityKind.RAW_MATERIAL, text)

    assert outcome.success + outcome.failure == 3
    assert outcome.skipped == 1
    assert outcome.skipped_lines == [5]
    assert all(record["sku"] != "RM-009" for _, record in store.calls)


async def test_only_ragged_lines_means_no_data(store: FakeStore) -> None:
    with pytest.raises(ImportRejected) as ctx:
        await pipeline(store).run(EntityKind.RAW_MATERIAL, "name,sku\nA\nB\n")

    assert ctx.value.errors == ["No valid data found in CSV file"]


async def test_store_failures_are_independent_per_row() -> None:
    text = (
        "name,sku,category,unit_price\n"
        "A,P-1,Parts,1\nB,P-2,Parts,2\nC,P-3,Parts,3\nD,P-4,Parts,4\nE,P-5,Parts,5\n"
    )
    store = FakeStore(
        fail_when=lambda r: "duplicate key value violates unique constraint" if r["sku"] in ("P-2", "P-4") else None
    )

    outcome = await pipeline(store).run(EntityKind.PRODUCT, text)

    assert outcome.success == 3
    assert outcome.failure == 2
    assert outcome.errors == [
        "Row 2: duplicate key value violates unique constraint",
        "Row 4: duplicate key value violates unique constraint",
    ]
    assert [r["sku"] for r in store.inserted] == ["P-1", "P-3", "P-5"]
    assert outcome.status == "partial_success"


async def test_every_row_failing_still_returns_a_report() -> None:
    store = FakeStore(fail_when=lambda r: "permission denied")

    outcome = await pipeline(store).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV)

    assert (outcome.success, outcome.failure) == (0, 3)
    assert outcome.status == "failed"


class ExplodingStore(ImportStore):
    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        raise RuntimeError("socket closed")


async def test_unexpected_exceptions_become_row_failures() -> None:
    outcome = await pipeline(ExplodingStore()).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV)

    assert outcome.failure == 3
    assert outcome.errors[0] == "Row 1: Unexpected error: socket closed"


class SlowStore(ImportStore):
    def __init__(self, slow_sku: str) -> None:
        self.slow_sku = slow_sku
        self.inserted: List[str] = []

    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        if record["sku"] == self.slow_sku:
            await asyncio.sleep(5)
        self.inserted.append(record["sku"])


async def test_timeout_fails_only_that_row() -> None:
    store = SlowStore("RM-002")

    outcome = await pipeline(store, insert_timeout=0.05).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV)

    assert outcome.success == 2
    assert outcome.errors == ["Row 2: Insert timed out after 0.05s"]
    assert store.inserted == ["RM-001", "RM-003"]


class FlakyStore(ImportStore):
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.attempts = 0

    async def insert(self, kind: EntityKind, record: Dict[str, Any]) -> None:
        self.attempts += 1
        if self.attempts <= self.failures:
            raise StoreError("upstream unavailable", transient=True)


async def test_transient_errors_are_retried() -> None:
    store = FlakyStore(failures=2)
    records = [{"name": "A", "sku": "1"}]

    outcome = await persist_records(records, EntityKind.PRODUCT, store, insert_timeout=1, max_retries=2)

    assert outcome.success == 1
    assert store.attempts == 3


async def test_retries_are_bounded() -> None:
    store = FlakyStore(failures=10)
    records = [{"name": "A", "sku": "1"}]

    outcome = await persist_records(records, EntityKind.PRODUCT, store, insert_timeout=1, max_retries=1)

    assert outcome.failure == 1
    assert outcome.errors == ["Row 1: upstream unavailable"]
    assert store.attempts == 2


async def test_permanent_errors_are_not_retried() -> None:
    store = FakeStore(fail_when=lambda r: "duplicate")

    outcome = await persist_records([{"sku": "1"}], EntityKind.PRODUCT, store, insert_timeout=1, max_retries=3)

    assert outcome.failure == 1
    assert len(store.calls) == 1


async def test_progress_is_reported_after_each_row(store: FakeStore) -> None:
    events: List[ProgressEvent] = []

    async def on_progress(event: ProgressEvent) -> None:
        events.append(event)

    await pipeline(store).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV, on_progress=on_progress)

    assert [(e.processed, e.total) for e in events] == [(1, 3), (2, 3), (3, 3)]
    assert events[-1].fraction == 1.0


async def test_stages_are_announced_in_order(store: FakeStore) -> None:
    stages: List[str] = []

    async def on_stage(name: str) -> None:
        stages.append(name)

    await pipeline(store).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV, on_stage=on_stage)

    assert stages == ["parsing", "validating", "transforming", "importing"]


async def test_rejected_import_stops_after_validating(store: FakeStore) -> None:
    stages: List[str] = []

    async def on_stage(name: str) -> None:
        stages.append(name)

    with pytest.raises(ImportRejected):
        await pipeline(store).run(EntityKind.PRODUCT, "name\nA\n", on_stage=on_stage)

    assert stages == ["parsing", "validating"]


async def test_cancellation_keeps_partial_results(store: FakeStore) -> None:
    async def should_cancel() -> bool:
        return len(store.inserted) >= 2

    outcome = await pipeline(store).run(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV, should_cancel=should_cancel)

    assert outcome.cancelled
    assert outcome.status == "cancelled"
    assert (outcome.processed, outcome.total) == (2, 3)
    assert outcome.success + outcome.failure == outcome.processed
    assert len(store.inserted) == 2


def test_prepare_import_stops_before_persistence() -> None:
    prepared = prepare_import(EntityKind.RAW_MATERIAL, RAW_MATERIALS_CSV + "short,line\n")

    assert len(prepared.records) == 3
    assert prepared.skipped_lines == [5]
    assert prepared.records[2]["unit_cost"] == 12.0


def test_untokenisable_csv_is_a_structural_rejection() -> None:
    text = "name,sku,category,unit_price\n" + "x" * 200_000 + ",P-1,Parts,1\n"

    with pytest.raises(ImportRejected) as ctx:
        prepare_import(EntityKind.PRODUCT, text)

    assert ctx.value.tier == "structural"
    assert ctx.value.errors[0].startswith("Could not parse CSV file")


async def test_repeated_header_column_rejects_before_any_insert(store: FakeStore) -> None:
    text = "name,sku,unit,current_stock,minimum_stock,sku\nSteel,RM-1,kg,1,1,RM-2\n"

    with pytest.raises(ImportRejected) as ctx:
        await pipeline(store).run(EntityKind.RAW_MATERIAL, text)

    assert ctx.value.tier == "structural"
    assert ctx.value.errors == ["Could not parse CSV file: Duplicate column name(s) in header: sku"]
    assert store.calls == []
