# betaflow/tasks/import_tasks.py

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from celery import Celery
from tortoise import Tortoise

from betaflow.core.config import settings
from betaflow.core.db import TORTOISE_ORM
from betaflow.core.redis import publish_progress
from betaflow.core.store import ImportStore, build_store
from betaflow.models.db import ImportJob
from betaflow.schemas.entities import EntityKind
from betaflow.schemas.validation import ImportRejected, ProgressEvent
from betaflow.tasks.pipeline import ImportPipeline

logger = logging.getLogger(__name__)

Publisher = Callable[[int, Dict[str, Any]], Awaitable[None]]

ACTIVE_STATUSES = ("parsing", "validating", "transforming", "importing")

celery_app = Celery(
    "betaflow_import",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_track_started=True,
    worker_prefetch_multiplier=1,  # Imports are long-running and sequential
    task_acks_late=True,
)


async def run_import_job(job_id: int, store: ImportStore, publish: Optional[Publisher] = None) -> Optional[ImportJob]:
    """
    Run one queued ImportJob to completion.

    The job row mirrors the pipeline: its status follows each stage, progress
    lands in ``meta["progress"]`` and the final outcome (or rejection) in
    ``meta``. Jobs that are no longer queued are left alone, which keeps a
    retried task from importing the same file twice. A run that breaks
    midway ends as ``failed`` with the reason in ``meta["error"]`` and the
    exception is re-raised for the worker to log.
    """
    # Claiming and the status check are one statement, so a cancel either wins or sees the job running
    claimed = await ImportJob.filter(id=job_id, status="queued").update(status="parsing")
    if not claimed:
        current = await ImportJob.filter(id=job_id).values_list("status", flat=True)
        logger.warning(f"Import job {job_id} is '{current[0] if current else 'missing'}', not starting it")
        return None
    job = await ImportJob.get(id=job_id)

    async def notify(message: Dict[str, Any]) -> None:
        if publish is not None:
            await publish(job.id, message)

    async def on_stage(stage: str) -> None:
        await ImportJob.filter(id=job.id, status__in=ACTIVE_STATUSES).update(status=stage)
        job.status = stage
        await notify({"status": stage})

    async def on_progress(event: ProgressEvent) -> None:
        job.meta["progress"] = event.model_dump()
        await job.save(update_fields=["meta"])
        await notify({"status": job.status, "progress": event.model_dump()})

    async def should_cancel() -> bool:
        current = await ImportJob.filter(id=job.id).values_list("status", flat=True)
        return bool(current) and current[0] == "cancelling"

    kind = EntityKind(job.kind)
    pipeline = ImportPipeline(store)
    try:
        try:
            outcome = await pipeline.run(
                kind,
                job.meta.get("csv_content", ""),
                on_stage=on_stage,
                on_progress=on_progress,
                should_cancel=should_cancel,
            )
        except ImportRejected as e:
            logger.info(f"Import job {job_id} rejected ({e.tier}): {e}")
            job.status = "rejected"
            job.meta["rejection"] = e.to_dict()
            final = {"status": job.status, "rejection": e.to_dict(), "final": True}
        else:
            job.status = outcome.status
            job.meta["outcome"] = outcome.model_dump(mode="json")
            final = {"status": job.status, "outcome": job.meta["outcome"], "final": True}
        await job.save(update_fields=["status", "meta"])
    except Exception as e:
        logger.exception(f"Import job {job_id} failed while {job.status}")
        job.status = "failed"
        job.meta["error"] = str(e)
        await ImportJob.filter(id=job.id).update(status="failed", meta=job.meta)
        try:
            await notify({"status": job.status, "error": str(e), "final": True})
        except Exception:
            logger.warning(f"Could not announce failure of import job {job_id}")
        raise

    await notify(final)
    return job


async def _run_in_worker(job_id: int) -> None:
    await Tortoise.init(config=TORTOISE_ORM)
    store = build_store()
    try:
        await run_import_job(job_id, store, publish=publish_progress)
    finally:
        await store.aclose()
        await Tortoise.close_connections()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=30)
def run_import_job_task(self, job_id: int):
    try:
        asyncio.run(_run_in_worker(job_id))
    except Exception as exc:
        logger.exception(f"Import job {job_id} failed catastrophically")
        raise self.retry(exc=exc)
