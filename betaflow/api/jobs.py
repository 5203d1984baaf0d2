# betaflow/api/jobs.py
import csv
import io

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from betaflow.core.auth import AuthenticatedUser, get_current_user
from betaflow.models.db import ImportJob
from betaflow.tasks.import_tasks import ACTIVE_STATUSES

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def job_summary(job: ImportJob) -> dict:
    outcome = job.meta.get("outcome") or {}
    return {
        "id": job.id,
        "kind": job.kind,
        "status": job.status,
        "created_at": job.created_at.isoformat(),
        "filename": job.meta.get("filename", "unknown.csv"),
        "progress": job.meta.get("progress"),
        "success": outcome.get("success", 0),
        "failure": outcome.get("failure", 0),
        "skipped": outcome.get("skipped", 0),
    }


async def get_user_job(job_id: int, user: AuthenticatedUser) -> ImportJob:
    job = await ImportJob.get_or_none(id=job_id, user_id=user.id)
    if not job:
        raise HTTPException(404, "Job not found")
    return job


@router.get("")
async def list_jobs(current_user: AuthenticatedUser = Depends(get_current_user)):
    jobs = await ImportJob.filter(user_id=current_user.id).order_by("-created_at")
    return [job_summary(j) for j in jobs]


@router.get("/{job_id}")
async def get_job(job_id: int, current_user: AuthenticatedUser = Depends(get_current_user)):
    job = await get_user_job(job_id, current_user)
    return {
        **job_summary(job),
        "outcome": job.meta.get("outcome"),
        "rejection": job.meta.get("rejection"),
        "error": job.meta.get("error"),
    }


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: int, current_user: AuthenticatedUser = Depends(get_current_user)):
    job = await get_user_job(job_id, current_user)

    # Queued jobs never start; running ones stop before their next row.
    # A worker can claim the job between the two updates
    updated = await ImportJob.filter(id=job.id, status="queued").update(status="cancelled")
    if not updated:
        updated = await ImportJob.filter(id=job.id, status__in=ACTIVE_STATUSES).update(status="cancelling")

    await job.refresh_from_db(fields=["status"])
    if not updated:
        raise HTTPException(409, f"Job is already {job.status}")
    return {"id": job.id, "status": job.status}


@router.get("/{job_id}/errors")
async def download_errors(job_id: int, current_user: AuthenticatedUser = Depends(get_current_user)):
    job = await get_user_job(job_id, current_user)

    rejection = job.meta.get("rejection")
    outcome = job.meta.get("outcome") or {}
    if rejection:
        rows = [("", message) for message in rejection["errors"]]
    else:
        rows = [(e["row"], e["message"]) for e in outcome.get("row_errors", [])]
    if job.meta.get("error"):
        rows.append(("", f"Import stopped: {job.meta['error']}"))

    if not rows:
        return {"message": "No errors – all rows imported!"}

    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(["Row #", "Error"])
    writer.writerows(rows)

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename=job_{job_id}_errors.csv"},
    )
