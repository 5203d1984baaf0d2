# betaflow/api/imports.py

import logging
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from fastapi.responses import Response

from betaflow.core.auth import AuthenticatedUser, get_current_user
from betaflow.core.config import settings
from betaflow.core.store import ImportStore, get_store
from betaflow.models.db import ImportJob
from betaflow.schemas.entities import (
    EntityKind,
    generate_template,
    get_schema,
    list_supported_kinds,
    template_filename,
)
from betaflow.schemas.validation import ImportOutcome, ImportRejected
from betaflow.tasks.import_tasks import run_import_job_task
from betaflow.tasks.pipeline import ImportPipeline, prepare_import

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/import", tags=["import"])

PREVIEW_ROWS = 50


async def read_upload(file: UploadFile) -> str:
    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(400, "Please select a CSV file.")

    content = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(413, f"File is larger than {settings.MAX_UPLOAD_BYTES} bytes.")
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(400, "Invalid file encoding — please save as UTF-8 (with or without BOM).")


def rejection_response(e: ImportRejected) -> HTTPException:
    return HTTPException(422, detail=e.to_dict())


@router.get("/kinds")
async def list_kinds() -> List[Dict[str, Any]]:
    result = []
    for kind in list_supported_kinds():
        schema = get_schema(kind)
        result.append({
            "kind": kind.value,
            "title": schema.title,
            "description": schema.description,
            "required_columns": list(schema.required_fields),
            "template_filename": template_filename(kind),
        })
    return result


@router.get("/{kind}/template")
async def download_template(kind: EntityKind):
    return Response(
        content=generate_template(kind),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={template_filename(kind)}"},
    )


@router.post("/{kind}/validate")
async def validate_upload(
    kind: EntityKind,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
):
    text = await read_upload(file)
    try:
        prepared = prepare_import(kind, text)
    except ImportRejected as e:
        raise rejection_response(e)

    return {
        "kind": kind.value,
        "total_rows": len(prepared.records),
        "skipped_lines": prepared.skipped_lines,
        "preview_rows": prepared.records[:PREVIEW_ROWS],
    }


@router.post("/{kind}", response_model=ImportOutcome)
async def run_import(
    kind: EntityKind,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
    store: ImportStore = Depends(get_store),
):
    text = await read_upload(file)
    logger.info(f"User {user.id} importing {kind.value} from {file.filename}")
    try:
        return await ImportPipeline(store).run(kind, text)
    except ImportRejected as e:
        raise rejection_response(e)


@router.post("/{kind}/jobs", status_code=status.HTTP_202_ACCEPTED)
async def queue_import(
    kind: EntityKind,
    file: UploadFile = File(...),
    user: AuthenticatedUser = Depends(get_current_user),
):
    text = await read_upload(file)
    job = await ImportJob.create(
        user_id=user.id,
        kind=kind.value,
        status="queued",
        meta={
            "filename": file.filename,
            "csv_content": text,
        },
    )
    run_import_job_task.delay(job_id=job.id)
    return {"job_id": job.id, "status": job.status}
