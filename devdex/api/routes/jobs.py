"""Analysis job routes (FastAPI).

Submitting queues a job and hands the project to the dispatcher; the
response returns immediately and clients poll the job for its outcome.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from devdex.core.auth import AuthContext
from ..deps import (
    get_dispatcher,
    get_job_service,
    get_project_manager,
    require_admin,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


# ── Request/Response models ──────────────────────────────────────────────

class AnalysisRequest(BaseModel):
    file_ids: Optional[List[str]] = None     # defaults to every file of the project


# ── Routes ───────────────────────────────────────────────────────────────

@router.post("/projects/{project_id}/analysis", status_code=202)
async def submit_analysis(
    project_id: str,
    data: AnalysisRequest,
    auth: AuthContext = Depends(require_admin),
    pm=Depends(get_project_manager),
    job_service=Depends(get_job_service),
    dispatcher=Depends(get_dispatcher),
):
    """Queue an analysis of the project's files."""
    file_ids = data.file_ids
    if file_ids is None:
        if not pm.project_exists(project_id):
            raise HTTPException(status_code=404, detail="Project not found")
        file_ids = [f["file_id"] for f in pm.get_project_files(project_id)]
    if not file_ids:
        raise HTTPException(status_code=400, detail="No files to analyze")

    job = job_service.submit(project_id, file_ids)
    dispatcher.schedule(job["project_id"])
    return job


@router.get("/projects/{project_id}/analysis")
async def list_jobs(project_id: str, job_service=Depends(get_job_service)):
    return job_service.list_jobs(project_id)


@router.get("/projects/{project_id}/analysis/latest")
async def latest_job(project_id: str, job_service=Depends(get_job_service)):
    job = job_service.latest_job(project_id)
    if job is None:
        raise HTTPException(status_code=404, detail="No analysis jobs for this project")
    return job


@router.get("/analysis/{job_id}")
async def get_job(job_id: str, job_service=Depends(get_job_service)):
    return job_service.get_job(job_id)


@router.post("/analysis/{job_id}/retry")
async def retry_job(
    job_id: str,
    wait: bool = Query(False, description="Wait for the retried run and return its outcome"),
    auth: AuthContext = Depends(require_admin),
    job_service=Depends(get_job_service),
    dispatcher=Depends(get_dispatcher),
):
    """Requeue an errored job.

    The run always goes through the dispatcher so any job queued meanwhile
    is picked up after it. By default the queued job is returned; with
    ``wait=true`` the response waits for the project's queue to drain.
    """
    job = await job_service.retry(job_id, run_now=False)
    dispatcher.schedule(job["project_id"])
    if wait:
        await dispatcher.wait(job["project_id"])
        return job_service.get_job(job["job_id"])
    return job
