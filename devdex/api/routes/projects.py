"""Project catalog and file upload routes (FastAPI).

Reads are public; every write needs an admin session.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from pydantic import BaseModel

from devdex.core.auth import AuthContext
from devdex.core.ingestion import IncomingFile
from ..deps import (
    get_dispatcher,
    get_ingestion,
    get_job_service,
    get_project_manager,
    get_settings,
    require_admin,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


# ── Request/Response models ──────────────────────────────────────────────

class ProjectSave(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    summary_human: Optional[str] = None
    demo_url: Optional[str] = None
    repo_url: Optional[str] = None
    lessons_learned: Optional[List[str]] = None
    next_steps: Optional[str] = None


class FileOutcomeResponse(BaseModel):
    name: str
    ok: bool
    file: Optional[dict] = None
    error: Optional[str] = None
    warning: Optional[str] = None


class UploadResponse(BaseModel):
    project_id: str
    files_ingested: int
    files_failed: int
    outcomes: List[FileOutcomeResponse]
    elapsed_seconds: float
    job: Optional[dict] = None


# ── Routes ───────────────────────────────────────────────────────────────

@router.get("")
async def list_projects(pm=Depends(get_project_manager)):
    """List all projects, most recently touched first."""
    return pm.list_projects()


@router.post("", status_code=201)
async def create_project(
    auth: AuthContext = Depends(require_admin),
    pm=Depends(get_project_manager),
):
    """Create an empty project to upload files into."""
    return pm.create_empty_project(auth)


@router.get("/{project_id}")
async def get_project(project_id: str, pm=Depends(get_project_manager)):
    project = pm.get_project(project_id)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.put("/{project_id}")
async def save_project(
    project_id: str,
    data: ProjectSave,
    auth: AuthContext = Depends(require_admin),
    pm=Depends(get_project_manager),
):
    """Create or update a project with user-editable fields."""
    try:
        return pm.save_project(project_id, data.model_dump(exclude_unset=True), auth)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/{project_id}/files")
async def list_files(project_id: str, pm=Depends(get_project_manager)):
    if not pm.project_exists(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return pm.get_project_files(project_id)


@router.post("/{project_id}/files", response_model=UploadResponse)
async def upload_files(
    project_id: str,
    files: List[UploadFile] = File(...),
    analyze: Optional[bool] = Query(None, description="Queue analysis of the stored files"),
    auth: AuthContext = Depends(require_admin),
    settings=Depends(get_settings),
    ingestion=Depends(get_ingestion),
    job_service=Depends(get_job_service),
    dispatcher=Depends(get_dispatcher),
):
    """Upload project documents.

    Each file succeeds or fails on its own; the response lists one
    outcome per file. Stored files are queued for analysis unless
    ``analyze=false``.
    """
    max_files = settings.ingestion.max_files_per_batch
    if len(files) > max_files:
        raise HTTPException(
            status_code=400,
            detail=f"Too many files ({len(files)}). Maximum is {max_files} per upload.",
        )

    incoming = [IncomingFile(name=f.filename or "", data=await f.read()) for f in files]
    result = await ingestion.ingest(project_id, incoming)

    job = None
    should_analyze = settings.analysis.auto_run if analyze is None else analyze
    if should_analyze and result.file_ids:
        job = job_service.submit(project_id, result.file_ids)
        dispatcher.schedule(job["project_id"])

    return UploadResponse(
        project_id=result.project_id,
        files_ingested=result.files_ingested,
        files_failed=result.files_failed,
        outcomes=[FileOutcomeResponse(**vars(o)) for o in result.outcomes],
        elapsed_seconds=result.elapsed_seconds,
        job=job,
    )
