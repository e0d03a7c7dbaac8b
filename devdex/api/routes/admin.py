"""Admin routes: catalog export/import and LLM usage metrics."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from devdex.core.auth import AuthContext
from devdex.core.project import export_database, import_database
from ..deps import get_db_manager, get_llm, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ── Request/Response models ──────────────────────────────────────────────

class ImportRequest(BaseModel):
    payload: Dict[str, Any]
    overwrite_existing: bool = False
    skip_duplicates: bool = False


# ── Routes ───────────────────────────────────────────────────────────────

@router.get("/export")
async def export_catalog(
    auth: AuthContext = Depends(require_admin),
    db_manager=Depends(get_db_manager),
):
    """Download every project and file as one JSON document."""
    return export_database(db_manager)


@router.post("/import")
async def import_catalog(
    data: ImportRequest,
    auth: AuthContext = Depends(require_admin),
    db_manager=Depends(get_db_manager),
):
    try:
        report = import_database(
            db_manager,
            data.payload,
            auth,
            overwrite_existing=data.overwrite_existing,
            skip_duplicates=data.skip_duplicates,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return report.to_dict()


async def get_gateway(llm=Depends(get_llm)):
    if not hasattr(llm, "get_metrics"):
        raise HTTPException(status_code=503, detail="LLM gateway not available")
    return llm


@router.get("/llm/metrics")
async def llm_metrics(
    auth: AuthContext = Depends(require_admin),
    gateway=Depends(get_gateway),
):
    return gateway.get_metrics()


@router.post("/llm/metrics/reset")
async def reset_llm_metrics(
    auth: AuthContext = Depends(require_admin),
    gateway=Depends(get_gateway),
):
    gateway.reset_metrics()
    return {"success": True}
