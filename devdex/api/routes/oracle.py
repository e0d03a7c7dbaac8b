"""Oracle chat routes (FastAPI).

Sessions are held in memory by the OracleSessionStore. Each session is
grounded in a fixed snapshot of the project's files taken at creation.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..deps import get_oracle_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oracle", tags=["oracle"])


# ── Request/Response models ──────────────────────────────────────────────

class SessionCreate(BaseModel):
    project_id: str
    file_ids: Optional[List[str]] = None


class MessageRequest(BaseModel):
    message: str


# ── Routes ───────────────────────────────────────────────────────────────

@router.post("/sessions", status_code=201)
async def create_session(data: SessionCreate, store=Depends(get_oracle_store)):
    """Open an Oracle session over the project's files."""
    session = await store.create_for_project(data.project_id, data.file_ids)
    return session.to_dict()


@router.post("/sessions/{session_id}/messages")
async def send_message(
    session_id: str,
    data: MessageRequest,
    store=Depends(get_oracle_store),
):
    """Send one message and wait for the Oracle's reply.

    Messages to the same session are answered strictly in arrival order.
    """
    session = store.get(session_id)
    try:
        reply = await session.send(data.message)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"session_id": session_id, "reply": reply, "turns": len(session.history)}


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, store=Depends(get_oracle_store)):
    session = store.get(session_id)
    data = session.to_dict()
    data["history"] = [t.to_dict() for t in session.history]
    return data


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, store=Depends(get_oracle_store)):
    if not store.close(session_id):
        raise HTTPException(status_code=404, detail="Oracle session not found")
    return {"success": True}
