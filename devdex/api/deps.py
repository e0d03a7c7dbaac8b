"""FastAPI dependencies for DevDex.

Provides shared dependencies (auth, database, services) via FastAPI's
Depends() injection system.
"""

import logging

from fastapi import Depends, HTTPException, Request

from devdex.core.auth import AuthContext

logger = logging.getLogger(__name__)

SESSION_AUTH_KEY = "admin_authenticated_at"


async def get_settings(request: Request):
    """Get DevDexSettings from app state."""
    return request.app.state.settings


async def get_db_manager(request: Request):
    """Get DatabaseManager from app state."""
    return request.app.state.db_manager


async def get_project_manager(request: Request):
    """Get ProjectManager from app state."""
    return request.app.state.project_manager


async def get_ingestion(request: Request):
    """Get FileIngestionService from app state."""
    return request.app.state.ingestion


async def get_job_service(request: Request):
    """Get AnalysisJobService from app state."""
    return request.app.state.job_service


async def get_dispatcher(request: Request):
    """Get AnalysisDispatcher from app state."""
    return request.app.state.dispatcher


async def get_oracle_store(request: Request):
    """Get OracleSessionStore from app state."""
    return request.app.state.oracle_store


async def get_admin_gate(request: Request):
    return request.app.state.admin_gate


async def get_llm(request: Request):
    llm = request.app.state.llm
    if llm is None:
        raise HTTPException(status_code=503, detail="LLM not configured")
    return llm


async def get_auth_context(request: Request, gate=Depends(get_admin_gate)) -> AuthContext:
    """Build the AuthContext from the session cookie.

    Expired logins are cleared from the session.
    """
    authenticated_at = request.session.get(SESSION_AUTH_KEY)
    auth = gate.context_for(authenticated_at)
    if authenticated_at is not None and not auth.is_admin:
        logger.info("Admin session expired")
        request.session.pop(SESSION_AUTH_KEY, None)
    return auth


async def require_admin(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
    """Require a live admin session. Returns the AuthContext or raises 401."""
    if not auth.is_admin:
        raise HTTPException(status_code=401, detail="Admin login required")
    return auth
