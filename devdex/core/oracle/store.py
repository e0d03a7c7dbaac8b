"""In-process registry of open Oracle sessions.

Sessions live only in memory. A session is dropped when it is closed
explicitly or after sitting idle longer than the configured window.
"""

import logging
import threading
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from ..analysis.models import FileContext
from ..constants import MAX_FILE_CHARS
from ..db.models import utcnow
from ..exceptions import SessionNotFoundError
from ..ingestion import FileIngestionService
from .session import DEFAULT_MAX_INPUT_CHARS, DEFAULT_TIMEOUT_SECONDS, OracleSession

logger = logging.getLogger(__name__)


class OracleSessionStore:
    """Creates, looks up and expires Oracle sessions."""

    def __init__(
        self,
        llm: Any,
        ingestion: Optional[FileIngestionService] = None,
        max_file_chars: int = MAX_FILE_CHARS,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        idle_minutes: int = 120,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self._llm = llm
        self._ingestion = ingestion
        self.max_file_chars = max_file_chars
        self.max_input_chars = max_input_chars
        self.idle_window = timedelta(minutes=idle_minutes)
        self.timeout = timeout
        self._sessions: Dict[str, OracleSession] = {}
        self._lock = threading.Lock()

    def create(
        self,
        files: Sequence[FileContext],
        project_id: Optional[str] = None,
    ) -> OracleSession:
        """Open a session over already-resolved file contents."""
        session = OracleSession.create(
            files,
            self._llm,
            max_file_chars=self.max_file_chars,
            project_id=project_id,
            max_input_chars=self.max_input_chars,
            timeout=self.timeout,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    async def create_for_project(
        self,
        project_id: str,
        file_ids: Optional[List[str]] = None,
    ) -> OracleSession:
        """Open a session over a project's stored files.

        Uses ``file_ids`` when given, otherwise every file of the project.
        Files belonging to other projects are never included.

        Raises:
            ProjectNotFoundError: project does not exist
        """
        if self._ingestion is None:
            raise RuntimeError("OracleSessionStore has no ingestion service")
        if file_ids:
            contexts = await self._ingestion.load_contexts(file_ids, project_id=project_id)
        else:
            contexts = await self._ingestion.load_project_contexts(project_id)
        return self.create(contexts, project_id=str(project_id))

    def get(self, session_id: str) -> OracleSession:
        self.prune_expired()
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def close(self, session_id: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(session_id, None)
        if removed is not None:
            logger.info(f"Oracle session {session_id} closed after {len(removed.history)} turn(s)")
        return removed is not None

    def prune_expired(self, now=None) -> int:
        """Drop sessions idle longer than the idle window."""
        now = now or utcnow()
        with self._lock:
            expired = [
                sid for sid, s in self._sessions.items()
                if now - s.last_active_at > self.idle_window
            ]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            logger.info(f"Expired {len(expired)} idle Oracle session(s)")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
