"""Project Manager for DevDex.

Provides CRUD operations for projects and read access to their files,
with database persistence.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from ..auth import AuthContext
from ..constants import (
    DEFAULT_PROJECT_STATUS,
    DEFAULT_PROJECT_TYPE,
    PROJECT_STATUSES,
    PROJECT_TYPES,
)
from ..db import DatabaseManager
from ..db.models import Project, ProjectFile, utcnow
from ..exceptions import ProjectNotFoundError

logger = logging.getLogger(__name__)

# Fields a user edit may change. AI-derived fields are written by merge only.
EDITABLE_FIELDS = (
    "name", "type", "status", "summary_human", "demo_url", "repo_url",
    "lessons_learned", "next_steps",
)


def parse_uuid(value) -> Optional[UUID]:
    """Parse a UUID string, returning None for malformed ids."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


class ProjectManager:
    """Manages projects and their files with database persistence."""

    def __init__(self, db_manager: DatabaseManager):
        self.db = db_manager
        logger.info("ProjectManager initialized")

    # =========================================================================
    # Project CRUD
    # =========================================================================

    def create_empty_project(self, auth: AuthContext) -> Dict:
        """Create a blank project (empty name, default type and status)."""
        auth.require_admin()
        now = utcnow()
        with self.db.get_session() as session:
            project = Project(
                project_id=uuid4(),
                name="",
                type=DEFAULT_PROJECT_TYPE,
                status=DEFAULT_PROJECT_STATUS,
                lessons_learned=[],
                features_ai=[],
                stack_ai=[],
                chains_ai=[],
                target_users_ai=[],
                tags_ai=[],
                run_commands_ai=[],
                key_decisions_ai=[],
                created_at=now,
                last_touched_at=now,
            )
            session.add(project)
            session.flush()

            logger.info(f"Created project: {project.project_id}")
            return self._project_to_dict(project)

    def get_project(self, project_id: str) -> Optional[Dict]:
        """Retrieve project details by ID."""
        pid = parse_uuid(project_id)
        if pid is None:
            return None
        with self.db.get_session() as session:
            project = session.get(Project, pid)
            if not project:
                return None
            return self._project_to_dict(project)

    def project_exists(self, project_id: str) -> bool:
        pid = parse_uuid(project_id)
        if pid is None:
            return False
        with self.db.get_session() as session:
            return session.get(Project, pid) is not None

    def list_projects(self) -> List[Dict]:
        """List all projects, most recently touched first."""
        with self.db.get_session() as session:
            projects = session.query(Project).order_by(
                Project.last_touched_at.desc()
            ).all()
            return [self._project_to_dict(p) for p in projects]

    def save_project(
        self,
        project_id: str,
        updates: Dict[str, Any],
        auth: AuthContext,
    ) -> Dict:
        """Upsert a project by id with user-editable fields.

        Unknown and AI-derived keys are ignored. ``last_touched_at`` is
        refreshed on every save.

        Raises:
            AuthorizationError: auth is not an admin context
            ValueError: invalid id, type or status
        """
        auth.require_admin()
        pid = parse_uuid(project_id)
        if pid is None:
            raise ValueError(f"Invalid project id: {project_id}")

        if "type" in updates and updates["type"] not in PROJECT_TYPES:
            raise ValueError(f"Invalid project type: {updates['type']}")
        if "status" in updates and updates["status"] not in PROJECT_STATUSES:
            raise ValueError(f"Invalid project status: {updates['status']}")

        now = utcnow()
        with self.db.get_session() as session:
            project = session.get(Project, pid)
            if project is None:
                project = Project(
                    project_id=pid,
                    name="",
                    type=DEFAULT_PROJECT_TYPE,
                    status=DEFAULT_PROJECT_STATUS,
                    created_at=now,
                )
                session.add(project)
                logger.info(f"Created project on save: {pid}")

            for key in EDITABLE_FIELDS:
                if key in updates:
                    value = updates[key]
                    if key == "name":
                        value = value or ""
                    elif key == "lessons_learned":
                        value = list(value or [])
                    setattr(project, key, value)

            project.last_touched_at = now
            session.flush()
            return self._project_to_dict(project)

    # =========================================================================
    # Project Files
    # =========================================================================

    def get_project_files(self, project_id: str) -> List[Dict]:
        """List files of a project, newest first."""
        pid = parse_uuid(project_id)
        if pid is None:
            raise ProjectNotFoundError(project_id)
        with self.db.get_session() as session:
            files = session.query(ProjectFile).filter(
                ProjectFile.project_id == pid
            ).order_by(ProjectFile.created_at.desc()).all()
            return [self.file_to_dict(f) for f in files]

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _project_to_dict(project: Project) -> Dict:
        """Convert a Project ORM object to a dict."""
        return {
            "id": str(project.project_id),
            "project_id": str(project.project_id),
            "name": project.name or "",
            "type": project.type or DEFAULT_PROJECT_TYPE,
            "status": project.status or DEFAULT_PROJECT_STATUS,
            "summary_human": project.summary_human,
            "demo_url": project.demo_url,
            "repo_url": project.repo_url,
            "lessons_learned": project.lessons_learned or [],
            "next_steps": project.next_steps,
            "one_liner_ai": project.one_liner_ai,
            "description_ai": project.description_ai,
            "features_ai": project.features_ai or [],
            "stack_ai": project.stack_ai or [],
            "chains_ai": project.chains_ai or [],
            "target_users_ai": project.target_users_ai or [],
            "tags_ai": project.tags_ai or [],
            "run_commands_ai": project.run_commands_ai or [],
            "key_decisions_ai": project.key_decisions_ai or [],
            "deploy_status_ai": project.deploy_status_ai,
            "confidence_score": project.confidence_score,
            "ai_updated_at": project.ai_updated_at.isoformat() if project.ai_updated_at else None,
            "created_at": project.created_at.isoformat() if project.created_at else None,
            "last_touched_at": project.last_touched_at.isoformat() if project.last_touched_at else None,
        }

    @staticmethod
    def file_to_dict(f: ProjectFile, include_content: bool = False) -> Dict:
        data = {
            "id": str(f.file_id),
            "file_id": str(f.file_id),
            "project_id": str(f.project_id),
            "name": f.name,
            "bucket": f.bucket,
            "path": f.path,
            "kind": f.kind,
            "size": f.size or 0,
            "has_inline_content": f.content is not None,
            "created_at": f.created_at.isoformat() if f.created_at else None,
        }
        if include_content:
            data["content"] = f.content
        return data
