"""Bulk export and import of the project catalog.

Export shape:

    {
      "version": "1.0",
      "exported_at": "<iso timestamp>",
      "projects": [...],        # newest first
      "project_files": [...]    # newest first, inline content included
    }

Import applies records one at a time; a bad record is reported in the
ImportReport and never aborts the rest of the payload. Jobs are not part
of the export.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import TIMESTAMP
from sqlalchemy.exc import SQLAlchemyError

from ..auth import AuthContext
from ..db import DatabaseManager
from ..db.models import UUID as UUIDType, Project, ProjectFile, utcnow
from .project_manager import ProjectManager, parse_uuid

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"


@dataclass
class ImportReport:
    projects_imported: int = 0
    files_imported: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "projects_imported": self.projects_imported,
            "files_imported": self.files_imported,
            "skipped": self.skipped,
            "errors": list(self.errors),
        }


def export_database(db_manager: DatabaseManager) -> Dict[str, Any]:
    """Snapshot every project and project file."""
    with db_manager.get_session() as session:
        projects = session.query(Project).order_by(Project.created_at.desc()).all()
        files = session.query(ProjectFile).order_by(ProjectFile.created_at.desc()).all()
        payload = {
            "version": EXPORT_VERSION,
            "exported_at": utcnow().isoformat(),
            "projects": [ProjectManager._project_to_dict(p) for p in projects],
            "project_files": [ProjectManager.file_to_dict(f, include_content=True) for f in files],
        }

    logger.info(
        f"Exported {len(payload['projects'])} project(s) and "
        f"{len(payload['project_files'])} file(s)"
    )
    return payload


def import_database(
    db_manager: DatabaseManager,
    payload: Dict[str, Any],
    auth: AuthContext,
    overwrite_existing: bool = False,
    skip_duplicates: bool = False,
) -> ImportReport:
    """Load an export payload.

    Args:
        payload: Output of export_database()
        auth: Must be an admin context
        overwrite_existing: Upsert records whose id already exists
        skip_duplicates: Silently skip existing ids instead of reporting them

    Raises:
        AuthorizationError: auth is not an admin context
        ValueError: payload is not an export document
    """
    auth.require_admin()
    if (
        not isinstance(payload, dict)
        or not isinstance(payload.get("projects"), list)
        or not isinstance(payload.get("project_files"), list)
    ):
        raise ValueError("Invalid export format: 'projects' and 'project_files' lists are required")

    report = ImportReport()
    for record in payload["projects"]:
        _import_record(
            db_manager, Project, "project_id", record, report,
            overwrite_existing, skip_duplicates, label="Project",
        )
    for record in payload["project_files"]:
        _import_record(
            db_manager, ProjectFile, "file_id", record, report,
            overwrite_existing, skip_duplicates, label="File",
        )

    logger.info(
        f"Import finished: {report.projects_imported} project(s), "
        f"{report.files_imported} file(s), {report.skipped} skipped, "
        f"{len(report.errors)} error(s)"
    )
    return report


def _import_record(
    db_manager: DatabaseManager,
    model,
    id_column: str,
    record: Any,
    report: ImportReport,
    overwrite_existing: bool,
    skip_duplicates: bool,
    label: str,
):
    if not isinstance(record, dict):
        report.errors.append(f"{label} record is not an object")
        return

    name = record.get("name") or "<unnamed>"
    record_id = parse_uuid(record.get(id_column) or record.get("id"))
    if record_id is None:
        report.errors.append(f"{label} {name} has no valid id")
        return

    try:
        with db_manager.get_session() as session:
            existing = session.get(model, record_id)
            if existing is not None and not overwrite_existing:
                if skip_duplicates:
                    report.skipped += 1
                else:
                    report.errors.append(f"{label} {name} ({record_id}) already exists")
                return

            if model is ProjectFile:
                owner = parse_uuid(record.get("project_id"))
                if owner is None or session.get(Project, owner) is None:
                    report.errors.append(f"{label} {name} ({record_id}) references a missing project")
                    return

            target = existing if existing is not None else model()
            _apply_columns(target, record)
            setattr(target, id_column, record_id)
            if existing is None:
                session.add(target)
            session.flush()
    except (SQLAlchemyError, TypeError, ValueError) as e:
        report.errors.append(f"Failed to import {label.lower()} {name}: {e}")
        return

    if model is Project:
        report.projects_imported += 1
    else:
        report.files_imported += 1


def _apply_columns(target, record: Dict[str, Any]):
    """Copy known columns from an exported dict onto an ORM row."""
    for column in target.__table__.columns:
        if column.key not in record:
            continue
        value = record[column.key]
        if value is not None:
            if isinstance(column.type, TIMESTAMP) and isinstance(value, str):
                value = datetime.fromisoformat(value)
            elif isinstance(column.type, UUIDType):
                parsed = parse_uuid(value)
                if parsed is None:
                    raise ValueError(f"Invalid UUID for {column.key}: {value}")
                value = parsed
        setattr(target, column.key, value)

    now = utcnow()
    if getattr(target, "created_at", None) is None:
        target.created_at = now
    if hasattr(target, "last_touched_at") and target.last_touched_at is None:
        target.last_touched_at = now
