"""File Ingestion Service.

Orchestrates: uploaded bytes → classify → blob storage → ProjectFile row.
Each file in a batch succeeds or fails on its own; earlier successes in
the batch are never rolled back.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError

from ..analysis.models import FileContext
from ..constants import DEFAULT_STORAGE_BUCKET, IMAGE_EXTENSIONS
from ..db import DatabaseManager
from ..db.models import Project, ProjectFile, utcnow
from ..exceptions import ProjectNotFoundError, StorageError, UploadError
from ..project.project_manager import ProjectManager, parse_uuid
from ..storage import StorageBackend

logger = logging.getLogger(__name__)

# Limits
MAX_FILE_SIZE_MB = 10


@dataclass
class IncomingFile:
    """One uploaded document, already read into memory."""
    name: str
    data: bytes


@dataclass
class FileOutcome:
    """Per-file result of an ingestion batch."""
    name: str
    ok: bool
    file: Optional[Dict] = None
    error: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class IngestionResult:
    """Summary of one ingestion batch."""

    project_id: str
    outcomes: List[FileOutcome] = field(default_factory=list)
    elapsed_seconds: float = 0.0

    @property
    def file_ids(self) -> List[str]:
        return [o.file["file_id"] for o in self.outcomes if o.ok and o.file]

    @property
    def files_ingested(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def files_failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)


def classify_file_kind(filename: str) -> str:
    """Infer the file kind from its name (case-insensitive)."""
    lowered = filename.lower()
    if "readme" in lowered:
        return "readme"
    if ".md" in lowered or "doc" in lowered:
        return "docs"
    if lowered.endswith(IMAGE_EXTENSIONS):
        return "image"
    return "config"


def build_storage_path(project_id: str, filename: str) -> str:
    """Distinct object key per upload: ``<project>/<uuid>-<name>``."""
    safe_name = filename.replace("/", "_").replace("\\", "_")
    return f"{project_id}/{uuid4()}-{safe_name}"


def decode_text(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class FileIngestionService:
    """Persists uploaded project documents and resolves their text later."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        storage: StorageBackend,
        bucket: str = DEFAULT_STORAGE_BUCKET,
        storage_required: bool = False,
        max_file_size_mb: int = MAX_FILE_SIZE_MB,
    ):
        self._db = db_manager
        self._storage = storage
        self.bucket = bucket
        self.storage_required = storage_required
        self._max_file_size_bytes = max_file_size_mb * 1024 * 1024

    # ── Public entry points ──────────────────────────────────────────────

    async def ingest(self, project_id: str, files: List[IncomingFile]) -> IngestionResult:
        """Store a batch of files for an existing project.

        Args:
            project_id: UUID of the owning project (must already exist)
            files: Uploaded files, processed in the given order

        Returns:
            IngestionResult with one FileOutcome per input file

        Raises:
            ProjectNotFoundError: project does not exist
        """
        start = time.time()
        pid = self._require_project(project_id)
        result = IngestionResult(project_id=str(pid))

        for incoming in files:
            try:
                record, warning = await self._ingest_one(pid, incoming)
                result.outcomes.append(
                    FileOutcome(name=incoming.name, ok=True, file=record, warning=warning)
                )
            except UploadError as e:
                logger.warning(str(e))
                result.outcomes.append(
                    FileOutcome(name=incoming.name, ok=False, error=e.reason)
                )

        result.elapsed_seconds = time.time() - start
        logger.info(
            f"Ingestion for project {pid}: {result.files_ingested} stored, "
            f"{result.files_failed} failed in {result.elapsed_seconds:.2f}s"
        )
        return result

    async def load_contexts(
        self,
        file_ids: List[str],
        project_id: Optional[str] = None,
    ) -> List[FileContext]:
        """Resolve readable text for the given files, in the given order.

        Inline content is preferred; the storage locator is the fallback.
        Files that resolve to neither are skipped with a warning. With
        ``project_id``, files owned by any other project are skipped too.

        Raises:
            ProjectNotFoundError: ``project_id`` given but unknown
        """
        pid = self._require_project(project_id) if project_id is not None else None
        ids = [u for u in (parse_uuid(f) for f in file_ids) if u is not None]
        if not ids:
            return []

        with self._db.get_session() as session:
            query = session.query(ProjectFile).filter(ProjectFile.file_id.in_(ids))
            if pid is not None:
                query = query.filter(ProjectFile.project_id == pid)
            rows = query.all()
            by_id = {row.file_id: row for row in rows}
            ordered = [by_id[i] for i in ids if i in by_id]

        contexts = []
        for row in ordered:
            content = await self.read_content(row)
            if content is None:
                continue
            contexts.append(FileContext(name=row.name, content=content))
        return contexts

    async def load_project_contexts(self, project_id: str) -> List[FileContext]:
        """Resolve text for every file of a project, oldest first."""
        pid = self._require_project(project_id)
        with self._db.get_session() as session:
            file_ids = [
                str(row.file_id)
                for row in session.query(ProjectFile.file_id).filter(
                    ProjectFile.project_id == pid
                ).order_by(ProjectFile.created_at.asc())
            ]
        return await self.load_contexts(file_ids, project_id=str(pid))

    async def read_content(self, row: ProjectFile) -> Optional[str]:
        """Text payload of one file, or None when it cannot be resolved."""
        if row.content is not None:
            return row.content
        if row.kind == "image" or not row.path:
            logger.warning(f"File {row.file_id} ({row.name}) has no readable text")
            return None
        try:
            data = await self._storage.get(row.bucket, row.path)
        except StorageError as e:
            logger.warning(f"Failed to download {row.bucket}/{row.path}: {e}")
            return None
        return decode_text(data)

    # ── Internals ────────────────────────────────────────────────────────

    def _require_project(self, project_id: str) -> UUID:
        pid = parse_uuid(project_id)
        if pid is None:
            raise ProjectNotFoundError(project_id)
        with self._db.get_session() as session:
            if session.get(Project, pid) is None:
                raise ProjectNotFoundError(project_id)
        return pid

    async def _ingest_one(self, pid: UUID, incoming: IncomingFile):
        name = incoming.name or ""
        if not name.strip():
            raise UploadError("<unnamed>", "File has no name")

        data = incoming.data or b""
        if len(data) > self._max_file_size_bytes:
            size_mb = len(data) / (1024 * 1024)
            raise UploadError(
                name,
                f"File too large ({size_mb:.1f}MB). Maximum is "
                f"{self._max_file_size_bytes // (1024 * 1024)}MB.",
            )

        kind = classify_file_kind(name)
        content = None if kind == "image" else decode_text(data)

        path: Optional[str] = build_storage_path(str(pid), name)
        warning = None
        try:
            await self._storage.put(self.bucket, path, data)
        except StorageError as e:
            if self.storage_required or content is None:
                raise UploadError(name, f"Storage write failed: {e}") from e
            logger.warning(f"Storage write failed for {name}, keeping inline content only: {e}")
            warning = "Stored inline only; blob storage unavailable"
            path = None

        try:
            with self._db.get_session() as session:
                record = ProjectFile(
                    file_id=uuid4(),
                    project_id=pid,
                    name=name,
                    bucket=self.bucket,
                    path=path,
                    kind=kind,
                    size=len(data),
                    content=content,
                    created_at=utcnow(),
                )
                session.add(record)
                session.flush()
                file_dict = ProjectManager.file_to_dict(record)
        except SQLAlchemyError as e:
            if path:
                logger.warning(f"Orphaned blob left at {self.bucket}/{path}")
            raise UploadError(name, f"Failed to create file record: {e}") from e

        logger.debug(f"Stored {name} as {kind} ({len(data)} bytes)")
        return file_dict, warning
