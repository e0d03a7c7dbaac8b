"""Analysis job state machine.

    queued ──run──▶ running ──▶ done
                       │
                       └──────▶ error ──retry──▶ queued

Every transition is a compare-and-set on the current status. The
one-queued and one-running rules per project are enforced by partial
unique indexes on ``ai_jobs``; a violated index surfaces here as an
IntegrityError and is resolved, never shown to the caller.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError

from ..analysis import AnalysisInvoker
from ..constants import JOB_DONE, JOB_ERROR, JOB_QUEUED, JOB_RUNNING
from ..db import DatabaseManager
from ..db.models import AIJob, Project, utcnow
from ..exceptions import (
    AnalysisError,
    ConflictError,
    InvalidTransitionError,
    JobNotFoundError,
    ProjectNotFoundError,
)
from ..ingestion import FileIngestionService
from ..project.merge import merge_analysis
from ..project.project_manager import parse_uuid

logger = logging.getLogger(__name__)

# Attempts to resolve a unique-index collision before giving up
MAX_CONFLICT_ATTEMPTS = 3

# Slack on top of the LLM timeout before a running job counts as abandoned
STALE_RUN_MARGIN_SECONDS = 60

STALE_RUN_ERROR = "Run abandoned: no progress before the stale cutoff"


def union_file_ids(current: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Ordered union: existing ids first, new ids appended, duplicates dropped."""
    merged: List[str] = []
    seen = set()
    for fid in list(current or []) + list(incoming or []):
        fid = str(fid)
        if fid not in seen:
            seen.add(fid)
            merged.append(fid)
    return merged


class AnalysisJobService:
    """Tracks analysis attempts and drives them through their states."""

    def __init__(
        self,
        db_manager: DatabaseManager,
        ingestion: FileIngestionService,
        invoker: AnalysisInvoker,
        stale_after_seconds: Optional[float] = None,
    ):
        self.db = db_manager
        self.ingestion = ingestion
        self.invoker = invoker
        if stale_after_seconds is None:
            stale_after_seconds = invoker.timeout + STALE_RUN_MARGIN_SECONDS
        self.stale_after_seconds = stale_after_seconds

    # =========================================================================
    # Submit
    # =========================================================================

    def submit(self, project_id: str, file_ids: List[str]) -> Dict:
        """Queue analysis of ``file_ids`` for a project.

        Merges into the project's queued job when one exists; otherwise a
        new queued job is created. Never starts a run.

        Raises:
            ProjectNotFoundError: project does not exist
        """
        pid = parse_uuid(project_id)
        if pid is None:
            raise ProjectNotFoundError(project_id)
        ids = union_file_ids([], file_ids)

        for attempt in range(1, MAX_CONFLICT_ATTEMPTS + 1):
            try:
                return self._submit_once(pid, ids)
            except ConflictError:
                logger.info(
                    f"Queued job for project {pid} created concurrently, "
                    f"merging instead (attempt {attempt})"
                )
        raise ConflictError(f"Could not queue analysis for project {pid}")

    def _submit_once(self, pid: UUID, ids: List[str]) -> Dict:
        with self.db.get_session() as session:
            if session.get(Project, pid) is None:
                raise ProjectNotFoundError(pid)

            existing = session.query(AIJob).filter(
                AIJob.project_id == pid,
                AIJob.status == JOB_QUEUED,
            ).with_for_update().first()

            if existing is not None:
                merged = union_file_ids(existing.file_ids, ids)
                if merged != list(existing.file_ids or []):
                    existing.file_ids = merged
                    existing.updated_at = utcnow()
                logger.info(
                    f"Merged {len(ids)} file(s) into queued job {existing.job_id} "
                    f"({len(merged)} total)"
                )
                return self._job_to_dict(existing)

            now = utcnow()
            job = AIJob(
                job_id=uuid4(),
                project_id=pid,
                file_ids=ids,
                status=JOB_QUEUED,
                model=self.invoker.model_name,
                created_at=now,
                updated_at=now,
            )
            session.add(job)
            try:
                session.flush()
            except IntegrityError as e:
                raise ConflictError(str(e)) from e

            logger.info(f"Queued analysis job {job.job_id} for project {pid} ({len(ids)} file(s))")
            return self._job_to_dict(job)

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, job_id: str) -> Dict:
        """Run a queued job to completion.

        Returns the job. It is still ``queued`` when another job of the same
        project is running; the dispatcher picks it up on its next pass.

        Raises:
            JobNotFoundError: unknown job
            InvalidTransitionError: job is not queued
        """
        claimed = self._claim(job_id)
        if claimed is None:
            return self.get_job(job_id)
        jid, project_id, file_ids = claimed

        # Every exit after the claim must leave the job out of running
        try:
            contexts = await self.ingestion.load_contexts(file_ids, project_id=project_id)
            result = await self.invoker.analyze(contexts)
            return self._complete(jid, result, [c.name for c in contexts])
        except AnalysisError as e:
            logger.warning(f"Analysis job {jid} failed: {e}")
            self._fail(jid, str(e))
            return self.get_job(jid)
        except asyncio.CancelledError:
            logger.warning(f"Analysis job {jid} cancelled mid-run")
            self._fail(jid, "Run cancelled before completion")
            raise
        except Exception as e:
            logger.error(f"Analysis job {jid} crashed: {e}", exc_info=True)
            self._fail(jid, f"Unexpected error: {e}")
            raise

    def _claim(self, job_id: str):
        """Compare-and-set queued → running; None when the run is deferred."""
        jid = self._parse_job_id(job_id)
        try:
            with self.db.get_session() as session:
                job = session.get(AIJob, jid)
                if job is None:
                    raise JobNotFoundError(job_id)
                if job.status != JOB_QUEUED:
                    raise InvalidTransitionError(jid, job.status, "run")

                self._reclaim_stale(session, job.project_id)

                busy = session.query(AIJob.job_id).filter(
                    AIJob.project_id == job.project_id,
                    AIJob.status == JOB_RUNNING,
                ).first()
                if busy is not None:
                    logger.info(
                        f"Job {jid} deferred: job {busy.job_id} is already "
                        f"running for project {job.project_id}"
                    )
                    return None

                claimed = session.query(AIJob).filter(
                    AIJob.job_id == jid,
                    AIJob.status == JOB_QUEUED,
                ).update(
                    {AIJob.status: JOB_RUNNING, AIJob.updated_at: utcnow()},
                    synchronize_session=False,
                )
                if claimed == 0:
                    session.refresh(job)
                    raise InvalidTransitionError(jid, job.status, "run")
                session.flush()
                project_id = str(job.project_id)
                file_ids = list(job.file_ids or [])
        except IntegrityError:
            logger.info(f"Job {jid} deferred: another run claimed the project first")
            return None

        logger.info(f"Running analysis job {jid} ({len(file_ids)} file(s))")
        return jid, project_id, file_ids

    def _complete(self, jid: UUID, result, file_names: List[str]) -> Dict:
        """Store the result, merge it, and mark the job done in one transaction."""
        with self.db.get_session() as session:
            job = session.get(AIJob, jid)
            project = session.get(Project, job.project_id)
            if project is None:
                raise ProjectNotFoundError(job.project_id)

            merged = merge_analysis(project, result, file_names=file_names)

            done = session.query(AIJob).filter(
                AIJob.job_id == jid,
                AIJob.status == JOB_RUNNING,
            ).update(
                {
                    AIJob.status: JOB_DONE,
                    AIJob.result: self.invoker.result_to_json(result),
                    AIJob.error: None,
                    AIJob.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
            if done == 0:
                raise InvalidTransitionError(jid, job.status, "complete")

            session.flush()
            session.refresh(job)
            logger.info(
                f"Analysis job {jid} done; project {project.project_id} updated"
                + (f", {len(merged.follow_up_questions)} follow-up question(s)"
                   if merged.follow_up_questions else "")
            )
            return self._job_to_dict(job)

    def _fail(self, jid: UUID, message: str):
        with self.db.get_session() as session:
            session.query(AIJob).filter(
                AIJob.job_id == jid,
                AIJob.status == JOB_RUNNING,
            ).update(
                {
                    AIJob.status: JOB_ERROR,
                    AIJob.error: message or "Analysis failed",
                    AIJob.updated_at: utcnow(),
                },
                synchronize_session=False,
            )

    # =========================================================================
    # Stale runs
    # =========================================================================

    def reclaim_stale_jobs(self) -> int:
        """Fail running jobs whose run was abandoned (crash, lost task).

        A job counts as abandoned once it has sat in running longer than
        the LLM timeout plus a margin. It moves to error and can be retried.
        """
        with self.db.get_session() as session:
            return self._reclaim_stale(session)

    def _reclaim_stale(self, session, project_id: Optional[UUID] = None) -> int:
        cutoff = utcnow() - timedelta(seconds=self.stale_after_seconds)
        query = session.query(AIJob).filter(
            AIJob.status == JOB_RUNNING,
            AIJob.updated_at < cutoff,
        )
        if project_id is not None:
            query = query.filter(AIJob.project_id == project_id)
        reclaimed = query.update(
            {
                AIJob.status: JOB_ERROR,
                AIJob.error: STALE_RUN_ERROR,
                AIJob.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
        if reclaimed:
            session.flush()
            logger.warning(f"Reclaimed {reclaimed} stale running job(s)")
        return reclaimed

    # =========================================================================
    # Retry
    # =========================================================================

    async def retry(self, job_id: str, run_now: bool = True) -> Dict:
        """Move an errored job back to queued, then run it.

        Any other queued job of the project is folded into this one so the
        one-queued-job rule keeps holding; its row is removed.

        Raises:
            JobNotFoundError: unknown job
            InvalidTransitionError: job is not in ``error``
        """
        jid = self._parse_job_id(job_id)

        for attempt in range(1, MAX_CONFLICT_ATTEMPTS + 1):
            try:
                self._requeue(jid)
                break
            except ConflictError:
                logger.info(f"Requeue of job {jid} collided, retrying (attempt {attempt})")
        else:
            raise ConflictError(f"Could not requeue job {jid}")

        if not run_now:
            return self.get_job(jid)
        return await self.run(str(jid))

    def _requeue(self, jid: UUID):
        with self.db.get_session() as session:
            job = session.get(AIJob, jid)
            if job is None:
                raise JobNotFoundError(jid)
            if job.status != JOB_ERROR:
                raise InvalidTransitionError(jid, job.status, "retry")

            file_ids = list(job.file_ids or [])
            pending = session.query(AIJob).filter(
                AIJob.project_id == job.project_id,
                AIJob.status == JOB_QUEUED,
                AIJob.job_id != jid,
            ).with_for_update().first()
            if pending is not None:
                file_ids = union_file_ids(file_ids, pending.file_ids)
                logger.info(f"Folding queued job {pending.job_id} into retried job {jid}")
                session.delete(pending)
                session.flush()

            try:
                requeued = session.query(AIJob).filter(
                    AIJob.job_id == jid,
                    AIJob.status == JOB_ERROR,
                ).update(
                    {
                        AIJob.status: JOB_QUEUED,
                        AIJob.error: None,
                        AIJob.file_ids: file_ids,
                        AIJob.updated_at: utcnow(),
                    },
                    synchronize_session=False,
                )
            except IntegrityError as e:
                raise ConflictError(str(e)) from e
            if requeued == 0:
                raise InvalidTransitionError(jid, job.status, "retry")

        logger.info(f"Job {jid} requeued for retry")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Dict:
        jid = self._parse_job_id(job_id)
        with self.db.get_session() as session:
            job = session.get(AIJob, jid)
            if job is None:
                raise JobNotFoundError(job_id)
            return self._job_to_dict(job)

    def list_jobs(self, project_id: str) -> List[Dict]:
        """All jobs of a project, newest first."""
        pid = parse_uuid(project_id)
        if pid is None:
            raise ProjectNotFoundError(project_id)
        with self.db.get_session() as session:
            jobs = session.query(AIJob).filter(
                AIJob.project_id == pid
            ).order_by(AIJob.created_at.desc()).all()
            return [self._job_to_dict(j) for j in jobs]

    def latest_job(self, project_id: str) -> Optional[Dict]:
        jobs = self.list_jobs(project_id)
        return jobs[0] if jobs else None

    def next_queued_job(self, project_id: str) -> Optional[Dict]:
        pid = parse_uuid(project_id)
        if pid is None:
            return None
        with self.db.get_session() as session:
            job = session.query(AIJob).filter(
                AIJob.project_id == pid,
                AIJob.status == JOB_QUEUED,
            ).first()
            return self._job_to_dict(job) if job else None

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _parse_job_id(job_id) -> UUID:
        jid = parse_uuid(job_id)
        if jid is None:
            raise JobNotFoundError(job_id)
        return jid

    @staticmethod
    def _job_to_dict(job: AIJob) -> Dict:
        result = job.result if job.status == JOB_DONE else None
        return {
            "job_id": str(job.job_id),
            "project_id": str(job.project_id),
            "file_ids": list(job.file_ids or []),
            "status": job.status,
            "model": job.model,
            "result": result,
            "error": job.error,
            "follow_up_questions": list((result or {}).get("missing_info") or []),
            "created_at": job.created_at.isoformat() if job.created_at else None,
            "updated_at": job.updated_at.isoformat() if job.updated_at else None,
        }
