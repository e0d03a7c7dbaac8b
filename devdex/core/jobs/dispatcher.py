"""Asynchronous dispatch of queued analysis jobs.

One drain task per project at a time. The task runs the project's queued
job, then looks again, so jobs submitted while a run is in flight are
picked up on the next pass instead of starting a parallel run. When a
run is deferred because the project is busy with a run started outside
the dispatcher, the task waits and tries again until the queue is empty.

Tasks belong to the dispatcher, not to the request that scheduled them:
an abandoned request does not cancel a run, and its outcome is persisted.
"""

import asyncio
import logging
from typing import Dict, Optional

from ..constants import JOB_QUEUED
from .service import AnalysisJobService

logger = logging.getLogger(__name__)


class AnalysisDispatcher:
    """Schedules job runs on the running event loop.

    Lifecycle:
    1. schedule(project_id) after a submit or retry
    2. _drain() runs queued jobs of that project one after another
    3. shutdown() waits for in-flight runs on application exit
    """

    def __init__(self, job_service: AnalysisJobService, poll_interval: float = 1.0):
        self._jobs = job_service
        self.poll_interval = poll_interval
        self._tasks: Dict[str, asyncio.Task] = {}

    def schedule(self, project_id: str) -> asyncio.Task:
        """Ensure a drain task exists for the project and return it."""
        key = str(project_id)
        task = self._tasks.get(key)
        if task is not None and not task.done():
            logger.debug(f"Drain already active for project {key}")
            return task

        task = asyncio.create_task(self._drain(key), name=f"analysis-{key}")
        self._tasks[key] = task
        return task

    def is_active(self, project_id: str) -> bool:
        task = self._tasks.get(str(project_id))
        return task is not None and not task.done()

    async def wait(self, project_id: str) -> None:
        """Wait until the project's current drain task finishes."""
        task = self._tasks.get(str(project_id))
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        pending = [t for t in self._tasks.values() if not t.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} analysis run(s) to finish")
            await asyncio.gather(*pending, return_exceptions=True)
        self._tasks.clear()

    async def _drain(self, project_id: str) -> None:
        try:
            while True:
                job = self._jobs.next_queued_job(project_id)
                if job is None:
                    break
                outcome = await self._run_one(job["job_id"])
                if outcome is None:
                    break
                if outcome["status"] == JOB_QUEUED:
                    # Deferred behind a run owned elsewhere
                    await asyncio.sleep(self.poll_interval)
        finally:
            if self._tasks.get(project_id) is asyncio.current_task():
                del self._tasks[project_id]

    async def _run_one(self, job_id: str) -> Optional[Dict]:
        try:
            job = await self._jobs.run(job_id)
        except Exception as e:
            logger.error(f"Analysis run {job_id} failed: {e}", exc_info=True)
            return None
        logger.info(f"Analysis run {job_id} finished with status '{job['status']}'")
        return job
