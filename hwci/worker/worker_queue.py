"""Queue of verification jobs; runs one job at a time."""

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path

from hwci.worker.models.job import Job
from hwci.worker.models.provider_config import WorkerConfig
from hwci.worker.models.report import CommitStatus, Note
from hwci.worker.pipeline import JobPipeline, ResultQueue
from hwci.worker.providers.base import StatusProvider
from hwci.worker.reporter import REPORT_ERRORS, ProgressReporter, publish_status
from hwci.worker.workspace_sync import resolve_commit_hash

logger = logging.getLogger(__name__)


class WorkerQueue:
    """Accepts jobs and runs them sequentially in the background."""

    def __init__(
        self, config: WorkerConfig, work_dir: Path, provider: StatusProvider
    ) -> None:
        self.config = config
        self.work_dir = work_dir
        self.provider = provider
        self.failures = 0
        # Held while a job runs.
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()

    async def enqueue(
        self,
        org: str,
        repo: str,
        alt_path: str = "",
        commit_hash: str = "",
        use_ssh: bool = False,
        pull_id: int = 0,
        blame: Sequence[str] | None = None,
    ) -> bool:
        """Publish the pending status and queue the job.

        The job is not queued if its status cannot be published.

        Returns:
            True if the job was queued

        """
        job = Job.create(
            org,
            repo,
            self.work_dir,
            alt_path=alt_path,
            commit_hash=commit_hash,
            use_ssh=use_ssh,
            pull_id=pull_id,
        )
        # Resolve the head right away, it may move while the job is queued.
        if not job.commit_hash and not await resolve_commit_hash(job):
            logger.error(f"- failed to resolve the commit to test for {job}")
            return False
        logger.info(f"- Enqueuing test for {job.id} at {job.commit_hash}")

        try:
            note = await self.provider.create_note(
                f"{self.config.name} for {job}", {"setup-0-metadata": job.metadata()}
            )
        except REPORT_ERRORS as e:
            # If the note can't be created, the status likely can't either.
            logger.error(f"- Failed to create note: {e}")
            return False
        logger.info(f"- Note at {note.html_url}")

        status = CommitStatus(
            state="pending",
            description="Checks pending",
            context=self.config.name,
            target_url=note.html_url or None,
        )
        if not await publish_status(self.provider, job, status):
            return False

        task = asyncio.create_task(
            self._run_job(job, note, status, list(blame or []))
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def wait(self) -> None:
        """Wait until every enqueued job is done."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def _run_job(
        self, job: Job, note: Note, status: CommitStatus, blame: list[str]
    ) -> None:
        async with self._lock:
            logger.info(f"- Running test for {job.id} at {job.commit_hash}")
            try:
                failed = await self._run_pipeline(job, note, status)
            except Exception:
                logger.exception(f"- job for {job.id} crashed")
                failed = True
            if failed:
                self.failures += 1
                if blame:
                    await self._blame(job, note, blame)
            logger.info(f"- testing done: {job}")

    async def _run_pipeline(self, job: Job, note: Note, status: CommitStatus) -> bool:
        """Run the pipeline and report its results concurrently.

        Returns:
            True if the job failed

        """
        results: ResultQueue = asyncio.Queue(maxsize=16)
        pipeline = JobPipeline(job, self.config)
        reporter = ProgressReporter(
            self.provider, job, note, status, debounce=self.config.debounce
        )
        pipeline_task = asyncio.create_task(pipeline.run(results))
        try:
            failed = await reporter.consume(results)
        except BaseException:
            pipeline_task.cancel()
            raise
        try:
            await pipeline_task
        except Exception:
            await reporter.abort()
            raise
        return failed

    async def _blame(self, job: Job, note: Note, blame: list[str]) -> None:
        title = f"Build {self.config.name!r} failed on {job.commit_hash}"
        logger.error(f"- Failed: {title}")
        logger.error(f"- Blame: {blame}")
        if not self.config.create_issues:
            return
        try:
            await self.provider.create_issue(job, title, note.html_url, blame)
        except REPORT_ERRORS as e:
            logger.error(f"- failed to create issue: {e}")
