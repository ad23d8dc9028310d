"""Turn the stream of step results into debounced status and note updates."""

import asyncio
import logging

import aiohttp
from pydantic import BaseModel

from hwci.worker.command_runner import format_duration
from hwci.worker.models.job import Job
from hwci.worker.models.report import CommitStatus, Note
from hwci.worker.models.step_result import ResolvedChecks, StepResult
from hwci.worker.pipeline import ResultQueue
from hwci.worker.providers.base import StatusProvider

logger = logging.getLogger(__name__)

REPORT_ERRORS = (RuntimeError, aiohttp.ClientError)


async def publish_status(
    provider: StatusProvider, job: Job, status: CommitStatus
) -> bool:
    """Publish status; failures are logged, never raised."""
    try:
        await provider.publish_status(job, status)
    except REPORT_ERRORS as e:
        logger.error(f"- failed to update status: {e}")
        return False
    return True


class ReportState(BaseModel):
    """Mutable state of the report for one job."""

    note: Note
    status: CommitStatus
    note_description: str
    start: float
    check_num: int = 0
    failed: int = 0
    total: int = 0
    checks_resolved: bool = False
    flush_due: float | None = None


class ProgressReporter:
    """Consumes a job's results and keeps the note and status up to date.

    Updates are coalesced over a debounce window to bound the number of API
    calls, except for the first failure which is published right away.
    """

    def __init__(
        self,
        provider: StatusProvider,
        job: Job,
        note: Note,
        status: CommitStatus,
        debounce: float = 1.0,
    ) -> None:
        self.provider = provider
        self.job = job
        self.debounce = debounce
        self._loop = asyncio.get_running_loop()
        self.state = ReportState(
            note=note,
            status=status,
            note_description=note.description,
            start=self._loop.time(),
        )

    def publish_note(self, name: str, content: str) -> None:
        """Stage an entry for the next flush."""
        self.state.note.files[name] = content

    async def flush_notes(self) -> bool:
        """Send the staged entries; they are kept for a retry on failure."""
        try:
            await self.provider.update_note(self.state.note)
        except REPORT_ERRORS as e:
            logger.error(f"- failed to update note: {e}")
            return False
        self.state.note.files = {}
        return True

    async def flush(self) -> None:
        self.state.flush_due = None
        await self.flush_notes()
        await publish_status(self.provider, self.job, self.state.status)

    def process(self, result: StepResult) -> bool:
        """Fold one result into the report.

        Returns:
            True if this is the first failure of the job

        """
        state = self.state
        content = result.content or "<missing>"
        name = result.name
        first_failure = False
        if not result.success:
            name += " FAILED"
            state.status.state = "failure"
            first_failure = state.failed == 0
            state.failed += 1
        name += f" in {format_duration(result.duration)}"
        self.publish_note(name, content)

        # The suffix is shared by the note description and the status.
        suffix = ""
        status_desc = "Setting up"
        if state.total:
            if state.check_num != state.total:
                status_desc = "Running"
                if state.failed:
                    suffix = " FAILED"
                suffix += f" ({state.check_num}/{state.total})"
                state.check_num += 1
            elif not state.failed:
                status_desc = "Success"
                suffix = f" ({state.total}/{state.total})"
                state.status.state = "success"
            else:
                status_desc = "FAILED"
                suffix = f" {state.failed} out of {state.total}"
        elif state.failed:
            suffix = " FAILED"
        suffix += f" in {self._elapsed()}"
        state.note.description = state.note_description + suffix
        state.status.description = status_desc + suffix
        return first_failure

    def _elapsed(self) -> str:
        return format_duration(self._loop.time() - self.state.start)

    def mark_failed(self) -> bool:
        """Report the job as failed if it was not already.

        Returns:
            True if the status changed

        """
        state = self.state
        if state.status.state == "failure":
            return False
        state.status.state = "failure"
        state.status.description = f"FAILED, stopped early in {self._elapsed()}"
        state.note.description = (
            f"{state.note_description} stopped early in {self._elapsed()}"
        )
        return True

    def _finish(self) -> None:
        state = self.state
        if state.status.state not in ("pending", "running"):
            return
        if state.checks_resolved and not state.total:
            # A job without checks never reaches the last check.
            state.status.state = "success"
            state.status.description = f"Success (0/0) in {self._elapsed()}"
        else:
            # The results ended before the last check.
            self.mark_failed()
        state.flush_due = self._loop.time()

    async def abort(self) -> None:
        """Publish a failure for a job whose pipeline crashed."""
        if self.mark_failed():
            await self.flush()

    async def consume(self, results: ResultQueue) -> bool:
        """Process results until the queue is closed with None.

        Returns:
            True if the job failed

        """
        state = self.state
        state.status.state = "running"
        state.status.description = "Setting up"
        await publish_status(self.provider, self.job, state.status)

        while True:
            try:
                if state.flush_due is None:
                    item = await results.get()
                else:
                    timeout = max(0.0, state.flush_due - self._loop.time())
                    item = await asyncio.wait_for(results.get(), timeout)
            except asyncio.TimeoutError:
                await self.flush()
                continue

            if item is None:
                self._finish()
                if state.flush_due is not None:
                    await self.flush()
                return state.status.state == "failure"

            if isinstance(item, ResolvedChecks):
                state.total = len(item.checks)
                state.checks_resolved = True
                item = StepResult(
                    name="setup-3-checks", content=item.describe(), success=True
                )

            if self.process(item):
                # Surface bad news right away.
                await self.flush()
            elif state.flush_due is None:
                state.flush_due = self._loop.time() + self.debounce
