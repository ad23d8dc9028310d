"""Tests for the reporting state machine."""

import asyncio
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from hwci.worker.models.check import Check
from hwci.worker.models.job import Job
from hwci.worker.models.report import CommitStatus, Note
from hwci.worker.models.step_result import ResolvedChecks, StepResult
from hwci.worker.pipeline import PipelineEvent
from hwci.worker.providers.base import StatusProvider
from hwci.worker.reporter import ProgressReporter, publish_status


class RecordingProvider(StatusProvider):
    """Records every update; notes can be made to fail."""

    def __init__(self, fail_notes: bool = False) -> None:
        """Initialize recorder."""
        self.fail_notes = fail_notes
        self.flushes: list[tuple[str, dict[str, str]]] = []
        self.statuses: list[CommitStatus] = []
        self.flushed = asyncio.Event()

    async def create_note(
        self, description: str, files: Mapping[str, str]
    ) -> Note:  # pragma: no cover
        """Unused."""
        return Note(id="1", description=description)

    async def update_note(self, note: Note) -> None:
        """Record the staged files."""
        if self.fail_notes:
            raise RuntimeError("rate limited")
        self.flushes.append((note.description, dict(note.files)))
        self.flushed.set()

    async def publish_status(self, job: Job, status: CommitStatus) -> None:
        """Record a copy of the status."""
        self.statuses.append(status.model_copy())

    async def create_issue(
        self, job: Job, title: str, body: str, assignees: Sequence[str]
    ) -> None:  # pragma: no cover
        """Unused."""


@pytest.fixture
def job(tmp_path: Path) -> Job:
    """Create a job."""
    return Job.create("org", "repo", tmp_path, commit_hash="c" * 40)


@pytest.fixture
def provider() -> RecordingProvider:
    """Create recording provider."""
    return RecordingProvider()


def _reporter(
    provider: StatusProvider, job: Job, debounce: float = 60.0
) -> ProgressReporter:
    note = Note(id="1", html_url="https://gist/1", description="worker1 for job")
    status = CommitStatus(state="pending", context="worker1")
    return ProgressReporter(provider, job, note, status, debounce=debounce)


def _result(name: str, success: bool = True, content: str = "out\n") -> StepResult:
    return StepResult(name=name, content=content, success=success, duration=0.5)


def _checks(n: int) -> ResolvedChecks:
    return ResolvedChecks(
        checks=[Check(cmd=["true"]) for _ in range(n)], note="Using default check"
    )


async def _feed(items: Sequence[PipelineEvent | None]) -> asyncio.Queue:
    results: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
    for item in items:
        await results.put(item)
    return results


def _all_files(provider: RecordingProvider) -> dict[str, str]:
    files: dict[str, str] = {}
    for _, flushed in provider.flushes:
        files.update(flushed)
    return files


async def test_consume_failed_check_summary(
    provider: RecordingProvider, job: Job
) -> None:
    """consume reports a failure and marks only the failed check."""
    reporter = _reporter(provider, job)
    results = await _feed(
        [
            _result("setup-1-sync"),
            _result("setup-2-get"),
            _checks(3),
            _result("cmd1"),
            _result("cmd2", success=False),
            _result("cmd3"),
            None,
        ]
    )

    failed = await reporter.consume(results)

    assert failed is True
    names = sorted(_all_files(provider))
    assert names == [
        "cmd1 in 500ms",
        "cmd2 FAILED in 500ms",
        "cmd3 in 500ms",
        "setup-1-sync in 500ms",
        "setup-2-get in 500ms",
        "setup-3-checks in 0s",
    ]
    assert [name for name in names if "FAILED" in name] == ["cmd2 FAILED in 500ms"]
    final = provider.statuses[-1]
    assert final.state == "failure"
    assert final.description.startswith("FAILED 1 out of 3 in ")
    assert provider.flushes[-1][0].startswith("worker1 for job 1 out of 3 in ")


async def test_consume_first_failure_flushes_and_later_debounces(
    provider: RecordingProvider, job: Job
) -> None:
    """consume flushes at the first failure, then debounces the rest."""
    reporter = _reporter(provider, job)
    results = await _feed(
        [_checks(3), _result("cmd1", success=False), _result("cmd2"), _result("cmd3")]
    )
    await results.put(None)

    await reporter.consume(results)

    assert len(provider.flushes) == 2
    first = provider.flushes[0][1]
    assert set(first) == {"setup-3-checks in 0s", "cmd1 FAILED in 500ms"}
    assert set(provider.flushes[1][1]) == {"cmd2 in 500ms", "cmd3 in 500ms"}


async def test_consume_first_failure_is_immediate(
    provider: RecordingProvider, job: Job
) -> None:
    """consume flushes the first failure without waiting for the debounce."""
    reporter = _reporter(provider, job, debounce=60.0)
    results: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
    task = asyncio.create_task(reporter.consume(results))

    await results.put(_result("setup-1-sync", success=False))
    await asyncio.wait_for(provider.flushed.wait(), timeout=5)

    assert len(provider.flushes) == 1
    assert "setup-1-sync FAILED in 500ms" in provider.flushes[0][1]
    assert provider.statuses[-1].state == "failure"
    assert provider.statuses[-1].description.startswith("Setting up FAILED in ")

    await results.put(None)
    assert await task is True
    assert len(provider.flushes) == 1


async def test_consume_coalesces_within_debounce(
    provider: RecordingProvider, job: Job
) -> None:
    """consume sends results arriving within the window in one flush."""
    reporter = _reporter(provider, job, debounce=0.05)
    results: asyncio.Queue[PipelineEvent | None] = asyncio.Queue()
    task = asyncio.create_task(reporter.consume(results))

    await results.put(_checks(1))
    await results.put(_result("cmd1"))
    await asyncio.wait_for(provider.flushed.wait(), timeout=5)
    await asyncio.sleep(0.2)

    assert len(provider.flushes) == 1
    assert set(provider.flushes[0][1]) == {"setup-3-checks in 0s", "cmd1 in 500ms"}

    await results.put(None)
    assert await task is False
    assert len(provider.flushes) == 1
    assert provider.statuses[-1].state == "success"


async def test_consume_flushes_pending_on_close(
    provider: RecordingProvider, job: Job
) -> None:
    """consume performs the pending flush when the queue closes."""
    reporter = _reporter(provider, job, debounce=60.0)
    results = await _feed([_checks(2), _result("cmd1"), _result("cmd2"), None])

    failed = await reporter.consume(results)

    assert failed is False
    assert len(provider.flushes) == 1
    description, files = provider.flushes[0]
    assert description.startswith("worker1 for job (2/2) in ")
    assert len(files) == 3
    final = provider.statuses[-1]
    assert final.state == "success"
    assert final.description.startswith("Success (2/2) in ")


async def test_consume_progress_descriptions(
    provider: RecordingProvider, job: Job
) -> None:
    """process computes the progress suffix as checks complete."""
    reporter = _reporter(provider, job)
    reporter.state.total = 2

    reporter.process(_result("setup-3-checks"))
    assert reporter.state.status.description.startswith("Running (0/2) in ")
    reporter.process(_result("cmd1", success=False))
    assert reporter.state.status.description.startswith("Running FAILED (1/2) in ")
    reporter.process(_result("cmd2"))
    assert reporter.state.status.description.startswith("FAILED 1 out of 2 in ")


async def test_consume_starts_running(provider: RecordingProvider, job: Job) -> None:
    """consume publishes the running status before any result."""
    reporter = _reporter(provider, job)

    await reporter.consume(await _feed([None]))

    assert provider.statuses[0].state == "running"
    assert provider.statuses[0].description == "Setting up"


async def test_consume_without_checks_succeeds(
    provider: RecordingProvider, job: Job
) -> None:
    """consume ends in success when there was nothing to run."""
    reporter = _reporter(provider, job)

    failed = await reporter.consume(
        await _feed([_result("setup-1-sync"), _result("setup-2-get"), _checks(0), None])
    )

    assert failed is False
    assert provider.statuses[-1].state == "success"
    assert provider.statuses[-1].description.startswith("Success (0/0) in ")


async def test_consume_empty_content_placeholder(
    provider: RecordingProvider, job: Job
) -> None:
    """consume replaces empty output with a placeholder."""
    reporter = _reporter(provider, job)

    await reporter.consume(await _feed([_result("setup-1-sync", content=""), None]))

    assert _all_files(provider) == {"setup-1-sync in 500ms": "<missing>"}


async def test_consume_note_failure_keeps_entries(job: Job) -> None:
    """consume survives note failures and keeps entries for a retry."""
    provider = RecordingProvider(fail_notes=True)
    reporter = _reporter(provider, job)

    failed = await reporter.consume(
        await _feed([_result("setup-1-sync", success=False), None])
    )

    assert failed is True
    assert "setup-1-sync FAILED in 500ms" in reporter.state.note.files
    assert provider.statuses[-1].state == "failure"


async def test_flush_notes_clears_entries(
    provider: RecordingProvider, job: Job
) -> None:
    """flush_notes sends the staged entries once."""
    reporter = _reporter(provider, job)
    reporter.publish_note("a", "1")

    assert await reporter.flush_notes() is True
    assert reporter.state.note.files == {}
    assert provider.flushes == [("worker1 for job", {"a": "1"})]


async def test_publish_status_logs_failures(job: Job) -> None:
    """publish_status returns False instead of raising."""

    class FailingProvider(RecordingProvider):
        async def publish_status(self, job: Job, status: CommitStatus) -> None:
            raise RuntimeError("Failed to create status: 500")

    status = CommitStatus(state="pending", context="worker1")

    assert await publish_status(FailingProvider(), job, status) is False


async def test_consume_closed_before_checks_fails(
    provider: RecordingProvider, job: Job
) -> None:
    """consume reports a failure when results end before the checks are known."""
    reporter = _reporter(provider, job)

    failed = await reporter.consume(await _feed([_result("setup-1-sync"), None]))

    assert failed is True
    final = provider.statuses[-1]
    assert final.state == "failure"
    assert final.description.startswith("FAILED, stopped early in ")
    assert provider.flushes[-1][0].startswith("worker1 for job stopped early in ")


async def test_consume_closed_mid_checks_fails(
    provider: RecordingProvider, job: Job
) -> None:
    """consume reports a failure when results end before the last check."""
    reporter = _reporter(provider, job)

    failed = await reporter.consume(
        await _feed([_checks(3), _result("cmd1"), None])
    )

    assert failed is True
    assert provider.statuses[-1].state == "failure"
    assert "cmd1 in 500ms" in _all_files(provider)


async def test_abort_overrides_success(provider: RecordingProvider, job: Job) -> None:
    """abort publishes a failure even after the checks passed."""
    reporter = _reporter(provider, job)
    await reporter.consume(await _feed([_checks(1), _result("cmd1"), None]))
    assert provider.statuses[-1].state == "success"

    await reporter.abort()

    assert provider.statuses[-1].state == "failure"
    assert provider.statuses[-1].description.startswith("FAILED, stopped early in ")


async def test_abort_keeps_existing_failure(
    provider: RecordingProvider, job: Job
) -> None:
    """abort doesn't republish a job already reported as failed."""
    reporter = _reporter(provider, job)
    await reporter.consume(
        await _feed([_checks(1), _result("cmd1", success=False), None])
    )
    published = len(provider.statuses)

    await reporter.abort()

    assert len(provider.statuses) == published
    assert provider.statuses[-1].description.startswith("FAILED 1 out of 1 in ")
