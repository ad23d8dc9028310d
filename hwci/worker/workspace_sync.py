"""Synchronize the git repositories found in a job's workspace."""

import asyncio
import logging
import os
import shutil
from pathlib import Path

from hwci.worker.command_runner import run_command
from hwci.worker.models.job import Job
from hwci.worker.models.step_result import SyncOutcome

logger = logging.getLogger(__name__)

SyncQueue = asyncio.Queue[tuple[str, bool] | None]


def ensure_parent_dir(job: Job) -> None:
    """Create the directory holding the primary checkout.

    git clone races with the directory walk if it doesn't exist.
    """
    parent = job.repo_dir.parent
    parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    logger.info(f"Created {parent}")


async def _recover(path: Path, stdout: str) -> tuple[str, bool]:
    """Delete a checkout that failed to fetch.

    A later clone repairs it; only a failed deletion is fatal.
    """
    try:
        await asyncio.to_thread(shutil.rmtree, path)
    except OSError as e:
        return f"{stdout}<failure>\n{e}\n", False
    return f"{stdout}<recovered failure>\nrm -rf {path}\n", True


def _fetch_args(job: Job) -> list[str]:
    args = ["git", "fetch", "--prune", "--quiet", "origin"]
    if job.pull_id:
        args.append(f"pull/{job.pull_id}/head")
    return args


async def clone_repository(job: Job) -> tuple[str, bool]:
    """Clone the primary repository; fetch the pull request ref if relevant."""
    rel = job.repo_dir.relative_to(job.workspace)
    stdout, ok = await run_command(
        job, rel.parent, [], ["git", "clone", "--quiet", job.clone_url, rel.name]
    )
    if not ok or not job.pull_id:
        return stdout, ok
    # For pull requests, the commit has to be fetched explicitly.
    stdout2, ok = await run_command(job, rel, [], _fetch_args(job))
    return stdout + stdout2, ok


async def _clone_or_fetch(job: Job, results: SyncQueue) -> None:
    if not job.repo_dir.exists():
        await results.put(await clone_repository(job))
        return
    stdout, ok = await run_command(
        job, job.repo_dir.relative_to(job.workspace), [], _fetch_args(job)
    )
    if not ok:
        stdout, ok = await _recover(job.repo_dir, stdout)
    await results.put((stdout, ok))


async def _fetch_repository(job: Job, repo_dir: Path, results: SyncQueue) -> None:
    stdout, ok = await run_command(
        job,
        repo_dir.relative_to(job.workspace),
        [],
        ["git", "fetch", "--quiet", "--prune", "--all"],
    )
    if not ok:
        stdout, ok = await _recover(repo_dir, stdout)
    await results.put((stdout, ok))


async def _aggregate(results: SyncQueue) -> SyncOutcome:
    outcome = SyncOutcome()
    while (item := await results.get()) is not None:
        outcome.add(*item)
    return outcome


async def _remove_bin(job: Job) -> tuple[str, bool]:
    # A failed install could otherwise be masked by a stale binary from a
    # previous run.
    try:
        if job.bin_dir.exists():
            await asyncio.to_thread(shutil.rmtree, job.bin_dir)
    except OSError as e:
        return f"Removed $GOPATH/bin: {e}\n", False
    return "Removed $GOPATH/bin\n", True


def _find_checkouts(job: Job) -> tuple[list[Path], list[OSError]]:
    """List the checkouts under src_root other than the primary one."""
    checkouts: list[Path] = []
    errors: list[OSError] = []
    for dirpath, dirnames, _ in os.walk(job.src_root, onerror=errors.append):
        path = Path(dirpath)
        if ".git" in dirnames:
            dirnames.clear()
            checkouts.append(path)
            continue
        # The primary checkout is synced concurrently and may be deleted.
        dirnames[:] = [d for d in dirnames if path / d != job.repo_dir]
    return checkouts, errors


async def _sync_parallel(job: Job, results: SyncQueue) -> None:
    try:
        ensure_parent_dir(job)
    except OSError as e:
        await results.put((f"<failure>\n{e}\n", False))
        return

    tasks = [asyncio.create_task(_clone_or_fetch(job, results))]
    checkouts, walk_errors = await asyncio.to_thread(_find_checkouts, job)
    for path in checkouts:
        tasks.append(asyncio.create_task(_fetch_repository(job, path, results)))

    await results.put(await _remove_bin(job))
    await asyncio.gather(*tasks)
    if walk_errors:
        await results.put((f"<directory walking failure>\n{walk_errors[0]}\n", False))


async def sync_workspace(job: Job) -> tuple[str, bool]:
    """Sync the primary repository and every other checkout concurrently.

    Fetching is latency bound, so all the repositories found under the
    workspace are fetched at the same time as the primary one is cloned or
    fetched. A repository that fails to fetch is deleted instead of failing
    the job.

    Returns:
        Tuple of (combined output, success)

    """
    results: SyncQueue = asyncio.Queue(maxsize=1)
    consumer = asyncio.create_task(_aggregate(results))
    try:
        await _sync_parallel(job, results)
    finally:
        await results.put(None)
    outcome = await consumer
    return outcome.content, outcome.success


async def resolve_commit_hash(job: Job) -> bool:
    """Set job.commit_hash to the remote HEAD, or the pull request head."""
    try:
        ensure_parent_dir(job)
    except OSError as e:
        logger.error(f"  failed to create workspace: {e}")
        return False
    stdout, ok = await run_command(job, "", [], ["git", "ls-remote", job.clone_url])
    if not ok:
        logger.error(f"  git ls-remote failed:\n{stdout}")
        return False
    ref = f"refs/pull/{job.pull_id}/head" if job.pull_id else "HEAD"
    for line in stdout.splitlines():
        sha, sep, name = line.partition("\t")
        if sep and name == ref:
            job.commit_hash = sha
            logger.info(f"  Found {sha} for {ref}")
            return True
    logger.error("  Didn't find remote")
    return False
