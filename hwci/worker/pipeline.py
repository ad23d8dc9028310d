"""Sequence the phases of a job and stream their results."""

import asyncio
import logging
import time

from hwci.worker.command_runner import run_command
from hwci.worker.config_loader import load_project_config
from hwci.worker.models.check import Check
from hwci.worker.models.job import Job
from hwci.worker.models.provider_config import WorkerConfig
from hwci.worker.models.step_result import ResolvedChecks, StepResult
from hwci.worker.workspace_sync import clone_repository, sync_workspace

logger = logging.getLogger(__name__)

# Branch name unlikely to conflict with the repository's own branches.
CHECKOUT_BRANCH = "_hwci"
TRACKING_BRANCH = "_hwci2"

PipelineEvent = StepResult | ResolvedChecks
ResultQueue = asyncio.Queue[PipelineEvent | None]


class JobPipeline:
    """Runs sync, checkout, check resolution and checks for one job."""

    def __init__(self, job: Job, config: WorkerConfig) -> None:
        self.job = job
        self.config = config

    async def run(self, results: ResultQueue) -> bool:
        """Run every phase, pushing results; the queue is closed with None.

        Returns:
            True if setup succeeded and every check passed

        """
        try:
            start = time.perf_counter()
            content, ok = await sync_workspace(self.job)
            await results.put(
                StepResult(
                    name="setup-1-sync",
                    content=content,
                    success=ok,
                    duration=time.perf_counter() - start,
                )
            )
            if not ok:
                return False

            start = time.perf_counter()
            content, ok = await self.checkout()
            await results.put(
                StepResult(
                    name="setup-2-get",
                    content=content,
                    success=ok,
                    duration=time.perf_counter() - start,
                )
            )
            if not ok:
                return False

            resolved = self.resolve_checks()
            await results.put(resolved)
            return await self.run_checks(resolved.checks, results)
        finally:
            await results.put(None)

    async def checkout(self) -> tuple[str, bool]:
        """Check out the primary repository at the job's commit."""
        out = ""
        if not self.job.repo_dir.exists():
            # Deleted by sync after a failed fetch.
            out, ok = await clone_repository(self.job)
            if not ok:
                return out, False

        setup_cmds = [
            # Dependency tools may refuse to work on a detached checkout.
            ["git", "checkout", "--quiet", "-B", CHECKOUT_BRANCH, self.job.commit_hash],
            # Ensures a tracking branch exists for tools that pull.
            ["git", "checkout", "--quiet", "-B", TRACKING_BRANCH, CHECKOUT_BRANCH],
        ]
        if self.config.dependency_command:
            setup_cmds.append(self.config.dependency_command)

        rel = self.job.repo_dir.relative_to(self.job.workspace)
        for cmd in setup_cmds:
            stdout, ok = await run_command(self.job, rel, [], cmd)
            out += stdout
            if not ok:
                return out, False
        return out, True

    def resolve_checks(self) -> ResolvedChecks:
        """Pick the checks from the repository's .hwci.yml or the default."""
        project = load_project_config(self.job.repo_dir)
        if project is not None:
            found = project.checks_for(self.config.name)
            if found is not None:
                checks, note = found
                return ResolvedChecks(checks=checks, note=note)
        return ResolvedChecks(
            checks=list(self.config.default_checks), note="Using default check"
        )

    async def run_checks(self, checks: list[Check], results: ResultQueue) -> bool:
        """Run every check in order, even after one fails."""
        ok = True
        width = len(str(len(checks)))
        rel = self.job.repo_dir.relative_to(self.job.workspace)
        for i, check in enumerate(checks, start=1):
            start = time.perf_counter()
            # TODO: Refuse a dir escaping the checkout, including via symlinks.
            relwd = rel / check.dir if check.dir else rel
            stdout, success = await run_command(
                self.job, relwd, check.env, check.cmd, path_override=True
            )
            await results.put(
                StepResult(
                    name=f"cmd{i:0{width}d}",
                    content=stdout,
                    success=success,
                    duration=time.perf_counter() - start,
                )
            )
            ok = ok and success
        return ok
