"""CLI entry point for the CI worker."""

import asyncio
import logging
import os
import sys
from pathlib import Path

import typer

from hwci.worker.config_loader import (
    PROJECT_CONFIG_NAME,
    ConfigError,
    load_worker_config,
    validate_project_config,
)
from hwci.worker.models.provider_config import WorkerConfig
from hwci.worker.providers.base import StatusProvider
from hwci.worker.providers.github import GitHubProvider
from hwci.worker.providers.local import LocalProvider
from hwci.worker.worker_queue import WorkerQueue

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
    force=True,
)
logger = logging.getLogger(__name__)

app = typer.Typer()


def _create_provider(config: WorkerConfig, dry_run: bool) -> StatusProvider:
    if dry_run:
        return LocalProvider()
    github = config.github()
    if "GITHUB_API_URL" in os.environ:
        github.base_url = os.environ["GITHUB_API_URL"]
    return GitHubProvider(github)


async def run_local(
    queue: WorkerQueue,
    org: str,
    repo: str,
    alt_path: str,
    commit_hash: str,
    use_ssh: bool,
    pull_id: int,
) -> bool:
    """Run one job through the queue, as a webhook would.

    Returns:
        True if the job was queued and succeeded

    """
    logger.info("Running locally")
    # Going through enqueue creates the note and the status.
    queued = await queue.enqueue(
        org, repo, alt_path, commit_hash, use_ssh=use_ssh, pull_id=pull_id
    )
    await queue.wait()
    return queued and queue.failures == 0


@app.command()
def run(
    repository: str = typer.Argument(
        ..., help="Repository to test, e.g. 'periph/gohci'"
    ),
    alt: str = typer.Option(
        "", help="Alternate checkout path, e.g. 'periph.io/x/gohci'"
    ),
    commit: str = typer.Option("", help="Commit to test, defaults to the remote HEAD"),
    pull: int = typer.Option(0, help="Pull request number to test"),
    use_ssh: bool = typer.Option(False, help="Fetch over ssh instead of https"),
    config: Path = typer.Option(Path("hwci.yml"), help="Worker configuration file"),  # noqa: B008
    work_dir: Path = typer.Option(  # noqa: B008
        Path("."), help="Directory holding the workspaces"
    ),
    dry_run: bool = typer.Option(False, help="Log reports instead of publishing them"),
) -> None:
    """Run the checks of a repository on this worker."""
    if repository.startswith("github.com/"):
        typer.echo(
            "Error: don't prefix the repository with 'github.com/', it is assumed",
            err=True,
        )
        raise typer.Exit(code=1)
    org, sep, repo = repository.partition("/")
    if not sep or not org or not repo or "/" in repo:
        typer.echo(f"Error: expected 'org/repo', got {repository!r}", err=True)
        raise typer.Exit(code=1)

    try:
        worker_config = load_worker_config(config)
    except (ConfigError, ValueError) as e:
        logger.error(f"Failed to load configuration: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    logger.info(f"Worker: {worker_config.name}")

    provider = _create_provider(worker_config, dry_run)
    queue = WorkerQueue(worker_config, work_dir.resolve(), provider)
    try:
        ok = asyncio.run(run_local(queue, org, repo, alt, commit, use_ssh, pull))
    finally:
        logger.info("Shutting down")
    if not ok:
        raise typer.Exit(code=1)


@app.command()
def check(
    directory: Path = typer.Argument(Path("."), help="Checkout to validate"),  # noqa: B008
) -> None:
    """Validate the .hwci.yml of a checkout."""
    try:
        project = validate_project_config(directory)
    except (OSError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)
    for worker in project.workers:
        typer.echo(f"{worker.name or '<default>'}: {len(worker.checks)} checks")
    typer.echo(f"{directory / PROJECT_CONFIG_NAME} is valid")


if __name__ == "__main__":  # pragma: no cover
    app()
