"""GitHub provider implementation: commit statuses, gists and issues."""

from collections.abc import Mapping, Sequence

import aiohttp

from hwci.worker.models.job import Job
from hwci.worker.models.provider_config import GitHubConfig
from hwci.worker.models.report import CommitState, CommitStatus, Note
from hwci.worker.providers.base import StatusProvider

# GitHub has no state for a job in progress.
_STATES: dict[CommitState, str] = {
    "pending": "pending",
    "running": "pending",
    "success": "success",
    "failure": "failure",
}


class GitHubProvider(StatusProvider):
    """Reports to GitHub; the note is a private gist."""

    def __init__(self, config: GitHubConfig) -> None:
        """Initialize GitHub provider with configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.token}",
            "Accept": "application/vnd.github+json",
        }

    async def create_note(self, description: str, files: Mapping[str, str]) -> Note:
        """Create a secret gist; it is readable by anyone with the link."""
        payload = {
            "description": description,
            "public": False,
            "files": {name: {"content": content} for name, content in files.items()},
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}/gists", headers=self._headers(), json=payload
            ) as response:
                if response.status != 201:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to create gist: {response.status} {text}"
                    )
                data: Mapping[str, object] = await response.json()

        return Note(
            id=str(data.get("id", "")),
            html_url=str(data.get("html_url", "")),
            description=description,
        )

    async def update_note(self, note: Note) -> None:
        """Edit the gist; files not sent are carried over by GitHub."""
        payload = {
            "description": note.description,
            "files": {
                name: {"content": content} for name, content in note.files.items()
            },
        }
        async with aiohttp.ClientSession() as session:
            async with session.patch(
                f"{self.base_url}/gists/{note.id}",
                headers=self._headers(),
                json=payload,
            ) as response:
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to update gist: {response.status} {text}"
                    )

    async def publish_status(self, job: Job, status: CommitStatus) -> None:
        """Create a commit status."""
        payload = {
            "state": _STATES[status.state],
            "description": status.description,
            "context": status.context,
        }
        if status.target_url:
            payload["target_url"] = status.target_url
        url = f"{self.base_url}/repos/{job.org}/{job.repo}/statuses/{job.commit_hash}"
        async with aiohttp.ClientSession() as session:
            async with session.post(
                url,
                headers=self._headers(),
                json=payload,
            ) as response:
                if response.status != 201:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to create status: {response.status} {text}"
                    )

    async def create_issue(
        self, job: Job, title: str, body: str, assignees: Sequence[str]
    ) -> None:
        """Create an issue.

        Non-members cannot be assigned an issue; GitHub silently drops them.
        """
        payload = {"title": title, "body": body, "assignees": list(assignees)}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                f"{self.base_url}/repos/{job.org}/{job.repo}/issues",
                headers=self._headers(),
                json=payload,
            ) as response:
                if response.status != 201:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to create issue: {response.status} {text}"
                    )
