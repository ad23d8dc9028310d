"""Abstract base class for status reporting providers."""

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

from hwci.worker.models.job import Job
from hwci.worker.models.report import CommitStatus, Note


class StatusProvider(ABC):
    """Abstract base for the service tracking job statuses and transcripts.

    Implementations raise RuntimeError when the service rejects a call.
    """

    @abstractmethod
    async def create_note(self, description: str, files: Mapping[str, str]) -> Note:
        """Create the transcript of a job.

        Args:
            description: Title of the note
            files: Initial entries, name to content

        Returns:
            Created note, with its identifier and link

        """

    @abstractmethod
    async def update_note(self, note: Note) -> None:
        """Update the note description and add or replace note.files entries."""

    @abstractmethod
    async def publish_status(self, job: Job, status: CommitStatus) -> None:
        """Set the status of job.commit_hash."""

    @abstractmethod
    async def create_issue(
        self, job: Job, title: str, body: str, assignees: Sequence[str]
    ) -> None:
        """File an issue in the job's repository."""
