"""Provider logging reports instead of publishing them."""

import logging
from collections.abc import Mapping, Sequence

from hwci.worker.models.job import Job
from hwci.worker.models.report import CommitStatus, Note
from hwci.worker.providers.base import StatusProvider

logger = logging.getLogger(__name__)


class LocalProvider(StatusProvider):
    """Logs every update and keeps the whole transcript in memory."""

    def __init__(self) -> None:
        self.files: dict[str, str] = {}
        self.statuses: list[CommitStatus] = []

    async def create_note(self, description: str, files: Mapping[str, str]) -> Note:
        self.files.update(files)
        logger.info(f"Note: {description}")
        return Note(id="local", description=description)

    async def update_note(self, note: Note) -> None:
        logger.info(f"Note: {note.description}")
        for name, content in note.files.items():
            logger.info(f"--- {name}\n{content}")
        self.files.update(note.files)

    async def publish_status(self, job: Job, status: CommitStatus) -> None:
        logger.info(f"Status {job.id}: {status.state} - {status.description}")
        self.statuses.append(status.model_copy())

    async def create_issue(
        self, job: Job, title: str, body: str, assignees: Sequence[str]
    ) -> None:
        logger.info(f"Issue for {job.id} assigned to {', '.join(assignees)}: {title}")
