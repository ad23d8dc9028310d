"""Data models for jobs, checks, configurations, and results."""

from hwci.worker.models.check import Check, ProjectConfig, ProjectWorkerConfig
from hwci.worker.models.job import Job
from hwci.worker.models.provider_config import GitHubConfig, WorkerConfig
from hwci.worker.models.report import CommitState, CommitStatus, Note
from hwci.worker.models.step_result import ResolvedChecks, StepResult, SyncOutcome

__all__ = [
    "Check",
    "CommitState",
    "CommitStatus",
    "GitHubConfig",
    "Job",
    "Note",
    "ProjectConfig",
    "ProjectWorkerConfig",
    "ResolvedChecks",
    "StepResult",
    "SyncOutcome",
    "WorkerConfig",
]
