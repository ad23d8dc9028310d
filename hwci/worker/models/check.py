"""Models for check definitions loaded from .hwci.yml files."""

from pydantic import AliasChoices, BaseModel, Field, field_validator


class Check(BaseModel):
    """Single command to run against the checkout."""

    cmd: list[str] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("cmd", "command"),
        description="Command line to run",
    )
    env: list[str] = Field(
        default_factory=list, description="Optional KEY=VALUE environment overlay"
    )
    dir: str = Field(
        default="", description="Directory to run from, relative to the checkout"
    )

    @field_validator("env")
    @classmethod
    def _check_env(cls, value: list[str]) -> list[str]:
        for entry in value:
            if "=" not in entry or entry.startswith("="):
                raise ValueError(f"environment entry must be KEY=VALUE: {entry!r}")
        return value

    def __str__(self) -> str:
        return " ".join([*self.env, *self.cmd])


class ProjectWorkerConfig(BaseModel):
    """Checks for one worker, or for every worker when name is empty."""

    name: str = Field(default="", description="Worker this entry belongs to")
    checks: list[Check] = Field(
        default_factory=list, description="Commands to run, in order"
    )


class ProjectConfig(BaseModel):
    """Configuration found as .hwci.yml at the root of a repository."""

    version: int = Field(..., description="Schema version, currently 1")
    workers: list[ProjectWorkerConfig] = Field(default_factory=list)

    def checks_for(self, worker_name: str) -> tuple[list[Check], str] | None:
        """Return the checks for worker_name, falling back to the unnamed entry."""
        for worker in self.workers:
            if worker.name == worker_name:
                return (
                    worker.checks,
                    "Using worker specific checks from the repo's .hwci.yml",
                )
        for worker in self.workers:
            if not worker.name:
                return worker.checks, "Using generic checks from the repo's .hwci.yml"
        return None
