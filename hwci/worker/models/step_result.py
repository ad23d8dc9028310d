"""Models for the results produced while a job runs."""

from pydantic import BaseModel, Field

from hwci.worker.models.check import Check


class StepResult(BaseModel):
    """Output of one pipeline phase or check."""

    name: str = Field(..., description="Name of the entry in the note")
    content: str = Field(default="", description="Captured output")
    success: bool = Field(..., description="Whether the step succeeded")
    duration: float = Field(default=0.0, description="Execution time in seconds")


class ResolvedChecks(BaseModel):
    """Emitted once the check list for the job is known."""

    checks: list[Check]
    note: str = Field(..., description="Where the checks were loaded from")

    def describe(self) -> str:
        lines = "\n".join(f"  {check}" for check in self.checks)
        return f"{self.note}\nCommands to be run:\n{lines}"


class SyncOutcome(BaseModel):
    """Aggregate of every repository synchronized concurrently."""

    content: str = ""
    success: bool = True

    def add(self, content: str, ok: bool) -> None:
        self.content += content
        self.success = self.success and ok
