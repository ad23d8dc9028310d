"""Models for what is published to the tracking service."""

from typing import Literal

from pydantic import BaseModel, Field

CommitState = Literal["pending", "running", "success", "failure"]


class CommitStatus(BaseModel):
    """Status attached to the commit being verified."""

    state: CommitState = Field(default="pending", description="Status state")
    description: str = Field(default="", description="Short progress summary")
    context: str = Field(..., description="Worker display name")
    target_url: str | None = Field(default=None, description="Link to the note")


class Note(BaseModel):
    """Append-only transcript of the job, e.g. a gist."""

    id: str = Field(..., description="Identifier assigned by the provider")
    html_url: str = Field(default="", description="Browser link")
    description: str = Field(default="", description="Title of the note")
    files: dict[str, str] = Field(
        default_factory=dict, description="Entries not flushed yet"
    )
