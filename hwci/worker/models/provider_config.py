"""Configuration models for the worker and its reporting provider."""

from pydantic import BaseModel, Field

from hwci.worker.models.check import Check


class GitHubConfig(BaseModel):
    """Configuration for the GitHub provider."""

    token: str = Field(..., description="OAuth2 token with repo:status and gist")
    base_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )


class WorkerConfig(BaseModel):
    """Worker configuration, found as hwci.yml in the working directory."""

    name: str = Field(
        default="", description="Display name used in statuses, defaults to hostname"
    )
    webhook_secret: str = Field(
        default="", description="Shared secret checked by the webhook front-end"
    )
    port: int = Field(default=8080, description="TCP port of the webhook front-end")
    oauth2_access_token: str = Field(
        default="Get one at https://github.com/settings/tokens",
        description="Token used to create gists and statuses",
    )
    api_url: str = Field(
        default="https://api.github.com", description="GitHub API base URL"
    )
    default_checks: list[Check] = Field(
        default_factory=lambda: [Check(cmd=["go", "test", "./..."])],
        description="Checks to run when the repository has no .hwci.yml entry",
    )
    dependency_command: list[str] = Field(
        default_factory=lambda: ["go", "get", "-v", "-d", "-t", "./..."],
        description="Run after checkout to pull dependencies, empty to skip",
    )
    debounce: float = Field(
        default=1.0, gt=0, description="Seconds to coalesce report updates"
    )
    create_issues: bool = Field(
        default=False, description="File an issue for the blame list on failure"
    )

    def github(self) -> GitHubConfig:
        return GitHubConfig(token=self.oauth2_access_token, base_url=self.api_url)
