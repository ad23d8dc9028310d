"""Model for a verification job."""

import os
import platform
import sys
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field

# Variables describing the workspace, replaced by job-local values.
WORKSPACE_VARIABLES = ("GOPATH", "PATH")


class Job(BaseModel):
    """One request to verify a commit or pull request of a repository."""

    org: str = Field(..., description="Organization or user owning the repository")
    repo: str = Field(..., description="Repository name")
    alt_path: str = Field(
        default="", description="Alternate checkout path, e.g. periph.io/x/gohci"
    )
    commit_hash: str = Field(default="", description="Commit hash, not a ref")
    use_ssh: bool = Field(default=False, description="Clone over ssh, not https")
    pull_id: int = Field(default=0, description="Pull request number, 0 if none")
    workspace: Path = Field(..., description="Private workspace root for this job")
    host_env: dict[str, str] = Field(
        default_factory=dict, description="Process environment at creation"
    )

    @classmethod
    def create(
        cls,
        org: str,
        repo: str,
        work_dir: Path,
        alt_path: str = "",
        commit_hash: str = "",
        use_ssh: bool = False,
        pull_id: int = 0,
    ) -> "Job":
        """Create a job whose workspace is derived from org and repo."""
        # Organization names cannot contain an underscore.
        return cls(
            org=org,
            repo=repo,
            alt_path=alt_path,
            commit_hash=commit_hash,
            use_ssh=use_ssh,
            pull_id=pull_id,
            workspace=work_dir / f"{org}_{repo}",
            host_env=dict(os.environ),
        )

    @property
    def id(self) -> str:
        return f"{self.org}/{self.repo}"

    @property
    def checkout_path(self) -> Path:
        """Checkout location relative to src_root."""
        if self.alt_path:
            return Path(*PurePosixPath(self.alt_path).parts)
        return Path("github.com", self.org, self.repo)

    @property
    def src_root(self) -> Path:
        return self.workspace / "src"

    @property
    def repo_dir(self) -> Path:
        return self.src_root / self.checkout_path

    @property
    def bin_dir(self) -> Path:
        return self.workspace / "bin"

    @property
    def search_path(self) -> str:
        """Executable search path used for checks."""
        return os.pathsep.join(
            p for p in (str(self.bin_dir), self.host_env.get("PATH", "")) if p
        )

    @property
    def clone_url(self) -> str:
        if self.use_ssh:
            return f"git@github.com:{self.id}"
        return f"https://github.com/{self.id}"

    def environment(self) -> dict[str, str]:
        """Return the base environment for commands run by this job."""
        env = {
            k: v for k, v in self.host_env.items() if k not in WORKSPACE_VARIABLES
        }
        # GOPATH may not be set when running as a service; always use the
        # job-local one so the host environment is never modified.
        env["GOPATH"] = str(self.workspace)
        env["PATH"] = self.search_path
        if self.commit_hash:
            env["GIT_SHA"] = self.commit_hash
        return env

    def metadata(self) -> str:
        """Describe the worker for the first entry of the note."""
        out = (
            f"Commit:  {self.commit_hash}\n"
            f"CPUs:    {os.cpu_count()}\n"
            f"Python:  {sys.version.split()[0]}\n"
            f"GOPATH:  {self.workspace}\n"
            f"PATH:    {self.search_path}\n"
        )
        if sys.platform != "win32":
            out += f"uname:   {' '.join(platform.uname())}\n"
        return out

    def __str__(self) -> str:
        commit = f"https://github.com/{self.id}/commit/{self.commit_hash[:12]}"
        if self.pull_id:
            return f"https://github.com/{self.id}/pull/{self.pull_id} at {commit}"
        return commit
