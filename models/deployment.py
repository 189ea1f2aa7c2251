from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentOutcome(BaseModel):
    """Result of one run of the deployment pipeline for a repository."""

    repo_name: str
    path: str
    success: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    cancelled: bool = False
    error: Optional[str] = None  # set when the pipeline could not be started
    timestamp: datetime = Field(default_factory=_utc_now)

    @property
    def message(self) -> str:
        if self.success:
            return f"Deployment successful for {self.repo_name}"
        if self.error:
            return self.error
        if self.timed_out:
            reason = "Deployment timed out"
        elif self.cancelled:
            reason = "Deployment cancelled"
        else:
            reason = f"Command failed with exit code: {self.exit_code}"
        return f"{reason}\nStdout: {self.stdout}\nStderr: {self.stderr}"
