from pydantic import BaseModel
from typing import Optional


class Repository(BaseModel):
    full_name: Optional[str] = None


class GitHubWebhook(BaseModel):
    ref: Optional[str] = None
    repository: Optional[Repository] = None
    # Other fields of the GitHub payload (pusher, commits, ...) are ignored

    @property
    def repo_full_name(self) -> Optional[str]:
        if self.repository is None:
            return None
        return self.repository.full_name or None
