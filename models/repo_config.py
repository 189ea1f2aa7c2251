from pydantic import BaseModel, Field, field_validator
from typing import Dict, Optional


class RepoConfig(BaseModel):
    path: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1)
    branch: Optional[str] = None

    @field_validator("branch")
    @classmethod
    def empty_branch_means_any(cls, value: Optional[str]) -> Optional[str]:
        # An empty branch carries no restriction
        return value or None


RepoConfigs = Dict[str, RepoConfig]
