from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class AdminRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo_name: str = Field(..., alias="repoName", min_length=1)
    path: str = Field(..., min_length=1)
    secret: str = Field(..., min_length=1)
    branch: Optional[str] = None


class DeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo_name: str = Field(..., alias="repoName", min_length=1)


class DeployRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    repo_name: str = Field(..., alias="repoName", min_length=1)


class ApiResponse(BaseModel):
    success: bool
    message: str


class ApiError(BaseModel):
    error: str
