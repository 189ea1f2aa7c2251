# routers/admin.py manages the repository list and manual redeploys.

import asyncio
import logging
from typing import Dict

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from starlette.background import BackgroundTask

from config import Settings
from dependencies import get_deployer, get_notifier, get_repo_store, get_settings, require_admin_token
from deploy_pipeline import Deployer
from models.admin_request import AdminRequest, ApiResponse, DeleteRequest, DeployRequest
from models.repo_config import RepoConfig
from notifications import Notifications
from repo_store import RepoStore

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin_token)])
logger = logging.getLogger(__name__)

REDACTED = "********"


@router.get("/repos", summary="List configured repositories")
def list_repos(
        repo_store: RepoStore = Depends(get_repo_store),
        settings: Settings = Depends(get_settings),
) -> Dict[str, RepoConfig]:
    configs = repo_store.list()
    if settings.redact_secrets:
        return {name: config.model_copy(update={"secret": REDACTED}) for name, config in configs.items()}
    return configs


@router.post("/repos", summary="Add or update a repository", response_model=ApiResponse)
def add_update_repo(request: AdminRequest, repo_store: RepoStore = Depends(get_repo_store)):
    repo_store.upsert(
        request.repo_name,
        RepoConfig(path=request.path, secret=request.secret, branch=request.branch),
    )
    return ApiResponse(success=True, message=f"Repository {request.repo_name} configured successfully")


@router.delete("/repos", summary="Remove a repository", response_model=ApiResponse)
def delete_repo(request: DeleteRequest, repo_store: RepoStore = Depends(get_repo_store)):
    if not repo_store.remove(request.repo_name):
        logger.info(f"Delete requested for unknown repository {request.repo_name}.")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repository {request.repo_name} not found"
        )
    return ApiResponse(success=True, message=f"Repository {request.repo_name} removed successfully")


@router.post("/deploy", summary="Manual Deployment Endpoint")
async def manual_deploy(
        request: DeployRequest,
        repo_store: RepoStore = Depends(get_repo_store),
        deployer: Deployer = Depends(get_deployer),
        notifier: Notifications = Depends(get_notifier),
):
    repo_name = request.repo_name
    logger.info(f"Manual deployment triggered for repository: {repo_name}")

    loop = asyncio.get_running_loop()
    repo_config = await loop.run_in_executor(None, repo_store.get, repo_name)
    if repo_config is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Repository {repo_name} not found"
        )

    async with deployer.tracker.queued(repo_name):
        outcome = await loop.run_in_executor(None, deployer.deploy, repo_name, repo_config)

    background = BackgroundTask(notifier.notify_deployment, outcome)
    if outcome.success:
        return JSONResponse(
            content=ApiResponse(success=True, message=outcome.message).model_dump(),
            background=background,
        )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": f"Deployment failed for {repo_name}: {outcome.message}"},
        background=background,
    )
