import asyncio
import json
import logging
from typing import Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import ValidationError
from starlette.background import BackgroundTask
from starlette.requests import ClientDisconnect

from config import Settings
from dependencies import get_deployer, get_notifier, get_repo_store, get_settings
from deploy_pipeline import Deployer
from models.github_webhook import GitHubWebhook
from notifications import Notifications
from repo_store import RepoStore
from utils import branch_from_ref, verify_signature

router = APIRouter()
logger = logging.getLogger(__name__)


async def read_body(request: Request, limit: int) -> bytes:
    """Read the raw request body, refusing anything larger than limit bytes."""
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            too_large = int(declared) > limit
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Content-Length header")
        if too_large:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body too large")

    body = bytearray()
    try:
        async for chunk in request.stream():
            body.extend(chunk)
            if len(body) > limit:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Request body too large")
    except ClientDisconnect:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to read request body")
    return bytes(body)


def parse_payload(body: bytes, content_type: str) -> GitHubWebhook:
    """
    Parse a GitHub delivery. JSON bodies are used as-is; form encoded deliveries carry
    the JSON document in the 'payload' field.
    """
    if "application/x-www-form-urlencoded" in content_type:
        form_data = parse_qs(body.decode("utf-8"))
        if "payload" not in form_data:
            raise ValueError("No payload parameter in form data")
        return GitHubWebhook.model_validate(json.loads(form_data["payload"][0]))
    return GitHubWebhook.model_validate_json(body)


@router.post("/webhook", summary="GitHub Webhook Endpoint")
async def handle_webhook(
        request: Request,
        x_hub_signature_256: Optional[str] = Header(None),
        x_github_event: Optional[str] = Header(None),
        settings: Settings = Depends(get_settings),
        repo_store: RepoStore = Depends(get_repo_store),
        deployer: Deployer = Depends(get_deployer),
        notifier: Notifications = Depends(get_notifier),
):
    logger.info("Webhook endpoint was called.")

    # 1. Read the raw body (bounded).
    body_bytes = await read_body(request, settings.max_body_bytes)

    # 2. Parse payload.
    try:
        webhook = parse_payload(body_bytes, request.headers.get("Content-Type", ""))
    except (ValueError, ValidationError, UnicodeDecodeError) as e:
        logger.error(f"Could not decode webhook payload: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON payload")

    # 3. Resolve the repository.
    repo_full_name = webhook.repo_full_name
    if not repo_full_name:
        logger.error("Repository name not found in payload.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Repository not specified in payload")

    # Lookups can wait up to lock_timeout on the store lock.
    loop = asyncio.get_running_loop()
    repo_config = await loop.run_in_executor(None, repo_store.get, repo_full_name)
    if repo_config is None:
        logger.warning(f"No configuration found for repository: {repo_full_name}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Repository not configured")

    # 4. Verify signature, before any event or branch filtering.
    if not x_hub_signature_256:
        logger.error("Missing X-Hub-Signature-256 header.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not verify_signature(repo_config.secret, body_bytes, x_hub_signature_256):
        logger.warning(f"Invalid signature for repository {repo_full_name}.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    # 5. Only push events deploy.
    if not x_github_event:
        logger.error("Missing X-GitHub-Event header.")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No GitHub event specified")
    if x_github_event != "push":
        logger.info(f"Ignoring event: {x_github_event}")
        return PlainTextResponse(f"Ignored: {x_github_event} event")

    # 6. Branch restriction, if configured.
    if repo_config.branch:
        push_branch = branch_from_ref(webhook.ref)
        if push_branch != repo_config.branch:
            logger.info(f"Ignoring push to branch {push_branch}, only deploying {repo_config.branch}")
            return PlainTextResponse(f"Ignored: push to {push_branch}, only deploying {repo_config.branch}")

    logger.info(f"Received valid webhook for {repo_full_name}, deploying...")

    # 7. Deploy; queued pushes for the same repository wait here, and the blocking
    # pipeline runs in the default executor.
    async with deployer.tracker.queued(repo_full_name):
        outcome = await loop.run_in_executor(None, deployer.deploy, repo_full_name, repo_config)

    # The notification is sent after the response has gone out.
    background = BackgroundTask(notifier.notify_deployment, outcome)
    if outcome.success:
        return PlainTextResponse(outcome.message, background=background)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": f"Deployment failed for {repo_full_name}: {outcome.message}"},
        background=background,
    )
