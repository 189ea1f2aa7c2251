# dependencies.py

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request, status

from config import Settings
from deploy_pipeline import Deployer
from notifications import Notifications
from repo_store import RepoStore

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repo_store(request: Request) -> RepoStore:
    return request.app.state.repo_store


def get_deployer(request: Request) -> Deployer:
    return request.app.state.deployer


def get_notifier(request: Request) -> Notifications:
    return request.app.state.notifier


def require_admin_token(request: Request, admin_token: Optional[str] = Header(None, alias="X-Admin-Token")):
    expected = get_settings(request).admin_token
    if not expected:
        logger.error("Admin endpoint called but ADMIN_TOKEN is not configured.")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Admin token not configured")
    if not admin_token or not hmac.compare_digest(admin_token.encode("utf-8"), expected.encode("utf-8")):
        logger.warning("Invalid admin token.")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")
    return admin_token
