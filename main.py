# main.py

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import DEBUG_MODE, Settings, settings as default_settings
from deploy_pipeline import Deployer
from logging_config import setup_logging
from notifications import Notifications
from repo_store import RepoStore, StoreUnavailableError

# Routers
from routers.admin import router as admin_router
from routers.health import router as health_router
from routers.webhook import router as webhook_router

logger = logging.getLogger(__name__)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'][1:]) or 'body'}: {error['msg']}"
        for error in exc.errors()
    )
    logger.warning(f"Invalid request to {request.url.path}: {errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": f"Invalid request: {errors}"},
    )


async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    logger.error(f"Repository store unavailable: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"},
    )


def create_app(
        settings: Optional[Settings] = None,
        repo_store: Optional[RepoStore] = None,
        deployer: Optional[Deployer] = None,
        notifier: Optional[Notifications] = None,
) -> FastAPI:
    settings = settings or default_settings
    repo_store = repo_store or RepoStore(settings.repo_config_path, lock_timeout=settings.lock_timeout)
    deployer = deployer or Deployer(settings)
    notifier = notifier or Notifications(settings.notify_webhook_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"Webhook server will start on port {settings.port}")
        logger.info(f"Configured repositories: {', '.join(repo_store.names())}")
        yield
        logger.info("Shutting down. Cancelling running deployments.")
        deployer.shutdown()

    app = FastAPI(
        title="DeployHook",
        description="Self-hosted GitHub webhook receiver that redeploys Docker Compose projects",
        version="1.0.0",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.repo_store = repo_store
    app.state.deployer = deployer
    app.state.notifier = notifier

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StoreUnavailableError, store_unavailable_handler)

    app.include_router(health_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)

    @app.get("/openapi.json", include_in_schema=False)
    def get_open_api_endpoint():
        return get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes
        )

    @app.get("/docs", include_in_schema=False)
    def custom_swagger_ui():
        return get_swagger_ui_html(
            openapi_url="/openapi.json",
            title=app.title,
            swagger_ui_parameters={"syntaxHighlight.theme": "obsidian"},
        )

    @app.get("/redoc", include_in_schema=False)
    def custom_redoc_ui():
        return get_redoc_html(
            openapi_url="/openapi.json",
            title=app.title
        )

    return app


# Initialize logging once
setup_logging(DEBUG_MODE)
logger.info("Starting the DeployHook application...")

app = create_app()


if __name__ == "__main__":
    uvicorn.run(app, host=default_settings.host, port=default_settings.port)
