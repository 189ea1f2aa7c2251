"""Shared test fixtures."""

import os
import tempfile

# Keep module-level setup in main/config away from the working directory
os.environ["LOG_DB_PATH"] = ""
os.environ["CONFIG_PATH"] = os.path.join(tempfile.gettempdir(), "deployhook-missing-config.yaml")
os.environ["REPO_CONFIG_PATH"] = os.path.join(tempfile.mkdtemp(prefix="deployhook-"), "repo-config.json")

import json  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import List  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from config import Settings  # noqa: E402
from deploy_pipeline import DeploymentTracker  # noqa: E402
from main import create_app  # noqa: E402
from models.deployment import DeploymentOutcome  # noqa: E402
from models.repo_config import RepoConfig  # noqa: E402
from repo_store import RepoStore  # noqa: E402
from utils import compute_signature  # noqa: E402

ADMIN_TOKEN = "admin-secret"
REPO_NAME = "acme/site"
REPO_SECRET = "s3cret"


class FakeDeployer:
    """Records deploy calls instead of running the shell pipeline."""

    def __init__(self, success: bool = True):
        self.success = success
        self.calls: List[tuple] = []
        self.tracker = DeploymentTracker()
        self.shut_down = False

    def deploy(self, repo_name: str, repo_config: RepoConfig) -> DeploymentOutcome:
        self.calls.append((repo_name, repo_config))
        if self.success:
            return DeploymentOutcome(repo_name=repo_name, path=repo_config.path, success=True,
                                     exit_code=0, stdout="up to date\n")
        return DeploymentOutcome(repo_name=repo_name, path=repo_config.path, success=False,
                                 exit_code=1, stdout="pulling\n", stderr="Deployment verification failed\n")

    def shutdown(self):
        self.shut_down = True


class FakeNotifier:
    def __init__(self):
        self.outcomes: List[DeploymentOutcome] = []

    def notify_deployment(self, outcome: DeploymentOutcome) -> bool:
        self.outcomes.append(outcome)
        return True


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        admin_token=ADMIN_TOKEN,
        repo_config_path=str(tmp_path / "repo-config.json"),
        max_body_bytes=64 * 1024,
    )


@pytest.fixture
def repo_store(settings: Settings) -> RepoStore:
    store = RepoStore(settings.repo_config_path)
    store.upsert(REPO_NAME, RepoConfig(path="/srv/acme/site", secret=REPO_SECRET, branch="main"))
    return store


@pytest.fixture
def deployer() -> FakeDeployer:
    return FakeDeployer()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def client(settings, repo_store, deployer, notifier):
    app = create_app(settings=settings, repo_store=repo_store, deployer=deployer, notifier=notifier)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers() -> dict:
    return {"X-Admin-Token": ADMIN_TOKEN}


def push_payload(repo_name: str = REPO_NAME, ref: str = "refs/heads/main") -> bytes:
    return json.dumps({
        "ref": ref,
        "repository": {"full_name": repo_name, "private": True},
        "pusher": {"name": "octocat"},
    }).encode("utf-8")


def signed_headers(body: bytes, event: str = "push", secret: str = REPO_SECRET) -> dict:
    return {
        "Content-Type": "application/json",
        "X-Hub-Signature-256": compute_signature(secret, body),
        "X-GitHub-Event": event,
    }
