import logging
from typing import Optional

import requests

from models.deployment import DeploymentOutcome
from utils import tail

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000  # Discord rejects longer "content" values
OUTPUT_TAIL_LENGTH = 700
REQUEST_TIMEOUT = 10


def format_deploy_message(outcome: DeploymentOutcome) -> str:
    timestamp = outcome.timestamp.isoformat()
    if outcome.success:
        return (
            f"✅ Deployment successful for {outcome.repo_name}\n"
            f"Path: {outcome.path}\n"
            f"Timestamp: {timestamp}"
        )

    if outcome.error:
        details = f"Error: {outcome.error}"
    else:
        status = "Timed out" if outcome.timed_out else "Cancelled" if outcome.cancelled else "Failed"
        details = (
            f"Status: {status}\n"
            f"Exit code: {outcome.exit_code}\n"
            f"StdOut:```{tail(outcome.stdout, OUTPUT_TAIL_LENGTH)}```\n"
            f"StdErr:```{tail(outcome.stderr, OUTPUT_TAIL_LENGTH)}```"
        )
    message = (
        f"❌ Deployment failed for {outcome.repo_name}\n"
        f"Path: {outcome.path}\n"
        f"Timestamp: {timestamp}\n"
        f"{details}"
    )
    return message[:MAX_MESSAGE_LENGTH]


class Notifications:
    def __init__(self, webhook_url: Optional[str] = None):
        self.webhook_url = webhook_url or ""

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def send_message(self, message: str) -> bool:
        """
        Post a message to the configured chat webhook. Failures are logged, never raised.
        """
        if not self.webhook_url:
            logger.debug("Notification webhook URL not configured. Skipping notification.")
            return False
        payload = {"content": message}
        try:
            response = requests.post(self.webhook_url, json=payload, timeout=REQUEST_TIMEOUT)
            if not 200 <= response.status_code < 300:
                logger.error(f"Failed to send notification. Code: {response.status_code}, Resp: {response.text}")
                return False
            logger.info("Notification sent successfully.")
            return True
        except requests.RequestException as e:
            logger.error(f"Exception while sending notification: {e}")
            return False

    def notify_deployment(self, outcome: DeploymentOutcome) -> bool:
        """Report the outcome of a deployment run."""
        return self.send_message(format_deploy_message(outcome))
