# config.py

import os
import yaml
import logging
from typing import Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_PORT = 9786
DEFAULT_MAX_BODY_BYTES = 5 * 1024 * 1024


class Settings(BaseModel):
    admin_token: str = ""
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    notify_webhook_url: str = ""
    repo_config_path: str = "repo-config.json"
    deploy_timeout: float = 900
    verify_delay: int = 10
    compose_command: str = "docker compose"
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    redact_secrets: bool = False
    lock_timeout: float = 5
    debug: bool = False


def load_config(config_path: Optional[str] = None) -> dict:
    """
    Load optional settings from the YAML file specified by CONFIG_PATH or the default path.

    A missing file is not an error: every setting has a default and can be set from the environment.

    Returns:
        dict: Parsed configuration dictionary.
    """
    config_path = config_path or os.getenv("CONFIG_PATH", "config.yaml")

    if not os.path.exists(config_path):
        logger.info(f"Configuration file '{config_path}' not found. Using environment and defaults.")
        return {}

    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error parsing YAML file '{config_path}': {e}")
        raise

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file '{config_path}' must contain a mapping.")

    logger.info(f"Configuration loaded successfully from '{config_path}'.")
    return config


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_number(name: str, default, cast):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning(f"Invalid value for {name}: {value!r}. Using {default}.")
        return default


def load_settings(config_path: Optional[str] = None) -> Settings:
    """
    Build the settings from the YAML file, then override with environment variables
    (a .env file in the working directory is loaded first).
    """
    load_dotenv(find_dotenv(usecwd=True))
    file_settings = Settings(**load_config(config_path))

    notify_url = os.getenv("DISCORD_WEBHOOK_URL") or os.getenv("NOTIFY_WEBHOOK_URL")

    return Settings(
        admin_token=os.getenv("ADMIN_TOKEN", file_settings.admin_token),
        host=os.getenv("HOST", file_settings.host),
        port=_env_number("PORT", file_settings.port, int),
        notify_webhook_url=notify_url or file_settings.notify_webhook_url,
        repo_config_path=os.getenv("REPO_CONFIG_PATH", file_settings.repo_config_path),
        deploy_timeout=_env_number("DEPLOY_TIMEOUT", file_settings.deploy_timeout, float),
        verify_delay=_env_number("DEPLOY_VERIFY_DELAY", file_settings.verify_delay, int),
        compose_command=os.getenv("DOCKER_COMPOSE_COMMAND", file_settings.compose_command),
        max_body_bytes=_env_number("MAX_BODY_BYTES", file_settings.max_body_bytes, int),
        redact_secrets=_env_bool("REDACT_SECRETS", file_settings.redact_secrets),
        lock_timeout=_env_number("STORE_LOCK_TIMEOUT", file_settings.lock_timeout, float),
        debug=_env_bool("DEBUG_MODE", file_settings.debug),
    )


# Load the configuration once at import time
settings = load_settings()
DEBUG_MODE = settings.debug

if not settings.admin_token:
    logger.warning("ADMIN_TOKEN is not set. Admin endpoints will be unavailable.")
if not settings.notify_webhook_url:
    logger.info("No notification webhook URL configured. Deployment notifications are disabled.")

# Log summary of key settings (without sensitive details)
logger.info(f"Listening port: {settings.port}")
logger.info(f"Repository config file: {settings.repo_config_path}")
logger.info(f"Docker compose command: {settings.compose_command}")
