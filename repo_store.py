# repo_store.py

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Dict, List, Optional

from pydantic import ValidationError

from models.repo_config import RepoConfig, RepoConfigs

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The store lock could not be acquired, or a previous mutation failed while holding it."""


def load_repo_configs(path: str) -> RepoConfigs:
    """
    Read the repository map from a JSON file.

    A missing, unreadable or malformed file yields an empty map. Entries that do not
    validate are skipped.
    """
    if not os.path.exists(path):
        logger.info(f"Repository config file '{path}' not found. Starting with no repositories.")
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        logger.error(f"Error loading repository config '{path}': {e}")
        return {}

    if not isinstance(raw, dict):
        logger.error(f"Repository config '{path}' must contain a JSON object.")
        return {}

    configs = {}
    for name, entry in raw.items():
        try:
            configs[name] = RepoConfig.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Skipping invalid configuration for repository '{name}': {e}")
    return configs


def save_repo_configs(path: str, configs: RepoConfigs) -> bool:
    """
    Write the repository map to a JSON file through a temporary file and an atomic rename.
    Returns False (and logs) on failure.
    """
    data = {name: config.model_dump() for name, config in configs.items()}
    directory = os.path.dirname(os.path.abspath(path))
    tmp_path = None
    try:
        fd, tmp_path = tempfile.mkstemp(prefix=".repo-config-", suffix=".tmp", dir=directory)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
        os.replace(tmp_path, path)
        return True
    except (OSError, TypeError, ValueError) as e:
        logger.error(f"Error saving repository config '{path}': {e}")
        if tmp_path and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        return False


class RepoStore:
    """
    Owns the repository map. Every access holds one lock; mutations are mirrored
    to the JSON file after the lock is released.
    """

    def __init__(self, path: str, lock_timeout: float = 5):
        self.path = path
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()
        self._poisoned = False
        self._version = 0
        self._written_version = 0
        self._configs: Dict[str, RepoConfig] = load_repo_configs(path)

    @contextmanager
    def _locked(self, mutating: bool = False):
        if not self._lock.acquire(timeout=self.lock_timeout):
            logger.error("Timed out waiting for the repository store lock.")
            raise StoreUnavailableError("Failed to acquire lock on repository configurations")
        try:
            if self._poisoned:
                # Report the failed mutation once, then recover from the durable copy
                self._poisoned = False
                self._configs = load_repo_configs(self.path)
                logger.error("Repository store was left inconsistent by a failed update; reloaded from disk.")
                raise StoreUnavailableError("Repository configurations were reloaded after a failed update")
            try:
                yield self._configs
            except BaseException:
                if mutating:
                    self._poisoned = True
                raise
        finally:
            self._lock.release()

    def _persist(self, snapshot: RepoConfigs, version: int) -> None:
        with self._write_lock:
            if version < self._written_version:
                # A newer snapshot is already on disk
                return
            self._written_version = version
            if not save_repo_configs(self.path, snapshot):
                # The change stays applied in memory and the caller still sees success
                logger.warning("Repository configuration change was applied in memory but not persisted.")

    def get(self, name: str) -> Optional[RepoConfig]:
        with self._locked() as configs:
            config = configs.get(name)
            return config.model_copy() if config is not None else None

    def list(self) -> RepoConfigs:
        with self._locked() as configs:
            return {name: config.model_copy() for name, config in configs.items()}

    def names(self) -> List[str]:
        with self._locked() as configs:
            return sorted(configs)

    def upsert(self, name: str, config: RepoConfig) -> None:
        with self._locked(mutating=True) as configs:
            configs[name] = config.model_copy()
            self._version += 1
            snapshot, version = dict(configs), self._version
        self._persist(snapshot, version)
        logger.info(f"Repository '{name}' configured.")

    def remove(self, name: str) -> bool:
        with self._locked(mutating=True) as configs:
            if name not in configs:
                return False
            del configs[name]
            self._version += 1
            snapshot, version = dict(configs), self._version
        self._persist(snapshot, version)
        logger.info(f"Repository '{name}' removed.")
        return True
