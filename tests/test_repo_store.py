"""Tests for the repository configuration store."""

import json
import os
import threading

import pytest

from models.repo_config import RepoConfig
from repo_store import RepoStore, StoreUnavailableError, load_repo_configs, save_repo_configs


@pytest.fixture
def config_path(tmp_path):
    return str(tmp_path / "repo-config.json")


class TestLoadSave:
    def test_missing_file_is_empty(self, config_path):
        assert load_repo_configs(config_path) == {}

    def test_invalid_json_is_empty(self, config_path):
        with open(config_path, "w") as f:
            f.write("{broken")
        assert load_repo_configs(config_path) == {}

    def test_non_object_is_empty(self, config_path):
        with open(config_path, "w") as f:
            json.dump(["acme/site"], f)
        assert load_repo_configs(config_path) == {}

    def test_invalid_entries_are_skipped(self, config_path):
        with open(config_path, "w") as f:
            json.dump({
                "acme/site": {"path": "/srv/site", "secret": "s"},
                "acme/broken": {"path": "/srv/broken"},
            }, f)
        assert list(load_repo_configs(config_path)) == ["acme/site"]

    def test_round_trip(self, config_path):
        configs = {
            "acme/site": RepoConfig(path="/srv/site", secret="s1", branch="main"),
            "acme/api": RepoConfig(path="/srv/api", secret="s2"),
        }
        assert save_repo_configs(config_path, configs) is True
        assert load_repo_configs(config_path) == configs

    def test_file_format(self, config_path):
        save_repo_configs(config_path, {"acme/site": RepoConfig(path="/srv/site", secret="s")})
        with open(config_path) as f:
            assert json.load(f) == {"acme/site": {"path": "/srv/site", "secret": "s", "branch": None}}

    def test_no_temporary_files_left(self, tmp_path, config_path):
        save_repo_configs(config_path, {"acme/site": RepoConfig(path="/srv/site", secret="s")})
        assert os.listdir(tmp_path) == ["repo-config.json"]

    def test_unwritable_location_returns_false(self, tmp_path):
        path = str(tmp_path / "missing-dir" / "repo-config.json")
        assert save_repo_configs(path, {"acme/site": RepoConfig(path="/srv/site", secret="s")}) is False


class TestRepoStore:
    def test_upsert_get_list_remove(self, config_path):
        store = RepoStore(config_path)
        config = RepoConfig(path="/srv/site", secret="s", branch="main")

        store.upsert("acme/site", config)
        assert store.get("acme/site") == config
        assert store.list() == {"acme/site": config}
        assert store.names() == ["acme/site"]

        assert store.remove("acme/site") is True
        assert store.get("acme/site") is None
        assert store.remove("acme/site") is False

    def test_restart_reproduces_map(self, config_path):
        store = RepoStore(config_path)
        store.upsert("acme/site", RepoConfig(path="/srv/site", secret="s", branch="main"))
        store.upsert("acme/api", RepoConfig(path="/srv/api", secret="t"))
        store.remove("acme/api")

        assert RepoStore(config_path).list() == store.list()

    def test_list_is_a_snapshot(self, config_path):
        store = RepoStore(config_path)
        store.upsert("acme/site", RepoConfig(path="/srv/site", secret="s"))
        snapshot = store.list()
        snapshot["acme/other"] = RepoConfig(path="/x", secret="y")
        assert store.names() == ["acme/site"]

    def test_empty_branch_means_no_restriction(self, config_path):
        store = RepoStore(config_path)
        store.upsert("acme/site", RepoConfig(path="/srv/site", secret="s", branch=""))
        assert store.get("acme/site").branch is None

    def test_write_failure_keeps_change_in_memory(self, tmp_path):
        store = RepoStore(str(tmp_path / "missing-dir" / "repo-config.json"))
        store.upsert("acme/site", RepoConfig(path="/srv/site", secret="s"))
        assert store.get("acme/site") is not None

    def test_lock_timeout_raises(self, config_path):
        store = RepoStore(config_path, lock_timeout=0.05)
        store._lock.acquire()
        try:
            with pytest.raises(StoreUnavailableError):
                store.get("acme/site")
        finally:
            store._lock.release()

    def test_failed_mutation_poisons_then_recovers(self, config_path):
        store = RepoStore(config_path)
        store.upsert("acme/site", RepoConfig(path="/srv/site", secret="s"))

        with pytest.raises(RuntimeError):
            with store._locked(mutating=True) as configs:
                configs["acme/half-written"] = RepoConfig(path="/tmp", secret="x")
                raise RuntimeError("boom")

        with pytest.raises(StoreUnavailableError):
            store.get("acme/site")

        # Reloaded from the durable copy: the half-applied change is gone
        assert store.names() == ["acme/site"]

    def test_concurrent_upserts(self, config_path):
        store = RepoStore(config_path)

        def worker(index):
            store.upsert(f"acme/repo-{index}", RepoConfig(path=f"/srv/{index}", secret="s"))

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store.list()) == 20
        assert len(RepoStore(config_path).list()) == 20
