# healthwatch/persistence.py
"""
Checkpoint storage for the tracked-account ledger.

Two backends with the same ``persist(key, value)`` / ``load(key)`` surface:
a JSON file per key for a local node, and an HTTP key/value store for a
hosted deployment. Which one runs is decided once, at startup, from
PERSISTENCE_MODE. ``load`` returns ``{}`` when nothing was ever stored.
"""
import json, logging, os
from pathlib import Path
from typing import Optional, Protocol

import requests

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    pass


class PersistenceBackend(Protocol):
    def persist(self, key: str, value: dict) -> None:
        ...

    def load(self, key: str) -> dict:
        ...


class LocalFileBackend:
    def __init__(self, directory: str = "state"):
        self.directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def persist(self, key: str, value: dict):
        path = self._path(key)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(value))
            os.replace(tmp, path)
        except OSError as e:
            raise PersistenceError(f"could not write {path}: {e}") from e

    def load(self, key: str) -> dict:
        path = self._path(key)
        if not path.exists():
            logger.info(f"file {path} does not exist")
            return {}
        try:
            return json.loads(path.read_text())
        except (OSError, ValueError) as e:
            raise PersistenceError(f"could not read {path}: {e}") from e


class RemoteStoreBackend:
    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 10):
        self.base_url = base_url
        self.token = token
        self.timeout = timeout

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    def persist(self, key: str, value: dict):
        try:
            resp = requests.post(f"{self.base_url}{key}", headers=self._headers(),
                                 data=json.dumps(value), timeout=self.timeout)
        except requests.RequestException as e:
            raise PersistenceError(f"persist {key} failed: {e}") from e
        if not resp.ok:
            raise PersistenceError(f"persist {key} failed: HTTP {resp.status_code}")
        logger.debug(f"persisted {key} to remote store")

    def load(self, key: str) -> dict:
        try:
            resp = requests.get(f"{self.base_url}{key}", headers=self._headers(), timeout=self.timeout)
        except requests.RequestException as e:
            raise PersistenceError(f"load {key} failed: {e}") from e
        if resp.status_code == 404:
            logger.info(f"{key} has no database entry")
            return {}
        if not resp.ok:
            raise PersistenceError(f"load {key} failed: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            raise PersistenceError(f"load {key} returned invalid JSON: {e}") from e


def make_backend(settings) -> PersistenceBackend:
    if settings.persistence_mode == "remote":
        return RemoteStoreBackend(settings.database_url, settings.database_token)
    return LocalFileBackend(settings.checkpoint_dir)
