"""
Store - JSON file holding identity (account) and target (server) records.

File layout:
    {
        "accounts": [{"id", "label", "auth", "username", "cacheDir"?}],
        "servers":  [{"id", "label", "host", "port", "version"?, "keepAlive"}]
    }

Every call reads the file and every change rewrites it, so the file can
be edited by hand while the program runs.
"""

import json
import logging
import os
import secrets
import string
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from . import config
from .errors import StoreError
from .models import Identity, Target

ID_ALPHABET = string.ascii_letters + string.digits + "_-"
ID_LENGTH = 8


def new_id() -> str:
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_LENGTH))


def _empty() -> Dict[str, List[Dict[str, Any]]]:
    return {"accounts": [], "servers": []}


class Store:
    """
    CRUD over identities and targets.

    Usage:
        store = Store()
        account_id = store.add_identity("main", "offline", "Steve")
        server_id = store.add_target("local", "localhost", 25565)
        pairs = [(store.get_identity(account_id), store.get_target(server_id))]
    """

    def __init__(self, path: Optional[Union[str, Path]] = None, logger: Optional[logging.Logger] = None):
        """
        Args:
            path: Store file (default: <data dir>/store.json)
            logger: Optional logger instance
        """
        self.path = Path(path) if path else config.data_path("store.json")
        self.logger = logger or logging.getLogger(__name__)

    def load(self) -> Dict[str, List[Dict[str, Any]]]:
        """Read the whole document, creating the file if missing."""
        if not self.path.exists():
            self.save(_empty())
            return _empty()
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            self.logger.warning(f"Store {self.path} is not valid JSON ({e}), using empty store")
            return _empty()
        except OSError as e:
            raise StoreError(f"Cannot read {self.path}: {e}") from e

        if not isinstance(data, dict):
            self.logger.warning(f"Store {self.path} has unexpected layout, using empty store")
            return _empty()
        data.setdefault("accounts", [])
        data.setdefault("servers", [])
        return data

    def save(self, data: Dict[str, List[Dict[str, Any]]]) -> None:
        """Atomically replace the file."""
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise StoreError(f"Cannot write {self.path}: {e}") from e

    # Identities

    def list_identities(self) -> List[Identity]:
        return self._records("accounts", Identity.from_dict)

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        return next((i for i in self.list_identities() if i.id == identity_id), None)

    def add_identity(
        self,
        label: str,
        auth: str,
        username: str,
        cache_dir: Optional[str] = None,
    ) -> str:
        """
        Add an account.

        Returns:
            The new id
        """
        record = {"id": new_id(), "label": label, "auth": auth, "username": username}
        if cache_dir:
            record["cacheDir"] = cache_dir
        Identity.from_dict(record)  # validates auth kind
        return self._add("accounts", record)

    def update_identity(self, identity_id: str, **patch: Any) -> bool:
        return self._update("accounts", identity_id, patch)

    def remove_identity(self, identity_id: str) -> bool:
        return self._remove("accounts", identity_id)

    # Targets

    def list_targets(self) -> List[Target]:
        return self._records("servers", Target.from_dict)

    def get_target(self, target_id: str) -> Optional[Target]:
        return next((t for t in self.list_targets() if t.id == target_id), None)

    def add_target(
        self,
        label: str,
        host: str,
        port: Optional[int] = None,
        version: Optional[str] = None,
        keep_alive: bool = True,
    ) -> str:
        """
        Add a server. A missing or invalid port falls back to the default.

        Returns:
            The new id
        """
        try:
            port = int(port) if port else config.DEFAULT_PORT
        except (TypeError, ValueError):
            port = config.DEFAULT_PORT
        record: Dict[str, Any] = {
            "id": new_id(),
            "label": label,
            "host": host,
            "port": port,
            "keepAlive": bool(keep_alive),
        }
        if version:
            record["version"] = version
        return self._add("servers", record)

    def update_target(self, target_id: str, **patch: Any) -> bool:
        return self._update("servers", target_id, patch)

    def remove_target(self, target_id: str) -> bool:
        return self._remove("servers", target_id)

    def _records(self, section: str, build) -> List[Any]:
        result = []
        for record in self.load()[section]:
            try:
                result.append(build(record))
            except (KeyError, TypeError, ValueError) as e:
                self.logger.warning(f"Skipping invalid {section} record {record!r}: {e}")
        return result

    def _add(self, section: str, record: Dict[str, Any]) -> str:
        data = self.load()
        data[section].append(record)
        self.save(data)
        return record["id"]

    def _update(self, section: str, record_id: str, patch: Dict[str, Any]) -> bool:
        data = self.load()
        for record in data[section]:
            if record.get("id") == record_id:
                for key, value in patch.items():
                    if value is None:
                        record.pop(key, None)
                    else:
                        record[key] = value
                self.save(data)
                return True
        return False

    def _remove(self, section: str, record_id: str) -> bool:
        data = self.load()
        before = len(data[section])
        data[section] = [r for r in data[section] if r.get("id") != record_id]
        if len(data[section]) == before:
            return False
        self.save(data)
        return True
