"""
Snapshot backends for the session store.

The session store keeps every session in memory and, after each mutating call, hands the whole
id -> session mapping to a backend to make it durable. Backends are deliberately dumb: they load
and save one JSON-compatible dictionary and know nothing about sessions.

Two backends ship with the service:

- JsonFileSnapshotBackend: writes the mapping to a JSON file. The write goes to a temporary file
  in the same directory which is then moved over the target with os.replace, so a crash mid-write
  never leaves a truncated snapshot behind.
- InMemorySnapshotBackend: keeps a deep copy in process memory. Used in tests and when
  persistence is disabled in config.

Backend methods are synchronous; the store calls them through asyncio.to_thread.
"""

import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SnapshotBackend(ABC):
    """Durable get/put of the full session mapping."""

    @abstractmethod
    def load(self) -> Optional[Dict[str, Any]]:
        """
        Return the last saved mapping, or None when nothing has been saved yet.

        Raises:
            Exception: Any I/O or decoding error; the store treats it as "start empty".
        """

    @abstractmethod
    def save(self, data: Dict[str, Any]) -> None:
        """
        Replace the saved mapping with `data`.

        Raises:
            Exception: Any I/O or encoding error; the store turns it into StorageFailure.
        """


class JsonFileSnapshotBackend(SnapshotBackend):
    """
    Snapshot stored as a single JSON file.

    Args:
        path (str): Location of the snapshot file. Parent directories are created on save.
    """

    def __init__(self, path: str):
        self.path = path

    def load(self) -> Optional[Dict[str, Any]]:
        if not os.path.exists(self.path):
            logger.info("No session snapshot at %s", self.path)
            return None

        with open(self.path, 'r', encoding='utf-8') as f:
            data = json.load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Session snapshot at {self.path} is not a JSON object")
        return data

    def save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.sessions-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            # Leave the previous snapshot intact and clean up the partial write
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise


class InMemorySnapshotBackend(SnapshotBackend):
    """Snapshot kept in process memory."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data = copy.deepcopy(initial) if initial is not None else None
        self.save_count = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return copy.deepcopy(self._data) if self._data is not None else None

    def save(self, data: Dict[str, Any]) -> None:
        self._data = copy.deepcopy(data)
        self.save_count += 1


def build_snapshot_backend(store_config: Dict[str, Any]) -> SnapshotBackend:
    """
    Pick a backend from the `session_store` config section.

    Args:
        store_config (Dict[str, Any]): Expects 'persistence' ("file" or "memory") and, for
            "file", 'snapshot_path'.

    Returns:
        SnapshotBackend: The configured backend.

    Raises:
        ValueError: If the persistence mode is unknown.
    """
    mode = str(store_config.get('persistence', 'file')).strip().lower()
    if mode == 'file':
        return JsonFileSnapshotBackend(store_config['snapshot_path'])
    if mode == 'memory':
        return InMemorySnapshotBackend()
    raise ValueError(f"Unsupported session persistence mode: {mode}")
