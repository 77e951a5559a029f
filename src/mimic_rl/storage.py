"""
Key-value storage for checkpoints and catalogs.

Values are JSON-compatible objects. InMemoryStore keeps them in a dict
for tests and embedded hosts; JsonFileStore writes one JSON file per key.
"""

import copy
import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def _check_key(key: str) -> str:
    if not isinstance(key, str) or not _KEY_PATTERN.match(key) or key.startswith("."):
        raise ValueError(f"Invalid storage key: {key!r}")
    return key


class KeyValueStore(ABC):
    """Minimal persistent mapping of string keys to JSON values"""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the stored value or default"""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value"""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Remove a key; returns False if it was absent"""

    @abstractmethod
    def keys(self) -> List[str]:
        """All stored keys, sorted"""

    def __contains__(self, key: str) -> bool:
        return key in self.keys()


class InMemoryStore(KeyValueStore):
    """Dict-backed store; values are copied through JSON on the way in"""

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[_check_key(key)] = json.loads(json.dumps(value))

    def delete(self, key: str) -> bool:
        if key not in self._data:
            return False
        del self._data[key]
        return True

    def keys(self) -> List[str]:
        return sorted(self._data)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class JsonFileStore(KeyValueStore):
    """
    Directory-backed store writing <key>.json files.

    Writes go to a temporary file first and are moved into place, so a
    crash never leaves a half-written value behind.
    """

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{_check_key(key)}.json"

    def get(self, key: str, default: Any = None) -> Any:
        path = self._path(key)
        if not path.exists():
            return default
        try:
            with open(path, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to read {path}: {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        path = self._path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(value, f)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def keys(self) -> List[str]:
        return sorted(path.stem for path in self.directory.glob("*.json"))

    def __contains__(self, key: str) -> bool:
        return self._path(key).exists()
