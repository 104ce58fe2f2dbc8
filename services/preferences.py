"""
Client Preference Stores.

Small key-value stores for client-side flags that must outlive a single game
session, such as "the external vote prompt was already shown on this device".
Components receive a store instead of reaching for ambient global storage, so
tests can hand them an in-memory one.

Key Components:
- `PreferenceStore`: Abstract `get(key, default)` / `set(key, value)` interface.
- `MemoryPreferenceStore`: Process-local dictionary.
- `JsonFilePreferenceStore`: One JSON object on disk, rewritten on every
  `set` through a temporary file and `os.replace`.
"""

import os
import json
import logging
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("services.preferences")


class PreferenceStore(ABC):
    """Abstract key-value preference store"""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass


class MemoryPreferenceStore(PreferenceStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._values: Dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value


class JsonFilePreferenceStore(PreferenceStore):
    """Preferences persisted as a JSON object in a local file"""

    def __init__(self, path):
        self.path = Path(path)
        self._values: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable preference file {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring preference file {self.path}: not a JSON object")
            return {}
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._values, f)
            os.replace(tmp_path, self.path)
        except Exception:
            os.unlink(tmp_path)
            raise
