"""Host capability interfaces for persistence and credentials."""
import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger


class KeyValueStore(ABC):
    """String-keyed store of JSON-compatible values."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        """Return the value stored under key, or default."""
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-compatible value under key."""
        pass


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = {}
        for key, value in (initial or {}).items():
            self.set(key, value)

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        # Hand out copies so callers never alias stored state
        return json.loads(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)


class JsonFileKeyValueStore(KeyValueStore):
    """Whole-file JSON store, rewritten atomically on every set."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = {}
        if self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                self._data = json.load(f)
            logger.info(f"Loaded {len(self._data)} keys from {self.path}")

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            if key not in self._data:
                return default
            return json.loads(json.dumps(self._data[key]))

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            snapshot = dict(self._data)
            snapshot[key] = json.loads(json.dumps(value))

            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(snapshot, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)

            self._data = snapshot


class SecretStore(ABC):
    """Credential storage used by collaborators that need tokens."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        pass


class InMemorySecretStore(SecretStore):
    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})

    def get(self, key: str) -> Optional[str]:
        return self._secrets.get(key)

    def set(self, key: str, value: str) -> None:
        self._secrets[key] = value

    def delete(self, key: str) -> None:
        self._secrets.pop(key, None)


class EnvSecretStore(SecretStore):
    """Secrets read from environment variables.

    ``prometheus.token`` maps to ``RELEASE_GUARD_PROMETHEUS_TOKEN``.
    """

    def __init__(self, prefix: str = "RELEASE_GUARD_"):
        self.prefix = prefix

    def _env_name(self, key: str) -> str:
        return self.prefix + key.replace(".", "_").replace("-", "_").upper()

    def get(self, key: str) -> Optional[str]:
        return os.environ.get(self._env_name(key))

    def set(self, key: str, value: str) -> None:
        os.environ[self._env_name(key)] = value

    def delete(self, key: str) -> None:
        os.environ.pop(self._env_name(key), None)


def create_store(backend: str, path: str) -> KeyValueStore:
    """Build the configured key-value store backend."""
    if backend == "file":
        return JsonFileKeyValueStore(path)
    if backend == "memory":
        return InMemoryKeyValueStore()
    raise ValueError(f"Unknown store backend: {backend}")
