"""Durable key/value configuration with transparent secret encryption.

Values are JSON-serializable. Keys listed in SECRET_CONFIG_KEYS are encrypted
by set() and decrypted by get(); everything else is stored as-is. Only keys
changed since the last save() are written back to the backend.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from quizguard.core.encryption import SECRET_CONFIG_KEYS, EncryptionService

logger = logging.getLogger(__name__)


class ConfigBackend(Protocol):
    """Persistence behind the config store."""

    def load(self) -> dict[str, Any]: ...

    def upsert(self, items: dict[str, Any]) -> None: ...


class InMemoryConfigBackend:
    """Backend for tests and hosts that persist configuration themselves."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(initial or {})

    def load(self) -> dict[str, Any]:
        return dict(self.data)

    def upsert(self, items: dict[str, Any]) -> None:
        self.data.update(items)


class JsonFileConfigBackend:
    """Stores the whole configuration as one JSON object on disk."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.error("Config file %s is not valid JSON, ignoring its contents", self.path)
            return {}
        if not isinstance(data, dict):
            logger.error("Config file %s does not contain a JSON object, ignoring it", self.path)
            return {}
        return data

    def upsert(self, items: dict[str, Any]) -> None:
        data = self.load()
        data.update(items)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp file in the same directory, then atomically replace
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


class ConfigStore:
    """Lazy-loading config cache over a backend."""

    def __init__(
        self,
        backend: ConfigBackend,
        encryption: EncryptionService,
        encrypted_keys: tuple[str, ...] = SECRET_CONFIG_KEYS,
    ):
        self.backend = backend
        self.encryption = encryption
        self.encrypted_keys = frozenset(encrypted_keys)
        self._config: dict[str, Any] = {}
        self._updated: set[str] = set()
        self._loaded = False

    def load(self) -> None:
        """Load all values from the backend. Unsaved local changes are kept."""
        for key, value in self.backend.load().items():
            if key not in self._updated:
                self._config[key] = value
        self._loaded = True

    def _ensure_loaded(self) -> None:
        if not self._loaded:
            self.load()

    def get(self, key: str, default: Any = None) -> Any:
        """Return a value, decrypting secret keys."""
        value = self.get_raw(key, default)
        if key in self.encrypted_keys and isinstance(value, str) and value:
            return self.encryption.decrypt(value)
        return value

    def set(self, key: str, value: Any) -> None:
        """Set a value, encrypting secret keys that are not encrypted yet."""
        if isinstance(value, bool):
            value = int(value)

        if key in self.encrypted_keys and isinstance(value, str) and value:
            if not self.encryption.is_encrypted(value):
                value = self.encryption.encrypt(value)

        self.set_raw(key, value)

    def get_raw(self, key: str, default: Any = None) -> Any:
        """Return the stored value without decryption."""
        self._ensure_loaded()
        return self._config.get(key, default)

    def set_raw(self, key: str, value: Any) -> None:
        """Store a value as-is and mark it for the next save()."""
        self._ensure_loaded()
        if key not in self._config or self._config[key] != value:
            self._config[key] = value
            self._updated.add(key)

    def get_all(self) -> dict[str, Any]:
        """All cached values; secrets stay encrypted."""
        self._ensure_loaded()
        return dict(self._config)

    def save(self) -> bool:
        """Write changed keys to the backend."""
        pending = {key: self._config[key] for key in self._updated if self._config.get(key) is not None}
        if pending:
            self.backend.upsert(pending)
            logger.debug("Saved %d config value(s)", len(pending))
        self._updated.clear()
        return True

    def clear_cache(self) -> None:
        self._config = {}
        self._updated = set()
        self._loaded = False
