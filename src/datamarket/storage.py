"""
datamarket/storage.py

Storage backends for locally persisted engine state.

Provides two backends behind one async interface:
1. Memory - tests and throwaway sessions
2. File - one JSON document on disk, replaced atomically on every write

Used by:
- PurchaseCache - remembers purchases that fall out of the ledger's
  bounded event window
"""

import os
import json
import logging
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional
from abc import ABC, abstractmethod

from .config import DEFAULT_STORAGE_DIR, PURCHASES_FILENAME

logger = logging.getLogger("datamarket.storage")


# ============================================================================
# STORAGE BACKENDS
# ============================================================================

class StorageBackend(ABC):
    """Abstract base class for storage backends. Values are JSON objects."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        """Get a value by key."""
        pass

    @abstractmethod
    async def put(self, key: str, value: Dict[str, Any]) -> None:
        """Store a value, replacing any previous one."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a value. Returns False if the key was absent."""
        pass

    @abstractmethod
    async def list_keys(self, prefix: str = "") -> List[str]:
        """List keys with optional prefix filter."""
        pass


class MemoryBackend(StorageBackend):
    """In-memory storage backend."""

    def __init__(self):
        self._data: Dict[str, str] = {}   # key -> serialized JSON

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        # Serialize so callers never share structure with the store
        self._data[key] = json.dumps(value)

    async def delete(self, key: str) -> bool:
        if key in self._data:
            del self._data[key]
            return True
        return False

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class FileBackend(StorageBackend):
    """
    Local file storage backend.

    All keys live in a single JSON document. Every write goes to a
    temporary file in the same directory which then replaces the document,
    so a crash leaves either the old or the new document, never a partial one.
    """

    def __init__(self, storage_dir: Path = None, filename: str = PURCHASES_FILENAME):
        self.storage_dir = Path(storage_dir or DEFAULT_STORAGE_DIR)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.path = self.storage_dir / filename
        self._document: Dict[str, Any] = self._load()

    def _load(self) -> Dict[str, Any]:
        """Load the document from disk."""
        if not self.path.exists():
            return {}
        with open(self.path, "r") as f:
            document = json.load(f)
        if not isinstance(document, dict):
            raise ValueError(f"{self.path} does not hold a JSON object")
        logger.debug(f"Loaded {len(document)} keys from {self.path}")
        return document

    def _save(self) -> None:
        """Atomically replace the document on disk."""
        fd, tmp_path = tempfile.mkstemp(dir=self.storage_dir, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(self._document, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    async def get(self, key: str) -> Optional[Dict[str, Any]]:
        value = self._document.get(key)
        # Round-trip through JSON to hand out an independent copy
        return json.loads(json.dumps(value)) if value is not None else None

    async def put(self, key: str, value: Dict[str, Any]) -> None:
        previous = self._document.get(key)
        self._document[key] = json.loads(json.dumps(value))
        try:
            self._save()
        except OSError as e:
            if previous is None:
                self._document.pop(key, None)
            else:
                self._document[key] = previous
            logger.error(f"Failed to write {key} to {self.path}: {e}")
            raise

    async def delete(self, key: str) -> bool:
        if key not in self._document:
            return False
        previous = self._document.pop(key)
        try:
            self._save()
        except OSError as e:
            self._document[key] = previous
            logger.error(f"Failed to delete {key} from {self.path}: {e}")
            raise
        return True

    async def list_keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._document if k.startswith(prefix)]
