"""
Checkpoint Store
================

Namespaced key/value snapshots of pipeline progress, one JSON file per key:

    data/checkpoints/{namespace}/{key}.json

Checkpointing is a convenience, never a correctness dependency: every I/O
or decode failure is logged and reads as "no checkpoint". Concurrent
writers to the same key are last-writer-wins.
"""

import hashlib
import json
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

from tools.logging_utils import get_logger

logger = get_logger(__name__)

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


def _safe_name(value: str) -> str:
    return _UNSAFE_KEY_CHARS.sub("_", value) or "_"


class CheckpointStore:
    """Durable, namespaced save/load/clear of JSON-serializable values."""

    def __init__(self, directory: Path, namespace: str = "import_pipeline"):
        self.namespace = namespace
        self._dir = Path(directory) / _safe_name(namespace)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        name = _safe_name(key)
        if name != key:
            # Sanitizing can map distinct keys to one name
            name = f"{name}-{hashlib.sha1(key.encode('utf-8')).hexdigest()[:10]}"
        return self._dir / f"{name}.json"

    def save(self, key: str, value: Dict[str, Any]) -> bool:
        """Persist ``value`` under ``key``. Returns True on success."""
        path = self._path(key)
        temp_file = path.with_suffix(f'.tmp.{uuid.uuid4().hex[:8]}')
        with self._lock:
            try:
                self._dir.mkdir(parents=True, exist_ok=True)
                with open(temp_file, 'w') as f:
                    json.dump({"key": key, "value": value}, f, indent=2, ensure_ascii=False)
                os.replace(temp_file, path)
                return True
            except (IOError, OSError, TypeError, ValueError) as e:
                logger.error(f"❌ Failed to save checkpoint {self.namespace}/{key}: {e}")
                try:
                    if temp_file.exists():
                        temp_file.unlink()
                except OSError:
                    pass
                return False

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Stored value, or None when absent or unreadable."""
        path = self._path(key)
        with self._lock:
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
            except FileNotFoundError:
                return None
            except (json.JSONDecodeError, IOError, OSError) as e:
                logger.warning(f"⚠️ Ignoring unreadable checkpoint {self.namespace}/{key}: {e}")
                return None
        if not isinstance(data, dict) or "value" not in data:
            logger.warning(f"⚠️ Ignoring malformed checkpoint {self.namespace}/{key}")
            return None
        if data.get("key") != key:
            logger.warning(f"⚠️ Ignoring checkpoint stored for another key: {data.get('key')!r} != {key!r}")
            return None
        return data["value"]

    def clear(self, key: str) -> bool:
        """Delete the checkpoint for ``key``. Missing is not an error."""
        with self._lock:
            try:
                self._path(key).unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"⚠️ Failed to clear checkpoint {self.namespace}/{key}: {e}")
                return False
        return True

    def has(self, key: str) -> bool:
        return self.load(key) is not None

    def keys(self) -> List[str]:
        """Original keys of every readable checkpoint in this namespace."""
        if not self._dir.exists():
            return []
        keys = []
        for path in sorted(self._dir.glob("*.json")):
            try:
                with open(path, 'r') as f:
                    data = json.load(f)
                keys.append(data["key"])
            except (json.JSONDecodeError, IOError, OSError, KeyError, TypeError) as e:
                logger.debug(f"Skipping checkpoint file {path.name}: {e}")
        return keys
