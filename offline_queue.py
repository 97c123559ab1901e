"""
Offline Write Queue
===================

Durable FIFO of entity writes that hit an unreachable network. One queue
per process: runtime.create_runtime() builds it and hands it to the
EntityWriter.

Replay (flush) runs strictly in enqueue order, one write at a time.
Successful items are removed; failed items are logged, counted and kept for
the next online transition. A bad item never blocks the rest of the queue.

Delivery is at-least-once. A create that reached the server right before
the connection dropped is replayed as a second create; nothing here
de-duplicates against records that may already exist.

Storage: data/offline_queue.json (atomic temp-file + os.replace writes).
"""

import json
import os
import threading
import uuid
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from errors import NetworkQueuedWrite
from recipe_models import OfflineQueueItem, WriteMethod
from resilient_executor import DEFAULT_MAX_RETRIES, ResilientExecutor
from tools.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass
class FlushResult:
    success: int = 0
    failed: int = 0


class OfflineQueue:
    """
    Persistent FIFO of deferred writes.

    Thread-safe with atomic file writes. A missing or corrupt queue file
    reads as an empty queue.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._items: List[OfflineQueueItem] = self._load()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    @property
    def items(self) -> List[OfflineQueueItem]:
        with self._lock:
            return list(self._items)

    def enqueue(self, method: str, entity_name: str, params: Dict[str, Any]) -> OfflineQueueItem:
        """Append a write and persist the queue."""
        item = OfflineQueueItem(
            id=uuid.uuid4().hex,
            method=WriteMethod(method).value,
            entity_name=entity_name,
            params=params,
            timestamp=datetime.now().isoformat(),
        )
        with self._lock:
            self._items.append(item)
            self._save()
        logger.info(f"📥 Queued {item.method} {entity_name} for offline sync ({len(self)} pending)")
        return item

    async def flush(self, store) -> FlushResult:
        """
        Replay queued writes against ``store`` in enqueue order.

        Never raises: failures are logged, counted and left queued.
        """
        result = FlushResult()
        pending = self.items
        if not pending:
            return result

        logger.info(f"🔄 Replaying {len(pending)} queued write(s)")
        for item in pending:
            try:
                await _replay(store, item)
            except Exception as e:
                result.failed += 1
                logger.error(f"❌ Replay failed for {item.method} {item.entity_name} ({item.id[:8]}): {e}")
                continue
            result.success += 1
            self._remove(item.id)

        logger.info(f"✅ Offline sync: {result.success} succeeded, {result.failed} failed")
        return result

    def _remove(self, item_id: str) -> None:
        with self._lock:
            self._items = [i for i in self._items if i.id != item_id]
            self._save()

    def _load(self) -> List[OfflineQueueItem]:
        if not self._path.exists():
            return []
        try:
            with open(self._path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (json.JSONDecodeError, IOError, OSError) as e:
            logger.warning(f"⚠️ Failed to load offline queue {self._path}: {e}")
            return []

        known_fields = {f.name for f in fields(OfflineQueueItem)}
        items = []
        for raw in data if isinstance(data, list) else []:
            try:
                items.append(OfflineQueueItem(**{k: v for k, v in raw.items() if k in known_fields}))
            except (TypeError, AttributeError) as e:
                logger.warning(f"⚠️ Skipping invalid queue entry: {e}")
        return items

    def _save(self) -> bool:
        """Write the queue to disk. Caller holds the lock."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_file = self._path.with_suffix(f'.tmp.{uuid.uuid4().hex[:8]}')
        try:
            with open(temp_file, 'w') as f:
                json.dump([asdict(i) for i in self._items], f, indent=2, ensure_ascii=False)
            os.replace(temp_file, self._path)
            return True
        except (IOError, OSError) as e:
            logger.error(f"❌ Failed to persist offline queue: {e}")
            if temp_file.exists():
                temp_file.unlink()
            return False


async def _replay(store, item: OfflineQueueItem) -> Any:
    method = WriteMethod(item.method)
    params = item.params
    if method == WriteMethod.CREATE:
        return await store.create(item.entity_name, params["data"])
    if method == WriteMethod.UPDATE:
        return await store.update(item.entity_name, params["id"], params["data"])
    return await store.delete(item.entity_name, params["id"])


class EntityWriter:
    """
    Entity store access through the executor, with offline queueing.

    Writes that hit an unreachable network are queued and return None
    (deferred success). Reads surface their failures.
    """

    def __init__(self, store, executor: ResilientExecutor, queue: OfflineQueue,
                 max_retries: int = DEFAULT_MAX_RETRIES):
        self.store = store
        self.executor = executor
        self.queue = queue
        self.max_retries = max_retries

    async def list(self, entity_name: str, sort: Optional[str] = None) -> List[Dict[str, Any]]:
        return await self.executor.execute(
            lambda: self.store.list(entity_name, sort),
            max_retries=self.max_retries,
            operation_name=f"list:{entity_name}",
        )

    async def filter(self, entity_name: str, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        return await self.executor.execute(
            lambda: self.store.filter(entity_name, query),
            max_retries=self.max_retries,
            operation_name=f"filter:{entity_name}",
        )

    async def create(self, entity_name: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._write(
            WriteMethod.CREATE, entity_name, {"data": data},
            lambda: self.store.create(entity_name, data),
        )

    async def update(self, entity_name: str, entity_id: str,
                     patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._write(
            WriteMethod.UPDATE, entity_name, {"id": entity_id, "data": patch},
            lambda: self.store.update(entity_name, entity_id, patch),
        )

    async def delete(self, entity_name: str, entity_id: str) -> Optional[bool]:
        """True when deleted, None when queued."""
        result = await self._write(
            WriteMethod.DELETE, entity_name, {"id": entity_id},
            lambda: self.store.delete(entity_name, entity_id),
        )
        return None if result is None else True

    async def notify_online(self) -> FlushResult:
        """Online transition hook: replay everything queued while offline."""
        return await self.queue.flush(self.store)

    async def _write(self, method: WriteMethod, entity_name: str,
                     params: Dict[str, Any], operation) -> Any:
        try:
            result = await self.executor.execute(
                operation,
                is_write=True,
                max_retries=self.max_retries,
                operation_name=f"{method.value}:{entity_name}",
            )
        except NetworkQueuedWrite:
            self.queue.enqueue(method.value, entity_name, params)
            return None
        if method == WriteMethod.DELETE and result is None:
            return True
        return result
