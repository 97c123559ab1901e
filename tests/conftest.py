"""
Pytest Configuration and Fixtures
=================================

Provides shared fixtures for the test suite:
- In-memory entity store with failure injection
- Scripted text-generation client and fake image/upload clients
- Executor whose backoff sleeps are recorded instead of awaited
- Runtime wired to all of the above, with checkpoints and the offline
  queue under a per-test tmp_path

SAFETY: No fixture touches the network or the real data/ directory.
"""

import os
import tempfile

# Must happen before config.py is imported anywhere
os.environ.setdefault("RECIPE_INGEST_DATA_DIR", tempfile.mkdtemp(prefix="recipe_ingest_test_"))

import copy
from collections import defaultdict
from typing import Any, Dict, List

import pytest


# =============================================================================
# Fakes
# =============================================================================

class InMemoryEntityStore:
    """
    Entity store capability backed by dicts.

    ``fail_next(method, exc, times)`` makes the next ``times`` calls of
    ``method`` raise ``exc``; every call is recorded in ``calls``.
    """

    def __init__(self):
        self.records: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
        self.calls: List[tuple] = []
        self._failures: Dict[str, List[BaseException]] = defaultdict(list)
        self._next_id = 1

    def seed(self, entity_name: str, records: List[Dict[str, Any]]):
        for record in records:
            record = copy.deepcopy(record)
            record.setdefault("id", self._new_id())
            self.records[entity_name].append(record)

    def fail_next(self, method: str, exc: BaseException, times: int = 1):
        self._failures[method].extend([exc] * times)

    def _new_id(self) -> str:
        record_id = f"rec-{self._next_id}"
        self._next_id += 1
        return record_id

    def _call(self, method: str, *args):
        self.calls.append((method,) + args)
        if self._failures[method]:
            raise self._failures[method].pop(0)

    async def list(self, entity_name, sort=None):
        self._call("list", entity_name)
        records = [copy.deepcopy(r) for r in self.records[entity_name]]
        if sort:
            records.sort(key=lambda r: str(r.get(sort.lstrip("-"), "")), reverse=sort.startswith("-"))
        return records

    async def filter(self, entity_name, query):
        self._call("filter", entity_name, query)
        return [
            copy.deepcopy(r) for r in self.records[entity_name]
            if all(r.get(k) == v for k, v in query.items())
        ]

    async def create(self, entity_name, data):
        self._call("create", entity_name, data)
        record = {**copy.deepcopy(data), "id": self._new_id()}
        self.records[entity_name].append(record)
        return copy.deepcopy(record)

    async def update(self, entity_name, entity_id, patch):
        from errors import http_error
        self._call("update", entity_name, entity_id, patch)
        for record in self.records[entity_name]:
            if record.get("id") == entity_id:
                record.update(copy.deepcopy(patch))
                return copy.deepcopy(record)
        raise http_error("Entity store", 404, "not found", f"update:{entity_name}")

    async def delete(self, entity_name, entity_id):
        self._call("delete", entity_name, entity_id)
        before = len(self.records[entity_name])
        self.records[entity_name] = [r for r in self.records[entity_name] if r.get("id") != entity_id]
        return len(self.records[entity_name]) < before


class ScriptedTextClient:
    """
    Text-generation capability replaying scripted responses in order.

    A response that is an exception is raised; a callable is called with
    the prompt.
    """

    is_configured = True

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def add(self, *responses):
        self.responses.extend(responses)

    async def generate(self, prompt, json_schema=None, allow_internet_context=False,
                       file_urls=None, system_prompt=None):
        self.calls.append({
            "prompt": prompt,
            "json_schema": json_schema,
            "file_urls": file_urls,
        })
        if not self.responses:
            raise AssertionError(f"Unexpected text generation call: {prompt[:80]!r}")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(prompt)
        return copy.deepcopy(response)


class FakeImageClient:

    def __init__(self, failures=None):
        self.failures = list(failures or [])
        self.prompts: List[str] = []

    async def generate(self, prompt):
        self.prompts.append(prompt)
        if self.failures:
            raise self.failures.pop(0)
        return {"url": f"https://images.test/{len(self.prompts)}.png"}


class FakeUploader:

    def __init__(self):
        self.uploads: List[str] = []

    async def upload(self, path, content_type=None):
        self.uploads.append(path)
        return {"url": f"https://files.test/{os.path.basename(path)}"}


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def recorded_sleeps():
    """Backoff delays requested by the executor, in order."""
    return []


@pytest.fixture
def executor(recorded_sleeps):
    """ResilientExecutor that records backoff delays instead of sleeping."""
    from resilient_executor import ResilientExecutor

    async def fake_sleep(delay):
        recorded_sleeps.append(delay)

    return ResilientExecutor(sleep=fake_sleep, jitter=lambda low, high: 0.0)


@pytest.fixture
def store():
    return InMemoryEntityStore()


@pytest.fixture
def text_client():
    return ScriptedTextClient()


@pytest.fixture
def image_client():
    return FakeImageClient()


@pytest.fixture
def uploader():
    return FakeUploader()


@pytest.fixture
def runtime(store, text_client, image_client, uploader, executor, tmp_path):
    """Process-scoped services wired to the fakes."""
    from runtime import create_runtime
    return create_runtime(
        store=store,
        text_client=text_client,
        image_client=image_client,
        uploader=uploader,
        executor=executor,
        checkpoint_dir=tmp_path / "checkpoints",
        queue_path=tmp_path / "offline_queue.json",
        install_flood_guard=False,
    )


# =============================================================================
# Test Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "readonly: marks test as pure (no files, no fakes with state)"
    )
    config.addinivalue_line(
        "markers", "creates_data: marks test as writing under tmp_path"
    )
    config.addinivalue_line(
        "markers", "slow: marks test as slow (may take >10 seconds)"
    )
