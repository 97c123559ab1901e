"""
Process-scoped services.

create_runtime() builds, once per process, the objects that must not be
duplicated: the log flood guard, the offline queue, the executor and the
clients. Everything else receives them by injection.

Usage:
    runtime = create_runtime()
    pipeline = runtime.new_pipeline("session-1")
    await runtime.writer.notify_online()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from alternative_names import AlternativeNameGenerator, LLMAlternativeNames, RuleBasedAlternativeNames
from checkpoint_store import CheckpointStore
from config import (
    CHECKPOINT_DIR,
    LOG_MAX_ENTRIES_PER_SESSION,
    MATCH_MIN_SIMILARITY,
    OFFLINE_QUEUE_PATH,
    get_config_value,
)
from entity_store import RestEntityStore
from import_pipeline import ImportPipeline
from llm_client import OpenRouterImageClient, OpenRouterTextClient
from offline_queue import EntityWriter, OfflineQueue
from photo_library import IngredientPhotoLibrary
from recipe_models import PipelineState
from resilient_executor import ResilientExecutor
from source_adapters import FileSource, HttpUploadClient, SourceRouter, TextSource, WebPageSource
from tools.logging_utils import LogFloodGuard, get_logger

logger = get_logger(__name__)


@dataclass
class Runtime:
    executor: ResilientExecutor
    queue: OfflineQueue
    store: object
    writer: EntityWriter
    text_client: object
    image_client: object
    router: SourceRouter
    checkpoints: CheckpointStore
    name_generator: AlternativeNameGenerator
    photo_library: IngredientPhotoLibrary
    flood_guard: LogFloodGuard

    def new_pipeline(self, session_key: str,
                     on_stage: Optional[Callable[[PipelineState], None]] = None) -> ImportPipeline:
        """A pipeline with its own checkpoint slot; share nothing else per session."""
        return ImportPipeline(
            session_key,
            router=self.router,
            text_client=self.text_client,
            writer=self.writer,
            executor=self.executor,
            checkpoints=self.checkpoints,
            image_client=self.image_client,
            on_stage=on_stage,
        )

    def new_session(self) -> None:
        """Start a new log budget for the flood guard."""
        self.flood_guard.reset()


def create_runtime(store=None, text_client=None, image_client=None, uploader=None,
                   executor: ResilientExecutor = None,
                   checkpoint_dir: Path = None, queue_path: Path = None,
                   install_flood_guard: bool = True) -> Runtime:
    """
    Build the process-scoped services.

    Every collaborator can be injected (tests pass in-memory fakes);
    defaults come from config.py.
    """
    flood_guard = LogFloodGuard(LOG_MAX_ENTRIES_PER_SESSION)
    if install_flood_guard:
        flood_guard.install()

    executor = executor or ResilientExecutor(
        default_deadline=get_config_value('retry', 'deadline_seconds', None)
    )
    store = store or RestEntityStore()
    text_client = text_client or OpenRouterTextClient()
    image_client = image_client or OpenRouterImageClient()
    uploader = uploader or HttpUploadClient()

    queue = OfflineQueue(queue_path or OFFLINE_QUEUE_PATH)
    writer = EntityWriter(
        store, executor, queue,
        max_retries=get_config_value('retry', 'default_attempts', 3),
    )

    router = SourceRouter({
        "text": TextSource(),
        "url": WebPageSource(executor),
        "file": FileSource(uploader, text_client, executor),
    })

    primary = None
    if getattr(text_client, "is_configured", True):
        primary = LLMAlternativeNames(text_client, executor)
    else:
        logger.info("ℹ️ No text-generation key configured, alternative names use rules only")
    name_generator = AlternativeNameGenerator(primary, RuleBasedAlternativeNames())

    photo_library = IngredientPhotoLibrary(
        writer, image_client, name_generator, executor, MATCH_MIN_SIMILARITY,
    )

    if len(queue):
        logger.info(f"📥 {len(queue)} write(s) waiting in the offline queue")

    return Runtime(
        executor=executor,
        queue=queue,
        store=store,
        writer=writer,
        text_client=text_client,
        image_client=image_client,
        router=router,
        checkpoints=CheckpointStore(checkpoint_dir or CHECKPOINT_DIR, "import_pipeline"),
        name_generator=name_generator,
        photo_library=photo_library,
        flood_guard=flood_guard,
    )
