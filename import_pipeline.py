"""
Staged Extraction Pipeline
==========================

Orchestrates one ingestion through its stages:

    INPUT -> PROCESSING -> OCR_REVIEW -> EXTRACTING -> RECIPE_REVIEW -> COMPLETE
                                         CANCELLED from any non-terminal stage

    start(source)        INPUT -> PROCESSING -> OCR_REVIEW
                         adapter text is normalized and stored for human
                         correction; a failure returns to INPUT
    approve_text(text)   OCR_REVIEW -> EXTRACTING -> RECIPE_REVIEW
                         structuring call, then schema-constrained extraction
                         with the category vocabulary, then validation and
                         duplicate detection; a failure returns to OCR_REVIEW
    save(resolution)     RECIPE_REVIEW -> COMPLETE (new / merge / replace)
    back()               RECIPE_REVIEW -> OCR_REVIEW, OCR_REVIEW -> INPUT
    cancel()             -> CANCELLED

Every transition writes the checkpoint for this pipeline's session key;
COMPLETE and CANCELLED clear it. resume() restores a stored checkpoint.
Transport failures never surface here directly: all external calls go
through ResilientExecutor, so callers see domain errors (InsufficientContent,
MissingTitle) or the executor's verdicts (RetryExhausted, RateLimited, ...).

Usage:
    from runtime import create_runtime

    runtime = create_runtime()
    pipeline = runtime.new_pipeline("session-1")
    await pipeline.start(RawSource(kind="text", payload=text))
    await pipeline.approve_text()
    result = await pipeline.save(resolution=Resolution.NEW)
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from checkpoint_store import CheckpointStore
from config import (
    CATEGORY_COLLECTION,
    DUPLICATE_MIN_SCORE,
    MAIN_INGREDIENT_COLLECTION,
    RECIPE_COLLECTION,
    get_config_value,
)
from errors import (
    InvalidTransition,
    MissingTitle,
    PipelineCancelled,
    RetryExhausted,
    TransportError,
)
from offline_queue import EntityWriter
from prompts import (
    RECIPE_EXTRACTION_SCHEMA,
    build_extraction_prompt,
    build_recipe_image_prompt,
    build_structuring_prompt,
)
from recipe_models import CategoryVocabulary, PipelineState, RawSource, Recipe, Stage
from resilient_executor import ResilientExecutor
from source_adapters import SourceRouter
from text_normalizer import extract_ocr_metadata, normalize_text
from tools.logging_utils import get_logger
from utils.duplicate_detection import Resolution, find_duplicates, resolve_payload
from utils.recipe_validation import calculate_quality_score, review_warnings, validate_recipe

logger = get_logger(__name__)


ALLOWED_TRANSITIONS: Dict[Stage, Set[Stage]] = {
    Stage.INPUT: {Stage.PROCESSING, Stage.CANCELLED},
    Stage.PROCESSING: {Stage.OCR_REVIEW, Stage.INPUT, Stage.CANCELLED},
    Stage.OCR_REVIEW: {Stage.EXTRACTING, Stage.INPUT, Stage.CANCELLED},
    Stage.EXTRACTING: {Stage.RECIPE_REVIEW, Stage.OCR_REVIEW, Stage.CANCELLED},
    Stage.RECIPE_REVIEW: {Stage.COMPLETE, Stage.OCR_REVIEW, Stage.CANCELLED},
    Stage.COMPLETE: set(),
    Stage.CANCELLED: set(),
}

BACK_TRANSITIONS: Dict[Stage, Stage] = {
    Stage.RECIPE_REVIEW: Stage.OCR_REVIEW,
    Stage.OCR_REVIEW: Stage.INPUT,
}

# A checkpoint written mid-call resumes at the stage before the call
_RESUME_STAGE: Dict[Stage, Stage] = {
    Stage.PROCESSING: Stage.INPUT,
    Stage.EXTRACTING: Stage.OCR_REVIEW,
}

IMAGE_FAILED_WARNING = "Image generation failed - can be retried later"


@dataclass
class SaveResult:
    resolution: Resolution
    record: Optional[Dict] = None
    queued: bool = False
    warnings: List[str] = field(default_factory=list)


class ImportPipeline:
    """One ingestion, checkpointed under ``session_key``."""

    def __init__(self, session_key: str, *,
                 router: SourceRouter,
                 text_client,
                 writer: EntityWriter,
                 executor: ResilientExecutor,
                 checkpoints: CheckpointStore,
                 image_client=None,
                 on_stage: Optional[Callable[[PipelineState], None]] = None,
                 duplicate_min_score: int = DUPLICATE_MIN_SCORE,
                 generate_images: Optional[bool] = None):
        self.session_key = session_key
        self.router = router
        self.text_client = text_client
        self.writer = writer
        self.executor = executor
        self.checkpoints = checkpoints
        self.image_client = image_client
        self.on_stage = on_stage
        self.duplicate_min_score = duplicate_min_score
        self.generate_images = (
            generate_images if generate_images is not None
            else get_config_value('ingest', 'generate_recipe_images', False)
        )
        self.state = PipelineState(session_key=session_key)
        self.cancel_event = asyncio.Event()
        self._vocabulary: Optional[CategoryVocabulary] = None

    @property
    def stage(self) -> Stage:
        return self.state.stage

    # =========================================================================
    # STATE MACHINE
    # =========================================================================

    def _transition(self, stage: Stage, **changes) -> None:
        current = self.state.stage
        if stage not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransition(
                f"Cannot move from {current.value} to {stage.value}",
                operation="transition",
                details={'session': self.session_key},
            )
        for name, value in changes.items():
            setattr(self.state, name, value)
        self.state.stage = stage
        self.state.updated_at = datetime.now().isoformat()

        if stage.is_terminal:
            self.checkpoints.clear(self.session_key)
        else:
            self.checkpoints.save(self.session_key, self.state.to_dict())

        logger.info(f"➡️ [{self.session_key}] {current.value} -> {stage.value}")
        if self.on_stage:
            self.on_stage(self.state)

    def _require(self, *stages: Stage) -> None:
        if self.state.stage not in stages:
            raise InvalidTransition(
                f"Operation not allowed in stage {self.state.stage.value}",
                operation="require_stage",
                details={'expected': "/".join(s.value for s in stages)},
            )

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise PipelineCancelled("Pipeline was cancelled", operation=self.session_key)

    def _revert(self, stage: Stage) -> None:
        if not self.state.stage.is_terminal and self.state.stage != stage:
            self._transition(stage)

    def resume(self) -> Optional[PipelineState]:
        """
        Restore the stored checkpoint for this session, if any.

        A checkpoint written while a call was in flight (PROCESSING,
        EXTRACTING) resumes at the stage before that call.
        """
        data = self.checkpoints.load(self.session_key)
        if data is None:
            return None
        try:
            state = PipelineState.from_dict(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"⚠️ Discarding unreadable checkpoint for {self.session_key}: {e}")
            return None
        state.stage = _RESUME_STAGE.get(state.stage, state.stage)
        self.state = state
        logger.info(f"🔄 [{self.session_key}] Resumed at {state.stage.value}")
        if self.on_stage:
            self.on_stage(self.state)
        return self.state

    # =========================================================================
    # STAGES
    # =========================================================================

    async def start(self, source: RawSource) -> PipelineState:
        """
        INPUT -> PROCESSING -> OCR_REVIEW.

        Raises:
            InvalidSource: RawSource rejected at the adapter boundary
            InsufficientContent: Extracted text below the per-source minimum
        """
        self._require(Stage.INPUT)
        self._check_cancelled()
        self._transition(
            Stage.PROCESSING,
            source_context={'source_type': source.kind, 'source_url': ""},
        )
        try:
            extracted = await self.router.extract(source)
            self._check_cancelled()
            text = normalize_text(extracted.text, source.kind)
        except PipelineCancelled:
            raise
        except Exception:
            self._revert(Stage.INPUT)
            raise

        source_url = extracted.source_url or (str(source.payload) if source.kind == "url" else "")
        metadata = extract_ocr_metadata(text)
        self._transition(
            Stage.OCR_REVIEW,
            normalized_text=text,
            metadata=metadata.to_dict(),
            source_context={'source_type': source.kind, 'source_url': source_url},
        )
        logger.info(
            f"📝 [{self.session_key}] {len(text)} characters ready for review "
            f"(recipe confidence {metadata.confidence}%)"
        )
        return self.state

    async def approve_text(self, text: Optional[str] = None) -> PipelineState:
        """
        OCR_REVIEW -> EXTRACTING -> RECIPE_REVIEW with the approved text.

        Args:
            text: Corrected text; defaults to the stored normalized text

        Raises:
            InsufficientContent: Edited text below the minimum
            MissingTitle: Extraction produced no title
            RetryExhausted / RateLimited: Generation calls kept failing
        """
        self._require(Stage.OCR_REVIEW)
        self._check_cancelled()
        source_kind = self.state.source_context.get('source_type', "text")
        approved = normalize_text(text if text is not None else self.state.normalized_text, source_kind)

        self._transition(Stage.EXTRACTING, normalized_text=approved)
        try:
            structured = await self.executor.execute(
                lambda: self.text_client.generate(build_structuring_prompt(approved)),
                max_retries=get_config_value('retry', 'structuring_attempts', 2),
                operation_name="structure_text",
                cancel_event=self.cancel_event,
            )
            vocabulary = await self.load_vocabulary()
            raw_recipe = await self.executor.execute(
                lambda: self.text_client.generate(
                    build_extraction_prompt(structured, vocabulary),
                    json_schema=RECIPE_EXTRACTION_SCHEMA,
                ),
                max_retries=get_config_value('retry', 'extraction_attempts', 4),
                operation_name="extract_recipe",
                cancel_event=self.cancel_event,
            )
            self._check_cancelled()
            recipe = validate_recipe(raw_recipe)
        except PipelineCancelled:
            raise
        except Exception:
            self._revert(Stage.OCR_REVIEW)
            raise

        recipe.source_type = self.state.source_context.get('source_type', "")
        recipe.source_url = self.state.source_context.get('source_url', "")
        warnings = review_warnings(recipe)
        duplicates = await self._find_duplicates(recipe, warnings)
        self._check_cancelled()

        self._transition(
            Stage.RECIPE_REVIEW,
            structured_text=str(structured),
            extracted_recipe=recipe.to_dict(),
            duplicates=[d.to_dict() for d in duplicates],
            warnings=warnings,
            quality_score=calculate_quality_score(recipe),
        )
        return self.state

    async def save(self, recipe: Optional[Recipe] = None,
                   resolution: Resolution = Resolution.NEW,
                   target_id: Optional[str] = None) -> SaveResult:
        """
        RECIPE_REVIEW -> COMPLETE.

        Args:
            recipe: Reviewed (possibly edited) recipe; defaults to the extracted one
            resolution: new, merge into, or replace an existing recipe
            target_id: Existing recipe for merge/replace; defaults to the top duplicate

        Returns:
            SaveResult; ``queued`` is True when the write was deferred offline
        """
        self._require(Stage.RECIPE_REVIEW)
        self._check_cancelled()
        resolution = Resolution(resolution)
        recipe = recipe or self.state.recipe()
        if recipe is None or not recipe.title.strip():
            raise MissingTitle()

        warnings = list(self.state.warnings)
        await self._attach_image(recipe, warnings)
        candidate = recipe.to_dict()

        if resolution == Resolution.NEW:
            record = await self.writer.create(RECIPE_COLLECTION, candidate)
        else:
            target = target_id or self._top_duplicate_id()
            existing = await self._fetch_recipe(target)
            payload = resolve_payload(resolution, candidate, existing)
            record = await self.writer.update(RECIPE_COLLECTION, target, payload)

        queued = record is None
        if queued:
            logger.info(f"📥 [{self.session_key}] '{recipe.title}' queued for offline sync")
        else:
            logger.info(f"✅ [{self.session_key}] Saved '{recipe.title}' ({resolution.value})")

        if self.state.stage.is_terminal:
            # cancel() ran while the write was in flight; the write stands
            logger.warning(f"⚠️ [{self.session_key}] Cancelled during save, record was already written")
        else:
            self._transition(Stage.COMPLETE, warnings=warnings)
        return SaveResult(resolution=resolution, record=record, queued=queued, warnings=warnings)

    def back(self) -> PipelineState:
        target = BACK_TRANSITIONS.get(self.state.stage)
        if target is None:
            raise InvalidTransition(
                f"No back transition from {self.state.stage.value}",
                operation="back",
            )
        self._transition(target)
        return self.state

    def cancel(self) -> None:
        """Stop retry loops for this pipeline and clear its checkpoint."""
        if self.state.stage.is_terminal:
            return
        self.cancel_event.set()
        self._transition(Stage.CANCELLED)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def load_vocabulary(self) -> CategoryVocabulary:
        """Category vocabulary from the store; empty when it cannot be loaded."""
        if self._vocabulary is None:
            try:
                categories = await self.writer.list(CATEGORY_COLLECTION, "name")
                main_ingredients = await self.writer.list(MAIN_INGREDIENT_COLLECTION, "name")
            except (RetryExhausted, TransportError) as e:
                logger.warning(f"⚠️ Category vocabulary unavailable, extracting without it: {e}")
                return CategoryVocabulary()
            self._vocabulary = CategoryVocabulary.from_records(categories, main_ingredients)
        return self._vocabulary

    async def _find_duplicates(self, recipe: Recipe, warnings: List[str]):
        try:
            corpus = await self.writer.list(RECIPE_COLLECTION)
        except (RetryExhausted, TransportError) as e:
            logger.warning(f"⚠️ Duplicate check skipped: {e}")
            warnings.append("Duplicate check unavailable")
            return []
        return find_duplicates(recipe, corpus, self.duplicate_min_score)

    async def _attach_image(self, recipe: Recipe, warnings: List[str]) -> None:
        if recipe.image_url or self.image_client is None or not self.generate_images:
            return
        try:
            image = await self.executor.execute(
                lambda: self.image_client.generate(build_recipe_image_prompt(recipe)),
                max_retries=get_config_value('retry', 'image_attempts', 4),
                operation_name="generate_recipe_image",
                cancel_event=self.cancel_event,
            )
            recipe.image_url = image["url"]
        except (RetryExhausted, TransportError) as e:
            logger.warning(f"⚠️ Recipe image generation failed: {e}")
            warnings.append(IMAGE_FAILED_WARNING)

    def _top_duplicate_id(self) -> str:
        matches = self.state.duplicate_matches()
        if not matches or not matches[0].recipe_ref.get("id"):
            raise ValueError("Merge/replace needs a target recipe and no duplicate was found")
        return matches[0].recipe_ref["id"]

    async def _fetch_recipe(self, recipe_id: str) -> Dict:
        records = await self.writer.filter(RECIPE_COLLECTION, {"id": recipe_id})
        if not records:
            raise ValueError(f"Recipe {recipe_id} not found")
        return records[0]
