"""
Ingredient Photo Library
========================

Photo records in the entity store (IngredientImage collection), resolved
against recipe ingredient names with the fuzzy matcher.

Unmatched names can get a new photo: image generation, then alternative
names, then a store record with ``is_generated=True``. Alternative names
only ever grow (append-only, case-insensitive de-duplication).
"""

from typing import Iterable, List, Optional

from config import MATCH_MIN_SIMILARITY, PHOTO_COLLECTION, get_config_value
from errors import PhotoAlreadyExists
from offline_queue import EntityWriter
from prompts import build_ingredient_photo_prompt
from recipe_models import IngredientPhoto
from resilient_executor import ResilientExecutor
from tools.logging_utils import get_logger
from utils.ingredient_matcher import BatchMatchResult, PhotoMatch, batch_match, find_best_match

logger = get_logger(__name__)


def merge_alternative_names(existing: Iterable[str], additions: Iterable[str]) -> List[str]:
    """Existing names in order, then new ones not already present (case-insensitive)."""
    merged = list(existing)
    seen = {n.lower() for n in merged}
    for name in additions:
        text = name.strip()
        if text and text.lower() not in seen:
            seen.add(text.lower())
            merged.append(text)
    return merged


class IngredientPhotoLibrary:

    def __init__(self, writer: EntityWriter, image_client, name_generator,
                 executor: ResilientExecutor, min_similarity: float = MATCH_MIN_SIMILARITY):
        self.writer = writer
        self.image_client = image_client
        self.name_generator = name_generator
        self.executor = executor
        self.min_similarity = min_similarity
        self._photos: Optional[List[IngredientPhoto]] = None

    async def load(self, refresh: bool = False) -> List[IngredientPhoto]:
        if self._photos is None or refresh:
            records = await self.writer.list(PHOTO_COLLECTION)
            self._photos = [IngredientPhoto.from_record(r) for r in records]
            logger.debug(f"Loaded {len(self._photos)} ingredient photos")
        return self._photos

    async def find(self, name: str) -> Optional[PhotoMatch]:
        return find_best_match(name, await self.load(), self.min_similarity)

    async def resolve(self, names: Iterable[str]) -> BatchMatchResult:
        """Match a whole ingredient list; ``missing`` lists names without a photo."""
        result = batch_match(names, await self.load(), self.min_similarity)
        if result.missing:
            logger.info(f"🔍 {len(result.missing)} ingredient(s) without photo: {', '.join(result.missing)}")
        return result

    async def create_photo(self, name: str) -> IngredientPhoto:
        """
        Generate and store a photo for a new ingredient.

        Returns the new photo; its ``id`` is empty when the write was queued
        for offline sync.

        Raises:
            ValueError: Blank name
            PhotoAlreadyExists: A photo with this canonical name exists
        """
        canonical = name.strip().lower()
        if not canonical:
            raise ValueError("Ingredient name cannot be empty")

        photos = await self.load()
        if any(p.canonical_name == canonical for p in photos):
            raise PhotoAlreadyExists(
                f"An image for '{canonical}' already exists",
                operation="create_photo",
            )

        image = await self.executor.execute(
            lambda: self.image_client.generate(build_ingredient_photo_prompt(name.strip())),
            max_retries=get_config_value('retry', 'image_attempts', 4),
            operation_name="generate_ingredient_photo",
        )
        alternatives = await self.name_generator.generate(name)

        photo = IngredientPhoto(
            id="",
            canonical_name=canonical,
            alternative_names=alternatives,
            image_url=image["url"],
            is_generated=True,
        )
        record = await self.writer.create(PHOTO_COLLECTION, photo.to_record())
        if record is None:
            logger.info(f"📥 Photo for '{canonical}' queued for offline sync")
        else:
            photo.id = str(record.get("id", ""))
            logger.info(f"✅ Created photo for '{canonical}' with {len(alternatives)} alternative name(s)")
        photos.append(photo)
        return photo

    async def add_alternative_names(self, photo: IngredientPhoto,
                                    names: Iterable[str]) -> IngredientPhoto:
        """Append new alternative names; existing names are never removed."""
        merged = merge_alternative_names(photo.alternative_names, names)
        if len(merged) == len(photo.alternative_names):
            return photo
        await self.writer.update(PHOTO_COLLECTION, photo.id, {"alternative_names": merged})
        photo.alternative_names = merged
        return photo

    async def enrich_alternative_names(self, photo: IngredientPhoto) -> IngredientPhoto:
        """Generate variants for an existing photo and append them."""
        return await self.add_alternative_names(
            photo, await self.name_generator.generate(photo.canonical_name)
        )
