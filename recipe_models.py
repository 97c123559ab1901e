"""
Data model for ingested recipes and ingredient photos.

Recipes keep ingredients and instructions as a tagged union: either a
FlatList of items or a GroupedList of named ItemGroups. Consumers that only
need totals call flatten() instead of re-detecting the shape. When a raw
record carries both shapes, groups win.

Stored records use the entity store's field names (``ingredients`` /
``ingredient_groups``, ``instructions`` / ``instruction_groups``,
``gang`` for the course slot).
"""

from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional, Union


DIFFICULTY_LEVELS = ("easy", "medium", "hard", "expert")


@dataclass
class Ingredient:
    ingredient_name: str
    amount: float = 0
    unit: str = ""
    preparation_notes: str = ""


@dataclass
class Instruction:
    step_number: int
    step_description: str
    ingredients_for_step: List[str] = field(default_factory=list)
    timer_minutes: Optional[int] = None


@dataclass
class ItemGroup:
    """A named section, e.g. "Teig" or "Filling"."""
    name: str
    items: list = field(default_factory=list)


@dataclass
class FlatList:
    items: list = field(default_factory=list)
    kind: str = "flat"


@dataclass
class GroupedList:
    groups: List[ItemGroup] = field(default_factory=list)
    kind: str = "grouped"


Section = Union[FlatList, GroupedList]


def flatten(section: Section) -> list:
    """Flat view of either shape, in document order."""
    if isinstance(section, GroupedList):
        return [item for group in section.groups for item in group.items]
    return list(section.items)


@dataclass
class Recipe:
    """A validated candidate/draft recipe."""
    title: str
    description: str = ""
    prep_time_minutes: int = 0
    cook_time_minutes: int = 0
    servings: int = 1
    difficulty: str = "medium"
    meal_type: str = ""
    course: str = ""
    cuisine: str = ""
    main_ingredient: str = ""
    ingredients: Section = field(default_factory=FlatList)
    instructions: Section = field(default_factory=FlatList)
    nutrition: Dict[str, float] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)
    equipment: List[str] = field(default_factory=list)
    image_url: str = ""
    source_type: str = ""
    source_url: str = ""
    confidence_scores: Dict[str, Any] = field(default_factory=dict)

    def ingredient_names(self) -> List[str]:
        return [ing.ingredient_name for ing in flatten(self.ingredients)]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the entity store's record shape."""
        flat_ingredients = self.ingredients if isinstance(self.ingredients, FlatList) else FlatList()
        grouped_ingredients = self.ingredients if isinstance(self.ingredients, GroupedList) else GroupedList()
        flat_instructions = self.instructions if isinstance(self.instructions, FlatList) else FlatList()
        grouped_instructions = self.instructions if isinstance(self.instructions, GroupedList) else GroupedList()

        return {
            "title": self.title,
            "description": self.description,
            "prep_time_minutes": self.prep_time_minutes,
            "cook_time_minutes": self.cook_time_minutes,
            "servings": self.servings,
            "difficulty": self.difficulty,
            "meal_type": self.meal_type,
            "gang": self.course,
            "cuisine": self.cuisine,
            "main_ingredient": self.main_ingredient,
            "ingredients": [asdict(i) for i in flat_ingredients.items],
            "ingredient_groups": [
                {"group_name": g.name, "ingredients": [asdict(i) for i in g.items]}
                for g in grouped_ingredients.groups
            ],
            "instructions": [asdict(s) for s in flat_instructions.items],
            "instruction_groups": [
                {"group_name": g.name, "instructions": [asdict(s) for s in g.items]}
                for g in grouped_instructions.groups
            ],
            "nutrition_per_serving": dict(self.nutrition),
            "tags": list(self.tags),
            "equipment": list(self.equipment),
            "image_url": self.image_url,
            "source_type": self.source_type,
            "source_url": self.source_url,
            "confidence_scores": dict(self.confidence_scores),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Recipe":
        """Rebuild from to_dict() output (checkpoint restore)."""
        ingredient_groups = data.get("ingredient_groups") or []
        if ingredient_groups:
            ingredients: Section = GroupedList([
                ItemGroup(g["group_name"], [Ingredient(**i) for i in g.get("ingredients", [])])
                for g in ingredient_groups
            ])
        else:
            ingredients = FlatList([Ingredient(**i) for i in data.get("ingredients") or []])

        instruction_groups = data.get("instruction_groups") or []
        if instruction_groups:
            instructions: Section = GroupedList([
                ItemGroup(g["group_name"], [Instruction(**s) for s in g.get("instructions", [])])
                for g in instruction_groups
            ])
        else:
            instructions = FlatList([Instruction(**s) for s in data.get("instructions") or []])

        return cls(
            title=data["title"],
            description=data.get("description", ""),
            prep_time_minutes=data.get("prep_time_minutes", 0),
            cook_time_minutes=data.get("cook_time_minutes", 0),
            servings=data.get("servings", 1),
            difficulty=data.get("difficulty", "medium"),
            meal_type=data.get("meal_type", ""),
            course=data.get("gang", ""),
            cuisine=data.get("cuisine", ""),
            main_ingredient=data.get("main_ingredient", ""),
            ingredients=ingredients,
            instructions=instructions,
            nutrition=dict(data.get("nutrition_per_serving") or {}),
            tags=list(data.get("tags") or []),
            equipment=list(data.get("equipment") or []),
            image_url=data.get("image_url", ""),
            source_type=data.get("source_type", ""),
            source_url=data.get("source_url", ""),
            confidence_scores=dict(data.get("confidence_scores") or {}),
        )


def record_ingredient_names(record: Dict[str, Any]) -> List[str]:
    """Ingredient names of a raw store record, groups taking precedence."""
    groups = record.get("ingredient_groups") or []
    if groups:
        items = [i for g in groups if isinstance(g, dict) for i in (g.get("ingredients") or [])]
    else:
        items = record.get("ingredients") or []
    return [
        i.get("ingredient_name", "")
        for i in items
        if isinstance(i, dict) and i.get("ingredient_name")
    ]


@dataclass
class DuplicateMatch:
    recipe_ref: Dict[str, Any]
    score: int
    common_ingredient_count: int
    total_ingredient_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DuplicateMatch":
        return cls(**{f.name: data[f.name] for f in fields(cls)})


@dataclass
class IngredientPhoto:
    id: str
    canonical_name: str
    alternative_names: List[str] = field(default_factory=list)
    image_url: str = ""
    is_generated: bool = False

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "IngredientPhoto":
        return cls(
            id=str(record.get("id", "")),
            canonical_name=(record.get("ingredient_name") or "").strip().lower(),
            alternative_names=[n for n in (record.get("alternative_names") or []) if isinstance(n, str)],
            image_url=record.get("image_url", ""),
            is_generated=bool(record.get("is_generated", False)),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "ingredient_name": self.canonical_name,
            "alternative_names": list(self.alternative_names),
            "image_url": self.image_url,
            "is_generated": self.is_generated,
        }


class WriteMethod(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class OfflineQueueItem:
    id: str
    method: str
    entity_name: str
    params: Dict[str, Any]
    timestamp: str


# =============================================================================
# PIPELINE STATE
# =============================================================================

class Stage(str, Enum):
    INPUT = "input"
    PROCESSING = "processing"
    OCR_REVIEW = "ocr_review"
    EXTRACTING = "extracting"
    RECIPE_REVIEW = "recipe_review"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Stage.COMPLETE, Stage.CANCELLED)


@dataclass
class RawSource:
    """Adapter input. Validated at the boundary, never persisted."""
    kind: str
    payload: Any
    content_type: Optional[str] = None
    size_bytes: Optional[int] = None


@dataclass
class PipelineState:
    """
    Checkpointed progress of one ingestion.

    ``extracted_recipe`` holds Recipe.to_dict() output and ``duplicates``
    DuplicateMatch.to_dict() entries so the whole state is plain JSON.
    """
    session_key: str
    stage: Stage = Stage.INPUT
    normalized_text: str = ""
    structured_text: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    extracted_recipe: Optional[Dict[str, Any]] = None
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    quality_score: Optional[int] = None
    source_context: Dict[str, Any] = field(default_factory=dict)
    updated_at: str = ""

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["stage"] = self.stage.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PipelineState":
        # Filter to known fields for forward/backward compatibility
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        filtered["stage"] = Stage(filtered.get("stage", Stage.INPUT.value))
        return cls(**filtered)

    def recipe(self) -> Optional[Recipe]:
        if self.extracted_recipe is None:
            return None
        return Recipe.from_dict(self.extracted_recipe)

    def duplicate_matches(self) -> List[DuplicateMatch]:
        return [DuplicateMatch.from_dict(d) for d in self.duplicates]


@dataclass
class CategoryVocabulary:
    """Category names owned by the entity store, offered to the extraction prompt."""
    meal_types: List[str] = field(default_factory=list)
    courses: List[str] = field(default_factory=list)
    cuisines: List[str] = field(default_factory=list)
    main_ingredients: List[str] = field(default_factory=list)

    @classmethod
    def from_records(cls, categories: List[Dict[str, Any]],
                     main_ingredients: List[Dict[str, Any]]) -> "CategoryVocabulary":
        """Build from RecipeCategory records ({name, category_type}) and MainIngredient records."""
        vocabulary = cls()
        slots = {"meal": vocabulary.meal_types, "gang": vocabulary.courses,
                 "cuisine": vocabulary.cuisines}
        for record in categories:
            slot = slots.get(record.get("category_type"))
            name = (record.get("name") or "").strip()
            if slot is not None and name and name not in slot:
                slot.append(name)
        for record in main_ingredients:
            name = (record.get("name") or "").strip()
            if name and name not in vocabulary.main_ingredients:
                vocabulary.main_ingredients.append(name)
        return vocabulary
