"""Recipe validation and cleanup for extracted recipe JSON."""

import math
from typing import Any, Dict, List, Optional

from errors import MissingTitle
from recipe_models import (
    DIFFICULTY_LEVELS,
    FlatList,
    GroupedList,
    Ingredient,
    Instruction,
    ItemGroup,
    Recipe,
    Section,
    flatten,
)

# Error placeholders that indicate a failed extraction (not real content)
ERROR_PLACEHOLDERS = [
    "could not detect ingredients",
    "could not detect instructions",
    "no ingredients found",
    "no instructions found",
    "keine zutaten gefunden",
    "keine anleitung gefunden",
]


def _is_error_placeholder(text: str) -> bool:
    """Check if text is an error placeholder, not real content."""
    if not text:
        return False
    text_lower = text.strip().lower()
    return any(placeholder in text_lower for placeholder in ERROR_PLACEHOLDERS)


def _text(value: Any) -> str:
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def _to_number(value: Any) -> float:
    """Coerce LLM output to a non-negative number. Unparseable -> 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        number = value
    elif isinstance(value, str):
        text = value.strip().replace(",", ".")
        try:
            if "/" in text:
                numerator, denominator = text.split("/", 1)
                number = float(numerator) / float(denominator)
            else:
                number = float(text)
        except (ValueError, ZeroDivisionError):
            return 0
    else:
        return 0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    if isinstance(number, float) and number.is_integer():
        return int(number)
    return number


def _to_int(value: Any) -> int:
    return int(round(_to_number(value)))


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [_text(v) for v in value if _text(v)]


def _clean_ingredient(item: Any, position: int) -> Optional[Ingredient]:
    if isinstance(item, str):
        name = item.strip()
        item = {}
    elif isinstance(item, dict):
        name = _text(item.get("ingredient_name") or item.get("name"))
    else:
        return None
    if not name or _is_error_placeholder(name):
        return None
    return Ingredient(
        ingredient_name=name,
        amount=_to_number(item.get("amount")),
        unit=_text(item.get("unit")),
        preparation_notes=_text(item.get("preparation_notes")),
    )


def _clean_instruction(item: Any, position: int) -> Optional[Instruction]:
    if isinstance(item, str):
        description = item.strip()
        item = {}
    elif isinstance(item, dict):
        description = _text(
            item.get("step_description") or item.get("description") or item.get("text")
        )
    else:
        return None
    if not description or _is_error_placeholder(description):
        return None

    step_number = _to_int(item.get("step_number"))
    timer = item.get("timer_minutes")
    return Instruction(
        step_number=step_number if step_number > 0 else position,
        step_description=description,
        ingredients_for_step=_string_list(item.get("ingredients_for_step")),
        timer_minutes=_to_int(timer) if timer not in (None, "") else None,
    )


def _clean_items(raw_items: Any, cleaner) -> list:
    if not isinstance(raw_items, list):
        return []
    items = []
    for item in raw_items:
        cleaned = cleaner(item, len(items) + 1)
        if cleaned is not None:
            items.append(cleaned)
    return items


def _clean_section(raw: Dict[str, Any], flat_key: str, groups_key: str,
                   items_key: str, cleaner) -> Section:
    """
    Build the tagged union for ingredients or instructions.

    A group is kept when it has a non-blank ``group_name`` and a list of
    items. Valid groups take precedence over the flat list.
    """
    groups = []
    raw_groups = raw.get(groups_key)
    if isinstance(raw_groups, list):
        for group in raw_groups:
            if not isinstance(group, dict):
                continue
            name = _text(group.get("group_name"))
            if not name or not isinstance(group.get(items_key), list):
                continue
            groups.append(ItemGroup(name=name, items=_clean_items(group[items_key], cleaner)))
    if groups:
        return GroupedList(groups=groups)
    return FlatList(items=_clean_items(raw.get(flat_key), cleaner))


def validate_recipe(raw: Any) -> Recipe:
    """
    Validate and clean extracted recipe JSON.

    The title is the only hard requirement. Every other field is defaulted
    and numbers are coerced (non-numeric -> 0) because the extraction
    model occasionally emits strings for numbers.

    Args:
        raw: Parsed JSON from the extraction call

    Returns:
        A Recipe with no missing fields

    Raises:
        MissingTitle: Title is absent or blank
    """
    if not isinstance(raw, dict):
        raise MissingTitle()
    title = _text(raw.get("title"))
    if not title:
        raise MissingTitle()

    servings = _to_int(raw.get("servings"))
    difficulty = _text(raw.get("difficulty")).lower()

    nutrition_raw = raw.get("nutrition_per_serving") or raw.get("nutrition")
    nutrition = {}
    if isinstance(nutrition_raw, dict):
        nutrition = {str(k): _to_number(v) for k, v in nutrition_raw.items()}

    confidence = raw.get("confidence_scores")

    return Recipe(
        title=title,
        description=_text(raw.get("description")),
        prep_time_minutes=_to_int(raw.get("prep_time_minutes")),
        cook_time_minutes=_to_int(raw.get("cook_time_minutes")),
        servings=servings if servings >= 1 else 1,
        difficulty=difficulty if difficulty in DIFFICULTY_LEVELS else "medium",
        meal_type=_text(raw.get("meal_type")),
        course=_text(raw.get("gang") or raw.get("course")),
        cuisine=_text(raw.get("cuisine")),
        main_ingredient=_text(raw.get("main_ingredient")),
        ingredients=_clean_section(
            raw, "ingredients", "ingredient_groups", "ingredients", _clean_ingredient
        ),
        instructions=_clean_section(
            raw, "instructions", "instruction_groups", "instructions", _clean_instruction
        ),
        nutrition=nutrition,
        tags=_string_list(raw.get("tags")),
        equipment=_string_list(raw.get("equipment")),
        image_url=_text(raw.get("image_url")),
        source_type=_text(raw.get("source_type")),
        source_url=_text(raw.get("source_url")),
        confidence_scores=confidence if isinstance(confidence, dict) else {},
    )


# =============================================================================
# REVIEW HELPERS
# =============================================================================

def calculate_quality_score(recipe: Recipe) -> int:
    """
    Completeness score 0-100 shown at review time.

    Weights: title, description, image, ingredient count (3 and 6),
    step count (2 and 4) and timings 10 each; servings, meal type and
    course 5 each; cuisine 3; main ingredient 2.
    """
    ingredient_count = len(flatten(recipe.ingredients))
    step_count = len(flatten(recipe.instructions))
    checks = [
        (10, len(recipe.title) > 5),
        (10, len(recipe.description) > 20),
        (10, bool(recipe.image_url)),
        (10, ingredient_count >= 3),
        (10, ingredient_count >= 6),
        (10, step_count >= 2),
        (10, step_count >= 4),
        (10, recipe.prep_time_minutes > 0 or recipe.cook_time_minutes > 0),
        (5, recipe.servings > 0),
        (5, bool(recipe.meal_type)),
        (5, bool(recipe.course)),
        (3, bool(recipe.cuisine)),
        (2, bool(recipe.main_ingredient)),
    ]
    max_score = sum(weight for weight, _ in checks)
    score = sum(weight for weight, passed in checks if passed)
    return round(score / max_score * 100)


def review_warnings(recipe: Recipe) -> List[str]:
    """Non-blocking issues to fix by hand before saving."""
    warnings = []
    if not recipe.meal_type:
        warnings.append("Meal type is missing - set it manually")
    if not recipe.course:
        warnings.append("Course is missing - set it manually")
    if not flatten(recipe.ingredients):
        warnings.append("No ingredients detected")
    if not flatten(recipe.instructions):
        warnings.append("No instructions detected")
    return warnings
