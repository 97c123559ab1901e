"""
Recipe Ingest Prompts Configuration
===================================

This module contains all LLM prompts and JSON schemas used by the ingest
pipeline. Separating prompts from code makes it easier to tune them
without modifying the pipeline logic.

Prompts are formatted with str.format() and expect certain variables to be
filled in at runtime (see comments for required variables).

Schemas are passed to the text-generation client as ``json_schema`` and
wrapped into OpenRouter's ``response_format`` there.
"""

from typing import List

from recipe_models import CategoryVocabulary, Recipe, flatten


# =============================================================================
# STAGE 1: STRUCTURING (free text in, free text out)
# =============================================================================
# Variables: {raw_text}

STRUCTURING_PROMPT = """You are an expert in structuring recipe texts.

**ABSOLUTELY CRITICAL - THESE RULES ARE NON-NEGOTIABLE:**

1. **NO REPHRASING**: Copy every sentence WORD FOR WORD. Do NOT change ANY wording.
2. **NO CORRECTIONS**: Leave all spelling, grammar, and OCR errors as they are. 1:1 copy.
3. **NO OMISSIONS**: Every single word must appear in the output.
4. **NO ADDITIONS**: Add NOTHING except the explicitly allowed tags.

**Your ONLY allowed actions:**

A) **STRUCTURAL TAGS:**
   - [H1] around the main title
   - [H2] around main sections (ZUTATEN, ZUBEREITUNG, INGREDIENTS, INSTRUCTIONS, etc.)
   - [H3] around sub-sections (Teig, Füllung, Dough, Filling, etc.)

B) **PORTION MARKER:**
   - If you find serving information (e.g., "für 4 Personen", "4 Portionen", "serves 4"), add at the beginning: [PORTIONS: X]
   - Do NOT delete the original text containing the serving information

C) **STEP SEPARATION** (only for continuous text without numbers):
   - If instructions are continuous text, end each sentence with a period
   - COPY the sentences EXACTLY - do NOT change a single word

**Raw Text:**
{raw_text}

**FORBIDDEN example:**
Input: "Spaghetti nach Packungsanweisung kochen"
Output: "Die Spaghetti gemäß Packungsanleitung kochen"  (rephrased)

**CORRECT example:**
Input: "Spaghetti nach Packungsanweisung kochen"
Output: "Spaghetti nach Packungsanweisung kochen"  (1:1 copy)

**Now structure the text above. Return ONLY the structured text, no comments.**"""


def build_structuring_prompt(raw_text: str) -> str:
    return STRUCTURING_PROMPT.format(raw_text=raw_text)


# =============================================================================
# STAGE 2: SCHEMA-CONSTRAINED EXTRACTION
# =============================================================================
# Variables: {structured_text}, {meal_types}, {courses}, {cuisines}, {main_ingredients}

EXTRACTION_PROMPT = """You are an expert in extracting recipe data from structured text.

**Structured Text:**
{structured_text}

**Available Categories:**
- Meal Types: {meal_types}
- Courses: {courses}
- Cuisines: {cuisines}
- Main Ingredients: {main_ingredients}

**RULES FOR GROUPS:**
1. If the text contains [H3] sections inside the ingredients or instructions
   (e.g. [H3]Teig[/H3], [H3]Filling[/H3]), use ingredient_groups / instruction_groups
2. Only with clear structure: otherwise use the flat "ingredients" / "instructions"
3. For grouped structures use the groups INSTEAD OF the flat lists
4. ingredients_for_step: for EACH step, the ingredient names used in that step

**ADDITIONAL RULES:**
- Use ONLY categories from the lists above; leave a field empty if nothing fits
- All amounts as numbers, not text ("1/2" becomes 0.5)
- difficulty is one of: easy, medium, hard, expert
- Provide confidence_scores (0-100) for overall, ingredients, instructions, nutrition

Extract the recipe as a complete JSON object."""


def _vocabulary_line(names: List[str]) -> str:
    return ", ".join(names) if names else "(none defined)"


def build_extraction_prompt(structured_text: str, vocabulary: CategoryVocabulary) -> str:
    return EXTRACTION_PROMPT.format(
        structured_text=structured_text,
        meal_types=_vocabulary_line(vocabulary.meal_types),
        courses=_vocabulary_line(vocabulary.courses),
        cuisines=_vocabulary_line(vocabulary.cuisines),
        main_ingredients=_vocabulary_line(vocabulary.main_ingredients),
    )


_INGREDIENT_SCHEMA = {
    "type": "object",
    "properties": {
        "ingredient_name": {"type": "string"},
        "amount": {"type": "number"},
        "unit": {"type": "string"},
        "preparation_notes": {"type": "string"},
    },
    "required": ["ingredient_name"],
}

_INSTRUCTION_SCHEMA = {
    "type": "object",
    "properties": {
        "step_number": {"type": "integer"},
        "step_description": {"type": "string"},
        "ingredients_for_step": {"type": "array", "items": {"type": "string"}},
        "timer_minutes": {"type": "integer"},
    },
    "required": ["step_number", "step_description"],
}

RECIPE_EXTRACTION_SCHEMA = {
    "name": "recipe_extraction",
    "schema": {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "description": {"type": "string"},
            "prep_time_minutes": {"type": "integer"},
            "cook_time_minutes": {"type": "integer"},
            "servings": {"type": "integer"},
            "difficulty": {"type": "string", "enum": ["easy", "medium", "hard", "expert"]},
            "meal_type": {"type": "string"},
            "gang": {"type": "string"},
            "cuisine": {"type": "string"},
            "main_ingredient": {"type": "string"},
            "ingredients": {"type": "array", "items": _INGREDIENT_SCHEMA},
            "ingredient_groups": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "group_name": {"type": "string"},
                        "ingredients": {"type": "array", "items": _INGREDIENT_SCHEMA},
                    },
                    "required": ["group_name", "ingredients"],
                },
            },
            "instructions": {"type": "array", "items": _INSTRUCTION_SCHEMA},
            "instruction_groups": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "group_name": {"type": "string"},
                        "instructions": {"type": "array", "items": _INSTRUCTION_SCHEMA},
                    },
                    "required": ["group_name", "instructions"],
                },
            },
            "nutrition_per_serving": {
                "type": "object",
                "properties": {
                    "calories_kcal": {"type": "number"},
                    "protein_g": {"type": "number"},
                    "carbs_g": {"type": "number"},
                    "fat_g": {"type": "number"},
                    "fiber_g": {"type": "number"},
                    "sugar_g": {"type": "number"},
                    "sodium_mg": {"type": "number"},
                },
            },
            "tags": {"type": "array", "items": {"type": "string"}},
            "confidence_scores": {
                "type": "object",
                "properties": {
                    "overall": {"type": "integer"},
                    "ingredients": {"type": "integer"},
                    "instructions": {"type": "integer"},
                    "nutrition": {"type": "integer"},
                },
            },
        },
        "required": ["title"],
    },
}


# =============================================================================
# DOCUMENT TEXT EXTRACTION (uploaded PDFs and photos)
# =============================================================================

DOCUMENT_TEXT_PROMPT = """Extract ALL text from the attached recipe document exactly as written.

- Keep the original language, spelling and line breaks
- Keep headings such as ingredient and instruction sections
- Do not summarize, translate or comment

Return ONLY the extracted text."""


# =============================================================================
# ALTERNATIVE INGREDIENT NAMES
# =============================================================================
# Variables: {name}, {max_names}

ALTERNATIVE_NAMES_PROMPT = """Generate alternative names for the ingredient "{name}" so that recipes
using a different spelling can find the same ingredient photo.

Include:
- Singular and plural forms (Tomate / Tomaten)
- Hyphenated and non-hyphenated variants (Frühlings-Zwiebel / Frühlingszwiebel)
- Common synonyms and regional names (Paradeiser for Tomate)
- Varieties that look the same in a photo
- Common spelling variants

Do NOT include:
- Preparation states (chopped, diced, fresh, frozen, gehackt, gewürfelt, frisch)
- Colour words unless they are part of the name
- The name "{name}" itself

Return at most {max_names} names."""


def build_alternative_names_prompt(name: str, max_names: int) -> str:
    return ALTERNATIVE_NAMES_PROMPT.format(name=name, max_names=max_names)


def alternative_names_schema(max_names: int) -> dict:
    return {
        "name": "alternative_names",
        "schema": {
            "type": "object",
            "properties": {
                "alternatives": {
                    "type": "array",
                    "items": {"type": "string"},
                    "maxItems": max_names,
                },
            },
            "required": ["alternatives"],
        },
    }


# =============================================================================
# IMAGE GENERATION
# =============================================================================

INGREDIENT_PHOTO_PROMPT = (
    "Professional food photography of {name}, isolated on a clean white background, "
    "soft natural light, high detail, no text, no labels, no hands"
)


def build_ingredient_photo_prompt(name: str) -> str:
    return INGREDIENT_PHOTO_PROMPT.format(name=name)


def build_recipe_image_prompt(recipe: Recipe) -> str:
    """Plated-dish prompt from the title and the first few ingredients."""
    parts = [recipe.title]
    names = [i.ingredient_name for i in flatten(recipe.ingredients)[:5]]
    if names:
        parts.append(f"with {', '.join(names)}")
    parts.extend([
        "professional food photography",
        "delicious plated dish",
        "beautifully presented on a white plate",
        "garnished",
    ])
    course = recipe.course.lower()
    if "dessert" in course or "nachspeise" in course:
        parts.append("appetizing dessert presentation")
    elif "vorspeise" in course or "starter" in course or "appetizer" in course:
        parts.append("elegant appetizer presentation")
    parts.append("top-down view")
    return ", ".join(parts)
