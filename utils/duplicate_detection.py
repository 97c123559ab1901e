"""
Duplicate recipe detection.

Scores an import candidate against the existing recipe corpus and offers
the three save resolutions (new, merge, replace).

Score (0-100):
    t = title similarity rescaled so that unrelated titles (< 0.5 raw
        Levenshtein similarity) contribute nothing
    o = common ingredient names / max(len(a), len(b)) on normalized names
    score = round(100 * max(0.8 * t + 0.2 * o, 0.3 * t + 0.7 * o))

The first term catches "same title, reworded ingredient list"; the second
catches "renamed recipe, same ingredients". Identical titles with >= 50%
overlap score >= 90, unrelated titles with disjoint ingredients score 0.

Detection is best-effort: two concurrent imports of the same recipe can
both pass. The entity store offers no isolation to close that race.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Sequence, Tuple, Union

from config import DUPLICATE_MIN_SCORE
from recipe_models import DuplicateMatch, Recipe, record_ingredient_names
from tools.logging_utils import get_logger
from utils.ingredient_matcher import (
    MIN_SUBSTRING_LENGTH,
    TOKEN_SIMILARITY_THRESHOLD,
    normalize_ingredient_name,
    similarity,
)

logger = get_logger(__name__)

TITLE_FLOOR = 0.5

# (title weight, ingredient weight) pairs; the better-scoring pair wins
SCORE_PROFILES = ((0.8, 0.2), (0.3, 0.7))


class Resolution(str, Enum):
    NEW = "new"
    MERGE = "merge"
    REPLACE = "replace"


def normalize_title(title: str) -> str:
    return " ".join((title or "").lower().split())


def title_similarity(a: str, b: str) -> float:
    """Raw similarity rescaled from [TITLE_FLOOR, 1] onto [0, 1]."""
    a, b = normalize_title(a), normalize_title(b)
    if not a or not b:
        return 0.0
    raw = similarity(a, b)
    return max(0.0, (raw - TITLE_FLOOR) / (1 - TITLE_FLOOR))


def _names_match(a: str, b: str) -> bool:
    if a == b:
        return True
    if min(len(a), len(b)) >= MIN_SUBSTRING_LENGTH and (a in b or b in a):
        return True
    return similarity(a, b) >= TOKEN_SIMILARITY_THRESHOLD


def _distinct_normalized(names: Iterable[str]) -> List[str]:
    seen: List[str] = []
    for name in names:
        normalized = normalize_ingredient_name(name)
        if normalized and normalized not in seen:
            seen.append(normalized)
    return seen


def ingredient_overlap(names_a: Sequence[str], names_b: Sequence[str]) -> Tuple[int, int]:
    """
    Count one-to-one matched ingredient names.

    "Tomaten" and "Tomate" match (substring), as do near spellings.

    Returns:
        (common_ingredient_count, total_ingredient_count)
    """
    a = _distinct_normalized(names_a)
    b = _distinct_normalized(names_b)
    total = max(len(a), len(b))
    unused = list(b)
    common = 0
    for name in a:
        for candidate in unused:
            if _names_match(name, candidate):
                unused.remove(candidate)
                common += 1
                break
    return common, total


def score_pair(title_a: str, names_a: Sequence[str],
               title_b: str, names_b: Sequence[str]) -> Tuple[int, int, int]:
    """Returns (score, common_ingredient_count, total_ingredient_count)."""
    t = title_similarity(title_a, title_b)
    common, total = ingredient_overlap(names_a, names_b)
    o = common / total if total else 0.0
    score = max(tw * t + iw * o for tw, iw in SCORE_PROFILES)
    return int(round(100 * score)), common, total


def _title_and_names(recipe: Union[Recipe, Dict[str, Any]]) -> Tuple[str, List[str]]:
    if isinstance(recipe, Recipe):
        return recipe.title, recipe.ingredient_names()
    return recipe.get("title", ""), record_ingredient_names(recipe)


def find_duplicates(candidate: Union[Recipe, Dict[str, Any]],
                    corpus: Iterable[Dict[str, Any]],
                    min_score: int = DUPLICATE_MIN_SCORE) -> List[DuplicateMatch]:
    """
    Existing recipes that look like ``candidate``.

    Args:
        candidate: Validated recipe (or raw record) being imported
        corpus: Existing recipe records from the entity store
        min_score: Matches below this score are dropped

    Returns:
        DuplicateMatch list sorted by score descending; ties keep corpus order
    """
    title, names = _title_and_names(candidate)
    candidate_id = candidate.get("id") if isinstance(candidate, dict) else None

    matches: List[DuplicateMatch] = []
    for record in corpus:
        if candidate_id and record.get("id") == candidate_id:
            continue
        score, common, total = score_pair(
            title, names, record.get("title", ""), record_ingredient_names(record)
        )
        if score >= min_score:
            matches.append(DuplicateMatch(
                recipe_ref={"id": record.get("id"), "title": record.get("title", "")},
                score=score,
                common_ingredient_count=common,
                total_ingredient_count=total,
            ))

    matches.sort(key=lambda m: m.score, reverse=True)
    if matches:
        logger.info(
            f"🔍 {len(matches)} possible duplicate(s) for '{title}' "
            f"(top: '{matches[0].recipe_ref['title']}' {matches[0].score}/100)"
        )
    return matches


# Flat and grouped shapes are written as a pair; groups win on read
_SECTION_PAIRS = (
    ("ingredients", "ingredient_groups"),
    ("instructions", "instruction_groups"),
)


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def merge_fields(candidate: Dict[str, Any]) -> Dict[str, Any]:
    """
    Candidate fields that carry data.

    Empty strings, lists and dicts are dropped so they cannot blank out the
    existing record. A flat/grouped section pair is kept together when
    either side has items, so a flat list can still replace stored groups.
    """
    paired = {key for pair in _SECTION_PAIRS for key in pair}
    fields = {k: v for k, v in candidate.items() if k not in paired and not _is_empty(v)}
    for pair in _SECTION_PAIRS:
        if any(not _is_empty(candidate.get(key)) for key in pair):
            fields.update({key: candidate.get(key) or [] for key in pair})
    return fields


def resolve_payload(resolution: Resolution, candidate: Dict[str, Any],
                    existing: Dict[str, Any] = None) -> Dict[str, Any]:
    """
    Record to write for a save resolution.

    merge: non-empty candidate fields (see merge_fields) shallow-merged over
    the existing record.
    replace: the candidate alone. Both keep the existing id.
    """
    resolution = Resolution(resolution)
    if resolution == Resolution.NEW:
        return dict(candidate)
    if existing is None or not existing.get("id"):
        raise ValueError(f"Resolution '{resolution.value}' requires an existing record with an id")
    if resolution == Resolution.MERGE:
        return {**existing, **merge_fields(candidate), "id": existing["id"]}
    return {**candidate, "id": existing["id"]}
