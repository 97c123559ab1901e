"""
Ingredient fuzzy matcher.

Resolves a free-text ingredient name ("2 rote Zwiebeln (gehackt)" style
names, already stripped of amounts) to the best photo in the ingredient
photo library.

Strategy, per photo name (canonical first, then alternatives):
    exact canonical          1.00  short-circuits
    exact alternative        1.00  short-circuits
    substring either way     0.95  (shorter side >= 4 chars)
    token containment        0.90
    token edit similarity    0.85  (per-token similarity >= 0.85)
    whole-string similarity  1 - distance / max_len

Exact tiers win in priority order. For the remaining tiers every photo is
scored and the global maximum among scores >= min_similarity is returned.
Ties keep the first photo in corpus order, canonical before alternatives.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from rapidfuzz.distance import Levenshtein

from config import MATCH_MIN_SIMILARITY
from recipe_models import IngredientPhoto

MIN_SUBSTRING_LENGTH = 4
TOKEN_SIMILARITY_THRESHOLD = 0.85

SUBSTRING_SCORE = 0.95
TOKEN_CONTAINMENT_SCORE = 0.90
TOKEN_SIMILARITY_SCORE = 0.85

# Preparation states and colour words that don't change which photo fits
PREPARATION_STOPWORDS = frozenset({
    # German
    "gehackt", "gehackte", "gewürfelt", "gewürfelte", "geschnitten", "geschnittene",
    "gerieben", "geriebene", "geriebener", "frisch", "frische", "frischer", "frisches",
    "getrocknet", "getrocknete", "tiefgekühlt", "tiefgekühlte", "roh", "rohe",
    "gekocht", "gekochte", "rot", "rote", "roter", "rotes", "gelb", "gelbe",
    "grün", "grüne", "weiß", "weiße",
    # English
    "chopped", "diced", "sliced", "grated", "minced", "fresh", "dried", "frozen",
    "raw", "cooked", "red", "yellow", "green", "white",
})

_PARENTHETICAL = re.compile(r"\([^)]*\)")
_PUNCTUATION = re.compile(r"[()\[\],;:!?.]")
_HYPHENS = re.compile(r"[-–—_]")


def normalize_ingredient_name(name: Optional[str]) -> str:
    """
    Canonical comparison form of an ingredient name.

    Lowercase, parenthetical notes removed, hyphens as spaces, preparation
    and colour words removed, whitespace collapsed. A name made only of
    stopwords keeps its words. Idempotent.
    """
    if not name:
        return ""
    text = name.lower().strip()
    text = _PARENTHETICAL.sub(" ", text)
    text = _PUNCTUATION.sub(" ", text)
    text = _HYPHENS.sub(" ", text)
    tokens = text.split()
    kept = [t for t in tokens if t not in PREPARATION_STOPWORDS]
    return " ".join(kept or tokens)


def similarity(a: str, b: str) -> float:
    """Levenshtein similarity ``1 - distance / max_len`` in [0, 1]."""
    if not a and not b:
        return 1.0
    return Levenshtein.normalized_similarity(a, b)


def _partial_score(query: str, candidate: str) -> float:
    """Best of the substring and token tiers, 0.0 when none applies."""
    if min(len(query), len(candidate)) >= MIN_SUBSTRING_LENGTH:
        if query in candidate or candidate in query:
            return SUBSTRING_SCORE

    best = 0.0
    for q_token in query.split():
        if len(q_token) < MIN_SUBSTRING_LENGTH:
            continue
        for c_token in candidate.split():
            if len(c_token) < MIN_SUBSTRING_LENGTH:
                continue
            if q_token == c_token or q_token in c_token or c_token in q_token:
                return TOKEN_CONTAINMENT_SCORE
            if similarity(q_token, c_token) >= TOKEN_SIMILARITY_THRESHOLD:
                best = TOKEN_SIMILARITY_SCORE
    return best


def _fuzzy_score(query: str, candidate: str) -> Tuple[float, str]:
    partial = _partial_score(query, candidate)
    whole = similarity(query, candidate)
    if partial >= whole and partial > 0:
        if partial == SUBSTRING_SCORE:
            return partial, "substring"
        return partial, "token"
    return whole, "fuzzy"


@dataclass
class PhotoMatch:
    photo: IngredientPhoto
    score: float
    match_type: str


@dataclass
class BatchMatchResult:
    matches: Dict[str, PhotoMatch] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)


@dataclass
class _PreparedPhoto:
    photo: IngredientPhoto
    canonical: str
    alternatives: List[str]


def _prepare(photos: Iterable[IngredientPhoto]) -> List[_PreparedPhoto]:
    return [
        _PreparedPhoto(
            photo=photo,
            canonical=normalize_ingredient_name(photo.canonical_name),
            alternatives=[normalize_ingredient_name(a) for a in photo.alternative_names],
        )
        for photo in photos
    ]


def _match_prepared(query: str, corpus: List[_PreparedPhoto],
                    min_similarity: float) -> Optional[PhotoMatch]:
    for entry in corpus:
        if entry.canonical == query:
            return PhotoMatch(entry.photo, 1.0, "exact")
    for entry in corpus:
        if query in entry.alternatives:
            return PhotoMatch(entry.photo, 1.0, "alternative_exact")

    best: Optional[PhotoMatch] = None
    for entry in corpus:
        candidates = [(entry.canonical, "")] + [(alt, "alternative_") for alt in entry.alternatives]
        for name, prefix in candidates:
            if not name:
                continue
            score, kind = _fuzzy_score(query, name)
            if score < min_similarity:
                continue
            if best is None or score > best.score:
                best = PhotoMatch(entry.photo, round(score, 4), prefix + kind)
    return best


def find_best_match(name: str, photos: Iterable[IngredientPhoto],
                    min_similarity: float = MATCH_MIN_SIMILARITY) -> Optional[PhotoMatch]:
    """
    Best photo for ``name``, or None when nothing scores >= min_similarity.

    Args:
        name: Ingredient name as written in the recipe
        photos: Photo corpus
        min_similarity: Lower bound for fuzzy tiers (exact tiers always pass)
    """
    query = normalize_ingredient_name(name)
    if not query:
        return None
    return _match_prepared(query, _prepare(photos), min_similarity)


def batch_match(names: Iterable[str], photos: Iterable[IngredientPhoto],
                min_similarity: float = MATCH_MIN_SIMILARITY) -> BatchMatchResult:
    """Resolve a whole ingredient list in one pass over a prepared corpus."""
    corpus = _prepare(photos)
    result = BatchMatchResult()
    for name in names:
        if name in result.matches or name in result.missing:
            continue
        query = normalize_ingredient_name(name)
        match = _match_prepared(query, corpus, min_similarity) if query else None
        if match is None:
            result.missing.append(name)
        else:
            result.matches[name] = match
    return result
