"""
Text Normalizer
===============

Cleans raw text from a source adapter (OCR output, flattened web page,
pasted text) into the canonical form sent to the structuring prompt.

Rules, in order:
    1. Markup is stripped (HTML fragments from web pages and rich paste)
    2. Bullet and layout symbols at the start of a line are removed
    3. Runs of spaces/tabs collapse to one space, lines are trimmed
    4. A line ending in a lowercase letter or digit that is followed by a
       line starting with an uppercase letter gets a closing period
    5. Three or more line breaks collapse to one blank line

Text shorter than the per-source minimum is rejected with
InsufficientContent.
"""

import re
from dataclasses import asdict, dataclass
from typing import Dict, Optional

from bs4 import BeautifulSoup

from config import MIN_TEXT_LENGTH
from errors import InsufficientContent
from tools.logging_utils import get_logger

logger = get_logger(__name__)

_TAG_PATTERN = re.compile(r"<\s*/?\s*[a-zA-Z][^>]*>")
_BULLET_PATTERN = re.compile(r"^[ \t]*(?:[•●○▪▫■□◆◇\-–—\*][ \t]*)+", re.MULTILINE)
_HSPACE_PATTERN = re.compile(r"[ \t\u00a0\f\v]+")
_MISSING_PERIOD_PATTERN = re.compile(r"([a-zäöüß0-9])[ \t]*\n[ \t]*([A-ZÄÖÜ])")
_BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


def strip_markup(text: str) -> str:
    """Flatten HTML to text. Plain text passes through untouched."""
    if not _TAG_PATTERN.search(text):
        return text
    soup = BeautifulSoup(text, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    return soup.get_text("\n")


def clean_raw_text(raw: Optional[str]) -> str:
    """Apply the cleanup rules. Idempotent."""
    if not raw:
        return ""
    text = strip_markup(raw)
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _BULLET_PATTERN.sub("", text)
    text = _HSPACE_PATTERN.sub(" ", text)
    text = "\n".join(line.strip() for line in text.split("\n"))
    text = _MISSING_PERIOD_PATTERN.sub(r"\1.\n\2", text)
    text = _BLANK_LINES_PATTERN.sub("\n\n", text)
    return text.strip()


def minimum_length_for(source_kind: str) -> int:
    return MIN_TEXT_LENGTH.get(source_kind, MIN_TEXT_LENGTH.get("text", 30))


def normalize_text(raw: Optional[str], source_kind: str = "text",
                   min_length: Optional[int] = None) -> str:
    """
    Clean raw text and enforce the minimum viable length.

    Args:
        raw: Text as produced by the source adapter
        source_kind: "text", "file" or "url"; selects the minimum length
        min_length: Explicit override of the per-source minimum

    Returns:
        Normalized, non-empty text

    Raises:
        InsufficientContent: Cleaned text is shorter than the minimum
    """
    minimum = min_length if min_length is not None else minimum_length_for(source_kind)
    text = clean_raw_text(raw)
    if len(text) < minimum:
        logger.warning(
            f"⚠️ Rejected {source_kind} input: {len(text)} characters (minimum {minimum})"
        )
        raise InsufficientContent(len(text), minimum, source_kind)
    return text


# =============================================================================
# OCR METADATA
# =============================================================================

_PORTION_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"portion", r"ergibt", r"für\s+\d+\s+person", r"servings", r"serves\s+\d+",
        r"\d+\s+personen", r"\d+\s+pers\.", r"\d+\s+port\.", r"anzahl.*personen",
        r"reicht\s+für", r"ausreichend\s+für",
    )
]

_TIME_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"\d+\s*min", r"\d+\s*stunde", r"\d+\s*std", r"\d+\s*h\b", r"minuten",
        r"stunden", r"backzeit", r"kochzeit", r"zubereitungszeit", r"garzeit",
        r"\d+\s*hours?\b",
    )
]

_INGREDIENT_PATTERNS = [
    re.compile(p, re.IGNORECASE | re.MULTILINE) for p in (
        r"^zutaten", r"^ingredients", r"ingredien", r"zutatenliste",
        r"\d+\s*g\s+\w+", r"[\d/]+\s+(el|tl|ml|l|kg|cups?|tbsp|tsp)\s+\w+",
    )
]

_INSTRUCTION_PATTERNS = [
    re.compile(p, re.IGNORECASE | re.MULTILINE) for p in (
        r"^zubereitung", r"^anleitung", r"schritt\s+\d+", r"vorbereitung:",
        r"instructions", r"^method", r"^\d+[.)]\s+\w+",
    )
]


@dataclass
class OCRMetadata:
    """Structural markers found in extracted text. ``confidence`` is 0-100."""
    has_portions: bool = False
    has_time: bool = False
    has_ingredients: bool = False
    has_instructions: bool = False
    confidence: int = 0

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


def extract_ocr_metadata(text: str) -> OCRMetadata:
    """Score how recipe-like a text looks (portions 20, time 20, ingredients 30, steps 30)."""
    metadata = OCRMetadata()
    if not text:
        return metadata

    if any(p.search(text) for p in _PORTION_PATTERNS):
        metadata.has_portions = True
        metadata.confidence += 20
    if any(p.search(text) for p in _TIME_PATTERNS):
        metadata.has_time = True
        metadata.confidence += 20
    if any(p.search(text) for p in _INGREDIENT_PATTERNS):
        metadata.has_ingredients = True
        metadata.confidence += 30
    if any(p.search(text) for p in _INSTRUCTION_PATTERNS):
        metadata.has_instructions = True
        metadata.confidence += 30

    return metadata
