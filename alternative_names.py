"""
Alternative-Name Generator
==========================

Produces spelling variants and synonyms for an ingredient so photos match
recipes that write the name differently ("Tomate" / "Tomaten",
"Frühlings-Zwiebel" / "Frühlingszwiebel").

Two sources behind one call site:
    LLMAlternativeNames        text generation with a constrained schema
    RuleBasedAlternativeNames  deterministic singular/plural toggling and
                               space/hyphen/joined variants of the
                               normalized name

AlternativeNameGenerator uses the LLM source when one is configured and
falls back to the rules when it fails or returns nothing usable. The
enrichment is a convenience, so a degraded result beats an error.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from config import MAX_ALTERNATIVE_NAMES, get_config_value
from prompts import alternative_names_schema, build_alternative_names_prompt
from resilient_executor import ResilientExecutor
from tools.logging_utils import get_logger
from utils.ingredient_matcher import PREPARATION_STOPWORDS, normalize_ingredient_name

logger = get_logger(__name__)


class AlternativeNameSource(ABC):

    @abstractmethod
    async def generate(self, name: str) -> List[str]:
        """Raw candidate names for ``name`` (may contain duplicates)."""


class LLMAlternativeNames(AlternativeNameSource):
    """Asks the text-generation capability for up to ``max_names`` variants."""

    def __init__(self, text_client, executor: ResilientExecutor,
                 max_names: int = MAX_ALTERNATIVE_NAMES, max_retries: int = None):
        self.text_client = text_client
        self.executor = executor
        self.max_names = max_names
        self.max_retries = max_retries or get_config_value('retry', 'default_attempts', 3)

    async def generate(self, name: str) -> List[str]:
        prompt = build_alternative_names_prompt(name, self.max_names)
        schema = alternative_names_schema(self.max_names)
        result = await self.executor.execute(
            lambda: self.text_client.generate(prompt, json_schema=schema),
            max_retries=self.max_retries,
            operation_name="alternative_names",
        )
        alternatives = result.get("alternatives") if isinstance(result, dict) else None
        if not isinstance(alternatives, list):
            raise ValueError(f"Unexpected alternative-names response: {result!r}")
        return [a for a in alternatives if isinstance(a, str)]


class RuleBasedAlternativeNames(AlternativeNameSource):
    """German-style plural toggling plus hyphen and spacing variants."""

    async def generate(self, name: str) -> List[str]:
        return rule_variants(name)


# Letters before a plural "n": Zwiebel-n, Kartoffel-n, Möhre-n, Birne-n
_PLURAL_N_STEMS = "elr"


def _plural_toggle(word: str) -> Optional[str]:
    if word.endswith("e") and len(word) > 2:
        return word + "n"
    if word.endswith("el") and len(word) > 3:
        return word + "n"
    if word.endswith("n") and len(word) > 3 and word[-2] in _PLURAL_N_STEMS:
        return word[:-1]
    return None


def rule_variants(name: str) -> List[str]:
    base = normalize_ingredient_name(name)
    if not base:
        return []

    forms = [base]
    toggled = _plural_toggle(base)
    if toggled:
        forms.append(toggled)

    variants = []
    for form in forms:
        variants.append(form)
        if " " in form:
            variants.append(form.replace(" ", "-"))
            variants.append(form.replace(" ", ""))
    return variants


class AlternativeNameGenerator:
    """
    Single call site for alternative names.

    Output: at most ``max_names`` names, de-duplicated case-insensitively,
    never containing the input name or preparation/colour words.
    """

    def __init__(self, primary: Optional[AlternativeNameSource] = None,
                 fallback: Optional[AlternativeNameSource] = None,
                 max_names: int = MAX_ALTERNATIVE_NAMES):
        self.primary = primary
        self.fallback = fallback or RuleBasedAlternativeNames()
        self.max_names = max_names

    async def generate(self, name: str) -> List[str]:
        if not name or not name.strip():
            return []

        if self.primary is not None:
            try:
                names = self.clean(name, await self.primary.generate(name))
                if names:
                    return names
                logger.info(f"ℹ️ No usable alternative names for '{name}', using rules")
            except Exception as e:
                logger.warning(f"⚠️ Alternative-name generation failed for '{name}', using rules: {e}")

        return self.clean(name, await self.fallback.generate(name))

    def clean(self, name: str, candidates: Iterable[str]) -> List[str]:
        seen = {name.strip().lower()}
        cleaned: List[str] = []
        for candidate in candidates:
            text = " ".join(str(candidate).split())
            key = text.lower()
            if not text or key in seen:
                continue
            if any(token in PREPARATION_STOPWORDS for token in key.replace("-", " ").split()):
                continue
            seen.add(key)
            cleaned.append(text)
            if len(cleaned) >= self.max_names:
                break
        return cleaned
