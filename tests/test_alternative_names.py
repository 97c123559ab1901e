"""Tests for alternative-name generation with rule-based fallback."""

import asyncio

import pytest


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


class StaticSource:
    """Alternative-name source returning a fixed list (or raising)."""

    def __init__(self, names=None, error=None):
        self.names = names or []
        self.error = error
        self.calls = 0

    async def generate(self, name):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.names)


class TestRuleVariants:

    @pytest.mark.readonly
    def test_plural_toggle(self):
        from alternative_names import rule_variants
        assert "tomaten" in rule_variants("Tomate")
        assert "tomate" in rule_variants("Tomaten")

    @pytest.mark.readonly
    def test_plural_n_after_l_and_e(self):
        from alternative_names import rule_variants
        assert "zwiebel" in rule_variants("Zwiebeln")
        assert "zwiebeln" in rule_variants("Zwiebel")
        assert "kartoffel" in rule_variants("Kartoffeln")

    @pytest.mark.readonly
    def test_stem_ending_in_n_is_kept(self):
        from alternative_names import rule_variants
        assert rule_variants("Safran") == ["safran"]

    @pytest.mark.readonly
    def test_preparation_words_are_dropped(self):
        from alternative_names import rule_variants
        variants = rule_variants("Frische Tomaten (gewürfelt)")
        assert variants == ["tomaten", "tomate"]

    @pytest.mark.readonly
    def test_hyphen_variants(self):
        from alternative_names import rule_variants
        variants = rule_variants("Frühlings-Zwiebel")
        assert "frühlings zwiebel" in variants
        assert "frühlingszwiebel" in variants

    @pytest.mark.readonly
    def test_space_variants(self):
        from alternative_names import rule_variants
        variants = rule_variants("Crème fraîche")
        assert "crème-fraîche" in variants
        assert "crèmefraîche" in variants

    @pytest.mark.readonly
    def test_blank_name(self):
        from alternative_names import rule_variants
        assert rule_variants("  ") == []


class TestAlternativeNameGenerator:

    def test_uses_primary_source(self):
        from alternative_names import AlternativeNameGenerator
        primary = StaticSource(["Paradeiser", "Tomaten"])
        generator = AlternativeNameGenerator(primary)
        assert run_async(generator.generate("Tomate")) == ["Paradeiser", "Tomaten"]

    def test_falls_back_to_rules_on_error(self):
        from alternative_names import AlternativeNameGenerator
        generator = AlternativeNameGenerator(StaticSource(error=RuntimeError("quota")))
        assert run_async(generator.generate("Tomate")) == ["tomaten"]

    def test_falls_back_to_rules_on_empty_result(self):
        from alternative_names import AlternativeNameGenerator
        generator = AlternativeNameGenerator(StaticSource(["tomate", "  "]))
        assert run_async(generator.generate("Tomate")) == ["tomaten"]

    def test_rules_only_without_primary(self):
        from alternative_names import AlternativeNameGenerator
        assert run_async(AlternativeNameGenerator().generate("Gurke")) == ["gurken"]

    def test_cleaning_rules(self):
        from alternative_names import AlternativeNameGenerator
        generator = AlternativeNameGenerator(max_names=3)
        cleaned = generator.clean("Zwiebel", [
            "zwiebel",
            "Zwiebeln",
            "ZWIEBELN",
            "rote Zwiebel",
            "Gemüse-  zwiebel",
            "Speisezwiebel",
            "Küchenzwiebel",
        ])
        assert cleaned == ["Zwiebeln", "Gemüse- zwiebel", "Speisezwiebel"]

    def test_blank_input(self):
        from alternative_names import AlternativeNameGenerator
        primary = StaticSource(["x"])
        assert run_async(AlternativeNameGenerator(primary).generate("")) == []
        assert primary.calls == 0


class TestLLMAlternativeNames:

    def test_reads_alternatives_from_schema_response(self, text_client, executor):
        from alternative_names import LLMAlternativeNames
        text_client.add({"alternatives": ["Paradeiser", "Tomaten", 3]})
        source = LLMAlternativeNames(text_client, executor, max_names=5)
        assert run_async(source.generate("Tomate")) == ["Paradeiser", "Tomaten"]
        schema = text_client.calls[0]["json_schema"]
        assert schema["schema"]["properties"]["alternatives"]["maxItems"] == 5

    def test_unexpected_shape_raises(self, text_client, executor):
        from alternative_names import LLMAlternativeNames
        text_client.add({"names": []})
        with pytest.raises(ValueError):
            run_async(LLMAlternativeNames(text_client, executor).generate("Tomate"))

    def test_generator_survives_llm_failure(self, text_client, executor):
        from alternative_names import AlternativeNameGenerator, LLMAlternativeNames
        text_client.add("not json at all")
        generator = AlternativeNameGenerator(LLMAlternativeNames(text_client, executor))
        assert run_async(generator.generate("Tomate")) == ["tomaten"]
