"""Tests for the import_recipe CLI helpers and the non-interactive import flow."""

import asyncio
import io
import logging

import pytest
from rich.console import Console


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


SOUP_TEXT = """Tomatensuppe

Zutaten:
* 800 g Tomaten
* 1 Zwiebel

Zubereitung:
1. Zwiebel würfeln, Tomaten zugeben und 20 Minuten köcheln lassen.
"""

EXTRACTED_SOUP = {
    "title": "Tomatensuppe",
    "ingredients": [{"ingredient_name": "Tomaten"}, {"ingredient_name": "Zwiebel"}],
}


@pytest.fixture
def ui():
    from tools.progress_ui import IngestProgressUI
    return IngestProgressUI(console=Console(file=io.StringIO(), width=120))


def parse(*argv):
    from import_recipe import create_argument_parser
    return create_argument_parser().parse_args(list(argv))


class TestArguments:

    @pytest.mark.readonly
    def test_repeated_sources(self):
        args = parse("--url", "https://a.test/1", "--url", "https://a.test/2", "--file", "scan.jpg", "-y")
        assert args.url == ["https://a.test/1", "https://a.test/2"]
        assert args.file == ["scan.jpg"]
        assert args.yes is True

    @pytest.mark.readonly
    def test_invalid_resolution_rejected(self):
        with pytest.raises(SystemExit):
            parse("--text", "r.txt", "--resolution", "upsert")

    @pytest.mark.creates_data
    def test_build_sources(self, tmp_path):
        from import_recipe import build_sources
        path = tmp_path / "rezept.txt"
        path.write_text(SOUP_TEXT, encoding="utf-8")
        sources = build_sources(parse("--text", str(path), "--url", "https://a.test/1"))
        assert [s.kind for s in sources] == ["text", "url"]
        assert sources[0].payload == SOUP_TEXT


class TestDescribeError:

    @pytest.mark.readonly
    def test_insufficient_content(self):
        from errors import InsufficientContent
        from import_recipe import describe_error
        message = describe_error(InsufficientContent(12, 30))
        assert "12 characters" in message
        assert "30" in message

    @pytest.mark.readonly
    def test_rate_limited_before_retry_exhausted(self):
        from errors import RateLimited
        from import_recipe import describe_error
        assert "rate limiting" in describe_error(RateLimited("extract_recipe", 4))

    @pytest.mark.readonly
    def test_fallback_is_message(self):
        from import_recipe import describe_error
        assert describe_error(ValueError("Recipe r9 not found")) == "Recipe r9 not found"


class TestImportOne:

    def test_non_interactive_save(self, runtime, text_client, store, ui):
        from import_recipe import import_one
        from recipe_models import RawSource
        text_client.add("TITEL: Tomatensuppe", EXTRACTED_SOUP)
        outcome = run_async(import_one(
            runtime, "cli-1", RawSource(kind="text", payload=SOUP_TEXT),
            parse("--text", "-", "--yes"), ui, interactive=False,
        ))
        assert outcome == "saved"
        assert store.records["Recipe"][0]["title"] == "Tomatensuppe"

    def test_failure_keeps_checkpoint_for_resume(self, runtime, text_client, ui):
        from import_recipe import import_one
        from recipe_models import RawSource
        text_client.add("TITEL: ?", {"title": ""})
        outcome = run_async(import_one(
            runtime, "cli-2", RawSource(kind="text", payload=SOUP_TEXT),
            parse("--text", "-", "--yes"), ui, interactive=False,
        ))
        assert outcome == "failed"
        assert runtime.checkpoints.load("cli-2")["stage"] == "ocr_review"
        assert "--resume cli-2" in ui.console.file.getvalue()

    def test_resume_without_checkpoint_fails(self, runtime, ui):
        from import_recipe import import_one
        outcome = run_async(import_one(
            runtime, "cli-missing", None, parse("--resume", "cli-missing", "--yes"), ui,
            interactive=False, resume=True,
        ))
        assert outcome == "failed"

    def test_resume_finishes_import(self, runtime, text_client, store, ui):
        from import_recipe import import_one
        from recipe_models import RawSource
        text_client.add("TITEL: ?", {"title": ""})
        run_async(import_one(
            runtime, "cli-3", RawSource(kind="text", payload=SOUP_TEXT),
            parse("--text", "-", "--yes"), ui, interactive=False,
        ))
        text_client.add("TITEL: Tomatensuppe", EXTRACTED_SOUP)
        outcome = run_async(import_one(
            runtime, "cli-3", None, parse("--resume", "cli-3", "--yes"), ui,
            interactive=False, resume=True,
        ))
        assert outcome == "saved"
        assert len(store.records["Recipe"]) == 1


class CollectingHandler(logging.Handler):

    def __init__(self):
        super().__init__(logging.INFO)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def make_record(message="message"):
    return logging.LogRecord("test", logging.INFO, __file__, 1, message, None, None)


class TestLogFloodGuard:

    @pytest.mark.readonly
    def test_suppresses_after_budget_until_reset(self):
        from tools.logging_utils import LogFloodGuard
        guard = LogFloodGuard(max_entries=2)
        assert [guard.filter(make_record()) for _ in range(4)] == [True, True, False, False]
        assert guard.suppressed == 2
        guard.reset()
        assert guard.filter(make_record()) is True

    @pytest.mark.readonly
    def test_record_counted_once_across_handlers(self):
        from tools.logging_utils import LogFloodGuard
        logger = logging.getLogger("recipe_ingest.flood_guard_test")
        logger.propagate = False
        logger.setLevel(logging.INFO)
        console, logfile = CollectingHandler(), CollectingHandler()
        logger.addHandler(console)
        logger.addHandler(logfile)
        guard = LogFloodGuard(max_entries=10)
        guard.install(logger)
        try:
            for i in range(12):
                logger.info(f"line {i}")
        finally:
            logger.removeHandler(console)
            logger.removeHandler(logfile)

        assert len(console.messages) == 10
        assert logfile.messages == console.messages
        assert (guard.emitted, guard.suppressed) == (10, 2)
