#!/usr/bin/env python3
"""
Import Recipes from Text, Web Pages or Documents
================================================

Runs each source through the staged pipeline:
1. Extract and normalize the text (review it, or pass --yes)
2. Structure and extract the recipe
3. Review quality, warnings and possible duplicates
4. Save as new, or merge into / replace an existing recipe

Writes that cannot reach the entity store are queued and synced on the next
run (or with --flush-queue).

Usage:
    python import_recipe.py --text recipe.txt
    python import_recipe.py --url https://example.com/tomatensuppe
    python import_recipe.py --file scan1.jpg --file scan2.pdf --yes
    python import_recipe.py --resume session-1
    python import_recipe.py --flush-queue
"""

import argparse
import asyncio
import sys
import time
import uuid
from pathlib import Path
from typing import List, Optional

from rich.prompt import Confirm, Prompt

from errors import (
    AccessDenied,
    IngestError,
    InsufficientContent,
    InvalidSource,
    MissingTitle,
    PipelineCancelled,
    RateLimited,
    RetryExhausted,
    SessionExpired,
)
from import_pipeline import ImportPipeline
from recipe_models import RawSource, Stage
from runtime import Runtime, create_runtime
from tools.logging_utils import get_logger
from tools.progress_ui import BatchStats, IngestProgressUI
from utils.duplicate_detection import Resolution

logger = get_logger(__name__)


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Import recipes from pasted text, web pages or scanned documents',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python import_recipe.py --text recipe.txt
  python import_recipe.py --url https://example.com/tomatensuppe
  python import_recipe.py --file scan1.jpg --file scan2.pdf --yes
  python import_recipe.py --resume session-1
        """
    )
    parser.add_argument('--text', type=str, metavar='FILE',
                        help='Read recipe text from FILE ("-" for stdin)')
    parser.add_argument('--url', type=str, action='append', default=[],
                        help='Recipe web page (repeatable)')
    parser.add_argument('--file', type=str, action='append', default=[], metavar='PATH',
                        help='PDF or photo of a recipe (repeatable)')
    parser.add_argument('--session', type=str,
                        help='Session key for checkpointing (auto-generated if not provided)')
    parser.add_argument('--resume', type=str, metavar='SESSION',
                        help='Resume an interrupted import by its session key')
    parser.add_argument('--yes', '-y', action='store_true',
                        help='Skip review prompts and accept the extracted text and recipe')
    parser.add_argument('--resolution', choices=[r.value for r in Resolution], default=None,
                        help='How to save when duplicates exist (default: ask, or "new" with --yes)')
    parser.add_argument('--target-id', type=str,
                        help='Existing recipe for merge/replace (default: best duplicate)')
    parser.add_argument('--flush-queue', action='store_true',
                        help='Only sync writes queued while offline')
    return parser


def build_sources(args) -> List[RawSource]:
    sources = []
    if args.text:
        text = sys.stdin.read() if args.text == "-" else Path(args.text).read_text(encoding="utf-8")
        sources.append(RawSource(kind="text", payload=text))
    sources.extend(RawSource(kind="url", payload=url) for url in args.url)
    sources.extend(RawSource(kind="file", payload=path) for path in args.file)
    return sources


def describe_error(error: Exception) -> str:
    """One-line explanation of a pipeline failure for the terminal."""
    if isinstance(error, InsufficientContent):
        return (f"Not enough text to extract a recipe ({error.length} characters, "
                f"at least {error.minimum} needed)")
    if isinstance(error, MissingTitle):
        return "No recipe title could be found - check the text and try again"
    if isinstance(error, InvalidSource):
        return f"Source rejected: {error.message}"
    if isinstance(error, RateLimited):
        return "The generation service is rate limiting requests - try again in a few minutes"
    if isinstance(error, RetryExhausted):
        return f"Gave up after {error.attempts} attempts: {error.last_error}"
    if isinstance(error, SessionExpired):
        return "Session expired - log in again"
    if isinstance(error, AccessDenied):
        return "Access denied by the entity store"
    if isinstance(error, PipelineCancelled):
        return "Import cancelled"
    return str(error)


def choose_resolution(pipeline: ImportPipeline, args, interactive: bool) -> Optional[Resolution]:
    """Resolution for the save; None when the user declines to save."""
    if args.resolution:
        return Resolution(args.resolution)
    if not interactive:
        return Resolution.NEW
    if not pipeline.state.duplicates:
        return Resolution.NEW if Confirm.ask("Save this recipe?", default=True) else None
    answer = Prompt.ask(
        "Possible duplicate found. Save as",
        choices=[r.value for r in Resolution] + ["cancel"],
        default=Resolution.NEW.value,
    )
    return None if answer == "cancel" else Resolution(answer)


async def run_pipeline(pipeline: ImportPipeline, source: Optional[RawSource], args,
                       ui: IngestProgressUI, interactive: bool) -> str:
    """
    Drive one pipeline from its current stage to a terminal stage.

    Returns "saved", "queued" or "declined".
    """
    if pipeline.stage == Stage.INPUT:
        if source is None:
            raise InvalidSource("No source to start from", operation="resume")
        await pipeline.start(source)

    if pipeline.stage == Stage.OCR_REVIEW:
        if interactive:
            ui.show_text_review(pipeline.state)
            if not Confirm.ask("Extract a recipe from this text?", default=True):
                pipeline.cancel()
                return "declined"
        await pipeline.approve_text()

    if pipeline.stage == Stage.RECIPE_REVIEW:
        if interactive:
            ui.show_recipe_review(pipeline.state)
        resolution = choose_resolution(pipeline, args, interactive)
        if resolution is None:
            pipeline.cancel()
            return "declined"
        result = await pipeline.save(resolution=resolution, target_id=args.target_id)
        for warning in result.warnings:
            ui.show_status(warning, "warning")
        title = pipeline.state.recipe().title if pipeline.state.recipe() else pipeline.session_key
        if result.queued:
            ui.show_status(f"'{title}' queued - it will be saved when the store is reachable", "warning")
            return "queued"
        ui.show_status(f"Saved '{title}' ({result.resolution.value})", "success")
        return "saved"

    return "declined"


async def import_one(runtime: Runtime, session_key: str, source: Optional[RawSource], args,
                     ui: IngestProgressUI, interactive: bool, resume: bool = False) -> str:
    """Outcome of one import: saved, queued, declined or failed."""
    pipeline = runtime.new_pipeline(session_key, on_stage=ui.on_stage)
    if resume and pipeline.resume() is None:
        ui.show_status(f"No checkpoint found for session '{session_key}'", "error")
        return "failed"
    try:
        return await run_pipeline(pipeline, source, args, ui, interactive)
    except (IngestError, ValueError) as e:
        logger.error(f"❌ [{session_key}] {e}")
        ui.show_status(f"[{session_key}] {describe_error(e)}", "error")
        if pipeline.stage != Stage.INPUT and not pipeline.stage.is_terminal:
            ui.show_status(f"Progress kept - continue with --resume {session_key}")
        return "failed"


async def flush_queue(runtime: Runtime, ui: IngestProgressUI) -> bool:
    result = await runtime.writer.notify_online()
    ui.show_flush_result(result.success, result.failed)
    return result.failed == 0


async def run(args) -> int:
    ui = IngestProgressUI()
    runtime = create_runtime()

    if args.flush_queue:
        return 0 if await flush_queue(runtime, ui) else 1
    if len(runtime.queue):
        await flush_queue(runtime, ui)

    if args.resume:
        outcome = await import_one(runtime, args.resume, None, args, ui,
                                   interactive=not args.yes, resume=True)
        return 0 if outcome != "failed" else 1

    sources = build_sources(args)
    if not sources:
        ui.show_status("Nothing to import: pass --text, --url or --file", "error")
        return 1

    ui.show_welcome()
    if len(sources) == 1:
        session_key = args.session or f"import-{uuid.uuid4().hex[:8]}"
        ui.show_status(f"📋 Session: {session_key} (use --resume {session_key} if interrupted)")
        outcome = await import_one(runtime, session_key, sources[0], args, ui, interactive=not args.yes)
        return 0 if outcome != "failed" else 1

    # Batch: no prompts, one pipeline per source, all concurrent
    stats = BatchStats(total=len(sources), start_time=time.time())
    prefix = args.session or f"batch-{uuid.uuid4().hex[:8]}"
    outcomes = await asyncio.gather(*[
        import_one(runtime, f"{prefix}-{i + 1}", source, args, ui, interactive=False)
        for i, source in enumerate(sources)
    ])
    stats.saved = outcomes.count("saved")
    stats.queued = outcomes.count("queued")
    stats.failed = outcomes.count("failed")
    ui.show_batch_summary(stats)
    return 0 if stats.failed == 0 else 1


def main():
    parser = create_argument_parser()
    args = parser.parse_args()

    if not (args.flush_queue or args.resume or args.text or args.url or args.file):
        parser.print_help()
        print("\nError: pass a source (--text, --url, --file), --resume or --flush-queue")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        print("\n🛑 Interrupted - progress is checkpointed, continue with --resume")
        sys.exit(130)


if __name__ == "__main__":
    main()
