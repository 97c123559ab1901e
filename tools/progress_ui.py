#!/usr/bin/env python3
"""
Rich Terminal UI for Recipe Imports
===================================

Stage progress, review summaries, duplicate tables and batch totals for the
import CLI. ``IngestProgressUI.on_stage`` plugs straight into
ImportPipeline's ``on_stage`` callback.
"""

import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from recipe_models import PipelineState, Recipe, Stage, flatten

INGEST_HEADER = """
Recipe Ingestion
================"""

STAGE_ICONS: Dict[Stage, str] = {
    Stage.INPUT: "📥",
    Stage.PROCESSING: "🔄",
    Stage.OCR_REVIEW: "📝",
    Stage.EXTRACTING: "🔍",
    Stage.RECIPE_REVIEW: "👀",
    Stage.COMPLETE: "✅",
    Stage.CANCELLED: "🛑",
}

# Position in the happy path; CANCELLED has none
STAGE_ORDER: List[Stage] = [
    Stage.INPUT,
    Stage.PROCESSING,
    Stage.OCR_REVIEW,
    Stage.EXTRACTING,
    Stage.RECIPE_REVIEW,
    Stage.COMPLETE,
]


@dataclass
class BatchStats:
    """Totals for a multi-source import."""
    total: int
    saved: int = 0
    queued: int = 0
    failed: int = 0
    start_time: float = 0.0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    @property
    def success_rate(self) -> float:
        done = self.saved + self.queued + self.failed
        if done == 0:
            return 0.0
        return (self.saved + self.queued) / done


class IngestProgressUI:

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def show_welcome(self):
        self.console.print(INGEST_HEADER, style="bold")

    def on_stage(self, state: PipelineState):
        """Pipeline callback: one line per stage change."""
        icon = STAGE_ICONS.get(state.stage, "➡️")
        if state.stage in STAGE_ORDER:
            step = STAGE_ORDER.index(state.stage) + 1
            progress = f"[{step}/{len(STAGE_ORDER)}]"
        else:
            progress = "[-]"
        self.console.print(f"{icon} {escape(progress)} {escape(state.session_key)}: {state.stage.value}")

    def show_text_review(self, state: PipelineState, max_chars: int = 1500):
        text = state.normalized_text
        if len(text) > max_chars:
            text = text[:max_chars] + "\n..."
        confidence = state.metadata.get('confidence', 0)
        self.console.print(Panel(
            escape(text),
            title=f"Extracted text ({len(state.normalized_text)} chars, recipe confidence {confidence}%)",
            border_style="blue",
        ))

    def show_recipe_review(self, state: PipelineState):
        recipe = state.recipe()
        if recipe is None:
            self.show_status("No recipe extracted", "error")
            return

        self.console.print(Panel(self._recipe_summary(recipe, state.quality_score),
                                 title=escape(recipe.title), border_style="green"))
        for warning in state.warnings:
            self.show_status(warning, "warning")
        self.show_duplicates(state)

    def _recipe_summary(self, recipe: Recipe, quality_score: int) -> Table:
        table = Table.grid(padding=(0, 2))
        table.add_column(style="bold")
        table.add_column()
        table.add_row("Quality", f"{quality_score}/100")
        table.add_row("Servings", str(recipe.servings))
        table.add_row("Time", f"{recipe.prep_time_minutes} min prep, {recipe.cook_time_minutes} min cook")
        table.add_row("Difficulty", recipe.difficulty)
        table.add_row("Meal type", recipe.meal_type or "-")
        table.add_row("Course", recipe.course or "-")
        table.add_row("Cuisine", recipe.cuisine or "-")
        table.add_row("Ingredients", ", ".join(recipe.ingredient_names()) or "-")
        table.add_row("Steps", str(len(flatten(recipe.instructions))))
        return table

    def show_duplicates(self, state: PipelineState):
        matches = state.duplicate_matches()
        if not matches:
            return
        table = Table(title="Possible duplicates")
        table.add_column("Score", justify="right")
        table.add_column("Recipe")
        table.add_column("Shared ingredients", justify="right")
        table.add_column("Id", style="dim")
        for match in matches:
            table.add_row(
                str(match.score),
                escape(match.recipe_ref.get("title", "")),
                f"{match.common_ingredient_count}/{match.total_ingredient_count}",
                str(match.recipe_ref.get("id", "")),
            )
        self.console.print(table)

    def show_status(self, message: str, style: str = "info"):
        message = escape(message)
        if style == "error":
            self.console.print(f"❌ {message}", style="red")
        elif style == "warning":
            self.console.print(f"⚠️ {message}", style="yellow")
        elif style == "success":
            self.console.print(f"✅ {message}", style="green")
        else:
            self.console.print(message)

    def show_flush_result(self, success: int, failed: int):
        if success == 0 and failed == 0:
            self.show_status("Offline queue is empty")
        elif failed:
            self.show_status(f"Synced {success} queued write(s), {failed} still pending", "warning")
        else:
            self.show_status(f"Synced {success} queued write(s)", "success")

    def show_batch_summary(self, stats: BatchStats):
        self.console.print(
            f"Batch complete: {stats.saved} saved, {stats.queued} queued, {stats.failed} failed "
            f"({stats.success_rate * 100:.1f}% success) in {stats.elapsed_time:.1f}s"
        )
