"""
End-to-end tests for the staged import pipeline.

Runs against the runtime fixture: in-memory entity store, scripted text
client, fake image client, checkpoints and offline queue under tmp_path.
"""

import asyncio

import pytest


def run_async(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


SOUP_TEXT = """Tomatensuppe

Zutaten für 4 Personen:
* 800 g Tomaten
* 1 Zwiebel
* 500 ml Gemüsebrühe

Zubereitung:
1. Zwiebel würfeln und andünsten.
2. Tomaten und Brühe zugeben, 20 Minuten köcheln lassen.
"""

STRUCTURED_TEXT = "TITEL: Tomatensuppe\nZUTATEN: Tomaten, Zwiebel, Gemüsebrühe"

EXTRACTED_SOUP = {
    "title": "Tomatensuppe",
    "servings": "4",
    "difficulty": "easy",
    "ingredients": [
        {"ingredient_name": "Tomaten", "amount": 800, "unit": "g"},
        {"ingredient_name": "Zwiebel", "amount": 1},
    ],
    "instructions": [
        {"step_number": 1, "step_description": "Zwiebel würfeln und andünsten."},
        {"step_number": 2, "step_description": "Tomaten und Brühe zugeben, 20 Minuten köcheln lassen."},
    ],
}

EXISTING_SOUP = {
    "id": "r1",
    "title": "Tomatensuppe",
    "rating": 5,
    "ingredients": [{"ingredient_name": "Tomate"}, {"ingredient_name": "Zwiebel"}],
}


def text_source(payload=SOUP_TEXT):
    from recipe_models import RawSource
    return RawSource(kind="text", payload=payload)


def script_extraction(text_client, recipe=None):
    text_client.add(STRUCTURED_TEXT, recipe if recipe is not None else EXTRACTED_SOUP)


@pytest.fixture
def pipeline(runtime):
    return runtime.new_pipeline("session-1")


@pytest.fixture
def reviewed(pipeline, text_client, store):
    """Pipeline at RECIPE_REVIEW with one existing near-identical recipe."""
    store.seed("Recipe", [EXISTING_SOUP])
    script_extraction(text_client)
    run_async(pipeline.start(text_source()))
    run_async(pipeline.approve_text())
    return pipeline


class TestStart:

    def test_text_reaches_ocr_review(self, pipeline, runtime):
        from recipe_models import Stage
        state = run_async(pipeline.start(text_source()))
        assert state.stage == Stage.OCR_REVIEW
        assert state.normalized_text.startswith("Tomatensuppe")
        assert state.source_context["source_type"] == "text"
        assert state.metadata["has_ingredients"]
        assert runtime.checkpoints.load("session-1")["stage"] == "ocr_review"

    def test_short_text_returns_to_input(self, pipeline):
        from errors import InsufficientContent
        from recipe_models import Stage
        with pytest.raises(InsufficientContent):
            run_async(pipeline.start(text_source("Suppe")))
        assert pipeline.stage == Stage.INPUT

    def test_start_twice_is_rejected(self, pipeline):
        from errors import InvalidTransition
        run_async(pipeline.start(text_source()))
        with pytest.raises(InvalidTransition):
            run_async(pipeline.start(text_source()))

    def test_on_stage_sees_every_transition(self, runtime, text_client):
        stages = []
        pipeline = runtime.new_pipeline("session-2", on_stage=lambda s: stages.append(s.stage.value))
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())
        assert stages == ["processing", "ocr_review", "extracting", "recipe_review"]


class TestApproveText:

    def test_extracts_validates_and_finds_duplicates(self, reviewed, text_client):
        from recipe_models import Stage
        state = reviewed.state
        assert state.stage == Stage.RECIPE_REVIEW
        assert state.structured_text == STRUCTURED_TEXT

        recipe = state.recipe()
        assert recipe.title == "Tomatensuppe"
        assert recipe.servings == 4
        assert recipe.ingredient_names() == ["Tomaten", "Zwiebel"]
        assert recipe.source_type == "text"

        assert state.duplicates[0]["recipe_ref"]["id"] == "r1"
        assert state.duplicates[0]["score"] >= 90

        assert text_client.calls[0]["json_schema"] is None
        assert text_client.calls[1]["json_schema"] is not None
        assert STRUCTURED_TEXT in text_client.calls[1]["prompt"]

    def test_edited_text_is_used(self, pipeline, text_client):
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        edited = SOUP_TEXT.replace("800 g", "1 kg")
        run_async(pipeline.approve_text(edited))
        assert "1 kg Tomaten" in pipeline.state.normalized_text
        assert "1 kg Tomaten" in text_client.calls[0]["prompt"]

    def test_vocabulary_offered_to_extraction(self, pipeline, text_client, store):
        store.seed("RecipeCategory", [{"name": "Suppe", "category_type": "gang"}])
        store.seed("MainIngredient", [{"name": "Gemüse"}])
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())

        listed = [c[1] for c in store.calls if c[0] == "list"]
        assert listed[:2] == ["RecipeCategory", "MainIngredient"]
        assert "Suppe" in text_client.calls[1]["prompt"]
        assert "Gemüse" in text_client.calls[1]["prompt"]

    def test_vocabulary_outage_is_not_fatal(self, pipeline, text_client, store):
        from errors import http_error
        from recipe_models import Stage
        store.fail_next("list", http_error("Entity store", 503, ""), times=3)
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())
        assert pipeline.stage == Stage.RECIPE_REVIEW

    def test_missing_title_returns_to_ocr_review(self, pipeline, text_client, runtime):
        from errors import MissingTitle
        from recipe_models import Stage
        script_extraction(text_client, {"title": "  ", "ingredients": []})
        run_async(pipeline.start(text_source()))
        with pytest.raises(MissingTitle):
            run_async(pipeline.approve_text())
        assert pipeline.stage == Stage.OCR_REVIEW
        assert runtime.checkpoints.load("session-1")["stage"] == "ocr_review"

    def test_short_edit_rejected_before_any_call(self, pipeline, text_client):
        from errors import InsufficientContent
        from recipe_models import Stage
        run_async(pipeline.start(text_source()))
        with pytest.raises(InsufficientContent):
            run_async(pipeline.approve_text("Suppe"))
        assert pipeline.stage == Stage.OCR_REVIEW
        assert text_client.calls == []

    def test_extraction_exhaustion_returns_to_ocr_review(self, pipeline, text_client, recorded_sleeps):
        from errors import RetryExhausted, http_error
        from recipe_models import Stage
        text_client.add(STRUCTURED_TEXT, *[http_error("OpenRouter", 503, "") for _ in range(4)])
        run_async(pipeline.start(text_source()))
        with pytest.raises(RetryExhausted):
            run_async(pipeline.approve_text())
        assert pipeline.stage == Stage.OCR_REVIEW
        assert recorded_sleeps == [1.0, 2.0, 4.0]


class TestSave:

    def test_save_new(self, reviewed, store, runtime):
        from recipe_models import Stage
        from utils.duplicate_detection import Resolution
        result = run_async(reviewed.save(resolution=Resolution.NEW))

        assert result.resolution == Resolution.NEW
        assert result.queued is False
        assert result.record["title"] == "Tomatensuppe"
        assert len(store.records["Recipe"]) == 2
        assert reviewed.stage == Stage.COMPLETE
        assert runtime.checkpoints.load("session-1") is None

    def test_merge_keeps_existing_fields(self, reviewed, store):
        from utils.duplicate_detection import Resolution
        run_async(reviewed.save(resolution=Resolution.MERGE))

        method, entity, record_id, patch = store.calls[-1]
        assert (method, entity, record_id) == ("update", "Recipe", "r1")
        assert patch["rating"] == 5
        assert [i["ingredient_name"] for i in patch["ingredients"]] == ["Tomaten", "Zwiebel"]
        assert len(store.records["Recipe"]) == 1

    def test_merge_does_not_blank_existing_data(self, pipeline, text_client, store):
        from utils.duplicate_detection import Resolution
        store.seed("Recipe", [{**EXISTING_SOUP, "image_url": "https://img/existing.png",
                               "tags": ["suppe"], "equipment": ["Topf"], "cuisine": "Deutsch"}])
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())

        run_async(pipeline.save(resolution=Resolution.MERGE))

        patch = store.calls[-1][3]
        assert patch["image_url"] == "https://img/existing.png"
        assert patch["tags"] == ["suppe"]
        assert patch["equipment"] == ["Topf"]
        assert patch["cuisine"] == "Deutsch"
        stored = store.records["Recipe"][0]
        assert stored["image_url"] == "https://img/existing.png"
        assert [i["ingredient_name"] for i in stored["ingredients"]] == ["Tomaten", "Zwiebel"]

    def test_replace_drops_existing_fields(self, reviewed, store):
        from utils.duplicate_detection import Resolution
        run_async(reviewed.save(resolution="replace", target_id="r1"))
        patch = store.calls[-1][3]
        assert "rating" not in patch
        assert patch["id"] == "r1"

    def test_merge_without_duplicate_fails(self, pipeline, text_client):
        from utils.duplicate_detection import Resolution
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())
        with pytest.raises(ValueError):
            run_async(pipeline.save(resolution=Resolution.MERGE))

    def test_edited_recipe_is_saved(self, reviewed, store):
        recipe = reviewed.state.recipe()
        recipe.title = "Schnelle Tomatensuppe"
        result = run_async(reviewed.save(recipe))
        assert result.record["title"] == "Schnelle Tomatensuppe"

    @pytest.mark.creates_data
    def test_offline_save_is_queued(self, reviewed, store, runtime):
        from errors import NetworkUnavailable
        from recipe_models import Stage
        store.fail_next("create", NetworkUnavailable("offline", "create"))

        result = run_async(reviewed.save())

        assert result.queued is True
        assert result.record is None
        assert reviewed.stage == Stage.COMPLETE
        assert len(runtime.queue) == 1
        assert runtime.queue.items[0].params["data"]["title"] == "Tomatensuppe"

        flushed = run_async(runtime.writer.notify_online())
        assert flushed.success == 1
        assert len(store.records["Recipe"]) == 2

    def test_image_failure_becomes_warning(self, runtime, text_client, image_client):
        from errors import http_error
        from import_pipeline import IMAGE_FAILED_WARNING, ImportPipeline
        image_client.failures = [http_error("Image generation", 503, "") for _ in range(4)]
        pipeline = ImportPipeline(
            "session-img",
            router=runtime.router,
            text_client=text_client,
            writer=runtime.writer,
            executor=runtime.executor,
            checkpoints=runtime.checkpoints,
            image_client=image_client,
            generate_images=True,
        )
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())

        result = run_async(pipeline.save())

        assert IMAGE_FAILED_WARNING in result.warnings
        assert result.record["image_url"] == ""
        assert len(image_client.prompts) == 4

    def test_generated_image_is_attached(self, runtime, text_client, image_client):
        from import_pipeline import ImportPipeline
        pipeline = ImportPipeline(
            "session-img",
            router=runtime.router,
            text_client=text_client,
            writer=runtime.writer,
            executor=runtime.executor,
            checkpoints=runtime.checkpoints,
            image_client=image_client,
            generate_images=True,
        )
        script_extraction(text_client)
        run_async(pipeline.start(text_source()))
        run_async(pipeline.approve_text())
        result = run_async(pipeline.save())
        assert result.record["image_url"] == "https://images.test/1.png"


class TestNavigation:

    def test_back_walks_to_input(self, reviewed):
        from errors import InvalidTransition
        from recipe_models import Stage
        assert reviewed.back().stage == Stage.OCR_REVIEW
        assert reviewed.back().stage == Stage.INPUT
        with pytest.raises(InvalidTransition):
            reviewed.back()

    def test_cancel_clears_checkpoint(self, pipeline, runtime):
        from errors import InvalidTransition
        from recipe_models import Stage
        run_async(pipeline.start(text_source()))
        pipeline.cancel()
        assert pipeline.stage == Stage.CANCELLED
        assert runtime.checkpoints.load("session-1") is None
        with pytest.raises(InvalidTransition):
            run_async(pipeline.approve_text())

    def test_cancel_stops_retry_loop(self, pipeline, text_client, runtime):
        from errors import PipelineCancelled, http_error
        from recipe_models import Stage

        def fail_and_cancel(prompt):
            pipeline.cancel()
            raise http_error("OpenRouter", 503, "")

        text_client.add(fail_and_cancel, STRUCTURED_TEXT)
        run_async(pipeline.start(text_source()))
        with pytest.raises(PipelineCancelled):
            run_async(pipeline.approve_text())
        assert pipeline.stage == Stage.CANCELLED
        assert len(text_client.calls) == 1
        assert runtime.checkpoints.load("session-1") is None

    def test_cancel_during_save_keeps_written_record(self, reviewed, store, runtime, monkeypatch):
        from recipe_models import Stage
        create = store.create

        async def create_then_cancel(entity_name, data):
            record = await create(entity_name, data)
            reviewed.cancel()
            return record

        monkeypatch.setattr(store, "create", create_then_cancel)

        result = run_async(reviewed.save())

        assert result.record["title"] == "Tomatensuppe"
        assert reviewed.stage == Stage.CANCELLED
        assert len(store.records["Recipe"]) == 2
        assert runtime.checkpoints.load("session-1") is None

    def test_cancel_after_complete_is_noop(self, reviewed):
        from recipe_models import Stage
        run_async(reviewed.save())
        reviewed.cancel()
        assert reviewed.stage == Stage.COMPLETE


class TestResume:

    @pytest.mark.creates_data
    def test_resume_at_review_stage(self, reviewed, runtime):
        from recipe_models import Stage
        restored = runtime.new_pipeline("session-1")
        state = restored.resume()
        assert state.stage == Stage.RECIPE_REVIEW
        assert state.recipe().title == "Tomatensuppe"
        assert state.duplicate_matches()[0].recipe_ref["id"] == "r1"

    @pytest.mark.creates_data
    def test_mid_call_checkpoint_resumes_one_stage_back(self, runtime):
        from recipe_models import PipelineState, Stage
        state = PipelineState(session_key="session-3", stage=Stage.EXTRACTING,
                              normalized_text=SOUP_TEXT)
        runtime.checkpoints.save("session-3", state.to_dict())

        restored = runtime.new_pipeline("session-3").resume()

        assert restored.stage == Stage.OCR_REVIEW
        assert restored.normalized_text == SOUP_TEXT

    def test_resume_without_checkpoint(self, runtime):
        assert runtime.new_pipeline("never-started").resume() is None

    @pytest.mark.creates_data
    def test_resumed_pipeline_can_continue(self, pipeline, runtime, text_client):
        from recipe_models import Stage
        run_async(pipeline.start(text_source()))
        restored = runtime.new_pipeline("session-1")
        restored.resume()
        script_extraction(text_client)
        run_async(restored.approve_text())
        assert restored.stage == Stage.RECIPE_REVIEW
