"""Tests for the HTTP API."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from recipe_ai.api.main import app
from recipe_ai.api.routes import prompts as prompt_routes
from recipe_ai.orchestrator import OrchestratorOptions
from recipe_ai.recipe.service import RecommendationService, get_recommendation_service, init_service
from tests.helpers import (
    CREATE_RECIPE_DATA,
    MISSING_CONFIG_YAML,
    FakeLLMClient,
    oils_payload,
    parse_sse,
    property_facet,
    write_prompt,
)

CAUSES_DOCUMENT = json.dumps(
    {
        "data": {
            "potential_causes": [
                {"cause_id": "stress", "name_localized": "Stress", "explanation_localized": "Work"},
            ]
        }
    }
)


def install_service(registry, llm):
    init_service(
        RecommendationService(
            registry=registry,
            llm_client=llm,
            orchestrator_options=OrchestratorOptions(max_concurrency=2, per_task_timeout=2),
            idle_timeout=2,
        )
    )


@pytest.fixture
def client(shipped_registry):
    prompt_routes.init_registry(shipped_registry)
    install_service(shipped_registry, FakeLLMClient(fragments=[CAUSES_DOCUMENT[:40], CAUSES_DOCUMENT[40:]]))
    yield TestClient(app)
    init_service(None)
    prompt_routes.init_registry(None)


class TestStreaming:
    def test_structured_stream(self, client):
        response = client.post(
            "/v1/ai/streaming",
            json={
                "feature": "recipe-wizard",
                "step": "potential-causes",
                "data": {"healthConcern": "headache", "gender": "male", "ageCategory": "adult"},
            },
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == "no-cache"

        frames = parse_sse(response.text)
        assert frames[0]["data"]["type"] == "structured_data"
        assert frames[0]["data"]["data"]["cause_id"] == "stress"
        assert frames[-1]["event"] == "complete"

    def test_text_mode_alias(self, client):
        response = client.post(
            "/v1/ai/streaming",
            json={"feature": "recipe-wizard", "step": "potential-causes", "data": {}, "streamingMode": "text"},
        )
        frames = parse_sse(response.text)
        assert frames[0]["data"]["type"] == "text_chunk"
        assert frames[-1]["data"]["content"] == CAUSES_DOCUMENT

    def test_fan_out_stream(self, shipped_registry):
        prompt_routes.init_registry(shipped_registry)
        llm = FakeLLMClient(
            responder=lambda prompt: oils_payload("calming" if "(calming)" in prompt else "analgesic")
        )
        install_service(shipped_registry, llm)
        try:
            data = {
                **CREATE_RECIPE_DATA,
                "therapeutic_properties": [property_facet("calming"), property_facet("analgesic")],
            }
            response = TestClient(app).post(
                "/v1/ai/streaming",
                json={"feature": "create-recipe", "step": "suggested-oils", "data": data},
            )
        finally:
            init_service(None)
            prompt_routes.init_registry(None)

        frames = parse_sse(response.text)
        assert sum(1 for f in frames if f["data"]["type"] == "facet_result") == 2
        assert frames[-1]["event"] == "complete"
        assert frames[-1]["data"]["data"]["meta"]["status"] == "success"

    def test_unknown_step_is_404(self, client):
        response = client.post(
            "/v1/ai/streaming", json={"feature": "create-recipe", "step": "missing-step", "data": {}}
        )
        assert response.status_code == 404

    def test_empty_fan_out_is_422(self, client):
        response = client.post(
            "/v1/ai/streaming",
            json={"feature": "create-recipe", "step": "suggested-oils", "data": CREATE_RECIPE_DATA},
        )
        assert response.status_code == 422

    def test_missing_fields_is_422(self, client):
        assert client.post("/v1/ai/streaming", json={"feature": "create-recipe"}).status_code == 422

    def test_prepare_runs_off_event_loop(self, client, monkeypatch):
        service = get_recommendation_service()
        prepare = service.prepare
        seen = []

        def recording_prepare(*args):
            try:
                asyncio.get_running_loop()
                seen.append("loop")
            except RuntimeError:
                seen.append("worker")
            return prepare(*args)

        monkeypatch.setattr(service, "prepare", recording_prepare)
        response = client.post(
            "/v1/ai/streaming", json={"feature": "recipe-wizard", "step": "potential-causes", "data": {}}
        )
        assert response.status_code == 200
        assert seen == ["worker"]

    def test_malformed_document_is_500(self, prompts_dir, registry):
        write_prompt(prompts_dir, "broken", MISSING_CONFIG_YAML)
        install_service(registry, FakeLLMClient())
        try:
            response = TestClient(app).post(
                "/v1/ai/streaming", json={"feature": "create-recipe", "step": "broken", "data": {}}
            )
        finally:
            init_service(None)
        assert response.status_code == 500
        assert response.json()["detail"]["error"] == "Failed to load AI configuration"

    def test_status(self, client):
        body = client.get("/v1/ai/streaming").json()
        assert body["status"] == "healthy"
        assert body["features"] == ["recipe-wizard", "create-recipe"]
        assert "suggested-oils" in body["steps"]
        assert body["streaming_modes"] == ["auto", "structured", "text"]


class TestPrompts:
    def test_list(self, client):
        names = [p["name"] for p in client.get("/v1/prompts").json()]
        assert "potential-causes" in names

    def test_get(self, client):
        body = client.get("/v1/prompts/suggested-oils").json()
        assert body["name"] == "suggested-oils"
        assert body["model_parameters"]["model"] == "gpt-4o-mini"
        assert "{{target_property.property_id}}" in body["body"]

    def test_get_unknown(self, client):
        response = client.get("/v1/prompts/nope")
        assert response.status_code == 404
        assert "potential-causes" in response.json()["detail"]

    def test_resolve(self, client):
        response = client.post(
            "/v1/prompts/potential-causes/resolve",
            json={"feature": "recipe-wizard", "variables": {"healthConcern": "insomnia"}},
        )
        assert response.status_code == 200
        body = response.json()
        assert "insomnia" in body["prompt"]
        assert body["template_name"] == "potential-causes"

    def test_cache(self, client, shipped_registry):
        shipped_registry.load("potential-causes")
        assert "potential-causes" in client.get("/v1/prompts/cache").json()["cached"]
        cleared = client.delete("/v1/prompts/cache").json()["cleared"]
        assert cleared >= 1
        assert client.get("/v1/prompts/cache").json() == {"cached": [], "count": 0}

    def test_list_with_malformed_document(self, prompts_dir, registry):
        write_prompt(prompts_dir, "broken", MISSING_CONFIG_YAML)
        prompt_routes.init_registry(registry)
        try:
            response = TestClient(app).get("/v1/prompts")
        finally:
            prompt_routes.init_registry(None)
        assert response.status_code == 500


class TestRecipeSteps:
    def test_list(self, client):
        steps = client.get("/v1/recipe/steps").json()
        assert [s["step_id"] for s in steps][0] == "potential-causes"

    def test_get(self, client):
        body = client.get("/v1/recipe/steps/suggested-oils").json()
        assert body["facet_source"] == "therapeutic_properties"
        assert body["selection"]["required"] is False

    def test_get_unknown(self, client):
        assert client.get("/v1/recipe/steps/nope").status_code == 404

    def test_next(self, client):
        body = client.post(
            "/v1/recipe/steps/next",
            json={"completed_steps": ["health-concern", "demographics", "potential-causes"]},
        ).json()
        assert body == {"completed": 1, "total": 4, "percentage": 25, "next_step": "potential-symptoms"}

    def test_validate_selection(self, client):
        body = client.post(
            "/v1/recipe/steps/potential-causes/validate-selection", json={"selected_items": []}
        ).json()
        assert body["is_valid"] is False

    def test_validate_selection_unknown_step(self, client):
        response = client.post("/v1/recipe/steps/nope/validate-selection", json={"selected_items": []})
        assert response.status_code == 404


class TestRoot:
    def test_root(self, client):
        assert client.get("/").json()["service"] == "Recipe AI API"

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["prompts_available"] >= 4
        assert set(body["providers"]) == {"anthropic", "openai"}
