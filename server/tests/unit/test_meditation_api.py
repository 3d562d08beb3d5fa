from __future__ import annotations

import asyncio
from dataclasses import replace

from fastapi.testclient import TestClient

from meditation_agent.core.settings import get_settings
from meditation_agent.dependencies import get_orchestrator
from meditation_agent.main import app
from meditation_agent.repositories.topic_catalog import get_topic_catalog
from meditation_agent.services.llm.hunyuan_client import TextGenerationResult
from meditation_agent.services.meditation.dispatcher import dispatch
from meditation_agent.services.meditation.orchestrator import GenerationOrchestrator
from meditation_agent.services.meditation.prompt_builder import PromptBuilder


class StaticTextClient:
    async def generate(self, **kwargs) -> TextGenerationResult:
        return TextGenerationResult(success=True, text="慢慢吸气...缓缓呼气。", model="hunyuan-lite")


def _orchestrator(**setting_overrides) -> GenerationOrchestrator:
    catalog = get_topic_catalog()
    return GenerationOrchestrator(
        settings=replace(get_settings(), **setting_overrides),
        catalog=catalog,
        prompt_builder=PromptBuilder(catalog),
        text_client=StaticTextClient(),
    )


def _post(payload: dict, headers: dict | None = None, **setting_overrides):
    orchestrator = _orchestrator(**setting_overrides)
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as client:
        resp = client.post("/v1/meditation", json=payload, headers=headers or {})
    app.dependency_overrides.clear()
    return resp


def test_generate_returns_envelope_with_request_id() -> None:
    resp = _post({"type": "generate", "topic": "sleep", "duration": 5}, headers={"X-Request-ID": "req-abc"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["text"] == "慢慢吸气...缓缓呼气。"
    assert body["data"]["metadata"]["topicId"] == "sleep"
    assert body["metadata"]["requestId"] == "req-abc"
    assert isinstance(body["metadata"]["duration"], int)
    assert body["metadata"]["timestamp"].endswith("Z")


def test_business_errors_still_return_http_200() -> None:
    resp = _post({"type": "generate", "topic": "sleep", "duration": 99})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_DURATION"
    assert body["metadata"]["requestId"].startswith("req_")


def test_unknown_type_is_rejected() -> None:
    body = _post({"type": "dance"}).json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_TYPE"


def test_malformed_payload_maps_to_invalid_request() -> None:
    body = _post({"type": "generate", "duration": "ten"}).json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_REQUEST"


def test_ping_is_default_type() -> None:
    body = _post({}).json()
    assert body["success"] is True
    assert body["data"]["pong"] is True


def test_batch_through_api() -> None:
    body = _post(
        {"type": "batch", "topics": ["sleep", "invalid-topic-xyz"], "baseOptions": {"duration": 5}},
        strict_topic_validation=True,
    ).json()
    assert body["success"] is True
    assert body["data"]["total"] == 2
    assert [item["success"] for item in body["data"]["results"]] == [True, False]
    assert body["data"]["results"][1]["error"]["code"] == "INVALID_TOPIC"


def test_recommend_and_preview_through_api() -> None:
    body = _post({"type": "recommend", "keywords": ["失眠"], "language": "zh"}).json()
    assert body["data"]["recommendations"][0]["id"] == "sleep"

    body = _post({"type": "recommend", "keywords": "sleep"}).json()
    assert body["error"]["code"] == "INVALID_KEYWORDS"

    body = _post({"type": "preview", "topic": "breathing", "voice": True}).json()
    assert body["data"]["metadata"]["isPreview"] is True
    assert body["data"]["audio"] is None


def test_dispatch_maps_unexpected_errors_to_internal_error() -> None:
    class BrokenOrchestrator:
        def recommend(self, keywords, language):
            raise RuntimeError("catalog exploded")

    settings = replace(get_settings(), app_env="development")
    result = asyncio.run(
        dispatch({"type": "recommend", "keywords": ["x"]}, BrokenOrchestrator(), request_id="r1", settings=settings)
    )
    assert result["success"] is False
    assert result["error"]["code"] == "INTERNAL_ERROR"
    assert result["error"]["message"] == "catalog exploded"
    assert result["metadata"]["requestId"] == "r1"
    assert "Traceback" in result["metadata"]["stack"]


def test_healthz() -> None:
    with TestClient(app) as client:
        resp = client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_non_object_bodies_map_to_invalid_request() -> None:
    app.dependency_overrides[get_orchestrator] = lambda: _orchestrator()
    with TestClient(app) as client:
        responses = [
            client.post("/v1/meditation", json=["generate"]),
            client.post("/v1/meditation", content=b"{not json", headers={"Content-Type": "application/json"}),
        ]
    app.dependency_overrides.clear()
    for resp in responses:
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "INVALID_REQUEST"
        assert body["metadata"]["requestId"].startswith("req_")


def test_response_fields_are_camel_case() -> None:
    body = _post({"type": "generate", "topic": "sleep", "duration": 5}).json()
    metadata = body["data"]["metadata"]
    for key in ("topicId", "generatedAt", "textLength", "wordCount", "estimatedReadTime", "targetAudience"):
        assert key in metadata
    assert "estimated_read_time" not in metadata

    body = _post({"type": "batch", "topics": ["sleep"], "baseOptions": {"duration": 5}}).json()
    assert isinstance(body["data"]["processingTime"], int)
