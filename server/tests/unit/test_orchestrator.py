from __future__ import annotations

import asyncio
from dataclasses import replace

from meditation_agent.core.settings import get_settings
from meditation_agent.repositories.topic_catalog import get_topic_catalog
from meditation_agent.schemas.meditation import ErrorInfo, GenerateRequest
from meditation_agent.services.llm.hunyuan_client import TextGenerationResult
from meditation_agent.services.meditation.orchestrator import GenerationOrchestrator
from meditation_agent.services.meditation.prompt_builder import PromptBuilder
from meditation_agent.services.meditation.usage_recorder import UsageRecorder
from meditation_agent.services.tts.models import SynthesisResult
from meditation_agent.services.tts.speech_cache import SpeechSynthesisError

SAMPLE_TEXT = "请轻轻闭上眼睛...慢慢吸气，再缓缓呼气。"


class FakeTextClient:
    def __init__(self, result: TextGenerationResult | None = None) -> None:
        self.result = result or TextGenerationResult(success=True, text=SAMPLE_TEXT, model="hunyuan-lite")
        self.calls: list[dict] = []

    async def generate(self, **kwargs) -> TextGenerationResult:
        self.calls.append(kwargs)
        return self.result


class FakeSpeechCache:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple] = []

    async def synthesize(self, text, params=None) -> SynthesisResult:
        self.calls.append((text, params))
        if self.fail:
            raise SpeechSynthesisError("合成失败: provider down")
        return SynthesisResult(
            cache_key="k",
            object_key="meditation/audio/k.mp3",
            url="https://cdn.example.com/meditation/audio/k.mp3",
        )


def _orchestrator(
    *,
    text_client: FakeTextClient | None = None,
    speech_cache: FakeSpeechCache | None = None,
    usage_recorder: UsageRecorder | None = None,
    **setting_overrides,
) -> GenerationOrchestrator:
    settings = replace(get_settings(), **setting_overrides)
    catalog = get_topic_catalog()
    return GenerationOrchestrator(
        settings=settings,
        catalog=catalog,
        prompt_builder=PromptBuilder(catalog),
        text_client=text_client or FakeTextClient(),
        speech_cache=speech_cache,
        usage_recorder=usage_recorder,
    )


def test_calculate_max_tokens() -> None:
    orchestrator = _orchestrator()
    assert orchestrator.calculate_max_tokens(2) == 630
    assert orchestrator.calculate_max_tokens(2, quick=True) == 504
    assert orchestrator.calculate_max_tokens(10) == 3150


def test_quick_mode_threshold() -> None:
    orchestrator = _orchestrator()
    assert orchestrator.is_quick_mode(2) is True
    assert orchestrator.is_quick_mode(3) is False


def test_count_words_and_read_time() -> None:
    orchestrator = _orchestrator()
    assert orchestrator.count_words("你好，世界！abc", "zh") == 4
    assert orchestrator.count_words("breathe in  slowly\nnow", "en") == 4
    assert orchestrator.estimate_read_time("静" * 180, "zh") == 60
    assert orchestrator.estimate_read_time("word " * 151, "en") == 61
    assert orchestrator.estimate_read_time("", "zh") == 0


def test_resolve_duration_prefers_explicit_then_topic_then_default() -> None:
    orchestrator = _orchestrator()
    assert orchestrator.resolve_duration(GenerateRequest(topic="sleep", duration=7)) == 7
    assert orchestrator.resolve_duration(GenerateRequest(topic="sleep")) == 20
    assert orchestrator.resolve_duration(GenerateRequest(topic="月光散步")) == 10


def test_resolve_voice_type() -> None:
    orchestrator = _orchestrator()
    assert orchestrator.resolve_voice_type("healing", None) == 1004
    assert orchestrator.resolve_voice_type("healing", "kids") == 1003
    assert orchestrator.resolve_voice_type("unknown", None) == 1001
    assert orchestrator.resolve_voice_type("healing", "kids", override=1050) == 1050


def test_validation_errors_short_circuit_before_llm_call() -> None:
    text_client = FakeTextClient()
    orchestrator = _orchestrator(text_client=text_client, strict_topic_validation=True)

    cases = [
        (GenerateRequest(topic="sleep", duration=0), "INVALID_DURATION"),
        (GenerateRequest(topic="sleep", duration=61), "INVALID_DURATION"),
        (GenerateRequest(topic="sleep", language="fr"), "INVALID_LANGUAGE"),
        (GenerateRequest(topic="sleep", style="rock"), "INVALID_STYLE"),
        (GenerateRequest(topic="invalid-topic-xyz"), "INVALID_TOPIC"),
    ]
    for request, code in cases:
        result = asyncio.run(orchestrator.generate(request))
        assert result.success is False
        assert result.error.code == code
    assert text_client.calls == []


def test_invalid_topic_details_list_supported_topics() -> None:
    orchestrator = _orchestrator(strict_topic_validation=True)
    result = asyncio.run(orchestrator.generate(GenerateRequest(topic="invalid-topic-xyz")))
    assert "助眠" in result.error.details["supportedTopics"]


def test_quick_mode_uses_quick_prompt_budget_and_temperature() -> None:
    text_client = FakeTextClient()
    orchestrator = _orchestrator(text_client=text_client)
    result = asyncio.run(
        orchestrator.generate(GenerateRequest(topic="sleep", duration=2, options={"temperature": 1.5}))
    )
    assert result.success is True
    assert result.data.metadata.mode == "quick"
    call = text_client.calls[0]
    assert call["max_tokens"] == 504
    assert call["temperature"] == 0.6
    assert "【任务要求】" not in call["messages"][1]["content"]


def test_standard_mode_honours_option_overrides() -> None:
    text_client = FakeTextClient()
    orchestrator = _orchestrator(text_client=text_client)
    asyncio.run(
        orchestrator.generate(
            GenerateRequest(
                topic="sleep",
                duration=10,
                options={"temperature": 0.9, "maxTokens": 800, "model": "hunyuan-pro"},
            )
        )
    )
    call = text_client.calls[0]
    assert call["temperature"] == 0.9
    assert call["max_tokens"] == 800
    assert call["model"] == "hunyuan-pro"
    assert call["messages"][0]["role"] == "system"
    assert "【任务要求】" in call["messages"][1]["content"]


def test_successful_generation_assembles_metadata() -> None:
    result = asyncio.run(_orchestrator().generate(GenerateRequest(topic="失眠", duration=10)))
    assert result.success is True
    metadata = result.data.metadata
    assert result.data.text == SAMPLE_TEXT
    assert result.data.audio is None
    assert metadata.topic == "助眠"
    assert metadata.topic_id == "sleep"
    assert metadata.style == "gentle"
    assert metadata.mode == "standard"
    assert metadata.text_length == len(SAMPLE_TEXT)
    assert metadata.word_count == 16
    assert metadata.estimated_read_time == 6
    assert metadata.generated_at.endswith("Z")


def test_llm_failure_is_terminal() -> None:
    failing = FakeTextClient(
        TextGenerationResult(success=False, error=ErrorInfo(code="HTTP_ERROR", message="timeout"))
    )
    speech_cache = FakeSpeechCache()
    result = asyncio.run(
        _orchestrator(text_client=failing, speech_cache=speech_cache).generate(
            GenerateRequest(topic="sleep", voice=True)
        )
    )
    assert result.success is False
    assert result.error.code == "HTTP_ERROR"
    assert speech_cache.calls == []

    no_error = FakeTextClient(TextGenerationResult(success=False))
    result = asyncio.run(_orchestrator(text_client=no_error).generate(GenerateRequest(topic="sleep")))
    assert result.error.code == "LLM_FAILED"


def test_blank_text_returns_empty_content() -> None:
    blank = FakeTextClient(TextGenerationResult(success=True, text="   "))
    result = asyncio.run(_orchestrator(text_client=blank).generate(GenerateRequest(topic="sleep")))
    assert result.success is False
    assert result.error.code == "EMPTY_CONTENT"


def test_voice_failure_degrades_to_text_only() -> None:
    speech_cache = FakeSpeechCache(fail=True)
    result = asyncio.run(
        _orchestrator(speech_cache=speech_cache).generate(GenerateRequest(topic="sleep", voice=True))
    )
    assert result.success is True
    assert result.data.text == SAMPLE_TEXT
    assert result.data.audio is None
    assert len(speech_cache.calls) == 1


def test_voice_success_attaches_audio_with_resolved_params() -> None:
    speech_cache = FakeSpeechCache()
    result = asyncio.run(
        _orchestrator(speech_cache=speech_cache).generate(
            GenerateRequest(topic="kids", duration=2, voice=True, options={"volume": 3})
        )
    )
    assert result.data.audio.url == "https://cdn.example.com/meditation/audio/k.mp3"
    assert result.data.audio.format == "mp3"
    _, params = speech_cache.calls[0]
    assert params.voice_type == 1003
    assert params.speed == 0.0
    assert params.volume == 3


def test_voice_phase_gating() -> None:
    speech_cache = FakeSpeechCache()
    orchestrator = _orchestrator(speech_cache=speech_cache)
    asyncio.run(orchestrator.generate(GenerateRequest(topic="sleep", voice=False)))
    asyncio.run(orchestrator.generate(GenerateRequest(topic="sleep", voice=True, language="en")))
    asyncio.run(orchestrator.generate(GenerateRequest(topic="sleep", voice=True, options={"skipAudio": True})))
    assert speech_cache.calls == []

    no_cache = asyncio.run(_orchestrator().generate(GenerateRequest(topic="sleep", voice=True)))
    assert no_cache.success is True
    assert no_cache.data.audio is None


def test_unexpected_exception_maps_to_generation_error() -> None:
    class ExplodingClient(FakeTextClient):
        async def generate(self, **kwargs):
            raise RuntimeError("boom")

    result = asyncio.run(
        _orchestrator(text_client=ExplodingClient(), app_env="development").generate(GenerateRequest(topic="sleep"))
    )
    assert result.success is False
    assert result.error.code == "MEDITATION_GENERATION_ERROR"
    assert result.error.message == "boom"
    assert "Traceback" in result.error.details

    production = asyncio.run(
        _orchestrator(text_client=ExplodingClient(), app_env="production").generate(GenerateRequest(topic="sleep"))
    )
    assert production.error.details is None


def test_preview_forces_text_only_and_marks_metadata() -> None:
    speech_cache = FakeSpeechCache()
    result = asyncio.run(
        _orchestrator(speech_cache=speech_cache).preview(GenerateRequest(topic="sleep", voice=True))
    )
    assert result.success is True
    assert result.data.metadata.is_preview is True
    assert result.data.audio is None
    assert speech_cache.calls == []


def test_batch_with_strict_validation_reports_per_item_results() -> None:
    orchestrator = _orchestrator(strict_topic_validation=True)
    result = asyncio.run(orchestrator.batch(["sleep", "invalid-topic-xyz"], {"duration": 5}))
    assert result.success is True
    assert result.data.total == 2
    assert result.data.successful == 1
    assert result.data.failed == 1
    first, second = result.data.results
    assert first.success is True and first.topic == "sleep"
    assert second.success is False
    assert second.error.code == "INVALID_TOPIC"


def test_batch_item_merging_and_item_errors() -> None:
    text_client = FakeTextClient()
    orchestrator = _orchestrator(text_client=text_client)
    result = asyncio.run(
        orchestrator.batch(
            [{"topic": "breathing", "duration": 2}, {"topic": "sleep", "duration": "abc"}, 42],
            {"duration": 10, "language": "zh"},
        )
    )
    assert result.success is True
    assert result.data.total == 3
    assert result.data.successful == 1
    assert text_client.calls[0]["max_tokens"] == 504
    assert [item.error.code for item in result.data.results[1:]] == ["BATCH_ITEM_ERROR", "BATCH_ITEM_ERROR"]


def test_batch_requires_non_empty_list() -> None:
    orchestrator = _orchestrator()
    for topics in ([], None, "sleep"):
        result = asyncio.run(orchestrator.batch(topics))
        assert result.success is False
        assert result.error.code == "INVALID_TOPICS"


def test_recommend() -> None:
    orchestrator = _orchestrator()
    result = orchestrator.recommend(["stress", "anxiety"], "zh")
    assert result.success is True
    assert result.data.recommendations[0]["id"] == "anxiety-relief"
    assert result.data.total == 3

    invalid = orchestrator.recommend([], "zh")
    assert invalid.error.code == "INVALID_KEYWORDS"


def test_usage_recorded_only_when_enabled() -> None:
    events: list[dict] = []

    def failing_sink(event: dict) -> None:
        events.append(event)
        raise RuntimeError("sink down")

    recorder = UsageRecorder(enabled=True, sink=failing_sink)
    result = asyncio.run(_orchestrator(usage_recorder=recorder).generate(GenerateRequest(topic="sleep")))
    assert result.success is True
    assert events[0]["topic_id"] == "sleep"

    disabled: list[dict] = []
    recorder = UsageRecorder(enabled=False, sink=disabled.append)
    asyncio.run(_orchestrator(usage_recorder=recorder).generate(GenerateRequest(topic="sleep")))
    assert disabled == []
