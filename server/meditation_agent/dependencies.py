"""应用依赖注入。"""

from __future__ import annotations

from functools import lru_cache

from meditation_agent.core.settings import get_settings
from meditation_agent.repositories.topic_catalog import clear_topic_catalog_cache, get_topic_catalog
from meditation_agent.services.llm.hunyuan_client import HunyuanTextClient
from meditation_agent.services.meditation.orchestrator import GenerationOrchestrator
from meditation_agent.services.meditation.prompt_builder import PromptBuilder
from meditation_agent.services.meditation.usage_recorder import UsageRecorder
from meditation_agent.services.storage.cos_store import CosAudioStore
from meditation_agent.services.tts.speech_cache import PendingSynthesisRegistry, SpeechSynthesisCache
from meditation_agent.services.tts.tencent_tts_client import TencentSpeechProvider


@lru_cache(maxsize=1)
def get_prompt_builder() -> PromptBuilder:
    return PromptBuilder(get_topic_catalog())


@lru_cache(maxsize=1)
def get_text_client() -> HunyuanTextClient:
    settings = get_settings()
    return HunyuanTextClient(
        api_key=settings.llm_api_key,
        base_url=settings.llm_api_base_url,
        default_model=settings.llm_model,
        timeout_seconds=settings.llm_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_audio_store() -> CosAudioStore | None:
    settings = get_settings()
    if not settings.cos_configured:
        return None
    return CosAudioStore(
        secret_id=settings.cos_secret_id or settings.tts_secret_id,
        secret_key=settings.cos_secret_key or settings.tts_secret_key,
        bucket=settings.cos_bucket,
        region=settings.cos_region,
        cdn_base_url=settings.cos_cdn,
    )


@lru_cache(maxsize=1)
def get_speech_cache() -> SpeechSynthesisCache:
    settings = get_settings()
    provider = TencentSpeechProvider(
        secret_id=settings.tts_secret_id,
        secret_key=settings.tts_secret_key,
        region=settings.tts_region,
        timeout_seconds=settings.tts_timeout_seconds,
    )
    return SpeechSynthesisCache(
        provider=provider,
        store=get_audio_store(),
        registry=PendingSynthesisRegistry(),
        default_language=settings.tts_default_lang,
        timeout_seconds=settings.tts_timeout_seconds,
    )


@lru_cache(maxsize=1)
def get_orchestrator() -> GenerationOrchestrator:
    settings = get_settings()
    return GenerationOrchestrator(
        settings=settings,
        catalog=get_topic_catalog(),
        prompt_builder=get_prompt_builder(),
        text_client=get_text_client(),
        speech_cache=get_speech_cache(),
        usage_recorder=UsageRecorder(enabled=settings.enable_analytics),
    )


def clear_dependency_cache() -> None:
    clear_topic_catalog_cache()
    get_prompt_builder.cache_clear()
    get_text_client.cache_clear()
    get_audio_store.cache_clear()
    get_speech_cache.cache_clear()
    get_orchestrator.cache_clear()
