"""冥想生成编排：校验 → Prompt → 文本生成 → （可选）语音合成 → 组装结果。

单次请求内各阶段严格顺序执行且最多执行一次；语音阶段失败只降级为纯文本结果，
不影响整体成功。批量、预览、推荐均复用同一套流程。
"""

from __future__ import annotations

import logging
import math
import re
import time
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from meditation_agent.core import error_codes
from meditation_agent.core.settings import Settings
from meditation_agent.repositories.topic_catalog import TopicCatalog, default_recommendations
from meditation_agent.schemas.meditation import (
    AudioInfo,
    BatchData,
    BatchItemResult,
    BatchResult,
    ErrorInfo,
    GenerateRequest,
    GenerationResult,
    MeditationData,
    MeditationMetadata,
    RecommendData,
    RecommendResult,
)
from meditation_agent.services.llm.hunyuan_client import HunyuanTextClient
from meditation_agent.services.meditation.prompt_builder import DEFAULT_STYLE, DEFAULT_TOPIC, PromptBuilder
from meditation_agent.services.meditation.usage_recorder import UsageRecorder
from meditation_agent.services.tts.models import SynthesisParams
from meditation_agent.services.tts.speech_cache import SpeechSynthesisCache

logger = logging.getLogger(__name__)

RECOMMENDATION_LIMIT = 5

# 按风格挑选音色（腾讯云 TTS VoiceType）。
STYLE_VOICE_TYPES: dict[str, int] = {
    "gentle": 1001,
    "healing": 1004,
    "mindful": 1002,
    "zen": 1010,
    "nature": 1001,
    "modern": 1018,
}

# 个别主题对音色有更强的偏好，优先于风格。
TOPIC_VOICE_TYPES: dict[str, int] = {
    "sleep": 1001,
    "morning-wakeup": 1018,
    "kids": 1003,
}

_CJK_IDEOGRAPH = re.compile(r"[\u4e00-\u9fa5]")


@dataclass(frozen=True)
class ValidationOutcome:
    valid: bool
    error: ErrorInfo | None = None


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        catalog: TopicCatalog,
        prompt_builder: PromptBuilder,
        text_client: HunyuanTextClient,
        speech_cache: SpeechSynthesisCache | None = None,
        usage_recorder: UsageRecorder | None = None,
    ) -> None:
        self._settings = settings
        self._catalog = catalog
        self._prompt_builder = prompt_builder
        self._text_client = text_client
        self._speech_cache = speech_cache
        self._usage_recorder = usage_recorder or UsageRecorder(enabled=settings.enable_analytics)

    def resolve_duration(self, request: GenerateRequest) -> int:
        """显式时长 > 主题默认时长 > 全局默认时长。"""
        if request.duration is not None:
            return request.duration
        descriptor = self._catalog.find(request.topic)
        if descriptor is not None:
            return descriptor.default_duration
        return self._settings.default_duration

    def resolve_style(self, request: GenerateRequest) -> str:
        if request.style:
            return request.style
        descriptor = self._catalog.find(request.topic)
        if descriptor is not None and descriptor.recommended_styles:
            return descriptor.recommended_styles[0]
        return DEFAULT_STYLE

    def validate(
        self,
        *,
        topic: str,
        style: str | None,
        duration: Any,
        language: str,
    ) -> ValidationOutcome:
        settings = self._settings
        if (
            isinstance(duration, bool)
            or not isinstance(duration, int)
            or not settings.min_duration <= duration <= settings.max_duration
        ):
            return _invalid(
                error_codes.INVALID_DURATION,
                f"冥想时长必须在 {settings.min_duration}-{settings.max_duration} 分钟之间",
                {"duration": duration},
            )

        if language not in settings.supported_languages:
            return _invalid(
                error_codes.INVALID_LANGUAGE,
                f"不支持的语言: {language}，支持: {', '.join(settings.supported_languages)}",
                {"supportedLanguages": list(settings.supported_languages)},
            )

        if style and not self._catalog.has_style(style):
            return _invalid(
                error_codes.INVALID_STYLE,
                f"不支持的引导风格: {style}",
                {"supportedStyles": self._catalog.supported_styles()},
            )

        if settings.strict_topic_validation:
            supported = self._catalog.supported_topics(language)
            if self._catalog.find(topic) is None and topic not in supported:
                return _invalid(
                    error_codes.INVALID_TOPIC,
                    f"不支持的冥想主题: {topic}",
                    {"supportedTopics": supported},
                )

        return ValidationOutcome(valid=True)

    def is_quick_mode(self, duration: int) -> bool:
        return duration < self._settings.quick_mode_threshold

    def calculate_max_tokens(self, duration: int, quick: bool = False) -> int:
        settings = self._settings
        base = math.floor(duration * settings.words_per_minute * settings.tokens_per_word * settings.token_buffer)
        if quick:
            return math.floor(base * settings.quick_token_factor)
        return base

    def resolve_voice_type(self, style: str, topic_id: str | None, override: int | None = None) -> int:
        if override:
            return override
        if topic_id and topic_id in TOPIC_VOICE_TYPES:
            return TOPIC_VOICE_TYPES[topic_id]
        return STYLE_VOICE_TYPES.get(style, self._settings.default_voice_type)

    def count_words(self, text: str, language: str) -> int:
        if not text:
            return 0
        if language == "zh":
            return len(_CJK_IDEOGRAPH.findall(text))
        return len(text.split())

    def estimate_read_time(self, text: str, language: str) -> int:
        """预估朗读秒数。"""
        rate = self._settings.read_rate_zh if language == "zh" else self._settings.read_rate_en
        words = self.count_words(text, language)
        if rate <= 0 or words <= 0:
            return 0
        return math.ceil(words / rate * 60)

    async def generate(self, request: GenerateRequest) -> GenerationResult:
        try:
            return await self._generate(request)
        except Exception as exc:  # noqa: BLE001
            logger.exception("冥想生成异常: topic=%s", request.topic)
            details = None if self._settings.is_production else traceback.format_exc()
            return GenerationResult(
                success=False,
                error=ErrorInfo(
                    code=error_codes.MEDITATION_GENERATION_ERROR,
                    message=str(exc) or exc.__class__.__name__,
                    details=details,
                ),
            )

    async def _generate(self, request: GenerateRequest) -> GenerationResult:
        topic = str(request.topic or "").strip() or DEFAULT_TOPIC
        language = request.language
        duration = self.resolve_duration(request)

        outcome = self.validate(topic=topic, style=request.style, duration=duration, language=language)
        if not outcome.valid:
            logger.info("参数校验失败: %s", outcome.error.code if outcome.error else "")
            return GenerationResult(success=False, error=outcome.error)

        style = self.resolve_style(request)
        quick = self.is_quick_mode(duration)
        options = request.options
        logger.info(
            "开始生成冥想: topic=%s style=%s duration=%s language=%s mode=%s",
            topic,
            style,
            duration,
            language,
            "quick" if quick else "standard",
        )

        if quick:
            prompt = self._prompt_builder.build_quick_prompt(
                topic=topic, style=style, duration=duration, language=language
            )
            temperature = self._settings.quick_temperature
        else:
            prompt = self._prompt_builder.build_prompt(
                topic=topic,
                style=style,
                duration=duration,
                language=language,
                customization=options.customization,
            )
            temperature = (
                options.temperature if options.temperature is not None else self._settings.standard_temperature
            )

        llm_result = await self._text_client.generate(
            messages=[
                {"role": "system", "content": self._prompt_builder.system_prompt(language, quick=quick)},
                {"role": "user", "content": prompt},
            ],
            model=options.model or self._settings.llm_model,
            temperature=temperature,
            max_tokens=options.max_tokens or self.calculate_max_tokens(duration, quick),
        )
        if not llm_result.success:
            error = llm_result.error or ErrorInfo(code=error_codes.LLM_FAILED, message="文本生成失败")
            logger.warning("文本生成失败: %s %s", error.code, error.message)
            return GenerationResult(success=False, error=error)

        text = llm_result.text.strip()
        if not text:
            return GenerationResult(
                success=False,
                error=ErrorInfo(code=error_codes.EMPTY_CONTENT, message="生成的冥想内容为空"),
            )

        descriptor = self._catalog.find(topic)
        topic_id = descriptor.id if descriptor else None
        estimated_read_time = self.estimate_read_time(text, language)

        audio: AudioInfo | None = None
        if self._should_synthesize(request):
            audio = await self._synthesize_audio(
                text,
                request,
                style=style,
                topic_id=topic_id,
                quick=quick,
                estimated_read_time=estimated_read_time,
            )

        metadata = MeditationMetadata(
            topic=descriptor.localized_name(language) if descriptor else topic,
            topic_id=topic_id,
            style=style,
            duration=duration,
            mode="quick" if quick else "standard",
            language=language,
            benefits=descriptor.localized_benefits(language) if descriptor else [],
            target_audience=descriptor.localized_audience(language) if descriptor else [],
            generated_at=_utc_now_iso(),
            text_length=len(text),
            word_count=self.count_words(text, language),
            estimated_read_time=estimated_read_time,
        )
        self._record_usage(metadata, has_audio=audio is not None, model=llm_result.model)
        logger.info("冥想生成完成: topic=%s text_len=%d audio=%s", topic, len(text), audio is not None)
        return GenerationResult(success=True, data=MeditationData(text=text, audio=audio, metadata=metadata))

    async def preview(self, request: GenerateRequest) -> GenerationResult:
        logger.info("预览生成: topic=%s", request.topic)
        options = request.options.model_copy(update={"skip_audio": True})
        result = await self.generate(request.model_copy(update={"voice": False, "options": options}))
        if result.success and result.data is not None:
            result.data.metadata.is_preview = True
        return result

    async def batch(self, topics: Any, base_options: dict[str, Any] | None = None) -> BatchResult:
        if not isinstance(topics, list) or not topics:
            return BatchResult(
                success=False,
                error=ErrorInfo(code=error_codes.INVALID_TOPICS, message="请提供要生成的主题列表"),
            )

        base = dict(base_options or {})
        results: list[BatchItemResult] = []
        started = time.monotonic()
        for item in topics:
            if isinstance(item, str):
                payload = {"topic": item, **base}
            elif isinstance(item, dict):
                payload = {**base, **item}
            else:
                results.append(
                    BatchItemResult(
                        success=False,
                        error=ErrorInfo(code=error_codes.BATCH_ITEM_ERROR, message=f"无法识别的批量条目: {item!r}"),
                    )
                )
                continue
            item_topic = payload.get("topic")
            item_topic = str(item_topic) if item_topic is not None else None

            try:
                result = await self.generate(GenerateRequest.model_validate(payload))
            except Exception as exc:  # noqa: BLE001
                logger.warning("批量条目失败: topic=%s error=%s", item_topic, exc)
                results.append(
                    BatchItemResult(
                        topic=item_topic,
                        success=False,
                        error=ErrorInfo(code=error_codes.BATCH_ITEM_ERROR, message=str(exc)),
                    )
                )
                continue

            results.append(
                BatchItemResult(
                    topic=item_topic,
                    success=result.success,
                    data=result.data if result.success else None,
                    error=result.error,
                )
            )

        successful = sum(1 for entry in results if entry.success)
        return BatchResult(
            success=True,
            data=BatchData(
                total=len(topics),
                successful=successful,
                failed=len(results) - successful,
                processing_time=int((time.monotonic() - started) * 1000),
                results=results,
            ),
        )

    def recommend(self, keywords: Any, language: str = "zh") -> RecommendResult:
        if not isinstance(keywords, list) or not keywords:
            return RecommendResult(
                success=False,
                error=ErrorInfo(code=error_codes.INVALID_KEYWORDS, message="请提供关键词列表"),
            )

        normalized = [str(keyword).strip() for keyword in keywords if str(keyword).strip()]
        try:
            recommendations = self._catalog.recommend(normalized, language)
        except Exception as exc:  # noqa: BLE001
            logger.warning("主题推荐失败，使用默认推荐: %s", exc)
            recommendations = default_recommendations(language)

        return RecommendResult(
            success=True,
            data=RecommendData(
                keywords=normalized,
                recommendations=recommendations[:RECOMMENDATION_LIMIT],
                total=len(recommendations),
            ),
        )

    def _should_synthesize(self, request: GenerateRequest) -> bool:
        if not request.voice or request.options.skip_audio:
            return False
        if request.language not in self._settings.tts_languages:
            logger.info("语言 %s 暂不支持语音合成，跳过", request.language)
            return False
        if self._speech_cache is None:
            logger.warning("未配置语音合成服务，跳过语音生成")
            return False
        return True

    async def _synthesize_audio(
        self,
        text: str,
        request: GenerateRequest,
        *,
        style: str,
        topic_id: str | None,
        quick: bool,
        estimated_read_time: int,
    ) -> AudioInfo | None:
        if self._speech_cache is None:
            return None
        options = request.options
        default_speed = self._settings.quick_mode_speed if quick else self._settings.default_speed
        codec = options.format or self._settings.default_format
        params = SynthesisParams(
            voice_type=self.resolve_voice_type(style, topic_id, options.voice_type),
            speed=options.speed if options.speed is not None else default_speed,
            volume=options.volume if options.volume is not None else self._settings.default_volume,
            language=request.language,
            codec=codec,
            high_quality=options.high_quality,
        )
        try:
            synthesized = await self._speech_cache.synthesize(text, params)
        except Exception as exc:  # noqa: BLE001
            logger.warning("[%s] 语音生成失败，降级为纯文本: %s", error_codes.TTS_FAILED, exc)
            return None

        return AudioInfo(
            url=synthesized.url,
            base64=synthesized.base64,
            duration=estimated_read_time,
            format=synthesized.object_key.rsplit(".", 1)[-1] if "." in synthesized.object_key else codec,
            cache_hit=synthesized.cache_hit,
        )

    def _record_usage(self, metadata: MeditationMetadata, *, has_audio: bool, model: str) -> None:
        if not self._usage_recorder.enabled:
            return
        self._usage_recorder.record(
            {
                "topic": metadata.topic,
                "topic_id": metadata.topic_id,
                "style": metadata.style,
                "duration": metadata.duration,
                "language": metadata.language,
                "mode": metadata.mode,
                "model": model,
                "text_length": metadata.text_length,
                "has_audio": has_audio,
                "timestamp": metadata.generated_at,
            }
        )


def _invalid(code: str, message: str, details: Any | None = None) -> ValidationOutcome:
    return ValidationOutcome(valid=False, error=ErrorInfo(code=code, message=message, details=details))


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
