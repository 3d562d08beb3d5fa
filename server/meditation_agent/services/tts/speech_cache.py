"""语音合成读穿缓存：COS 命中检测 + TTS 合成重试 + 回写 + 进程内并发去重。"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
import math
import re

from meditation_agent.services.storage.cos_store import AudioObjectStore
from meditation_agent.services.tts.models import (
    NormalizedSynthesisParams,
    SynthesisParams,
    SynthesisResult,
)
from meditation_agent.services.tts.tencent_tts_client import SpeechProvider, SpeechProviderError

logger = logging.getLogger(__name__)

TEXT_BYTE_LIMIT = 2000
LANGUAGE_CODES = {"zh": 1, "en": 2, "ja": 3}
DEFAULT_VOICE_TYPE = 1001
DEFAULT_SPEED = 0.0
DEFAULT_VOLUME = 5.0
DEFAULT_SAMPLE_RATE = 16000
HIGH_QUALITY_SAMPLE_RATE = 24000
DEFAULT_CODEC = "mp3"
CONTENT_TYPES = {"mp3": "audio/mpeg", "wav": "audio/wav", "pcm": "audio/pcm"}
OBJECT_KEY_PREFIX = "meditation/audio"
SPEED_RANGE = (-2.0, 2.0)
VOLUME_RANGE = (0.0, 10.0)

# ASCII、常用汉字、CJK 标点、全角字符。
_EXPECTED_TEXT_PATTERN = re.compile(r"^[\u0000-\u007f\u4e00-\u9fa5\u3000-\u303f\uff00-\uffef\s]+$")


class SpeechSynthesisError(RuntimeError):
    """语音合成失败（参数非法或重试耗尽）。"""


class PendingSynthesisRegistry:
    """进程内 cache_key → 进行中合成任务；任务结束（无论成败）即移除。"""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[SynthesisResult]] = {}

    def get(self, cache_key: str) -> asyncio.Task[SynthesisResult] | None:
        return self._tasks.get(cache_key)

    def register(self, cache_key: str, task: asyncio.Task[SynthesisResult]) -> None:
        self._tasks[cache_key] = task
        task.add_done_callback(lambda done: self._release(cache_key, done))

    def _release(self, cache_key: str, task: asyncio.Task[SynthesisResult]) -> None:
        if self._tasks.get(cache_key) is task:
            del self._tasks[cache_key]

    def __contains__(self, cache_key: object) -> bool:
        return cache_key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


def validate_text(text: str) -> str:
    if not isinstance(text, str) or not text.strip():
        raise SpeechSynthesisError("text 不能为空")
    byte_length = len(text.encode("utf-8"))
    if byte_length > TEXT_BYTE_LIMIT:
        raise SpeechSynthesisError(f"text 超长（{byte_length} 字节，限制 {TEXT_BYTE_LIMIT} 字节）")
    if not _EXPECTED_TEXT_PATTERN.match(text):
        logger.warning("TTS 文本可能包含特殊字符或 emoji")
    return text


def normalize_synthesis_params(
    params: SynthesisParams | None,
    *,
    default_language: str = "zh",
) -> NormalizedSynthesisParams:
    raw = params or SynthesisParams()

    voice_type = _to_int(raw.voice_type) or DEFAULT_VOICE_TYPE
    speed = _clamp(_to_float(raw.speed, DEFAULT_SPEED), *SPEED_RANGE)
    volume = _clamp(_to_float(raw.volume, DEFAULT_VOLUME), *VOLUME_RANGE)
    sample_rate = _to_int(raw.sample_rate) or (
        HIGH_QUALITY_SAMPLE_RATE if raw.high_quality else DEFAULT_SAMPLE_RATE
    )

    language = str(raw.language or "").strip().lower()
    if language not in LANGUAGE_CODES:
        language = default_language if default_language in LANGUAGE_CODES else "zh"

    codec = str(raw.codec or "").strip().lower()
    if codec not in CONTENT_TYPES:
        codec = DEFAULT_CODEC

    return NormalizedSynthesisParams(
        voice_type=voice_type,
        speed=speed,
        volume=volume,
        sample_rate=sample_rate,
        language=language,
        language_code=LANGUAGE_CODES[language],
        codec=codec,
    )


def derive_cache_key(text: str, params: NormalizedSynthesisParams) -> str:
    material = f"{params.key_material()}_{text}"
    return hashlib.md5(material.encode("utf-8")).hexdigest()


def object_key_for(cache_key: str, codec: str) -> str:
    return f"{OBJECT_KEY_PREFIX}/{cache_key}.{codec}"


class SpeechSynthesisCache:
    def __init__(
        self,
        *,
        provider: SpeechProvider,
        store: AudioObjectStore | None = None,
        registry: PendingSynthesisRegistry | None = None,
        default_language: str = "zh",
        timeout_seconds: float = 15.0,
        synthesis_attempts: int = 2,
        upload_attempts: int = 2,
    ) -> None:
        self._provider = provider
        self._store = store
        self._registry = registry if registry is not None else PendingSynthesisRegistry()
        self._default_language = default_language
        self._timeout_seconds = timeout_seconds
        self._synthesis_attempts = max(synthesis_attempts, 1)
        self._upload_attempts = max(upload_attempts, 1)

    @property
    def registry(self) -> PendingSynthesisRegistry:
        return self._registry

    async def synthesize(self, text: str, params: SynthesisParams | None = None) -> SynthesisResult:
        clean_text = validate_text(text)
        normalized = normalize_synthesis_params(params, default_language=self._default_language)
        cache_key = derive_cache_key(clean_text, normalized)

        pending = self._registry.get(cache_key)
        if pending is not None:
            logger.info("复用进行中的合成任务: %s", cache_key)
            return await asyncio.shield(pending)

        task = asyncio.create_task(self._synthesize_uncached(clean_text, normalized, cache_key))
        self._registry.register(cache_key, task)
        # shield：单个调用方被取消时不影响其他等待同一任务的调用方。
        return await asyncio.shield(task)

    async def _synthesize_uncached(
        self,
        text: str,
        params: NormalizedSynthesisParams,
        cache_key: str,
    ) -> SynthesisResult:
        object_key = object_key_for(cache_key, params.codec)

        if self._store is not None:
            try:
                if await self._store.exists(object_key):
                    logger.info("TTS 缓存命中: %s", object_key)
                    return SynthesisResult(
                        cache_key=cache_key,
                        object_key=object_key,
                        url=self._store.public_url(object_key),
                        cache_hit=True,
                    )
            except Exception as exc:  # noqa: BLE001
                logger.warning("COS 缓存探测失败，继续合成: %s", exc)

        logger.info(
            "TTS 合成: text_len=%d voice=%s speed=%s volume=%s lang=%s",
            len(text),
            params.voice_type,
            params.speed,
            params.volume,
            params.language_code,
        )
        audio = await self._synthesize_with_retry(text, params)
        content_type = CONTENT_TYPES[params.codec]
        inline = f"data:{content_type};base64,{base64.b64encode(audio).decode('ascii')}"
        url = await self._upload_with_retry(object_key, audio, content_type)
        if url is None:
            logger.info("TTS 结果仅返回 base64（无 COS 或上传失败）: %s", object_key)
        return SynthesisResult(cache_key=cache_key, object_key=object_key, url=url, base64=inline)

    async def _synthesize_with_retry(self, text: str, params: NormalizedSynthesisParams) -> bytes:
        last_error: Exception | None = None
        for attempt in range(1, self._synthesis_attempts + 1):
            try:
                return await asyncio.wait_for(
                    self._provider.synthesize(text, params),
                    timeout=self._timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = SpeechProviderError(f"Timeout after {self._timeout_seconds:g}s")
            except Exception as exc:  # noqa: BLE001
                last_error = exc
            if attempt < self._synthesis_attempts:
                logger.warning("TTS 合成失败，重试(%d): %s", attempt, last_error)

        logger.error("TTS 合成重试耗尽: %s", last_error)
        raise SpeechSynthesisError(f"合成失败: {last_error}") from last_error

    async def _upload_with_retry(self, object_key: str, audio: bytes, content_type: str) -> str | None:
        if self._store is None:
            return None
        for attempt in range(1, self._upload_attempts + 1):
            try:
                await self._store.put(object_key, audio, content_type)
            except Exception as exc:  # noqa: BLE001
                if attempt < self._upload_attempts:
                    logger.warning("COS 上传失败，重试(%d): %s", attempt, exc)
                    continue
                logger.error("COS 上传重试后仍失败: %s", exc)
                return None
            logger.info("音频已上传 COS: %s", object_key)
            return self._store.public_url(object_key)
        return None


def _to_int(value: object) -> int:
    try:
        return int(float(str(value)))
    except (TypeError, ValueError, OverflowError):
        return 0


def _to_float(value: object, fallback: float) -> float:
    if value is None or value == "":
        return fallback
    try:
        parsed = float(str(value))
    except (TypeError, ValueError):
        return fallback
    return parsed if math.isfinite(parsed) else fallback


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))
