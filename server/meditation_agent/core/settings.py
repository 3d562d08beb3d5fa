"""服务端运行时配置。"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

DEFAULT_LLM_ENDPOINT = "https://api.hunyuan.cloud.tencent.com/v1"


def _to_int(value: str, fallback: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return fallback


def _to_float(value: str, fallback: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return fallback


def _to_bool(value: str, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = str(value).strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _to_csv_list(value: str | None, fallback: list[str]) -> list[str]:
    if value is None:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


@dataclass(frozen=True)
class Settings:
    server_root: Path
    repo_root: Path
    configs_root: Path
    app_env: str
    log_level: str
    llm_api_base_url: str
    llm_api_key: str
    llm_model: str
    llm_timeout_seconds: float
    tts_secret_id: str
    tts_secret_key: str
    tts_region: str
    tts_default_lang: str
    tts_timeout_seconds: float
    cos_secret_id: str
    cos_secret_key: str
    cos_bucket: str
    cos_region: str
    cos_cdn: str
    default_voice_type: int
    default_speed: float
    quick_mode_speed: float
    default_volume: float
    default_format: str
    supported_languages: tuple[str, ...]
    tts_languages: tuple[str, ...]
    strict_topic_validation: bool
    enable_analytics: bool
    min_duration: int
    max_duration: int
    default_duration: int
    quick_mode_threshold: int
    words_per_minute: int
    tokens_per_word: float
    token_buffer: float
    quick_token_factor: float
    standard_temperature: float
    quick_temperature: float
    read_rate_zh: int
    read_rate_en: int
    cors_allow_origins: tuple[str, ...]

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"

    @property
    def cos_configured(self) -> bool:
        return bool(self.cos_bucket.strip() and self.cos_region.strip())


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    server_root = Path(__file__).resolve().parents[2]
    repo_root = Path(__file__).resolve().parents[3]
    configs_root = Path(os.getenv("CONFIGS_ROOT", str(repo_root / "configs")))
    return Settings(
        server_root=server_root,
        repo_root=repo_root,
        configs_root=configs_root,
        app_env=os.getenv("APP_ENV", os.getenv("NODE_ENV", "production")),
        log_level=os.getenv("LOG_LEVEL", "info"),
        llm_api_base_url=os.getenv("HUNYUAN_ENDPOINT", DEFAULT_LLM_ENDPOINT) or DEFAULT_LLM_ENDPOINT,
        llm_api_key=os.getenv("HUNYUAN_API_KEY", ""),
        llm_model=os.getenv("HUNYUAN_MODEL", "hunyuan-lite"),
        llm_timeout_seconds=_to_float(os.getenv("LLM_TIMEOUT_SECONDS", "10"), 10.0),
        tts_secret_id=os.getenv("TTS_SECRET_ID", ""),
        tts_secret_key=os.getenv("TTS_SECRET_KEY", ""),
        tts_region=os.getenv("TTS_REGION", "ap-shanghai"),
        tts_default_lang=os.getenv("TTS_DEFAULT_LANG", "zh"),
        tts_timeout_seconds=_to_float(os.getenv("TTS_TIMEOUT_SECONDS", "15"), 15.0),
        cos_secret_id=os.getenv("COS_SECRET_ID", ""),
        cos_secret_key=os.getenv("COS_SECRET_KEY", ""),
        cos_bucket=os.getenv("COS_BUCKET", ""),
        cos_region=os.getenv("COS_REGION", ""),
        cos_cdn=os.getenv("COS_CDN", ""),
        default_voice_type=_to_int(os.getenv("DEFAULT_VOICE_TYPE", "1001"), 1001),
        # 腾讯云语速刻度：-2 对应 0.6 倍速，0 为正常语速；冥想默认稍慢。
        default_speed=_to_float(os.getenv("DEFAULT_SPEED", "-1"), -1.0),
        quick_mode_speed=_to_float(os.getenv("QUICK_MODE_SPEED", "0"), 0.0),
        default_volume=_to_float(os.getenv("DEFAULT_VOLUME", "0"), 0.0),
        default_format=os.getenv("DEFAULT_FORMAT", "mp3"),
        supported_languages=tuple(_to_csv_list(os.getenv("SUPPORTED_LANGUAGES"), ["zh", "en"])),
        tts_languages=tuple(_to_csv_list(os.getenv("TTS_LANGUAGES"), ["zh"])),
        strict_topic_validation=_to_bool(os.getenv("STRICT_TOPIC_VALIDATION", "false"), False),
        enable_analytics=_to_bool(os.getenv("ENABLE_ANALYTICS", "false"), False),
        min_duration=_to_int(os.getenv("MIN_DURATION", "1"), 1),
        max_duration=_to_int(os.getenv("MAX_DURATION", "60"), 60),
        default_duration=_to_int(os.getenv("DEFAULT_DURATION", "10"), 10),
        quick_mode_threshold=_to_int(os.getenv("QUICK_MODE_THRESHOLD", "3"), 3),
        words_per_minute=_to_int(os.getenv("WORDS_PER_MINUTE", "175"), 175),
        tokens_per_word=_to_float(os.getenv("TOKENS_PER_WORD", "1.5"), 1.5),
        token_buffer=_to_float(os.getenv("TOKEN_BUFFER", "1.2"), 1.2),
        quick_token_factor=_to_float(os.getenv("QUICK_TOKEN_FACTOR", "0.8"), 0.8),
        standard_temperature=_to_float(os.getenv("STANDARD_TEMPERATURE", "0.7"), 0.7),
        quick_temperature=_to_float(os.getenv("QUICK_TEMPERATURE", "0.6"), 0.6),
        read_rate_zh=_to_int(os.getenv("READ_RATE_ZH", "180"), 180),
        read_rate_en=_to_int(os.getenv("READ_RATE_EN", "150"), 150),
        cors_allow_origins=tuple(_to_csv_list(os.getenv("CORS_ALLOW_ORIGINS"), ["*"])),
    )


def clear_settings_cache() -> None:
    get_settings.cache_clear()
