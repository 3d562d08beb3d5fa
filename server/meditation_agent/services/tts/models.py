"""语音合成参数与结果。"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SynthesisParams:
    """调用方传入的原始合成参数，缺省项由缓存层补全。"""

    voice_type: int | str | None = None
    speed: float | str | None = None
    volume: float | str | None = None
    sample_rate: int | str | None = None
    language: str | None = None
    codec: str | None = None
    high_quality: bool = False


@dataclass(frozen=True)
class NormalizedSynthesisParams:
    voice_type: int
    speed: float
    volume: float
    sample_rate: int
    language: str
    language_code: int
    codec: str

    def key_material(self) -> str:
        return (
            f"{self.voice_type}_{self.speed}_{self.volume}_{self.sample_rate}_"
            f"{self.language_code}_{self.codec}"
        )


@dataclass(frozen=True)
class SynthesisResult:
    cache_key: str
    object_key: str
    url: str | None = None
    base64: str | None = None
    cache_hit: bool = False
