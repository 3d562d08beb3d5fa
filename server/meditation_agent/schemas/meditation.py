"""冥想生成请求/响应协议。"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

RequestType = Literal["generate", "preview", "batch", "recommend", "ping"]
GenerationMode = Literal["quick", "standard"]


class WireModel(BaseModel):
    """响应模型：内部用 snake_case，序列化（by_alias）输出 camelCase。"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Customization(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    additional_constraints: list[str] = Field(
        default_factory=list,
        alias="additionalConstraints",
        description="追加到引导原则中的约束",
    )
    special_requirements: list[str] = Field(
        default_factory=list,
        alias="specialRequirements",
        description="追加到特殊要求中的条目",
    )


class GenerationOptions(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: str | None = Field(None, description="LLM 模型 ID")
    temperature: float | None = Field(None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(None, ge=1, alias="maxTokens")
    voice_type: int | None = Field(None, alias="voiceType", description="TTS 音色 ID")
    speed: float | None = Field(None, description="语速，-2 ~ 2")
    volume: float | None = Field(None, description="音量，0 ~ 10")
    format: str | None = Field(None, description="音频格式")
    skip_audio: bool = Field(False, alias="skipAudio")
    high_quality: bool = Field(False, alias="hq")
    customization: Customization = Field(default_factory=Customization)


class GenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    topic: str = Field("基础放松", description="主题 ID、名称或关键词")
    style: str | None = Field(None, description="引导风格，缺省取主题推荐风格")
    duration: int | None = Field(None, description="时长（分钟），缺省取主题默认时长")
    language: str = Field("zh", description="zh / en")
    voice: bool = Field(False, description="是否生成语音")
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class ErrorInfo(WireModel):
    code: str
    message: str
    details: Any | None = None


class AudioInfo(WireModel):
    url: str | None = None
    base64: str | None = None
    duration: float | None = None
    format: str = "mp3"
    cache_hit: bool = False


class MeditationMetadata(WireModel):
    topic: str
    topic_id: str | None = None
    style: str
    duration: int
    mode: GenerationMode
    language: str
    benefits: list[str] = Field(default_factory=list)
    target_audience: list[str] = Field(default_factory=list)
    generated_at: str
    text_length: int
    word_count: int
    estimated_read_time: int = Field(..., description="预估朗读时间（秒）")
    is_preview: bool = False


class MeditationData(WireModel):
    text: str = Field(..., min_length=1)
    audio: AudioInfo | None = None
    metadata: MeditationMetadata


class GenerationResult(WireModel):
    success: bool
    data: MeditationData | None = None
    error: ErrorInfo | None = None


class BatchItemResult(WireModel):
    topic: str | None = None
    success: bool
    data: MeditationData | None = None
    error: ErrorInfo | None = None


class BatchData(WireModel):
    total: int
    successful: int
    failed: int
    processing_time: int = Field(..., description="批量处理耗时（毫秒）")
    results: list[BatchItemResult] = Field(default_factory=list)


class BatchResult(WireModel):
    success: bool
    data: BatchData | None = None
    error: ErrorInfo | None = None


class RecommendData(WireModel):
    keywords: list[str]
    recommendations: list[dict[str, Any]]
    total: int


class RecommendResult(WireModel):
    success: bool
    data: RecommendData | None = None
    error: ErrorInfo | None = None


class AgentRequest(BaseModel):
    """统一入口请求，按 type 分发。"""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    type: str = "ping"
    topics: Any = None
    base_options: dict[str, Any] = Field(default_factory=dict, alias="baseOptions")
    keywords: Any = None
    language: str = "zh"


class ResponseMetadata(WireModel):
    request_id: str
    duration: int = Field(..., description="处理耗时（毫秒）")
    timestamp: str
    stack: str | None = None
