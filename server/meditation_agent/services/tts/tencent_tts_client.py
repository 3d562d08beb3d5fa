"""腾讯云语音合成 TextToVoice 封装。"""

from __future__ import annotations

import asyncio
import base64
import binascii
import hashlib
import json
import logging
from typing import Any, Protocol

from meditation_agent.services.tts.models import NormalizedSynthesisParams

logger = logging.getLogger(__name__)

TTS_ENDPOINT = "tts.tencentcloudapi.com"


class SpeechProviderError(RuntimeError):
    """TTS provider 调用失败。"""


class SpeechProvider(Protocol):
    async def synthesize(self, text: str, params: NormalizedSynthesisParams) -> bytes: ...


class TencentSpeechProvider:
    def __init__(
        self,
        *,
        secret_id: str,
        secret_key: str,
        region: str = "ap-shanghai",
        timeout_seconds: float = 15.0,
    ) -> None:
        self._secret_id = secret_id.strip()
        self._secret_key = secret_key.strip()
        self._region = region.strip() or "ap-shanghai"
        self._timeout_seconds = timeout_seconds
        self._client: Any | None = None
        if not self._secret_id or not self._secret_key:
            logger.warning("未配置 TTS_SECRET_ID/TTS_SECRET_KEY，语音合成将不可用")

    async def synthesize(self, text: str, params: NormalizedSynthesisParams) -> bytes:
        payload = build_text_to_voice_payload(text, params)
        audio_b64 = await asyncio.to_thread(self._text_to_voice, payload)
        try:
            audio = base64.b64decode(audio_b64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise SpeechProviderError(f"TTS 音频解码失败: {exc}") from exc
        if not audio:
            raise SpeechProviderError("TTS 返回空音频")
        return audio

    def _text_to_voice(self, payload: dict[str, Any]) -> str:
        client = self._get_client()
        try:
            from tencentcloud.common.exception.tencent_cloud_sdk_exception import (  # type: ignore
                TencentCloudSDKException,
            )
            from tencentcloud.tts.v20190823 import models  # type: ignore
        except ImportError as exc:  # pragma: no cover - 依赖环境
            raise SpeechProviderError("缺少 tencentcloud-sdk-python-tts 依赖") from exc

        request = models.TextToVoiceRequest()
        request.from_json_string(json.dumps(payload, ensure_ascii=False))
        try:
            response = client.TextToVoice(request)
        except TencentCloudSDKException as exc:
            raise SpeechProviderError(f"TTS 调用失败: {exc.get_code()} {exc.get_message()}") from exc
        audio = str(getattr(response, "Audio", "") or "")
        if not audio:
            raise SpeechProviderError("TTS 响应缺少 Audio 字段")
        return audio

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._secret_id or not self._secret_key:
            raise SpeechProviderError("未配置 TTS_SECRET_ID/TTS_SECRET_KEY")
        try:
            from tencentcloud.common import credential  # type: ignore
            from tencentcloud.common.profile.client_profile import ClientProfile  # type: ignore
            from tencentcloud.common.profile.http_profile import HttpProfile  # type: ignore
            from tencentcloud.tts.v20190823 import tts_client  # type: ignore
        except ImportError as exc:  # pragma: no cover - 依赖环境
            raise SpeechProviderError("缺少 tencentcloud-sdk-python-tts 依赖") from exc

        http_profile = HttpProfile()
        http_profile.endpoint = TTS_ENDPOINT
        http_profile.reqTimeout = int(self._timeout_seconds)
        client_profile = ClientProfile()
        client_profile.httpProfile = http_profile
        self._client = tts_client.TtsClient(
            credential.Credential(self._secret_id, self._secret_key),
            self._region,
            client_profile,
        )
        return self._client


def build_text_to_voice_payload(text: str, params: NormalizedSynthesisParams) -> dict[str, Any]:
    return {
        "Text": text,
        "SessionId": hashlib.md5(text.encode("utf-8")).hexdigest()[:32],
        "VoiceType": params.voice_type,
        "Codec": params.codec,
        "ModelType": 1,
        "PrimaryLanguage": params.language_code,
        "SampleRate": params.sample_rate,
        "Speed": params.speed,
        "Volume": params.volume,
    }
