"""混元 chat.completions 客户端（OpenAI 兼容协议）。"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

import httpx

from meditation_agent.core import error_codes
from meditation_agent.schemas.meditation import ErrorInfo

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "hunyuan-lite"
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass
class TextGenerationResult:
    success: bool
    text: str = ""
    model: str = ""
    usage: dict[str, Any] = field(default_factory=dict)
    error: ErrorInfo | None = None


def _from_openai_choices(payload: Any) -> str | None:
    choices = payload.get("choices") if isinstance(payload, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


def _from_result_content(payload: Any) -> str | None:
    result = payload.get("result") if isinstance(payload, dict) else None
    content = result.get("content") if isinstance(result, dict) else None
    return content if isinstance(content, str) else None


def _from_bare_content(payload: Any) -> str | None:
    content = payload.get("content") if isinstance(payload, dict) else None
    return content if isinstance(content, str) else None


# 按优先级依次尝试，首个非空文本生效。
TEXT_EXTRACTORS: tuple[Callable[[Any], str | None], ...] = (
    _from_openai_choices,
    _from_result_content,
    _from_bare_content,
)


def extract_text(payload: Any) -> str:
    for extractor in TEXT_EXTRACTORS:
        text = extractor(payload)
        if text and text.strip():
            return text.strip()
    return ""


class HunyuanTextClient:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        default_model: str = DEFAULT_MODEL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key.strip()
        self._url = _join_api_path(base_url, "chat/completions")
        self._default_model = default_model.strip() or DEFAULT_MODEL
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    @property
    def url(self) -> str:
        return self._url

    async def generate(
        self,
        *,
        messages: Iterable[dict[str, str]] | None = None,
        prompt: str | None = None,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> TextGenerationResult:
        if not self._api_key:
            logger.error("HUNYUAN_API_KEY 未设置")
            return _failure(error_codes.NO_API_KEY, "HUNYUAN_API_KEY 未配置")

        chosen_model = (model or "").strip() or self._default_model
        payload = {
            "model": chosen_model,
            "messages": _normalize_messages(messages, prompt),
            "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or DEFAULT_MAX_TOKENS,
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }
        logger.info(
            "LLM 请求: model=%s messages=%d temperature=%s max_tokens=%s",
            chosen_model,
            len(payload["messages"]),
            payload["temperature"],
            payload["max_tokens"],
        )

        try:
            async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
                response = await client.post(self._url, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            body = _safe_json(exc.response)
            logger.warning("LLM HTTP %s: %s", exc.response.status_code, body)
            return _failure(
                str(exc.response.status_code),
                _upstream_message(body) or str(exc),
                details=body,
            )
        except httpx.HTTPError as exc:
            logger.warning("LLM 请求失败(%s): %s", self._url, exc)
            message = str(exc) or exc.__class__.__name__
            return _failure(error_codes.HTTP_ERROR, message, details=message)
        except ValueError as exc:
            logger.warning("LLM 返回非 JSON 响应: %s", exc)
            return _failure(error_codes.EMPTY_RESPONSE, "大模型返回非 JSON 响应")

        text = extract_text(data)
        if not text:
            keys = ",".join(sorted(str(k) for k in data.keys())) if isinstance(data, dict) else type(data).__name__
            logger.warning("LLM 返回内容为空或结构不符，可用字段: %s", keys)
            return _failure(error_codes.EMPTY_RESPONSE, "大模型返回内容为空")

        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}
        logger.info("LLM 调用成功，内容长度: %d", len(text))
        return TextGenerationResult(success=True, text=text, model=chosen_model, usage=usage)


def _failure(code: str, message: str, details: Any | None = None) -> TextGenerationResult:
    return TextGenerationResult(success=False, error=ErrorInfo(code=code, message=message, details=details))


def _join_api_path(base_url: str, suffix: str) -> str:
    base = str(base_url or "").rstrip("/")
    if base.endswith(f"/{suffix}"):
        return base
    if base.endswith("/v1"):
        return f"{base}/{suffix}"
    return f"{base}/v1/{suffix}"


def _normalize_messages(
    messages: Iterable[dict[str, str]] | None,
    prompt: str | None,
) -> list[dict[str, str]]:
    normalized: list[dict[str, str]] = []
    for item in messages or []:
        role = str(item.get("role", "user")).strip().lower()
        if role not in {"system", "user", "assistant"}:
            role = "user"
        content = str(item.get("content", "")).strip()
        if not content:
            continue
        normalized.append({"role": role, "content": content})
    if normalized:
        return normalized
    # 兼容旧调用：直接传入 prompt 字符串。
    return [{"role": "user", "content": str(prompt or "")}]


def _safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


def _upstream_message(body: Any) -> str:
    if not isinstance(body, dict):
        return ""
    error = body.get("error")
    if isinstance(error, dict):
        return str(error.get("message", "")).strip()
    return ""
