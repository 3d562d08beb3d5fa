"""统一入口：按 type 分发请求，并为每个响应附加 metadata 信封。"""

from __future__ import annotations

import logging
import time
import traceback
import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ValidationError

from meditation_agent.core import error_codes
from meditation_agent.core.settings import Settings, get_settings
from meditation_agent.schemas.meditation import AgentRequest, GenerateRequest, ResponseMetadata
from meditation_agent.services.meditation.orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)

SUPPORTED_TYPES = ("generate", "preview", "batch", "recommend", "ping")


async def dispatch(
    event: Any,
    orchestrator: GenerationOrchestrator,
    *,
    request_id: str | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    settings = settings or get_settings()
    started = time.monotonic()
    request_id = (request_id or "").strip() or f"req_{uuid.uuid4().hex[:16]}"
    if event is not None and not isinstance(event, dict):
        logger.info("请求体不是 JSON 对象: request_id=%s", request_id)
        result = _error(error_codes.INVALID_REQUEST, "请求体必须是 JSON 对象", {"received": type(event).__name__})
        result["metadata"] = _metadata(request_id, started)
        return result

    payload = dict(event or {})
    request_type = str(payload.get("type") or "ping")
    logger.info("请求开始: type=%s request_id=%s", request_type, request_id)

    try:
        result = await _route(request_type, payload, orchestrator)
    except ValidationError as exc:
        logger.info("请求参数非法: type=%s request_id=%s", request_type, request_id)
        result = _error(
            error_codes.INVALID_REQUEST,
            "请求参数格式错误",
            exc.errors(include_url=False, include_context=False),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("请求失败: type=%s request_id=%s", request_type, request_id)
        response = _error(error_codes.INTERNAL_ERROR, str(exc) or "处理请求时发生内部错误")
        stack = None if settings.is_production else traceback.format_exc()
        response["metadata"] = _metadata(request_id, started, stack=stack)
        return response

    data = result.get("data") if isinstance(result.get("data"), dict) else {}
    logger.info(
        "请求完成: type=%s success=%s request_id=%s duration=%dms has_audio=%s text_len=%d",
        request_type,
        result.get("success"),
        request_id,
        _elapsed_ms(started),
        bool(data.get("audio")),
        len(data.get("text") or ""),
    )
    result["metadata"] = _metadata(request_id, started)
    return result


async def _route(
    request_type: str,
    payload: dict[str, Any],
    orchestrator: GenerationOrchestrator,
) -> dict[str, Any]:
    if request_type == "generate":
        return _dump(await orchestrator.generate(GenerateRequest.model_validate(payload)))
    if request_type == "preview":
        return _dump(await orchestrator.preview(GenerateRequest.model_validate(payload)))
    if request_type == "batch":
        request = AgentRequest.model_validate(payload)
        return _dump(await orchestrator.batch(request.topics, request.base_options))
    if request_type == "recommend":
        request = AgentRequest.model_validate(payload)
        return _dump(orchestrator.recommend(request.keywords, request.language))
    if request_type == "ping":
        return {
            "success": True,
            "data": {"pong": True, "timestamp": _utc_now_iso()},
            "message": "MeditationAgent is running",
        }
    return _error(
        error_codes.INVALID_TYPE,
        f"不支持的操作类型: {request_type}，支持的类型为: {', '.join(SUPPORTED_TYPES)}",
    )


def _dump(result: BaseModel) -> dict[str, Any]:
    return result.model_dump(mode="json", by_alias=True)


def _error(code: str, message: str, details: Any | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    return {"success": False, "error": error}


def _metadata(request_id: str, started: float, *, stack: str | None = None) -> dict[str, Any]:
    metadata = ResponseMetadata(
        request_id=request_id,
        duration=_elapsed_ms(started),
        timestamp=_utc_now_iso(),
        stack=stack,
    )
    return metadata.model_dump(mode="json", by_alias=True, exclude_none=True)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
