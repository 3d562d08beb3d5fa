"""冥想生成接口。"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, Header, Request

from meditation_agent.core.settings import Settings, get_settings
from meditation_agent.dependencies import get_orchestrator
from meditation_agent.services.meditation.dispatcher import dispatch
from meditation_agent.services.meditation.orchestrator import GenerationOrchestrator

router = APIRouter(prefix="/v1", tags=["meditation"])


async def _read_event(request: Request) -> Any:
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except ValueError:
        # 交给 dispatch 统一返回 INVALID_REQUEST。
        return raw.decode("utf-8", errors="replace")


@router.post("/meditation")
async def meditation(
    request: Request,
    x_request_id: str | None = Header(default=None),
    orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    # 业务错误也以 200 返回，由信封中的 success/error 表达。
    event = await _read_event(request)
    return await dispatch(event, orchestrator, request_id=x_request_id, settings=settings)
