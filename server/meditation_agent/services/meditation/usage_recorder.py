"""使用量上报（尽力而为，失败只记日志）。"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

UsageSink = Callable[[dict[str, Any]], None]


def _log_sink(event: dict[str, Any]) -> None:
    logger.info("[Analytics] 记录使用: %s", json.dumps(event, ensure_ascii=False, sort_keys=True))


class UsageRecorder:
    def __init__(self, *, enabled: bool, sink: UsageSink | None = None) -> None:
        self._enabled = enabled
        self._sink = sink or _log_sink

    @property
    def enabled(self) -> bool:
        return self._enabled

    def record(self, event: dict[str, Any]) -> None:
        if not self._enabled:
            return
        try:
            self._sink(dict(event))
        except Exception as exc:  # noqa: BLE001
            logger.warning("[Analytics] 记录失败: %s", exc)
