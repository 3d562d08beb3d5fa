"""跨模块统一错误码。"""

from __future__ import annotations

NO_API_KEY = "NO_API_KEY"
EMPTY_RESPONSE = "EMPTY_RESPONSE"
EMPTY_CONTENT = "EMPTY_CONTENT"
HTTP_ERROR = "HTTP_ERROR"

INVALID_TOPIC = "INVALID_TOPIC"
INVALID_STYLE = "INVALID_STYLE"
INVALID_DURATION = "INVALID_DURATION"
INVALID_LANGUAGE = "INVALID_LANGUAGE"

TTS_FAILED = "TTS_FAILED"
LLM_FAILED = "LLM_FAILED"
MEDITATION_GENERATION_ERROR = "MEDITATION_GENERATION_ERROR"
BATCH_ITEM_ERROR = "BATCH_ITEM_ERROR"

# 分发层
INVALID_TYPE = "INVALID_TYPE"
INVALID_TOPICS = "INVALID_TOPICS"
INVALID_KEYWORDS = "INVALID_KEYWORDS"
INVALID_REQUEST = "INVALID_REQUEST"
INTERNAL_ERROR = "INTERNAL_ERROR"
