"""冥想主题目录：静态配置加载与查询。"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

from meditation_agent.core.settings import get_settings

logger = logging.getLogger(__name__)

CATALOG_RELATIVE_PATH = Path("prompts") / "meditation_types.json"
FALLBACK_LANGUAGE = "zh"


class TopicCatalogError(RuntimeError):
    """主题目录加载失败。"""


@dataclass(frozen=True)
class StyleDefinition:
    id: str
    names: dict[str, str]


@dataclass(frozen=True)
class TopicDescriptor:
    id: str
    name: dict[str, str]
    description: dict[str, str]
    recommended_styles: tuple[str, ...]
    default_duration: int
    target_audience: dict[str, tuple[str, ...]]
    benefits: dict[str, tuple[str, ...]]
    keywords: tuple[str, ...]
    techniques: tuple[str, ...] = ()
    best_time: tuple[str, ...] = ()
    progression: tuple[str, ...] = ()

    def localized_name(self, language: str) -> str:
        return _localized(self.name, language) or self.id

    def localized_description(self, language: str) -> str:
        return _localized(self.description, language)

    def localized_audience(self, language: str) -> list[str]:
        return list(_localized(self.target_audience, language) or ())

    def localized_benefits(self, language: str) -> list[str]:
        return list(_localized(self.benefits, language) or ())

    def matches(self, topic: str) -> bool:
        return topic == self.id or topic in self.name.values() or topic in self.keywords


@dataclass(frozen=True)
class TopicDetails:
    id: str
    name: str
    description: str
    recommended_styles: list[str]
    default_duration: int
    target_audience: list[str]
    benefits: list[str]
    keywords: list[str]


DEFAULT_RECOMMENDATIONS: dict[str, list[dict[str, Any]]] = {
    "zh": [
        {"id": "quick-relax", "name": "快速放松", "description": "1-2分钟快速缓解压力", "duration": 2, "mode": "quick"},
        {"id": "basic-relaxation", "name": "基础放松", "description": "适合初学者的放松练习", "duration": 10},
        {"id": "breathing", "name": "呼吸冥想", "description": "专注于呼吸的冥想练习", "duration": 15},
        {"id": "body-scan", "name": "身体扫描", "description": "逐步放松身体各部分", "duration": 20},
        {"id": "mindfulness", "name": "正念冥想", "description": "保持当下觉知的练习", "duration": 15},
        {"id": "sleep", "name": "助眠冥想", "description": "帮助入睡的冥想引导", "duration": 30},
    ],
    "en": [
        {"id": "quick-relax", "name": "Quick Relaxation", "description": "1-2 minute stress relief", "duration": 2, "mode": "quick"},
        {"id": "basic-relaxation", "name": "Basic Relaxation", "description": "Beginner-friendly relaxation", "duration": 10},
        {"id": "breathing", "name": "Breathing Meditation", "description": "Focus on breath practice", "duration": 15},
        {"id": "body-scan", "name": "Body Scan", "description": "Progressive body relaxation", "duration": 20},
        {"id": "mindfulness", "name": "Mindfulness", "description": "Present moment awareness", "duration": 15},
        {"id": "sleep", "name": "Sleep Meditation", "description": "Guided sleep assistance", "duration": 30},
    ],
}


class TopicCatalog:
    """只读主题目录，加载后不再修改，可在请求间共享。"""

    def __init__(self, topics: list[TopicDescriptor], styles: list[StyleDefinition]) -> None:
        self._topics = tuple(topics)
        self._styles = {style.id: style for style in styles}

    @property
    def topics(self) -> tuple[TopicDescriptor, ...]:
        return self._topics

    def find(self, topic: str | None) -> TopicDescriptor | None:
        key = str(topic or "").strip()
        if not key:
            return None
        for descriptor in self._topics:
            if descriptor.matches(key):
                return descriptor
        return None

    def topic_details(self, topic: str | None, language: str = FALLBACK_LANGUAGE) -> TopicDetails | None:
        descriptor = self.find(topic)
        if descriptor is None:
            return None
        return TopicDetails(
            id=descriptor.id,
            name=descriptor.localized_name(language),
            description=descriptor.localized_description(language),
            recommended_styles=list(descriptor.recommended_styles),
            default_duration=descriptor.default_duration,
            target_audience=descriptor.localized_audience(language),
            benefits=descriptor.localized_benefits(language),
            keywords=list(descriptor.keywords),
        )

    def supported_topics(self, language: str = FALLBACK_LANGUAGE) -> list[str]:
        return [descriptor.localized_name(language) for descriptor in self._topics]

    def supported_styles(self) -> list[str]:
        return list(self._styles)

    def has_style(self, style: str) -> bool:
        return style in self._styles

    def style_name(self, style: str, language: str = FALLBACK_LANGUAGE) -> str:
        definition = self._styles.get(style)
        if definition is None:
            return style
        return _localized(definition.names, language) or style

    def recommend(self, keywords: list[str], language: str = FALLBACK_LANGUAGE) -> list[dict[str, Any]]:
        recommendations: list[dict[str, Any]] = []
        for descriptor in self._topics:
            score = sum(1 for keyword in keywords if keyword in descriptor.keywords)
            if score <= 0:
                continue
            reason_sep = "、" if language == "zh" else ", "
            recommendations.append(
                {
                    "topic": descriptor.localized_name(language),
                    "id": descriptor.id,
                    "score": score,
                    "reason": reason_sep.join(descriptor.localized_benefits(language)[:2]),
                }
            )
        recommendations.sort(key=lambda item: item["score"], reverse=True)
        return recommendations


def default_recommendations(language: str) -> list[dict[str, Any]]:
    items = DEFAULT_RECOMMENDATIONS.get(language) or DEFAULT_RECOMMENDATIONS[FALLBACK_LANGUAGE]
    return [dict(item) for item in items]


@lru_cache(maxsize=1)
def get_topic_catalog() -> TopicCatalog:
    settings = get_settings()
    return load_topic_catalog(settings.configs_root / CATALOG_RELATIVE_PATH)


def clear_topic_catalog_cache() -> None:
    get_topic_catalog.cache_clear()


def load_topic_catalog(path: Path) -> TopicCatalog:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise TopicCatalogError(f"主题配置读取失败: {path}: {exc}") from exc
    if not isinstance(payload, dict):
        raise TopicCatalogError(f"主题配置格式异常: {path}")
    return parse_topic_catalog(payload)


def parse_topic_catalog(payload: dict[str, Any]) -> TopicCatalog:
    styles: list[StyleDefinition] = []
    raw_styles = payload.get("styleDefinitions")
    if isinstance(raw_styles, dict):
        for style_id, names in raw_styles.items():
            styles.append(StyleDefinition(id=str(style_id), names=_to_str_map(names)))

    topics: list[TopicDescriptor] = []
    raw_types = payload.get("types")
    for item in raw_types if isinstance(raw_types, list) else []:
        descriptor = _parse_descriptor(item)
        if descriptor is None:
            logger.warning("跳过无效的主题配置项: %s", item)
            continue
        topics.append(descriptor)

    logger.info("主题目录加载完成: %d 个主题, %d 种风格", len(topics), len(styles))
    return TopicCatalog(topics, styles)


def _parse_descriptor(item: Any) -> TopicDescriptor | None:
    if not isinstance(item, dict):
        return None
    topic_id = str(item.get("id", "")).strip()
    if not topic_id:
        return None
    try:
        default_duration = int(item.get("defaultDuration", 10))
    except (TypeError, ValueError):
        default_duration = 10
    return TopicDescriptor(
        id=topic_id,
        name=_to_str_map(item.get("name")),
        description=_to_str_map(item.get("description")),
        recommended_styles=_to_str_tuple(item.get("recommendedStyles")),
        default_duration=default_duration,
        target_audience=_to_list_map(item.get("targetAudience")),
        benefits=_to_list_map(item.get("benefits")),
        keywords=_to_str_tuple(item.get("keywords")),
        techniques=_to_str_tuple(item.get("techniques")),
        best_time=_to_str_tuple(item.get("bestTime")),
        progression=_to_str_tuple(item.get("progression")),
    )


def _localized(mapping: dict[str, Any], language: str) -> Any:
    if language in mapping:
        return mapping[language]
    return mapping.get(FALLBACK_LANGUAGE)


def _to_str_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): str(v).strip() for k, v in value.items() if str(v).strip()}


def _to_list_map(value: Any) -> dict[str, tuple[str, ...]]:
    if not isinstance(value, dict):
        return {}
    return {str(k): _to_str_tuple(v) for k, v in value.items()}


def _to_str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item).strip() for item in value if str(item or "").strip())
